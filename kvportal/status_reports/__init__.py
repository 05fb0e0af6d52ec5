"""Status reports module - report submission and moderation."""
