"""FAQ module - public FAQ entries and their administration."""
