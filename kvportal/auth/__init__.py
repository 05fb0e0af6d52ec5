"""Auth module - users, JWT sessions and role checks."""
