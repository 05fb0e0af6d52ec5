"""Portal module - group memberships for logged-in members."""
