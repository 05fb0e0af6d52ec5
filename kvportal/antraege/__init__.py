"""Anträge module - requests to the board (Kreisvorstand)."""
