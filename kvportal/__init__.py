"""Kreisverband portal API - groups, status reports, Anträge and newsletters."""

__version__ = "0.1.0"
