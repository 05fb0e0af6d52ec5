"""Addresses module - reusable meeting addresses."""
