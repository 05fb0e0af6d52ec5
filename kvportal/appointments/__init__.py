"""Appointments module - public event submissions and the calendar."""
