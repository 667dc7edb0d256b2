"""Logging and metrics for classguard."""
