"""Preferences, credentials and refresh orchestration."""
