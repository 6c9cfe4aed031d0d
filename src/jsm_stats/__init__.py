"""Operational statistics for Jira Service Management desks."""

__version__ = "0.1.0"
