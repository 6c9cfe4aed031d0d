"""API client, domain models and metric calculations."""
