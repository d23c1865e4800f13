"""API and domain models."""
