"""Service routes."""
