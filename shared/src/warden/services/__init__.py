"""Shared services used by the API and background workers."""
