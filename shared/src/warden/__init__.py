"""Shared models, configuration and database plumbing for Warden."""
