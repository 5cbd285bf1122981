"""Warden HTTP API."""
