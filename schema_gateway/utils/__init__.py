"""Shared helpers for configuration and responses."""
