"""Shared types, configuration and logging."""
