"""Persistence and messaging adapters."""
