"""Codex token manager — versioned storage for multiple Codex identities."""

__version__ = "0.1.0"
