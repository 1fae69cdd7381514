"""Logging, metrics and topology reporting."""
