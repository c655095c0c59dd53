"""Logging, errors, configuration and notifications."""
