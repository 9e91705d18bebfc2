"""Persistent settings."""
