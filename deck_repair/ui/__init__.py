"""Operator prompts."""
