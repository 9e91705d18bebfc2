"""Repair session orchestration."""
