"""Shared helpers used across atsync subsystems."""
