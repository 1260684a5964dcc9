"""Shared helpers for the offline sync core."""
