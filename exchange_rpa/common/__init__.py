"""Shared pacing and interaction helpers."""
