"""Outbound HTTP helpers."""
