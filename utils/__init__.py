"""Shared helpers: platform paths and constants."""
