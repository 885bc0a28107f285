"""Snapshot assembly, rate limiting, caching and reporting services."""
