"""Concurrent fact probing and snapshot caching."""
