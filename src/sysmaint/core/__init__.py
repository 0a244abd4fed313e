"""Shared domain types, errors and settings."""
