"""Concrete OS fact and mutation sources."""
