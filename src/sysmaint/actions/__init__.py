"""Declarative action table and execution engine."""
