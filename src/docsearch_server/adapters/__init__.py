"""Adapters for the canonical document store."""
