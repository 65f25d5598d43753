"""Blob lifecycle garbage collector for proof-generation job tables."""

__version__ = "0.1.0"
