"""Papercrate document processing backend."""

__version__ = "0.1.0"
