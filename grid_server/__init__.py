"""Windowed row access and cell editing backend."""
