"""Logging, paths and image helpers."""
