"""Encrypted local persistence."""
