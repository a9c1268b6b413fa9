"""Core types: constants, errors, models, configuration and link generation."""
