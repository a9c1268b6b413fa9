"""Notification and clipboard sinks."""
