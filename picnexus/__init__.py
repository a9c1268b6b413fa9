"""PicNexus upload core: encrypted store, multi-host orchestration, retry queue and WebDAV sync."""

__version__ = "0.3.0"
