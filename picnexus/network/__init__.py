"""Backend uploaders, object storage and WebDAV clients."""
