"""Upload orchestration, queueing, retries and sync."""
