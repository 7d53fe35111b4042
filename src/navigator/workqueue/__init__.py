"""Rate-limited, deduplicating work queue."""
