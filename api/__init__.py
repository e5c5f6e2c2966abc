"""HTTP surface: job control, SSE streams, caches and durable storage."""
