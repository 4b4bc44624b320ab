"""Connection pool, request dispatch and retry handling."""
