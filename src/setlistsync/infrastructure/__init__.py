"""Infrastructure layer: persistence, upstream clients, rate limiting, observability."""
