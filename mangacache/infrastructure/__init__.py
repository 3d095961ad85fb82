"""Infrastructure: backing-store clients, cache engine, persistence and security."""
