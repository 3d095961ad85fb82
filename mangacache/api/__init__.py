"""HTTP API (versioned routers)."""
