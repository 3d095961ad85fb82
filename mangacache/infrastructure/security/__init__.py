"""Security: JWT verification for the admin surface and per-user cache variants."""
