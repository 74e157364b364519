"""HTTP API for LocalHub."""
