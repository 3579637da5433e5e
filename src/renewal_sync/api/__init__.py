"""HTTP API for triggering renewal syncs and managing the renewal feed."""
