"""Cross-cutting runtime support: structured logging."""
