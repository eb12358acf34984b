"""Read-only query selectors over kernel tables."""
