"""Statistics store and status API."""
