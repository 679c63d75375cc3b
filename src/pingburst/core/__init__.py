"""Target registry and burst scheduling."""
