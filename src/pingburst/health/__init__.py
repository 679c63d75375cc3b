"""HTTP probing of backend targets."""
