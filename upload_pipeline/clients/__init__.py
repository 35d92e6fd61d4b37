"""HTTP clients for the storage and remote function services."""
