"""Redis stream work queue."""
