"""Redis client helpers."""
