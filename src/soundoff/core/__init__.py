"""Scheduling, delivery and voice core."""
