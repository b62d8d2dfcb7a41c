"""Database engine, sessions and the schedule store."""
