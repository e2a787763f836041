"""Job record store backed by SQLModel + SQLite."""
