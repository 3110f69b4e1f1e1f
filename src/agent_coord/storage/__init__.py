"""SQLite persistence: engine, ORM tables and migrations."""
