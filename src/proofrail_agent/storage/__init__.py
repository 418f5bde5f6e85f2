"""SQLite-backed execution journal."""
