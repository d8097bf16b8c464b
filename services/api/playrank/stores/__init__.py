"""Data stores for persistence and locking.

Stores handle:
- PostgreSQL: DB session, ORM operations
- Ordered store: point reads/writes of ranked positions (SQL or in-memory)
- Redis: per-user write locks

No ranking logic in stores - the shift protocol and search belong in services.
"""
