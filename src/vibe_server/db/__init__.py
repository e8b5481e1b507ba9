"""Per-room SQLite persistence.

Each room owns one database file holding its current vibe state, its prompt
history and its rate-limit buckets. Callers normally go through
:class:`vibe_server.db.store.RoomStore`; the ``*_repo`` modules hold the
individual queries.
"""
