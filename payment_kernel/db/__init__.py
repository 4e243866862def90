"""Database infrastructure: declarative base, engine, column types, append-only listeners."""

from payment_kernel.db.base import Base, TrackedBase, UTCDateTime, UUIDString

__all__ = ["Base", "TrackedBase", "UTCDateTime", "UUIDString"]
