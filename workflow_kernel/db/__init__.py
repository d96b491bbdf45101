"""Database plumbing: declarative base, engine/session management, immutability listeners."""
