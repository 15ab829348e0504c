"""Database layer: declarative base, engine/session management, immutability."""
