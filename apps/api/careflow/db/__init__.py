"""Database models, enums and session management."""
