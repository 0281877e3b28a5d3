"""Domain services. Module-level functions taking a SQLAlchemy Session."""
