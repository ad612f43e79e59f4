"""SQLAlchemy repositories for the database persistence mode."""
