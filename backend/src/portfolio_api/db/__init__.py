from .database import Base, Database, get_db, utcnow

__all__ = ["Base", "Database", "get_db", "utcnow"]
