"""Database exceptions"""

class DatabaseError(Exception):
    """Base exception for database errors"""
    pass

class DatabaseSchemaError(DatabaseError):
    """Raised when the schema cannot be created or migrated"""
    pass
