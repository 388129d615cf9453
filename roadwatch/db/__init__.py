"""
Database Module
-------------
Handles database connections, ORM models, and database operations.
Uses SQLAlchemy for PostgreSQL interaction and defines the schema for pothole reports.
"""
