"""
Database layer: SQLAlchemy models, repositories and migrations.
"""
