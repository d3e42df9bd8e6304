"""Database layer: SQLAlchemy base, engine, models and advisory locks"""
