"""Shared persistence layer: models, repositories, database and migrations."""
