"""
Delivery Workspace
SQLAlchemy database instance and model package.

Every model module imports ``db`` from here so a single metadata object
collects all tables for ``db.create_all()`` and Flask-Migrate.
"""

from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()
