"""
Lake Authority Licensing Portal
Shared SQLAlchemy handle for all domain models.

Usage:
    from portal.models import db
"""

from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()
