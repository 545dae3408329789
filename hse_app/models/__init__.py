"""
HSE Corrective Action Platform
Shared SQLAlchemy handle.

Every model module imports ``db`` from here; ``create_app`` binds it.
"""

from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()
