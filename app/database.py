"""
Database configuration.
Exposes the declarative Base and session factory from the database manager.
"""

from app.core.database_manager import Base as _Base
from app.core.database_manager import db_manager

Base = _Base

engine = db_manager.engine
async_session_maker = db_manager.session_factory
