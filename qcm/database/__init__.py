"""
SQLAlchemy persistence for attempts.
"""

from qcm.database.init_db import (
    close_database,
    create_schema,
    get_engine,
    get_session_factory,
    initialize_database,
    initialize_from_settings,
)

__all__ = [
    "close_database",
    "create_schema",
    "get_engine",
    "get_session_factory",
    "initialize_database",
    "initialize_from_settings",
]
