"""
Database Package
================

Exports key database components.
"""

from fleetwarden.db.models import (
    Base,
    EscalationModel,
    ObserverActionModel,
)
from fleetwarden.db.connection import init_db, get_session_maker, close_db
