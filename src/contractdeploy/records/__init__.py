"""Records module for persisted deployment sagas."""

from contractdeploy.records.database import get_db, init_db
from contractdeploy.records.models import (
    DeploymentEvent,
    DeploymentRecord,
    DeploymentState,
)
from contractdeploy.records.repository import DeploymentRepository

__all__ = [
    # Models
    "DeploymentRecord",
    # Enums
    "DeploymentEvent",
    "DeploymentState",
    # Database
    "get_db",
    "init_db",
    "DeploymentRepository",
]
