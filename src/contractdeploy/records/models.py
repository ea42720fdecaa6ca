"""SQLAlchemy models for deployment records."""

import uuid
from datetime import datetime
from enum import Enum
from typing import Optional

from sqlalchemy import DateTime, Index, Integer, String, Text
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    """Base class for all models."""

    pass


class DeploymentState(str, Enum):
    """State of a deployment saga."""

    INITIAL = "INITIAL"
    AUTHENTICATED = "AUTHENTICATED"
    DEPLOY_REQUESTED = "DEPLOY_REQUESTED"
    APPROVAL_PENDING = "APPROVAL_PENDING"
    HASH_RETRIEVED = "HASH_RETRIEVED"
    HASH_SIGNED = "HASH_SIGNED"
    DEPLOYMENT_APPROVED = "DEPLOYMENT_APPROVED"
    DEPLOYED = "DEPLOYED"
    WHITELIST_REQUESTED = "WHITELIST_REQUESTED"
    WHITELIST_HASH_RETRIEVED = "WHITELIST_HASH_RETRIEVED"
    WHITELIST_HASH_SIGNED = "WHITELIST_HASH_SIGNED"
    WHITELIST_APPROVED = "WHITELIST_APPROVED"
    TOKEN_REGISTERED = "TOKEN_REGISTERED"
    COMPLETED = "COMPLETED"
    ERROR = "ERROR"
    CANCELLED = "CANCELLED"  # Withdrawn by the requester, not a failure


class DeploymentEvent(str, Enum):
    """Event that moves a deployment saga between states."""

    AUTHENTICATION_SUCCESS = "AUTHENTICATION_SUCCESS"
    DEPLOYMENT_REQUEST_SUCCESS = "DEPLOYMENT_REQUEST_SUCCESS"
    REQUEST_APPROVAL = "REQUEST_APPROVAL"
    HASH_FETCHED = "HASH_FETCHED"
    HASH_SIGNED = "HASH_SIGNED"
    DEPLOYMENT_APPROVED = "DEPLOYMENT_APPROVED"
    DEPLOYMENT_COMPLETED = "DEPLOYMENT_COMPLETED"
    REQUEST_WHITELIST = "REQUEST_WHITELIST"
    WHITELIST_HASH_FETCHED = "WHITELIST_HASH_FETCHED"
    WHITELIST_HASH_SIGNED = "WHITELIST_HASH_SIGNED"
    WHITELIST_APPROVED = "WHITELIST_APPROVED"
    TOKEN_REGISTERED = "TOKEN_REGISTERED"
    REGISTER_TOKEN = "REGISTER_TOKEN"
    ERROR_OCCURRED = "ERROR_OCCURRED"
    CANCEL_REQUESTED = "CANCEL_REQUESTED"


# Fields written once by the saga and never cleared afterwards
ARTIFACT_FIELDS = (
    "hash_value",
    "signed_hash",
    "transaction_hash",
    "contract_address",
    "whitelist_id",
    "whitelist_hash",
    "signed_whitelist_hash",
)


def _new_id() -> str:
    return str(uuid.uuid4())


class DeploymentRecord(Base):
    """One smart contract deployment saga.

    The row is never deleted; failed and cancelled sagas stay in place
    for audit.
    """

    __tablename__ = "smart_contract_deployments"
    __table_args__ = (Index("ix_deployments_state", "current_state"),)

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    request_id: Mapped[Optional[str]] = mapped_column(
        String(255), unique=True, nullable=True, index=True
    )
    auth_token: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Inputs, immutable after creation
    contract_name: Mapped[str] = mapped_column(String(255), nullable=False)
    contract_bytecode: Mapped[str] = mapped_column(Text, nullable=False)
    constructor_args: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    network: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    requester_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    # Deployment approval artifacts
    hash_value: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    signed_hash: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    transaction_hash: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    contract_address: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    # Whitelist artifacts
    whitelist_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    whitelist_hash: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    signed_whitelist_hash: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    current_state: Mapped[str] = mapped_column(
        String(40), default=DeploymentState.INITIAL.value, nullable=False
    )
    error_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    version: Mapped[int] = mapped_column(Integer, nullable=False)

    created_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    updated_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    __mapper_args__ = {"version_id_col": version}

    @property
    def state(self) -> DeploymentState:
        """Current state as an enum member."""
        return DeploymentState(self.current_state)

    @property
    def is_terminal(self) -> bool:
        return self.state in (
            DeploymentState.COMPLETED,
            DeploymentState.ERROR,
            DeploymentState.CANCELLED,
        )

    def set_artifact(self, name: str, value: Optional[str]) -> None:
        """Set an artifact field once.

        Writing the value already stored is a no-op. Raises ValueError when
        the field already holds a different value.
        """
        if name not in ARTIFACT_FIELDS:
            raise ValueError(f"{name} is not an artifact field")
        current = getattr(self, name)
        if current is not None and current != value:
            raise ValueError(f"{name} is already set for deployment {self.id}")
        setattr(self, name, value)

    def to_dict(self) -> dict:
        """Serialize the fields exposed to API callers."""
        return {
            "id": self.id,
            "request_id": self.request_id,
            "state": self.current_state,
            "contract_name": self.contract_name,
            "network": self.network,
            "requester_id": self.requester_id,
            "transaction_hash": self.transaction_hash,
            "contract_address": self.contract_address,
            "whitelist_id": self.whitelist_id,
            "error_message": self.error_message,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }

    def __repr__(self) -> str:
        return (
            f"DeploymentRecord(id={self.id}, request_id={self.request_id}, "
            f"state={self.current_state})"
        )
