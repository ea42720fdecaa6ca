"""Smart contract deployment saga endpoints."""

import logging
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Query, status
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from contractdeploy.errors import ValidationError
from contractdeploy.records.database import get_db
from contractdeploy.records.models import DeploymentRecord, DeploymentState
from contractdeploy.saga.orchestrator import create_orchestrator

logger = logging.getLogger(__name__)

router = APIRouter()


class CamelModel(BaseModel):
    """Base model that reads and writes camelCase JSON."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class DeploymentRequest(CamelModel):
    """Request to deploy a smart contract."""

    contract_bytecode: str = Field(..., description="Compiled contract bytecode")
    contract_name: str = Field(..., max_length=255, description="Contract name")
    constructor_args: Optional[str] = Field(None, description="Encoded constructor arguments")
    network: Optional[str] = Field(None, max_length=50, description="Target network")
    requester_id: Optional[str] = Field(None, max_length=255, description="Requesting user")


class DeploymentResponse(CamelModel):
    """Deployment saga state as exposed to callers."""

    request_id: Optional[str] = None
    state: DeploymentState
    contract_name: Optional[str] = None
    network: Optional[str] = None
    transaction_hash: Optional[str] = None
    contract_address: Optional[str] = None
    whitelist_id: Optional[str] = None
    error_message: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @classmethod
    def from_record(cls, record: DeploymentRecord) -> "DeploymentResponse":
        return cls(
            request_id=record.request_id,
            state=record.state,
            contract_name=record.contract_name,
            network=record.network,
            transaction_hash=record.transaction_hash,
            contract_address=record.contract_address,
            whitelist_id=record.whitelist_id,
            error_message=record.error_message,
            created_at=record.created_at,
            updated_at=record.updated_at,
        )


class DeploymentListResponse(CamelModel):
    """Page of deployments, newest first."""

    deployments: list[DeploymentResponse]
    count: int


@router.post(
    "/deploy",
    response_model=DeploymentResponse,
    response_model_by_alias=True,
    status_code=status.HTTP_201_CREATED,
)
async def deploy_contract(request: DeploymentRequest):
    """Start a deployment and submit it to the custody platform."""
    logger.info(f"Received deployment request for contract {request.contract_name}")

    async with get_db() as session:
        orchestrator = create_orchestrator(session)
        record = await orchestrator.initiate_deployment(
            contract_name=request.contract_name,
            bytecode=request.contract_bytecode,
            constructor_args=request.constructor_args,
            network=request.network,
            requester_id=request.requester_id,
        )
        return DeploymentResponse.from_record(record)


@router.post("/{request_id}/approve", response_model=DeploymentResponse, response_model_by_alias=True)
async def approve_deployment(request_id: str):
    """Sign and approve a pending deployment request."""
    async with get_db() as session:
        orchestrator = create_orchestrator(session)
        record = await orchestrator.approve_deployment(request_id)
        return DeploymentResponse.from_record(record)


@router.post("/{request_id}/whitelist", response_model=DeploymentResponse, response_model_by_alias=True)
async def whitelist_contract(request_id: str):
    """Approve the whitelist entry of a deployed contract and register the token."""
    async with get_db() as session:
        orchestrator = create_orchestrator(session)
        record = await orchestrator.whitelist_contract(request_id)
        return DeploymentResponse.from_record(record)


@router.get("/{request_id}/status", response_model=DeploymentResponse, response_model_by_alias=True)
async def deployment_status(request_id: str):
    """Get the current state of a deployment."""
    async with get_db() as session:
        orchestrator = create_orchestrator(session)
        record = await orchestrator.get_deployment_status(request_id)
        return DeploymentResponse.from_record(record)


@router.post("/{request_id}/cancel", response_model=DeploymentResponse, response_model_by_alias=True)
async def cancel_deployment(request_id: str):
    """Cancel a deployment that is not confirmed on-chain yet."""
    async with get_db() as session:
        orchestrator = create_orchestrator(session)
        record = await orchestrator.cancel_deployment(request_id)
        return DeploymentResponse.from_record(record)


@router.get("", response_model=DeploymentListResponse, response_model_by_alias=True)
async def list_deployments(
    limit: int = Query(50, ge=1, le=500),
    offset: int = Query(0, ge=0),
    state: Optional[str] = Query(None, description="Filter by saga state"),
):
    """List deployments, newest first."""
    state_filter = None
    if state:
        try:
            state_filter = DeploymentState(state.upper())
        except ValueError:
            raise ValidationError(f"Unknown deployment state: {state}")

    async with get_db() as session:
        orchestrator = create_orchestrator(session)
        records = await orchestrator.list_deployments(
            limit=limit, offset=offset, state=state_filter
        )
        items = [DeploymentResponse.from_record(r) for r in records]
        return DeploymentListResponse(deployments=items, count=len(items))
