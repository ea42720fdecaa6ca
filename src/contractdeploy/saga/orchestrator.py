"""Deployment saga orchestrator.

Drives one deployment through the custody platform approval flow:

    initiate   INITIAL -> AUTHENTICATED -> DEPLOY_REQUESTED
    approve    -> APPROVAL_PENDING -> HASH_RETRIEVED -> HASH_SIGNED
               -> DEPLOYMENT_APPROVED (-> DEPLOYED once confirmed)
    whitelist  -> WHITELIST_REQUESTED -> WHITELIST_HASH_RETRIEVED
               -> WHITELIST_HASH_SIGNED -> WHITELIST_APPROVED
               -> TOKEN_REGISTERED -> COMPLETED

The record is committed after every collaborator call and after every
transition. A failure part-way through moves the record to ERROR with the
error message stored, and DeploymentFailure is raised. There is no retry
and no compensation: ERROR and CANCELLED are final.
"""

import asyncio
import json
import logging
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from contractdeploy.clients.base import CustodyClient, RegistryClient, SigningClient
from contractdeploy.clients.factory import (
    get_custody_client,
    get_registry_client,
    get_signing_client,
)
from contractdeploy.config import get_settings
from contractdeploy.errors import (
    ConcurrentModificationError,
    DeploymentError,
    DeploymentFailure,
    ExternalServiceError,
    InvalidStateError,
    InvalidTransition,
    NotFoundError,
    PersistenceError,
    ValidationError,
)
from contractdeploy.records.models import DeploymentEvent, DeploymentRecord, DeploymentState
from contractdeploy.records.repository import DeploymentRepository
from contractdeploy.saga import transitions
from contractdeploy.utils.locks import DeploymentLock

logger = logging.getLogger(__name__)

S = DeploymentState
E = DeploymentEvent


class SagaOrchestrator:
    """Runs deployment saga operations against one database session."""

    def __init__(
        self,
        repository: DeploymentRepository,
        custody: CustodyClient,
        signer: SigningClient,
        registry: RegistryClient,
        poll_attempts: int = 1,
        poll_interval: float = 2.0,
        lock_timeout: Optional[float] = 30.0,
        reauthenticate: bool = False,
    ):
        self.repository = repository
        self.custody = custody
        self.signer = signer
        self.registry = registry
        self.poll_attempts = max(1, poll_attempts)
        self.poll_interval = poll_interval
        self.lock_timeout = lock_timeout
        self.reauthenticate = reauthenticate

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    async def initiate_deployment(
        self,
        contract_name: str,
        bytecode: str,
        constructor_args: Optional[str] = None,
        network: Optional[str] = None,
        requester_id: Optional[str] = None,
    ) -> DeploymentRecord:
        """Create a deployment and submit it to the custody platform.

        Returns:
            The record in DEPLOY_REQUESTED state with its request ID

        Raises:
            ValidationError: if the name or bytecode is blank
            DeploymentFailure: if any step failed (record is now in ERROR)
        """
        if not contract_name or not contract_name.strip():
            raise ValidationError("Contract name is required")
        if not bytecode or not bytecode.strip():
            raise ValidationError("Contract bytecode is required")

        logger.info(f"Initiating smart contract deployment for contract {contract_name}")
        record = await self.repository.create(
            contract_name=contract_name.strip(),
            contract_bytecode=bytecode.strip(),
            constructor_args=constructor_args,
            network=network,
            requester_id=requester_id,
        )
        deployment_id = record.id

        async with DeploymentLock(deployment_id, timeout=self.lock_timeout, operation="initiate"):
            try:
                token = await self.custody.authenticate()
                record.auth_token = token
                await self.repository.save(record)
                await self._fire(record, E.AUTHENTICATION_SUCCESS)

                request_id = await self.custody.request_deployment(
                    token,
                    record.contract_bytecode,
                    record.contract_name,
                    record.constructor_args,
                )
                record.request_id = request_id
                await self.repository.save(record)
                await self._fire(record, E.DEPLOYMENT_REQUEST_SUCCESS)
            except Exception as e:
                raise await self._fail(
                    record, "Failed to initiate deployment", e, deployment_id
                ) from e

        logger.info(f"Deployment {deployment_id} submitted as request {record.request_id}")
        return record

    async def approve_deployment(self, request_id: str) -> DeploymentRecord:
        """Fetch, sign and approve the deployment hash, then check for deployment.

        Raises:
            NotFoundError: unknown request ID
            InvalidStateError: the saga is not waiting for approval
            DeploymentFailure: if any step failed (record is now in ERROR)
        """
        logger.info(f"Approving deployment for request ID {request_id}")

        async with DeploymentLock(request_id, timeout=self.lock_timeout, operation="approve"):
            record = await self._load(request_id)
            self._require(record, E.REQUEST_APPROVAL, "approve")

            try:
                token = await self._token(record)
                await self._fire(record, E.REQUEST_APPROVAL)

                details = await self.custody.get_request_details(token, request_id)
                if not details.hash:
                    raise ExternalServiceError(
                        f"No approval hash returned for request {request_id}",
                        service="custody platform",
                    )
                record.set_artifact("hash_value", details.hash)
                await self.repository.save(record)
                await self._fire(record, E.HASH_FETCHED)

                signed_hash = await self.signer.sign(details.hash, details.metadata)
                record.set_artifact("signed_hash", signed_hash)
                await self.repository.save(record)
                await self._fire(record, E.HASH_SIGNED)

                await self.custody.approve(token, request_id, signed_hash)
                await self._fire(record, E.DEPLOYMENT_APPROVED)

                await self._wait_for_deployment(record, token)
            except Exception as e:
                raise await self._fail(
                    record, "Failed to approve deployment", e, request_id
                ) from e

        return record

    async def whitelist_contract(self, request_id: str) -> DeploymentRecord:
        """Approve the contract whitelist entry and register the token.

        If the token registry declines, the saga stays in WHITELIST_APPROVED
        and calling this again retries only the registration.

        Raises:
            NotFoundError: unknown request ID
            InvalidStateError: the contract is not deployed yet, or the
                custody platform has no whitelist entry for it
            DeploymentFailure: if any step failed (record is now in ERROR)
        """
        logger.info(f"Whitelisting contract for request ID {request_id}")

        async with DeploymentLock(request_id, timeout=self.lock_timeout, operation="whitelist"):
            record = await self._load(request_id)

            if record.state == S.WHITELIST_APPROVED:
                logger.info(f"Retrying token registration for request {request_id}")
                try:
                    await self._register_token(record)
                except Exception as e:
                    raise await self._fail(
                        record, "Failed to register token", e, request_id
                    ) from e
                return record

            if record.state == S.DEPLOYMENT_APPROVED:
                await self._poll_quietly(record)

            self._require(record, E.REQUEST_WHITELIST, "whitelist")
            if not record.whitelist_id:
                try:
                    whitelist_id = await self._fetch_whitelist_id(record)
                except Exception as e:
                    raise await self._fail(
                        record, "Failed to read whitelist entry", e, request_id
                    ) from e
                if not whitelist_id:
                    raise InvalidStateError(
                        f"No whitelist entry exists yet for request {request_id}",
                        request_id=request_id,
                        state=record.current_state,
                    )

            try:
                token = await self._token(record)
                await self._fire(record, E.REQUEST_WHITELIST)

                whitelist_id = record.whitelist_id
                details = await self.custody.get_whitelist_details(token, whitelist_id)
                if not details.hash:
                    raise ExternalServiceError(
                        f"No approval hash returned for whitelist {whitelist_id}",
                        service="custody platform",
                    )
                record.set_artifact("whitelist_hash", details.hash)
                await self.repository.save(record)
                await self._fire(record, E.WHITELIST_HASH_FETCHED)

                signed_hash = await self.signer.sign(details.hash, details.metadata)
                record.set_artifact("signed_whitelist_hash", signed_hash)
                await self.repository.save(record)
                await self._fire(record, E.WHITELIST_HASH_SIGNED)

                await self.custody.approve_whitelist(token, whitelist_id, signed_hash)
                await self._fire(record, E.WHITELIST_APPROVED)

                await self._register_token(record)
            except Exception as e:
                raise await self._fail(
                    record, "Failed to whitelist contract", e, request_id
                ) from e

        return record

    async def get_deployment_status(self, request_id: str) -> DeploymentRecord:
        """Read a deployment, checking for on-chain confirmation if approved.

        Only a record in DEPLOYMENT_APPROVED causes a collaborator call.
        A failed check is logged and leaves the record as it was.
        """
        logger.info(f"Getting deployment status for request ID {request_id}")
        record = await self._load(request_id)

        if record.state != S.DEPLOYMENT_APPROVED:
            return record

        lock = DeploymentLock(request_id, timeout=self.lock_timeout, operation="status")
        if lock.is_busy():
            # Another operation is driving this saga; report what is stored
            return record

        async with lock:
            await self.repository.refresh(record)
            if record.state == S.DEPLOYMENT_APPROVED:
                await self._poll_quietly(record)
        return record

    async def cancel_deployment(self, request_id: str) -> DeploymentRecord:
        """Withdraw a deployment that is not confirmed on-chain yet.

        Raises:
            NotFoundError: unknown request ID
            InvalidStateError: the contract is already deployed or the saga ended
        """
        logger.info(f"Cancelling deployment for request ID {request_id}")

        async with DeploymentLock(request_id, timeout=self.lock_timeout, operation="cancel"):
            record = await self._load(request_id)
            self._require(record, E.CANCEL_REQUESTED, "cancel")
            await self._fire(record, E.CANCEL_REQUESTED)

        logger.info(f"Deployment {request_id} cancelled")
        return record

    async def list_deployments(
        self,
        limit: int = 50,
        offset: int = 0,
        state: Optional[DeploymentState] = None,
    ) -> list[DeploymentRecord]:
        return await self.repository.list_recent(limit=limit, offset=offset, state=state)

    # ------------------------------------------------------------------
    # Steps
    # ------------------------------------------------------------------

    async def _fire(self, record: DeploymentRecord, event: DeploymentEvent) -> DeploymentState:
        """Apply an event through the transition table and persist the new state."""
        source = record.state
        target, ok = transitions.apply(source, event)
        if not ok:
            raise InvalidTransition(source.value, event.value)

        record.current_state = target.value
        await self.repository.save(record)
        logger.info(
            f"Deployment {record.request_id or record.id}: "
            f"{source.value} -> {target.value} ({event.value})"
        )
        return target

    async def _token(self, record: DeploymentRecord) -> str:
        if self.reauthenticate or not record.auth_token:
            record.auth_token = await self.custody.authenticate()
            await self.repository.save(record)
        return record.auth_token

    async def _wait_for_deployment(self, record: DeploymentRecord, token: str) -> bool:
        for attempt in range(self.poll_attempts):
            if attempt:
                await asyncio.sleep(self.poll_interval)
            if await self._check_deployment(record, token):
                return True
        logger.info(f"Request {record.request_id} approved, deployment not confirmed yet")
        return False

    async def _check_deployment(self, record: DeploymentRecord, token: str) -> bool:
        """Ask the custody platform whether the contract is deployed.

        On confirmation, stores the deployment artifacts and moves the
        record to DEPLOYED.
        """
        details = await self.custody.get_request_details(token, record.request_id)
        if not details.is_deployed:
            logger.info(f"Request {record.request_id} status: {details.status or 'unknown'}")
            return False

        if details.contract_address:
            record.set_artifact("contract_address", details.contract_address)
        if details.transaction_hash:
            record.set_artifact("transaction_hash", details.transaction_hash)
        if details.whitelist_id:
            record.set_artifact("whitelist_id", details.whitelist_id)
        await self.repository.save(record)

        await self._fire(record, E.DEPLOYMENT_COMPLETED)
        return True

    async def _poll_quietly(self, record: DeploymentRecord) -> None:
        """Check for deployment without failing the saga on error."""
        request_id = record.request_id
        try:
            await self._check_deployment(record, record.auth_token)
        except Exception as e:
            logger.exception(f"Error checking deployment status for {request_id}: {e}")
            # Drop any half-applied artifacts and reload what is stored
            await self.repository.rollback()
            await self.repository.refresh(record)

    async def _fetch_whitelist_id(self, record: DeploymentRecord) -> Optional[str]:
        """Read the whitelist ID of a deployed contract from the custody platform."""
        details = await self.custody.get_request_details(record.auth_token, record.request_id)
        if not details.whitelist_id:
            return None
        record.set_artifact("whitelist_id", details.whitelist_id)
        await self.repository.save(record)
        return details.whitelist_id

    async def _register_token(self, record: DeploymentRecord) -> bool:
        if not record.contract_address:
            raise ExternalServiceError(
                f"No contract address known for request {record.request_id}",
                service="custody platform",
            )

        metadata = {"name": record.contract_name}
        if record.network:
            metadata["network"] = record.network
        registered = await self.registry.register(record.contract_address, json.dumps(metadata))
        if not registered:
            logger.warning(
                f"Token registration declined for {record.request_id}; "
                f"deployment stays in {record.current_state}"
            )
            return False

        await self._fire(record, E.TOKEN_REGISTERED)
        await self._fire(record, E.REGISTER_TOKEN)
        return True

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _load(self, request_id: str) -> DeploymentRecord:
        record = await self.repository.get_by_request_id(request_id)
        if record is None:
            logger.error(f"Deployment not found for request ID {request_id}")
            raise NotFoundError(
                f"Deployment not found for request ID: {request_id}", request_id=request_id
            )
        return record

    def _require(self, record: DeploymentRecord, event: DeploymentEvent, operation: str) -> None:
        """Reject the operation before any mutation if the state does not allow it."""
        if not transitions.can_fire(record.state, event):
            logger.error(f"Cannot {operation} deployment {record.request_id} in state {record.current_state}")
            raise InvalidStateError(
                f"Cannot {operation} deployment in state {record.current_state}",
                request_id=record.request_id,
                state=record.current_state,
            )

    async def _fail(
        self,
        record: DeploymentRecord,
        context: str,
        exc: Exception,
        reference: str,
    ) -> DeploymentError:
        """Move the record to ERROR and build the error to raise.

        A concurrent modification is re-raised untouched since the other
        writer owns the record now.
        """
        if isinstance(exc, ConcurrentModificationError):
            logger.warning(f"{context}: deployment {reference} modified concurrently")
            raise exc

        message = f"{context}: {exc}"
        logger.error(f"{message} (deployment {reference})")

        request_id = None
        state = None
        try:
            if isinstance(exc, (PersistenceError, SQLAlchemyError)):
                # The failed write left the instance expired or half-applied
                await self.repository.rollback()
                await self.repository.refresh(record)
            if not record.is_terminal:
                record.error_message = message
                record.current_state = transitions.next_state(
                    record.state, E.ERROR_OCCURRED
                ).value
                await self.repository.save(record)
            request_id = record.request_id
            state = record.current_state
        except (PersistenceError, SQLAlchemyError) as persist_error:
            logger.error(f"Could not record failure of deployment {reference}: {persist_error}")

        return DeploymentFailure(message, request_id=request_id, state=state)


def create_orchestrator(
    session: AsyncSession,
    custody: Optional[CustodyClient] = None,
    signer: Optional[SigningClient] = None,
    registry: Optional[RegistryClient] = None,
) -> SagaOrchestrator:
    """Build an orchestrator from settings and the configured clients."""
    settings = get_settings()
    return SagaOrchestrator(
        repository=DeploymentRepository(session),
        custody=custody or get_custody_client(),
        signer=signer or get_signing_client(),
        registry=registry or get_registry_client(),
        poll_attempts=settings.deployment_poll_attempts,
        poll_interval=settings.deployment_poll_interval,
        lock_timeout=settings.lock_timeout,
        reauthenticate=settings.custody_reauthenticate,
    )
