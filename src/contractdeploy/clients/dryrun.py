"""Dry-run collaborators for local development (no external calls)."""

import hashlib
import logging
import secrets
from typing import Optional

from contractdeploy.clients.base import (
    DEPLOYED_STATUS,
    CustodyClient,
    RegistryClient,
    RequestDetails,
    SigningClient,
    WhitelistDetails,
)
from contractdeploy.errors import ExternalServiceError

logger = logging.getLogger(__name__)


def _digest(*parts: str) -> str:
    return hashlib.sha256(":".join(parts).encode()).hexdigest()


class DryRunCustodyClient(CustodyClient):
    """Simulated custody platform.

    Requests are kept in memory. An approved request reports itself as
    deployed on the next lookup, with addresses derived from the request ID.
    """

    def __init__(self):
        self._requests: dict[str, dict] = {}
        self._whitelists: dict[str, str] = {}

    @property
    def name(self) -> str:
        return "dryrun"

    async def authenticate(self) -> str:
        return f"sim-token-{secrets.token_hex(8)}"

    async def request_deployment(
        self,
        token: str,
        bytecode: str,
        name: str,
        constructor_args: Optional[str] = None,
    ) -> str:
        request_id = f"DEP-{secrets.token_hex(6).upper()}"
        self._requests[request_id] = {
            "name": name,
            "hash": "0x" + _digest(request_id, bytecode, constructor_args or ""),
            "approved": False,
        }
        logger.info(f"[dry-run] deployment request {request_id} created for {name}")
        return request_id

    async def get_request_details(self, token: str, request_id: str) -> RequestDetails:
        request = self._requests.get(request_id)
        if request is None:
            raise ExternalServiceError(f"Unknown request {request_id}", service="dryrun")

        if not request["approved"]:
            return RequestDetails(
                hash=request["hash"],
                metadata=f'{{"name":"{request["name"]}"}}',
                status="pending_approval",
            )

        whitelist_id = f"WL-{request_id[4:]}"
        self._whitelists.setdefault(whitelist_id, "0x" + _digest("whitelist", request_id))
        return RequestDetails(
            hash=request["hash"],
            metadata=f'{{"name":"{request["name"]}"}}',
            status=DEPLOYED_STATUS,
            contract_address="0x" + _digest("address", request_id)[:40],
            transaction_hash="0x" + _digest("tx", request_id),
            whitelist_id=whitelist_id,
        )

    async def approve(self, token: str, request_id: str, signature: str) -> str:
        request = self._requests.get(request_id)
        if request is None:
            raise ExternalServiceError(f"Unknown request {request_id}", service="dryrun")
        request["approved"] = True
        return f'["{signature}"]'

    async def get_whitelist_details(self, token: str, whitelist_id: str) -> WhitelistDetails:
        whitelist_hash = self._whitelists.get(whitelist_id)
        if whitelist_hash is None:
            raise ExternalServiceError(f"Unknown whitelist {whitelist_id}", service="dryrun")
        return WhitelistDetails(hash=whitelist_hash, metadata="{}")

    async def approve_whitelist(self, token: str, whitelist_id: str, signature: str) -> str:
        if whitelist_id not in self._whitelists:
            raise ExternalServiceError(f"Unknown whitelist {whitelist_id}", service="dryrun")
        return f'["{signature}"]'


class DryRunSigningClient(SigningClient):
    """Returns a deterministic fake signature."""

    @property
    def name(self) -> str:
        return "dryrun"

    async def sign(self, hash_value: str, metadata: str) -> str:
        return "sim-sig-" + _digest(hash_value, metadata)[:32]


class DryRunRegistryClient(RegistryClient):
    """Accepts every registration."""

    def __init__(self):
        self.registered: dict[str, str] = {}

    @property
    def name(self) -> str:
        return "dryrun"

    async def register(self, contract_address: str, metadata: str) -> bool:
        self.registered[contract_address] = metadata
        return True
