"""Taurus Protect custody platform client.

Requests are authenticated with a bearer token obtained from the
client-credentials endpoint. Request and whitelist lookups use the
``?ids=`` filter and read the first entry of the returned list.
"""

import logging
from typing import Optional

from contractdeploy.clients.base import CustodyClient, RequestDetails, WhitelistDetails
from contractdeploy.clients.http import HttpCollaborator, as_text
from contractdeploy.config import Settings
from contractdeploy.errors import AuthenticationError, ExternalServiceError

logger = logging.getLogger(__name__)


class TaurusCustodyClient(HttpCollaborator, CustodyClient):
    """Custody client for the Taurus Protect REST API."""

    service_name = "custody platform"

    def __init__(
        self,
        base_url: str,
        client_id: str,
        client_secret: str,
        auth_endpoint: str = "/v1/authentication/token",
        deploy_endpoint: str = "/v1/requests/contracts/deploy",
        request_endpoint: str = "/v1/requests",
        approve_endpoint: str = "/v1/requests/approve",
        whitelist_endpoint: str = "/v1/whitelists/contracts",
        whitelist_approve_endpoint: str = "/v1/whitelists/contracts/approve",
        timeout: float = 30.0,
    ):
        super().__init__(base_url, timeout=timeout)
        self.client_id = client_id
        self.client_secret = client_secret
        self.auth_endpoint = auth_endpoint
        self.deploy_endpoint = deploy_endpoint
        self.request_endpoint = request_endpoint
        self.approve_endpoint = approve_endpoint
        self.whitelist_endpoint = whitelist_endpoint
        self.whitelist_approve_endpoint = whitelist_approve_endpoint

    @classmethod
    def from_settings(cls, settings: Settings) -> "TaurusCustodyClient":
        return cls(
            base_url=settings.custody_api_base_url,
            client_id=settings.custody_client_id,
            client_secret=settings.custody_client_secret,
            auth_endpoint=settings.custody_auth_endpoint,
            deploy_endpoint=settings.custody_deploy_endpoint,
            request_endpoint=settings.custody_request_endpoint,
            approve_endpoint=settings.custody_approve_endpoint,
            whitelist_endpoint=settings.custody_whitelist_endpoint,
            whitelist_approve_endpoint=settings.custody_whitelist_approve_endpoint,
            timeout=settings.http_timeout,
        )

    @property
    def name(self) -> str:
        return "taurus"

    async def authenticate(self) -> str:
        logger.info("Getting authentication token from custody platform")
        data = await self._request(
            "POST",
            self.auth_endpoint,
            json_body={"client_id": self.client_id, "client_secret": self.client_secret},
            error_class=AuthenticationError,
        )
        token = as_text(data.get("access_token"))
        if not token:
            raise AuthenticationError(
                "custody platform returned no access token", service=self.service_name
            )
        return token

    async def request_deployment(
        self,
        token: str,
        bytecode: str,
        name: str,
        constructor_args: Optional[str] = None,
    ) -> str:
        logger.info(f"Sending deployment request for contract {name}")
        body = {"bytecode": bytecode, "name": name}
        if constructor_args:
            body["constructor_args"] = constructor_args

        data = await self._request("POST", self.deploy_endpoint, token=token, json_body=body)
        request_id = self._require(data, "request_id", "request_id")
        logger.info(f"Deployment request accepted, request ID {request_id}")
        return request_id

    async def get_request_details(self, token: str, request_id: str) -> RequestDetails:
        logger.info(f"Getting request details for request ID {request_id}")
        data = await self._request(
            "GET", self.request_endpoint, token=token, params={"ids": request_id}
        )
        node = self._first(data, "requests", f"request {request_id}")

        return RequestDetails(
            hash=as_text(node.get("hash")),
            metadata=as_text(node.get("metadata")),
            status=as_text(node.get("status")),
            contract_address=as_text(node.get("contract_address")) or None,
            transaction_hash=as_text(node.get("transaction_hash")) or None,
            whitelist_id=as_text(node.get("whitelist_id")) or None,
        )

    async def approve(self, token: str, request_id: str, signature: str) -> str:
        logger.info(f"Approving deployment request {request_id}")
        data = await self._request(
            "POST",
            self.approve_endpoint,
            token=token,
            json_body={"request_id": request_id, "signature": signature},
        )
        return as_text(data.get("signatures"))

    async def get_whitelist_details(self, token: str, whitelist_id: str) -> WhitelistDetails:
        logger.info(f"Getting whitelist approval details for whitelist ID {whitelist_id}")
        data = await self._request(
            "GET", self.whitelist_endpoint, token=token, params={"ids": whitelist_id}
        )
        node = self._first(data, "whitelists", f"whitelist {whitelist_id}")
        return WhitelistDetails(
            hash=as_text(node.get("hash")),
            metadata=as_text(node.get("metadata")),
        )

    async def approve_whitelist(self, token: str, whitelist_id: str, signature: str) -> str:
        logger.info(f"Approving whitelist {whitelist_id}")
        data = await self._request(
            "POST",
            self.whitelist_approve_endpoint,
            token=token,
            json_body={"whitelist_id": whitelist_id, "signature": signature},
        )
        return as_text(data.get("signatures"))

    async def health_check(self) -> bool:
        if not (self.client_id and self.client_secret):
            return False
        try:
            await self.authenticate()
            return True
        except ExternalServiceError as e:
            logger.warning(f"Custody platform health check failed: {e}")
            return False

    def _first(self, data: dict, key: str, what: str) -> dict:
        items = data.get(key)
        if not isinstance(items, list) or not items or not isinstance(items[0], dict):
            raise ExternalServiceError(
                f"custody platform returned no {what}", service=self.service_name
            )
        return items[0]
