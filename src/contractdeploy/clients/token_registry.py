"""Token registry client."""

import logging

from contractdeploy.clients.base import RegistryClient
from contractdeploy.clients.http import HttpCollaborator
from contractdeploy.config import Settings
from contractdeploy.errors import ExternalServiceError

logger = logging.getLogger(__name__)


class TokenRegistryClient(HttpCollaborator, RegistryClient):
    """Registers deployed contracts with the token registry."""

    service_name = "token registry"

    def __init__(
        self, base_url: str, register_endpoint: str = "/api/v1/tokens", timeout: float = 30.0
    ):
        super().__init__(base_url, timeout=timeout)
        self.register_endpoint = register_endpoint

    @classmethod
    def from_settings(cls, settings: Settings) -> "TokenRegistryClient":
        return cls(
            base_url=settings.token_registry_base_url,
            register_endpoint=settings.token_registry_register_endpoint,
            timeout=settings.http_timeout,
        )

    @property
    def name(self) -> str:
        return "token-registry"

    async def register(self, contract_address: str, metadata: str) -> bool:
        """Register a contract.

        A 2xx answer counts as registered unless the body explicitly says
        ``"registered": false``. A 4xx answer is a refusal; server and
        transport failures raise ExternalServiceError.
        """
        logger.info(f"Registering token for contract address {contract_address}")
        try:
            data = await self._request(
                "POST",
                self.register_endpoint,
                json_body={"contract_address": contract_address, "metadata": metadata},
            )
        except ExternalServiceError as e:
            if e.status is not None and 400 <= e.status < 500:
                logger.warning(f"Token registry refused {contract_address}: HTTP {e.status}")
                return False
            raise

        registered = data.get("registered", True) is not False
        if registered:
            logger.info(f"Token registered for {contract_address}")
        else:
            logger.warning(f"Token registry declined {contract_address}: {data.get('reason')}")
        return registered
