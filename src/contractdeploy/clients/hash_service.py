"""Hash signing service client."""

import logging

from contractdeploy.clients.base import SigningClient
from contractdeploy.clients.http import HttpCollaborator
from contractdeploy.config import Settings

logger = logging.getLogger(__name__)


class HashSigningClient(HttpCollaborator, SigningClient):
    """Sends approval hashes to the hash signing service.

    The service holds the approver key; only the signature comes back.
    """

    service_name = "hash signing service"

    def __init__(self, base_url: str, sign_endpoint: str = "/api/v1/sign", timeout: float = 30.0):
        super().__init__(base_url, timeout=timeout)
        self.sign_endpoint = sign_endpoint

    @classmethod
    def from_settings(cls, settings: Settings) -> "HashSigningClient":
        return cls(
            base_url=settings.hash_service_base_url,
            sign_endpoint=settings.hash_service_sign_endpoint,
            timeout=settings.http_timeout,
        )

    @property
    def name(self) -> str:
        return "hash-service"

    async def sign(self, hash_value: str, metadata: str) -> str:
        logger.info("Sending hash to signing service")
        data = await self._request(
            "POST",
            self.sign_endpoint,
            json_body={"hash": hash_value, "metadata": metadata},
        )
        signed = self._require(data, "signed_hash", "signed_hash")
        logger.info("Received signed hash from signing service")
        return signed
