"""Base interfaces for the external collaborators of the deployment saga.

Approval flow on the custody platform:
1. Authenticate and submit a deployment request
2. Fetch the approval hash and metadata for the request
3. Have the hash signing service sign the hash
4. Approve the request with the signature
5. Poll the request until the contract is deployed

Whitelisting repeats steps 2-4 against the contract whitelist entry, after
which the token is registered with the token registry.

Every method raises ExternalServiceError (or a subclass) on failure. None
of these calls is idempotent; the saga never repeats one on its own.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional

DEPLOYED_STATUS = "deployed"


@dataclass
class RequestDetails:
    """Custody request details.

    Attributes:
        hash: Hash to be signed to approve the request
        metadata: Opaque metadata passed along to the signing service
        status: Request status reported by the custody platform
        contract_address: Deployed contract address, once deployed
        transaction_hash: Deployment transaction hash, once deployed
        whitelist_id: Whitelist entry created for the contract, once deployed
    """
    hash: str
    metadata: str
    status: str
    contract_address: Optional[str] = None
    transaction_hash: Optional[str] = None
    whitelist_id: Optional[str] = None

    @property
    def is_deployed(self) -> bool:
        return self.status.lower() == DEPLOYED_STATUS


@dataclass
class WhitelistDetails:
    """Whitelist entry approval details."""
    hash: str
    metadata: str


class CustodyClient(ABC):
    """Custody / approval platform that executes deployments."""

    @abstractmethod
    async def authenticate(self) -> str:
        """Obtain a short-lived bearer token.

        Raises:
            AuthenticationError: if the platform rejects the credentials
        """
        raise NotImplementedError()

    @abstractmethod
    async def request_deployment(
        self,
        token: str,
        bytecode: str,
        name: str,
        constructor_args: Optional[str] = None,
    ) -> str:
        """Submit a deployment request.

        Returns:
            Request ID assigned by the custody platform
        """
        raise NotImplementedError()

    @abstractmethod
    async def get_request_details(self, token: str, request_id: str) -> RequestDetails:
        """Get hash, metadata and status of a request."""
        raise NotImplementedError()

    @abstractmethod
    async def approve(self, token: str, request_id: str, signature: str) -> str:
        """Approve a request with a signed hash.

        Returns:
            Acknowledgement returned by the platform
        """
        raise NotImplementedError()

    @abstractmethod
    async def get_whitelist_details(self, token: str, whitelist_id: str) -> WhitelistDetails:
        """Get hash and metadata of a whitelist entry."""
        raise NotImplementedError()

    @abstractmethod
    async def approve_whitelist(self, token: str, whitelist_id: str, signature: str) -> str:
        """Approve a whitelist entry with a signed hash."""
        raise NotImplementedError()

    async def health_check(self) -> bool:
        return True

    @property
    @abstractmethod
    def name(self) -> str:
        raise NotImplementedError()


class SigningClient(ABC):
    """Hash signing service. The signature scheme is opaque to the saga."""

    @abstractmethod
    async def sign(self, hash_value: str, metadata: str) -> str:
        """Sign a hash.

        Returns:
            Signature to pass back to the custody platform
        """
        raise NotImplementedError()

    async def health_check(self) -> bool:
        return True

    @property
    @abstractmethod
    def name(self) -> str:
        raise NotImplementedError()


class RegistryClient(ABC):
    """Token registry that records deployed assets for discovery."""

    @abstractmethod
    async def register(self, contract_address: str, metadata: str) -> bool:
        """Register a deployed contract.

        Returns:
            True if registered, False if the registry declined
        """
        raise NotImplementedError()

    async def health_check(self) -> bool:
        return True

    @property
    @abstractmethod
    def name(self) -> str:
        raise NotImplementedError()
