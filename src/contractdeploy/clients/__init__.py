"""External collaborator clients used by the deployment saga."""

from contractdeploy.clients.base import (
    CustodyClient,
    RegistryClient,
    RequestDetails,
    SigningClient,
    WhitelistDetails,
)
from contractdeploy.clients.factory import (
    get_custody_client,
    get_registry_client,
    get_signing_client,
    reset_clients,
)

__all__ = [
    "CustodyClient",
    "SigningClient",
    "RegistryClient",
    "RequestDetails",
    "WhitelistDetails",
    "get_custody_client",
    "get_signing_client",
    "get_registry_client",
    "reset_clients",
]
