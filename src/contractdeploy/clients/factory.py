"""Collaborator client factory.

Clients are selected by the DRY_RUN setting:
- dry run (default): simulated in-memory collaborators
- otherwise: HTTP clients for the custody platform, the hash signing
  service and the token registry
"""

import logging
from typing import Optional

from contractdeploy.clients.base import CustodyClient, RegistryClient, SigningClient
from contractdeploy.config import get_settings

logger = logging.getLogger(__name__)

# Singleton instances
_custody_client: Optional[CustodyClient] = None
_signing_client: Optional[SigningClient] = None
_registry_client: Optional[RegistryClient] = None


def get_custody_client() -> CustodyClient:
    """Get the configured custody platform client."""
    global _custody_client

    if _custody_client is not None:
        return _custody_client

    settings = get_settings()
    if settings.dry_run:
        from contractdeploy.clients.dryrun import DryRunCustodyClient
        _custody_client = DryRunCustodyClient()
    else:
        from contractdeploy.clients.taurus import TaurusCustodyClient
        if not settings.has_custody_credentials:
            logger.warning("Custody client credentials are not configured")
        _custody_client = TaurusCustodyClient.from_settings(settings)

    logger.info(f"Using {_custody_client.name} custody client")
    return _custody_client


def get_signing_client() -> SigningClient:
    """Get the configured hash signing client."""
    global _signing_client

    if _signing_client is not None:
        return _signing_client

    settings = get_settings()
    if settings.dry_run:
        from contractdeploy.clients.dryrun import DryRunSigningClient
        _signing_client = DryRunSigningClient()
    else:
        from contractdeploy.clients.hash_service import HashSigningClient
        _signing_client = HashSigningClient.from_settings(settings)

    return _signing_client


def get_registry_client() -> RegistryClient:
    """Get the configured token registry client."""
    global _registry_client

    if _registry_client is not None:
        return _registry_client

    settings = get_settings()
    if settings.dry_run:
        from contractdeploy.clients.dryrun import DryRunRegistryClient
        _registry_client = DryRunRegistryClient()
    else:
        from contractdeploy.clients.token_registry import TokenRegistryClient
        _registry_client = TokenRegistryClient.from_settings(settings)

    return _registry_client


def reset_clients() -> None:
    """Reset client instances (useful for testing)."""
    global _custody_client, _signing_client, _registry_client
    _custody_client = None
    _signing_client = None
    _registry_client = None


async def get_clients_info() -> dict:
    """Report which clients are active and whether they respond."""
    custody = get_custody_client()
    signing = get_signing_client()
    registry = get_registry_client()
    return {
        "custody": {"name": custody.name, "healthy": await custody.health_check()},
        "signing": {"name": signing.name, "healthy": await signing.health_check()},
        "registry": {"name": registry.name, "healthy": await registry.health_check()},
    }
