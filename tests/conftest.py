"""Pytest configuration and fixtures."""

import os
from typing import AsyncGenerator
from unittest.mock import AsyncMock

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

# Set test environment
os.environ["ENVIRONMENT"] = "test"
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["DRY_RUN"] = "true"
os.environ["DEBUG"] = "false"
os.environ["DEPLOYMENT_POLL_INTERVAL"] = "0"

from contractdeploy.clients.base import (
    CustodyClient,
    RegistryClient,
    RequestDetails,
    SigningClient,
    WhitelistDetails,
)
from contractdeploy.clients.factory import reset_clients
from contractdeploy.records.models import Base
from contractdeploy.records.repository import DeploymentRepository
from contractdeploy.saga.orchestrator import SagaOrchestrator
from contractdeploy.utils.locks import clear_deployment_locks


@pytest.fixture(autouse=True)
def reset_global_state():
    """Start every test with fresh collaborator singletons and locks."""
    reset_clients()
    clear_deployment_locks()
    yield
    reset_clients()
    clear_deployment_locks()


@pytest_asyncio.fixture
async def db_engine():
    """Create in-memory database engine for testing."""
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        echo=False,
        poolclass=StaticPool,
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest_asyncio.fixture
async def session_factory(db_engine) -> async_sessionmaker[AsyncSession]:
    """Session factory bound to the test engine."""
    return async_sessionmaker(
        bind=db_engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )


@pytest_asyncio.fixture
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """Create database session for testing."""
    async with session_factory() as session:
        yield session


@pytest_asyncio.fixture
async def deployment_repo(db_session: AsyncSession) -> DeploymentRepository:
    """Create deployment repository for testing."""
    return DeploymentRepository(db_session)


@pytest.fixture
def custody():
    """Custody platform fake that answers the happy path."""
    client = AsyncMock(spec=CustodyClient)
    client.authenticate.return_value = "tok-1"
    client.request_deployment.return_value = "DEP-1"
    client.get_request_details.side_effect = [
        RequestDetails(hash="h1", metadata="{}", status="pending_approval"),
        RequestDetails(
            hash="h1",
            metadata="{}",
            status="deployed",
            contract_address="0xAA",
            transaction_hash="0xBB",
            whitelist_id="WL-1",
        ),
    ]
    client.approve.return_value = '["sig-h1"]'
    client.get_whitelist_details.return_value = WhitelistDetails(hash="wh1", metadata="{}")
    client.approve_whitelist.return_value = '["sig-wh1"]'
    return client


@pytest.fixture
def signer():
    """Signing service fake that prefixes the hash with ``sig-``."""
    client = AsyncMock(spec=SigningClient)
    client.sign.side_effect = lambda hash_value, metadata: f"sig-{hash_value}"
    return client


@pytest.fixture
def registry():
    """Token registry fake that accepts every registration."""
    client = AsyncMock(spec=RegistryClient)
    client.register.return_value = True
    return client


@pytest.fixture
def orchestrator(deployment_repo, custody, signer, registry) -> SagaOrchestrator:
    """Orchestrator wired to the fakes, checking deployment once after approval."""
    return SagaOrchestrator(
        repository=deployment_repo,
        custody=custody,
        signer=signer,
        registry=registry,
        poll_attempts=1,
        poll_interval=0,
        lock_timeout=1.0,
    )
