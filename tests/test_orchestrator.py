"""Tests for the deployment saga orchestrator."""

import asyncio
import json

import pytest

from contractdeploy.clients.base import RequestDetails
from contractdeploy.errors import (
    AuthenticationError,
    ConcurrentModificationError,
    DeploymentFailure,
    ExternalServiceError,
    InvalidStateError,
    NotFoundError,
    ValidationError,
)
from contractdeploy.records.models import DeploymentState
from contractdeploy.records.repository import DeploymentRepository
from contractdeploy.saga.orchestrator import SagaOrchestrator

S = DeploymentState

PENDING = RequestDetails(hash="h1", metadata="{}", status="pending_approval")
DEPLOYED = RequestDetails(
    hash="h1",
    metadata="{}",
    status="deployed",
    contract_address="0xAA",
    transaction_hash="0xBB",
    whitelist_id="WL-1",
)


def record_states(orchestrator: SagaOrchestrator) -> list[str]:
    """Capture every persisted state change made through the repository."""
    states: list[str] = []
    save = orchestrator.repository.save

    async def spy(record):
        if not states or states[-1] != record.current_state:
            states.append(record.current_state)
        return await save(record)

    orchestrator.repository.save = spy
    return states


class TestInitiateDeployment:
    """Tests for initiate_deployment."""

    @pytest.mark.asyncio
    async def test_initiate(self, orchestrator, custody):
        """Authenticate then request deployment, ending in DEPLOY_REQUESTED."""
        record = await orchestrator.initiate_deployment("Token", "0x6080")

        assert record.state == S.DEPLOY_REQUESTED
        assert record.request_id == "DEP-1"
        assert record.auth_token == "tok-1"
        assert record.error_message is None
        custody.request_deployment.assert_awaited_once_with("tok-1", "0x6080", "Token", None)

    @pytest.mark.asyncio
    async def test_initiate_state_sequence(self, orchestrator):
        """Each step is persisted in order."""
        states = record_states(orchestrator)

        await orchestrator.initiate_deployment("Token", "0x6080", constructor_args="0x01")

        assert states == ["INITIAL", "AUTHENTICATED", "DEPLOY_REQUESTED"]

    @pytest.mark.asyncio
    async def test_blank_input_rejected(self, orchestrator, custody):
        """Blank name or bytecode is rejected before anything is stored."""
        with pytest.raises(ValidationError):
            await orchestrator.initiate_deployment("  ", "0x6080")
        with pytest.raises(ValidationError):
            await orchestrator.initiate_deployment("Token", "")

        assert await orchestrator.list_deployments() == []
        custody.authenticate.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_authentication_failure(self, orchestrator, custody):
        """A failed authentication leaves the record in ERROR without a request ID."""
        custody.authenticate.side_effect = AuthenticationError("bad credentials")

        with pytest.raises(DeploymentFailure) as exc_info:
            await orchestrator.initiate_deployment("Token", "0x6080")

        assert exc_info.value.state == "ERROR"
        records = await orchestrator.list_deployments()
        assert len(records) == 1
        assert records[0].state == S.ERROR
        assert records[0].request_id is None
        assert "bad credentials" in records[0].error_message
        custody.request_deployment.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_deploy_request_failure(self, orchestrator, custody):
        """A failed deployment request keeps the token and moves to ERROR."""
        custody.request_deployment.side_effect = ExternalServiceError("HTTP 500")

        with pytest.raises(DeploymentFailure):
            await orchestrator.initiate_deployment("Token", "0x6080")

        record = (await orchestrator.list_deployments())[0]
        assert record.state == S.ERROR
        assert record.auth_token == "tok-1"

    @pytest.mark.asyncio
    async def test_duplicate_request_id(self, orchestrator):
        """A request ID already in use fails the second saga."""
        first = await orchestrator.initiate_deployment("First", "0x60")
        first_id = first.id

        with pytest.raises(DeploymentFailure):
            await orchestrator.initiate_deployment("Second", "0x61")

        assert (await orchestrator.repository.get_by_request_id("DEP-1")).id == first_id
        errored = await orchestrator.list_deployments(state=S.ERROR)
        assert len(errored) == 1
        assert errored[0].contract_name == "Second"
        assert errored[0].request_id is None


class TestApproveDeployment:
    """Tests for approve_deployment."""

    @pytest.mark.asyncio
    async def test_approve(self, orchestrator, custody, signer):
        """Hash is fetched, signed and approved, then the deployment is confirmed."""
        await orchestrator.initiate_deployment("Token", "0x6080")
        states = record_states(orchestrator)

        record = await orchestrator.approve_deployment("DEP-1")

        assert record.state == S.DEPLOYED
        assert record.hash_value == "h1"
        assert record.signed_hash == "sig-h1"
        assert record.contract_address == "0xAA"
        assert record.transaction_hash == "0xBB"
        assert record.whitelist_id == "WL-1"
        signer.sign.assert_awaited_once_with("h1", "{}")
        custody.approve.assert_awaited_once_with("tok-1", "DEP-1", "sig-h1")
        assert states == [
            "APPROVAL_PENDING",
            "HASH_RETRIEVED",
            "HASH_SIGNED",
            "DEPLOYMENT_APPROVED",
            "DEPLOYED",
        ]

    @pytest.mark.asyncio
    async def test_approve_not_yet_deployed(self, orchestrator, custody):
        """Approval succeeds but the record waits in DEPLOYMENT_APPROVED."""
        custody.get_request_details.side_effect = [PENDING, PENDING]
        await orchestrator.initiate_deployment("Token", "0x6080")

        record = await orchestrator.approve_deployment("DEP-1")

        assert record.state == S.DEPLOYMENT_APPROVED
        assert record.contract_address is None

    @pytest.mark.asyncio
    async def test_approve_polls_until_deployed(self, deployment_repo, custody, signer, registry):
        """Several status checks are made when configured."""
        custody.get_request_details.side_effect = [PENDING, PENDING, PENDING, DEPLOYED]
        orchestrator = SagaOrchestrator(
            deployment_repo, custody, signer, registry, poll_attempts=3, poll_interval=0
        )
        await orchestrator.initiate_deployment("Token", "0x6080")

        record = await orchestrator.approve_deployment("DEP-1")

        assert record.state == S.DEPLOYED
        assert custody.get_request_details.await_count == 4

    @pytest.mark.asyncio
    async def test_signing_failure(self, orchestrator, custody, signer):
        """A signing failure moves the saga to ERROR, which is final."""
        signer.sign.side_effect = ExternalServiceError("signer down")
        await orchestrator.initiate_deployment("Token", "0x6080")

        with pytest.raises(DeploymentFailure) as exc_info:
            await orchestrator.approve_deployment("DEP-1")

        assert exc_info.value.request_id == "DEP-1"
        record = await orchestrator.get_deployment_status("DEP-1")
        assert record.state == S.ERROR
        assert record.hash_value == "h1"
        assert record.signed_hash is None
        assert "signer down" in record.error_message
        custody.approve.assert_not_awaited()

        with pytest.raises(InvalidStateError):
            await orchestrator.approve_deployment("DEP-1")

    @pytest.mark.asyncio
    async def test_empty_hash(self, orchestrator, custody, signer):
        """An empty approval hash is a collaborator failure."""
        custody.get_request_details.side_effect = [
            RequestDetails(hash="", metadata="{}", status="pending_approval")
        ]
        await orchestrator.initiate_deployment("Token", "0x6080")

        with pytest.raises(DeploymentFailure):
            await orchestrator.approve_deployment("DEP-1")

        assert (await orchestrator.get_deployment_status("DEP-1")).state == S.ERROR
        signer.sign.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_approve_wrong_state(self, orchestrator, custody):
        """Approving twice is rejected without touching the record."""
        await orchestrator.initiate_deployment("Token", "0x6080")
        await orchestrator.approve_deployment("DEP-1")
        custody.reset_mock()

        with pytest.raises(InvalidStateError):
            await orchestrator.approve_deployment("DEP-1")

        record = await orchestrator.get_deployment_status("DEP-1")
        assert record.state == S.DEPLOYED
        assert record.error_message is None
        assert custody.method_calls == []

    @pytest.mark.asyncio
    async def test_approve_unknown(self, orchestrator):
        """Unknown request IDs are reported as not found."""
        with pytest.raises(NotFoundError):
            await orchestrator.approve_deployment("DEP-404")

    @pytest.mark.asyncio
    async def test_concurrent_approvals(self, orchestrator, custody):
        """Two approvals of one request run one after the other."""
        await orchestrator.initiate_deployment("Token", "0x6080")

        results = await asyncio.gather(
            orchestrator.approve_deployment("DEP-1"),
            orchestrator.approve_deployment("DEP-1"),
            return_exceptions=True,
        )

        assert results[0].state == S.DEPLOYED
        assert isinstance(results[1], InvalidStateError)
        custody.approve.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_reauthenticate(self, deployment_repo, custody, signer, registry):
        """A fresh token is fetched before approval when configured."""
        custody.authenticate.side_effect = ["tok-1", "tok-2"]
        orchestrator = SagaOrchestrator(
            deployment_repo, custody, signer, registry, poll_interval=0, reauthenticate=True
        )
        await orchestrator.initiate_deployment("Token", "0x6080")

        record = await orchestrator.approve_deployment("DEP-1")

        assert record.auth_token == "tok-2"
        custody.approve.assert_awaited_once_with("tok-2", "DEP-1", "sig-h1")

    @pytest.mark.asyncio
    async def test_concurrent_write_during_approval(self, orchestrator, custody, session_factory):
        """A write from another session makes the approval step fail as a conflict."""

        async def details_after_other_writer(token, request_id):
            async with session_factory() as other_session:
                other = DeploymentRepository(other_session)
                record = await other.get_by_request_id(request_id)
                record.error_message = "touched elsewhere"
                await other.save(record)
            return PENDING

        custody.get_request_details.side_effect = details_after_other_writer
        await orchestrator.initiate_deployment("Token", "0x6080")

        with pytest.raises(ConcurrentModificationError):
            await orchestrator.approve_deployment("DEP-1")

        async with session_factory() as check_session:
            stored = await DeploymentRepository(check_session).get_by_request_id("DEP-1")
        assert stored.state == S.APPROVAL_PENDING
        assert stored.hash_value is None
        assert stored.error_message == "touched elsewhere"


class TestWhitelistContract:
    """Tests for whitelist_contract."""

    @pytest.mark.asyncio
    async def test_full_saga(self, orchestrator, custody, registry):
        """A deployed contract is whitelisted, registered and completed."""
        states = record_states(orchestrator)
        await orchestrator.initiate_deployment("Token", "0x6080", network="sepolia")
        await orchestrator.approve_deployment("DEP-1")

        record = await orchestrator.whitelist_contract("DEP-1")

        assert record.state == S.COMPLETED
        assert record.whitelist_hash == "wh1"
        assert record.signed_whitelist_hash == "sig-wh1"
        assert record.error_message is None
        custody.get_whitelist_details.assert_awaited_once_with("tok-1", "WL-1")
        custody.approve_whitelist.assert_awaited_once_with("tok-1", "WL-1", "sig-wh1")

        address, metadata = registry.register.await_args.args
        assert address == "0xAA"
        assert json.loads(metadata) == {"name": "Token", "network": "sepolia"}

        assert states == [state.value for state in (
            S.INITIAL,
            S.AUTHENTICATED,
            S.DEPLOY_REQUESTED,
            S.APPROVAL_PENDING,
            S.HASH_RETRIEVED,
            S.HASH_SIGNED,
            S.DEPLOYMENT_APPROVED,
            S.DEPLOYED,
            S.WHITELIST_REQUESTED,
            S.WHITELIST_HASH_RETRIEVED,
            S.WHITELIST_HASH_SIGNED,
            S.WHITELIST_APPROVED,
            S.TOKEN_REGISTERED,
            S.COMPLETED,
        )]

    @pytest.mark.asyncio
    async def test_whitelist_before_deploy(self, orchestrator, custody):
        """Whitelisting a request that is not deployed is rejected."""
        await orchestrator.initiate_deployment("Token", "0x6080")

        with pytest.raises(InvalidStateError):
            await orchestrator.whitelist_contract("DEP-1")

        record = await orchestrator.get_deployment_status("DEP-1")
        assert record.state == S.DEPLOY_REQUESTED
        custody.get_whitelist_details.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_whitelist_checks_pending_deployment(self, orchestrator, custody):
        """From DEPLOYMENT_APPROVED the deployment is checked first."""
        custody.get_request_details.side_effect = [PENDING, PENDING, DEPLOYED]
        await orchestrator.initiate_deployment("Token", "0x6080")
        await orchestrator.approve_deployment("DEP-1")

        record = await orchestrator.whitelist_contract("DEP-1")

        assert record.state == S.COMPLETED
        assert record.contract_address == "0xAA"

    @pytest.mark.asyncio
    async def test_whitelist_still_pending(self, orchestrator, custody):
        """An undeployed contract cannot be whitelisted and stays approved."""
        custody.get_request_details.side_effect = [PENDING, PENDING, PENDING, PENDING]
        await orchestrator.initiate_deployment("Token", "0x6080")
        await orchestrator.approve_deployment("DEP-1")

        with pytest.raises(InvalidStateError):
            await orchestrator.whitelist_contract("DEP-1")

        record = await orchestrator.get_deployment_status("DEP-1")
        assert record.state == S.DEPLOYMENT_APPROVED

    @pytest.mark.asyncio
    async def test_whitelist_id_fetched_later(self, orchestrator, custody):
        """A missing whitelist ID is looked up again before whitelisting."""
        no_whitelist = RequestDetails(
            hash="h1", metadata="{}", status="deployed",
            contract_address="0xAA", transaction_hash="0xBB",
        )
        later = RequestDetails(
            hash="h1", metadata="{}", status="deployed",
            contract_address="0xAA", transaction_hash="0xBB", whitelist_id="WL-9",
        )
        custody.get_request_details.side_effect = [PENDING, no_whitelist, later]
        await orchestrator.initiate_deployment("Token", "0x6080")
        record = await orchestrator.approve_deployment("DEP-1")
        assert record.state == S.DEPLOYED
        assert record.whitelist_id is None

        record = await orchestrator.whitelist_contract("DEP-1")

        assert record.state == S.COMPLETED
        assert record.whitelist_id == "WL-9"

    @pytest.mark.asyncio
    async def test_whitelist_id_unavailable(self, orchestrator, custody):
        """Without a whitelist entry the request is rejected and nothing changes."""
        no_whitelist = RequestDetails(
            hash="h1", metadata="{}", status="deployed", contract_address="0xAA",
        )
        custody.get_request_details.side_effect = [PENDING, no_whitelist, no_whitelist]
        await orchestrator.initiate_deployment("Token", "0x6080")
        await orchestrator.approve_deployment("DEP-1")

        with pytest.raises(InvalidStateError):
            await orchestrator.whitelist_contract("DEP-1")

        record = await orchestrator.get_deployment_status("DEP-1")
        assert record.state == S.DEPLOYED
        assert record.error_message is None

    @pytest.mark.asyncio
    async def test_whitelist_id_lookup_failure(self, orchestrator, custody):
        """A custody failure while looking up the whitelist ID fails the saga."""
        no_whitelist = RequestDetails(
            hash="h1", metadata="{}", status="deployed", contract_address="0xAA",
        )
        custody.get_request_details.side_effect = [
            PENDING,
            no_whitelist,
            ExternalServiceError("HTTP 503"),
        ]
        await orchestrator.initiate_deployment("Token", "0x6080")
        await orchestrator.approve_deployment("DEP-1")

        with pytest.raises(DeploymentFailure) as exc_info:
            await orchestrator.whitelist_contract("DEP-1")

        assert exc_info.value.state == S.ERROR.value
        record = await orchestrator.get_deployment_status("DEP-1")
        assert record.state == S.ERROR
        assert "HTTP 503" in record.error_message
        custody.get_whitelist_details.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_whitelist_approval_failure(self, orchestrator, custody):
        """A failed whitelist approval moves the saga to ERROR."""
        custody.approve_whitelist.side_effect = ExternalServiceError("HTTP 503")
        await orchestrator.initiate_deployment("Token", "0x6080")
        await orchestrator.approve_deployment("DEP-1")

        with pytest.raises(DeploymentFailure):
            await orchestrator.whitelist_contract("DEP-1")

        record = await orchestrator.get_deployment_status("DEP-1")
        assert record.state == S.ERROR
        assert record.signed_whitelist_hash == "sig-wh1"
        assert "HTTP 503" in record.error_message

    @pytest.mark.asyncio
    async def test_registration_declined_then_retried(self, orchestrator, custody, registry):
        """A declined registration stalls in WHITELIST_APPROVED until retried."""
        registry.register.side_effect = [False, True]
        await orchestrator.initiate_deployment("Token", "0x6080")
        await orchestrator.approve_deployment("DEP-1")

        record = await orchestrator.whitelist_contract("DEP-1")
        assert record.state == S.WHITELIST_APPROVED
        assert record.error_message is None

        record = await orchestrator.whitelist_contract("DEP-1")
        assert record.state == S.COMPLETED
        custody.approve_whitelist.assert_awaited_once()
        assert registry.register.await_count == 2

    @pytest.mark.asyncio
    async def test_registration_error(self, orchestrator, registry):
        """A registry transport failure moves the saga to ERROR."""
        registry.register.side_effect = ExternalServiceError("registry timed out")
        await orchestrator.initiate_deployment("Token", "0x6080")
        await orchestrator.approve_deployment("DEP-1")

        with pytest.raises(DeploymentFailure):
            await orchestrator.whitelist_contract("DEP-1")

        assert (await orchestrator.get_deployment_status("DEP-1")).state == S.ERROR


class TestDeploymentStatus:
    """Tests for get_deployment_status."""

    @pytest.mark.asyncio
    async def test_status_confirms_deployment(self, orchestrator, custody):
        """A status read in DEPLOYMENT_APPROVED checks the custody platform."""
        custody.get_request_details.side_effect = [PENDING, PENDING, DEPLOYED]
        await orchestrator.initiate_deployment("Token", "0x6080")
        await orchestrator.approve_deployment("DEP-1")

        record = await orchestrator.get_deployment_status("DEP-1")

        assert record.state == S.DEPLOYED
        assert record.transaction_hash == "0xBB"

    @pytest.mark.asyncio
    async def test_status_check_failure_is_logged(self, orchestrator, custody):
        """A failed status check leaves the saga where it was."""
        custody.get_request_details.side_effect = [
            PENDING,
            PENDING,
            ExternalServiceError("HTTP 502"),
        ]
        await orchestrator.initiate_deployment("Token", "0x6080")
        await orchestrator.approve_deployment("DEP-1")

        record = await orchestrator.get_deployment_status("DEP-1")

        assert record.state == S.DEPLOYMENT_APPROVED
        assert record.error_message is None

    @pytest.mark.asyncio
    async def test_status_survives_unexpected_error(self, orchestrator, custody, caplog):
        """Any exception during a status check is logged and the next read retries."""
        custody.get_request_details.side_effect = [
            PENDING,
            PENDING,
            RuntimeError("connection reset"),
            DEPLOYED,
        ]
        await orchestrator.initiate_deployment("Token", "0x6080")
        await orchestrator.approve_deployment("DEP-1")

        record = await orchestrator.get_deployment_status("DEP-1")

        assert record.state == S.DEPLOYMENT_APPROVED
        assert record.contract_address is None
        assert "connection reset" in caplog.text

        record = await orchestrator.get_deployment_status("DEP-1")
        assert record.state == S.DEPLOYED
        assert record.contract_address == "0xAA"

    @pytest.mark.asyncio
    async def test_status_of_completed_is_local(self, orchestrator, custody, signer, registry):
        """Reading a completed saga makes no collaborator calls."""
        await orchestrator.initiate_deployment("Token", "0x6080")
        await orchestrator.approve_deployment("DEP-1")
        await orchestrator.whitelist_contract("DEP-1")
        custody.reset_mock()
        signer.reset_mock()
        registry.reset_mock()

        first = await orchestrator.get_deployment_status("DEP-1")
        second = await orchestrator.get_deployment_status("DEP-1")

        assert first.state == second.state == S.COMPLETED
        assert first.version == second.version
        assert custody.method_calls == []
        assert signer.method_calls == []
        assert registry.method_calls == []

    @pytest.mark.asyncio
    async def test_status_unknown(self, orchestrator):
        """Unknown request IDs are reported as not found."""
        with pytest.raises(NotFoundError):
            await orchestrator.get_deployment_status("DEP-404")


class TestCancelDeployment:
    """Tests for cancel_deployment."""

    @pytest.mark.asyncio
    async def test_cancel(self, orchestrator, custody):
        """A requested deployment can be cancelled, which is final."""
        await orchestrator.initiate_deployment("Token", "0x6080")

        record = await orchestrator.cancel_deployment("DEP-1")

        assert record.state == S.CANCELLED
        assert record.is_terminal
        with pytest.raises(InvalidStateError):
            await orchestrator.approve_deployment("DEP-1")
        custody.approve.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_cancel_after_approval(self, orchestrator, custody):
        """An approved deployment that is not confirmed yet can be cancelled."""
        custody.get_request_details.side_effect = [PENDING, PENDING]
        await orchestrator.initiate_deployment("Token", "0x6080")
        record = await orchestrator.approve_deployment("DEP-1")
        assert record.state == S.DEPLOYMENT_APPROVED

        record = await orchestrator.cancel_deployment("DEP-1")

        assert record.state == S.CANCELLED
        assert record.signed_hash == "sig-h1"
        with pytest.raises(InvalidStateError):
            await orchestrator.whitelist_contract("DEP-1")
        assert (await orchestrator.get_deployment_status("DEP-1")).state == S.CANCELLED
        assert custody.get_request_details.await_count == 2

    @pytest.mark.asyncio
    async def test_cancel_after_deployment(self, orchestrator):
        """Deployed contracts cannot be cancelled."""
        await orchestrator.initiate_deployment("Token", "0x6080")
        await orchestrator.approve_deployment("DEP-1")

        with pytest.raises(InvalidStateError):
            await orchestrator.cancel_deployment("DEP-1")

        assert (await orchestrator.get_deployment_status("DEP-1")).state == S.DEPLOYED

    @pytest.mark.asyncio
    async def test_cancel_unknown(self, orchestrator):
        """Unknown request IDs are reported as not found."""
        with pytest.raises(NotFoundError):
            await orchestrator.cancel_deployment("DEP-404")
