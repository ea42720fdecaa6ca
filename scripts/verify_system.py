#!/usr/bin/env python3
"""Quick verification script to test all system components."""

import asyncio
import sys

from dotenv import load_dotenv

load_dotenv()

# Colors for output
GREEN = "\033[92m"
RED = "\033[91m"
YELLOW = "\033[93m"
RESET = "\033[0m"
CHECK = "✓"
CROSS = "✗"
WARN = "⚠"


def print_status(name: str, success: bool, message: str = ""):
    """Print status with color."""
    if success:
        print(f"  {GREEN}{CHECK}{RESET} {name}" + (f" - {message}" if message else ""))
    else:
        print(f"  {RED}{CROSS}{RESET} {name}" + (f" - {message}" if message else ""))


def print_warning(name: str, message: str = ""):
    """Print warning."""
    print(f"  {YELLOW}{WARN}{RESET} {name}" + (f" - {message}" if message else ""))


def test_imports():
    """Test all critical imports."""
    print("\n📚 Testing Critical Imports...")

    modules = [
        ("contractdeploy.main", "Main application"),
        ("contractdeploy.api.app", "FastAPI application"),
        ("contractdeploy.records.models", "Database models"),
        ("contractdeploy.records.repository", "Deployment repository"),
        ("contractdeploy.saga.orchestrator", "Saga orchestrator"),
        ("contractdeploy.clients.factory", "Client factory"),
        ("contractdeploy.utils.locks", "Concurrency locks"),
    ]

    all_ok = True
    for module, name in modules:
        try:
            __import__(module)
            print_status(name, True)
        except Exception as e:
            print_status(name, False, str(e)[:50])
            all_ok = False

    return all_ok


def test_config():
    """Test configuration."""
    print("\n⚙️ Testing Configuration...")

    try:
        from contractdeploy.config import get_settings

        settings = get_settings()
        safe = settings.get_safe_dict()

        print_status("Load settings", True)
        print_status("Database URL", bool(settings.database_url), safe["database_url"])

        if settings.dry_run:
            print_warning("Dry run", "Collaborators are simulated")
        elif settings.has_custody_credentials:
            print_status("Custody credentials", True, "[CONFIGURED]")
        else:
            print_status("Custody credentials", False, "CUSTODY_CLIENT_ID / CUSTODY_CLIENT_SECRET not set")
            return False

        return True
    except Exception as e:
        print_status("Configuration", False, str(e))
        return False


async def test_database():
    """Test database connection and operations."""
    print("\n📦 Testing Database...")

    try:
        from sqlalchemy import text

        from contractdeploy.records.database import close_db, get_engine, init_db, ping_db

        await init_db()
        print_status("Database initialized", True)

        if not await ping_db():
            print_status("Database ping", False)
            await close_db()
            return False

        engine = get_engine()
        async with engine.connect() as conn:
            result = await conn.execute(text("SELECT COUNT(*) FROM smart_contract_deployments"))
            count = result.scalar()
        print_status("Database connection", True, f"{count} deployments stored")

        await close_db()
        return True
    except Exception as e:
        print_status("Database", False, str(e))
        return False


async def test_collaborators():
    """Test that the configured collaborators respond."""
    print("\n🔌 Testing Collaborators...")

    try:
        from contractdeploy.clients.factory import get_clients_info, reset_clients

        info = await get_clients_info()
        all_ok = True
        for role, details in info.items():
            print_status(f"{role.title()} client", details["healthy"], details["name"])
            all_ok = all_ok and details["healthy"]

        reset_clients()
        return all_ok
    except Exception as e:
        print_status("Collaborators", False, str(e))
        return False


async def test_dry_run_saga():
    """Run a full saga against simulated collaborators and a scratch session."""
    print("\n🔄 Testing Dry-Run Saga...")

    try:
        from contractdeploy.clients.dryrun import (
            DryRunCustodyClient,
            DryRunRegistryClient,
            DryRunSigningClient,
        )
        from contractdeploy.records.database import close_db, get_session_factory, init_db
        from contractdeploy.records.repository import DeploymentRepository
        from contractdeploy.saga.orchestrator import SagaOrchestrator

        await init_db()
        session_factory = get_session_factory()
        async with session_factory() as session:
            repo = DeploymentRepository(session)
            orchestrator = SagaOrchestrator(
                repository=repo,
                custody=DryRunCustodyClient(),
                signer=DryRunSigningClient(),
                registry=DryRunRegistryClient(),
                poll_interval=0,
            )

            record = await orchestrator.initiate_deployment("VerifyToken", "0x6080604052")
            print_status("Initiate", True, f"{record.request_id} {record.current_state}")

            record = await orchestrator.approve_deployment(record.request_id)
            print_status("Approve", True, record.current_state)

            record = await orchestrator.whitelist_contract(record.request_id)
            print_status("Whitelist", record.current_state == "COMPLETED", record.current_state)

            await session.delete(record)
            await session.commit()

        await close_db()
        return True
    except Exception as e:
        print_status("Dry-run saga", False, str(e))
        return False


async def main():
    """Run all verification tests."""
    print("=" * 60)
    print("     CONTRACT DEPLOYMENT SYSTEM VERIFICATION")
    print("=" * 60)

    results = {}

    results["imports"] = test_imports()
    results["config"] = test_config()
    results["database"] = await test_database()
    results["collaborators"] = await test_collaborators()
    results["dry_run_saga"] = await test_dry_run_saga()

    # Summary
    print("\n" + "=" * 60)
    print("     SUMMARY")
    print("=" * 60)

    passed = sum(1 for v in results.values() if v)
    total = len(results)

    for name, success in results.items():
        status = f"{GREEN}{CHECK}{RESET}" if success else f"{RED}{CROSS}{RESET}"
        print(f"  {status} {name.replace('_', ' ').title()}")

    print()
    if passed == total:
        print(f"  {GREEN}All {total} checks passed!{RESET}")
        return 0
    else:
        print(f"  {YELLOW}{passed}/{total} checks passed{RESET}")
        return 1


if __name__ == "__main__":
    exit_code = asyncio.run(main())
    sys.exit(exit_code)
