"""Utility modules for contractdeploy."""

from contractdeploy.utils.locks import DeploymentLock, LockTimeoutError, get_deployment_lock

__all__ = ["DeploymentLock", "LockTimeoutError", "get_deployment_lock"]
