"""Error taxonomy for deployment operations.

Each error carries the HTTP status code the API layer answers with.
"""

from typing import Optional


class DeploymentError(Exception):
    """Base class for all deployment errors."""

    status_code = 500
    error = "Deployment Error"

    def __init__(
        self,
        message: str,
        request_id: Optional[str] = None,
        state: Optional[str] = None,
    ):
        super().__init__(message)
        self.message = message
        self.request_id = request_id
        self.state = state

    def to_dict(self) -> dict:
        data = {"error": self.error, "message": self.message}
        if self.request_id is not None:
            data["request_id"] = self.request_id
        if self.state is not None:
            data["state"] = self.state
        return data


class ValidationError(DeploymentError):
    """Malformed input."""

    status_code = 400
    error = "Validation Error"


class NotFoundError(DeploymentError):
    """No deployment exists for the given request ID."""

    status_code = 404
    error = "Not Found"


class InvalidStateError(DeploymentError):
    """Operation requested from a state that does not permit it."""

    status_code = 409
    error = "Invalid State"


class InvalidTransition(InvalidStateError):
    """Event is not defined for the current state."""

    def __init__(self, state: str, event: str):
        super().__init__(f"Event {event} is not allowed in state {state}", state=state)
        self.event = event


class ExternalServiceError(DeploymentError):
    """A collaborator (custody, signing, registry) call failed."""

    status_code = 502
    error = "External Service Error"

    def __init__(self, message: str, service: str = "", status: Optional[int] = None):
        super().__init__(message)
        self.service = service
        self.status = status


class AuthenticationError(ExternalServiceError):
    """Authentication with the custody platform failed."""


class PersistenceError(DeploymentError):
    """Reading or writing a deployment record failed."""

    status_code = 500
    error = "Persistence Error"


class ConcurrentModificationError(PersistenceError):
    """Another operation modified the deployment concurrently."""

    status_code = 409
    error = "Concurrent Modification"


class DeploymentFailure(DeploymentError):
    """A saga step failed; the deployment has been moved to ERROR."""

    status_code = 500
    error = "Deployment Failed"
