"""Transition table for the deployment saga.

The saga is a linear chain of states, each left by exactly one success
event. ERROR_OCCURRED leads to ERROR from every non-terminal state, and
CANCEL_REQUESTED leads to CANCELLED while the custody request is still
waiting for our approval. COMPLETED, ERROR and CANCELLED have no outgoing
edges.

No machine object is kept between calls: the persisted state is fed into
``apply`` on every operation.
"""

from contractdeploy.errors import InvalidTransition
from contractdeploy.records.models import DeploymentEvent, DeploymentState

S = DeploymentState
E = DeploymentEvent

INITIAL_STATE = S.INITIAL

TERMINAL_STATES = frozenset({S.COMPLETED, S.ERROR, S.CANCELLED})

# Success path: state -> (event, next state)
_SUCCESS_PATH: dict[DeploymentState, tuple[DeploymentEvent, DeploymentState]] = {
    S.INITIAL: (E.AUTHENTICATION_SUCCESS, S.AUTHENTICATED),
    S.AUTHENTICATED: (E.DEPLOYMENT_REQUEST_SUCCESS, S.DEPLOY_REQUESTED),
    S.DEPLOY_REQUESTED: (E.REQUEST_APPROVAL, S.APPROVAL_PENDING),
    S.APPROVAL_PENDING: (E.HASH_FETCHED, S.HASH_RETRIEVED),
    S.HASH_RETRIEVED: (E.HASH_SIGNED, S.HASH_SIGNED),
    S.HASH_SIGNED: (E.DEPLOYMENT_APPROVED, S.DEPLOYMENT_APPROVED),
    S.DEPLOYMENT_APPROVED: (E.DEPLOYMENT_COMPLETED, S.DEPLOYED),
    S.DEPLOYED: (E.REQUEST_WHITELIST, S.WHITELIST_REQUESTED),
    S.WHITELIST_REQUESTED: (E.WHITELIST_HASH_FETCHED, S.WHITELIST_HASH_RETRIEVED),
    S.WHITELIST_HASH_RETRIEVED: (E.WHITELIST_HASH_SIGNED, S.WHITELIST_HASH_SIGNED),
    S.WHITELIST_HASH_SIGNED: (E.WHITELIST_APPROVED, S.WHITELIST_APPROVED),
    S.WHITELIST_APPROVED: (E.TOKEN_REGISTERED, S.TOKEN_REGISTERED),
    S.TOKEN_REGISTERED: (E.REGISTER_TOKEN, S.COMPLETED),
}

# States before the contract is confirmed on-chain
CANCELLABLE_STATES = frozenset(
    {
        S.DEPLOY_REQUESTED,
        S.APPROVAL_PENDING,
        S.HASH_RETRIEVED,
        S.HASH_SIGNED,
        S.DEPLOYMENT_APPROVED,
    }
)


def _build_table() -> dict[tuple[DeploymentState, DeploymentEvent], DeploymentState]:
    table = {}
    for source, (event, target) in _SUCCESS_PATH.items():
        table[(source, event)] = target
    for source in DeploymentState:
        if source not in TERMINAL_STATES:
            table[(source, E.ERROR_OCCURRED)] = S.ERROR
    for source in CANCELLABLE_STATES:
        table[(source, E.CANCEL_REQUESTED)] = S.CANCELLED
    return table


TRANSITIONS = _build_table()


def apply(
    state: DeploymentState, event: DeploymentEvent
) -> tuple[DeploymentState, bool]:
    """Apply an event to a state.

    Returns:
        (new_state, True) when the event is defined for the state,
        otherwise (state, False); the caller must not persist anything then.
    """
    target = TRANSITIONS.get((DeploymentState(state), DeploymentEvent(event)))
    if target is None:
        return DeploymentState(state), False
    return target, True


def next_state(state: DeploymentState, event: DeploymentEvent) -> DeploymentState:
    """Like ``apply`` but raises InvalidTransition for an undefined event."""
    target, ok = apply(state, event)
    if not ok:
        raise InvalidTransition(DeploymentState(state).value, DeploymentEvent(event).value)
    return target


def can_fire(state: DeploymentState, event: DeploymentEvent) -> bool:
    return (DeploymentState(state), DeploymentEvent(event)) in TRANSITIONS


def allowed_events(state: DeploymentState) -> list[DeploymentEvent]:
    """Events defined for a state, in declaration order."""
    state = DeploymentState(state)
    return [event for event in DeploymentEvent if (state, event) in TRANSITIONS]


def is_terminal(state: DeploymentState) -> bool:
    return DeploymentState(state) in TERMINAL_STATES


def success_path() -> list[DeploymentState]:
    """States visited by a saga in which every step succeeds."""
    path = [INITIAL_STATE]
    while path[-1] in _SUCCESS_PATH:
        path.append(_SUCCESS_PATH[path[-1]][1])
    return path
