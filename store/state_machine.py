"""
Declarative state machine for the P2P trade lifecycle.

Two kinds of edges live on the same machine:

  Command edges — a client command (confirm_payment, complete_trade, ...)
                  that the escrow server may accept. The client validates the
                  edge locally before issuing the request.
  Server edges  — transitions only the server performs (e.g. → FAILED). The
                  client learns of them through observation.

Side-effects per Transition:

  on_exit / on_enter — fire-and-forget after the store applies the change.
                       Exceptions are logged and swallowed.

    from store.state_machine import StateMachine, Transition

    class OrderLifecycle(StateMachine):
        initial = "PENDING"
        terminal = {"FILLED", "CANCELLED"}
        transitions = [
            Transition("PENDING", "FILLED", command="fill"),
            Transition("PENDING", "CANCELLED", command="cancel",
                       allowed_by=["buyer", "seller"]),
        ]
"""

import logging
from dataclasses import dataclass
from typing import Callable, List, Optional

from store.models import TradeStatus, TERMINAL_STATUSES

logger = logging.getLogger(__name__)


@dataclass
class Transition:
    """
    A single state machine edge.

    - command: name of the client command that drives this edge, or None for
      server-only edges.
    - guard: callable(trade) that must return truthy for the edge to be taken.
    - on_exit / on_enter: callable(trade, from_state, to_state), best-effort.
    - allowed_by: roles ("buyer", "seller") allowed to issue the command.
      If None, any party may.
    """
    from_state: str
    to_state: str
    command: Optional[str] = None
    guard: Optional[Callable] = None
    on_exit: Optional[Callable] = None
    on_enter: Optional[Callable] = None
    allowed_by: Optional[List[str]] = None


class InvalidTransition(Exception):
    """Raised when the transition edge does not exist."""

    def __init__(self, from_state, to_state, allowed):
        self.from_state = from_state
        self.to_state = to_state
        self.allowed = allowed
        super().__init__(
            f"Cannot transition from '{from_state}' to '{to_state}'. "
            f"Allowed: {allowed}"
        )


class GuardFailure(Exception):
    """Raised when a transition edge exists but the guard evaluates to False."""

    def __init__(self, from_state, to_state, guard):
        self.from_state = from_state
        self.to_state = to_state
        self.guard = guard
        super().__init__(
            f"Guard failed for transition '{from_state}' → '{to_state}'"
        )


class TransitionNotPermitted(Exception):
    """Raised when the acting role is not authorized to trigger a transition."""

    def __init__(self, from_state, to_state, role, allowed_by):
        self.from_state = from_state
        self.to_state = to_state
        self.role = role
        self.allowed_by = allowed_by
        super().__init__(
            f"Role '{role}' not permitted for transition "
            f"'{from_state}' → '{to_state}'. Allowed: {allowed_by}"
        )


def _value(state):
    return state.value if isinstance(state, TradeStatus) else state


class StateMachine:
    """
    Base class for declarative state machines.

    Subclass and define:
        initial: str                    — the starting state
        terminal: set[str]              — absorbing states
        order: list[str]                — happy-path order, for precedence
        transitions: list[Transition]   — list of Transition edges
    """

    initial: str = None
    terminal: frozenset = frozenset()
    order: list = []
    transitions: list = []

    @classmethod
    def get_transition(cls, from_state, to_state):
        """Return the Transition object for this edge, or None."""
        from_state, to_state = _value(from_state), _value(to_state)
        for t in cls.transitions:
            if t.from_state == from_state and t.to_state == to_state:
                return t
        return None

    @classmethod
    def command_transition(cls, from_state, command):
        """Return the edge a command takes from from_state, or None."""
        from_state = _value(from_state)
        for t in cls.transitions:
            if t.from_state == from_state and t.command == command:
                return t
        return None

    @classmethod
    def validate_command(cls, from_state, command, context=None, role=None):
        """
        Validate that `command` may be issued from `from_state`.
        Returns the Transition it would take.

        Raises:
            InvalidTransition — no edge for this command from this state
            GuardFailure — guard evaluated to False
            TransitionNotPermitted — role not authorized
        """
        t = cls.command_transition(from_state, command)
        if t is None:
            allowed = [e.command for e in cls.transitions
                       if e.from_state == _value(from_state) and e.command]
            raise InvalidTransition(_value(from_state), command, allowed)
        cls._check(t, context, role)
        return t

    @classmethod
    def validate_transition(cls, from_state, to_state, context=None, role=None):
        """
        Validate and return the Transition object.

        Raises:
            InvalidTransition — edge doesn't exist
            GuardFailure — guard evaluated to False
            TransitionNotPermitted — role not authorized
        """
        t = cls.get_transition(from_state, to_state)
        if t is None:
            allowed = cls.allowed_transitions(from_state)
            raise InvalidTransition(_value(from_state), _value(to_state), allowed)
        cls._check(t, context, role)
        return t

    @classmethod
    def _check(cls, t, context, role):
        if t.guard is not None and context is not None:
            if not t.guard(context):
                raise GuardFailure(t.from_state, t.to_state, t.guard)

        if t.allowed_by is not None and role is not None:
            if role not in t.allowed_by:
                raise TransitionNotPermitted(t.from_state, t.to_state, role, t.allowed_by)

    @classmethod
    def allowed_transitions(cls, from_state):
        """Return list of valid next state names from from_state."""
        from_state = _value(from_state)
        return [t.to_state for t in cls.transitions if t.from_state == from_state]

    @classmethod
    def allowed_commands(cls, from_state, role=None):
        """Commands the given role may issue from from_state."""
        from_state = _value(from_state)
        return [
            t.command for t in cls.transitions
            if t.from_state == from_state and t.command
            and (t.allowed_by is None or role is None or role in t.allowed_by)
        ]

    @classmethod
    def is_terminal(cls, state) -> bool:
        return _value(state) in cls.terminal

    @classmethod
    def precedence(cls, state) -> int:
        """Rank along the happy path; every terminal state shares the top rank."""
        state = _value(state)
        if state in cls.terminal:
            return len(cls.order)
        return cls.order.index(state)

    @classmethod
    def supersedes(cls, current, incoming) -> bool:
        """
        Whether an incoming observation may replace the current state.
        Terminal states are absorbing; otherwise the status may only hold or
        move forward.
        """
        if current is None:
            return True
        if cls.is_terminal(current):
            return False
        return cls.precedence(incoming) >= cls.precedence(current)

    @classmethod
    def fire_on_exit(cls, state, trade, from_state, to_state):
        for t in cls.transitions:
            if t.from_state == _value(state) and t.on_exit is not None:
                _fire(t.on_exit, trade, from_state, to_state)
                return

    @classmethod
    def fire_on_enter(cls, state, trade, from_state, to_state):
        for t in cls.transitions:
            if t.to_state == _value(state) and t.on_enter is not None:
                _fire(t.on_enter, trade, from_state, to_state)
                return


def _fire(hook, trade, from_state, to_state):
    try:
        hook(trade, from_state, to_state)
    except Exception:
        logger.exception("Lifecycle hook %s failed for %s → %s",
                         getattr(hook, "__name__", hook), from_state, to_state)


def _pays_externally(trade) -> bool:
    """Swap trades settle stock-for-stock; there is no payment to mark sent."""
    return not trade.is_swap_trade


_P = TradeStatus.PENDING.value
_A = TradeStatus.ACCEPTED.value
_S = TradeStatus.PAYMENT_SENT.value
_C = TradeStatus.COMPLETED.value
_X = TradeStatus.CANCELLED.value
_F = TradeStatus.FAILED.value


class TradeLifecycle(StateMachine):
    """PENDING → ACCEPTED → PAYMENT_SENT → COMPLETED, with CANCELLED/FAILED absorbing."""

    initial = _P
    terminal = frozenset(s.value for s in TERMINAL_STATUSES)
    order = [_P, _A, _S]
    transitions = [
        Transition(_P, _A, command="confirm_payment", allowed_by=["buyer"]),
        Transition(_A, _S, command="mark_payment_sent", guard=_pays_externally,
                   allowed_by=["buyer"]),
        Transition(_A, _C, command="complete_trade"),
        Transition(_S, _C, command="complete_trade"),
        Transition(_P, _X, command="cancel_trade", allowed_by=["buyer", "seller"]),
        Transition(_A, _X, command="cancel_trade", allowed_by=["buyer", "seller"]),
        Transition(_S, _X, command="cancel_trade", allowed_by=["buyer", "seller"]),
        Transition(_P, _F),
        Transition(_A, _F),
        Transition(_S, _F),
    ]
