"""
Instance Lifecycle State Machine
================================

This module implements the state machine that drives instance resolution.
An instance resolver moves through loading, ready and error states; a
resolution interrupted by a newer request ends as superseded rather than
failed.

The state machine enforces:
- Validation of state transitions
- An audit trail of every transition
- State preconditions for operations that need a Ready instance
"""

from enum import Enum, auto
from typing import Optional, Set, Dict, Any
import logging
from dataclasses import dataclass, field
from datetime import datetime


class InstanceState(Enum):
    """States for the instance resolver"""
    IDLE = auto()                    # No instance, nothing in flight
    LOADING = auto()                 # Loading engine / keys for a (provider, chain)
    READY = auto()                   # Instance published and usable
    ERROR = auto()                   # Last resolution failed
    SUPERSEDED = auto()              # Last resolution was replaced by a newer request


class StateTransitionError(Exception):
    """Raised when an invalid state transition is attempted"""
    pass


class ProtocolViolationError(Exception):
    """Raised when protocol rules are violated"""
    pass


@dataclass
class StateTransition:
    """Records a state transition for audit purposes"""
    entity_id: str
    entity_type: str
    from_state: Enum
    to_state: Enum
    timestamp: datetime
    metadata: Dict[str, Any] = field(default_factory=dict)


class StateMachine:
    """Base state machine with transition validation and logging"""

    def __init__(self, entity_id: str, entity_type: str, initial_state: Enum):
        self.entity_id = entity_id
        self.entity_type = entity_type
        self._initial_state = initial_state
        self._current_state = initial_state
        self._transition_history: list[StateTransition] = []
        self.logger = logging.getLogger(f"{__name__}.{entity_type}.{entity_id}")

        # Define allowed transitions (to be overridden by subclasses)
        self._allowed_transitions: Dict[Enum, Set[Enum]] = {}

    @property
    def current_state(self) -> Enum:
        """Get the current state"""
        return self._current_state

    def can_transition_to(self, new_state: Enum) -> bool:
        """Check if transition to new_state is allowed"""
        if self._current_state not in self._allowed_transitions:
            return False
        return new_state in self._allowed_transitions[self._current_state]

    def transition_to(self, new_state: Enum, metadata: Optional[Dict[str, Any]] = None) -> None:
        """
        Transition to a new state with validation.

        Args:
            new_state: Target state
            metadata: Optional metadata about the transition

        Raises:
            StateTransitionError: If transition is not allowed
        """
        if not self.can_transition_to(new_state):
            error_msg = (
                f"Invalid state transition for {self.entity_type} '{self.entity_id}': "
                f"{self._current_state.name} -> {new_state.name}"
            )
            self.logger.error(error_msg)
            raise StateTransitionError(error_msg)

        old_state = self._current_state
        self._current_state = new_state

        transition = StateTransition(
            entity_id=self.entity_id,
            entity_type=self.entity_type,
            from_state=old_state,
            to_state=new_state,
            timestamp=datetime.now(),
            metadata=metadata or {}
        )
        self._transition_history.append(transition)

        self.logger.info(
            f"State transition: {old_state.name} -> {new_state.name} "
            f"{f'({metadata})' if metadata else ''}"
        )

    def require_state(self, *required_states: Enum) -> None:
        """
        Validate that the current state is one of the required states.

        Raises:
            ProtocolViolationError: If current state is not in required states
        """
        if self._current_state not in required_states:
            error_msg = (
                f"Protocol violation for {self.entity_type} '{self.entity_id}': "
                f"Expected state in {[s.name for s in required_states]}, "
                f"but current state is {self._current_state.name}"
            )
            self.logger.error(error_msg)
            raise ProtocolViolationError(error_msg)

    def get_transition_history(self) -> list[StateTransition]:
        """Get the complete transition history"""
        return self._transition_history.copy()

    def reset(self, initial_state: Optional[Enum] = None) -> None:
        """Reset the state machine to initial state"""
        self._current_state = initial_state or self._initial_state
        self._transition_history.clear()
        self.logger.info(f"State machine reset to {self._current_state.name}")


class InstanceStateMachine(StateMachine):
    """State machine for the instance resolver"""

    def __init__(self, resolver_id: str = "resolver"):
        super().__init__(resolver_id, "resolver", InstanceState.IDLE)

        self._allowed_transitions = {
            InstanceState.IDLE: {
                InstanceState.LOADING
            },
            InstanceState.LOADING: {
                InstanceState.READY,
                InstanceState.ERROR,
                InstanceState.SUPERSEDED,
                InstanceState.IDLE  # Aborted by the caller
            },
            InstanceState.SUPERSEDED: {
                InstanceState.LOADING,  # The superseding request starts immediately
                InstanceState.IDLE
            },
            InstanceState.READY: {
                InstanceState.LOADING,  # Chain or provider changed
                InstanceState.IDLE
            },
            InstanceState.ERROR: {
                InstanceState.LOADING,  # Retry
                InstanceState.IDLE
            }
        }
