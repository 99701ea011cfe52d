"""Identification state machine.

Centralizes per-file state transition logic, validation and broadcasting.
"""

import logging
from datetime import datetime

from subdrop.models.identity import (
    GuessOutcome,
    IdentificationRecord,
    IdentificationState,
    Resolved,
)
from subdrop.services.event_broadcaster import EventBroadcaster

logger = logging.getLogger(__name__)


class IdentificationStateMachine:
    """Manages identification state transitions with validation and broadcasting."""

    VALID_TRANSITIONS = {
        IdentificationState.IDLE: {
            IdentificationState.GUESSING,
            IdentificationState.RESOLVED,  # reuse or manual selection
            IdentificationState.ERROR,
        },
        IdentificationState.GUESSING: {
            IdentificationState.RESOLVED,
            IdentificationState.NO_MATCH,
            IdentificationState.ERROR,
        },
        IdentificationState.RESOLVED: set(),  # Terminal state
        IdentificationState.NO_MATCH: set(),  # Terminal state
        IdentificationState.ERROR: set(),  # Terminal state
    }

    def __init__(self, event_broadcaster: EventBroadcaster):
        self._broadcaster = event_broadcaster

    def can_transition(self, from_state: IdentificationState, to_state: IdentificationState) -> bool:
        """Validate if state transition is allowed.

        Args:
            from_state: Current identification state
            to_state: Desired identification state

        Returns:
            True if transition is valid, False otherwise
        """
        # Staying put is allowed; an episode identity replaces a series one in RESOLVED
        if from_state == to_state:
            return True

        return to_state in self.VALID_TRANSITIONS.get(from_state, set())

    async def transition(
        self,
        record: IdentificationRecord,
        to_state: IdentificationState,
        outcome: GuessOutcome | None = None,
        error_message: str | None = None,
        broadcast: bool = True,
    ) -> bool:
        """Perform a validated state transition and broadcast it.

        Args:
            record: Record to transition
            to_state: Target state
            outcome: Outcome to store alongside the new state
            error_message: Reason if transitioning to ERROR
            broadcast: Whether to broadcast the state change

        Returns:
            True if transition succeeded, False if invalid
        """
        from_state = record.state

        if not self.can_transition(from_state, to_state):
            logger.warning(
                f"Invalid state transition for {record.name}: {from_state.value} -> {to_state.value}"
            )
            return False

        logger.debug(f"{record.name} state transition: {from_state.value} -> {to_state.value}")

        record.state = to_state
        record.updated_at = datetime.now()
        if outcome is not None:
            record.outcome = outcome
        if to_state == IdentificationState.ERROR and error_message:
            record.error_message = error_message

        if broadcast:
            try:
                await self._broadcast(record, to_state, error_message)
            except Exception as e:
                logger.error(
                    f"{record.name}: broadcast failed after {to_state.value}: {e}",
                    exc_info=True,
                )

        return True

    async def _broadcast(
        self,
        record: IdentificationRecord,
        to_state: IdentificationState,
        error_message: str | None,
    ) -> None:
        if to_state == IdentificationState.GUESSING:
            await self._broadcaster.broadcast_identification_started(record.path)
        elif to_state == IdentificationState.RESOLVED and isinstance(record.outcome, Resolved):
            await self._broadcaster.broadcast_identification_resolved(
                record.path, record.outcome.identity
            )
        elif to_state == IdentificationState.NO_MATCH:
            await self._broadcaster.broadcast_no_match(record.path)
        elif to_state == IdentificationState.ERROR:
            await self._broadcaster.broadcast_identification_failed(
                record.path, error_message or "Unknown error"
            )

    async def transition_to_failed(
        self, record: IdentificationRecord, error_message: str, outcome: GuessOutcome
    ) -> bool:
        """Convenience method to transition to ERROR state."""
        return await self.transition(
            record, IdentificationState.ERROR, outcome=outcome, error_message=error_message
        )

    def get_next_states(self, current_state: IdentificationState) -> set[IdentificationState]:
        """Get valid next states from current state.

        Args:
            current_state: Current identification state

        Returns:
            Set of valid next states
        """
        return self.VALID_TRANSITIONS.get(current_state, set())
