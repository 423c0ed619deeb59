"""
Execution Engine - Order State Machine.

============================================================
PURPOSE
============================================================
Order lifecycle with strict state transitions.

STATE MACHINE:

         ┌──────► COMPLETED   (scanner / executor)
    PENDING
         └──────► CANCELLED   (user action)

INVARIANTS:
- Terminal states are final
- Transitions are enforced at the store with a conditional
  update on status = 'pending'; this module is the single
  source of the allowed-transition table

============================================================
"""

import logging
from typing import Dict, Set, Tuple

from .types import OrderStatus


logger = logging.getLogger(__name__)


VALID_TRANSITIONS: Dict[OrderStatus, Set[OrderStatus]] = {
    OrderStatus.PENDING: {
        OrderStatus.COMPLETED,
        OrderStatus.CANCELLED,
    },
    # Terminal states - no transitions out
    OrderStatus.COMPLETED: set(),
    OrderStatus.CANCELLED: set(),
}


class TransitionGuard:
    """Checks transitions against VALID_TRANSITIONS."""

    @staticmethod
    def can_transition(
        from_status: OrderStatus,
        to_status: OrderStatus,
    ) -> Tuple[bool, str]:
        """
        Check if a transition is allowed.

        Returns:
            Tuple of (allowed, reason)
        """
        if to_status in VALID_TRANSITIONS.get(from_status, set()):
            return True, "Valid transition"

        if from_status.is_terminal():
            return False, f"Cannot transition from terminal status {from_status.value}"

        return False, f"Invalid transition: {from_status.value} -> {to_status.value}"

    @staticmethod
    def source_status_for(to_status: OrderStatus) -> OrderStatus:
        """The only status a transition into ``to_status`` may start from."""
        for source, targets in VALID_TRANSITIONS.items():
            if to_status in targets:
                return source
        raise ValueError(f"No transition leads to {to_status.value}")
