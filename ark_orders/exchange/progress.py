"""
In-flight submission tracker.

Holds the local phase (PendingApproval / PendingSubmission) of orders whose
submission is still running in this process. Entries disappear when the
submission ends either way; nothing here survives a restart, and chain state
always wins over it.
"""

import logging
from typing import Dict, Optional

from ark_common.canon import format_hash
from ark_orders.schemas.order_intent import OrderStatus

logger = logging.getLogger(__name__)

LOCAL_PHASES = (OrderStatus.PENDING_APPROVAL, OrderStatus.PENDING_SUBMISSION)


class SubmissionProgress:
    def __init__(self):
        self._phases: Dict[int, OrderStatus] = {}

    def mark(self, order_hash: int, phase: OrderStatus):
        if phase not in LOCAL_PHASES:
            raise ValueError(f"{phase} is not a local submission phase")
        self._phases[order_hash] = phase
        logger.debug(f"[progress] {format_hash(order_hash)} -> {phase.value}")

    def clear(self, order_hash: int):
        self._phases.pop(order_hash, None)

    def phase(self, order_hash: int) -> Optional[OrderStatus]:
        return self._phases.get(order_hash)

    def __len__(self) -> int:
        return len(self._phases)
