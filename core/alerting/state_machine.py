"""Edge-triggered alerting over per-cycle failure batches."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import StrEnum
from typing import Any, Sequence

from core.alerting.manager import WEBHOOK_FIELD_LIMIT

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class CollectionFailure:
    """One (subject, error) entry of a poll cycle's error batch."""

    subject: str
    error: BaseException | str

    @property
    def message(self) -> str:
        return str(self.error)


class AlertAction(StrEnum):
    NONE = "none"
    ALERT = "alert"
    SUPPRESSED = "suppressed"
    RESOLVED = "resolved"


@dataclass(frozen=True, slots=True)
class AlertDecision:
    action: AlertAction
    delivered: bool = False


class AlertStateMachine:
    """
    Notifies on transitions between healthy and failing cycles only.

    `outstanding` flips only after the notifier accepted the message, so a
    failed send is attempted again on the next cycle with that cycle's data.
    """

    def __init__(self, notifier: Any, *, max_fields: int = WEBHOOK_FIELD_LIMIT):
        if max_fields < 1:
            raise ValueError("max_fields must be at least 1")
        self.notifier = notifier
        self.max_fields = max_fields
        self.outstanding = False

    def _cap(
        self, batch: Sequence[CollectionFailure]
    ) -> tuple[list[CollectionFailure], int]:
        if len(batch) <= self.max_fields:
            return list(batch), 0
        # keep one slot for the overflow marker
        shown = list(batch[: self.max_fields - 1])
        return shown, len(batch) - len(shown)

    async def evaluate(self, batch: Sequence[CollectionFailure]) -> AlertDecision:
        if batch and self.outstanding:
            return AlertDecision(AlertAction.SUPPRESSED)
        if not batch and not self.outstanding:
            return AlertDecision(AlertAction.NONE)

        action = AlertAction.ALERT if batch else AlertAction.RESOLVED
        try:
            if batch:
                shown, omitted = self._cap(batch)
                await self.notifier.alert(shown, omitted)
            else:
                await self.notifier.resolved()
        except Exception as exc:
            logger.warning(f"Could not send {action} notification, retrying next cycle: {exc}")
            return AlertDecision(action, delivered=False)

        self.outstanding = action is AlertAction.ALERT
        logger.info(f"Sent {action} notification")
        return AlertDecision(action, delivered=True)
