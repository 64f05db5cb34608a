"""Per-entity-type sequential public identifiers.

Values come from a store-native atomic increment on one counter record per
entity type; there is no read-max-then-write path. Pass the ``session`` of
an open transaction to tie the increment to the insert that consumes it:
if the insert fails, the increment rolls back with it.
"""

from __future__ import annotations

import logging

from docrel.core.metrics import AccessMetrics, access_metrics
from docrel.errors import SequenceError
from docrel.store.base import DocumentSession, DocumentStore

logger = logging.getLogger(__name__)


class SequenceGenerator:
    """Issue the next public id for an entity type (first value is 1)."""

    def __init__(
        self,
        store: DocumentStore,
        *,
        metrics: AccessMetrics | None = None,
    ) -> None:
        self._store = store
        self._metrics = metrics or access_metrics()

    @staticmethod
    def counter_name(entity_type: str) -> str:
        return entity_type

    async def next(self, entity_type: str, *, session: DocumentSession | None = None) -> int:
        """Atomically increment and return the counter for *entity_type*.

        Raises:
            SequenceError: the increment failed; nothing was issued.
        """
        target = session if session is not None else self._store
        try:
            value = await target.increment(self.counter_name(entity_type))
        except Exception as exc:
            self._metrics.sequence_failed(entity_type)
            logger.exception("Sequence increment failed for %s", entity_type)
            raise SequenceError(entity_type, str(exc) or type(exc).__name__) from exc
        if not isinstance(value, int) or isinstance(value, bool) or value < 1:
            self._metrics.sequence_failed(entity_type)
            raise SequenceError(entity_type, f"store returned invalid counter value {value!r}")
        self._metrics.sequence_issued(entity_type)
        return value
