"""Human-facing unique codes (discount codes, issue references, ...).

Unlike sequential ids, these codes draw their entropy from random or
meaningful content, so uniqueness is checked against the store rather than
guaranteed structurally. After ``max_attempts`` collisions the last
candidate gets a nanosecond timestamp suffix and is returned without a
final existence check. That leaves a tiny residual collision window, which
the unique index on the code field turns into a failed insert rather than a
silent duplicate.
"""

from __future__ import annotations

import inspect
import logging
import secrets
import string
import time
from collections.abc import Awaitable, Callable
from datetime import UTC, datetime

from docrel.core.metrics import AccessMetrics, access_metrics

logger = logging.getLogger(__name__)

DEFAULT_MAX_ATTEMPTS = 10
CODE_ALPHABET = string.ascii_uppercase + string.digits

type CandidateFn = Callable[[], str | Awaitable[str]]
type ExistsFn = Callable[[str], bool | Awaitable[bool]]


def random_code(length: int = 10, *, prefix: str = "", alphabet: str = CODE_ALPHABET) -> str:
    """Random code of *length* characters drawn from *alphabet*, after *prefix*."""
    return prefix + "".join(secrets.choice(alphabet) for _ in range(length))


def reference_code(prefix: str = "REF", *, length: int = 6) -> str:
    """Dated reference like ``REF-20261019-4K7Q2Z``."""
    day = datetime.now(UTC).strftime("%Y%m%d")
    return f"{prefix}-{day}-{random_code(length)}"


async def _maybe_await[T](value: T | Awaitable[T]) -> T:
    if inspect.isawaitable(value):
        return await value
    return value


class UniqueCodeGenerator:
    """Bounded generate-and-check loop that always returns a code."""

    def __init__(
        self,
        *,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        metrics: AccessMetrics | None = None,
    ) -> None:
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.max_attempts = max_attempts
        self._metrics = metrics or access_metrics()

    async def generate(
        self,
        entity_type: str,
        candidate_fn: CandidateFn,
        exists_fn: ExistsFn,
        max_attempts: int | None = None,
    ) -> str:
        """Return a code *exists_fn* reports as unused, or the fallback.

        *candidate_fn* and *exists_fn* may be plain or async callables.
        *exists_fn* is called at most ``max_attempts`` times.
        """
        attempts = self.max_attempts if max_attempts is None else max_attempts
        if attempts < 1:
            raise ValueError("max_attempts must be at least 1")

        candidate = ""
        for attempt in range(1, attempts + 1):
            candidate = await _maybe_await(candidate_fn())
            if not await _maybe_await(exists_fn(candidate)):
                return candidate
            self._metrics.code_collision(entity_type)
            logger.debug("%s code collision on attempt %d: %s", entity_type, attempt, candidate)

        fallback = f"{candidate}-{time.time_ns()}"
        self._metrics.code_fallback(entity_type)
        logger.warning(
            "%s code generation exhausted %d attempts; using timestamp fallback %s",
            entity_type,
            attempts,
            fallback,
        )
        return fallback
