"""
strategies.py -- Ordered fallback chains with first-non-empty-wins semantics.

The registry exposes the same information through several endpoints that
come and go between API generations. Instead of nesting try/except blocks,
components declare a list of Strategy objects and hand it to
first_non_empty(), which runs them in order and stops at the first one that
returns a non-empty value. Results are never merged across strategies.

Every attempt is recorded so callers can report which path produced the
answer (ComplianceStatus.resolution, EvidenceResult.attempts).
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Optional

from .registry import RegistryError

logger = logging.getLogger("posturelens.strategies")

ATTEMPT_HIT = "hit"
ATTEMPT_EMPTY = "empty"
ATTEMPT_ERROR = "error"
ATTEMPT_SKIPPED = "skipped"


@dataclass
class Strategy:
    name: str
    run: Callable[[], Any]
    applies: bool = True


@dataclass
class StrategyAttempt:
    name: str
    status: str  # hit | empty | error | skipped
    count: int = 0
    error: Optional[str] = None


@dataclass
class StrategyOutcome:
    value: Any = None
    winner: Optional[str] = None
    attempts: list[StrategyAttempt] = field(default_factory=list)

    @property
    def found(self) -> bool:
        return self.winner is not None

    def trace(self) -> list[dict[str, Any]]:
        return [
            {"name": a.name, "status": a.status, "count": a.count, **({"error": a.error} if a.error else {})}
            for a in self.attempts
        ]


def _size(value: Any) -> int:
    try:
        return len(value)
    except TypeError:
        return 1 if value else 0


def first_non_empty(strategies: list[Strategy], label: str) -> StrategyOutcome:
    """Run strategies in order and return the first non-empty result.

    A RegistryError inside a strategy is recorded and the next strategy is
    tried. Any other exception propagates: it is a bug, not an upstream
    condition. When nothing matches, value is None and winner is None.
    """
    outcome = StrategyOutcome()
    for strategy in strategies:
        if not strategy.applies:
            outcome.attempts.append(StrategyAttempt(strategy.name, ATTEMPT_SKIPPED))
            continue
        try:
            value = strategy.run()
        except RegistryError as e:
            logger.debug("[%s] %s failed: %s", label, strategy.name, e)
            outcome.attempts.append(StrategyAttempt(strategy.name, ATTEMPT_ERROR, error=str(e)))
            continue
        count = _size(value)
        if count == 0:
            logger.debug("[%s] %s returned nothing", label, strategy.name)
            outcome.attempts.append(StrategyAttempt(strategy.name, ATTEMPT_EMPTY))
            continue
        outcome.attempts.append(StrategyAttempt(strategy.name, ATTEMPT_HIT, count=count))
        outcome.value = value
        outcome.winner = strategy.name
        logger.info("[%s] %s produced %d result(s)", label, strategy.name, count)
        return outcome

    logger.info("[%s] no strategy produced results (%d tried)", label, len(strategies))
    return outcome
