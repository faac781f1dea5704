"""
Best-effort fan-out.

Runs one action per target, in order, and turns every per-target error into
an outcome instead of an exception. Replication, the checksum registry and
the recovery scan all walk sites this way.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Generic, Iterable, Optional, TypeVar

import structlog

logger = structlog.get_logger(__name__)

T = TypeVar("T")


class OutcomeStatus(str, Enum):
    """Result of one target's action."""
    OK = "ok"
    SKIPPED = "skipped"
    FAILED = "failed"


class Skipped(Exception):
    """Raised by an action to mark its target as skipped rather than failed."""
    pass


@dataclass
class Outcome(Generic[T]):
    """Outcome of the action for a single target."""
    target: T
    status: OutcomeStatus
    value: Any = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.status == OutcomeStatus.OK


@dataclass
class FanOutReport(Generic[T]):
    """Aggregated outcomes of one fan-out, in target order."""
    label: str
    outcomes: list[Outcome[T]] = field(default_factory=list)

    @property
    def succeeded(self) -> list[T]:
        return [o.target for o in self.outcomes if o.status == OutcomeStatus.OK]

    @property
    def skipped(self) -> list[T]:
        return [o.target for o in self.outcomes if o.status == OutcomeStatus.SKIPPED]

    @property
    def failed(self) -> list[Outcome[T]]:
        return [o for o in self.outcomes if o.status == OutcomeStatus.FAILED]

    @property
    def all_succeeded(self) -> bool:
        return not self.failed

    @property
    def first_success(self) -> Optional[Outcome[T]]:
        for outcome in self.outcomes:
            if outcome.ok:
                return outcome
        return None

    def to_dict(self) -> dict[str, Any]:
        return {
            "label": self.label,
            "succeeded": [str(t) for t in self.succeeded],
            "skipped": [str(t) for t in self.skipped],
            "failed": {str(o.target): o.error for o in self.failed},
        }


async def fan_out(
    targets: Iterable[T],
    action: Callable[[T], Awaitable[Any]],
    *,
    label: str = "fan_out",
    stop_on_success: bool = False,
) -> FanOutReport[T]:
    """
    Apply ``action`` to each target sequentially and collect outcomes.

    An action that raises produces a FAILED outcome (``Skipped`` produces a
    SKIPPED one); an action that returns ``False`` is also FAILED. Any other
    return value is OK and kept as the outcome's value. With
    ``stop_on_success`` the walk ends at the first OK target.
    """
    report: FanOutReport[T] = FanOutReport(label=label)

    for target in targets:
        try:
            value = await action(target)
        except asyncio.CancelledError:
            raise
        except Skipped as e:
            report.outcomes.append(Outcome(target, OutcomeStatus.SKIPPED, error=str(e) or None))
            continue
        except Exception as e:
            error = f"{type(e).__name__}: {e}"
            logger.debug("Fan-out target failed", label=label, target=str(target), error=error)
            report.outcomes.append(Outcome(target, OutcomeStatus.FAILED, error=error))
            continue

        if value is False:
            report.outcomes.append(Outcome(target, OutcomeStatus.FAILED, error="rejected"))
            continue

        report.outcomes.append(Outcome(target, OutcomeStatus.OK, value=value))
        if stop_on_success:
            break

    return report
