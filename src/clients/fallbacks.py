"""Ordered fallback over candidate endpoints or payload shapes.

Simpro's documented and actual API surfaces diverge, so several calls work
through a short list of candidates. ``try_in_order`` returns the first success, or an
aggregated failure naming every candidate that was rejected.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Generic, Iterable, TypeVar

from src.clients.errors import SimproError

C = TypeVar("C")
T = TypeVar("T")


@dataclass
class FallbackResult(Generic[C, T]):
    value: T | None = None
    candidate: C | None = None
    failures: list[tuple[C, SimproError]] = field(default_factory=list)
    succeeded: bool = False

    @property
    def last_error(self) -> SimproError | None:
        return self.failures[-1][1] if self.failures else None

    def unwrap(self) -> T:
        if self.succeeded:
            return self.value  # type: ignore[return-value]
        last = self.last_error
        tried = "; ".join(
            f"#{i} {_label(c)} -> {e.status or 'error'}" for i, (c, e) in enumerate(self.failures, 1)
        )
        raise SimproError(
            f"All {len(self.failures)} candidates failed ({tried or 'none tried'})",
            status=last.status if last else None,
            body=last.body if last else None,
            url=last.url if last else "",
        )


def _label(candidate: Any) -> str:
    # Payload bodies stay out of messages; dicts are named by their keys.
    if isinstance(candidate, tuple):
        return " ".join(_label(part) for part in candidate if isinstance(part, (str, dict)))
    if isinstance(candidate, dict):
        return "{" + ",".join(str(key) for key in candidate) + "}"
    return str(candidate)[:80]


async def try_in_order(
    candidates: Iterable[C],
    attempt: Callable[[C], Awaitable[T]],
) -> FallbackResult[C, T]:
    result: FallbackResult[C, T] = FallbackResult()
    for candidate in candidates:
        try:
            value = await attempt(candidate)
        except SimproError as exc:
            result.failures.append((candidate, exc))
            continue
        result.value = value
        result.candidate = candidate
        result.succeeded = True
        return result
    return result
