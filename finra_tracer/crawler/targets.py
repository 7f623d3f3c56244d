"""
Search target registry.

Holds the (instrument, date range) pairs a worker polls, in insertion order.
Round-robin selection and the split of targets across pool workers live here
so that the supervisor never has to touch the list itself.
"""

from __future__ import annotations

from collections.abc import Iterable, Iterator

from finra_tracer.crawler.models import Target
from finra_tracer.utils.config import TargetConfig


class TargetRegistry:
    """Ordered collection of immutable ``Target`` objects."""

    def __init__(self, targets: Iterable[Target] = ()) -> None:
        self._targets: list[Target] = list(targets)

    @classmethod
    def from_config(cls, configs: Iterable[TargetConfig]) -> "TargetRegistry":
        """Build a registry from ``Settings.targets``.

        Raises:
            ValueError: A target has a malformed date range.
        """
        return cls(
            Target(c.instrument_id, c.start_date, c.end_date) for c in configs
        )

    @staticmethod
    def parse(spec: str) -> Target:
        """Parse a ``CUSIP:MM/DD/YYYY:MM/DD/YYYY`` command line value."""
        parts = spec.split(":")
        if len(parts) != 3:
            raise ValueError(
                f"Invalid target {spec!r}, expected INSTRUMENT:MM/DD/YYYY:MM/DD/YYYY"
            )
        instrument_id, start_date, end_date = (p.strip() for p in parts)
        return Target(instrument_id, start_date, end_date)

    def add(self, instrument_id: str, start_date: str, end_date: str) -> Target:
        """Append a new target and return it."""
        target = Target(instrument_id, start_date, end_date)
        self._targets.append(target)
        return target

    def select(self, index: int) -> Target:
        """Return the target for a round-robin position (wraps around).

        Raises:
            LookupError: The registry is empty.
        """
        if not self._targets:
            raise LookupError("TargetRegistry is empty")
        return self._targets[index % len(self._targets)]

    def partition(self, parts: int) -> list["TargetRegistry"]:
        """Split the targets across ``parts`` workers (target i -> worker i % parts).

        Raises:
            ValueError: ``parts`` is not positive or exceeds the number of targets.
        """
        if parts <= 0:
            raise ValueError(f"parts must be positive, got {parts}")
        if parts > len(self._targets):
            raise ValueError(
                f"Cannot split {len(self._targets)} targets across {parts} workers"
            )
        return [TargetRegistry(self._targets[i::parts]) for i in range(parts)]

    @property
    def targets(self) -> tuple[Target, ...]:
        return tuple(self._targets)

    def __len__(self) -> int:
        return len(self._targets)

    def __iter__(self) -> Iterator[Target]:
        return iter(self._targets)

    def __repr__(self) -> str:
        return f"TargetRegistry({[str(t) for t in self._targets]})"
