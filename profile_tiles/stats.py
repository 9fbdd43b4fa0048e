"""
profile-tiles Run Statistics

Bookkeeping for a consolidation run: good/bad counters per quality
category, warning counters, and "impossible value" diagnostics.

A RunStatistics is only ever appended to. Workers fill their own instance
for each file and the pipeline merges it into the chunk and run totals.
"""

from collections import Counter
from dataclasses import dataclass, field
from typing import Any

import structlog

from profile_tiles.config import QUANTITIES

logger = structlog.get_logger(__name__)

# Categories with a good/bad counter pair
CATEGORIES = ("station", "position", "time", "depth", "temperature", "salinity")


@dataclass(frozen=True)
class ImpossibleValue:
    """Worst impossible value seen for one quantity in one source file."""
    source: str  # "<archive>/<file>"
    value: float


@dataclass
class ImpossibleValues:
    """Diagnostic listings for one quantity."""
    below_min: list[ImpossibleValue] = field(default_factory=list)
    above_max: list[ImpossibleValue] = field(default_factory=list)


@dataclass
class RunStatistics:
    """Counters and diagnostics accumulated over a chunk or a whole run."""
    good: Counter = field(default_factory=Counter)
    bad: Counter = field(default_factory=Counter)
    warnings: Counter = field(default_factory=Counter)
    counts: Counter = field(default_factory=Counter)
    impossible: dict[str, ImpossibleValues] = field(
        default_factory=lambda: {q: ImpossibleValues() for q in QUANTITIES}
    )

    def count_good(self, category: str, n: int = 1) -> None:
        self.good[category] += n

    def count_bad(self, category: str, n: int = 1) -> None:
        self.bad[category] += n

    def warn(self, kind: str) -> None:
        self.warnings[kind] += 1

    def add(self, name: str, n: int = 1) -> None:
        """Increment a bookkeeping counter (files, exceptions, rows, ...)."""
        self.counts[name] += n

    def record_below_min(self, quantity: str, source: str, value: float) -> None:
        self.impossible[quantity].below_min.append(ImpossibleValue(source, float(value)))

    def record_above_max(self, quantity: str, source: str, value: float) -> None:
        self.impossible[quantity].above_max.append(ImpossibleValue(source, float(value)))

    def merge(self, other: "RunStatistics") -> None:
        """Append everything in other to this instance."""
        self.good.update(other.good)
        self.bad.update(other.bad)
        self.warnings.update(other.warnings)
        self.counts.update(other.counts)
        for quantity, values in other.impossible.items():
            mine = self.impossible.setdefault(quantity, ImpossibleValues())
            mine.below_min.extend(values.below_min)
            mine.above_max.extend(values.above_max)

    def summary(self) -> dict[str, Any]:
        """Flat dict of all counters, suitable as structlog key/values."""
        result: dict[str, Any] = {}
        for category in CATEGORIES:
            result[f"good_{category}"] = self.good[category]
            result[f"bad_{category}"] = self.bad[category]
        for kind, n in sorted(self.warnings.items()):
            result[f"warn_{kind}"] = n
        for name, n in sorted(self.counts.items()):
            result[name] = n
        return result

    def diagnostics(self) -> dict[str, dict[str, list[tuple[str, float]]]]:
        """
        Impossible-value listings, worst first.

        below_min lists are sorted ascending by value, above_max lists
        descending, so the most extreme offender always comes first.
        """
        result = {}
        for quantity, values in self.impossible.items():
            below = sorted(values.below_min, key=lambda v: (v.value, v.source))
            above = sorted(values.above_max, key=lambda v: (-v.value, v.source))
            result[quantity] = {
                "below_min": [(v.source, v.value) for v in below],
                "above_max": [(v.source, v.value) for v in above],
            }
        return result


def log_statistics(
    stats: RunStatistics,
    scope: str,
    include_diagnostics: bool = False,
    **context: Any,
) -> None:
    """
    Emit statistics to the log stream.

    Reporting must never fail the pipeline, so any error while formatting
    is logged and swallowed.

    Args:
        stats: Statistics to report
        scope: 'chunk', 'year' or 'run'
        include_diagnostics: Also log every impossible-value listing
        **context: Extra key/values bound to every emitted event
    """
    log = logger.bind(scope=scope, **context)
    try:
        log.info("statistics", **stats.summary())
        if not include_diagnostics:
            return
        for quantity, listings in stats.diagnostics().items():
            for direction, entries in listings.items():
                if not entries:
                    continue
                log.info(
                    "impossible_values",
                    quantity=quantity,
                    direction=direction,
                    count=len(entries),
                    entries=entries,
                )
    except Exception as e:
        log.error("statistics_report_failed", error=str(e))
