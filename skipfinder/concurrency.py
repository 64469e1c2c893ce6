from __future__ import annotations

import logging
import os
from concurrent.futures import ThreadPoolExecutor
from typing import Callable, Sequence, TypeVar

from skipfinder.errors import wrap_unit_error
from skipfinder.models import UnitFailure

logger = logging.getLogger(__name__)

T = TypeVar("T")
R = TypeVar("R")


def default_worker_count(max_workers: int | None = None) -> int:
    return max(1, max_workers or os.cpu_count() or 1)


def fan_out(
    units: Sequence[T],
    work: Callable[[T], R],
    *,
    label: Callable[[T], str],
    threading: bool = True,
    max_workers: int | None = None,
) -> tuple[list[R | None], list[UnitFailure]]:
    """Run independent units and collect per-unit results and failures.

    Results keep the order of ``units`` (``None`` where a unit failed), independent of
    completion order. A failing unit never cancels its siblings.
    """

    results: list[R | None] = [None] * len(units)
    failures: list[UnitFailure] = []

    if threading and len(units) > 1:
        workers = min(default_worker_count(max_workers), len(units))
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="skipfinder") as executor:
            futures = [executor.submit(work, unit) for unit in units]
            outcomes = []
            for future in futures:
                try:
                    outcomes.append((future.result(), None))
                except Exception as exc:
                    outcomes.append((None, exc))
    else:
        outcomes = []
        for unit in units:
            try:
                outcomes.append((work(unit), None))
            except Exception as exc:
                outcomes.append((None, exc))

    for index, (unit, (result, exc)) in enumerate(zip(units, outcomes)):
        if exc is None:
            results[index] = result
            continue
        error = wrap_unit_error(exc)
        logger.error("Unit %s failed: %s", label(unit), error)
        logger.debug("Failure details for %s", label(unit), exc_info=exc)
        failures.append(UnitFailure(unit=label(unit), error=error))

    return results, failures
