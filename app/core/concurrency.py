"""
Bounded fan-out of independent work items on a thread pool.

Scheduled jobs process many records whose outcomes are independent: one
record failing must not stop the others. fan_out() runs a callable per item,
collects every outcome in input order, and turns an exception raised for one
item into that item's failure entry.

Django opens one database connection per thread, so worker threads close
their connection when done.

Usage:
    from core.concurrency import fan_out

    outcomes = fan_out(process_record, records, max_workers=8)
    for outcome in outcomes:
        if outcome.error is not None:
            logger.warning("Record %s failed: %s", outcome.item, outcome.error)
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Generic, TypeVar

from django.db import connection

logger = logging.getLogger(__name__)

ItemT = TypeVar("ItemT")
ResultT = TypeVar("ResultT")


@dataclass
class FanOutOutcome(Generic[ItemT, ResultT]):
    """
    Outcome of running the fan-out callable for one item.

    Attributes:
        item: The input item
        result: Return value when the callable succeeded
        error: Exception raised by the callable, if any
    """

    item: ItemT
    result: ResultT | None = None
    error: BaseException | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


def _run_one(func: Callable[[ItemT], ResultT], item: ItemT) -> FanOutOutcome[ItemT, ResultT]:
    try:
        return FanOutOutcome(item=item, result=func(item))
    except Exception as exc:
        logger.exception("Fan-out item failed", extra={"item": repr(item)})
        return FanOutOutcome(item=item, error=exc)


def _run_in_worker(func: Callable[[ItemT], ResultT], item: ItemT) -> FanOutOutcome[ItemT, ResultT]:
    try:
        return _run_one(func, item)
    finally:
        connection.close()


def fan_out(
    func: Callable[[ItemT], ResultT],
    items: Iterable[ItemT],
    max_workers: int,
    thread_name_prefix: str = "reconciliation",
) -> list[FanOutOutcome[ItemT, ResultT]]:
    """
    Run func over items with at most max_workers concurrent threads.

    Args:
        func: Callable applied to each item
        items: Work items
        max_workers: Pool size; 0 or 1 runs every item inline on the
            calling thread (tests, single-connection databases)
        thread_name_prefix: Prefix for worker thread names

    Returns:
        One FanOutOutcome per item, in input order
    """
    items = list(items)
    if not items:
        return []

    if max_workers <= 1:
        return [_run_one(func, item) for item in items]

    with ThreadPoolExecutor(
        max_workers=min(max_workers, len(items)),
        thread_name_prefix=thread_name_prefix,
    ) as executor:
        futures = [executor.submit(_run_in_worker, func, item) for item in items]
        return [future.result() for future in futures]
