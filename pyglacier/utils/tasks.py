# Licensed to the Apache Software Foundation (ASF) under one
# or more contributor license agreements.  See the NOTICE file
# distributed with this work for additional information
# regarding copyright ownership.  The ASF licenses this file
# to you under the Apache License, Version 2.0 (the
# "License"); you may not use this file except in compliance
# with the License.  You may obtain a copy of the License at
#
#   http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing,
# software distributed under the License is distributed on an
# "AS IS" BASIS, WITHOUT WARRANTIES OR CONDITIONS OF ANY
# KIND, either express or implied.  See the License for the
# specific language governing permissions and limitations
# under the License.
"""Run a task for each item of a collection, optionally on an executor.

`for_each_suppressing_failures` always runs every item, and reports the per-item
outcome. Used for best-effort work such as deleting the files of a dropped table.
"""

from __future__ import annotations

import logging
from concurrent.futures import Executor, Future
from dataclasses import dataclass, field
from typing import (
    Callable,
    Generic,
    Iterable,
    List,
    Optional,
    Tuple,
    TypeVar,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

_SKIPPED = object()


@dataclass(kw_only=True)
class TaskOutcome(Generic[T]):
    succeeded: List[T] = field(default_factory=list)
    failed: List[Tuple[T, Exception]] = field(default_factory=list)
    skipped: List[T] = field(default_factory=list)

    @property
    def failed_items(self) -> List[T]:
        return [item for item, _ in self.failed]


def for_each_suppressing_failures(
    items: Iterable[T],
    task: Callable[[T], object],
    executor: Optional[Executor] = None,
    on_failure: Optional[Callable[[T, Exception], None]] = None,
    should_stop: Optional[Callable[[], bool]] = None,
) -> TaskOutcome[T]:
    """Run the task for every item, never raising for a failed item and never retrying.

    Args:
        items: The items to process.
        task: Function applied to each item.
        executor: When given, the items are processed concurrently on this executor.
        on_failure: Called with the item and the exception for every failed item.
        should_stop: Checked before an item is started. Once it returns True the remaining items
            are skipped; items that already started are allowed to finish.

    Returns:
        The outcome of every item.
    """
    outcome: TaskOutcome[T] = TaskOutcome()

    def _run(item: T) -> object:
        if should_stop is not None and should_stop():
            return _SKIPPED
        try:
            task(item)
            return None
        except Exception as exc:
            return exc

    def _record(item: T, result: object) -> None:
        if result is _SKIPPED:
            outcome.skipped.append(item)
        elif isinstance(result, Exception):
            outcome.failed.append((item, result))
            if on_failure is not None:
                on_failure(item, result)
        else:
            outcome.succeeded.append(item)

    if executor is None:
        for item in items:
            _record(item, _run(item))
    else:
        submitted: List[Tuple[T, Future[object]]] = [(item, executor.submit(_run, item)) for item in items]
        for item, future in submitted:
            _record(item, future.result())

    if outcome.skipped:
        logger.info("Skipped %d task(s) after a stop was requested", len(outcome.skipped))

    return outcome
