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

"""Retry utilities for commits that lost an optimistic-concurrency race."""

from __future__ import annotations

import logging
import random
import time
from collections.abc import Callable
from typing import Dict, TypeVar

from pyglacier.utils.properties import property_as_int

logger = logging.getLogger(__name__)

T = TypeVar("T")

COMMIT_NUM_RETRIES = "commit.retry.num-retries"
COMMIT_NUM_RETRIES_DEFAULT = 4

COMMIT_MIN_RETRY_WAIT_MS = "commit.retry.min-wait-ms"
COMMIT_MIN_RETRY_WAIT_MS_DEFAULT = 100

COMMIT_MAX_RETRY_WAIT_MS = "commit.retry.max-wait-ms"
COMMIT_MAX_RETRY_WAIT_MS_DEFAULT = 60 * 1000

COMMIT_TOTAL_RETRY_TIME_MS = "commit.retry.total-timeout-ms"
COMMIT_TOTAL_RETRY_TIME_MS_DEFAULT = 30 * 60 * 1000


class RetryConfig:
    """Configuration for retry behavior with exponential backoff."""

    def __init__(
        self,
        max_attempts: int = COMMIT_NUM_RETRIES_DEFAULT,
        min_wait_ms: int = COMMIT_MIN_RETRY_WAIT_MS_DEFAULT,
        max_wait_ms: int = COMMIT_MAX_RETRY_WAIT_MS_DEFAULT,
        total_timeout_ms: int = COMMIT_TOTAL_RETRY_TIME_MS_DEFAULT,
        scale_factor: float = 2.0,
        jitter_factor: float = 0.1,
    ):
        """Initialize retry configuration.

        Args:
            max_attempts: Maximum number of attempts. Values below 1 are clamped to 1.
            min_wait_ms: Minimum wait time between attempts in milliseconds.
            max_wait_ms: Maximum wait time between attempts in milliseconds.
            total_timeout_ms: Total time allowed for all attempts in milliseconds.
            scale_factor: Exponential backoff scale factor.
            jitter_factor: Random jitter factor (0.1 = 10% jitter).
        """
        self.max_attempts = max(1, max_attempts)
        self.min_wait_ms = max(0, min_wait_ms)
        self.max_wait_ms = max(0, max_wait_ms)
        self.total_timeout_ms = max(0, total_timeout_ms)
        self.scale_factor = scale_factor
        self.jitter_factor = jitter_factor

    @classmethod
    def from_table_properties(cls, properties: Dict[str, str]) -> RetryConfig:
        """Read the commit.retry.* table properties, falling back to the defaults."""
        return cls(
            max_attempts=property_as_int(properties, COMMIT_NUM_RETRIES, COMMIT_NUM_RETRIES_DEFAULT),  # type: ignore
            min_wait_ms=property_as_int(properties, COMMIT_MIN_RETRY_WAIT_MS, COMMIT_MIN_RETRY_WAIT_MS_DEFAULT),  # type: ignore
            max_wait_ms=property_as_int(properties, COMMIT_MAX_RETRY_WAIT_MS, COMMIT_MAX_RETRY_WAIT_MS_DEFAULT),  # type: ignore
            total_timeout_ms=property_as_int(  # type: ignore
                properties, COMMIT_TOTAL_RETRY_TIME_MS, COMMIT_TOTAL_RETRY_TIME_MS_DEFAULT
            ),
        )


def run_with_retry(
    task: Callable[[int], T],
    config: RetryConfig,
    retry_on: tuple[type[Exception], ...],
) -> T:
    """Run a task with retry logic using exponential backoff.

    Args:
        task: The task to execute, called with the 1-based attempt number.
        config: Retry configuration parameters.
        retry_on: Tuple of exception types that should trigger a retry.

    Returns:
        The result of the task.

    Raises:
        The last exception when the attempts or the time budget are exhausted.
    """
    start_time_ms = int(time.time() * 1000)
    attempt = 0

    while True:
        attempt += 1
        try:
            return task(attempt)
        except retry_on as e:
            duration_ms = int(time.time() * 1000) - start_time_ms

            if attempt >= config.max_attempts:
                logger.info("Stopping retries after %d attempts", attempt)
                raise

            if duration_ms > config.total_timeout_ms and attempt > 1:
                logger.info("Stopping retries after %d ms (timeout)", duration_ms)
                raise

            delay_ms = min(
                config.min_wait_ms * (config.scale_factor ** (attempt - 1)),
                config.max_wait_ms,
            )
            jitter = random.random() * delay_ms * config.jitter_factor
            sleep_time_ms = delay_ms + jitter

            logger.warning(
                "Retrying task after failure (attempt %d): sleepTimeMs=%.0f, error=%s",
                attempt,
                sleep_time_ms,
                str(e),
            )

            time.sleep(sleep_time_ms / 1000)
