#!/usr/bin/env python3
"""
Retry/Poll Engine

A single bounded-attempt polling primitive. Every wait in a power cycle
(nodes powering off, PDU ports confirming a state, a BMC coming back on the
network) is a call to poll_until with its own attempt budget and delay.
"""

import logging
import time
from dataclasses import dataclass
from typing import Callable, Optional, Tuple

from pdu_driver import CommandError

logger = logging.getLogger('poll_engine')

Check = Callable[[], Tuple[int, int]]


class ThresholdExceeded(Exception):
    """Raised when a poll runs out of attempts before everything is satisfied"""

    def __init__(self, label: str, satisfied: int, required: int, attempts: int):
        self.label = label
        self.satisfied = satisfied
        self.required = required
        self.attempts = attempts
        super().__init__(
            f"{label}: {satisfied}/{required} satisfied after {attempts} attempts "
            f"({required - satisfied} stuck)"
        )


@dataclass(frozen=True)
class PollResult:
    """Outcome of a successful poll"""
    attempts: int
    satisfied: int
    required: int


def poll_until(check: Check, *, max_attempts: int, delay: float,
               action: Optional[Callable[[], None]] = None, warmup: float = 0,
               label: str = 'poll', sleep: Callable[[float], None] = time.sleep,
               on_retry: Optional[Callable[[int, int, int], None]] = None) -> PollResult:
    """
    Run check() until it reports every entity satisfied.

    Args:
        check: Returns (count_satisfied, total_required)
        max_attempts: Number of checks allowed before giving up
        delay: Seconds to wait before each re-check
        action: Corrective step run before waiting for a re-check
        warmup: Seconds to wait before the first check
        label: Name used in logs and in ThresholdExceeded
        sleep: Blocking sleep function
        on_retry: Called with (attempt, satisfied, required) after a failed check
            that will be retried

    Returns:
        PollResult for the attempt that succeeded

    Raises:
        ThresholdExceeded: After the max_attempts-th unsatisfied check
    """
    if max_attempts < 1:
        raise ValueError(f"max_attempts must be at least 1, got {max_attempts}")
    if warmup > 0:
        sleep(warmup)

    satisfied, required = 0, 0
    attempt = 1
    while True:
        try:
            satisfied, required = check()
        except CommandError as e:
            logger.warning(f"{label}: check failed on attempt {attempt}: {e}")
            satisfied = 0
        logger.debug(f"{label}: attempt {attempt}/{max_attempts}, {satisfied}/{required} satisfied")

        if required and satisfied == required:
            return PollResult(attempts=attempt, satisfied=satisfied, required=required)
        if attempt >= max_attempts:
            logger.debug(f"{label}: giving up after {attempt} attempts ({satisfied}/{required} satisfied)")
            raise ThresholdExceeded(label, satisfied, required, attempt)

        if on_retry is not None:
            on_retry(attempt, satisfied, required)
        if action is not None:
            try:
                action()
            except CommandError as e:
                logger.warning(f"{label}: corrective action failed on attempt {attempt}: {e}")
        sleep(delay)
        attempt += 1
