#!/usr/bin/env python3
# Copyright (c) 2026 Red Hat, Inc.
# Copyright Contributors to the Open Cluster Management project

"""
Bounded retry with increasing backoff.
"""

import logging
import random
import time
from dataclasses import dataclass


@dataclass(frozen=True)
class Backoff:
    """
    Retry budget and delay schedule.

    Attributes:
        steps (int): Maximum number of attempts, including the first one.
        duration (float): Delay in seconds before the second attempt.
        factor (float): Multiplier applied to the delay after every attempt.
        jitter (float): Up to this fraction of the delay is added at random.
        cap (float): Upper bound for a single delay, in seconds. 0 means no cap.
    """
    steps: int = 5
    duration: float = 1.0
    factor: float = 2.0
    jitter: float = 0.1
    cap: float = 30.0

    def delays(self):
        duration = self.duration
        for _ in range(max(self.steps - 1, 0)):
            delay = duration
            if self.jitter > 0:
                delay += random.uniform(0, self.jitter * duration)
            if self.cap > 0:
                delay = min(delay, self.cap)
            yield delay
            duration *= self.factor


def on_error(backoff, retriable, fn, sleep=time.sleep, exceptions=(Exception,)):
    """
    Call ``fn`` until it succeeds, the error is not retriable, or the budget is spent.

    Args:
        backoff (Backoff): Attempt budget and delay schedule.
        retriable (callable): Returns True if the given exception may be retried.
        fn (callable): The operation to run. Takes no arguments.
        sleep (callable, optional): Used to wait between attempts.
        exceptions (tuple, optional): Exception types that count as a failed attempt.

    Returns:
        The value returned by ``fn``.

    Raises:
        The last exception raised by ``fn``.
    """
    attempts = max(backoff.steps, 1)
    delays = backoff.delays()
    for attempt in range(1, attempts + 1):
        try:
            return fn()
        except exceptions as e:
            if attempt >= attempts or not retriable(e):
                raise
            delay = next(delays)
            logging.warning(f"Attempt {attempt}/{attempts} failed: {e}. Retrying in {delay:.2f}s...")
            sleep(delay)
