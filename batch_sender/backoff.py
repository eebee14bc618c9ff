# Copyright © Aptos Foundation
# SPDX-License-Identifier: Apache-2.0

"""
Retry delay computation for rate-limited transaction submission.

The policy is exponential with additive jitter::

    delay(attempt) = base * 2 ** (attempt - 1) + uniform(0, base / 2)

With the default base of one second the first retry waits between 1.0 and 1.5
seconds, the second between 2.0 and 2.5 seconds, and so on.

Examples:
    Computing delays::

        from batch_sender.backoff import BackoffPolicy

        policy = BackoffPolicy(base=0.5)
        for attempt in range(1, 4):
            print(f"attempt {attempt}: sleep {policy.delay(attempt):.2f}s")
"""

from __future__ import annotations

import random
import unittest
import unittest.mock
from typing import Optional


class BackoffPolicy:
    """Exponential backoff with jitter drawn from ``[0, base / 2)``."""

    base: float
    _random: random.Random

    def __init__(self, base: float = 1.0, rng: Optional[random.Random] = None):
        if base < 0:
            raise ValueError(f"Backoff base must be non-negative, got {base}")
        self.base = base
        self._random = rng or random.Random()

    def delay(self, attempt: int) -> float:
        """Seconds to sleep after failed attempt number ``attempt`` (1-based)."""
        if attempt < 1:
            raise ValueError(f"Attempt must be at least 1, got {attempt}")
        jitter = self._random.random() * (self.base / 2)
        return self.base * 2 ** (attempt - 1) + jitter

    def minimum_delay(self, attempt: int) -> float:
        """Lower bound of ``delay(attempt)``, i.e. the delay without jitter."""
        if attempt < 1:
            raise ValueError(f"Attempt must be at least 1, got {attempt}")
        return self.base * 2 ** (attempt - 1)


class Test(unittest.TestCase):
    def test_bounds(self):
        policy = BackoffPolicy(base=1.0, rng=random.Random(7))
        for attempt in range(1, 8):
            for _ in range(50):
                delay = policy.delay(attempt)
                self.assertGreaterEqual(delay, 2 ** (attempt - 1))
                self.assertLess(delay, 2 ** (attempt - 1) + 0.5)

    def test_grows_with_attempt(self):
        policy = BackoffPolicy(base=0.2, rng=random.Random(1))
        previous = 0.0
        for attempt in range(1, 6):
            # Adjacent ranges never overlap once base * 2**(n-1) >= base / 2.
            delay = policy.delay(attempt)
            self.assertGreaterEqual(delay, previous)
            previous = delay

    def test_zero_jitter_draw(self):
        rng = unittest.mock.Mock()
        rng.random.return_value = 0.0
        policy = BackoffPolicy(base=1.0, rng=rng)
        self.assertEqual(policy.delay(1), 1.0)
        self.assertEqual(policy.delay(3), 4.0)
        self.assertEqual(policy.minimum_delay(3), 4.0)

    def test_zero_base(self):
        policy = BackoffPolicy(base=0.0)
        self.assertEqual(policy.delay(4), 0.0)

    def test_invalid_attempt(self):
        policy = BackoffPolicy()
        self.assertRaises(ValueError, policy.delay, 0)
        self.assertRaises(ValueError, policy.minimum_delay, -1)

    def test_invalid_base(self):
        self.assertRaises(ValueError, BackoffPolicy, -1.0)
