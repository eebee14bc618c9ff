# Copyright © Aptos Foundation
# SPDX-License-Identifier: Apache-2.0

"""
Per-recipient transaction submission with rate-limit retries.

A :class:`SubmissionWorker` broadcasts a single transfer. Failures classified as
transient (rate limiting) are retried after a :class:`BackoffPolicy` delay until
``max_attempts`` total attempts have been made; anything else ends the worker
immediately. Every terminal state is returned as a
:class:`batch_sender.models.SubmissionOutcome`, never raised, so one recipient's
failure cannot disturb sibling workers.

Transient classification, most to least structured:

1. :class:`TransientError` raised by the broadcaster
2. :class:`batch_sender.async_client.ApiError` with HTTP status 429
3. :class:`batch_sender.async_client.RpcError` with code -32005 or 429, or a
   ``data.type`` of ``rate_limit_exceeded``
4. an error message mentioning "rate limit" or "too many requests"
"""

from __future__ import annotations

import asyncio
import logging
import random
import unittest
from typing import Awaitable, Callable, List

from .async_client import ApiError, RpcError
from .backoff import BackoffPolicy
from .models import SubmissionOutcome, SubmissionStatus, Transfer
from .protocols import Broadcaster

RATE_LIMIT_RPC_CODES = {-32005, 429}
RATE_LIMIT_MESSAGES = ("rate limit", "too many requests")


class TransientError(Exception):
    """Raised by a broadcaster when the provider asks the caller to retry later"""


def is_transient(error: BaseException) -> bool:
    if isinstance(error, TransientError):
        return True
    if isinstance(error, ApiError) and error.status_code == 429:
        return True
    if isinstance(error, RpcError):
        if error.code in RATE_LIMIT_RPC_CODES:
            return True
        if isinstance(error.data, dict) and error.data.get("type") == "rate_limit_exceeded":
            return True
    # Providers without structured errors only describe rate limiting in the message.
    message = str(error).lower()
    return any(marker in message for marker in RATE_LIMIT_MESSAGES)


def describe(error: BaseException) -> str:
    return str(error) or type(error).__name__


class SubmissionWorker:
    """Submits transfers through a broadcaster, retrying transient failures."""

    _broadcaster: Broadcaster
    _backoff: BackoffPolicy
    _max_attempts: int
    _sleep: Callable[[float], Awaitable[None]]

    def __init__(
        self,
        broadcaster: Broadcaster,
        backoff: BackoffPolicy,
        max_attempts: int = 5,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        if max_attempts < 1:
            raise ValueError(f"max_attempts must be at least 1, got {max_attempts}")
        self._broadcaster = broadcaster
        self._backoff = backoff
        self._max_attempts = max_attempts
        self._sleep = sleep

    async def submit(
        self, transfer: Transfer, sender: str, network: str, index: int = 0
    ) -> SubmissionOutcome:
        """Broadcast ``transfer`` and return its terminal submission outcome.

        ``index`` is the transfer's position in the batch and only labels log lines.
        """
        recipient = transfer.recipient
        attempt = 1
        while True:
            logging.info(
                f"Attempting to send transaction #{index} to {recipient} (attempt {attempt}/{self._max_attempts})"
            )
            try:
                txn_hash = await self._broadcaster.send_transaction(
                    sender, recipient, transfer.amount, network
                )
            except asyncio.CancelledError:
                raise
            except Exception as e:
                if is_transient(e) and attempt < self._max_attempts:
                    delay = self._backoff.delay(attempt)
                    logging.warning(
                        f"Rate limit encountered for transaction #{index} to {recipient}. "
                        f"Retrying in {delay:.2f}s (attempt {attempt}/{self._max_attempts}). Error: {e}"
                    )
                    await self._sleep(delay)
                    attempt += 1
                    continue
                logging.error(
                    f"Failed to send transaction #{index} to {recipient} after {attempt} attempts. Error: {e}"
                )
                return SubmissionOutcome.rejected(recipient, describe(e), attempt)

            if not isinstance(txn_hash, str) or not txn_hash:
                logging.error(
                    f"Transaction #{index} to {recipient} returned no transaction hash: {txn_hash!r}"
                )
                return SubmissionOutcome.rejected(
                    recipient, f"No transaction hash returned: {txn_hash!r}", attempt
                )
            logging.info(
                f"Transaction #{index} to {recipient} submitted. Hash: {txn_hash}"
            )
            return SubmissionOutcome.submitted(recipient, txn_hash, attempt)


class ScriptedBroadcaster:
    """Test double replaying a list of results, raising those that are exceptions."""

    def __init__(self, results: List[object]):
        self.results = list(results)
        self.calls = 0

    async def send_transaction(self, sender, recipient, amount, network) -> str:
        self.calls += 1
        result = self.results.pop(0)
        if isinstance(result, BaseException):
            raise result
        return result  # type: ignore[return-value]


class Test(unittest.IsolatedAsyncioTestCase):
    TRANSFER = Transfer("0x8617E340B3D01FA5F11F306F4090FD50E238070D", "0.001")
    SENDER = "0x52908400098527886E0F7030069857D2E4169EE7"

    def setUp(self):
        self.sleeps: List[float] = []
        self.backoff = BackoffPolicy(base=1.0, rng=random.Random(3))

    async def record_sleep(self, seconds: float):
        self.sleeps.append(seconds)

    def worker(self, broadcaster, max_attempts: int = 5) -> SubmissionWorker:
        return SubmissionWorker(
            broadcaster, self.backoff, max_attempts, sleep=self.record_sleep
        )

    async def test_first_attempt(self):
        broadcaster = ScriptedBroadcaster(["0xaa"])
        outcome = await self.worker(broadcaster).submit(self.TRANSFER, self.SENDER, "x")
        self.assertEqual(outcome.status, SubmissionStatus.SUBMITTED)
        self.assertEqual(outcome.txn_hash, "0xaa")
        self.assertEqual(outcome.attempts, 1)
        self.assertIsNone(outcome.error)
        self.assertEqual(self.sleeps, [])

    async def test_retries_then_succeeds(self):
        broadcaster = ScriptedBroadcaster(
            [
                ApiError("Too Many Requests", 429),
                RpcError("limit exceeded", -32005),
                TransientError("slow down"),
                "0xbb",
            ]
        )
        outcome = await self.worker(broadcaster).submit(self.TRANSFER, self.SENDER, "x")
        self.assertEqual(outcome.status, SubmissionStatus.SUBMITTED)
        self.assertEqual(outcome.attempts, 4)
        self.assertEqual(len(self.sleeps), 3)
        minimum = sum(self.backoff.minimum_delay(a) for a in range(1, 4))
        self.assertGreaterEqual(sum(self.sleeps), minimum)
        for attempt, slept in enumerate(self.sleeps, start=1):
            self.assertGreaterEqual(slept, self.backoff.minimum_delay(attempt))

    async def test_exhausts_attempts(self):
        errors = [Exception(f"rate limit hit {n}") for n in range(5)]
        broadcaster = ScriptedBroadcaster(errors)
        outcome = await self.worker(broadcaster).submit(self.TRANSFER, self.SENDER, "x")
        self.assertEqual(outcome.status, SubmissionStatus.REJECTED)
        self.assertEqual(outcome.attempts, 5)
        self.assertEqual(outcome.error, "rate limit hit 4")
        self.assertIsNone(outcome.txn_hash)
        self.assertEqual(broadcaster.calls, 5)
        self.assertEqual(len(self.sleeps), 4)

    async def test_permanent_error(self):
        broadcaster = ScriptedBroadcaster(
            [RpcError("insufficient funds for gas * price + value", -32000), "0xcc"]
        )
        outcome = await self.worker(broadcaster).submit(self.TRANSFER, self.SENDER, "x")
        self.assertEqual(outcome.status, SubmissionStatus.REJECTED)
        self.assertEqual(outcome.attempts, 1)
        self.assertIn("insufficient funds", outcome.error)
        self.assertEqual(self.sleeps, [])
        self.assertEqual(broadcaster.calls, 1)

    async def test_single_attempt_budget(self):
        broadcaster = ScriptedBroadcaster([ApiError("Too Many Requests", 429)])
        outcome = await self.worker(broadcaster, max_attempts=1).submit(
            self.TRANSFER, self.SENDER, "x"
        )
        self.assertEqual(outcome.status, SubmissionStatus.REJECTED)
        self.assertEqual(outcome.attempts, 1)
        self.assertEqual(self.sleeps, [])

    async def test_missing_hash_is_rejected(self):
        for result in [None, ""]:
            broadcaster = ScriptedBroadcaster([result])
            outcome = await self.worker(broadcaster).submit(
                self.TRANSFER, self.SENDER, "x"
            )
            self.assertEqual(outcome.status, SubmissionStatus.REJECTED)
            self.assertIsNone(outcome.txn_hash)
            self.assertIn("No transaction hash", outcome.error)
            self.assertEqual(broadcaster.calls, 1)
        self.assertEqual(self.sleeps, [])

    async def test_cancellation_propagates(self):
        broadcaster = ScriptedBroadcaster([asyncio.CancelledError()])
        with self.assertRaises(asyncio.CancelledError):
            await self.worker(broadcaster).submit(self.TRANSFER, self.SENDER, "x")

    def test_classification(self):
        self.assertTrue(is_transient(TransientError()))
        self.assertTrue(is_transient(ApiError("", 429)))
        self.assertFalse(is_transient(ApiError("bad gateway", 502)))
        self.assertTrue(is_transient(RpcError("x", 429)))
        self.assertTrue(
            is_transient(RpcError("x", -32000, {"type": "rate_limit_exceeded"}))
        )
        self.assertFalse(is_transient(RpcError("execution reverted", 3)))
        self.assertTrue(is_transient(Exception("Too Many Requests")))
        self.assertTrue(is_transient(Exception("Rate Limit exceeded")))
        self.assertFalse(is_transient(ValueError("invalid recipient")))

    def test_invalid_budget(self):
        self.assertRaises(
            ValueError, SubmissionWorker, ScriptedBroadcaster([]), self.backoff, 0
        )
