# Copyright © Aptos Foundation
# SPDX-License-Identifier: Apache-2.0

"""
Waiting for submitted transactions to be included on chain.

A :class:`ConfirmationWaiter` polls a receipt source for one transaction hash
until a receipt arrives or its own timeout elapses. A timeout is a report state
(``timed_out``), not an exception: the transaction was submitted but its fate is
unknown within the window, and the caller may keep polling out of band.
"""

from __future__ import annotations

import asyncio
import logging
import unittest
from typing import List, Optional

from .models import ConfirmationOutcome, ConfirmationStatus, Receipt
from .protocols import ReceiptSource


class ConfirmationWaiter:
    """Polls a :class:`ReceiptSource` for one transaction at a time."""

    _receipt_source: ReceiptSource
    _poll_interval: float

    def __init__(self, receipt_source: ReceiptSource, poll_interval: float = 1.0):
        if poll_interval <= 0:
            raise ValueError(f"poll_interval must be positive, got {poll_interval}")
        self._receipt_source = receipt_source
        self._poll_interval = poll_interval

    async def await_confirmation(
        self, txn_hash: str, timeout: float
    ) -> ConfirmationOutcome:
        """Wait up to ``timeout`` seconds for the receipt of ``txn_hash``.

        Returns ``confirmed`` or ``reverted`` with the receipt, or ``timed_out``
        with a description that includes the last polling error, if any.
        """
        logging.info(f"Waiting for receipt of transaction {txn_hash}...")
        errors: List[BaseException] = []
        try:
            receipt = await asyncio.wait_for(self._poll(txn_hash, errors), timeout)
        except asyncio.TimeoutError:
            detail = f"No receipt for {txn_hash} within {timeout}s"
            if errors:
                detail = f"{detail}; last error: {errors[-1]}"
            logging.warning(f"Timeout waiting for receipt of {txn_hash}: {detail}")
            return ConfirmationOutcome.timed_out(txn_hash, detail)

        outcome = ConfirmationOutcome.from_receipt(receipt)
        if outcome.status == ConfirmationStatus.CONFIRMED:
            logging.info(
                f"Transaction {txn_hash} confirmed. Block: {receipt.block_number}"
            )
        else:
            logging.warning(
                f"Transaction {txn_hash} reverted. Block: {receipt.block_number}"
            )
        return outcome

    async def _poll(self, txn_hash: str, errors: List[BaseException]) -> Receipt:
        while True:
            receipt: Optional[Receipt] = None
            try:
                receipt = await self._receipt_source.transaction_receipt(txn_hash)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                # The transaction is already submitted; a failed lookup says nothing
                # about its fate, so keep polling until the deadline.
                logging.warning(f"Error fetching receipt for {txn_hash}: {e}")
                errors.append(e)
            if receipt is not None:
                return receipt
            await asyncio.sleep(self._poll_interval)


class PendingReceiptSource:
    """Test double returning ``None`` a number of times before each result."""

    def __init__(self, results: List[object], pending_polls: int = 0):
        self.results = list(results)
        self.pending_polls = pending_polls
        self.calls = 0

    async def transaction_receipt(self, txn_hash: str) -> Optional[Receipt]:
        self.calls += 1
        if self.calls <= self.pending_polls or not self.results:
            return None
        result = self.results.pop(0)
        if isinstance(result, BaseException):
            raise result
        return result  # type: ignore[return-value]


def make_receipt(txn_hash: str, success: bool = True, block: int = 100) -> Receipt:
    return Receipt(txn_hash, block, f"0xb{block:x}", success, 21000)


class Test(unittest.IsolatedAsyncioTestCase):
    async def test_confirmed_after_pending(self):
        source = PendingReceiptSource([make_receipt("0xaa")], pending_polls=2)
        waiter = ConfirmationWaiter(source, poll_interval=0.001)
        outcome = await waiter.await_confirmation("0xaa", timeout=5)
        self.assertEqual(outcome.status, ConfirmationStatus.CONFIRMED)
        self.assertEqual(outcome.block_number, 100)
        self.assertIsNone(outcome.error)
        self.assertEqual(source.calls, 3)

    async def test_reverted(self):
        source = PendingReceiptSource([make_receipt("0xbb", success=False, block=7)])
        waiter = ConfirmationWaiter(source, poll_interval=0.001)
        outcome = await waiter.await_confirmation("0xbb", timeout=5)
        self.assertEqual(outcome.status, ConfirmationStatus.REVERTED)
        self.assertEqual(outcome.block_number, 7)

    async def test_timed_out(self):
        source = PendingReceiptSource([])
        waiter = ConfirmationWaiter(source, poll_interval=0.005)
        outcome = await waiter.await_confirmation("0xcc", timeout=0.05)
        self.assertEqual(outcome.status, ConfirmationStatus.TIMED_OUT)
        self.assertIsNone(outcome.receipt)
        self.assertIsNone(outcome.block_number)
        self.assertIn("0xcc", outcome.error)

    async def test_poll_errors_are_retried(self):
        source = PendingReceiptSource(
            [ConnectionError("node unavailable"), make_receipt("0xdd")]
        )
        waiter = ConfirmationWaiter(source, poll_interval=0.001)
        outcome = await waiter.await_confirmation("0xdd", timeout=5)
        self.assertEqual(outcome.status, ConfirmationStatus.CONFIRMED)

    async def test_timeout_reports_last_error(self):
        source = PendingReceiptSource([ConnectionError("node unavailable")])
        waiter = ConfirmationWaiter(source, poll_interval=0.005)
        outcome = await waiter.await_confirmation("0xee", timeout=0.05)
        self.assertEqual(outcome.status, ConfirmationStatus.TIMED_OUT)
        self.assertIn("node unavailable", outcome.error)

    async def test_hung_source_bounded_by_timeout(self):
        class HungSource:
            async def transaction_receipt(self, txn_hash):
                await asyncio.sleep(60)

        waiter = ConfirmationWaiter(HungSource(), poll_interval=0.001)
        outcome = await asyncio.wait_for(
            waiter.await_confirmation("0xff", timeout=0.05), 5
        )
        self.assertEqual(outcome.status, ConfirmationStatus.TIMED_OUT)

    def test_invalid_interval(self):
        self.assertRaises(ValueError, ConfirmationWaiter, PendingReceiptSource([]), 0)
