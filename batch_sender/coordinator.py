# Copyright © Aptos Foundation
# SPDX-License-Identifier: Apache-2.0

"""
Batch send coordination: validate, fan out, fan in, report.

The :class:`BatchCoordinator` turns a :class:`batch_sender.models.BatchRequest`
into a :class:`batch_sender.models.BatchReport`:

1. **Validate** the whole request up front. Every problem is collected into one
   :class:`BatchValidationError`; nothing is sent for an invalid request.
2. **Fan out** one task per transfer. Each task runs a
   :class:`batch_sender.submission.SubmissionWorker` and, once its transaction is
   submitted, a :class:`batch_sender.confirmation.ConfirmationWaiter`. Waiters for
   early submissions therefore run while other recipients are still retrying.
3. **Fan in** with a settle-all join: a failing recipient never cancels or
   short-circuits its siblings.
4. **Merge** outcomes into exactly one entry per request position, in request
   order, regardless of completion order.

The coordinator performs no chain I/O itself. Termination is bounded by the
submission attempt budget and the confirmation timeout; there is no batch-wide
timeout.

Examples:
    Running a batch against a JSON-RPC node::

        from batch_sender.address import EvmAddressValidator
        from batch_sender.async_client import NETWORKS, RpcClient
        from batch_sender.coordinator import BatchConfig, BatchCoordinator
        from batch_sender.models import BatchRequest

        client = RpcClient(NODE_URL)
        coordinator = BatchCoordinator(
            client, client, EvmAddressValidator(), BatchConfig(), networks=NETWORKS
        )
        report = await coordinator.run_batch(
            BatchRequest.uniform(sender, [alice, bob], "0.001", "base-sepolia")
        )
        print(report.summary())
"""

from __future__ import annotations

import asyncio
import logging
import random
import unittest
import unittest.mock
from dataclasses import dataclass
from typing import Collection, Dict, List, Optional, Set

from .address import EvmAddressValidator
from .backoff import BackoffPolicy
from .confirmation import ConfirmationWaiter
from .models import (
    BatchReport,
    BatchRequest,
    BatchResultEntry,
    ConfirmationOutcome,
    ConfirmationStatus,
    Receipt,
    SubmissionOutcome,
    SubmissionStatus,
    parse_amount,
)
from .protocols import AddressValidator, Broadcaster, ReceiptSource
from .submission import SubmissionWorker, TransientError, describe


@dataclass
class BatchConfig:
    """Retry and confirmation parameters for a batch.

    max_attempts: Total submission attempts per recipient, first included (default: 5)
    backoff_base: Base delay in seconds between rate-limited attempts (default: 1.0)
    confirmation_timeout: Seconds each waiter waits for a receipt (default: 120)
    poll_interval: Seconds between receipt polls (default: 1.0)
    """

    max_attempts: int = 5
    backoff_base: float = 1.0
    confirmation_timeout: float = 120.0
    poll_interval: float = 1.0


class BatchValidationError(Exception):
    """The request is malformed; the batch was not started"""

    errors: List[str]

    def __init__(self, errors: List[str]):
        super().__init__("Invalid batch request: " + "; ".join(errors))
        self.errors = errors


class BatchCoordinator:
    _submission_worker: SubmissionWorker
    _confirmation_waiter: ConfirmationWaiter
    _address_validator: AddressValidator
    _config: BatchConfig
    _networks: Optional[Set[str]]

    def __init__(
        self,
        broadcaster: Broadcaster,
        receipt_source: ReceiptSource,
        address_validator: AddressValidator,
        config: BatchConfig = BatchConfig(),
        networks: Optional[Collection[str]] = None,
        submission_worker: Optional[SubmissionWorker] = None,
    ):
        """
        :param networks: When given, the only network identifiers accepted.
        :param submission_worker: Replaces the worker built from ``config``, e.g. to
            inject a custom backoff random source or sleep function.
        """
        self._config = config
        self._address_validator = address_validator
        self._networks = set(networks) if networks is not None else None
        self._submission_worker = submission_worker or SubmissionWorker(
            broadcaster, BackoffPolicy(config.backoff_base), config.max_attempts
        )
        self._confirmation_waiter = ConfirmationWaiter(
            receipt_source, config.poll_interval
        )

    def validate(self, request: BatchRequest):
        """Raise :class:`BatchValidationError` listing every problem in ``request``."""
        errors = []
        if not self._address_validator.is_valid_address(request.sender):
            errors.append(f"invalid sender address {request.sender!r}")
        if not request.network:
            errors.append("network is required")
        elif self._networks is not None and request.network not in self._networks:
            errors.append(f"unsupported network {request.network!r}")
        if not request.transfers:
            errors.append("recipients must not be empty")
        for index, transfer in enumerate(request.transfers):
            if not self._address_validator.is_valid_address(transfer.recipient):
                errors.append(f"recipient #{index} has invalid address {transfer.recipient!r}")
            try:
                parse_amount(transfer.amount)
            except ValueError as e:
                errors.append(f"recipient #{index}: {e}")
        if errors:
            raise BatchValidationError(errors)

    async def run_batch(self, request: BatchRequest) -> BatchReport:
        self.validate(request)

        count = len(request.transfers)
        submissions: List[Optional[SubmissionOutcome]] = [None] * count
        confirmations: List[Optional[ConfirmationOutcome]] = [None] * count

        logging.info(f"Preparing to send {count} transactions on {request.network}...")
        results = await asyncio.gather(
            *(
                self._process(request, index, submissions, confirmations)
                for index in range(count)
            ),
            return_exceptions=True,
        )

        entries = []
        for index, (transfer, result) in enumerate(zip(request.transfers, results)):
            submission = submissions[index]
            confirmation = confirmations[index]
            if isinstance(result, BaseException):
                logging.error(
                    f"Unexpected error processing transaction #{index} to {transfer.recipient}: {result}"
                )
                if submission is None:
                    submission = SubmissionOutcome.rejected(
                        transfer.recipient, describe(result), 1
                    )
                elif submission.txn_hash is None:
                    submission = SubmissionOutcome.rejected(
                        transfer.recipient, describe(result), submission.attempts
                    )
                elif confirmation is None:
                    confirmation = ConfirmationOutcome.timed_out(
                        submission.txn_hash, describe(result)
                    )
            elif submission is None:
                submission = SubmissionOutcome.rejected(
                    transfer.recipient, "Transfer was not processed", 0
                )
            entries.append(
                BatchResultEntry(
                    transfer.recipient, transfer.amount, submission, confirmation
                )
            )

        report = BatchReport(entries)
        logging.info(
            f"Batch send summary: total {report.total}, submitted {report.submitted}, "
            f"confirmed {report.confirmed}, failed or timed out {report.failed}"
        )
        return report

    async def _process(
        self,
        request: BatchRequest,
        index: int,
        submissions: List[Optional[SubmissionOutcome]],
        confirmations: List[Optional[ConfirmationOutcome]],
    ):
        # Each task writes only its own slot.
        submission = await self._submission_worker.submit(
            request.transfers[index], request.sender, request.network, index
        )
        submissions[index] = submission
        if submission.status != SubmissionStatus.SUBMITTED:
            return
        if submission.txn_hash is None:
            submissions[index] = SubmissionOutcome.rejected(
                submission.recipient,
                "Submitted without a transaction hash",
                submission.attempts,
            )
            return
        confirmations[index] = await self._confirmation_waiter.await_confirmation(
            submission.txn_hash, self._config.confirmation_timeout
        )


class FakeChain:
    """In-memory broadcaster, receipt source and address validator for tests.

    ``send_scripts`` maps a recipient to the results of its successive sends: a
    string is returned as a transaction hash, an exception is raised. Recipients
    without a script succeed immediately. Hashes listed in ``unconfirmed`` never
    get a receipt and those in ``reverted`` get a failed one.
    """

    def __init__(
        self,
        send_scripts: Optional[Dict[str, List[object]]] = None,
        unconfirmed: Collection[str] = (),
        reverted: Collection[str] = (),
    ):
        self.send_scripts = {k: list(v) for k, v in (send_scripts or {}).items()}
        self.unconfirmed = set(unconfirmed)
        self.reverted = set(reverted)
        self.sent: List[str] = []
        self.blocks = 0

    async def send_transaction(self, sender, recipient, amount, network) -> str:
        await asyncio.sleep(0)
        script = self.send_scripts.get(recipient)
        if script:
            result = script.pop(0)
            if isinstance(result, BaseException):
                raise result
            txn_hash = str(result)
        else:
            txn_hash = f"0x{len(self.sent):064x}"
        self.sent.append(recipient)
        return txn_hash

    async def transaction_receipt(self, txn_hash: str) -> Optional[Receipt]:
        await asyncio.sleep(0)
        if txn_hash in self.unconfirmed:
            return None
        self.blocks += 1
        return Receipt(txn_hash, self.blocks, f"0x{self.blocks:064x}", txn_hash not in self.reverted)

    def is_valid_address(self, address: str) -> bool:
        return address.startswith("0x") and len(address) == 42


def address(n: int) -> str:
    return f"0x{n:040x}"


class Test(unittest.IsolatedAsyncioTestCase):
    SENDER = address(0xFFFF)

    def setUp(self):
        self.sleeps: List[float] = []

    async def record_sleep(self, seconds: float):
        self.sleeps.append(seconds)

    def coordinator(self, chain: FakeChain, **kwargs) -> BatchCoordinator:
        config = BatchConfig(
            max_attempts=kwargs.pop("max_attempts", 5),
            backoff_base=1.0,
            confirmation_timeout=kwargs.pop("confirmation_timeout", 5.0),
            poll_interval=0.001,
        )
        worker = SubmissionWorker(
            chain,
            BackoffPolicy(config.backoff_base, random.Random(0)),
            config.max_attempts,
            sleep=self.record_sleep,
        )
        return BatchCoordinator(
            chain, chain, chain, config, submission_worker=worker, **kwargs
        )

    async def test_end_to_end(self):
        a, b, c = address(1), address(2), address(3)
        chain = FakeChain({b: [TransientError("rate limit"), "0xbbbb"]})
        report = await self.coordinator(chain).run_batch(
            BatchRequest.uniform(self.SENDER, [a, b, c], "0.001", "X")
        )
        self.assertEqual(
            report.summary(),
            {
                "totalRecipients": 3,
                "submittedSuccessfully": 3,
                "confirmedOnChain": 3,
                "failed": 0,
            },
        )
        self.assertEqual([e.recipient for e in report.entries], [a, b, c])
        self.assertEqual([e.attempts for e in report.entries], [1, 2, 1])
        self.assertEqual(report.entries[1].txn_hash, "0xbbbb")
        self.assertEqual(len(self.sleeps), 1)
        self.assertGreaterEqual(self.sleeps[0], 1.0)
        for entry in report.entries:
            self.assertEqual(entry.confirmation_status, ConfirmationStatus.CONFIRMED)
            assert entry.confirmation is not None
            self.assertIsNotNone(entry.confirmation.block_number)

    async def test_permanent_failure_is_isolated(self):
        recipients = [address(n) for n in range(1, 6)]
        failing = recipients[2]
        chain = FakeChain({failing: [ValueError("insufficient funds")] * 5})
        report = await self.coordinator(chain).run_batch(
            BatchRequest.uniform(self.SENDER, recipients, "1", "X")
        )
        self.assertEqual(len(report.entries), 5)
        self.assertEqual([e.recipient for e in report.entries], recipients)
        for entry in report.entries:
            if entry.recipient == failing:
                self.assertEqual(entry.submission_status, SubmissionStatus.REJECTED)
                self.assertEqual(entry.attempts, 1)
                self.assertEqual(
                    entry.confirmation_status, ConfirmationStatus.NOT_ATTEMPTED
                )
                self.assertEqual(entry.submission.error, "insufficient funds")
            else:
                self.assertEqual(entry.submission_status, SubmissionStatus.SUBMITTED)
                self.assertEqual(entry.confirmation_status, ConfirmationStatus.CONFIRMED)
        self.assertEqual(report.submitted, 4)
        self.assertEqual(report.confirmed, 4)
        self.assertEqual(report.failed, 1)
        self.assertEqual(self.sleeps, [])

    async def test_exhausted_retries(self):
        a, b = address(1), address(2)
        chain = FakeChain({a: [TransientError(f"rate limit {n}") for n in range(3)]})
        report = await self.coordinator(chain, max_attempts=3).run_batch(
            BatchRequest.uniform(self.SENDER, [a, b], "1", "X")
        )
        first = report.entries[0]
        self.assertEqual(first.submission_status, SubmissionStatus.REJECTED)
        self.assertEqual(first.attempts, 3)
        self.assertEqual(first.submission.error, "rate limit 2")
        self.assertEqual(report.entries[1].confirmation_status, ConfirmationStatus.CONFIRMED)

    async def test_timeouts_and_reverts(self):
        a, b, c = address(1), address(2), address(3)
        chain = FakeChain(
            {a: ["0xaaaa"], b: ["0xbbbb"]}, unconfirmed=["0xaaaa"], reverted=["0xbbbb"]
        )
        report = await self.coordinator(chain, confirmation_timeout=0.05).run_batch(
            BatchRequest.uniform(self.SENDER, [a, b, c], "1", "X")
        )
        statuses = [e.confirmation_status for e in report.entries]
        self.assertEqual(
            statuses,
            [
                ConfirmationStatus.TIMED_OUT,
                ConfirmationStatus.REVERTED,
                ConfirmationStatus.CONFIRMED,
            ],
        )
        timed_out = report.entries[0].confirmation
        assert timed_out is not None
        self.assertIsNone(timed_out.block_number)
        self.assertIsNotNone(timed_out.error)
        self.assertEqual(report.submitted, 3)
        self.assertEqual(report.confirmed, 1)
        self.assertEqual(report.failed, 2)

    async def test_duplicate_recipients_each_get_an_entry(self):
        a = address(1)
        chain = FakeChain()
        report = await self.coordinator(chain).run_batch(
            BatchRequest.uniform(self.SENDER, [a, a, a], "1", "X")
        )
        self.assertEqual(len(report.entries), 3)
        self.assertEqual(len({e.txn_hash for e in report.entries}), 3)
        self.assertEqual(chain.sent, [a, a, a])

    async def test_validation(self):
        chain = FakeChain()
        coordinator = self.coordinator(chain, networks=["base-sepolia"])
        with self.assertRaises(BatchValidationError) as context:
            await coordinator.run_batch(
                BatchRequest(
                    "bogus",
                    (),
                    "mainnet",
                )
            )
        self.assertEqual(len(context.exception.errors), 3)

        request = BatchRequest.from_dict(
            self.SENDER,
            {
                "recipients": [address(1), "0x123", address(3)],
                "amounts": ["1", "1", "-2"],
                "network": "base-sepolia",
            },
        )
        with self.assertRaises(BatchValidationError) as context:
            await coordinator.run_batch(request)
        self.assertEqual(len(context.exception.errors), 2)
        self.assertEqual(chain.sent, [])

    async def test_unexpected_worker_crash_keeps_entry(self):
        a, b = address(1), address(2)
        chain = FakeChain()
        coordinator = self.coordinator(chain)

        original = coordinator._confirmation_waiter.await_confirmation

        async def crashing(txn_hash, timeout):
            if txn_hash == "0xdead":
                raise RuntimeError("waiter crashed")
            return await original(txn_hash, timeout)

        chain.send_scripts[a] = ["0xdead"]
        with unittest.mock.patch.object(
            coordinator._confirmation_waiter, "await_confirmation", crashing
        ):
            report = await coordinator.run_batch(
                BatchRequest.uniform(self.SENDER, [a, b], "1", "X")
            )
        self.assertEqual(len(report.entries), 2)
        self.assertEqual(report.entries[0].submission_status, SubmissionStatus.SUBMITTED)
        self.assertEqual(report.entries[0].confirmation_status, ConfirmationStatus.TIMED_OUT)
        self.assertEqual(report.entries[1].confirmation_status, ConfirmationStatus.CONFIRMED)

    async def test_missing_transaction_hash_keeps_report(self):
        a, b = address(1), address(2)

        class NullHashChain(FakeChain):
            async def send_transaction(self, sender, recipient, amount, network):
                txn_hash = await super().send_transaction(
                    sender, recipient, amount, network
                )
                return None if recipient == a else txn_hash

        chain = NullHashChain()
        report = await self.coordinator(chain).run_batch(
            BatchRequest.uniform(self.SENDER, [a, b], "1", "X")
        )
        self.assertEqual([e.recipient for e in report.entries], [a, b])
        first = report.entries[0]
        self.assertEqual(first.submission_status, SubmissionStatus.REJECTED)
        self.assertIsNone(first.txn_hash)
        self.assertEqual(first.confirmation_status, ConfirmationStatus.NOT_ATTEMPTED)
        self.assertEqual(report.entries[1].confirmation_status, ConfirmationStatus.CONFIRMED)
        self.assertEqual(report.summary()["failed"], 1)

    async def test_submitted_outcome_without_hash_is_rejected(self):
        a, b = address(1), address(2)
        chain = FakeChain()
        coordinator = self.coordinator(chain)
        original = coordinator._submission_worker.submit

        async def hashless(transfer, sender, network, index=0):
            if transfer.recipient == a:
                return SubmissionOutcome(a, SubmissionStatus.SUBMITTED, 1)
            return await original(transfer, sender, network, index)

        with unittest.mock.patch.object(
            coordinator._submission_worker, "submit", hashless
        ):
            report = await coordinator.run_batch(
                BatchRequest.uniform(self.SENDER, [a, b], "1", "X")
            )
        self.assertEqual(len(report.entries), 2)
        self.assertEqual(report.entries[0].submission_status, SubmissionStatus.REJECTED)
        self.assertEqual(report.entries[0].attempts, 1)
        self.assertEqual(report.entries[1].submission_status, SubmissionStatus.SUBMITTED)

    async def test_bad_checksum_recipient_is_rejected_up_front(self):
        chain = FakeChain()
        coordinator = BatchCoordinator(
            chain, chain, EvmAddressValidator(), BatchConfig(poll_interval=0.001)
        )
        request = BatchRequest.uniform(
            "0x52908400098527886E0F7030069857D2E4169EE7",
            ["0x52908400098527886E0F7030069857D2E4169Ee7"],
            "1",
            "X",
        )
        with self.assertRaises(BatchValidationError) as context:
            await coordinator.run_batch(request)
        self.assertEqual(len(context.exception.errors), 1)
        self.assertIn("recipient #0", context.exception.errors[0])
        self.assertEqual(chain.sent, [])
