# Copyright © Aptos Foundation
# SPDX-License-Identifier: Apache-2.0

"""
Data types flowing through the batch send pipeline.

A :class:`BatchRequest` fans out into one :class:`SubmissionOutcome` per transfer.
Every submitted transaction additionally produces a :class:`ConfirmationOutcome`.
Both are merged into one :class:`BatchResultEntry` per request position, and the
entries, in request order, form the :class:`BatchReport`.

The report's ``to_dict`` output is JSON-serializable and matches the response
body of the original ``send-batch-eth`` endpoint::

    {
        "summary": {"totalRecipients": 3, "submittedSuccessfully": 3,
                    "confirmedOnChain": 3, "failed": 0},
        "details": [
            {"recipient": "0x...", "amount": "0.001",
             "submissionStatus": "submitted", "attempts": 1,
             "txHash": "0x...", "confirmationStatus": "confirmed",
             "receipt": {...}},
            ...
        ]
    }
"""

from __future__ import annotations

import unittest
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence, Union

Amount = Union[str, Decimal]

# Decimal places of the native token; one wei is 10**-18 ether
NATIVE_DECIMALS = 18


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def parse_amount(amount: Amount) -> Decimal:
    """Parse a positive decimal amount of whole native units.

    Raises:
        ValueError: If the amount is not a finite positive number, or is not a
            whole number of wei.
    """
    try:
        value = Decimal(amount)
    except (InvalidOperation, TypeError, ValueError):
        raise ValueError(f"Amount is not a number: {amount!r}") from None
    if not value.is_finite() or value <= 0:
        raise ValueError(f"Amount must be a positive number: {amount!r}")
    if value.normalize().as_tuple().exponent < -NATIVE_DECIMALS:
        raise ValueError(
            f"Amount has more than {NATIVE_DECIMALS} decimal places: {amount!r}"
        )
    return value


class SubmissionStatus(str, Enum):
    SUBMITTED = "submitted"
    REJECTED = "rejected"


class ConfirmationStatus(str, Enum):
    CONFIRMED = "confirmed"
    REVERTED = "reverted"
    TIMED_OUT = "timed_out"
    NOT_ATTEMPTED = "not_attempted"


@dataclass(frozen=True)
class Transfer:
    """One (recipient, amount) pair of a batch."""

    recipient: str
    amount: Amount


@dataclass(frozen=True)
class BatchRequest:
    """A batch of native-token transfers from one sender on one network."""

    sender: str
    transfers: Sequence[Transfer]
    network: str

    @staticmethod
    def uniform(
        sender: str, recipients: Sequence[str], amount: Amount, network: str
    ) -> BatchRequest:
        """Build a request sending the same ``amount`` to every recipient."""
        return BatchRequest(
            sender=sender,
            transfers=tuple(Transfer(recipient, amount) for recipient in recipients),
            network=network,
        )

    @staticmethod
    def from_dict(sender: str, payload: Dict[str, Any]) -> BatchRequest:
        """Build a request from the endpoint body.

        ``payload`` has ``recipients``, ``network`` and either a uniform
        ``amountPerRecipient`` or a per-recipient ``amounts`` list. Shape errors
        raise ``ValueError``; address and amount validity are checked later by
        the coordinator.
        """
        recipients = payload.get("recipients")
        if not isinstance(recipients, list):
            raise ValueError("recipients must be a list of addresses")
        network = payload.get("network")
        if not isinstance(network, str):
            raise ValueError("network must be a string")

        amounts = payload.get("amounts")
        if amounts is not None:
            if not isinstance(amounts, list) or len(amounts) != len(recipients):
                raise ValueError("amounts must be a list as long as recipients")
            transfers = tuple(
                Transfer(recipient, amount)
                for recipient, amount in zip(recipients, amounts)
            )
            return BatchRequest(sender, transfers, network)

        amount = payload.get("amountPerRecipient")
        if not isinstance(amount, str):
            raise ValueError("amountPerRecipient must be a string")
        return BatchRequest.uniform(sender, recipients, amount, network)

    def recipients(self) -> List[str]:
        return [transfer.recipient for transfer in self.transfers]


@dataclass(frozen=True)
class Receipt:
    """Terminal on-chain record of an included transaction."""

    transaction_hash: str
    block_number: int
    block_hash: str
    success: bool
    gas_used: Optional[int] = None

    @staticmethod
    def from_rpc(data: Dict[str, Any]) -> Receipt:
        """Parse an ``eth_getTransactionReceipt`` result object."""
        gas_used = data.get("gasUsed")
        return Receipt(
            transaction_hash=data["transactionHash"],
            block_number=int(data["blockNumber"], 16),
            block_hash=data["blockHash"],
            success=int(data["status"], 16) == 1,
            gas_used=int(gas_used, 16) if gas_used is not None else None,
        )

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "transactionHash": self.transaction_hash,
            "blockNumber": self.block_number,
            "blockHash": self.block_hash,
            "status": "success" if self.success else "reverted",
        }
        if self.gas_used is not None:
            data["gasUsed"] = self.gas_used
        return data


@dataclass(frozen=True)
class SubmissionOutcome:
    recipient: str
    status: SubmissionStatus
    attempts: int
    txn_hash: Optional[str] = None
    error: Optional[str] = None
    timestamp: datetime = field(default_factory=utcnow)

    @staticmethod
    def submitted(recipient: str, txn_hash: str, attempts: int) -> SubmissionOutcome:
        return SubmissionOutcome(
            recipient, SubmissionStatus.SUBMITTED, attempts, txn_hash=txn_hash
        )

    @staticmethod
    def rejected(recipient: str, error: str, attempts: int) -> SubmissionOutcome:
        return SubmissionOutcome(
            recipient, SubmissionStatus.REJECTED, attempts, error=error
        )


@dataclass(frozen=True)
class ConfirmationOutcome:
    txn_hash: str
    status: ConfirmationStatus
    receipt: Optional[Receipt] = None
    error: Optional[str] = None
    timestamp: datetime = field(default_factory=utcnow)

    @staticmethod
    def from_receipt(receipt: Receipt) -> ConfirmationOutcome:
        status = (
            ConfirmationStatus.CONFIRMED
            if receipt.success
            else ConfirmationStatus.REVERTED
        )
        return ConfirmationOutcome(receipt.transaction_hash, status, receipt=receipt)

    @staticmethod
    def timed_out(txn_hash: str, error: str) -> ConfirmationOutcome:
        return ConfirmationOutcome(txn_hash, ConfirmationStatus.TIMED_OUT, error=error)

    @property
    def block_number(self) -> Optional[int]:
        return self.receipt.block_number if self.receipt else None


@dataclass(frozen=True)
class BatchResultEntry:
    recipient: str
    amount: Amount
    submission: SubmissionOutcome
    confirmation: Optional[ConfirmationOutcome] = None

    @property
    def submission_status(self) -> SubmissionStatus:
        return self.submission.status

    @property
    def confirmation_status(self) -> ConfirmationStatus:
        if self.confirmation is None:
            return ConfirmationStatus.NOT_ATTEMPTED
        return self.confirmation.status

    @property
    def txn_hash(self) -> Optional[str]:
        return self.submission.txn_hash

    @property
    def attempts(self) -> int:
        return self.submission.attempts

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "recipient": self.recipient,
            "amount": str(self.amount),
            "submissionStatus": self.submission_status.value,
            "attempts": self.attempts,
        }
        if self.submission.txn_hash is not None:
            data["txHash"] = self.submission.txn_hash
            data["submittedAt"] = self.submission.timestamp.isoformat()
        if self.submission.error is not None:
            data["submissionError"] = self.submission.error
        data["confirmationStatus"] = self.confirmation_status.value
        if self.confirmation is not None:
            if self.confirmation.receipt is not None:
                data["receipt"] = self.confirmation.receipt.to_dict()
                data["confirmedAt"] = self.confirmation.timestamp.isoformat()
            if self.confirmation.error is not None:
                data["confirmationError"] = self.confirmation.error
        return data


@dataclass(frozen=True)
class BatchReport:
    entries: List[BatchResultEntry]

    @property
    def total(self) -> int:
        return len(self.entries)

    @property
    def submitted(self) -> int:
        return sum(
            1
            for entry in self.entries
            if entry.submission_status == SubmissionStatus.SUBMITTED
        )

    @property
    def confirmed(self) -> int:
        return sum(
            1
            for entry in self.entries
            if entry.confirmation_status == ConfirmationStatus.CONFIRMED
        )

    @property
    def failed(self) -> int:
        """Entries that did not end confirmed: rejected, reverted or timed out."""
        return self.total - self.confirmed

    def summary(self) -> Dict[str, int]:
        return {
            "totalRecipients": self.total,
            "submittedSuccessfully": self.submitted,
            "confirmedOnChain": self.confirmed,
            "failed": self.failed,
        }

    def to_dict(self) -> Dict[str, Any]:
        return {
            "summary": self.summary(),
            "details": [entry.to_dict() for entry in self.entries],
        }


class Test(unittest.TestCase):
    RPC_RECEIPT = {
        "transactionHash": "0xabc",
        "blockNumber": "0x1b4",
        "blockHash": "0xdef",
        "status": "0x1",
        "gasUsed": "0x5208",
    }

    def test_parse_amount(self):
        self.assertEqual(parse_amount("0.001"), Decimal("0.001"))
        self.assertEqual(parse_amount(Decimal("2")), Decimal("2"))
        for bad in ["0", "-1", "abc", "NaN", "Infinity", ""]:
            self.assertRaises(ValueError, parse_amount, bad)

    def test_parse_amount_wei_precision(self):
        self.assertEqual(
            parse_amount("0.000000000000000001"), Decimal("0.000000000000000001")
        )
        self.assertEqual(parse_amount("1.500000000000000000000"), Decimal("1.5"))
        for bad in ["0.0000000000000000001", "0.0000000000000000015", "1E-19"]:
            self.assertRaises(ValueError, parse_amount, bad)

    def test_from_dict_uniform(self):
        request = BatchRequest.from_dict(
            "0xsender",
            {"recipients": ["0xa", "0xb"], "amountPerRecipient": "0.5", "network": "x"},
        )
        self.assertEqual(request.recipients(), ["0xa", "0xb"])
        self.assertEqual([t.amount for t in request.transfers], ["0.5", "0.5"])
        self.assertEqual(request.network, "x")

    def test_from_dict_per_recipient(self):
        request = BatchRequest.from_dict(
            "0xsender",
            {"recipients": ["0xa", "0xb"], "amounts": ["1", "2"], "network": "x"},
        )
        self.assertEqual([t.amount for t in request.transfers], ["1", "2"])

    def test_from_dict_rejects_shape(self):
        self.assertRaises(
            ValueError,
            BatchRequest.from_dict,
            "0xs",
            {"recipients": "0xa", "amountPerRecipient": "1", "network": "x"},
        )
        self.assertRaises(
            ValueError,
            BatchRequest.from_dict,
            "0xs",
            {"recipients": ["0xa"], "amountPerRecipient": 1, "network": "x"},
        )
        self.assertRaises(
            ValueError,
            BatchRequest.from_dict,
            "0xs",
            {"recipients": ["0xa"], "amounts": ["1", "2"], "network": "x"},
        )

    def test_receipt_from_rpc(self):
        receipt = Receipt.from_rpc(self.RPC_RECEIPT)
        self.assertEqual(receipt.block_number, 436)
        self.assertTrue(receipt.success)
        self.assertEqual(receipt.gas_used, 21000)
        reverted = Receipt.from_rpc(dict(self.RPC_RECEIPT, status="0x0"))
        self.assertFalse(reverted.success)
        outcome = ConfirmationOutcome.from_receipt(reverted)
        self.assertEqual(outcome.status, ConfirmationStatus.REVERTED)
        self.assertEqual(outcome.block_number, 436)

    def test_report_dict(self):
        receipt = Receipt.from_rpc(self.RPC_RECEIPT)
        entries = [
            BatchResultEntry(
                "0xa",
                "0.1",
                SubmissionOutcome.submitted("0xa", "0xabc", 2),
                ConfirmationOutcome.from_receipt(receipt),
            ),
            BatchResultEntry(
                "0xb", "0.1", SubmissionOutcome.rejected("0xb", "insufficient funds", 1)
            ),
            BatchResultEntry(
                "0xc",
                "0.1",
                SubmissionOutcome.submitted("0xc", "0x123", 1),
                ConfirmationOutcome.timed_out("0x123", "no receipt after 1s"),
            ),
        ]
        report = BatchReport(entries).to_dict()
        self.assertEqual(
            report["summary"],
            {
                "totalRecipients": 3,
                "submittedSuccessfully": 2,
                "confirmedOnChain": 1,
                "failed": 2,
            },
        )
        first, second, third = report["details"]
        self.assertEqual(first["confirmationStatus"], "confirmed")
        self.assertEqual(first["receipt"]["blockNumber"], 436)
        self.assertEqual(first["attempts"], 2)
        self.assertEqual(second["confirmationStatus"], "not_attempted")
        self.assertEqual(second["submissionError"], "insufficient funds")
        self.assertNotIn("txHash", second)
        self.assertEqual(third["confirmationStatus"], "timed_out")
        self.assertNotIn("receipt", third)
        self.assertEqual(third["confirmationError"], "no receipt after 1s")
