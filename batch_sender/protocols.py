# Copyright © Aptos Foundation
# SPDX-License-Identifier: Apache-2.0

"""
Interfaces of the collaborators the batch pipeline delegates chain I/O to.

:class:`batch_sender.async_client.RpcClient` implements :class:`Broadcaster` and
:class:`ReceiptSource` against an EVM JSON-RPC node, and
:class:`batch_sender.address.EvmAddressValidator` implements
:class:`AddressValidator`. Tests substitute in-memory fakes.
"""

from typing import Optional

from typing_extensions import Protocol

from .models import Amount, Receipt


class Broadcaster(Protocol):
    async def send_transaction(
        self, sender: str, recipient: str, amount: Amount, network: str
    ) -> str:
        """Broadcast one transfer and return its transaction hash.

        Rate limiting should be signalled with
        :class:`batch_sender.submission.TransientError` where the implementation
        can tell; any other exception is classified by the submission worker.
        """
        ...


class ReceiptSource(Protocol):
    async def transaction_receipt(self, txn_hash: str) -> Optional[Receipt]:
        """Return the receipt once the transaction is included, ``None`` while pending."""
        ...


class AddressValidator(Protocol):
    def is_valid_address(self, address: str) -> bool:
        ...
