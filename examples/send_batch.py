# Copyright © Aptos Foundation
# SPDX-License-Identifier: Apache-2.0

"""
Send the same amount to several recipients and print the batch report.

The example checks the sender's balance, runs the batch through a
:class:`batch_sender.coordinator.BatchCoordinator` backed by a
:class:`batch_sender.async_client.RpcClient`, prints one line per recipient and
the summary, and finally prints the sender's balance again.

Run against a local node::

    anvil --fork-url https://sepolia.base.org &
    python -m examples.send_batch

Expected output::

    === Sender ===
    0xf39F...2266: 10000000000000000000000 wei

    === Results ===
    0x7099...79C8 submitted (1 attempt) confirmed in block 18234012
    ...

    === Summary ===
    {'totalRecipients': 3, 'submittedSuccessfully': 3, 'confirmedOnChain': 3, 'failed': 0}
"""

import asyncio

from batch_sender.address import EvmAddressValidator
from batch_sender.async_client import NETWORKS, ClientConfig, RpcClient
from batch_sender.coordinator import BatchConfig, BatchCoordinator
from batch_sender.models import BatchRequest

from .common import (
    AMOUNT,
    CONFIRMATION_TIMEOUT,
    MAX_ATTEMPTS,
    NETWORK,
    RECIPIENTS,
    RPC_API_KEY,
    RPC_URL,
    SENDER,
)


async def main():
    client = RpcClient(RPC_URL, ClientConfig(api_key=RPC_API_KEY))
    coordinator = BatchCoordinator(
        client,
        client,
        EvmAddressValidator(),
        BatchConfig(
            max_attempts=MAX_ATTEMPTS, confirmation_timeout=CONFIRMATION_TIMEOUT
        ),
        networks=NETWORKS,
    )

    print("\n=== Sender ===")
    print(f"{SENDER}: {await client.account_balance(SENDER)} wei")

    request = BatchRequest.uniform(SENDER, RECIPIENTS, AMOUNT, NETWORK)
    report = await coordinator.run_batch(request)

    print("\n=== Results ===")
    for entry in report.entries:
        line = f"{entry.recipient} {entry.submission_status.value} ({entry.attempts} attempt{'s' if entry.attempts > 1 else ''})"
        if entry.confirmation is not None and entry.confirmation.block_number is not None:
            line += f" {entry.confirmation_status.value} in block {entry.confirmation.block_number}"
        else:
            line += f" {entry.confirmation_status.value}"
        print(line)

    print("\n=== Summary ===")
    print(report.summary())

    print("\n=== Sender ===")
    print(f"{SENDER}: {await client.account_balance(SENDER)} wei")

    await client.close()


if __name__ == "__main__":
    asyncio.run(main())
