# Copyright © Aptos Foundation
# SPDX-License-Identifier: Apache-2.0

"""
batch-sender - retrying, confirming batch transfers for EVM networks.

Sends the same (or a per-recipient) amount of the native token from one sender
to many recipients, concurrently. Rate-limited submissions are retried with
exponential backoff, every submitted transaction is watched for its receipt
under its own timeout, and the result is a report with exactly one entry per
requested recipient.

Modules:
- **backoff**: retry delay policy
- **address**: EIP-55 aware address parsing and validation
- **models**: requests, outcomes and the batch report
- **protocols**: broadcaster / receipt source / address validator interfaces
- **submission**: per-recipient submission worker
- **confirmation**: per-transaction confirmation waiter
- **coordinator**: validation, fan-out / fan-in and merging
- **async_client**: httpx JSON-RPC client implementing the chain interfaces
- **cli**: ``python -m batch_sender.cli send-batch ...``

Quick Start::

    import asyncio
    from batch_sender.address import EvmAddressValidator
    from batch_sender.async_client import NETWORKS, RpcClient
    from batch_sender.coordinator import BatchConfig, BatchCoordinator
    from batch_sender.models import BatchRequest

    async def main():
        client = RpcClient("http://localhost:8545")
        coordinator = BatchCoordinator(
            client, client, EvmAddressValidator(), BatchConfig(), networks=NETWORKS
        )
        request = BatchRequest.from_dict(
            sender,
            {
                "recipients": [alice, bob, carol],
                "amountPerRecipient": "0.001",
                "network": "base-sepolia",
            },
        )
        report = await coordinator.run_batch(request)
        print(report.to_dict()["summary"])
        await client.close()

    asyncio.run(main())
"""
