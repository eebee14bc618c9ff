# Copyright © Aptos Foundation
# SPDX-License-Identifier: Apache-2.0

"""
Command-line interface for batch native-token transfers.

Examples:
    Send 0.001 ETH to two recipients on Base Sepolia::

        python -m batch_sender.cli send-batch \
            --sender 0x5290...9EE7 \
            --recipient 0x8617...070D \
            --recipient 0xde70...ae9b \
            --amount 0.001 \
            --network base-sepolia \
            --rpc-url http://localhost:8545

    The JSON report is printed to stdout. Flags fall back to the environment:
    BATCH_RPC_URL, BATCH_NETWORK, BATCH_RPC_API_KEY, BATCH_MAX_ATTEMPTS and
    BATCH_CONFIRMATION_TIMEOUT.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import os
import sys
import unittest
import unittest.mock
from typing import List, Optional

from .address import EvmAddressValidator
from .async_client import NETWORKS, ClientConfig, RpcClient
from .coordinator import BatchConfig, BatchCoordinator, BatchValidationError
from .models import BatchReport, BatchRequest


async def send_batch(
    request: BatchRequest,
    rpc_url: str,
    config: BatchConfig,
    api_key: Optional[str] = None,
) -> BatchReport:
    """Run ``request`` against the JSON-RPC node at ``rpc_url``."""
    client = RpcClient(rpc_url, ClientConfig(api_key=api_key))
    try:
        coordinator = BatchCoordinator(
            client, client, EvmAddressValidator(), config, networks=NETWORKS
        )
        return await coordinator.run_batch(request)
    finally:
        await client.close()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Batch native-token sender")
    parser.add_argument(
        "command", type=str, help="The command to execute", choices=["send-batch"]
    )
    parser.add_argument("--sender", help="Node-managed sender address", type=str)
    parser.add_argument(
        "--recipient",
        help="Recipient address (can be specified multiple times)",
        action="append",
        default=[],
    )
    parser.add_argument(
        "--amount", help="Amount in ether sent to every recipient", type=str
    )
    parser.add_argument(
        "--network",
        help="Network identifier",
        choices=sorted(NETWORKS),
        default=os.getenv("BATCH_NETWORK", "base-sepolia"),
    )
    parser.add_argument(
        "--rpc-url",
        help="JSON-RPC endpoint URL",
        type=str,
        default=os.getenv("BATCH_RPC_URL"),
    )
    parser.add_argument(
        "--max-attempts",
        help="Submission attempts per recipient, first included",
        type=int,
        default=int(os.getenv("BATCH_MAX_ATTEMPTS", "5")),
    )
    parser.add_argument(
        "--backoff-base",
        help="Base delay in seconds between rate-limited attempts",
        type=float,
        default=1.0,
    )
    parser.add_argument(
        "--confirmation-timeout",
        help="Seconds to wait for each receipt",
        type=float,
        default=float(os.getenv("BATCH_CONFIRMATION_TIMEOUT", "120")),
    )
    parser.add_argument(
        "--poll-interval", help="Seconds between receipt polls", type=float, default=1.0
    )
    parser.add_argument("--verbose", help="Log debug output", action="store_true")
    return parser


async def main(args: List[str]):
    parser = build_parser()
    parsed_args = parser.parse_args(args)

    logging.basicConfig(
        level=logging.DEBUG if parsed_args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(message)s",
        stream=sys.stderr,
    )

    if parsed_args.command == "send-batch":
        if parsed_args.sender is None:
            parser.error("Missing required argument '--sender'")
        if not parsed_args.recipient:
            parser.error("Missing required argument '--recipient'")
        if parsed_args.amount is None:
            parser.error("Missing required argument '--amount'")
        if parsed_args.rpc_url is None:
            parser.error("Missing required argument '--rpc-url' (or BATCH_RPC_URL)")
        if parsed_args.max_attempts < 1:
            parser.error("'--max-attempts' must be at least 1")
        if parsed_args.poll_interval <= 0:
            parser.error("'--poll-interval' must be positive")
        if parsed_args.backoff_base < 0:
            parser.error("'--backoff-base' must not be negative")
        if parsed_args.confirmation_timeout <= 0:
            parser.error("'--confirmation-timeout' must be positive")

        request = BatchRequest.uniform(
            parsed_args.sender,
            parsed_args.recipient,
            parsed_args.amount,
            parsed_args.network,
        )
        config = BatchConfig(
            max_attempts=parsed_args.max_attempts,
            backoff_base=parsed_args.backoff_base,
            confirmation_timeout=parsed_args.confirmation_timeout,
            poll_interval=parsed_args.poll_interval,
        )
        try:
            report = await send_batch(
                request,
                parsed_args.rpc_url,
                config,
                os.getenv("BATCH_RPC_API_KEY"),
            )
        except BatchValidationError as e:
            parser.error(str(e))
        print(json.dumps(report.to_dict(), indent=2))


class Test(unittest.IsolatedAsyncioTestCase):
    SENDER = "0x52908400098527886E0F7030069857D2E4169EE7"
    RECIPIENT = "0x8617E340B3D01FA5F11F306F4090FD50E238070D"

    async def test_missing_arguments(self):
        with unittest.mock.patch("sys.stderr"):
            with self.assertRaises(SystemExit):
                await main(["send-batch", "--recipient", self.RECIPIENT])

    async def test_invalid_timing_arguments(self):
        base_args = [
            "send-batch",
            "--sender",
            self.SENDER,
            "--recipient",
            self.RECIPIENT,
            "--amount",
            "0.001",
            "--rpc-url",
            "http://localhost:8545",
        ]
        for extra in [
            ["--backoff-base", "-1"],
            ["--confirmation-timeout", "0"],
            ["--poll-interval", "0"],
            ["--max-attempts", "0"],
        ]:
            with unittest.mock.patch("sys.stderr"), unittest.mock.patch(
                "batch_sender.cli.send_batch"
            ) as send:
                with self.assertRaises(SystemExit):
                    await main(base_args + extra)
                send.assert_not_called()

    async def test_validation_error_exits(self):
        with unittest.mock.patch("sys.stderr"):
            with unittest.mock.patch(
                "batch_sender.cli.RpcClient", autospec=True
            ) as client_class:
                client_class.return_value.close = unittest.mock.AsyncMock()
                with self.assertRaises(SystemExit):
                    await main(
                        [
                            "send-batch",
                            "--sender",
                            self.SENDER,
                            "--recipient",
                            "0x123",
                            "--amount",
                            "0.001",
                            "--rpc-url",
                            "http://localhost:8545",
                        ]
                    )
                client_class.return_value.close.assert_awaited_once()

    async def test_prints_report(self):
        report = BatchReport([])
        with unittest.mock.patch(
            "batch_sender.cli.send_batch", return_value=report
        ) as send, unittest.mock.patch("builtins.print") as printed:
            await main(
                [
                    "send-batch",
                    "--sender",
                    self.SENDER,
                    "--recipient",
                    self.RECIPIENT,
                    "--amount",
                    "0.5",
                    "--rpc-url",
                    "http://localhost:8545",
                    "--max-attempts",
                    "3",
                ]
            )
        request, rpc_url, config, _ = send.call_args.args
        self.assertEqual(request.recipients(), [self.RECIPIENT])
        self.assertEqual(request.network, "base-sepolia")
        self.assertEqual(rpc_url, "http://localhost:8545")
        self.assertEqual(config.max_attempts, 3)
        printed.assert_called_once()
        self.assertEqual(
            json.loads(printed.call_args.args[0])["summary"]["totalRecipients"], 0
        )


def run():
    asyncio.run(main(sys.argv[1:]))


if __name__ == "__main__":
    run()
