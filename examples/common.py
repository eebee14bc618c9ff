# Copyright © Aptos Foundation
# SPDX-License-Identifier: Apache-2.0

"""
Shared configuration for the batch-sender examples.

Every setting can be overridden through the environment:

    BATCH_RPC_URL: JSON-RPC endpoint of a node that manages the sender account
    BATCH_RPC_API_KEY: Optional bearer token for hosted RPC providers
    BATCH_NETWORK: Network identifier, one of batch_sender.async_client.NETWORKS
    BATCH_SENDER: Sender address (must be unlocked on the node)
    BATCH_RECIPIENTS: Comma separated recipient addresses
    BATCH_AMOUNT: Amount in ether sent to every recipient
    BATCH_MAX_ATTEMPTS: Submission attempts per recipient
    BATCH_CONFIRMATION_TIMEOUT: Seconds to wait for each receipt

The defaults target a local development node (anvil or hardhat) forked from
Base Sepolia, whose first prefunded account is the sender.
"""

import os

# :!:>section_1
RPC_URL = os.getenv("BATCH_RPC_URL", "http://127.0.0.1:8545")

RPC_API_KEY = os.getenv("BATCH_RPC_API_KEY")

NETWORK = os.getenv("BATCH_NETWORK", "base-sepolia")

# First prefunded anvil / hardhat account
SENDER = os.getenv("BATCH_SENDER", "0xf39Fd6e51aad88F6F4ce6aB8827279cffFb92266")

RECIPIENTS = [
    recipient.strip()
    for recipient in os.getenv(
        "BATCH_RECIPIENTS",
        "0x70997970C51812dc3A010C7d01b50e0d17dc79C8,"
        "0x3C44CdDdB6a900fa2b585dd299e03d12FA4293BC,"
        "0x90F79bf6EB2c4f870365E785982E1f101E93b906",
    ).split(",")
    if recipient.strip()
]

AMOUNT = os.getenv("BATCH_AMOUNT", "0.001")

MAX_ATTEMPTS = int(os.getenv("BATCH_MAX_ATTEMPTS", "5"))

CONFIRMATION_TIMEOUT = float(os.getenv("BATCH_CONFIRMATION_TIMEOUT", "120"))
# <:!:section_1
