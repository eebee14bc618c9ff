# Copyright © Aptos Foundation
# SPDX-License-Identifier: Apache-2.0

"""
Asynchronous JSON-RPC client for EVM networks.

:class:`RpcClient` is the chain-facing collaborator of the batch pipeline. It
broadcasts native-token transfers with ``eth_sendTransaction`` on behalf of a
node-managed sender account and looks up receipts with
``eth_getTransactionReceipt``. One client holds one pooled ``httpx.AsyncClient``
and is safe to share between any number of concurrent workers and waiters.

Supported networks:
    base-sepolia (84532), base (8453), ethereum (1), ethereum-sepolia (11155111)

Examples:
    Sending one transfer and waiting for it::

        from batch_sender.async_client import ClientConfig, RpcClient

        client = RpcClient("https://sepolia.base.org", ClientConfig(api_key="..."))
        txn_hash = await client.send_transaction(
            sender, recipient, "0.001", "base-sepolia"
        )
        receipt = await client.transaction_receipt(txn_hash)  # None while pending
        await client.close()

Error Handling:
    - ApiError: the endpoint answered with an HTTP status >= 400; a 429 marks
      rate limiting
    - RpcError: the node returned a JSON-RPC error object
    - UnsupportedNetwork: the network is unknown or the node serves another chain
"""

import itertools
import json
import unittest
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import httpx
from eth_utils import to_wei

from .metadata import Metadata
from .models import Amount, Receipt, parse_amount

NETWORKS: Dict[str, int] = {
    "base-sepolia": 84532,
    "base": 8453,
    "ethereum": 1,
    "ethereum-sepolia": 11155111,
}


def chain_id_for(network: str) -> int:
    try:
        return NETWORKS[network]
    except KeyError:
        raise UnsupportedNetwork(f"Unsupported network: {network}", network) from None


@dataclass
class ClientConfig:
    """Connection settings for :class:`RpcClient`.

    http2: Negotiate HTTP/2 with the endpoint (default: True)
    api_key: Optional bearer token for authenticated RPC providers
    request_timeout: Per-request timeout in seconds (default: 60)
    """

    http2: bool = True
    api_key: Optional[str] = None
    request_timeout: float = 60.0


class RpcClient:
    """Broadcaster and receipt source backed by an EVM JSON-RPC endpoint."""

    _chain_id: Optional[int]
    client: httpx.AsyncClient
    client_config: ClientConfig
    base_url: str

    def __init__(self, base_url: str, client_config: ClientConfig = ClientConfig()):
        self.base_url = base_url
        # Default limits
        limits = httpx.Limits()
        # Do not set a pool timeout, concurrent senders wait for a connection as long as
        # progress is being made.
        timeout = httpx.Timeout(client_config.request_timeout, pool=None)
        headers = {Metadata.CLIENT_HEADER: Metadata.get_client_header_val()}
        self.client = httpx.AsyncClient(
            http2=client_config.http2,
            limits=limits,
            timeout=timeout,
            headers=headers,
        )
        self.client_config = client_config
        self._chain_id = None
        self._request_ids = itertools.count(1)
        if client_config.api_key:
            self.client.headers["Authorization"] = f"Bearer {client_config.api_key}"

    async def close(self):
        await self.client.aclose()

    async def chain_id(self) -> int:
        """Chain id reported by the node, cached after the first call."""
        if not self._chain_id:
            self._chain_id = int(await self._call("eth_chainId", []), 16)
        return self._chain_id

    async def block_number(self) -> int:
        return int(await self._call("eth_blockNumber", []), 16)

    async def account_balance(self, address: str) -> int:
        """Balance of ``address`` in wei at the latest block."""
        return int(await self._call("eth_getBalance", [address, "latest"]), 16)

    #
    # Broadcaster
    #

    async def send_transaction(
        self, sender: str, recipient: str, amount: Amount, network: str
    ) -> str:
        """
        Broadcast a transfer of ``amount`` ether from ``sender`` to ``recipient``.

        The sender must be an account managed (unlocked) by the node.

        :return: The transaction hash as a hex string
        :raises UnsupportedNetwork: If the node does not serve ``network``
        :raises ApiError: On an HTTP error, including 429 rate limiting
        :raises RpcError: If the node rejects the transaction or returns no hash
        """
        expected_chain_id = chain_id_for(network)
        actual_chain_id = await self.chain_id()
        if actual_chain_id != expected_chain_id:
            raise UnsupportedNetwork(
                f"Node serves chain {actual_chain_id}, {network} is chain {expected_chain_id}",
                network,
            )
        value = to_wei(parse_amount(amount), "ether")
        transaction = {
            "from": sender,
            "to": recipient,
            "value": hex(value),
            "chainId": hex(expected_chain_id),
        }
        txn_hash = await self._call("eth_sendTransaction", [transaction])
        if not isinstance(txn_hash, str) or not txn_hash:
            raise RpcError(
                f"eth_sendTransaction returned no transaction hash: {txn_hash!r}", None
            )
        return txn_hash

    #
    # Receipt source
    #

    async def transaction_receipt(self, txn_hash: str) -> Optional[Receipt]:
        """
        Fetch the receipt of a transaction.

        :return: The parsed receipt, or None while the transaction is pending or unknown
        """
        result = await self._call("eth_getTransactionReceipt", [txn_hash])
        if result is None:
            return None
        return Receipt.from_rpc(result)

    async def _call(self, method: str, params: List[Any]) -> Any:
        payload = {
            "jsonrpc": "2.0",
            "id": next(self._request_ids),
            "method": method,
            "params": params,
        }
        response = await self.client.post(self.base_url, json=payload)
        if response.status_code >= 400:
            raise ApiError(f"{response.text} - {method}", response.status_code)
        body = response.json()
        error = body.get("error")
        if error is not None:
            raise RpcError(
                error.get("message", "unknown error"),
                error.get("code"),
                error.get("data"),
            )
        return body.get("result")


class ApiError(Exception):
    """The API returned a non-success status code, e.g., >= 400"""

    status_code: int

    def __init__(self, message: str, status_code: int):
        # Call the base class constructor with the parameters it needs
        super().__init__(message)
        self.status_code = status_code


class RpcError(Exception):
    """The node answered with a JSON-RPC error object"""

    code: Optional[int]
    data: Any

    def __init__(self, message: str, code: Optional[int], data: Any = None):
        super().__init__(message)
        self.code = code
        self.data = data


class UnsupportedNetwork(Exception):
    """The network identifier is unknown or does not match the node"""

    network: str

    def __init__(self, message: str, network: str):
        super().__init__(message)
        self.network = network


class Test(unittest.IsolatedAsyncioTestCase):
    SENDER = "0x52908400098527886E0F7030069857D2E4169EE7"
    RECIPIENT = "0x8617E340B3D01FA5F11F306F4090FD50E238070D"

    async def client_with(self, handler) -> RpcClient:
        client = RpcClient("https://rpc.example", ClientConfig(api_key="secret"))
        await client.client.aclose()
        client.client = httpx.AsyncClient(
            transport=httpx.MockTransport(handler), headers=client.client.headers
        )
        return client

    async def test_send_transaction(self):
        requests = []

        def handler(request: httpx.Request) -> httpx.Response:
            call = json.loads(request.content)
            requests.append(call)
            self.assertEqual(request.headers["Authorization"], "Bearer secret")
            if call["method"] == "eth_chainId":
                return httpx.Response(200, json={"id": call["id"], "result": "0x14a34"})
            return httpx.Response(200, json={"id": call["id"], "result": "0xfeed"})

        client = await self.client_with(handler)
        txn_hash = await client.send_transaction(
            self.SENDER, self.RECIPIENT, "0.001", "base-sepolia"
        )
        self.assertEqual(txn_hash, "0xfeed")
        self.assertEqual([r["method"] for r in requests], ["eth_chainId", "eth_sendTransaction"])
        transaction = requests[1]["params"][0]
        self.assertEqual(transaction["value"], hex(10**15))
        self.assertEqual(transaction["chainId"], hex(84532))
        self.assertEqual(transaction["to"], self.RECIPIENT)

        # The chain id is cached
        await client.send_transaction(self.SENDER, self.RECIPIENT, "1", "base-sepolia")
        self.assertEqual(len(requests), 3)
        await client.close()

    async def test_wrong_network(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={"id": 1, "result": "0x1"})

        client = await self.client_with(handler)
        with self.assertRaises(UnsupportedNetwork):
            await client.send_transaction(
                self.SENDER, self.RECIPIENT, "1", "base-sepolia"
            )
        with self.assertRaises(UnsupportedNetwork):
            await client.send_transaction(self.SENDER, self.RECIPIENT, "1", "solana")
        await client.close()

    async def test_errors(self):
        def rate_limited(request: httpx.Request) -> httpx.Response:
            return httpx.Response(429, text="Too Many Requests")

        client = await self.client_with(rate_limited)
        with self.assertRaises(ApiError) as context:
            await client.block_number()
        self.assertEqual(context.exception.status_code, 429)
        await client.close()

        def rpc_error(request: httpx.Request) -> httpx.Response:
            return httpx.Response(
                200,
                json={
                    "id": 1,
                    "error": {"code": -32000, "message": "insufficient funds for transfer"},
                },
            )

        client = await self.client_with(rpc_error)
        with self.assertRaises(RpcError) as rpc_context:
            await client.account_balance(self.SENDER)
        self.assertEqual(rpc_context.exception.code, -32000)
        self.assertIn("insufficient funds", str(rpc_context.exception))
        await client.close()

    async def test_transaction_receipt(self):
        receipts = [
            None,
            {
                "transactionHash": "0xfeed",
                "blockNumber": "0x10",
                "blockHash": "0xb10c",
                "status": "0x1",
                "gasUsed": "0x5208",
            },
        ]

        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={"id": 1, "result": receipts.pop(0)})

        client = await self.client_with(handler)
        self.assertIsNone(await client.transaction_receipt("0xfeed"))
        receipt = await client.transaction_receipt("0xfeed")
        assert receipt is not None
        self.assertEqual(receipt.block_number, 16)
        self.assertTrue(receipt.success)
        await client.close()

    async def test_send_transaction_without_hash(self):
        def handler(request: httpx.Request) -> httpx.Response:
            call = json.loads(request.content)
            if call["method"] == "eth_chainId":
                return httpx.Response(200, json={"id": call["id"], "result": "0x14a34"})
            return httpx.Response(200, json={"id": call["id"], "result": None})

        client = await self.client_with(handler)
        with self.assertRaises(RpcError) as context:
            await client.send_transaction(
                self.SENDER, self.RECIPIENT, "0.001", "base-sepolia"
            )
        self.assertIn("no transaction hash", str(context.exception))
        await client.close()

    async def test_sub_wei_amount_is_not_sent(self):
        methods = []

        def handler(request: httpx.Request) -> httpx.Response:
            call = json.loads(request.content)
            methods.append(call["method"])
            if call["method"] == "eth_chainId":
                return httpx.Response(200, json={"id": call["id"], "result": "0x14a34"})
            return httpx.Response(200, json={"id": call["id"], "result": "0xfeed"})

        client = await self.client_with(handler)
        with self.assertRaises(ValueError):
            await client.send_transaction(
                self.SENDER, self.RECIPIENT, "0.0000000000000000001", "base-sepolia"
            )
        self.assertNotIn("eth_sendTransaction", methods)
        await client.close()
