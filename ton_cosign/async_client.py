# Copyright © Aptos Foundation
# SPDX-License-Identifier: Apache-2.0

"""
Asynchronous JSON-RPC client for TON nodes served by TONX API.

Only the calls a co-signer needs before building an authorization are
covered: running get-methods on a contract and reading a wallet's ``seqno``.

Examples:
    Reading the seqno of a wallet::

        client = TonxClient(os.environ["TONX_API_KEY"], network="testnet")
        try:
            seqno = await client.seqno(WalletAddress.from_str("UQBUQSw-..."))
        finally:
            await client.close()
"""

from __future__ import annotations

import json
import logging
import unittest
from typing import Any, Dict, List, Optional, Union

import httpx

from .address import WalletAddress

NETWORKS = ("mainnet", "testnet")


class TonxClient:
    """Thin async wrapper around the TONX JSON-RPC endpoint.

    Attributes:
        network: Either "mainnet" or "testnet".
        endpoint: The full JSON-RPC URL, API key included.
        client: Underlying HTTP client.
    """

    network: str
    endpoint: str
    client: httpx.AsyncClient

    def __init__(
        self,
        api_key: str,
        network: str = "mainnet",
        version: str = "v2",
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        if network not in NETWORKS:
            raise ValueError(f"Unknown network {network}, expected one of {NETWORKS}")
        self.network = network
        self.endpoint = f"https://{network}-rpc.tonxapi.com/{version}/json-rpc/{api_key}"
        # Default timeouts but do not set a pool timeout.
        timeout = httpx.Timeout(60.0, pool=None)
        self.client = httpx.AsyncClient(
            timeout=timeout,
            headers={"Content-Type": "application/json"},
            transport=transport,
        )
        self._request_id = 0

    async def close(self):
        """Close the underlying HTTP client. The client cannot be used afterwards."""
        await self.client.aclose()

    async def run_get_method(
        self,
        address: Union[str, WalletAddress],
        method: str,
        stack: Optional[List[Any]] = None,
    ) -> Dict[str, Any]:
        """Execute a get-method of a contract and return the JSON-RPC result.

        Raises:
            ApiError: On HTTP failures, JSON-RPC errors or a missing result.
        """
        response = await self._post(
            "runGetMethod",
            {"address": str(address), "method": method, "stack": stack or []},
        )
        if response.status_code >= 400:
            raise ApiError(f"{response.text} - {address}", response.status_code)

        try:
            data = response.json()
        except json.JSONDecodeError as e:
            raise ApiError(f"Invalid JSON-RPC response: {response.text}", response.status_code) from e
        if data.get("error"):
            raise ApiError(f"{data['error']} - {address}", response.status_code)
        if "result" not in data:
            raise ApiError(f"No result in response: {response.text}", response.status_code)
        return data["result"]

    async def seqno(self, address: Union[str, WalletAddress]) -> int:
        """The current seqno of a wallet contract."""
        result = await self.run_get_method(address, "seqno")
        try:
            value = result["stack"][0][1]
            return int(value, 16)
        except (KeyError, IndexError, TypeError, ValueError) as e:
            raise ApiError(f"Unexpected seqno result: {result}", 200) from e

    async def _post(self, method: str, params: Dict[str, Any]) -> httpx.Response:
        self._request_id += 1
        logging.debug(f"{method} #{self._request_id} on {self.network}: {params}")
        return await self.client.post(
            url=self.endpoint,
            json={
                "id": str(self._request_id),
                "jsonrpc": "2.0",
                "method": method,
                "params": params,
            },
        )


class ApiError(Exception):
    """The API returned a non-success status code or a JSON-RPC error"""

    status_code: int

    def __init__(self, message: str, status_code: int):
        # Call the base class constructor with the parameters it needs
        super().__init__(message)
        self.status_code = status_code


class Test(unittest.IsolatedAsyncioTestCase):
    ADDRESS = WalletAddress(0, b"\x11" * 32)

    def client(self, handler) -> TonxClient:
        return TonxClient("key", network="testnet", transport=httpx.MockTransport(handler))

    async def test_seqno(self):
        requests = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(json.loads(request.content))
            self.assertEqual(
                str(request.url), "https://testnet-rpc.tonxapi.com/v2/json-rpc/key"
            )
            return httpx.Response(
                200, json={"id": "1", "jsonrpc": "2.0", "result": {"stack": [["num", "0x1a"]]}}
            )

        client = self.client(handler)
        try:
            self.assertEqual(await client.seqno(self.ADDRESS), 26)
        finally:
            await client.close()

        self.assertEqual(requests[0]["method"], "runGetMethod")
        self.assertEqual(requests[0]["params"]["method"], "seqno")
        self.assertEqual(requests[0]["params"]["address"], str(self.ADDRESS))
        self.assertEqual(requests[0]["params"]["stack"], [])

    async def test_http_error(self):
        client = self.client(lambda request: httpx.Response(401, text="bad key"))
        with self.assertRaises(ApiError) as cm:
            await client.seqno(self.ADDRESS)
        self.assertEqual(cm.exception.status_code, 401)
        await client.close()

    async def test_rpc_error(self):
        client = self.client(
            lambda request: httpx.Response(
                200, json={"jsonrpc": "2.0", "error": {"code": -32000, "message": "exit code -13"}}
            )
        )
        with self.assertRaises(ApiError):
            await client.run_get_method(self.ADDRESS, "get_multisig_data")
        await client.close()

    async def test_malformed_seqno(self):
        client = self.client(
            lambda request: httpx.Response(200, json={"result": {"stack": []}})
        )
        with self.assertRaises(ApiError):
            await client.seqno(self.ADDRESS)
        await client.close()

    def test_unknown_network(self):
        with self.assertRaises(ValueError):
            TonxClient("key", network="devnet")


if __name__ == "__main__":
    unittest.main()
