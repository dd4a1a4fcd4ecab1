"""
JSON-RPC Chain Provider - httpx client for Starknet-style nodes.
Implements the ChainProvider protocol and classifies every failure as
transient (retry), nonce collision (resync + retry) or revert (terminal).

Invoke signing is pluggable. The default digest is the keccak/msgpack digest
from ark_common.signing, signed by the bundled secp256k1 LocalAccount. A
Starknet node verifies signatures against the protocol transaction hash, so
talking to one needs a ``digest`` that computes that hash and an Account whose
key matches the account contract's signer.
"""

import asyncio
import itertools
import json
import logging
from typing import Any, Callable, Dict, List, Optional

import httpx

from ark_common.canon import canon_addr
from ark_common.felt import get_selector_from_name
from ark_common.signing import invoke_digest, invoke_payload
from ark_orders.errors import (
    ChainError, NonceCollisionError, TransactionRevertedError, TransientChainError
)
from ark_orders.protocols.chain_provider import Account, Receipt

logger = logging.getLogger("rpc_provider")

# Starknet JSON-RPC error codes
CONTRACT_NOT_FOUND = 20
BLOCK_NOT_FOUND = 24
TXN_HASH_NOT_FOUND = 29
CLASS_HASH_NOT_FOUND = 28
CONTRACT_ERROR = 40
TRANSACTION_EXECUTION_ERROR = 41
INVALID_TRANSACTION_NONCE = 52

ACCEPTED_FINALITY = ("ACCEPTED_ON_L2", "ACCEPTED_ON_L1")
TRANSIENT_HTTP_STATUS = (429, 500, 502, 503, 504)


def _hex(value: int) -> str:
    return hex(int(value))


class JsonRpcProvider:
    """Async JSON-RPC provider over httpx."""

    def __init__(
        self,
        rpc_url: str,
        *,
        timeout_ms: int = 10000,
        poll_interval_ms: int = 1000,
        inclusion_timeout_ms: int = 120000,
        max_fee: int = 10**16,
        client: Optional[httpx.AsyncClient] = None,
        digest: Callable[[Dict[str, Any], int], bytes] = invoke_digest,
    ):
        self.rpc_url = rpc_url
        self.digest = digest
        self.poll_interval = poll_interval_ms / 1000.0
        self.inclusion_timeout = inclusion_timeout_ms / 1000.0
        self.max_fee = max_fee
        self._client = client or httpx.AsyncClient(timeout=timeout_ms / 1000.0)
        self._ids = itertools.count(1)
        self._chain_id: Optional[int] = None

    async def aclose(self):
        await self._client.aclose()

    async def _request(self, method: str, params: Dict[str, Any]) -> Any:
        body = {"jsonrpc": "2.0", "id": next(self._ids), "method": method, "params": params}
        try:
            response = await self._client.post(self.rpc_url, json=body)
        except httpx.TransportError as e:
            raise TransientChainError(f"{method}: transport failure: {e}", {"method": method}) from e

        if response.status_code in TRANSIENT_HTTP_STATUS:
            raise TransientChainError(
                f"{method}: HTTP {response.status_code}",
                {"method": method, "status_code": response.status_code},
            )
        if response.status_code >= 400:
            raise ChainError(f"{method}: HTTP {response.status_code}", details={"method": method})

        payload = response.json()
        if "error" in payload:
            raise self._classify(method, payload["error"])
        return payload.get("result")

    def _classify(self, method: str, error: Dict[str, Any]) -> ChainError:
        code = error.get("code")
        message = error.get("message", "")
        data = error.get("data")
        reason = data if isinstance(data, str) else json.dumps(data) if data else message
        details = {"method": method, "rpc_code": code}
        if code == INVALID_TRANSACTION_NONCE:
            return NonceCollisionError(f"{method}: {message}", details)
        if code in (CONTRACT_ERROR, TRANSACTION_EXECUTION_ERROR):
            return TransactionRevertedError(reason, details=details)
        if code in (CONTRACT_NOT_FOUND, CLASS_HASH_NOT_FOUND):
            return ChainError(f"{method}: {message}", "CONTRACT_NOT_FOUND", details)
        if code == BLOCK_NOT_FOUND:
            return TransientChainError(f"{method}: {message}", details)
        return ChainError(f"{method}: {message} ({reason})", details=details)

    # -----------------------
    # Reads
    # -----------------------

    async def chain_id(self) -> int:
        if self._chain_id is None:
            self._chain_id = int(await self._request("starknet_chainId", {}), 16)
        return self._chain_id

    async def get_interface(self, address: str) -> List[Dict[str, Any]]:
        result = await self._request(
            "starknet_getClassAt",
            {"block_id": "latest", "contract_address": canon_addr(address)},
        )
        abi = (result or {}).get("abi")
        if isinstance(abi, str):
            abi = json.loads(abi)
        if not abi:
            raise ChainError(f"No ABI published for {address}", "CONTRACT_NOT_FOUND", {"address": address})
        return abi

    async def call(self, address: str, method: str, calldata: List[int]) -> List[int]:
        result = await self._request(
            "starknet_call",
            {
                "request": {
                    "contract_address": canon_addr(address),
                    "entry_point_selector": _hex(get_selector_from_name(method)),
                    "calldata": [_hex(v) for v in calldata],
                },
                "block_id": "latest",
            },
        )
        return [int(v, 16) for v in result or []]

    async def get_nonce(self, address: str) -> int:
        result = await self._request(
            "starknet_getNonce",
            {"block_id": "pending", "contract_address": canon_addr(address)},
        )
        return int(result, 16)

    async def get_receipt(self, transaction_hash: str) -> Optional[Receipt]:
        try:
            result = await self._request(
                "starknet_getTransactionReceipt", {"transaction_hash": transaction_hash}
            )
        except ChainError as e:
            if e.details.get("rpc_code") == TXN_HASH_NOT_FOUND:
                return None
            raise
        return Receipt(
            transaction_hash=transaction_hash,
            execution_status=result.get("execution_status", "SUCCEEDED"),
            finality_status=result.get("finality_status", ""),
            revert_reason=result.get("revert_reason"),
            block_number=result.get("block_number"),
        )

    # -----------------------
    # Writes
    # -----------------------

    async def invoke(self, address: str, method: str, calldata: List[int],
                     account: Account, nonce: int) -> str:
        selector = get_selector_from_name(method)
        calls = [{"to": address, "selector": selector, "calldata": calldata}]
        payload = invoke_payload(account.address, calls, await self.chain_id())
        signature = account.sign(self.digest(payload, nonce))

        # Cairo 1 account __execute__ layout: n_calls, (to, selector, len, data...)*
        execute_calldata = [len(calls)]
        for call in calls:
            execute_calldata.extend([int(call["to"], 16), call["selector"], len(call["calldata"])])
            execute_calldata.extend(call["calldata"])

        tx = {
            "type": "INVOKE",
            "version": "0x1",
            "sender_address": canon_addr(account.address),
            "calldata": [_hex(v) for v in execute_calldata],
            "max_fee": _hex(self.max_fee),
            "signature": [_hex(v) for v in signature],
            "nonce": _hex(nonce),
        }
        result = await self._request("starknet_addInvokeTransaction", {"invoke_transaction": tx})
        transaction_hash = result["transaction_hash"]
        logger.info(f"[rpc] {method} -> {canon_addr(address)} nonce={nonce} tx={transaction_hash}")
        return transaction_hash

    async def wait_for_inclusion(self, transaction_hash: str) -> Receipt:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.inclusion_timeout
        while True:
            receipt = await self.get_receipt(transaction_hash)
            if receipt is not None and receipt.finality_status in ACCEPTED_FINALITY:
                return receipt
            if loop.time() >= deadline:
                raise TransientChainError(
                    f"Transaction {transaction_hash} not included after {self.inclusion_timeout:.0f}s",
                    {"transaction_hash": transaction_hash},
                )
            await asyncio.sleep(self.poll_interval)
