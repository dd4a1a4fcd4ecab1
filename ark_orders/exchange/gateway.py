"""
Contract Gateway - ABI-driven reads and writes against named contract roles.
Resolves each contract's interface on first use and refuses to encode or
broadcast anything the interface cannot fully describe.
"""

import logging
from typing import Any, Dict, Optional

from ark_common.canon import canon_addr
from ark_common.felt import AbiIndex, AbiTypeError
from ark_orders.errors import (
    ChainError, InterfaceResolutionError, TransactionRevertedError, ValidationError
)
from ark_orders.exchange.sequencer import NonceSequencer
from ark_orders.protocols.chain_provider import Account, ChainProvider, Receipt
from ark_orders.registry import AddressRegistry

logger = logging.getLogger("contract_gateway")


class PendingTransaction:
    """Handle for a broadcast transaction; inclusion is awaited by the caller."""

    def __init__(self, transaction_hash: str, provider: ChainProvider, address: str, method: str):
        self.transaction_hash = transaction_hash
        self.address = address
        self.method = method
        self._provider = provider
        self.receipt: Optional[Receipt] = None

    async def wait(self) -> Receipt:
        """Await inclusion. Raises TransactionRevertedError on a reverted receipt."""
        receipt = await self._provider.wait_for_inclusion(self.transaction_hash)
        self.receipt = receipt
        if not receipt.succeeded:
            raise TransactionRevertedError(
                receipt.revert_reason or "execution reverted",
                transaction_hash=self.transaction_hash,
                details={"method": self.method, "address": self.address},
            )
        return receipt

    def __repr__(self) -> str:
        return f"PendingTransaction({self.method} tx={self.transaction_hash})"


class ContractGateway:
    """Reads and writes against contract roles or explicit addresses."""

    def __init__(self, provider: ChainProvider, registry: AddressRegistry,
                 sequencer: Optional[NonceSequencer] = None):
        self.provider = provider
        self.registry = registry
        self.sequencer = sequencer or NonceSequencer(provider)
        self._interfaces: Dict[str, AbiIndex] = {}

    def resolve_target(self, target: str) -> str:
        """A role name goes through the registry; a 0x address is used as-is."""
        if isinstance(target, str) and target.lower().startswith("0x"):
            return canon_addr(target)
        return self.registry.resolve(target)

    async def interface(self, target: str) -> AbiIndex:
        address = self.resolve_target(target)
        cached = self._interfaces.get(address)
        if cached is not None:
            return cached
        try:
            abi = await self.provider.get_interface(address)
            index = AbiIndex(abi)
        except (ChainError, AbiTypeError, KeyError, TypeError) as e:
            raise InterfaceResolutionError(
                f"Could not resolve interface for {target} ({address}): {e}",
                {"target": target, "address": address, "reason": str(e)},
            ) from e
        self._interfaces[address] = index
        logger.info(f"[gateway] Resolved interface for {target} ({address}): {len(index.functions)} functions")
        return index

    async def _prepare(self, target: str, method: str, args: Optional[Dict[str, Any]]):
        address = self.resolve_target(target)
        index = await self.interface(target)
        try:
            index.check_function(method)
        except AbiTypeError as e:
            raise InterfaceResolutionError(
                f"Interface of {target} cannot describe '{method}': {e}",
                {"target": target, "address": address, "method": method, "reason": str(e)},
            ) from e
        try:
            calldata = index.encode_inputs(method, args or {})
        except (AbiTypeError, ValueError, TypeError) as e:
            raise ValidationError(
                f"Invalid arguments for {method}: {e}",
                {"target": target, "method": method, "reason": str(e)},
            ) from e
        return address, index, calldata

    async def read(self, target: str, method: str, args: Optional[Dict[str, Any]] = None) -> Any:
        address, index, calldata = await self._prepare(target, method, args)
        felts = await self.provider.call(address, method, calldata)
        try:
            return index.decode_outputs(method, felts)
        except AbiTypeError as e:
            raise InterfaceResolutionError(
                f"Result of {method} does not match the interface of {target}: {e}",
                {"target": target, "method": method, "reason": str(e)},
            ) from e

    async def write(self, target: str, method: str, args: Optional[Dict[str, Any]],
                    account: Account) -> PendingTransaction:
        """Broadcast a state-changing call; returns as soon as the node accepts it."""
        address, _, calldata = await self._prepare(target, method, args)

        async def send(nonce: int) -> str:
            return await self.provider.invoke(address, method, calldata, account, nonce)

        transaction_hash = await self.sequencer.broadcast(account, send)
        logger.info(f"[gateway] {method} on {target} broadcast by {canon_addr(account.address)}: {transaction_hash}")
        return PendingTransaction(transaction_hash, self.provider, address, method)
