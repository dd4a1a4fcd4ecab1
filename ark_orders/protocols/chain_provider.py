"""
Chain Provider Protocol
The RPC boundary the Contract Gateway depends on. Transport, node selection
and retries below this line belong to the provider implementation.
"""

from abc import abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Protocol


class Account(Protocol):
    """A signing identity supplied per call."""

    address: str

    @abstractmethod
    def sign(self, digest: bytes) -> List[int]:
        """Sign a transaction digest."""
        ...


@dataclass(frozen=True)
class Receipt:
    """Inclusion result of a broadcast transaction."""
    transaction_hash: str
    execution_status: str  # "SUCCEEDED" or "REVERTED"
    finality_status: str
    revert_reason: Optional[str] = None
    block_number: Optional[int] = None

    @property
    def succeeded(self) -> bool:
        return self.execution_status == "SUCCEEDED"


class ChainProvider(Protocol):
    """Protocol for reading from and writing to the chain."""

    @abstractmethod
    async def get_interface(self, address: str) -> List[Dict[str, Any]]:
        """Return the ABI of the contract deployed at ``address``."""
        ...

    @abstractmethod
    async def call(self, address: str, method: str, calldata: List[int]) -> List[int]:
        """Execute a view call and return the raw result felts."""
        ...

    @abstractmethod
    async def get_nonce(self, address: str) -> int:
        """Return the next transaction nonce of an account."""
        ...

    @abstractmethod
    async def invoke(self, address: str, method: str, calldata: List[int],
                     account: Account, nonce: int) -> str:
        """Sign and broadcast a state-changing call. Returns the transaction hash."""
        ...

    @abstractmethod
    async def wait_for_inclusion(self, transaction_hash: str) -> Receipt:
        """Block until the transaction is included and return its receipt."""
        ...
