"""
Protocols
Lightweight Protocols for the chain boundary and structured audit rows.
"""

from .chain_provider import Account, ChainProvider, Receipt
from .logging_models import OrderAuditRow

__all__ = [
    "Account",
    "ChainProvider",
    "Receipt",
    "OrderAuditRow"
]
