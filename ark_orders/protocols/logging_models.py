"""
Logging Models
TypedDict models for structured order audit logging.
"""

from typing import TypedDict, Optional, Dict, Any


class OrderAuditRow(TypedDict):
    """Structured audit log for order lifecycle events."""
    timestamp: str
    event: str  # "order_submitting", "order_open", "order_cancelled", "order_failed", ...
    operation: str
    order_hash: Optional[str]
    account: Optional[str]
    status: Optional[str]
    step: Optional[str]
    transaction_hash: Optional[str]
    error: Optional[str]
    metadata: Dict[str, Any]
