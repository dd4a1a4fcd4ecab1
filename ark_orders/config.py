# ark_orders/config.py
from dotenv import load_dotenv, find_dotenv
import os
import logging
from typing import Dict

from ark_orders.errors import ConfigurationError

# Load nearest .env from project tree, don't override existing process env
load_dotenv(find_dotenv(usecwd=True), override=False)

logger = logging.getLogger(__name__)


def _int_env(name: str, default: int) -> int:
    raw = (os.getenv(name) or "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        raise ConfigurationError(f"{name} must be an integer, got '{raw}'", {"variable": name}) from None


def parse_overrides(raw: str) -> Dict[str, str]:
    """Parse ``role=0xaddr,role=0xaddr`` into a dict."""
    overrides = {}
    for item in (raw or "").split(","):
        item = item.strip()
        if not item:
            continue
        role, sep, addr = item.partition("=")
        if not sep or not addr.strip():
            raise ConfigurationError(f"Malformed contract override '{item}'", {"variable": "ARK_CONTRACT_OVERRIDES"})
        overrides[role.strip().lower()] = addr.strip()
    return overrides


class Settings:
    """Client configuration read from the environment."""

    def __init__(self):
        if os.getenv("ARK_ENV"):
            logger.warning("DEPRECATED: ARK_ENV is deprecated, use ARK_NETWORK instead")

        # Chain / account
        self.ARK_NETWORK = (os.getenv("ARK_NETWORK") or os.getenv("ARK_ENV") or "development").strip().lower()
        self.ARK_RPC_URL = (os.getenv("ARK_RPC_URL") or "http://localhost:5050/rpc").strip()
        self.ARK_ACCOUNT_ADDRESS = (os.getenv("ARK_ACCOUNT_ADDRESS") or "").strip()
        self.ARK_PRIVATE_KEY = (os.getenv("ARK_PRIVATE_KEY") or "").strip()
        self.ARK_CONTRACT_OVERRIDES = parse_overrides(os.getenv("ARK_CONTRACT_OVERRIDES") or "")

        # Submission retries
        self.ARK_SUBMIT_MAX_RETRIES = _int_env("ARK_SUBMIT_MAX_RETRIES", 3)
        self.ARK_RETRY_BASE_MS = _int_env("ARK_RETRY_BASE_MS", 250)
        self.ARK_RETRY_MAX_MS = _int_env("ARK_RETRY_MAX_MS", 4000)

        # Status polling and inclusion
        self.ARK_POLL_INTERVAL_MS = _int_env("ARK_POLL_INTERVAL_MS", 500)
        self.ARK_POLL_MAX_INTERVAL_MS = _int_env("ARK_POLL_MAX_INTERVAL_MS", 5000)
        self.ARK_INCLUSION_TIMEOUT_MS = _int_env("ARK_INCLUSION_TIMEOUT_MS", 120000)
        self.ARK_RPC_TIMEOUT_MS = _int_env("ARK_RPC_TIMEOUT_MS", 10000)

        # Orders
        self.ARK_ORDER_TTL_SECONDS = _int_env("ARK_ORDER_TTL_SECONDS", 60 * 60 * 24 * 30)

        # Audit trail; empty disables it
        self.ARK_AUDIT_LOG_DIR = (os.getenv("ARK_AUDIT_LOG_DIR", "logs/orders") or "").strip()

        if self.ARK_SUBMIT_MAX_RETRIES < 1:
            raise ConfigurationError("ARK_SUBMIT_MAX_RETRIES must be at least 1")

    @property
    def has_signer(self) -> bool:
        return bool(self.ARK_ACCOUNT_ADDRESS and self.ARK_PRIVATE_KEY)

    def redacted(self) -> Dict[str, object]:
        """Settings safe to log."""
        key = self.ARK_PRIVATE_KEY
        return {
            "network": self.ARK_NETWORK,
            "rpc_url": self.ARK_RPC_URL,
            "account": self.ARK_ACCOUNT_ADDRESS,
            "private_key": f"{key[:4]}...{key[-4:]}" if len(key) > 8 else ("set" if key else ""),
            "overrides": self.ARK_CONTRACT_OVERRIDES,
            "submit_max_retries": self.ARK_SUBMIT_MAX_RETRIES,
        }


settings = Settings()
