"""
Canonical order encoding shared by submission, status lookup and cancellation.

Field order and word width are defined once here. Changing either changes
every order hash, so the encoding is versioned with ORDER_HASH_VERSION.
"""
from collections.abc import Mapping
from typing import Any, List, Optional, Tuple

from eth_abi import encode as abi_encode
from eth_utils import keccak

from ark_common.felt import MASK_250, to_felt

ORDER_HASH_VERSION = 1

# (field name, kind). Every field encodes to fixed 32-byte words.
ORDER_HASH_FIELDS: Tuple[Tuple[str, str], ...] = (
    ("route", "uint"),
    ("offerer", "felt"),
    ("broker_id", "felt"),
    ("token_chain_id", "felt"),
    ("token_address", "felt"),
    ("token_id", "optional_uint"),
    ("quantity", "uint"),
    ("start_amount", "uint"),
    ("end_amount", "uint"),
    ("currency_chain_id", "felt"),
    ("currency_address", "felt"),
    ("start_date", "uint"),
    ("end_date", "uint"),
    ("salt", "felt"),
    ("additional_data", "felt_digest"),
)


def canon_addr(addr: str) -> str:
    """Lowercase 0x-prefixed hex with leading zeros stripped.

    Starknet addresses are felts, so ``0x0049..`` and ``0x49..`` are the same
    account; comparisons and lock keys use this form.
    """
    if not isinstance(addr, str):
        return addr
    return hex(to_felt(addr if addr.lower().startswith("0x") else "0x" + addr))


def canon_obj(obj):
    """Recursively sort mapping keys so map construction order never matters."""
    if isinstance(obj, Mapping):
        return {k: canon_obj(obj[k]) for k in sorted(obj.keys())}
    if isinstance(obj, list):
        return [canon_obj(v) for v in obj]
    if isinstance(obj, tuple):
        return tuple(canon_obj(v) for v in obj)
    return obj


def _field_words(kind: str, value: Any) -> List[int]:
    if kind == "uint":
        return [int(value)]
    if kind == "felt":
        return [to_felt(value)]
    if kind == "optional_uint":
        return [0, 0] if value is None else [1, int(value)]
    if kind == "felt_digest":
        words = [to_felt(v) for v in (value or [])]
        packed = abi_encode(["uint256"] * len(words), words) if words else b""
        return [int.from_bytes(keccak(packed), "big")]
    raise ValueError(f"Unknown canonical field kind: {kind}")


def canonical_words(fields: Mapping) -> List[int]:
    """Flatten order fields into their canonical fixed-width word sequence."""
    words = [ORDER_HASH_VERSION]
    for name, kind in ORDER_HASH_FIELDS:
        if name not in fields:
            raise KeyError(f"Missing canonical order field: {name}")
        words.extend(_field_words(kind, fields[name]))
    return words


def compute_order_hash(fields: Mapping) -> int:
    """keccak-256 over the canonical 32-byte words, masked to fit a felt."""
    words = canonical_words(fields)
    encoded = abi_encode(["uint256"] * len(words), words)
    return int.from_bytes(keccak(encoded), "big") & MASK_250


def format_hash(value: int) -> str:
    return "0x" + format(int(value), "064x")


def parse_hash(value: Any) -> int:
    """Accept an int or hex string order hash."""
    if isinstance(value, int):
        return value
    return to_felt(value)


def same_address(a: Optional[str], b: Optional[str]) -> bool:
    if a is None or b is None:
        return a is b
    return to_felt(a) == to_felt(b)
