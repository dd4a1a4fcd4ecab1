"""
Invoke-transaction digests and local signing.

The digest is msgpack(payload) followed by the 8-byte big-endian nonce,
hashed with keccak. The payload carries the chain id. LocalAccount signs it
with a secp256k1 key via eth_keys; any other signer only has to expose
``address`` and ``sign(digest)``.
"""
from typing import Any, Dict, List

import msgpack
from eth_keys import keys
from eth_utils import keccak
from hexbytes import HexBytes

from ark_common.canon import canon_addr, canon_obj


def invoke_payload(sender: str, calls: List[Dict[str, Any]], chain_id: int) -> Dict[str, Any]:
    """Plain-dict payload for an invoke: sender, ordered calls, chain id."""
    return {
        "sender": canon_addr(sender),
        "calls": [
            {
                "to": canon_addr(call["to"]),
                "selector": hex(call["selector"]),
                "calldata": [hex(v) for v in call["calldata"]],
            }
            for call in calls
        ],
        "chain_id": hex(chain_id),
    }


def invoke_digest(payload: Dict[str, Any], nonce: int) -> bytes:
    packed = msgpack.packb(canon_obj(payload), use_bin_type=True, strict_types=True)
    data = packed + int(nonce).to_bytes(8, "big")
    return keccak(data)


class LocalAccount:
    """An account address paired with a local private key."""

    def __init__(self, address: str, private_key_hex: str):
        self.address = canon_addr(address)
        self._key = keys.PrivateKey(HexBytes(private_key_hex))

    @property
    def signer_address(self) -> str:
        return self._key.public_key.to_checksum_address().lower()

    def sign(self, digest: bytes) -> List[int]:
        sig = self._key.sign_msg_hash(digest)
        v = 27 if sig.v in (0, 27) else 28
        return [sig.r, sig.s, v]

    def __repr__(self) -> str:
        return f"LocalAccount(address={self.address})"


def recover_signer(digest: bytes, signature: List[int]) -> str:
    r, s, v_val = signature
    v = 0 if v_val in (0, 27) else 1
    sig = keys.Signature(vrs=(v, r, s))
    pub = sig.recover_public_key_from_msg_hash(digest)
    return pub.to_checksum_address().lower()
