"""
Cairo ABI calldata codec.

Encodes Python values into the flat felt lists a Starknet-style contract
expects and decodes call results back, driven strictly by the contract ABI.
Unresolvable types raise AbiTypeError so callers can abort before anything is
sent on chain.
"""
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional, Tuple

from eth_utils import keccak

FIELD_PRIME = 2**251 + 17 * 2**192 + 1
MASK_250 = 2**250 - 1
U128_MAX = 2**128 - 1

FELT = "core::felt252"
U256 = "core::integer::u256"
BOOL = "core::bool"
UNIT = "()"

_UINT_BITS = {
    "core::integer::u8": 8,
    "core::integer::u16": 16,
    "core::integer::u32": 32,
    "core::integer::u64": 64,
    "core::integer::u128": 128,
}

_FELT_LIKE = {
    FELT,
    "core::starknet::contract_address::ContractAddress",
    "core::starknet::class_hash::ClassHash",
    "core::starknet::eth_address::EthAddress",
}

_OPTION_PREFIX = "core::option::Option::<"
_ARRAY_PREFIXES = ("core::array::Array::<", "core::array::Span::<")


class AbiTypeError(ValueError):
    """Raised when a type or value cannot be resolved against the ABI."""


@dataclass(frozen=True)
class EnumVariant:
    """A decoded Cairo enum: exactly one active tag plus its payload.

    ``name`` is None when the chain returned a variant index the ABI does not
    list.
    """
    name: Optional[str]
    index: int
    value: Any = None


def get_selector_from_name(name: str) -> int:
    """Starknet entry point selector: keccak-256 of the name, masked to 250 bits."""
    return int.from_bytes(keccak(text=name), "big") & MASK_250


def to_felt(value: Any) -> int:
    """Coerce an int, bool or hex string to a felt."""
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, int):
        felt = value
    elif isinstance(value, str):
        felt = int(value, 16) if value.lower().startswith("0x") else int(value)
    else:
        raise AbiTypeError(f"Cannot convert {type(value).__name__} to felt")
    if felt < 0 or felt >= FIELD_PRIME:
        raise AbiTypeError(f"Value {value} out of felt range")
    return felt


def split_u256(value: int) -> Tuple[int, int]:
    value = int(value)
    if value < 0 or value >= 2**256:
        raise AbiTypeError(f"Value {value} out of u256 range")
    return value & U128_MAX, value >> 128


def join_u256(low: int, high: int) -> int:
    return (int(high) << 128) + int(low)


def _inner_type(type_name: str, prefix: str) -> str:
    if not type_name.endswith(">"):
        raise AbiTypeError(f"Malformed generic type: {type_name}")
    return type_name[len(prefix):-1]


class AbiIndex:
    """Functions, structs and enums of one contract ABI, keyed by name."""

    def __init__(self, abi: Iterable[Dict[str, Any]]):
        self.functions: Dict[str, Dict[str, Any]] = {}
        self.structs: Dict[str, List[Dict[str, Any]]] = {}
        self.enums: Dict[str, List[Dict[str, Any]]] = {}
        for entry in abi:
            self._add(entry)

    def _add(self, entry: Dict[str, Any]):
        if not isinstance(entry, dict) or "type" not in entry:
            raise AbiTypeError(f"Malformed ABI entry: {entry!r}")
        kind = entry["type"]
        if kind == "interface":
            for item in entry.get("items", []):
                self._add(item)
        elif kind == "function":
            self.functions[entry["name"]] = entry
        elif kind == "struct":
            self.structs[entry["name"]] = list(entry["members"])
        elif kind == "enum":
            self.enums[entry["name"]] = list(entry["variants"])
        # impl, event, constructor and l1_handler entries are not needed here

    def function(self, name: str) -> Dict[str, Any]:
        try:
            return self.functions[name]
        except KeyError:
            raise AbiTypeError(f"Function '{name}' not found in ABI") from None

    def check_type(self, type_name: str):
        """Raise AbiTypeError unless ``type_name`` is fully resolvable."""
        if type_name in _FELT_LIKE or type_name in _UINT_BITS or type_name in (U256, BOOL, UNIT):
            return
        if type_name.startswith(_OPTION_PREFIX):
            self.check_type(_inner_type(type_name, _OPTION_PREFIX))
            return
        for prefix in _ARRAY_PREFIXES:
            if type_name.startswith(prefix):
                self.check_type(_inner_type(type_name, prefix))
                return
        if type_name in self.structs:
            for member in self.structs[type_name]:
                self.check_type(member["type"])
            return
        if type_name in self.enums:
            for variant in self.enums[type_name]:
                self.check_type(variant["type"])
            return
        raise AbiTypeError(f"Unknown ABI type: {type_name}")

    def check_function(self, name: str) -> Dict[str, Any]:
        fn = self.function(name)
        for param in fn.get("inputs", []):
            self.check_type(param["type"])
        for out in fn.get("outputs", []):
            self.check_type(out["type"])
        return fn

    # -----------------------
    # Encoding
    # -----------------------

    def encode(self, type_name: str, value: Any) -> List[int]:
        if type_name in _FELT_LIKE:
            return [to_felt(value)]
        if type_name in _UINT_BITS:
            v = int(value)
            if v < 0 or v >= 2 ** _UINT_BITS[type_name]:
                raise AbiTypeError(f"Value {value} out of range for {type_name}")
            return [v]
        if type_name == U256:
            return list(split_u256(value))
        if type_name == BOOL:
            return [1 if value else 0]
        if type_name == UNIT:
            return []
        if type_name.startswith(_OPTION_PREFIX):
            if value is None:
                return [1]
            return [0] + self.encode(_inner_type(type_name, _OPTION_PREFIX), value)
        for prefix in _ARRAY_PREFIXES:
            if type_name.startswith(prefix):
                inner = _inner_type(type_name, prefix)
                items = list(value or [])
                out = [len(items)]
                for item in items:
                    out.extend(self.encode(inner, item))
                return out
        if type_name in self.structs:
            if not isinstance(value, dict):
                raise AbiTypeError(f"Struct {type_name} expects a dict, got {type(value).__name__}")
            out = []
            for member in self.structs[type_name]:
                if member["name"] not in value:
                    raise AbiTypeError(f"Missing member '{member['name']}' for {type_name}")
                out.extend(self.encode(member["type"], value[member["name"]]))
            return out
        if type_name in self.enums:
            return self._encode_enum(type_name, value)
        raise AbiTypeError(f"Unknown ABI type: {type_name}")

    def _encode_enum(self, type_name: str, value: Any) -> List[int]:
        variants = self.enums[type_name]
        if isinstance(value, EnumVariant):
            tag, payload = value.name, value.value
        elif isinstance(value, str):
            tag, payload = value, None
        else:
            raise AbiTypeError(f"Enum {type_name} expects a variant name or EnumVariant")
        for index, variant in enumerate(variants):
            if variant["name"] == tag:
                return [index] + self.encode(variant["type"], payload)
        raise AbiTypeError(f"Variant '{tag}' not defined for {type_name}")

    def encode_inputs(self, function_name: str, args: Dict[str, Any]) -> List[int]:
        fn = self.function(function_name)
        calldata: List[int] = []
        for param in fn.get("inputs", []):
            if param["name"] not in args:
                raise AbiTypeError(f"Missing argument '{param['name']}' for {function_name}")
            calldata.extend(self.encode(param["type"], args[param["name"]]))
        return calldata

    # -----------------------
    # Decoding
    # -----------------------

    def decode(self, type_name: str, felts: List[int], pos: int = 0) -> Tuple[Any, int]:
        try:
            return self._decode(type_name, felts, pos)
        except IndexError:
            raise AbiTypeError(f"Result too short while decoding {type_name}") from None

    def _decode(self, type_name: str, felts: List[int], pos: int) -> Tuple[Any, int]:
        if type_name in _FELT_LIKE or type_name in _UINT_BITS:
            return felts[pos], pos + 1
        if type_name == U256:
            return join_u256(felts[pos], felts[pos + 1]), pos + 2
        if type_name == BOOL:
            return felts[pos] != 0, pos + 1
        if type_name == UNIT:
            return None, pos
        if type_name.startswith(_OPTION_PREFIX):
            if felts[pos] == 1:
                return None, pos + 1
            return self._decode(_inner_type(type_name, _OPTION_PREFIX), felts, pos + 1)
        for prefix in _ARRAY_PREFIXES:
            if type_name.startswith(prefix):
                inner = _inner_type(type_name, prefix)
                count, pos = felts[pos], pos + 1
                items = []
                for _ in range(count):
                    item, pos = self._decode(inner, felts, pos)
                    items.append(item)
                return items, pos
        if type_name in self.structs:
            out = {}
            for member in self.structs[type_name]:
                out[member["name"]], pos = self._decode(member["type"], felts, pos)
            return out, pos
        if type_name in self.enums:
            variants = self.enums[type_name]
            index, pos = felts[pos], pos + 1
            if index >= len(variants):
                # payload width is unknown, so decoding stops at the tag
                return EnumVariant(name=None, index=index), pos
            variant = variants[index]
            payload, pos = self._decode(variant["type"], felts, pos)
            return EnumVariant(name=variant["name"], index=index, value=payload), pos
        raise AbiTypeError(f"Unknown ABI type: {type_name}")

    def decode_outputs(self, function_name: str, felts: List[int]) -> Any:
        """Decode a call result; a single output is returned bare, several as a list."""
        outputs = self.function(function_name).get("outputs", [])
        values = []
        pos = 0
        for out in outputs:
            value, pos = self.decode(out["type"], felts, pos)
            values.append(value)
        if not values:
            return None
        return values[0] if len(values) == 1 else values
