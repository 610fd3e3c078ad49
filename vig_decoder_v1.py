"""
Vault Invariant Guard (VIG) - Operation Decoder
Version: 1.0.0

Schema-driven decoding of ABI-encoded call payloads. Every field read is
bounds-checked against the buffer before it happens, so adversarial payloads
degrade to an UNRECOGNIZED operation instead of raising.
"""

from dataclasses import dataclass
from typing import List, Optional, Tuple

from vig_enforcement_v1 import (
    ADDRESS_SIZE,
    DecodeFailure,
    NULL_ADDRESS,
    Operation,
    SELECTOR_SIZE,
    WORD_SIZE,
    logger
)
from vig_selectors_v1 import SELECTOR_REGISTRY, SelectorRegistry, SelectorShape
from vig_metrics import decode_failure_counter

# ============================================
# HELPERS
# ============================================

def hex_to_bytes(value: str) -> bytes:
    """Decode a 0x-prefixed (or bare) hex string."""
    text = value[2:] if value[:2].lower() == "0x" else value
    if len(text) % 2:
        raise ValueError(f"Odd-length hex string: {value[:16]}...")
    return bytes.fromhex(text)

def split_calldata(calldata: bytes) -> Tuple[bytes, bytes]:
    """Separate the 4-byte discriminant from the argument payload."""
    calldata = bytes(calldata)
    return calldata[:SELECTOR_SIZE], calldata[SELECTOR_SIZE:]

# ============================================
# CALLDATA READER
# ============================================

class CalldataReader:
    """Bounds-checked reader over ABI words.

    ``field`` numbers are 1-based and relative to ``base``; ``*_at`` methods
    take absolute byte offsets into the payload.
    """

    def __init__(self, payload: bytes, base: int = 0):
        self.payload = bytes(payload)
        self.base = base

    def _slice(self, start: int, size: int) -> bytes:
        if start < 0 or size < 0 or start + size > len(self.payload):
            raise DecodeFailure(f"Read of {size} bytes at {start} outside {len(self.payload)}-byte payload")
        return self.payload[start:start + size]

    def word_at(self, offset: int) -> bytes:
        return self._slice(offset, WORD_SIZE)

    def word(self, field: int) -> bytes:
        if field < 1:
            raise DecodeFailure(f"Field numbers start at 1, got {field}")
        return self.word_at(self.base + (field - 1) * WORD_SIZE)

    def uint_at(self, offset: int) -> int:
        return int.from_bytes(self.word_at(offset), "big")

    def uint(self, field: int) -> int:
        return int.from_bytes(self.word(field), "big")

    def address(self, field: int) -> str:
        raw = self.word(field)
        if any(raw[:WORD_SIZE - ADDRESS_SIZE]):
            raise DecodeFailure(f"Field {field} is not a left-padded address")
        return "0x" + raw[WORD_SIZE - ADDRESS_SIZE:].hex()

    def bytes_at(self, offset: int) -> bytes:
        """Length-prefixed dynamic bytes starting at ``offset``."""
        length = self.uint_at(offset)
        return self._slice(offset + WORD_SIZE, length)

# ============================================
# CONNECTOR PAYLOADS
# ============================================

@dataclass(frozen=True)
class ConnectorCall:
    """One (target, onBehalfOf, value, data) item routed through the connector."""
    target: str
    on_behalf_of: str
    value: int
    data: bytes

CALL_DATA_FIELD = 4       # bytes offset word of (address,address,uint256,bytes)
BATCH_ARRAY_FIELD = 1     # array offset word of batch(...[])

def decode_connector_call(payload: bytes, data_field: int = CALL_DATA_FIELD) -> ConnectorCall:
    """Decode ``call``/``controlCollateral`` arguments. Raises DecodeFailure.

    ``data_field`` is the word holding the offset of the inner calldata.
    """
    reader = CalldataReader(payload)
    return ConnectorCall(
        target=reader.address(1),
        on_behalf_of=reader.address(2),
        value=reader.uint(3),
        data=reader.bytes_at(reader.uint(data_field))
    )

def decode_batch_items(payload: bytes, array_field: int = BATCH_ARRAY_FIELD,
                       item_data_field: int = CALL_DATA_FIELD) -> List[ConnectorCall]:
    """Decode ``batch((address,address,uint256,bytes)[])`` arguments. Raises DecodeFailure.

    Items share the argument layout of a connector ``call``.
    """
    reader = CalldataReader(payload)
    array_offset = reader.uint(array_field)
    length = reader.uint_at(array_offset)

    # every item needs at least one head word; cheap guard against absurd lengths
    if length > len(reader.payload) // WORD_SIZE:
        raise DecodeFailure(f"Batch length {length} cannot fit in {len(reader.payload)} bytes")

    head = array_offset + WORD_SIZE
    items = []
    for index in range(length):
        item_base = head + reader.uint_at(head + index * WORD_SIZE)
        item = CalldataReader(reader.payload, base=item_base)
        items.append(ConnectorCall(
            target=item.address(1),
            on_behalf_of=item.address(2),
            value=item.uint(3),
            data=reader.bytes_at(item_base + item.uint(item_data_field))
        ))
    return items

# ============================================
# OPERATION DECODER
# ============================================

class OperationDecoder:
    """Turns (discriminant, payload) into a typed Operation. Never raises."""

    def __init__(self, registry: Optional[SelectorRegistry] = None):
        self.registry = registry or SELECTOR_REGISTRY

    def decode(self, discriminant: bytes, payload: bytes, target: str = NULL_ADDRESS) -> Operation:
        payload = bytes(payload)
        shape = self.registry.lookup(discriminant)

        if shape is None:
            logger.debug(f"DECODE: Unknown discriminant 0x{bytes(discriminant).hex()} on {target}")
            return Operation.unrecognized(target, payload)

        if len(payload) < shape.min_payload_size:
            decode_failure_counter.labels(stage="operation").inc()
            logger.warning(
                f"DECODE: {shape.name} payload of {len(payload)} bytes shorter than {shape.min_payload_size}"
            )
            return Operation.unrecognized(target, payload)

        if shape.is_structural:
            return Operation(kind=shape.kind, target=target, raw_payload=payload)

        principal, auxiliary = self.extract_principals(shape, payload)
        return Operation.build(shape.kind, target, principal, auxiliary, payload)

    def decode_calldata(self, target: str, calldata: bytes) -> Operation:
        discriminant, payload = split_calldata(calldata)
        return self.decode(discriminant, payload, target)

    def extract_principals(self, shape: SelectorShape, payload: bytes) -> Tuple[Optional[str], Tuple[str, ...]]:
        """Raw principal-bearing fields; the null identity is surfaced, not filtered."""
        reader = CalldataReader(payload)
        principal = None
        if shape.principal_field is not None:
            principal = self._read_address(reader, shape, shape.principal_field)

        auxiliary = []
        for position in shape.auxiliary_fields:
            value = self._read_address(reader, shape, position)
            if value is not None:
                auxiliary.append(value)
        return principal, tuple(auxiliary)

    def _read_address(self, reader: CalldataReader, shape: SelectorShape, position: int) -> Optional[str]:
        try:
            return reader.address(position)
        except DecodeFailure as e:
            decode_failure_counter.labels(stage="operation").inc()
            logger.warning(f"DECODE: {shape.name} field {position} dropped: {e}")
            return None
