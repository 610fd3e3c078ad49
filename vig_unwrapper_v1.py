"""
Vault Invariant Guard (VIG) - Call Tree & Batch Unwrapper
Version: 1.0.0

Raw top-level calldata is first shaped into a CallNode tree, then walked
depth-first into a flat list of leaves:

    Single(op)              one leaf, envelope principal inherited or carried
    Indirect(t, p, inner)   one level of connector redirection; inner wins
    Batch(items)            items walked in order; a Batch inside a Batch is
                            skipped, the host replays it as its own top-level call
"""

from dataclasses import dataclass
from typing import List, Optional, Tuple, Union

from vig_enforcement_v1 import (
    DecodeFailure,
    NULL_ADDRESS,
    Operation,
    Snapshot,
    OracleUnavailable,
    is_null,
    logger
)
from vig_selectors_v1 import CONNECTOR_BATCH, CONNECTOR_CALL, CONNECTOR_SINGLE_CALLS
from vig_decoder_v1 import (
    BATCH_ARRAY_FIELD,
    CALL_DATA_FIELD,
    ConnectorCall,
    OperationDecoder,
    decode_batch_items,
    decode_connector_call,
    split_calldata
)
from vig_metrics import decode_failure_counter, dropped_leaf_counter, unwrapped_leaf_counter

# ============================================
# CALL TREE
# ============================================

@dataclass(frozen=True)
class Single:
    """Leaf call. ``principal`` is the item's own envelope principal, if any."""
    operation: Operation
    principal: Optional[str] = None

@dataclass(frozen=True)
class Batch:
    items: Tuple["CallNode", ...] = ()

@dataclass(frozen=True)
class Indirect:
    """Connector-mediated call executed against ``target`` on behalf of ``principal``."""
    target: str
    principal: str
    inner: "CallNode"

CallNode = Union[Single, Batch, Indirect]

@dataclass(frozen=True)
class Leaf:
    """Unwrapped operation with its effective envelope principal and target."""
    operation: Operation
    principal: str
    target: str

# ============================================
# TREE BUILDER
# ============================================

class CallTreeBuilder:
    """Shapes raw calldata sent to ``target`` into a CallNode tree."""

    def __init__(self, connector: str, decoder: Optional[OperationDecoder] = None):
        self.connector = connector
        self.decoder = decoder or OperationDecoder()

    def build(self, target: str, calldata: bytes) -> CallNode:
        if target != self.connector:
            return Single(self.decoder.decode_calldata(target, calldata))

        discriminant, payload = split_calldata(calldata)

        if discriminant in CONNECTOR_SINGLE_CALLS:
            return self._build_indirect(discriminant, calldata, payload, None)

        if discriminant == CONNECTOR_BATCH:
            return self._build_batch(calldata, payload)

        # other connector entry points carry nothing to validate
        return Single(Operation.unrecognized(target, payload))

    def _build_indirect(self, discriminant: bytes, calldata: bytes, payload: bytes,
                        envelope_principal: Optional[str]) -> CallNode:
        try:
            inner = decode_connector_call(payload, self._dynamic_field(discriminant, CALL_DATA_FIELD))
        except DecodeFailure as e:
            decode_failure_counter.labels(stage="connector_call").inc()
            logger.warning(f"UNWRAP: Malformed connector call, falling back to outer envelope: {e}")
            return Single(Operation.unrecognized(self.connector, calldata), envelope_principal)

        return Indirect(
            target=inner.target,
            principal=inner.on_behalf_of,
            inner=Single(self.decoder.decode_calldata(inner.target, inner.data))
        )

    def _dynamic_field(self, discriminant: bytes, default: int) -> int:
        """Word holding the dynamic payload offset, as registered for the discriminant."""
        shape = self.decoder.registry.lookup(discriminant)
        if shape is None or shape.dynamic_field is None:
            return default
        return shape.dynamic_field

    def _decode_batch(self, payload: bytes) -> List[ConnectorCall]:
        return decode_batch_items(
            payload,
            array_field=self._dynamic_field(CONNECTOR_BATCH, BATCH_ARRAY_FIELD),
            item_data_field=self._dynamic_field(CONNECTOR_CALL, CALL_DATA_FIELD)
        )

    def _build_batch(self, calldata: bytes, payload: bytes) -> CallNode:
        try:
            items = self._decode_batch(payload)
        except DecodeFailure as e:
            decode_failure_counter.labels(stage="batch").inc()
            logger.warning(f"UNWRAP: Malformed batch payload, nothing to expand: {e}")
            return Single(Operation.unrecognized(self.connector, calldata))

        return Batch(tuple(self._build_item(item) for item in items))

    def _build_item(self, item: ConnectorCall) -> CallNode:
        if item.target != self.connector:
            return Single(self.decoder.decode_calldata(item.target, item.data), item.on_behalf_of)

        discriminant, payload = split_calldata(item.data)

        if discriminant in CONNECTOR_SINGLE_CALLS:
            return self._build_indirect(discriminant, item.data, payload, item.on_behalf_of)

        if discriminant == CONNECTOR_BATCH:
            try:
                nested = self._decode_batch(payload)
            except DecodeFailure as e:
                decode_failure_counter.labels(stage="batch").inc()
                logger.warning(f"UNWRAP: Malformed nested batch ignored: {e}")
                return Batch()
            # kept shallow: nested items are never expanded by the unwrapper
            return Batch(tuple(
                Single(self.decoder.decode_calldata(n.target, n.data), n.on_behalf_of) for n in nested
            ))

        return Single(Operation.unrecognized(item.target, payload), item.on_behalf_of)

# ============================================
# BATCH UNWRAPPER
# ============================================

class BatchUnwrapper:
    """Flattens a CallNode tree into leaves in pre-order."""

    def __init__(self, oracle):
        self.oracle = oracle

    def unwrap(self, root: CallNode, top_level_principal: str) -> List[Leaf]:
        leaves: List[Leaf] = []
        self._walk(root, top_level_principal, leaves, inside_batch=False)
        logger.info(f"UNWRAP: {len(leaves)} leaf operation(s) for envelope {top_level_principal}")
        return leaves

    def _walk(self, node: CallNode, principal: str, leaves: List[Leaf], inside_batch: bool):
        if isinstance(node, Single):
            effective = node.principal if node.principal is not None else principal
            self._emit(node.operation, effective, node.operation.target, leaves)

        elif isinstance(node, Indirect):
            inner = node.inner
            if isinstance(inner, Single):
                self._emit(inner.operation, node.principal, node.target, leaves)
            else:
                logger.warning(f"UNWRAP: Indirect call to {node.target} wraps a non-single call, not resolved")

        elif isinstance(node, Batch):
            if inside_batch:
                dropped_leaf_counter.labels(reason="nested_batch").inc()
                logger.info(f"UNWRAP: Deferring nested batch of {len(node.items)} item(s)")
                return
            for item in node.items:
                self._walk(item, principal, leaves, inside_batch=True)

        else:
            raise TypeError(f"Unknown call node: {node!r}")

    def _emit(self, operation: Operation, principal: Optional[str], target: str, leaves: List[Leaf]):
        principal = principal or NULL_ADDRESS

        if not operation.is_recognized and is_null(principal):
            dropped_leaf_counter.labels(reason="unrecognized_null_principal").inc()
            return

        if not self._is_resource(target):
            dropped_leaf_counter.labels(reason="non_resource").inc()
            logger.debug(f"UNWRAP: Dropping call to non-resource {target}")
            return

        unwrapped_leaf_counter.labels(kind=operation.kind.value).inc()
        leaves.append(Leaf(operation=operation, principal=principal, target=target))

    def _is_resource(self, target: str) -> bool:
        try:
            return self.oracle.is_resource(target, Snapshot.POST)
        except OracleUnavailable as e:
            logger.warning(f"UNWRAP: Cannot classify {target}, dropping: {e}")
            return False
