"""
Vault Invariant Guard (VIG) - Selector Registry
Version: 1.0.0

Static table mapping a call discriminant (4-byte selector) to its shape:
which 32-byte fields carry principals worth validating and how many fixed
fields precede any dynamic payload.

Field positions are 1-based ABI words, matching the argument order of the
signature. Discriminant values are those of the deployed vault and connector
builds; extra selectors can be registered at runtime.
"""

from dataclasses import dataclass
from typing import Dict, Iterator, Optional, Tuple

from vig_enforcement_v1 import (
    OperationKind,
    PipelineMisconfigured,
    SELECTOR_SIZE,
    WORD_SIZE,
    logger
)

# ============================================
# SHAPES
# ============================================

@dataclass(frozen=True)
class SelectorShape:
    """Decoding shape of one discriminant."""
    name: str
    kind: OperationKind
    fixed_fields: int
    principal_field: Optional[int] = None
    auxiliary_fields: Tuple[int, ...] = ()
    dynamic_field: Optional[int] = None  # field holding the offset of a trailing bytes payload

    @property
    def min_payload_size(self) -> int:
        return self.fixed_fields * WORD_SIZE

    @property
    def is_structural(self) -> bool:
        """Connector-mediated shapes are expanded by the unwrapper, not the decoder."""
        return self.kind in (OperationKind.NESTED_CALL, OperationKind.NESTED_BATCH)

def selector(hex_value: str) -> bytes:
    raw = bytes.fromhex(hex_value[2:] if hex_value.startswith("0x") else hex_value)
    if len(raw) != SELECTOR_SIZE:
        raise PipelineMisconfigured(f"Selector must be {SELECTOR_SIZE} bytes: {hex_value}")
    return raw

# ============================================
# DISCRIMINANTS
# ============================================

# ERC-4626 / ERC-20 surface of the vaults
DEPOSIT = selector("0x6e553f65")         # deposit(uint256,address)
MINT = selector("0x94bf804d")            # mint(uint256,address)
SKIM = selector("0x8d56c639")            # skim(uint256,address)
WITHDRAW = selector("0xb460af94")        # withdraw(uint256,address,address)
REDEEM = selector("0xba087652")          # redeem(uint256,address,address)
TRANSFER_FROM = selector("0x23b872dd")   # transferFrom(address,address,uint256)
TRANSFER = selector("0xa9059cbb")        # transfer(address,uint256)

# borrowing surface
BORROW = selector("0x4b3fd148")          # borrow(uint256,address)
REPAY = selector("0xacb70815")           # repay(uint256,address)
REPAY_WITH_SHARES = selector("0xa9c8eb7e")  # repayWithShares(uint256,address)
PULL_DEBT = selector("0xaebde56b")       # pullDebt(uint256,address)
LIQUIDATE = selector("0xc1342574")       # liquidate(address,address,uint256,uint256)

# connector surface
CONNECTOR_CALL = selector("0x1f8b5215")           # call(address,address,uint256,bytes)
CONNECTOR_CONTROL_COLLATERAL = selector("0xb9b70ff5")  # controlCollateral(address,address,uint256,bytes)
CONNECTOR_BATCH = selector("0xc16ae7a4")          # batch((address,address,uint256,bytes)[])

CONNECTOR_SINGLE_CALLS = frozenset({CONNECTOR_CALL, CONNECTOR_CONTROL_COLLATERAL})
CONNECTOR_TRIGGERS = frozenset({CONNECTOR_CALL, CONNECTOR_CONTROL_COLLATERAL, CONNECTOR_BATCH})

# ============================================
# REGISTRY
# ============================================

class SelectorRegistry:
    """Discriminant -> SelectorShape lookup."""

    def __init__(self, shapes: Optional[Dict[bytes, SelectorShape]] = None):
        self._shapes: Dict[bytes, SelectorShape] = dict(shapes or {})

    def register(self, discriminant: bytes, shape: SelectorShape):
        if len(discriminant) != SELECTOR_SIZE:
            raise PipelineMisconfigured(f"Discriminant must be {SELECTOR_SIZE} bytes")
        for position in (shape.principal_field,) + shape.auxiliary_fields + (shape.dynamic_field,):
            if position is not None and not 1 <= position <= shape.fixed_fields:
                raise PipelineMisconfigured(
                    f"{shape.name}: field {position} outside {shape.fixed_fields} fixed fields"
                )
        previous = self._shapes.get(discriminant)
        if previous is not None and previous != shape:
            logger.warning(f"REGISTRY: Replacing {previous.name} with {shape.name} for 0x{discriminant.hex()}")
        self._shapes[discriminant] = shape

    def lookup(self, discriminant: bytes) -> Optional[SelectorShape]:
        return self._shapes.get(bytes(discriminant))

    def discriminants(self) -> frozenset:
        return frozenset(self._shapes)

    def items(self) -> Iterator[Tuple[bytes, SelectorShape]]:
        return iter(sorted(self._shapes.items()))

    def __contains__(self, discriminant: bytes) -> bool:
        return bytes(discriminant) in self._shapes

    def __len__(self) -> int:
        return len(self._shapes)

    def copy(self) -> "SelectorRegistry":
        return SelectorRegistry(self._shapes)

def default_registry() -> SelectorRegistry:
    registry = SelectorRegistry()

    registry.register(DEPOSIT, SelectorShape("deposit", OperationKind.DEPOSIT, 2, principal_field=2))
    registry.register(MINT, SelectorShape("mint", OperationKind.DEPOSIT, 2, principal_field=2))
    registry.register(SKIM, SelectorShape("skim", OperationKind.DEPOSIT, 2, principal_field=2))
    registry.register(WITHDRAW, SelectorShape("withdraw", OperationKind.WITHDRAW, 3,
                                              principal_field=3, auxiliary_fields=(2,)))
    registry.register(REDEEM, SelectorShape("redeem", OperationKind.WITHDRAW, 3,
                                            principal_field=3, auxiliary_fields=(2,)))
    registry.register(TRANSFER_FROM, SelectorShape("transferFrom", OperationKind.TRANSFER_FROM, 3,
                                                   principal_field=1, auxiliary_fields=(2,)))
    registry.register(TRANSFER, SelectorShape("transfer", OperationKind.TRANSFER_FROM, 2,
                                              auxiliary_fields=(1,)))

    registry.register(BORROW, SelectorShape("borrow", OperationKind.BORROW, 2, principal_field=2))
    registry.register(PULL_DEBT, SelectorShape("pullDebt", OperationKind.BORROW, 2, principal_field=2))
    registry.register(REPAY, SelectorShape("repay", OperationKind.REPAY, 2, principal_field=2))
    registry.register(REPAY_WITH_SHARES, SelectorShape("repayWithShares", OperationKind.REPAY, 2,
                                                       principal_field=2))
    registry.register(LIQUIDATE, SelectorShape("liquidate", OperationKind.LIQUIDATE, 4, principal_field=1))

    registry.register(CONNECTOR_CALL, SelectorShape("call", OperationKind.NESTED_CALL, 4, dynamic_field=4))
    registry.register(CONNECTOR_CONTROL_COLLATERAL, SelectorShape("controlCollateral",
                                                                  OperationKind.NESTED_CALL, 4,
                                                                  dynamic_field=4))
    registry.register(CONNECTOR_BATCH, SelectorShape("batch", OperationKind.NESTED_BATCH, 1, dynamic_field=1))

    return registry

SELECTOR_REGISTRY = default_registry()

def assert_registry_complete(registry: SelectorRegistry = SELECTOR_REGISTRY):
    """Every decodable operation kind must have at least one registered shape."""
    covered = {shape.kind for _, shape in registry.items()}
    missing = [kind for kind in OperationKind
               if kind is not OperationKind.UNRECOGNIZED and kind not in covered]
    if missing:
        raise PipelineMisconfigured(f"No selector registered for: {', '.join(k.value for k in missing)}")
