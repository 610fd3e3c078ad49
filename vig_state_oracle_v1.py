"""
Vault Invariant Guard (VIG) - State Oracle
Version: 1.0.0

Read-only dual-snapshot view of resource state. The pipeline consumes the
``StateOracle`` interface; ``InMemoryStateOracle`` is a complete implementation
over two frozen state records and is what the HTTP surface and tests run on.

"Does not support this metric" is the INAPPLICABLE value, not an exception.
The only exception an oracle raises is OracleUnavailable, on budget exhaustion.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, FrozenSet, Iterable, Optional, Set, Tuple, Union
from enum import Enum
from abc import ABC, abstractmethod
import threading

from vig_enforcement_v1 import (
    INAPPLICABLE,
    OracleUnavailable,
    Snapshot,
    normalize_address
)

# ============================================
# QUERY TYPES
# ============================================

class MetricKind(Enum):
    TOTAL_ASSETS = "total_assets"      # total managed asset value
    TOTAL_SUPPLY = "total_supply"      # total claim supply
    ASSET_BALANCE = "asset_balance"    # raw underlying balance held by the resource
    CASH = "cash"                      # internal cash accounting
    TOTAL_BORROWS = "total_borrows"    # internal borrow accounting
    SUPPLY_CAP = "supply_cap"
    BORROW_CAP = "borrow_cap"

class HealthStatus(Enum):
    HEALTHY = "healthy"
    UNHEALTHY = "unhealthy"
    UNSUPPORTED = "unsupported"    # no direct health oracle, fall back to liquidity
    INAPPLICABLE = "inapplicable"  # resource does not track this principal
    FAILED = "failed"              # health query explicitly failed

@dataclass(frozen=True)
class EventLogEntry:
    """One log emitted by the executed transaction."""
    emitter: str
    topics: Tuple[bytes, ...] = ()
    data: bytes = b""

    @property
    def topic0(self) -> Optional[bytes]:
        return self.topics[0] if self.topics else None

# ============================================
# ORACLE INTERFACE
# ============================================

class StateOracle(ABC):
    """Immutable pre/post views of one externally executed transaction."""

    def snapshot_pre(self) -> Snapshot:
        return Snapshot.PRE

    def snapshot_post(self) -> Snapshot:
        return Snapshot.POST

    @abstractmethod
    def is_resource(self, address: str, snapshot: Snapshot) -> bool:
        """Whether the address is an executable resource."""
        pass

    @abstractmethod
    def query_resource_metric(self, resource: str, snapshot: Snapshot, metric: MetricKind) -> Union[int, Any]:
        """Integer metric value or INAPPLICABLE."""
        pass

    @abstractmethod
    def query_principal_health(self, resource: str, principal: str, snapshot: Snapshot) -> HealthStatus:
        pass

    @abstractmethod
    def query_account_liquidity(self, resource: str, principal: str,
                                snapshot: Snapshot) -> Union[Tuple[int, int], Any]:
        """(collateral_value, liability_value) or INAPPLICABLE."""
        pass

    @abstractmethod
    def controllers_of(self, principal: str, snapshot: Snapshot) -> FrozenSet[str]:
        pass

    @abstractmethod
    def event_log(self) -> Tuple[EventLogEntry, ...]:
        pass

# ============================================
# IN-MEMORY IMPLEMENTATION
# ============================================

@dataclass
class SnapshotState:
    """Frozen state of every resource at one transaction boundary."""
    resources: Set[str] = field(default_factory=set)
    metrics: Dict[str, Dict[MetricKind, int]] = field(default_factory=dict)
    health: Dict[Tuple[str, str], HealthStatus] = field(default_factory=dict)
    liquidity: Dict[Tuple[str, str], Tuple[int, int]] = field(default_factory=dict)
    controllers: Dict[str, Set[str]] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SnapshotState":
        """Build from a JSON-like fixture.

        Expected keys: ``resources`` (list), ``metrics`` ({resource: {metric: int}}),
        ``health`` ([{resource, principal, status}]), ``liquidity``
        ([{resource, principal, collateral_value, liability_value}]),
        ``controllers`` ({principal: [resource]}).
        """
        state = cls()
        state.resources = {normalize_address(r) for r in data.get('resources', [])}

        for resource, values in data.get('metrics', {}).items():
            state.metrics[normalize_address(resource)] = {
                MetricKind(name): int(amount) for name, amount in values.items()
            }

        for item in data.get('health', []):
            key = (normalize_address(item['resource']), normalize_address(item['principal']))
            state.health[key] = HealthStatus(item['status'])

        for item in data.get('liquidity', []):
            key = (normalize_address(item['resource']), normalize_address(item['principal']))
            state.liquidity[key] = (int(item['collateral_value']), int(item['liability_value']))

        for principal, resources in data.get('controllers', {}).items():
            state.controllers[normalize_address(principal)] = {normalize_address(r) for r in resources}

        return state

class InMemoryStateOracle(StateOracle):
    """Dual-snapshot oracle over two SnapshotState records.

    ``query_budget`` bounds the total number of queries, mimicking a gas-like
    budget; once exhausted every query raises OracleUnavailable.
    """

    def __init__(
        self,
        pre: SnapshotState,
        post: SnapshotState,
        events: Iterable[EventLogEntry] = (),
        query_budget: Optional[int] = None
    ):
        self._states = {Snapshot.PRE: pre, Snapshot.POST: post}
        self._events = tuple(events)
        self._budget = query_budget
        self._lock = threading.Lock()
        self.queries = 0

    @classmethod
    def from_dict(cls, data: Dict[str, Any], query_budget: Optional[int] = None) -> "InMemoryStateOracle":
        events = [
            EventLogEntry(
                emitter=normalize_address(item['emitter']),
                topics=tuple(_topic_bytes(t) for t in item.get('topics', [])),
                data=_topic_bytes(item.get('data', '0x'))
            )
            for item in data.get('events', [])
        ]
        return cls(
            SnapshotState.from_dict(data.get('pre', {})),
            SnapshotState.from_dict(data.get('post', {})),
            events,
            query_budget=query_budget
        )

    def _charge(self):
        with self._lock:
            if self._budget is not None and self.queries >= self._budget:
                raise OracleUnavailable(f"Query budget of {self._budget} exhausted")
            self.queries += 1

    def _state(self, snapshot: Snapshot) -> SnapshotState:
        return self._states[snapshot]

    def is_resource(self, address: str, snapshot: Snapshot) -> bool:
        self._charge()
        return address in self._state(snapshot).resources

    def query_resource_metric(self, resource: str, snapshot: Snapshot, metric: MetricKind):
        self._charge()
        values = self._state(snapshot).metrics.get(resource)
        if values is None or metric not in values:
            return INAPPLICABLE
        return values[metric]

    def query_principal_health(self, resource: str, principal: str, snapshot: Snapshot) -> HealthStatus:
        self._charge()
        state = self._state(snapshot)
        if (resource, principal) in state.health:
            return state.health[(resource, principal)]
        if resource not in state.resources:
            return HealthStatus.INAPPLICABLE
        return HealthStatus.UNSUPPORTED

    def query_account_liquidity(self, resource: str, principal: str, snapshot: Snapshot):
        self._charge()
        state = self._state(snapshot)
        if (resource, principal) in state.liquidity:
            return state.liquidity[(resource, principal)]
        if resource not in state.resources:
            return INAPPLICABLE
        # tracked resource with no position for this principal
        return (0, 0)

    def controllers_of(self, principal: str, snapshot: Snapshot) -> FrozenSet[str]:
        self._charge()
        return frozenset(self._state(snapshot).controllers.get(principal, ()))

    def event_log(self) -> Tuple[EventLogEntry, ...]:
        return self._events

def _topic_bytes(value: Union[str, bytes]) -> bytes:
    if isinstance(value, bytes):
        return value
    text = value[2:] if value[:2].lower() == "0x" else value
    return bytes.fromhex(text)
