"""
Vault Invariant Guard (VIG) - Core Enforcement Layer
Version: 1.0.0

Shared data model, error taxonomy and the per-entry evaluation state machine
used by every transaction invariant rule.

Evaluation of one affected entry walks:

    START -> PRE_QUERIED -> POST_QUERIED -> PASS
                                         -> EXCEPTION_CHECKED -> PASS | VIOLATE

Applicability failures and oracle exhaustion leave the machine early in
SKIPPED, which never counts as a violation.
"""

from dataclasses import dataclass
from typing import Any, Dict, FrozenSet, Iterable, List, Optional, Tuple
from enum import Enum
from abc import ABC, abstractmethod
import logging
import threading

from Crypto.Hash import keccak

# ============================================
# SYSTEM CONFIGURATION
# ============================================

WAD = 10 ** 18
BPS_DENOMINATOR = 10_000
WORD_SIZE = 32
SELECTOR_SIZE = 4
ADDRESS_SIZE = 20
NULL_ADDRESS = "0x" + "00" * ADDRESS_SIZE
LEGITIMATE_EXCEPTION = "legitimate exception present"

class InvariantType(Enum):
    MONOTONIC_HEALTH = "monotonic_health"
    BOUNDED_DELTA = "bounded_delta"
    ABSOLUTE_BOUND = "absolute_bound"

class Criticality(Enum):
    CRITICAL = "critical"
    IMPORTANT = "important"

class OperationKind(Enum):
    DEPOSIT = "deposit"
    WITHDRAW = "withdraw"
    BORROW = "borrow"
    REPAY = "repay"
    TRANSFER_FROM = "transfer_from"
    LIQUIDATE = "liquidate"
    NESTED_CALL = "nested_call"
    NESTED_BATCH = "nested_batch"
    UNRECOGNIZED = "unrecognized"

class Snapshot(Enum):
    """Capability token naming one of the two frozen transaction states."""
    PRE = "pre"
    POST = "post"

class Verdict(Enum):
    PASS = "pass"
    VIOLATE = "violate"
    SKIP = "skip"

class EvaluationState(Enum):
    START = "start"
    PRE_QUERIED = "pre_queried"
    POST_QUERIED = "post_queried"
    EXCEPTION_CHECKED = "exception_checked"
    PASS = "pass"
    VIOLATE = "violate"
    SKIPPED = "skipped"

class Judgement(Enum):
    HOLDS = "holds"
    BREACH = "breach"
    EXCEPTABLE_BREACH = "exceptable_breach"

class _Inapplicable:
    """Sentinel returned by oracle queries the target cannot answer."""

    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "INAPPLICABLE"

    def __bool__(self) -> bool:
        return False

INAPPLICABLE = _Inapplicable()

# ============================================
# LOGGING SETUP
# ============================================

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s [%(levelname)s] %(name)s: %(message)s'
)
logger = logging.getLogger("VIG.Enforcement")

# ============================================
# EXCEPTIONS
# ============================================

class InvariantViolation(Exception):
    """Raised when a transaction breaks one or more invariants."""

    def __init__(self, violations: List["Violation"]):
        self.violations = list(violations)
        summary = "; ".join(v.reason for v in self.violations)
        super().__init__(f"{len(self.violations)} invariant violation(s): {summary}")

class DecodeFailure(Exception):
    """Raised internally on a malformed payload; always absorbed by the caller."""
    pass

class OracleUnavailable(Exception):
    """Raised by a State Oracle when a bounded resource is exhausted mid-query."""
    pass

class PipelineMisconfigured(Exception):
    """Raised when a rule set or configuration cannot be assembled."""
    pass

# ============================================
# IDENTIFIERS
# ============================================

def keccak256(text: str) -> bytes:
    """Keccak-256 digest of an ABI signature string."""
    digest = keccak.new(digest_bits=256)
    digest.update(text.encode("ascii"))
    return digest.digest()

def normalize_address(value: Any) -> str:
    """Canonical lower-case 0x form of a 20-byte identifier."""
    if isinstance(value, (bytes, bytearray)):
        if len(value) != ADDRESS_SIZE:
            raise ValueError(f"Address must be {ADDRESS_SIZE} bytes, got {len(value)}")
        return "0x" + bytes(value).hex()

    text = str(value).strip().lower()
    if text.startswith("0x"):
        text = text[2:]
    if len(text) != ADDRESS_SIZE * 2:
        raise ValueError(f"Address must be {ADDRESS_SIZE * 2} hex characters: {value!r}")
    int(text, 16)
    return "0x" + text

def is_null(address: Optional[str]) -> bool:
    return address is None or address == NULL_ADDRESS

# ============================================
# DATA MODEL
# ============================================

@dataclass(frozen=True)
class Operation:
    """One decoded leaf call against a resource."""
    kind: OperationKind
    target: str
    principal: Optional[str] = None
    auxiliary_principals: Tuple[str, ...] = ()
    raw_payload: bytes = b""

    @classmethod
    def build(
        cls,
        kind: OperationKind,
        target: str,
        principal: Optional[str] = None,
        auxiliary_principals: Iterable[Optional[str]] = (),
        raw_payload: bytes = b""
    ) -> "Operation":
        """Construct an operation, dropping null principal references."""
        aux = tuple(p for p in auxiliary_principals if not is_null(p))
        return cls(
            kind=kind,
            target=target,
            principal=None if is_null(principal) else principal,
            auxiliary_principals=aux,
            raw_payload=bytes(raw_payload)
        )

    @classmethod
    def unrecognized(cls, target: str, raw_payload: bytes = b"") -> "Operation":
        return cls(kind=OperationKind.UNRECOGNIZED, target=target, raw_payload=bytes(raw_payload))

    @property
    def is_recognized(self) -> bool:
        return self.kind is not OperationKind.UNRECOGNIZED

    def extracted_principals(self) -> Tuple[str, ...]:
        head = (self.principal,) if self.principal else ()
        return head + self.auxiliary_principals

@dataclass(frozen=True, order=True)
class AffectedEntry:
    """A (resource, principal) pair; principal is None for resource-only entries."""
    resource: str
    principal: Optional[str] = None

    def describe(self) -> str:
        if self.principal is None:
            return f"resource={self.resource}"
        return f"resource={self.resource} principal={self.principal}"

@dataclass(frozen=True)
class Violation:
    """Terminal record of a broken invariant."""
    rule_name: str
    resource: str
    principal: Optional[str]
    reason: str
    pre_value: Any = None
    post_value: Any = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'rule_name': self.rule_name,
            'resource': self.resource,
            'principal': self.principal,
            'reason': self.reason,
            'pre_value': _render_value(self.pre_value),
            'post_value': _render_value(self.post_value)
        }

@dataclass(frozen=True)
class Outcome:
    """Result of evaluating one rule against one affected entry."""
    rule_id: str
    entry: AffectedEntry
    verdict: Verdict
    state: EvaluationState
    violation: Optional[Violation] = None
    pre_value: Any = None
    post_value: Any = None
    detail: str = ""

    @property
    def passed(self) -> bool:
        return self.verdict is not Verdict.VIOLATE

    def to_dict(self) -> Dict[str, Any]:
        return {
            'rule_id': self.rule_id,
            'resource': self.entry.resource,
            'principal': self.entry.principal,
            'verdict': self.verdict.value,
            'state': self.state.value,
            'pre_value': _render_value(self.pre_value),
            'post_value': _render_value(self.post_value),
            'detail': self.detail,
            'violation': self.violation.to_dict() if self.violation else None
        }

def _render_value(value: Any) -> Any:
    if value is INAPPLICABLE:
        return None
    if isinstance(value, tuple):
        return [_render_value(v) for v in value]
    if isinstance(value, int) and not isinstance(value, bool):
        # keep 256-bit quantities exact across JSON
        return str(value)
    return value

# ============================================
# DECISION LEDGER
# ============================================

class DecisionLedger:
    """Append-only record of every outcome produced while verifying one transaction."""

    def __init__(self):
        self.entries: List[Outcome] = []
        self._lock = threading.Lock()

    def record(self, outcome: Outcome):
        """Append outcome to ledger (write-only)."""
        with self._lock:
            self.entries.append(outcome)
        logger.debug(f"LEDGER: Recorded {outcome.verdict.value} for {outcome.rule_id} {outcome.entry.describe()}")

    def violations(self) -> List[Violation]:
        with self._lock:
            return [o.violation for o in self.entries if o.violation is not None]

    def counts(self) -> Dict[str, int]:
        with self._lock:
            counts = {verdict.value: 0 for verdict in Verdict}
            for outcome in self.entries:
                counts[outcome.verdict.value] += 1
            return counts

# ============================================
# BASE INVARIANT CLASS
# ============================================

class Invariant(ABC):
    """Base class for all transaction invariants.

    Subclasses supply ``measure`` (the rule-specific predicate or metric at one
    snapshot) and ``judge`` (the comparison between the two measurements). The
    shared ``evaluate`` drives the state machine, absorbs applicability and
    oracle failures, and consults the exception detector on exceptable breaches.
    """

    # principal-scoped rules evaluate (resource, principal) pairs, the rest
    # evaluate resource-only entries
    PRINCIPAL_SCOPED = False

    def __init__(
        self,
        id: str,
        statement: str,
        type: InvariantType,
        criticality: Criticality,
        exception_signatures: Iterable[Any] = (),
        triggers: Optional[FrozenSet[bytes]] = None
    ):
        self.id = id
        self.statement = statement
        self.type = type
        self.criticality = criticality
        self.exception_signatures = tuple(exception_signatures)
        self.triggers = triggers

    def is_triggered_by(self, discriminant: bytes) -> bool:
        """Whether a top-level call with this discriminant runs the rule."""
        if self.triggers is None:
            return True
        return bytes(discriminant) in self.triggers

    def select_entries(self, affected, leaves) -> List[AffectedEntry]:
        """Worklist for this rule, in deterministic order."""
        if self.PRINCIPAL_SCOPED:
            return affected.sorted_entries()
        return affected.resource_entries()

    @abstractmethod
    def measure(self, entry: AffectedEntry, snapshot: Snapshot, oracle) -> Any:
        """Rule-specific value at one snapshot, or INAPPLICABLE."""
        pass

    @abstractmethod
    def judge(self, entry: AffectedEntry, pre_value: Any, post_value: Any) -> Judgement:
        """Compare the two measurements."""
        pass

    def describe_breach(self, entry: AffectedEntry, pre_value: Any, post_value: Any) -> str:
        return f"{self.id}: {entry.describe()} pre={pre_value} post={post_value}"

    def evaluate(self, entry: AffectedEntry, pre: Snapshot, post: Snapshot,
                 oracle, detector, log) -> Outcome:
        """Run the evaluation state machine for one entry."""
        state = EvaluationState.START

        try:
            pre_value = self.measure(entry, pre, oracle)
        except OracleUnavailable as e:
            logger.warning(f"PRE-CHECK {self.id}: {entry.describe()} oracle unavailable, skipping: {e}")
            return self._skip(entry, "oracle unavailable at pre")

        if pre_value is INAPPLICABLE:
            logger.info(f"PRE-CHECK {self.id}: {entry.describe()} inapplicable")
            return self._skip(entry, "inapplicable at pre")
        state = EvaluationState.PRE_QUERIED
        logger.info(f"PRE-CHECK {self.id}: {entry.describe()} value={pre_value}")

        try:
            post_value = self.measure(entry, post, oracle)
        except OracleUnavailable as e:
            logger.warning(f"POST-CHECK {self.id}: {entry.describe()} oracle unavailable, skipping: {e}")
            return self._skip(entry, "oracle unavailable at post", pre_value=pre_value)

        if post_value is INAPPLICABLE:
            logger.info(f"POST-CHECK {self.id}: {entry.describe()} inapplicable")
            return self._skip(entry, "inapplicable at post", pre_value=pre_value)
        state = EvaluationState.POST_QUERIED
        logger.info(f"POST-CHECK {self.id}: {entry.describe()} value={post_value}")

        return self._conclude(entry, state, pre_value, post_value, detector, log)

    def _conclude(self, entry: AffectedEntry, state: EvaluationState, pre_value: Any,
                  post_value: Any, detector, log) -> Outcome:
        judgement = self.judge(entry, pre_value, post_value)

        if judgement is Judgement.HOLDS:
            return Outcome(self.id, entry, Verdict.PASS, EvaluationState.PASS,
                           pre_value=pre_value, post_value=post_value)

        if judgement is Judgement.EXCEPTABLE_BREACH:
            state = EvaluationState.EXCEPTION_CHECKED
            if detector is not None and detector.has_exception(entry.resource, log, self.exception_signatures):
                logger.info(f"EXCEPTION {self.id}: {entry.describe()} legitimized by event log")
                return Outcome(self.id, entry, Verdict.PASS, EvaluationState.PASS,
                               pre_value=pre_value, post_value=post_value,
                               detail=LEGITIMATE_EXCEPTION)

        reason = self.describe_breach(entry, pre_value, post_value)
        violation = Violation(
            rule_name=self.id,
            resource=entry.resource,
            principal=entry.principal,
            reason=reason,
            pre_value=pre_value,
            post_value=post_value
        )
        logger.error(f"VIOLATION {reason}")
        return Outcome(self.id, entry, Verdict.VIOLATE, EvaluationState.VIOLATE,
                       violation=violation, pre_value=pre_value, post_value=post_value,
                       detail=f"after {state.value}")

    def _skip(self, entry: AffectedEntry, detail: str, pre_value: Any = None) -> Outcome:
        return Outcome(self.id, entry, Verdict.SKIP, EvaluationState.SKIPPED,
                       pre_value=pre_value, detail=detail)

# ============================================
# INVARIANT FAMILIES
# ============================================

class MonotonicHealthInvariant(Invariant):
    """Good-to-bad transitions are breaches; already-bad entries are never ratcheted.

    ``measure`` returns True for the good region, False for the bad region.
    """

    def judge(self, entry: AffectedEntry, pre_value: Any, post_value: Any) -> Judgement:
        if not pre_value:
            return Judgement.HOLDS
        if post_value:
            return Judgement.HOLDS
        return Judgement.EXCEPTABLE_BREACH

    def describe_breach(self, entry: AffectedEntry, pre_value: Any, post_value: Any) -> str:
        return f"{self.id}: {entry.describe()} went from good (pre={pre_value}) to bad (post={post_value})"

class BoundedDeltaInvariant(Invariant):
    """Change of an integer metric must stay within a fixed threshold.

    In relative mode the change is measured in basis points of the pre value,
    truncating. In absolute mode the raw delta is compared to ``tolerance``.
    Increases beyond the bound are unconditional breaches unless
    ``EXCEPTABLE_INCREASE`` is set; decreases can be legitimized by an event.
    """

    RELATIVE = "relative"
    ABSOLUTE = "absolute"

    EXCEPTABLE_INCREASE = False
    EXCEPTABLE_DECREASE = True

    def __init__(self, *args, mode: str = RELATIVE, threshold_bps: int = 0,
                 tolerance: int = 0, **kwargs):
        super().__init__(*args, **kwargs)
        if mode not in (self.RELATIVE, self.ABSOLUTE):
            raise PipelineMisconfigured(f"Unknown delta mode: {mode}")
        self.mode = mode
        self.threshold_bps = threshold_bps
        self.tolerance = tolerance

    def change_bps(self, pre_value: int, post_value: int) -> int:
        return abs(post_value - pre_value) * BPS_DENOMINATOR // pre_value

    def within_bound(self, pre_value: int, post_value: int) -> bool:
        if self.mode == self.ABSOLUTE:
            return abs(post_value - pre_value) <= self.tolerance
        if pre_value == 0:
            # no baseline to measure a relative move against
            return True
        return self.change_bps(pre_value, post_value) <= self.threshold_bps

    def judge(self, entry: AffectedEntry, pre_value: Any, post_value: Any) -> Judgement:
        if self.within_bound(pre_value, post_value):
            return Judgement.HOLDS
        exceptable = self.EXCEPTABLE_INCREASE if post_value > pre_value else self.EXCEPTABLE_DECREASE
        return Judgement.EXCEPTABLE_BREACH if exceptable else Judgement.BREACH

    def describe_breach(self, entry: AffectedEntry, pre_value: Any, post_value: Any) -> str:
        direction = "increase" if post_value > pre_value else "decrease"
        if self.mode == self.ABSOLUTE:
            return (f"{self.id}: {entry.describe()} {direction} of {abs(post_value - pre_value)} "
                    f"exceeds tolerance {self.tolerance} (pre={pre_value}, post={post_value})")
        return (f"{self.id}: {entry.describe()} {direction} of {self.change_bps(pre_value, post_value)} bps "
                f"exceeds {self.threshold_bps} bps (pre={pre_value}, post={post_value})")

class AbsoluteBoundInvariant(Invariant):
    """Inequality evaluated at the post snapshot only; no exception path."""

    @abstractmethod
    def holds(self, post_value: Any) -> bool:
        pass

    def judge(self, entry: AffectedEntry, pre_value: Any, post_value: Any) -> Judgement:
        return Judgement.HOLDS if self.holds(post_value) else Judgement.BREACH

    def evaluate(self, entry: AffectedEntry, pre: Snapshot, post: Snapshot,
                 oracle, detector, log) -> Outcome:
        try:
            post_value = self.measure(entry, post, oracle)
        except OracleUnavailable as e:
            logger.warning(f"POST-CHECK {self.id}: {entry.describe()} oracle unavailable, skipping: {e}")
            return self._skip(entry, "oracle unavailable at post")

        if post_value is INAPPLICABLE:
            logger.info(f"POST-CHECK {self.id}: {entry.describe()} inapplicable")
            return self._skip(entry, "inapplicable at post")
        logger.info(f"POST-CHECK {self.id}: {entry.describe()} value={post_value}")

        return self._conclude(entry, EvaluationState.POST_QUERIED, None, post_value, detector, log)
