"""
Vault Invariant Guard (VIG) - Verification Pipeline
Version: 1.0.0

Per rule: call tree -> leaves -> affected set -> per-entry evaluation.
Rules share nothing mutable and read only frozen snapshots, so the
TransactionVerifier runs them on parallel workers and the wall-clock cost is
that of the slowest rule.
"""

from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional
import time

from vig_enforcement_v1 import (
    DecisionLedger,
    Invariant,
    InvariantViolation,
    Outcome,
    Violation,
    normalize_address,
    logger
)
from vig_config_v1 import VerifierConfig
from vig_decoder_v1 import OperationDecoder, split_calldata
from vig_unwrapper_v1 import BatchUnwrapper, CallTreeBuilder
from vig_affected_set_v1 import AffectedSetBuilder
from vig_exception_detector_v1 import ExceptionDetector
from vig_invariants_v1 import default_rules
from vig_metrics import record_outcome, record_verification, rule_duration_histogram

# ============================================
# DATA MODELS
# ============================================

@dataclass(frozen=True)
class TransactionCall:
    """Top-level call envelope of the executed transaction."""
    target: str
    sender: str
    calldata: bytes

    @property
    def discriminant(self) -> bytes:
        return split_calldata(self.calldata)[0]

@dataclass
class RuleReport:
    """Outcomes of one rule over one transaction."""
    rule_id: str
    triggered: bool
    outcomes: List[Outcome] = field(default_factory=list)
    duration_seconds: float = 0.0

    @property
    def violations(self) -> List[Violation]:
        return [o.violation for o in self.outcomes if o.violation is not None]

    @property
    def passed(self) -> bool:
        return not self.violations

    def to_dict(self) -> Dict[str, Any]:
        return {
            'rule_id': self.rule_id,
            'triggered': self.triggered,
            'passed': self.passed,
            'duration_seconds': self.duration_seconds,
            'outcomes': [o.to_dict() for o in self.outcomes]
        }

@dataclass
class VerificationReport:
    """Aggregate of every rule report for one transaction."""
    reports: List[RuleReport] = field(default_factory=list)

    @property
    def violations(self) -> List[Violation]:
        return [v for report in self.reports for v in report.violations]

    @property
    def passed(self) -> bool:
        return all(report.passed for report in self.reports)

    def report_for(self, rule_id: str) -> Optional[RuleReport]:
        for report in self.reports:
            if report.rule_id == rule_id:
                return report
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'passed': self.passed,
            'violations': [v.to_dict() for v in self.violations],
            'rules': [r.to_dict() for r in self.reports]
        }

# ============================================
# RULE PIPELINE
# ============================================

class RulePipeline:
    """Runs one rule end to end against one transaction."""

    def __init__(
        self,
        rule: Invariant,
        oracle,
        config: Optional[VerifierConfig] = None,
        decoder: Optional[OperationDecoder] = None,
        detector: Optional[ExceptionDetector] = None,
        ledger: Optional[DecisionLedger] = None
    ):
        self.rule = rule
        self.oracle = oracle
        self.config = config or VerifierConfig()
        self.builder = CallTreeBuilder(self.config.connector, decoder)
        self.unwrapper = BatchUnwrapper(oracle)
        self.affected_builder = AffectedSetBuilder(oracle, expand_controllers=self.config.expand_controllers)
        self.detector = detector or ExceptionDetector(self.config.topic_overrides())
        self.ledger = ledger

    def run(self, call: TransactionCall) -> RuleReport:
        started = time.perf_counter()

        if not self.rule.is_triggered_by(call.discriminant):
            logger.debug(f"PIPELINE {self.rule.id}: not triggered by 0x{call.discriminant.hex()}")
            return RuleReport(rule_id=self.rule.id, triggered=False)

        root = self.builder.build(call.target, call.calldata)
        leaves = self.unwrapper.unwrap(root, call.sender)
        affected = self.affected_builder.build(leaves)
        entries = self.rule.select_entries(affected, leaves)

        pre = self.oracle.snapshot_pre()
        post = self.oracle.snapshot_post()
        log = self.oracle.event_log()

        report = RuleReport(rule_id=self.rule.id, triggered=True)
        # entries are independent; every one is evaluated even after a violation
        for entry in entries:
            outcome = self.rule.evaluate(entry, pre, post, self.oracle, self.detector, log)
            report.outcomes.append(outcome)
            record_outcome(self.rule.id, self.rule.criticality.value, outcome)
            if self.ledger is not None:
                self.ledger.record(outcome)

        report.duration_seconds = time.perf_counter() - started
        rule_duration_histogram.labels(invariant_id=self.rule.id).observe(report.duration_seconds)
        logger.info(
            f"PIPELINE {self.rule.id}: {len(entries)} entr(ies), {len(report.violations)} violation(s) "
            f"in {report.duration_seconds:.4f}s"
        )
        return report

# ============================================
# TRANSACTION VERIFIER
# ============================================

class TransactionVerifier:
    """Runs every rule pipeline for one transaction concurrently."""

    def __init__(
        self,
        oracle,
        rules: Optional[List[Invariant]] = None,
        config: Optional[VerifierConfig] = None,
        decoder: Optional[OperationDecoder] = None
    ):
        self.oracle = oracle
        self.config = config or VerifierConfig()
        self.rules = rules if rules is not None else default_rules(self.config)
        self.decoder = decoder or OperationDecoder()
        self.detector = ExceptionDetector(self.config.topic_overrides())
        self.ledger = DecisionLedger()

    def _pipeline(self, rule: Invariant) -> RulePipeline:
        return RulePipeline(rule, self.oracle, self.config, self.decoder, self.detector, self.ledger)

    def verify(self, call: TransactionCall) -> VerificationReport:
        call = TransactionCall(
            target=normalize_address(call.target),
            sender=normalize_address(call.sender),
            calldata=bytes(call.calldata)
        )
        logger.info(f"VERIFY: {len(self.rules)} rule(s) for call to {call.target} from {call.sender}")

        workers = min(self.config.max_workers, max(len(self.rules), 1))
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="vig-rule") as pool:
            futures = [pool.submit(self._pipeline(rule).run, call) for rule in self.rules]
            report = VerificationReport(reports=[f.result() for f in futures])

        record_verification(len(report.violations))
        if report.passed:
            logger.info("VERIFY: All invariant checks PASSED")
        else:
            logger.error(f"VERIFY: {len(report.violations)} violation(s) detected")
        return report

    def enforce(self, call: TransactionCall) -> VerificationReport:
        """Verify and raise InvariantViolation carrying every violation found."""
        report = self.verify(call)
        if not report.passed:
            raise InvariantViolation(report.violations)
        return report
