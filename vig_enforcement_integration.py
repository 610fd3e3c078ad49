"""
Vault Invariant Guard - Enforcement Layer Integration
Re-exports verification components for API usage
"""

# Core enforcement
from vig_enforcement_v1 import (
    Invariant,
    InvariantType,
    Criticality,
    MonotonicHealthInvariant,
    BoundedDeltaInvariant,
    AbsoluteBoundInvariant,
    DecisionLedger,
    OperationKind,
    Operation,
    AffectedEntry,
    Violation,
    Outcome,
    Verdict,
    EvaluationState,
    Snapshot,
    INAPPLICABLE,
    NULL_ADDRESS,

    # Exceptions
    InvariantViolation,
    DecodeFailure,
    OracleUnavailable,
    PipelineMisconfigured,

    # Logging
    logger
)

# Decoding and unwrapping
from vig_selectors_v1 import SELECTOR_REGISTRY, SelectorRegistry, SelectorShape
from vig_decoder_v1 import OperationDecoder, hex_to_bytes
from vig_unwrapper_v1 import Batch, BatchUnwrapper, CallTreeBuilder, Indirect, Leaf, Single
from vig_affected_set_v1 import AffectedSet, AffectedSetBuilder

# State and exceptions
from vig_state_oracle_v1 import (
    EventLogEntry,
    HealthStatus,
    InMemoryStateOracle,
    MetricKind,
    SnapshotState,
    StateOracle
)
from vig_exception_detector_v1 import (
    DEBT_SOCIALIZED,
    EXCESS_ASSETS_SKIMMED,
    INTEREST_ACCRUED,
    EventSignature,
    ExceptionDetector
)

# All invariants (6 total)
from vig_invariants_v1 import (
    AccountSolvency,
    ResourceAccountingIntegrity,
    ExchangeRateStability,
    StatusCheckOffloading,
    AssetTransferAccounting,
    CashBackedByBalance,
    RULE_CATALOG,
    default_rules
)

# Pipeline
from vig_config_v1 import VerifierConfig
from vig_pipeline_v1 import (
    RulePipeline,
    RuleReport,
    TransactionCall,
    TransactionVerifier,
    VerificationReport
)

__all__ = [
    # Core classes
    'Invariant',
    'InvariantType',
    'Criticality',
    'MonotonicHealthInvariant',
    'BoundedDeltaInvariant',
    'AbsoluteBoundInvariant',
    'DecisionLedger',
    'OperationKind',
    'Operation',
    'AffectedEntry',
    'Violation',
    'Outcome',
    'Verdict',
    'EvaluationState',
    'Snapshot',
    'INAPPLICABLE',
    'NULL_ADDRESS',

    # Exceptions
    'InvariantViolation',
    'DecodeFailure',
    'OracleUnavailable',
    'PipelineMisconfigured',

    # Decoding and unwrapping
    'SELECTOR_REGISTRY',
    'SelectorRegistry',
    'SelectorShape',
    'OperationDecoder',
    'hex_to_bytes',
    'Single',
    'Batch',
    'Indirect',
    'Leaf',
    'CallTreeBuilder',
    'BatchUnwrapper',
    'AffectedSet',
    'AffectedSetBuilder',

    # State and exceptions
    'StateOracle',
    'InMemoryStateOracle',
    'SnapshotState',
    'EventLogEntry',
    'HealthStatus',
    'MetricKind',
    'EventSignature',
    'ExceptionDetector',
    'DEBT_SOCIALIZED',
    'INTEREST_ACCRUED',
    'EXCESS_ASSETS_SKIMMED',

    # Invariants
    'AccountSolvency',
    'ResourceAccountingIntegrity',
    'ExchangeRateStability',
    'StatusCheckOffloading',
    'AssetTransferAccounting',
    'CashBackedByBalance',
    'RULE_CATALOG',
    'default_rules',

    # Pipeline
    'VerifierConfig',
    'RulePipeline',
    'RuleReport',
    'TransactionCall',
    'TransactionVerifier',
    'VerificationReport',

    # Logging
    'logger'
]
