"""
Vault Invariant Guard (VIG) - Transaction Invariants
Version: 1.0.0

Concrete rules evaluated over the affected set of every verified transaction:

- INV-001 account solvency            (monotonic health, per principal)
- INV-002 resource accounting         (bounded delta, absolute)
- INV-003 exchange rate stability     (bounded delta, relative)
- INV-004 status-check offloading     (monotonic health, per resource)
- INV-005 asset-transfer accounting   (bounded delta, absolute)
- INV-006 cash backed by balance      (absolute bound)
"""

from typing import Any, Dict, List, Optional, Type

from vig_enforcement_v1 import (
    AbsoluteBoundInvariant,
    AffectedEntry,
    BoundedDeltaInvariant,
    Criticality,
    INAPPLICABLE,
    Invariant,
    InvariantType,
    MonotonicHealthInvariant,
    OperationKind,
    PipelineMisconfigured,
    Snapshot,
    WAD,
    logger
)
from vig_state_oracle_v1 import HealthStatus, MetricKind
from vig_selectors_v1 import CONNECTOR_TRIGGERS
from vig_exception_detector_v1 import (
    DEBT_SOCIALIZED,
    EXCESS_ASSETS_SKIMMED,
    INTEREST_ACCRUED
)

DEFAULT_RATE_THRESHOLD_BPS = 500

# ============================================
# HEALTH POLICY
# ============================================

def zero_position_is_healthy() -> bool:
    """Policy for a principal with zero collateral and zero liability."""
    return True

def health_from_liquidity(collateral_value: int, liability_value: int) -> HealthStatus:
    if collateral_value == 0 and liability_value == 0:
        return HealthStatus.HEALTHY if zero_position_is_healthy() else HealthStatus.INAPPLICABLE
    if liability_value == 0 or collateral_value > liability_value:
        return HealthStatus.HEALTHY
    return HealthStatus.UNHEALTHY

def resolve_health(oracle, resource: str, principal: str, snapshot: Snapshot) -> HealthStatus:
    """HEALTHY, UNHEALTHY or INAPPLICABLE for one principal as seen by one resource."""
    status = oracle.query_principal_health(resource, principal, snapshot)

    if status is HealthStatus.FAILED:
        # a resource that cannot prove health is treated as unhealthy
        logger.warning(f"HEALTH: Query failed for {principal} on {resource} at {snapshot.value}")
        return HealthStatus.UNHEALTHY

    if status is not HealthStatus.UNSUPPORTED:
        return status

    liquidity = oracle.query_account_liquidity(resource, principal, snapshot)
    if liquidity is INAPPLICABLE:
        return HealthStatus.INAPPLICABLE
    collateral_value, liability_value = liquidity
    return health_from_liquidity(collateral_value, liability_value)

# ============================================
# PER-PRINCIPAL INVARIANTS
# ============================================

class AccountSolvency(MonotonicHealthInvariant):
    """INV-001: A healthy principal must not become unhealthy."""

    PRINCIPAL_SCOPED = True

    def __init__(self):
        super().__init__(
            id="inv_001_account_solvency",
            statement="It is FORBIDDEN for a transaction to leave a previously healthy principal unhealthy",
            type=InvariantType.MONOTONIC_HEALTH,
            criticality=Criticality.CRITICAL,
            exception_signatures=(DEBT_SOCIALIZED,)
        )

    def measure(self, entry: AffectedEntry, snapshot: Snapshot, oracle) -> Any:
        status = resolve_health(oracle, entry.resource, entry.principal, snapshot)
        if status is HealthStatus.INAPPLICABLE:
            return INAPPLICABLE
        return status is HealthStatus.HEALTHY

# ============================================
# PER-RESOURCE INVARIANTS
# ============================================

class ResourceAccountingIntegrity(BoundedDeltaInvariant):
    """INV-002: Movement of the held asset balance must match movement of internal cash."""

    # a skim only turns excess balance into cash
    EXCEPTABLE_INCREASE = False
    EXCEPTABLE_DECREASE = True

    def __init__(self, tolerance: int = 0):
        super().__init__(
            id="inv_002_resource_accounting",
            statement="The system MUST always move internal cash accounting in step with the held asset balance",
            type=InvariantType.BOUNDED_DELTA,
            criticality=Criticality.CRITICAL,
            exception_signatures=(EXCESS_ASSETS_SKIMMED,),
            mode=BoundedDeltaInvariant.ABSOLUTE,
            tolerance=tolerance
        )

    def measure(self, entry: AffectedEntry, snapshot: Snapshot, oracle) -> Any:
        balance = oracle.query_resource_metric(entry.resource, snapshot, MetricKind.ASSET_BALANCE)
        cash = oracle.query_resource_metric(entry.resource, snapshot, MetricKind.CASH)
        if balance is INAPPLICABLE or cash is INAPPLICABLE:
            return INAPPLICABLE
        # excess held over what the ledger accounts for
        return balance - cash

class ExchangeRateStability(BoundedDeltaInvariant):
    """INV-003: Asset-per-claim exchange rate must not spike within one transaction."""

    def __init__(self, threshold_bps: int = DEFAULT_RATE_THRESHOLD_BPS):
        super().__init__(
            id="inv_003_exchange_rate_stability",
            statement="It is FORBIDDEN for the exchange rate to move more than the threshold in one transaction",
            type=InvariantType.BOUNDED_DELTA,
            criticality=Criticality.CRITICAL,
            exception_signatures=(DEBT_SOCIALIZED, INTEREST_ACCRUED),
            mode=BoundedDeltaInvariant.RELATIVE,
            threshold_bps=threshold_bps
        )

    def measure(self, entry: AffectedEntry, snapshot: Snapshot, oracle) -> Any:
        assets = oracle.query_resource_metric(entry.resource, snapshot, MetricKind.TOTAL_ASSETS)
        supply = oracle.query_resource_metric(entry.resource, snapshot, MetricKind.TOTAL_SUPPLY)
        if assets is INAPPLICABLE or supply is INAPPLICABLE or supply == 0:
            return INAPPLICABLE
        return assets * WAD // supply

class StatusCheckOffloading(MonotonicHealthInvariant):
    """INV-004: Deferred resource status checks must still hold once the batch settles."""

    def __init__(self):
        super().__init__(
            id="inv_004_status_check_offloading",
            statement="It is FORBIDDEN for a deferred status check to leave a resource above its caps",
            type=InvariantType.MONOTONIC_HEALTH,
            criticality=Criticality.IMPORTANT,
            triggers=CONNECTOR_TRIGGERS
        )

    def measure(self, entry: AffectedEntry, snapshot: Snapshot, oracle) -> Any:
        checked = False
        within = True
        for metric, cap_metric in ((MetricKind.TOTAL_ASSETS, MetricKind.SUPPLY_CAP),
                                   (MetricKind.TOTAL_BORROWS, MetricKind.BORROW_CAP)):
            cap = oracle.query_resource_metric(entry.resource, snapshot, cap_metric)
            if cap is INAPPLICABLE:
                continue
            value = oracle.query_resource_metric(entry.resource, snapshot, metric)
            if value is INAPPLICABLE:
                continue
            checked = True
            within = within and value <= cap
        return within if checked else INAPPLICABLE

    def describe_breach(self, entry: AffectedEntry, pre_value: Any, post_value: Any) -> str:
        return f"{self.id}: {entry.describe()} exceeds its supply or borrow cap after deferred status check"

# which operation kinds leave the claim supply of their target untouched
PRESERVES_CLAIM_SUPPLY: Dict[OperationKind, bool] = {
    OperationKind.DEPOSIT: False,
    OperationKind.WITHDRAW: False,
    OperationKind.BORROW: True,
    OperationKind.REPAY: False,
    OperationKind.TRANSFER_FROM: True,
    OperationKind.LIQUIDATE: False,
    OperationKind.NESTED_CALL: False,
    OperationKind.NESTED_BATCH: False,
    OperationKind.UNRECOGNIZED: False,
}

_unmapped = set(OperationKind) - set(PRESERVES_CLAIM_SUPPLY)
if _unmapped:
    raise PipelineMisconfigured(f"Claim supply effect undefined for: {sorted(k.value for k in _unmapped)}")

class AssetTransferAccounting(BoundedDeltaInvariant):
    """INV-005: Claim supply of a resource touched only by transfers must not change."""

    EXCEPTABLE_INCREASE = True
    EXCEPTABLE_DECREASE = False

    def __init__(self):
        super().__init__(
            id="inv_005_asset_transfer_accounting",
            statement="It is FORBIDDEN for transfers alone to mint or burn claims",
            type=InvariantType.BOUNDED_DELTA,
            criticality=Criticality.CRITICAL,
            exception_signatures=(INTEREST_ACCRUED,),
            mode=BoundedDeltaInvariant.ABSOLUTE,
            tolerance=0
        )

    def select_entries(self, affected, leaves) -> List[AffectedEntry]:
        by_target: Dict[str, bool] = {}
        for leaf in leaves:
            preserves = PRESERVES_CLAIM_SUPPLY[leaf.operation.kind]
            by_target[leaf.target] = by_target.get(leaf.target, True) and preserves
        return [AffectedEntry(resource) for resource in sorted(by_target) if by_target[resource]]

    def measure(self, entry: AffectedEntry, snapshot: Snapshot, oracle) -> Any:
        return oracle.query_resource_metric(entry.resource, snapshot, MetricKind.TOTAL_SUPPLY)

class CashBackedByBalance(AbsoluteBoundInvariant):
    """INV-006: Held asset balance must cover internal cash accounting."""

    def __init__(self):
        super().__init__(
            id="inv_006_cash_backed_by_balance",
            statement="The system MUST always hold at least as many assets as internal cash accounts for",
            type=InvariantType.ABSOLUTE_BOUND,
            criticality=Criticality.CRITICAL
        )

    def measure(self, entry: AffectedEntry, snapshot: Snapshot, oracle) -> Any:
        balance = oracle.query_resource_metric(entry.resource, snapshot, MetricKind.ASSET_BALANCE)
        cash = oracle.query_resource_metric(entry.resource, snapshot, MetricKind.CASH)
        if balance is INAPPLICABLE or cash is INAPPLICABLE:
            return INAPPLICABLE
        return (balance, cash)

    def holds(self, post_value: Any) -> bool:
        balance, cash = post_value
        return balance >= cash

    def describe_breach(self, entry: AffectedEntry, pre_value: Any, post_value: Any) -> str:
        balance, cash = post_value
        return f"{self.id}: {entry.describe()} balance {balance} below internal cash {cash}"

# ============================================
# RULE CATALOG
# ============================================

RULE_CATALOG: Dict[str, Type[Invariant]] = {
    "inv_001_account_solvency": AccountSolvency,
    "inv_002_resource_accounting": ResourceAccountingIntegrity,
    "inv_003_exchange_rate_stability": ExchangeRateStability,
    "inv_004_status_check_offloading": StatusCheckOffloading,
    "inv_005_asset_transfer_accounting": AssetTransferAccounting,
    "inv_006_cash_backed_by_balance": CashBackedByBalance,
}

def default_rules(config=None, only: Optional[List[str]] = None) -> List[Invariant]:
    """Instantiate the rule set, applying thresholds from a VerifierConfig."""
    selected = list(only) if only else list(RULE_CATALOG)
    unknown = [rule_id for rule_id in selected if rule_id not in RULE_CATALOG]
    if unknown:
        raise PipelineMisconfigured(f"Unknown rule id(s): {', '.join(unknown)}")

    rules = []
    for rule_id in selected:
        rule_class = RULE_CATALOG[rule_id]
        if rule_class is ExchangeRateStability and config is not None:
            rules.append(ExchangeRateStability(threshold_bps=config.rate_threshold_bps))
        elif rule_class is ResourceAccountingIntegrity and config is not None:
            rules.append(ResourceAccountingIntegrity(tolerance=config.accounting_tolerance))
        else:
            rules.append(rule_class())
    return rules
