"""
Vault Invariant Guard (VIG) - Test Suite
Version: 1.0.0

Coverage for the verification pipeline:
- Decoder and selector registry (bounds-checked, never raising)
- Call tree and batch unwrapping (nested batches, indirect calls, fallbacks)
- Affected-set construction and controller expansion
- Every invariant in isolation, with and without legitimate exceptions
- Verifier composition, configuration, metrics and the HTTP surface
"""

import pytest
import inspect
import json
import time
from typing import Any, Dict, Iterable, List, Optional

from pydantic import ValidationError
from fastapi.testclient import TestClient

from vig_enforcement_v1 import (
    AffectedEntry,
    DecisionLedger,
    DecodeFailure,
    EvaluationState,
    InvariantViolation,
    LEGITIMATE_EXCEPTION,
    NULL_ADDRESS,
    Operation,
    OperationKind,
    Outcome,
    PipelineMisconfigured,
    Snapshot,
    Verdict,
    WAD,
    keccak256,
    normalize_address
)
from vig_selectors_v1 import (
    BORROW,
    CONNECTOR_BATCH,
    CONNECTOR_CALL,
    CONNECTOR_CONTROL_COLLATERAL,
    DEPOSIT,
    LIQUIDATE,
    MINT,
    REDEEM,
    SELECTOR_REGISTRY,
    SelectorShape,
    TRANSFER,
    TRANSFER_FROM,
    WITHDRAW,
    assert_registry_complete,
    selector
)
from vig_decoder_v1 import (
    CalldataReader,
    OperationDecoder,
    decode_batch_items,
    decode_connector_call,
    hex_to_bytes
)
from vig_unwrapper_v1 import Batch, BatchUnwrapper, CallTreeBuilder, Indirect, Leaf, Single
from vig_affected_set_v1 import AffectedSetBuilder
from vig_state_oracle_v1 import HealthStatus, InMemoryStateOracle
from vig_exception_detector_v1 import (
    DEBT_SOCIALIZED,
    EXCESS_ASSETS_SKIMMED,
    INTEREST_ACCRUED,
    ExceptionDetector
)
from vig_invariants_v1 import (
    AccountSolvency,
    AssetTransferAccounting,
    CashBackedByBalance,
    ExchangeRateStability,
    RULE_CATALOG,
    ResourceAccountingIntegrity,
    StatusCheckOffloading,
    default_rules,
    health_from_liquidity
)
from vig_config_v1 import DEFAULT_CONNECTOR, VerifierConfig
from vig_pipeline_v1 import TransactionCall, TransactionVerifier
from vig_metrics import metrics_registry
from vig_main_api import app, verify_transaction

# ============================================
# ADDRESSES
# ============================================

CONNECTOR = DEFAULT_CONNECTOR
VAULT_A = "0x" + "11" * 20
VAULT_B = "0x" + "22" * 20
TOKEN = "0x" + "cc" * 20  # plain token, not a vault
ALICE = "0x" + "aa" * 20
BOB = "0x" + "bb" * 20

# ============================================
# ABI ENCODERS
# ============================================

def word(value: int) -> bytes:
    return value.to_bytes(32, "big")

def addr(address: str) -> bytes:
    return bytes(12) + bytes.fromhex(address[2:])

def encode_bytes(data: bytes) -> bytes:
    return word(len(data)) + data + bytes((-len(data)) % 32)

def deposit_call(receiver: str, amount: int = 100) -> bytes:
    return DEPOSIT + word(amount) + addr(receiver)

def borrow_call(receiver: str, amount: int = 100) -> bytes:
    return BORROW + word(amount) + addr(receiver)

def transfer_from_call(sender: str, receiver: str, amount: int = 100) -> bytes:
    return TRANSFER_FROM + addr(sender) + addr(receiver) + word(amount)

def encode_item(target: str, on_behalf_of: str, data: bytes, value: int = 0) -> bytes:
    # head of 4 words, then the bytes payload
    return addr(target) + addr(on_behalf_of) + word(value) + word(128) + encode_bytes(data)

def connector_call(target: str, on_behalf_of: str, data: bytes, discriminant: bytes = CONNECTOR_CALL) -> bytes:
    return discriminant + encode_item(target, on_behalf_of, data)

def batch_call(items: Iterable[tuple]) -> bytes:
    encoded = [encode_item(*item) for item in items]
    heads = b""
    tails = b""
    offset = 32 * len(encoded)
    for item in encoded:
        heads += word(offset)
        tails += item
        offset += len(item)
    return CONNECTOR_BATCH + word(32) + word(len(encoded)) + heads + tails

# ============================================
# MOCK STATE
# ============================================

def make_oracle(pre: Optional[Dict] = None, post: Optional[Dict] = None, events: Iterable[Dict] = (),
                resources: Iterable[str] = (VAULT_A, VAULT_B), query_budget: Optional[int] = None):
    """Dual-snapshot oracle where both snapshots know the same resources."""
    def snapshot(extra):
        data = {'resources': list(resources)}
        data.update(extra or {})
        return data

    return InMemoryStateOracle.from_dict(
        {'pre': snapshot(pre), 'post': snapshot(post), 'events': list(events)},
        query_budget=query_budget
    )

def liquidity(*positions) -> Dict[str, Any]:
    return {'liquidity': [
        {'resource': r, 'principal': p, 'collateral_value': c, 'liability_value': l}
        for r, p, c, l in positions
    ]}

def metrics(resource: str, **values) -> Dict[str, Any]:
    return {'metrics': {resource: values}}

def event(emitter: str, signature) -> Dict[str, Any]:
    return {'emitter': emitter, 'topics': ["0x" + signature.topic.hex()], 'data': "0x"}

def run_verifier(oracle, calldata: bytes, target: str = VAULT_A, sender: str = ALICE,
                 rules: Optional[List] = None, config: Optional[VerifierConfig] = None):
    verifier = TransactionVerifier(oracle, rules=rules, config=config)
    return verifier.verify(TransactionCall(target=target, sender=sender, calldata=calldata))

# ============================================
# DECODER TESTS
# ============================================

class TestOperationDecoder:
    """Decoding of direct calls into typed operations."""

    def test_deposit_receiver_is_principal(self):
        op = OperationDecoder().decode_calldata(VAULT_A, deposit_call(ALICE))
        assert op.kind == OperationKind.DEPOSIT
        assert op.target == VAULT_A
        assert op.principal == ALICE
        assert op.auxiliary_principals == ()

    def test_withdraw_owner_and_receiver(self):
        calldata = WITHDRAW + word(5) + addr(BOB) + addr(ALICE)
        op = OperationDecoder().decode_calldata(VAULT_A, calldata)
        assert op.kind == OperationKind.WITHDRAW
        assert op.principal == ALICE
        assert op.auxiliary_principals == (BOB,)

    def test_transfer_from_extracts_both_parties(self):
        op = OperationDecoder().decode_calldata(VAULT_A, transfer_from_call(ALICE, BOB))
        assert op.kind == OperationKind.TRANSFER_FROM
        assert op.extracted_principals() == (ALICE, BOB)

    def test_transfer_has_recipient_only(self):
        op = OperationDecoder().decode_calldata(VAULT_A, TRANSFER + addr(BOB) + word(5))
        assert op.kind == OperationKind.TRANSFER_FROM
        assert op.principal is None
        assert op.auxiliary_principals == (BOB,)

    def test_liquidate_violator_is_principal(self):
        calldata = LIQUIDATE + addr(ALICE) + addr(VAULT_B) + word(10) + word(0)
        op = OperationDecoder().decode_calldata(VAULT_A, calldata)
        assert op.kind == OperationKind.LIQUIDATE
        assert op.principal == ALICE

    def test_unknown_discriminant_is_unrecognized(self):
        payload = word(1) + addr(ALICE)
        op = OperationDecoder().decode(b"\xde\xad\xbe\xef", payload, VAULT_A)
        assert op.kind == OperationKind.UNRECOGNIZED
        assert op.raw_payload == payload
        assert op.is_recognized == False

    @pytest.mark.parametrize("length", [0, 4, 31, 63])
    def test_short_payload_is_unrecognized(self, length):
        payload = deposit_call(ALICE)[4:][:length]
        op = OperationDecoder().decode(DEPOSIT, payload, VAULT_A)
        assert op.kind == OperationKind.UNRECOGNIZED

    def test_null_principal_is_not_named(self):
        op = OperationDecoder().decode_calldata(VAULT_A, deposit_call(NULL_ADDRESS))
        assert op.kind == OperationKind.DEPOSIT
        assert op.principal is None
        assert op.extracted_principals() == ()

    def test_null_principal_surfaced_by_extraction(self):
        decoder = OperationDecoder()
        principal, auxiliary = decoder.extract_principals(SELECTOR_REGISTRY.lookup(DEPOSIT),
                                                          deposit_call(NULL_ADDRESS)[4:])
        assert principal == NULL_ADDRESS
        assert auxiliary == ()

    def test_dirty_address_word_dropped(self):
        dirty = b"\x01" + bytes(11) + bytes.fromhex(ALICE[2:])
        op = OperationDecoder().decode(DEPOSIT, word(100) + dirty, VAULT_A)
        assert op.kind == OperationKind.DEPOSIT
        assert op.principal is None

    def test_decode_is_idempotent(self):
        decoder = OperationDecoder()
        calldata = transfer_from_call(ALICE, BOB)
        assert decoder.decode_calldata(VAULT_A, calldata) == decoder.decode_calldata(VAULT_A, calldata)

    def test_connector_shapes_are_structural(self):
        op = OperationDecoder().decode_calldata(CONNECTOR, connector_call(VAULT_A, ALICE, deposit_call(ALICE)))
        assert op.kind == OperationKind.NESTED_CALL
        assert op.principal is None

class TestCalldataReader:
    """Bounds checking of raw ABI reads."""

    def test_word_out_of_bounds(self):
        with pytest.raises(DecodeFailure):
            CalldataReader(word(1)).word(2)

    def test_field_numbers_start_at_one(self):
        with pytest.raises(DecodeFailure):
            CalldataReader(word(1)).word(0)

    def test_bytes_length_beyond_payload(self):
        payload = word(32) + word(10 ** 6)
        with pytest.raises(DecodeFailure):
            CalldataReader(payload).bytes_at(32)

    def test_connector_call_round_trip(self):
        inner = borrow_call(BOB)
        decoded = decode_connector_call(connector_call(VAULT_A, ALICE, inner)[4:])
        assert decoded.target == VAULT_A
        assert decoded.on_behalf_of == ALICE
        assert decoded.data == inner

    def test_batch_absurd_length_rejected(self):
        payload = word(32) + word(2 ** 64)
        with pytest.raises(DecodeFailure):
            decode_batch_items(payload)

    def test_batch_items_in_order(self):
        calldata = batch_call([(VAULT_A, ALICE, deposit_call(ALICE)), (VAULT_B, BOB, borrow_call(BOB))])
        items = decode_batch_items(calldata[4:])
        assert [i.target for i in items] == [VAULT_A, VAULT_B]
        assert [i.on_behalf_of for i in items] == [ALICE, BOB]

    def test_hex_to_bytes(self):
        assert hex_to_bytes("0x6e553f65") == DEPOSIT
        with pytest.raises(ValueError):
            hex_to_bytes("0xabc")

class TestSelectorRegistry:
    """Static discriminant table."""

    def test_every_kind_is_registered(self):
        assert_registry_complete()

    def test_lookup(self):
        shape = SELECTOR_REGISTRY.lookup(selector("0x6e553f65"))
        assert shape.name == "deposit"
        assert shape.principal_field == 2
        assert SELECTOR_REGISTRY.lookup(b"\x00\x00\x00\x00") is None

    def test_field_outside_shape_rejected(self):
        registry = SELECTOR_REGISTRY.copy()
        with pytest.raises(PipelineMisconfigured):
            registry.register(b"\x01\x02\x03\x04",
                              SelectorShape("broken", OperationKind.DEPOSIT, 2, principal_field=3))

    def test_bad_discriminant_length(self):
        with pytest.raises(PipelineMisconfigured):
            SELECTOR_REGISTRY.copy().register(b"\x01\x02",
                                              SelectorShape("short", OperationKind.DEPOSIT, 1))

    def test_copy_is_independent(self):
        registry = SELECTOR_REGISTRY.copy()
        extra = b"\x0a\x0b\x0c\x0d"
        registry.register(extra, SelectorShape("sweep", OperationKind.WITHDRAW, 1, principal_field=1))
        assert extra in registry
        assert extra not in SELECTOR_REGISTRY
        assert len(registry) == len(SELECTOR_REGISTRY) + 1

    def test_custom_registry_decodes(self):
        registry = SELECTOR_REGISTRY.copy()
        extra = b"\x0a\x0b\x0c\x0d"
        registry.register(extra, SelectorShape("sweep", OperationKind.WITHDRAW, 1, principal_field=1))
        op = OperationDecoder(registry).decode(extra, addr(BOB), VAULT_A)
        assert op.kind == OperationKind.WITHDRAW
        assert op.principal == BOB

    @pytest.mark.parametrize("discriminant,signature", [
        (DEPOSIT, "deposit(uint256,address)"),
        (MINT, "mint(uint256,address)"),
        (WITHDRAW, "withdraw(uint256,address,address)"),
        (REDEEM, "redeem(uint256,address,address)"),
        (TRANSFER, "transfer(address,uint256)"),
        (TRANSFER_FROM, "transferFrom(address,address,uint256)"),
    ])
    def test_discriminant_is_keccak_prefix(self, discriminant, signature):
        assert keccak256(signature)[:4] == discriminant

# ============================================
# UNWRAPPER TESTS
# ============================================

class TestCallTreeBuilder:
    """Shaping raw calldata into call trees."""

    def test_direct_call_is_single(self):
        root = CallTreeBuilder(CONNECTOR).build(VAULT_A, deposit_call(ALICE))
        assert isinstance(root, Single)
        assert root.operation.kind == OperationKind.DEPOSIT

    @pytest.mark.parametrize("discriminant", [CONNECTOR_CALL, CONNECTOR_CONTROL_COLLATERAL])
    def test_connector_call_is_indirect(self, discriminant):
        calldata = connector_call(VAULT_A, BOB, borrow_call(BOB), discriminant)
        root = CallTreeBuilder(CONNECTOR).build(CONNECTOR, calldata)
        assert isinstance(root, Indirect)
        assert root.target == VAULT_A
        assert root.principal == BOB
        assert root.inner.operation.kind == OperationKind.BORROW

    def test_malformed_connector_call_falls_back(self):
        calldata = CONNECTOR_CALL + word(1)
        root = CallTreeBuilder(CONNECTOR).build(CONNECTOR, calldata)
        assert isinstance(root, Single)
        assert root.operation.kind == OperationKind.UNRECOGNIZED
        assert root.operation.target == CONNECTOR

    def test_batch_items(self):
        calldata = batch_call([(VAULT_A, ALICE, deposit_call(ALICE)), (VAULT_B, BOB, borrow_call(BOB))])
        root = CallTreeBuilder(CONNECTOR).build(CONNECTOR, calldata)
        assert isinstance(root, Batch)
        assert len(root.items) == 2
        assert root.items[1].principal == BOB

    def test_nested_batch_kept_shallow(self):
        nested = batch_call([(VAULT_A, ALICE, deposit_call(ALICE))])
        root = CallTreeBuilder(CONNECTOR).build(CONNECTOR, batch_call([(CONNECTOR, ALICE, nested)]))
        assert isinstance(root.items[0], Batch)
        assert isinstance(root.items[0].items[0], Single)

    def test_registered_dynamic_field_drives_decoding(self):
        registry = SELECTOR_REGISTRY.copy()
        registry.register(CONNECTOR_CALL, SelectorShape("call", OperationKind.NESTED_CALL, 5, dynamic_field=5))
        # extra head word before the offset of the inner calldata
        calldata = (CONNECTOR_CALL + addr(VAULT_A) + addr(ALICE) + word(0) + word(0) + word(160)
                    + encode_bytes(borrow_call(ALICE)))
        root = CallTreeBuilder(CONNECTOR, OperationDecoder(registry)).build(CONNECTOR, calldata)
        assert isinstance(root, Indirect)
        assert root.target == VAULT_A
        assert root.inner.operation.kind == OperationKind.BORROW

    def test_default_layout_rejects_shifted_payload(self):
        calldata = (CONNECTOR_CALL + addr(VAULT_A) + addr(ALICE) + word(0) + word(0) + word(160)
                    + encode_bytes(borrow_call(ALICE)))
        root = CallTreeBuilder(CONNECTOR).build(CONNECTOR, calldata)
        assert isinstance(root, Single)
        assert root.operation.kind == OperationKind.UNRECOGNIZED
        assert root.operation.target == CONNECTOR

class TestBatchUnwrapper:
    """Flattening call trees into leaves."""

    def setup_method(self):
        self.oracle = make_oracle()
        self.builder = CallTreeBuilder(CONNECTOR)
        self.unwrapper = BatchUnwrapper(self.oracle)

    def unwrap(self, target, calldata, sender=ALICE):
        return self.unwrapper.unwrap(self.builder.build(target, calldata), sender)

    def test_direct_call_inherits_envelope(self):
        leaves = self.unwrap(VAULT_A, deposit_call(BOB), sender=ALICE)
        assert len(leaves) == 1
        assert leaves[0].principal == ALICE
        assert leaves[0].target == VAULT_A
        assert leaves[0].operation.principal == BOB

    def test_indirect_call_resolved(self):
        leaves = self.unwrap(CONNECTOR, connector_call(VAULT_B, BOB, borrow_call(BOB)))
        assert leaves == [Leaf(operation=leaves[0].operation, principal=BOB, target=VAULT_B)]
        assert leaves[0].operation.kind == OperationKind.BORROW

    def test_batch_order_preserved(self):
        calldata = batch_call([(VAULT_B, BOB, borrow_call(BOB)), (VAULT_A, ALICE, deposit_call(ALICE))])
        leaves = self.unwrap(CONNECTOR, calldata)
        assert [(l.target, l.principal) for l in leaves] == [(VAULT_B, BOB), (VAULT_A, ALICE)]

    def test_nested_batch_yields_no_leaves(self):
        nested = batch_call([(VAULT_A, ALICE, deposit_call(ALICE)), (VAULT_B, BOB, borrow_call(BOB))])
        leaves = self.unwrap(CONNECTOR, batch_call([(CONNECTOR, ALICE, nested)]))
        assert leaves == []

    def test_nested_batch_beside_direct_item(self):
        nested = batch_call([(VAULT_A, ALICE, deposit_call(ALICE))])
        calldata = batch_call([(CONNECTOR, ALICE, nested), (VAULT_B, BOB, borrow_call(BOB))])
        leaves = self.unwrap(CONNECTOR, calldata)
        assert [l.target for l in leaves] == [VAULT_B]

    def test_indirect_inside_batch(self):
        inner = connector_call(VAULT_B, BOB, borrow_call(BOB))
        leaves = self.unwrap(CONNECTOR, batch_call([(CONNECTOR, ALICE, inner)]))
        assert [(l.target, l.principal) for l in leaves] == [(VAULT_B, BOB)]

    def test_non_resource_target_dropped(self):
        calldata = batch_call([(TOKEN, ALICE, transfer_from_call(ALICE, BOB)), (VAULT_A, ALICE, deposit_call(ALICE))])
        leaves = self.unwrap(CONNECTOR, calldata)
        assert [l.target for l in leaves] == [VAULT_A]

    def test_unrecognized_with_null_principal_dropped(self):
        root = Single(Operation.unrecognized(VAULT_A))
        assert self.unwrapper.unwrap(root, NULL_ADDRESS) == []

    def test_unrecognized_with_principal_kept(self):
        root = Single(Operation.unrecognized(VAULT_A))
        leaves = self.unwrapper.unwrap(root, ALICE)
        assert len(leaves) == 1
        assert leaves[0].operation.kind == OperationKind.UNRECOGNIZED

    def test_oracle_exhaustion_drops_leaf(self):
        unwrapper = BatchUnwrapper(make_oracle(query_budget=0))
        root = self.builder.build(VAULT_A, deposit_call(ALICE))
        assert unwrapper.unwrap(root, ALICE) == []

# ============================================
# AFFECTED SET TESTS
# ============================================

class TestAffectedSetBuilder:
    """Deduplication and controller expansion."""

    def leaf(self, kind, target, principal, op_principal=None, aux=()):
        return Leaf(Operation.build(kind, target, op_principal, aux), principal, target)

    def test_deduplicates(self):
        leaves = [
            self.leaf(OperationKind.DEPOSIT, VAULT_A, ALICE, ALICE),
            self.leaf(OperationKind.BORROW, VAULT_A, ALICE, ALICE)
        ]
        affected = AffectedSetBuilder(make_oracle()).build(leaves)
        assert affected.sorted_entries() == [AffectedEntry(VAULT_A, ALICE)]
        assert affected.resources == frozenset({VAULT_A})

    def test_secondary_principals_included(self):
        leaves = [self.leaf(OperationKind.TRANSFER_FROM, VAULT_A, ALICE, ALICE, (BOB,))]
        affected = AffectedSetBuilder(make_oracle()).build(leaves)
        assert AffectedEntry(VAULT_A, BOB) in affected
        assert affected.principals == frozenset({ALICE, BOB})

    def test_touched_resources_not_principals(self):
        leaves = [
            self.leaf(OperationKind.DEPOSIT, VAULT_A, ALICE, VAULT_B),
            self.leaf(OperationKind.DEPOSIT, VAULT_B, ALICE, ALICE)
        ]
        affected = AffectedSetBuilder(make_oracle()).build(leaves)
        assert VAULT_B not in affected.principals
        assert len(affected) == 2

    def test_controller_expansion(self):
        oracle = make_oracle(post={'controllers': {ALICE: [VAULT_B]}})
        leaves = [self.leaf(OperationKind.DEPOSIT, VAULT_A, ALICE, ALICE)]
        affected = AffectedSetBuilder(oracle).build(leaves)
        assert affected.sorted_entries() == [AffectedEntry(VAULT_A, ALICE), AffectedEntry(VAULT_B, ALICE)]
        assert affected.resources == frozenset({VAULT_A, VAULT_B})

    def test_controller_expansion_reads_post_snapshot(self):
        oracle = make_oracle(pre={'controllers': {ALICE: [VAULT_B]}})
        leaves = [self.leaf(OperationKind.DEPOSIT, VAULT_A, ALICE, ALICE)]
        affected = AffectedSetBuilder(oracle).build(leaves)
        assert affected.sorted_entries() == [AffectedEntry(VAULT_A, ALICE)]

    def test_expansion_disabled(self):
        oracle = make_oracle(post={'controllers': {ALICE: [VAULT_B]}})
        leaves = [self.leaf(OperationKind.DEPOSIT, VAULT_A, ALICE, ALICE)]
        affected = AffectedSetBuilder(oracle, expand_controllers=False).build(leaves)
        assert len(affected) == 1

    def test_controller_query_exhaustion(self):
        leaves = [self.leaf(OperationKind.DEPOSIT, VAULT_A, ALICE, ALICE)]
        affected = AffectedSetBuilder(make_oracle(query_budget=0)).build(leaves)
        assert affected.sorted_entries() == [AffectedEntry(VAULT_A, ALICE)]

# ============================================
# EXCEPTION DETECTOR TESTS
# ============================================

class TestExceptionDetector:
    """Event-log evidence lookup."""

    def setup_method(self):
        self.detector = ExceptionDetector()

    def log(self, *events):
        return make_oracle(events=events).event_log()

    def test_matching_event(self):
        log = self.log(event(VAULT_A, DEBT_SOCIALIZED))
        assert self.detector.has_exception(VAULT_A, log, (DEBT_SOCIALIZED,)) == True

    def test_other_emitter_ignored(self):
        log = self.log(event(VAULT_B, DEBT_SOCIALIZED))
        assert self.detector.has_exception(VAULT_A, log, (DEBT_SOCIALIZED,)) == False

    def test_other_signature_ignored(self):
        log = self.log(event(VAULT_A, INTEREST_ACCRUED))
        assert self.detector.has_exception(VAULT_A, log, (DEBT_SOCIALIZED,)) == False

    def test_event_without_topics(self):
        log = self.log({'emitter': VAULT_A, 'topics': [], 'data': "0x"})
        assert self.detector.has_exception(VAULT_A, log, (DEBT_SOCIALIZED,)) == False

    def test_no_signatures_never_match(self):
        log = self.log(event(VAULT_A, DEBT_SOCIALIZED))
        assert self.detector.has_exception(VAULT_A, log, ()) == False

    def test_topic_override(self):
        custom = bytes(31) + b"\x07"
        detector = ExceptionDetector({DEBT_SOCIALIZED.name: custom})
        log = self.log(
            {'emitter': VAULT_A, 'topics': ["0x" + custom.hex()], 'data': "0x"},
        )
        assert detector.has_exception(VAULT_A, log, (DEBT_SOCIALIZED,)) == True
        assert detector.has_exception(VAULT_A, self.log(event(VAULT_A, DEBT_SOCIALIZED)), (DEBT_SOCIALIZED,)) == False

    def test_unknown_override_rejected(self):
        with pytest.raises(PipelineMisconfigured):
            ExceptionDetector({"Unknown(uint256)": bytes(32)})

    @pytest.mark.parametrize("signature,expected", [
        (DEBT_SOCIALIZED, "0xe786d0bc2e83bf230ed9895a9c4d7756ab0c6e22eb8a4ff69c161ece76bd36df"),
        (INTEREST_ACCRUED, "0x5e804d42ae3b860f881d11cb44a4bb1f2f0d5b3d081f5539a32d6f97b629d978"),
        (EXCESS_ASSETS_SKIMMED, "0x4b4a5bf5b7d4b3e829443bba48de6169835afbce6e39c9790fd58b7f2875f16b"),
    ])
    def test_topic_is_keccak_of_signature(self, signature, expected):
        assert signature.topic == keccak256(signature.name)
        assert "0x" + signature.topic.hex() == expected

    def test_emitted_topic_matches(self):
        emitted = "0xe786d0bc2e83bf230ed9895a9c4d7756ab0c6e22eb8a4ff69c161ece76bd36df"
        log = self.log({'emitter': VAULT_A, 'topics': [emitted], 'data': "0x"})
        assert self.detector.has_exception(VAULT_A, log, (DEBT_SOCIALIZED,)) == True

# ============================================
# INVARIANT TESTS
# ============================================

class TestHealthPolicy:
    """Liquidity-derived health."""

    @pytest.mark.parametrize("collateral,liability,expected", [
        (0, 0, HealthStatus.HEALTHY),
        (5, 0, HealthStatus.HEALTHY),
        (100, 70, HealthStatus.HEALTHY),
        (100, 100, HealthStatus.UNHEALTHY),
        (100, 110, HealthStatus.UNHEALTHY),
        (0, 5, HealthStatus.UNHEALTHY),
    ])
    def test_health_from_liquidity(self, collateral, liability, expected):
        assert health_from_liquidity(collateral, liability) == expected

class TestAccountSolvency:
    """INV-001: healthy principals stay healthy."""

    def verify(self, pre_position, post_position, events=(), post_extra=None):
        post = liquidity((VAULT_A, ALICE) + post_position)
        post.update(post_extra or {})
        oracle = make_oracle(pre=liquidity((VAULT_A, ALICE) + pre_position), post=post, events=events)
        return run_verifier(oracle, borrow_call(ALICE), rules=[AccountSolvency()])

    def test_healthy_to_unhealthy_violates(self):
        report = self.verify((100, 70), (100, 110))
        assert report.passed == False
        violation = report.violations[0]
        assert violation.rule_name == "inv_001_account_solvency"
        assert violation.resource == VAULT_A
        assert violation.principal == ALICE

    def test_healthy_to_healthy_passes(self):
        report = self.verify((100, 70), (100, 90))
        assert report.passed == True

    @pytest.mark.parametrize("post_position", [(50, 80), (50, 150), (200, 80)])
    def test_already_unhealthy_passes(self, post_position):
        report = self.verify((50, 80), post_position)
        assert report.passed == True

    def test_debt_socialization_legitimizes(self):
        report = self.verify((100, 70), (100, 110), events=[event(VAULT_A, DEBT_SOCIALIZED)])
        assert report.passed == True
        outcome = report.report_for("inv_001_account_solvency").outcomes[0]
        assert outcome.detail == LEGITIMATE_EXCEPTION

    def test_emitted_socialization_topic_legitimizes(self):
        socialized = {
            'emitter': VAULT_A,
            'topics': ["0xe786d0bc2e83bf230ed9895a9c4d7756ab0c6e22eb8a4ff69c161ece76bd36df", "0x" + addr(ALICE).hex()],
            'data': "0x" + word(40).hex()
        }
        report = self.verify((100, 70), (100, 110), events=[socialized])
        assert report.passed == True

    def test_socialization_on_other_resource_does_not_count(self):
        report = self.verify((100, 70), (100, 110), events=[event(VAULT_B, DEBT_SOCIALIZED)])
        assert report.passed == False

    def test_failed_health_query_treated_as_unhealthy(self):
        failed = {'health': [{'resource': VAULT_A, 'principal': ALICE, 'status': "failed"}]}
        report = self.verify((100, 70), (100, 90), post_extra=failed)
        assert report.passed == False

    def test_explicit_health_status_preferred(self):
        healthy = {'health': [{'resource': VAULT_A, 'principal': ALICE, 'status': "healthy"}]}
        report = self.verify((100, 70), (100, 110), post_extra=healthy)
        assert report.passed == True

    def test_controller_checked_for_borrow_elsewhere(self):
        oracle = make_oracle(
            pre=liquidity((VAULT_B, ALICE, 100, 70)),
            post={**liquidity((VAULT_B, ALICE, 100, 110)), 'controllers': {ALICE: [VAULT_B]}}
        )
        report = run_verifier(oracle, borrow_call(ALICE), rules=[AccountSolvency()])
        assert [v.resource for v in report.violations] == [VAULT_B]

    def test_untracked_resource_skipped(self):
        oracle = make_oracle(resources=(VAULT_A,))
        outcome = AccountSolvency().evaluate(
            AffectedEntry(VAULT_B, ALICE), Snapshot.PRE, Snapshot.POST, oracle, ExceptionDetector(), ()
        )
        assert outcome.verdict == Verdict.SKIP
        assert outcome.state == EvaluationState.SKIPPED

    def test_oracle_exhaustion_skips(self):
        oracle = make_oracle(pre=liquidity((VAULT_A, ALICE, 100, 70)), query_budget=0)
        outcome = AccountSolvency().evaluate(
            AffectedEntry(VAULT_A, ALICE), Snapshot.PRE, Snapshot.POST, oracle, ExceptionDetector(), ()
        )
        assert outcome.verdict == Verdict.SKIP
        assert outcome.passed == True

class TestResourceAccountingIntegrity:
    """INV-002: balance and cash move together."""

    def verify(self, post_balance, post_cash, events=(), tolerance=0):
        oracle = make_oracle(
            pre=metrics(VAULT_A, asset_balance=1000, cash=1000),
            post=metrics(VAULT_A, asset_balance=post_balance, cash=post_cash),
            events=events
        )
        return run_verifier(oracle, deposit_call(ALICE), rules=[ResourceAccountingIntegrity(tolerance)])

    def test_matched_movement_passes(self):
        assert self.verify(1100, 1100).passed == True

    def test_unaccounted_increase_violates(self):
        report = self.verify(1100, 1000)
        assert report.passed == False
        assert report.violations[0].pre_value == 0
        assert report.violations[0].post_value == 100

    def test_unaccounted_decrease_violates(self):
        assert self.verify(900, 1000).passed == False

    def test_skim_legitimizes_shrinking_excess(self):
        assert self.verify(900, 1000, events=[event(VAULT_A, EXCESS_ASSETS_SKIMMED)]).passed == True

    def test_skim_does_not_excuse_unaccounted_inflow(self):
        report = self.verify(5000, 1000, events=[event(VAULT_A, EXCESS_ASSETS_SKIMMED)])
        assert report.passed == False
        assert report.violations[0].post_value == 4000

    def test_tolerance(self):
        assert self.verify(1100, 1000, tolerance=100).passed == True
        assert self.verify(1101, 1000, tolerance=100).passed == False

    def test_missing_metric_skips(self):
        oracle = make_oracle(post=metrics(VAULT_A, asset_balance=1000, cash=1000))
        report = run_verifier(oracle, deposit_call(ALICE), rules=[ResourceAccountingIntegrity()])
        assert report.passed == True
        assert report.reports[0].outcomes[0].verdict == Verdict.SKIP

class TestExchangeRateStability:
    """INV-003: bounded exchange rate movement."""

    def verify(self, post_assets, events=(), rule=None):
        oracle = make_oracle(
            pre=metrics(VAULT_A, total_assets=10000, total_supply=10000),
            post=metrics(VAULT_A, total_assets=post_assets, total_supply=10000),
            events=events
        )
        return run_verifier(oracle, deposit_call(ALICE), rules=[rule or ExchangeRateStability()])

    def test_threshold_is_inclusive(self):
        assert self.verify(10500).passed == True

    def test_one_bps_over_violates(self):
        report = self.verify(10501)
        assert report.passed == False
        assert report.violations[0].pre_value == WAD
        assert "501 bps" in report.violations[0].reason

    def test_increase_not_legitimized(self):
        assert self.verify(10600, events=[event(VAULT_A, INTEREST_ACCRUED)]).passed == False

    @pytest.mark.parametrize("signature", [DEBT_SOCIALIZED, INTEREST_ACCRUED])
    def test_decrease_legitimized(self, signature):
        assert self.verify(9400).passed == False
        assert self.verify(9400, events=[event(VAULT_A, signature)]).passed == True

    def test_configured_threshold(self):
        rules = default_rules(VerifierConfig(rate_threshold_bps=1000), only=["inv_003_exchange_rate_stability"])
        assert self.verify(10600, rule=rules[0]).passed == True

    def test_empty_supply_skipped(self):
        oracle = make_oracle(
            pre=metrics(VAULT_A, total_assets=0, total_supply=0),
            post=metrics(VAULT_A, total_assets=100, total_supply=100)
        )
        report = run_verifier(oracle, deposit_call(ALICE), rules=[ExchangeRateStability()])
        assert report.reports[0].outcomes[0].verdict == Verdict.SKIP

    def test_truncating_change(self):
        rule = ExchangeRateStability()
        assert rule.change_bps(3, 4) == 3333
        assert rule.within_bound(0, 10 ** 30) == True

class TestStatusCheckOffloading:
    """INV-004: caps hold after deferred status checks."""

    def oracle(self, pre_borrows, post_borrows):
        return make_oracle(
            pre=metrics(VAULT_A, total_borrows=pre_borrows, borrow_cap=100),
            post=metrics(VAULT_A, total_borrows=post_borrows, borrow_cap=100)
        )

    def test_not_triggered_by_direct_call(self):
        report = run_verifier(self.oracle(50, 150), borrow_call(ALICE), rules=[StatusCheckOffloading()])
        rule_report = report.report_for("inv_004_status_check_offloading")
        assert rule_report.triggered == False
        assert report.passed == True

    def test_cap_exceeded_through_connector_violates(self):
        calldata = connector_call(VAULT_A, ALICE, borrow_call(ALICE))
        report = run_verifier(self.oracle(50, 150), calldata, target=CONNECTOR, rules=[StatusCheckOffloading()])
        assert report.passed == False
        assert "cap" in report.violations[0].reason

    def test_within_cap_passes(self):
        calldata = batch_call([(VAULT_A, ALICE, borrow_call(ALICE))])
        report = run_verifier(self.oracle(50, 100), calldata, target=CONNECTOR, rules=[StatusCheckOffloading()])
        assert report.passed == True

    def test_already_over_cap_passes(self):
        calldata = connector_call(VAULT_A, ALICE, borrow_call(ALICE))
        report = run_verifier(self.oracle(120, 150), calldata, target=CONNECTOR, rules=[StatusCheckOffloading()])
        assert report.passed == True

    def test_no_caps_skipped(self):
        oracle = make_oracle(pre=metrics(VAULT_A, total_borrows=50), post=metrics(VAULT_A, total_borrows=150))
        calldata = connector_call(VAULT_A, ALICE, borrow_call(ALICE))
        report = run_verifier(oracle, calldata, target=CONNECTOR, rules=[StatusCheckOffloading()])
        assert report.reports[0].outcomes[0].verdict == Verdict.SKIP

class TestAssetTransferAccounting:
    """INV-005: transfers never mint or burn claims."""

    def verify(self, calldata, post_supply, events=(), target=VAULT_A):
        oracle = make_oracle(
            pre=metrics(VAULT_A, total_supply=1000),
            post=metrics(VAULT_A, total_supply=post_supply),
            events=events
        )
        return run_verifier(oracle, calldata, target=target, rules=[AssetTransferAccounting()])

    def test_transfer_preserves_supply(self):
        report = self.verify(transfer_from_call(ALICE, BOB), 1000)
        assert report.passed == True
        assert len(report.reports[0].outcomes) == 1

    def test_transfer_burning_claims_violates(self):
        report = self.verify(transfer_from_call(ALICE, BOB), 900)
        assert report.passed == False

    def test_burn_not_legitimized(self):
        report = self.verify(transfer_from_call(ALICE, BOB), 900, events=[event(VAULT_A, INTEREST_ACCRUED)])
        assert report.passed == False

    def test_interest_accrual_mint_legitimized(self):
        report = self.verify(transfer_from_call(ALICE, BOB), 1100, events=[event(VAULT_A, INTEREST_ACCRUED)])
        assert report.passed == True

    def test_deposit_not_checked(self):
        report = self.verify(deposit_call(ALICE), 2000)
        assert report.passed == True
        assert report.reports[0].outcomes == []

    def test_mixed_batch_not_checked(self):
        calldata = batch_call([(VAULT_A, ALICE, transfer_from_call(ALICE, BOB)), (VAULT_A, ALICE, deposit_call(ALICE))])
        report = self.verify(calldata, 2000, target=CONNECTOR)
        assert report.reports[0].outcomes == []

class TestCashBackedByBalance:
    """INV-006: balance covers cash."""

    def verify(self, balance, cash):
        oracle = make_oracle(
            pre=metrics(VAULT_A, asset_balance=0, cash=0),
            post=metrics(VAULT_A, asset_balance=balance, cash=cash)
        )
        return run_verifier(oracle, deposit_call(ALICE), rules=[CashBackedByBalance()])

    def test_balance_below_cash_violates(self):
        report = self.verify(40, 50)
        assert report.passed == False
        assert report.violations[0].pre_value is None
        assert report.violations[0].post_value == (40, 50)

    @pytest.mark.parametrize("balance,cash", [(50, 50), (60, 50), (0, 0)])
    def test_balance_covers_cash(self, balance, cash):
        assert self.verify(balance, cash).passed == True

    def test_pre_state_not_queried(self):
        oracle = make_oracle(post=metrics(VAULT_A, asset_balance=40, cash=50))
        report = run_verifier(oracle, deposit_call(ALICE), rules=[CashBackedByBalance()])
        assert report.passed == False

# ============================================
# COMPOSITION TESTS
# ============================================

def consistent_state():
    """Pre/post state of a clean 1000-unit borrow by ALICE on VAULT_A."""
    base = dict(total_assets=10000, total_supply=10000, supply_cap=20000, borrow_cap=8000)
    pre = metrics(VAULT_A, asset_balance=5000, cash=5000, total_borrows=5000, **base)
    pre.update(liquidity((VAULT_A, ALICE, 3000, 1000)))
    post = metrics(VAULT_A, asset_balance=4000, cash=4000, total_borrows=6000, **base)
    post.update(liquidity((VAULT_A, ALICE, 3000, 2000)))
    return pre, post

class TestTransactionVerifier:
    """Every rule composed over one transaction."""

    def test_clean_borrow_passes_all_rules(self):
        pre, post = consistent_state()
        report = run_verifier(make_oracle(pre=pre, post=post), borrow_call(ALICE))
        assert report.passed == True
        assert [r.rule_id for r in report.reports] == list(RULE_CATALOG)

    def test_clean_borrow_through_connector(self):
        pre, post = consistent_state()
        calldata = connector_call(VAULT_A, ALICE, borrow_call(ALICE))
        report = run_verifier(make_oracle(pre=pre, post=post), calldata, target=CONNECTOR)
        assert report.passed == True
        assert report.report_for("inv_004_status_check_offloading").triggered == True

    def test_violations_from_several_rules(self):
        pre, post = consistent_state()
        post.update(metrics(VAULT_A, asset_balance=3000, cash=4000, total_assets=10000, total_supply=10000))
        post.update(liquidity((VAULT_A, ALICE, 3000, 3500)))
        report = run_verifier(make_oracle(pre=pre, post=post), borrow_call(ALICE))
        failed = {v.rule_name for v in report.violations}
        assert failed == {"inv_001_account_solvency", "inv_002_resource_accounting",
                          "inv_006_cash_backed_by_balance"}

    def test_enforce_raises(self):
        pre, post = consistent_state()
        post.update(liquidity((VAULT_A, ALICE, 3000, 3500)))
        verifier = TransactionVerifier(make_oracle(pre=pre, post=post))
        with pytest.raises(InvariantViolation) as exc_info:
            verifier.enforce(TransactionCall(target=VAULT_A, sender=ALICE, calldata=borrow_call(ALICE)))
        assert len(exc_info.value.violations) == 1
        assert verifier.ledger.counts()['violate'] == 1

    def test_enforce_returns_report_when_clean(self):
        pre, post = consistent_state()
        verifier = TransactionVerifier(make_oracle(pre=pre, post=post))
        report = verifier.enforce(TransactionCall(target=VAULT_A, sender=ALICE, calldata=borrow_call(ALICE)))
        assert report.passed == True

    def test_addresses_normalized(self):
        pre, post = consistent_state()
        post.update(liquidity((VAULT_A, ALICE, 3000, 3500)))
        report = run_verifier(make_oracle(pre=pre, post=post), borrow_call(ALICE),
                              target=VAULT_A.upper().replace("0X", "0x"), sender=ALICE.upper())
        assert report.violations[0].principal == ALICE

    def test_single_worker_matches_parallel(self):
        pre, post = consistent_state()
        post.update(liquidity((VAULT_A, ALICE, 3000, 3500)))
        serial = run_verifier(make_oracle(pre=pre, post=post), borrow_call(ALICE),
                              config=VerifierConfig(max_workers=1))
        parallel = run_verifier(make_oracle(pre=pre, post=post), borrow_call(ALICE),
                                config=VerifierConfig(max_workers=6))
        assert serial.to_dict()['violations'] == parallel.to_dict()['violations']

    def test_report_serializes_large_values(self):
        pre, post = consistent_state()
        report = run_verifier(make_oracle(pre=pre, post=post), borrow_call(ALICE),
                              rules=[ExchangeRateStability()])
        outcome = report.to_dict()['rules'][0]['outcomes'][0]
        assert outcome['pre_value'] == str(WAD)
        assert json.dumps(report.to_dict())

    def test_unknown_rule_rejected(self):
        with pytest.raises(PipelineMisconfigured):
            default_rules(only=["inv_999_missing"])

    def test_violation_metrics_recorded(self):
        labels = {'invariant_id': "inv_006_cash_backed_by_balance", 'criticality': "critical"}
        before = metrics_registry.get_sample_value('vig_invariant_violations_total', labels) or 0
        oracle = make_oracle(post=metrics(VAULT_A, asset_balance=40, cash=50))
        run_verifier(oracle, deposit_call(ALICE), rules=[CashBackedByBalance()])
        after = metrics_registry.get_sample_value('vig_invariant_violations_total', labels)
        assert after == before + 1

class TestDecisionLedger:
    """Outcome ledger."""

    def test_counts_and_violations(self):
        ledger = DecisionLedger()
        entry = AffectedEntry(VAULT_A)
        ledger.record(Outcome("r", entry, Verdict.PASS, EvaluationState.PASS))
        ledger.record(Outcome("r", entry, Verdict.SKIP, EvaluationState.SKIPPED))
        assert ledger.counts() == {'pass': 1, 'violate': 0, 'skip': 1}
        assert ledger.violations() == []

# ============================================
# CONFIGURATION TESTS
# ============================================

class TestVerifierConfig:
    """Environment-driven configuration."""

    def test_defaults(self):
        config = VerifierConfig.from_env({})
        assert config.connector == DEFAULT_CONNECTOR
        assert config.rate_threshold_bps == 500
        assert config.expand_controllers == True

    def test_from_env(self):
        topic_hex = "0x" + "07" * 32
        config = VerifierConfig.from_env({
            'VIG_CONNECTOR': "0x" + "AB" * 20,
            'VIG_RATE_THRESHOLD_BPS': "250",
            'VIG_MAX_WORKERS': "2",
            'VIG_EXPAND_CONTROLLERS': "false",
            'VIG_LOG_LEVEL': "DEBUG",
            'VIG_EVENT_TOPICS': json.dumps({INTEREST_ACCRUED.name: topic_hex})
        })
        assert config.connector == "0x" + "ab" * 20
        assert config.rate_threshold_bps == 250
        assert config.max_workers == 2
        assert config.expand_controllers == False
        assert config.topic_overrides() == {INTEREST_ACCRUED.name: bytes([7]) * 32}

    @pytest.mark.parametrize("env", [
        {'VIG_RATE_THRESHOLD_BPS': "20000"},
        {'VIG_MAX_WORKERS': "0"},
        {'VIG_LOG_LEVEL': "verbose"},
        {'VIG_CONNECTOR': "0x1234"},
        {'VIG_EVENT_TOPICS': json.dumps({"Unknown(uint256)": "0x" + "00" * 32})},
        {'VIG_EVENT_TOPICS': json.dumps({DEBT_SOCIALIZED.name: "0x1234"})},
    ])
    def test_invalid_env_rejected(self, env):
        with pytest.raises(ValidationError):
            VerifierConfig.from_env(env)

    def test_normalize_address(self):
        assert normalize_address(bytes.fromhex("aa" * 20)) == ALICE
        with pytest.raises(ValueError):
            normalize_address(b"\x01")

# ============================================
# HTTP SURFACE TESTS
# ============================================

class TestVerificationAPI:
    """FastAPI endpoints."""

    def setup_method(self):
        self.client = TestClient(app)

    def request_body(self, post_liability: int, rules=None) -> Dict[str, Any]:
        body = {
            'call': {'target': VAULT_A, 'sender': ALICE, 'calldata': "0x" + borrow_call(ALICE).hex()},
            'pre': {'resources': [VAULT_A], **liquidity((VAULT_A, ALICE, 100, 70))},
            'post': {'resources': [VAULT_A], **liquidity((VAULT_A, ALICE, 100, post_liability))},
            'events': []
        }
        if rules is not None:
            body['rules'] = rules
        return body

    def test_root(self):
        response = self.client.get("/")
        assert response.status_code == 200
        assert response.json()['service'] == "Vault Invariant Guard"

    def test_health(self):
        response = self.client.get("/health")
        assert response.status_code == 200
        data = response.json()
        assert data['rules'] == list(RULE_CATALOG)
        assert data['selectors'] == len(SELECTOR_REGISTRY)

    def test_selectors(self):
        response = self.client.get("/api/v1/selectors")
        names = {s['discriminant']: s['name'] for s in response.json()}
        assert names["0x6e553f65"] == "deposit"
        assert names["0xc16ae7a4"] == "batch"

    def test_verify_passing(self):
        response = self.client.post("/api/v1/verify", json=self.request_body(90))
        assert response.status_code == 200
        assert response.json()['passed'] == True

    def test_verify_violation_reported(self):
        body = self.request_body(110, rules=["inv_001_account_solvency"])
        response = self.client.post("/api/v1/verify", json=body)
        assert response.status_code == 200
        data = response.json()
        assert data['passed'] == False
        assert data['violations'][0]['rule_name'] == "inv_001_account_solvency"
        assert data['violations'][0]['principal'] == ALICE

    def test_enforce_rejects(self):
        response = self.client.post("/api/v1/verify?enforce=true", json=self.request_body(110))
        assert response.status_code == 422
        assert len(response.json()['violations']) == 1

    def test_unknown_rule(self):
        response = self.client.post("/api/v1/verify", json=self.request_body(90, rules=["inv_999_missing"]))
        assert response.status_code == 400

    def test_unknown_metric(self):
        body = self.request_body(90)
        body['post']['metrics'] = {VAULT_A: {'bogus_metric': 1}}
        response = self.client.post("/api/v1/verify", json=body)
        assert response.status_code == 400

    def test_malformed_address(self):
        body = self.request_body(90)
        body['call']['sender'] = "0x1234"
        response = self.client.post("/api/v1/verify", json=body)
        assert response.status_code == 422

    def test_verify_runs_in_threadpool(self):
        # blocking verification must not run on the event loop
        assert inspect.iscoroutinefunction(verify_transaction) == False

    def test_metrics_endpoint(self):
        self.client.post("/api/v1/verify", json=self.request_body(90))
        response = self.client.get("/metrics")
        assert response.status_code == 200
        assert "vig_transactions_verified_total" in response.text

# ============================================
# PERFORMANCE TESTS
# ============================================

class TestPerformance:
    """Verification latency."""

    def test_large_batch(self):
        items = [(VAULT_A, ALICE, deposit_call(ALICE)) for _ in range(200)]
        calldata = batch_call(items)
        pre, post = consistent_state()

        start = time.time()
        report = run_verifier(make_oracle(pre=pre, post=post), calldata, target=CONNECTOR)
        elapsed = time.time() - start

        assert report.report_for("inv_004_status_check_offloading").triggered == True
        assert elapsed < 10.0

if __name__ == "__main__":
    pytest.main([__file__, "-v", "--tb=short"])
