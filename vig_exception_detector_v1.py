"""
Vault Invariant Guard (VIG) - Exception Detector
Version: 1.0.0

Scans the transaction's event log for the small set of signatures that make
an otherwise-breaking state transition legitimate. Pure function of the log.
"""

from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional

from vig_enforcement_v1 import PipelineMisconfigured, WORD_SIZE, keccak256, logger

@dataclass(frozen=True)
class EventSignature:
    """Named topic-zero value emitted by a resource."""
    name: str
    topic: bytes

def topic(hex_value: str) -> bytes:
    raw = bytes.fromhex(hex_value[2:] if hex_value.startswith("0x") else hex_value)
    if len(raw) != WORD_SIZE:
        raise PipelineMisconfigured(f"Event topic must be {WORD_SIZE} bytes: {hex_value}")
    return raw

def event_signature(name: str) -> EventSignature:
    """Signature whose topic zero is the keccak-256 of its canonical form."""
    return EventSignature(name, keccak256(name))

# Renamed or re-declared events can be overridden per deployment through
# VerifierConfig.event_topics.
DEBT_SOCIALIZED = event_signature("DebtSocialized(address,uint256)")
INTEREST_ACCRUED = event_signature("InterestAccrued(address,uint256)")
EXCESS_ASSETS_SKIMMED = event_signature("Skim(address,address,uint256,uint256)")

KNOWN_SIGNATURES = {s.name: s for s in (DEBT_SOCIALIZED, INTEREST_ACCRUED, EXCESS_ASSETS_SKIMMED)}

class ExceptionDetector:
    """Looks up legitimate-exception evidence in an event log."""

    def __init__(self, topic_overrides: Optional[Dict[str, bytes]] = None):
        self.topic_overrides = dict(topic_overrides or {})
        unknown = set(self.topic_overrides) - set(KNOWN_SIGNATURES)
        if unknown:
            raise PipelineMisconfigured(f"Unknown event signature override(s): {', '.join(sorted(unknown))}")

    def resolve(self, signature: EventSignature) -> bytes:
        return self.topic_overrides.get(signature.name, signature.topic)

    def matching_events(self, resource: str, log: Iterable, signatures: Iterable[EventSignature]) -> List:
        wanted = {self.resolve(s) for s in signatures}
        if not wanted:
            return []
        # logs with no topics have no topic zero and never match
        return [event for event in log
                if event.emitter == resource and event.topic0 is not None and event.topic0 in wanted]

    def has_exception(self, resource: str, log: Iterable, signatures: Iterable[EventSignature]) -> bool:
        matches = self.matching_events(resource, log, signatures)
        if matches:
            logger.info(f"EXCEPTION: {len(matches)} qualifying event(s) emitted by {resource}")
        return bool(matches)
