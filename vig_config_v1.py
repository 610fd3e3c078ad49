"""
Vault Invariant Guard (VIG) - Runtime Configuration
Version: 1.0.0

Validated settings for one verifier deployment, read from VIG_* environment
variables.
"""

from typing import Dict, Mapping, Optional
import json
import logging
import os

from pydantic import BaseModel, Field, field_validator

from vig_enforcement_v1 import PipelineMisconfigured, normalize_address
from vig_exception_detector_v1 import KNOWN_SIGNATURES, topic

DEFAULT_CONNECTOR = "0x0c9a3dd6b8f28529d72d7f9ce918d493519ee383"

class VerifierConfig(BaseModel):
    connector: str = Field(DEFAULT_CONNECTOR, description="Address of the orchestrating connector")
    rate_threshold_bps: int = Field(500, ge=0, le=10_000)
    accounting_tolerance: int = Field(0, ge=0)
    max_workers: int = Field(4, ge=1, le=64)
    expand_controllers: bool = True
    log_level: str = Field("INFO", pattern=r'^(DEBUG|INFO|WARNING|ERROR|CRITICAL)$')
    event_topics: Dict[str, str] = Field(default_factory=dict)

    class Config:
        json_schema_extra = {
            "example": {
                "connector": DEFAULT_CONNECTOR,
                "rate_threshold_bps": 500,
                "accounting_tolerance": 0,
                "max_workers": 4,
                "expand_controllers": True,
                "log_level": "INFO",
                "event_topics": {}
            }
        }

    @field_validator("connector")
    @classmethod
    def _normalize_connector(cls, value: str) -> str:
        return normalize_address(value)

    @field_validator("event_topics")
    @classmethod
    def _check_topics(cls, value: Dict[str, str]) -> Dict[str, str]:
        for name, hex_value in value.items():
            if name not in KNOWN_SIGNATURES:
                raise ValueError(f"Unknown event signature: {name}")
            try:
                topic(hex_value)
            except (PipelineMisconfigured, ValueError) as e:
                raise ValueError(f"Invalid topic for {name}: {e}")
        return value

    def topic_overrides(self) -> Dict[str, bytes]:
        return {name: topic(hex_value) for name, hex_value in self.event_topics.items()}

    def apply_logging(self):
        logging.getLogger("VIG").setLevel(self.log_level)

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "VerifierConfig":
        """Build from VIG_CONNECTOR, VIG_RATE_THRESHOLD_BPS, VIG_ACCOUNTING_TOLERANCE,
        VIG_MAX_WORKERS, VIG_EXPAND_CONTROLLERS, VIG_LOG_LEVEL and VIG_EVENT_TOPICS (JSON)."""
        env = os.environ if environ is None else environ
        values = {}

        for field_name in ("connector", "rate_threshold_bps", "accounting_tolerance",
                           "max_workers", "log_level"):
            raw = env.get(f"VIG_{field_name.upper()}")
            if raw is not None:
                values[field_name] = raw

        raw = env.get("VIG_EXPAND_CONTROLLERS")
        if raw is not None:
            values["expand_controllers"] = raw.strip().lower() in ("1", "true", "yes", "on")

        raw = env.get("VIG_EVENT_TOPICS")
        if raw:
            values["event_topics"] = json.loads(raw)

        return cls(**values)
