"""Governor tunables: scoring bands, action thresholds, warmup tiers.

Defaults hold the production numbers. A deployment overrides single values
through ``governor_<section>_<field>`` keys in the settings table, e.g.
``governor_actions_hysteresis_margin = 3``.
"""
import json
from typing import Dict, List, Tuple
from pydantic import BaseModel, ValidationError, model_validator
from sqlalchemy.orm import Session
import structlog

from wa_governor.core.exceptions import InvalidParameter
from wa_governor.db.models.settings import Settings

logger = structlog.get_logger()

Curve = List[Tuple[float, float]]


class ScoringConfig(BaseModel):
    """Sub-score curves are (input, score) breakpoints, linearly interpolated."""

    weight_delivery: float = 0.40
    weight_failure: float = 0.25
    weight_user_signal: float = 0.20
    weight_pattern: float = 0.10
    weight_template_mix: float = 0.05

    delivery_curve: Curve = [(0, 0), (50, 25), (70, 50), (85, 80), (95, 100)]
    failure_curve: Curve = [(2, 100), (5, 80), (10, 50), (20, 25), (30, 0)]
    user_signal_curve: Curve = [(0.1, 100), (0.5, 80), (1, 50), (2, 25), (4, 0)]
    pattern_curve: Curve = [(1.5, 100), (2, 80), (3, 50), (5, 25), (10, 0)]
    report_rate_multiplier: float = 2.0

    # (min unique templates, score), best first; below the last tier scores the fallback
    template_tiers: List[Tuple[int, float]] = [(5, 100), (3, 80), (2, 50)]
    template_fallback_score: float = 25

    excellent_threshold: float = 85
    good_threshold: float = 70
    warning_threshold: float = 50

    @model_validator(mode="after")
    def _check(self):
        total = (self.weight_delivery + self.weight_failure + self.weight_user_signal
                 + self.weight_pattern + self.weight_template_mix)
        if abs(total - 1.0) > 1e-6:
            raise ValueError(f"scoring weights must sum to 1.0, got {total:.4f}")
        for name in ("delivery_curve", "failure_curve", "user_signal_curve", "pattern_curve"):
            xs = [x for x, _ in getattr(self, name)]
            if len(xs) < 2 or xs != sorted(xs):
                raise ValueError(f"{name} needs at least two breakpoints in ascending order")
        if not (self.excellent_threshold > self.good_threshold > self.warning_threshold):
            raise ValueError("status thresholds must be excellent > good > warning")
        return self

    @property
    def weights(self) -> dict:
        return {
            "delivery": self.weight_delivery,
            "failure": self.weight_failure,
            "user_signal": self.weight_user_signal,
            "pattern": self.weight_pattern,
            "template_mix": self.weight_template_mix,
        }


class ActionPolicyConfig(BaseModel):
    """An action applies at score <= threshold and clears above threshold + margin."""

    reduce_batch_threshold: float = 69
    add_delay_threshold: float = 60
    pause_campaign_threshold: float = 49
    pause_warmup_threshold: float = 45
    block_reconnect_threshold: float = 40
    hysteresis_margin: float = 5

    reduced_batch_size: int = 50
    added_delay_ms: int = 5000
    reconnect_block_days: int = 7

    @model_validator(mode="after")
    def _check(self):
        ordered = [
            self.reduce_batch_threshold,
            self.add_delay_threshold,
            self.pause_campaign_threshold,
            self.pause_warmup_threshold,
            self.block_reconnect_threshold,
        ]
        if ordered != sorted(ordered, reverse=True):
            raise ValueError("action thresholds must be ordered from least to most severe")
        if self.hysteresis_margin < 0:
            raise ValueError("hysteresis_margin must not be negative")
        return self


class WarmupConfig(BaseModel):
    """Age tiers and transition timings of the warmup state machine."""

    new_start_day: int = 1
    new_min_daily: int = 20
    new_max_daily: int = 30
    new_hourly: int = 5

    warming_start_day: int = 4
    warming_min_daily: int = 50
    warming_max_daily: int = 80
    warming_hourly: int = 10

    stable_start_day: int = 8
    default_stable_daily: int = 1000
    stable_hourly_divisor: int = 10

    progression_score: float = 70
    recovery_score: float = 70

    auto_cooldown_hours: int = 48
    relapse_limit: int = 3
    relapse_window_days: int = 7

    min_force_cooldown_hours: int = 1
    max_force_cooldown_hours: int = 168

    # Provider webhooks: block severity -> cooldown hours ("critical" suspends)
    block_cooldown_hours: Dict[str, int] = {"low": 24, "medium": 48, "high": 72}
    high_failure_rate: float = 15.0
    high_failure_cooldown_hours: int = 24

    @model_validator(mode="after")
    def _check(self):
        if not (self.new_start_day < self.warming_start_day < self.stable_start_day):
            raise ValueError("tier start days must be increasing")
        if self.relapse_limit < 1:
            raise ValueError("relapse_limit must be at least 1")
        if not (1 <= self.min_force_cooldown_hours <= self.max_force_cooldown_hours):
            raise ValueError("force cooldown bounds are invalid")
        if set(self.block_cooldown_hours) != {"low", "medium", "high"}:
            raise ValueError("block_cooldown_hours needs low, medium and high entries")
        if any(h < 1 for h in self.block_cooldown_hours.values()) or self.high_failure_cooldown_hours < 1:
            raise ValueError("webhook cooldowns must last at least one hour")
        return self


class GovernorConfig(BaseModel):
    scoring: ScoringConfig = ScoringConfig()
    actions: ActionPolicyConfig = ActionPolicyConfig()
    warmup: WarmupConfig = WarmupConfig()


SECTIONS = {
    "scoring": ScoringConfig,
    "actions": ActionPolicyConfig,
    "warmup": WarmupConfig,
}


def _parse_value(raw: str):
    try:
        return json.loads(raw)
    except ValueError:
        return raw


def load_governor_config(db: Session) -> GovernorConfig:
    """Load governor tunables, overlaying governor_* keys from the settings table."""
    stored = {
        s.key: _parse_value(s.value_json)
        for s in db.query(Settings).filter(Settings.key.like("governor_%")).all()
        if s.value_json
    }
    if not stored:
        return GovernorConfig()

    overrides = {}
    for section, model in SECTIONS.items():
        values = {}
        for field in model.model_fields:
            key = f"governor_{section}_{field}"
            if key in stored:
                values[field] = stored[key]
        if values:
            overrides[section] = values

    try:
        return GovernorConfig.model_validate(overrides)
    except ValidationError as e:
        logger.error("Invalid governor settings", error=str(e))
        raise InvalidParameter(f"Invalid governor settings: {e}")
