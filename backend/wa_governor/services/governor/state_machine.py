"""Warmup State Machine - guarded transitions and per-state send limits.

Pure logic. The Governor persists transitions and limits through the ledger.
"""
import math
from dataclasses import dataclass, replace
from datetime import datetime, timedelta
from typing import Dict, FrozenSet, List, Optional, Tuple

from wa_governor.core.exceptions import InvalidTransition
from wa_governor.db.models.warmup import WarmupState
from wa_governor.db.models.warmup_ledger import TriggerType
from wa_governor.services.governor.config import WarmupConfig

SYSTEM = "system"
OWNER = "owner"
WEBHOOK = "webhook"

TRIGGER_SOURCES: Dict[TriggerType, str] = {
    TriggerType.TIME_ELAPSED: SYSTEM,
    TriggerType.HEALTH_DROP: SYSTEM,
    TriggerType.HEALTH_RECOVERY: SYSTEM,
    TriggerType.OWNER_FORCE: OWNER,
    TriggerType.OWNER_RESUME: OWNER,
    TriggerType.WEBHOOK_BLOCK: WEBHOOK,
    TriggerType.WEBHOOK_FAIL: WEBHOOK,
}

S = WarmupState
T = TriggerType

TRANSITIONS: Dict[Tuple[WarmupState, WarmupState], FrozenSet[TriggerType]] = {
    (S.NEW, S.WARMING): frozenset({T.TIME_ELAPSED}),
    (S.WARMING, S.STABLE): frozenset({T.TIME_ELAPSED}),
    (S.WARMING, S.COOLDOWN): frozenset({T.HEALTH_DROP, T.OWNER_FORCE, T.WEBHOOK_BLOCK, T.WEBHOOK_FAIL}),
    (S.STABLE, S.COOLDOWN): frozenset({T.HEALTH_DROP, T.OWNER_FORCE, T.WEBHOOK_BLOCK, T.WEBHOOK_FAIL}),
    (S.NEW, S.COOLDOWN): frozenset({T.OWNER_FORCE, T.WEBHOOK_BLOCK, T.WEBHOOK_FAIL}),
    (S.COOLDOWN, S.COOLDOWN): frozenset({T.OWNER_FORCE, T.WEBHOOK_BLOCK, T.WEBHOOK_FAIL}),
    (S.SUSPENDED, S.COOLDOWN): frozenset({T.OWNER_FORCE}),
    (S.COOLDOWN, S.WARMING): frozenset({T.HEALTH_RECOVERY, T.OWNER_RESUME}),
    (S.SUSPENDED, S.WARMING): frozenset({T.OWNER_RESUME}),
    (S.COOLDOWN, S.SUSPENDED): frozenset({T.HEALTH_DROP, T.WEBHOOK_BLOCK}),
    (S.NEW, S.SUSPENDED): frozenset({T.WEBHOOK_BLOCK}),
    (S.WARMING, S.SUSPENDED): frozenset({T.WEBHOOK_BLOCK}),
    (S.STABLE, S.SUSPENDED): frozenset({T.WEBHOOK_BLOCK}),
}

RESTRICTED_STATES = frozenset({S.COOLDOWN, S.SUSPENDED})

# Upper bound on chained transitions in one evaluation (NEW -> WARMING -> STABLE
# is the longest legitimate chain).
MAX_CHAIN = 4


def check_transition(from_state: WarmupState, to_state: WarmupState,
                     trigger: TriggerType, source: str, connection_id: Optional[int] = None) -> None:
    """Raise InvalidTransition unless the table allows (from, to) for trigger and source."""
    allowed = TRANSITIONS.get((from_state, to_state), frozenset())
    if trigger not in allowed:
        raise InvalidTransition(
            f"Transition {from_state.value} -> {to_state.value} is not allowed for trigger {trigger.value}",
            connection_id=connection_id,
        )
    if TRIGGER_SOURCES[trigger] != source:
        raise InvalidTransition(
            f"Trigger {trigger.value} cannot be issued by {source}",
            connection_id=connection_id,
        )


def limits_for(state: WarmupState, age_days: int, config: WarmupConfig,
               plan_daily_limit: Optional[int] = None) -> Tuple[int, int]:
    """(daily, hourly) limits for a state at a given number age."""
    if state in RESTRICTED_STATES:
        return 0, 0
    if state == S.STABLE:
        daily = plan_daily_limit or config.default_stable_daily
        return daily, math.ceil(daily / config.stable_hourly_divisor)
    if state == S.NEW:
        first, last = config.new_start_day, config.warming_start_day - 1
        low, high, hourly = config.new_min_daily, config.new_max_daily, config.new_hourly
    else:
        first, last = config.warming_start_day, config.stable_start_day - 1
        low, high, hourly = config.warming_min_daily, config.warming_max_daily, config.warming_hourly

    if last <= first:
        return high, hourly
    day = max(first, min(last, age_days))
    progress = (day - first) / (last - first)
    return round(low + progress * (high - low)), hourly


@dataclass(frozen=True)
class WarmupSnapshot:
    state: WarmupState
    number_age_days: int
    cooldown_until: Optional[datetime] = None
    # An active reconnect block holds the number where it is until an owner resumes it.
    reconnect_blocked: bool = False


@dataclass(frozen=True)
class Transition:
    from_state: WarmupState
    to_state: WarmupState
    trigger: TriggerType
    description: str


class WarmupStateMachine:
    """Decides system-driven transitions from age, score and cooldown expiry."""

    def __init__(self, config: WarmupConfig, pause_warmup_threshold: float):
        self.config = config
        self.pause_warmup_threshold = pause_warmup_threshold

    def step(self, snapshot: WarmupSnapshot, score: float, now: datetime,
             prior_health_drops: int = 0, dropped_now: bool = False) -> Optional[Transition]:
        """Next single transition, or None when the state is settled."""
        cfg = self.config
        state, age = snapshot.state, snapshot.number_age_days

        if state in (S.WARMING, S.STABLE) and score <= self.pause_warmup_threshold:
            return Transition(state, S.COOLDOWN, T.HEALTH_DROP,
                              f"Health score {score} at or below {self.pause_warmup_threshold}")

        if snapshot.reconnect_blocked and state != S.COOLDOWN:
            return None

        if state == S.NEW and age >= cfg.warming_start_day and score >= cfg.progression_score:
            return Transition(state, S.WARMING, T.TIME_ELAPSED,
                              f"Number age {age}d reached warming tier")

        if state == S.WARMING and age >= cfg.stable_start_day and score >= cfg.progression_score:
            return Transition(state, S.STABLE, T.TIME_ELAPSED,
                              f"Number age {age}d reached stable tier")

        if state == S.COOLDOWN:
            if dropped_now:
                if prior_health_drops + 1 >= cfg.relapse_limit:
                    return Transition(state, S.SUSPENDED, T.HEALTH_DROP,
                                      f"{prior_health_drops + 1} health-drop cooldowns within "
                                      f"{cfg.relapse_window_days}d")
                return None
            expired = snapshot.cooldown_until is None or now >= snapshot.cooldown_until
            if expired and score >= cfg.recovery_score and not snapshot.reconnect_blocked:
                return Transition(state, S.WARMING, T.HEALTH_RECOVERY,
                                  f"Cooldown elapsed and score {score} recovered")

        return None

    def evaluate(self, snapshot: WarmupSnapshot, score: float, now: datetime,
                 prior_health_drops: int = 0) -> List[Transition]:
        """Chain steps until the state settles.

        ``prior_health_drops`` counts health-drop cooldown entries inside the
        relapse window before this evaluation.
        """
        transitions: List[Transition] = []
        dropped_now = False
        for _ in range(MAX_CHAIN):
            transition = self.step(snapshot, score, now, prior_health_drops, dropped_now)
            if transition is None:
                break
            check_transition(transition.from_state, transition.to_state, transition.trigger, SYSTEM)
            transitions.append(transition)
            dropped_now = transition.trigger == T.HEALTH_DROP and transition.to_state == S.COOLDOWN
            cooldown_until = snapshot.cooldown_until
            if dropped_now:
                cooldown_until = now + timedelta(hours=self.config.auto_cooldown_hours)
            snapshot = replace(snapshot, state=transition.to_state, cooldown_until=cooldown_until)
        return transitions
