"""Action Policy Engine - maps a health score onto protective action flags."""
from typing import Dict, List, Tuple
from pydantic import BaseModel

from wa_governor.services.governor.config import ActionPolicyConfig

# Most severe first.
SEVERITY_ORDER = (
    "block_reconnect",
    "pause_warmup",
    "pause_campaign",
    "add_delay",
    "reduce_batch",
)

# Actions that score recovery alone never clears.
STICKY_ACTIONS = frozenset({"block_reconnect"})


class ActionFlags(BaseModel):
    reduce_batch: bool = False
    add_delay: bool = False
    pause_campaign: bool = False
    pause_warmup: bool = False
    block_reconnect: bool = False

    def active(self) -> List[str]:
        return [name for name in SEVERITY_ORDER if getattr(self, name)]


def threshold_for(action: str, config: ActionPolicyConfig) -> float:
    return getattr(config, f"{action}_threshold")


def evaluate_actions(score: float, current: ActionFlags, config: ActionPolicyConfig) -> ActionFlags:
    """Return the target flag set for ``score``.

    An inactive action turns on at ``score <= threshold``. An active one stays
    on until ``score > threshold + hysteresis_margin``. Severity is cumulative:
    while a more severe action is on, every milder action is on as well.
    """
    target: Dict[str, bool] = {}
    more_severe_active = False
    for action in SEVERITY_ORDER:
        threshold = threshold_for(action, config)
        was_active = getattr(current, action)

        if score <= threshold:
            active = True
        elif was_active and action in STICKY_ACTIONS:
            active = True
        elif was_active:
            active = score <= threshold + config.hysteresis_margin
        else:
            active = False

        active = active or more_severe_active
        target[action] = active
        more_severe_active = active

    return ActionFlags(**target)


def diff_actions(current: ActionFlags, target: ActionFlags) -> Tuple[List[str], List[str]]:
    """(applied, cleared) action names, most severe first."""
    applied = [a for a in SEVERITY_ORDER if getattr(target, a) and not getattr(current, a)]
    cleared = [a for a in SEVERITY_ORDER if getattr(current, a) and not getattr(target, a)]
    return applied, cleared
