"""Health Score Calculator - pure function from message telemetry to a 0-100 score."""
from typing import Dict, List, Optional, Sequence, Tuple
from pydantic import BaseModel

from wa_governor.core.exceptions import InsufficientData
from wa_governor.db.models.health_score import HealthStatus, GRADE_BY_STATUS
from wa_governor.services.adapters.base import MessageStats
from wa_governor.services.governor.config import ScoringConfig

NEUTRAL_SCORE = 100.0


class ScoreResult(BaseModel):
    """Output of one scoring pass. No persistence attached."""
    score: float
    status: HealthStatus
    grade: str

    delivery_rate: float
    failure_rate: float
    block_rate: float
    report_rate: float

    delivery_score: float
    failure_score: float
    user_signal_score: float
    pattern_score: float
    template_mix_score: float

    send_spike_factor: float
    peak_hourly_sends: int
    avg_hourly_sends: float

    recommendations: List[Dict[str, str]] = []


def interpolate(value: float, curve: Sequence[Tuple[float, float]]) -> float:
    """Piecewise-linear lookup; values outside the curve take the end scores."""
    x0, y0 = curve[0]
    if value <= x0:
        return float(y0)
    for x1, y1 in curve[1:]:
        if value <= x1:
            progress = (value - x0) / (x1 - x0)
            return y0 + progress * (y1 - y0)
        x0, y0 = x1, y1
    return float(y0)


def _clamp(value: float, low: float = 0.0, high: float = 100.0) -> float:
    return max(low, min(high, value))


def _rate(part: Optional[int], sent: int) -> float:
    return (part or 0) / sent * 100


def spike_factor(hourly_counts: Sequence[int]) -> Tuple[float, int, float]:
    """Peak hour over mean hour. Returns (factor, peak, mean); 1.0 without data."""
    if not hourly_counts:
        return 1.0, 0, 0.0
    peak = max(hourly_counts)
    mean = sum(hourly_counts) / len(hourly_counts)
    if mean <= 0:
        return 1.0, peak, 0.0
    return max(1.0, peak / mean), peak, mean


def template_mix_score(unique_templates: Optional[int], config: ScoringConfig) -> float:
    if unique_templates is None:
        return NEUTRAL_SCORE
    for minimum, score in config.template_tiers:
        if unique_templates >= minimum:
            return float(score)
    return float(config.template_fallback_score)


def status_for_score(score: float, config: ScoringConfig) -> HealthStatus:
    """Monotonic: a higher score never yields a worse status."""
    if score >= config.excellent_threshold:
        return HealthStatus.EXCELLENT
    if score >= config.good_threshold:
        return HealthStatus.GOOD
    if score >= config.warning_threshold:
        return HealthStatus.WARNING
    return HealthStatus.CRITICAL


def _recommendations(delivery_rate: float, failure_rate: float, signal_rate: float,
                     spike: float, unique_templates: Optional[int], config: ScoringConfig) -> List[Dict[str, str]]:
    """Advice for every metric that sits outside its "good" band."""
    good = config.good_threshold
    recs = []
    if interpolate(delivery_rate, config.delivery_curve) < good:
        recs.append({
            "type": "delivery",
            "priority": "high",
            "message": f"Delivery rate is {delivery_rate:.1f}%. Verify recipient numbers and opt-in status.",
        })
    if interpolate(failure_rate, config.failure_curve) < good:
        recs.append({
            "type": "failure",
            "priority": "high",
            "message": f"Failure rate is {failure_rate:.1f}%. Clean the contact list and check message format.",
        })
    if interpolate(signal_rate, config.user_signal_curve) < good:
        recs.append({
            "type": "block",
            "priority": "critical",
            "message": "Users are blocking or reporting this number. Review content relevance and frequency.",
        })
    if interpolate(spike, config.pattern_curve) < good:
        recs.append({
            "type": "pattern",
            "priority": "medium",
            "message": f"Sending peaks at {spike:.1f}x the hourly average. Spread sends more evenly.",
        })
    if unique_templates is not None and template_mix_score(unique_templates, config) < good:
        recs.append({
            "type": "template",
            "priority": "low",
            "message": "Most messages use the same template. Rotate more approved templates.",
        })
    return recs


def calculate_score(stats: MessageStats, config: ScoringConfig,
                    connection_id: Optional[int] = None) -> ScoreResult:
    """Score a connection's telemetry.

    Raises InsufficientData when nothing was sent in the window. The caller
    decides whether the prior score stands.
    """
    sent = stats.sent
    if sent <= 0:
        raise InsufficientData("No messages sent in the scoring window", connection_id=connection_id)

    delivery_rate = _rate(stats.delivered, sent)
    failure_rate = _rate(stats.failed, sent)
    block_rate = _rate(stats.blocked, sent)
    report_rate = _rate(stats.reported, sent)
    spike, peak, mean = spike_factor(stats.hourly_counts)

    has_signals = stats.blocked is not None or stats.reported is not None
    signal_rate = block_rate + config.report_rate_multiplier * report_rate

    sub_scores = {
        "delivery": _clamp(interpolate(delivery_rate, config.delivery_curve)),
        "failure": _clamp(interpolate(failure_rate, config.failure_curve)),
        "user_signal": _clamp(interpolate(signal_rate, config.user_signal_curve)) if has_signals else NEUTRAL_SCORE,
        "pattern": _clamp(interpolate(spike, config.pattern_curve)),
        "template_mix": _clamp(template_mix_score(stats.unique_templates, config)),
    }
    weights = config.weights
    score = round(_clamp(sum(sub_scores[k] * weights[k] for k in sub_scores)), 2)
    status = status_for_score(score, config)

    return ScoreResult(
        score=score,
        status=status,
        grade=GRADE_BY_STATUS[status],
        delivery_rate=round(delivery_rate, 2),
        failure_rate=round(failure_rate, 2),
        block_rate=round(block_rate, 3),
        report_rate=round(report_rate, 3),
        delivery_score=round(sub_scores["delivery"], 2),
        failure_score=round(sub_scores["failure"], 2),
        user_signal_score=round(sub_scores["user_signal"], 2),
        pattern_score=round(sub_scores["pattern"], 2),
        template_mix_score=round(sub_scores["template_mix"], 2),
        send_spike_factor=round(spike, 2),
        peak_hourly_sends=peak,
        avg_hourly_sends=round(mean, 2),
        recommendations=_recommendations(delivery_rate, failure_rate, signal_rate, spike,
                                         stats.unique_templates, config),
    )
