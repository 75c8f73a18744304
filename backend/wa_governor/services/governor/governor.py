"""Governor - public entry point for health recomputation and owner overrides.

One recompute flows Telemetry -> Score -> Policy -> State Machine -> Limits
with the ledger recording every mutation. Each operation runs under the
connection's lock in its own session and commits once; any failure rolls the
whole operation back.
"""
import enum
import json
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FutureTimeout
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional
from sqlalchemy import func
from sqlalchemy.orm import Session
import structlog

from wa_governor.core.config import settings
from wa_governor.core.exceptions import (
    GovernorError, ConnectionNotFound, TelemetryUnavailable, InvalidTransition,
    ScoreTooLowError, InvalidParameter,
)
from wa_governor.db.base import SessionLocal
from wa_governor.db.models.connection import WhatsappConnection, ConnectionStatus
from wa_governor.db.models.health_score import HealthScore, HealthStatus
from wa_governor.db.models.health_alert import AlertSeverity
from wa_governor.db.models.job_run import JobRun, JobStatus
from wa_governor.db.models.warmup import NumberWarmup, WarmupState
from wa_governor.db.models.warmup_ledger import (
    TriggerType, LimitType, LimitChangeReason, BlockType, BlockSeverity, ResolvedByType,
)
from wa_governor.services.adapters.base import TelemetrySourceAdapter, MessageStats
from wa_governor.services.adapters.telemetry import get_telemetry_source
from wa_governor.services.governor import alerts
from wa_governor.services.governor.config import GovernorConfig, load_governor_config
from wa_governor.services.governor.ledger import Ledger
from wa_governor.services.governor.locks import ConnectionLockRegistry
from wa_governor.services.governor.policy import ActionFlags, evaluate_actions, diff_actions
from wa_governor.services.governor.scoring import ScoreResult, calculate_score
from wa_governor.services.governor.state_machine import (
    WarmupStateMachine, WarmupSnapshot, RESTRICTED_STATES, SYSTEM, OWNER, WEBHOOK,
    check_transition, limits_for,
)

logger = structlog.get_logger()

WINDOWS = {
    "24h": timedelta(hours=24),
    "7d": timedelta(days=7),
    "30d": timedelta(days=30),
}

MAX_TREND_DAYS = 30
TREND_DELTA = 5.0

# action -> (connection flag column, block type, block severity)
BLOCKING_ACTIONS = {
    "pause_campaign": ("is_paused_by_health", BlockType.CAMPAIGN_DISABLED, BlockSeverity.HIGH),
    "pause_warmup": ("warmup_paused", BlockType.WARMUP_PAUSED, BlockSeverity.HIGH),
    "block_reconnect": ("reconnect_blocked", BlockType.RECONNECT_BLOCKED, BlockSeverity.CRITICAL),
}

STATE_BLOCKS = {
    WarmupState.COOLDOWN: BlockType.COOLDOWN_ENFORCED,
    WarmupState.SUSPENDED: BlockType.SUSPENDED,
}

FORCED_RESET_WARNING = "Actions may be re-applied on the next health recalculation."


@dataclass
class Actor:
    """Opaque identity of the owner behind an action. Audit only."""
    id: str
    role: str = "owner"


def _as_dict(row) -> Dict[str, Any]:
    data = {}
    for column in row.__table__.columns:
        value = getattr(row, column.key)
        if isinstance(value, enum.Enum):
            value = value.value
        data[column.key] = value
    return data


class Governor:
    """Orchestrates scoring, action policy, warmup state and the ledger."""

    def __init__(
        self,
        session_factory: Callable[[], Session] = SessionLocal,
        telemetry: Optional[TelemetrySourceAdapter] = None,
        config: Optional[GovernorConfig] = None,
        locks: Optional[ConnectionLockRegistry] = None,
        clock: Callable[[], datetime] = datetime.utcnow,
        max_workers: Optional[int] = None,
        telemetry_timeout: Optional[float] = None,
    ):
        self.session_factory = session_factory
        self.telemetry = telemetry or get_telemetry_source()
        self.config = config
        self.locks = locks or ConnectionLockRegistry(settings.GOVERNOR_LOCK_TIMEOUT_SECONDS)
        self.clock = clock
        self.max_workers = max_workers or settings.GOVERNOR_MAX_WORKERS
        self.telemetry_timeout = telemetry_timeout or settings.TELEMETRY_TIMEOUT_SECONDS
        self._telemetry_pool = ThreadPoolExecutor(max_workers=self.max_workers,
                                                  thread_name_prefix="telemetry")

    def shutdown(self) -> None:
        self._telemetry_pool.shutdown(wait=False)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _config_for(self, db: Session) -> GovernorConfig:
        return self.config or load_governor_config(db)

    @staticmethod
    def _window(window: str, connection_id: Optional[int] = None) -> timedelta:
        span = WINDOWS.get(window)
        if span is None:
            raise InvalidParameter(
                f"Unknown window '{window}', expected one of {', '.join(WINDOWS)}",
                connection_id=connection_id,
            )
        return span

    @staticmethod
    def _get_connection(db: Session, connection_id: int) -> WhatsappConnection:
        connection = db.query(WhatsappConnection).filter(WhatsappConnection.id == connection_id).first()
        if connection is None:
            raise ConnectionNotFound(f"Connection {connection_id} not found", connection_id=connection_id)
        return connection

    @staticmethod
    def _get_health(db: Session, connection_id: int) -> Optional[HealthScore]:
        return db.query(HealthScore).filter(HealthScore.connection_id == connection_id).first()

    @staticmethod
    def _age_days(connection: WhatsappConnection, now: datetime) -> int:
        start = connection.activated_at or connection.created_at
        if start is None:
            return 0
        return max(0, (now - start).days)

    @staticmethod
    def _current_flags(connection: WhatsappConnection) -> ActionFlags:
        return ActionFlags(
            reduce_batch=connection.reduced_batch_size is not None,
            add_delay=connection.added_delay_ms is not None,
            pause_campaign=bool(connection.is_paused_by_health),
            pause_warmup=bool(connection.warmup_paused),
            block_reconnect=bool(connection.reconnect_blocked),
        )

    @staticmethod
    def _mirror_flags(health: Optional[HealthScore], flags: ActionFlags) -> None:
        if health is None:
            return
        health.batch_size_reduced = flags.reduce_batch
        health.delay_added = flags.add_delay
        health.campaign_paused = flags.pause_campaign
        health.warmup_paused = flags.pause_warmup
        health.reconnect_blocked = flags.block_reconnect

    def _read_telemetry(self, connection_id: int, start: datetime, end: datetime) -> MessageStats:
        future = self._telemetry_pool.submit(self.telemetry.get_message_stats, connection_id, start, end)
        try:
            return future.result(timeout=self.telemetry_timeout)
        except FutureTimeout:
            future.cancel()
            raise TelemetryUnavailable(
                f"Telemetry read timed out after {self.telemetry_timeout}s",
                connection_id=connection_id,
            )
        except GovernorError:
            raise
        except Exception as e:
            raise TelemetryUnavailable(f"Telemetry read failed: {e}", connection_id=connection_id)

    def _ensure_warmup(self, db: Session, ledger: Ledger, connection: WhatsappConnection,
                       cfg: GovernorConfig, now: datetime) -> NumberWarmup:
        age = self._age_days(connection, now)
        warmup = db.query(NumberWarmup).filter(NumberWarmup.connection_id == connection.id).first()
        if warmup is not None:
            warmup.number_age_days = age
            return warmup

        warmup = NumberWarmup(
            connection_id=connection.id,
            state=WarmupState.NEW,
            state_changed_at=now,
            number_age_days=age,
            current_daily_limit=0,
            current_hourly_limit=0,
        )
        db.add(warmup)
        db.flush()
        self._sync_limits(ledger, connection, warmup, None, cfg,
                          LimitChangeReason.STATE_TRANSITION, detail="Initial warmup limits")
        logger.info("Warmup initialized", connection_id=connection.id, age_days=age)
        return warmup

    def _sync_limits(self, ledger: Ledger, connection: WhatsappConnection, warmup: NumberWarmup,
                     score: Optional[float], cfg: GovernorConfig, reason: LimitChangeReason,
                     detail: Optional[str] = None, actor: Optional[Actor] = None) -> None:
        daily, hourly = limits_for(warmup.state, warmup.number_age_days, cfg.warmup,
                                   connection.plan_daily_limit)
        actor_id = actor.id if actor else None
        ledger.record_limit_change(warmup, LimitType.DAILY, warmup.current_daily_limit, daily,
                                   reason, detail, score, actor_id)
        ledger.record_limit_change(warmup, LimitType.HOURLY, warmup.current_hourly_limit, hourly,
                                   reason, detail, score, actor_id)
        warmup.current_daily_limit = daily
        warmup.current_hourly_limit = hourly
        connection.warmup_state = warmup.state.value
        connection.warmup_daily_limit = daily

    def _transition(
        self,
        ledger: Ledger,
        connection: WhatsappConnection,
        warmup: NumberWarmup,
        to_state: WarmupState,
        trigger: TriggerType,
        description: str,
        score: Optional[float],
        cfg: GovernorConfig,
        now: datetime,
        actor: Optional[Actor] = None,
        cooldown_hours: Optional[int] = None,
        metadata: Optional[Dict[str, Any]] = None,
        source: Optional[str] = None,
        block_severity: Optional[BlockSeverity] = None,
    ) -> None:
        from_state = warmup.state
        source = source or (OWNER if actor else SYSTEM)
        check_transition(from_state, to_state, trigger, source, connection.id)

        old_daily = warmup.current_daily_limit
        warmup.previous_state = from_state
        warmup.state = to_state
        warmup.state_changed_at = now

        if to_state == WarmupState.COOLDOWN:
            hours = cooldown_hours or cfg.warmup.auto_cooldown_hours
            warmup.cooldown_until = now + timedelta(hours=hours)
            warmup.force_cooldown = trigger == TriggerType.OWNER_FORCE
            warmup.force_cooldown_by = actor.id if actor else None
            warmup.cooldown_reason = description
        elif to_state == WarmupState.SUSPENDED:
            warmup.cooldown_until = None
            warmup.force_cooldown = False
            warmup.cooldown_reason = description
        else:
            warmup.cooldown_until = None
            warmup.force_cooldown = False
            warmup.force_cooldown_by = None
            warmup.cooldown_reason = None

        new_daily, _ = limits_for(to_state, warmup.number_age_days, cfg.warmup, connection.plan_daily_limit)
        ledger.record_transition(
            warmup, from_state, to_state, trigger, description, score,
            old_daily, new_daily,
            actor_id=actor.id if actor else None,
            actor_role=actor.role if actor else None,
            metadata=metadata,
            now=now,
        )

        if to_state in RESTRICTED_STATES:
            reason = LimitChangeReason.COOLDOWN_START
        elif from_state in RESTRICTED_STATES:
            reason = LimitChangeReason.COOLDOWN_END
        else:
            reason = LimitChangeReason.STATE_TRANSITION
        self._sync_limits(ledger, connection, warmup, score, cfg, reason,
                          detail=f"{from_state.value} -> {to_state.value}", actor=actor)

        resolved_by = ResolvedByType.OWNER if actor else ResolvedByType.AUTO
        if from_state in STATE_BLOCKS:
            ledger.resolve_blocks(connection.id, STATE_BLOCKS[from_state], now, resolved_by,
                                  actor.id if actor else None, f"Left {from_state.value}: {description}")
        if to_state == WarmupState.COOLDOWN:
            severity = block_severity or (BlockSeverity.MEDIUM if actor else BlockSeverity.HIGH)
            ledger.open_block(warmup, BlockType.COOLDOWN_ENFORCED, severity, description, now,
                              blocked_until=warmup.cooldown_until)
        elif to_state == WarmupState.SUSPENDED:
            ledger.open_block(warmup, BlockType.SUSPENDED, BlockSeverity.CRITICAL, description, now)

        logger.info(
            "Warmup state transition",
            connection_id=connection.id,
            from_state=from_state.value,
            to_state=to_state.value,
            trigger=trigger.value,
            source=source,
            score=score,
            actor_id=actor.id if actor else None,
        )

    def _apply_actions(self, ledger: Ledger, connection: WhatsappConnection, warmup: NumberWarmup,
                       current: ActionFlags, target: ActionFlags, score: Optional[float],
                       cfg: GovernorConfig, now: datetime, actor: Optional[Actor] = None):
        """Write the flag diff onto the connection and record it in the ledger."""
        applied, cleared = diff_actions(current, target)
        actor_id = actor.id if actor else None

        for action in applied + cleared:
            on = action in applied
            if actor:
                reason = LimitChangeReason.OWNER_OVERRIDE
            else:
                reason = LimitChangeReason.HEALTH_DROP if on else LimitChangeReason.HEALTH_RECOVERY
            detail = f"{action} {'applied' if on else 'cleared'} at score {score}"

            if action == "reduce_batch":
                new = cfg.actions.reduced_batch_size if on else None
                ledger.record_limit_change(warmup, LimitType.BATCH_SIZE, connection.reduced_batch_size,
                                           new, reason, detail, score, actor_id)
                connection.reduced_batch_size = new
            elif action == "add_delay":
                new = cfg.actions.added_delay_ms if on else None
                ledger.record_limit_change(warmup, LimitType.DELAY_MS, connection.added_delay_ms,
                                           new, reason, detail, score, actor_id)
                connection.added_delay_ms = new
            else:
                field, block_type, severity = BLOCKING_ACTIONS[action]
                setattr(connection, field, on)
                if on:
                    until = None
                    if action == "block_reconnect":
                        until = now + timedelta(days=cfg.actions.reconnect_block_days)
                        connection.reconnect_blocked_until = until
                    ledger.open_block(warmup, block_type, severity, detail, now, blocked_until=until)
                else:
                    if action == "block_reconnect":
                        connection.reconnect_blocked_until = None
                    ledger.resolve_blocks(connection.id, block_type, now,
                                          ResolvedByType.OWNER if actor else ResolvedByType.AUTO,
                                          actor_id, detail)

        if applied or cleared:
            logger.info("Health actions changed", connection_id=connection.id, score=score,
                        applied=applied, cleared=cleared, actor_id=actor_id)
        return applied, cleared

    def _advance_warmup(self, ledger: Ledger, connection: WhatsappConnection, warmup: NumberWarmup,
                        score: float, cfg: GovernorConfig, now: datetime) -> List[str]:
        machine = WarmupStateMachine(cfg.warmup, cfg.actions.pause_warmup_threshold)
        since = now - timedelta(days=cfg.warmup.relapse_window_days)
        prior_drops = ledger.count_health_drop_cooldowns(connection.id, since)
        snapshot = WarmupSnapshot(warmup.state, warmup.number_age_days, warmup.cooldown_until,
                                  reconnect_blocked=bool(connection.reconnect_blocked))

        moves = []
        for t in machine.evaluate(snapshot, score, now, prior_drops):
            self._transition(ledger, connection, warmup, t.to_state, t.trigger, t.description,
                             score, cfg, now, metadata={"prior_health_drops": prior_drops})
            moves.append(f"{t.from_state.value}->{t.to_state.value}")

        self._sync_limits(ledger, connection, warmup, score, cfg, LimitChangeReason.AGE_PROGRESSION,
                          detail=f"Number age {warmup.number_age_days}d")
        warmup.last_health_score = score
        return moves

    @staticmethod
    def _store_score(health: HealthScore, result: ScoreResult, stats: MessageStats,
                     window: str, start: datetime, now: datetime) -> None:
        health.score = result.score
        health.status = result.status.value
        health.delivery_rate = result.delivery_rate
        health.failure_rate = result.failure_rate
        health.block_rate = result.block_rate
        health.report_rate = result.report_rate
        health.delivery_score = result.delivery_score
        health.failure_score = result.failure_score
        health.user_signal_score = result.user_signal_score
        health.pattern_score = result.pattern_score
        health.template_mix_score = result.template_mix_score
        health.total_sent = stats.sent
        health.total_delivered = stats.delivered
        health.total_failed = stats.failed
        health.total_read = stats.read
        health.total_blocked = stats.blocked or 0
        health.total_reported = stats.reported or 0
        health.send_spike_factor = result.send_spike_factor
        health.unique_templates_used = stats.unique_templates
        health.peak_hourly_sends = result.peak_hourly_sends
        health.avg_hourly_sends = result.avg_hourly_sends
        health.calculation_window = window
        health.window_start = start
        health.window_end = now
        health.recommendations_json = json.dumps(result.recommendations)
        health.calculated_at = now

    # ------------------------------------------------------------------
    # Recalculation
    # ------------------------------------------------------------------

    def recalculate(self, connection_id: int, window: Optional[str] = None) -> HealthScore:
        """Recompute one connection's score, actions, warmup state and limits.

        Idempotent: repeating it with unchanged telemetry only adds a history row.
        """
        window = window or settings.GOVERNOR_DEFAULT_WINDOW
        span = self._window(window, connection_id)

        with self.locks.hold(connection_id):
            db = self.session_factory()
            try:
                connection = self._get_connection(db, connection_id)
                cfg = self._config_for(db)
                now = self.clock()
                start = now - span

                stats = self._read_telemetry(connection_id, start, now)
                result = calculate_score(stats, cfg.scoring, connection_id=connection_id)

                ledger = Ledger(db)
                health = self._get_health(db, connection_id)
                old_status = health.status if health else None
                if health is None:
                    health = HealthScore(connection_id=connection_id)
                    db.add(health)
                self._store_score(health, result, stats, window, start, now)
                health.previous_status = old_status

                warmup = self._ensure_warmup(db, ledger, connection, cfg, now)

                current = self._current_flags(connection)
                target = evaluate_actions(result.score, current, cfg.actions)
                applied, cleared = self._apply_actions(ledger, connection, warmup, current, target,
                                                       result.score, cfg, now)
                self._mirror_flags(health, target)

                moves = self._advance_warmup(ledger, connection, warmup, result.score, cfg, now)
                warmup.last_health_grade = result.grade

                connection.health_score = result.score
                connection.health_status = result.status.value
                connection.health_updated_at = now

                ledger.record_score(connection_id, result.score, result.status.value, result.grade,
                                    window, now)
                alerts.status_changed(db, connection, old_status, result.status.value, result.score)
                alerts.actions_changed(db, connection, applied, cleared, result.score)

                db.commit()
                db.refresh(health)
                logger.info(
                    "Health score recalculated",
                    connection_id=connection_id,
                    score=result.score,
                    status=result.status.value,
                    window=window,
                    transitions=moves,
                )
                return health
            except GovernorError as e:
                db.rollback()
                logger.warning("Health recalculation rejected", connection_id=connection_id,
                               error=e.code, message=e.message)
                raise
            except Exception as e:
                db.rollback()
                logger.error("Health recalculation error", connection_id=connection_id, error=str(e))
                raise
            finally:
                db.close()

    def _recalculate_item(self, connection_id: int, window: str) -> Dict[str, Any]:
        try:
            health = self.recalculate(connection_id, window)
            return {
                "connection_id": connection_id,
                "success": True,
                "score": health.score,
                "status": health.status,
            }
        except GovernorError as e:
            return {
                "connection_id": connection_id,
                "success": False,
                "error": e.code,
                "message": e.message,
            }
        except Exception as e:
            logger.error("Health recalculation item error", connection_id=connection_id, error=str(e))
            return {
                "connection_id": connection_id,
                "success": False,
                "error": "internal_error",
                "message": str(e),
            }

    def _start_job(self, job_name: str, triggered_by: str) -> int:
        db = self.session_factory()
        try:
            job = JobRun(job_name=job_name, started_at=self.clock(), status=JobStatus.RUNNING,
                         triggered_by=triggered_by)
            db.add(job)
            db.commit()
            db.refresh(job)
            return job.run_id
        finally:
            db.close()

    def _finish_job(self, run_id: int, counters: Dict[str, Any], error: Optional[str] = None) -> None:
        db = self.session_factory()
        try:
            job = db.query(JobRun).filter(JobRun.run_id == run_id).first()
            if job is None:
                return
            job.status = JobStatus.FAILED if error else JobStatus.COMPLETED
            job.ended_at = self.clock()
            job.counters_json = json.dumps(counters)
            job.error_message = error
            db.commit()
        finally:
            db.close()

    def _active_connection_ids(self) -> List[int]:
        db = self.session_factory()
        try:
            rows = (
                db.query(WhatsappConnection.id)
                .filter(WhatsappConnection.status == ConnectionStatus.ACTIVE)
                .order_by(WhatsappConnection.id)
                .all()
            )
            return [r[0] for r in rows]
        finally:
            db.close()

    def recalculate_all(self, window: Optional[str] = None, triggered_by: str = "system") -> Dict[str, Any]:
        """Recompute every active connection on a bounded worker pool.

        Per-connection failures are isolated and reported in ``results``.
        """
        window = window or settings.GOVERNOR_DEFAULT_WINDOW
        self._window(window)
        run_id = self._start_job("health_recalculation", triggered_by)

        try:
            ids = self._active_connection_ids()
            with ThreadPoolExecutor(max_workers=self.max_workers, thread_name_prefix="governor") as pool:
                futures = [pool.submit(self._recalculate_item, cid, window) for cid in ids]
                results = [f.result() for f in futures]
        except Exception as e:
            logger.error("Health recalculation batch failed", run_id=run_id, error=str(e))
            self._finish_job(run_id, {}, error=str(e))
            raise

        errors: Dict[str, int] = {}
        for r in results:
            if not r["success"]:
                errors[r["error"]] = errors.get(r["error"], 0) + 1
        counters = {
            "total": len(results),
            "succeeded": sum(1 for r in results if r["success"]),
            "failed": sum(1 for r in results if not r["success"]),
            "errors": errors,
        }
        self._finish_job(run_id, counters)
        logger.info("Health recalculation batch complete", run_id=run_id, window=window, **counters)
        return {"run_id": run_id, "window": window, **counters, "results": results}

    # ------------------------------------------------------------------
    # Time-based state checks and counters
    # ------------------------------------------------------------------

    def check_state(self, connection_id: int) -> List[str]:
        """Run age/cooldown transitions with the cached score. No telemetry read."""
        with self.locks.hold(connection_id):
            db = self.session_factory()
            try:
                connection = self._get_connection(db, connection_id)
                health = self._get_health(db, connection_id)
                if health is None:
                    return []
                cfg = self._config_for(db)
                now = self.clock()
                ledger = Ledger(db)
                warmup = self._ensure_warmup(db, ledger, connection, cfg, now)
                moves = self._advance_warmup(ledger, connection, warmup, health.score, cfg, now)
                db.commit()
                return moves
            except Exception:
                db.rollback()
                raise
            finally:
                db.close()

    def run_state_checks(self, triggered_by: str = "scheduler") -> Dict[str, Any]:
        """Time-based transitions for every active connection; one failure never stops the rest."""
        run_id = self._start_job("warmup_state_check", triggered_by)
        counters = {"checked": 0, "transitions": 0, "errors": 0}
        try:
            for connection_id in self._active_connection_ids():
                try:
                    moves = self.check_state(connection_id)
                    counters["checked"] += 1
                    counters["transitions"] += len(moves)
                except GovernorError as e:
                    counters["errors"] += 1
                    logger.warning("Warmup state check failed", connection_id=connection_id, error=e.code)
                except Exception as e:
                    counters["errors"] += 1
                    logger.error("Warmup state check error", connection_id=connection_id, error=str(e))
        except Exception as e:
            logger.error("Warmup state check batch failed", run_id=run_id, error=str(e))
            self._finish_job(run_id, counters, error=str(e))
            raise
        self._finish_job(run_id, counters)
        logger.info("Warmup state checks complete", run_id=run_id, **counters)
        return {"run_id": run_id, **counters}

    @staticmethod
    def _hour_start(now: datetime) -> datetime:
        return now.replace(minute=0, second=0, microsecond=0)

    def _usage(self, warmup: NumberWarmup, now: datetime):
        """(sent today, sent this hour) with stale day/hour counters read as zero."""
        sent_today = warmup.sent_today if warmup.sent_today_date == now.date() else 0
        sent_hour = warmup.sent_this_hour if warmup.hour_started_at == self._hour_start(now) else 0
        return sent_today, sent_hour

    def record_send(self, connection_id: int, count: int = 1) -> Dict[str, Any]:
        """Count messages sent against the daily and hourly limits."""
        if count < 1:
            raise InvalidParameter("count must be positive", connection_id=connection_id)
        with self.locks.hold(connection_id):
            db = self.session_factory()
            try:
                connection = self._get_connection(db, connection_id)
                cfg = self._config_for(db)
                now = self.clock()
                warmup = self._ensure_warmup(db, Ledger(db), connection, cfg, now)
                sent_today, sent_hour = self._usage(warmup, now)
                warmup.sent_today = sent_today + count
                warmup.sent_today_date = now.date()
                warmup.sent_this_hour = sent_hour + count
                warmup.hour_started_at = self._hour_start(now)
                warmup.last_sent_at = now
                db.commit()
                return {
                    "connection_id": connection_id,
                    "sent_today": warmup.sent_today,
                    "sent_this_hour": warmup.sent_this_hour,
                    "daily_limit": warmup.current_daily_limit,
                    "hourly_limit": warmup.current_hourly_limit,
                    "remaining": max(0, warmup.current_daily_limit - warmup.sent_today),
                    "remaining_hour": max(0, warmup.current_hourly_limit - warmup.sent_this_hour),
                }
            except Exception:
                db.rollback()
                raise
            finally:
                db.close()

    def validate_send(self, connection_id: int, count: int = 1) -> Dict[str, Any]:
        """Whether ``count`` more messages fit the current state and limits.

        ``wait_seconds`` is how long until capacity frees up: the end of the
        cooldown, the next hour, or the next UTC day. It is None when sending
        is allowed now or the number is suspended.
        """
        if count < 1:
            raise InvalidParameter("count must be positive", connection_id=connection_id)
        with self.locks.hold(connection_id):
            db = self.session_factory()
            try:
                connection = self._get_connection(db, connection_id)
                cfg = self._config_for(db)
                now = self.clock()
                warmup = self._ensure_warmup(db, Ledger(db), connection, cfg, now)
                sent_today, sent_hour = self._usage(warmup, now)
                remaining_today = max(0, warmup.current_daily_limit - sent_today)
                remaining_hour = max(0, warmup.current_hourly_limit - sent_hour)

                errors: List[str] = []
                wait_seconds = None
                if warmup.state == WarmupState.SUSPENDED:
                    errors.append("Number is suspended; sending is not allowed")
                elif warmup.state == WarmupState.COOLDOWN:
                    errors.append(f"Number is in cooldown until {warmup.cooldown_until}")
                    if warmup.cooldown_until is not None:
                        wait_seconds = max(0, int((warmup.cooldown_until - now).total_seconds()))
                else:
                    waits = []
                    if remaining_today < count:
                        errors.append(f"Daily limit reached, {remaining_today} messages left today")
                        tomorrow = datetime.combine(now.date() + timedelta(days=1), datetime.min.time())
                        waits.append(int((tomorrow - now).total_seconds()))
                    if remaining_hour < count:
                        errors.append(f"Hourly limit reached, {remaining_hour} messages left this hour")
                        next_hour = self._hour_start(now) + timedelta(hours=1)
                        waits.append(int((next_hour - now).total_seconds()))
                    if waits:
                        wait_seconds = max(waits)
                db.commit()
                return {
                    "connection_id": connection_id,
                    "state": warmup.state.value,
                    "can_send": not errors,
                    "errors": errors,
                    "remaining_today": remaining_today,
                    "remaining_hour": remaining_hour,
                    "wait_seconds": wait_seconds,
                }
            except Exception:
                db.rollback()
                raise
            finally:
                db.close()

    def record_blocked_messages(self, connection_id: int, count: int = 1) -> int:
        """Add to the blocked-message counter of the connection's open blocks."""
        with self.locks.hold(connection_id):
            db = self.session_factory()
            try:
                self._get_connection(db, connection_id)
                updated = Ledger(db).add_blocked_messages(connection_id, count)
                db.commit()
                return updated
            except Exception:
                db.rollback()
                raise
            finally:
                db.close()

    def reset_daily_counters(self) -> int:
        db = self.session_factory()
        try:
            today = self.clock().date()
            updated = db.query(NumberWarmup).update(
                {NumberWarmup.sent_today: 0, NumberWarmup.sent_today_date: today,
                 NumberWarmup.sent_this_hour: 0, NumberWarmup.hour_started_at: None},
                synchronize_session=False,
            )
            db.commit()
            logger.info("Daily send counters reset", warmups=updated)
            return updated
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    # ------------------------------------------------------------------
    # Provider webhook events
    # ------------------------------------------------------------------

    def _webhook_transition(self, db: Session, connection_id: int, to_state: WarmupState,
                            trigger: TriggerType, description: str, cooldown_hours: Optional[int],
                            block_severity: BlockSeverity, metadata: Dict[str, Any]) -> Dict[str, Any]:
        """Apply a webhook-sourced transition unless it would be a no-op.

        Suspended numbers ignore webhook events, and a cooldown is only ever
        extended, never shortened.
        """
        connection = self._get_connection(db, connection_id)
        cfg = self._config_for(db)
        now = self.clock()
        ledger = Ledger(db)
        warmup = self._ensure_warmup(db, ledger, connection, cfg, now)

        transitioned = False
        longer = (
            warmup.state != WarmupState.COOLDOWN
            or to_state != WarmupState.COOLDOWN
            or warmup.cooldown_until is None
            or warmup.cooldown_until < now + timedelta(hours=cooldown_hours)
        )
        if warmup.state != WarmupState.SUSPENDED and longer:
            health = self._get_health(db, connection_id)
            self._transition(
                ledger, connection, warmup, to_state, trigger, description,
                health.score if health else None, cfg, now,
                cooldown_hours=cooldown_hours, metadata=metadata,
                source=WEBHOOK, block_severity=block_severity,
            )
            transitioned = True
        return {**self._warmup_view(warmup), "transitioned": transitioned}

    def handle_blocked_event(self, connection_id: int, severity: str = "high",
                             reason: Optional[str] = None) -> Dict[str, Any]:
        """Provider reported the number blocked.

        ``critical`` suspends the number; low/medium/high put it into a
        cooldown whose length depends on the severity.
        """
        with self.locks.hold(connection_id):
            db = self.session_factory()
            try:
                cfg = self._config_for(db)
                description = reason or "Number blocked by provider"
                if severity == "critical":
                    to_state, hours = WarmupState.SUSPENDED, None
                elif severity in cfg.warmup.block_cooldown_hours:
                    to_state, hours = WarmupState.COOLDOWN, cfg.warmup.block_cooldown_hours[severity]
                else:
                    raise InvalidParameter(f"Unknown block severity '{severity}'", connection_id=connection_id)

                result = self._webhook_transition(
                    db, connection_id, to_state, TriggerType.WEBHOOK_BLOCK, description, hours,
                    BlockSeverity(severity), {"severity": severity, "reason": description},
                )
                db.commit()
                logger.warning("Blocked event handled", connection_id=connection_id, severity=severity,
                               state=result["state"], transitioned=result["transitioned"])
                return result
            except Exception:
                db.rollback()
                raise
            finally:
                db.close()

    def handle_high_failure_event(self, connection_id: int, failure_rate: float) -> Dict[str, Any]:
        """Provider reported a failure rate (percent); at or above the limit the number cools down."""
        if not 0 <= failure_rate <= 100:
            raise InvalidParameter("failure_rate must be between 0 and 100", connection_id=connection_id)
        with self.locks.hold(connection_id):
            db = self.session_factory()
            try:
                cfg = self._config_for(db)
                if failure_rate < cfg.warmup.high_failure_rate:
                    connection = self._get_connection(db, connection_id)
                    warmup = self._ensure_warmup(db, Ledger(db), connection, cfg, self.clock())
                    result = {**self._warmup_view(warmup), "transitioned": False}
                else:
                    result = self._webhook_transition(
                        db, connection_id, WarmupState.COOLDOWN, TriggerType.WEBHOOK_FAIL,
                        f"High failure rate: {failure_rate}%", cfg.warmup.high_failure_cooldown_hours,
                        BlockSeverity.HIGH, {"failure_rate": failure_rate},
                    )
                db.commit()
                logger.info("High failure event handled", connection_id=connection_id,
                            failure_rate=failure_rate, transitioned=result["transitioned"])
                return result
            except Exception:
                db.rollback()
                raise
            finally:
                db.close()

    # ------------------------------------------------------------------
    # Owner overrides
    # ------------------------------------------------------------------

    def force_cooldown(self, connection_id: int, actor: Actor, hours: int, reason: str) -> Dict[str, Any]:
        """Put a connection into COOLDOWN for ``hours`` regardless of its score."""
        with self.locks.hold(connection_id):
            db = self.session_factory()
            try:
                connection = self._get_connection(db, connection_id)
                cfg = self._config_for(db)
                low, high = cfg.warmup.min_force_cooldown_hours, cfg.warmup.max_force_cooldown_hours
                if not (low <= hours <= high):
                    raise InvalidParameter(f"hours must be between {low} and {high}",
                                           connection_id=connection_id, actor_id=actor.id)
                now = self.clock()
                ledger = Ledger(db)
                warmup = self._ensure_warmup(db, ledger, connection, cfg, now)
                health = self._get_health(db, connection_id)
                score = health.score if health else None

                self._transition(
                    ledger, connection, warmup, WarmupState.COOLDOWN, TriggerType.OWNER_FORCE,
                    f"Owner forced cooldown: {reason}", score, cfg, now,
                    actor=actor, cooldown_hours=hours,
                    metadata={"hours": hours, "reason": reason},
                )
                view = self._warmup_view(warmup)
                db.commit()
                logger.warning("Owner forced cooldown", connection_id=connection_id,
                               actor_id=actor.id, hours=hours, reason=reason)
                return view
            except Exception:
                db.rollback()
                raise
            finally:
                db.close()

    def resume(self, connection_id: int, actor: Actor, force: bool = False) -> Dict[str, Any]:
        """Move a COOLDOWN/SUSPENDED connection back to WARMING.

        Refused below the "good" score unless ``force`` is set; forced resumes
        are logged and alerted separately.
        """
        with self.locks.hold(connection_id):
            db = self.session_factory()
            try:
                connection = self._get_connection(db, connection_id)
                cfg = self._config_for(db)
                now = self.clock()
                ledger = Ledger(db)
                warmup = self._ensure_warmup(db, ledger, connection, cfg, now)
                if warmup.state not in RESTRICTED_STATES:
                    raise InvalidTransition(
                        f"Cannot resume from {warmup.state.value}; only cooldown or suspended numbers resume",
                        connection_id=connection_id, actor_id=actor.id,
                    )

                health = self._get_health(db, connection_id)
                score = health.score if health else None
                required = cfg.scoring.good_threshold
                if not force and (score is None or score < required):
                    raise ScoreTooLowError(
                        f"Health score {score} is below the required {required} to resume",
                        connection_id=connection_id, actor_id=actor.id, score=score, required=required,
                    )

                self._transition(
                    ledger, connection, warmup, WarmupState.WARMING, TriggerType.OWNER_RESUME,
                    "Owner forced resume" if force else "Owner resumed", score, cfg, now,
                    actor=actor, metadata={"forced": force, "score": score},
                )

                # The reconnect block only lifts on an explicit resume.
                current = self._current_flags(connection)
                released = current.model_copy(update={"block_reconnect": False})
                target = evaluate_actions(score, released, cfg.actions) if score is not None else released
                self._apply_actions(ledger, connection, warmup, current, target, score, cfg, now, actor=actor)
                self._mirror_flags(health, target)

                if force:
                    alerts.forced_override(
                        db, connection, "resume", actor.id,
                        f"Resumed with score {score} below the required {required}. "
                        "The number may fall back into cooldown on the next recalculation.",
                        details={"score": score, "required": required},
                    )
                view = self._warmup_view(warmup)
                db.commit()
                log = logger.warning if force else logger.info
                log("Warmup resumed", connection_id=connection_id, actor_id=actor.id,
                    forced=force, score=score)
                return view
            except Exception:
                db.rollback()
                raise
            finally:
                db.close()

    def reset_actions(self, connection_id: int, actor: Actor) -> Dict[str, Any]:
        """Clear every action flag; refused below the "good" score."""
        return self._reset_actions(connection_id, actor, forced=False)

    def force_reset_actions(self, connection_id: int, actor: Actor) -> Dict[str, Any]:
        """Clear every action flag regardless of score. Audited at elevated severity."""
        return self._reset_actions(connection_id, actor, forced=True)

    def _reset_actions(self, connection_id: int, actor: Actor, forced: bool) -> Dict[str, Any]:
        with self.locks.hold(connection_id):
            db = self.session_factory()
            try:
                connection = self._get_connection(db, connection_id)
                cfg = self._config_for(db)
                health = self._get_health(db, connection_id)
                score = health.score if health else None
                required = cfg.scoring.good_threshold
                below_gate = score is None or score < required
                if below_gate and not forced:
                    raise ScoreTooLowError(
                        f"Health score {score} is below the required {required} to reset actions",
                        connection_id=connection_id, actor_id=actor.id, score=score, required=required,
                    )

                now = self.clock()
                ledger = Ledger(db)
                warmup = self._ensure_warmup(db, ledger, connection, cfg, now)
                current = self._current_flags(connection)
                _, cleared = self._apply_actions(ledger, connection, warmup, current, ActionFlags(),
                                                 score, cfg, now, actor=actor)
                self._mirror_flags(health, ActionFlags())

                result = {"connection_id": connection_id, "score": score, "cleared": cleared, "forced": forced}
                if forced:
                    severity = AlertSeverity.CRITICAL if below_gate else AlertSeverity.WARNING
                    alerts.forced_override(db, connection, "force_reset_actions", actor.id,
                                           f"All protective actions cleared by owner. {FORCED_RESET_WARNING}",
                                           severity=severity,
                                           details={"score": score, "cleared": cleared})
                    result["warning"] = FORCED_RESET_WARNING
                db.commit()

                if forced:
                    log = logger.critical if below_gate else logger.warning
                    log("Health actions force reset", connection_id=connection_id, actor_id=actor.id,
                        score=score, cleared=cleared, warning=FORCED_RESET_WARNING)
                else:
                    logger.info("Health actions reset", connection_id=connection_id,
                                actor_id=actor.id, score=score, cleared=cleared)
                return result
            except Exception:
                db.rollback()
                raise
            finally:
                db.close()

    # ------------------------------------------------------------------
    # Read models
    # ------------------------------------------------------------------

    @staticmethod
    def _warmup_view(warmup: NumberWarmup) -> Dict[str, Any]:
        return {
            "connection_id": warmup.connection_id,
            "state": warmup.state.value,
            "previous_state": warmup.previous_state.value if warmup.previous_state else None,
            "state_changed_at": warmup.state_changed_at,
            "number_age_days": warmup.number_age_days,
            "daily_limit": warmup.current_daily_limit,
            "hourly_limit": warmup.current_hourly_limit,
            "sent_today": warmup.sent_today,
            "sent_this_hour": warmup.sent_this_hour or 0,
            "force_cooldown": warmup.force_cooldown,
            "cooldown_until": warmup.cooldown_until,
            "cooldown_reason": warmup.cooldown_reason,
        }

    def get_config(self) -> Dict[str, Any]:
        db = self.session_factory()
        try:
            return self._config_for(db).model_dump()
        finally:
            db.close()

    def summary(self) -> Dict[str, Any]:
        db = self.session_factory()
        try:
            cfg = self._config_for(db)
            rows = (
                db.query(WhatsappConnection, HealthScore)
                .outerjoin(HealthScore, HealthScore.connection_id == WhatsappConnection.id)
                .filter(WhatsappConnection.status == ConnectionStatus.ACTIVE)
                .order_by(WhatsappConnection.id)
                .all()
            )
            by_status = {s.value: 0 for s in HealthStatus}
            by_status["unknown"] = 0
            needs_attention = []
            scores = []
            for connection, health in rows:
                if health is None:
                    by_status["unknown"] += 1
                    continue
                by_status[health.status] += 1
                scores.append(health.score)
                if health.score < cfg.scoring.good_threshold:
                    needs_attention.append({
                        "connection_id": connection.id,
                        "phone_number": connection.phone_number,
                        "score": health.score,
                        "status": health.status,
                        "warmup_state": connection.warmup_state,
                    })

            by_state = {s.value: 0 for s in WarmupState}
            for state, count in db.query(NumberWarmup.state, func.count(NumberWarmup.id)).group_by(NumberWarmup.state):
                by_state[state.value] = count

            needs_attention.sort(key=lambda item: item["score"])
            return {
                "total_connections": len(rows),
                "average_score": round(sum(scores) / len(scores), 2) if scores else None,
                "by_status": by_status,
                "by_warmup_state": by_state,
                "needs_attention": needs_attention,
            }
        finally:
            db.close()

    def connection_detail(self, connection_id: int) -> Dict[str, Any]:
        db = self.session_factory()
        try:
            connection = self._get_connection(db, connection_id)
            health = self._get_health(db, connection_id)
            warmup = db.query(NumberWarmup).filter(NumberWarmup.connection_id == connection_id).first()
            flags = self._current_flags(connection)

            health_view = None
            if health is not None:
                health_view = _as_dict(health)
                health_view["recommendations"] = json.loads(health.recommendations_json or "[]")
                health_view.pop("recommendations_json", None)

            return {
                "connection_id": connection.id,
                "tenant_id": connection.tenant_id,
                "phone_number": connection.phone_number,
                "status": connection.status.value,
                "health": health_view,
                "actions": flags.model_dump(),
                "throttling": {
                    "reduced_batch_size": connection.reduced_batch_size,
                    "added_delay_ms": connection.added_delay_ms,
                    "reconnect_blocked_until": connection.reconnect_blocked_until,
                },
                "warmup": self._warmup_view(warmup) if warmup else None,
                "open_blocks": [_as_dict(b) for b in Ledger(db).open_blocks(connection_id)],
            }
        finally:
            db.close()

    def trend(self, connection_id: int, days: int = 7) -> Dict[str, Any]:
        """Score history over the last ``days`` (clamped to 1..30) with a direction."""
        days = max(1, min(MAX_TREND_DAYS, days))
        db = self.session_factory()
        try:
            self._get_connection(db, connection_id)
            since = self.clock() - timedelta(days=days)
            points = [
                {"recorded_at": p.recorded_at, "score": p.score, "status": p.status, "grade": p.grade}
                for p in Ledger(db).score_points(connection_id, since)
            ]
        finally:
            db.close()

        direction = "flat"
        change = 0.0
        if len(points) >= 2:
            change = round(points[-1]["score"] - points[0]["score"], 2)
            if change > TREND_DELTA:
                direction = "improving"
            elif change < -TREND_DELTA:
                direction = "declining"
        return {
            "connection_id": connection_id,
            "days": days,
            "direction": direction,
            "change": change,
            "points": points,
        }

    def history(self, connection_id: int, kind: str, page: int = 1, page_size: int = 20) -> Dict[str, Any]:
        db = self.session_factory()
        try:
            self._get_connection(db, connection_id)
            result = Ledger(db).history(connection_id, kind, page, page_size)
            result["items"] = [_as_dict(item) for item in result["items"]]
            result["kind"] = kind
            return result
        finally:
            db.close()

    def recent_runs(self, limit: int = 20) -> List[Dict[str, Any]]:
        db = self.session_factory()
        try:
            runs = db.query(JobRun).order_by(JobRun.run_id.desc()).limit(limit).all()
            items = []
            for run in runs:
                item = _as_dict(run)
                item["counters"] = json.loads(run.counters_json) if run.counters_json else None
                item.pop("counters_json", None)
                items.append(item)
            return items
        finally:
            db.close()
