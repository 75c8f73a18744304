"""Database models package."""
from wa_governor.db.models.connection import WhatsappConnection, ConnectionStatus
from wa_governor.db.models.message_log import MessageLog, MessageStatus
from wa_governor.db.models.health_score import HealthScore, HealthScoreHistory, HealthStatus
from wa_governor.db.models.warmup import NumberWarmup, WarmupState
from wa_governor.db.models.warmup_ledger import (
    WarmupStateEvent, WarmupLimitChange, WarmupAutoBlock,
    TriggerType, LimitType, LimitChangeReason, BlockType, BlockSeverity, ResolvedByType,
)
from wa_governor.db.models.health_alert import HealthAlert, AlertType, AlertSeverity
from wa_governor.db.models.job_run import JobRun, JobStatus
from wa_governor.db.models.settings import Settings

__all__ = [
    "WhatsappConnection",
    "ConnectionStatus",
    "MessageLog",
    "MessageStatus",
    "HealthScore",
    "HealthScoreHistory",
    "HealthStatus",
    "NumberWarmup",
    "WarmupState",
    "WarmupStateEvent",
    "WarmupLimitChange",
    "WarmupAutoBlock",
    "TriggerType",
    "LimitType",
    "LimitChangeReason",
    "BlockType",
    "BlockSeverity",
    "ResolvedByType",
    "HealthAlert",
    "AlertType",
    "AlertSeverity",
    "JobRun",
    "JobStatus",
    "Settings",
]
