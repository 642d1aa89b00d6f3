"""
Permission Engine - Alerting.

============================================================
PURPOSE
============================================================
Notification hand-off for permission state changes.

Provides:
- Tiered alerts for upgrades and downgrades
- Telegram delivery over aiohttp
- Per-asset rate limiting
- A logging sender for development

============================================================
ALERT PHILOSOPHY
============================================================
- Read-only: an assessment is rendered, never modified
- Downgrades to NO_TRADE always go out
- Alerts describe state and reasons, never instruct
- Delivery failures are logged, never raised into the core

============================================================
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Protocol

import aiohttp

from .config import AlertingConfig
from .types import (
    PermissionAssessment,
    PermissionState,
    PermissionStateChange,
    StateChangeDirection,
)

logger = logging.getLogger(__name__)


# ============================================================
# ALERT TIERS
# ============================================================


class AlertTier(str, Enum):
    T1_INFO = "T1_INFO"
    T2_WARNING = "T2_WARNING"
    T3_ALERT = "T3_ALERT"
    T4_CRITICAL = "T4_CRITICAL"

    @classmethod
    def for_change(cls, change: PermissionStateChange) -> "AlertTier":
        """
        Tier a state change.

        - Downgrade to NO_TRADE: T4_CRITICAL
        - Other downgrade: T3_ALERT
        - Upgrade: T2_WARNING
        - Unchanged: T1_INFO
        """
        if change.direction == StateChangeDirection.DOWNGRADE:
            if change.current_state == PermissionState.NO_TRADE:
                return cls.T4_CRITICAL
            return cls.T3_ALERT
        if change.direction == StateChangeDirection.UPGRADE:
            return cls.T2_WARNING
        return cls.T1_INFO


_TIER_EMOJI = {
    AlertTier.T1_INFO: "ℹ️",
    AlertTier.T2_WARNING: "🟡",
    AlertTier.T3_ALERT: "🟠",
    AlertTier.T4_CRITICAL: "🔴",
}


# ============================================================
# ALERT MESSAGE DATACLASS
# ============================================================


@dataclass(frozen=True)
class PermissionAlert:
    """
    Structured alert for a permission state change.

    ============================================================
    FIELDS
    ============================================================
    - tier: T1_INFO .. T4_CRITICAL
    - asset / previous_state / current_state: the change
    - message: primary reason and current observation
    - caution_points: copied from the assessment explanation

    ============================================================
    """

    tier: AlertTier
    asset: str
    previous_state: PermissionState
    current_state: PermissionState
    direction: StateChangeDirection
    title: str
    message: str
    uncertainty: str
    timestamp: datetime
    assessment_id: str
    caution_points: List[str] = field(default_factory=list)
    context: Dict[str, Any] = field(default_factory=dict)

    def to_telegram_message(self, include_details: bool = True) -> str:
        """
        Format alert for Telegram.

        Args:
            include_details: Whether to include gate statuses and cautions

        Returns:
            Message string with Telegram HTML markup
        """
        lines = [
            f"{_TIER_EMOJI[self.tier]} <b>PERMISSION {self.direction.value}</b>",
            f"<b>Asset:</b> {self.asset}",
            f"<b>State:</b> {self.previous_state.value} → {self.current_state.value}",
            f"<b>Uncertainty:</b> {self.uncertainty}",
            f"<b>Time:</b> {self.timestamp.strftime('%Y-%m-%d %H:%M:%S')} UTC",
            "",
            self.message,
        ]

        if include_details and self.context:
            lines.append("")
            lines.append("<b>Gates:</b>")
            for gate, status in self.context.get("gates", {}).items():
                lines.append(f"  • {gate}: {status}")

        if include_details and self.caution_points:
            lines.append("")
            lines.append("<b>Cautions:</b>")
            for caution in self.caution_points:
                lines.append(f"  • {caution}")

        return "\n".join(lines)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "tier": self.tier.value,
            "asset": self.asset,
            "previous_state": self.previous_state.value,
            "current_state": self.current_state.value,
            "direction": self.direction.value,
            "title": self.title,
            "message": self.message,
            "uncertainty": self.uncertainty,
            "timestamp": self.timestamp.isoformat(),
            "assessment_id": self.assessment_id,
            "caution_points": list(self.caution_points),
            "context": self.context,
        }


# ============================================================
# ALERT SENDER PROTOCOL
# ============================================================


class AlertSender(Protocol):
    """
    Protocol for alert sending implementations.

    Implementations return False on failure instead of raising.
    """

    async def send(self, alert: PermissionAlert) -> bool:
        ...


# ============================================================
# TELEGRAM ALERT SENDER
# ============================================================


class TelegramAlertSender:
    """
    Send permission alerts via the Telegram Bot API.

    The bot must be a member of the target chat. The HTTP
    session is created lazily and reused; call close() on
    shutdown.
    """

    def __init__(
        self,
        bot_token: str,
        chat_id: str,
        include_details: bool = True,
        timeout_seconds: float = 10.0,
        session: Optional[aiohttp.ClientSession] = None,
    ):
        self._bot_token = bot_token
        self._chat_id = chat_id
        self._include_details = include_details
        self._timeout = aiohttp.ClientTimeout(total=timeout_seconds)
        self._session = session

    @property
    def is_configured(self) -> bool:
        return bool(self._bot_token and self._chat_id)

    async def send(self, alert: PermissionAlert) -> bool:
        """
        Send alert via Telegram.

        Returns:
            True if Telegram accepted the message
        """
        if not self.is_configured:
            logger.debug(f"Telegram not configured, skipping alert for {alert.asset}")
            return False

        url = f"https://api.telegram.org/bot{self._bot_token}/sendMessage"
        payload = {
            "chat_id": self._chat_id,
            "text": alert.to_telegram_message(include_details=self._include_details),
            "parse_mode": "HTML",
        }

        try:
            if self._session is None:
                self._session = aiohttp.ClientSession(timeout=self._timeout)

            async with self._session.post(url, json=payload) as response:
                if response.status == 200:
                    logger.info(f"Permission alert sent: {alert.asset} {alert.tier.value}")
                    return True

                body = await response.text()
                logger.error(f"Telegram API error {response.status}: {body}")
                return False

        except Exception as e:
            logger.error(f"Failed to send Telegram alert: {e}")
            return False

    async def close(self) -> None:
        """Close HTTP session."""
        if self._session:
            await self._session.close()
            self._session = None


# ============================================================
# LOGGING ALERT SENDER (FOR DEVELOPMENT)
# ============================================================


class LoggingAlertSender:
    """Write alerts to the log instead of a chat."""

    def __init__(self, level: int = logging.INFO):
        self._level = level

    async def send(self, alert: PermissionAlert) -> bool:
        logger.log(
            self._level,
            f"[{alert.tier.value}] {alert.title} | {alert.message} | uncertainty={alert.uncertainty}",
        )
        return True


# ============================================================
# RATE LIMITER
# ============================================================


class AlertRateLimiter:
    """
    Rate limits alerts per asset.

    - Track last alert time per asset
    - Enforce minimum interval between alerts
    - Always allow T4_CRITICAL alerts
    """

    def __init__(self, min_interval_seconds: float = 300.0):
        self._min_interval = timedelta(seconds=min_interval_seconds)
        self._last_alerts: Dict[str, datetime] = {}

    def should_send(self, asset: str, tier: AlertTier, now: Optional[datetime] = None) -> bool:
        now = now or datetime.now(timezone.utc)

        if tier == AlertTier.T4_CRITICAL:
            return True

        last_alert = self._last_alerts.get(asset)
        if last_alert is None:
            return True

        return (now - last_alert) >= self._min_interval

    def record_sent(self, asset: str, now: Optional[datetime] = None) -> None:
        self._last_alerts[asset] = now or datetime.now(timezone.utc)

    def reset(self) -> None:
        """Clear all rate limit state."""
        self._last_alerts.clear()


# ============================================================
# PERMISSION ALERTING SERVICE
# ============================================================


class PermissionAlertingService:
    """
    Turns permission state changes into delivered alerts.

    ============================================================
    RESPONSIBILITIES
    ============================================================
    1. Decide whether a change warrants an alert
    2. Build the alert from the change and its assessment
    3. Rate limit per asset
    4. Deliver through every configured sender

    ============================================================
    """

    def __init__(
        self,
        config: Optional[AlertingConfig] = None,
        senders: Optional[List[AlertSender]] = None,
    ):
        self._config = config or AlertingConfig()
        self._senders: List[AlertSender] = list(senders or [])
        self._rate_limiter = AlertRateLimiter(
            min_interval_seconds=self._config.min_seconds_between_alerts
        )

    def add_sender(self, sender: AlertSender) -> None:
        """Add an alert sender."""
        self._senders.append(sender)

    def should_alert(self, change: PermissionStateChange) -> bool:
        if change.direction == StateChangeDirection.DOWNGRADE:
            # NO_TRADE downgrades are never suppressed by config
            return self._config.alert_on_downgrade or change.current_state == PermissionState.NO_TRADE
        if change.direction == StateChangeDirection.UPGRADE:
            return self._config.alert_on_upgrade
        return self._config.alert_on_unchanged

    def build_alert(
        self,
        change: PermissionStateChange,
        assessment: PermissionAssessment,
    ) -> PermissionAlert:
        """Build an alert from a change and the assessment that produced it."""
        tier = AlertTier.for_change(change)
        explanation = assessment.explanation

        return PermissionAlert(
            tier=tier,
            asset=change.asset,
            previous_state=change.previous_state,
            current_state=change.current_state,
            direction=change.direction,
            title=f"{change.asset} permission {change.direction.value.lower()}: {change.current_state.value}",
            message=f"Reason: {assessment.primary_reason}. {explanation.current_observation}",
            uncertainty=assessment.uncertainty_level.value,
            timestamp=change.changed_at,
            assessment_id=assessment.id,
            caution_points=list(explanation.caution_points),
            context={
                "gates": {
                    gate.gate_name.value: gate.status.value
                    for gate in assessment.gate_evaluations.gates
                },
                "conflicts": [c.conflict_type.value for c in assessment.conflicts],
            },
        )

    async def process_change(
        self,
        change: Optional[PermissionStateChange],
        assessment: PermissionAssessment,
        now: Optional[datetime] = None,
    ) -> Optional[PermissionAlert]:
        """
        Process a state change and send alerts if needed.

        Returns:
            PermissionAlert if at least one sender delivered it, None otherwise
        """
        if change is None or not self.should_alert(change):
            return None

        alert = self.build_alert(change, assessment)

        if not self._rate_limiter.should_send(alert.asset, alert.tier, now):
            logger.warning(f"Alert rate limited for {alert.asset} ({alert.tier.value})")
            return None

        sent = False
        for sender in self._senders:
            try:
                if await sender.send(alert):
                    sent = True
            except Exception as e:
                logger.error(f"Alert sender {type(sender).__name__} failed: {e}")

        if sent:
            self._rate_limiter.record_sent(alert.asset, now)
            return alert

        return None


# ============================================================
# FACTORY FUNCTIONS
# ============================================================


def create_alerting_service(config: Optional[AlertingConfig] = None) -> PermissionAlertingService:
    """
    Create an alerting service from configuration.

    Telegram is added when enabled and credentials are present;
    the logging sender is always attached.
    """
    config = config or AlertingConfig()
    service = PermissionAlertingService(config=config)

    if config.telegram_enabled and config.telegram_bot_token and config.telegram_chat_id:
        service.add_sender(TelegramAlertSender(
            bot_token=config.telegram_bot_token,
            chat_id=config.telegram_chat_id,
            include_details=config.telegram_include_details,
            timeout_seconds=config.telegram_timeout_seconds,
        ))

    service.add_sender(LoggingAlertSender())
    return service
