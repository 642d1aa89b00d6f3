"""
Permission Engine - Configuration.

============================================================
PURPOSE
============================================================
Settings for the Permission State Engine and its alerting
hand-off.

The state cascade itself has no tunable thresholds beyond
the WEAK_PASS count that triggers WAIT. Gate thresholds live
in gate_evaluator.config.

============================================================
"""

import os
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from dotenv import load_dotenv

from gate_evaluator.config import GateEvaluatorConfig
from gate_evaluator.types import ConfigurationError


# ============================================================
# ALERTING CONFIGURATION
# ============================================================


@dataclass(frozen=True)
class AlertingConfig:
    """
    Configuration for permission state change alerting.

    ============================================================
    ALERT PHILOSOPHY
    ============================================================
    - Always alert on a downgrade to NO_TRADE
    - Rate-limit repeated alerts per asset
    - Alerts describe state, never instruct

    ============================================================
    """

    alert_on_downgrade: bool = True
    alert_on_upgrade: bool = True
    alert_on_unchanged: bool = False

    # Rate limiting
    min_seconds_between_alerts: float = 300.0

    # Telegram integration
    telegram_enabled: bool = False
    telegram_bot_token: Optional[str] = field(default=None, repr=False)
    telegram_chat_id: Optional[str] = None
    telegram_include_details: bool = True
    telegram_timeout_seconds: float = 10.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "alert_on_downgrade": self.alert_on_downgrade,
            "alert_on_upgrade": self.alert_on_upgrade,
            "alert_on_unchanged": self.alert_on_unchanged,
            "min_seconds_between_alerts": self.min_seconds_between_alerts,
            "telegram_enabled": self.telegram_enabled,
            "telegram_chat_id": self.telegram_chat_id,
            "telegram_include_details": self.telegram_include_details,
            "telegram_timeout_seconds": self.telegram_timeout_seconds,
        }


# ============================================================
# MASTER CONFIGURATION
# ============================================================


@dataclass(frozen=True)
class PermissionEngineConfig:
    """
    Master configuration for the Permission State Engine.

    Aggregates gate thresholds, engine settings and alerting.
    """

    gates: GateEvaluatorConfig = field(default_factory=GateEvaluatorConfig)
    alerting: AlertingConfig = field(default_factory=AlertingConfig)

    # An assessment expires this many seconds after it was made
    validity_seconds: float = 300.0

    # WEAK_PASS gates needed to force WAIT
    wait_weak_pass_threshold: int = 3

    engine_version: str = "1.0.0"

    @classmethod
    def from_env(cls) -> "PermissionEngineConfig":
        """Load configuration from environment variables."""
        load_dotenv()

        defaults = AlertingConfig()
        bot_token = os.getenv("TELEGRAM_BOT_TOKEN")
        chat_id = os.getenv("TELEGRAM_CHAT_ID")

        alerting = AlertingConfig(
            min_seconds_between_alerts=float(os.getenv(
                "ALERT_MIN_INTERVAL_SECONDS", str(defaults.min_seconds_between_alerts)
            )),
            telegram_enabled=bool(bot_token and chat_id),
            telegram_bot_token=bot_token,
            telegram_chat_id=chat_id,
        )

        return cls(
            gates=GateEvaluatorConfig.from_env(),
            alerting=alerting,
            validity_seconds=float(os.getenv("PERMISSION_VALIDITY_SECONDS", "300")),
        )

    def validate(self) -> List[str]:
        """Validate configuration, return list of errors."""
        errors = list(self.gates.validate())

        if self.validity_seconds <= 0:
            errors.append("validity_seconds must be positive")

        if not 1 <= self.wait_weak_pass_threshold <= 4:
            errors.append("wait_weak_pass_threshold must be between 1 and 4")

        if self.alerting.min_seconds_between_alerts < 0:
            errors.append("alerting.min_seconds_between_alerts cannot be negative")

        if self.alerting.telegram_enabled and not (
            self.alerting.telegram_bot_token and self.alerting.telegram_chat_id
        ):
            errors.append("Telegram alerting requires TELEGRAM_BOT_TOKEN and TELEGRAM_CHAT_ID")

        return errors

    def ensure_valid(self) -> "PermissionEngineConfig":
        """Raise ConfigurationError if validate() reports anything."""
        errors = self.validate()
        if errors:
            raise ConfigurationError(tuple(errors))
        return self

    def to_dict(self) -> Dict[str, Any]:
        return {
            "gates": self.gates.to_dict(),
            "alerting": self.alerting.to_dict(),
            "validity_seconds": self.validity_seconds,
            "wait_weak_pass_threshold": self.wait_weak_pass_threshold,
            "engine_version": self.engine_version,
        }


def get_default_config() -> PermissionEngineConfig:
    """Return the default permission engine configuration."""
    return PermissionEngineConfig()
