"""Structured log message templates for consistent, human-readable logging.

Hey future me - auth problems are the #1 support question for the media widget. Instead of
"Error: 401", these templates produce:

    🔑 Spotify Session Expired
    ├─ Reason: Refresh token invalid: invalid_grant
    └─ 💡 Reconnect Spotify from the player widget

Usage:
    from mediasession.infrastructure.observability.log_messages import LogMessages

    logger.warning(LogMessages.session_expired(service="Spotify", reason=str(exc)))
"""

from dataclasses import dataclass
from typing import Any


# Yo, raw error strings land in these fields and often contain braces (JSON bodies, dict
# reprs). Only placeholders get substituted, anything unformattable is logged as-is.
def _render(template: str, kwargs: dict[str, Any]) -> str:
    if not kwargs:
        return template
    try:
        return template.format(**kwargs)
    except (KeyError, IndexError, ValueError):
        return template


@dataclass
class LogTemplate:
    """A reusable log message template with placeholders."""

    icon: str
    title: str
    fields: dict[str, str]
    hint: str | None = None

    def format(self, **kwargs: Any) -> str:
        """Format the template with provided values.

        Returns:
            Multi-line log message with icon, title, tree fields and optional hint
        """
        lines = [f"{self.icon} {self.title}"]

        field_items = list(self.fields.items())
        for i, (key, value_template) in enumerate(field_items):
            prefix = "└─" if i == len(field_items) - 1 and not self.hint else "├─"
            value = _render(value_template, kwargs)
            lines.append(f"{prefix} {key}: {value}")

        if self.hint:
            lines.append(f"└─ 💡 {_render(self.hint, kwargs)}")

        return "\n".join(lines)


class LogMessages:
    """Collection of standardized log message templates."""

    # === Connection Errors ===

    @staticmethod
    def connection_failed(
        service: str,
        target: str,
        error: str | None = None,
        hint: str | None = None,
    ) -> str:
        """Format a connection failure message.

        Args:
            service: Service name (e.g., "Spotify", "token backup")
            target: Connection target (URL, table)
            error: Error message from exception
            hint: Custom troubleshooting hint
        """
        fields = {"Service": service, "Target": target}
        if error:
            fields["Reason"] = error

        template = LogTemplate(
            icon="🔴",
            title=f"{service} Connection Failed",
            fields=fields,
            hint=hint or f"Check if {service} is reachable",
        )
        return template.format()

    # === Worker Lifecycle ===

    @staticmethod
    def worker_started(worker: str, interval: float | None = None) -> str:
        fields: dict[str, str] = {}
        if interval:
            fields["Interval"] = f"{interval}s"
        return LogTemplate(icon="✅", title=f"{worker} Started", fields=fields).format()

    @staticmethod
    def worker_failed(worker: str, error: str, will_retry: bool = True) -> str:
        """Format a worker iteration failure message."""
        template = LogTemplate(
            icon="⚠️" if will_retry else "🔴",
            title=f"{worker} Iteration Failed",
            fields={"Error": error, "Will retry": "yes" if will_retry else "no"},
        )
        return template.format()

    # === Authentication ===

    @staticmethod
    def session_expired(service: str, reason: str | None = None) -> str:
        """Format a terminal session expiry (credentials deleted)."""
        fields = {"Reason": reason} if reason else {}
        template = LogTemplate(
            icon="🔑",
            title=f"{service} Session Expired",
            fields=fields,
            hint=f"Reconnect {service} from the player widget",
        )
        return template.format()

    @staticmethod
    def auth_retry_failed(service: str, endpoint: str, status: int | None) -> str:
        """Format a 401/403 that survived the forced refresh."""
        template = LogTemplate(
            icon="🔑",
            title=f"{service} Rejected Refreshed Token",
            fields={"Endpoint": endpoint, "Status": str(status)},
            hint="Token was refreshed once and still rejected - not retrying again",
        )
        return template.format()

    @staticmethod
    def backup_sync_failed(operation: str, user_id: str, error: str) -> str:
        """Format a failed remote backup write/delete (non-fatal)."""
        template = LogTemplate(
            icon="⚠️",
            title="Token Backup Sync Failed",
            fields={"Operation": operation, "User": user_id, "Error": error},
            hint="Local store is still authoritative - nothing to do unless this persists",
        )
        return template.format()

    # === Configuration ===

    @staticmethod
    def config_invalid(setting: str, value: Any, expected: str, hint: str | None = None) -> str:
        template = LogTemplate(
            icon="⚙️",
            title="Invalid Configuration",
            fields={"Setting": setting, "Value": str(value), "Expected": expected},
            hint=hint or "Update the environment variable and restart",
        )
        return template.format()
