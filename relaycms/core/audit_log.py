"""Audit logging for security events."""

import json
from pathlib import Path
from typing import Any

from fastapi import Request

from .logging import get_logger
from .models import AuditEvent, utc_now

logger = get_logger("audit")


def client_info(request: Request) -> dict[str, str | None]:
    """Client address and user agent of a request."""
    return {
        "ip": request.client.host if request.client else None,
        "user_agent": request.headers.get("user-agent"),
    }


class AuditLogger:
    """Append-only audit log for security events.

    Logs are stored in JSON Lines format, one complete JSON object per
    line.
    """

    def __init__(self, log_path: Path):
        """Initialize audit logger.

        Args:
            log_path: Path to audit log file.
        """
        self.log_path = log_path

    def log(
        self,
        event: str,
        actor: str,
        ip: str | None = None,
        user_agent: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        """Log an audit event.

        A failing write is reported to the application log and otherwise
        ignored; the audited action has already happened.

        Args:
            event: Event type (e.g., "login_success", "menu_save").
            actor: Username or identifier of who performed action.
            ip: Client IP address.
            user_agent: Client user agent.
            details: Additional event-specific details.
        """
        entry = AuditEvent(
            timestamp=utc_now(),
            event=event,
            actor=actor,
            ip=ip,
            user_agent=user_agent,
            details=details or {},
        )

        try:
            self.log_path.parent.mkdir(parents=True, exist_ok=True)
            with open(self.log_path, "a", encoding="utf-8") as f:
                f.write(json.dumps(entry.model_dump(mode="json")) + "\n")
        except OSError as e:
            logger.error("Could not write audit log %s: %s", self.log_path, e)

    def log_login_success(self, username: str, ip: str | None = None, user_agent: str | None = None) -> None:
        self.log("login_success", actor=username, ip=ip, user_agent=user_agent)

    def log_login_failed(
        self,
        username: str,
        ip: str | None = None,
        user_agent: str | None = None,
        reason: str = "invalid_credentials",
    ) -> None:
        """Log failed login attempt.

        Args:
            username: Attempted username.
            ip: Client IP.
            user_agent: Client user agent.
            reason: Failure reason ("invalid_credentials" or "locked_out").
        """
        self.log(
            "login_failed",
            actor=username,
            ip=ip,
            user_agent=user_agent,
            details={"reason": reason},
        )

    def log_logout(self, username: str, ip: str | None = None) -> None:
        self.log("logout", actor=username, ip=ip)

    def log_password_change(self, username: str, ip: str | None = None) -> None:
        self.log("password_change", actor=username, ip=ip)

    def log_theme_change(self, theme: str, actor: str, ip: str | None = None) -> None:
        self.log("theme_change", actor=actor, ip=ip, details={"theme": theme})

    def log_menu_save(self, menu: str, actor: str, ip: str | None = None) -> None:
        self.log("menu_save", actor=actor, ip=ip, details={"menu": menu})

    def log_user_change(self, action: str, username: str, actor: str = "cli") -> None:
        """Log a user created or reset from the command line.

        Args:
            action: "create" or "reset_password".
            username: Affected user.
            actor: Who made the change.
        """
        self.log(f"user_{action}", actor=actor, details={"username": username})

    def read_recent(self, limit: int = 100) -> list[dict]:
        """Read recent audit log entries.

        Args:
            limit: Maximum entries to return.

        Returns:
            List of recent log entries (newest first).
        """
        entries = []
        try:
            with open(self.log_path, "r", encoding="utf-8") as f:
                for line in f:
                    line = line.strip()
                    if not line:
                        continue
                    try:
                        entries.append(json.loads(line))
                    except json.JSONDecodeError:
                        continue
        except FileNotFoundError:
            return []
        except OSError as e:
            logger.error("Could not read audit log %s: %s", self.log_path, e)
            return []

        return list(reversed(entries[-limit:]))
