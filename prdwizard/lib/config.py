"""
Configuration loaders for the PRD wizard.

Paths are derived from a control directory (shared state, reports, scratch)
and a project directory (where documents are resolved and issues are queued).
Oracle settings come from profile.yaml in the control directory.
"""

import logging
from dataclasses import dataclass
from pathlib import Path

import yaml

logger = logging.getLogger(__name__)

# Per-call oracle timeout bounds (seconds)
ORACLE_DEFAULT_TIMEOUT_SEC = 45
ORACLE_TIMEOUT_CAP_SEC = 1800
RETRY_MAX_ATTEMPTS_CAP = 5
RETRY_BACKOFF_CAP_SEC = 3


@dataclass
class PRDPaths:
    """Filesystem layout for sessions, conversations and generated documents."""
    control_dir: Path
    project_dir: Path

    @classmethod
    def from_dirs(cls, control_dir, project_dir) -> "PRDPaths":
        return cls(
            control_dir=Path(control_dir).expanduser().resolve(),
            project_dir=Path(project_dir).expanduser().resolve(),
        )

    @property
    def reports_dir(self) -> Path:
        return self.control_dir / "reports"

    @property
    def prd_dir(self) -> Path:
        return self.reports_dir / "prd"

    @property
    def session_store_file(self) -> Path:
        return self.prd_dir / "sessions.json"

    @property
    def legacy_session_store_file(self) -> Path:
        return self.control_dir / "prd-sessions.json"

    @property
    def tmp_dir(self) -> Path:
        return self.control_dir / "tmp"

    @property
    def queue_dir(self) -> Path:
        return self.project_dir / ".ralph"

    @property
    def issues_dir(self) -> Path:
        return self.queue_dir / "issues"

    @property
    def queue_scan_dirs(self) -> list[Path]:
        """Issue queue dirs searched for already-imported story ids."""
        return [self.issues_dir] + [self.queue_dir / name for name in ("in-progress", "done", "blocked")]

    def conversation_dir(self, chat_id: int) -> Path:
        return self.prd_dir / "conversations" / str(int(chat_id))

    def conversation_file(self, chat_id: int) -> Path:
        return self.conversation_dir(chat_id) / "conversation.md"

    def default_document_file(self, chat_id: int) -> Path:
        return self.reports_dir / f"prd-{int(chat_id)}.json"


@dataclass
class OracleProfile:
    """Settings for the external reasoning CLI (codex)."""
    enabled: bool = True
    command: str = "codex"
    model: str = ""
    approval: str = "never"
    sandbox: str = "workspace-write"
    timeout_sec: int = ORACLE_DEFAULT_TIMEOUT_SEC
    retry_max_attempts: int = 3
    retry_backoff_sec: int = 1

    def resolved_timeout(self) -> int:
        """Per-call timeout with the default and hard cap applied."""
        timeout = self.timeout_sec if self.timeout_sec > 0 else ORACLE_DEFAULT_TIMEOUT_SEC
        return min(timeout, ORACLE_TIMEOUT_CAP_SEC)

    def resolved_attempts(self) -> int:
        return max(1, min(self.retry_max_attempts, RETRY_MAX_ATTEMPTS_CAP))

    def resolved_backoff(self) -> int:
        return max(1, min(self.retry_backoff_sec, RETRY_BACKOFF_CAP_SEC))


def _as_int(value, default: int) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def load_oracle_profile(control_dir: Path | None) -> OracleProfile:
    """Load profile.yaml and return OracleProfile.

    If control_dir is None or the file doesn't exist, returns defaults.
    """
    if control_dir is None:
        return OracleProfile()

    config_path = Path(control_dir) / "profile.yaml"
    if not config_path.exists():
        return OracleProfile()

    try:
        data = yaml.safe_load(config_path.read_text()) or {}
    except (yaml.YAMLError, OSError) as e:
        logger.warning(f"Failed to parse {config_path}: {e}")
        return OracleProfile()

    section = data.get("codex") if isinstance(data, dict) else None
    if not isinstance(section, dict):
        return OracleProfile()

    defaults = OracleProfile()
    enabled = section.get("enabled", defaults.enabled)
    if isinstance(enabled, str):
        enabled = enabled.strip().lower() in ("1", "true", "yes", "on")

    return OracleProfile(
        enabled=bool(enabled),
        command=str(section.get("command") or defaults.command).strip(),
        model=str(section.get("model") or "").strip(),
        approval=str(section.get("approval") or defaults.approval).strip(),
        sandbox=str(section.get("sandbox") or defaults.sandbox).strip(),
        timeout_sec=_as_int(section.get("timeout_sec"), defaults.timeout_sec),
        retry_max_attempts=_as_int(section.get("retry_max_attempts"), defaults.retry_max_attempts),
        retry_backoff_sec=_as_int(section.get("retry_backoff_sec"), defaults.retry_backoff_sec),
    )
