"""
Errors raised by the PRD session engine.

Lock errors live with the lock in prdwizard.lib.locking.
"""

from prdwizard.lib.text import compact_single_line

FAILURE_CATEGORIES = (
    "not_installed",
    "file_not_found",
    "timeout",
    "permission",
    "network",
    "invalid_response",
    "exec_failure",
)


class PRDError(Exception):
    """Base class for PRD wizard errors surfaced to the user."""
    pass


class SessionNotFound(PRDError):
    """No active session for the chat."""

    def __init__(self, chat_id: int):
        self.chat_id = chat_id
        super().__init__("no active PRD session (run: /prd start)")


class IncompleteDraft(PRDError):
    """Story title, description or role missing at commit time."""

    def __init__(self, message: str = "incomplete story draft; run /prd cancel then /prd start"):
        super().__init__(message)


class InvalidRole(PRDError):
    def __init__(self, raw: str):
        self.raw = raw
        super().__init__(f"invalid role: {raw!r} (use manager|planner|developer|qa)")


class InvalidPriority(PRDError):
    def __init__(self, raw: str, message: str = ""):
        self.raw = raw
        super().__init__(message or f"invalid priority: {raw!r} (use positive number)")


class InvalidQuickFormat(PRDError):
    """Pipe-delimited story input could not be parsed."""
    pass


class ExternalServiceError(PRDError):
    """The oracle call failed. category is one of FAILURE_CATEGORIES."""

    def __init__(self, category: str, detail: str = ""):
        self.category = category if category in FAILURE_CATEGORIES else "exec_failure"
        self.detail = compact_single_line(detail, 180)
        super().__init__(f"{self.category}: {self.detail}" if self.detail else self.category)


class SerializationError(PRDError):
    """Marshal, unmarshal or write failure on the store or a document."""
    pass


class ApplyBlocked(PRDError):
    """Apply refused because readiness could not be positively established."""

    def __init__(self, score: int = 0, missing: list[str] | None = None,
                 category: str = "", detail: str = ""):
        self.score = score
        self.missing = list(missing or [])
        self.category = category
        self.detail = detail
        if category:
            message = f"prd apply blocked: oracle unavailable ({category})"
        else:
            message = f"prd apply blocked: clarity score {score}"
        super().__init__(message)


def classify_failure(err: BaseException | None) -> tuple[str, str]:
    """Map an oracle failure to (category, one-line detail).

    An ExternalServiceError keeps its own category. Anything else is
    classified from its message text.
    """
    if err is None:
        return "", ""
    if isinstance(err, ExternalServiceError):
        return err.category, err.detail

    text = str(err).strip() or type(err).__name__
    raw = text.lower()
    detail = compact_single_line(text, 180)

    if "not found" in raw:
        return "not_installed", detail
    if "no such file or directory" in raw or "os error 2" in raw:
        return "file_not_found", detail
    if "timeout" in raw or "timed out" in raw or "deadline exceeded" in raw:
        return "timeout", detail
    if "operation not permitted" in raw or "permission denied" in raw:
        return "permission", detail
    if any(marker in raw for marker in (
        "could not resolve host",
        "connection refused",
        "network",
        "temporary failure in name resolution",
    )):
        return "network", detail
    if "json" in raw or "parse" in raw:
        return "invalid_response", detail
    return "exec_failure", detail
