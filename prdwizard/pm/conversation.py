"""
Per-chat conversation log.

Append-only markdown file, read back as a bounded tail for oracle prompts.
"""

import logging
import shutil

from prdwizard.lib.config import PRDPaths
from prdwizard.lib.text import decode_utf8, sanitize_utf8
from prdwizard.pm.models import utc_timestamp

logger = logging.getLogger(__name__)

DEFAULT_TAIL_CHARS = 5000
TRUNCATED_MARKER = "...(truncated)\n"


class ConversationLog:
    def __init__(self, paths: PRDPaths):
        self.paths = paths

    def append(self, chat_id: int, role: str, text: str) -> None:
        """Append one role-tagged entry. Empty text is ignored."""
        role = (role or "").strip().lower() or "assistant"
        text = sanitize_utf8(text or "").strip()
        if not text:
            return
        path = self.paths.conversation_file(chat_id)
        path.parent.mkdir(parents=True, exist_ok=True)
        entry = f"\n### {utc_timestamp()} | {role}\n{text}\n"
        with open(path, "a", encoding="utf-8") as handle:
            handle.write(entry)

    def tail(self, chat_id: int, max_chars: int = DEFAULT_TAIL_CHARS) -> str:
        """Most recent max_chars characters of the log, or "" if there is none."""
        if max_chars <= 0:
            max_chars = DEFAULT_TAIL_CHARS
        try:
            data = self.paths.conversation_file(chat_id).read_bytes()
        except OSError:
            return ""
        text = decode_utf8(data).strip()
        if len(text) <= max_chars:
            return text
        return TRUNCATED_MARKER + text[-max_chars:]

    def clear(self, chat_id: int) -> None:
        conv_dir = self.paths.conversation_dir(chat_id)
        if conv_dir.exists():
            shutil.rmtree(conv_dir)

    def append_quietly(self, chat_id: int, role: str, text: str) -> None:
        """Append, logging a warning instead of raising."""
        try:
            self.append(chat_id, role, text)
        except OSError as e:
            logger.warning(f"[PRD] Conversation log append failed for chat {chat_id}: {e}")

    def clear_quietly(self, chat_id: int) -> None:
        try:
            self.clear(chat_id)
        except OSError as e:
            logger.warning(f"[PRD] Conversation log clear failed for chat {chat_id}: {e}")
