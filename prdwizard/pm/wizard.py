"""
PRD wizard: the /prd command surface and free-text turn routing.

One PRDWizard serves every chat of a control root. Oracle calls run on a
snapshot outside the store lock; the result is written back with a
separate short upsert (last writer wins for the same chat).
"""

import logging
from typing import Optional

from prdwizard.lib.config import PRDPaths, load_oracle_profile
from prdwizard.lib.constants import Stage
from prdwizard.pm import replies
from prdwizard.pm.apply import ImportFn, apply_session, require_stories, save_session
from prdwizard.pm.clarity import evaluate_clarity
from prdwizard.pm.conversation import ConversationLog
from prdwizard.pm.document import resolve_document_path
from prdwizard.pm.errors import ApplyBlocked, ExternalServiceError, PRDError, SessionNotFound
from prdwizard.pm.importer import import_prd_stories
from prdwizard.pm.models import PRDSession
from prdwizard.pm.oracle import (
    REFINE_TAIL_CHARS,
    SCORE_TAIL_CHARS,
    OracleContext,
    Oracles,
    normalize_suggested_stage,
    refresh_refine,
    refresh_score,
)
from prdwizard.pm.priority import format_agent_priority, normalize_agent_priority, parse_agent_priority_args
from prdwizard.pm.stages import advance_session
from prdwizard.pm.store import SessionStore
from prdwizard.pm.turn import process_turn
from prdwizard.workflow.fsm import StageFSM

logger = logging.getLogger(__name__)

PRIORITY_USAGE = "/prd priority manager=900 planner=950 developer=1000 qa=1100"


def split_command(raw_args: str) -> tuple[str, str]:
    """Split "<sub> [arg...]" into (lower-cased sub, rest)."""
    fields = (raw_args or "").split()
    if not fields:
        return "", ""
    return fields[0].lower(), " ".join(fields[1:])


class PRDWizard:
    """Chat-facing PRD session engine."""

    def __init__(
        self,
        paths: PRDPaths,
        oracles: Optional[Oracles] = None,
        store: Optional[SessionStore] = None,
        conversation: Optional[ConversationLog] = None,
        importer: ImportFn = import_prd_stories,
    ):
        self.paths = paths
        if oracles is None:
            oracles = Oracles.codex(paths, load_oracle_profile(paths.control_dir))
        self.oracles = oracles
        self.store = store or SessionStore(paths)
        self.conversation = conversation or ConversationLog(paths)
        self.importer = importer

    def _context(self, chat_id: int) -> OracleContext:
        return OracleContext(
            oracles=self.oracles,
            read_tail=lambda max_chars: self.conversation.tail(chat_id, max_chars),
        )

    def _require_session(self, chat_id: int) -> PRDSession:
        session = self.store.load(chat_id)
        if session is None:
            raise SessionNotFound(chat_id)
        return session

    # --- Routing ---

    def has_active_session(self, chat_id: int) -> bool:
        return self.store.exists(chat_id)

    def command(self, chat_id: int, raw_args: str) -> str:
        """Run one /prd sub-command and return the reply.

        Raises:
            PRDError: Session or input errors the chat should show as ERROR
            LockTimeout, LockDirCreateFailed: Store lock failures
        """
        sub, arg = split_command(raw_args)
        if not sub or sub == "help":
            return replies.HELP_TEXT

        handlers = {
            "start": lambda: self.start(chat_id, arg),
            "refine": lambda: self.refine(chat_id),
            "score": lambda: self.score(chat_id),
            "preview": lambda: self.preview(chat_id),
            "status": lambda: self.preview(chat_id),
            "priority": lambda: self.priority(chat_id, arg),
            "save": lambda: self.save(chat_id, arg),
            "apply": lambda: self.apply(chat_id, arg),
            "cancel": lambda: self.cancel(chat_id),
            "stop": lambda: self.cancel(chat_id),
        }
        handler = handlers.get(sub)
        if handler is None:
            return "unknown /prd subcommand\n\n" + replies.HELP_TEXT

        reply = handler()
        user_text = f"/prd {sub} {arg}".strip()
        self.conversation.append_quietly(chat_id, "user", user_text)
        self.conversation.append_quietly(chat_id, "assistant", reply)
        return reply

    def handle_input(self, chat_id: int, text: str) -> str:
        """Route free text to the turn processor, then the stage machine."""
        session = self._require_session(chat_id)
        ctx = self._context(chat_id)

        updated, reply, handled = process_turn(session, text, ctx)
        if not handled:
            updated, reply = advance_session(session, text, ctx)
        self.store.upsert(updated)

        self.conversation.append_quietly(chat_id, "user", text)
        self.conversation.append_quietly(chat_id, "assistant", reply)
        return reply

    # --- Sub-commands ---

    def start(self, chat_id: int, product_name: str = "") -> str:
        self.conversation.clear(chat_id)
        session = PRDSession.new(chat_id, product_name)
        self.store.upsert(session)
        logger.info(f"[PRD] chat {chat_id}: session started (stage={session.stage})")
        if session.product_name:
            return f"PRD wizard started\n- product: {session.product_name}\n- next: /prd refine"
        return "PRD wizard started\n- next: enter the product or project name"

    def refine(self, chat_id: int) -> str:
        session = self.store.load(chat_id)
        if session is None:
            return replies.NO_SESSION_REPLY
        try:
            refined, refine = refresh_refine(session, self.oracles, self._context(chat_id).tail(REFINE_TAIL_CHARS))
        except ExternalServiceError as e:
            logger.warning(f"[PRD] chat {chat_id}: refine unavailable: {e}")
            return replies.refine_unavailable(session.stage, evaluate_clarity(session).score, e)

        if refine.ready_to_apply:
            next_stage = Stage.AWAIT_STORY_TITLE
        else:
            next_stage = (
                normalize_suggested_stage(refine.suggested_stage)
                or evaluate_clarity(refined).next_stage
                or Stage.AWAIT_STORY_TITLE
            )
        StageFSM(refined).move_to(next_stage)
        refined.touch()
        self.store.upsert(refined)
        return replies.refine_question(refine)

    def score(self, chat_id: int) -> str:
        session = self.store.load(chat_id)
        if session is None:
            return replies.NO_SESSION_REPLY
        try:
            scored = refresh_score(session, self.oracles, self._context(chat_id).tail(SCORE_TAIL_CHARS))
        except ExternalServiceError as e:
            logger.warning(f"[PRD] chat {chat_id}: score unavailable: {e}")
            return replies.score_unavailable(e, evaluate_clarity(session).score)
        scored.touch()
        self.store.upsert(scored)
        return replies.codex_score(scored)

    def preview(self, chat_id: int) -> str:
        session = self.store.load(chat_id)
        if session is None:
            return replies.NO_SESSION_REPLY
        return replies.preview(session)

    def priority(self, chat_id: int, arg: str) -> str:
        session = self.store.load(chat_id)
        if session is None:
            return replies.NO_SESSION_REPLY

        value = arg.strip()
        if not value:
            return "\n".join([
                "agent priority profile",
                f"- current: {format_agent_priority(session.context.agent_priority)}",
                f"- update: {PRIORITY_USAGE}",
                "- reset: /prd priority default",
            ])

        if value.lower() in ("default", "reset"):
            session.context.agent_priority = normalize_agent_priority(None)
            title = "agent priorities reset"
        else:
            updates = parse_agent_priority_args(value)
            table = normalize_agent_priority(session.context.agent_priority)
            table.update(updates)
            session.context.agent_priority = table
            title = "agent priorities updated"
        session.touch()
        self.store.upsert(session)
        return f"{title}\n- current: {format_agent_priority(session.context.agent_priority)}"

    def save(self, chat_id: int, raw_path: str = "") -> str:
        session = self._require_session(chat_id)
        require_stories(session)
        target = resolve_document_path(self.paths, chat_id, raw_path)
        save_session(session, target)
        return replies.saved(target, len(session.stories))

    def apply(self, chat_id: int, raw_path: str = "") -> str:
        session = self._require_session(chat_id)
        require_stories(session)
        target = resolve_document_path(self.paths, chat_id, raw_path)
        try:
            result = apply_session(self.store, session, target, self._context(chat_id), self.importer)
        except ApplyBlocked as blocked:
            logger.info(f"[PRD] chat {chat_id}: {blocked}")
            return replies.apply_blocked(blocked)
        return replies.applied(result.path, result.imported, result.clarity_score)

    def cancel(self, chat_id: int) -> str:
        self.store.delete(chat_id)
        self.conversation.clear_quietly(chat_id)
        logger.info(f"[PRD] chat {chat_id}: session canceled")
        return "PRD session canceled"


def run_command(wizard: PRDWizard, chat_id: int, raw_args: str) -> tuple[bool, str]:
    """Command wrapper for transports: (ok, reply-or-error-message)."""
    try:
        return True, wizard.command(chat_id, raw_args)
    except PRDError as e:
        return False, str(e)
