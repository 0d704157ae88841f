"""
Durable PRD session store.

All sessions for a control root live in one JSON file, {"sessions": {...}},
keyed by the stringified chat id. Every load-mutate-save cycle runs under
the store lock; writes replace the file atomically with owner-only
permissions.
"""

import json
import logging
from pathlib import Path
from typing import Callable, Optional

from prdwizard.lib.config import PRDPaths
from prdwizard.lib.fileio import dump_json_bytes, write_atomic
from prdwizard.lib.locking import LOCK_STALE_SEC, LOCK_WAIT_SEC, file_lock
from prdwizard.lib.validate import ValidationError, validate, validate_before_write
from prdwizard.pm.errors import SerializationError
from prdwizard.pm.models import PRDSession

logger = logging.getLogger(__name__)

STORE_FILE_MODE = 0o600


def session_key(chat_id: int) -> str:
    return str(int(chat_id))


def parse_store_data(data: bytes, source: Path) -> dict:
    """Decode store bytes into the raw {"sessions": {...}} mapping."""
    if not data.strip():
        return {"sessions": {}}
    try:
        raw = json.loads(data.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise SerializationError(f"parse prd session store {source}: {e}") from e
    if isinstance(raw, dict) and raw.get("sessions") is None:
        raw["sessions"] = {}
    try:
        validate(raw, "session_store")
    except ValidationError as e:
        raise SerializationError(f"invalid prd session store {source}: {e}") from e
    return raw


class SessionStore:
    """Session persistence for one control root."""

    def __init__(
        self,
        paths: PRDPaths,
        lock_timeout: float = LOCK_WAIT_SEC,
        lock_stale_after: float = LOCK_STALE_SEC,
    ):
        self.paths = paths
        self.lock_timeout = lock_timeout
        self.lock_stale_after = lock_stale_after

    @property
    def path(self) -> Path:
        return self.paths.session_store_file

    @property
    def lock_path(self) -> Path:
        return self.path.with_name(self.path.name + ".lock")

    def _lock(self):
        return file_lock(self.lock_path, timeout=self.lock_timeout, stale_after=self.lock_stale_after)

    def _read_unlocked(self) -> dict:
        """Read the store, migrating the legacy file if the canonical one is absent."""
        try:
            return parse_store_data(self.path.read_bytes(), self.path)
        except FileNotFoundError:
            pass
        except OSError as e:
            raise SerializationError(f"read prd session store {self.path}: {e}") from e

        legacy = self.paths.legacy_session_store_file
        try:
            legacy_data = legacy.read_bytes()
        except FileNotFoundError:
            return {"sessions": {}}
        except OSError as e:
            raise SerializationError(f"read legacy prd session store {legacy}: {e}") from e

        store = parse_store_data(legacy_data, legacy)
        try:
            self._write_unlocked(store)
        except SerializationError as e:
            logger.warning(f"[PRD] Legacy store migration deferred: {e}")
            return store
        try:
            legacy.unlink()
        except FileNotFoundError:
            pass
        logger.info(f"[PRD] Migrated legacy session store {legacy} -> {self.path}")
        return store

    def _write_unlocked(self, store: dict) -> None:
        try:
            validate_before_write(store, "session_store", self.path)
            write_atomic(self.path, dump_json_bytes(store), STORE_FILE_MODE)
        except ValidationError as e:
            raise SerializationError(str(e)) from e
        except (OSError, TypeError, ValueError) as e:
            raise SerializationError(f"write prd session store {self.path}: {e}") from e

    def _mutate(self, fn: Callable[[dict], bool]) -> None:
        """Apply fn to the sessions map under the lock; write only when it reports a change."""
        with self._lock():
            store = self._read_unlocked()
            if fn(store["sessions"]):
                self._write_unlocked(store)

    def load(self, chat_id: int) -> Optional[PRDSession]:
        """Return the chat's session, or None when there is none."""
        with self._lock():
            store = self._read_unlocked()
        raw = store["sessions"].get(session_key(chat_id))
        if raw is None:
            return None
        try:
            return PRDSession.from_dict(raw)
        except (TypeError, ValueError) as e:
            raise SerializationError(f"decode prd session {chat_id}: {e}") from e

    def exists(self, chat_id: int) -> bool:
        return self.load(chat_id) is not None

    def upsert(self, session: PRDSession) -> None:
        payload = session.to_dict()

        def _put(sessions: dict) -> bool:
            sessions[session_key(session.chat_id)] = payload
            return True

        self._mutate(_put)

    def delete(self, chat_id: int) -> None:
        """Remove the chat's session. Deleting a missing session is not an error."""

        def _drop(sessions: dict) -> bool:
            return sessions.pop(session_key(chat_id), None) is not None

        self._mutate(_drop)

    def list_chat_ids(self) -> list[int]:
        with self._lock():
            store = self._read_unlocked()
        return sorted(int(k) for k in store["sessions"])
