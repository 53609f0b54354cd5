"""Crash-safe, append-friendly storage of session event logs.

Each session lives in one JSON document, ``<id>.json``, under the sessions
directory. Every write goes through the same protocol so that a process
killed at any point leaves either the old or the new document readable:

1. write the full document to ``<id>.json.tmp``
2. move the current ``<id>.json`` aside to ``<id>.json.bak``
3. move the temp file into place
4. remove the backup

If step 1-3 fails the backup is moved back and the temp file removed. Reads
fall back to the backup when the primary is missing or unparsable and
restore it as the primary.
"""
import json
import os
import re
import time
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Sequence

from pydantic import ValidationError

from sessionreplay.config import Settings
from sessionreplay.constants import (
    BACKUP_FILE_SUFFIX,
    IMMUTABLE_METADATA_KEYS,
    SESSION_FILE_SUFFIX,
    SESSION_SCHEMA_VERSION,
    STORE_OWNED_METADATA_KEYS,
    TEMP_FILE_SUFFIX,
    SessionStatus,
)
from sessionreplay.models.event import validate
from sessionreplay.models.session import Session, SessionSummary, summarize
from sessionreplay.utils.exceptions import (
    InvalidSessionData,
    SessionNotFound,
    StorageUnavailable,
    StorageWriteFailed,
)
from sessionreplay.utils.locks import KeyedLock
from sessionreplay.utils.logger import logger

SESSION_ID_PATTERN = re.compile(r"^[A-Za-z0-9_\-][A-Za-z0-9_.\-]{0,127}$")
CORRUPT_FILE_SUFFIX = ".json.corrupt"


def utc_now_ms() -> int:
    """Return the current time as epoch milliseconds."""
    return int(time.time() * 1000)


class SessionStore:
    """File-backed store owning every session document on disk."""

    def __init__(self, settings: Settings):
        self.root = Path(settings.sessions_dir)
        self.strict_validation = settings.strict_validation
        self._locks = KeyedLock()

    def open(self) -> "SessionStore":
        """Create the sessions directory. Must run before the first write."""
        try:
            self.root.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise StorageUnavailable(f"Cannot initialize session storage at {self.root}: {e}") from e
        logger.info(f"[STORE] Session storage ready at {self.root}")
        return self

    # Paths

    def path_for(self, session_id: str) -> Path:
        """Primary document path for a session."""
        self._check_id(session_id)
        return self.root / f"{session_id}{SESSION_FILE_SUFFIX}"

    def _temp_path(self, session_id: str) -> Path:
        return self.root / f"{session_id}{TEMP_FILE_SUFFIX}"

    def _backup_path(self, session_id: str) -> Path:
        return self.root / f"{session_id}{BACKUP_FILE_SUFFIX}"

    @staticmethod
    def _check_id(session_id: Any) -> None:
        if not isinstance(session_id, str) or not SESSION_ID_PATTERN.match(session_id):
            raise InvalidSessionData(f"Invalid session id: {session_id!r}")

    # Public contract

    def create_or_append(
        self,
        session_id: str,
        new_events: Sequence[Mapping[str, Any]],
        metadata_patch: Mapping[str, Any],
    ) -> str:
        """
        Append a batch of events to a session, creating it if needed.

        Args:
            session_id: Session identifier
            new_events: Events to append, in arrival order
            metadata_patch: Metadata merged over the stored metadata;
                ``isComplete`` marks the session complete

        Returns:
            The session ID

        Raises:
            InvalidSessionData: The batch was rejected, nothing was written
            StorageWriteFailed: The document could not be persisted
        """
        self._check_id(session_id)
        validate(new_events, metadata_patch)

        with self._locks.hold(session_id):
            try:
                existing = self._load(session_id)
            except OSError as e:
                raise StorageWriteFailed(f"Cannot read session {session_id} before appending: {e}") from e
            if existing is None and self.strict_validation:
                validate(new_events, metadata_patch, strict=True)

            session = self._merge(session_id, existing, new_events, metadata_patch)
            if existing is None:
                self._quarantine_corrupt(session_id)
            self._persist(session)

        logger.debug(
            f"[STORE] Saved session {session_id}: +{len(new_events)} events, "
            f"{len(session.events)} total, status={session.metadata.status}"
        )
        return session_id

    def read(self, session_id: str) -> Session:
        """
        Load a session, recovering from the backup if necessary.

        Raises:
            SessionNotFound: Neither the primary nor the backup is usable
            StorageUnavailable: A session file exists but could not be read
        """
        self._check_id(session_id)
        with self._locks.hold(session_id):
            try:
                session = self._load(session_id)
            except OSError as e:
                raise StorageUnavailable(f"Cannot read session {session_id}: {e}") from e
        if session is None:
            raise SessionNotFound(session_id)
        return session

    def exists(self, session_id: str) -> bool:
        self._check_id(session_id)
        return self.path_for(session_id).exists() or self._backup_path(session_id).exists()

    def session_ids(self) -> List[str]:
        """IDs of every committed primary document."""
        if not self.root.is_dir():
            return []
        ids = []
        for entry in self.root.iterdir():
            name = entry.name
            if not name.endswith(SESSION_FILE_SUFFIX) or not entry.is_file():
                continue
            session_id = name[: -len(SESSION_FILE_SUFFIX)]
            if SESSION_ID_PATTERN.match(session_id):
                ids.append(session_id)
        return sorted(ids)

    def list(self) -> List[SessionSummary]:
        """Summaries of all stored sessions, newest ``timestamp`` first."""
        summaries = []
        for session_id in self.session_ids():
            try:
                summaries.append(summarize(self.read(session_id)))
            except (SessionNotFound, StorageUnavailable) as e:
                logger.warning(f"[STORE] Skipping unreadable session {session_id}: {e.message}")
        summaries.sort(key=lambda s: s.timestamp or 0, reverse=True)
        return summaries

    # Read side

    def _load(self, session_id: str) -> Optional[Session]:
        session = self._parse_file(self.path_for(session_id), session_id)
        if session is not None:
            return session

        recovered = self._parse_file(self._backup_path(session_id), session_id)
        if recovered is None:
            return None

        logger.warning(f"[STORE] Recovered session {session_id} from backup")
        self._restore_primary(recovered)
        return recovered

    @staticmethod
    def _parse_file(path: Path, session_id: str) -> Optional[Session]:
        """None when the file is absent or unparsable; other read errors propagate."""
        try:
            raw = path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None

        try:
            document = json.loads(raw)
            if not isinstance(document, dict):
                raise ValueError("document is not an object")
            document["sessionId"] = session_id
            return Session.model_validate(document)
        except (ValueError, ValidationError) as e:
            logger.warning(f"[STORE] Corrupt session file {path.name}: {e}")
            return None

    def _restore_primary(self, session: Session) -> None:
        primary = self.path_for(session.sessionId)
        temp = self._temp_path(session.sessionId)
        try:
            self._write_temp(temp, session)
            self._promote(temp, primary)
        except OSError as e:
            logger.error(f"[STORE] Could not restore primary for {session.sessionId}: {e}")
            self._discard(temp)
            return
        self._discard(self._backup_path(session.sessionId))

    def _quarantine_corrupt(self, session_id: str) -> None:
        # Only reached after _load returned None, so an existing primary failed to parse
        primary = self.path_for(session_id)
        if not primary.exists():
            return
        target = self.root / f"{session_id}{CORRUPT_FILE_SUFFIX}"
        try:
            os.replace(primary, target)
            logger.warning(f"[STORE] Moved unreadable {primary.name} to {target.name}")
        except OSError as e:
            logger.error(f"[STORE] Could not move aside unreadable {primary.name}: {e}")

    # Write side

    @staticmethod
    def _merge(
        session_id: str,
        existing: Optional[Session],
        new_events: Sequence[Mapping[str, Any]],
        metadata_patch: Mapping[str, Any],
    ) -> Session:
        now = utc_now_ms()
        patch = dict(metadata_patch)
        is_complete = bool(patch.pop("isComplete", False))

        if existing is None:
            metadata: Dict[str, Any] = {
                "recordedAt": now,
                "status": SessionStatus.RECORDING,
                "version": SESSION_SCHEMA_VERSION,
            }
            events: List[Dict[str, Any]] = []
        else:
            metadata = existing.metadata.model_dump(mode="json")
            events = list(existing.events)

        for key, value in patch.items():
            if key in STORE_OWNED_METADATA_KEYS:
                continue
            if key in IMMUTABLE_METADATA_KEYS and metadata.get(key) is not None:
                continue
            metadata[key] = value

        events.extend(dict(event) for event in new_events)
        metadata["lastUpdated"] = now
        if is_complete:
            metadata["status"] = SessionStatus.COMPLETE

        try:
            return Session(sessionId=session_id, metadata=metadata, events=events)
        except ValidationError as e:
            raise InvalidSessionData(f"Invalid session metadata: {e}") from e

    def _persist(self, session: Session) -> None:
        session_id = session.sessionId
        primary = self.path_for(session_id)
        temp = self._temp_path(session_id)
        backup = self._backup_path(session_id)
        backed_up = False

        try:
            self._write_temp(temp, session)
            try:
                os.replace(primary, backup)
                backed_up = True
            except FileNotFoundError:
                pass
            except OSError as e:
                logger.warning(f"[STORE] Could not back up {primary.name}: {e}")
            self._promote(temp, primary)
        except Exception as e:
            logger.error(f"[STORE] Write failed for session {session_id}, rolling back: {e}")
            self._rollback(primary, temp, backup, backed_up)
            raise StorageWriteFailed(f"Failed to persist session {session_id}: {e}") from e

        self._discard(backup)

    @staticmethod
    def _write_temp(temp: Path, session: Session) -> None:
        with open(temp, "w", encoding="utf-8") as f:
            json.dump(session.to_document(), f, separators=(",", ":"))
            f.flush()
            os.fsync(f.fileno())

    @staticmethod
    def _promote(temp: Path, primary: Path) -> None:
        os.replace(temp, primary)

    def _rollback(self, primary: Path, temp: Path, backup: Path, backed_up: bool) -> None:
        if backed_up and not primary.exists():
            try:
                os.replace(backup, primary)
            except OSError as e:
                logger.error(f"[STORE] Rollback of {primary.name} failed, backup kept at {backup.name}: {e}")
        self._discard(temp)

    @staticmethod
    def _discard(path: Path) -> None:
        try:
            path.unlink()
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.warning(f"[STORE] Could not remove {path.name}: {e}")
