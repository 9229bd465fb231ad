"""SessionManager: the preserved learning session and the login-time storage sweep."""

from __future__ import annotations

import json
import logging
from dataclasses import replace
from datetime import datetime, timezone

from ..types import BackendError, PreservedSession, StorageError, SyncEventType
from .kv_store import KeyValueStore

logger = logging.getLogger(__name__)

SESSION_KEY = "preserved_session"
LEGACY_KEY_PREFIXES = ("preserved_session", "session_metadata", "conversation_history")
LEGACY_USER_SLOTS = 10


def legacy_storage_keys() -> list[str]:
    """Every key the login sweep removes, in a fixed order."""
    keys: list[str] = []
    for prefix in LEGACY_KEY_PREFIXES:
        keys.append(prefix)
        keys.extend(f"{prefix}_{i}" for i in range(1, LEGACY_USER_SLOTS + 1))
        keys.append(f"{prefix}_anonymous")
    return keys


def clear_previous_user_data(store: KeyValueStore) -> list[str]:
    """Remove a previous user's session data before a new login.

    Returns the keys that were present and removed. Failures on single
    keys are logged and the sweep continues.
    """
    removed: list[str] = []
    for key in legacy_storage_keys():
        try:
            if store.get_item(key) is None:
                continue
            store.remove_item(key)
        except (StorageError, OSError) as e:
            logger.warning("Login sweep could not remove %s: %s", key, e)
            continue
        removed.append(key)
    if removed:
        logger.info("Cleared %d stale session keys", len(removed))
    return removed


class SessionManager:
    """Holds the current preserved session and mirrors it to storage and other tabs."""

    def __init__(self, store: KeyValueStore, backend=None, sync=None) -> None:
        self.store = store
        self.backend = backend
        self.sync = sync
        self.current: PreservedSession | None = None
        self.error: str | None = None
        self.is_loading = False
        self._unsubscribers: list = []

    # ------------------------------------------------------------------
    # Local state
    # ------------------------------------------------------------------

    def load(self) -> PreservedSession | None:
        """Restore from storage. A malformed slot is removed."""
        try:
            raw = self.store.get_item(SESSION_KEY)
        except (StorageError, OSError) as e:
            logger.warning("Error loading session from storage: %s", e)
            return None
        if raw is None:
            return None
        try:
            self.current = PreservedSession.from_dict(json.loads(raw))
        except (ValueError, KeyError, TypeError) as e:
            logger.warning("Error loading session from storage: %s", e)
            self.current = None
            self._remove_slot()
        return self.current

    def _save(self) -> None:
        try:
            if self.current is None:
                self.store.remove_item(SESSION_KEY)
            else:
                self.store.set_item(SESSION_KEY, json.dumps(self.current.to_dict()))
        except (StorageError, OSError) as e:
            logger.warning("Failed to persist session: %s", e)

    def _remove_slot(self) -> None:
        try:
            self.store.remove_item(SESSION_KEY)
        except (StorageError, OSError) as e:
            logger.warning("Failed to remove session slot: %s", e)

    def set_current(self, session: PreservedSession | None, broadcast: bool = True) -> None:
        self.current = session
        self._save()
        if broadcast and session is not None and self.sync is not None:
            self.sync.broadcast(SyncEventType.SESSION_UPDATED, session.to_dict())

    def clear_session(self) -> None:
        session_id = self.current.session_identifier if self.current else None
        self.current = None
        self.error = None
        self._remove_slot()
        if session_id and self.sync is not None:
            self.sync.broadcast(SyncEventType.SESSION_DEACTIVATED, {"sessionId": session_id})

    def update_session_activity(self) -> None:
        if self.current is None:
            return
        self.set_current(
            replace(self.current, last_activity=datetime.now(timezone.utc).isoformat())
        )

    def update_metadata(self, **fields) -> None:
        """Merge fields into the session metadata and notify other tabs."""
        if self.current is None:
            return
        metadata = {**self.current.session_metadata, **fields}
        self.set_current(replace(self.current, session_metadata=metadata))
        if self.sync is not None:
            self.sync.broadcast(
                SyncEventType.METADATA_UPDATED,
                {"sessionId": self.current.session_identifier, "metadata": metadata},
            )

    # ------------------------------------------------------------------
    # Backend-driven transitions
    # ------------------------------------------------------------------

    async def initialize_session(self, user_id: str) -> PreservedSession | None:
        self.is_loading = True
        self.error = None
        try:
            data = await self.backend.get_active_preserved_session(user_id)
            if data:
                session = PreservedSession.from_dict(data)
                self.set_current(session)
                logger.info("Session initialized: %s", session.session_identifier)
                self._notify_activated(session.session_identifier)
            else:
                logger.info("No active session found for user")
                self.set_current(None)
        except (BackendError, ValueError, KeyError, TypeError) as e:
            logger.error("Error initializing session: %s", e)
            self.error = str(e) or "Failed to initialize session"
            self.set_current(None)
        finally:
            self.is_loading = False
        return self.current

    async def reactivate_session(self, session_id: str) -> PreservedSession | None:
        self.is_loading = True
        self.error = None
        try:
            data = await self.backend.reactivate_preserved_session(session_id)
            session = PreservedSession.from_dict(data)
            self.set_current(session)
            logger.info("Session reactivated: %s", session.session_identifier)
            self._notify_activated(session.session_identifier)
        except (BackendError, ValueError, KeyError, TypeError) as e:
            logger.error("Error reactivating session: %s", e)
            self.error = str(e) or "Failed to reactivate session"
        finally:
            self.is_loading = False
        return self.current

    async def deactivate_session(self, session_id: str) -> None:
        self.is_loading = True
        self.error = None
        try:
            await self.backend.deactivate_preserved_session(session_id)
            self.set_current(None)
            logger.info("Session deactivated: %s", session_id)
            if self.sync is not None:
                self.sync.broadcast(SyncEventType.SESSION_DEACTIVATED, {"sessionId": session_id})
        except BackendError as e:
            logger.error("Error deactivating session: %s", e)
            self.error = str(e) or "Failed to deactivate session"
        finally:
            self.is_loading = False

    def _notify_activated(self, session_id: str) -> None:
        if self.sync is not None:
            self.sync.broadcast(SyncEventType.SESSION_ACTIVATED, {"sessionId": session_id})

    # ------------------------------------------------------------------
    # Cross-tab
    # ------------------------------------------------------------------

    def attach_sync(self) -> None:
        if self.sync is None or self._unsubscribers:
            return
        self._unsubscribers = [
            self.sync.subscribe(SyncEventType.SESSION_UPDATED, self._on_remote_update),
            self.sync.subscribe(SyncEventType.SESSION_ACTIVATED, self._on_remote_activated),
            self.sync.subscribe(SyncEventType.SESSION_DEACTIVATED, self._on_remote_deactivated),
        ]

    def detach_sync(self) -> None:
        for unsubscribe in self._unsubscribers:
            unsubscribe()
        self._unsubscribers = []

    def _on_remote_update(self, data: dict) -> None:
        logger.debug("Received session update from other tab")
        try:
            session = PreservedSession.from_dict(data)
        except (ValueError, KeyError, TypeError) as e:
            logger.warning("Ignoring malformed session update: %s", e)
            return
        # Remote updates are adopted locally only
        self.set_current(session, broadcast=False)

    def _on_remote_activated(self, data: dict) -> None:
        if self.current and self.current.session_identifier == data.get("sessionId"):
            logger.debug("Session activated in other tab: %s", data.get("sessionId"))
            self.set_current(replace(self.current, is_active=True), broadcast=False)

    def _on_remote_deactivated(self, data: dict) -> None:
        if self.current and self.current.session_identifier == data.get("sessionId"):
            logger.debug("Session deactivated in other tab: %s", data.get("sessionId"))
            self.set_current(replace(self.current, is_active=False), broadcast=False)
