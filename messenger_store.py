"""
messenger_store.py -- Runtime holder for the messenger state.

The transport callback feeds actions in through dispatch(); the UI reads the
current snapshot through the view helpers or subscribes to be told about
every new snapshot.  Snapshots are immutable, so readers never need the lock.
"""

from __future__ import annotations

import logging
import threading
from typing import Callable, Mapping

import messenger_state as ms
from interaction_merge import Interactions


logger = logging.getLogger(__name__)

Listener = Callable[[ms.MessengerState], None]


class MessengerStore:
    def __init__(self, state: ms.MessengerState | None = None) -> None:
        self.lock = threading.RLock()
        self._state = state if state is not None else ms.initial_state()
        self._listeners: list[Listener] = []

    @property
    def state(self) -> ms.MessengerState:
        return self._state

    def dispatch(self, action: ms.Action) -> ms.MessengerState:
        """
        Reduce *action* into the store and broadcast the new snapshot.

        Listeners run under the lock, so every listener sees snapshots in
        dispatch order.  A listener may dispatch again (the lock is
        re-entrant) but must not block on another thread that dispatches.
        """
        with self.lock:
            old = self._state
            new = ms.reduce(old, action)
            self._state = new

            if new.app_state != old.app_state:
                logger.info("app state %s -> %s (%s)", old.app_state.value, new.app_state.value, type(action).__name__)
            if new is not old:
                self._notify(list(self._listeners), new)
        return new

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register *listener*; the returned callable unregisters it."""
        with self.lock:
            self._listeners.append(listener)

        def unsubscribe() -> None:
            with self.lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return unsubscribe

    def _notify(self, listeners: list[Listener], state: ms.MessengerState) -> None:
        for listener in listeners:
            try:
                listener(state)
            except Exception as e:
                # A broken view must not stall the event stream.
                logger.error("store listener %r failed: %s", listener, e)

    # ------------------------------------------------------------------
    # Read-only views
    # ------------------------------------------------------------------

    def interactions_for(self, conversation_public_key: str) -> Interactions:
        return ms.interactions_for(self._state, conversation_public_key)

    def conversation(self, public_key: str) -> ms.Conversation | None:
        return self._state.conversations.get(public_key)

    def contact(self, public_key: str) -> ms.Contact | None:
        return self._state.contacts.get(public_key)

    def members_of(self, conversation_public_key: str) -> Mapping[str, ms.Member]:
        return ms.members_of(self._state, conversation_public_key)

    def media(self, cid: str) -> ms.Media | None:
        return self._state.medias.get(cid)
