"""
app_lifecycle.py

Client lifecycle states and the table of transitions we expect between them.

The table is an observability gate: the reducer logs a warning for an edge
that is not listed but still accepts the new state.
"""

from __future__ import annotations

from enum import Enum
import logging
from typing import Mapping


logger = logging.getLogger(__name__)


class AppState(str, Enum):
    CLOSED = "Closed"
    OPENING_LISTING_EVENTS = "OpeningListingEvents"
    OPENING_WAITING_FOR_DAEMON = "OpeningWaitingForDaemon"
    OPENING_WAITING_FOR_CLIENTS = "OpeningWaitingForClients"
    OPENING_GETTING_LOCAL_SETTINGS = "OpeningGettingLocalSettings"
    OPENING_MARK_CONVERSATIONS_AS_CLOSED = "OpeningMarkConversationsAsClosed"
    READY = "Ready"
    GET_STARTED = "GetStarted"
    ON_BOARDING = "OnBoarding"
    STREAM_DONE = "StreamDone"
    DELETING_CLOSING_DAEMON = "DeletingClosingDaemon"
    DELETING_CLEARING_STORAGE = "DeletingClearingStorage"


_S = AppState

EXPECTED_TRANSITIONS: Mapping[AppState, frozenset[AppState]] = {
    _S.CLOSED: frozenset({_S.OPENING_WAITING_FOR_DAEMON, _S.OPENING_WAITING_FOR_CLIENTS}),
    _S.OPENING_WAITING_FOR_DAEMON: frozenset({_S.OPENING_WAITING_FOR_CLIENTS, _S.CLOSED}),
    _S.OPENING_WAITING_FOR_CLIENTS: frozenset({_S.OPENING_LISTING_EVENTS, _S.CLOSED}),
    _S.OPENING_LISTING_EVENTS: frozenset({_S.OPENING_GETTING_LOCAL_SETTINGS, _S.STREAM_DONE, _S.CLOSED}),
    _S.OPENING_GETTING_LOCAL_SETTINGS: frozenset({_S.OPENING_MARK_CONVERSATIONS_AS_CLOSED, _S.CLOSED}),
    _S.OPENING_MARK_CONVERSATIONS_AS_CLOSED: frozenset({_S.READY, _S.GET_STARTED, _S.CLOSED}),
    # Creating an account from GetStarted/OnBoarding reopens on it.
    _S.GET_STARTED: frozenset({_S.ON_BOARDING, _S.OPENING_WAITING_FOR_CLIENTS, _S.READY, _S.CLOSED}),
    _S.ON_BOARDING: frozenset({_S.READY, _S.OPENING_WAITING_FOR_CLIENTS, _S.CLOSED}),
    _S.READY: frozenset(
        {_S.STREAM_DONE, _S.DELETING_CLOSING_DAEMON, _S.OPENING_WAITING_FOR_CLIENTS, _S.CLOSED}
    ),
    _S.STREAM_DONE: frozenset({_S.DELETING_CLOSING_DAEMON, _S.CLOSED}),
    _S.DELETING_CLOSING_DAEMON: frozenset({_S.DELETING_CLEARING_STORAGE}),
    _S.DELETING_CLEARING_STORAGE: frozenset({_S.CLOSED}),
}


def is_expected_app_state_change(old: AppState, new: AppState) -> bool:
    if old == new:
        return True
    return new in EXPECTED_TRANSITIONS.get(old, frozenset())


def check_app_state_change(old: AppState, new: AppState, cause: str = "") -> bool:
    """Log unexpected transitions; return whether the edge was expected."""
    if is_expected_app_state_change(old, new):
        return True
    logger.warning("unexpected app state change from %s to %s (%s)", old.value, new.value, cause or "unknown cause")
    return False


def opening_state(embedded: bool) -> AppState:
    return AppState.OPENING_WAITING_FOR_DAEMON if embedded else AppState.OPENING_WAITING_FOR_CLIENTS


def needs_get_started(account_count: int, display_name: str | None, is_new_account: bool | None) -> bool:
    """
    Readiness rule applied once conversations are marked closed.

    A freshly created account, or a lone (or missing) account without a
    display name, goes through GetStarted instead of straight to Ready.
    """
    if is_new_account:
        return True
    return account_count <= 1 and not display_name


def ready_state(account_count: int, display_name: str | None, is_new_account: bool | None) -> AppState:
    if needs_get_started(account_count, display_name, is_new_account):
        return AppState.GET_STARTED
    return AppState.READY
