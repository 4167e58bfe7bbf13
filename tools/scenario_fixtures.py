"""
scenario_fixtures.py

Load JSON event scenarios into typed actions.

A scenario file looks like:

    {
      "name": "overlapping pages",
      "initial": {"embedded": true},
      "events": [{"type": "ConversationPartialLoad", "payload": {...}}],
      "expected": {"app_state": "Ready", "interactions": {"conv": ["c2", "c1"]}}
    }

Raw interaction payloads are written as JSON objects and re-encoded to the
bytes the transport would deliver; "payload_bytes" gives the bytes verbatim
(as a latin-1 string) for malformed-payload cases.
"""

from __future__ import annotations

from dataclasses import dataclass
import json
from pathlib import Path
from typing import Any

import messenger_state as ms
from interaction_codec import RawInteraction, parse_interactions


def _raw_interaction(data: dict) -> RawInteraction:
    fields = dict(data)
    if "payload_bytes" in fields:
        payload = str(fields.pop("payload_bytes")).encode("latin-1")
    elif "payload" in fields:
        payload = json.dumps(fields.pop("payload")).encode("utf-8")
    else:
        payload = b""
    return RawInteraction(payload=payload, **fields)


def _many(builder, items: list | None) -> tuple:
    return tuple(builder(item) for item in items or [])


def _record(cls):
    return lambda data: cls(**data)


_NESTED = {
    "ConversationUpdated": {"conversation": _record(ms.Conversation)},
    "AccountUpdated": {"account": _record(ms.Account)},
    "ContactUpdated": {"contact": _record(ms.Contact)},
    "MediaUpdated": {"media": _record(ms.Media)},
    "MemberUpdated": {"member": _record(ms.Member)},
    "InteractionUpdated": {"interaction": _raw_interaction},
    "ConversationPartialLoad": {
        "interactions": lambda items: _many(_raw_interaction, items),
        "medias": lambda items: _many(_record(ms.Media), items),
    },
    "SetAccounts": {"accounts": lambda items: _many(_record(ms.AccountMetadata), items)},
    "SetStateStreamInProgress": {
        "progress": lambda data: ms.StreamProgress(**data) if data is not None else None,
    },
    "AddFakeData": {
        "conversations": lambda items: _many(_record(ms.Conversation), items),
        "contacts": lambda items: _many(_record(ms.Contact), items),
        "interactions": lambda items: tuple(parse_interactions(_many(_raw_interaction, items))),
        "members": lambda items: _many(_record(ms.Member), items),
    },
}

ACTION_BUILDERS: dict[str, type] = {
    cls.__name__: cls
    for cls in (
        ms.ConversationUpdated,
        ms.AccountUpdated,
        ms.ContactUpdated,
        ms.MediaUpdated,
        ms.MemberUpdated,
        ms.DeviceUpdated,
        ms.ConversationPartialLoad,
        ms.InteractionUpdated,
        ms.InteractionDeleted,
        ms.ListEnded,
        ms.SetStreamError,
        ms.SetStateStreamInProgress,
        ms.SetStateStreamDone,
        ms.AddNotificationInhibitor,
        ms.RemoveNotificationInhibitor,
        ms.AddFakeData,
        ms.DeleteFakeData,
        ms.SetDaemonAddress,
        ms.SetPersistentOption,
        ms.SetAccounts,
        ms.SetStateOpening,
        ms.SetStateOpeningClients,
        ms.SetStateOpeningListingEvents,
        ms.SetStateOpeningGettingLocalSettings,
        ms.SetStateOpeningMarkConversationsClosed,
        ms.SetStateReady,
        ms.SetStateOnBoarding,
        ms.SetStateClosed,
        ms.SetNextAccount,
        ms.SetCreatedAccount,
        ms.SetStateDeleting,
        ms.BridgeClosed,
    )
}


def build_action(raw: dict) -> ms.Action:
    """
    Build one action from its fixture form.

    Unlisted types become UnknownStreamEvent, the same thing the transport
    produces for event kinds the store does not handle.
    """
    action_type = str(raw["type"])
    payload: dict[str, Any] = dict(raw.get("payload") or {})
    builder = ACTION_BUILDERS.get(action_type)
    if builder is None:
        return ms.UnknownStreamEvent(kind=action_type, payload=payload or None)
    for name, convert in _NESTED.get(action_type, {}).items():
        if name in payload:
            payload[name] = convert(payload[name])
    return builder(**payload)


@dataclass(frozen=True)
class Scenario:
    name: str
    initial_state: ms.MessengerState
    events: list[ms.Action]
    expected: dict


def load_scenario(path: Path) -> Scenario:
    raw = json.loads(path.read_text(encoding="utf-8"))
    initial = raw.get("initial", {})
    return Scenario(
        name=str(raw.get("name", path.stem)),
        initial_state=ms.initial_state(
            embedded=initial.get("embedded"),
            daemon_address=initial.get("daemon_address"),
        ),
        events=[build_action(event) for event in raw["events"]],
        expected=dict(raw.get("expected", {})),
    )


def load_scenarios(directory: Path) -> list[Scenario]:
    return [load_scenario(path) for path in sorted(directory.glob("*.json"))]
