"""
messenger_state.py

Messenger store core.

Design goals:
- Pure reducer: (state, action) -> state, one action fully reduced at a time
- Per-conversation interaction history kept sorted and cid-unique under
  out-of-order, overlapping and repeated page delivery
- Lifecycle chains expressed as follow-up actions run by a trampoline
- Nothing raises: unknown actions, undecodable interactions, unmatched acks
  and unexpected lifecycle edges are logged and absorbed
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
import logging
from types import MappingProxyType
from typing import Any, Mapping

import config
from app_lifecycle import AppState, check_app_state_change, opening_state, ready_state
from interaction_codec import Interaction, RawInteraction, mark_fake, parse_interactions
from interaction_merge import (
    Interactions,
    apply_acks_to_interactions,
    merge_interactions,
    newest_meaningful_interaction,
    remove_interactions,
    sort_interactions,
    split_acks,
)


logger = logging.getLogger(__name__)


# --------------------------- Entities ---------------------------


@dataclass(frozen=True)
class Conversation:
    public_key: str
    display_name: str = ""
    is_open: bool = True
    last_update: int = 0
    contact_public_key: str = ""
    unread_count: int = 0
    fake: bool = False


@dataclass(frozen=True)
class Contact:
    public_key: str
    display_name: str = ""
    state: str = ""
    conversation_public_key: str = ""
    fake: bool = False


@dataclass(frozen=True)
class Member:
    public_key: str
    conversation_public_key: str
    display_name: str = ""
    fake: bool = False


@dataclass(frozen=True)
class Media:
    cid: str
    mime_type: str = ""
    filename: str = ""
    display_name: str = ""


@dataclass(frozen=True)
class Account:
    public_key: str
    display_name: str = ""
    link: str = ""


@dataclass(frozen=True)
class AccountMetadata:
    account_id: str
    name: str = ""
    avatar_cid: str = ""
    creation_date: int = 0


@dataclass(frozen=True)
class StreamProgress:
    doing: str = ""
    progress: float = 0.0
    completed: int = 0
    total: int = 0


@dataclass(frozen=True)
class MessengerState:
    app_state: AppState = AppState.CLOSED
    account: Account | None = None
    accounts: dict[str, AccountMetadata] = field(default_factory=dict)
    conversations: dict[str, Conversation] = field(default_factory=dict)
    contacts: dict[str, Contact] = field(default_factory=dict)
    # conversation public key -> member public key -> member
    members: dict[str, dict[str, Member]] = field(default_factory=dict)
    medias: dict[str, Media] = field(default_factory=dict)
    # conversation public key -> interactions, newest first
    interactions: dict[str, Interactions] = field(default_factory=dict)
    initial_list_complete: bool = False
    stream_error: str | None = None
    stream_in_progress: StreamProgress | None = None
    notification_inhibitors: tuple[str, ...] = ()
    persistent_options: dict[str, Any] = field(default_factory=dict)
    embedded: bool = True
    daemon_address: str = ""
    selected_account: str | None = None
    next_selected_account: str | None = None
    is_new_account: bool | None = None
    # Opaque transport handles, attached once clients are up.
    client: Any = None
    protocol_client: Any = None


def initial_state(embedded: bool | None = None, daemon_address: str | None = None) -> MessengerState:
    return MessengerState(
        embedded=config.EMBEDDED if embedded is None else embedded,
        daemon_address=config.DAEMON_ADDRESS if daemon_address is None else daemon_address,
        next_selected_account=config.DEFAULT_ACCOUNT_ID,
    )


# --------------------------- Stream events ---------------------------


@dataclass(frozen=True)
class ConversationUpdated:
    conversation: Conversation


@dataclass(frozen=True)
class AccountUpdated:
    account: Account


@dataclass(frozen=True)
class ContactUpdated:
    contact: Contact


@dataclass(frozen=True)
class MediaUpdated:
    media: Media


@dataclass(frozen=True)
class MemberUpdated:
    member: Member


@dataclass(frozen=True)
class DeviceUpdated:
    device_public_key: str = ""


@dataclass(frozen=True)
class ConversationPartialLoad:
    conversation_public_key: str
    interactions: tuple[RawInteraction, ...] = ()
    medias: tuple[Media, ...] = ()


@dataclass(frozen=True)
class InteractionUpdated:
    interaction: RawInteraction


@dataclass(frozen=True)
class InteractionDeleted:
    cid: str
    # Older daemons only send the cid.
    conversation_public_key: str = ""


@dataclass(frozen=True)
class ListEnded:
    pass


@dataclass(frozen=True)
class UnknownStreamEvent:
    """A stream event kind the transport decoded but the store has no handler for."""

    kind: str
    payload: Any = None


StreamEvent = (
    ConversationUpdated
    | AccountUpdated
    | ContactUpdated
    | MediaUpdated
    | MemberUpdated
    | DeviceUpdated
    | ConversationPartialLoad
    | InteractionUpdated
    | InteractionDeleted
    | ListEnded
    | UnknownStreamEvent
)


# --------------------------- Local actions ---------------------------


@dataclass(frozen=True)
class SetStreamError:
    error: str | None


@dataclass(frozen=True)
class SetStateStreamInProgress:
    progress: StreamProgress | None


@dataclass(frozen=True)
class SetStateStreamDone:
    pass


@dataclass(frozen=True)
class AddNotificationInhibitor:
    inhibitor: str


@dataclass(frozen=True)
class RemoveNotificationInhibitor:
    inhibitor: str


@dataclass(frozen=True)
class AddFakeData:
    conversations: tuple[Conversation, ...] = ()
    contacts: tuple[Contact, ...] = ()
    interactions: tuple[Interaction, ...] = ()
    members: tuple[Member, ...] = ()


@dataclass(frozen=True)
class DeleteFakeData:
    pass


@dataclass(frozen=True)
class SetDaemonAddress:
    value: str


@dataclass(frozen=True)
class SetPersistentOption:
    options: Mapping[str, Any]


@dataclass(frozen=True)
class SetAccounts:
    accounts: tuple[AccountMetadata, ...]


# --------------------------- Lifecycle actions ---------------------------


@dataclass(frozen=True)
class SetStateOpening:
    pass


@dataclass(frozen=True)
class SetStateOpeningClients:
    pass


@dataclass(frozen=True)
class SetStateOpeningListingEvents:
    client: Any = None
    protocol_client: Any = None


@dataclass(frozen=True)
class SetStateOpeningGettingLocalSettings:
    pass


@dataclass(frozen=True)
class SetStateOpeningMarkConversationsClosed:
    pass


@dataclass(frozen=True)
class SetStateReady:
    pass


@dataclass(frozen=True)
class SetStateOnBoarding:
    pass


@dataclass(frozen=True)
class SetStateClosed:
    pass


@dataclass(frozen=True)
class SetNextAccount:
    account_id: str | None


@dataclass(frozen=True)
class SetCreatedAccount:
    account_id: str


@dataclass(frozen=True)
class SetStateDeleting:
    pass


@dataclass(frozen=True)
class BridgeClosed:
    pass


LocalAction = (
    SetStreamError
    | SetStateStreamInProgress
    | SetStateStreamDone
    | AddNotificationInhibitor
    | RemoveNotificationInhibitor
    | AddFakeData
    | DeleteFakeData
    | SetDaemonAddress
    | SetPersistentOption
    | SetAccounts
)

LifecycleAction = (
    SetStateOpening
    | SetStateOpeningClients
    | SetStateOpeningListingEvents
    | SetStateOpeningGettingLocalSettings
    | SetStateOpeningMarkConversationsClosed
    | SetStateReady
    | SetStateOnBoarding
    | SetStateClosed
    | SetNextAccount
    | SetCreatedAccount
    | SetStateDeleting
    | BridgeClosed
)

Action = StreamEvent | LocalAction | LifecycleAction


# --------------------------- Read-only views ---------------------------


def interactions_for(state: MessengerState, conversation_public_key: str) -> Interactions:
    return state.interactions.get(conversation_public_key, ())


def members_of(state: MessengerState, conversation_public_key: str) -> Mapping[str, Member]:
    return MappingProxyType(state.members.get(conversation_public_key, {}))


def to_dict(state: MessengerState) -> dict:
    """JSON-friendly summary of a snapshot, for logs and the replay tool."""
    return {
        "app_state": state.app_state.value,
        "account": state.account.public_key if state.account else None,
        "accounts": sorted(state.accounts),
        "conversations": sorted(state.conversations),
        "contacts": sorted(state.contacts),
        "members": {k: sorted(v) for k, v in sorted(state.members.items())},
        "medias": sorted(state.medias),
        "interactions": {
            k: [{"cid": i.cid, "sent_date": i.sent_date, "acknowledged": i.acknowledged} for i in v]
            for k, v in sorted(state.interactions.items())
        },
        "initial_list_complete": state.initial_list_complete,
        "stream_error": state.stream_error,
        "notification_inhibitors": list(state.notification_inhibitors),
        "embedded": state.embedded,
        "selected_account": state.selected_account,
        "next_selected_account": state.next_selected_account,
        "is_new_account": state.is_new_account,
    }


# --------------------------- Stream handlers ---------------------------


def _conversation_updated(state: MessengerState, conv: Conversation) -> MessengerState:
    interactions = state.interactions
    key = conv.public_key
    # Closed conversations only keep what the conversation list shows.
    if not conv.is_open and key in interactions:
        newest = newest_meaningful_interaction(interactions[key])
        interactions = {**interactions, key: (newest,) if newest else ()}
    return replace(
        state,
        conversations={**state.conversations, key: conv},
        interactions=interactions,
    )


def _member_updated(state: MessengerState, member: Member) -> MessengerState:
    conv_key = member.conversation_public_key
    conv_members = {**state.members.get(conv_key, {}), member.public_key: member}
    return replace(state, members={**state.members, conv_key: conv_members})


def _partial_load(
    state: MessengerState,
    conversation_public_key: str,
    raw_interactions: tuple[RawInteraction, ...],
    medias: tuple[Media, ...] = (),
) -> MessengerState:
    page = sort_interactions(parse_interactions(raw_interactions))
    regular, acks = split_acks(page)

    interactions = state.interactions
    if page or conversation_public_key in interactions:
        merged = merge_interactions(interactions.get(conversation_public_key, ()), regular)
        merged = apply_acks_to_interactions(merged, acks)
        interactions = {**interactions, conversation_public_key: merged}

    merged_medias = state.medias
    if medias:
        merged_medias = {**merged_medias, **{m.cid: m for m in medias}}

    return replace(state, interactions=interactions, medias=merged_medias)


def _interaction_deleted(state: MessengerState, event: InteractionDeleted) -> MessengerState:
    if not event.conversation_public_key:
        # Without the conversation the cid cannot be located reliably.
        logger.debug("ignoring deletion of %s: no conversation in payload", event.cid)
        return state
    current = state.interactions.get(event.conversation_public_key)
    if not current:
        return state
    remaining = remove_interactions(current, (event.cid,))
    if len(remaining) == len(current):
        return state
    return replace(state, interactions={**state.interactions, event.conversation_public_key: remaining})


# --------------------------- Local handlers ---------------------------


def _add_fake_data(state: MessengerState, action: AddFakeData) -> MessengerState:
    pages: dict[str, list[Interaction]] = {}
    for inte in action.interactions:
        pages.setdefault(inte.conversation_public_key, []).append(mark_fake(inte))

    interactions = dict(state.interactions)
    for conv_key, page in pages.items():
        interactions[conv_key] = merge_interactions(interactions.get(conv_key, ()), sort_interactions(page))

    members = dict(state.members)
    for member in action.members:
        fake_member = replace(member, fake=True)
        conv_key = fake_member.conversation_public_key
        members[conv_key] = {**members.get(conv_key, {}), fake_member.public_key: fake_member}

    return replace(
        state,
        conversations={**state.conversations, **{c.public_key: replace(c, fake=True) for c in action.conversations}},
        contacts={**state.contacts, **{c.public_key: replace(c, fake=True) for c in action.contacts}},
        interactions=interactions,
        members=members,
    )


def _delete_fake_data(state: MessengerState) -> MessengerState:
    interactions = {}
    for conv_key, intes in state.interactions.items():
        kept = tuple(i for i in intes if not i.fake)
        if kept or not intes:
            interactions[conv_key] = kept

    members = {}
    for conv_key, conv_members in state.members.items():
        kept_members = {k: m for k, m in conv_members.items() if not m.fake}
        if kept_members or not conv_members:
            members[conv_key] = kept_members

    return replace(
        state,
        conversations={k: c for k, c in state.conversations.items() if not c.fake},
        contacts={k: c for k, c in state.contacts.items() if not c.fake},
        interactions=interactions,
        members=members,
    )


def _add_inhibitor(state: MessengerState, inhibitor: str) -> MessengerState:
    if inhibitor in state.notification_inhibitors:
        return state
    return replace(state, notification_inhibitors=state.notification_inhibitors + (inhibitor,))


def _remove_inhibitor(state: MessengerState, inhibitor: str) -> MessengerState:
    if inhibitor not in state.notification_inhibitors:
        return state
    return replace(
        state,
        notification_inhibitors=tuple(i for i in state.notification_inhibitors if i != inhibitor),
    )


# --------------------------- Lifecycle handlers ---------------------------


def _set_closed(state: MessengerState) -> tuple[MessengerState, list[Action]]:
    st = replace(
        initial_state(embedded=state.embedded, daemon_address=state.daemon_address),
        accounts=state.accounts,
        is_new_account=state.is_new_account,
        app_state=AppState.CLOSED,
        next_selected_account=state.next_selected_account if state.embedded else config.DEFAULT_ACCOUNT_ID,
    )
    if st.next_selected_account is not None:
        return st, [SetStateOpening()]
    return st, []


def _set_opening(state: MessengerState) -> MessengerState:
    if state.next_selected_account is None:
        return state
    return replace(
        state,
        selected_account=state.next_selected_account,
        next_selected_account=None,
        app_state=opening_state(state.embedded),
    )


def _set_next_account(state: MessengerState, account_id: str | None) -> tuple[MessengerState, list[Action]]:
    if account_id is None or not state.embedded or account_id == state.selected_account:
        return state, []
    st = replace(state, next_selected_account=account_id, is_new_account=None)
    return st, [SetStateClosed()]


def _set_ready(state: MessengerState) -> MessengerState:
    display_name = state.account.display_name if state.account else None
    return replace(
        state,
        app_state=ready_state(len(state.accounts), display_name, state.is_new_account),
        is_new_account=None,
    )


def _bridge_closed(state: MessengerState) -> tuple[MessengerState, list[Action]]:
    if state.app_state == AppState.DELETING_CLOSING_DAEMON:
        return replace(state, app_state=AppState.DELETING_CLEARING_STORAGE), []
    return state, [SetStateClosed()]


# --------------------------- Reducer ---------------------------


def transition(state: MessengerState, action: Action) -> tuple[MessengerState, list[Action]]:
    """
    Apply one action without chaining.

    Returns the new state and the follow-up actions that must run right
    after it, in order.
    """
    st = state

    # Stream events.
    if isinstance(action, ConversationUpdated):
        return _conversation_updated(st, action.conversation), []
    if isinstance(action, AccountUpdated):
        return replace(st, account=action.account), []
    if isinstance(action, ContactUpdated):
        return replace(st, contacts={**st.contacts, action.contact.public_key: action.contact}), []
    if isinstance(action, MediaUpdated):
        return replace(st, medias={**st.medias, action.media.cid: action.media}), []
    if isinstance(action, MemberUpdated):
        return _member_updated(st, action.member), []
    if isinstance(action, ConversationPartialLoad):
        return _partial_load(st, action.conversation_public_key, action.interactions, action.medias), []
    if isinstance(action, InteractionUpdated):
        inte = action.interaction
        return _partial_load(st, inte.conversation_public_key, (inte,)), []
    if isinstance(action, InteractionDeleted):
        return _interaction_deleted(st, action), []
    if isinstance(action, ListEnded):
        return replace(st, initial_list_complete=True), []
    if isinstance(action, DeviceUpdated):
        logger.info("ignored event type DeviceUpdated")
        return st, []
    if isinstance(action, UnknownStreamEvent):
        logger.warning("Unknown action type %s", action.kind)
        return st, []

    # Local actions.
    if isinstance(action, SetStreamError):
        return replace(st, stream_error=action.error), []
    if isinstance(action, SetStateStreamInProgress):
        return replace(st, stream_in_progress=action.progress), []
    if isinstance(action, SetStateStreamDone):
        return replace(st, app_state=AppState.STREAM_DONE, stream_in_progress=None), []
    if isinstance(action, AddNotificationInhibitor):
        return _add_inhibitor(st, action.inhibitor), []
    if isinstance(action, RemoveNotificationInhibitor):
        return _remove_inhibitor(st, action.inhibitor), []
    if isinstance(action, AddFakeData):
        return _add_fake_data(st, action), []
    if isinstance(action, DeleteFakeData):
        return _delete_fake_data(st), []
    if isinstance(action, SetDaemonAddress):
        return replace(st, daemon_address=action.value), []
    if isinstance(action, SetPersistentOption):
        return replace(st, persistent_options=dict(action.options)), []
    if isinstance(action, SetAccounts):
        return replace(st, accounts={a.account_id: a for a in action.accounts}), []

    # Lifecycle.
    if isinstance(action, SetStateOpening):
        return _set_opening(st), []
    if isinstance(action, SetStateOpeningClients):
        return replace(st, app_state=AppState.OPENING_WAITING_FOR_CLIENTS), []
    if isinstance(action, SetStateOpeningListingEvents):
        return replace(
            st,
            client=action.client or st.client,
            protocol_client=action.protocol_client or st.protocol_client,
            app_state=AppState.OPENING_LISTING_EVENTS,
        ), []
    if isinstance(action, SetStateOpeningGettingLocalSettings):
        return replace(st, app_state=AppState.OPENING_GETTING_LOCAL_SETTINGS), []
    if isinstance(action, SetStateOpeningMarkConversationsClosed):
        return replace(st, app_state=AppState.OPENING_MARK_CONVERSATIONS_AS_CLOSED), []
    if isinstance(action, SetStateReady):
        return _set_ready(st), []
    if isinstance(action, SetStateOnBoarding):
        return replace(st, app_state=AppState.ON_BOARDING if st.account else st.app_state), []
    if isinstance(action, SetStateClosed):
        return _set_closed(st)
    if isinstance(action, SetNextAccount):
        return _set_next_account(st, action.account_id)
    if isinstance(action, SetCreatedAccount):
        st = replace(
            st,
            next_selected_account=action.account_id,
            is_new_account=True,
            app_state=AppState.OPENING_WAITING_FOR_CLIENTS,
        )
        return st, [SetStateClosed()]
    if isinstance(action, SetStateDeleting):
        return replace(st, app_state=AppState.DELETING_CLOSING_DAEMON), []
    if isinstance(action, BridgeClosed):
        return _bridge_closed(st)

    logger.warning("Unknown action type %s", type(action).__name__)
    return st, []


def reduce(state: MessengerState, action: Action) -> MessengerState:
    """
    Pure reducer for one action, follow-ups included.

    Follow-ups returned by a step run before anything queued earlier, so a
    chain reads like nested calls without re-entering this function.  Every
    step's app state change is checked against the expected-edge table.
    """
    st = state
    pending: list[Action] = [action]
    steps = 0
    while pending:
        if steps >= config.MAX_CHAINED_ACTIONS:
            logger.warning(
                "dropping %d chained action(s) after %d steps (first: %s)",
                len(pending),
                steps,
                type(pending[0]).__name__,
            )
            break
        current = pending.pop(0)
        steps += 1
        nxt, follow_ups = transition(st, current)
        check_app_state_change(st.app_state, nxt.app_state, type(current).__name__)
        st = nxt
        pending[:0] = follow_ups
    return st
