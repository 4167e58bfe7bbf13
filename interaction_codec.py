"""
interaction_codec.py

Typed interactions and the best-effort decoder that produces them.

The transport hands over interactions as (type tag, opaque payload bytes).
Payloads are UTF-8 JSON objects.  A record whose tag has no registered
decoder, or whose payload fails to decode, is mapped to UNDEFINED and then
dropped: the store keeps working while the protocol grows message types this
client does not know yet.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from enum import IntEnum
import json
import logging
from typing import Any, Callable, Iterable


logger = logging.getLogger(__name__)


class AppMessageType(IntEnum):
    UNDEFINED = 0
    USER_MESSAGE = 1
    USER_REACTION = 2
    GROUP_INVITATION = 3
    SET_GROUP_INFO = 4
    SET_USER_INFO = 5
    ACKNOWLEDGE = 6
    REPLY_OPTIONS = 7
    MONITOR_METADATA = 8


# --------------------------- Payloads ---------------------------


@dataclass(frozen=True)
class UserMessage:
    body: str


@dataclass(frozen=True)
class UserReaction:
    emoji: str
    target: str = ""


@dataclass(frozen=True)
class GroupInvitation:
    link: str


@dataclass(frozen=True)
class SetGroupInfo:
    display_name: str = ""
    avatar_cid: str = ""


@dataclass(frozen=True)
class SetUserInfo:
    display_name: str = ""
    avatar_cid: str = ""


@dataclass(frozen=True)
class Acknowledge:
    pass


@dataclass(frozen=True)
class ReplyOption:
    display: str
    payload: str


@dataclass(frozen=True)
class ReplyOptions:
    options: tuple[ReplyOption, ...] = ()


# --------------------------- Interactions ---------------------------


@dataclass(frozen=True)
class RawInteraction:
    """Interaction as delivered by the transport, payload still encoded."""

    cid: str
    conversation_public_key: str
    type: int
    payload: bytes = b""
    sent_date: int = 0
    target_cid: str = ""
    is_mine: bool = False
    acknowledged: bool = False


@dataclass(frozen=True)
class Interaction:
    cid: str
    conversation_public_key: str
    sent_date: int
    type: AppMessageType
    payload: Any = None
    acknowledged: bool = False
    target_cid: str = ""
    is_mine: bool = False
    fake: bool = False


# --------------------------- Decoders ---------------------------


PayloadDecoder = Callable[[dict], Any]


def _str_field(data: dict, name: str, required: bool = False) -> str:
    if name not in data:
        if required:
            raise KeyError(name)
        return ""
    value = data[name]
    if not isinstance(value, str):
        raise TypeError(f"{name} must be a string, got {type(value).__name__}")
    return value


def _decode_user_message(data: dict) -> UserMessage:
    return UserMessage(body=_str_field(data, "body"))


def _decode_user_reaction(data: dict) -> UserReaction:
    return UserReaction(emoji=_str_field(data, "emoji", required=True), target=_str_field(data, "target"))


def _decode_group_invitation(data: dict) -> GroupInvitation:
    return GroupInvitation(link=_str_field(data, "link", required=True))


def _decode_set_group_info(data: dict) -> SetGroupInfo:
    return SetGroupInfo(display_name=_str_field(data, "display_name"), avatar_cid=_str_field(data, "avatar_cid"))


def _decode_set_user_info(data: dict) -> SetUserInfo:
    return SetUserInfo(display_name=_str_field(data, "display_name"), avatar_cid=_str_field(data, "avatar_cid"))


def _decode_acknowledge(data: dict) -> Acknowledge:
    return Acknowledge()


def _decode_reply_options(data: dict) -> ReplyOptions:
    raw_options = data.get("options", [])
    if not isinstance(raw_options, list):
        raise TypeError("options must be a list")
    options = []
    for raw in raw_options:
        if not isinstance(raw, dict):
            raise TypeError("reply option must be an object")
        options.append(ReplyOption(display=_str_field(raw, "display"), payload=_str_field(raw, "payload")))
    return ReplyOptions(options=tuple(options))


# No decoder for MONITOR_METADATA: those records are daemon
# diagnostics and never reach the conversation view.
PAYLOAD_DECODERS: dict[AppMessageType, PayloadDecoder] = {
    AppMessageType.USER_MESSAGE: _decode_user_message,
    AppMessageType.USER_REACTION: _decode_user_reaction,
    AppMessageType.GROUP_INVITATION: _decode_group_invitation,
    AppMessageType.SET_GROUP_INFO: _decode_set_group_info,
    AppMessageType.SET_USER_INFO: _decode_set_user_info,
    AppMessageType.ACKNOWLEDGE: _decode_acknowledge,
    AppMessageType.REPLY_OPTIONS: _decode_reply_options,
}


def register_payload_decoder(message_type: AppMessageType, decoder: PayloadDecoder) -> None:
    """
    Register (or replace) the decoder for one message type.

    The decoder receives the payload's JSON object and returns the typed
    payload.  Any exception it raises marks the payload as malformed; the
    record is then dropped like an unknown type.
    """
    if message_type == AppMessageType.UNDEFINED:
        raise ValueError("UNDEFINED interactions cannot have a decoder")
    PAYLOAD_DECODERS[message_type] = decoder


def _resolve_type(tag: int) -> AppMessageType:
    try:
        return AppMessageType(tag)
    except ValueError:
        return AppMessageType.UNDEFINED


def _decode_payload(message_type: AppMessageType, payload: bytes) -> Any:
    data = json.loads(payload.decode("utf-8")) if payload else {}
    if not isinstance(data, dict):
        raise TypeError("payload must be a JSON object")
    return PAYLOAD_DECODERS[message_type](data)


def parse_interaction(raw: RawInteraction) -> Interaction:
    """
    Decode one raw record.

    Never raises: anything that cannot be decoded comes back typed UNDEFINED
    with no payload.
    """
    message_type = _resolve_type(raw.type)
    payload = None
    if message_type in PAYLOAD_DECODERS:
        try:
            payload = _decode_payload(message_type, raw.payload)
        except Exception as e:
            # Peer-controlled bytes: deep nesting raises RecursionError, and
            # registered decoders may fail any way they like.
            logger.debug("undecodable %s payload for interaction %s: %s", message_type.name, raw.cid, e)
            message_type = AppMessageType.UNDEFINED
    else:
        message_type = AppMessageType.UNDEFINED

    return Interaction(
        cid=raw.cid,
        conversation_public_key=raw.conversation_public_key,
        sent_date=raw.sent_date,
        type=message_type,
        payload=payload if message_type != AppMessageType.UNDEFINED else None,
        acknowledged=raw.acknowledged,
        target_cid=raw.target_cid,
        is_mine=raw.is_mine,
    )


def parse_interactions(raw_interactions: Iterable[RawInteraction]) -> list[Interaction]:
    """Decode a batch, dropping every record that decoded to UNDEFINED."""
    out: list[Interaction] = []
    dropped = 0
    for raw in raw_interactions:
        parsed = parse_interaction(raw)
        if parsed.type == AppMessageType.UNDEFINED:
            dropped += 1
            continue
        out.append(parsed)
    if dropped:
        logger.debug("dropped %d unrecognized interaction(s)", dropped)
    return out


def mark_fake(interaction: Interaction) -> Interaction:
    return interaction if interaction.fake else replace(interaction, fake=True)
