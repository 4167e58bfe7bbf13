"""
interaction_merge.py

Per-conversation interaction history maintenance.

Sequences are tuples sorted newest first by (sent_date, cid) and unique by
cid.  Pages arrive out of order, overlap each other and get redelivered, so
merging is idempotent: delivering a page twice only refreshes values.
"""

from __future__ import annotations

from dataclasses import replace
import logging
from typing import Iterable, Sequence

from interaction_codec import AppMessageType, Interaction


logger = logging.getLogger(__name__)

Interactions = tuple[Interaction, ...]


def sort_key(interaction: Interaction) -> tuple[int, str]:
    # Equal sent dates are ordered by cid so placement never depends on
    # arrival order.
    return interaction.sent_date, interaction.cid


def sort_interactions(page: Iterable[Interaction]) -> Interactions:
    """
    Order a decoded page newest first.

    A cid repeated inside the page keeps its last delivered copy.
    """
    by_cid: dict[str, Interaction] = {}
    for inte in page:
        by_cid[inte.cid] = inte
    return tuple(sorted(by_cid.values(), key=sort_key, reverse=True))


def _refresh(current: Interaction, fresh: Interaction) -> Interaction:
    """Return *fresh*, keeping an acknowledgment *current* already carries."""
    if current.acknowledged and not fresh.acknowledged:
        return replace(fresh, acknowledged=True)
    return fresh


def merge_interactions(existing: Sequence[Interaction], incoming: Sequence[Interaction]) -> Interactions:
    """
    Merge *incoming* into *existing*; both sorted newest first, cid-unique.
    """
    if not incoming:
        return tuple(existing)
    if not existing:
        return tuple(incoming)

    head = existing[0]
    if len(incoming) == 1 and incoming[0].cid == head.cid:
        if len(existing) == 1 or sort_key(incoming[0]) >= sort_key(existing[1]):
            return (_refresh(head, incoming[0]),) + tuple(existing[1:])

    known = {inte.cid: sort_key(inte) for inte in existing}
    shared = [inte for inte in incoming if inte.cid in known]

    if not shared:
        if sort_key(incoming[-1]) >= sort_key(head):
            return tuple(incoming) + tuple(existing)
        if sort_key(existing[-1]) >= sort_key(incoming[0]):
            return tuple(existing) + tuple(incoming)

    # Overlap: work on a private copy.  A cid that moved (its sent_date
    # changed) is pulled out first so it can only come back at its new spot.
    moved = {inte.cid for inte in shared if known[inte.cid] != sort_key(inte)}
    previous = {inte.cid: inte for inte in existing if inte.cid in moved}
    merged = [inte for inte in existing if inte.cid not in moved]

    cursor = len(merged)
    for inte in reversed(incoming):
        key = sort_key(inte)
        # Only ever moves towards the head: every later entry is newer.
        while cursor > 0 and sort_key(merged[cursor - 1]) <= key:
            cursor -= 1
        if cursor < len(merged) and merged[cursor].cid == inte.cid:
            merged[cursor] = _refresh(merged[cursor], inte)
        elif inte.cid in previous:
            merged.insert(cursor, _refresh(previous[inte.cid], inte))
        else:
            merged.insert(cursor, inte)

    return tuple(merged)


def apply_acks_to_interactions(interactions: Sequence[Interaction], acks: Iterable[Interaction]) -> Interactions:
    """
    Flag every interaction targeted by an ack as acknowledged.

    Acks whose target is not (yet) in *interactions* are dropped; a target
    arriving later is not acknowledged retroactively.
    """
    out = list(interactions)
    index = {inte.cid: i for i, inte in enumerate(out)}
    for ack in acks:
        pos = index.get(ack.target_cid)
        if pos is None:
            logger.debug("dropping ack %s: target %r not loaded", ack.cid, ack.target_cid)
            continue
        if not out[pos].acknowledged:
            out[pos] = replace(out[pos], acknowledged=True)
    return tuple(out)


def split_acks(interactions: Iterable[Interaction]) -> tuple[Interactions, Interactions]:
    """Return (non-ack entries, ack entries), each keeping input order."""
    regular: list[Interaction] = []
    acks: list[Interaction] = []
    for inte in interactions:
        if inte.type == AppMessageType.ACKNOWLEDGE:
            acks.append(inte)
        else:
            regular.append(inte)
    return tuple(regular), tuple(acks)


def newest_meaningful_interaction(interactions: Sequence[Interaction]) -> Interaction | None:
    """Newest user-authored message, skipping acks and system notices."""
    for inte in interactions:
        if inte.type == AppMessageType.USER_MESSAGE:
            return inte
    return None


def remove_interactions(interactions: Sequence[Interaction], cids: Iterable[str]) -> Interactions:
    drop = set(cids)
    return tuple(inte for inte in interactions if inte.cid not in drop)
