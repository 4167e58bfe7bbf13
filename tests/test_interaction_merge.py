import random
import unittest

from interaction_codec import Acknowledge, AppMessageType, Interaction, SetUserInfo, UserMessage
import interaction_merge as im


def _msg(cid: str, sent_date: int, body: str = "", acknowledged: bool = False) -> Interaction:
    return Interaction(
        cid=cid,
        conversation_public_key="conv",
        sent_date=sent_date,
        type=AppMessageType.USER_MESSAGE,
        payload=UserMessage(body=body or cid),
        acknowledged=acknowledged,
    )


def _ack(cid: str, sent_date: int, target: str) -> Interaction:
    return Interaction(
        cid=cid,
        conversation_public_key="conv",
        sent_date=sent_date,
        type=AppMessageType.ACKNOWLEDGE,
        payload=Acknowledge(),
        target_cid=target,
    )


def _cids(interactions) -> list[str]:
    return [i.cid for i in interactions]


def _random_sequence(rng: random.Random, pool: list[str], max_len: int) -> tuple[Interaction, ...]:
    cids = rng.sample(pool, rng.randint(0, max_len))
    # Shared cids keep one date most of the time, like real redelivery.
    page = [_msg(c, (int(c[1:]) * 10) if rng.random() < 0.8 else rng.randint(0, 400)) for c in cids]
    return im.sort_interactions(page)


class MergeFastPathTests(unittest.TestCase):
    def test_empty_incoming_returns_existing(self):
        existing = (_msg("c2", 20), _msg("c1", 10))
        self.assertEqual(im.merge_interactions(existing, ()), existing)

    def test_empty_existing_returns_incoming(self):
        incoming = (_msg("c2", 20), _msg("c1", 10))
        self.assertEqual(im.merge_interactions((), incoming), incoming)

    def test_single_update_of_head_replaces_it(self):
        existing = (_msg("c5", 50), _msg("c4", 40))
        updated = _msg("c5", 55, body="edited")
        merged = im.merge_interactions(existing, (updated,))
        self.assertEqual(_cids(merged), ["c5", "c4"])
        self.assertIs(merged[0], updated)

    def test_head_update_without_duplicate(self):
        merged = im.merge_interactions((_msg("c5", 50),), (_msg("c5", 55),))
        self.assertEqual(len(merged), 1)
        self.assertEqual(merged[0].sent_date, 55)

    def test_newer_page_is_prepended(self):
        existing = (_msg("c2", 20), _msg("c1", 10))
        incoming = (_msg("c4", 40), _msg("c3", 30))
        self.assertEqual(_cids(im.merge_interactions(existing, incoming)), ["c4", "c3", "c2", "c1"])

    def test_older_page_is_appended(self):
        existing = (_msg("c4", 40), _msg("c3", 30))
        incoming = (_msg("c2", 20), _msg("c1", 10))
        self.assertEqual(_cids(im.merge_interactions(existing, incoming)), ["c4", "c3", "c2", "c1"])


class MergeOverlapTests(unittest.TestCase):
    def test_refresh_in_the_middle_keeps_order_and_takes_new_object(self):
        existing = (_msg("c3", 30), _msg("c2", 20), _msg("c1", 10))
        refreshed = _msg("c2", 20, body="refreshed")
        merged = im.merge_interactions(existing, (refreshed,))
        self.assertEqual(_cids(merged), ["c3", "c2", "c1"])
        self.assertIs(merged[1], refreshed)
        self.assertIs(merged[0], existing[0])

    def test_interleaved_pages(self):
        existing = (_msg("c5", 50), _msg("c3", 30), _msg("c1", 10))
        incoming = (_msg("c4", 40), _msg("c3", 30), _msg("c2", 20))
        merged = im.merge_interactions(existing, incoming)
        self.assertEqual(_cids(merged), ["c5", "c4", "c3", "c2", "c1"])

    def test_incoming_spanning_both_ends(self):
        existing = (_msg("c3", 30), _msg("c2", 20))
        incoming = (_msg("c4", 40), _msg("c2", 20), _msg("c1", 10))
        merged = im.merge_interactions(existing, incoming)
        self.assertEqual(_cids(merged), ["c4", "c3", "c2", "c1"])

    def test_moved_entry_is_not_duplicated(self):
        existing = (_msg("c3", 30), _msg("c2", 20), _msg("c1", 10))
        moved = _msg("c1", 25)
        merged = im.merge_interactions(existing, (moved,))
        self.assertEqual(_cids(merged), ["c3", "c1", "c2"])

    def test_head_update_older_than_second_entry_is_repositioned(self):
        existing = (_msg("c5", 50), _msg("c4", 40))
        merged = im.merge_interactions(existing, (_msg("c5", 30),))
        self.assertEqual(_cids(merged), ["c4", "c5"])

    def test_equal_sent_dates_order_by_cid(self):
        existing = (_msg("b", 10),)
        merged = im.merge_interactions(existing, (_msg("c", 10), _msg("a", 10)))
        self.assertEqual(_cids(merged), ["c", "b", "a"])

    def test_refresh_never_clears_acknowledged(self):
        existing = (_msg("c3", 30), _msg("c2", 20, acknowledged=True), _msg("c1", 10))
        merged = im.merge_interactions(existing, (_msg("c2", 20), _msg("c1", 10)))
        self.assertTrue(merged[1].acknowledged)
        head = im.merge_interactions((_msg("c9", 90, acknowledged=True),), (_msg("c9", 95),))
        self.assertTrue(head[0].acknowledged)

    def test_existing_input_is_not_mutated(self):
        existing = [_msg("c3", 30), _msg("c1", 10)]
        snapshot = list(existing)
        im.merge_interactions(existing, (_msg("c2", 20), _msg("c1", 10)))
        self.assertEqual(existing, snapshot)


class MergePropertyTests(unittest.TestCase):
    def test_result_sorted_unique_and_idempotent(self):
        rng = random.Random(20241019)
        pool = [f"c{i}" for i in range(1, 30)]
        for _ in range(300):
            a = _random_sequence(rng, pool, 12)
            b = _random_sequence(rng, pool, 8)
            merged = im.merge_interactions(a, b)
            with self.subTest(a=_cids(a), b=_cids(b)):
                keys = [im.sort_key(i) for i in merged]
                self.assertEqual(keys, sorted(keys, reverse=True))
                self.assertEqual(len(set(_cids(merged))), len(merged))
                self.assertEqual(set(_cids(merged)), set(_cids(a)) | set(_cids(b)))
                self.assertEqual(im.merge_interactions(merged, b), merged)


class SortInteractionsTests(unittest.TestCase):
    def test_sorts_newest_first_and_keeps_last_copy_of_repeated_cid(self):
        first = _msg("c1", 10, body="first copy")
        last = _msg("c1", 10, body="last copy")
        page = im.sort_interactions([first, _msg("c2", 20), last])
        self.assertEqual(_cids(page), ["c2", "c1"])
        self.assertIs(page[1], last)


class AckTests(unittest.TestCase):
    def test_ack_flags_target(self):
        interactions = (_msg("c2", 20), _msg("c1", 10))
        out = im.apply_acks_to_interactions(interactions, (_ack("a1", 25, "c1"),))
        self.assertFalse(out[0].acknowledged)
        self.assertTrue(out[1].acknowledged)
        self.assertFalse(interactions[1].acknowledged)

    def test_unmatched_ack_is_dropped(self):
        interactions = (_msg("c2", 20), _msg("c1", 10))
        out = im.apply_acks_to_interactions(interactions, (_ack("a1", 25, "missing"),))
        self.assertEqual(out, interactions)

    def test_acknowledged_is_never_cleared(self):
        interactions = (_msg("c2", 20, acknowledged=True), _msg("c1", 10))
        out = im.apply_acks_to_interactions(interactions, (_ack("a1", 25, "c1"), _ack("a2", 26, "c1")))
        self.assertTrue(all(i.acknowledged for i in out))
        self.assertIs(out[0], interactions[0])

    def test_split_acks(self):
        page = (_ack("a1", 30, "c1"), _msg("c2", 20), _msg("c1", 10))
        regular, acks = im.split_acks(page)
        self.assertEqual(_cids(regular), ["c2", "c1"])
        self.assertEqual(_cids(acks), ["a1"])


class NewestMeaningfulTests(unittest.TestCase):
    def test_skips_system_and_ack_entries(self):
        notice = Interaction(
            cid="n1",
            conversation_public_key="conv",
            sent_date=50,
            type=AppMessageType.SET_USER_INFO,
            payload=SetUserInfo(display_name="x"),
        )
        interactions = (notice, _ack("a1", 40, "c2"), _msg("c2", 20), _msg("c1", 10))
        self.assertEqual(im.newest_meaningful_interaction(interactions).cid, "c2")

    def test_none_without_user_messages(self):
        self.assertIsNone(im.newest_meaningful_interaction((_ack("a1", 40, "c2"),)))


if __name__ == "__main__":
    unittest.main()
