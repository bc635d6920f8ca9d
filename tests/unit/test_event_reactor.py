import os
import random
import tempfile
import unittest
from unittest import mock

from fakes import FakeRedis, RecordingTransport, StaticResolver, make_store
from movieclub.core import metrics
from movieclub.core.config import Settings
from movieclub.errors import StoreError
from movieclub.schemas import MessagePosted, ReactionChanged, UserRef
from movieclub.services.event_reactor import (
    NOTHING_TO_SUGGEST,
    EventKind,
    EventReactor,
    canonical_symbol,
    to_share_link,
)
from movieclub.services.suggestion_engine import SuggestionEngine

CHANNEL = "movies"
BOT = "bot"
THUMBS_UP = "\U0001F44D"
EYES = "\U0001F440"
CLAPPER = "\U0001F3AC"

CATALOGUE = {
    "tt0133093": ("The Matrix", 1999),
    "tt0234215": ("The Matrix Reloaded", 2003),
    "tt0816692": ("Interstellar", 2014),
}


def link(movie_id):
    return f"have you seen this? https://www.imdb.com/title/{movie_id}/"


def posted(message_id, author, content, mentions=(), channel=CHANNEL, author_is_bot=False):
    return MessagePosted(
        message_id=message_id,
        channel_id=channel,
        author_id=author,
        author_is_bot=author_is_bot,
        content=content,
        mentions=[UserRef(user_id=u, is_bot=(u == BOT)) for u in mentions],
    )


def reaction(message_id, user, symbol, added=True, channel=CHANNEL):
    return ReactionChanged(message_id=message_id, channel_id=channel, user_id=user, symbol=symbol, added=added)


class ReactorTestCase(unittest.IsolatedAsyncioTestCase):
    settings_overrides = {}

    def setUp(self):
        self.tmpdir = tempfile.TemporaryDirectory()
        self.store = make_store(f"sqlite:///{os.path.join(self.tmpdir.name, 'movies.db')}")
        self.transport = RecordingTransport()
        self.resolver = StaticResolver(CATALOGUE)
        self.settings = Settings(
            movie_channel_id=CHANNEL,
            bot_user_id=BOT,
            owner_mention="<@owner>",
            **{"metrics_enabled": False, "rewrite_share_links": False, **self.settings_overrides},
        )
        self.reactor = EventReactor(
            self.store,
            self.resolver,
            SuggestionEngine(self.store),
            self.transport,
            self.settings,
            rng=random.Random(7),
        )

    def tearDown(self):
        self.store.close()
        self.tmpdir.cleanup()

    async def seed(self, message_id, author, movie_id):
        await self.reactor.dispatch(posted(message_id, author, link(movie_id)))


class TestClassification(ReactorTestCase):
    def test_reference_and_mention(self):
        self.assertEqual(self.reactor.classify(posted("m1", "alice", link("tt0133093"))), [EventKind.REFERENCE_POSTED])
        self.assertEqual(
            self.reactor.classify(posted("m2", "alice", "@bot what now?", mentions=[BOT, "alice", "bob"])),
            [EventKind.SUGGESTION_REQUESTED],
        )

    def test_mention_without_cohort_is_ignored(self):
        self.assertEqual(self.reactor.classify(posted("m1", "alice", "@bot hi", mentions=[BOT])), [])

    def test_cohort_needs_bot_mention(self):
        self.assertEqual(self.reactor.classify(posted("m1", "alice", "@bob hi", mentions=["bob"])), [])

    def test_other_channel_and_bots_are_ignored(self):
        self.assertEqual(self.reactor.classify(posted("m1", "alice", link("tt0133093"), channel="general")), [])
        self.assertEqual(self.reactor.classify(posted("m1", BOT, link("tt0133093"))), [])
        self.assertEqual(self.reactor.classify(posted("m1", "helper", link("tt0133093"), author_is_bot=True)), [])
        self.assertEqual(self.reactor.classify(reaction("m1", BOT, EYES)), [])

    def test_reaction_kinds(self):
        self.assertEqual(self.reactor.classify(reaction("m1", "a", THUMBS_UP)), [EventKind.ENDORSEMENT_ADDED])
        self.assertEqual(self.reactor.classify(reaction("m1", "a", THUMBS_UP, added=False)), [EventKind.ENDORSEMENT_WITHDRAWN])
        self.assertEqual(self.reactor.classify(reaction("m1", "a", EYES)), [EventKind.WATCHED_MARKED])
        self.assertEqual(self.reactor.classify(reaction("m1", "a", EYES, added=False)), [EventKind.WATCHED_UNMARKED])
        self.assertEqual(self.reactor.classify(reaction("m1", "a", "❤️")), [])

    def test_skin_tones_are_canonical(self):
        for tone in ("\U0001F3FB", "\U0001F3FC", "\U0001F3FD", "\U0001F3FE", "\U0001F3FF"):
            self.assertEqual(canonical_symbol(THUMBS_UP + tone), THUMBS_UP)
            self.assertEqual(self.reactor.classify(reaction("m1", "a", THUMBS_UP + tone)), [EventKind.ENDORSEMENT_ADDED])
        self.assertEqual(canonical_symbol(THUMBS_UP + "\uFE0F"), THUMBS_UP)

    def test_share_link(self):
        self.assertEqual(
            to_share_link("see https://www.IMDb.com/title/tt0133093/"),
            "see https://www.shareimdb.com/title/tt0133093/",
        )
        already = "see https://www.shareimdb.com/title/tt0133093/"
        self.assertEqual(to_share_link(already), already)


class TestReferencePosted(ReactorTestCase):
    async def test_reference_is_recorded_and_liked_by_author(self):
        await self.seed("m1", "alice", "tt0133093")

        movie = self.store.get_movie("tt0133093")
        self.assertEqual((movie.title, movie.year, movie.like_count), ("The Matrix", 1999, 1))
        self.assertEqual(self.store.movie_for_message("m1"), "tt0133093")
        self.assertEqual(self.transport.reactions_added, [(CHANNEL, "m1", CLAPPER)])
        self.assertEqual(self.transport.posts, [])
        self.assertEqual(self.transport.edits, [])

    async def test_same_movie_posted_again(self):
        await self.seed("m1", "alice", "tt0133093")
        await self.seed("m2", "bob", "tt0133093")

        self.assertEqual(self.store.stats(), {"movies": 1, "unwatched": 1, "likes": 2, "links": 2})
        self.assertEqual(self.store.messages_for_movie("tt0133093"), ["m1", "m2"])

    async def test_redelivered_post_is_harmless(self):
        await self.seed("m1", "alice", "tt0133093")
        await self.seed("m1", "alice", "tt0133093")

        self.assertEqual(self.store.stats(), {"movies": 1, "unwatched": 1, "likes": 1, "links": 1})
        self.assertEqual(self.transport.posts, [])

    async def test_resolution_failure_persists_nothing(self):
        await self.seed("m1", "alice", "tt9999999")

        self.assertEqual(self.store.stats(), {"movies": 0, "unwatched": 0, "likes": 0, "links": 0})
        self.assertEqual(len(self.transport.posts), 1)
        text = self.transport.texts()[0]
        self.assertTrue(text.startswith("⚠️ Error:"))
        self.assertIn("tt9999999", text)
        self.assertNotIn("<@owner>", text)


class TestShareLinkRewrite(ReactorTestCase):
    settings_overrides = {"ack_symbol": "✅"}

    async def test_rewrite_when_enabled(self):
        self.reactor.settings = self.settings.model_copy(update={"rewrite_share_links": True})
        await self.seed("m1", "alice", "tt0133093")

        self.assertEqual(
            self.transport.edits,
            [(CHANNEL, "m1", "have you seen this? https://www.shareimdb.com/title/tt0133093/")],
        )
        self.assertEqual(self.transport.reactions_added, [(CHANNEL, "m1", "✅")])


class TestSuggestionRequested(ReactorTestCase):
    async def test_tied_candidates_are_announced_and_tracked(self):
        await self.seed("m1", "A", "tt0133093")
        await self.seed("m2", "C", "tt0234215")
        await self.reactor.dispatch(reaction("m1", "B", THUMBS_UP))
        for user in ("A", "B"):
            await self.reactor.dispatch(reaction("m2", user, THUMBS_UP))
        # tt0133093: A, B (2 cohort / 2 total); tt0234215: A, B, C (2 cohort / 3 total)

        await self.reactor.dispatch(posted("m3", "A", "@bot movie night?", mentions=[BOT, "A", "B"]))

        self.assertEqual(len(self.transport.posts), 2)
        texts = sorted(self.transport.texts())
        self.assertEqual(texts, [
            "The Matrix (1999): liked by 2 of 2 (2 overall)",
            "The Matrix Reloaded (2003): liked by 2 of 2 (3 overall)",
        ])
        for _, message_id, text in self.transport.posts:
            expected = "tt0234215" if "Reloaded" in text else "tt0133093"
            self.assertEqual(self.store.movie_for_message(message_id), expected)

    async def test_likes_on_announcement_count(self):
        await self.seed("m1", "A", "tt0816692")
        await self.reactor.dispatch(posted("m2", "A", "@bot", mentions=[BOT, "A"]))
        (_, announcement_id, _), = self.transport.posts

        await self.reactor.dispatch(reaction(announcement_id, "D", THUMBS_UP + "\U0001F3FD"))

        self.assertEqual(self.store.get_movie("tt0816692").like_count, 2)

    async def test_nothing_to_suggest(self):
        await self.seed("m1", "B", "tt0133093")
        await self.reactor.dispatch(posted("m2", "A", "@bot", mentions=[BOT, "A"]))

        self.assertEqual(self.transport.texts(), [NOTHING_TO_SUGGEST])

    async def test_untracked_announcement_is_reported(self):
        await self.seed("m1", "A", "tt0816692")

        def broken_link(message_id, movie_id, kind="reference"):
            raise StoreError("disk I/O error")

        self.store.link_message = broken_link
        await self.reactor.dispatch(posted("m2", "A", "@bot", mentions=[BOT, "A"]))

        texts = self.transport.texts()
        self.assertEqual(len(texts), 2)
        self.assertTrue(texts[0].startswith("Interstellar (2014)"))
        self.assertIn("could not track suggestion", texts[1])
        self.assertTrue(texts[1].endswith("<@owner>"))


class TestEndorsements(ReactorTestCase):
    async def test_like_and_unlike(self):
        await self.seed("m1", "alice", "tt0133093")

        await self.reactor.dispatch(reaction("m1", "bob", THUMBS_UP))
        await self.reactor.dispatch(reaction("m1", "bob", THUMBS_UP))
        self.assertEqual(self.store.get_movie("tt0133093").like_count, 2)

        await self.reactor.dispatch(reaction("m1", "bob", THUMBS_UP, added=False))
        await self.reactor.dispatch(reaction("m1", "carol", THUMBS_UP, added=False))
        self.assertEqual(self.store.get_movie("tt0133093").like_count, 1)
        self.assertEqual(self.transport.posts, [])

    async def test_reaction_on_untracked_message_is_silent(self):
        await self.seed("m1", "alice", "tt0133093")
        before = self.store.stats()

        await self.reactor.dispatch(reaction("random-chat", "bob", THUMBS_UP))
        await self.reactor.dispatch(reaction("random-chat", "bob", EYES))

        self.assertEqual(self.store.stats(), before)
        self.assertEqual(self.transport.posts, [])
        self.assertEqual(self.transport.reactions_added, [(CHANNEL, "m1", CLAPPER)])


class TestWatchedToggle(ReactorTestCase):
    async def test_mark_fans_out_once(self):
        await self.seed("m1", "alice", "tt0133093")
        await self.seed("m2", "bob", "tt0133093")
        self.transport.reactions_added.clear()

        await self.reactor.dispatch(reaction("m2", "carol", EYES))
        await self.reactor.dispatch(reaction("m1", "dave", EYES))

        self.assertTrue(self.store.get_movie("tt0133093").watched)
        self.assertEqual(
            sorted(self.transport.reactions_added),
            [(CHANNEL, "m1", EYES), (CHANNEL, "m2", EYES)],
        )
        self.assertTrue(self.reactor.engine.suggest({"alice", "bob"}).is_empty)

    async def test_unmark_retracts_markers(self):
        await self.seed("m1", "alice", "tt0133093")
        await self.reactor.dispatch(reaction("m1", "carol", EYES))

        await self.reactor.dispatch(reaction("m1", "carol", EYES, added=False))
        await self.reactor.dispatch(reaction("m1", "carol", EYES, added=False))

        self.assertFalse(self.store.get_movie("tt0133093").watched)
        self.assertEqual(self.transport.reactions_removed, [(CHANNEL, "m1", EYES)])
        self.assertEqual(
            [c.movie_id for c in self.reactor.engine.suggest({"alice"}).candidates],
            ["tt0133093"],
        )

    async def test_failed_annotation_does_not_block_others(self):
        await self.seed("m1", "alice", "tt0133093")
        await self.seed("m2", "bob", "tt0133093")
        await self.seed("m3", "carol", "tt0133093")
        self.transport.reactions_added.clear()
        self.transport.fail_reactions_on = {"m2"}

        await self.reactor.dispatch(reaction("m1", "dave", EYES))

        self.assertTrue(self.store.get_movie("tt0133093").watched)
        self.assertEqual(
            sorted(self.transport.reactions_added),
            [(CHANNEL, "m1", EYES), (CHANNEL, "m3", EYES)],
        )
        self.assertEqual(self.transport.posts, [])

    async def test_bot_marker_does_not_retrigger(self):
        await self.seed("m1", "alice", "tt0133093")
        await self.reactor.dispatch(reaction("m1", "carol", EYES))
        added = list(self.transport.reactions_added)

        await self.reactor.dispatch(reaction("m1", BOT, EYES))
        await self.reactor.dispatch(reaction("m1", BOT, EYES, added=False))

        self.assertTrue(self.store.get_movie("tt0133093").watched)
        self.assertEqual(self.transport.reactions_added, added)
        self.assertEqual(self.transport.reactions_removed, [])


class TestConcurrentEvents(ReactorTestCase):
    async def test_failures_do_not_halt_the_reactor(self):
        self.reactor.submit(posted("m1", "alice", link("tt9999999")))
        self.reactor.submit(posted("m2", "bob", link("tt0133093")))
        self.reactor.submit(posted("m3", "carol", link("tt0816692")))
        await self.reactor.drain()

        self.assertEqual(self.store.stats()["movies"], 2)
        self.assertEqual(len(self.transport.posts), 1)

    async def test_duplicate_endorsements_in_flight(self):
        await self.seed("m1", "alice", "tt0133093")
        for _ in range(5):
            self.reactor.submit(reaction("m1", "bob", THUMBS_UP))
        await self.reactor.drain()

        self.assertEqual(self.store.get_movie("tt0133093").like_count, 2)
        self.assertEqual(self.transport.posts, [])


class TestFailureBoundary(ReactorTestCase):
    async def test_conflicting_redelivery_pages_owner(self):
        await self.seed("m1", "alice", "tt0133093")

        with self.assertLogs("movieclub.services.event_reactor", level="ERROR") as logs:
            await self.seed("m1", "alice", "tt0816692")

        self.assertIn("reference_posted", logs.output[0])
        self.assertEqual(len(self.transport.posts), 1)
        text = self.transport.texts()[0]
        self.assertTrue(text.startswith("⚠️ Error:"))
        self.assertTrue(text.endswith("<@owner>"))
        self.assertEqual(self.store.movie_for_message("m1"), "tt0133093")

        await self.reactor.dispatch(reaction("m1", "bob", THUMBS_UP))
        self.assertEqual(self.store.get_movie("tt0133093").like_count, 2)

    async def test_unexpected_error_pages_owner_and_reactor_keeps_going(self):
        with mock.patch.object(self.store, "add_like", side_effect=RuntimeError("database is locked")):
            with self.assertLogs("movieclub.services.event_reactor", level="ERROR"):
                await self.seed("m1", "alice", "tt0133093")

        self.assertEqual(self.transport.texts(), ["⚠️ Error: database is locked <@owner>"])
        self.assertEqual(self.transport.reactions_added, [])

        await self.seed("m2", "bob", "tt0816692")
        self.assertEqual(self.store.get_movie("tt0816692").like_count, 1)
        self.assertEqual(self.transport.reactions_added, [(CHANNEL, "m2", CLAPPER)])
        self.assertEqual(len(self.transport.posts), 1)


class TestReactorMetrics(ReactorTestCase):
    settings_overrides = {"metrics_enabled": True}

    def setUp(self):
        super().setUp()
        self.redis = FakeRedis()
        for patcher in (
            mock.patch.object(metrics, "get_redis", return_value=self.redis),
            mock.patch.object(metrics.settings, "metrics_enabled", False),
        ):
            patcher.start()
            self.addCleanup(patcher.stop)

    async def test_counts_handled_events_and_errors_per_kind(self):
        await self.seed("m1", "alice", "tt0133093")
        await self.seed("m2", "bob", "tt9999999")
        await self.reactor.dispatch(reaction("m1", "bob", THUMBS_UP))

        self.assertEqual(self.redis.counters, {
            "events.reference_posted": 1,
            "errors.reference_posted": 1,
            "events.endorsement_added": 1,
        })

    async def test_disabled_reactor_counts_nothing(self):
        self.reactor.settings = self.settings.model_copy(update={"metrics_enabled": False})
        await self.seed("m1", "alice", "tt0133093")

        self.assertEqual(self.redis.counters, {})


if __name__ == "__main__":
    unittest.main()
