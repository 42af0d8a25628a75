"""Tests for the individual detection checks."""

from types import SimpleNamespace

import aiohttp
import pytest

from modguard.datatypes.check_config import (
    BayesParams,
    CheckConfig,
    InvisibleCharsParams,
    ReputationParams,
    SimilarityParams,
    SpacingParams,
    StopWordsParams,
)
from modguard.datatypes.detection_datatypes import CheckName, ContentContext, Verdict
from modguard.datatypes.identifiers import UserID
from modguard.detection.checks.lexical import InvisibleCharsCheck, SpacingCheck, StopWordsCheck
from modguard.detection.checks.reputation import ReputationCheck
from modguard.detection.checks.statistical import BayesCheck, NaiveBayesModel, SimilarityCheck


def ctx(text, user=42):
    return ContentContext(user_id=UserID(user), text=text)


# -------------------- Lexical --------------------

async def test_stop_words_match_whole_words_and_phrases():
    config = CheckConfig(
        CheckName.STOP_WORDS,
        params=StopWordsParams(confidence_per_hit=40, words=("airdrop", "free nitro")),
    )
    check = StopWordsCheck()

    hit = await check.evaluate(ctx("Get your FREE Nitro and AIRDROP here"), config)
    assert hit.verdict is Verdict.SPAM
    assert hit.confidence == 80

    # "airdrops" is not the whole word "airdrop"
    miss = await check.evaluate(ctx("talking about airdrops in general"), config)
    assert miss.verdict is Verdict.CLEAN


async def test_stop_words_confidence_is_capped():
    config = CheckConfig(
        CheckName.STOP_WORDS,
        params=StopWordsParams(confidence_per_hit=60, words=("crypto", "giveaway", "nitro")),
    )
    result = await StopWordsCheck().evaluate(ctx("crypto giveaway nitro"), config)
    assert result.confidence == 100


async def test_stop_words_ignore_accents():
    config = CheckConfig(CheckName.STOP_WORDS, params=StopWordsParams(words=("casino",)))
    result = await StopWordsCheck().evaluate(ctx("best cásino online"), config)
    assert result.verdict is Verdict.SPAM


async def test_spacing_flags_fragmented_text():
    config = CheckConfig(CheckName.SPACING, params=SpacingParams())
    check = SpacingCheck()

    spam = await check.evaluate(ctx("f r e e c o i n s h e r e"), config)
    assert spam.verdict is Verdict.SPAM
    assert spam.confidence == 100
    assert "letters spaced out" in spam.details

    clean = await check.evaluate(ctx("this is a perfectly ordinary sentence about things"), config)
    assert clean.verdict is Verdict.CLEAN

    too_short = await check.evaluate(ctx("a b c"), config)
    assert too_short.verdict is Verdict.CLEAN
    assert too_short.details == "too short for spacing analysis"


@pytest.mark.parametrize("text", [
    "is it ok for me to go now?",
    "we are so in on it, do it up",
    "I got a new car today, it is so fast",
    "ok so https://example.com/some/very/long/path is it",
])
async def test_spacing_leaves_plain_sentences_clean(text):
    config = CheckConfig(CheckName.SPACING, params=SpacingParams())
    result = await SpacingCheck().evaluate(ctx(text), config)
    assert result.verdict is Verdict.CLEAN


async def test_spacing_letter_pattern_alone_counts_half():
    config = CheckConfig(CheckName.SPACING, params=SpacingParams())
    result = await SpacingCheck().evaluate(ctx("join now for b o n u s rewards today everyone"), config)
    assert result.verdict is Verdict.SPAM
    assert result.confidence == 20


async def test_invisible_chars():
    config = CheckConfig(CheckName.INVISIBLE_CHARS, params=InvisibleCharsParams(min_count=1))
    check = InvisibleCharsCheck()

    flagged = await check.evaluate(ctx("fr\u200bee n\u200bitro"), config)
    assert flagged.verdict is Verdict.SPAM
    assert flagged.confidence == 100

    assert (await check.evaluate(ctx("free nitro"), config)).verdict is Verdict.CLEAN


# -------------------- Statistical --------------------

class FakeFeed:
    def __init__(self, spam=(), ham=()):
        self.texts = {Verdict.SPAM: list(spam), Verdict.CLEAN: list(ham)}
        self.loads = 0

    async def samples(self, label):
        self.loads += 1
        for text in self.texts[label]:
            yield SimpleNamespace(text=text)


async def test_similarity_matches_known_spam():
    feed = FakeFeed(spam=["claim your free crypto giveaway now at the link"])
    check = SimilarityCheck(feed, refresh_seconds=300)
    config = CheckConfig(CheckName.SIMILARITY, params=SimilarityParams(similarity_threshold=0.5))

    result = await check.evaluate(ctx("claim your free crypto giveaway now at the link"), config)
    assert result.verdict is Verdict.SPAM
    assert result.confidence == 100

    unrelated = await check.evaluate(ctx("does anyone know when the meeting starts"), config)
    assert unrelated.verdict is Verdict.CLEAN

    # Snapshot is reused until it goes stale
    assert feed.loads == 1


async def test_similarity_with_empty_corpus_is_clean():
    check = SimilarityCheck(FakeFeed(), refresh_seconds=300)
    result = await check.evaluate(ctx("anything at all"), CheckConfig(CheckName.SIMILARITY))
    assert result.verdict is Verdict.CLEAN
    assert result.details == "nothing to compare"


async def test_bayes_needs_enough_samples():
    check = BayesCheck(FakeFeed(spam=["free crypto"], ham=["hello there"]))
    config = CheckConfig(CheckName.BAYES, params=BayesParams(min_samples=10))

    result = await check.evaluate(ctx("free crypto"), config)
    assert result.verdict is Verdict.CLEAN
    assert "training samples" in result.details


async def test_bayes_separates_spam_from_ham():
    spam = [f"free crypto giveaway claim now {i}" for i in range(6)]
    ham = [f"meeting notes for the project sync {i}" for i in range(6)]
    check = BayesCheck(FakeFeed(spam=spam, ham=ham))
    config = CheckConfig(CheckName.BAYES, params=BayesParams(min_samples=10, min_spam_probability=0.5))

    assert (await check.evaluate(ctx("claim free crypto"), config)).verdict is Verdict.SPAM
    assert (await check.evaluate(ctx("project meeting notes"), config)).verdict is Verdict.CLEAN


def test_naive_bayes_untrained_returns_zero():
    assert NaiveBayesModel().spam_probability("anything") == 0.0


# -------------------- Reputation --------------------

class FakeResponse:
    def __init__(self, status=200, payload=None, error=None):
        self.status = status
        self.payload = payload
        self.error = error

    async def __aenter__(self):
        if self.error is not None:
            raise self.error
        return self

    async def __aexit__(self, *exc):
        return False

    async def json(self, content_type=None):
        return self.payload


class FakeSession:
    closed = False

    def __init__(self, response):
        self.response = response
        self.requests = []

    def get(self, url, params=None, timeout=None):
        self.requests.append((url, params))
        return self.response


def reputation_config(**params):
    return CheckConfig(CheckName.REPUTATION, params=ReputationParams(endpoint="https://rep.example/check", **params))


async def test_reputation_listed_account_is_spam():
    session = FakeSession(FakeResponse(payload={"ok": True, "result": {"offenses": 3}}))
    result = await ReputationCheck(session).evaluate(ctx("hello", user=99), reputation_config())

    assert result.verdict is Verdict.SPAM
    assert result.confidence == 100
    assert session.requests == [("https://rep.example/check", {"user_id": "99"})]


async def test_reputation_unlisted_account_is_clean():
    session = FakeSession(FakeResponse(payload={"ok": False, "description": "Record not found."}))
    result = await ReputationCheck(session).evaluate(ctx("hello"), reputation_config())
    assert result.verdict is Verdict.CLEAN
    assert result.details == "not listed"


@pytest.mark.parametrize("response", [
    FakeResponse(status=503),
    FakeResponse(error=aiohttp.ClientConnectionError("refused")),
    FakeResponse(payload=["not", "a", "dict"]),
])
async def test_reputation_fails_open(response):
    result = await ReputationCheck(FakeSession(response)).evaluate(ctx("hello"), reputation_config())
    assert result.verdict is Verdict.CLEAN
    assert result.details.startswith("fail open")


async def test_reputation_quota_exhaustion_fails_open_without_calling():
    session = FakeSession(FakeResponse(payload={"ok": True, "result": {}}))
    check = ReputationCheck(session)
    config = reputation_config(per_minute_limit=1, daily_limit=10)

    await check.evaluate(ctx("first"), config)
    second = await check.evaluate(ctx("second"), config)

    assert second.verdict is Verdict.CLEAN
    assert "per-minute limit" in second.details
    assert len(session.requests) == 1
