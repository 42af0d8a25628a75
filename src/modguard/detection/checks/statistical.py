"""
Checks that learn from the training corpus: similarity and naive Bayes.

Both pull labeled samples from the :class:`TrainingCorpusFeed` on their own
refresh cadence. The feed never pushes; a check holds a snapshot until the
snapshot is older than its refresh interval.
"""

from __future__ import annotations

import asyncio
import math
import time
from collections import Counter
from typing import List

from modguard.datatypes.check_config import CheckConfig
from modguard.datatypes.detection_datatypes import CheckName, CheckResult, ContentContext, Verdict
from modguard.detection.checks.base import Check
from modguard.detection.checks.lexical import WORD_RE, normalize
from modguard.util.logger import get_logger

logger = get_logger("statistical_checks")


def tokenize(text: str) -> List[str]:
    return WORD_RE.findall(normalize(text or ""))


def shingles(tokens: List[str], size: int = 2) -> set:
    if len(tokens) < size:
        return {tuple(tokens)} if tokens else set()
    return {tuple(tokens[i:i + size]) for i in range(len(tokens) - size + 1)}


class CorpusSnapshot:
    """Cached copy of the samples of one label, refreshed from the feed."""

    def __init__(self, feed, label: Verdict):
        self.feed = feed
        self.label = label
        self.texts: List[str] = []
        self.loaded_at: float | None = None
        self._lock = asyncio.Lock()

    def is_stale(self, refresh_seconds: float) -> bool:
        return self.loaded_at is None or time.monotonic() - self.loaded_at >= refresh_seconds

    async def refresh_if_stale(self, refresh_seconds: float, limit: int | None = None) -> bool:
        """Reload from the feed when stale. Returns True when a reload happened."""
        if not self.is_stale(refresh_seconds):
            return False
        async with self._lock:
            if not self.is_stale(refresh_seconds):
                return False
            texts = []
            async for sample in self.feed.samples(self.label):
                texts.append(sample.text)
                if limit is not None and len(texts) >= limit:
                    break
            self.texts = texts
            self.loaded_at = time.monotonic()
            logger.debug("[TRAINING] Loaded %d %s samples", len(texts), self.label)
            return True


class SimilarityCheck(Check):
    """Compares a message with recent confirmed spam using bigram Jaccard similarity."""

    name = CheckName.SIMILARITY

    def __init__(self, feed, refresh_seconds: float = 300.0):
        self.refresh_seconds = refresh_seconds
        self.spam = CorpusSnapshot(feed, Verdict.SPAM)

    async def evaluate(self, context: ContentContext, config: CheckConfig) -> CheckResult:
        params = config.params
        await self.spam.refresh_if_stale(self.refresh_seconds, params.max_samples)

        target = shingles(tokenize(context.text))
        if not target or not self.spam.texts:
            return CheckResult.clean(self.name, details="nothing to compare")

        best = 0.0
        for text in self.spam.texts:
            other = shingles(tokenize(text))
            if not other:
                continue
            score = len(target & other) / len(target | other)
            if score > best:
                best = score
                if best >= 1.0:
                    break

        confidence = int(round(best * 100))
        if best >= params.similarity_threshold:
            return CheckResult.spam(self.name, confidence, details=f"similarity {best:.2f}")
        return CheckResult.clean(self.name, confidence, details=f"similarity {best:.2f}")


class NaiveBayesModel:
    """Multinomial naive Bayes over word tokens with Laplace smoothing."""

    def __init__(self):
        self.spam_counts: Counter = Counter()
        self.ham_counts: Counter = Counter()
        self.spam_docs = 0
        self.ham_docs = 0

    def train(self, spam_texts: List[str], ham_texts: List[str]) -> None:
        self.spam_counts = Counter()
        self.ham_counts = Counter()
        for text in spam_texts:
            self.spam_counts.update(tokenize(text))
        for text in ham_texts:
            self.ham_counts.update(tokenize(text))
        self.spam_docs = len(spam_texts)
        self.ham_docs = len(ham_texts)

    @property
    def sample_count(self) -> int:
        return self.spam_docs + self.ham_docs

    def spam_probability(self, text: str) -> float:
        tokens = tokenize(text)
        if not tokens or not self.spam_docs or not self.ham_docs:
            return 0.0
        vocabulary = len(set(self.spam_counts) | set(self.ham_counts)) or 1
        spam_total = sum(self.spam_counts.values())
        ham_total = sum(self.ham_counts.values())

        log_spam = math.log(self.spam_docs / self.sample_count)
        log_ham = math.log(self.ham_docs / self.sample_count)
        for token in tokens:
            log_spam += math.log((self.spam_counts[token] + 1) / (spam_total + vocabulary))
            log_ham += math.log((self.ham_counts[token] + 1) / (ham_total + vocabulary))

        # Normalise in log space to avoid underflow on long messages
        peak = max(log_spam, log_ham)
        spam = math.exp(log_spam - peak)
        ham = math.exp(log_ham - peak)
        return spam / (spam + ham)


class BayesCheck(Check):
    """Statistical classifier retrained from the corpus on each refresh."""

    name = CheckName.BAYES

    def __init__(self, feed):
        self.spam = CorpusSnapshot(feed, Verdict.SPAM)
        self.ham = CorpusSnapshot(feed, Verdict.CLEAN)
        self.model = NaiveBayesModel()

    async def evaluate(self, context: ContentContext, config: CheckConfig) -> CheckResult:
        params = config.params
        spam_reloaded = await self.spam.refresh_if_stale(params.refresh_seconds)
        ham_reloaded = await self.ham.refresh_if_stale(params.refresh_seconds)
        if spam_reloaded or ham_reloaded:
            self.model.train(self.spam.texts, self.ham.texts)

        if self.model.sample_count < params.min_samples:
            return CheckResult.clean(self.name, details=f"only {self.model.sample_count} training samples")

        probability = self.model.spam_probability(context.text)
        confidence = int(round(probability * 100))
        if probability >= params.min_spam_probability:
            return CheckResult.spam(self.name, confidence, details=f"p(spam)={probability:.3f}")
        return CheckResult.clean(self.name, confidence, details=f"p(spam)={probability:.3f}")
