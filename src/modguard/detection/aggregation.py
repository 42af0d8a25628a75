"""
Deterministic aggregation and classification of check results.

Everything here is a pure function of the results and the policy, so a stored
decision can be re-derived at any time and always lands on the same verdict.

Net confidence is the highest confidence among voting Spam results. A result
votes when it did not abstain and did not run only because of ``always_run``.
The accuracy dimension applies the same rule but also counts always-run results.
"""

from __future__ import annotations

from typing import Iterable

from modguard.datatypes.detection_datatypes import (
    CheckResult,
    Classification,
    DetectionAction,
    DetectionPolicy,
    Verdict,
)


def _max_spam(results: Iterable[CheckResult]) -> int:
    best = 0
    for result in results:
        if result.is_spam and result.confidence > best:
            best = result.confidence
    return best


def net_confidence(results: Iterable[CheckResult]) -> int:
    """Enforcement-dimension confidence in [0, 100]."""
    return _max_spam(r for r in results if r.votes_for_enforcement)


def accuracy_confidence(results: Iterable[CheckResult]) -> int:
    """Accuracy-dimension confidence in [0, 100], including always-run checks."""
    return _max_spam(r for r in results if not r.abstained)


def spam_votes(results: Iterable[CheckResult]) -> int:
    return sum(1 for r in results if r.votes_for_enforcement and r.is_spam)


def verdict_for(net: int, policy: DetectionPolicy) -> Verdict:
    return Verdict.SPAM if net >= policy.review_queue_threshold else Verdict.CLEAN


def classify(results: tuple[CheckResult, ...], policy: DetectionPolicy, text_length: int) -> Classification:
    """Classify a result set against the policy thresholds.

    Thresholds are checked in order: veto, auto-ban, review queue. A veto
    downgrades what would have been enforcement to human review. It applies when
    the message is shorter than ``min_message_length`` or when the net
    confidence reaches ``max_confidence_veto_threshold`` with fewer than
    ``veto_min_spam_checks`` Spam votes behind it.

    Args:
        results: Check results of one evaluation.
        policy: Policy in force at evaluation time.
        text_length: Length of the evaluated message text.

    Returns:
        Classification: The action plus whether a veto fired.
    """
    net = net_confidence(results)
    votes = spam_votes(results)

    if net >= policy.review_queue_threshold:
        if text_length < policy.min_message_length:
            return Classification(DetectionAction.REVIEW, vetoed=True, reason="message too short to act on alone")
        if net >= policy.max_confidence_veto_threshold and votes < policy.veto_min_spam_checks:
            return Classification(
                DetectionAction.REVIEW,
                vetoed=True,
                reason=f"single signal at {net} needs {policy.veto_min_spam_checks} corroborating checks",
            )

    if net >= policy.auto_ban_threshold:
        return Classification(DetectionAction.AUTO_BAN, reason=f"net confidence {net} >= {policy.auto_ban_threshold}")
    if net >= policy.review_queue_threshold:
        return Classification(DetectionAction.REVIEW, reason=f"net confidence {net} >= {policy.review_queue_threshold}")
    return Classification(DetectionAction.ALLOW)
