"""Tests for aggregation and policy classification of check results."""

import pytest

from modguard.datatypes.detection_datatypes import (
    CheckName,
    CheckResult,
    Decision,
    DetectionAction,
    DetectionPolicy,
    Verdict,
)
from modguard.datatypes.identifiers import UserID
from modguard.detection.aggregation import accuracy_confidence, classify, net_confidence, spam_votes

POLICY = DetectionPolicy(
    auto_ban_threshold=80,
    review_queue_threshold=50,
    max_confidence_veto_threshold=95,
    min_message_length=10,
    veto_min_spam_checks=2,
)
LONG_TEXT = "claim your free crypto giveaway now"


def decision_for(results, policy=POLICY, text=LONG_TEXT):
    return Decision(user_id=UserID(1), results=tuple(results), policy=policy, text=text)


def test_single_strong_signal_auto_bans():
    decision = decision_for([
        CheckResult.spam(CheckName.STOP_WORDS, 90),
        CheckResult.clean(CheckName.SPACING, 10),
    ])

    assert decision.net_confidence == 90
    assert decision.verdict is Verdict.SPAM
    assert decision.action is DetectionAction.AUTO_BAN
    assert decision.should_enforce


def test_training_mode_records_spam_without_enforcement():
    policy = DetectionPolicy(auto_ban_threshold=80, max_confidence_veto_threshold=95, training_mode=True)
    decision = decision_for([CheckResult.spam(CheckName.STOP_WORDS, 90)], policy=policy)

    assert decision.verdict is Verdict.SPAM
    assert decision.action is DetectionAction.AUTO_BAN
    assert not decision.should_enforce


def test_lone_signal_above_veto_threshold_goes_to_review():
    classification = classify((CheckResult.spam(CheckName.INVISIBLE_CHARS, 100),), POLICY, len(LONG_TEXT))

    assert classification.action is DetectionAction.REVIEW
    assert classification.vetoed


def test_corroborated_signal_above_veto_threshold_auto_bans():
    results = (
        CheckResult.spam(CheckName.INVISIBLE_CHARS, 100),
        CheckResult.spam(CheckName.STOP_WORDS, 60),
    )
    classification = classify(results, POLICY, len(LONG_TEXT))

    assert classification.action is DetectionAction.AUTO_BAN
    assert not classification.vetoed


def test_short_message_is_never_auto_enforced():
    results = (CheckResult.spam(CheckName.STOP_WORDS, 90), CheckResult.spam(CheckName.SPACING, 85))
    classification = classify(results, POLICY, text_length=5)

    assert classification.action is DetectionAction.REVIEW
    assert classification.vetoed


def test_review_band_and_allow():
    assert classify((CheckResult.spam(CheckName.BAYES, 60),), POLICY, 40).action is DetectionAction.REVIEW
    assert classify((CheckResult.spam(CheckName.BAYES, 49),), POLICY, 40).action is DetectionAction.ALLOW
    assert classify((CheckResult.clean(CheckName.BAYES, 30),), POLICY, 40).action is DetectionAction.ALLOW


def test_abstained_and_always_run_results_do_not_vote():
    always_run = CheckResult(CheckName.REPUTATION, Verdict.SPAM, 100, always_run_only=True)
    results = (
        CheckResult.neutral(CheckName.BAYES, details="timed out"),
        always_run,
        CheckResult.spam(CheckName.STOP_WORDS, 55),
    )

    assert net_confidence(results) == 55
    assert spam_votes(results) == 1
    # The accuracy view still sees the always-run signal
    assert accuracy_confidence(results) == 100


def test_decision_is_deterministic():
    results = [CheckResult.spam(CheckName.STOP_WORDS, 70), CheckResult.spam(CheckName.SPACING, 88)]
    first = decision_for(results)
    second = decision_for(list(reversed(results)))

    assert first.net_confidence == second.net_confidence == 88
    assert first.classification == second.classification
    assert 0 <= first.net_confidence <= 100


@pytest.mark.parametrize("confidence", [-1, 101])
def test_confidence_out_of_range_is_rejected(confidence):
    with pytest.raises(ValueError):
        CheckResult.spam(CheckName.STOP_WORDS, confidence)


def test_policy_rejects_review_above_auto_ban():
    with pytest.raises(ValueError):
        DetectionPolicy(auto_ban_threshold=40, review_queue_threshold=60)
