from __future__ import annotations

import logging

import pytest

from attempt_engine.config import EngineConfig
from attempt_engine.errors import MalformedAttemptDataError
from attempt_engine.interaction_log import InteractionAction
from attempt_engine.models import Lifecycle, MarkingScheme, NumericalAnswer, Question, QuestionType
from attempt_engine.normalization import (
    interaction_events_from_history,
    normalize_payload,
    normalize_seconds,
    rebuild_attempt,
)
from attempt_engine.results import PAYLOAD_KEYS


def _answers():
    return [
        {"questionId": "q1", "selectedOption": 0, "isCorrect": True, "timeSpent": 20},
        {"questionId": "q2", "selectedOption": 3, "isCorrect": False, "timeSpent": 10},
        {"questionId": "q3", "selectedOption": None, "isCorrect": False, "timeSpent": 5},
    ]


def _metadata():
    return {
        "questions": [
            {"id": "q1", "subject": "physics"},
            {"id": "q2", "subject": "physics"},
            {"id": "q3", "subject": "chemistry"},
        ]
    }


def test_output_has_exactly_the_payload_keys() -> None:
    out = normalize_payload({})
    assert tuple(out) == PAYLOAD_KEYS
    assert out["errorAnalytics"]["errorPatterns"]["carelessMistakes"] == []
    assert out["behavioralAnalytics"]["confidenceMetrics"]["quickAnswers"] == []
    assert out["completionMetrics"]["timeManagementScore"] == 0


def test_milliseconds_are_converted_to_seconds(caplog: pytest.LogCaptureFixture) -> None:
    with caplog.at_level(logging.WARNING, logger="attempt_engine"):
        out = normalize_payload({"performance": {"totalTimeTaken": 195950, "totalQuestions": 10}})
    assert out["timeAnalytics"]["totalTimeSpent"] == pytest.approx(195.95)
    assert out["performance"]["totalTimeTaken"] == pytest.approx(195.95)
    assert out["timeAnalytics"]["averageTimePerQuestion"] == pytest.approx(19.595)
    assert any("milliseconds" in r.getMessage() for r in caplog.records)


def test_seconds_below_ceiling_are_kept() -> None:
    assert normalize_seconds(95.0) == 95.0
    assert normalize_seconds(5000.0, ceiling=10_000.0) == 5000.0


def test_default_marking_scheme_is_applied() -> None:
    out = normalize_payload({"answers": _answers(), "metadata": _metadata()})
    assert out["testInfo"]["markingScheme"] == {"correct": 5.0, "incorrect": 0.0, "unattempted": 0.0}
    assert out["performance"]["score"] == pytest.approx(5.0)

    cfg = EngineConfig(default_marking_scheme=MarkingScheme(correct=3.0, incorrect=-1.0, unattempted=0.0))
    out = normalize_payload({"answers": _answers(), "metadata": _metadata()}, config=cfg)
    assert out["performance"]["score"] == pytest.approx(2.0)


def test_counts_are_rederived_from_answers() -> None:
    raw = {
        "testInfo": {"markingScheme": {"correct": 4, "incorrect": -1, "unattempted": 0}},
        # Stale cached figures must lose to the raw answers.
        "performance": {"totalCorrectAnswers": 3, "totalWrongAnswers": 0, "score": 12, "accuracy": 100},
        "answers": _answers(),
        "metadata": _metadata(),
    }
    perf = normalize_payload(raw)["performance"]
    assert perf["totalQuestions"] == 3
    assert perf["totalCorrectAnswers"] == 1
    assert perf["totalWrongAnswers"] == 1
    assert perf["totalUnattempted"] == 1
    assert perf["score"] == pytest.approx(3.0)
    assert perf["accuracy"] == pytest.approx(50.0)


def test_cached_summary_used_without_answers() -> None:
    raw = {
        "testInfo": {"markingScheme": {"correct": 4, "incorrect": -1, "unattempted": 0}},
        "performance": {"totalCorrectAnswers": 6, "totalWrongAnswers": 2, "totalUnattempted": 2},
    }
    perf = normalize_payload(raw)["performance"]
    assert perf["totalQuestions"] == 10
    assert perf["score"] == pytest.approx(22.0)
    assert perf["accuracy"] == pytest.approx(75.0)


def test_subject_wise_rebuilt_from_answers_and_metadata() -> None:
    out = normalize_payload({"answers": _answers(), "metadata": _metadata()})
    physics = out["subjectWise"]["physics"]
    assert (physics["total"], physics["attempted"], physics["correct"], physics["incorrect"]) == (2, 2, 1, 1)
    assert physics["accuracy"] == pytest.approx(0.5)
    assert physics["timeSpent"] == pytest.approx(30.0)
    assert physics["averageTimePerQuestion"] == pytest.approx(15.0)
    assert out["subjectWise"]["chemistry"]["attempted"] == 0
    assert out["answers"][2]["subject"] == "chemistry"


def test_subject_time_falls_back_to_question_share() -> None:
    raw = {
        "performance": {"totalTimeTaken": 100},
        "subjectWise": {
            "physics": {"total": 6, "attempted": 6, "correct": 3},
            "chemistry": {"total": 4, "attempted": 2, "correct": 2},
        },
    }
    subjects = normalize_payload(raw)["subjectWise"]
    assert subjects["physics"]["timeSpent"] == pytest.approx(60.0)
    assert subjects["chemistry"]["timeSpent"] == pytest.approx(40.0)
    assert subjects["chemistry"]["averageTimePerQuestion"] == pytest.approx(20.0)
    assert subjects["physics"]["timeEstimated"] is True


def test_explicit_subject_time_wins() -> None:
    raw = {
        "performance": {"totalTimeTaken": 100},
        "subjectWise": {"physics": {"total": 1, "attempted": 1, "correct": 1, "timeSpent": 12}},
    }
    assert normalize_payload(raw)["subjectWise"]["physics"]["timeSpent"] == pytest.approx(12.0)


def test_section_completion_derived_when_absent() -> None:
    raw = {"testInfo": {"duration": 30}, "answers": _answers(), "metadata": _metadata()}
    sections = normalize_payload(raw)["completionMetrics"]["sectionCompletion"]
    assert sections["physics"]["completionRate"] == pytest.approx(1.0)
    assert sections["physics"]["efficiency"] == pytest.approx(0.5)
    # planned pace 10 s/question: physics used 30 s of a 20 s allowance.
    assert sections["physics"]["timeUtilization"] == pytest.approx(1.5)
    assert sections["chemistry"]["completionRate"] == 0.0


def test_partial_sections_are_deep_merged() -> None:
    raw = {"strategyMetrics": {"questionSequencing": {"backtracking": 4}}}
    strategy = normalize_payload(raw)["strategyMetrics"]
    assert strategy["questionSequencing"] == {"backtracking": 4, "optimalChoices": 0, "subjectSwitching": 0}
    assert strategy["timeManagement"]["timeDistribution"] == {"quick": 0.0, "moderate": 0.0, "lengthy": 0.0}


@pytest.mark.parametrize(
    "raw",
    [
        "not a mapping",
        {"answers": ["q1"]},
        {"answers": [{"0": "a", "1": "b", "_id": "x"}]},
        {"metadata": {"questions": [{"0": "p", "1": "h"}]}},
        {"answers": "q1,q2"},
    ],
)
def test_corrupt_records_raise(raw) -> None:
    with pytest.raises(MalformedAttemptDataError):
        normalize_payload(raw)


def test_rebuild_attempt_rescores_from_selected_options() -> None:
    bank = {
        "q1": Question(id="q1", subject="physics", options=("a", "b", "c", "d"), correct_option=0),
        "q2": Question(id="q2", subject="physics", options=("a", "b", "c", "d"), correct_option=1),
        "q3": Question(
            id="q3",
            subject="chemistry",
            question_type=QuestionType.NUMERICAL,
            numerical_answer=NumericalAnswer(exact_value=2.0),
        ),
    }
    raw = {
        "testInfo": {"testId": "hist", "duration": 60, "markingScheme": {"correct": 4, "incorrect": -1}},
        "performance": {"totalTimeTaken": 35},
        "answers": _answers(),
    }
    attempt = rebuild_attempt(normalize_payload(raw), bank)

    assert attempt.lifecycle is Lifecycle.COMPLETED
    assert attempt.test_id == "hist"
    assert attempt.remaining_s == pytest.approx(25.0)
    assert attempt.score is not None
    assert attempt.score.raw_score == pytest.approx(3.0)
    assert attempt.score.time_taken_s == pytest.approx(35.0)
    assert attempt.items[0].state.time_taken_s == pytest.approx(20.0)


def test_rebuild_attempt_rejects_unknown_question() -> None:
    with pytest.raises(MalformedAttemptDataError):
        rebuild_attempt(normalize_payload({"answers": _answers()}), {})


def test_events_from_navigation_history() -> None:
    history = [
        {"timestamp": 0, "fromQuestion": None, "toQuestion": "q1", "action": "click"},
        {"timestamp": 4, "fromQuestion": "q1", "toQuestion": "q1", "action": "answer"},
        {"timestamp": 10, "fromQuestion": "q1", "toQuestion": "q2", "action": "next"},
        {"timestamp": 12, "fromQuestion": "q2", "toQuestion": "q2", "action": "mark"},
        {"timestamp": 20, "fromQuestion": "q2", "toQuestion": "q1", "action": "prev"},
    ]
    events = interaction_events_from_history(history, end_s=30)

    visits = [(e.question_id, e.timestamp_enter, e.timestamp_leave) for e in events if e.action is InteractionAction.VISIT]
    assert visits == [("q1", 0.0, 10.0), ("q2", 10.0, 20.0), ("q1", 20.0, 30.0)]
    assert [e.question_id for e in events if e.action is InteractionAction.ANSWER] == ["q1"]
    assert [e.question_id for e in events if e.action is InteractionAction.MARK] == ["q2"]

    with pytest.raises(MalformedAttemptDataError):
        interaction_events_from_history([{"timestamp": 0, "action": "teleport"}])


def test_flagged_correct_without_selection_counts_as_unattempted() -> None:
    raw = {
        "answers": [
            {"questionId": "q1", "isCorrect": True, "timeSpent": 4},
            {"questionId": "q2", "selectedOption": 1, "isCorrect": False, "timeSpent": 6},
        ]
    }
    out = normalize_payload(raw)
    perf = out["performance"]
    assert (perf["totalCorrectAnswers"], perf["totalWrongAnswers"], perf["totalUnattempted"]) == (0, 1, 1)
    assert perf["score"] == 0.0
    assert perf["accuracy"] == 0.0
    assert out["answers"][0]["isCorrect"] is False


def test_counts_sum_to_total_when_metadata_is_partial() -> None:
    raw = {
        "answers": [
            {"questionId": "q1", "selectedOption": 0, "isCorrect": True},
            {"questionId": "q2", "selectedOption": 1, "isCorrect": False},
            {"questionId": "q3", "selectedOption": 2, "isCorrect": True},
        ],
        "metadata": {"questions": [{"id": "q1", "subject": "physics"}]},
    }
    perf = normalize_payload(raw)["performance"]
    assert perf["totalQuestions"] == 3
    assert perf["totalCorrectAnswers"] + perf["totalWrongAnswers"] + perf["totalUnattempted"] == 3


@pytest.mark.parametrize("bad", ["inf", "nan", "-inf", float("inf"), float("nan"), 10**400])
def test_non_finite_numbers_fall_back_to_defaults(bad) -> None:
    out = normalize_payload(
        {
            "performance": {"totalQuestions": bad, "totalCorrectAnswers": bad, "totalTimeTaken": bad},
            "answers": [{"questionId": "q1", "selectedOption": 0, "isCorrect": True, "timeSpent": bad}],
        }
    )
    assert out["performance"]["totalQuestions"] == 1
    assert out["answers"][0]["timeSpent"] == 0.0
    assert out["timeAnalytics"]["totalTimeSpent"] == 0.0

    cached = normalize_payload({"performance": {"totalQuestions": bad, "totalTimeTaken": bad}})
    assert cached["performance"]["totalQuestions"] == 0
    assert cached["timeAnalytics"]["averageTimePerQuestion"] == 0.0
