from __future__ import annotations

from collections.abc import Sequence
from typing import Any

from .analytics import AnalyticsSnapshot
from .behavior import ErrorCategory, expected_answer
from .interaction_log import NavigationEntry
from .models import Answer, Attempt
from .scoring import is_correct

PAYLOAD_KEYS = (
    "testInfo",
    "performance",
    "answers",
    "subjectWise",
    "timeAnalytics",
    "strategyMetrics",
    "completionMetrics",
    "errorAnalytics",
    "behavioralAnalytics",
    "navigationHistory",
)

_ERROR_PATTERN_KEYS = {
    ErrorCategory.CONCEPTUAL: "conceptualErrors",
    ErrorCategory.CALCULATION: "calculationErrors",
    ErrorCategory.TIME_MANAGEMENT: "timeManagementErrors",
    ErrorCategory.CARELESS: "carelessMistakes",
}


def empty_payload() -> dict[str, Any]:
    """A structurally complete payload with every value at its neutral default.

    Used as the deep-merge base when normalising external data.
    """

    return {
        "testInfo": {
            "testId": "",
            "duration": 0.0,
            "status": "completed",
            "totalQuestions": 0,
            "markingScheme": {},
        },
        "performance": {
            "totalQuestions": 0,
            "totalCorrectAnswers": 0,
            "totalWrongAnswers": 0,
            "totalUnattempted": 0,
            "totalVisitedQuestions": 0,
            "totalMarkedForReview": 0,
            "totalTimeTaken": 0.0,
            "score": 0.0,
            "accuracy": 0.0,
        },
        "answers": [],
        "subjectWise": {},
        "timeAnalytics": {
            "totalTimeSpent": 0.0,
            "averageTimePerQuestion": 0.0,
            "questionTimeDistribution": {
                "lessThan30Sec": [],
                "between30To60Sec": [],
                "between1To2Min": [],
                "moreThan2Min": [],
            },
            "timeDistribution": {"quick": 0.0, "moderate": 0.0, "lengthy": 0.0},
        },
        "strategyMetrics": {
            "questionSequencing": {"optimalChoices": 0, "backtracking": 0, "subjectSwitching": 0},
            "timeOptimization": {"timeWastedOnIncorrect": 0.0, "timeSpentOnCorrect": 0.0, "unusedTime": 0.0},
            "markingStrategy": {"correctlyMarkedReview": 0, "unnecessaryReviews": 0, "effectiveRevisions": 0},
            "timeManagement": {
                "averageTimePerQuestion": 0.0,
                "timeDistribution": {"quick": 0.0, "moderate": 0.0, "lengthy": 0.0},
            },
        },
        "completionMetrics": {
            "paceAnalysis": {"plannedPace": 0.0, "actualPace": 0.0, "paceVariation": []},
            "sectionCompletion": {},
            "timeManagementScore": 0,
        },
        "errorAnalytics": {
            "heuristic": True,
            "commonMistakes": [],
            "errorPatterns": {key: [] for key in _ERROR_PATTERN_KEYS.values()},
        },
        "behavioralAnalytics": {
            "revisitPatterns": [],
            "sectionTransitions": [],
            "confidenceMetrics": {"quickAnswers": [], "longDeliberations": [], "multipleRevisions": []},
        },
        "navigationHistory": [],
    }


def answer_to_json(value: Answer) -> Any:
    if isinstance(value, tuple):
        return list(value)
    return value


def build_payload(
    attempt: Attempt,
    snapshot: AnalyticsSnapshot,
    navigation: Sequence[NavigationEntry] = (),
) -> dict[str, Any]:
    """Assemble the results payload for a scored attempt.

    The payload is plain JSON-compatible data keyed exactly by ``PAYLOAD_KEYS``.
    Performance figures come from the attempt's stored ``ScoreResult``; an
    attempt that has not been submitted reports zeros there.
    """

    result = attempt.score
    scheme = attempt.marking_scheme
    states = [item.state for item in attempt.items]
    dist = snapshot.time_distribution
    distribution_shares = {"quick": dist.quick, "moderate": dist.moderate, "lengthy": dist.lengthy}

    answers = []
    for item in attempt.items:
        q, s = item.question, item.state
        answers.append(
            {
                "questionId": q.id,
                "subject": q.subject,
                "difficulty": q.difficulty,
                "questionType": q.question_type.value,
                "selectedOption": answer_to_json(s.selected_option),
                "timeSpent": s.time_taken_s,
                "isCorrect": is_correct(q, s.selected_option),
                "status": s.status.value,
                "isMarked": s.is_marked,
                "isVisited": s.is_visited,
                "correctAnswer": answer_to_json(expected_answer(q)),
            }
        )

    subject_wise = {
        m.subject: {
            "total": m.total,
            "attempted": m.attempted,
            "correct": m.correct,
            "incorrect": m.incorrect,
            "accuracy": m.accuracy,
            "timeSpent": m.time_spent,
            "averageTimePerQuestion": m.average_time_per_question,
            "timeEstimated": m.time_estimated,
        }
        for m in snapshot.subject_wise
    }

    errors = snapshot.errors
    strategy = snapshot.strategy
    completion = snapshot.completion
    confidence = snapshot.confidence

    return {
        "testInfo": {
            "testId": attempt.test_id,
            "duration": attempt.total_duration_s,
            "status": attempt.lifecycle.value,
            "totalQuestions": attempt.question_count,
            "markingScheme": {
                "correct": scheme.correct,
                "incorrect": scheme.incorrect,
                "unattempted": scheme.unattempted,
            },
        },
        "performance": {
            "totalQuestions": attempt.question_count,
            "totalCorrectAnswers": result.correct_count if result else 0,
            "totalWrongAnswers": result.incorrect_count if result else 0,
            "totalUnattempted": result.unattempted_count if result else 0,
            "totalVisitedQuestions": sum(1 for s in states if s.is_visited),
            "totalMarkedForReview": sum(1 for s in states if s.is_marked),
            "totalTimeTaken": snapshot.total_time_spent,
            "score": result.raw_score if result else 0.0,
            "accuracy": result.accuracy_percent if result else 0.0,
        },
        "answers": answers,
        "subjectWise": subject_wise,
        "timeAnalytics": {
            "totalTimeSpent": snapshot.total_time_spent,
            "averageTimePerQuestion": snapshot.average_time_per_question,
            "questionTimeDistribution": {
                "lessThan30Sec": list(dist.less_than_30s),
                "between30To60Sec": list(dist.between_30_and_60s),
                "between1To2Min": list(dist.between_1_and_2min),
                "moreThan2Min": list(dist.more_than_2min),
            },
            "timeDistribution": dict(distribution_shares),
        },
        "strategyMetrics": {
            "questionSequencing": {
                "optimalChoices": strategy.optimal_choices,
                "backtracking": strategy.backtracking,
                "subjectSwitching": strategy.subject_switching,
            },
            "timeOptimization": {
                "timeWastedOnIncorrect": strategy.time_wasted_on_incorrect,
                "timeSpentOnCorrect": strategy.time_spent_on_correct,
                "unusedTime": strategy.unused_time,
            },
            "markingStrategy": {
                "correctlyMarkedReview": strategy.correctly_marked_review,
                "unnecessaryReviews": strategy.unnecessary_reviews,
                "effectiveRevisions": strategy.effective_revisions,
            },
            "timeManagement": {
                "averageTimePerQuestion": snapshot.average_time_per_question,
                "timeDistribution": dict(distribution_shares),
            },
        },
        "completionMetrics": {
            "paceAnalysis": {
                "plannedPace": completion.planned_pace,
                "actualPace": completion.actual_pace,
                "paceVariation": list(completion.pace_variation),
            },
            "sectionCompletion": {
                subject: {
                    "completionRate": sc.completion_rate,
                    "timeUtilization": sc.time_utilization,
                    "efficiency": sc.efficiency,
                }
                for subject, sc in completion.section_completion
            },
            "timeManagementScore": completion.time_management_score,
        },
        "errorAnalytics": {
            # Error categories are inferred from timing and tags, not observed.
            "heuristic": True,
            "commonMistakes": [
                {
                    "questionId": e.question_id,
                    "category": e.category.value,
                    "selectedOption": answer_to_json(e.selected_option),
                    "correctOption": answer_to_json(e.correct_option),
                    "conceptTested": e.concept_tested,
                    "timeSpentBeforeError": e.time_spent_s,
                }
                for e in errors.errors
            ],
            "errorPatterns": {key: list(errors.ids(category)) for category, key in _ERROR_PATTERN_KEYS.items()},
        },
        "behavioralAnalytics": {
            "revisitPatterns": [
                {
                    "questionId": b.question_id,
                    "visitCount": b.visit_count,
                    "revisitCount": b.revisit_count,
                    "timeBetweenVisits": list(b.time_between_visits),
                    "hesitation": b.hesitation_s,
                    "revisionCount": b.revision_count,
                    "finalOutcome": b.final_outcome.value,
                }
                for b in snapshot.behaviors
            ],
            "sectionTransitions": [
                {
                    "from": t.from_subject,
                    "to": t.to_subject,
                    "timestamp": t.timestamp,
                    "timeSpentInPrevSection": t.time_spent_in_prev_section,
                }
                for t in snapshot.section_transitions
            ],
            "confidenceMetrics": {
                "quickAnswers": list(confidence.quick_answers),
                "longDeliberations": list(confidence.long_deliberations),
                "multipleRevisions": list(confidence.multiple_revisions),
            },
        },
        "navigationHistory": [
            {
                "timestamp": n.timestamp,
                "fromQuestion": n.from_question,
                "toQuestion": n.to_question,
                "action": n.action.value,
            }
            for n in navigation
        ],
    }
