"""Repair partial or externally sourced attempt payloads.

Upstream systems hand us results of uneven quality: analytics sections may be
missing, the marking scheme may be absent, and ``totalTimeTaken`` is sometimes
reported in milliseconds.  ``normalize_payload`` turns any such mapping into a
structurally complete payload with the same ten top-level keys that
``results.build_payload`` emits, re-deriving summary figures from the raw
answers whenever they are present.

Structural corruption that cannot be repaired (a question record that is not
a mapping, or a string that was spread into an object) raises
``MalformedAttemptDataError``.
"""

from __future__ import annotations

import copy
import logging
import math
from collections.abc import Mapping, Sequence
from dataclasses import replace
from typing import Any

from .analytics import distribute_time_by_share
from .attempt_state import coerce_answer
from .config import EngineConfig
from .errors import MalformedAttemptDataError
from .interaction_log import InteractionEvent, InteractionRecorder, NavigationAction
from .models import (
    Answer,
    Attempt,
    AttemptItem,
    AttemptQuestionState,
    Lifecycle,
    MarkingScheme,
    Question,
    QuestionType,
)
from .results import PAYLOAD_KEYS, empty_payload
from .scoring import score

logger = logging.getLogger(__name__)


def normalize_payload(raw: object, *, config: EngineConfig | None = None) -> dict[str, Any]:
    cfg = config if config is not None else EngineConfig()
    if not isinstance(raw, Mapping):
        raise MalformedAttemptDataError(f"attempt payload must be a mapping, got {type(raw).__name__}")

    metadata = raw.get("metadata")
    if metadata is not None and not isinstance(metadata, Mapping):
        raise MalformedAttemptDataError("metadata must be a mapping")
    question_meta = _records(raw.get("questions"), "questions") + _records(
        metadata.get("questions") if metadata else None, "metadata.questions"
    )
    raw_answers = _records(raw.get("answers"), "answers")

    out: dict[str, Any] = {}
    for key, default in empty_payload().items():
        out[key] = _merge(default, raw.get(key), key)

    scheme = _marking_scheme(raw, cfg)
    out["testInfo"]["markingScheme"] = {
        "correct": scheme.correct,
        "incorrect": scheme.incorrect,
        "unattempted": scheme.unattempted,
    }

    answers = _fold_answers(raw_answers, question_meta)
    out["answers"] = answers
    perf = out["performance"]
    cached = raw.get("performance") if isinstance(raw.get("performance"), Mapping) else {}

    if answers:
        correct = sum(1 for a in answers if a["isCorrect"])
        attempted = sum(1 for a in answers if a.get("selectedOption") is not None)
        total = max(len(question_meta), len(answers))
        incorrect = attempted - correct
        unattempted = max(0, total - attempted)
    else:
        correct = _count(cached.get("totalCorrectAnswers"))
        incorrect = _count(cached.get("totalWrongAnswers"))
        unattempted = _count(cached.get("totalUnattempted"))
        total = _count(cached.get("totalQuestions")) or (correct + incorrect + unattempted)
        attempted = correct + incorrect

    perf["totalQuestions"] = total
    perf["totalCorrectAnswers"] = correct
    perf["totalWrongAnswers"] = incorrect
    perf["totalUnattempted"] = unattempted
    perf["score"] = float(correct * scheme.correct + incorrect * scheme.incorrect + unattempted * scheme.unattempted)
    perf["accuracy"] = (correct / attempted * 100.0) if attempted > 0 else 0.0
    if answers:
        perf["totalVisitedQuestions"] = sum(1 for a in answers if a.get("isVisited") or a.get("selectedOption") is not None)
        perf["totalMarkedForReview"] = sum(1 for a in answers if a.get("isMarked"))
    out["testInfo"]["totalQuestions"] = total

    timing = out["timeAnalytics"]
    raw_time = _number(cached.get("totalTimeTaken"))
    if raw_time > 0.0:
        seconds = normalize_seconds(raw_time, ceiling=cfg.seconds_ceiling)
        perf["totalTimeTaken"] = seconds
        timing["totalTimeSpent"] = seconds
    else:
        timing["totalTimeSpent"] = _number(timing.get("totalTimeSpent")) or sum(a["timeSpent"] for a in answers)
        perf["totalTimeTaken"] = timing["totalTimeSpent"]
    timing["averageTimePerQuestion"] = (timing["totalTimeSpent"] / total) if total else 0.0

    if not out["subjectWise"]:
        out["subjectWise"] = _subject_wise_from_answers(answers)
    _fill_subject_times(out["subjectWise"], answers, timing["totalTimeSpent"])

    completion = out["completionMetrics"]
    if not completion["sectionCompletion"]:
        duration = _number(out["testInfo"].get("duration"))
        completion["sectionCompletion"] = _section_completion(out["subjectWise"], duration=duration, total=total)

    return {key: out[key] for key in PAYLOAD_KEYS}


def normalize_seconds(value: float, *, ceiling: float = 100.0) -> float:
    """Interpret ``value`` as seconds, or as milliseconds when above ``ceiling``.

    ``195950`` becomes ``195.95``.  Genuine durations longer than the ceiling
    are misread by this rule; raise the ceiling for long papers.
    """

    if value > ceiling:
        logger.warning("totalTimeTaken %s exceeds %ss; treating it as milliseconds", value, ceiling)
        return value / 1000.0
    return value


def _records(value: object, where: str) -> list[Mapping[str, Any]]:
    if value is None:
        return []
    if isinstance(value, (str, bytes)) or not isinstance(value, Sequence):
        raise MalformedAttemptDataError(f"{where} must be a list of records")
    for i, record in enumerate(value):
        if not isinstance(record, Mapping):
            raise MalformedAttemptDataError(f"{where}[{i}] is not a mapping")
        keys = [k for k in record if k != "_id"]
        if keys and all(isinstance(k, str) and k.isdigit() for k in keys):
            raise MalformedAttemptDataError(f"{where}[{i}] looks like a string spread into an object")
    return list(value)


def _merge(default: Any, value: Any, path: str) -> Any:
    """Deep-merge ``value`` over ``default``: present values win, gaps are filled."""

    if value is None:
        return copy.deepcopy(default)
    if isinstance(default, dict):
        if not isinstance(value, Mapping):
            logger.warning("%s has the wrong shape; using defaults", path)
            return copy.deepcopy(default)
        merged = {k: copy.deepcopy(v) for k, v in value.items()}
        for k, v in default.items():
            merged[k] = _merge(v, value.get(k), f"{path}.{k}")
        return merged
    if isinstance(default, list):
        if isinstance(value, (str, bytes)) or not isinstance(value, Sequence):
            logger.warning("%s has the wrong shape; using defaults", path)
            return copy.deepcopy(default)
        return copy.deepcopy(list(value))
    return copy.deepcopy(value)


def _marking_scheme(raw: Mapping[str, Any], cfg: EngineConfig) -> MarkingScheme:
    info = raw.get("testInfo")
    found = info.get("markingScheme") if isinstance(info, Mapping) else None
    if not isinstance(found, Mapping):
        found = raw.get("markingScheme")
    if not isinstance(found, Mapping) or not found:
        logger.warning("no marking scheme in attempt data; using default %s", cfg.default_marking_scheme)
        return cfg.default_marking_scheme

    base = cfg.default_marking_scheme
    return MarkingScheme(
        correct=_number(found.get("correct"), base.correct),
        incorrect=_number(found.get("incorrect"), base.incorrect),
        unattempted=_number(found.get("unattempted"), base.unattempted),
    )


def _fold_answers(answers: list[Mapping[str, Any]], questions: list[Mapping[str, Any]]) -> list[dict[str, Any]]:
    meta: dict[str, Mapping[str, Any]] = {}
    for q in questions:
        qid = q.get("id", q.get("_id"))
        if qid is not None:
            meta[str(qid)] = q

    out: list[dict[str, Any]] = []
    for a in answers:
        entry = dict(a)
        qid = entry.get("questionId", entry.get("_id"))
        entry["questionId"] = None if qid is None else str(qid)
        info = meta.get(entry["questionId"] or "", {})
        entry["subject"] = entry.get("subject") or info.get("subject") or "unknown"
        if "difficulty" not in entry and "difficulty" in info:
            entry["difficulty"] = info["difficulty"]
        # An answer without a selection is unattempted whatever its flag says.
        entry["isCorrect"] = entry.get("isCorrect") is True and entry.get("selectedOption") is not None
        entry["timeSpent"] = _number(entry.get("timeSpent"))
        out.append(entry)
    return out


def _subject_wise_from_answers(answers: list[dict[str, Any]]) -> dict[str, dict[str, Any]]:
    subjects: dict[str, dict[str, Any]] = {}
    for a in answers:
        s = subjects.setdefault(
            a["subject"],
            {"total": 0, "attempted": 0, "correct": 0, "incorrect": 0, "accuracy": 0.0, "timeSpent": 0.0},
        )
        s["total"] += 1
        if a.get("selectedOption") is not None:
            s["attempted"] += 1
            if a["isCorrect"]:
                s["correct"] += 1
            else:
                s["incorrect"] += 1
    for s in subjects.values():
        s["accuracy"] = (s["correct"] / s["attempted"]) if s["attempted"] else 0.0
    return subjects


def _fill_subject_times(subject_wise: dict[str, Any], answers: list[dict[str, Any]], total_time_s: float) -> None:
    """Subject time: explicit value, else the answers' timeSpent, else a share of total time."""

    shares = distribute_time_by_share(
        {name: _count(data.get("total")) for name, data in subject_wise.items() if isinstance(data, Mapping)},
        total_time_s,
    )
    for name, data in list(subject_wise.items()):
        if not isinstance(data, Mapping):
            raise MalformedAttemptDataError(f"subjectWise[{name!r}] is not a mapping")
        data = dict(data)
        spent = _number(data.get("timeSpent"))
        if spent <= 0.0:
            spent = sum(a["timeSpent"] for a in answers if a["subject"] == name)
        if spent <= 0.0 and shares.get(name, 0.0) > 0.0:
            logger.warning("no recorded time for subject %r; estimating from question share", name)
            spent = shares[name]
            data["timeEstimated"] = True
        attempted = _count(data.get("attempted"))
        data["timeSpent"] = spent
        data["averageTimePerQuestion"] = (spent / attempted) if attempted else 0.0
        data.setdefault("timeEstimated", False)
        subject_wise[name] = data


def _section_completion(subject_wise: Mapping[str, Any], *, duration: float, total: int) -> dict[str, dict[str, float]]:
    planned_pace = (duration / total) if total and duration > 0 else 0.0
    out: dict[str, dict[str, float]] = {}
    for name, data in subject_wise.items():
        subject_total = _count(data.get("total"))
        attempted = _count(data.get("attempted"))
        planned = planned_pace * subject_total
        out[name] = {
            "completionRate": (attempted / subject_total) if subject_total else 0.0,
            "timeUtilization": (_number(data.get("timeSpent")) / planned) if planned > 0 else 0.0,
            "efficiency": (_count(data.get("correct")) / attempted) if attempted else 0.0,
        }
    return out


def _number(value: object, default: float = 0.0) -> float:
    if isinstance(value, bool) or value is None:
        return float(default)
    if not isinstance(value, (int, float, str)):
        return float(default)
    try:
        number = float(value.strip() if isinstance(value, str) else value)
    except (ValueError, OverflowError):
        return float(default)
    return number if math.isfinite(number) else float(default)


def _count(value: object) -> int:
    return max(0, int(_number(value)))


def rebuild_attempt(normalized: Mapping[str, Any], question_bank: Mapping[str, Question]) -> Attempt:
    """Rebuild a completed ``Attempt`` from a normalised payload.

    Every answer must reference a question in ``question_bank``.  The attempt is
    re-scored from the selected options rather than trusting ``isCorrect``.
    """

    info = normalized.get("testInfo", {})
    perf = normalized.get("performance", {})
    scheme_raw = info.get("markingScheme") or {}
    scheme = MarkingScheme(
        correct=_number(scheme_raw.get("correct"), 5.0),
        incorrect=_number(scheme_raw.get("incorrect")),
        unattempted=_number(scheme_raw.get("unattempted")),
    )

    items: list[AttemptItem] = []
    for i, a in enumerate(normalized.get("answers", [])):
        qid = str(a.get("questionId"))
        question = question_bank.get(qid)
        if question is None:
            raise MalformedAttemptDataError(f"answers[{i}] references unknown question {qid!r}")
        try:
            selected = coerce_answer(question, _answer_from_json(question, a.get("selectedOption")))
        except (TypeError, ValueError) as exc:
            raise MalformedAttemptDataError(f"answers[{i}] has an invalid selectedOption: {exc}") from exc
        items.append(
            AttemptItem(
                question=question,
                state=AttemptQuestionState(
                    selected_option=selected,
                    is_marked=bool(a.get("isMarked", False)),
                    is_visited=bool(a.get("isVisited", selected is not None)),
                    time_taken_s=max(0.0, _number(a.get("timeSpent"))),
                ),
            )
        )

    spent = _number(perf.get("totalTimeTaken"))
    duration = _number(info.get("duration")) or spent
    attempt = Attempt(
        test_id=str(info.get("testId", "")),
        total_duration_s=duration,
        marking_scheme=scheme,
        items=tuple(items),
        remaining_s=max(0.0, duration - spent),
        lifecycle=Lifecycle.IN_PROGRESS,
    )
    return replace(attempt, lifecycle=Lifecycle.COMPLETED, score=score(attempt))


def _answer_from_json(question: Question, value: object) -> Answer:
    if value is None:
        return None
    if isinstance(value, list):
        return tuple(value)
    if question.question_type is QuestionType.NUMERICAL and isinstance(value, str):
        return _number(value)
    return value  # type: ignore[return-value]


def interaction_events_from_history(
    history: Sequence[Mapping[str, Any]],
    *,
    end_s: float | None = None,
) -> tuple[InteractionEvent, ...]:
    """Reconstruct visit/answer/mark events from a stored navigation history.

    A visit runs from the entry that moved onto a question until the next entry
    that moved elsewhere; the final visit closes at ``end_s`` (or the last
    timestamp).  Answer and mark entries become instantaneous events.
    """

    parsed: list[tuple[float, int, Mapping[str, Any], NavigationAction]] = []
    for i, entry in enumerate(history):
        if not isinstance(entry, Mapping):
            raise MalformedAttemptDataError(f"navigationHistory[{i}] is not a mapping")
        try:
            action = NavigationAction(str(entry.get("action")))
        except ValueError as exc:
            raise MalformedAttemptDataError(f"navigationHistory[{i}] has unknown action {entry.get('action')!r}") from exc
        parsed.append((_number(entry.get("timestamp")), i, entry, action))
    parsed.sort(key=lambda p: (p[0], p[1]))

    rec = InteractionRecorder()
    last = 0.0
    for ts, _, entry, action in parsed:
        last = ts
        target = entry.get("toQuestion")
        qid = str(target if target is not None else entry.get("fromQuestion") or rec.open_question or "")
        if action is NavigationAction.ANSWER:
            if qid:
                rec.answer(qid, ts, from_option=None, to_option=None)
        elif action in (NavigationAction.MARK, NavigationAction.UNMARK):
            if qid:
                rec.mark(qid, ts, marked=action is NavigationAction.MARK)
        elif target is not None:
            rec.enter(str(target), ts)
    rec.leave(last if end_s is None else max(last, float(end_s)))
    return rec.events()
