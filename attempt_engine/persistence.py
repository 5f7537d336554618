from __future__ import annotations

import json
import sqlite3
import time
from collections.abc import Mapping
from pathlib import Path
from typing import Any, Protocol

from .errors import MalformedAttemptDataError
from .models import (
    Attempt,
    AttemptItem,
    AttemptQuestionState,
    Lifecycle,
    MarkingScheme,
    NumericalAnswer,
    NumericRange,
    Question,
    QuestionType,
    ScoreResult,
)
from .results import answer_to_json

SCHEMA_VERSION = 1


class AttemptRepository(Protocol):
    """Load/save boundary for attempts and their result payloads."""

    def load(self, attempt_id: str) -> Attempt | None: ...
    def save(self, attempt_id: str, attempt: Attempt) -> None: ...
    def save_result(self, attempt_id: str, payload: Mapping[str, Any]) -> None: ...


class InMemoryAttemptRepository:
    def __init__(self) -> None:
        self._attempts: dict[str, Attempt] = {}
        self._results: dict[str, dict[str, Any]] = {}

    def load(self, attempt_id: str) -> Attempt | None:
        return self._attempts.get(str(attempt_id))

    def save(self, attempt_id: str, attempt: Attempt) -> None:
        self._attempts[str(attempt_id)] = attempt

    def save_result(self, attempt_id: str, payload: Mapping[str, Any]) -> None:
        # Stored through JSON so callers cannot mutate what was saved.
        self._results[str(attempt_id)] = json.loads(json.dumps(payload))

    def load_result(self, attempt_id: str) -> dict[str, Any] | None:
        return self._results.get(str(attempt_id))


def open_db(path: Path) -> sqlite3.Connection:
    conn = sqlite3.connect(path)
    conn.execute("PRAGMA foreign_keys=ON;")
    conn.execute("PRAGMA journal_mode=WAL;")
    conn.execute("PRAGMA synchronous=NORMAL;")
    _migrate(conn)
    return conn


def _utc_now_iso() -> str:
    return time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime(time.time()))


def _migrate(conn: sqlite3.Connection) -> None:
    row = conn.execute("PRAGMA user_version;").fetchone()
    ver = int(row[0]) if row else 0
    if ver >= SCHEMA_VERSION:
        return

    with conn:
        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS attempt (
                id TEXT PRIMARY KEY,
                test_id TEXT NOT NULL,
                lifecycle TEXT NOT NULL,
                record TEXT NOT NULL,
                created_at_utc TEXT NOT NULL,
                updated_at_utc TEXT NOT NULL
            );
            """
        )
        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS attempt_result (
                attempt_id TEXT PRIMARY KEY REFERENCES attempt(id) ON DELETE CASCADE,
                payload TEXT NOT NULL,
                created_at_utc TEXT NOT NULL
            );
            """
        )
        conn.execute("CREATE INDEX IF NOT EXISTS idx_attempt_test_id ON attempt(test_id);")
        conn.execute(f"PRAGMA user_version={SCHEMA_VERSION};")


class SqliteAttemptRepository:
    """SQLite-backed repository; one short-lived connection per call.

    Attempts are stored as JSON records so the schema does not follow every
    change to the question model.
    """

    def __init__(self, path: Path) -> None:
        self._path = Path(path)
        conn = open_db(self._path)
        conn.close()

    @property
    def path(self) -> Path:
        return self._path

    def load(self, attempt_id: str) -> Attempt | None:
        conn = open_db(self._path)
        try:
            row = conn.execute("SELECT record FROM attempt WHERE id = ?", (str(attempt_id),)).fetchone()
        finally:
            conn.close()
        if row is None:
            return None
        return attempt_from_dict(json.loads(row[0]))

    def save(self, attempt_id: str, attempt: Attempt) -> None:
        now = _utc_now_iso()
        record = json.dumps(attempt_to_dict(attempt))
        conn = open_db(self._path)
        try:
            with conn:
                conn.execute(
                    """
                    INSERT INTO attempt(id, test_id, lifecycle, record, created_at_utc, updated_at_utc)
                    VALUES (?, ?, ?, ?, ?, ?)
                    ON CONFLICT(id) DO UPDATE SET
                        test_id = excluded.test_id,
                        lifecycle = excluded.lifecycle,
                        record = excluded.record,
                        updated_at_utc = excluded.updated_at_utc
                    """,
                    (str(attempt_id), attempt.test_id, attempt.lifecycle.value, record, now, now),
                )
        finally:
            conn.close()

    def save_result(self, attempt_id: str, payload: Mapping[str, Any]) -> None:
        conn = open_db(self._path)
        try:
            with conn:
                conn.execute(
                    "INSERT OR REPLACE INTO attempt_result(attempt_id, payload, created_at_utc) VALUES (?, ?, ?)",
                    (str(attempt_id), json.dumps(payload), _utc_now_iso()),
                )
        finally:
            conn.close()

    def load_result(self, attempt_id: str) -> dict[str, Any] | None:
        conn = open_db(self._path)
        try:
            row = conn.execute(
                "SELECT payload FROM attempt_result WHERE attempt_id = ?", (str(attempt_id),)
            ).fetchone()
        finally:
            conn.close()
        return None if row is None else json.loads(row[0])


def question_to_dict(q: Question) -> dict[str, Any]:
    numerical = None
    if q.numerical_answer is not None:
        numeric = q.numerical_answer
        numerical = {
            "exact_value": numeric.exact_value,
            "range": None if numeric.range is None else {"min": numeric.range.min, "max": numeric.range.max},
            "unit": numeric.unit,
        }
    return {
        "id": q.id,
        "subject": q.subject,
        "difficulty": q.difficulty,
        "exam_type": q.exam_type,
        "question_type": q.question_type.value,
        "prompt": q.prompt,
        "options": list(q.options),
        "correct_option": q.correct_option,
        "correct_options": list(q.correct_options),
        "numerical_answer": numerical,
        "topic": q.topic,
        "error_tag": q.error_tag,
    }


def question_from_dict(data: Mapping[str, Any]) -> Question:
    numerical = None
    raw_num = data.get("numerical_answer")
    if raw_num is not None:
        raw_range = raw_num.get("range")
        numerical = NumericalAnswer(
            exact_value=float(raw_num["exact_value"]),
            range=None if raw_range is None else NumericRange(min=float(raw_range["min"]), max=float(raw_range["max"])),
            unit=raw_num.get("unit"),
        )
    return Question(
        id=str(data["id"]),
        subject=str(data["subject"]),
        difficulty=str(data.get("difficulty", "medium")),
        exam_type=str(data.get("exam_type", "")),
        question_type=QuestionType(data.get("question_type", QuestionType.SINGLE.value)),
        prompt=data.get("prompt"),
        options=tuple(data.get("options") or ()),
        correct_option=data.get("correct_option"),
        correct_options=tuple(int(o) for o in data.get("correct_options") or ()),
        numerical_answer=numerical,
        topic=data.get("topic"),
        error_tag=data.get("error_tag"),
    )


def attempt_to_dict(attempt: Attempt) -> dict[str, Any]:
    result = attempt.score
    return {
        "test_id": attempt.test_id,
        "total_duration_s": attempt.total_duration_s,
        "marking_scheme": {
            "correct": attempt.marking_scheme.correct,
            "incorrect": attempt.marking_scheme.incorrect,
            "unattempted": attempt.marking_scheme.unattempted,
        },
        "active_index": attempt.active_index,
        "remaining_s": attempt.remaining_s,
        "lifecycle": attempt.lifecycle.value,
        "score": None
        if result is None
        else {
            "raw_score": result.raw_score,
            "correct_count": result.correct_count,
            "incorrect_count": result.incorrect_count,
            "unattempted_count": result.unattempted_count,
            "accuracy_percent": result.accuracy_percent,
            "time_taken_s": result.time_taken_s,
        },
        "items": [
            {
                "question": question_to_dict(item.question),
                "state": {
                    "selected_option": answer_to_json(item.state.selected_option),
                    "is_marked": item.state.is_marked,
                    "is_visited": item.state.is_visited,
                    "time_taken_s": item.state.time_taken_s,
                },
            }
            for item in attempt.items
        ],
    }


def attempt_from_dict(data: Mapping[str, Any]) -> Attempt:
    try:
        items = []
        for raw in data["items"]:
            question = question_from_dict(raw["question"])
            state = raw["state"]
            selected = state.get("selected_option")
            if isinstance(selected, list):
                selected = tuple(int(o) for o in selected)
            items.append(
                AttemptItem(
                    question=question,
                    state=AttemptQuestionState(
                        selected_option=selected,
                        is_marked=bool(state.get("is_marked", False)),
                        is_visited=bool(state.get("is_visited", False)),
                        time_taken_s=float(state.get("time_taken_s", 0.0)),
                    ),
                )
            )
        scheme = data["marking_scheme"]
        raw_score = data.get("score")
        return Attempt(
            test_id=str(data["test_id"]),
            total_duration_s=float(data["total_duration_s"]),
            marking_scheme=MarkingScheme(
                correct=float(scheme["correct"]),
                incorrect=float(scheme["incorrect"]),
                unattempted=float(scheme["unattempted"]),
            ),
            items=tuple(items),
            active_index=int(data.get("active_index", 0)),
            remaining_s=float(data["remaining_s"]),
            lifecycle=Lifecycle(data["lifecycle"]),
            score=None if raw_score is None else ScoreResult(**raw_score),
        )
    except (KeyError, TypeError, ValueError) as exc:
        raise MalformedAttemptDataError(f"stored attempt record is corrupt: {exc}") from exc
