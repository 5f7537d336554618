"""Pygame front end for a timed test attempt.

The screens here are thin: every decision about lifecycle, timing and scoring
is made by ``AttemptSession`` and the pure modules underneath it.  Keys:

- Left/Right: previous/next question
- 1-9: select an option (toggles for multiple-answer questions)
- digits, '.', '-' then Enter: numerical answer
- Backspace: edit numerical entry, or clear the answer
- M: mark/unmark for review
- F10: submit
- Esc: quit (from the results screen, or before starting)
"""

from __future__ import annotations

from collections.abc import Callable
from typing import Protocol

import pygame

from .clock import RealClock
from .config import EngineConfig
from .logging_config import configure_logging
from .models import (
    Lifecycle,
    MarkingScheme,
    NumericalAnswer,
    NumericRange,
    Question,
    QuestionStatus,
    QuestionType,
    new_attempt,
)
from .persistence import SqliteAttemptRepository
from .session import AttemptSession

WINDOW_SIZE = (960, 540)
TARGET_FPS = 60

BG = (3, 9, 78)
PANEL_BG = (8, 18, 104)
HEADER_BG = (18, 30, 118)
BORDER = (226, 236, 255)
TEXT_MAIN = (238, 245, 255)
TEXT_MUTED = (186, 200, 224)
ACTIVE_BG = (244, 248, 255)
ACTIVE_TEXT = (14, 26, 74)

STATUS_COLORS = {
    QuestionStatus.NOT_VISITED: (70, 78, 120),
    QuestionStatus.NOT_ANSWERED: (196, 64, 64),
    QuestionStatus.ANSWERED: (54, 168, 92),
    QuestionStatus.MARKED_FOR_REVIEW: (132, 84, 196),
    QuestionStatus.ANSWERED_AND_MARKED: (210, 160, 40),
}


class Screen(Protocol):
    def handle_event(self, event: pygame.event.Event) -> None: ...
    def update(self) -> None: ...
    def render(self, surface: pygame.Surface) -> None: ...


class App:
    def __init__(self, surface: pygame.Surface, font: pygame.font.Font) -> None:
        self._surface = surface
        self._font = font
        self._screens: list[Screen] = []
        self._running = True

    @property
    def running(self) -> bool:
        return self._running

    @property
    def font(self) -> pygame.font.Font:
        return self._font

    def push(self, screen: Screen) -> None:
        self._screens.append(screen)

    def quit(self) -> None:
        self._running = False

    def handle_event(self, event: pygame.event.Event) -> None:
        if event.type == pygame.QUIT:
            self.quit()
            return
        if not self._screens:
            return
        self._screens[-1].handle_event(event)

    def update(self) -> None:
        if self._screens:
            self._screens[-1].update()

    def render(self) -> None:
        if not self._screens:
            return
        self._screens[-1].render(self._surface)


def demo_questions() -> tuple[Question, ...]:
    return (
        Question(
            id="phy-1",
            subject="physics",
            difficulty="easy",
            exam_type="demo",
            prompt="A body moves at 10 m/s for 4 s. How far does it travel?",
            options=("2.5 m", "14 m", "40 m", "400 m"),
            correct_option=2,
            topic="kinematics",
        ),
        Question(
            id="phy-2",
            subject="physics",
            difficulty="medium",
            exam_type="demo",
            question_type=QuestionType.NUMERICAL,
            prompt="Acceleration due to gravity near Earth's surface (m/s^2)?",
            numerical_answer=NumericalAnswer(exact_value=9.81, range=NumericRange(9.7, 9.9), unit="m/s^2"),
            topic="gravitation",
            error_tag="calculation",
        ),
        Question(
            id="chem-1",
            subject="chemistry",
            difficulty="easy",
            exam_type="demo",
            prompt="Which of these is a noble gas?",
            options=("Nitrogen", "Argon", "Chlorine", "Hydrogen"),
            correct_option=1,
            topic="periodic table",
            error_tag="conceptual",
        ),
        Question(
            id="chem-2",
            subject="chemistry",
            difficulty="medium",
            exam_type="demo",
            question_type=QuestionType.MULTIPLE,
            prompt="Select every alkali metal.",
            options=("Sodium", "Calcium", "Potassium", "Iron"),
            correct_options=(0, 2),
            topic="periodic table",
        ),
        Question(
            id="math-1",
            subject="mathematics",
            difficulty="hard",
            exam_type="demo",
            question_type=QuestionType.NUMERICAL,
            prompt="Evaluate 12 * 7 - 5.",
            numerical_answer=NumericalAnswer(exact_value=79.0),
            topic="arithmetic",
        ),
    )


def _fmt_clock(seconds: float) -> str:
    total = int(max(0.0, seconds))
    return f"{total // 60:02d}:{total % 60:02d}"


class AttemptScreen:
    def __init__(self, app: App, session: AttemptSession, *, on_finished: Callable[[], None]) -> None:
        self._app = app
        self._session = session
        self._on_finished = on_finished
        self._entry = ""
        self._title_font = pygame.font.Font(None, 36)
        self._body_font = pygame.font.Font(None, 28)
        self._hint_font = pygame.font.Font(None, 22)

    def handle_event(self, event: pygame.event.Event) -> None:
        if event.type != pygame.KEYDOWN:
            return
        session = self._session

        if session.lifecycle is Lifecycle.NOT_STARTED:
            if event.key in (pygame.K_RETURN, pygame.K_KP_ENTER, pygame.K_SPACE):
                session.start()
            elif event.key == pygame.K_ESCAPE:
                self._app.quit()
            return
        if session.lifecycle is not Lifecycle.IN_PROGRESS:
            return

        item = session.attempt.active_item
        if item is None:
            if event.key == pygame.K_F10:
                session.submit()
            return
        qtype = item.question.question_type

        if event.key == pygame.K_RIGHT:
            self._entry = ""
            session.next()
        elif event.key == pygame.K_LEFT:
            self._entry = ""
            session.prev()
        elif event.key == pygame.K_m:
            session.toggle_mark()
        elif event.key == pygame.K_F10:
            session.submit()
        elif qtype is QuestionType.NUMERICAL:
            self._handle_numeric_key(event)
        elif event.key == pygame.K_BACKSPACE:
            session.clear()
        elif pygame.K_1 <= event.key <= pygame.K_9:
            option = event.key - pygame.K_1
            if option >= len(item.question.options):
                return
            if qtype is QuestionType.MULTIPLE:
                current = set(item.state.selected_option or ())
                session.answer(tuple(sorted(current ^ {option})))
            else:
                session.answer(option)

    def _handle_numeric_key(self, event: pygame.event.Event) -> None:
        if event.key in (pygame.K_RETURN, pygame.K_KP_ENTER):
            try:
                value = float(self._entry)
            except ValueError:
                return
            self._session.answer(value)
            self._entry = ""
        elif event.key == pygame.K_BACKSPACE:
            if self._entry:
                self._entry = self._entry[:-1]
            else:
                self._session.clear()
        elif event.unicode and event.unicode in "0123456789.-" and len(self._entry) < 16:
            self._entry += event.unicode

    def update(self) -> None:
        self._session.update()
        if self._session.lifecycle is Lifecycle.COMPLETED:
            self._on_finished()

    def render(self, surface: pygame.Surface) -> None:
        w, h = surface.get_size()
        surface.fill(BG)
        session = self._session
        attempt = session.attempt

        frame = pygame.Rect(16, 16, max(260, w - 32), max(220, h - 32))
        pygame.draw.rect(surface, PANEL_BG, frame)
        pygame.draw.rect(surface, BORDER, frame, 2)
        header = pygame.Rect(frame.x + 2, frame.y + 2, frame.w - 4, 44)
        pygame.draw.rect(surface, HEADER_BG, header)

        title = self._title_font.render(f"Test {attempt.test_id}", True, TEXT_MAIN)
        surface.blit(title, (header.x + 12, header.y + (header.h - title.get_height()) // 2))
        timer = self._title_font.render(_fmt_clock(session.remaining_s()), True, TEXT_MAIN)
        surface.blit(timer, timer.get_rect(midright=(header.right - 12, header.centery)))

        if attempt.lifecycle is Lifecycle.NOT_STARTED:
            msg = self._body_font.render(
                f"{attempt.question_count} questions, {_fmt_clock(attempt.total_duration_s)}. Press Enter to start.",
                True,
                TEXT_MAIN,
            )
            surface.blit(msg, msg.get_rect(center=frame.center))
            return

        self._render_palette(surface, pygame.Rect(frame.right - 200, header.bottom + 12, 184, frame.h - 120))

        item = attempt.active_item
        if item is not None:
            q = item.question
            x, y = frame.x + 20, header.bottom + 16
            meta = self._hint_font.render(
                f"Q{attempt.active_index + 1}/{attempt.question_count}  |  {q.subject}  |  {q.difficulty}",
                True,
                TEXT_MUTED,
            )
            surface.blit(meta, (x, y))
            y += 28
            prompt = self._body_font.render(str(q.prompt or q.id), True, TEXT_MAIN)
            surface.blit(prompt, (x, y))
            y += 44

            selected = item.state.selected_option
            if q.question_type is QuestionType.NUMERICAL:
                shown = self._entry or ("" if selected is None else f"{selected:g}")
                unit = q.numerical_answer.unit if q.numerical_answer and q.numerical_answer.unit else ""
                entry = self._body_font.render(f"Answer: {shown}_ {unit}", True, TEXT_MAIN)
                surface.blit(entry, (x, y))
            else:
                chosen = set(selected) if isinstance(selected, tuple) else {selected}
                for idx, option in enumerate(q.options):
                    row = pygame.Rect(x, y, frame.w - 260, 34)
                    active = idx in chosen
                    pygame.draw.rect(surface, ACTIVE_BG if active else (9, 20, 106), row)
                    pygame.draw.rect(surface, (62, 84, 152), row, 1)
                    label = self._body_font.render(f"{idx + 1}. {option}", True, ACTIVE_TEXT if active else TEXT_MAIN)
                    surface.blit(label, (row.x + 10, row.y + (row.h - label.get_height()) // 2))
                    y += 40

            if item.state.is_marked:
                flag = self._hint_font.render("Marked for review", True, STATUS_COLORS[QuestionStatus.MARKED_FOR_REVIEW])
                surface.blit(flag, (frame.x + 20, frame.bottom - 64))

        footer = "Left/Right: Move  |  1-9: Select  |  M: Mark  |  Backspace: Clear  |  F10: Submit"
        foot = self._hint_font.render(footer, True, TEXT_MUTED)
        surface.blit(foot, foot.get_rect(midbottom=(frame.centerx, frame.bottom - 10)))

    def _render_palette(self, surface: pygame.Surface, rect: pygame.Rect) -> None:
        pygame.draw.rect(surface, (6, 13, 92), rect)
        pygame.draw.rect(surface, (78, 102, 170), rect, 1)
        cell, gap, cols = 30, 6, 5
        attempt = self._session.attempt
        for idx, item in enumerate(attempt.items):
            r, c = divmod(idx, cols)
            box = pygame.Rect(rect.x + gap + c * (cell + gap), rect.y + gap + r * (cell + gap), cell, cell)
            pygame.draw.rect(surface, STATUS_COLORS[item.state.status], box)
            if idx == attempt.active_index:
                pygame.draw.rect(surface, BORDER, box, 2)
            num = self._hint_font.render(str(idx + 1), True, TEXT_MAIN)
            surface.blit(num, num.get_rect(center=box.center))


class ResultsScreen:
    def __init__(self, app: App, session: AttemptSession) -> None:
        self._app = app
        self._payload = session.payload()
        self._title_font = pygame.font.Font(None, 40)
        self._body_font = pygame.font.Font(None, 28)
        self._hint_font = pygame.font.Font(None, 22)

    @property
    def payload(self) -> dict:
        return self._payload

    def handle_event(self, event: pygame.event.Event) -> None:
        if event.type == pygame.KEYDOWN and event.key in (pygame.K_ESCAPE, pygame.K_RETURN, pygame.K_KP_ENTER):
            self._app.quit()

    def update(self) -> None:
        return

    def render(self, surface: pygame.Surface) -> None:
        w, h = surface.get_size()
        surface.fill(BG)
        perf = self._payload["performance"]
        title = self._title_font.render("Results", True, TEXT_MAIN)
        surface.blit(title, title.get_rect(midtop=(w // 2, 24)))

        lines = [
            f"Score: {perf['score']:g}",
            f"Correct {perf['totalCorrectAnswers']}  |  Incorrect {perf['totalWrongAnswers']}  |  "
            f"Unattempted {perf['totalUnattempted']}",
            f"Accuracy: {perf['accuracy']:.1f}%",
            f"Time taken: {_fmt_clock(perf['totalTimeTaken'])}",
            f"Time management score: {self._payload['completionMetrics']['timeManagementScore']}",
        ]
        for subject, data in self._payload["subjectWise"].items():
            lines.append(
                f"{subject}: {data['correct']}/{data['total']} correct, {data['accuracy'] * 100:.0f}% accuracy, "
                f"{_fmt_clock(data['timeSpent'])}"
            )

        y = 84
        for line in lines:
            text = self._body_font.render(line, True, TEXT_MAIN)
            surface.blit(text, (48, y))
            y += 34

        hint = self._hint_font.render("Enter/Esc: Quit", True, TEXT_MUTED)
        surface.blit(hint, hint.get_rect(midbottom=(w // 2, h - 12)))


def _default_session(config: EngineConfig) -> AttemptSession:
    attempt = new_attempt(
        test_id="demo",
        questions=demo_questions(),
        total_duration_s=config.default_duration_s,
        marking_scheme=MarkingScheme(correct=4.0, incorrect=-1.0, unattempted=0.0),
    )
    repository = SqliteAttemptRepository(config.db_path) if config.db_path is not None else None
    return AttemptSession(attempt, clock=RealClock(), repository=repository, thresholds=config.thresholds)


def run(
    *,
    max_frames: int | None = None,
    event_injector: Callable[[int], None] | None = None,
    session: AttemptSession | None = None,
    config: EngineConfig | None = None,
) -> int:
    cfg = config if config is not None else EngineConfig.from_env()
    configure_logging(cfg.log_level)
    attempt_session = session if session is not None else _default_session(cfg)

    pygame.init()
    pygame.display.set_caption("Test Attempt")
    surface = pygame.display.set_mode(WINDOW_SIZE, pygame.RESIZABLE)

    font = pygame.font.Font(None, 36)
    clock = pygame.time.Clock()

    app = App(surface=surface, font=font)

    def show_results() -> None:
        app.push(ResultsScreen(app, attempt_session))

    app.push(AttemptScreen(app, attempt_session, on_finished=show_results))

    frame = 0
    try:
        while app.running:
            if event_injector is not None:
                event_injector(frame)

            for event in pygame.event.get():
                app.handle_event(event)

            app.update()
            app.render()

            pygame.display.flip()

            frame += 1
            if max_frames is not None and frame >= max_frames:
                break

            clock.tick(TARGET_FPS)
    finally:
        pygame.quit()

    return 0
