"""Smoke tests for the pygame front end.

These verify that the main loop can initialise and run a handful of frames
with the SDL dummy drivers, and that a scripted key sequence drives an
attempt all the way to the results screen.  They do not check rendering.
"""

from __future__ import annotations

import os

# Use the dummy drivers before importing pygame or the application
os.environ.setdefault("SDL_VIDEODRIVER", "dummy")
os.environ.setdefault("SDL_AUDIODRIVER", "dummy")
os.environ.setdefault("PYGAME_HIDE_SUPPORT_PROMPT", "1")


def test_app_runs_headless() -> None:
    from attempt_engine.app import run
    from attempt_engine.config import EngineConfig

    assert run(max_frames=3, config=EngineConfig()) == 0


def test_scripted_keys_submit_attempt() -> None:
    import pygame

    from attempt_engine.app import demo_questions, run
    from attempt_engine.clock import FakeClock
    from attempt_engine.config import EngineConfig
    from attempt_engine.models import Lifecycle, MarkingScheme, new_attempt
    from attempt_engine.session import AttemptSession

    clock = FakeClock()
    attempt = new_attempt(
        test_id="smoke",
        questions=demo_questions(),
        total_duration_s=600.0,
        marking_scheme=MarkingScheme(correct=4.0, incorrect=-1.0, unattempted=0.0),
    )
    session = AttemptSession(attempt, clock=clock)

    def key(k: int, text: str = "") -> None:
        pygame.event.post(pygame.event.Event(pygame.KEYDOWN, {"key": k, "unicode": text}))

    script = {
        1: [(pygame.K_RETURN, "")],  # start
        2: [(pygame.K_3, "3")],  # phy-1 -> option 3 (correct)
        3: [(pygame.K_RIGHT, "")],
        4: [(pygame.K_9, "9"), (pygame.K_PERIOD, "."), (pygame.K_8, "8"), (pygame.K_RETURN, "")],
        5: [(pygame.K_m, "m"), (pygame.K_RIGHT, "")],
        6: [(pygame.K_1, "1")],  # chem-1 -> option 1 (wrong)
        7: [(pygame.K_F10, "")],
    }

    def inject(frame: int) -> None:
        clock.advance(2.0)
        for k, text in script.get(frame, []):
            key(k, text)

    assert run(max_frames=12, event_injector=inject, session=session, config=EngineConfig()) == 0

    assert session.lifecycle is Lifecycle.COMPLETED
    result = session.attempt.score
    assert result is not None
    assert (result.correct_count, result.incorrect_count, result.unattempted_count) == (2, 1, 2)
    assert result.raw_score == 7.0
    assert session.attempt.items[1].state.is_marked
