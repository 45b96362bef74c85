from __future__ import annotations

import sys
from pathlib import Path

import pytest


def pytest_configure(config: pytest.Config) -> None:
    # Ensure the local `src/` tree wins over any other editable install that may exist
    # (e.g. a different git worktree pointing at the same project).
    src_dir = Path(__file__).resolve().parents[1] / "src"
    src_str = str(src_dir)
    if src_str not in sys.path:
        sys.path.insert(0, src_str)


@pytest.fixture
def sample_replay():
    from trpl import InputAction, InputEvent, InputKind, Replay, ReplayHeader, SessionExtras

    header = ReplayHeader(
        mode_id=7,
        seed=0xDEAD_BEEF_1234,
        player="MrZ",
        game_version="0.17.22",
        duration=3600,
        score=40,
        mode_name="sprint_40l",
        recorded_at="2024/05/01 18:30",
        tas_used=False,
        extras=SessionExtras(
            mods=[(1, 2), (4, True)],
            settings={"das": 8, "arr": 1, "rs": "TRS"},
            private={"board": [[0, 1], [1, 0]]},
        ),
    )
    events = [
        InputEvent(frame=0, action=InputAction.LEFT),
        InputEvent(frame=4, action=InputAction.LEFT, kind=InputKind.RELEASE),
        InputEvent(frame=4, action=InputAction.ROTATE_CW),
        InputEvent(frame=9, action=InputAction.ROTATE_CW, kind=InputKind.RELEASE),
        InputEvent(frame=200, action=InputAction.HARD_DROP),
        InputEvent(frame=201, action=InputAction.HARD_DROP, kind=InputKind.RELEASE),
        InputEvent(frame=70_000, action=InputAction.RIGHT_ZANGI),
    ]
    return Replay.from_events(header, events)
