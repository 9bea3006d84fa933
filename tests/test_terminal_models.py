from __future__ import annotations

import hashlib

from panenexus.terminal import (
    SessionEntry,
    SplitDirection,
    StatsSnapshot,
    WorktreeSession,
    generate_session_id,
)


def test_generate_session_id_is_stable_sha256_prefix() -> None:
    expected = hashlib.sha256(b"/repo/main").hexdigest()[:16]

    assert generate_session_id("/repo/main") == expected
    assert generate_session_id("/repo/main") == generate_session_id("/repo/main")
    assert generate_session_id("/repo/main") != generate_session_id("/repo/feature")
    assert len(generate_session_id("")) == 16


def test_worktree_session_defaults_to_vertical_visible() -> None:
    session = WorktreeSession(worktree_path="/repo")

    assert session.terminals == []
    assert session.split_direction == SplitDirection.VERTICAL
    assert session.visible is True


def test_stats_snapshot_to_dict() -> None:
    snapshot = StatsSnapshot(
        active_process_count=2,
        sessions=[SessionEntry("/repo/a", "pty-1"), SessionEntry("/repo/b", "pty-2")],
    )

    assert snapshot.to_dict() == {
        "active_process_count": 2,
        "sessions": [
            {"worktree_path": "/repo/a", "process_id": "pty-1"},
            {"worktree_path": "/repo/b", "process_id": "pty-2"},
        ],
    }
