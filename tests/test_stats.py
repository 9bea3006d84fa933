from __future__ import annotations

from panenexus.stats import StatsAggregator
from panenexus.terminal import SessionEntry, SplitDirection, StatsSnapshot, TerminalRegistry


class _Liveness:
    def __init__(self, alive: set[str]) -> None:
        self.alive = alive

    def is_alive(self, process_id: str) -> bool:
        return process_id in self.alive


def _bound_registry() -> TerminalRegistry:
    registry = TerminalRegistry()
    first = registry.create_instance("/repo")
    second = registry.split(first.terminal_id, SplitDirection.VERTICAL)
    third = registry.split(second.terminal_id, SplitDirection.VERTICAL)
    registry.bind_process(first.terminal_id, "pty-1")
    registry.bind_process(second.terminal_id, "pty-2")
    registry.bind_process(third.terminal_id, "pty-3")
    return registry


def test_snapshot_counts_live_bound_processes() -> None:
    registry = _bound_registry()
    stats = StatsAggregator(registry, _Liveness({"pty-1", "pty-2", "pty-3"}))

    snapshot = stats.snapshot()

    assert snapshot.active_process_count == 3
    assert snapshot.sessions == [
        SessionEntry("/repo", "pty-1"),
        SessionEntry("/repo", "pty-2"),
        SessionEntry("/repo", "pty-3"),
    ]


def test_snapshot_drops_closed_and_exited_processes() -> None:
    registry = _bound_registry()
    liveness = _Liveness({"pty-1", "pty-2", "pty-3"})
    stats = StatsAggregator(registry, liveness)

    terminal = registry.terminal_for_process("pty-2")
    assert terminal is not None
    registry.remove_instance(terminal.terminal_id)
    assert stats.snapshot().active_process_count == 2

    liveness.alive.discard("pty-3")
    snapshot = stats.snapshot()
    assert snapshot.active_process_count == 1
    assert [entry.process_id for entry in snapshot.sessions] == ["pty-1"]


def test_snapshot_skips_unbound_terminals() -> None:
    registry = TerminalRegistry()
    registry.create_instance("/repo/empty")

    snapshot = StatsAggregator(registry, _Liveness(set())).snapshot()

    assert snapshot == StatsSnapshot(active_process_count=0, sessions=[])
    assert snapshot.to_dict() == {"active_process_count": 0, "sessions": []}
