# tests/test_console_connector.py

from __future__ import annotations

from blockreceipt.connectors.console_connector import NOT_A_COMMAND, run_console_loop
from blockreceipt.core.state import AppState


class ScriptedInput:
    def __init__(self, *lines: str) -> None:
        self.lines = list(lines)
        self.prompts: list[str] = []

    def __call__(self, prompt: str) -> str:
        self.prompts.append(prompt)
        if not self.lines:
            raise EOFError
        return self.lines.pop(0)


def test_console_runs_commands_until_exit(state: AppState) -> None:
    out: list[str] = []
    reader = ScriptedInput("", "/submit R1 0xABC", "hello", "/exit", "/stats")

    run_console_loop(state, read_line=reader, write=out.append)

    assert "backend=memory" in out[0]
    assert "Submitted receipt R1" in out[1]
    assert out[2].endswith(NOT_A_COMMAND)
    assert len(out) == 3
    # /stats after /exit is never read
    assert reader.lines == ["/stats"]
    assert state.task_store.count_tasks() == 1


def test_console_stops_on_eof(state: AppState) -> None:
    out: list[str] = []
    run_console_loop(state, read_line=ScriptedInput("/tasks"), write=out.append)

    assert out[-1].endswith("No tasks.")
