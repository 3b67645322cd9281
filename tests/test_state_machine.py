"""Tests for operator dispatch, without spawning any process."""

from __future__ import annotations

from typing import Optional

import pytest  # type: ignore

from command import EMPTY_COMMAND, Command
from lexer import TokenKind, scan
from ops import ShellSession, StateMachine


def cmd(*words: str) -> Command:
    return Command(words[0], tuple(words))


class RecordingMachine(StateMachine):
    """Records which handler fired and with what operands."""

    def __init__(self) -> None:
        super().__init__(ShellSession())
        self.calls: list[tuple[str, Optional[Command], Optional[Command], bool]] = []

    def _record(self, name: str, capture: bool = False) -> int:
        st = self.state
        self.calls.append((name, st.staged_left, st.staged_right, capture))
        return 0

    def run_single(self) -> int:
        return self._record("single")

    def run_sequence(self) -> int:
        return self._record("sequence")

    def run_pipe(self) -> int:
        return self._record("pipe", self._look_ahead())

    def run_input_redirect(self) -> int:
        return self._record("in", self._look_ahead())

    def run_output_redirect(self) -> int:
        return self._record("out", self._look_ahead())


def feed(line: str) -> RecordingMachine:
    machine = RecordingMachine()
    tokens = scan(line)
    for i, token in enumerate(tokens):
        machine.advance(token, i == len(tokens) - 1)
    return machine


def test_bare_command_runs_single_handler():
    m = feed("cmd a b c")
    assert m.calls == [("single", cmd("cmd", "a", "b", "c"), None, False)]


def test_blank_line_runs_empty_single():
    m = feed("")
    assert m.calls == [("single", EMPTY_COMMAND, None, False)]


def test_pipe_fires_per_stage():
    m = feed("a | b")
    assert m.calls == [
        ("pipe", cmd("a"), None, True),
        ("single", cmd("b"), None, False),
    ]


def test_three_stage_pipeline_is_incremental():
    m = feed("a | b x | c")
    assert m.calls == [
        ("pipe", cmd("a"), None, True),
        ("pipe", cmd("b", "x"), None, True),
        ("single", cmd("c"), None, False),
    ]


def test_output_redirect_waits_for_file_name():
    m = feed("a > out.txt")
    assert m.calls == [("out", cmd("a"), cmd("out.txt"), False)]


def test_input_redirect_then_pipe_captures_output():
    m = feed("a < in.txt | b")
    assert m.calls == [
        ("in", cmd("a"), cmd("in.txt"), True),
        ("single", cmd("b"), None, False),
    ]


def test_sequence_runs_left_then_next_segment():
    m = feed("a ; b")
    assert m.calls == [
        ("sequence", cmd("a"), None, False),
        ("single", cmd("b"), None, False),
    ]


def test_pipe_into_output_redirect():
    m = feed("a | b > g")
    assert m.calls == [
        ("pipe", cmd("a"), None, True),
        ("out", cmd("b"), cmd("g"), False),
    ]


def test_mixed_chain_input_pipe_output():
    m = feed("a < f | b > g")
    assert m.calls == [
        ("in", cmd("a"), cmd("f"), True),
        ("out", cmd("b"), cmd("g"), False),
    ]


def test_chained_redirections_leave_empty_left_operand():
    m = feed("a < f > g")
    assert m.calls == [
        ("in", cmd("a"), cmd("f"), True),
        ("out", None, cmd("g"), False),
    ]


def test_missing_right_operand_becomes_empty_command():
    m = feed("a >")
    assert m.calls == [("out", cmd("a"), EMPTY_COMMAND, False)]


def test_leading_operator_gives_empty_left_operand():
    m = feed("; b")
    assert m.calls == [
        ("sequence", EMPTY_COMMAND, None, False),
        ("single", cmd("b"), None, False),
    ]


def test_parentheses_are_accumulated_as_words():
    m = feed("( ls )")
    assert m.calls == [("single", Command("(", ("(", "ls", ")")), None, False)]


def test_deferred_operator_sets_awaits_flag():
    machine = RecordingMachine()
    for token in scan("a <")[:-1]:
        machine.advance(token, False)
    st = machine.state
    assert st.awaits_second_operand is True
    assert st.current_operator is TokenKind.IN
    assert st.staged_left == cmd("a")
    assert machine.calls == []


def test_staged_commands_cleared_after_dispatch():
    m = feed("a | b")
    assert m.state.staged_left is None
    assert m.state.staged_right is None
    assert m.state.awaits_second_operand is False


@pytest.mark.parametrize(
    "line,capture",
    [
        ("a | b", True),
        ("a < f ; b", False),
        ("a < f > g", True),
    ],
)
def test_look_ahead_uses_operator_after_stage(line, capture):
    m = feed(line)
    assert m.calls[0][3] is capture
