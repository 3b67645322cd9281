from __future__ import annotations

import os
import subprocess
import sys
from contextlib import ExitStack, contextmanager
from dataclasses import dataclass
from typing import Callable, Dict, Iterator, Optional, Tuple

try:
    import fcntl  # type: ignore
except ImportError:  # pragma: no cover - non-POSIX platforms
    fcntl = None

from command import EMPTY_COMMAND, Command, CommandAssembler
from lexer import Token, TokenKind, scan


# Operators that need a right-hand operand (a file name) before they can run
TWO_SIDED: frozenset[TokenKind] = frozenset({TokenKind.IN, TokenKind.OUT})
# A stage followed by one of these writes into a pipe instead of the terminal
CAPTURING: frozenset[TokenKind] = frozenset({TokenKind.PIPE, TokenKind.IN, TokenKind.OUT})
# Tokens the assembler collects; parentheses are tokenized but not interpreted
WORD_KINDS: frozenset[TokenKind] = frozenset({TokenKind.WORD, TokenKind.GROUP_OPEN, TokenKind.GROUP_CLOSE})

MAX_SOURCE_DEPTH = 32
PIPE_CAPACITY = 1 << 20
READ_CHUNK = 1 << 16


class ShellSession:
    """Holds interpreter-wide context that outlives a single line."""

    def __init__(self) -> None:
        self.last_line: Optional[str] = None
        self.last_status: int = 0
        self.source_depth: int = 0


def _warn(message: str) -> None:
    sys.stderr.write(message + "\n")
    sys.stderr.flush()


# --------- Descriptor helpers ---------

def _close(fd: int) -> None:
    # 0 is the interpreter's own stdin and is never released
    if fd > 0:
        os.close(fd)


@contextmanager
def _owned(fd: int) -> Iterator[int]:
    """Close ``fd`` when the block exits, however it exits."""
    try:
        yield fd
    finally:
        os.close(fd)


def _make_pipe() -> Tuple[int, int]:
    read_fd, write_fd = os.pipe()
    if fcntl is not None and hasattr(fcntl, "F_SETPIPE_SZ"):
        try:
            fcntl.fcntl(write_fd, fcntl.F_SETPIPE_SZ, PIPE_CAPACITY)
        except OSError:
            # Above /proc/sys/fs/pipe-max-size; the default capacity stays
            pass
    return read_fd, write_fd


def _empty_stream() -> int:
    """Read end of a pipe that is already at EOF."""
    read_fd, write_fd = os.pipe()
    os.close(write_fd)
    return read_fd


def _open_input(filename: str) -> int:
    return os.open(filename, os.O_RDONLY)


def _open_output(filename: str) -> int:
    return os.open(filename, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o644)


def _drain(src: int, dst: int) -> None:
    """Copy everything readable from ``src`` into ``dst``."""
    if src == 0:
        return
    while True:
        chunk = os.read(src, READ_CHUNK)
        if not chunk:
            break
        view = memoryview(chunk)
        while view:
            written = os.write(dst, view)
            view = view[written:]


# --------- Process spawning ---------

def _exit_status(returncode: int) -> int:
    # Popen reports death by signal N as -N
    return 128 - returncode if returncode < 0 else returncode


def _spawn(command: Command, stdin: int, stdout: Optional[int] = None) -> int:
    """Run ``command`` in a child process and wait for it.

    ``stdin`` is the descriptor the child reads from (0 means inherit ours);
    ``stdout`` is the descriptor it writes to, or None for the terminal.
    The child receives duplicates, so the caller still owns both descriptors.
    Returns the child's exit status.
    """
    # Anything we buffered must reach the terminal before the child writes
    sys.stdout.flush()
    sys.stderr.flush()
    try:
        proc = subprocess.Popen(
            list(command.args),
            stdin=stdin if stdin > 0 else None,
            stdout=stdout,
        )
    except (FileNotFoundError, NotADirectoryError):
        _warn(f"{command.program}: command not found")
        return 127
    except PermissionError:
        _warn(f"{command.program}: permission denied")
        return 126
    except OSError as e:
        # ENOEXEC, ELOOP and friends: the program exists but cannot be run
        _warn(f"{command.program}: {e.strerror}")
        return 126
    except ValueError as e:
        _warn(f"minish: {command.program}: {e}")
        return 126
    try:
        return _exit_status(proc.wait())
    except KeyboardInterrupt:
        # SIGINT went to the whole foreground group; reap the child as well
        proc.wait()
        return 130


def _run_stage(command: Command, stdin: int, capture: bool) -> Tuple[int, Optional[int]]:
    """Spawn ``command``; with ``capture`` its stdout goes into a fresh pipe.

    Returns the exit status and the read end of that pipe (None when the
    output went to the terminal). The write end is closed before returning.
    """
    if not capture:
        return _spawn(command, stdin), None
    read_fd, write_fd = _make_pipe()
    with ExitStack() as on_error:
        on_error.callback(os.close, read_fd)
        with _owned(write_fd):
            status = _spawn(command, stdin, write_fd)
        on_error.pop_all()
    return status, read_fd


# --------- Machine state ---------

@dataclass
class MachineState:
    """Live state of one line's operator state machine.

    ``carried_input`` is either 0 (the interpreter's stdin) or a descriptor
    owned by this state; leaving the ``with`` block releases it.
    """
    current_operator: Optional[TokenKind] = None
    previous_operator: Optional[TokenKind] = None
    awaits_second_operand: bool = False
    staged_left: Optional[Command] = None
    staged_right: Optional[Command] = None
    carried_input: int = 0
    suppress_output: bool = False
    last_status: int = 0

    def carry(self, fd: int) -> None:
        """Make ``fd`` the next stage's input, releasing the previous one."""
        previous, self.carried_input = self.carried_input, fd
        if previous != fd:
            _close(previous)

    def release(self) -> None:
        self.carry(0)

    def clear_staged(self) -> None:
        self.staged_left = None
        self.staged_right = None

    def __enter__(self) -> "MachineState":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:  # type: ignore[override]
        self.release()


# --------- Operator state machine ---------

class StateMachine:
    """Assembles commands from a token stream and runs them stage by stage.

    Each operator fires as soon as its operands are known: ``|`` and ``;``
    run their left command immediately, ``<`` and ``>`` wait for the file
    name that follows them. The command after ``|`` or ``;`` becomes the left
    operand of the next segment.
    """

    def __init__(self, session: ShellSession) -> None:
        self.session = session
        self.state = MachineState()
        self.assembler = CommandAssembler()

    def advance(self, token: Token, is_last: bool) -> None:
        st = self.state
        if token.kind in WORD_KINDS and not is_last:
            self.assembler.feed_word(token.text)
            return

        command = self.assembler.finalize()
        incoming = None if token.kind is TokenKind.END else token.kind
        completing = st.awaits_second_operand

        if not is_last or completing:
            st.previous_operator = st.current_operator
            st.current_operator = incoming

        if completing:
            st.staged_right = command
            st.awaits_second_operand = False
            governing = st.previous_operator
        else:
            st.staged_left = command
            governing = None if is_last else st.current_operator

        if governing is None:
            st.last_status = self.run_single()
        elif governing in TWO_SIDED and not completing:
            # Left side staged; the file name is still to come
            st.awaits_second_operand = True
            return
        else:
            st.last_status = getattr(self, HANDLERS[governing])()
        st.clear_staged()

    def _look_ahead(self) -> bool:
        """Decide whether the stage about to run must have its output captured.

        The deciding operator is the one staged right after this stage's
        command. A two-sided one means the next command is its left operand.
        """
        st = self.state
        upcoming = st.current_operator
        st.awaits_second_operand = upcoming in TWO_SIDED
        st.suppress_output = upcoming in CAPTURING
        return st.suppress_output

    def _run_builtin(self, command: Command) -> int:
        return BUILTINS[command.program](command, self.session)

    # --- handlers ---

    def run_single(self) -> int:
        st = self.state
        command = st.staged_left or EMPTY_COMMAND
        if command.program in BUILTINS:
            return self._run_builtin(command)
        if command.is_empty:
            return st.last_status
        try:
            return _spawn(command, st.carried_input)
        finally:
            st.release()

    def run_sequence(self) -> int:
        return self.run_single()

    def run_pipe(self) -> int:
        st = self.state
        capture = self._look_ahead()
        command = st.staged_left or EMPTY_COMMAND
        if command.program in BUILTINS:
            status = self._run_builtin(command)
            # Builtins write nothing, so the next stage sees EOF
            st.carry(_empty_stream())
            return status
        if command.is_empty:
            st.carry(_empty_stream())
            return st.last_status
        status, read_fd = _run_stage(command, st.carried_input, capture)
        # The next stage always reads from a pipe, even an empty one
        st.carry(read_fd if read_fd is not None else _empty_stream())
        return status

    def run_input_redirect(self) -> int:
        st = self.state
        capture = self._look_ahead()
        command = st.staged_left or EMPTY_COMMAND
        filename = (st.staged_right or EMPTY_COMMAND).filename
        if not filename:
            _warn("minish: missing file name after '<'")
            st.carry(_empty_stream() if capture else 0)
            return 1
        try:
            in_fd = _open_input(filename)
        except OSError as e:
            _warn(f"minish: {filename}: {e.strerror}")
            st.carry(_empty_stream() if capture else 0)
            return 1
        with _owned(in_fd):
            if command.is_empty:
                status, read_fd = st.last_status, (_empty_stream() if capture else None)
            else:
                status, read_fd = _run_stage(command, in_fd, capture)
        st.carry(read_fd if read_fd is not None else 0)
        return status

    def run_output_redirect(self) -> int:
        st = self.state
        capture = self._look_ahead()
        command = st.staged_left or EMPTY_COMMAND
        filename = (st.staged_right or EMPTY_COMMAND).filename
        if not filename:
            _warn("minish: missing file name after '>'")
            st.carry(_empty_stream() if capture else 0)
            return 1
        try:
            out_fd = _open_output(filename)
        except OSError as e:
            _warn(f"minish: {filename}: {e.strerror}")
            st.carry(_empty_stream() if capture else 0)
            return 1
        with _owned(out_fd):
            if command.is_empty:
                # Nothing to run: whatever is carried in lands in the file
                _drain(st.carried_input, out_fd)
                status = st.last_status
            else:
                status = _spawn(command, st.carried_input, out_fd)
        # Output went to the file; a following stage reads nothing
        st.carry(_empty_stream() if capture else 0)
        return status


# Handler method run when each operator fires
HANDLERS: Dict[TokenKind, str] = {
    TokenKind.SEQ: "run_sequence",
    TokenKind.PIPE: "run_pipe",
    TokenKind.IN: "run_input_redirect",
    TokenKind.OUT: "run_output_redirect",
}


# --------- Builtins ---------

def builtin_cd(command: Command, session: ShellSession) -> int:
    if len(command.args) > 1:
        target = command.args[1]
    else:
        target = os.environ.get("HOME") or os.path.expanduser("~")
    try:
        os.chdir(target)
    except OSError as e:
        _warn(f"{e.strerror}: {target}")
        return 1
    return 0


def builtin_source(command: Command, session: ShellSession) -> int:
    if len(command.args) < 2:
        _warn("minish: source: usage: source <script>")
        return 1
    return run_script(command.args[1], session)


BUILTINS: Dict[str, Callable[[Command, ShellSession], int]] = {
    "cd": builtin_cd,
    "source": builtin_source,
}


# --------- Entry points ---------

def execute_line(line: str, session: ShellSession) -> int:
    """Tokenize ``line`` and run it. Returns the status of the last stage run.

    An OSError or ValueError that escapes a handler (pipe or process
    creation failing, a NUL byte in a file name) aborts the rest of the
    line only.
    """
    machine = StateMachine(session)
    tokens = scan(line)
    last = len(tokens) - 1
    try:
        with machine.state:
            for i, token in enumerate(tokens):
                machine.advance(token, i == last)
    except (OSError, ValueError) as e:
        _warn(f"minish: {e}")
        session.last_status = 1
        return 1
    session.last_status = machine.state.last_status
    return session.last_status


def run_script(path: str, session: ShellSession) -> int:
    """Feed every line of the file at ``path`` through ``execute_line``."""
    if session.source_depth >= MAX_SOURCE_DEPTH:
        _warn(f"minish: source: nesting too deep: {path}")
        return 1
    try:
        handle = open(path, encoding="utf-8", errors="replace")
    except OSError:
        _warn(f"Error: File {path} not found")
        return 1
    status = 0
    session.source_depth += 1
    try:
        with handle:
            for line in handle:
                status = execute_line(line, session)
    finally:
        session.source_depth -= 1
    return status
