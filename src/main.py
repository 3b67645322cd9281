#!/usr/bin/env python3

# Entry of minish

from __future__ import annotations

import argparse
import os
import sys
from typing import Optional, TextIO

try:
    import readline  # type: ignore
except Exception:  # pragma: no cover - fallback when readline unavailable
    readline = None

READLINE_ACTIVE = bool(readline)

DEFAULT_PROMPT = "shell $ "
WELCOME_MSG = "Welcome to mini-shell."
EXIT_MSG = "Bye bye."

HELP_TEXT = """Help
cd > usage: cd <directory>
\tChange the current working directory to the given one.
source > usage: source <script>
\tExecute list of commands in the given text file script
prev > usage: prev
\tExecute the previous command
exit > usage: exit
\tLeave the shell"""

from lexer import format_tokens, tokenize  # local modules in the same folder
from ops import ShellSession, execute_line, run_script


def get_prompt(override: Optional[str] = None) -> str:
    """Prompt text: explicit override, then $MINISH_PROMPT, then the default."""
    if override is not None:
        return override
    return os.environ.get("MINISH_PROMPT") or DEFAULT_PROMPT


def setup_readline() -> None:
    if not READLINE_ACTIVE:
        return
    try:
        readline.parse_and_bind("set editing-mode emacs")
        readline.parse_and_bind("Control-l: clear-screen")
    except Exception:
        pass


def resolve_line(line: str, session: ShellSession) -> Optional[str]:
    """Map a typed line to the line to execute.

    ``prev`` yields the previous line (echoed as ``> line``); anything else is
    remembered as the new previous line. Returns None when there is nothing
    to run.
    """
    if line.strip() == "prev":
        if session.last_line is None:
            print("minish: prev: no previous command", file=sys.stderr)
            return None
        print(f"> {session.last_line}")
        return session.last_line
    session.last_line = line
    return line


def repl(prompt: Optional[str] = None, banner: bool = True) -> int:
    session = ShellSession()
    prompt_text = get_prompt(prompt)

    setup_readline()

    if banner:
        print(WELCOME_MSG)
    while True:
        try:
            line = input(prompt_text)
        except EOFError:
            # Ctrl-D -> exit
            print()
            break
        except KeyboardInterrupt:
            # Ctrl-C at prompt -> new line and continue
            print()
            continue

        stripped = line.strip()
        if stripped == "":
            continue
        if stripped == "exit":
            break
        if stripped == "help":
            print(HELP_TEXT)
            continue

        to_run = resolve_line(line, session)
        if to_run is None:
            continue
        try:
            execute_line(to_run, session)
        except Exception as e:
            print(f"minish: error: {e}", file=sys.stderr)
            session.last_status = 1

    if banner:
        print(EXIT_MSG)
    return session.last_status


def dump_tokens(stream: TextIO) -> int:
    """Print the tokens of every line read from ``stream``, one per line."""
    for line in stream:
        text = format_tokens(tokenize(line))
        if text:
            print(text)
    return 0


def parse_args(args=None) -> argparse.Namespace:
    """Parse command-line arguments."""
    parser = argparse.ArgumentParser(
        description="minish - a small line-oriented command interpreter",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  minish                        # Interactive prompt
  minish script.sh              # Run every line of script.sh
  minish -c 'ls | wc -l'        # Run one line and exit
  echo 'a | b' | minish --tokens

Operators: | (pipe), < (input), > (output), ; (sequence)
"""
    )

    parser.add_argument(
        "script",
        nargs="?",
        help="Run the lines of this file instead of prompting"
    )
    parser.add_argument(
        "-c", "--command",
        metavar="LINE",
        help="Run a single command line and exit with its status"
    )
    parser.add_argument(
        "--tokens",
        action="store_true",
        help="Print the tokens of each line read from stdin and exit"
    )
    parser.add_argument(
        "--prompt",
        metavar="TEXT",
        help="Prompt to show (default: $MINISH_PROMPT or 'shell $ ')"
    )
    parser.add_argument(
        "--no-banner",
        action="store_true",
        help="Do not print the welcome and goodbye messages"
    )

    return parser.parse_args(args)


def main(argv=None) -> None:
    args = parse_args(argv)
    if args.tokens:
        sys.exit(dump_tokens(sys.stdin))
    if args.command is not None:
        sys.exit(execute_line(args.command, ShellSession()))
    if args.script:
        sys.exit(run_script(args.script, ShellSession()))
    sys.exit(repl(prompt=args.prompt, banner=not args.no_banner))


if __name__ == "__main__":
    main()
