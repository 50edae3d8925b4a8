"""Invoking-program location — default PID path and relative-path anchoring."""
import sys
from pathlib import Path

_INLINE = ("", "-c")


def program_path(program: str | Path | None = None) -> Path:
    """Absolute path of the invoking program (defaults to sys.argv[0]).

    Inline interpreters (`python -c`, bare REPL) have no script file, so they
    map to `python` in the current working directory.
    """
    if program is None:
        program = sys.argv[0] if sys.argv else ""
    if str(program) in _INLINE:
        return Path.cwd() / "python"
    return Path(program).resolve()


def program_dir(program: str | Path | None = None) -> Path:
    return program_path(program).parent


def default_pid_path(program: str | Path | None = None) -> Path:
    prog = program_path(program)
    return prog.parent / f"{prog.name}.pid"


def anchor(path: str | Path, program: str | Path | None = None) -> Path:
    """Make a relative path absolute against the program's directory, not the cwd."""
    path = Path(path)
    if path.is_absolute():
        return path
    return program_dir(program) / path
