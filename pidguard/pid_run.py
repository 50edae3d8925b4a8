#!/usr/bin/env python3
"""pid_run.py — run a command while holding a guarded PID file.

Refuses to start a second instance while the PID file names a live process.
The PID file is removed when the command exits, on SIGTERM/SIGINT, or at
interpreter exit.

Usage: python3 -m pidguard.pid_run [--file PATH] [--retries N] [--sleep S] [--] command [args...]
       python3 -m pidguard.pid_run --file PATH --check
       python3 -m pidguard.pid_run --file PATH --remove
"""
import argparse
import logging
import os
import shutil
import signal
import subprocess
import sys
from pathlib import Path

from pidguard.lib.pid_file import DEFAULT_RETRIES, DEFAULT_SLEEP, PidFile

logger = logging.getLogger(__name__)

_child_proc: subprocess.Popen | None = None


def die(msg: str) -> None:
    print(f"❌ {msg}", file=sys.stderr)
    sys.exit(1)


def _abspath(value: str) -> Path:
    # cwd-relative on the command line, unlike the library's program-relative default
    return Path(value).absolute()


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="pid_run", description="Run a command while holding a PID file.")
    parser.add_argument("-f", "--file", type=_abspath, default=os.environ.get("PIDGUARD_FILE") or None,
                        help="PID file path (env PIDGUARD_FILE; default: <command>.pid beside the command)")
    parser.add_argument("--retries", type=int, default=os.environ.get("PIDGUARD_RETRIES", str(DEFAULT_RETRIES)),
                        help="extra creation attempts while another instance runs (env PIDGUARD_RETRIES)")
    parser.add_argument("--sleep", type=float, default=os.environ.get("PIDGUARD_SLEEP", str(DEFAULT_SLEEP)),
                        help="seconds between creation attempts (env PIDGUARD_SLEEP)")
    mode = parser.add_mutually_exclusive_group()
    mode.add_argument("--check", action="store_true",
                      help="report whether the PID file is held; exit 0 if running, 1 if not")
    mode.add_argument("--remove", action="store_true",
                      help="force-remove the PID file and exit")
    parser.add_argument("-l", "--log", dest="loglevel", default="WARNING",
                        help="log level (default: WARNING)")
    parser.add_argument("command", nargs=argparse.REMAINDER,
                        help="command to run while holding the PID file")

    args = parser.parse_args(argv)
    if args.command and args.command[0] == "--":
        args.command = args.command[1:]
    if args.check or args.remove:
        if args.command:
            parser.error("--check and --remove take no command")
    elif not args.command:
        parser.error("a command is required unless --check or --remove is given")
    if args.retries < 0:
        parser.error("--retries must be >= 0")
    if args.sleep < 0:
        parser.error("--sleep must be >= 0")
    return args


def setup_logging(loglevel: str) -> None:
    numeric_level = getattr(logging, loglevel.upper(), None)
    if not isinstance(numeric_level, int):
        die(f"Invalid log level: {loglevel}")
    logging.basicConfig(level=numeric_level, format="%(message)s")


def program_for(command: list[str]) -> str:
    """The program the default PID path derives from: the command's executable, else this script."""
    if command:
        exe = shutil.which(command[0])
        if exe:
            return exe
    return __file__


def check(pid_file: PidFile) -> int:
    if pid_file.running():
        print(f"running {pid_file.pid}" if pid_file.pid else "running")
        return 0
    print("not running")
    return 1


def run(pid_file: PidFile, command: list[str]) -> int:
    """Run command with pid_file armed; return the command's exit status."""
    global _child_proc

    pid_file.arm()

    def _cleanup_handler(signum=None, frame=None):
        logger.info("Received %s, stopping %s", signal.Signals(signum).name, command[0])
        if _child_proc is not None:
            try:
                os.killpg(os.getpgid(_child_proc.pid), signal.SIGTERM)
            except (ProcessLookupError, OSError):
                pass
        pid_file.close()
        sys.exit(128 + signum)

    signal.signal(signal.SIGTERM, _cleanup_handler)
    signal.signal(signal.SIGINT, _cleanup_handler)

    try:
        _child_proc = subprocess.Popen(command, start_new_session=True)
    except OSError as e:
        pid_file.remove()
        die(f"Cannot run {command[0]}: {e}")

    logger.info("Started %s (pid %d) under %s", command[0], _child_proc.pid, pid_file.file())
    returncode = _child_proc.wait()
    pid_file.remove()
    # signalled child: shell convention 128 + signal number
    return 128 - returncode if returncode < 0 else returncode


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    setup_logging(args.loglevel)

    pid_file = PidFile(args.file, program=program_for(args.command))

    if args.check:
        return check(pid_file)
    if args.remove:
        pid_file.remove(force=True)
        print(f"🗑️  Removed {pid_file.file()}")
        return 0

    if not pid_file.create(sleep=args.sleep, retries=args.retries):
        die(f"Already running: {pid_file.file()}")
    return run(pid_file, args.command)


if __name__ == "__main__":
    sys.exit(main())
