"""PID file — fcntl.flock-guarded single-instance marker with scope-bound cleanup.

The file holds one decimal process id. A live owner keeps an exclusive,
non-blocking flock on it for as long as it claims ownership; a file left
behind by a crashed owner is recognised by probing its pid.

    pid_file = PidFile("/tmp/myapp.pid")
    if not pid_file.create(retries=5, sleep=2):
        sys.exit("already running")
    pid_file.guard()        # removed when pid_file is garbage collected
    ...
    pid_file.remove()
"""
import atexit
import fcntl
import functools
import logging
import os
import re
import weakref
from pathlib import Path

from pidguard.lib.guard import GuardToken
from pidguard.lib.program import anchor, default_pid_path
from pidguard.lib.retry import retry

logger = logging.getLogger(__name__)

DEFAULT_SLEEP = 1
DEFAULT_RETRIES = 0

_PID_TEXT = re.compile(r"\d+\n?", re.ASCII)

# armed PID files still alive at interpreter exit
_armed = weakref.WeakSet()


class PidFileError(Exception):
    """Base class for PID file errors."""


class OwnershipError(PidFileError):
    """remove()/guard() called on a PID file this process does not own."""


def pid_alive(pid: int) -> bool:
    """Signal-0 probe: True if `pid` exists. Never affects the target."""
    if pid <= 0:
        return False
    try:
        os.kill(pid, 0)
    except (ProcessLookupError, OverflowError):
        # OverflowError: beyond pid_t, no such process
        return False
    except PermissionError:
        # exists, owned by another user
        return True
    return True


class PidFile:
    def __init__(self, file: str | Path | None = None, *, program: str | Path | None = None):
        """
        Args:
            file: PID file path. Relative paths are anchored to the program's
                directory. Defaults to `<program>.pid` beside the program.
            program: Path of the invoking program (default: sys.argv[0]).
        """
        self._file = Path(file) if file is not None else None
        self._resolved = False
        self._program = program
        self._pid: int | None = None
        self._handle = None
        self._cleanup = None

    # --- path ---

    def file(self, path: str | Path | None = None) -> Path:
        """Set (optionally) and return the resolved PID file path."""
        if path is not None:
            if self._handle is not None:
                raise PidFileError(f"Cannot change path while holding the lock on {self._file}")
            self._file = Path(path)
            self._resolved = False
        if not self._resolved:
            if self._file is None:
                self._file = default_pid_path(self._program)
            else:
                self._file = anchor(self._file, self._program)
            self._resolved = True
        return self._file

    @property
    def path(self) -> Path:
        return self.file()

    @property
    def pid(self) -> int | None:
        """Last known owner pid: written by create() or read by running()."""
        return self._pid

    # --- state ---

    def running(self) -> bool:
        """True if the PID file is locked or names a live process."""
        try:
            fh = open(self.file(), "r+", encoding="ascii", errors="replace")
        except OSError:
            self._pid = None
            return False

        with fh:
            try:
                fcntl.flock(fh, fcntl.LOCK_EX | fcntl.LOCK_NB)
            except OSError:
                # held by a live owner, safer to assume it's running
                return True
            text = fh.read()
            if _PID_TEXT.fullmatch(text):
                self._pid = int(text)

        if not self._pid:
            return False
        return pid_alive(self._pid)

    def _create(self) -> bool:
        """Single creation attempt. False on contention or I/O error."""
        if self.running():
            logger.debug("%s is held by a running process (pid %s)", self.file(), self._pid)
            return False

        # no truncation until the lock is ours
        try:
            fh = open(self.file(), "a", encoding="ascii")
        except OSError as e:
            logger.debug("Cannot open %s: %s", self.file(), e)
            return False

        try:
            fcntl.flock(fh, fcntl.LOCK_EX | fcntl.LOCK_NB)
        except OSError:
            logger.debug("Lost the lock race on %s", self.file())
            fh.close()
            return False

        # an unlink between our open and flock leaves us locking an orphan
        try:
            orphaned = os.fstat(fh.fileno()).st_ino != os.stat(self.file()).st_ino
        except OSError:
            orphaned = True
        if orphaned:
            logger.debug("%s was replaced while locking it", self.file())
            fh.close()
            return False

        pid = os.getpid()
        try:
            fh.truncate(0)
            fh.write(str(pid))
            fh.flush()
        except OSError as e:
            logger.debug("Cannot write %s: %s", self.file(), e)
            fh.close()
            return False

        # the open handle is the lock; it stays open until remove()
        self._handle = fh
        self._pid = pid
        return True

    def create(self, sleep: float = DEFAULT_SLEEP, retries: int = DEFAULT_RETRIES) -> bool:
        """Create and lock the PID file, retrying `retries` times `sleep` seconds apart.

        Returns False (never raises) when another live process keeps the file.
        """
        created = retry(self._create, retries=retries, delay=sleep)
        if created:
            logger.info("Created PID file %s (pid %d)", self.file(), self._pid)
        else:
            logger.info("PID file %s is held by another process", self.file())
        return created

    def _require_owner(self, not_running: str, not_owner: str):
        if not self.running():
            raise OwnershipError(f"{not_running}: {self.file()}")
        if self._pid and self._pid != os.getpid():
            raise OwnershipError(f"{not_owner}: {self.file()} (pid {self._pid})")

    def remove(self, force: bool = False) -> "PidFile":
        """Unlink the PID file and drop the lock.

        Without `force` the file must name a running process owned by this
        process, else OwnershipError. Disarms any armed self-guard.
        """
        if not force:
            self._require_owner("Unable to remove file for non-running process",
                                "Cannot remove pid file that wasn't created by this process")

        path = self.file()
        try:
            path.unlink()
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.warning("Failed to remove PID file %s: %s", path, e)

        self._release_handle()
        self._pid = None
        self._cleanup = None
        _armed.discard(self)
        logger.debug("Removed PID file %s", path)
        return self

    def _release_handle(self):
        handle, self._handle = self._handle, None
        if handle is None:
            return
        try:
            fcntl.flock(handle, fcntl.LOCK_UN)
        except OSError:
            pass
        try:
            handle.close()
        except OSError:
            pass

    # --- guards ---

    def _require_guardable(self, force: bool):
        if not force:
            self._require_owner("No running process to guard against",
                                "Unable to guard file not owned by this process")

    def arm(self, force: bool = False) -> None:
        """Remove the PID file when this object is closed or garbage collected."""
        self._require_guardable(force)
        # unbound: the slot holds no reference back to self
        self._cleanup = functools.partial(type(self).remove, force=force)
        _armed.add(self)

    def detach(self, force: bool = False) -> GuardToken:
        """Return a token that removes the PID file when the token goes away."""
        self._require_guardable(force)
        if force:
            return GuardToken(functools.partial(self.remove, force=True))
        return GuardToken.for_pid_file(self, "remove")

    def guard(self, force: bool = False, detach: bool = False) -> "PidFile | GuardToken":
        """arm() and return self, or with `detach=True` return a GuardToken."""
        if detach:
            return self.detach(force)
        self.arm(force)
        return self

    # --- teardown ---

    def close(self):
        """Run the armed cleanup (once) and drop the lock handle. Never raises."""
        cleanup, self._cleanup = self._cleanup, None
        _armed.discard(self)
        if cleanup is not None:
            try:
                cleanup(self)
            except Exception as e:
                logger.debug("PID file cleanup failed for %s: %s", self._file, e)
        self._release_handle()

    def __enter__(self):
        return self

    def __exit__(self, *_):
        self.close()

    def __del__(self):
        # __init__ may not have completed
        if getattr(self, "_cleanup", None) is None and getattr(self, "_handle", None) is None:
            return
        self.close()

    def __repr__(self):
        return f"<PidFile {self._file} pid={self._pid}>"


@atexit.register
def _close_armed():
    for pid_file in list(_armed):
        pid_file.close()
