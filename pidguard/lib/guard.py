"""Scope guard token — runs a cleanup action once, when the token goes away."""
import logging
from typing import Callable

logger = logging.getLogger(__name__)

_MODES = ("remove",)


class GuardToken:
    """Runs `action` exactly once: on release(), on `with` exit, or on garbage collection.

    Keep a reference for as long as cleanup should be deferred; dropping the
    last reference fires the action. dismiss() defuses it.
    """

    def __init__(self, action: Callable[[], object]):
        if not callable(action):
            raise TypeError(f"GuardToken action must be callable, got {type(action).__name__}")
        self._action = action

    @classmethod
    def for_pid_file(cls, pid_file, mode: str = "remove") -> "GuardToken":
        """Build a token that calls `pid_file.<mode>()` on release."""
        if mode not in _MODES:
            raise ValueError(f"Unknown guard mode {mode!r} (expected one of {', '.join(_MODES)})")
        return cls(getattr(pid_file, mode))

    @property
    def active(self) -> bool:
        return self._action is not None

    def dismiss(self):
        self._action = None

    def release(self):
        """Run the action now. Idempotent — later calls and teardown do nothing."""
        action, self._action = self._action, None
        if action is not None:
            action()

    def __enter__(self):
        return self

    def __exit__(self, *_):
        self.release()

    def __del__(self):
        # __init__ may have raised before _action was set
        if getattr(self, "_action", None) is None:
            return
        try:
            self.release()
        except Exception as e:
            logger.debug("Guard cleanup failed: %s", e)

    def __copy__(self):
        raise TypeError("GuardToken cannot be copied")

    def __deepcopy__(self, memo):
        raise TypeError("GuardToken cannot be copied")

    def __reduce__(self):
        raise TypeError("GuardToken cannot be pickled")

    def __repr__(self):
        state = "active" if self.active else "spent"
        return f"<GuardToken {state}>"
