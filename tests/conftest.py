import os
import signal
import subprocess
import sys
from pathlib import Path

import pytest

_PROJECT_ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(_PROJECT_ROOT))


@pytest.fixture(autouse=True)
def _guard_cwd_and_signals():
    """Fail-safe: restore cwd and SIGTERM/SIGINT handlers after every test."""
    original_cwd = os.getcwd()
    handlers = {s: signal.getsignal(s) for s in (signal.SIGTERM, signal.SIGINT)}
    yield
    os.chdir(original_cwd)
    for s, h in handlers.items():
        signal.signal(s, h)


@pytest.fixture
def pid_path(tmp_path):
    return tmp_path / "app.pid"


@pytest.fixture
def sleeper():
    """A live process that is not us — its pid is a 'foreign owner'."""
    proc = subprocess.Popen([sys.executable, "-c", "import time; time.sleep(60)"])
    yield proc
    proc.kill()
    proc.wait()
