import os
import tempfile

# Keep the app's data (db, logs, history) out of the user's home directory.
# Must run before anything imports proxyminder.config.
os.environ.setdefault("PROXYMINDER_DATA_DIR", tempfile.mkdtemp(prefix="proxyminder-test-"))

import pytest

from proxyminder.config import Config
from proxyminder.history import HistoryStore, JsonFileBlob
from proxyminder.notifier import Notifier


@pytest.fixture
def test_config(tmp_path):
    return Config(
        data_dir=tmp_path,
        settle_delay=0.2,
        port_release_delay=0,
        usage_sync_delay=0,
        tailer_poll_interval=0.05,
        tailer_wait_attempts=5,
        tailer_handoff_delay=0.01,
    )


@pytest.fixture
def store(tmp_path):
    return HistoryStore(JsonFileBlob(tmp_path / "history.json"))


@pytest.fixture
def notifier():
    return Notifier()


@pytest.fixture
def received(notifier):
    """Messages published on the notifier, as (kind, payload) tuples."""
    messages = []
    notifier.add_listener(lambda kind, payload: messages.append((kind, payload)))
    return messages
