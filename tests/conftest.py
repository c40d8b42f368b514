import pytest

from teamspace import config
from teamspace.config import Settings
from teamspace.errors import BackendUnavailable
from teamspace.lib import paths, store
from teamspace.lifecycle.coordinator import Coordinator


@pytest.fixture
def test_space(monkeypatch, tmp_path):
    """Isolated data dir per test.

    Provides:
    - tmp_path/.teamspace instead of ~/.teamspace (database and config.yaml)
    - Fresh connection cache, migration state and config cache

    ALL tests using store.ensure() must accept this fixture to ensure isolation.
    """
    store._reset_for_testing()
    config._clear_cache()

    dot_dir = tmp_path / ".teamspace"
    dot_dir.mkdir()
    monkeypatch.setattr(paths, "dot_teamspace", lambda: dot_dir)

    store.ensure()

    yield dot_dir

    store._reset_for_testing()
    config._clear_cache()


class FakeBackend:
    """In-memory process manager. Failures are scripted by count."""

    def __init__(self):
        self.live: dict[str, bool] = {}
        self.spawned = []
        self.terminated: list[str] = []
        self.fail_spawn = 0
        self.fail_terminate = 0
        self.never_alive = False
        self._next = 0

    def spawn(self, launch):
        if self.fail_spawn:
            self.fail_spawn -= 1
            raise BackendUnavailable("no server running", team=launch.team, member=launch.name)
        self._next += 1
        ref = f"%{self._next}"
        self.live[ref] = not self.never_alive
        self.spawned.append(launch)
        return ref

    def is_alive(self, ref):
        return self.live.get(ref, False)

    def terminate(self, ref):
        if self.fail_terminate:
            self.fail_terminate -= 1
            raise BackendUnavailable(f"can't kill {ref}")
        self.live[ref] = False
        self.terminated.append(ref)


class FakeClock:
    """Monotonic clock that only moves when something sleeps.

    ``on_sleep`` runs after every sleep, which is where tests let members react.
    """

    def __init__(self):
        self.now = 0.0
        self.sleeps: list[float] = []
        self.on_sleep = None

    def __call__(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds
        if self.on_sleep is not None:
            self.on_sleep()


@pytest.fixture
def backend():
    return FakeBackend()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def lifecycle_settings():
    return Settings(
        poll_interval=0.5,
        poll_backoff_factor=2.0,
        poll_backoff_max=2.0,
        spawn_timeout=3.0,
        shutdown_wait=4.0,
        shutdown_attempts=2,
        retry_attempts=3,
        retry_backoff=0.1,
    )


@pytest.fixture
def coordinator(test_space, backend, clock, lifecycle_settings):
    return Coordinator(backend, settings=lifecycle_settings, sleep=clock.sleep, clock=clock)
