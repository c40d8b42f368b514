"""Process managers: where member agents actually run.

The coordinator only needs three things from a backend: start a command and hand
back an opaque reference, tell whether that reference is still alive, and stop
it. A backend that cannot reach its manager (no tmux server, fork failure)
raises BackendUnavailable so the caller can retry.
"""

import contextlib
import logging
import os
import signal
import subprocess
from dataclasses import dataclass, field
from typing import Protocol

from teamspace.errors import BackendUnavailable

logger = logging.getLogger(__name__)


@dataclass
class LaunchSpec:
    team: str
    name: str
    agent_id: str
    command: list[str]
    cwd: str | None = None
    env: dict[str, str] = field(default_factory=dict)


class ProcessManager(Protocol):
    def spawn(self, launch: LaunchSpec) -> str: ...

    def is_alive(self, ref: str) -> bool: ...

    def terminate(self, ref: str) -> None: ...


@dataclass
class PaneInfo:
    pane_id: str
    location: str
    command: str
    title: str = ""
    start_time: int = 0


class TmuxBackend:
    """Members as tmux panes (or windows) in the current server."""

    def __init__(self, use_windows: bool = False, target: str | None = None):
        self.use_windows = use_windows
        self.target = target

    def _run(self, args: list[str]) -> subprocess.CompletedProcess:
        try:
            return subprocess.run(
                ["tmux", *args],
                check=False,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                text=True,
            )
        except OSError as e:
            raise BackendUnavailable(f"tmux not runnable: {e}") from e

    def spawn(self, launch: LaunchSpec) -> str:
        if self.use_windows:
            args = ["new-window", "-d", "-P", "-F", "#{pane_id}", "-n", f"{launch.team}-{launch.name}"]
        else:
            args = ["split-window", "-d", "-P", "-F", "#{pane_id}"]
        if self.target:
            args += ["-t", self.target]
        if launch.cwd:
            args += ["-c", launch.cwd]
        for key, value in launch.env.items():
            args += ["-e", f"{key}={value}"]
        args += launch.command

        res = self._run(args)
        pane_id = res.stdout.strip()
        if res.returncode != 0 or not pane_id:
            raise BackendUnavailable(
                f"tmux could not open a pane for {launch.agent_id}: {res.stderr.strip()}",
                team=launch.team,
                member=launch.name,
            )

        self._run(["select-pane", "-t", pane_id, "-T", launch.agent_id])
        logger.info(f"Opened tmux pane {pane_id} for {launch.agent_id}")
        return pane_id

    def list_panes(self) -> list[PaneInfo]:
        """Every pane on the server. Empty when no server is running."""
        res = self._run(
            [
                "list-panes",
                "-a",
                "-F",
                "#{pane_id}\t#{session_name}:#{window_index}.#{pane_index}\t#{pane_current_command}\t#{pane_title}\t#{pane_start_time}",
            ]
        )
        if res.returncode != 0:
            return []
        panes = []
        for line in res.stdout.splitlines():
            parts = line.split("\t")
            if len(parts) < 5:
                continue
            start = int(parts[4]) if parts[4].isdigit() else 0
            panes.append(PaneInfo(parts[0], parts[1], parts[2], parts[3], start))
        return panes

    def is_alive(self, ref: str) -> bool:
        res = self._run(["display-message", "-p", "-t", ref, "#{pane_dead}"])
        return res.returncode == 0 and res.stdout.strip() == "0"

    def terminate(self, ref: str) -> None:
        res = self._run(["kill-pane", "-t", ref])
        if res.returncode == 0:
            logger.info(f"Killed tmux pane {ref}")
            return
        if not self.is_alive(ref):
            return
        raise BackendUnavailable(f"tmux could not kill pane {ref}: {res.stderr.strip()}")


class SubprocessBackend:
    """Members as child processes of this one. The reference is the pid."""

    def __init__(self, grace: float = 5.0):
        self.grace = grace
        self._procs: dict[str, subprocess.Popen] = {}

    def spawn(self, launch: LaunchSpec) -> str:
        env = {**os.environ, **launch.env}
        try:
            proc = subprocess.Popen(
                launch.command,
                cwd=launch.cwd,
                env=env,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.DEVNULL,
                stderr=subprocess.DEVNULL,
                start_new_session=True,
            )
        except OSError as e:
            raise BackendUnavailable(
                f"Could not start {launch.command[0]} for {launch.agent_id}: {e}",
                team=launch.team,
                member=launch.name,
            ) from e
        ref = str(proc.pid)
        self._procs[ref] = proc
        logger.info(f"Started pid {ref} for {launch.agent_id}")
        return ref

    def is_alive(self, ref: str) -> bool:
        proc = self._procs.get(ref)
        if proc is not None:
            return proc.poll() is None
        try:
            os.kill(int(ref), 0)
            return True
        except (OSError, ValueError):
            return False

    def terminate(self, ref: str) -> None:
        proc = self._procs.pop(ref, None)
        if proc is None:
            with contextlib.suppress(ProcessLookupError):
                os.kill(int(ref), signal.SIGTERM)
            return
        if proc.poll() is not None:
            return
        proc.terminate()
        try:
            proc.wait(timeout=self.grace)
        except subprocess.TimeoutExpired:
            logger.warning(f"pid {ref} ignored SIGTERM, killing")
            proc.kill()
            proc.wait()


def default_backend() -> ProcessManager:
    return TmuxBackend()
