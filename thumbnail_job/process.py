"""Worker process supervision and output draining."""

from __future__ import annotations

import subprocess
import threading
from collections import deque
from dataclasses import dataclass, field
from pathlib import Path
from typing import IO, Callable, Dict, Mapping, Optional, Sequence

from loguru import logger

from .settings import DRAIN_SHUTDOWN_TIMEOUT, KILL_TIMEOUT, MAX_OUTPUT_LINES


class OutputDrain:
    """Background reader that consumes a process output stream.

    The most recent ``max_lines`` lines are kept in memory; ``get_output`` may be
    called at any time, including before the stream is exhausted.
    """

    def __init__(
        self,
        stream: IO[bytes],
        *,
        max_lines: int = MAX_OUTPUT_LINES,
        on_line: Optional[Callable[[str], None]] = None,
        name: str = "OutputDrain",
    ):
        self.stream = stream
        self.on_line = on_line
        self._lines = deque(maxlen=max_lines)
        self._lock = threading.Lock()
        self._thread = threading.Thread(target=self._run, name=name, daemon=True)

    def start(self) -> None:
        self._thread.start()

    def join(self, timeout: Optional[float] = None) -> bool:
        """Wait for the stream to be exhausted; return False if still reading."""
        if not self.started:
            return True
        self._thread.join(timeout)
        return not self._thread.is_alive()

    @property
    def started(self) -> bool:
        return self._thread.ident is not None

    def get_output(self) -> str:
        with self._lock:
            return "\n".join(self._lines)

    def _run(self) -> None:
        try:
            for raw_line in iter(self.stream.readline, b""):
                line = raw_line.decode("utf-8", errors="replace").rstrip("\r\n")
                with self._lock:
                    self._lines.append(line)
                if self.on_line is not None:
                    try:
                        self.on_line(line)
                    except Exception as exc:
                        logger.warning(f"Output callback failed: {exc}")
        except (OSError, ValueError) as exc:
            # Stream closed underneath us (process destroyed)
            logger.debug(f"Output stream closed: {exc}")
        finally:
            # The drain owns the stream once started
            self.stream.close()


@dataclass
class JobProcess:
    """A running worker together with its output drain."""

    session_id: str
    process: subprocess.Popen
    output_drain: OutputDrain
    destroyed: threading.Event = field(default_factory=threading.Event)

    @property
    def pid(self) -> int:
        return self.process.pid

    def is_running(self) -> bool:
        return self.process.poll() is None

    def wait(self) -> int:
        return self.process.wait()


class ProcessSupervisor:
    """Registry of live worker processes keyed by session id.

    ``destroy_process`` can be called from any thread, any number of times.
    """

    def __init__(self, *, kill_timeout: float = KILL_TIMEOUT, max_output_lines: int = MAX_OUTPUT_LINES):
        self.kill_timeout = kill_timeout
        self.max_output_lines = max_output_lines
        self._processes: Dict[str, JobProcess] = {}
        self._lock = threading.Lock()

    def start_process(
        self,
        session_id: str,
        argv: Sequence[str],
        cwd: Path,
        *,
        env: Optional[Mapping[str, str]] = None,
        on_line: Optional[Callable[[str], None]] = None,
    ) -> JobProcess:
        """Spawn ``argv`` with stderr merged into stdout and register it.

        The returned drain is not started; the caller starts it before waiting.
        """
        process = subprocess.Popen(
            list(argv),
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT,
            stdin=subprocess.DEVNULL,
            cwd=cwd,
            env=dict(env) if env is not None else None,
        )
        drain = OutputDrain(
            process.stdout,
            max_lines=self.max_output_lines,
            on_line=on_line,
            name=f"OutputDrain-{session_id}",
        )
        job_process = JobProcess(session_id=session_id, process=process, output_drain=drain)
        with self._lock:
            displaced = self._processes.pop(session_id, None)
            self._processes[session_id] = job_process
        logger.debug(f"Started process for session {session_id} (PID: {process.pid})")
        if displaced is not None:
            if displaced.is_running():
                logger.warning(f"Session {session_id} already had a running process; destroying it")
            self._destroy(displaced)
        return job_process

    def get_process(self, session_id: str) -> Optional[JobProcess]:
        with self._lock:
            return self._processes.get(session_id)

    def is_process_running(self, session_id: str) -> bool:
        job_process = self.get_process(session_id)
        return job_process is not None and job_process.is_running()

    def get_session_ids(self):
        with self._lock:
            return sorted(self._processes)

    def destroy_process(self, session_id: str) -> int:
        """Unregister and stop the process of ``session_id``.

        Returns the exit code, or -1 when nothing was registered.
        """
        with self._lock:
            job_process = self._processes.pop(session_id, None)
        if job_process is None:
            return -1
        return self._destroy(job_process)

    def destroy_all(self) -> None:
        with self._lock:
            processes = list(self._processes.values())
            self._processes.clear()
        for job_process in processes:
            self._destroy(job_process)

    def _destroy(self, job_process: JobProcess) -> int:
        process = job_process.process
        if process.poll() is None:
            job_process.destroyed.set()
            logger.info(f"Stopping process for session {job_process.session_id} (PID: {process.pid})")
            try:
                process.terminate()
                try:
                    process.wait(timeout=self.kill_timeout)
                except subprocess.TimeoutExpired:
                    logger.warning(f"Session {job_process.session_id} did not stop gracefully, killing")
                    process.kill()
                    process.wait(timeout=self.kill_timeout)
            except ProcessLookupError:
                pass
        drain = job_process.output_drain
        if not drain.started:
            if process.stdout is not None:
                process.stdout.close()
        elif not drain.join(DRAIN_SHUTDOWN_TIMEOUT):
            # A descendant still holds the pipe; the drain closes it on EOF
            logger.debug(f"Output drain for session {job_process.session_id} is still reading")
        return process.returncode if process.returncode is not None else -1
