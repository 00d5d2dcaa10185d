"""Thumbnail generation job: launches the worker and cleans up after it."""

from __future__ import annotations

import asyncio
import threading
from typing import Callable, List, Mapping, Optional

from loguru import logger

from .command_builder import CommandBuilder
from .config import ThumbnailConfig
from .exceptions import (
    ConfigurationBuildError,
    JobExecutionError,
    JobInterrupted,
    UnexpectedJobError,
    WorkerExitError,
)
from .models import CommandSpec, JobState, Session, TempArtifacts
from .process import ProcessSupervisor
from .settings import OUTPUT_JOIN_TIMEOUT


class JobExecutor:
    """Holds callbacks to run when the hosting scheduler shuts a job down."""

    def __init__(self):
        self._listeners: List[Callable[[], None]] = []
        self._lock = threading.Lock()

    def add_shutdown_listener(self, listener: Callable[[], None]) -> None:
        with self._lock:
            self._listeners.append(listener)

    def shutdown(self) -> None:
        """Run every listener; a failing listener does not stop the others."""
        with self._lock:
            listeners = list(self._listeners)
        for listener in listeners:
            try:
                listener()
            except Exception:
                logger.exception("Shutdown listener failed")


class ThumbnailJob:
    """Runs one thumbnail generation session in a separate worker process.

    ``execute`` never raises for job failures: the outcome is reported in the
    returned text (``Session Id: <id>`` plus the error message on failure) and the
    reported exception is kept on ``error``.
    """

    def __init__(
        self,
        config: ThumbnailConfig,
        session: Optional[Session] = None,
        *,
        supervisor: Optional[ProcessSupervisor] = None,
        clear_cache: Optional[Callable[[], None]] = None,
        job_executor: Optional[JobExecutor] = None,
        env: Optional[Mapping[str, str]] = None,
        output_join_timeout: float = OUTPUT_JOIN_TIMEOUT,
    ):
        self.config = config
        self.session = session or Session()
        self.supervisor = supervisor or ProcessSupervisor()
        self.clear_cache = clear_cache
        self.job_executor = job_executor
        self.env = env
        self.output_join_timeout = output_join_timeout

        self.state = JobState.CREATED
        self.state_history: List[JobState] = [JobState.CREATED]
        self.error: Optional[JobExecutionError] = None
        self.output: Optional[str] = None
        self.artifacts: Optional[TempArtifacts] = None
        self.command: Optional[CommandSpec] = None

    @property
    def session_id(self) -> Optional[str]:
        return self.session.session_id

    def _transition(self, state: JobState) -> None:
        logger.debug(f"Session {self.session_id}: {self.state.value} -> {state.value}")
        self.state = state
        self.state_history.append(state)

    def execute(self, job_executor: Optional[JobExecutor] = None) -> str:
        if job_executor is not None:
            self.job_executor = job_executor

        self.session = self.session.with_session_id()
        session_id = self.session.session_id
        result = [f"Session Id: {session_id}\n"]

        if self.job_executor is not None:
            supervisor = self.supervisor
            self.job_executor.add_shutdown_listener(lambda: supervisor.destroy_process(session_id))

        self.error = None
        try:
            self._execute_thumbnail_generator()
        except JobExecutionError as e:
            logger.exception("Failed to generate thumbnails.")
            self.error = e
            result.append(f"{e}\n")

        return "".join(result)

    async def execute_async(self, job_executor: Optional[JobExecutor] = None) -> str:
        """Run ``execute`` in a worker thread."""
        return await asyncio.to_thread(self.execute, job_executor)

    def _execute_thumbnail_generator(self) -> None:
        session_id = self.session.session_id
        artifacts = TempArtifacts()
        self.artifacts = artifacts
        try:
            self._transition(JobState.BUILDING)
            command = CommandBuilder(self.config).build(self.session, artifacts)
            self.command = command
            logger.info(f"ThumbnailGenerator: \nDirectory={command.working_dir}\nOptions={list(command.argv)}")

            job_process = self.supervisor.start_process(
                session_id, command.argv, command.working_dir, env=self.env, on_line=self._log_output_line
            )
            self._transition(JobState.LAUNCHED)
            logger.info(f"ThumbnailGenerator started: session={session_id} PID={job_process.pid}")

            output_drain = job_process.output_drain
            output_drain.start()
            exit_code = job_process.wait()
            if not output_drain.join(self.output_join_timeout):
                logger.debug(f"Output of session {session_id} is still being read; using partial output")
            self.output = output_drain.get_output()

            if job_process.destroyed.is_set():
                raise JobInterrupted(session_id)

            logger.info(
                f"ThumbnailGenerator: Exit Code={exit_code} - ThumbnailGenerator Process Output:\n{self.output}"
            )
            if exit_code != 0:
                raise WorkerExitError(exit_code, self.output)
            if self.clear_cache is not None:
                self.clear_cache()
            self._transition(JobState.SUCCEEDED)
        except JobInterrupted:
            self._transition(JobState.INTERRUPTED)
            logger.warning("ThumbnailGenerator Process interrupted.")
        except WorkerExitError:
            self._transition(JobState.FAILED)
            raise
        except ConfigurationBuildError:
            self._transition(JobState.ERRORED)
            raise
        except Exception as e:
            self._transition(JobState.ERRORED)
            raise UnexpectedJobError(e) from e
        finally:
            self._cleanup(session_id, artifacts)

    def _log_output_line(self, line: str) -> None:
        logger.trace(f"[{self.session_id}] {line}")

    def _cleanup(self, session_id: str, artifacts: TempArtifacts) -> None:
        try:
            self.supervisor.destroy_process(session_id)
        except Exception as exc:
            logger.warning(f"Failed to destroy process for session {session_id}: {exc}")
        artifacts.cleanup()
        self._transition(JobState.CLEANED_UP)
