"""Runs thumbnail generation in a supervised worker process."""

from .config import ThumbnailConfig, load_config
from .exceptions import (
    ConfigurationBuildError,
    InterruptedExit,
    JobExecutionError,
    JobInterrupted,
    UnexpectedJobError,
    WorkerExitError,
)
from .job import JobExecutor, ThumbnailJob
from .models import CommandSpec, JobState, Session, TempArtifacts
from .process import JobProcess, OutputDrain, ProcessSupervisor

__all__ = [
    "CommandSpec",
    "ConfigurationBuildError",
    "InterruptedExit",
    "JobExecutionError",
    "JobExecutor",
    "JobInterrupted",
    "JobProcess",
    "JobState",
    "OutputDrain",
    "ProcessSupervisor",
    "Session",
    "TempArtifacts",
    "ThumbnailConfig",
    "ThumbnailJob",
    "UnexpectedJobError",
    "WorkerExitError",
    "load_config",
]
