"""Data models for a thumbnail job execution."""

from __future__ import annotations

import random
import shutil
import string
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Optional, Tuple

from loguru import logger
from pydantic import BaseModel, ConfigDict, Field, field_validator

from .settings import REMOTE_DEBUG_OPTIONS, SESSION_ID_LENGTH


def generate_session_id(length: int = SESSION_ID_LENGTH) -> str:
    """Return a random alphabetic session id."""
    return "".join(random.choices(string.ascii_letters, k=length))


class Session(BaseModel):
    """Options for one thumbnail job execution.

    Instances are immutable; use ``Session.builder()`` for chained construction or
    ``with_session_id`` to obtain a copy carrying a concrete id.
    """

    model_config = ConfigDict(frozen=True)

    session_id: Optional[str] = None
    num_of_threads: int = Field(default=1, ge=1)
    cleanup: bool = False
    log_file_path: Optional[str] = None
    log_level: Optional[str] = None
    jvm_options: Optional[str] = None
    lasta_env: Optional[str] = None
    use_locale_elasticsearch: bool = True

    @field_validator("session_id")
    @classmethod
    def validate_session_id(cls, value: Optional[str]):
        if value is None:
            return value
        if not value.strip():
            raise ValueError("session_id must not be blank")
        return value

    @classmethod
    def builder(cls) -> "SessionBuilder":
        return SessionBuilder()

    def with_session_id(self, session_id: Optional[str] = None) -> "Session":
        """Return a copy with ``session_id`` set, generating one when needed."""
        if session_id is None:
            if self.session_id is not None:
                return self
            session_id = generate_session_id()
        return self.model_copy(update={"session_id": session_id})


class SessionBuilder:
    """Chained setters producing an immutable ``Session``."""

    def __init__(self):
        self._values = {}

    def session_id(self, session_id: str) -> "SessionBuilder":
        self._values["session_id"] = session_id
        return self

    def num_of_threads(self, num_of_threads: int) -> "SessionBuilder":
        self._values["num_of_threads"] = num_of_threads
        return self

    def cleanup(self) -> "SessionBuilder":
        self._values["cleanup"] = True
        return self

    def log_file_path(self, log_file_path: str) -> "SessionBuilder":
        self._values["log_file_path"] = log_file_path
        return self

    def log_level(self, log_level: str) -> "SessionBuilder":
        self._values["log_level"] = log_level
        return self

    def jvm_options(self, options: str) -> "SessionBuilder":
        self._values["jvm_options"] = options
        return self

    def remote_debug(self) -> "SessionBuilder":
        return self.jvm_options(REMOTE_DEBUG_OPTIONS)

    def lasta_env(self, env: str) -> "SessionBuilder":
        self._values["lasta_env"] = env
        return self

    def use_locale_elasticsearch(self, enabled: bool) -> "SessionBuilder":
        self._values["use_locale_elasticsearch"] = enabled
        return self

    def build(self) -> Session:
        return Session(**self._values)


@dataclass(frozen=True)
class CommandSpec:
    """Argument vector and working directory for the worker process."""

    argv: Tuple[str, ...]
    working_dir: Path

    def __post_init__(self):
        object.__setattr__(self, "argv", tuple(self.argv))


class JobState(str, Enum):
    CREATED = "CREATED"
    BUILDING = "BUILDING"
    LAUNCHED = "LAUNCHED"
    SUCCEEDED = "SUCCEEDED"
    FAILED = "FAILED"
    INTERRUPTED = "INTERRUPTED"
    ERRORED = "ERRORED"
    CLEANED_UP = "CLEANED_UP"


@dataclass
class TempArtifacts:
    """Files owned by a single job and removed once it finishes."""

    properties_file: Optional[Path] = None
    own_tmp_dir: Optional[Path] = None
    cleaned: bool = field(default=False, init=False)

    def cleanup(self) -> None:
        """Delete the properties file and private temp dir.

        Failures are logged and never raised; calling this twice is harmless.
        """
        properties_file, self.properties_file = self.properties_file, None
        own_tmp_dir, self.own_tmp_dir = self.own_tmp_dir, None
        try:
            if properties_file is not None:
                try:
                    properties_file.unlink(missing_ok=True)
                except OSError as exc:
                    logger.warning(f"Failed to delete {properties_file}: {exc}")
        finally:
            if own_tmp_dir is not None:
                try:
                    shutil.rmtree(own_tmp_dir)
                except FileNotFoundError:
                    pass
                except OSError as exc:
                    logger.warning(f"Could not delete a temp dir: {own_tmp_dir}: {exc}")
            self.cleaned = True
