"""Builds the command line used to launch the thumbnail worker."""

from __future__ import annotations

import os
import tempfile
from datetime import datetime
from pathlib import Path
from typing import List, Mapping, Optional

from loguru import logger

from .config import ThumbnailConfig
from .exceptions import ConfigurationBuildError
from .models import CommandSpec, Session, TempArtifacts
from .settings import (
    CLASSES_DIR,
    LIB_DIR,
    LOG_NAME_SUFFIX,
    OWN_TMP_DIR_PREFIX,
    PROPERTIES_FILE_PREFIX,
    PROPERTIES_FILE_SUFFIX,
    THUMBNAIL_GENERATOR_CLASS,
    THUMBNAIL_LIB_DIR,
    THUMBNAIL_RESOURCES_DIR,
)


def _is_blank(value: Optional[str]) -> bool:
    return value is None or not value.strip()


def list_jar_files(lib_dir: Path) -> List[str]:
    """Names of ``*.jar`` files (any case) in ``lib_dir``; empty if it does not exist."""
    if not lib_dir.is_dir():
        return []
    return sorted(
        entry.name for entry in lib_dir.iterdir() if entry.name.lower().endswith(".jar")
    )


def _escape_properties(text: str, *, is_key: bool) -> str:
    chars = []
    for index, char in enumerate(text):
        if char == "\\":
            chars.append("\\\\")
        elif char == "\n":
            chars.append("\\n")
        elif char == "\r":
            chars.append("\\r")
        elif char == "\t":
            chars.append("\\t")
        elif char == "\f":
            chars.append("\\f")
        elif char in "=:#!":
            chars.append("\\" + char)
        elif char == " " and (is_key or index == 0):
            chars.append("\\ ")
        elif ord(char) < 0x20 or ord(char) > 0x7E:
            encoded = char.encode("utf-16-be")
            for offset in range(0, len(encoded), 2):
                chars.append("\\u%04X" % int.from_bytes(encoded[offset:offset + 2], "big"))
        else:
            chars.append(char)
    return "".join(chars)


def write_properties(path: Path, properties: Mapping[str, str], comment: Optional[str] = None) -> None:
    """Write ``properties`` in Java ``.properties`` format."""
    lines = []
    if comment:
        lines.append("#" + " ".join(comment.splitlines()))
    lines.append("#" + datetime.now().strftime("%a %b %d %H:%M:%S %Y"))
    for key in sorted(properties):
        value = "" if properties[key] is None else str(properties[key])
        lines.append(f"{_escape_properties(str(key), is_key=True)}={_escape_properties(value, is_key=False)}")
    with open(path, "w", encoding="utf-8") as handle:
        handle.write("\n".join(lines) + "\n")


class CommandBuilder:
    """Assembles the worker argv from a session and the configuration.

    Temp artifacts created along the way (private temp dir, properties file) are
    recorded on the ``TempArtifacts`` passed in, so the caller can remove them
    even when building fails halfway.
    """

    def __init__(self, config: ThumbnailConfig, *, path_separator: str = os.pathsep, sep: str = os.sep):
        self.config = config
        self.path_separator = path_separator
        self.sep = sep

    @property
    def target_dir(self) -> Path:
        return self.config.user_dir / "target"

    def _relative(self, path: Path) -> str:
        return self.sep.join(path.parts)

    def build_classpath(self) -> str:
        entries: List[str] = []
        conf_path = self.config.get_property("fess.conf.path")
        if not _is_blank(conf_path):
            entries.append(conf_path)
        entries.append(self._relative(THUMBNAIL_RESOURCES_DIR))
        entries.append(self._relative(CLASSES_DIR))

        target_classes_dir = self.target_dir / "classes"
        if target_classes_dir.is_dir():
            entries.append(str(target_classes_dir.absolute()))

        web_root = self.config.web_root
        for name in list_jar_files(web_root / "lib"):
            entries.append(self._relative(LIB_DIR) + self.sep + name)
        for name in list_jar_files(web_root / "env" / "thumbnail" / "lib"):
            entries.append(self._relative(THUMBNAIL_LIB_DIR) + self.sep + name)
        target_lib_dir = self.target_dir / "fess" / "WEB-INF" / "lib"
        for name in list_jar_files(target_lib_dir):
            entries.append(str(target_lib_dir.absolute()) + self.sep + name)

        return self.path_separator.join(entries)

    def resolve_lasta_env(self, session: Session) -> Optional[str]:
        system_env = self.config.get_property("lasta.env")
        if not _is_blank(system_env):
            return "thumbnail" if system_env == "web" else system_env
        if not _is_blank(session.lasta_env):
            return session.lasta_env
        return None

    def _add_system_property(self, argv: List[str], name: str, default_value: Optional[str] = None,
                             append_value: Optional[str] = None) -> None:
        value = self.config.get_property(name)
        if value is not None:
            argv.append(f"-D{name}={value}{append_value or ''}")
        elif default_value is not None:
            argv.append(f"-D{name}={default_value}")

    def _create_own_tmp_dir(self, session_id: str, artifacts: TempArtifacts) -> Optional[Path]:
        tmp_root = self.config.get_property("java.io.tmpdir") or tempfile.gettempdir()
        if _is_blank(tmp_root):
            return None
        own_tmp_dir = Path(tmp_root) / f"{OWN_TMP_DIR_PREFIX}{session_id}"
        try:
            own_tmp_dir.mkdir(parents=True)
        except OSError as exc:
            logger.warning(f"Failed to create a temp dir {own_tmp_dir}: {exc}")
            return None
        artifacts.own_tmp_dir = own_tmp_dir
        return own_tmp_dir

    def _create_properties_file(self, argv: List[str], artifacts: TempArtifacts) -> Path:
        path: Optional[Path] = None
        try:
            fd, name = tempfile.mkstemp(prefix=PROPERTIES_FILE_PREFIX, suffix=PROPERTIES_FILE_SUFFIX)
            os.close(fd)
            path = Path(name)
            artifacts.properties_file = path
            write_properties(path, self.config.system_properties_snapshot, comment=str(argv))
        except OSError as exc:
            raise ConfigurationBuildError(path, exc) from exc
        return path

    def build(self, session: Session, artifacts: TempArtifacts) -> CommandSpec:
        if session.session_id is None:
            raise ValueError("session_id is required to build a command")
        config = self.config
        argv: List[str] = [config.java_command_path, "-cp", self.build_classpath()]

        if session.use_locale_elasticsearch:
            transport_addresses = config.get_property("fess.es.transport_addresses")
            if not _is_blank(transport_addresses):
                argv.append(f"-Dfess.es.transport_addresses={transport_addresses}")

        cluster_name = config.get_property("fess.es.cluster_name")
        if _is_blank(cluster_name):
            cluster_name = config.elasticsearch_cluster_name
        argv.append(f"-Dfess.es.cluster_name={cluster_name}")

        lasta_env = self.resolve_lasta_env(session)
        if lasta_env is not None:
            argv.append(f"-Dlasta.env={lasta_env}")

        self._add_system_property(argv, "fess.conf.path")
        argv.append("-Dfess.thumbnail.process=true")

        log_file_path = session.log_file_path
        if log_file_path is None:
            log_file_path = config.get_property("fess.log.path")
            if log_file_path is None:
                log_file_path = str((self.target_dir / "logs").absolute())
        argv.append(f"-Dfess.log.path={log_file_path}")
        self._add_system_property(argv, "fess.var.path")
        self._add_system_property(argv, "fess.thumbnail.path")
        self._add_system_property(argv, "fess.log.name", append_value=LOG_NAME_SUFFIX)
        if session.log_level is not None:
            argv.append(f"-Dfess.log.level={session.log_level}")

        argv.extend(option for option in config.jvm_options if not _is_blank(option))

        if config.use_own_tmp_dir:
            own_tmp_dir = self._create_own_tmp_dir(session.session_id, artifacts)
            if own_tmp_dir is not None:
                argv.append(f"-Djava.io.tmpdir={own_tmp_dir.absolute()}")

        if not _is_blank(session.jvm_options):
            argv.extend(session.jvm_options.split())

        argv.append(THUMBNAIL_GENERATOR_CLASS)
        argv.extend(["--sessionId", session.session_id])
        argv.extend(["--numOfThreads", str(session.num_of_threads)])
        if session.cleanup:
            argv.append("--cleanup")

        argv.append("-p")
        properties_file = self._create_properties_file(argv, artifacts)
        argv.append(str(properties_file.absolute()))

        return CommandSpec(argv=tuple(argv), working_dir=config.web_root.absolute().parent)
