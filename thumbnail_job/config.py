"""Configuration source for thumbnail jobs.

Values are read once, at the call boundary, from the process environment (and an
optional ``.env`` file) and frozen into a ``ThumbnailConfig`` that is passed
explicitly to the command builder and the job.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Mapping, Optional, Tuple

from dotenv import load_dotenv
from loguru import logger

# Property name -> environment variable
PROPERTY_ENV_VARS = {
    "fess.conf.path": "FESS_CONF_PATH",
    "fess.es.transport_addresses": "FESS_ES_TRANSPORT_ADDRESSES",
    "fess.es.cluster_name": "FESS_ES_CLUSTER_NAME",
    "lasta.env": "LASTA_ENV",
    "fess.log.path": "FESS_LOG_PATH",
    "fess.log.name": "FESS_LOG_NAME",
    "fess.var.path": "FESS_VAR_PATH",
    "fess.thumbnail.path": "FESS_THUMBNAIL_PATH",
    "java.io.tmpdir": "JAVA_IO_TMPDIR",
}

_TRUE_VALUES = {"1", "true", "yes", "on"}


@dataclass(frozen=True)
class ThumbnailConfig:
    """Immutable settings needed to build and run the worker command."""

    web_root: Path
    user_dir: Path = field(default_factory=Path.cwd)
    java_command_path: str = "java"
    elasticsearch_cluster_name: str = "elasticsearch"
    jvm_options: Tuple[str, ...] = ()
    use_own_tmp_dir: bool = True
    # Global property overrides (fess.conf.path, lasta.env, ...)
    system_properties: Mapping[str, str] = field(default_factory=dict)
    # Written to the properties file read by the worker
    system_properties_snapshot: Mapping[str, str] = field(default_factory=dict)

    def get_property(self, name: str) -> Optional[str]:
        return self.system_properties.get(name)


def parse_bool(value: Optional[str], default: bool = False) -> bool:
    if value is None or not value.strip():
        return default
    return value.strip().lower() in _TRUE_VALUES


_UNESCAPES = {"n": "\n", "r": "\r", "t": "\t", "f": "\f"}
_WHITESPACE = " \t\f"


def _unescape_properties(text: str) -> str:
    chars = []
    index = 0
    while index < len(text):
        char = text[index]
        if char == "\\" and index + 1 < len(text):
            nxt = text[index + 1]
            if nxt == "u":
                digits = text[index + 2:index + 6]
                if len(digits) != 4 or any(c not in "0123456789abcdefABCDEF" for c in digits):
                    raise ValueError(f"Malformed \\uxxxx encoding: \\u{digits}")
                chars.append(chr(int(digits, 16)))
                index += 6
                continue
            chars.append(_UNESCAPES.get(nxt, nxt))
            index += 2
            continue
        chars.append(char)
        index += 1
    # \uXXXX pairs may form surrogates
    return "".join(chars).encode("utf-16", "surrogatepass").decode("utf-16")


def _logical_lines(content: str):
    """Yield entries with comments dropped and ``\\`` continuations joined."""
    pending = None
    for raw_line in content.splitlines():
        line = raw_line.lstrip(_WHITESPACE)
        if pending is None and (not line or line[0] in "#!"):
            continue
        trailing = len(line) - len(line.rstrip("\\"))
        if trailing % 2 == 1:
            pending = (pending or "") + line[:-1]
            continue
        yield (pending or "") + line
        pending = None
    if pending:
        yield pending


def _split_entry(line: str):
    index = 0
    while index < len(line):
        char = line[index]
        if char == "\\":
            index += 2
            continue
        if char in "=:" or char in _WHITESPACE:
            break
        index += 1
    key, rest = line[:index], line[index:].lstrip(_WHITESPACE)
    if rest[:1] in ("=", ":"):
        rest = rest[1:].lstrip(_WHITESPACE)
    return key, rest


def read_properties(path: Path) -> Dict[str, str]:
    """Read a Java ``.properties`` file.

    Keys end at the first unescaped ``=``, ``:`` or whitespace; lines ending in an
    odd number of backslashes continue on the next line. Malformed escapes raise
    ``ValueError``.
    """
    result: Dict[str, str] = {}
    content = path.read_text(encoding="utf-8")
    for line in _logical_lines(content):
        key, value = _split_entry(line)
        result[_unescape_properties(key)] = _unescape_properties(value)
    return result


def load_config(env_file: Optional[str] = None, environ: Optional[Mapping[str, str]] = None) -> ThumbnailConfig:
    """Build a ``ThumbnailConfig`` from environment variables.

    ``env_file`` is loaded with python-dotenv first (existing variables win). Passing
    ``environ`` bypasses both the dotenv file and ``os.environ``.
    """
    if environ is None:
        if env_file:
            if not Path(env_file).exists():
                raise RuntimeError(f"Environment file not found: {env_file}")
            load_dotenv(env_file)
        else:
            load_dotenv()
        environ = os.environ

    system_properties = {
        name: environ[env_var]
        for name, env_var in PROPERTY_ENV_VARS.items()
        if environ.get(env_var) is not None
    }

    snapshot: Dict[str, str] = {}
    snapshot_file = environ.get("FESS_SYSTEM_PROPERTIES_FILE")
    if snapshot_file:
        try:
            snapshot = read_properties(Path(snapshot_file))
        except (OSError, ValueError) as exc:
            raise RuntimeError(f"Failed to read system properties file {snapshot_file}: {exc}") from exc

    jvm_options = tuple(
        line.strip() for line in (environ.get("FESS_JVM_THUMBNAIL_OPTIONS") or "").splitlines() if line.strip()
    )

    config = ThumbnailConfig(
        web_root=Path(environ.get("FESS_WEB_ROOT") or Path("src") / "main" / "webapp" / "WEB-INF"),
        user_dir=Path(environ.get("FESS_USER_DIR") or Path.cwd()),
        java_command_path=environ.get("FESS_JAVA_COMMAND_PATH") or "java",
        elasticsearch_cluster_name=environ.get("FESS_ES_CLUSTER_NAME_DEFAULT") or "elasticsearch",
        jvm_options=jvm_options,
        use_own_tmp_dir=parse_bool(environ.get("FESS_USE_OWN_TMP_DIR"), default=True),
        system_properties=system_properties,
        system_properties_snapshot=snapshot,
    )
    logger.debug(f"Loaded thumbnail config: web_root={config.web_root} java={config.java_command_path}")
    return config
