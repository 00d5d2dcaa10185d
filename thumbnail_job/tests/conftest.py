import os
import stat
import sys
import tempfile
from pathlib import Path

import pytest
from loguru import logger

PROJECT_ROOT = Path(__file__).resolve().parents[2]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from thumbnail_job.config import ThumbnailConfig


@pytest.fixture()
def temp_root(tmp_path, monkeypatch):
    """Isolated temp root used for properties files and private temp dirs."""
    root = tmp_path / "tmp"
    root.mkdir()
    monkeypatch.setattr(tempfile, "tempdir", str(root))
    return root


@pytest.fixture()
def web_root(tmp_path):
    root = tmp_path / "webapp" / "WEB-INF"
    (root / "lib").mkdir(parents=True)
    return root


@pytest.fixture()
def fake_java(tmp_path, monkeypatch):
    """Executable standing in for the JVM; runs thumbnail_job.fake_worker."""
    if os.name == "nt":
        pytest.skip("fake worker script requires a POSIX shell")
    script = tmp_path / "bin" / "java"
    script.parent.mkdir()
    script.write_text(f'#!/bin/sh\nexec "{sys.executable}" -m thumbnail_job.fake_worker "$@"\n', encoding="utf-8")
    script.chmod(script.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
    monkeypatch.setenv("PYTHONPATH", str(PROJECT_ROOT))
    for name in ("FAKE_WORKER_OUTPUT", "FAKE_WORKER_LINES", "FAKE_WORKER_SLEEP", "FAKE_WORKER_EXIT_CODE"):
        monkeypatch.delenv(name, raising=False)
    return script


@pytest.fixture()
def config(tmp_path, web_root, temp_root):
    return ThumbnailConfig(
        web_root=web_root,
        user_dir=tmp_path / "user",
        java_command_path="java",
        system_properties={"java.io.tmpdir": str(temp_root)},
        system_properties_snapshot={"thumbnail.enabled": "true", "crawler.document.cache.enabled": "false"},
    )


@pytest.fixture()
def worker_config(config, fake_java):
    return ThumbnailConfig(
        web_root=config.web_root,
        user_dir=config.user_dir,
        java_command_path=str(fake_java),
        system_properties=config.system_properties,
        system_properties_snapshot=config.system_properties_snapshot,
    )


@pytest.fixture()
def restore_logger():
    yield
    logger.remove()
    logger.add(sys.stderr)
