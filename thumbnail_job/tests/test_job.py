import dataclasses
import re
import tempfile
import threading
import time
from pathlib import Path

import pytest
from loguru import logger

from thumbnail_job.exceptions import ConfigurationBuildError, UnexpectedJobError, WorkerExitError
from thumbnail_job.job import JobExecutor, ThumbnailJob
from thumbnail_job.models import JobState, Session
from thumbnail_job.process import ProcessSupervisor


class CacheSpy:
    def __init__(self):
        self.calls = 0

    def __call__(self):
        self.calls += 1


def _leftovers(temp_root: Path):
    return sorted(p.name for p in temp_root.iterdir())


def _wait_until(predicate, timeout=15.0):
    end = time.monotonic() + timeout
    while time.monotonic() < end:
        if predicate():
            return True
        time.sleep(0.02)
    return False


def test_successful_job(worker_config, temp_root):
    cache = CacheSpy()
    job = ThumbnailJob(worker_config, clear_cache=cache)

    report = job.execute()

    session_id = job.session_id
    assert re.fullmatch(r"[A-Za-z]{15}", session_id)
    assert report == f"Session Id: {session_id}\n"
    assert job.error is None
    assert cache.calls == 1
    assert f"FAKE WORKER session={session_id} threads=1 cleanup=False" in job.output
    assert "property thumbnail.enabled=true" in job.output
    assert job.state_history == [
        JobState.CREATED,
        JobState.BUILDING,
        JobState.LAUNCHED,
        JobState.SUCCEEDED,
        JobState.CLEANED_UP,
    ]
    # properties file and private temp dir are gone
    assert _leftovers(temp_root) == []
    assert not Path(job.command.argv[-1]).exists()
    assert job.supervisor.get_session_ids() == []


def test_session_options_reach_worker(worker_config):
    session = Session.builder().session_id("explicitsession").num_of_threads(4).cleanup().build()
    job = ThumbnailJob(worker_config, session)

    report = job.execute()

    assert report == "Session Id: explicitsession\n"
    assert "FAKE WORKER session=explicitsession threads=4 cleanup=True" in job.output


def test_failed_worker_reports_exit_code_and_output(worker_config, temp_root, monkeypatch):
    monkeypatch.setenv("FAKE_WORKER_EXIT_CODE", "2")
    monkeypatch.setenv("FAKE_WORKER_OUTPUT", "boom")
    cache = CacheSpy()
    job = ThumbnailJob(worker_config, Session(session_id="failingsession"), clear_cache=cache)

    report = job.execute()

    lines = report.split("\n")
    assert lines[0] == "Session Id: failingsession"
    assert "Exit Code: 2" in report
    assert "boom" in report
    assert report.endswith("\n")
    assert isinstance(job.error, WorkerExitError)
    assert job.error.exit_code == 2
    assert "boom" in job.error.output
    assert cache.calls == 0
    assert JobState.FAILED in job.state_history
    assert job.state == JobState.CLEANED_UP
    assert _leftovers(temp_root) == []


def test_externally_destroyed_worker_is_not_an_error(worker_config, temp_root, monkeypatch):
    monkeypatch.setenv("FAKE_WORKER_SLEEP", "60")
    cache = CacheSpy()
    supervisor = ProcessSupervisor(kill_timeout=5.0)
    job_executor = JobExecutor()
    job = ThumbnailJob(worker_config, Session(session_id="killedsession"), supervisor=supervisor, clear_cache=cache)

    results = []
    runner = threading.Thread(target=lambda: results.append(job.execute(job_executor)))
    runner.start()
    try:
        assert _wait_until(lambda: supervisor.is_process_running("killedsession"))
        job_executor.shutdown()
    finally:
        runner.join(30)

    assert not runner.is_alive()
    assert results == ["Session Id: killedsession\n"]
    assert job.error is None
    assert cache.calls == 0
    assert JobState.INTERRUPTED in job.state_history
    assert job.state == JobState.CLEANED_UP
    assert _leftovers(temp_root) == []


def test_launch_failure_is_wrapped_and_cleaned(config, temp_root):
    broken = dataclasses.replace(config, java_command_path=str(temp_root.parent / "missing" / "java"))
    job = ThumbnailJob(broken, Session(session_id="brokenlaunch"))

    report = job.execute()

    assert report.startswith("Session Id: brokenlaunch\nThumbnailGenerator Process terminated: ")
    assert isinstance(job.error, UnexpectedJobError)
    assert isinstance(job.error.original_error, OSError)
    assert JobState.ERRORED in job.state_history
    assert JobState.LAUNCHED not in job.state_history
    assert _leftovers(temp_root) == []


def test_properties_file_failure_is_reported(worker_config, temp_root, monkeypatch):
    def _fail(*args, **kwargs):
        raise OSError("read-only file system")

    monkeypatch.setattr(tempfile, "mkstemp", _fail)
    job = ThumbnailJob(worker_config, Session(session_id="noproperties"))

    report = job.execute()

    assert "Failed to create a properties file: read-only file system" in report
    assert isinstance(job.error, ConfigurationBuildError)
    assert job.state_history[-2:] == [JobState.ERRORED, JobState.CLEANED_UP]
    assert _leftovers(temp_root) == []


def test_cache_failure_is_unexpected_error(worker_config):
    def _fail():
        raise RuntimeError("cache unavailable")

    job = ThumbnailJob(worker_config, Session(session_id="cachefailure"), clear_cache=_fail)
    report = job.execute()

    assert "ThumbnailGenerator Process terminated: cache unavailable" in report
    assert JobState.SUCCEEDED not in job.state_history


def test_large_output_is_drained(worker_config, monkeypatch):
    monkeypatch.setenv("FAKE_WORKER_LINES", "50000")
    job = ThumbnailJob(worker_config, Session(session_id="chattysession"))

    report = job.execute()

    assert report == "Session Id: chattysession\n"
    assert job.output.endswith("line 49999")


def test_cleanup_is_idempotent(worker_config, temp_root):
    job = ThumbnailJob(worker_config, Session(session_id="twice"))
    job.execute()

    job.artifacts.cleanup()
    job.artifacts.cleanup()
    assert job.supervisor.destroy_process("twice") == -1
    assert _leftovers(temp_root) == []


def test_shutdown_listener_failure_does_not_stop_others():
    calls = []
    job_executor = JobExecutor()

    def _fail():
        raise RuntimeError("listener failure")

    job_executor.add_shutdown_listener(_fail)
    job_executor.add_shutdown_listener(lambda: calls.append("second"))
    job_executor.shutdown()

    assert calls == ["second"]


@pytest.mark.asyncio
async def test_execute_async(worker_config):
    cache = CacheSpy()
    job = ThumbnailJob(worker_config, Session(session_id="asyncsession"), clear_cache=cache)

    report = await job.execute_async()

    assert report == "Session Id: asyncsession\n"
    assert cache.calls == 1


def test_output_held_by_worker_descendant_does_not_block(worker_config, tmp_path):
    script = tmp_path / "bin" / "java-with-descendant"
    script.write_text("#!/bin/sh\necho early\n(sleep 8; echo late) &\nexit 0\n", encoding="utf-8")
    script.chmod(0o755)
    config = dataclasses.replace(worker_config, java_command_path=str(script))
    job = ThumbnailJob(config, Session(session_id="descendant"), output_join_timeout=0.5)

    started = time.monotonic()
    report = job.execute()
    elapsed = time.monotonic() - started

    assert elapsed < 5.0
    assert report == "Session Id: descendant\n"
    assert job.output == "early"
    assert job.state == JobState.CLEANED_UP


def test_worker_output_lines_are_logged(worker_config, monkeypatch):
    monkeypatch.setenv("FAKE_WORKER_OUTPUT", "rendered 3 thumbnails")
    messages = []
    handler_id = logger.add(lambda message: messages.append(message.record["message"]), level="TRACE")
    try:
        ThumbnailJob(worker_config, Session(session_id="loggedsession")).execute()
    finally:
        logger.remove(handler_id)

    assert "[loggedsession] rendered 3 thumbnails" in messages
    assert any(m.startswith("ThumbnailGenerator started: session=loggedsession PID=") for m in messages)
