#!/usr/bin/env python3
"""Command line entry point for running a thumbnail generation job."""

import argparse
import signal
import sys
import threading
from typing import Optional, Sequence

from loguru import logger

from .config import load_config
from .job import JobExecutor, ThumbnailJob
from .models import Session
from .settings import REMOTE_DEBUG_OPTIONS


def build_session(args: argparse.Namespace) -> Session:
    builder = Session.builder().num_of_threads(args.num_of_threads)
    if args.session_id:
        builder.session_id(args.session_id)
    if args.cleanup:
        builder.cleanup()
    if args.log_file:
        builder.log_file_path(args.log_file)
    if args.log_level:
        builder.log_level(args.log_level)
    if args.remote_debug:
        builder.remote_debug()
    elif args.jvm_options:
        builder.jvm_options(args.jvm_options)
    if args.lasta_env:
        builder.lasta_env(args.lasta_env)
    builder.use_locale_elasticsearch(not args.no_locale_elasticsearch)
    return builder.build()


def _install_signal_handlers(job_executor: JobExecutor) -> None:
    def _handle(signum, frame):
        logger.warning(f"Received signal {signum}; stopping thumbnail worker")
        # Stop from another thread; the main thread may be inside Popen.wait
        threading.Thread(target=job_executor.shutdown, name="JobShutdown", daemon=True).start()

    signal.signal(signal.SIGTERM, _handle)
    signal.signal(signal.SIGINT, _handle)


def main(argv: Optional[Sequence[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Generate thumbnails in a separate worker process")
    parser.add_argument("--session-id", required=False, help="Session ID (generated when omitted)")
    parser.add_argument("--num-of-threads", type=int, default=1, help="Worker thread count")
    parser.add_argument("--cleanup", action="store_true", help="Remove thumbnails that are no longer needed")
    parser.add_argument("--log-file", required=False, help="Log file path passed to the worker")
    parser.add_argument("--log-level", required=False, help="Log level passed to the worker")
    parser.add_argument("--jvm-options", required=False, help="Extra JVM options (space separated)")
    parser.add_argument("--remote-debug", action="store_true", help=f"Use {REMOTE_DEBUG_OPTIONS}")
    parser.add_argument("--lasta-env", required=False, help="Environment selector when lasta.env is not set")
    parser.add_argument("--no-locale-elasticsearch", action="store_true",
                        help="Do not pass the local transport addresses to the worker")
    parser.add_argument("--env-file", required=False, help="Path to a .env file with configuration")
    parser.add_argument("--verbosity", default="INFO", help="Log level of this runner")
    args = parser.parse_args(argv)

    logger.remove()
    logger.add(sys.stderr, level=args.verbosity.upper())

    config = load_config(args.env_file)
    session = build_session(args)

    job_executor = JobExecutor()
    _install_signal_handlers(job_executor)

    job = ThumbnailJob(config, session)
    report = job.execute(job_executor)
    print(report, end="")
    return 1 if job.error is not None else 0


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
