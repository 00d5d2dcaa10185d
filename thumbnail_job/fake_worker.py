"""A very small worker used only for fast lifecycle tests.

Accepts the thumbnail worker command line, echoes what it received and exits
according to FAKE_WORKER_* environment variables.
"""

import argparse
import os
import sys
import time
from pathlib import Path

from thumbnail_job.config import read_properties
from thumbnail_job.settings import THUMBNAIL_GENERATOR_CLASS


def parse_worker_args(argv):
    parser = argparse.ArgumentParser()
    parser.add_argument("--sessionId", required=True)
    parser.add_argument("--numOfThreads", type=int, default=1)
    parser.add_argument("--cleanup", action="store_true")
    parser.add_argument("-p", dest="properties_file", required=False)
    if THUMBNAIL_GENERATOR_CLASS in argv:
        argv = argv[argv.index(THUMBNAIL_GENERATOR_CLASS) + 1:]
    return parser.parse_args(argv)


def main():
    args = parse_worker_args(sys.argv[1:])
    print(f"FAKE WORKER session={args.sessionId} threads={args.numOfThreads} cleanup={args.cleanup}")
    if args.properties_file:
        properties = read_properties(Path(args.properties_file))
        for key in sorted(properties):
            print(f"property {key}={properties[key]}")

    output = os.getenv("FAKE_WORKER_OUTPUT")
    if output:
        print(output)
    lines = int(os.getenv("FAKE_WORKER_LINES", "0"))
    for index in range(lines):
        print(f"line {index}")
    sys.stdout.flush()

    sleep = float(os.getenv("FAKE_WORKER_SLEEP", "0"))
    if sleep:
        time.sleep(sleep)
    sys.exit(int(os.getenv("FAKE_WORKER_EXIT_CODE", "0")))


if __name__ == "__main__":  # pragma: no cover
    main()
