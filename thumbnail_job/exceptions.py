"""Exceptions raised while running a thumbnail generation job.

Copyright 2024-2025 Di Chen

Licensed under the Apache License, Version 2.0 (the "License");
you may not use this file except in compliance with the License.
You may obtain a copy of the License at

    http://www.apache.org/licenses/LICENSE-2.0

Unless required by applicable law or agreed to in writing, software
distributed under the License is distributed on an "AS IS" BASIS,
WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
See the License for the specific language governing permissions and
limitations under the License.
"""


class JobExecutionError(Exception):
    """Base class for failures of a thumbnail job"""


class ConfigurationBuildError(JobExecutionError):
    """Raised when the properties file handed to the worker cannot be written"""

    def __init__(self, path, original_error: Exception):
        self.path = path
        self.original_error = original_error

        message = "Failed to create a properties file"
        if path:
            message += f" {path}"
        super().__init__(f"{message}: {original_error}")


class WorkerExitError(JobExecutionError):
    """Raised when the worker process exits with a non-zero code"""

    def __init__(self, exit_code: int, output: str):
        self.exit_code = exit_code
        self.output = output

        message = f"Exit Code: {exit_code}\nOutput:\n{output}"
        super().__init__(message)


class JobInterrupted(JobExecutionError):
    """Raised when the worker is destroyed while the job waits for it"""

    def __init__(self, session_id: str):
        self.session_id = session_id
        super().__init__(f"ThumbnailGenerator Process interrupted: {session_id}")


InterruptedExit = JobInterrupted


class UnexpectedJobError(JobExecutionError):
    """Wraps any other failure that happens while building, launching or waiting"""

    def __init__(self, original_error: Exception):
        self.original_error = original_error
        super().__init__(f"ThumbnailGenerator Process terminated: {original_error}")
