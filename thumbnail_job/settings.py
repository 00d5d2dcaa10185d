"""Fixed settings for the thumbnail job runner."""

from pathlib import Path

# Worker entry point (fully-qualified class name run by the JVM)
THUMBNAIL_GENERATOR_CLASS = "org.codelibs.fess.exec.ThumbnailGenerator"

# Classpath layout relative to the web application root
WEB_INF_DIR = "WEB-INF"
THUMBNAIL_RESOURCES_DIR = Path(WEB_INF_DIR) / "env" / "thumbnail" / "resources"
CLASSES_DIR = Path(WEB_INF_DIR) / "classes"
LIB_DIR = Path(WEB_INF_DIR) / "lib"
THUMBNAIL_LIB_DIR = Path(WEB_INF_DIR) / "env" / "thumbnail" / "lib"

SESSION_ID_LENGTH = 15
OWN_TMP_DIR_PREFIX = "fessTmpDir_"
PROPERTIES_FILE_PREFIX = "thumbnail_"
PROPERTIES_FILE_SUFFIX = ".properties"
LOG_NAME_SUFFIX = "-thumbnail"

REMOTE_DEBUG_OPTIONS = "-Xdebug -Xrunjdwp:transport=dt_socket,server=y,suspend=y,address=localhost:8000"

# Output buffering
MAX_OUTPUT_LINES = 1000

# Timeout settings (in seconds)
OUTPUT_JOIN_TIMEOUT = 5.0
KILL_TIMEOUT = 10.0
DRAIN_SHUTDOWN_TIMEOUT = 1.0
