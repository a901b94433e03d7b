STATE_DIR_NAME = ".taskboard"
CONFIG_FILE = "config.yaml"
TASKS_FILE = "tasks.yaml"
TASKS_LOCK_FILE = "tasks.lock"
ARTIFACTS_DIR = "artifacts"
EVENTS_FILE = "task_events.jsonl"
WINDOWS_LOCK_BYTES = 4096

DEFAULT_RANK_GAP = 10.0
DEFAULT_MIN_RANK_SPACING = 1e-9
DEFAULT_LOCK_TIMEOUT = 30  # seconds
DEFAULT_MAX_MOVE_ATTEMPTS = 3
DEFAULT_REQUEST_TIMEOUT = 5.0  # seconds

API_PREFIX = "/api/v1"
