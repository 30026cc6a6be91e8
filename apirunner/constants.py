"""APIRunner constants and configuration values."""

from enum import Enum

# Execution
DEFAULT_MAX_PARALLEL_EXECUTORS = 10
DEFAULT_THROTTLE_POLL_INTERVAL = 0.3  # seconds
DEFAULT_REPEAT_UNTIL_TIMEOUT_MS = 2 * 60 * 1000
DEFAULT_EXPECTED_STATUS = 200
DEFAULT_HTTP_METHOD = "GET"
FAILED_STATUS = -1

# Templating
REGEX_EXPANSION_MAX_LENGTH = 99
URL_SPECIAL_CHARS = ["?", "$", "&", "(", ")"]
LOREM_SANITIZED_CHARS = ['"', "{", "}", "[", "]"]
LOREM_MIN_SENTENCE_LENGTH = 10
DATASET_NAMES_KEY = "names"
DATASET_SOURCES = ["harrypotter", "starwars", "pokemon", "got", "marvel"]

# Path keywords
RANDOM_KEYWORDS = ["ANY", "ANY_OBJECT", "RANDOM", "RANDOM_OBJECT"]
ALL_KEYWORD = "ALL"
RESPONSE_PREFIX = "response"

# Workspace
CACHE_DIR = ".cache"
FROZEN_SCENARIOS_FILE = "scenarios.json"
SCENARIO_FILE_EXTENSIONS = [".json", ".yaml", ".yml"]
PAYLOAD_REFERENCE_PREFIX = "!"

# Authentication types accepted in system configs
AUTH_TYPES = {
    "oauth2": ["jwt", "cf-jwt", "client-credentials", "oauth2", "jwt-token"],
    "basic": ["basic", "username-password", "basic-authentication"],
    "bearer": ["bearer", "token"],
    "none": ["none"],
}

# Status Values
class ExecutionStatus(str, Enum):
    SUCCESS = "SUCCESS"
    FAIL = "FAIL"
    ERROR = "ERROR"


class ScriptType(str, Enum):
    # Scenario level scripts
    BEFORE_SCENARIO = "before-scenario"
    AFTER_SCENARIO = "after-scenario"
    BEFORE_EACH = "before-each"
    AFTER_EACH = "after-each"
    AFTER_GLOBALS = "after-globals"

    # Endpoint level scripts
    BEFORE_ENDPOINT = "before-endpoint"
    AFTER_ENDPOINT = "after-endpoint"
    AFTER_DEPENDENCIES = "after-dependencies"


class EndpointState(str, Enum):
    PENDING = "PENDING"
    BEFORE_HOOKS = "BEFORE_HOOKS"
    DEPENDENCIES = "DEPENDENCIES"
    THROTTLE_WAIT = "THROTTLE_WAIT"
    IN_FLIGHT = "IN_FLIGHT"
    ASSERTING = "ASSERTING"
    DONE = "DONE"
    FAILED = "FAILED"


# HTTP Methods
SUPPORTED_HTTP_METHODS = ["GET", "POST", "PUT", "DELETE", "PATCH", "HEAD", "OPTIONS"]
