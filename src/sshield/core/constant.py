APP_NAME = "sshield"
APP_VERSION = "1.0.0"

DEFAULT_PROJECT = "default"
DEFAULT_PROJECT_NAME = "Default Project"

# Project IDs are slugs: they name directories and ssh_config markers
PROJECT_ID_PATTERN = r"^[a-z0-9]+(-[a-z0-9]+)*$"

# Key generation
DEFAULT_KEY_TYPE = "ed25519"
DEFAULT_KEY_BITS = 4096
DEFAULT_KDF_ROUNDS = 100

# ssh_config keep-alive defaults
SERVER_ALIVE_INTERVAL = 60
SERVER_ALIVE_COUNT_MAX = 120

# Permissions
SSH_KEY_PERMISSIONS = 0o600
SSH_PUB_KEY_PERMISSIONS = 0o644
SSH_DIR_PERMISSIONS = 0o700

# 8 hours
DEFAULT_AGENT_TIMEOUT = 28800

REDACTED = "[REDACTED]"
