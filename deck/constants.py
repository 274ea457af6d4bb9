# deck/constants.py
"""
Constants for the Deck application.
"""
from pathlib import Path
import os

# Application information
APP_NAME = "deck"
APP_VERSION = "0.1.0"
APP_DESCRIPTION = "Three-layer containerized development environments"

# Paths
CONFIG_DIR = Path(os.path.expanduser("~/.config/deck"))
CONFIG_FILE = CONFIG_DIR / "config.toml"
LOG_DIR = CONFIG_DIR / "logs"

# Project-local state
DECK_DIR_NAME = ".deck"
TEMPLATES_DIR_NAME = "templates"
CUSTOM_DIR_NAME = "custom"
IMAGES_DIR_NAME = "images"
PROJECT_CONFIG_NAME = "config.yaml"

# Artifact files
ENV_FILE = ".env"
COMPOSE_FILE = "compose.yaml"
DOCKERFILE = "Dockerfile"
REQUIRED_CONFIG_FILES = (ENV_FILE, COMPOSE_FILE, DOCKERFILE)
METADATA_FILE = "metadata.json"
ORIGIN_FILE = ".deck-origin.json"

# Template repository
DEFAULT_TEMPLATE_REPOSITORY = "https://gitee.com/zhaoquan/deck.git"
DEFAULT_TEMPLATE_BRANCH = "main"
TEMPLATES_SUBDIR = "templates"

# Logging
LOG_FORMAT = "{time:YYYY-MM-DD HH:mm:ss} | {level} | {extra[name]} | {message}"
LOG_ROTATION = "100 MB"
LOG_RETENTION = "10 days"

# Ports
DEFAULT_PORT_RANGE = (8000, 9000)
PRIVILEGED_PORT_MAX = 1024
MAX_PORT = 65535
PORT_SEARCH_WINDOW = 100
PORT_PROBE_BATCH = 16

# Port variables that artifacts may declare in their .env
PORT_VARIABLES = (
    "DEV_PORT",
    "DEBUG_PORT",
    "WEB_PORT",
    "HTTPS_PORT",
    "ANDROID_DEBUG_PORT",
)

# Well-known ports and the services usually found on them
WELL_KNOWN_PORTS = {
    22: "ssh",
    80: "http",
    443: "https",
    3000: "node-dev",
    3306: "mysql",
    5000: "dev-server",
    5432: "postgresql",
    6379: "redis",
    8080: "http-alt",
    27017: "mongodb",
}

# Alternatives offered when a privileged port is requested
PRIVILEGED_PORT_ALTERNATIVES = {
    80: [8080, 3000, 5000],
    443: [8443, 3443, 5443],
    22: [2222, 2200],
}

# Permission rules
RUNTIME_VARIABLES = frozenset({
    "DEV_PORT",
    "DEBUG_PORT",
    "WEB_PORT",
    "HTTPS_PORT",
    "ANDROID_DEBUG_PORT",
    "PROJECT_NAME",
    "WORKSPACE_PATH",
    "CONTAINER_NAME",
    "NETWORK_NAME",
    "VOLUME_PREFIX",
    "DEPLOY_ENVIRONMENT",
})

SYSTEM_VARIABLES = frozenset({"PATH", "HOME", "USER", "SHELL"})

PROTECTED_CONFIG_FILES = frozenset({
    "compose.yaml",
    "compose.yml",
    "docker-compose.yaml",
    "docker-compose.yml",
    "Dockerfile",
    "Dockerfile.dev",
    "Dockerfile.prod",
    ".dockerignore",
    METADATA_FILE,
})

# Production detection
DEFAULT_PRODUCTION_PATTERNS = [r"-prod$", r"^prod-", r"production"]

# Cleaning
DEFAULT_KEEP_LATEST = 3
DEFAULT_STOPPED_OLDER_THAN_DAYS = 7

# Confirmation levels for destructive operations
CONFIRMATION_LEVELS = {
    "LOW": 1,             # Reversible or cheap to redo
    "MEDIUM": 2,          # Deletes user-owned configuration
    "HIGH": 3,            # Deletes built images or containers
    "CRITICAL": 4,        # Touches protected production resources
}

# Preferred ports per project type and semantic role
DEFAULT_PORT_MAPPINGS = {
    "tauri": {"Dev": 1420, "Debug": 9229, "HotReload": 1421},
    "flutter": {"Dev": 5000, "Debug": 9100, "HotReload": 5001},
    "avalonia": {"Dev": 5000, "Debug": 5001, "Api": 5002},
    "dotnet": {"Api": 5000, "Debug": 5001, "HotReload": 5002},
    "python": {"Dev": 8000, "Debug": 5678, "Api": 8001},
    "node": {"Dev": 3000, "Debug": 9229, "HotReload": 3001},
}

# Processes treated as system services when found on a port
SYSTEM_PROCESS_NAMES = frozenset({
    "systemd",
    "launchd",
    "sshd",
    "nginx",
    "apache2",
    "httpd",
    "mysqld",
    "postgres",
    "dockerd",
    "containerd",
    "cupsd",
})
