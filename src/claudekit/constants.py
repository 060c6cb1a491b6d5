"""Centralized constants for the ClaudeKit updater."""

# Installation layout (relative to the project root)
KIT_DIR = ".claude"
VERSION_MARKER = f"{KIT_DIR}/VERSION"
COMMANDS_DIR = f"{KIT_DIR}/commands"
MEMORY_DIR = f"{KIT_DIR}/memory"
CONTRIBUTION_GUIDELINES = f"{MEMORY_DIR}/CONTRIBUTION_GUIDELINES.md"
PAIN_POINTS_DIR = f"{KIT_DIR}/pain-points"
USER_CONFIG_FILE = "CLAUDE.md"
ROOT_FILES = (USER_CONFIG_FILE,)

# Snapshots live next to the kit directory
BACKUP_PREFIX = f"{KIT_DIR}-backup-"
PARTIAL_SUFFIX = ".partial"
SNAPSHOT_METADATA = "snapshot.json"
SNAPSHOT_FILES_DIR = "files"
SNAPSHOT_ID_FORMAT = "%Y%m%d-%H%M%S-%f"

# Release origin layout
MANIFEST_NAME = "manifest.json"
RELEASES_DIR = "releases"
LATEST = "latest"
DEFAULT_RAW_URL = "https://raw.githubusercontent.com/claudekit/claudekit/main"

# Transport
HTTP_TIMEOUT_SECONDS = 30.0

# Retention
DEFAULT_BACKUP_KEEP = 5
