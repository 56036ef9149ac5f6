import os
from pathlib import Path

# Everything the server persists (token, rules, logs) lives in one data directory.
# GMAIL_MCP_CONFIG_DIR or `gmail-mcp --config-dir` can point it somewhere else.
DEFAULT_DATA_DIR = Path.home() / ".config" / "mcp-gmail"
DATA_DIR = Path(os.environ.get("GMAIL_MCP_CONFIG_DIR", DEFAULT_DATA_DIR))
CREDENTIALS_FILE = DATA_DIR / "credentials.json"  # OAuth client from Google Cloud
TOKEN_FILE = DATA_DIR / "token.json"  # Where we'll save the login token
RULES_FILE = DATA_DIR / "auto-labeling-rules.json"
IGNORED_LABELS_FILE = DATA_DIR / "ignored-labels-inbox.json"
LOG_FILE = DATA_DIR / "gmail_mcp_session.log"

RULES_CONFIG_VERSION = "1.0.0"

# 'gmail.modify' covers reading, trashing, permanent batch deletion and labeling.
# 'gmail.send' is needed for replies and sending drafts.
SCOPES = [
    "https://www.googleapis.com/auth/gmail.modify",
    "https://www.googleapis.com/auth/gmail.send",
    "https://www.googleapis.com/auth/gmail.labels",
]

OAUTH_REDIRECT_HOST = "127.0.0.1"
OAUTH_REDIRECT_PORT = 53682
OAUTH_CALLBACK_PATH = "/oauth2callback"
UI_PORT = 53750


def set_data_dir(path) -> Path:
    """Re-points the data directory and every path derived from it."""
    global DATA_DIR, CREDENTIALS_FILE, TOKEN_FILE, RULES_FILE, IGNORED_LABELS_FILE, LOG_FILE
    DATA_DIR = Path(path).expanduser()
    CREDENTIALS_FILE = DATA_DIR / "credentials.json"
    TOKEN_FILE = DATA_DIR / "token.json"
    RULES_FILE = DATA_DIR / "auto-labeling-rules.json"
    IGNORED_LABELS_FILE = DATA_DIR / "ignored-labels-inbox.json"
    LOG_FILE = DATA_DIR / "gmail_mcp_session.log"
    return DATA_DIR


def ensure_data_dir() -> Path:
    data_dir = Path(DATA_DIR)
    data_dir.mkdir(parents=True, exist_ok=True)
    return data_dir
