"""
Session client configuration. Values come from env with local-development defaults.
No credentials in this file; tokens live in the credential store only.
"""
import os

# Base URL of the remote API; request paths are appended to it
API_BASE_URL = os.environ.get("SESSION_API_BASE_URL", "http://127.0.0.1:3001/api").rstrip("/")

# Refresh exchange endpoint (relative to API_BASE_URL). A 401 from here is always terminal.
REFRESH_PATH = os.environ.get("SESSION_REFRESH_PATH", "/auth/refresh")

# Login endpoint used by ApiClient.login
LOGIN_PATH = os.environ.get("SESSION_LOGIN_PATH", "/auth/login")

# Upper bound for the refresh exchange; expiry is handled exactly like a failed refresh
REFRESH_TIMEOUT_SECONDS = float(os.environ.get("SESSION_REFRESH_TIMEOUT_SECONDS", "15"))

# Per-request transport timeout for ordinary calls
REQUEST_TIMEOUT_SECONDS = float(os.environ.get("SESSION_REQUEST_TIMEOUT_SECONDS", "10"))

# Durable credential storage. Empty string = keep credentials in memory only.
CREDENTIAL_DATABASE_URL = os.environ.get("SESSION_CREDENTIAL_DB", "sqlite:///./session_credentials.db").strip() or None

# Event published on the session bus when the session cannot be recovered
LOGOUT_EVENT = "auth:logout"

# Names of the two persisted credential slots
ACCESS_TOKEN_SLOT = "token"
REFRESH_TOKEN_SLOT = "refreshToken"
