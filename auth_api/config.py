"""
Auth API configuration. No secrets in this file; the signing secret comes from env or is generated per process.
"""
import os
import secrets

# Routes are served under this prefix (the access layer's base URL ends with it)
API_PREFIX = os.environ.get("AUTH_API_PREFIX", "/api").rstrip("/")

# HS256 secret for access tokens. Unset = random per process (tokens die with the process).
JWT_SECRET = os.environ.get("AUTH_API_JWT_SECRET") or secrets.token_urlsafe(32)
JWT_ALGORITHM = "HS256"

# Access token lifetime (seconds): short-lived, 15 minutes
ACCESS_TOKEN_EXPIRES = int(os.environ.get("AUTH_API_ACCESS_TOKEN_EXPIRES", "900"))

# Refresh token lifetime (seconds): 7 days
REFRESH_TOKEN_EXPIRES = int(os.environ.get("AUTH_API_REFRESH_TOKEN_EXPIRES", "604800"))

# Optional seed user (no default credentials)
SEED_USER = os.environ.get("AUTH_API_SEED_USER")
SEED_PASSWORD = os.environ.get("AUTH_API_SEED_PASSWORD")
