"""Constants module.

All configuration values are sourced from environment variables. This module
is the single gateway between the environment and the codebase:

    Environment variables
            │
            ▼
    scrapebot.config.constants     ← os.environ.get("KEY", default)
            │
            ▼
    All other modules              ← import from scrapebot.config.constants

Rules:
- No module outside this file may call os.environ directly.
- Every variable is optional. This is a library imported into notebooks and
  scripts, so a missing variable falls back to the documented default instead
  of failing at import time.
"""

import os

# ---------------------------------------------------------------------------
# Credentials
# ---------------------------------------------------------------------------

# INI file holding "<database> on <host>" sections and the AWS section.
# Must resolve to a path under the user's home directory.
CREDENTIALS_FILE: str = os.environ.get("SCRAPEBOT_CREDENTIALS_FILE", "~/.scrapebot.ini")

# Section name of the AWS credentials inside CREDENTIALS_FILE.
AWS_CREDENTIALS_SECTION: str = os.environ.get("SCRAPEBOT_AWS_SECTION", "AWS")

# ---------------------------------------------------------------------------
# Observability
# ---------------------------------------------------------------------------

SERVICE_NAME: str = os.environ.get("SCRAPEBOT_SERVICE_NAME", "scrapebot-client")
LOG_LEVEL: str = os.environ.get("SCRAPEBOT_LOG_LEVEL", "INFO")

# ---------------------------------------------------------------------------
# Database
# ---------------------------------------------------------------------------

# Rows fetched per round trip for potentially large result sets (runs, data).
FETCH_CHUNK_SIZE: int = int(os.environ.get("SCRAPEBOT_FETCH_CHUNK_SIZE", "1000"))

# Write-then-verify passes for idempotent toggles before giving up.
WRITE_VERIFY_ATTEMPTS: int = int(os.environ.get("SCRAPEBOT_WRITE_VERIFY_ATTEMPTS", "3"))

# ---------------------------------------------------------------------------
# AWS
# ---------------------------------------------------------------------------

DEFAULT_REGION: str = os.environ.get("SCRAPEBOT_DEFAULT_REGION", "eu-central-1")

# Name of the EC2 key pair that launched instances are started with.
KEYPAIR_NAME: str = os.environ.get("SCRAPEBOT_KEYPAIR_NAME", "scrapebot")

# Seconds between two status polls while RDS/EC2 resources boot.
POLL_INTERVAL_SECONDS: float = float(os.environ.get("SCRAPEBOT_POLL_INTERVAL_SECONDS", "2"))
