"""Domain exceptions and warnings.

All package errors are domain-level. Infrastructure errors (SQLAlchemy,
PyMySQL, botocore, paramiko) are caught at the operation boundary and either
re-raised as one of the exceptions below or reported as a ScrapeBotWarning.

Hierarchy:
    ScrapeBotError                  — root for all package errors
    ├── ValidationError             — the call itself is wrong; fix the call
    │   └── CredentialsError        — missing/unreadable credentials
    ├── ConnectionFailedError       — the database could not be opened
    └── InfrastructureError         — fatal AWS/SSH provisioning failure

    ScrapeBotWarning (UserWarning)  — recoverable operational failure

Rules:
- No bare `except` anywhere in the codebase. Always catch a specific type.
- Validation failures raise immediately, before any I/O.
- Operational failures (a query, an S3 request, a remote command) do not
  raise. They are logged, reported via ``warnings.warn(..., ScrapeBotWarning)``
  and the operation returns its documented sentinel: an empty DataFrame with
  the usual columns, ``None`` for identifiers, ``False`` for toggles.
  Run with ``warnings.simplefilter("error", ScrapeBotWarning)`` to turn them
  into exceptions.
"""

from __future__ import annotations


class ScrapeBotError(Exception):
    """Root exception for all package errors."""


# ---------------------------------------------------------------------------
# Caller errors
# ---------------------------------------------------------------------------


class ValidationError(ScrapeBotError):
    """Raised when an operation is called with arguments it cannot accept.

    This covers:
    - Missing or closed connection objects
    - Filters that are not integer identifiers
    - A required filter combination that was not supplied
    - Unknown step types
    - References to recipes/instances that do not exist
    """


class CredentialsError(ValidationError):
    """Raised when credentials cannot be resolved.

    This covers:
    - The credentials file does not exist or lies outside the home directory
    - The requested section is missing from the file
    - A section lacks a required key (e.g. ``host``)
    - SSH key files referenced by the AWS section do not exist
    """


# ---------------------------------------------------------------------------
# Operational errors
# ---------------------------------------------------------------------------


class ConnectionFailedError(ScrapeBotError):
    """Raised when the database connection cannot be established.

    The driver message is appended to the exception message so that bad
    passwords, unreachable hosts and unknown databases can be told apart.
    """


class InfrastructureError(ScrapeBotError):
    """Raised when provisioning reaches a state it cannot recover from.

    This covers:
    - SSH connection to a freshly launched instance keeps failing
    - Uploading the scraper configuration or installing the cron job failed
    - A boot poll exceeded its timeout
    - Every launch attempt failed during dependency installation

    Messages point the operator at the manual remediation, since a launched
    instance may still be running and incurring cost.
    """


# ---------------------------------------------------------------------------
# Warnings
# ---------------------------------------------------------------------------


class ScrapeBotWarning(UserWarning):
    """Recoverable operational failure; the operation returned its sentinel."""
