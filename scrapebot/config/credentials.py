"""Credentials file access.

Credentials live in one INI file (``constants.CREDENTIALS_FILE``, by default
``~/.scrapebot.ini``) so that passwords and access keys stay out of scripts
and repositories. Two kinds of sections exist:

    [scrapebot on db.example.org]      ← "<database> on <host>"
    host = db.example.org
    port = 3307
    user = researcher
    password = s3cr3t
    database = scrapebot

    [AWS]
    access_key_id = ABCD0EF1GH2IJ3KL
    secret_access_key = fkdusbl+sli725imfn26fks9
    ssh_public = /home/me/.ssh/scrapebot_public.pem
    ssh_private = /home/me/.ssh/scrapebot_private.pem

The file must resolve to a location under the user's home directory.
Interpolation is disabled: generated passwords may contain ``%``.
"""

from __future__ import annotations

import configparser
from pathlib import Path
from typing import Optional, Union

from pydantic import ValidationError as PydanticValidationError

from scrapebot.config import constants
from scrapebot.domain.exceptions import CredentialsError
from scrapebot.domain.models import AwsCredentials, DatabaseCredentials

PathLike = Union[str, Path]


def resolve_credentials_file(credentials_file: Optional[PathLike] = None) -> Path:
    """Return the absolute credentials path, enforcing the home-directory rule.

    Raises:
        CredentialsError: The path lies outside the user's home directory.
    """
    path = Path(credentials_file or constants.CREDENTIALS_FILE).expanduser().resolve()
    home = Path.home().resolve()
    if path != home and home not in path.parents:
        raise CredentialsError(
            f"Credentials file {path} must be located within the home directory ({home})."
        )
    return path


def _read_config(path: Path) -> configparser.ConfigParser:
    config = configparser.ConfigParser(interpolation=None)
    if path.exists():
        config.read(path, encoding="utf-8")
    return config


def _read_section(section: str, credentials_file: Optional[PathLike]) -> dict[str, str]:
    path = resolve_credentials_file(credentials_file)
    if not path.exists():
        raise CredentialsError(f"Credentials file {path} does not exist.")
    config = _read_config(path)
    if not config.has_section(section):
        raise CredentialsError(f'Section "{section}" not found in credentials file {path}.')
    return dict(config.items(section))


def _write_section(section: str, values: dict[str, str], credentials_file: Optional[PathLike]) -> Path:
    path = resolve_credentials_file(credentials_file)
    config = _read_config(path)
    if not config.has_section(section):
        config.add_section(section)
    for key, value in values.items():
        config.set(section, key, value)
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("w", encoding="utf-8") as handle:
        config.write(handle)
    return path


# ---------------------------------------------------------------------------
# Database credentials
# ---------------------------------------------------------------------------


def read_database_credentials(
    section: str,
    credentials_file: Optional[PathLike] = None,
) -> DatabaseCredentials:
    """Load database credentials from a named section.

    Args:
        section:          Section name, typically ``"<database> on <host>"``.
        credentials_file: Override for ``constants.CREDENTIALS_FILE``.

    Raises:
        CredentialsError: File or section missing, or values malformed.
    """
    if not isinstance(section, str) or not section:
        raise CredentialsError("Credential section needs to be a character string.")
    values = _read_section(section, credentials_file)
    try:
        return DatabaseCredentials(
            host=values["host"],
            user=values.get("user"),
            password=values.get("password"),
            database=values.get("database", "scrapebot"),
            port=int(values["port"]) if values.get("port") else None,
        )
    except (KeyError, ValueError, PydanticValidationError) as exc:
        raise CredentialsError(f'Section "{section}" is incomplete or malformed: {exc}') from exc


def write_database_credentials(
    host: str,
    user: Optional[str] = None,
    password: Optional[str] = None,
    database: str = "scrapebot",
    port: int = 0,
    credentials_file: Optional[PathLike] = None,
) -> Path:
    """Merge a ``"<database> on <host>"`` section into the credentials file.

    Existing sections are preserved. ``port`` is only written when greater
    than zero.

    Returns:
        Path of the credentials file.
    """
    if not isinstance(host, str) or not host:
        raise CredentialsError("Host needs to be a character string.")
    if not isinstance(database, str) or not database:
        raise CredentialsError("Database needs to be a character string.")

    values = {"host": host, "database": database}
    if user is not None:
        values["user"] = user
    if password is not None:
        values["password"] = password
    if port and port > 0:
        values["port"] = str(int(port))
    return _write_section(f"{database} on {host}", values, credentials_file)


# ---------------------------------------------------------------------------
# AWS credentials
# ---------------------------------------------------------------------------


def read_aws_credentials(
    section: Optional[str] = None,
    credentials_file: Optional[PathLike] = None,
) -> AwsCredentials:
    """Load IAM keys and SSH key file paths from the AWS section.

    Raises:
        CredentialsError: File or section missing, or a required key absent.
    """
    section = section or constants.AWS_CREDENTIALS_SECTION
    values = _read_section(section, credentials_file)
    try:
        return AwsCredentials(
            access_key_id=values["access_key_id"],
            secret_access_key=values["secret_access_key"],
            ssh_public=Path(values["ssh_public"]).expanduser(),
            ssh_private=Path(values["ssh_private"]).expanduser(),
        )
    except KeyError as exc:
        raise CredentialsError(f'Section "{section}" lacks required key {exc}.') from exc


def write_aws_credentials(
    access_key_id: str,
    secret_access_key: str,
    ssh_private: PathLike,
    ssh_public: PathLike,
    credentials_file: Optional[PathLike] = None,
) -> Path:
    """Write the AWS section. Both SSH key files must exist.

    Returns:
        Path of the credentials file.
    """
    if not access_key_id:
        raise CredentialsError("Access key ID (generate via AWS > IAM) needs to be a character string.")
    if not secret_access_key:
        raise CredentialsError("Secret access key (generate via AWS > IAM) needs to be a character string.")
    private_path = Path(ssh_private).expanduser()
    public_path = Path(ssh_public).expanduser()
    if not private_path.is_file():
        raise CredentialsError(f"SSH private key file {private_path} cannot be found.")
    if not public_path.is_file():
        raise CredentialsError(f"SSH public key file {public_path} cannot be found.")

    values = {
        "access_key_id": access_key_id,
        "secret_access_key": secret_access_key,
        "ssh_public": str(public_path),
        "ssh_private": str(private_path),
    }
    return _write_section(constants.AWS_CREDENTIALS_SECTION, values, credentials_file)
