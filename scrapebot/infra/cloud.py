"""AWS connection handling.

Exposes:
  - CloudConnection:         orchestration state plus live EC2/RDS/S3 clients.
  - open_cloud_connection(): Read the AWS credentials section and connect.
  - change_cloud_region():   Re-create all clients for another region.
  - save_cloud_connection(): Persist state (never the live clients) as JSON.
  - load_cloud_connection(): Restore state and reconnect.

The three clients are established independently. A client that cannot be
set up is left as None and reported as a ScrapeBotWarning; callers check for
the client they need via ``CloudConnection.require()``. Setting up EC2 also
makes sure the key pair that launched instances use exists, importing the
local public key when AWS does not know it yet.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Optional

import boto3
import pandas as pd
from botocore.exceptions import BotoCoreError, ClientError
from pydantic import BaseModel, Field, PrivateAttr
from pydantic import ValidationError as PydanticValidationError

from scrapebot.config import constants
from scrapebot.config.credentials import PathLike, read_aws_credentials
from scrapebot.config.reporting import operation_logger, report_failure
from scrapebot.domain.exceptions import ValidationError
from scrapebot.domain.frames import EC2_INSTANCE_COLUMNS, to_frame
from scrapebot.domain.models import AwsCredentials, Ec2InstanceRecord

DEFAULT_STATE_FILE: str = "aws_connection.json"

_SERVICE_LABELS = {
    "ec2": "EC2 (instance)",
    "rds": "RDS (database)",
    "s3": "S3 (storage)",
}


class CloudConnection(BaseModel):
    """Orchestration state for one AWS account and region.

    Everything except the live clients is plain data and survives
    ``save_cloud_connection``/``load_cloud_connection``.
    """

    region: str
    credentials: AwsCredentials
    keypair_name: str = constants.KEYPAIR_NAME
    s3_bucket: Optional[str] = None
    rds_identifier: Optional[str] = None
    rds_credential_section: Optional[str] = None
    security_group_instance: Optional[str] = None
    security_group_database: Optional[str] = None
    ec2_instances: list[Ec2InstanceRecord] = Field(default_factory=list)

    _session: Any = PrivateAttr(default=None)
    _ec2: Any = PrivateAttr(default=None)
    _rds: Any = PrivateAttr(default=None)
    _s3: Any = PrivateAttr(default=None)

    @property
    def ec2(self) -> Any:
        return self._ec2

    @property
    def rds(self) -> Any:
        return self._rds

    @property
    def s3(self) -> Any:
        return self._s3

    def require(self, service: str) -> Any:
        """Return the live client for ``service`` ("ec2", "rds" or "s3").

        Raises:
            ValidationError: The client was never established.
        """
        client = getattr(self, f"_{service}")
        if client is None:
            raise ValidationError(
                f"AWS connection needs to be set up with {service.upper()}, initiated through open_cloud_connection."
            )
        return client

    def client_for(self, service: str, region: str) -> Any:
        """Return a client for ``service`` in ``region``, reusing the live one if it matches."""
        if region == self.region:
            return self.require(service)
        if self._session is None:
            raise ValidationError("AWS connection needs to be initiated through open_cloud_connection.")
        return self._session.client(service, region_name=region)

    def instances_frame(self) -> pd.DataFrame:
        """Return the launched-instance inventory as a DataFrame."""
        rows = [
            tuple(record.model_dump()[column] for column in EC2_INSTANCE_COLUMNS)
            for record in self.ec2_instances
        ]
        return to_frame(rows, EC2_INSTANCE_COLUMNS)


# ---------------------------------------------------------------------------
# Client setup
# ---------------------------------------------------------------------------


def ensure_key_pair(ec2: Any, keypair_name: str, public_key_file: Path) -> None:
    """Import ``public_key_file`` as ``keypair_name`` unless it already exists."""
    try:
        ec2.describe_key_pairs(KeyNames=[keypair_name])
        return
    except ClientError as exc:
        if exc.response.get("Error", {}).get("Code") != "InvalidKeyPair.NotFound":
            raise
    ec2.import_key_pair(KeyName=keypair_name, PublicKeyMaterial=public_key_file.read_bytes())


def _connect_clients(cloud: CloudConnection, log: Any) -> None:
    cloud._session = boto3.session.Session(
        aws_access_key_id=cloud.credentials.access_key_id,
        aws_secret_access_key=cloud.credentials.secret_access_key,
        region_name=cloud.region,
    )

    for service, label in _SERVICE_LABELS.items():
        try:
            client = cloud._session.client(service)
            if service == "ec2":
                ensure_key_pair(client, cloud.keypair_name, cloud.credentials.ssh_public)
        except (BotoCoreError, ClientError, OSError) as exc:
            report_failure(
                log,
                f"cloud.{service}.connect_failed",
                f"{label} connection could not be properly established:",
                exc,
                stacklevel=4,
            )
            client = None
        setattr(cloud, f"_{service}", client)

    log.info(
        "cloud.connected",
        region=cloud.region,
        ec2=cloud.ec2 is not None,
        rds=cloud.rds is not None,
        s3=cloud.s3 is not None,
    )


# ---------------------------------------------------------------------------
# Public operations
# ---------------------------------------------------------------------------


def open_cloud_connection(
    region: str = constants.DEFAULT_REGION,
    credentials_section: Optional[str] = None,
    credentials_file: Optional[PathLike] = None,
    keypair_name: str = constants.KEYPAIR_NAME,
) -> CloudConnection:
    """Connect to AWS with the credentials stored in the credentials file.

    Args:
        region:              AWS region, e.g. ``"eu-central-1"``.
        credentials_section: Section holding the AWS keys; defaults to
                             ``constants.AWS_CREDENTIALS_SECTION``.
        credentials_file:    Override for ``constants.CREDENTIALS_FILE``.
        keypair_name:        EC2 key pair used for launched instances.

    Raises:
        CredentialsError: The AWS section cannot be read.
        ValidationError:  Empty region or key-pair name.
    """
    if not isinstance(region, str) or not region:
        raise ValidationError("Region needs to be a character string, e.g. eu-central-1.")
    if not isinstance(keypair_name, str) or not keypair_name:
        raise ValidationError("Key pair name needs to be a character string.")

    credentials = read_aws_credentials(credentials_section, credentials_file)
    cloud = CloudConnection(region=region, credentials=credentials, keypair_name=keypair_name)
    _connect_clients(cloud, operation_logger("open_cloud_connection", region=region))
    return cloud


def change_cloud_region(cloud: CloudConnection, region: str) -> CloudConnection:
    """Point ``cloud`` at another region, re-creating all three clients."""
    if not isinstance(cloud, CloudConnection):
        raise ValidationError("AWS connection needs to be initiated through open_cloud_connection.")
    if not isinstance(region, str) or not region:
        raise ValidationError("Region needs to be a character string, e.g. eu-central-1.")
    cloud.region = region
    _connect_clients(cloud, operation_logger("change_cloud_region", region=region))
    return cloud


def save_cloud_connection(cloud: CloudConnection, path: PathLike = DEFAULT_STATE_FILE) -> Path:
    """Write the orchestration state as JSON. Live clients are not saved."""
    if not isinstance(cloud, CloudConnection):
        raise ValidationError("AWS connection needs to be initiated through open_cloud_connection.")
    target = Path(path).expanduser()
    target.write_text(cloud.model_dump_json(indent=2), encoding="utf-8")
    operation_logger("save_cloud_connection").info("cloud.saved", path=str(target))
    return target


def load_cloud_connection(path: PathLike = DEFAULT_STATE_FILE) -> CloudConnection:
    """Restore state written by ``save_cloud_connection`` and reconnect.

    Raises:
        ValidationError: The file is unreadable or not a saved connection.
    """
    source = Path(path).expanduser()
    try:
        cloud = CloudConnection.model_validate_json(source.read_text(encoding="utf-8"))
    except OSError as exc:
        raise ValidationError(f"Saved AWS connection {source} is not readable.") from exc
    except PydanticValidationError as exc:
        raise ValidationError(f"Saved AWS connection {source} is malformed: {exc}") from exc
    _connect_clients(cloud, operation_logger("load_cloud_connection", region=cloud.region))
    return cloud
