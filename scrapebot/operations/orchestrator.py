"""Cloud orchestration for running ScrapeBot on AWS.

Exposes:
  - default_machine_image()       Ubuntu 20.04 AMI per region
  - launch_database()             RDS MySQL instance with the ScrapeBot schema
  - terminate_database()
  - launch_storage()              S3 bucket for screenshots
  - terminate_storage()
  - launch_instance()             EC2 instance set up as a ScrapeBot worker
  - terminate_instance()
  - render_instance_config()      the worker's config.ini

Each resource is provisioned and terminated independently; the resulting
identifiers are kept on the CloudConnection so that the state can be saved
and resumed later.

Instance launch, stage by stage:
    security group (port 22) → run instance → wait until running
    → SSH (5 attempts) → system update (failures only warn) → reboot
    → SSH (10 attempts, 5 s apart) → install the scraper
        └── on failure: terminate, warn, start over (max_attempts in total)
    → register as Instance → upload config.ini → install cron job

Rules:
- Boot polls sleep ``poll_interval`` seconds between probes and give up with
  InfrastructureError after ``timeout`` seconds (None waits indefinitely).
- AWS API failures raise InfrastructureError. A launched instance may then
  still be running; messages point at the AWS console.
"""

from __future__ import annotations

import configparser
import io
import os
import random
import secrets
import string
import time
from typing import Any, Callable, Optional

import paramiko
import sqlalchemy.exc
from botocore.exceptions import BotoCoreError, ClientError

from scrapebot.config import constants
from scrapebot.config.credentials import PathLike, write_database_credentials
from scrapebot.config.reporting import operation_logger, report_failure
from scrapebot.domain.exceptions import InfrastructureError, ValidationError
from scrapebot.domain.models import AwsCredentials, DatabaseCredentials, Ec2InstanceRecord
from scrapebot.infra.cloud import CloudConnection
from scrapebot.infra.db import close_database, open_database
from scrapebot.infra.ssh import SshSession
from scrapebot.infra.tables import metadata
from scrapebot.operations.validation import as_id, require_text
from scrapebot.operations.writers import add_instance

AWS_CONSOLE_HINT = "Use the AWS web interface (https://console.aws.amazon.com/ec2/) to terminate any unused instances."

# Ubuntu Server 20.04 LTS (64-bit x86, SSD volume) per region.
DEFAULT_MACHINE_IMAGES: dict[str, str] = {
    "af-south-1": "ami-0081edcfb10f9f0d6",
    "ap-east-1": "ami-0774445f9e6290ccd",
    "ap-northeast-1": "ami-059b6d3840b03d6dd",
    "ap-northeast-2": "ami-00f1068284b9eca92",
    "ap-northeast-3": "ami-01ecbd21b1e9b987f",
    "ap-south-1": "ami-0d758c1134823146a",
    "ap-southeast-1": "ami-01581ffba3821cdf3",
    "ap-southeast-2": "ami-0a43280cfb87ffdba",
    "ca-central-1": "ami-043e33039f1a50a56",
    "eu-central-1": "ami-0767046d1677be5a0",
    "eu-north-1": "ami-0ed17ff3d78e74700",
    "eu-south-1": "ami-08a7e27b95390cc06",
    "eu-west-1": "ami-08bac620dc84221eb",
    "eu-west-2": "ami-096cb92bb3580c759",
    "eu-west-3": "ami-0d6aecf0f0425f42a",
    "me-south-1": "ami-07d42d0c2a45aa449",
    "sa-east-1": "ami-0b9517e2052e8be7a",
    "us-east-1": "ami-042e8287309f5df03",
    "us-east-2": "ami-08962a4068733a2b6",
    "us-west-1": "ami-031b673f443c2172c",
    "us-west-2": "ami-0ca5c3bd5a268e7db",
}

DEFAULT_USERAGENT = "Mozilla/5.0 (X11; Ubuntu; Linux x86_64; rv:85.0) Gecko/20100101 Firefox/85.0"

# ---------------------------------------------------------------------------
# Database settings
# ---------------------------------------------------------------------------

DATABASE_NAME = "scrapebot"
DATABASE_IDENTIFIER = f"rds-instance-{DATABASE_NAME}"
DATABASE_ENGINE = "mysql"
DATABASE_ENGINE_VERSION = "8.0.21"
DATABASE_STORAGE_GB = 50
DATABASE_MASTER_USER = "admin"
DATABASE_PORT = 3306
DATABASE_SECURITY_GROUP = "ScrapeBot RDS database"
# RDS rejects "/", "@", '"' and spaces in master passwords.
_DATABASE_PASSWORD_ALPHABET = string.ascii_letters + string.digits + "-_.:,;&%"
DATABASE_PASSWORD_LENGTH = 24

# ---------------------------------------------------------------------------
# Instance settings
# ---------------------------------------------------------------------------

INSTANCE_SECURITY_GROUP = "ScrapeBot"
SSH_PORT = 22
SSH_FIRST_ATTEMPTS = 5
SSH_RECONNECT_ATTEMPTS = 10
SSH_RECONNECT_BACKOFF_SECONDS = 5.0
REBOOT_WAIT_SECONDS = 10.0

SYSTEM_UPDATE_COMMANDS: tuple[str, ...] = (
    "sudo apt-get update",
    "sudo apt-get update",
    "sudo dpkg --configure -a",
    "sudo apt-get -yfq install",
    "sudo apt-get -yfq upgrade",
    "sudo apt-get -yfq dist-upgrade",
)

SCRAPER_INSTALL_COMMANDS: tuple[str, ...] = (
    "sudo apt-get -yfq install python3-pip firefox xvfb",
    "git clone https://github.com/MarHai/ScrapeBot.git",
    "chmod u+x ScrapeBot/lib/*",
    "cd ScrapeBot/ && pip3 install -r requirements.txt",
)

REMOTE_CONFIG_PATH = "ScrapeBot/config.ini"

CRON_COMMAND = (
    "(crontab -l 2>/dev/null; "
    'echo "*/2 * * * * cd ~/ScrapeBot/ && python3 scrapebot.py >> scrapebot_cron.log") '
    "| crontab -"
)

_AWS_ERRORS = (BotoCoreError, ClientError)
_SSH_ERRORS = (paramiko.SSHException, OSError)


def default_machine_image(region: str = constants.DEFAULT_REGION) -> Optional[str]:
    """Return the default AMI for ``region``, or None for unknown regions."""
    return DEFAULT_MACHINE_IMAGES.get(region)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _error_code(exc: ClientError) -> str:
    return exc.response.get("Error", {}).get("Code", "")


def ensure_security_group(ec2: Any, name: str, port: int) -> str:
    """Return the id of security group ``name``, creating it if missing.

    A created group opens ``port`` (TCP) to any address.
    """
    try:
        groups = ec2.describe_security_groups(GroupNames=[name])["SecurityGroups"]
        if groups:
            return groups[0]["GroupId"]
    except ClientError as exc:
        if _error_code(exc) != "InvalidGroup.NotFound":
            raise

    group_id = ec2.create_security_group(
        GroupName=name,
        Description="automatically generated by scrapebot-client",
    )["GroupId"]
    ec2.authorize_security_group_ingress(
        GroupId=group_id,
        IpProtocol="tcp",
        FromPort=port,
        ToPort=port,
        CidrIp="0.0.0.0/0",
    )
    return group_id


def _wait_for(
    probe: Callable[[], Optional[str]],
    *,
    poll_interval: float,
    timeout: Optional[float],
    what: str,
) -> str:
    """Call ``probe`` every ``poll_interval`` seconds until it returns a host."""
    started = time.monotonic()
    while True:
        time.sleep(poll_interval)
        host = probe()
        if host:
            return host
        if timeout is not None and time.monotonic() - started >= timeout:
            raise InfrastructureError(f"{what} did not become available within {timeout} seconds. {AWS_CONSOLE_HINT}")


def _run(ssh: SshSession, command: str) -> tuple[int, str]:
    """Run a setup command; a broken SSH channel is fatal."""
    try:
        status, _, stderr = ssh.exec(command)
    except _SSH_ERRORS as exc:
        raise InfrastructureError(
            f"SSH connection to EC2 instance ({ssh.host}) broke down during setup: {exc}. {AWS_CONSOLE_HINT}"
        ) from exc
    return status, stderr


def _random_password(length: int, alphabet: str) -> str:
    return "".join(secrets.choice(alphabet) for _ in range(length))


def _escape_percent(value: Optional[str]) -> str:
    return (value or "").replace("%", "%%")


def render_instance_config(
    database: DatabaseCredentials,
    database_timeout: Optional[int],
    aws: AwsCredentials,
    s3_bucket: Optional[str],
    instance_name: str,
    browser_useragent: str = DEFAULT_USERAGENT,
    browser_language: str = "de-de",
    browser_width: int = 1920,
    browser_height: int = 1080,
) -> str:
    """Render the scraper's ``config.ini``.

    The scraper reads the file with ``%`` interpolation, so literal ``%`` in
    secrets are doubled.
    """
    config = configparser.ConfigParser(interpolation=None)
    config["Database"] = {
        "host": database.host if database.port is None else f"{database.host}:{database.port}",
        "user": database.user or "",
        "password": _escape_percent(database.password),
        "database": database.database,
        "timeout": "" if database_timeout is None else str(database_timeout),
        "awsaccess": _escape_percent(aws.access_key_id),
        "awssecret": _escape_percent(aws.secret_access_key),
    }
    if s3_bucket:
        config["Database"]["awsbucket"] = s3_bucket
    config["Instance"] = {
        "name": instance_name,
        "timeout": "1",
        "browser": "Firefox",
        "browseruseragent": browser_useragent,
        "browserlanguage": browser_language,
        "browserwidth": str(browser_width),
        "browserheight": str(browser_height),
    }
    buffer = io.StringIO()
    config.write(buffer)
    return buffer.getvalue()


# ---------------------------------------------------------------------------
# Database (RDS)
# ---------------------------------------------------------------------------


def _database_endpoint(rds: Any, identifier: str, log: Any) -> Optional[str]:
    try:
        instances = rds.describe_db_instances(DBInstanceIdentifier=identifier)["DBInstances"]
    except ClientError as exc:
        log.debug("orchestrator.launch_database.not_visible", error=str(exc))
        return None
    if not instances or instances[0].get("DBInstanceStatus") != "available":
        return None
    return (instances[0].get("Endpoint") or {}).get("Address") or None


def launch_database(
    cloud: CloudConnection,
    instance_class: str = "db.m6g.xlarge",
    *,
    poll_interval: float = constants.POLL_INTERVAL_SECONDS,
    timeout: Optional[float] = None,
    credentials_file: Optional[PathLike] = None,
) -> CloudConnection:
    """Launch an RDS MySQL instance and install the ScrapeBot schema on it.

    The generated master credentials are merged into the credentials file
    under ``"scrapebot on <endpoint>"``; that section name is stored as
    ``cloud.rds_credential_section``.

    Args:
        cloud:            Connection with EC2 (security group) and RDS clients.
        instance_class:   RDS instance class.
        poll_interval:    Seconds between status probes while booting.
        timeout:          Give up after this many seconds; None waits forever.
        credentials_file: Override for ``constants.CREDENTIALS_FILE``.

    Raises:
        ValidationError:       Missing clients.
        InfrastructureError:   AWS refused a request, boot timed out or the
                               schema could not be installed.
        ConnectionFailedError: The new database could not be reached.
    """
    ec2 = cloud.require("ec2")
    rds = cloud.require("rds")
    require_text(instance_class, "Instance class")
    log = operation_logger("launch_database", region=cloud.region, instance_class=instance_class)
    password = _random_password(DATABASE_PASSWORD_LENGTH, _DATABASE_PASSWORD_ALPHABET)

    try:
        cloud.security_group_database = ensure_security_group(ec2, DATABASE_SECURITY_GROUP, DATABASE_PORT)
        rds.create_db_instance(
            DBName=DATABASE_NAME,
            DBInstanceIdentifier=DATABASE_IDENTIFIER,
            DBInstanceClass=instance_class,
            Engine=DATABASE_ENGINE,
            EngineVersion=DATABASE_ENGINE_VERSION,
            MasterUsername=DATABASE_MASTER_USER,
            MasterUserPassword=password,
            AvailabilityZone=f"{cloud.region}a",
            MultiAZ=False,
            BackupRetentionPeriod=0,
            PubliclyAccessible=True,
            VpcSecurityGroupIds=[cloud.security_group_database],
            AllocatedStorage=DATABASE_STORAGE_GB,
        )
    except _AWS_ERRORS as exc:
        raise InfrastructureError(f"RDS database could not be launched: {exc}") from exc
    cloud.rds_identifier = DATABASE_IDENTIFIER
    log.info("orchestrator.launch_database.created", identifier=DATABASE_IDENTIFIER)

    host = _wait_for(
        lambda: _database_endpoint(rds, DATABASE_IDENTIFIER, log),
        poll_interval=poll_interval,
        timeout=timeout,
        what=f"RDS database {DATABASE_IDENTIFIER}",
    )
    log.info("orchestrator.launch_database.available", host=host)

    write_database_credentials(
        host,
        DATABASE_MASTER_USER,
        password,
        DATABASE_NAME,
        DATABASE_PORT,
        credentials_file=credentials_file,
    )
    cloud.rds_credential_section = f"{DATABASE_NAME} on {host}"

    db = open_database(cloud.rds_credential_section, credentials_file=credentials_file)
    try:
        metadata.create_all(db.engine)
    except sqlalchemy.exc.SQLAlchemyError as exc:
        raise InfrastructureError(f"ScrapeBot schema could not be installed on {host}: {exc}") from exc
    finally:
        close_database(db)

    log.info("orchestrator.launch_database.completed", credential_section=cloud.rds_credential_section)
    return cloud


def terminate_database(cloud: CloudConnection) -> CloudConnection:
    """Delete the RDS instance without a final snapshot."""
    rds = cloud.require("rds")
    if not cloud.rds_identifier:
        raise ValidationError("No RDS database set. Maybe it was not launched through launch_database?")
    log = operation_logger("terminate_database", identifier=cloud.rds_identifier)

    try:
        rds.delete_db_instance(DBInstanceIdentifier=cloud.rds_identifier, SkipFinalSnapshot=True)
    except _AWS_ERRORS as exc:
        raise InfrastructureError(f"RDS database {cloud.rds_identifier} could not be terminated: {exc}") from exc

    cloud.rds_identifier = None
    log.info("orchestrator.terminate_database.completed")
    return cloud


# ---------------------------------------------------------------------------
# Storage (S3)
# ---------------------------------------------------------------------------


def _bucket_name() -> str:
    chars = [secrets.choice(string.ascii_lowercase) for _ in range(8)]
    chars += [secrets.choice(string.digits) for _ in range(8)]
    random.SystemRandom().shuffle(chars)
    return "s3b-" + "".join(chars) + "r"


def launch_storage(cloud: CloudConnection) -> CloudConnection:
    """Create a randomly named bucket in the connection's region."""
    s3 = cloud.require("s3")
    bucket = _bucket_name()
    log = operation_logger("launch_storage", region=cloud.region, bucket=bucket)

    options: dict[str, Any] = {"Bucket": bucket}
    # us-east-1 is the default location and must not be named explicitly.
    if cloud.region != "us-east-1":
        options["CreateBucketConfiguration"] = {"LocationConstraint": cloud.region}
    try:
        s3.create_bucket(**options)
    except _AWS_ERRORS as exc:
        raise InfrastructureError(f"S3 bucket could not be created: {exc}") from exc

    cloud.s3_bucket = bucket
    log.info("orchestrator.launch_storage.completed")
    return cloud


def terminate_storage(cloud: CloudConnection) -> CloudConnection:
    """Delete the bucket. It has to be empty."""
    s3 = cloud.require("s3")
    if not cloud.s3_bucket:
        raise ValidationError("No S3 bucket set. Maybe it was not launched through launch_storage?")
    log = operation_logger("terminate_storage", bucket=cloud.s3_bucket)

    try:
        s3.delete_bucket(Bucket=cloud.s3_bucket)
    except _AWS_ERRORS as exc:
        raise InfrastructureError(f"S3 bucket {cloud.s3_bucket} could not be deleted: {exc}") from exc

    cloud.s3_bucket = None
    log.info("orchestrator.terminate_storage.completed")
    return cloud


# ---------------------------------------------------------------------------
# Instances (EC2)
# ---------------------------------------------------------------------------


def _instance_host(ec2: Any, instance_id: str, log: Any) -> Optional[str]:
    try:
        reservations = ec2.describe_instances(InstanceIds=[instance_id])["Reservations"]
    except ClientError as exc:
        log.debug("orchestrator.launch_instance.not_visible", error=str(exc))
        return None
    if not reservations or not reservations[0].get("Instances"):
        return None
    instance = reservations[0]["Instances"][0]
    if (instance.get("State") or {}).get("Name") != "running":
        return None
    return instance.get("PublicDnsName") or None


def _launch_once(
    cloud: CloudConnection,
    ec2: Any,
    log: Any,
    *,
    owner_email: str,
    credential_section: str,
    credentials_file: Optional[PathLike],
    instance_type: str,
    image: str,
    image_username: str,
    browser_useragent: str,
    browser_language: str,
    browser_width: int,
    browser_height: int,
    poll_interval: float,
    boot_timeout: Optional[float],
) -> Optional[Ec2InstanceRecord]:
    """Run one launch attempt. Returns None if the scraper install failed."""
    try:
        launched = ec2.run_instances(
            ImageId=image,
            InstanceType=instance_type,
            KeyName=cloud.keypair_name,
            MinCount=1,
            MaxCount=1,
            SecurityGroupIds=[cloud.security_group_instance],
        )["Instances"][0]
    except _AWS_ERRORS as exc:
        raise InfrastructureError(f"EC2 instance could not be launched: {exc}") from exc
    instance_id = launched["InstanceId"]
    log = log.bind(instance_aws_id=instance_id)
    log.info("orchestrator.launch_instance.started")

    host = _wait_for(
        lambda: _instance_host(ec2, instance_id, log),
        poll_interval=poll_interval,
        timeout=boot_timeout,
        what=f"EC2 instance {instance_id}",
    )
    log = log.bind(host=host)
    ssh_failed = f"New EC2 instance launched ({host}) but SSH connection failed. {AWS_CONSOLE_HINT}"
    key_file = cloud.credentials.ssh_private

    try:
        ssh = SshSession(host, image_username, key_file).connect(attempts=SSH_FIRST_ATTEMPTS)
    except InfrastructureError as exc:
        raise InfrastructureError(ssh_failed) from exc
    with ssh:
        for command in SYSTEM_UPDATE_COMMANDS:
            status, stderr = _run(ssh, command)
            if status != 0:
                report_failure(
                    log,
                    "orchestrator.launch_instance.update_failed",
                    f"New EC2 instance ({host}) showed some minor errors during setup: {command}: {stderr}",
                    stacklevel=4,
                    command=command,
                    exit_status=status,
                )

    try:
        ec2.reboot_instances(InstanceIds=[instance_id])
    except _AWS_ERRORS as exc:
        raise InfrastructureError(f"EC2 instance {instance_id} could not be rebooted: {exc}. {AWS_CONSOLE_HINT}") from exc
    time.sleep(REBOOT_WAIT_SECONDS)

    try:
        ssh = SshSession(host, image_username, key_file).connect(
            attempts=SSH_RECONNECT_ATTEMPTS,
            backoff=SSH_RECONNECT_BACKOFF_SECONDS,
        )
    except InfrastructureError as exc:
        raise InfrastructureError(ssh_failed) from exc

    with ssh:
        for command in SCRAPER_INSTALL_COMMANDS:
            status, stderr = _run(ssh, command)
            if status != 0:
                ssh.close()
                terminate_instance(cloud, instance_id)
                report_failure(
                    log,
                    "orchestrator.launch_instance.install_failed",
                    f"New EC2 instance launched ({host}) but setup crashed: {command}: {stderr} "
                    "Instance has thus been terminated.",
                    stacklevel=4,
                    command=command,
                    exit_status=status,
                )
                return None
        log.info("orchestrator.launch_instance.installed")

        db = open_database(credential_section, credentials_file=credentials_file)
        try:
            instance_uid = add_instance(
                db,
                host,
                owner_email,
                f"{browser_width}x{browser_height}, {browser_language}, {cloud.region}, launched via scrapebot-client",
            )
            config_text = render_instance_config(
                db.credentials,
                db.db_timeout,
                cloud.credentials,
                cloud.s3_bucket,
                host,
                browser_useragent=browser_useragent,
                browser_language=browser_language,
                browser_width=browser_width,
                browser_height=browser_height,
            )
        finally:
            close_database(db)
        if instance_uid is None:
            raise InfrastructureError(
                f"New EC2 instance launched ({host}) but it could not be registered in the database. {AWS_CONSOLE_HINT}"
            )

        try:
            ssh.upload(config_text.encode("utf-8"), REMOTE_CONFIG_PATH)
        except _SSH_ERRORS as exc:
            raise InfrastructureError(
                f"Config file could not be uploaded to newly launched EC2 instance ({host}). "
                "Please connect manually to the EC2 instance and run: python3 ~/ScrapeBot/setup.py"
            ) from exc

        try:
            status, _, stderr = ssh.exec(CRON_COMMAND)
        except _SSH_ERRORS as exc:
            status, stderr = -1, str(exc)
        if status != 0:
            raise InfrastructureError(
                f"Cronjob could not be started on newly launched EC2 instance ({host}): {stderr} "
                "Please connect manually to the EC2 instance and run: python3 ~/ScrapeBot/setup.py"
            )

    return Ec2InstanceRecord(
        instance_scrapebot_uid=instance_uid,
        instance_aws_id=instance_id,
        host=host,
        created=launched.get("LaunchTime"),
        instance_type=instance_type,
        instance_username=image_username,
        instance_region=cloud.region,
        browser_useragent=browser_useragent,
        browser_language=browser_language,
        browser_width=browser_width,
        browser_height=browser_height,
    )


def launch_instance(
    cloud: CloudConnection,
    owner_email: str,
    credential_section: Optional[str] = None,
    instance_type: str = "t2.micro",
    image: Optional[str] = None,
    image_username: str = "ubuntu",
    browser_useragent: str = DEFAULT_USERAGENT,
    browser_language: str = "de-de",
    browser_width: int = 1920,
    browser_height: int = 1080,
    *,
    poll_interval: float = constants.POLL_INTERVAL_SECONDS,
    boot_timeout: Optional[float] = None,
    max_attempts: int = 3,
    credentials_file: Optional[PathLike] = None,
) -> CloudConnection:
    """Launch an EC2 instance, set it up as a ScrapeBot worker and register it.

    The instance is registered as a ScrapeBot instance named after its public
    host name, owned by ``owner_email``, in the database behind
    ``credential_section``. It receives a ``config.ini`` for that database
    and a cron job running the scraper every two minutes. On success a row is
    appended to ``cloud.ec2_instances``.

    Args:
        cloud:              Connection with an EC2 client.
        owner_email:        Owner of the new ScrapeBot instance.
        credential_section: Database credentials section; defaults to the
                            database launched through ``launch_database``.
        instance_type:      EC2 instance type.
        image:              AMI; defaults to ``default_machine_image(region)``.
        image_username:     Login user of the AMI.
        browser_*:          Browser settings written to ``config.ini``.
        poll_interval:      Seconds between boot probes.
        boot_timeout:       Give up waiting for boot after this many seconds.
        max_attempts:       Launches to try when installing the scraper fails.
        credentials_file:   Override for ``constants.CREDENTIALS_FILE``.

    Raises:
        ValidationError:     Missing client, section, owner or image, or an
                             unreadable SSH private key.
        InfrastructureError: A fatal provisioning failure, or all attempts
                             failed during the scraper install.
    """
    ec2 = cloud.require("ec2")
    credential_section = credential_section or cloud.rds_credential_section
    if not isinstance(credential_section, str) or not credential_section:
        raise ValidationError("Credential section for open_database() needs to be given as character string.")
    require_text(owner_email, "A new ScrapeBot instance requires an owner; owner_email")
    image = image or default_machine_image(cloud.region)
    if image is None:
        raise ValidationError(f"No default machine image known for region {cloud.region}; pass image explicitly.")
    if not os.access(cloud.credentials.ssh_private, os.R_OK):
        raise ValidationError(f"SSH private key file {cloud.credentials.ssh_private} not readable.")
    browser_width = as_id(browser_width, "browser_width")
    browser_height = as_id(browser_height, "browser_height")
    max_attempts = as_id(max_attempts, "max_attempts")
    if max_attempts < 1:
        raise ValidationError("max_attempts needs to be at least 1.")
    log = operation_logger("launch_instance", region=cloud.region, instance_type=instance_type)

    try:
        cloud.security_group_instance = ensure_security_group(ec2, INSTANCE_SECURITY_GROUP, SSH_PORT)
    except _AWS_ERRORS as exc:
        raise InfrastructureError(f"Security group {INSTANCE_SECURITY_GROUP} could not be set up: {exc}") from exc

    for attempt in range(1, max_attempts + 1):
        log.info("orchestrator.launch_instance.attempt", attempt=attempt, max_attempts=max_attempts)
        record = _launch_once(
            cloud,
            ec2,
            log,
            owner_email=owner_email,
            credential_section=credential_section,
            credentials_file=credentials_file,
            instance_type=instance_type,
            image=image,
            image_username=image_username,
            browser_useragent=browser_useragent,
            browser_language=browser_language,
            browser_width=browser_width,
            browser_height=browser_height,
            poll_interval=poll_interval,
            boot_timeout=boot_timeout,
        )
        if record is not None:
            cloud.ec2_instances.append(record)
            log.info(
                "orchestrator.launch_instance.completed",
                instance_aws_id=record.instance_aws_id,
                instance_scrapebot_uid=record.instance_scrapebot_uid,
            )
            return cloud

    raise InfrastructureError(
        f"Setting up the scraper failed on all {max_attempts} launched EC2 instances; each was terminated."
    )


def terminate_instance(cloud: CloudConnection, instance_id: str) -> CloudConnection:
    """Terminate an EC2 instance and drop it from ``cloud.ec2_instances``."""
    ec2 = cloud.require("ec2")
    require_text(instance_id, "AWS instance ID")
    log = operation_logger("terminate_instance", instance_aws_id=instance_id)

    try:
        ec2.terminate_instances(InstanceIds=[instance_id])
    except _AWS_ERRORS as exc:
        raise InfrastructureError(f"EC2 instance {instance_id} could not be terminated: {exc}. {AWS_CONSOLE_HINT}") from exc

    cloud.ec2_instances = [record for record in cloud.ec2_instances if record.instance_aws_id != instance_id]
    log.info("orchestrator.terminate_instance.completed")
    return cloud
