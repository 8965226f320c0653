"""scrapebot-client: research access to a ScrapeBot installation.

    import scrapebot

    db = scrapebot.open_database("scrapebot on localhost")
    recipes = scrapebot.get_recipes(db, include_inactive=True)
    runs = scrapebot.get_runs(db, recipe_filter=recipes["uid"].tolist())
    scrapebot.close_database(db)

Everything public is re-exported here. Call ``configure_logging()`` once in
scripts and notebooks to see the structured log output.
"""

from scrapebot.config.credentials import (
    read_aws_credentials,
    read_database_credentials,
    write_aws_credentials,
    write_database_credentials,
)
from scrapebot.config.logging_setup import configure_logging
from scrapebot.domain import (
    AwsCredentials,
    ConnectionFailedError,
    CredentialsError,
    DatabaseCredentials,
    Ec2InstanceRecord,
    InfrastructureError,
    LogType,
    RecipeDocument,
    RecipeStepDocument,
    RunStatus,
    ScrapeBotError,
    ScrapeBotWarning,
    StepType,
    ValidationError,
)
from scrapebot.infra.cloud import (
    CloudConnection,
    change_cloud_region,
    load_cloud_connection,
    open_cloud_connection,
    save_cloud_connection,
)
from scrapebot.infra.db import DatabaseConnection, close_database, open_database
from scrapebot.infra.ssh import SshSession
from scrapebot.operations import (
    activate_recipe,
    activate_recipe_step,
    add_instance,
    add_recipe,
    add_recipe_step,
    collect_screenshots,
    combine_recipe_with_instance,
    deactivate_recipe,
    deactivate_recipe_step,
    default_machine_image,
    export_recipe,
    get_instances,
    get_or_create_user,
    get_recipe_steps,
    get_recipes,
    get_run_data,
    get_run_log,
    get_runs,
    import_recipe,
    launch_database,
    launch_instance,
    launch_storage,
    remove_recipe_from_instance,
    render_instance_config,
    terminate_database,
    terminate_instance,
    terminate_storage,
)

__version__ = "0.1.0"

__all__ = [
    # Connections
    "DatabaseConnection",
    "open_database",
    "close_database",
    "CloudConnection",
    "open_cloud_connection",
    "change_cloud_region",
    "save_cloud_connection",
    "load_cloud_connection",
    "SshSession",
    # Credentials
    "read_database_credentials",
    "write_database_credentials",
    "read_aws_credentials",
    "write_aws_credentials",
    # Logging
    "configure_logging",
    # Readers
    "get_instances",
    "get_recipes",
    "get_recipe_steps",
    "get_runs",
    "get_run_log",
    "get_run_data",
    # Writers
    "get_or_create_user",
    "add_instance",
    "add_recipe",
    "add_recipe_step",
    "activate_recipe",
    "deactivate_recipe",
    "activate_recipe_step",
    "deactivate_recipe_step",
    "combine_recipe_with_instance",
    "remove_recipe_from_instance",
    # Interchange and screenshots
    "export_recipe",
    "import_recipe",
    "collect_screenshots",
    # Orchestration
    "default_machine_image",
    "launch_database",
    "terminate_database",
    "launch_storage",
    "terminate_storage",
    "launch_instance",
    "terminate_instance",
    "render_instance_config",
    # Models
    "AwsCredentials",
    "DatabaseCredentials",
    "Ec2InstanceRecord",
    "LogType",
    "RecipeDocument",
    "RecipeStepDocument",
    "RunStatus",
    "StepType",
    # Exceptions
    "ScrapeBotError",
    "ValidationError",
    "CredentialsError",
    "ConnectionFailedError",
    "InfrastructureError",
    "ScrapeBotWarning",
]
