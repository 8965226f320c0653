"""Domain layer public API.

Import domain types from here rather than from scrapebot.domain.models directly.
This keeps the internal module structure free to change without breaking callers.
"""

from scrapebot.domain.exceptions import (
    ConnectionFailedError,
    CredentialsError,
    InfrastructureError,
    ScrapeBotError,
    ScrapeBotWarning,
    ValidationError,
)
from scrapebot.domain.models import (
    AwsCredentials,
    DatabaseCredentials,
    Ec2InstanceRecord,
    LogType,
    RecipeDocument,
    RecipeStepDocument,
    RunStatus,
    StepType,
)

__all__ = [
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
