"""Domain models.

Pure data layer: no infrastructure or I/O.
Every other layer imports from here; this module imports nothing internal.

Pydantic v2 is used for:
  - Field validation at construction time (credentials, documents)
  - JSON (de)serialisation of recipe documents and saved cloud state

Enums mirror the ENUM columns of the external ScrapeBot schema. Their values
are load-bearing: the external scraper reads and writes exactly these strings.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class StepType(str, Enum):
    """Action kinds a recipe step can perform (``recipestep.type``)."""

    NAVIGATE = "navigate"
    FIND_BY_ID = "find_by_id"
    FIND_BY_NAME = "find_by_name"
    FIND_BY_CLASS = "find_by_class"
    FIND_BY_TAG = "find_by_tag"
    FIND_BY_LINK = "find_by_link"
    FIND_BY_LINK_PARTIAL = "find_by_link_partial"
    FIND_BY_CSS = "find_by_css"
    FIND_BY_XPATH = "find_by_xpath"
    RANDOM_SELECT = "random_select"
    SCROLL_TO = "scroll_to"
    PAUSE = "pause"
    CLICK = "click"
    WRITE = "write"
    WRITE_SLOWLY = "write_slowly"
    SUBMIT = "submit"
    GET_TEXT = "get_text"
    GET_TEXTS = "get_texts"
    GET_VALUE = "get_value"
    GET_VALUES = "get_values"
    GET_ATTRIBUTE = "get_attribute"
    GET_ATTRIBUTES = "get_attributes"
    GET_PAGETITLE = "get_pagetitle"
    GET_ELEMENT_COUNT = "get_element_count"
    GET_HTMLSOURCE = "get_htmlsource"
    LOG = "log"
    DATA = "data"
    POST_ALL_DATA = "post_all_data"
    POST_PREVIOUS_STEP_DATA = "post_previous_step_data"
    EXECUTE_JS = "execute_js"
    GO_BACK = "go_back"
    GO_FORWARD = "go_forward"
    UNSET_PRIOR_ELEMENT = "unset_prior_element"
    SCREENSHOT = "screenshot"
    SOMETIMES_SCREENSHOT = "sometimes_screenshot"
    ELEMENT_SCREENSHOT = "element_screenshot"


class RunStatus(str, Enum):
    """Outcome of one recipe execution (``run.status``)."""

    SUCCESS = "success"
    ERROR = "error"
    CONFIG_ERROR = "config_error"
    COMMAND_NOT_FOUND = "command_not_found"
    IN_PROGRESS = "in_progress"


class LogType(str, Enum):
    """Severity of a run log entry (``log.type``)."""

    INFO = "info"
    WARNING = "warning"
    ERROR = "error"


# ---------------------------------------------------------------------------
# Credentials
# ---------------------------------------------------------------------------


class DatabaseCredentials(BaseModel):
    """Everything needed to reach a ScrapeBot central database.

    ``port`` is None when the server listens on the MySQL default.
    """

    model_config = ConfigDict(frozen=True)

    host: str
    user: Optional[str] = None
    password: Optional[str] = None
    database: str = "scrapebot"
    port: Optional[int] = Field(default=None, gt=0)

    @property
    def section_name(self) -> str:
        """Credentials-file section these credentials are stored under."""
        return f"{self.database} on {self.host}"


class AwsCredentials(BaseModel):
    """IAM access key plus the SSH key pair used for launched instances."""

    model_config = ConfigDict(frozen=True)

    access_key_id: str
    secret_access_key: str
    ssh_public: Path
    ssh_private: Path


# ---------------------------------------------------------------------------
# Cloud inventory
# ---------------------------------------------------------------------------


class Ec2InstanceRecord(BaseModel):
    """One EC2 instance launched and registered as a ScrapeBot instance."""

    model_config = ConfigDict(frozen=True)

    instance_scrapebot_uid: Optional[int]
    instance_aws_id: str
    host: str
    created: Optional[datetime] = None
    instance_type: str
    instance_username: str
    instance_region: str
    browser_useragent: str
    browser_language: str
    browser_width: int
    browser_height: int


# ---------------------------------------------------------------------------
# Recipe interchange (.sbj)
# ---------------------------------------------------------------------------


class RecipeStepDocument(BaseModel):
    """A single step inside an exported recipe document."""

    model_config = ConfigDict(use_enum_values=True)

    sort: Optional[int] = None
    type: StepType
    value: str = ""
    active: bool = True
    use_random_item_instead_of_value: bool = False
    random_items: list[str] = Field(default_factory=list)
    use_data_item_instead_of_value: bool = False

    @field_validator("value", mode="before")
    @classmethod
    def _null_value_is_empty(cls, value: object) -> object:
        return "" if value is None else value

    @field_validator("random_items", mode="before")
    @classmethod
    def _normalise_random_items(cls, value: object) -> object:
        # Older exports write null for steps without random items and may
        # carry numbers instead of strings.
        if value is None:
            return []
        if isinstance(value, (list, tuple)):
            return [str(item) for item in value if item is not None]
        return value


class RecipeDocument(BaseModel):
    """A self-contained recipe export: metadata plus ordered steps."""

    model_config = ConfigDict(populate_by_name=True)

    comment: str = Field(default="", alias="_comment")
    name: str
    description: str = ""
    interval: int = 15
    cookies: bool = False
    active: bool = False
    steps: list[RecipeStepDocument] = Field(default_factory=list)

    @field_validator("description", mode="before")
    @classmethod
    def _null_description_is_empty(cls, value: object) -> object:
        return "" if value is None else value
