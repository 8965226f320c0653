"""SQLAlchemy Core table definitions for the ScrapeBot central database.

The schema is owned by the external ScrapeBot scraper; this package only
projects and mutates it. Column names, types, enum value sets and indexes
are therefore reproduced exactly, including the MyISAM/utf8 table options.
``metadata.create_all(engine)`` is what installs the schema on a freshly
provisioned database.

No ORM declarative mapping is used. Result rows are turned into pandas
DataFrames by the operations layer.

Tables:
    data             — scraped values, one row per step output
    instance         — scraping worker machines
    log              — per-run log lines
    recipe           — scraping task definitions
    recipe2instance  — which recipe runs on which instance
    recipestep       — ordered steps of a recipe
    recipestepitem   — candidate values for random-item steps
    run              — one execution of a recipe on an instance
    user             — owners (unique email)
    user2instance    — sharing of instances
    user2recipe      — sharing of recipes
"""

from __future__ import annotations

import sqlalchemy as sa

from scrapebot.domain.models import LogType, RunStatus, StepType

metadata: sa.MetaData = sa.MetaData()

_TABLE_OPTIONS = {"mysql_engine": "MyISAM", "mysql_charset": "utf8"}


def _uid() -> sa.Column:
    return sa.Column("uid", sa.Integer, primary_key=True, autoincrement=True)


def _created() -> sa.Column:
    return sa.Column("created", sa.DateTime, nullable=True)


# ---------------------------------------------------------------------------
# data
# ---------------------------------------------------------------------------

data_table: sa.Table = sa.Table(
    "data",
    metadata,
    _uid(),
    _created(),
    sa.Column("value", sa.Text, nullable=True),
    sa.Column("run_uid", sa.Integer, nullable=True, index=True),
    sa.Column("step_uid", sa.Integer, nullable=True, index=True),
    **_TABLE_OPTIONS,
)

# ---------------------------------------------------------------------------
# instance
# ---------------------------------------------------------------------------

instance_table: sa.Table = sa.Table(
    "instance",
    metadata,
    _uid(),
    _created(),
    sa.Column("name", sa.String(256), nullable=True),
    sa.Column("description", sa.Text, nullable=True),
    sa.Column("owner_uid", sa.Integer, nullable=True, index=True),
    **_TABLE_OPTIONS,
)

# ---------------------------------------------------------------------------
# log
# ---------------------------------------------------------------------------

log_table: sa.Table = sa.Table(
    "log",
    metadata,
    _uid(),
    _created(),
    sa.Column(
        "type",
        sa.Enum(*[member.value for member in LogType], name="log_type"),
        nullable=True,
    ),
    sa.Column("message", sa.Text, nullable=True),
    sa.Column("run_uid", sa.Integer, nullable=True, index=True),
    **_TABLE_OPTIONS,
)

# ---------------------------------------------------------------------------
# recipe
# ---------------------------------------------------------------------------

recipe_table: sa.Table = sa.Table(
    "recipe",
    metadata,
    _uid(),
    _created(),
    sa.Column("name", sa.String(256), nullable=True),
    sa.Column("description", sa.Text, nullable=True),
    # tinyint(1) on MySQL
    sa.Column("active", sa.Boolean, nullable=True),
    sa.Column("cookies", sa.Boolean, nullable=True),
    # "interval" is a reserved word; SQLAlchemy quotes it.
    sa.Column("interval", sa.Integer, nullable=True),
    sa.Column("owner_uid", sa.Integer, nullable=True, index=True),
    **_TABLE_OPTIONS,
)

# ---------------------------------------------------------------------------
# recipe2instance
# ---------------------------------------------------------------------------

recipe2instance_table: sa.Table = sa.Table(
    "recipe2instance",
    metadata,
    _uid(),
    _created(),
    sa.Column("recipe_uid", sa.Integer, nullable=True, index=True),
    sa.Column("instance_uid", sa.Integer, nullable=True, index=True),
    sa.Column("cookies_from_last_run", sa.Text, nullable=True),
    **_TABLE_OPTIONS,
)

# ---------------------------------------------------------------------------
# recipestep
# ---------------------------------------------------------------------------

recipestep_table: sa.Table = sa.Table(
    "recipestep",
    metadata,
    _uid(),
    _created(),
    sa.Column("sort", sa.Integer, nullable=True),
    sa.Column(
        "type",
        sa.Enum(*[member.value for member in StepType], name="step_type"),
        nullable=True,
    ),
    sa.Column("value", sa.Text, nullable=True),
    sa.Column("use_random_item_instead_of_value", sa.Boolean, nullable=True),
    # int(11), not tinyint(1), in the external schema
    sa.Column(
        "use_data_item_instead_of_value",
        sa.Integer,
        nullable=True,
        server_default=sa.text("'0'"),
    ),
    sa.Column("active", sa.Boolean, nullable=True),
    sa.Column("recipe_uid", sa.Integer, nullable=True, index=True),
    **_TABLE_OPTIONS,
)

# ---------------------------------------------------------------------------
# recipestepitem
# ---------------------------------------------------------------------------

recipestepitem_table: sa.Table = sa.Table(
    "recipestepitem",
    metadata,
    _uid(),
    _created(),
    sa.Column("value", sa.String(256), nullable=True),
    sa.Column("step_uid", sa.Integer, nullable=True, index=True),
    **_TABLE_OPTIONS,
)

# ---------------------------------------------------------------------------
# run
# ---------------------------------------------------------------------------

run_table: sa.Table = sa.Table(
    "run",
    metadata,
    _uid(),
    _created(),
    sa.Column("runtime", sa.Integer, nullable=True),
    sa.Column("instance_uid", sa.Integer, nullable=True, index=True),
    sa.Column("recipe_uid", sa.Integer, nullable=True, index=True),
    sa.Column(
        "status",
        sa.Enum(*[member.value for member in RunStatus], name="run_status"),
        nullable=True,
    ),
    **_TABLE_OPTIONS,
)

# ---------------------------------------------------------------------------
# user
# ---------------------------------------------------------------------------

user_table: sa.Table = sa.Table(
    "user",
    metadata,
    _uid(),
    _created(),
    sa.Column("email", sa.String(150), nullable=True),
    sa.Column("name", sa.String(80), nullable=True),
    # "sha512$<salt>$<hex digest>"
    sa.Column("password", sa.String(128), nullable=True),
    sa.Column("active", sa.Boolean, nullable=True),
    sa.UniqueConstraint("email", name="email"),
    **_TABLE_OPTIONS,
)

# ---------------------------------------------------------------------------
# user2instance / user2recipe
# ---------------------------------------------------------------------------

user2instance_table: sa.Table = sa.Table(
    "user2instance",
    metadata,
    _uid(),
    _created(),
    sa.Column("user_uid", sa.Integer, nullable=True, index=True),
    sa.Column("instance_uid", sa.Integer, nullable=True, index=True),
    sa.Column("allowed_to_edit", sa.Boolean, nullable=True),
    **_TABLE_OPTIONS,
)

user2recipe_table: sa.Table = sa.Table(
    "user2recipe",
    metadata,
    _uid(),
    _created(),
    sa.Column("user_uid", sa.Integer, nullable=True, index=True),
    sa.Column("recipe_uid", sa.Integer, nullable=True, index=True),
    sa.Column("allowed_to_edit", sa.Boolean, nullable=True),
    **_TABLE_OPTIONS,
)
