"""Database repository layer.

Repositories provide typed, synchronous methods for reading and writing the
ScrapeBot schema via SQLAlchemy Core. They do not log and do not contain
business logic; they are pure data access objects.

Responsibilities:
  - Construct and execute SQL statements. Every statement is parameterised;
    identifier filters are bound ``IN`` lists, never interpolated text.
  - Map result rows to pandas DataFrames of the shapes in
    ``scrapebot.domain.frames``.
  - Let SQLAlchemy exceptions propagate to callers (operations), which then
    report them as warnings or raise.

What repositories do NOT do:
  - They do not catch exceptions.
  - They do not log.
  - They do not validate arguments (operations do that first).
  - They do not span transactions across methods: each method is one
    transaction via ``DatabaseConnection.begin()``.

Classes:
    UserRepository             — find_active_uid(), create()
    InstanceRepository         — summary(), exists(), create()
    RecipeRepository           — summary(), get(), get_active(), set_active(), create()
    RecipeStepRepository       — list(), count(), get_active(), set_active(), create()
    RecipeInstanceRepository   — count(), link(), unlink_one()
    RunRepository              — list(), log(), data()
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Optional, Sequence

import pandas as pd
import sqlalchemy as sa

from scrapebot.config import constants
from scrapebot.domain.frames import (
    INSTANCE_COLUMNS,
    LOG_COLUMNS,
    RECIPE_COLUMNS,
    RECIPE_STEP_COLUMNS,
    RUN_COLUMNS,
    Schema,
    concat_frames,
    to_frame,
)
from scrapebot.infra.db import DatabaseConnection
from scrapebot.infra.tables import (
    data_table,
    instance_table,
    log_table,
    recipe2instance_table,
    recipe_table,
    recipestep_table,
    recipestepitem_table,
    run_table,
    user_table,
)

#: Shape of raw ``data`` rows before run metadata is joined back on.
DATA_ROW_COLUMNS: Schema = {
    "created": "datetime64[ns]",
    "run_uid": "Int64",
    "step_uid": "Int64",
    "value": "object",
}


def _fetch_chunked(
    conn: sa.Connection,
    stmt: sa.Select,
    schema: Schema,
    chunk_size: Optional[int] = None,
) -> pd.DataFrame:
    """Execute ``stmt`` and assemble the result from fixed-size chunks.

    Server-side cursors are requested where the dialect has them so that
    peak memory stays bounded by one chunk plus the frames built so far.
    """
    chunk_size = chunk_size or constants.FETCH_CHUNK_SIZE
    options: dict[str, Any] = {}
    if conn.dialect.supports_server_side_cursors:
        options["stream_results"] = True
    result = conn.execute(stmt, execution_options=options)
    frames = [to_frame(chunk, schema) for chunk in result.partitions(chunk_size)]
    return concat_frames(frames, schema)


# ---------------------------------------------------------------------------
# UserRepository
# ---------------------------------------------------------------------------


class UserRepository:
    """Data access layer for the ``user`` table."""

    def __init__(self, db: DatabaseConnection) -> None:
        self._db = db

    def find_active_uid(self, email: str) -> Optional[int]:
        """Return the uid of the active user with exactly this email, if any."""
        stmt = (
            sa.select(user_table.c.uid)
            .where(user_table.c.email == email)
            .where(user_table.c.active.is_(True))
            .limit(1)
        )
        with self._db.begin() as conn:
            uid = conn.execute(stmt).scalar_one_or_none()
        return int(uid) if uid is not None else None

    def create(self, email: str, password_hash: str, created: datetime) -> int:
        """Insert an active user named after their email.

        Raises:
            sqlalchemy.exc.IntegrityError: The email already exists.
        """
        stmt = sa.insert(user_table).values(
            created=created,
            email=email,
            name=email,
            password=password_hash,
            active=True,
        )
        with self._db.begin() as conn:
            result = conn.execute(stmt)
        return int(result.inserted_primary_key[0])


# ---------------------------------------------------------------------------
# InstanceRepository
# ---------------------------------------------------------------------------


class InstanceRepository:
    """Data access layer for the ``instance`` table."""

    def __init__(self, db: DatabaseConnection) -> None:
        self._db = db

    def summary(self) -> pd.DataFrame:
        """Return all instances with run counts and latest run, ordered by name."""
        run = run_table
        stmt = (
            sa.select(
                instance_table.c.uid,
                instance_table.c.name,
                instance_table.c.created,
                instance_table.c.description,
                sa.func.count(run.c.uid).label("runs_count"),
                sa.func.max(run.c.created).label("runs_latest"),
            )
            .select_from(
                instance_table.outerjoin(run, run.c.instance_uid == instance_table.c.uid)
            )
            .group_by(
                instance_table.c.uid,
                instance_table.c.name,
                instance_table.c.created,
                instance_table.c.description,
            )
            .order_by(instance_table.c.name.asc(), instance_table.c.uid.asc())
        )
        with self._db.begin() as conn:
            rows = conn.execute(stmt).all()
        return to_frame(rows, INSTANCE_COLUMNS)

    def exists(self, uid: int) -> bool:
        stmt = sa.select(sa.func.count()).select_from(instance_table).where(instance_table.c.uid == uid)
        with self._db.begin() as conn:
            return conn.execute(stmt).scalar_one() > 0

    def create(self, name: str, description: str, owner_uid: int, created: datetime) -> int:
        stmt = sa.insert(instance_table).values(
            name=name,
            created=created,
            description=description,
            owner_uid=owner_uid,
        )
        with self._db.begin() as conn:
            result = conn.execute(stmt)
        return int(result.inserted_primary_key[0])


# ---------------------------------------------------------------------------
# RecipeRepository
# ---------------------------------------------------------------------------


class RecipeRepository:
    """Data access layer for the ``recipe`` table."""

    def __init__(self, db: DatabaseConnection) -> None:
        self._db = db

    def summary(
        self,
        instance_ids: Optional[Sequence[int]] = None,
        include_inactive: bool = False,
    ) -> pd.DataFrame:
        """Return recipes with run counts and latest run, ordered by name.

        Args:
            instance_ids:     If provided, only recipes linked to at least one
                              of these instances via ``recipe2instance``.
            include_inactive: Also return recipes whose ``active`` flag is off.
        """
        run = run_table
        stmt = (
            sa.select(
                recipe_table.c.uid,
                recipe_table.c.name,
                recipe_table.c.created,
                recipe_table.c.description,
                recipe_table.c.active,
                recipe_table.c.cookies,
                recipe_table.c.interval,
                sa.func.count(run.c.uid).label("runs_count"),
                sa.func.max(run.c.created).label("runs_latest"),
            )
            .select_from(recipe_table.outerjoin(run, run.c.recipe_uid == recipe_table.c.uid))
            .group_by(
                recipe_table.c.uid,
                recipe_table.c.name,
                recipe_table.c.created,
                recipe_table.c.description,
                recipe_table.c.active,
                recipe_table.c.cookies,
                recipe_table.c.interval,
            )
            .order_by(recipe_table.c.name.asc(), recipe_table.c.uid.asc())
        )

        if not include_inactive:
            stmt = stmt.where(recipe_table.c.active.is_(True))

        if instance_ids is not None:
            linked = sa.select(recipe2instance_table.c.recipe_uid).where(
                recipe2instance_table.c.instance_uid.in_(instance_ids)
            )
            stmt = stmt.where(recipe_table.c.uid.in_(linked))

        with self._db.begin() as conn:
            rows = conn.execute(stmt).all()
        return to_frame(rows, RECIPE_COLUMNS)

    def get(self, uid: int) -> Optional[sa.Row]:
        """Return the full ``recipe`` row, or None."""
        stmt = sa.select(recipe_table).where(recipe_table.c.uid == uid)
        with self._db.begin() as conn:
            return conn.execute(stmt).first()

    def get_active(self, uid: int) -> Optional[bool]:
        """Return the active flag of a recipe, or None if it does not exist."""
        stmt = sa.select(recipe_table.c.active).where(recipe_table.c.uid == uid)
        with self._db.begin() as conn:
            row = conn.execute(stmt).first()
        return None if row is None else bool(row.active)

    def set_active(self, uid: int, active: bool) -> int:
        stmt = sa.update(recipe_table).where(recipe_table.c.uid == uid).values(active=active)
        with self._db.begin() as conn:
            return conn.execute(stmt).rowcount

    def create(
        self,
        name: str,
        description: str,
        active: bool,
        cookies: bool,
        interval: int,
        owner_uid: int,
        created: datetime,
    ) -> int:
        stmt = sa.insert(recipe_table).values(
            name=name,
            created=created,
            description=description,
            active=active,
            cookies=cookies,
            interval=interval,
            owner_uid=owner_uid,
        )
        with self._db.begin() as conn:
            result = conn.execute(stmt)
        return int(result.inserted_primary_key[0])


# ---------------------------------------------------------------------------
# RecipeStepRepository
# ---------------------------------------------------------------------------


class RecipeStepRepository:
    """Data access layer for ``recipestep`` and ``recipestepitem``."""

    def __init__(self, db: DatabaseConnection) -> None:
        self._db = db

    def list(self, recipe_ids: Sequence[int], include_inactive: bool = False) -> pd.DataFrame:
        """Return steps ordered by recipe, then ``sort``.

        Random-item steps carry their items (alphabetical) in ``random_items``;
        all other steps carry an empty list.
        """
        step = recipestep_table
        stmt = (
            sa.select(
                step.c.recipe_uid,
                step.c.uid,
                step.c.type,
                step.c.value,
                step.c.use_random_item_instead_of_value,
                step.c.use_data_item_instead_of_value,
                step.c.active,
            )
            .where(step.c.recipe_uid.in_(recipe_ids))
            .order_by(step.c.recipe_uid.asc(), step.c.sort.asc(), step.c.uid.asc())
        )
        if not include_inactive:
            stmt = stmt.where(step.c.active.is_(True))

        records = []
        with self._db.begin() as conn:
            for row in conn.execute(stmt).all():
                use_random_item = bool(row.use_random_item_instead_of_value)
                random_items: list[str] = []
                if use_random_item:
                    items_stmt = (
                        sa.select(recipestepitem_table.c.value)
                        .where(recipestepitem_table.c.step_uid == row.uid)
                        .order_by(recipestepitem_table.c.value.asc())
                    )
                    random_items = list(conn.execute(items_stmt).scalars().all())
                records.append(
                    (
                        row.recipe_uid,
                        row.uid,
                        row.type,
                        row.value,
                        use_random_item,
                        bool(row.use_data_item_instead_of_value),
                        row.active,
                        random_items,
                    )
                )
        return to_frame(records, RECIPE_STEP_COLUMNS)

    def count(self, recipe_uid: int) -> int:
        """Number of steps of a recipe, inactive ones included."""
        stmt = (
            sa.select(sa.func.count())
            .select_from(recipestep_table)
            .where(recipestep_table.c.recipe_uid == recipe_uid)
        )
        with self._db.begin() as conn:
            return int(conn.execute(stmt).scalar_one())

    def get_active(self, recipe_uid: int, step_uid: int) -> Optional[bool]:
        """Return the active flag of a step of a recipe, or None if absent."""
        stmt = (
            sa.select(recipestep_table.c.active)
            .where(recipestep_table.c.uid == step_uid)
            .where(recipestep_table.c.recipe_uid == recipe_uid)
        )
        with self._db.begin() as conn:
            row = conn.execute(stmt).first()
        return None if row is None else bool(row.active)

    def set_active(self, step_uid: int, active: bool) -> int:
        stmt = sa.update(recipestep_table).where(recipestep_table.c.uid == step_uid).values(active=active)
        with self._db.begin() as conn:
            return conn.execute(stmt).rowcount

    def create(
        self,
        recipe_uid: int,
        step_type: str,
        value: str,
        use_data_item: bool,
        active: bool,
        sort: int,
        random_items: Sequence[str],
        created: datetime,
    ) -> int:
        """Insert a step and its random items in one transaction.

        All rows share ``created``.
        """
        stmt = sa.insert(recipestep_table).values(
            created=created,
            sort=sort,
            active=active,
            type=step_type,
            value=value,
            use_random_item_instead_of_value=len(random_items) > 0,
            use_data_item_instead_of_value=int(use_data_item),
            recipe_uid=recipe_uid,
        )
        with self._db.begin() as conn:
            result = conn.execute(stmt)
            step_uid = int(result.inserted_primary_key[0])
            if random_items:
                conn.execute(
                    sa.insert(recipestepitem_table),
                    [
                        {"created": created, "value": item, "step_uid": step_uid}
                        for item in random_items
                    ],
                )
        return step_uid


# ---------------------------------------------------------------------------
# RecipeInstanceRepository
# ---------------------------------------------------------------------------


class RecipeInstanceRepository:
    """Data access layer for the ``recipe2instance`` join table."""

    def __init__(self, db: DatabaseConnection) -> None:
        self._db = db

    def _match(self, recipe_uid: int, instance_uid: int) -> sa.ColumnElement[bool]:
        return sa.and_(
            recipe2instance_table.c.recipe_uid == recipe_uid,
            recipe2instance_table.c.instance_uid == instance_uid,
        )

    def count(self, recipe_uid: int, instance_uid: int) -> int:
        stmt = (
            sa.select(sa.func.count())
            .select_from(recipe2instance_table)
            .where(self._match(recipe_uid, instance_uid))
        )
        with self._db.begin() as conn:
            return int(conn.execute(stmt).scalar_one())

    def link(self, recipe_uid: int, instance_uid: int, created: datetime) -> None:
        stmt = sa.insert(recipe2instance_table).values(
            created=created,
            recipe_uid=recipe_uid,
            instance_uid=instance_uid,
            cookies_from_last_run="{}",
        )
        with self._db.begin() as conn:
            conn.execute(stmt)

    def unlink_one(self, recipe_uid: int, instance_uid: int) -> int:
        """Delete at most one matching link row; return the number deleted."""
        with self._db.begin() as conn:
            uid = conn.execute(
                sa.select(recipe2instance_table.c.uid)
                .where(self._match(recipe_uid, instance_uid))
                .order_by(recipe2instance_table.c.uid.asc())
                .limit(1)
            ).scalar_one_or_none()
            if uid is None:
                return 0
            return conn.execute(
                sa.delete(recipe2instance_table).where(recipe2instance_table.c.uid == uid)
            ).rowcount


# ---------------------------------------------------------------------------
# RunRepository
# ---------------------------------------------------------------------------


class RunRepository:
    """Data access layer for ``run``, ``log`` and ``data``."""

    def __init__(self, db: DatabaseConnection) -> None:
        self._db = db

    def list(
        self,
        instance_ids: Optional[Sequence[int]] = None,
        recipe_ids: Optional[Sequence[int]] = None,
        run_ids: Optional[Sequence[int]] = None,
        status: Optional[str] = None,
    ) -> pd.DataFrame:
        """Return runs ordered by start time, fetched in chunks.

        Each filter that is None places no constraint.
        """
        stmt = sa.select(
            run_table.c.uid,
            run_table.c.recipe_uid,
            run_table.c.instance_uid,
            run_table.c.created.label("started"),
            run_table.c.runtime,
            run_table.c.status,
        ).order_by(run_table.c.created.asc(), run_table.c.uid.asc())

        if instance_ids is not None:
            stmt = stmt.where(run_table.c.instance_uid.in_(instance_ids))
        if recipe_ids is not None:
            stmt = stmt.where(run_table.c.recipe_uid.in_(recipe_ids))
        if run_ids is not None:
            stmt = stmt.where(run_table.c.uid.in_(run_ids))
        if status is not None:
            stmt = stmt.where(run_table.c.status == status)

        with self._db.begin() as conn:
            return _fetch_chunked(conn, stmt, RUN_COLUMNS)

    def log(self, run_ids: Sequence[int]) -> pd.DataFrame:
        """Return log entries ordered by run, creation time, then row id."""
        stmt = (
            sa.select(log_table.c.run_uid, log_table.c.created, log_table.c.type, log_table.c.message)
            .where(log_table.c.run_uid.in_(run_ids))
            .order_by(log_table.c.run_uid.asc(), log_table.c.created.asc(), log_table.c.uid.asc())
        )
        with self._db.begin() as conn:
            return _fetch_chunked(conn, stmt, LOG_COLUMNS)

    def data(self, run_ids: Sequence[int], step_ids: Optional[Sequence[int]] = None) -> pd.DataFrame:
        """Return raw data rows (``DATA_ROW_COLUMNS``) of the given runs."""
        stmt = (
            sa.select(data_table.c.created, data_table.c.run_uid, data_table.c.step_uid, data_table.c.value)
            .where(data_table.c.run_uid.in_(run_ids))
            .order_by(data_table.c.created.asc(), data_table.c.run_uid.asc(), data_table.c.uid.asc())
        )
        if step_ids is not None:
            stmt = stmt.where(data_table.c.step_uid.in_(step_ids))
        with self._db.begin() as conn:
            return _fetch_chunked(conn, stmt, DATA_ROW_COLUMNS)
