"""Entity readers.

Exposes:
  - get_instances()     all instances with run statistics
  - get_recipes()       recipes, optionally restricted to instances
  - get_recipe_steps()  ordered steps of recipes, with random items
  - get_runs()          runs of instances and/or recipes
  - get_run_log()       log lines of runs
  - get_run_data()      scraped values of successful runs

Every reader validates its arguments first and raises ValidationError on a
bad call. Once the arguments are accepted, a failing query never raises: the
failure is logged and reported as a ScrapeBotWarning, and the reader returns
an empty DataFrame with the usual columns and dtypes so that pipelines keep
running.
"""

from __future__ import annotations

from typing import Any, Optional

import pandas as pd
import sqlalchemy.exc

from scrapebot.config.reporting import operation_logger, report_failure
from scrapebot.domain.exceptions import ValidationError
from scrapebot.domain.frames import (
    DATA_COLUMNS,
    INSTANCE_COLUMNS,
    LOG_COLUMNS,
    RECIPE_COLUMNS,
    RECIPE_STEP_COLUMNS,
    RUN_COLUMNS,
    conform,
    empty_frame,
)
from scrapebot.domain.models import RunStatus
from scrapebot.infra.db import DatabaseConnection, require_open
from scrapebot.infra.repositories import (
    InstanceRepository,
    RecipeRepository,
    RecipeStepRepository,
    RunRepository,
)
from scrapebot.operations.validation import as_id_list, require_flag


def get_instances(connection: DatabaseConnection) -> pd.DataFrame:
    """Return all instances, ordered by name.

    Columns: uid, name, created, description, runs_count, runs_latest.
    Instances without runs have ``runs_count`` 0 and no ``runs_latest``.
    """
    db = require_open(connection)
    log = operation_logger("get_instances")

    try:
        instances = InstanceRepository(db).summary()
    except sqlalchemy.exc.SQLAlchemyError as exc:
        report_failure(log, "readers.get_instances.failed", "Instances could not be fetched.", exc)
        return empty_frame(INSTANCE_COLUMNS)

    log.debug("readers.get_instances.completed", rows_count=len(instances))
    return instances


def get_recipes(
    connection: DatabaseConnection,
    instance_filter: Any = None,
    include_inactive: bool = False,
) -> pd.DataFrame:
    """Return recipes, ordered by name.

    Args:
        connection:       Open database connection.
        instance_filter:  Instance uid or iterable of uids. When given, only
                          recipes linked to at least one of them are returned.
        include_inactive: Also return deactivated recipes.

    Returns:
        DataFrame with columns uid, name, created, description, active,
        cookies, interval, runs_count, runs_latest.

    Raises:
        ValidationError: Bad connection or filter.
    """
    db = require_open(connection)
    instance_ids = as_id_list(instance_filter, "instance_filter")
    require_flag(include_inactive, "include_inactive")
    log = operation_logger("get_recipes")

    try:
        recipes = RecipeRepository(db).summary(instance_ids=instance_ids, include_inactive=include_inactive)
    except sqlalchemy.exc.SQLAlchemyError as exc:
        report_failure(log, "readers.get_recipes.failed", "Recipes could not be fetched.", exc)
        return empty_frame(RECIPE_COLUMNS)

    log.debug("readers.get_recipes.completed", rows_count=len(recipes))
    return recipes


def get_recipe_steps(
    connection: DatabaseConnection,
    recipe_filter: Any,
    include_inactive: bool = False,
) -> pd.DataFrame:
    """Return the steps of one or more recipes.

    Steps are ordered by recipe, then by their ``sort`` position. Steps that
    pick a random item carry the candidate items, sorted alphabetically, in
    ``random_items``; every other step carries an empty list.

    Raises:
        ValidationError: Bad connection, or ``recipe_filter`` missing or not
            integer identifiers.
    """
    db = require_open(connection)
    recipe_ids = as_id_list(recipe_filter, "recipe_filter")
    if recipe_ids is None:
        raise ValidationError("recipe_filter needs to be given.")
    require_flag(include_inactive, "include_inactive")
    log = operation_logger("get_recipe_steps")

    try:
        steps = RecipeStepRepository(db).list(recipe_ids, include_inactive=include_inactive)
    except sqlalchemy.exc.SQLAlchemyError as exc:
        report_failure(log, "readers.get_recipe_steps.failed", "Recipe steps could not be fetched.", exc)
        return empty_frame(RECIPE_STEP_COLUMNS)

    log.debug("readers.get_recipe_steps.completed", rows_count=len(steps))
    return steps


def get_runs(
    connection: DatabaseConnection,
    instance_filter: Any = None,
    recipe_filter: Any = None,
) -> pd.DataFrame:
    """Return runs ordered by start time.

    At least one filter is required. Rows are fetched in chunks of
    ``constants.FETCH_CHUNK_SIZE``.

    Returns:
        DataFrame with columns uid, recipe_uid, instance_uid, started,
        runtime, status (categorical over the five run states).

    Raises:
        ValidationError: Bad connection or filters, or neither filter given.
    """
    db = require_open(connection)
    instance_ids = as_id_list(instance_filter, "instance_filter")
    recipe_ids = as_id_list(recipe_filter, "recipe_filter")
    if instance_ids is None and recipe_ids is None:
        raise ValidationError("Either instance_filter or recipe_filter (or both) need to be given.")
    log = operation_logger("get_runs")

    try:
        runs = RunRepository(db).list(instance_ids=instance_ids, recipe_ids=recipe_ids)
    except sqlalchemy.exc.SQLAlchemyError as exc:
        report_failure(log, "readers.get_runs.failed", "Runs could not be fetched.", exc)
        return empty_frame(RUN_COLUMNS)

    log.debug("readers.get_runs.completed", rows_count=len(runs))
    return runs


def get_run_log(connection: DatabaseConnection, run_filter: Any) -> pd.DataFrame:
    """Return the log lines of runs, ordered by run, time and insertion."""
    db = require_open(connection)
    run_ids = as_id_list(run_filter, "run_filter")
    if run_ids is None:
        raise ValidationError("run_filter needs to be given.")
    log = operation_logger("get_run_log")

    try:
        entries = RunRepository(db).log(run_ids)
    except sqlalchemy.exc.SQLAlchemyError as exc:
        report_failure(log, "readers.get_run_log.failed", "Run log could not be fetched.", exc)
        return empty_frame(LOG_COLUMNS)

    log.debug("readers.get_run_log.completed", rows_count=len(entries))
    return entries


def get_run_data(
    connection: DatabaseConnection,
    run_filter: Any = None,
    instance_filter: Any = None,
    recipe_filter: Any = None,
    step_filter: Any = None,
) -> pd.DataFrame:
    """Return data collected by successful runs.

    Runs are resolved first: directly by uid when only ``run_filter`` is
    given, otherwise by instance and/or recipe (further narrowed by
    ``run_filter`` if given). Only runs with status ``success`` are kept;
    data of any other run is never returned. Instance and recipe uids are
    joined back from the resolved runs.

    Args:
        connection:      Open database connection.
        run_filter:      Run uid(s).
        instance_filter: Instance uid(s).
        recipe_filter:   Recipe uid(s).
        step_filter:     Recipe step uid(s); restricts data rows only.

    Returns:
        DataFrame with columns created, run_uid, instance_uid, recipe_uid,
        step_uid, value, ordered by creation time.

    Raises:
        ValidationError: Bad connection or filters, or none of run, instance
            and recipe filter given.
    """
    db = require_open(connection)
    run_ids = as_id_list(run_filter, "run_filter")
    instance_ids = as_id_list(instance_filter, "instance_filter")
    recipe_ids = as_id_list(recipe_filter, "recipe_filter")
    step_ids = as_id_list(step_filter, "step_filter")
    if run_ids is None and instance_ids is None and recipe_ids is None:
        raise ValidationError(
            "Either run_filter or instance_filter or recipe_filter (or a combination thereof) need to be given."
        )
    log = operation_logger("get_run_data")
    repo = RunRepository(db)

    try:
        runs = repo.list(
            instance_ids=instance_ids,
            recipe_ids=recipe_ids,
            run_ids=run_ids,
            status=RunStatus.SUCCESS.value,
        )
    except sqlalchemy.exc.SQLAlchemyError as exc:
        report_failure(log, "readers.get_run_data.runs_failed", "Runs could not be fetched.", exc)
        return empty_frame(DATA_COLUMNS)

    if runs.empty:
        report_failure(
            log,
            "readers.get_run_data.no_runs",
            "No successful runs match your combined criteria of run, instance and recipe filter.",
        )
        return empty_frame(DATA_COLUMNS)

    try:
        data = repo.data(runs["uid"].astype(int).tolist(), step_ids=step_ids)
    except sqlalchemy.exc.SQLAlchemyError as exc:
        report_failure(log, "readers.get_run_data.failed", "Run data could not be fetched.", exc)
        return empty_frame(DATA_COLUMNS)

    data = _join_run_metadata(data, runs)
    log.debug("readers.get_run_data.completed", runs_count=len(runs), rows_count=len(data))
    return data


def _join_run_metadata(data: pd.DataFrame, runs: pd.DataFrame) -> pd.DataFrame:
    if data.empty:
        return empty_frame(DATA_COLUMNS)
    run_keys = runs.loc[:, ["uid", "instance_uid", "recipe_uid"]].rename(columns={"uid": "run_uid"})
    return conform(data.merge(run_keys, on="run_uid", how="left"), DATA_COLUMNS)
