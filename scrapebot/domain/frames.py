"""Tabular result shapes.

Every reader returns a pandas DataFrame with a fixed column order and fixed
dtypes, whether it found rows, found none, or failed. The shapes are declared
here once so that the empty frame returned on failure is indistinguishable
in structure from a real result.

dtypes:
    "Int64"           nullable integer (identifiers, counts)
    "datetime64[ns]"  timestamps (naive, server local time)
    "boolean"         nullable flags
    "object"          strings and nested lists
    categorical       closed enum columns (run status, log type)
"""

from __future__ import annotations

from typing import Any, Iterable, Mapping, Sequence

import pandas as pd

from scrapebot.domain.models import LogType, RunStatus

RUN_STATUS_DTYPE = pd.CategoricalDtype([member.value for member in RunStatus])
LOG_TYPE_DTYPE = pd.CategoricalDtype([member.value for member in LogType])

Schema = Mapping[str, Any]

INSTANCE_COLUMNS: Schema = {
    "uid": "Int64",
    "name": "object",
    "created": "datetime64[ns]",
    "description": "object",
    "runs_count": "Int64",
    "runs_latest": "datetime64[ns]",
}

RECIPE_COLUMNS: Schema = {
    "uid": "Int64",
    "name": "object",
    "created": "datetime64[ns]",
    "description": "object",
    "active": "boolean",
    "cookies": "boolean",
    "interval": "Int64",
    "runs_count": "Int64",
    "runs_latest": "datetime64[ns]",
}

RECIPE_STEP_COLUMNS: Schema = {
    "recipe_uid": "Int64",
    "uid": "Int64",
    "type": "object",
    "value": "object",
    "use_random_item": "boolean",
    "use_data_item": "boolean",
    "active": "boolean",
    "random_items": "object",
}

RUN_COLUMNS: Schema = {
    "uid": "Int64",
    "recipe_uid": "Int64",
    "instance_uid": "Int64",
    "started": "datetime64[ns]",
    "runtime": "Int64",
    "status": RUN_STATUS_DTYPE,
}

LOG_COLUMNS: Schema = {
    "run_uid": "Int64",
    "created": "datetime64[ns]",
    "type": LOG_TYPE_DTYPE,
    "message": "object",
}

DATA_COLUMNS: Schema = {
    "created": "datetime64[ns]",
    "run_uid": "Int64",
    "instance_uid": "Int64",
    "recipe_uid": "Int64",
    "step_uid": "Int64",
    "value": "object",
}

SCREENSHOT_COLUMNS: Schema = {
    "created": "datetime64[ns]",
    "run_uid": "Int64",
    "instance_uid": "Int64",
    "recipe_uid": "Int64",
    "step_uid": "Int64",
    "filename": "object",
    "width": "Int64",
    "height": "Int64",
    "filesize": "Int64",
    "filename_remote": "object",
    "width_remote": "Int64",
    "height_remote": "Int64",
    "filesize_remote": "Int64",
}

EC2_INSTANCE_COLUMNS: Schema = {
    "instance_scrapebot_uid": "Int64",
    "instance_aws_id": "object",
    "host": "object",
    "created": "object",
    "instance_type": "object",
    "instance_username": "object",
    "instance_region": "object",
    "browser_useragent": "object",
    "browser_language": "object",
    "browser_width": "Int64",
    "browser_height": "Int64",
}


def empty_frame(schema: Schema) -> pd.DataFrame:
    """Return a zero-row frame with the columns and dtypes of ``schema``."""
    return pd.DataFrame({column: pd.Series(dtype=dtype) for column, dtype in schema.items()})


def to_frame(rows: Iterable[Sequence[Any]], schema: Schema) -> pd.DataFrame:
    """Build a frame from positional rows whose order matches ``schema``."""
    rows = [tuple(row) for row in rows]
    if not rows:
        return empty_frame(schema)
    frame = pd.DataFrame.from_records(rows, columns=list(schema))
    return conform(frame, schema)


def concat_frames(frames: Sequence[pd.DataFrame], schema: Schema) -> pd.DataFrame:
    """Concatenate chunked frames, keeping the schema when there are none."""
    frames = [frame for frame in frames if not frame.empty]
    if not frames:
        return empty_frame(schema)
    return conform(pd.concat(frames, ignore_index=True), schema)


def conform(frame: pd.DataFrame, schema: Schema) -> pd.DataFrame:
    """Select, order and cast the columns of ``frame`` to ``schema``."""
    frame = frame.loc[:, list(schema)].copy()
    for column, dtype in schema.items():
        if dtype == "object":
            frame[column] = frame[column].astype(object)
        elif dtype == "datetime64[ns]":
            frame[column] = pd.to_datetime(frame[column])
        else:
            frame[column] = frame[column].astype(dtype)
    return frame.reset_index(drop=True)
