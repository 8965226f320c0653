"""Screenshot retrieval from S3.

Screenshot steps store ``s3://<bucket>/<key>`` references as their data
value. ``collect_screenshots`` resolves those references for a set of runs,
downloads each image, optionally scales it down, writes it below an output
directory and reports the dimensions before and after.
"""

from __future__ import annotations

import io
import math
import re
from pathlib import Path
from typing import Any, Optional, Union

import pandas as pd
from botocore.exceptions import BotoCoreError, ClientError
from PIL import Image

from scrapebot.config.reporting import operation_logger, report_failure
from scrapebot.domain.exceptions import ValidationError
from scrapebot.domain.frames import SCREENSHOT_COLUMNS, empty_frame, to_frame
from scrapebot.infra.cloud import CloudConnection
from scrapebot.infra.db import DatabaseConnection, require_open
from scrapebot.operations.readers import get_recipe_steps, get_recipes, get_run_data
from scrapebot.operations.validation import as_id, as_id_list, require_flag

REMOTE_REFERENCE = re.compile(r"^s3://([^/]+)/(.+)$")
REMOTE_REFERENCE_FILTER = r"^s3://[^/]+/.+$"
PROGRESS_STEPS = 10


def _fit_within(image: Image.Image, max_width: Optional[int], max_height: Optional[int]) -> Image.Image:
    """Scale ``image`` down, keeping its aspect ratio, to fit the bounding box.

    A missing bound does not constrain. Images already inside the box are
    returned unchanged.
    """
    width, height = image.size
    scale = min(
        max_width / width if max_width else math.inf,
        max_height / height if max_height else math.inf,
    )
    if scale >= 1:
        return image
    size = (max(1, round(width * scale)), max(1, round(height * scale)))
    return image.resize(size, Image.Resampling.LANCZOS)


def _bucket_region(s3: Any, bucket: str) -> Optional[str]:
    """Return the region of ``bucket`` if it is among the account's buckets."""
    names = [entry["Name"] for entry in s3.list_buckets().get("Buckets", [])]
    if bucket not in names:
        return None
    # Buckets in us-east-1 report no location constraint.
    return s3.get_bucket_location(Bucket=bucket).get("LocationConstraint") or "us-east-1"


def _local_name(value: str, bucket: str, key: str) -> str:
    prefix = f"s3://{bucket}/"
    return value[len(prefix):] if value.startswith(prefix) else key


def _download(
    s3: Any,
    row: Any,
    bucket: str,
    output_dir: Path,
    resize: bool,
    max_width: Optional[int],
    max_height: Optional[int],
) -> tuple[Any, ...]:
    """Fetch one referenced image and return its screenshot row."""
    metadata = (row.created, row.run_uid, row.instance_uid, row.recipe_uid, row.step_uid)
    match = REMOTE_REFERENCE.match(row.value)
    object_bucket, key = match.group(1), match.group(2)
    filename = _local_name(row.value, bucket, key)
    target = (output_dir / filename).resolve()
    if output_dir.resolve() not in target.parents:
        raise ValueError(f"Object key {key} resolves outside of {output_dir}.")

    try:
        s3.head_object(Bucket=object_bucket, Key=key)
    except (BotoCoreError, ClientError):
        return metadata + (None,) * 8

    payload = s3.get_object(Bucket=object_bucket, Key=key)["Body"].read()
    target.parent.mkdir(parents=True, exist_ok=True)

    with Image.open(io.BytesIO(payload)) as original:
        remote_format = original.format
        remote_width, remote_height = original.size
        image = _fit_within(original, max_width, max_height) if resize else original
        image.save(target, format=remote_format)

    with Image.open(target) as written:
        width, height = written.size

    return metadata + (
        filename,
        width,
        height,
        target.stat().st_size,
        row.value,
        remote_width,
        remote_height,
        len(payload),
    )


def collect_screenshots(
    db: DatabaseConnection,
    cloud: CloudConnection,
    run_filter: Any = None,
    instance_filter: Any = None,
    recipe_filter: Any = None,
    include_inactive: bool = False,
    resize: bool = False,
    max_width: Optional[int] = None,
    max_height: Optional[int] = None,
    output_dir: Union[str, Path] = "",
    verbose: bool = True,
) -> pd.DataFrame:
    """Download the screenshots taken by successful runs.

    Args:
        db:               Open database connection.
        cloud:            Cloud connection with an S3 client and bucket.
        run_filter:       Run uid(s).
        instance_filter:  Instance uid(s).
        recipe_filter:    Recipe uid(s).
        include_inactive: Also consider inactive recipes and steps.
        resize:           Scale images down into ``max_width`` x ``max_height``.
        max_width:        Maximum width in pixels.
        max_height:       Maximum height in pixels.
        output_dir:       Directory the object keys are written below.
        verbose:          Log progress about every 10 % of the images.

    Returns:
        DataFrame with columns created, run_uid, instance_uid, recipe_uid,
        step_uid, filename, width, height, filesize, filename_remote,
        width_remote, height_remote, filesize_remote. Objects that no longer
        exist or cannot be downloaded yield a row with empty file columns.

    Raises:
        ValidationError: Bad connections, no filter at all, or ``resize``
            without a bound.
    """
    db = require_open(db)
    if not isinstance(cloud, CloudConnection):
        raise ValidationError("AWS connection needs to be initiated through open_cloud_connection.")
    s3 = cloud.require("s3")
    if not cloud.s3_bucket:
        raise ValidationError("AWS connection needs an S3 bucket, launched through launch_storage.")
    run_ids = as_id_list(run_filter, "run_filter")
    instance_ids = as_id_list(instance_filter, "instance_filter")
    recipe_ids = as_id_list(recipe_filter, "recipe_filter")
    if run_ids is None and instance_ids is None and recipe_ids is None:
        raise ValidationError(
            "Either run_filter or instance_filter or recipe_filter (or a combination thereof) need to be given."
        )
    require_flag(include_inactive, "include_inactive")
    require_flag(resize, "resize")
    max_width = as_id(max_width, "max_width") if max_width is not None else None
    max_height = as_id(max_height, "max_height") if max_height is not None else None
    if resize and not (max_width or max_height):
        raise ValidationError("resize requires max_width or max_height (or both) to be set.")
    log = operation_logger("collect_screenshots", bucket=cloud.s3_bucket)
    empty = empty_frame(SCREENSHOT_COLUMNS)

    recipes = get_recipes(db, instance_ids, include_inactive)
    if recipe_ids is not None:
        recipes = recipes[recipes["uid"].isin(recipe_ids)]
    if recipes.empty:
        report_failure(
            log,
            "screenshots.no_recipes",
            "No recipes match your combined criteria of instance_filter, recipe_filter and include_inactive.",
        )
        return empty

    steps = get_recipe_steps(db, recipes["uid"].astype(int).tolist(), include_inactive)
    steps = steps[steps["type"].astype(str).str.contains("screenshot", regex=False)]
    if steps.empty:
        report_failure(
            log,
            "screenshots.no_steps",
            "No recipe steps match your combined criteria of instance_filter, recipe_filter and include_inactive.",
        )
        return empty

    data = get_run_data(
        db,
        run_ids,
        instance_ids,
        recipes["uid"].astype(int).tolist(),
        steps["uid"].astype(int).tolist(),
    )
    data = data[data["value"].astype(str).str.match(REMOTE_REFERENCE_FILTER)]
    if data.empty:
        report_failure(
            log,
            "screenshots.no_data",
            "No data matches your combined criteria of run_filter, instance_filter, recipe_filter and include_inactive.",
        )
        return empty

    total = len(data)
    if verbose:
        log.info("screenshots.identified", images_count=total)

    try:
        region = _bucket_region(s3, cloud.s3_bucket)
        regional_s3 = cloud.client_for("s3", region) if region else None
    except (BotoCoreError, ClientError) as exc:
        report_failure(
            log,
            "screenshots.bucket_unreachable",
            "S3 bucket not found or could not be reached. Double-check the cloud connection and its region.",
            exc,
        )
        return empty
    if regional_s3 is None:
        report_failure(
            log,
            "screenshots.bucket_not_found",
            "S3 bucket not found or could not be reached. Double-check the cloud connection and its region.",
        )
        return empty

    output_path = Path(output_dir).expanduser()
    progress_every = total // PROGRESS_STEPS
    rows = []
    for done, row in enumerate(data.itertuples(index=False), start=1):
        try:
            rows.append(_download(regional_s3, row, cloud.s3_bucket, output_path, resize, max_width, max_height))
        except (BotoCoreError, ClientError, OSError, ValueError) as exc:
            report_failure(log, "screenshots.download_failed", f"Image {row.value} could not be retrieved.", exc)
            rows.append((row.created, row.run_uid, row.instance_uid, row.recipe_uid, row.step_uid) + (None,) * 8)

        if verbose and progress_every > 0 and done % progress_every == 0:
            log.info("screenshots.progress", done=done, total=total, percent=round(100 * done / total))

    return to_frame(rows, SCREENSHOT_COLUMNS)
