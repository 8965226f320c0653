"""Tests for scrapebot.operations.screenshots — collect_screenshots.

Coverage targets
----------------
- Validation: connections, at least one filter, resize needs a bound, bucket set
- Resolution chain: recipes → screenshot steps → successful run data →
  s3:// references only; an empty stage → empty frame plus warning
- Bucket lookup: unknown bucket → empty frame plus warning, other region →
  regional client
- Download: file written below output_dir at the key path, local and remote
  dimensions and sizes, shrink-only resize keeping the aspect ratio
- Missing objects yield a row with empty file columns; download errors warn
- Keys that resolve outside output_dir are never written

Design decisions
----------------
- The S3 client is a MagicMock set directly on the CloudConnection.
- Images are generated in memory with Pillow.
"""

from __future__ import annotations

import io
from datetime import datetime
from pathlib import Path
from typing import Any, Callable
from unittest.mock import MagicMock

import pandas as pd
import pytest
from botocore.exceptions import ClientError
from PIL import Image

from scrapebot.domain.exceptions import ScrapeBotWarning, ValidationError
from scrapebot.domain.frames import SCREENSHOT_COLUMNS
from scrapebot.domain.models import AwsCredentials
from scrapebot.infra.cloud import CloudConnection
from scrapebot.infra.db import DatabaseConnection
from scrapebot.infra.tables import data_table, recipe_table, recipestep_table, run_table
from scrapebot.operations.screenshots import collect_screenshots

BUCKET = "s3b-abcd1234efgh5678r"


def _png(width: int = 400, height: int = 200) -> bytes:
    buffer = io.BytesIO()
    Image.new("RGB", (width, height), color=(200, 30, 30)).save(buffer, format="PNG")
    return buffer.getvalue()


def _not_found(operation: str) -> ClientError:
    return ClientError({"Error": {"Code": "404", "Message": "Not Found"}}, operation)


def _make_s3(objects: dict[str, bytes], region: str = "eu-central-1") -> MagicMock:
    s3 = MagicMock()
    s3.list_buckets.return_value = {"Buckets": [{"Name": BUCKET}, {"Name": "other"}]}
    s3.get_bucket_location.return_value = {"LocationConstraint": region}

    def head_object(Bucket: str, Key: str) -> dict[str, Any]:
        if Key not in objects:
            raise _not_found("HeadObject")
        return {"ContentLength": len(objects[Key])}

    def get_object(Bucket: str, Key: str) -> dict[str, Any]:
        return {"Body": io.BytesIO(objects[Key])}

    s3.head_object.side_effect = head_object
    s3.get_object.side_effect = get_object
    return s3


def _make_cloud(tmp_path: Path, s3: Any, bucket: str | None = BUCKET) -> CloudConnection:
    cloud = CloudConnection(
        region="eu-central-1",
        credentials=AwsCredentials(
            access_key_id="key",
            secret_access_key="secret",
            ssh_public=tmp_path / "public.pem",
            ssh_private=tmp_path / "private.pem",
        ),
        s3_bucket=bucket,
    )
    cloud._s3 = s3
    cloud._session = MagicMock()
    return cloud


@pytest.fixture()
def shots(insert: Callable[..., int]) -> dict[str, int]:
    """A recipe with a screenshot step, one successful and one failed run."""
    ids: dict[str, int] = {}
    ids["recipe"] = insert(recipe_table, name="screens", active=True, cookies=False, interval=15)
    ids["shot"] = insert(recipestep_table, recipe_uid=ids["recipe"], sort=1, type="screenshot", value="", active=True)
    ids["title"] = insert(recipestep_table, recipe_uid=ids["recipe"], sort=2, type="get_pagetitle", value="", active=True)
    ids["ok"] = insert(run_table, instance_uid=3, recipe_uid=ids["recipe"], status="success", created=datetime(2021, 3, 1))
    ids["failed"] = insert(run_table, instance_uid=3, recipe_uid=ids["recipe"], status="error", created=datetime(2021, 3, 2))
    insert(data_table, run_uid=ids["ok"], step_uid=ids["shot"], value=f"s3://{BUCKET}/runs/1/page.png")
    insert(data_table, run_uid=ids["ok"], step_uid=ids["shot"], value=f"s3://{BUCKET}/runs/1/gone.png")
    insert(data_table, run_uid=ids["ok"], step_uid=ids["shot"], value="screenshot failed")
    insert(data_table, run_uid=ids["ok"], step_uid=ids["title"], value=f"s3://{BUCKET}/not-a-screenshot.png")
    insert(data_table, run_uid=ids["failed"], step_uid=ids["shot"], value=f"s3://{BUCKET}/runs/2/page.png")
    return ids


# ---------------------------------------------------------------------------
# TestValidation
# ---------------------------------------------------------------------------


class TestValidation:
    def test_requires_a_filter(self, db: DatabaseConnection, tmp_path: Path) -> None:
        with pytest.raises(ValidationError, match="run_filter or instance_filter or recipe_filter"):
            collect_screenshots(db, _make_cloud(tmp_path, _make_s3({})))

    def test_resize_requires_a_bound(self, db: DatabaseConnection, tmp_path: Path) -> None:
        with pytest.raises(ValidationError, match="max_width or max_height"):
            collect_screenshots(db, _make_cloud(tmp_path, _make_s3({})), recipe_filter=1, resize=True)

    def test_requires_cloud_connection(self, db: DatabaseConnection) -> None:
        with pytest.raises(ValidationError, match="open_cloud_connection"):
            collect_screenshots(db, "s3", recipe_filter=1)

    def test_requires_bucket(self, db: DatabaseConnection, tmp_path: Path) -> None:
        with pytest.raises(ValidationError, match="launch_storage"):
            collect_screenshots(db, _make_cloud(tmp_path, _make_s3({}), bucket=None), recipe_filter=1)

    def test_requires_s3_client(self, db: DatabaseConnection, tmp_path: Path) -> None:
        with pytest.raises(ValidationError, match="S3"):
            collect_screenshots(db, _make_cloud(tmp_path, None), recipe_filter=1)


# ---------------------------------------------------------------------------
# TestResolution
# ---------------------------------------------------------------------------


class TestResolution:
    def test_no_matching_recipes_warns(self, db: DatabaseConnection, tmp_path: Path) -> None:
        with pytest.warns(ScrapeBotWarning, match="No recipes"):
            result = collect_screenshots(db, _make_cloud(tmp_path, _make_s3({})), recipe_filter=999)
        assert result.empty
        assert list(result.columns) == list(SCREENSHOT_COLUMNS)

    def test_recipe_without_screenshot_steps_warns(
        self, db: DatabaseConnection, tmp_path: Path, insert: Callable[..., int]
    ) -> None:
        recipe = insert(recipe_table, name="text only", active=True)
        insert(recipestep_table, recipe_uid=recipe, sort=1, type="get_text", value="h1", active=True)
        with pytest.warns(ScrapeBotWarning, match="No recipe steps"):
            assert collect_screenshots(db, _make_cloud(tmp_path, _make_s3({})), recipe_filter=recipe).empty

    def test_unknown_bucket_warns(self, db: DatabaseConnection, tmp_path: Path, shots: dict[str, int]) -> None:
        s3 = _make_s3({})
        s3.list_buckets.return_value = {"Buckets": [{"Name": "other"}]}
        with pytest.warns(ScrapeBotWarning, match="S3 bucket not found"):
            assert collect_screenshots(db, _make_cloud(tmp_path, s3), recipe_filter=shots["recipe"]).empty

    def test_bucket_in_other_region_uses_regional_client(
        self, db: DatabaseConnection, tmp_path: Path, shots: dict[str, int]
    ) -> None:
        home = _make_s3({}, region="us-west-2")
        regional = _make_s3({"runs/1/page.png": _png()}, region="us-west-2")
        cloud = _make_cloud(tmp_path, home)
        cloud._session.client.return_value = regional

        result = collect_screenshots(
            db, cloud, run_filter=shots["ok"], output_dir=tmp_path / "out", verbose=False
        )

        cloud._session.client.assert_called_once_with("s3", region_name="us-west-2")
        home.get_object.assert_not_called()
        assert result["filename"].dropna().tolist() == ["runs/1/page.png"]


# ---------------------------------------------------------------------------
# TestDownload
# ---------------------------------------------------------------------------


class TestDownload:
    def test_downloads_successful_run_screenshots(
        self, db: DatabaseConnection, tmp_path: Path, shots: dict[str, int]
    ) -> None:
        payload = _png()
        s3 = _make_s3({"runs/1/page.png": payload, "runs/2/page.png": _png()})
        out = tmp_path / "out"

        result = collect_screenshots(db, _make_cloud(tmp_path, s3), recipe_filter=shots["recipe"], output_dir=out)

        assert len(result) == 2
        assert set(result["run_uid"]) == {shots["ok"]}
        downloaded = result.dropna(subset=["filename"]).iloc[0]
        assert downloaded["filename"] == "runs/1/page.png"
        assert downloaded["filename_remote"] == f"s3://{BUCKET}/runs/1/page.png"
        assert (downloaded["width"], downloaded["height"]) == (400, 200)
        assert (downloaded["width_remote"], downloaded["height_remote"]) == (400, 200)
        assert downloaded["filesize_remote"] == len(payload)
        assert downloaded["filesize"] == (out / "runs/1/page.png").stat().st_size
        assert downloaded["instance_uid"] == 3
        assert downloaded["recipe_uid"] == shots["recipe"]
        assert downloaded["step_uid"] == shots["shot"]

    def test_missing_object_yields_empty_file_columns(
        self, db: DatabaseConnection, tmp_path: Path, shots: dict[str, int]
    ) -> None:
        s3 = _make_s3({"runs/1/page.png": _png()})
        result = collect_screenshots(db, _make_cloud(tmp_path, s3), run_filter=shots["ok"], output_dir=tmp_path)

        missing = result[result["filename"].isna()]
        assert len(missing) == 1
        assert pd.isna(missing.iloc[0]["width"])
        assert pd.isna(missing.iloc[0]["filesize_remote"])
        assert missing.iloc[0]["run_uid"] == shots["ok"]

    def test_resize_shrinks_keeping_aspect_ratio(
        self, db: DatabaseConnection, tmp_path: Path, shots: dict[str, int]
    ) -> None:
        s3 = _make_s3({"runs/1/page.png": _png(400, 200)})
        result = collect_screenshots(
            db,
            _make_cloud(tmp_path, s3),
            run_filter=shots["ok"],
            resize=True,
            max_width=100,
            output_dir=tmp_path,
        )

        row = result.dropna(subset=["filename"]).iloc[0]
        assert (row["width"], row["height"]) == (100, 50)
        assert (row["width_remote"], row["height_remote"]) == (400, 200)
        with Image.open(tmp_path / "runs/1/page.png") as written:
            assert written.size == (100, 50)
            assert written.format == "PNG"

    def test_resize_never_enlarges(self, db: DatabaseConnection, tmp_path: Path, shots: dict[str, int]) -> None:
        s3 = _make_s3({"runs/1/page.png": _png(80, 40)})
        result = collect_screenshots(
            db, _make_cloud(tmp_path, s3), run_filter=shots["ok"], resize=True, max_height=1000, output_dir=tmp_path
        )
        row = result.dropna(subset=["filename"]).iloc[0]
        assert (row["width"], row["height"]) == (80, 40)

    def test_download_error_warns_and_keeps_row(
        self, db: DatabaseConnection, tmp_path: Path, shots: dict[str, int]
    ) -> None:
        s3 = _make_s3({"runs/1/page.png": _png(), "runs/1/gone.png": _png()})
        s3.get_object.side_effect = _not_found("GetObject")

        with pytest.warns(ScrapeBotWarning, match="could not be retrieved"):
            result = collect_screenshots(db, _make_cloud(tmp_path, s3), run_filter=shots["ok"], output_dir=tmp_path)

        assert len(result) == 2
        assert result["filename"].isna().all()

    def test_key_escaping_output_dir_is_not_written(
        self, db: DatabaseConnection, tmp_path: Path, shots: dict[str, int], insert: Callable[..., int]
    ) -> None:
        insert(data_table, run_uid=shots["ok"], step_uid=shots["shot"], value=f"s3://{BUCKET}/../escape.png")
        s3 = _make_s3({"runs/1/page.png": _png(), "../escape.png": _png()})
        output_dir = tmp_path / "out"

        with pytest.warns(ScrapeBotWarning, match="outside"):
            result = collect_screenshots(db, _make_cloud(tmp_path, s3), run_filter=shots["ok"], output_dir=output_dir)

        assert len(result) == 3
        assert result["filename"].dropna().tolist() == ["runs/1/page.png"]
        assert not (tmp_path / "escape.png").exists()
        assert all(call.kwargs["Key"] != "../escape.png" for call in s3.get_object.call_args_list)
