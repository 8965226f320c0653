"""Recipe interchange (``.sbj`` documents).

A recipe document is self-contained JSON:

    {
      "_comment": "ScrapeBot recipe, created 2021-03-01 10:00:00, exported ...",
      "name": "visit my website",
      "description": "",
      "interval": 15,
      "cookies": false,
      "active": false,
      "steps": [
        {"sort": 1, "type": "navigate", "value": "https://example.com/",
         "active": true, "use_random_item_instead_of_value": false,
         "random_items": [], "use_data_item_instead_of_value": false},
        ...
      ]
    }

Exporting renumbers ``sort`` densely from 1. Importing always creates a new
recipe, even when one with the same name already exists.
"""

from __future__ import annotations

import os
from collections.abc import Mapping
from datetime import datetime
from pathlib import Path
from typing import Any, Optional, Union

import pandas as pd
import sqlalchemy.exc
from pydantic import ValidationError as PydanticValidationError

from scrapebot.config.reporting import operation_logger, report_failure
from scrapebot.domain.exceptions import ValidationError
from scrapebot.domain.models import RecipeDocument, RecipeStepDocument
from scrapebot.infra.db import DatabaseConnection, require_open
from scrapebot.infra.repositories import RecipeRepository, RecipeStepRepository
from scrapebot.operations.validation import as_id
from scrapebot.operations.writers import add_recipe, add_recipe_step

PathLike = Union[str, Path]


def _flag(value: Any) -> bool:
    return False if pd.isna(value) else bool(value)


def _render_document(recipe: Any, steps: pd.DataFrame) -> RecipeDocument:
    exported = datetime.now().replace(microsecond=0)
    return RecipeDocument(
        comment=f"ScrapeBot recipe, created {recipe.created}, exported {exported}",
        name=recipe.name or "",
        description=recipe.description,
        interval=recipe.interval if recipe.interval is not None else 15,
        cookies=bool(recipe.cookies),
        active=bool(recipe.active),
        steps=[
            RecipeStepDocument(
                sort=position,
                type=step.type,
                value=step.value,
                active=_flag(step.active),
                use_random_item_instead_of_value=_flag(step.use_random_item),
                random_items=list(step.random_items),
                use_data_item_instead_of_value=_flag(step.use_data_item),
            )
            for position, step in enumerate(steps.itertuples(index=False), start=1)
        ],
    )


def export_recipe(
    connection: DatabaseConnection,
    recipe_id: int,
    output_path: Optional[PathLike] = None,
) -> Union[str, Path, None]:
    """Serialise a recipe and all of its steps, inactive ones included.

    Args:
        connection:  Open database connection.
        recipe_id:   Recipe uid.
        output_path: Where to write the document. If the file cannot be
                     written, a warning is emitted and the text returned.

    Returns:
        The written path, the JSON text, or None if the database could not
        be read.

    Raises:
        ValidationError: Bad connection or id, or the recipe does not exist.
    """
    db = require_open(connection)
    recipe_id = as_id(recipe_id, "recipe_id")
    log = operation_logger("export_recipe", recipe_uid=recipe_id)

    try:
        recipe = RecipeRepository(db).get(recipe_id)
        if recipe is None:
            raise ValidationError(f"Recipe {recipe_id} not found.")
        steps = RecipeStepRepository(db).list([recipe_id], include_inactive=True)
    except sqlalchemy.exc.SQLAlchemyError as exc:
        report_failure(log, "interchange.export_recipe.failed", "Exporting the recipe resulted in an error.", exc)
        return None

    try:
        document = _render_document(recipe, steps)
    except PydanticValidationError as exc:
        # The schema allows steps without a type; such recipes cannot be exported.
        report_failure(
            log,
            "interchange.export_recipe.invalid",
            f"Recipe {recipe_id} contains steps that cannot be exported.",
            exc,
        )
        return None

    text = document.model_dump_json(by_alias=True, indent=2)
    if output_path is None:
        return text

    path = Path(output_path).expanduser()
    if path.exists() and not os.access(path, os.W_OK):
        report_failure(
            log,
            "interchange.export_recipe.not_writable",
            f"File {path} exists but is not writable. Returning the document instead.",
        )
        return text
    try:
        path.write_text(text, encoding="utf-8")
    except OSError as exc:
        report_failure(
            log,
            "interchange.export_recipe.write_failed",
            f"File {path} could not be written. Returning the document instead.",
            exc,
        )
        return text

    log.info("interchange.export_recipe.written", path=str(path), steps_count=len(steps))
    return path


def _load_document(document: Any) -> RecipeDocument:
    """Accept a RecipeDocument, a mapping, JSON text or a path to a .sbj file."""
    try:
        if isinstance(document, RecipeDocument):
            return document
        if isinstance(document, Mapping):
            return RecipeDocument.model_validate(dict(document))
        if isinstance(document, str) and document.lstrip().startswith("{"):
            return RecipeDocument.model_validate_json(document)
        if isinstance(document, (str, Path)):
            path = Path(document).expanduser()
            try:
                text = path.read_text(encoding="utf-8")
            except OSError as exc:
                raise ValidationError(f"Recipe file {path} is not readable.") from exc
            return RecipeDocument.model_validate_json(text)
    except PydanticValidationError as exc:
        raise ValidationError(f"Recipe document is malformed: {exc}") from exc
    raise ValidationError("Recipe document needs to be a path, JSON text, a mapping or a RecipeDocument.")


def import_recipe(connection: DatabaseConnection, document: Any, owner_email: str) -> Optional[int]:
    """Create a new recipe, owned by ``owner_email``, from a recipe document.

    Steps are added in document order with their type, value, random items,
    data-item flag, active flag and sort position.

    Returns:
        The new recipe uid, or None if the recipe could not be created. Steps
        that fail to import are reported as warnings; the recipe is kept.

    Raises:
        ValidationError: Bad connection, or an unreadable or malformed document.
    """
    db = require_open(connection)
    recipe_document = _load_document(document)
    log = operation_logger("import_recipe", name=recipe_document.name)

    recipe_uid = add_recipe(
        db,
        recipe_document.name,
        owner_email,
        description=recipe_document.description,
        active=recipe_document.active,
        cookies=recipe_document.cookies,
        interval=recipe_document.interval,
    )
    if recipe_uid is None:
        return None

    for position, step in enumerate(recipe_document.steps, start=1):
        step_uid = add_recipe_step(
            db,
            recipe_uid,
            type=step.type,
            fixed_value=step.value,
            random_items=step.random_items,
            use_data_item=step.use_data_item_instead_of_value,
            active=step.active,
            sort=step.sort,
        )
        if step_uid is None:
            report_failure(
                log,
                "interchange.import_recipe.step_failed",
                f"Step {position} of recipe {recipe_uid} could not be imported.",
            )

    log.info("interchange.import_recipe.created", recipe_uid=recipe_uid, steps_count=len(recipe_document.steps))
    return recipe_uid
