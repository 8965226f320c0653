"""Entity writers.

Exposes:
  - get_or_create_user()            uid of the active user with an email
  - add_instance()                  register a scraping machine
  - add_recipe()                    create a recipe
  - add_recipe_step()               append a step (and its random items)
  - activate_recipe()               / deactivate_recipe()
  - activate_recipe_step()          / deactivate_recipe_step()
  - combine_recipe_with_instance()  / remove_recipe_from_instance()

Rules:
- Arguments are validated first; a bad call raises ValidationError.
- Generated keys come from the driver (``inserted_primary_key``).
- Toggles and links are idempotent. Each one reads the current state, writes
  only if it differs from the target, and re-reads to verify, for at most
  ``constants.WRITE_VERIFY_ATTEMPTS`` writes. A state that never converges is
  reported as a ScrapeBotWarning and ``False`` is returned.
- Database failures after validation are reported as ScrapeBotWarning; the
  writer returns ``None`` (identifiers) or ``False`` (toggles and links).
"""

from __future__ import annotations

import hashlib
import hmac
import secrets
import string
from datetime import datetime
from typing import Any, Callable, Iterable, Optional

import sqlalchemy.exc

from scrapebot.config import constants
from scrapebot.config.reporting import operation_logger, report_failure
from scrapebot.domain.exceptions import ValidationError
from scrapebot.domain.models import StepType
from scrapebot.infra.db import DatabaseConnection, require_open
from scrapebot.infra.repositories import (
    InstanceRepository,
    RecipeInstanceRepository,
    RecipeRepository,
    RecipeStepRepository,
    UserRepository,
)
from scrapebot.operations.validation import as_id, require_flag, require_text

PASSWORD_LENGTH: int = 16
SALT_LENGTH: int = 8
_TOKEN_ALPHABET = string.ascii_letters + string.digits


def _now() -> datetime:
    # DATETIME columns store whole seconds.
    return datetime.now().replace(microsecond=0)


def _random_token(length: int) -> str:
    return "".join(secrets.choice(_TOKEN_ALPHABET) for _ in range(length))


def hash_password(password: str, salt: str) -> str:
    """Return the ``sha512$<salt>$<hex>`` hash the scraper's web frontend expects."""
    digest = hmac.new(salt.encode("utf-8"), password.encode("utf-8"), hashlib.sha512).hexdigest()
    return f"sha512${salt}${digest}"


# ---------------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------------


def get_or_create_user(connection: DatabaseConnection, email: str) -> Optional[int]:
    """Return the uid of the active user with ``email``, creating it if needed.

    The email is trimmed and lower-cased first. A newly created user gets a
    random password, which is printed once and never stored in plain text.
    Two callers creating the same user at the same time are resolved by the
    unique ``email`` key: the loser of the race re-reads the winner's row.

    Returns:
        User uid, or None if the database could not be queried.

    Raises:
        ValidationError: Bad connection or email, or the email belongs to a
            deactivated user.
    """
    db = require_open(connection)
    email = require_text(email, "Email address").strip().lower()
    log = operation_logger("get_or_create_user", email=email)
    repo = UserRepository(db)

    try:
        uid = repo.find_active_uid(email)
        if uid is not None:
            return uid

        password = _random_token(PASSWORD_LENGTH)
        try:
            repo.create(email, hash_password(password, _random_token(SALT_LENGTH)), _now())
        except sqlalchemy.exc.IntegrityError:
            log.info("writers.get_or_create_user.exists", status="conflict")
        else:
            print(f"ScrapeBot user {email} created with password {password}")
            log.info("writers.get_or_create_user.created", status="created")

        uid = repo.find_active_uid(email)
    except sqlalchemy.exc.SQLAlchemyError as exc:
        report_failure(log, "writers.get_or_create_user.failed", "Getting or creating a user resulted in an error.", exc)
        return None

    if uid is None:
        raise ValidationError(f"User {email} exists but has been deactivated.")
    return uid


# ---------------------------------------------------------------------------
# Instances and recipes
# ---------------------------------------------------------------------------


def add_instance(
    connection: DatabaseConnection,
    name: str,
    owner_email: str,
    description: str = "",
) -> Optional[int]:
    """Register a new instance owned by ``owner_email``.

    Returns:
        The new instance uid, or None on a database failure.
    """
    db = require_open(connection)
    name = require_text(name, "Name").strip()
    if not isinstance(description, str):
        raise ValidationError("Description needs to be a character string.")
    log = operation_logger("add_instance", name=name)

    owner_uid = get_or_create_user(db, owner_email)
    if owner_uid is None:
        return None

    try:
        uid = InstanceRepository(db).create(name, description.strip(), owner_uid, _now())
    except sqlalchemy.exc.SQLAlchemyError as exc:
        report_failure(log, "writers.add_instance.failed", "Creating a new instance resulted in an error.", exc)
        return None

    log.info("writers.add_instance.created", instance_uid=uid)
    return uid


def add_recipe(
    connection: DatabaseConnection,
    name: str,
    owner_email: str,
    description: str = "",
    active: bool = False,
    cookies: bool = False,
    interval: int = 15,
) -> Optional[int]:
    """Create a recipe owned by ``owner_email``.

    New recipes are inactive unless ``active`` is set, so that steps can be
    added before instances start running them.

    Args:
        connection:  Open database connection.
        name:        Recipe name (trimmed).
        owner_email: Owner; created on first use.
        description: Free text.
        active:      Whether instances should run the recipe.
        cookies:     Whether cookies are kept between runs.
        interval:    Minutes between two runs.

    Returns:
        The new recipe uid, or None on a database failure.
    """
    db = require_open(connection)
    name = require_text(name, "Name").strip()
    if not isinstance(description, str):
        raise ValidationError("Description needs to be a character string.")
    require_flag(active, "active")
    require_flag(cookies, "cookies")
    interval = as_id(interval, "Interval")
    if interval < 1:
        raise ValidationError("Interval needs to be at least one minute.")
    log = operation_logger("add_recipe", name=name)

    owner_uid = get_or_create_user(db, owner_email)
    if owner_uid is None:
        return None

    try:
        uid = RecipeRepository(db).create(
            name=name,
            description=description.strip(),
            active=active,
            cookies=cookies,
            interval=interval,
            owner_uid=owner_uid,
            created=_now(),
        )
    except sqlalchemy.exc.SQLAlchemyError as exc:
        report_failure(log, "writers.add_recipe.failed", "Creating a new recipe resulted in an error.", exc)
        return None

    log.info("writers.add_recipe.created", recipe_uid=uid)
    return uid


def _as_step_type(value: Any) -> StepType:
    try:
        return StepType(value)
    except ValueError as exc:
        allowed = ", ".join(member.value for member in StepType)
        raise ValidationError(f"Type needs to be one of: {allowed}.") from exc


def add_recipe_step(
    connection: DatabaseConnection,
    recipe_id: int,
    type: Any = StepType.LOG,
    fixed_value: Optional[str] = "",
    random_items: Iterable[Any] = (),
    use_data_item: bool = False,
    active: bool = True,
    sort: Optional[int] = None,
) -> Optional[int]:
    """Append a step to a recipe.

    When ``random_items`` is non-empty the scraper picks one of them instead
    of ``fixed_value``; the items are stored with the step's creation time in
    the same transaction as the step.

    Args:
        connection:    Open database connection.
        recipe_id:     Existing recipe uid.
        type:          One of ``StepType`` (or its string value).
        fixed_value:   Step value, e.g. a URL for ``navigate``.
        random_items:  Candidate values.
        use_data_item: Use a previously collected data item; requires
                       ``fixed_value``.
        active:        Whether the step is executed.
        sort:          Position; defaults to the current step count plus one.

    Returns:
        The new step uid, or None on a database failure.

    Raises:
        ValidationError: Unknown type, ``use_data_item`` without a value,
            malformed items, or a recipe that does not exist.
    """
    db = require_open(connection)
    recipe_id = as_id(recipe_id, "recipe_id")
    step_type = _as_step_type(type)
    fixed_value = "" if fixed_value is None else fixed_value
    if not isinstance(fixed_value, str):
        raise ValidationError("fixed_value needs to be a character string.")
    if isinstance(random_items, (str, bytes)):
        raise ValidationError("random_items needs to be a collection of character strings.")
    items = [str(item) for item in random_items]
    require_flag(use_data_item, "use_data_item")
    require_flag(active, "active")
    if use_data_item and fixed_value == "":
        raise ValidationError("use_data_item requires fixed_value to be set as well.")
    if sort is not None:
        sort = as_id(sort, "sort")
    log = operation_logger("add_recipe_step", recipe_uid=recipe_id, step_type=step_type.value)

    try:
        if RecipeRepository(db).get_active(recipe_id) is None:
            raise ValidationError("recipe_id needs to be set to an existing recipe.")
        steps = RecipeStepRepository(db)
        if sort is None:
            sort = steps.count(recipe_id) + 1
        uid = steps.create(
            recipe_uid=recipe_id,
            step_type=step_type.value,
            value=fixed_value,
            use_data_item=use_data_item,
            active=active,
            sort=sort,
            random_items=items,
            created=_now(),
        )
    except sqlalchemy.exc.SQLAlchemyError as exc:
        report_failure(log, "writers.add_recipe_step.failed", "Creating a new recipe step resulted in an error.", exc)
        return None

    log.info("writers.add_recipe_step.created", step_uid=uid, sort=sort, random_items_count=len(items))
    return uid


# ---------------------------------------------------------------------------
# Idempotent toggles and links
# ---------------------------------------------------------------------------


def _converge(
    log: Any,
    event: str,
    label: str,
    read: Callable[[], Optional[bool]],
    write: Callable[[], Any],
    target: bool,
    *,
    drain: bool = False,
) -> bool:
    """Drive a boolean state to ``target`` with bounded write-then-verify passes.

    ``read`` returns None when the entity does not exist. With ``drain``,
    ``write`` returns the number of rows it removed and passes that removed
    a row do not count against the attempt budget.
    """
    attempts = constants.WRITE_VERIFY_ATTEMPTS
    writes = 0
    wasted = 0
    while True:
        state = read()
        if state is None:
            report_failure(log, f"{event}.not_found", f"{label} does not exist.", stacklevel=5)
            return False
        if state == target:
            log.debug(f"{event}.completed", writes=writes)
            return True
        if wasted >= attempts:
            break
        changed = write()
        writes += 1
        if not (drain and changed):
            wasted += 1

    report_failure(log, f"{event}.unverified", f"{label} could not be changed after {attempts} attempts.", stacklevel=5)
    return False


def _set_recipe_active(connection: DatabaseConnection, recipe_id: int, active: bool, operation: str) -> bool:
    db = require_open(connection)
    recipe_id = as_id(recipe_id, "recipe_id")
    log = operation_logger(operation, recipe_uid=recipe_id)
    repo = RecipeRepository(db)

    try:
        return _converge(
            log,
            f"writers.{operation}",
            f"Recipe {recipe_id}",
            read=lambda: repo.get_active(recipe_id),
            write=lambda: repo.set_active(recipe_id, active),
            target=active,
        )
    except sqlalchemy.exc.SQLAlchemyError as exc:
        report_failure(log, f"writers.{operation}.failed", "Changing the recipe resulted in an error.", exc, stacklevel=4)
        return False


def activate_recipe(connection: DatabaseConnection, recipe_id: int) -> bool:
    """Mark a recipe active. Returns True once it is active."""
    return _set_recipe_active(connection, recipe_id, True, "activate_recipe")


def deactivate_recipe(connection: DatabaseConnection, recipe_id: int) -> bool:
    """Mark a recipe inactive. Returns True once it is inactive."""
    return _set_recipe_active(connection, recipe_id, False, "deactivate_recipe")


def _set_step_active(
    connection: DatabaseConnection,
    recipe_id: int,
    step_id: int,
    active: bool,
    operation: str,
) -> bool:
    db = require_open(connection)
    recipe_id = as_id(recipe_id, "recipe_id")
    step_id = as_id(step_id, "step_id")
    log = operation_logger(operation, recipe_uid=recipe_id, step_uid=step_id)
    repo = RecipeStepRepository(db)

    try:
        return _converge(
            log,
            f"writers.{operation}",
            f"Step {step_id} of recipe {recipe_id}",
            read=lambda: repo.get_active(recipe_id, step_id),
            write=lambda: repo.set_active(step_id, active),
            target=active,
        )
    except sqlalchemy.exc.SQLAlchemyError as exc:
        report_failure(log, f"writers.{operation}.failed", "Changing the recipe step resulted in an error.", exc, stacklevel=4)
        return False


def activate_recipe_step(connection: DatabaseConnection, recipe_id: int, step_id: int) -> bool:
    return _set_step_active(connection, recipe_id, step_id, True, "activate_recipe_step")


def deactivate_recipe_step(connection: DatabaseConnection, recipe_id: int, step_id: int) -> bool:
    return _set_step_active(connection, recipe_id, step_id, False, "deactivate_recipe_step")


def _set_link(
    connection: DatabaseConnection,
    recipe_id: int,
    instance_id: int,
    linked: bool,
    operation: str,
) -> bool:
    db = require_open(connection)
    recipe_id = as_id(recipe_id, "recipe_id")
    instance_id = as_id(instance_id, "instance_id")
    log = operation_logger(operation, recipe_uid=recipe_id, instance_uid=instance_id)
    recipes = RecipeRepository(db)
    instances = InstanceRepository(db)
    links = RecipeInstanceRepository(db)

    def read() -> Optional[bool]:
        if recipes.get_active(recipe_id) is None or not instances.exists(instance_id):
            return None
        return links.count(recipe_id, instance_id) > 0

    def write() -> int:
        if linked:
            links.link(recipe_id, instance_id, _now())
            return 0
        return links.unlink_one(recipe_id, instance_id)

    try:
        return _converge(
            log,
            f"writers.{operation}",
            f"Recipe {recipe_id} or instance {instance_id}",
            read=read,
            write=write,
            target=linked,
            drain=not linked,
        )
    except sqlalchemy.exc.SQLAlchemyError as exc:
        report_failure(log, f"writers.{operation}.failed", "Changing the recipe/instance link resulted in an error.", exc, stacklevel=4)
        return False


def combine_recipe_with_instance(connection: DatabaseConnection, recipe_id: int, instance_id: int) -> bool:
    """Let ``instance_id`` run ``recipe_id``. Returns True once linked."""
    return _set_link(connection, recipe_id, instance_id, True, "combine_recipe_with_instance")


def remove_recipe_from_instance(connection: DatabaseConnection, recipe_id: int, instance_id: int) -> bool:
    """Stop ``instance_id`` from running ``recipe_id``. Returns True once unlinked.

    Each pass deletes at most one link row. Passes continue for as long as
    rows are being deleted, so any number of duplicate links is removed.
    """
    return _set_link(connection, recipe_id, instance_id, False, "remove_recipe_from_instance")
