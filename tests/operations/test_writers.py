"""Tests for scrapebot.operations.writers.

Coverage targets
----------------
- hash_password: sha512$<salt>$<hmac hex> format
- get_or_create_user: creation with a printed one-time password, email
  normalisation, reuse, lost creation race resolved by re-reading,
  deactivated user → ValidationError, database failure → None + warning
- add_instance / add_recipe: owner resolution, defaults, validation
- add_recipe_step: default sort position, random items, data-item rule,
  unknown type / unknown recipe → ValidationError
- Toggles and links: idempotent, unknown entities → False + warning, bounded
  write-then-verify loop, duplicate links removed one per pass

Scenario
--------
The "visit my website" recipe owned by mario@haim.it: navigate, then pick one
of five search terms, then log the page title.
"""

from __future__ import annotations

import hashlib
import hmac
from typing import Any, Callable
from unittest.mock import patch

import pytest
import sqlalchemy as sa
import sqlalchemy.exc

from scrapebot.config import constants
from scrapebot.domain.exceptions import ScrapeBotWarning, ValidationError
from scrapebot.domain.models import StepType
from scrapebot.infra.db import DatabaseConnection
from scrapebot.infra.tables import (
    instance_table,
    recipe2instance_table,
    recipe_table,
    recipestep_table,
    user_table,
)
from scrapebot.operations.readers import get_recipe_steps, get_recipes
from scrapebot.operations.writers import (
    activate_recipe,
    activate_recipe_step,
    add_instance,
    add_recipe,
    add_recipe_step,
    combine_recipe_with_instance,
    deactivate_recipe,
    deactivate_recipe_step,
    get_or_create_user,
    hash_password,
    remove_recipe_from_instance,
)

OWNER = "mario@haim.it"
SEARCH_TERMS = ["weather", "news", "football", "recipes", "elections"]


def _count(engine: Any, table: sa.Table, *criteria: Any) -> int:
    with engine.begin() as conn:
        return conn.execute(sa.select(sa.func.count()).select_from(table).where(*criteria)).scalar_one()


def _make_recipe(db: DatabaseConnection, active: bool = False) -> int:
    uid = add_recipe(db, "visit my website", OWNER, active=active)
    assert uid is not None
    return uid


# ---------------------------------------------------------------------------
# TestHashPassword
# ---------------------------------------------------------------------------


class TestHashPassword:
    def test_format(self) -> None:
        hashed = hash_password("secret", "abcdefgh")
        algorithm, salt, digest = hashed.split("$")
        assert algorithm == "sha512"
        assert salt == "abcdefgh"
        assert digest == hmac.new(b"abcdefgh", b"secret", hashlib.sha512).hexdigest()

    def test_salt_changes_hash(self) -> None:
        assert hash_password("secret", "aaaaaaaa") != hash_password("secret", "bbbbbbbb")


# ---------------------------------------------------------------------------
# TestGetOrCreateUser
# ---------------------------------------------------------------------------


class TestGetOrCreateUser:
    def test_creates_user_and_prints_password(
        self, db: DatabaseConnection, engine: Any, capsys: pytest.CaptureFixture[str]
    ) -> None:
        uid = get_or_create_user(db, OWNER)

        printed = capsys.readouterr().out
        assert f"ScrapeBot user {OWNER} created with password" in printed
        password = printed.strip().rsplit(" ", 1)[-1]
        assert len(password) == 16

        with engine.begin() as conn:
            row = conn.execute(sa.select(user_table).where(user_table.c.uid == uid)).one()
        assert row.email == OWNER
        assert row.name == OWNER
        assert row.active is True
        assert row.password.startswith("sha512$")
        assert password not in row.password

    def test_reuses_existing_user_and_normalises_email(
        self, db: DatabaseConnection, engine: Any, capsys: pytest.CaptureFixture[str]
    ) -> None:
        first = get_or_create_user(db, OWNER)
        capsys.readouterr()
        second = get_or_create_user(db, "  Mario@Haim.IT ")

        assert first == second
        assert capsys.readouterr().out == ""
        assert _count(engine, user_table) == 1

    def test_lost_creation_race_rereads_winner(self, db: DatabaseConnection, capsys: pytest.CaptureFixture[str]) -> None:
        conflict = sqlalchemy.exc.IntegrityError("INSERT", {}, Exception("Duplicate entry for key 'email'"))
        with patch(
            "scrapebot.operations.writers.UserRepository.find_active_uid", side_effect=[None, 42]
        ), patch("scrapebot.operations.writers.UserRepository.create", side_effect=conflict):
            assert get_or_create_user(db, OWNER) == 42
        assert capsys.readouterr().out == ""

    def test_deactivated_user_raises(self, db: DatabaseConnection, insert: Callable[..., int]) -> None:
        insert(user_table, email=OWNER, name=OWNER, password="sha512$x$y", active=False)
        with pytest.raises(ValidationError, match="deactivated"):
            get_or_create_user(db, OWNER)

    def test_database_failure_returns_none_with_warning(self, db: DatabaseConnection) -> None:
        failure = sqlalchemy.exc.OperationalError("SELECT", {}, Exception("Lost connection"))
        with patch("scrapebot.operations.writers.UserRepository.find_active_uid", side_effect=failure):
            with pytest.warns(ScrapeBotWarning, match="Lost connection"):
                assert get_or_create_user(db, OWNER) is None

    @pytest.mark.parametrize("email", ["", "   ", None])
    def test_empty_email_rejected(self, db: DatabaseConnection, email: Any) -> None:
        with pytest.raises(ValidationError, match="Email"):
            get_or_create_user(db, email)


# ---------------------------------------------------------------------------
# TestAddInstanceAndRecipe
# ---------------------------------------------------------------------------


class TestAddInstance:
    def test_creates_instance_owned_by_user(self, db: DatabaseConnection, engine: Any) -> None:
        uid = add_instance(db, " worker-1 ", OWNER, "  lab machine ")
        owner = get_or_create_user(db, OWNER)

        with engine.begin() as conn:
            row = conn.execute(sa.select(instance_table).where(instance_table.c.uid == uid)).one()
        assert row.name == "worker-1"
        assert row.description == "lab machine"
        assert row.owner_uid == owner

    def test_name_required(self, db: DatabaseConnection) -> None:
        with pytest.raises(ValidationError, match="Name"):
            add_instance(db, "", OWNER)


class TestAddRecipe:
    def test_new_recipe_is_inactive_with_defaults(self, db: DatabaseConnection) -> None:
        uid = _make_recipe(db)
        recipe = get_recipes(db, include_inactive=True).set_index("uid").loc[uid]
        assert recipe["name"] == "visit my website"
        assert not recipe["active"]
        assert not recipe["cookies"]
        assert recipe["interval"] == 15
        assert recipe["runs_count"] == 0

    def test_interval_must_be_positive(self, db: DatabaseConnection) -> None:
        with pytest.raises(ValidationError, match="Interval"):
            add_recipe(db, "visit my website", OWNER, interval=0)

    def test_flags_must_be_bool(self, db: DatabaseConnection) -> None:
        with pytest.raises(ValidationError, match="cookies"):
            add_recipe(db, "visit my website", OWNER, cookies="yes")

    def test_database_failure_returns_none_with_warning(self, db: DatabaseConnection) -> None:
        failure = sqlalchemy.exc.OperationalError("INSERT", {}, Exception("disk full"))
        get_or_create_user(db, OWNER)
        with patch("scrapebot.operations.writers.RecipeRepository.create", side_effect=failure):
            with pytest.warns(ScrapeBotWarning, match="disk full"):
                assert add_recipe(db, "visit my website", OWNER) is None


# ---------------------------------------------------------------------------
# TestAddRecipeStep
# ---------------------------------------------------------------------------


class TestAddRecipeStep:
    def test_visit_my_website_scenario(self, db: DatabaseConnection) -> None:
        recipe = _make_recipe(db)
        navigate = add_recipe_step(db, recipe, "navigate", "https://haim.it/")
        search = add_recipe_step(db, recipe, StepType.WRITE, random_items=SEARCH_TERMS)
        title = add_recipe_step(db, recipe, "get_pagetitle")

        steps = get_recipe_steps(db, recipe)
        assert steps["uid"].tolist() == [navigate, search, title]
        assert steps["type"].tolist() == ["navigate", "write", "get_pagetitle"]
        assert steps.loc[1, "random_items"] == sorted(SEARCH_TERMS)
        assert steps["use_random_item"].tolist() == [False, True, False]

    def test_sort_defaults_to_count_plus_one(self, db: DatabaseConnection, engine: Any) -> None:
        recipe = _make_recipe(db)
        first = add_recipe_step(db, recipe)
        second = add_recipe_step(db, recipe, active=False)
        third = add_recipe_step(db, recipe)

        with engine.begin() as conn:
            sorts = dict(conn.execute(sa.select(recipestep_table.c.uid, recipestep_table.c.sort)).all())
        assert [sorts[first], sorts[second], sorts[third]] == [1, 2, 3]

    def test_explicit_sort(self, db: DatabaseConnection) -> None:
        recipe = _make_recipe(db)
        late = add_recipe_step(db, recipe, "log", "late", sort=10)
        early = add_recipe_step(db, recipe, "log", "early", sort=5)
        assert get_recipe_steps(db, recipe)["uid"].tolist() == [early, late]

    def test_default_type_is_log(self, db: DatabaseConnection) -> None:
        recipe = _make_recipe(db)
        add_recipe_step(db, recipe)
        assert get_recipe_steps(db, recipe)["type"].tolist() == ["log"]

    def test_unknown_type_rejected(self, db: DatabaseConnection) -> None:
        recipe = _make_recipe(db)
        with pytest.raises(ValidationError, match="Type needs to be one of"):
            add_recipe_step(db, recipe, "teleport")

    def test_use_data_item_requires_value(self, db: DatabaseConnection) -> None:
        recipe = _make_recipe(db)
        with pytest.raises(ValidationError, match="use_data_item"):
            add_recipe_step(db, recipe, "write", use_data_item=True)

    def test_use_data_item_with_value(self, db: DatabaseConnection) -> None:
        recipe = _make_recipe(db)
        add_recipe_step(db, recipe, "write", "query", use_data_item=True)
        assert get_recipe_steps(db, recipe)["use_data_item"].tolist() == [True]

    def test_unknown_recipe_rejected(self, db: DatabaseConnection) -> None:
        with pytest.raises(ValidationError, match="existing recipe"):
            add_recipe_step(db, 999, "log")

    def test_random_items_must_not_be_a_string(self, db: DatabaseConnection) -> None:
        recipe = _make_recipe(db)
        with pytest.raises(ValidationError, match="random_items"):
            add_recipe_step(db, recipe, "write", random_items="weather")


# ---------------------------------------------------------------------------
# TestRecipeToggles
# ---------------------------------------------------------------------------


class TestRecipeToggles:
    def test_activate_is_idempotent(self, db: DatabaseConnection) -> None:
        recipe = _make_recipe(db)
        assert activate_recipe(db, recipe) is True
        assert activate_recipe(db, recipe) is True
        assert get_recipes(db)["uid"].tolist() == [recipe]

    def test_deactivate(self, db: DatabaseConnection) -> None:
        recipe = _make_recipe(db, active=True)
        assert deactivate_recipe(db, recipe) is True
        assert get_recipes(db).empty

    def test_unknown_recipe_returns_false_with_warning(self, db: DatabaseConnection) -> None:
        with pytest.warns(ScrapeBotWarning, match="does not exist"):
            assert activate_recipe(db, 999) is False

    def test_no_write_when_already_in_target_state(self, db: DatabaseConnection) -> None:
        recipe = _make_recipe(db, active=True)
        with patch("scrapebot.operations.writers.RecipeRepository.set_active") as set_active:
            assert activate_recipe(db, recipe) is True
        set_active.assert_not_called()

    def test_state_that_never_converges_gives_up(self, db: DatabaseConnection) -> None:
        recipe = _make_recipe(db)
        with patch("scrapebot.operations.writers.RecipeRepository.set_active", return_value=0) as set_active:
            with pytest.warns(ScrapeBotWarning, match="could not be changed"):
                assert activate_recipe(db, recipe) is False
        assert set_active.call_count == constants.WRITE_VERIFY_ATTEMPTS

    def test_database_failure_returns_false_with_warning(self, db: DatabaseConnection) -> None:
        recipe = _make_recipe(db)
        failure = sqlalchemy.exc.OperationalError("UPDATE", {}, Exception("read-only"))
        with patch("scrapebot.operations.writers.RecipeRepository.set_active", side_effect=failure):
            with pytest.warns(ScrapeBotWarning, match="read-only"):
                assert activate_recipe(db, recipe) is False

    def test_bool_id_rejected(self, db: DatabaseConnection) -> None:
        with pytest.raises(ValidationError, match="recipe_id"):
            activate_recipe(db, True)


class TestStepToggles:
    def test_deactivate_and_activate_step(self, db: DatabaseConnection) -> None:
        recipe = _make_recipe(db)
        step = add_recipe_step(db, recipe, "log", "hello")

        assert deactivate_recipe_step(db, recipe, step) is True
        assert get_recipe_steps(db, recipe).empty
        assert deactivate_recipe_step(db, recipe, step) is True
        assert activate_recipe_step(db, recipe, step) is True
        assert get_recipe_steps(db, recipe)["uid"].tolist() == [step]

    def test_step_of_another_recipe_returns_false(self, db: DatabaseConnection) -> None:
        recipe = _make_recipe(db)
        other = _make_recipe(db)
        step = add_recipe_step(db, recipe, "log", "hello")
        with pytest.warns(ScrapeBotWarning, match="does not exist"):
            assert deactivate_recipe_step(db, other, step) is False


# ---------------------------------------------------------------------------
# TestLinks
# ---------------------------------------------------------------------------


class TestLinks:
    def test_combine_is_idempotent(self, db: DatabaseConnection, engine: Any) -> None:
        recipe = _make_recipe(db)
        instance = add_instance(db, "worker-1", OWNER)

        assert combine_recipe_with_instance(db, recipe, instance) is True
        assert combine_recipe_with_instance(db, recipe, instance) is True
        assert _count(engine, recipe2instance_table) == 1
        assert get_recipes(db, instance_filter=instance, include_inactive=True)["uid"].tolist() == [recipe]

    def test_remove(self, db: DatabaseConnection, engine: Any) -> None:
        recipe = _make_recipe(db)
        instance = add_instance(db, "worker-1", OWNER)
        combine_recipe_with_instance(db, recipe, instance)

        assert remove_recipe_from_instance(db, recipe, instance) is True
        assert remove_recipe_from_instance(db, recipe, instance) is True
        assert _count(engine, recipe2instance_table) == 0

    def test_remove_duplicate_links(
        self, db: DatabaseConnection, engine: Any, insert: Callable[..., int]
    ) -> None:
        recipe = _make_recipe(db)
        instance = add_instance(db, "worker-1", OWNER)
        insert(recipe2instance_table, recipe_uid=recipe, instance_uid=instance)
        insert(recipe2instance_table, recipe_uid=recipe, instance_uid=instance)

        assert remove_recipe_from_instance(db, recipe, instance) is True
        assert _count(engine, recipe2instance_table) == 0

    def test_remove_more_duplicates_than_attempts(
        self, db: DatabaseConnection, engine: Any, insert: Callable[..., int]
    ) -> None:
        recipe = _make_recipe(db)
        instance = add_instance(db, "worker-1", OWNER)
        duplicates = constants.WRITE_VERIFY_ATTEMPTS + 2
        for _ in range(duplicates):
            insert(recipe2instance_table, recipe_uid=recipe, instance_uid=instance)

        assert remove_recipe_from_instance(db, recipe, instance) is True
        assert _count(engine, recipe2instance_table) == 0

    def test_remove_that_deletes_nothing_gives_up(
        self, db: DatabaseConnection, engine: Any, insert: Callable[..., int]
    ) -> None:
        recipe = _make_recipe(db)
        instance = add_instance(db, "worker-1", OWNER)
        insert(recipe2instance_table, recipe_uid=recipe, instance_uid=instance)

        with patch(
            "scrapebot.operations.writers.RecipeInstanceRepository.unlink_one", return_value=0
        ) as unlink_one:
            with pytest.warns(ScrapeBotWarning, match="could not be changed"):
                assert remove_recipe_from_instance(db, recipe, instance) is False
        assert unlink_one.call_count == constants.WRITE_VERIFY_ATTEMPTS
        assert _count(engine, recipe2instance_table) == 1

    def test_unknown_instance_returns_false(self, db: DatabaseConnection, engine: Any) -> None:
        recipe = _make_recipe(db)
        with pytest.warns(ScrapeBotWarning, match="does not exist"):
            assert combine_recipe_with_instance(db, recipe, 999) is False
        assert _count(engine, recipe2instance_table) == 0

    def test_unknown_recipe_returns_false(self, db: DatabaseConnection, insert: Callable[..., int]) -> None:
        instance = insert(instance_table, name="worker")
        with pytest.warns(ScrapeBotWarning):
            assert remove_recipe_from_instance(db, 999, instance) is False

    def test_links_do_not_touch_recipe_table(self, db: DatabaseConnection, engine: Any) -> None:
        recipe = _make_recipe(db)
        instance = add_instance(db, "worker-1", OWNER)
        combine_recipe_with_instance(db, recipe, instance)
        assert _count(engine, recipe_table) == 1
