"""Operations layer public API.

Import readers, writers, interchange, screenshot retrieval and cloud
orchestration from here.
"""

from scrapebot.operations.interchange import export_recipe, import_recipe
from scrapebot.operations.orchestrator import (
    default_machine_image,
    launch_database,
    launch_instance,
    launch_storage,
    render_instance_config,
    terminate_database,
    terminate_instance,
    terminate_storage,
)
from scrapebot.operations.readers import (
    get_instances,
    get_recipe_steps,
    get_recipes,
    get_run_data,
    get_run_log,
    get_runs,
)
from scrapebot.operations.screenshots import collect_screenshots
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
    remove_recipe_from_instance,
)

__all__ = [
    # Readers
    "get_instances",
    "get_recipes",
    "get_recipe_steps",
    "get_runs",
    "get_run_log",
    "get_run_data",
    # Writers
    "get_or_create_user",
    "add_instance",
    "add_recipe",
    "add_recipe_step",
    "activate_recipe",
    "deactivate_recipe",
    "activate_recipe_step",
    "deactivate_recipe_step",
    "combine_recipe_with_instance",
    "remove_recipe_from_instance",
    # Interchange
    "export_recipe",
    "import_recipe",
    # Screenshots
    "collect_screenshots",
    # Orchestration
    "default_machine_image",
    "launch_database",
    "terminate_database",
    "launch_storage",
    "terminate_storage",
    "launch_instance",
    "terminate_instance",
    "render_instance_config",
]
