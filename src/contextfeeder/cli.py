"""Command-line interface for contextfeeder."""

from __future__ import annotations

import json
import logging
import sys
from pathlib import Path

import click
from pydantic import ValidationError

from contextfeeder import __version__
from contextfeeder.budget.profiles import ContentCategory, ModelRegistry
from contextfeeder.budget.tracker import TokenBudgetTracker
from contextfeeder.config import (
    CONFIG_FILE,
    ProjectConfig,
    find_project_root,
    get_feeder_dir,
    load_config,
    save_config,
    set_config_value,
)
from contextfeeder.context.compression import CompressionCascade
from contextfeeder.context.feeder import ContextFeeder
from contextfeeder.context.models import ContextCategory, ContextItem
from contextfeeder.context.sources import FeedRequest
from contextfeeder.exceptions import ContextFeederError
from contextfeeder.ui.console import Console

console = Console()

_CATEGORY_CHOICE = click.Choice([c.value for c in ContentCategory])
_INPUT_FILE = click.Path(exists=True, dir_okay=False, allow_dash=True)


def _get_project_root(path: str | None = None) -> Path:
    """Find the project root or error."""
    if path:
        root = Path(path).resolve()
        if not root.exists():
            console.error(f"Path does not exist: {path}")
            sys.exit(1)
        return root

    root = find_project_root()
    if root is None:
        console.error(
            "No contextfeeder project found. Run 'contextfeeder init' first, "
            "or specify a path with --path."
        )
        sys.exit(1)
    return root


def _load_project_config(path: str | None) -> ProjectConfig:
    """Config for the project at `path` or above the cwd; defaults if there is none."""
    root = Path(path).resolve() if path else find_project_root()
    if root is None:
        return ProjectConfig()
    try:
        return load_config(root)
    except ContextFeederError as e:
        console.error(str(e))
        sys.exit(1)


def _make_tracker(config: ProjectConfig, model: str | None) -> TokenBudgetTracker:
    try:
        registry = ModelRegistry.from_config(config)
        return TokenBudgetTracker(registry, model_id=model, config=config.budget)
    except ContextFeederError as e:
        console.error(str(e))
        sys.exit(1)


def _read_input(file: str) -> str:
    if file == "-":
        return sys.stdin.read()
    return Path(file).read_text(encoding="utf-8")


@click.group()
@click.version_option(version=__version__, prog_name="contextfeeder")
@click.option("--verbose", "-v", is_flag=True, help="Log pipeline decisions.")
def main(verbose: bool):
    """contextfeeder - fit agent context into a model's token budget."""
    logging.basicConfig(
        level=logging.INFO if verbose else logging.WARNING,
        format="%(message)s",
        handlers=[console.log_handler()],
        force=True,
    )


@main.command()
@click.option("--path", "-p", default=None, help="Path to the project root.")
@click.option("--model", default=None, help="Default model id for this project.")
def init(path: str | None, model: str | None):
    """Create a .contextfeeder/config.json with default settings."""
    root = Path(path or ".").resolve()
    if not root.exists():
        console.error(f"Path does not exist: {root}")
        sys.exit(1)

    console.banner()
    config_path = get_feeder_dir(root) / CONFIG_FILE
    if config_path.exists():
        console.warning(f"Config already exists: {config_path}")
        return

    config = ProjectConfig(name=root.name, root_path=str(root), default_model=model or "")
    # Validate the model id before writing anything
    _make_tracker(config, None)
    save_config(root, config)
    console.success(f"Wrote {config_path}")


@main.command()
@click.option("--path", "-p", default=None, help="Path to the project root.")
def models(path: str | None):
    """List the registered model profiles."""
    config = _load_project_config(path)
    tracker = _make_tracker(config, None)
    console.show_profiles(tracker.registry.profiles(), tracker.registry.default_model_id)


@main.command()
@click.argument("file", type=_INPUT_FILE)
@click.option("--category", "-c", type=_CATEGORY_CHOICE, default=None,
              help="Content category (auto-detected when omitted).")
@click.option("--model", "-m", default=None, help="Model profile to estimate for.")
@click.option("--path", "-p", default=None, help="Path to the project root.")
def estimate(file: str, category: str | None, model: str | None, path: str | None):
    """Estimate the token cost of FILE (use - for stdin)."""
    tracker = _make_tracker(_load_project_config(path), model)
    text = _read_input(file)

    ct = ContentCategory(category) if category else tracker.detect_content_type(text)
    tokens = tracker.estimate_tokens(text, ct)
    profile = tracker.current_profile

    console.info(f"Model: {profile.display_name}")
    console.info(f"Content: {ct.value} ({len(text):,} chars, {profile.ratio_for(ct):g} chars/token)")
    console.console.print(f"[bold]{tokens:,}[/bold] tokens")


@main.command()
@click.argument("file", type=_INPUT_FILE)
@click.option("--target", "-t", required=True, type=int, help="Target size in tokens.")
@click.option("--category", "-c", type=_CATEGORY_CHOICE, default=None,
              help="Content category (auto-detected when omitted).")
@click.option("--model", "-m", default=None, help="Model profile to estimate for.")
@click.option("--path", "-p", default=None, help="Path to the project root.")
def compress(file: str, target: int, category: str | None, model: str | None, path: str | None):
    """Run the compression cascade on FILE and print the result."""
    config = _load_project_config(path)
    tracker = _make_tracker(config, model)
    text = _read_input(file)

    ct = ContentCategory(category) if category else tracker.detect_content_type(text)
    item = ContextItem(
        id="cli-input",
        label=file,
        content=text,
        content_type=ct,
        category=ContextCategory.SUPPLEMENTARY,
        estimated_tokens=tracker.estimate_tokens(text, ct),
    )
    result = CompressionCascade(tracker, config.compression).compress(item, target)

    click.echo(result.content)
    stage = result.compression.value if result.compression else "none"
    console.info(
        f"{item.estimated_tokens:,} -> {result.estimated_tokens:,} tokens "
        f"(target {target:,}, last stage: {stage})"
    )
    if result.estimated_tokens > target:
        console.warning("Could not reach the target size")


@main.command()
@click.argument("request_file", type=_INPUT_FILE)
@click.option("--model", "-m", default=None, help="Override the request's model.")
@click.option("--messages", is_flag=True, help="Print the assembled messages.")
@click.option("--json", "as_json", is_flag=True, help="Print the result as JSON.")
@click.option("--path", "-p", default=None, help="Path to the project root.")
def feed(request_file: str, model: str | None, messages: bool, as_json: bool, path: str | None):
    """Assemble budgeted messages from a JSON request (use - for stdin)."""
    config = _load_project_config(path)
    try:
        request = FeedRequest.model_validate_json(_read_input(request_file))
    except ValidationError as e:
        console.error(f"Invalid request: {e}")
        sys.exit(1)

    tracker = _make_tracker(config, None)
    feeder = ContextFeeder(tracker, config)
    try:
        result = feeder.build_optimized_messages(
            request.user_message,
            request.system_prompt,
            request.context,
            additional_items=request.additional_items,
            agent_type=request.agent_type,
            model_id=model or request.model,
        )
    except ContextFeederError as e:
        console.error(str(e))
        sys.exit(1)

    if as_json:
        click.echo(result.model_dump_json(indent=2))
        return

    console.show_budget(result.budget)
    console.show_items("Included", result.included_items)
    if result.excluded_items:
        console.show_items("Excluded", result.excluded_items)
    console.info(result.summary())
    if messages:
        console.show_messages(result.messages)


@main.command("config")
@click.argument("action", type=click.Choice(["set", "get", "show"]))
@click.argument("key", required=False)
@click.argument("value", required=False)
@click.option("--path", "-p", default=None, help="Path to the project root.")
def config_cmd(action: str, key: str | None, value: str | None, path: str | None):
    """Manage contextfeeder configuration."""
    root = _get_project_root(path)
    try:
        config = load_config(root)
    except ContextFeederError as e:
        console.error(str(e))
        sys.exit(1)

    if action == "show":
        console.console.print_json(json.dumps(config.model_dump(), indent=2))
    elif action == "get":
        if not key:
            console.error("Usage: contextfeeder config get <key>")
            sys.exit(1)
        data = config.model_dump()
        for part in key.split("."):
            if isinstance(data, dict) and part in data:
                data = data[part]
            else:
                console.error(f"Unknown key: {key}")
                sys.exit(1)
        console.console.print(f"{key} = {data}")
    elif action == "set":
        if not key or value is None:
            console.error("Usage: contextfeeder config set <key> <value>")
            sys.exit(1)
        try:
            # Try to parse as JSON for non-string values
            try:
                parsed_value = json.loads(value)
            except json.JSONDecodeError:
                parsed_value = value

            config = set_config_value(config, key, parsed_value)
            save_config(root, config)
            console.success(f"Set {key} = {parsed_value}")
        except KeyError:
            console.error(f"Unknown config key: {key}")
            sys.exit(1)
        except ContextFeederError as e:
            console.error(str(e))
            sys.exit(1)


if __name__ == "__main__":
    main()
