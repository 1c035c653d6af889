"""Main entry point for the tenantops diagnostics CLI.

Sets up the Typer CLI application, wires the console display and the
resilience components it inspects (Composition Root), and defines commands
for checking how errors are classified, which backoff delays a category
produces and which settings are in effect.
"""

import logging
import random
from typing import Annotated, Any, Dict, Optional

import typer

from tenantops.domain.models.classification import ErrorCategory
from tenantops.infrastructure.cli.display import ConsoleDisplay
from tenantops.infrastructure.config.settings import get_config, load_configuration, load_resilience_settings
from tenantops.infrastructure.monitoring.logger_setup import parse_log_level, setup_logging
from tenantops.infrastructure.resilience.backoff import BackoffPolicy
from tenantops.infrastructure.resilience.error_classifier import ErrorClassifier

logger = logging.getLogger(__name__)

_dependencies: Dict[str, Any] = {}


def create_dependencies() -> Dict[str, Any]:
    """Creates and wires up the dependencies used by the commands.

    This acts as the Composition Root. Built lazily on first use so that
    importing the module has no side effects.
    """
    if _dependencies:
        return _dependencies
    load_configuration()
    _dependencies['ui'] = ConsoleDisplay()
    _dependencies['classifier'] = ErrorClassifier()
    logger.debug("CLI dependencies initialized.")
    return _dependencies


def _parse_category(value: str) -> Optional[ErrorCategory]:
    normalized = value.strip().replace("_", "").replace("-", "").lower()
    for category in ErrorCategory:
        if normalized in (category.value.lower(), category.name.replace("_", "").lower()):
            return category
    return None


# --- Typer App Definition ---
app = typer.Typer(
    name="tenantops",
    help="tenantops: inspect error classification, backoff schedules and resilience settings.",
    add_completion=False,
)


@app.callback()
def main_callback(
    log_level: Annotated[
        Optional[str],
        typer.Option("--log-level", "-l", help="Logging level (DEBUG, INFO, WARNING, ...).")
    ] = None,
):
    """Configures logging before any command runs."""
    load_configuration()
    level = parse_log_level(log_level or get_config('logging.level', 'WARNING'), logging.WARNING)
    setup_logging(log_level=level, log_file=get_config('logging.file'))


@app.command()
def classify(
    message: Annotated[str, typer.Argument(help="Error message to classify.")],
    critical: Annotated[
        bool,
        typer.Option("--critical", "-c", help="Treat the failure as critical (never retried).")
    ] = False,
):
    """Show how an error message is classified."""
    deps = create_dependencies()
    classification = deps['classifier'].classify(message, critical=critical)
    logger.debug(f"Classified {message!r} as {classification.category.value}")
    deps['ui'].display_classification(message, classification)


@app.command()
def backoff(
    category: Annotated[str, typer.Option("--category", "-C", help="Error category, e.g. Throttling or Timeout.")],
    attempts: Annotated[int, typer.Option("--attempts", "-n", min=1, help="Number of failed attempts to show.")] = 3,
    throttle_mode: Annotated[
        bool,
        typer.Option("--throttle-mode", help="Apply explicit throttle mode (doubles Throttling delays).")
    ] = False,
    base_delay: Annotated[
        Optional[float],
        typer.Option("--base-delay", min=0.0, help="Base delay in seconds (defaults to configuration).")
    ] = None,
    seed: Annotated[Optional[int], typer.Option("--seed", help="Seed for the jitter random source.")] = None,
):
    """Show the delay schedule a category produces."""
    deps = create_dependencies()
    ui = deps['ui']
    parsed = _parse_category(category)
    if parsed is None:
        choices = ", ".join(c.value for c in ErrorCategory)
        ui.display_error(f"Unknown category '{category}'. Choose one of: {choices}")
        raise typer.Exit(code=1)

    try:
        settings = load_resilience_settings()
    except ValueError as e:
        ui.display_error(f"Invalid configuration: {e}")
        raise typer.Exit(code=1)

    classification = deps['classifier'].classification_for(parsed)
    if not classification.retryable:
        ui.display_info(f"{parsed.value} failures are not retried; delays below apply only if forced.")
    policy = BackoffPolicy(
        base_delay=settings.base_delay_seconds if base_delay is None else base_delay,
        max_delay=settings.max_delay_seconds,
        rng=random.Random(seed),
    )
    delays = policy.schedule(
        attempts,
        classification.backoff_multiplier,
        (throttle_mode or settings.throttle_retry_mode) and parsed is ErrorCategory.THROTTLING,
    )
    ui.display_backoff_schedule(parsed.value, delays)


@app.command(name="config")
def config_command():
    """Show the effective resilience settings."""
    deps = create_dependencies()
    try:
        settings = load_resilience_settings()
    except ValueError as e:
        deps['ui'].display_error(f"Invalid configuration: {e}")
        raise typer.Exit(code=1)
    deps['ui'].display_settings(settings.to_dict())


# --- Main Execution Guard ---

def cli_entry_point():
    """Function to be called by the script entry point in pyproject.toml."""
    app()


if __name__ == "__main__":
    cli_entry_point()
