"""
CLI entrypoint for LLM Rank Watcher.

Provides a dual-mode command-line interface with:
- Human-friendly output: Rich spinners, tables, progress bars, colored text
- Agent-friendly output: Structured JSON for AI automation
- Quiet mode: Tab-separated minimal output for shell scripts

Commands:
    run: Ask every active prompt, extract Top 3 rankings, score the run
    add-result: Ingest a reply obtained outside the completion service
    override: Replace an outcome's ranking with a reviewer's ranking
    clear-override: Restore an outcome's extracted ranking
    report: Show (and optionally write) the metrics of a run
    validate: Validate configuration without running anything

Exit codes:
    0: Success
    1: Configuration error (invalid YAML, missing API key)
    2: Database error (cannot create/access SQLite)
    3: Run failed (a completion call failed, the run is marked failed)
    4: Invalid input (bad override ranking, unknown run or outcome)

Examples:
    llm-rank-watcher run --config rank_watcher.config.yaml
    llm-rank-watcher run --config rank_watcher.config.yaml --format json
    llm-rank-watcher override -c rank_watcher.config.yaml --outcome-id 3 \\
        --ranking '[{"position": 1, "entity_name": "Acme", "entity_kind": "brand"}]'
    llm-rank-watcher report -c rank_watcher.config.yaml --html

Security:
    - API keys are loaded from environment variables only
    - Errors may contain file paths but never API keys
"""

import asyncio
import json
from importlib.metadata import PackageNotFoundError
from pathlib import Path

import typer
from rich.traceback import install as install_rich_traceback

from llm_rank_watcher.config.loader import load_config
from llm_rank_watcher.config.schema import Brand, RuntimeConfig
from llm_rank_watcher.exceptions import (
    ConfigurationError,
    DatabaseError,
    OverrideValidationError,
    RunExecutionError,
    RunStateError,
)
from llm_rank_watcher.llm_runner.mock_client import MockCompletionService
from llm_rank_watcher.llm_runner.models import build_completion_service
from llm_rank_watcher.llm_runner.runner import RunOptions, RunOrchestrator
from llm_rank_watcher.report.generator import build_run_report, write_report
from llm_rank_watcher.scoring.position import resolve_position
from llm_rank_watcher.storage.records import PromptOutcome
from llm_rank_watcher.storage.store import OutcomeStore
from llm_rank_watcher.utils.console import (
    create_progress_bar,
    error,
    info,
    output_mode,
    print_banner,
    print_outcomes_table,
    print_report_summary,
    print_run_summary,
    spinner,
    success,
    warning,
)
from llm_rank_watcher.utils.logging import setup_logging
from llm_rank_watcher.utils.time import run_id_from_timestamp

install_rich_traceback(show_locals=False)

# Exit codes
EXIT_SUCCESS = 0
EXIT_CONFIG_ERROR = 1
EXIT_DB_ERROR = 2
EXIT_RUN_FAILED = 3
EXIT_INVALID_INPUT = 4

app = typer.Typer(
    name="llm-rank-watcher",
    help="Measure where LLMs rank your brand in their Top 3",
    add_completion=False,
)

CONFIG_OPTION = typer.Option(
    ...,
    "--config",
    "-c",
    help="Path to YAML configuration file",
    file_okay=True,
    dir_okay=False,
)
FORMAT_OPTION = typer.Option(
    "text",
    "--format",
    "-f",
    help="Output format: 'text' (human-friendly) or 'json' (machine-readable)",
)
QUIET_OPTION = typer.Option(False, "--quiet", "-q", help="Minimal output (tab-separated values)")
VERBOSE_OPTION = typer.Option(False, "--verbose", "-v", help="Enable debug logging")


def _setup(format: str, quiet: bool = False, verbose: bool = False) -> None:
    """Apply output flags and configure logging for one command."""
    if format not in ("text", "json"):
        error(f"Invalid format: {format}. Must be 'text' or 'json'")
        raise typer.Exit(EXIT_INVALID_INPUT)

    output_mode.format = format
    output_mode.quiet = quiet

    # JSON logs would interleave with Rich output in human mode
    setup_logging(verbose=verbose, quiet_logs=output_mode.is_human() and not verbose)


def _fail(message: str, exit_code: int) -> typer.Exit:
    """Report an error (flushing JSON in agent mode) and build the exit."""
    error(message)
    output_mode.flush_json()
    return typer.Exit(exit_code)


def _load(config: Path, require_api_key: bool = True) -> RuntimeConfig:
    try:
        with spinner("Loading configuration..."):
            return load_config(config, require_api_key=require_api_key)
    except ConfigurationError as e:
        raise _fail(str(e), EXIT_CONFIG_ERROR) from e


def _open_store(runtime_config: RuntimeConfig) -> OutcomeStore:
    db_path = runtime_config.run_settings.sqlite_db_path
    try:
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        with spinner("Opening database..."):
            return OutcomeStore(db_path)
    except (DatabaseError, OSError) as e:
        raise _fail(f"Failed to initialize database: {e}", EXIT_DB_ERROR) from e


def _orchestrator(
    runtime_config: RuntimeConfig, store: OutcomeStore, mock: bool = False
) -> RunOrchestrator:
    if mock:
        service = MockCompletionService()
    else:
        service = build_completion_service(
            runtime_config.completion.provider, runtime_config.api_key
        )
    return RunOrchestrator(store, service, runtime_config.entities(), runtime_config.brand)


def _outcome_row(outcome: PromptOutcome, brand: Brand) -> dict:
    """Flatten an outcome for print_outcomes_table()."""
    ranking = outcome.effective_ranking
    return {
        "outcome_id": outcome.outcome_id,
        "prompt_id": outcome.prompt_id,
        "category_id": outcome.category_id,
        "ranking": [entry.entity_name for entry in ranking],
        "brand_position": resolve_position(ranking, brand.name, brand.aliases),
        "score": outcome.score,
        "flags": outcome.flags.active(),
    }


def _read_ranking(ranking: str | None, ranking_file: Path | None) -> list:
    """Parse the override ranking JSON from --ranking or --ranking-file."""
    if (ranking is None) == (ranking_file is None):
        raise _fail("Provide exactly one of --ranking or --ranking-file", EXIT_INVALID_INPUT)

    try:
        raw = ranking if ranking is not None else ranking_file.read_text(encoding="utf-8")
        data = json.loads(raw)
    except OSError as e:
        raise _fail(f"Cannot read ranking file: {e}", EXIT_INVALID_INPUT) from e
    except json.JSONDecodeError as e:
        raise _fail(f"Ranking is not valid JSON: {e}", EXIT_INVALID_INPUT) from e

    if not isinstance(data, list):
        raise _fail(
            "Ranking must be a JSON array of {position, entity_name, entity_kind}",
            EXIT_INVALID_INPUT,
        )
    return data


@app.command()
def run(
    config: Path = CONFIG_OPTION,
    run_id: str = typer.Option(
        None, "--run-id", help="Run identifier (default: current UTC timestamp)"
    ),
    force: bool = typer.Option(
        False, "--force", help="Discard existing outcomes of the run and re-run"
    ),
    mock: bool = typer.Option(
        False, "--mock", help="Use canned replies instead of the completion API"
    ),
    html: bool = typer.Option(
        True, "--html/--no-html", help="Write report.html into the output directory"
    ),
    format: str = FORMAT_OPTION,
    quiet: bool = QUIET_OPTION,
    verbose: bool = VERBOSE_OPTION,
):
    """
    Ask every active prompt once and score the brand's Top 3 positions.

    Prompts run sequentially. The first failed completion marks the run
    failed, keeps the outcomes stored so far and exits with code 3.

    Exit codes:
      0: Run completed
      1: Configuration error
      2: Database error
      3: Run failed
      4: Invalid input (e.g. run already has outcomes without --force)
    """
    _setup(format, quiet, verbose)
    print_banner(_read_version())

    runtime_config = _load(config, require_api_key=not mock)
    prompts = runtime_config.active_prompts()
    success(f"Loaded {len(prompts)} active prompts, {len(runtime_config.competitors)} competitors")

    store = _open_store(runtime_config)
    run_id = run_id or run_id_from_timestamp()

    try:
        store.create_run(run_id, runtime_config.brand.name)
        orchestrator = _orchestrator(runtime_config, store, mock=mock)
    except DatabaseError as e:
        raise _fail(f"Failed to create run: {e}", EXIT_DB_ERROR) from e
    except ValueError as e:
        raise _fail(str(e), EXIT_CONFIG_ERROR) from e

    settings = runtime_config.run_settings
    options = RunOptions(
        model=settings.model,
        temperature=settings.temperature,
        max_tokens=settings.max_tokens,
        force=force,
        timeout_seconds=settings.request_timeout_seconds,
        system_prompt=runtime_config.system_prompt,
        max_stored_chars=settings.max_stored_response_chars,
    )
    info(f"Run {run_id}: {len(prompts)} prompts with {settings.model}")

    progress = create_progress_bar()
    try:
        with progress:
            task = progress.add_task("Running prompts", total=len(prompts))

            def on_progress(completed: int, total: int, prompt_id: str) -> None:
                progress.update(task, completed=completed, description=f"Prompt {prompt_id}")

            result = asyncio.run(
                orchestrator.run_prompts(run_id, prompts, options, progress_callback=on_progress)
            )
    except RunExecutionError as e:
        error(str(e))
        outcomes = store.list_outcomes(run_id)
        composite = store.get_composite(run_id)
        print_outcomes_table([_outcome_row(o, runtime_config.brand) for o in outcomes])
        print_run_summary(
            run_id=run_id,
            status="failed",
            composite=composite.overall if composite else 0.0,
            completed=e.completed_prompts,
            total=len(prompts),
            tokens_used=e.tokens_used,
        )
        raise typer.Exit(EXIT_RUN_FAILED) from e
    except RunStateError as e:
        raise _fail(str(e), EXIT_INVALID_INPUT) from e
    except DatabaseError as e:
        raise _fail(f"Database error during run: {e}", EXIT_DB_ERROR) from e

    print_outcomes_table([_outcome_row(o, runtime_config.brand) for o in result.outcomes])

    if html:
        try:
            with spinner("Generating report..."):
                report = build_run_report(store, run_id, runtime_config.brand)
                report_path = write_report(report, settings.output_dir)
            info(f"View report: file://{report_path.absolute()}")
        except (OSError, ValueError) as e:
            warning(f"Report not written: {e}")

    print_run_summary(
        run_id=run_id,
        status="completed",
        composite=result.composite.overall if result.composite else 0.0,
        completed=len(result.outcomes),
        total=len(prompts),
        tokens_used=result.tokens_used,
    )
    raise typer.Exit(EXIT_SUCCESS)


@app.command("add-result")
def add_result(
    config: Path = CONFIG_OPTION,
    run_id: str = typer.Option(..., "--run-id", help="Run to add the outcome to"),
    prompt_id: str = typer.Option(..., "--prompt-id", help="Configured prompt the reply answers"),
    reply: str = typer.Option(None, "--reply", help="Reply text"),
    reply_file: Path = typer.Option(
        None, "--reply-file", help="File holding the reply text", dir_okay=False
    ),
    format: str = FORMAT_OPTION,
    verbose: bool = VERBOSE_OPTION,
):
    """
    Record a reply obtained outside the completion service.

    The reply is extracted and scored like a run reply, the run's composite
    is recomputed and the run is marked completed. The run is created if it
    does not exist yet.
    """
    _setup(format, verbose=verbose)

    runtime_config = _load(config, require_api_key=False)
    prompt = next((p for p in runtime_config.prompts if p.id == prompt_id), None)
    if prompt is None:
        raise _fail(f"Unknown prompt id: {prompt_id}", EXIT_INVALID_INPUT)

    if (reply is None) == (reply_file is None):
        raise _fail("Provide exactly one of --reply or --reply-file", EXIT_INVALID_INPUT)
    try:
        reply_text = reply if reply is not None else reply_file.read_text(encoding="utf-8")
    except OSError as e:
        raise _fail(f"Cannot read reply file: {e}", EXIT_INVALID_INPUT) from e

    store = _open_store(runtime_config)
    # Recording needs no completion service
    orchestrator = RunOrchestrator(
        store, MockCompletionService(), runtime_config.entities(), runtime_config.brand
    )

    try:
        store.create_run(run_id, runtime_config.brand.name)
        outcome = orchestrator.record_result(
            run_id,
            prompt,
            reply_text,
            max_stored_chars=runtime_config.run_settings.max_stored_response_chars,
        )
    except RunStateError as e:
        raise _fail(str(e), EXIT_INVALID_INPUT) from e
    except DatabaseError as e:
        raise _fail(f"Database error: {e}", EXIT_DB_ERROR) from e

    success(f"Recorded outcome {outcome.outcome_id} for prompt '{prompt_id}'")
    print_outcomes_table([_outcome_row(outcome, runtime_config.brand)], title="Recorded Outcome")
    output_mode.flush_json()


@app.command()
def override(
    config: Path = CONFIG_OPTION,
    outcome_id: int = typer.Option(..., "--outcome-id", help="Outcome to override"),
    ranking: str = typer.Option(
        None, "--ranking", help="JSON array of {position, entity_name, entity_kind}"
    ),
    ranking_file: Path = typer.Option(
        None, "--ranking-file", help="File holding the ranking JSON", dir_okay=False
    ),
    format: str = FORMAT_OPTION,
    verbose: bool = VERBOSE_OPTION,
):
    """
    Replace an outcome's ranking with a reviewer's ranking.

    The extracted ranking is kept for audit; the outcome is rescored and
    flagged manual_override. An empty array records "brand not ranked".
    """
    _setup(format, verbose=verbose)

    runtime_config = _load(config, require_api_key=False)
    entries = _read_ranking(ranking, ranking_file)
    store = _open_store(runtime_config)
    orchestrator = _orchestrator(runtime_config, store, mock=True)

    try:
        outcome = orchestrator.apply_override(outcome_id, entries)
    except (OverrideValidationError, RunStateError) as e:
        raise _fail(str(e), EXIT_INVALID_INPUT) from e
    except DatabaseError as e:
        raise _fail(f"Database error: {e}", EXIT_DB_ERROR) from e

    success(
        f"Outcome {outcome_id} overridden: score {outcome.original_score:.1f} -> {outcome.score:.1f}"
    )
    print_outcomes_table([_outcome_row(outcome, runtime_config.brand)], title="Overridden Outcome")
    output_mode.flush_json()


@app.command("clear-override")
def clear_override(
    config: Path = CONFIG_OPTION,
    outcome_id: int = typer.Option(..., "--outcome-id", help="Outcome to restore"),
    format: str = FORMAT_OPTION,
    verbose: bool = VERBOSE_OPTION,
):
    """Remove an outcome's override and restore its extracted score."""
    _setup(format, verbose=verbose)

    runtime_config = _load(config, require_api_key=False)
    store = _open_store(runtime_config)
    orchestrator = _orchestrator(runtime_config, store, mock=True)

    try:
        outcome = orchestrator.clear_override(outcome_id)
    except RunStateError as e:
        raise _fail(str(e), EXIT_INVALID_INPUT) from e
    except DatabaseError as e:
        raise _fail(f"Database error: {e}", EXIT_DB_ERROR) from e

    success(f"Override of outcome {outcome_id} cleared, score {outcome.score:.1f}")
    print_outcomes_table([_outcome_row(outcome, runtime_config.brand)], title="Restored Outcome")
    output_mode.flush_json()


@app.command()
def report(
    config: Path = CONFIG_OPTION,
    run_id: str = typer.Option(
        None, "--run-id", help="Run to report on (default: most recent run)"
    ),
    html: bool = typer.Option(
        False, "--html", help="Write report.html and report.json into the output directory"
    ),
    format: str = FORMAT_OPTION,
    quiet: bool = QUIET_OPTION,
    verbose: bool = VERBOSE_OPTION,
):
    """Show the composite, per-category scores and review metrics of a run."""
    _setup(format, quiet, verbose)

    runtime_config = _load(config, require_api_key=False)
    store = _open_store(runtime_config)

    try:
        if run_id is None:
            runs = store.list_runs(limit=1)
            if not runs:
                raise _fail("No runs recorded yet", EXIT_INVALID_INPUT)
            run_id = runs[0].run_id

        run_report = build_run_report(store, run_id, runtime_config.brand)
    except RunStateError as e:
        raise _fail(str(e), EXIT_INVALID_INPUT) from e
    except DatabaseError as e:
        raise _fail(f"Database error: {e}", EXIT_DB_ERROR) from e

    report_data = run_report.to_dict()
    print_report_summary(report_data)

    if html:
        try:
            report_path = write_report(run_report, runtime_config.run_settings.output_dir)
        except (OSError, ValueError) as e:
            raise _fail(f"Failed to write report: {e}", EXIT_INVALID_INPUT) from e
        output_mode.add_json("report_path", str(report_path))
        info(f"View report: file://{report_path.absolute()}")

    output_mode.flush_json()


@app.command()
def validate(
    config: Path = CONFIG_OPTION,
    format: str = FORMAT_OPTION,
):
    """
    Validate configuration without running prompts.

    Checks YAML syntax, field rules, unique prompt ids, distinct
    competitors and that the API key variable is set.

    Exit codes:
      0: Configuration is valid
      1: Configuration is invalid
    """
    _setup(format)

    runtime_config = _load(config)

    success("Configuration is valid")
    info(f"Brand: {runtime_config.brand.name}")
    info(f"Competitors: {len(runtime_config.competitors)}")
    info(
        f"Prompts: {len(runtime_config.prompts)} "
        f"({len(runtime_config.active_prompts())} active)"
    )

    if output_mode.is_agent():
        output_mode.add_json("valid", True)
        output_mode.add_json("brand", runtime_config.brand.name)
        output_mode.add_json("competitors_count", len(runtime_config.competitors))
        output_mode.add_json("prompts_count", len(runtime_config.prompts))
        output_mode.add_json("active_prompts_count", len(runtime_config.active_prompts()))
        output_mode.flush_json()


@app.callback(invoke_without_command=True)
def main(
    ctx: typer.Context,
    version: bool = typer.Option(False, "--version", "-V", help="Show version and exit"),
):
    """
    LLM Rank Watcher - where do LLMs rank your brand?

    Asks a fixed set of prompts, extracts each reply's Top 3, scores the
    measured brand's position and aggregates a 0-100 composite.

    Use 'llm-rank-watcher COMMAND --help' for detailed command documentation.
    """
    output_mode.reset()

    if version:
        from rich.console import Console

        Console().print(f"[bold cyan]llm-rank-watcher[/bold cyan] version {_read_version()}")
        raise typer.Exit(EXIT_SUCCESS)

    if ctx.invoked_subcommand is None:
        from rich.console import Console

        console = Console()
        console.print("[yellow]Use --help to see available commands[/yellow]")
        console.print()
        console.print("Quick start:")
        console.print("  llm-rank-watcher run --config rank_watcher.config.yaml")


def _read_version() -> str:
    """Version from package metadata."""
    from importlib.metadata import version

    try:
        return version("llm-rank-watcher")
    except PackageNotFoundError:
        return "0.1.0"


if __name__ == "__main__":
    app()
