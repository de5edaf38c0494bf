"""
Run report generation for LLM Rank Watcher.

build_run_report() reads a run from the outcome store and derives the
metrics shown to a reviewer:

- composite (PRIA) and per-category composites, as stored
- intent-weighted score, recomputed for presentation only
- format confidence: share of replies with a recognizable ranking
- mention rate: share of replies naming the brand anywhere
- top-3 / top-1 rates: share of prompts where the brand is ranked / first
- entity comparison: appearances, average position and share per entity
- override count

write_report() renders the report as a self-contained HTML page with Jinja2
(autoescaping on, so brand names and reply text cannot inject markup) and
writes a JSON copy next to it.

Example:
    >>> report = build_run_report(store, "2025-11-02T08-30-00Z", config.brand)
    >>> report.composite
    56.67
    >>> write_report(report, "./output")
    PosixPath('output/2025-11-02T08-30-00Z/report.html')
"""

import logging
from dataclasses import asdict, dataclass, field
from decimal import ROUND_HALF_UP, Decimal
from pathlib import Path
from typing import Any

from jinja2 import Environment, FileSystemLoader, TemplateError, select_autoescape

from llm_rank_watcher.config.schema import Brand
from llm_rank_watcher.extractor.normalizer import normalize_name
from llm_rank_watcher.scoring.aggregator import (
    aggregate_by_intent,
    compute_composite,
    parse_intent_weight,
)
from llm_rank_watcher.scoring.position import resolve_position
from llm_rank_watcher.storage.records import PromptOutcome
from llm_rank_watcher.storage.store import OutcomeStore
from llm_rank_watcher.storage.writer import (
    REPORT_JSON_FILENAME,
    create_run_directory,
    write_json,
    write_report_html,
)
from llm_rank_watcher.utils.time import utc_timestamp

logger = logging.getLogger(__name__)

TEMPLATE_DIR = Path(__file__).parent / "templates"
TEMPLATE_NAME = "report.html.j2"


@dataclass
class EntityAppearance:
    """How often one entity was ranked across a run."""

    name: str
    kind: str
    appearances: int
    average_position: float
    share: float


@dataclass
class OutcomeRow:
    """One prompt outcome, flattened for display."""

    outcome_id: int
    sequence: int
    prompt_id: str
    category_id: str | None
    method: str | None
    ranking: list[dict[str, Any]]
    original_ranking: list[dict[str, Any]] | None
    score: float
    flags: list[str]
    truncated: bool
    brand_position: int | None


@dataclass
class RunReport:
    """All metrics of one run."""

    run_id: str
    brand_name: str
    status: str
    created_at: str
    model_meta: dict[str, Any] | None
    tokens_used: int
    error_message: str | None
    total_prompts: int
    composite: float
    by_category: dict[str, float]
    intent_weighted_score: float
    has_intent_weights: bool
    format_confidence: int
    mention_rate: int
    top3_rate: int
    top1_rate: int
    override_count: int
    entities: list[EntityAppearance] = field(default_factory=list)
    outcomes: list[OutcomeRow] = field(default_factory=list)
    generated_at: str = ""

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def _percent(count: int, total: int) -> int:
    """Whole percentage, halves rounded up; 0 for an empty total."""
    if not total:
        return 0
    value = Decimal(count) * 100 / Decimal(total)
    return int(value.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def _ranking_dicts(ranking) -> list[dict[str, Any]]:
    return [
        {
            "position": entry.position,
            "entity_name": entry.entity_name,
            "entity_kind": entry.entity_kind,
        }
        for entry in ranking
    ]


def _mentions_brand(text: str, brand: Brand) -> bool:
    normalized_text = normalize_name(text)
    for term in [brand.name, *brand.aliases]:
        normalized_term = normalize_name(term)
        if normalized_term and normalized_term in normalized_text:
            return True
    return False


def _entity_appearances(outcomes: list[PromptOutcome]) -> list[EntityAppearance]:
    """
    Count appearances per entity over the effective rankings.

    Entities are keyed by normalized name and kind; the first spelling
    seen is displayed. Sorted by appearances, most frequent first.
    """
    totals: dict[tuple[str, str], dict[str, Any]] = {}
    total_entries = 0

    for outcome in outcomes:
        for entry in outcome.effective_ranking:
            total_entries += 1
            key = (normalize_name(entry.entity_name), entry.entity_kind)
            row = totals.setdefault(
                key,
                {"name": entry.entity_name, "kind": entry.entity_kind, "count": 0, "positions": 0},
            )
            row["count"] += 1
            row["positions"] += entry.position

    rows = [
        EntityAppearance(
            name=row["name"],
            kind=row["kind"],
            appearances=row["count"],
            average_position=round(row["positions"] / row["count"], 2),
            share=round(row["count"] / total_entries * 100, 2),
        )
        for row in totals.values()
    ]
    return sorted(rows, key=lambda r: (-r.appearances, r.average_position, r.name))


def build_run_report(store: OutcomeStore, run_id: str, brand: Brand) -> RunReport:
    """
    Compute all report metrics for one run.

    The stored composite is used when present; a run without one (e.g. no
    outcomes yet) reports a freshly computed composite.

    Raises:
        RunStateError: If the run does not exist
    """
    run = store.require_run(run_id)
    outcomes = store.list_outcomes(run_id)

    composite = store.get_composite(run_id) or compute_composite(
        outcomes, brand.name, brand.aliases
    )

    weighted = [(o.score, parse_intent_weight(o.prompt_text)) for o in outcomes]
    has_intent_weights = any(intent is not None for _, intent in weighted)

    total = len(outcomes)
    positions = [
        resolve_position(o.effective_ranking, brand.name, brand.aliases)
        for o in outcomes
    ]

    rows = [
        OutcomeRow(
            outcome_id=o.outcome_id,
            sequence=o.sequence,
            prompt_id=o.prompt_id,
            category_id=o.category_id,
            method=o.extraction_method,
            ranking=_ranking_dicts(o.effective_ranking),
            original_ranking=_ranking_dicts(o.ranking) if o.override else None,
            score=o.score,
            flags=o.flags.active(),
            truncated=o.truncated,
            brand_position=position,
        )
        for o, position in zip(outcomes, positions, strict=True)
    ]

    report = RunReport(
        run_id=run.run_id,
        brand_name=run.brand_name,
        status=run.status.value,
        created_at=run.created_at,
        model_meta=run.model_meta,
        tokens_used=run.tokens_used,
        error_message=run.error_message,
        total_prompts=total,
        composite=composite.overall,
        by_category=dict(sorted(composite.by_category.items())),
        intent_weighted_score=aggregate_by_intent(weighted),
        has_intent_weights=has_intent_weights,
        format_confidence=_percent(sum(1 for o in outcomes if o.ranking), total),
        mention_rate=_percent(
            sum(1 for o in outcomes if _mentions_brand(o.raw_text, brand)), total
        ),
        top3_rate=_percent(sum(1 for p in positions if p is not None), total),
        top1_rate=_percent(sum(1 for p in positions if p == 1), total),
        override_count=sum(1 for o in outcomes if o.override is not None),
        entities=_entity_appearances(outcomes),
        outcomes=rows,
        generated_at=utc_timestamp(),
    )

    logger.debug(
        f"Built report for run {run_id}: {total} outcomes, composite={report.composite}"
    )
    return report


def render_report_html(report: RunReport) -> str:
    """
    Render the HTML report.

    Raises:
        ValueError: If the template cannot be loaded or rendered
    """
    env = Environment(
        loader=FileSystemLoader(str(TEMPLATE_DIR)),
        autoescape=select_autoescape(["html", "xml", "j2"]),
    )

    try:
        template = env.get_template(TEMPLATE_NAME)
        return template.render(report=report)
    except TemplateError as e:
        logger.error(f"Failed to render template: {e}", exc_info=True)
        raise ValueError(f"Cannot render report template: {e}") from e


def write_report(report: RunReport, output_dir: str) -> Path:
    """
    Write report.html and report.json to <output_dir>/<run_id>/.

    Returns:
        Path of report.html
    """
    run_dir = create_run_directory(output_dir, report.run_id)
    html_path = write_report_html(run_dir, render_report_html(report))
    write_json(run_dir / REPORT_JSON_FILENAME, report.to_dict())
    return html_path
