from __future__ import annotations

import logging
import random
from datetime import date, datetime
from typing import Any

from ..config import DEFAULT_PIPELINE_CONFIG, GROUPING_SOURCE, MATCH_TIMEZONE, MATCH_WEEKDAY
from .cohort_week import get_match_week
from .grouping import form_groups
from .promotion import promote_top_matches
from .scorer import CompatibilityScorer
from .scoring import run_scoring

logger = logging.getLogger(__name__)


def run_pipeline(
    store: Any,
    scorer: CompatibilityScorer,
    now: datetime,
    *,
    cfg: dict[str, Any] | None = None,
    rng: random.Random | None = None,
    week_override: date | None = None,
    eligibility_source: str = GROUPING_SOURCE,
    run_scoring_stage: bool = True,
    run_promotion_stage: bool = True,
    run_grouping_stage: bool = True,
) -> dict[str, Any]:
    """Score new pairs, promote the best pending matches, then form this week's groups.

    Every stage is safe to rerun. A stage that blows up is reported in
    ``errors`` and the later stages still run.
    """
    cfg = {**DEFAULT_PIPELINE_CONFIG, **(cfg or {})}
    match_week = week_override or get_match_week(now, MATCH_WEEKDAY, MATCH_TIMEZONE)
    out: dict[str, Any] = {
        "match_week": match_week.isoformat(),
        "scoring": None,
        "promoted": None,
        "grouping": None,
        "errors": [],
    }
    logger.info("[pipeline] starting run for week %s", match_week.isoformat())

    if run_scoring_stage:
        try:
            members = store.list_active_members()
            summary = run_scoring(
                store,
                scorer,
                members,
                batch_size=int(cfg["SCORE_BATCH_SIZE"]),
                min_score=float(cfg["CANDIDACY_MIN_SCORE"]),
                progress_every=int(cfg["PROGRESS_EVERY_PAIRS"]),
                timeout_seconds=float(cfg["SCORER_TIMEOUT_SECONDS"]) or None,
            )
            out["scoring"] = summary.as_dict()
        except Exception as exc:
            logger.exception("[pipeline] scoring stage failed")
            out["errors"].append({"stage": "scoring", "error": str(exc)})

    if run_promotion_stage:
        try:
            out["promoted"] = promote_top_matches(
                store,
                min_score=float(cfg["ACCEPT_MIN_SCORE"]),
                limit=int(cfg["PROMOTE_LIMIT"]),
            )
        except Exception as exc:
            logger.exception("[pipeline] promotion stage failed")
            out["errors"].append({"stage": "promotion", "error": str(exc)})

    if run_grouping_stage:
        try:
            eligible = store.list_eligible_members(match_week, eligibility_source)
            result = form_groups(
                store,
                eligible,
                match_week,
                capacity=int(cfg["GROUP_CAPACITY"]),
                rng=rng,
            )
            out["grouping"] = result.as_dict()
        except Exception as exc:
            logger.exception("[pipeline] grouping stage failed")
            out["errors"].append({"stage": "grouping", "error": str(exc)})

    logger.info("[pipeline] finished week %s with %s stage error(s)", match_week.isoformat(), len(out["errors"]))
    return out
