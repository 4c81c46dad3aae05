import logging
import os
import random
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from fastapi import FastAPI, Header, HTTPException
from sqlalchemy import text
from sqlalchemy.exc import OperationalError

from .config import ADMIN_TOKEN, DEFAULT_PIPELINE_CONFIG, GROUPING_SOURCE, MATCH_TIMEZONE, MATCH_WEEKDAY, SCORER_FUNCTION
from .database import SessionLocal, scorer_session_factory
from .deps import parse_match_week
from .deps import validate_admin_token as _validate_admin_token_impl
from .domain import MAX_GROUP_CAPACITY
from .repo import ELIGIBLE_FROM_ACCEPTED_MATCHES, ELIGIBLE_FROM_ACTIVE_MEMBERS, PipelineRepo
from .schemas import PipelineRunRequest, PipelineRunResponse
from .services.cohort_week import get_match_week
from .services.pipeline import run_pipeline
from .services.scorer import SqlCompatibilityScorer

logger = logging.getLogger(__name__)

app = FastAPI(title="Cohort Match Pipeline")


def run_migrations() -> None:
    env_dir = os.getenv("MIGRATIONS_DIR", "").strip()
    docker_dir = Path("/app/migrations")
    local_dir = Path(__file__).resolve().parents[1] / "migrations"

    if env_dir:
        migrations_dir = Path(env_dir)
    elif docker_dir.exists():
        migrations_dir = docker_dir
    else:
        migrations_dir = local_dir

    if not migrations_dir.exists() or not migrations_dir.is_dir():
        raise FileNotFoundError(
            "Migrations directory not found. Checked: "
            f"MIGRATIONS_DIR={env_dir or '<unset>'}, {docker_dir}, {local_dir}"
        )

    files = sorted([f.name for f in migrations_dir.iterdir() if f.is_file() and f.suffix == ".sql"])
    with SessionLocal() as db:
        for fname in files:
            logger.info("[startup] applying migration %s", fname)
            sql = (migrations_dir / fname).read_text(encoding="utf-8")
            db.execute(text(sql))
        db.commit()


def wait_for_db(max_attempts: int = 20, delay_seconds: float = 1.5) -> None:
    last_err: Exception | None = None
    for _ in range(max_attempts):
        try:
            with SessionLocal() as db:
                db.execute(text("SELECT 1"))
                db.commit()
            return
        except OperationalError as exc:
            last_err = exc
            time.sleep(delay_seconds)
    if last_err:
        raise last_err


@app.on_event("startup")
def on_startup() -> None:
    wait_for_db()
    run_migrations()


def _validate_admin_token(token: str | None) -> None:
    _validate_admin_token_impl(token, ADMIN_TOKEN)


def get_store() -> PipelineRepo:
    return PipelineRepo(SessionLocal)


def get_scorer(cfg: dict[str, Any] | None = None) -> SqlCompatibilityScorer:
    cfg = {**DEFAULT_PIPELINE_CONFIG, **(cfg or {})}
    timeout_seconds = float(cfg["SCORER_TIMEOUT_SECONDS"])
    return SqlCompatibilityScorer(
        SCORER_FUNCTION,
        scorer_session_factory(int(cfg["SCORE_BATCH_SIZE"])),
        statement_timeout_ms=int(timeout_seconds * 1000) or None,
    )


@app.post("/admin/pipeline/run", response_model=PipelineRunResponse)
def admin_run_pipeline(
    payload: PipelineRunRequest | None = None,
    x_admin_token: str | None = Header(default=None),
) -> dict[str, Any]:
    _validate_admin_token(x_admin_token)
    payload = payload or PipelineRunRequest()
    unknown = sorted(set(payload.config) - set(DEFAULT_PIPELINE_CONFIG))
    if unknown:
        raise HTTPException(status_code=400, detail=f"Unknown pipeline config keys: {', '.join(unknown)}")
    capacity = payload.config.get("GROUP_CAPACITY")
    if capacity is not None and not (isinstance(capacity, int) and 1 <= capacity <= MAX_GROUP_CAPACITY):
        raise HTTPException(status_code=400, detail=f"GROUP_CAPACITY must be between 1 and {MAX_GROUP_CAPACITY}")
    source = payload.eligibility_source or GROUPING_SOURCE
    if source not in {ELIGIBLE_FROM_ACCEPTED_MATCHES, ELIGIBLE_FROM_ACTIVE_MEMBERS}:
        raise HTTPException(status_code=400, detail=f"Unknown eligibility_source: {source}")

    rng = random.Random(payload.seed) if payload.seed is not None else None
    out = run_pipeline(
        get_store(),
        get_scorer(payload.config),
        datetime.now(timezone.utc),
        cfg=payload.config,
        rng=rng,
        week_override=parse_match_week(payload.week),
        eligibility_source=source,
        run_scoring_stage=payload.run_scoring,
        run_promotion_stage=payload.run_promotion,
        run_grouping_stage=payload.run_grouping,
    )
    logger.info("[admin] pipeline run for week %s finished with %s error(s)", out["match_week"], len(out["errors"]))
    return out


@app.get("/admin/groups/summary")
def admin_group_summary(
    week: str | None = None,
    x_admin_token: str | None = Header(default=None),
) -> dict[str, Any]:
    _validate_admin_token(x_admin_token)
    match_week = parse_match_week(week) or get_match_week(datetime.now(timezone.utc), MATCH_WEEKDAY, MATCH_TIMEZONE)
    return get_store().week_summary(match_week)


@app.get("/health")
def health() -> dict[str, str]:
    return {"status": "ok"}
