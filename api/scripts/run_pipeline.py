import argparse
import logging
import random
import sys
from datetime import date, datetime, timezone
from pathlib import Path

sys.path.append(str(Path(__file__).resolve().parents[1]))

from cohortmatch.config import DEFAULT_PIPELINE_CONFIG, GROUPING_SOURCE, SCORER_FUNCTION
from cohortmatch.database import SessionLocal, scorer_session_factory
from cohortmatch.repo import ELIGIBLE_FROM_ACCEPTED_MATCHES, ELIGIBLE_FROM_ACTIVE_MEMBERS, PipelineRepo
from cohortmatch.services.pipeline import run_pipeline
from cohortmatch.services.scorer import SqlCompatibilityScorer


def main() -> None:
    parser = argparse.ArgumentParser(description="Score member pairs, promote top matches and form this week's groups")
    parser.add_argument("--week", type=str, default="", help="match week (YYYY-MM-DD); defaults to the current one")
    parser.add_argument("--seed", type=int, default=None, help="seed for shuffling and mixed-ratio draws")
    parser.add_argument("--source", choices=[ELIGIBLE_FROM_ACCEPTED_MATCHES, ELIGIBLE_FROM_ACTIVE_MEMBERS], default=GROUPING_SOURCE)
    parser.add_argument("--batch-size", type=int, default=None)
    parser.add_argument("--skip-scoring", action="store_true")
    parser.add_argument("--skip-promotion", action="store_true")
    parser.add_argument("--skip-grouping", action="store_true")
    parser.add_argument("--verbose", action="store_true")
    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )

    cfg = {}
    if args.batch_size:
        cfg["SCORE_BATCH_SIZE"] = args.batch_size
    merged = {**DEFAULT_PIPELINE_CONFIG, **cfg}

    summary = run_pipeline(
        PipelineRepo(SessionLocal),
        SqlCompatibilityScorer(
            SCORER_FUNCTION,
            scorer_session_factory(int(merged["SCORE_BATCH_SIZE"])),
            statement_timeout_ms=int(float(merged["SCORER_TIMEOUT_SECONDS"]) * 1000) or None,
        ),
        datetime.now(timezone.utc),
        cfg=cfg,
        rng=random.Random(args.seed) if args.seed is not None else None,
        week_override=date.fromisoformat(args.week) if args.week else None,
        eligibility_source=args.source,
        run_scoring_stage=not args.skip_scoring,
        run_promotion_stage=not args.skip_promotion,
        run_grouping_stage=not args.skip_grouping,
    )

    print("Pipeline completed")
    for k, v in summary.items():
        print(f"- {k}: {v}")


if __name__ == "__main__":
    main()
