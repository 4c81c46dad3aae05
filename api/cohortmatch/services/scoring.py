from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor, wait
from dataclasses import asdict, dataclass
from typing import Any, Iterable, Iterator

from ..domain import MATCH_PENDING, MatchCandidate, Member
from .scorer import CompatibilityScorer, coerce_score

logger = logging.getLogger(__name__)


@dataclass
class ScoringSummary:
    members: int = 0
    total_pairs: int = 0
    processed_pairs: int = 0
    skipped_existing: int = 0
    lookup_failures: int = 0
    scored: int = 0
    scorer_failures: int = 0
    below_threshold: int = 0
    matches_created: int = 0
    write_failures: int = 0
    batches: int = 0

    def as_dict(self) -> dict[str, int]:
        return asdict(self)


def canonical_pair(member_a: str, member_b: str) -> tuple[str, str]:
    return (member_a, member_b) if member_a <= member_b else (member_b, member_a)


def enumerate_pairs(members: Iterable[Member]) -> Iterator[tuple[str, str]]:
    """Every unordered pair once, as (lower_id, higher_id)."""
    ids = sorted({m.member_id for m in members})
    for i in range(len(ids)):
        for j in range(i + 1, len(ids)):
            yield ids[i], ids[j]


def _score_pair(scorer: CompatibilityScorer, member_a: str, member_b: str) -> float | None:
    try:
        return coerce_score(scorer(member_a, member_b))
    except Exception as exc:
        logger.warning("[scoring] scorer failed for pair %s/%s: %s", member_a, member_b, exc)
        return None


def score_batch(
    executor: ThreadPoolExecutor,
    scorer: CompatibilityScorer,
    pairs: list[tuple[str, str]],
    timeout_seconds: float | None = None,
) -> list[float | None]:
    """Score a batch concurrently and wait for all of it. None marks a failed pair."""
    futures = [executor.submit(_score_pair, scorer, a, b) for a, b in pairs]
    _, not_done = wait(futures, timeout=timeout_seconds)
    results: list[float | None] = []
    for (a, b), future in zip(pairs, futures):
        if future in not_done:
            future.cancel()
            logger.warning("[scoring] scorer timed out for pair %s/%s after %ss", a, b, timeout_seconds)
            results.append(None)
            continue
        results.append(future.result())
    return results


def run_scoring(
    store: Any,
    scorer: CompatibilityScorer,
    members: list[Member],
    *,
    batch_size: int = 20,
    min_score: float = 20.0,
    progress_every: int = 100,
    timeout_seconds: float | None = None,
) -> ScoringSummary:
    batch_size = max(1, int(batch_size))
    unique_members = len({m.member_id for m in members})
    summary = ScoringSummary(members=unique_members, total_pairs=unique_members * (unique_members - 1) // 2)
    if summary.total_pairs == 0:
        logger.info("[scoring] %s active member(s), nothing to score", unique_members)
        return summary

    logger.info("[scoring] processing %s potential pairs for %s members", summary.total_pairs, unique_members)
    last_reported = 0

    def report_progress(force: bool = False) -> None:
        nonlocal last_reported
        if summary.processed_pairs == last_reported:
            return
        if not force and summary.processed_pairs // max(1, progress_every) <= last_reported // max(1, progress_every):
            return
        last_reported = summary.processed_pairs
        pct = 100.0 * summary.processed_pairs / summary.total_pairs
        logger.info(
            "[scoring] progress %.1f%% (%s/%s pairs, %s matches created)",
            pct,
            summary.processed_pairs,
            summary.total_pairs,
            summary.matches_created,
        )

    def flush(batch: list[tuple[str, str]]) -> None:
        summary.batches += 1
        scores = score_batch(executor, scorer, batch, timeout_seconds=timeout_seconds)
        qualifying: list[MatchCandidate] = []
        for (a, b), score in zip(batch, scores):
            if score is None:
                summary.scorer_failures += 1
                continue
            summary.scored += 1
            if score < min_score:
                summary.below_threshold += 1
                continue
            qualifying.append(MatchCandidate(subject_id=a, object_id=b, compatibility_score=score, status=MATCH_PENDING))

        if qualifying:
            try:
                store.insert_matches(qualifying)
                summary.matches_created += len(qualifying)
            except Exception:
                summary.write_failures += 1
                logger.exception("[scoring] bulk insert of %s matches failed; they stay eligible for the next run", len(qualifying))

        summary.processed_pairs += len(batch)
        report_progress()

    executor = ThreadPoolExecutor(max_workers=batch_size, thread_name_prefix="scorer")
    try:
        batch: list[tuple[str, str]] = []
        for a, b in enumerate_pairs(members):
            try:
                existing = store.find_existing_match(a, b)
            except Exception:
                logger.exception("[scoring] existing-match lookup failed for pair %s/%s; skipping", a, b)
                summary.lookup_failures += 1
                summary.processed_pairs += 1
                continue
            if existing is not None:
                summary.skipped_existing += 1
                summary.processed_pairs += 1
                report_progress()
                continue
            batch.append((a, b))
            if len(batch) >= batch_size:
                flush(batch)
                batch = []
        if batch:
            flush(batch)
    finally:
        executor.shutdown(wait=False, cancel_futures=True)

    report_progress(force=True)
    logger.info(
        "[scoring] done: %s matches created, %s skipped (existing), %s scorer failures, %s below threshold",
        summary.matches_created,
        summary.skipped_existing,
        summary.scorer_failures,
        summary.below_threshold,
    )
    return summary
