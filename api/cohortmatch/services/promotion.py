import logging
from typing import Any

logger = logging.getLogger(__name__)


def promote_top_matches(store: Any, *, min_score: float = 60.0, limit: int = 20) -> int:
    if limit <= 0:
        return 0
    promoted = store.promote_top_matches(min_score, limit)
    logger.info("[promotion] accepted %s pending match(es) with score >= %s (limit %s)", promoted, min_score, limit)
    return promoted
