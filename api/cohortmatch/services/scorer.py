import math
import re
from typing import Any, Callable

from sqlalchemy import text

from ..database import SessionLocal

CompatibilityScorer = Callable[[str, str], Any]

_IDENTIFIER = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*(\.[A-Za-z_][A-Za-z0-9_]*)?$")


def coerce_score(value: Any) -> float | None:
    """Numeric score, or None when the scorer gave nothing usable."""
    if value is None or isinstance(value, bool):
        return None
    try:
        score = float(value)
    except (TypeError, ValueError):
        return None
    if math.isnan(score):
        return None
    return score


class SqlCompatibilityScorer:
    """Calls the store-side scoring function, e.g. ``calculate_match_score(a, b)``."""

    def __init__(
        self,
        function_name: str = "calculate_match_score",
        session_factory=SessionLocal,
        statement_timeout_ms: int | None = None,
    ) -> None:
        if not _IDENTIFIER.match(function_name):
            raise ValueError(f"Invalid scorer function name: {function_name!r}")
        self._function_name = function_name
        self._session_factory = session_factory
        self._statement_timeout_ms = int(statement_timeout_ms) if statement_timeout_ms else None

    def __call__(self, member_a: str, member_b: str) -> float | None:
        with self._session_factory() as db:
            if self._statement_timeout_ms and db.get_bind().dialect.name == "postgresql":
                # scoped to this transaction
                db.execute(
                    text("SELECT set_config('statement_timeout', :timeout, true)"),
                    {"timeout": str(self._statement_timeout_ms)},
                )
            value = db.execute(
                text(f"SELECT {self._function_name}(:user_a_id, :user_b_id) AS score"),
                {"user_a_id": member_a, "user_b_id": member_b},
            ).scalar()
        return coerce_score(value)
