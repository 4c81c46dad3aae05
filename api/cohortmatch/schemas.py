from typing import Any

from pydantic import BaseModel, Field


class PipelineRunRequest(BaseModel):
    week: str | None = None
    seed: int | None = None
    run_scoring: bool = True
    run_promotion: bool = True
    run_grouping: bool = True
    eligibility_source: str | None = None
    config: dict[str, Any] = Field(default_factory=dict)


class PipelineRunResponse(BaseModel):
    match_week: str
    scoring: dict[str, Any] | None = None
    promoted: int | None = None
    grouping: dict[str, Any] | None = None
    errors: list[dict[str, Any]] = Field(default_factory=list)
