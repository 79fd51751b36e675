from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field, field_validator


class NarrationPlanV1(BaseModel):
    model_config = ConfigDict(extra="forbid")

    schema_version: str = "narration_plan_v1"
    summary_lines: list[str] = Field(min_length=1, max_length=4)
    used_fact_ids: list[str] = Field(default_factory=list)

    @field_validator("summary_lines")
    @classmethod
    def _validate_summary_lines(cls, value: list[str]) -> list[str]:
        lines = [str(item).strip() for item in value if str(item).strip()]
        if not lines:
            raise ValueError("summary_lines must contain at least one non-empty line")
        return lines

    def text(self) -> str:
        return " ".join(self.summary_lines)


class CriticVerdict(BaseModel):
    model_config = ConfigDict(extra="forbid")

    ok: bool
    text: str
    issues: list[str] = Field(default_factory=list)
