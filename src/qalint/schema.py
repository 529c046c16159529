from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class DiagnosticRecord(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    file: str
    line: Optional[int] = None
    rule_id: str = Field(alias="ruleId")
    severity: str
    message: str


class RuleRecord(BaseModel):
    id: str
    severity: str
    summary: str
    scope: str = "document"
