from __future__ import annotations
from typing import Any, Optional
from pydantic import Field

from .base import APIModel, StrictInput


class RolloverIn(StrictInput):
    source_year: int = Field(ge=1900, le=9999)
    target_year: int = Field(ge=1900, le=9999)


class JobReportOut(APIModel):
    """Common envelope; job-specific counters ride along in ``details``."""
    job: str
    processed: int
    succeeded: int
    skipped: int
    failed: int
    failures: list[dict[str, str]] = []
    details: dict[str, Any] = {}

    @classmethod
    def from_report(cls, report) -> "JobReportOut":
        data = report.as_dict()
        common = {k: data.pop(k) for k in ("job", "processed", "succeeded", "skipped", "failed", "failures")}
        return cls(**common, details=data)


class RolloverOut(JobReportOut):
    source_year: Optional[int] = None
    target_year: Optional[int] = None
    cloned_count: int = 0
    skipped_count: int = 0

    @classmethod
    def from_report(cls, report) -> "RolloverOut":
        base = JobReportOut.from_report(report)
        return cls(
            **base.model_dump(),
            source_year=report.source_year,
            target_year=report.target_year,
            cloned_count=report.cloned_count,
            skipped_count=report.skipped_count,
        )
