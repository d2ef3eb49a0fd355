from datetime import date

from pydantic import BaseModel, model_validator

from coderabbit_analyzer.review_issue import ActionableIssue, PullRequest


class DateRange(BaseModel):
    start: date
    end: date

    @model_validator(mode="after")
    def check_order(self) -> "DateRange":
        if self.start > self.end:
            raise ValueError("Start date must be before end date")
        return self


class AnalysisSummary(BaseModel):
    total_prs: int
    total_prs_with_issues: int
    total_issues: int
    avg_issues_per_pr: float


class AnalysisResult(BaseModel):
    repository: str
    date_range: DateRange
    summary: AnalysisSummary
    pull_requests: list[PullRequest]

    def iter_issues(self) -> list[tuple[PullRequest, ActionableIssue]]:
        return [(pr, issue) for pr in self.pull_requests for issue in pr.actionable_issues]


class AnalysisProgress(BaseModel):
    status: str
    current: int = 0
    total: int = 0
    rate_limit_remaining: int | None = None
