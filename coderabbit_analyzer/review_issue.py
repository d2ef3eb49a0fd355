from enum import Enum

from pydantic import BaseModel


class AcceptanceMethod(str, Enum):
    """How an issue came to be considered accepted.

    Members are declared from weakest to strongest; a stronger source always
    wins over a weaker one.
    """

    NONE = "none"
    DETECTED_IN_BODY = "detected-in-body"
    RESOLVED_VIA_QUERY = "resolved-via-query"
    MANUAL = "manual"

    @property
    def rank(self) -> int:
        return list(AcceptanceMethod).index(self)

    def outranks(self, other: "AcceptanceMethod") -> bool:
        return self.rank > other.rank


class Severity(str, Enum):
    POTENTIAL_ISSUE = "Potential issue"
    NITPICK = "Nitpick"
    SUGGESTION = "Suggestion"
    REVIEW = "Review"


class Priority(str, Enum):
    CRITICAL = "Critical"
    MAJOR = "Major"
    MINOR = "Minor"
    TRIVIAL = "Trivial"


class ThreadComment(BaseModel):
    id: str
    database_id: int | None = None
    url: str | None = None


class ReviewThread(BaseModel):
    id: str
    is_resolved: bool = False
    comments: list[ThreadComment] = []


class ActionableIssue(BaseModel):
    severity: Severity
    priority: Priority
    title: str
    description: str = ""
    url: str = ""  # source comment URL, unique per issue
    timestamp: str = ""
    accepted: bool = False
    acceptance_method: AcceptanceMethod = AcceptanceMethod.NONE
    detected_acceptance: AcceptanceMethod = AcceptanceMethod.NONE

    def record_acceptance(self, method: AcceptanceMethod) -> None:
        """Record an automatic acceptance signal, keeping the strongest one seen."""
        if method.outranks(self.detected_acceptance):
            self.detected_acceptance = method
        if self.acceptance_method != AcceptanceMethod.MANUAL:
            self.reset_acceptance()

    def override_acceptance(self, accepted: bool) -> None:
        self.accepted = accepted
        self.acceptance_method = AcceptanceMethod.MANUAL

    def reset_acceptance(self) -> None:
        """Drop any manual decision and fall back to automatic detection."""
        self.accepted = self.detected_acceptance != AcceptanceMethod.NONE
        self.acceptance_method = self.detected_acceptance


class PullRequest(BaseModel):
    number: int
    title: str
    url: str
    state: str
    author: str | None = None
    created_at: str
    actionable_issues: list[ActionableIssue] = []
