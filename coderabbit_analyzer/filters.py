from collections import Counter
from typing import Literal

from pydantic import BaseModel, ConfigDict, field_validator

from coderabbit_analyzer.title_groups import Occurrence, TitleCount, TitleGroup

ALL = "all"
AcceptanceStatus = Literal["all", "accepted", "not-accepted"]


class FilterState(BaseModel):
    """Current selection of the priority and acceptance filters.

    The state is immutable; every selection returns a new state. The two
    dimensions are coupled: clearing either one resets both to "all".
    """

    model_config = ConfigDict(frozen=True)

    priorities: frozenset[str] = frozenset({ALL})
    acceptance: AcceptanceStatus = ALL

    @field_validator("priorities")
    @classmethod
    def check_priorities(cls, priorities: frozenset[str]) -> frozenset[str]:
        if not priorities:
            raise ValueError("At least one priority must be selected")
        if ALL in priorities and len(priorities) > 1:
            raise ValueError('"all" cannot be combined with specific priorities')
        return priorities

    def with_priority(self, priority: str) -> "FilterState":
        """Toggle a priority button."""
        if priority == ALL:
            return FilterState()

        selected = set() if ALL in self.priorities else set(self.priorities)
        if priority in selected:
            selected.remove(priority)
        else:
            selected.add(priority)

        if not selected:
            return FilterState()
        return FilterState(priorities=frozenset(selected), acceptance=self.acceptance)

    def with_acceptance(self, status: AcceptanceStatus) -> "FilterState":
        """Select an acceptance button; selecting the active one clears both filters."""
        if status == self.acceptance:
            return FilterState()
        return FilterState(priorities=self.priorities, acceptance=status)

    def matches_priority(self, priority: str) -> bool:
        return ALL in self.priorities or priority in self.priorities

    def matches_acceptance(self, accepted: bool) -> bool:
        if self.acceptance == "accepted":
            return accepted
        if self.acceptance == "not-accepted":
            return not accepted
        return True

    def matches(self, occurrence: Occurrence) -> bool:
        return self.matches_priority(occurrence.priority) and self.matches_acceptance(occurrence.accepted)


class FilterCounts(BaseModel):
    # per-priority counts under the current acceptance filter
    priority_total: int
    priorities: dict[str, int]
    # accepted / not-accepted counts under the current priority filter
    acceptance_total: int
    accepted: int
    not_accepted: int


def filter_occurrences(state: FilterState, occurrences: list[Occurrence]) -> list[Occurrence]:
    return [occurrence for occurrence in occurrences if state.matches(occurrence)]


def apply_filters(state: FilterState, groups: list[TitleGroup]) -> list[TitleGroup]:
    """Keep only matching occurrences; groups left with none are dropped."""
    filtered_groups = []
    for group in groups:
        items = []
        for item in group.items:
            occurrences = filter_occurrences(state, item.occurrences)
            if occurrences:
                items.append(TitleCount(title=item.title, occurrences=occurrences))
        if items:
            filtered_groups.append(TitleGroup(main_title=group.main_title, items=items))
    return filtered_groups


def count_filters(state: FilterState, occurrences: list[Occurrence]) -> FilterCounts:
    """Counts to show next to each filter button.

    Each dimension is counted under the other dimension's current selection.
    """
    by_acceptance = [o for o in occurrences if state.matches_acceptance(o.accepted)]
    by_priority = [o for o in occurrences if state.matches_priority(o.priority)]
    priority_counts = Counter(o.priority for o in by_acceptance)
    accepted = sum(1 for o in by_priority if o.accepted)

    return FilterCounts(
        priority_total=len(by_acceptance),
        priorities=dict(priority_counts.most_common()),
        acceptance_total=len(by_priority),
        accepted=accepted,
        not_accepted=len(by_priority) - accepted,
    )
