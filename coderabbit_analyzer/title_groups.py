import re

from pydantic import BaseModel

from coderabbit_analyzer.review_issue import AcceptanceMethod, PullRequest

SIMILARITY_THRESHOLD = 0.6
NO_TITLE = "(No title)"

_NON_WORD_PATTERN = re.compile(r"[^\w\s]")
_WHITESPACE_PATTERN = re.compile(r"\s+")


class Occurrence(BaseModel):
    pr_number: int
    pr_title: str
    url: str
    priority: str
    accepted: bool = False
    acceptance_method: AcceptanceMethod = AcceptanceMethod.NONE


class TitleCount(BaseModel):
    title: str
    occurrences: list[Occurrence]

    @property
    def count(self) -> int:
        return len(self.occurrences)


class TitleGroup(BaseModel):
    main_title: str
    items: list[TitleCount]

    @property
    def occurrences(self) -> list[Occurrence]:
        return [occurrence for item in self.items for occurrence in item.occurrences]

    @property
    def total_count(self) -> int:
        return sum(item.count for item in self.items)


def normalize_title(title: str) -> str:
    normalized = _NON_WORD_PATTERN.sub(" ", title.lower())
    return _WHITESPACE_PATTERN.sub(" ", normalized).strip()


def tokenize(title: str) -> set[str]:
    return set(normalize_title(title).split())


def calculate_similarity(title1: str, title2: str) -> float:
    """Jaccard similarity of the two titles' word sets, between 0 and 1."""
    words1 = tokenize(title1)
    words2 = tokenize(title2)
    union = words1 | words2
    if not union:
        return 0.0
    return len(words1 & words2) / len(union)


def extract_titles(pull_requests: list[PullRequest]) -> list[TitleCount]:
    """Bucket issues by exact title, most frequent first."""
    buckets: dict[str, list[Occurrence]] = {}
    for pr in pull_requests:
        for issue in pr.actionable_issues:
            title = issue.title or NO_TITLE
            buckets.setdefault(title, []).append(
                Occurrence(
                    pr_number=pr.number,
                    pr_title=pr.title,
                    url=issue.url,
                    priority=issue.priority.value,
                    accepted=issue.accepted,
                    acceptance_method=issue.acceptance_method,
                )
            )
    titles = [TitleCount(title=title, occurrences=occurrences) for title, occurrences in buckets.items()]
    return sorted(titles, key=lambda t: t.count, reverse=True)


def group_similar_titles(
    titles: list[TitleCount], threshold: float = SIMILARITY_THRESHOLD
) -> list[TitleGroup]:
    """Greedily group titles that look like the same finding.

    ``titles`` should be sorted by count, descending. Each title not yet taken
    starts a group, and every later untaken title at least ``threshold``
    similar to it joins that group. Members are only compared against the
    group's first title, never against each other, so grouping is not
    transitive.
    """
    groups = []
    used: set[int] = set()

    for i, title in enumerate(titles):
        if i in used:
            continue
        used.add(i)
        group = TitleGroup(main_title=title.title, items=[title])

        for j in range(i + 1, len(titles)):
            if j in used:
                continue
            if calculate_similarity(title.title, titles[j].title) >= threshold:
                group.items.append(titles[j])
                used.add(j)

        groups.append(group)

    return sorted(groups, key=lambda g: g.total_count, reverse=True)


def build_title_groups(pull_requests: list[PullRequest]) -> list[TitleGroup]:
    return group_similar_titles(extract_titles(pull_requests))
