import os
from collections import Counter

import jinja2
from pydantic import BaseModel

from coderabbit_analyzer.analysis_output import AnalysisResult
from coderabbit_analyzer.filters import FilterState, apply_filters, count_filters
from coderabbit_analyzer.title_groups import build_title_groups

TEMPLATE_FILE = os.path.join(os.path.dirname(__file__), "templates", "report.md.jinja")


class DistributionItem(BaseModel):
    label: str
    count: int
    percentage: float


def calculate_distribution(result: AnalysisResult, field: str) -> list[DistributionItem]:
    """Share of issues per value of ``field`` ("severity" or "priority")."""
    counts = Counter(getattr(issue, field).value for _, issue in result.iter_issues())
    total = sum(counts.values())
    return [
        DistributionItem(label=label, count=count, percentage=round(count / total * 100, 1))
        for label, count in counts.most_common()
    ]


def render_report(
    result: AnalysisResult,
    state: FilterState | None = None,
    template_file: str = TEMPLATE_FILE,
) -> str:
    """Render the analysis as markdown, with the filters in ``state`` applied."""
    state = state or FilterState()
    groups = build_title_groups(result.pull_requests)
    occurrences = [occurrence for group in groups for occurrence in group.occurrences]

    with open(template_file, "r") as f:
        template = jinja2.Template(f.read())
    return template.render(
        result=result,
        state=state,
        counts=count_filters(state, occurrences),
        severity_distribution=calculate_distribution(result, "severity"),
        priority_distribution=calculate_distribution(result, "priority"),
        groups=apply_filters(state, groups),
    )
