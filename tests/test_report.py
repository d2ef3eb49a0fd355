import re
from datetime import date

import pytest

from coderabbit_analyzer.analysis_output import AnalysisResult, AnalysisSummary, DateRange
from coderabbit_analyzer.filters import FilterState
from coderabbit_analyzer.io_utils import analysis_filename, load_analysis, save_analysis
from coderabbit_analyzer.manual_overrides import JsonFileStore, ManualOverrideStore
from coderabbit_analyzer.report import calculate_distribution, render_report
from coderabbit_analyzer.review_issue import AcceptanceMethod, ActionableIssue, PullRequest
from coderabbit_analyzer.view_analysis import build_filter_state, view_analysis

PR1_URL = "https://github.com/owner/repo/pull/1"
PR2_URL = "https://github.com/owner/repo/pull/2"


def make_issue(title, severity, priority, url, resolved=False):
    issue = ActionableIssue(severity=severity, priority=priority, title=title, url=url)
    if resolved:
        issue.record_acceptance(AcceptanceMethod.RESOLVED_VIA_QUERY)
    return issue


def make_pr(number, url, issues):
    return PullRequest(
        number=number,
        title=f"PR {number}",
        url=url,
        state="closed",
        author="dev",
        created_at="2024-05-10T12:00:00Z",
        actionable_issues=issues,
    )


@pytest.fixture
def result():
    pull_requests = [
        make_pr(
            1,
            PR1_URL,
            [make_issue("Missing await", "Potential issue", "Major", f"{PR1_URL}#discussion_r1", resolved=True)],
        ),
        make_pr(
            2,
            PR2_URL,
            [
                make_issue("Missing await", "Potential issue", "Major", f"{PR2_URL}#discussion_r2"),
                make_issue("Unused import", "Nitpick", "Minor", f"{PR2_URL}#discussion_r3"),
            ],
        ),
    ]
    return AnalysisResult(
        repository="owner/repo",
        date_range=DateRange(start=date(2024, 5, 1), end=date(2024, 5, 31)),
        summary=AnalysisSummary(total_prs=5, total_prs_with_issues=2, total_issues=3, avg_issues_per_pr=1.5),
        pull_requests=pull_requests,
    )


@pytest.fixture
def empty_result():
    return AnalysisResult(
        repository="owner/repo",
        date_range=DateRange(start=date(2024, 5, 1), end=date(2024, 5, 31)),
        summary=AnalysisSummary(total_prs=0, total_prs_with_issues=0, total_issues=0, avg_issues_per_pr=0.0),
        pull_requests=[],
    )


def test_calculate_distribution(result):
    priorities = calculate_distribution(result, "priority")
    severities = calculate_distribution(result, "severity")

    assert [(item.label, item.count, item.percentage) for item in priorities] == [
        ("Major", 2, 66.7),
        ("Minor", 1, 33.3),
    ]
    assert [item.label for item in severities] == ["Potential issue", "Nitpick"]


def test_calculate_distribution_empty(empty_result):
    assert calculate_distribution(empty_result, "severity") == []


def test_render_report(result):
    report = render_report(result)

    assert report.startswith("# CodeRabbit analysis: owner/repo")
    assert "| 5 | 2 | 3 | 1.5 |" in report
    assert "- Major: 2 (66.7%)" in report
    assert "- Nitpick: 1 (33.3%)" in report
    assert "### 2 × Missing await" in report
    assert "### 1 × Unused import" in report
    assert report.index("Missing await") < report.index("Unused import")
    assert f"[x] [PR #1]({PR1_URL}#discussion_r1) (resolved-via-query)" in report
    assert f"[ ] [PR #2]({PR2_URL}#discussion_r2)" in report
    assert "Acceptance: all (all: 3, accepted: 1, not accepted: 2)" in report


def test_render_report_with_filters(result):
    state = FilterState().with_priority("Minor")

    report = render_report(result, state)

    assert "Unused import" in report
    assert "Missing await" not in report
    assert "Priority: Minor (all: 3, Major: 2, Minor: 1)" in report


def test_render_report_empty_states(result, empty_result):
    empty_report = render_report(empty_result)
    assert empty_report.count("No data available") == 2
    assert "No titles found" in empty_report

    filtered_report = render_report(result, FilterState().with_priority("Critical"))
    assert "No titles match the selected filters" in filtered_report


def test_save_and_load_analysis(result, tmp_path):
    output_file = save_analysis(result, str(tmp_path / "output"))

    assert re.fullmatch(r"owner_repo_coderabbit_analysis_\d+\.json", output_file.split("/")[-1])
    assert load_analysis(output_file) == result


def test_analysis_filename():
    assert re.fullmatch(r"acme_widgets_coderabbit_analysis_\d{13}\.json", analysis_filename("acme/widgets"))


def test_build_filter_state():
    assert build_filter_state(None, "all") == FilterState()

    state = build_filter_state(["Major", "Minor"], "accepted")

    assert state.priorities == frozenset({"Major", "Minor"})
    assert state.acceptance == "accepted"


def test_view_analysis_toggles_acceptance(result, tmp_path):
    analysis_file = save_analysis(result, str(tmp_path))
    overrides = ManualOverrideStore(JsonFileStore(str(tmp_path / "state.json")))
    target = f"{PR2_URL}#discussion_r2"

    report = view_analysis(analysis_file, overrides, FilterState(), toggle_url=target)

    assert f"[x] [PR #2]({target}) (manual)" in report
    assert list(overrides.get()) == [target]

    report = view_analysis(analysis_file, overrides, FilterState(), toggle_url=target)

    assert f"[ ] [PR #2]({target})" in report
    assert overrides.get() == {}


def test_view_analysis_accepted_filter_uses_overrides(result, tmp_path):
    analysis_file = save_analysis(result, str(tmp_path))
    overrides = ManualOverrideStore(JsonFileStore(str(tmp_path / "state.json")))
    overrides.toggle(f"{PR2_URL}#discussion_r3")

    report = view_analysis(analysis_file, overrides, build_filter_state(None, "accepted"))

    assert "Unused import" in report
    assert f"{PR2_URL}#discussion_r2" not in report
