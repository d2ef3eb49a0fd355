import pytest

from coderabbit_analyzer.review_issue import ActionableIssue, PullRequest
from coderabbit_analyzer.title_groups import (
    NO_TITLE,
    TitleCount,
    build_title_groups,
    calculate_similarity,
    extract_titles,
    group_similar_titles,
    normalize_title,
)


def make_pr(number, titles, priority="Major"):
    return PullRequest(
        number=number,
        title=f"PR {number}",
        url=f"https://github.com/owner/repo/pull/{number}",
        state="closed",
        author="dev",
        created_at="2024-05-01T00:00:00Z",
        actionable_issues=[
            ActionableIssue(
                severity="Potential issue",
                priority=priority,
                title=title,
                url=f"https://github.com/owner/repo/pull/{number}#discussion_r{i}",
            )
            for i, title in enumerate(titles)
        ],
    )


def make_titles(*titles_and_counts):
    pull_requests = []
    number = 1
    for title, count in titles_and_counts:
        for _ in range(count):
            pull_requests.append(make_pr(number, [title]))
            number += 1
    return extract_titles(pull_requests)


def test_normalize_title():
    assert normalize_title("  Avoid `var`,   please!! ") == "avoid var please"
    assert normalize_title("Use snake_case names") == "use snake_case names"
    assert normalize_title("!!!") == ""


def test_similarity_is_symmetric_and_reflexive():
    a = "Avoid using var in loop"
    b = "Avoid using var here"

    assert calculate_similarity(a, b) == calculate_similarity(b, a)
    assert calculate_similarity(a, a) == 1.0
    assert calculate_similarity("Missing null check", "missing NULL check!") == 1.0


def test_similarity_of_empty_titles_is_zero():
    assert calculate_similarity("", "") == 0.0
    assert calculate_similarity("???", "") == 0.0


def test_similarity_ignores_duplicate_words():
    assert calculate_similarity("fix fix fix the bug", "fix the bug") == 1.0


def test_below_threshold_titles_stay_apart():
    # 3 shared words out of 6 distinct ones
    assert calculate_similarity("Avoid using var in loop", "Avoid using var here") == pytest.approx(0.5)

    groups = group_similar_titles(make_titles(("Avoid using var in loop", 1), ("Avoid using var here", 1)))

    assert len(groups) == 2


def test_similar_titles_are_grouped():
    titles = make_titles(("Avoid using var in this loop", 2), ("Avoid using var in the loop", 1))

    groups = group_similar_titles(titles)

    assert len(groups) == 1
    assert groups[0].main_title == "Avoid using var in this loop"
    assert groups[0].total_count == 3
    assert [item.title for item in groups[0].items] == [
        "Avoid using var in this loop",
        "Avoid using var in the loop",
    ]
    assert len(groups[0].occurrences) == 3


def test_grouping_only_compares_against_representative():
    # b is similar to both a and c, but c is not similar to a
    a, b, c = "alpha beta gamma delta epsilon", "alpha beta gamma delta zeta", "alpha beta gamma zeta eta"
    assert calculate_similarity(a, b) >= 0.6
    assert calculate_similarity(b, c) >= 0.6
    assert calculate_similarity(a, c) < 0.6

    groups = group_similar_titles(make_titles((a, 3), (b, 2), (c, 1)))

    assert [group.main_title for group in groups] == [a, c]
    assert [item.title for item in groups[0].items] == [a, b]
    assert groups[0].total_count == 5
    assert groups[1].total_count == 1


def test_groups_sorted_by_total_count():
    titles = make_titles(
        ("Missing error handling", 3),
        ("Unused import", 2),
        ("Unused import os", 2),
    )

    groups = group_similar_titles(titles)

    assert [group.main_title for group in groups] == ["Unused import", "Missing error handling"]
    assert [group.total_count for group in groups] == [4, 3]


def test_regrouping_representatives_is_stable():
    titles = make_titles(
        ("Missing error handling", 3),
        ("Missing error handling here", 1),
        ("Unused import", 2),
        ("Hardcoded timeout value", 2),
    )
    groups = group_similar_titles(titles)
    representatives = [TitleCount(title=group.main_title, occurrences=group.occurrences) for group in groups]

    regrouped = group_similar_titles(representatives)

    assert [g.main_title for g in regrouped] == [g.main_title for g in groups]
    assert [g.total_count for g in regrouped] == [g.total_count for g in groups]


def test_extract_titles_counts_and_orders():
    pull_requests = [
        make_pr(1, ["Unused import", ""]),
        make_pr(2, ["Missing await", "Unused import"]),
    ]

    titles = extract_titles(pull_requests)

    assert [(t.title, t.count) for t in titles] == [
        ("Unused import", 2),
        (NO_TITLE, 1),
        ("Missing await", 1),
    ]
    occurrence = titles[0].occurrences[1]
    assert occurrence.pr_number == 2
    assert occurrence.pr_title == "PR 2"
    assert occurrence.priority == "Major"
    assert occurrence.url == "https://github.com/owner/repo/pull/2#discussion_r1"


def test_build_title_groups():
    groups = build_title_groups([make_pr(1, ["Unused import"]), make_pr(2, ["Unused import os"])])

    assert len(groups) == 1
    assert groups[0].total_count == 2
