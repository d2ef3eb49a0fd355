import re
from dataclasses import dataclass
from typing import Callable

from coderabbit_analyzer.review_issue import AcceptanceMethod, ActionableIssue, Priority, Severity

SEVERITY_MARKERS: dict[str, Severity] = {
    "⚠️": Severity.POTENTIAL_ISSUE,
    "⚠": Severity.POTENTIAL_ISSUE,
    "🧹": Severity.NITPICK,
    "💡": Severity.SUGGESTION,
    "🔍": Severity.REVIEW,
}
PRIORITY_MARKERS: dict[str, tuple[Priority, ...]] = {
    "🔴": (Priority.CRITICAL,),
    "🟠": (Priority.MAJOR,),
    "🟡": (Priority.MINOR,),
    "🔵": (Priority.TRIVIAL,),
    # purple is not tied to a single level
    "🟣": tuple(Priority),
}

# e.g. "_⚠️ Potential issue_ | _🟠 Major_"
MARKER_PATTERN = re.compile(
    r"_(" + "|".join(SEVERITY_MARKERS) + r")\s*([^_]+)_\s*\|\s*_("
    + "|".join(PRIORITY_MARKERS) + r")\s*([^_]+)_"
)
HEADING_AFTER_DETAILS_PATTERN = re.compile(r"</details>\s*\n\s*\*\*([^*]+)\*\*")
BOLD_PATTERN = re.compile(r"\*\*([^*]+)\*\*")
LINE_AFTER_MARKER_PATTERN = re.compile(r"^\s*\n\s*([^\n<]+)")
SECTION_END_PATTERN = re.compile(r"<details>|<!--")
HTML_TAG_PATTERN = re.compile(r"<[^>]+>")
INLINE_MARKUP_PATTERN = re.compile(r"[_*`]")
ADDRESSED_PATTERN = re.compile(r"addressed in commit", re.IGNORECASE)

MAX_FALLBACK_TITLE_LENGTH = 100


@dataclass
class ExtractedText:
    title: str
    # offset in the body where the description search starts
    end: int
    description: str | None = None


TitleStrategy = Callable[[str, re.Match], ExtractedText | None]


def _strip_markup(text: str) -> str:
    return INLINE_MARKUP_PATTERN.sub("", HTML_TAG_PATTERN.sub("", text)).strip()


def _title_after_details(body: str, marker: re.Match) -> ExtractedText | None:
    match = HEADING_AFTER_DETAILS_PATTERN.search(body)
    if not match:
        return None
    title = match.group(1).strip()
    if not title:
        return None

    description = None
    rest = body[match.end():]
    section_end = SECTION_END_PATTERN.search(rest)
    if section_end:
        description = re.sub(r"\n{3,}", "\n\n", rest[: section_end.start()].strip())
    return ExtractedText(title=title, end=match.end(), description=description or None)


def _bold_after_marker(body: str, marker: re.Match) -> ExtractedText | None:
    match = BOLD_PATTERN.search(body, marker.end())
    if not match or not match.group(1).strip():
        return None
    return ExtractedText(title=match.group(1).strip(), end=match.end())


def _line_after_marker(body: str, marker: re.Match) -> ExtractedText | None:
    after_marker = body[marker.end():]
    match = LINE_AFTER_MARKER_PATTERN.match(after_marker)
    if not match or not match.group(1).strip():
        return None
    return ExtractedText(title=match.group(1).strip(), end=marker.end() + match.end())


def _fallback_title(body: str, marker: re.Match) -> ExtractedText | None:
    cleaned = INLINE_MARKUP_PATTERN.sub("", HTML_TAG_PATTERN.sub("", body))
    for line in cleaned.split("\n"):
        line = line.strip()
        if line:
            if len(line) > MAX_FALLBACK_TITLE_LENGTH:
                line = line[:MAX_FALLBACK_TITLE_LENGTH] + "..."
            # the stripped text no longer lines up with the body, so the
            # description is looked up after the marker instead
            return ExtractedText(title=line, end=marker.end())
    return None


# Order matters: earlier strategies are more precise on ambiguous bodies.
TITLE_STRATEGIES: tuple[TitleStrategy, ...] = (
    _title_after_details,
    _bold_after_marker,
    _line_after_marker,
    _fallback_title,
)


def _description_after(body: str, end: int) -> str:
    """First non-empty line after the title's line, before any collapsed section."""
    rest = body[end:]
    newline = rest.find("\n")
    if newline == -1:
        return ""
    rest = rest[newline + 1:]
    section_end = SECTION_END_PATTERN.search(rest)
    if section_end:
        rest = rest[: section_end.start()]
    for line in rest.split("\n"):
        line = _strip_markup(line)
        if line:
            return line
    return ""


def extract_title(body: str, marker: re.Match) -> ExtractedText | None:
    for strategy in TITLE_STRATEGIES:
        extracted = strategy(body, marker)
        if extracted is not None and extracted.title:
            return extracted
    return None


def _marker_labels(marker: re.Match) -> tuple[Severity, Priority] | None:
    """Labels of a marker, or None unless both glyph and label pairs are known."""
    severity_glyph, severity_label, priority_glyph, priority_label = (
        group.strip() for group in marker.groups()
    )
    try:
        severity = Severity(severity_label)
        priority = Priority(priority_label)
    except ValueError:
        return None
    if SEVERITY_MARKERS[severity_glyph] != severity or priority not in PRIORITY_MARKERS[priority_glyph]:
        return None
    return severity, priority


def find_marker(body: str) -> tuple[re.Match, Severity, Priority] | None:
    for marker in MARKER_PATTERN.finditer(body):
        labels = _marker_labels(marker)
        if labels is not None:
            return marker, *labels
    return None


def parse_actionable_issue(body: str | None) -> ActionableIssue | None:
    """Parse a CodeRabbit comment body into an actionable issue.

    Returns None when the body has no known severity/priority marker. The
    caller fills in the comment URL and timestamp.
    """
    if not body:
        return None

    found = find_marker(body)
    if found is None:
        return None
    marker, severity, priority = found

    extracted = extract_title(body, marker)
    title = extracted.title if extracted else ""
    description = ""
    if extracted:
        description = extracted.description or _description_after(body, extracted.end)

    issue = ActionableIssue(
        severity=severity,
        priority=priority,
        title=title,
        description=description,
    )
    if ADDRESSED_PATTERN.search(body):
        issue.record_acceptance(AcceptanceMethod.DETECTED_IN_BODY)
    return issue
