import argparse
import logging
import os

from coderabbit_analyzer.analysis_output import AnalysisResult
from coderabbit_analyzer.filters import ALL, FilterState
from coderabbit_analyzer.io_utils import load_analysis
from coderabbit_analyzer.manual_overrides import DEFAULT_STATE_FILE, JsonFileStore, ManualOverrideStore
from coderabbit_analyzer.report import render_report

logger = logging.getLogger(__name__)


def build_filter_state(priorities: list[str] | None, acceptance: str) -> FilterState:
    """Replay the selections as button clicks, starting from the default state."""
    state = FilterState()
    for priority in priorities or []:
        state = state.with_priority(priority)
    if acceptance != ALL:
        state = state.with_acceptance(acceptance)
    return state


def view_analysis(
    analysis_file: str,
    overrides: ManualOverrideStore,
    state: FilterState,
    toggle_url: str | None = None,
) -> str:
    result: AnalysisResult = load_analysis(analysis_file)
    if toggle_url:
        known_urls = {issue.url for _, issue in result.iter_issues()}
        if toggle_url not in known_urls:
            logger.warning(f"{toggle_url} is not an issue in {analysis_file}")
        overrides.toggle(toggle_url)
    applied = overrides.apply(result.pull_requests)
    logger.info(f"Applied {applied} manual acceptance decisions.")
    return render_report(result, state)


if __name__ == "__main__":

    parser = argparse.ArgumentParser(description="Show a saved CodeRabbit analysis as a markdown report.")
    parser.add_argument(
        "--analysis-file",
        type=str,
        required=True,
        help="Analysis JSON written by analyze_prs.",
    )
    parser.add_argument(
        "--priority",
        type=str,
        action="append",
        default=None,
        help="Only show issues with this priority (e.g. Major). Can be repeated.",
    )
    parser.add_argument(
        "--acceptance",
        type=str,
        choices=["all", "accepted", "not-accepted"],
        default="all",
        help="Only show accepted or not accepted issues.",
    )
    parser.add_argument(
        "--toggle-acceptance",
        type=str,
        default=None,
        help="Comment URL whose manual acceptance should be toggled before showing the report.",
    )
    parser.add_argument(
        "--state-file",
        type=str,
        default=None,
        help="JSON file holding manual acceptance decisions.",
    )
    parser.add_argument(
        "--output-file",
        type=str,
        default=None,
        help="Write the report here instead of printing it.",
    )
    parser.add_argument(
        "--log-level",
        type=str,
        default="INFO",
        help="Logging level.",
    )
    my_args = parser.parse_args()

    logging.basicConfig(level=my_args.log_level.upper(), format="%(asctime)s %(levelname)s %(name)s: %(message)s")

    state_file = my_args.state_file or os.getenv("CODERABBIT_ANALYZER_STATE", DEFAULT_STATE_FILE)
    overrides = ManualOverrideStore(JsonFileStore(state_file))
    state = build_filter_state(my_args.priority, my_args.acceptance)

    report = view_analysis(my_args.analysis_file, overrides, state, my_args.toggle_acceptance)
    if my_args.output_file:
        with open(my_args.output_file, "w") as f:
            f.write(report)
        logger.info(f"Wrote report to {my_args.output_file}")
    else:
        print(report)
