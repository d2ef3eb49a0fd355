import argparse
import asyncio
import logging
import os
from datetime import date, timedelta
from typing import Any, Callable

from termcolor import colored
from tqdm import tqdm

from coderabbit_analyzer.analysis_output import (
    AnalysisProgress,
    AnalysisResult,
    AnalysisSummary,
    DateRange,
)
from coderabbit_analyzer.github_api import (
    GITHUB_API_URL,
    AuthRequiredError,
    GitHubAPIError,
    GitHubFetcher,
    NotFoundError,
    RateLimitExceededError,
    SearchError,
)
from coderabbit_analyzer.io_utils import save_analysis
from coderabbit_analyzer.issue_parser import parse_actionable_issue
from coderabbit_analyzer.manual_overrides import DEFAULT_STATE_FILE, JsonFileStore, ManualOverrideStore
from coderabbit_analyzer.review_comments import CODERABBIT_LOGIN, CommentCollector, ThreadResolver
from coderabbit_analyzer.review_issue import PullRequest

logger = logging.getLogger(__name__)

BATCH_SIZE = 20
BATCH_DELAY = 0.05  # seconds between batches
MAX_RANGE_DAYS = 90

ProgressCallback = Callable[[AnalysisProgress], None]


class PRAnalyzer:
    """Finds closed PRs in a date range and extracts the bot's actionable issues."""

    def __init__(
        self,
        owner: str,
        repo: str,
        token: str | None = None,
        bot_login: str = CODERABBIT_LOGIN,
        batch_size: int = BATCH_SIZE,
        batch_delay: float = BATCH_DELAY,
        fetcher: GitHubFetcher | None = None,
    ):
        if not owner or not repo:
            raise ValueError("Both organization and repository name are required.")
        self.owner = owner
        self.repo = repo
        self.batch_size = batch_size
        self.batch_delay = batch_delay
        self.fetcher = fetcher or GitHubFetcher(token)
        self.collector = CommentCollector(self.fetcher, owner, repo, bot_login)
        self.resolver = ThreadResolver(self.fetcher, owner, repo)

    @property
    def repository(self) -> str:
        return f"{self.owner}/{self.repo}"

    async def search_pull_requests(self, date_range: DateRange) -> list[dict[str, Any]]:
        """Search closed PRs (merged or not) created within the date range, newest first."""
        # NOTE: filters on creation date, not on when the PR was closed
        query = (
            f"type:pr is:closed repo:{self.repository} "
            f"created:{date_range.start.isoformat()}..{date_range.end.isoformat()}"
        )
        params = {"q": query, "sort": "created", "order": "desc"}
        try:
            return await self.fetcher.fetch_all_pages(f"{GITHUB_API_URL}/search/issues", params=params)
        except (AuthRequiredError, NotFoundError, RateLimitExceededError):
            raise
        except GitHubAPIError as e:
            if e.status_code == 422:
                raise NotFoundError(
                    f"Repository not found: {self.repository}. Please check that the organization and "
                    f"repository names are correct, and that the repository exists and is accessible.",
                    status_code=422,
                ) from e
            raise SearchError(f"Failed to search pull requests for {self.repository}: {e}") from e

    async def process_pull_request(self, pr: dict[str, Any]) -> PullRequest | None:
        number = pr["number"]
        comments, threads = await asyncio.gather(
            self.collector.collect(number),
            self.resolver.fetch_threads(number),
        )
        if not comments:
            return None

        issues = []
        for comment in comments:
            issue = parse_actionable_issue(comment.get("body"))
            if issue is None:
                continue
            issue.url = comment.get("html_url") or ""
            issue.timestamp = comment.get("created_at") or comment.get("submitted_at") or ""
            self.resolver.resolve(issue, comment, threads)
            issues.append(issue)

        if not issues:
            return None

        return PullRequest(
            number=number,
            title=pr["title"],
            url=pr["html_url"],
            state=pr["state"],
            author=(pr.get("user") or {}).get("login"),
            created_at=pr["created_at"],
            actionable_issues=issues,
        )

    async def _process_safely(self, pr: dict[str, Any]) -> PullRequest | None:
        try:
            return await self.process_pull_request(pr)
        except Exception as e:
            logger.error(f"Error processing PR #{pr.get('number')}: {e}")
            return None

    async def analyze(
        self, date_range: DateRange, on_progress: ProgressCallback | None = None
    ) -> AnalysisResult:
        def report(status: str, current: int = 0, total: int = 0) -> None:
            if on_progress:
                on_progress(
                    AnalysisProgress(
                        status=status,
                        current=current,
                        total=total,
                        rate_limit_remaining=self.fetcher.rate_limit_remaining,
                    )
                )

        report("Fetching closed PRs from GitHub...")
        pull_requests = await self.search_pull_requests(date_range)
        total = len(pull_requests)
        logger.info(f"Found {total} closed PRs in {self.repository}.")
        report(f"Found {total} closed PRs. Analyzing comments...", 0, total)

        prs_with_issues: list[PullRequest] = []
        processed = 0
        for start in range(0, total, self.batch_size):
            batch = pull_requests[start:start + self.batch_size]
            results = await asyncio.gather(*[self._process_safely(pr) for pr in batch])
            prs_with_issues.extend(result for result in results if result is not None)
            processed += len(batch)

            rate_limit_info = ""
            if self.fetcher.rate_limit_remaining is not None:
                rate_limit_info = f" (Rate limit: {self.fetcher.rate_limit_remaining} remaining)"
            report(f"Analyzed PRs {start + 1}-{processed} of {total}{rate_limit_info}", processed, total)

            if processed < total:
                await asyncio.sleep(self.batch_delay)

        report("Processing results...", processed, total)
        total_issues = sum(len(pr.actionable_issues) for pr in prs_with_issues)
        avg_issues = round(total_issues / len(prs_with_issues), 1) if prs_with_issues else 0.0
        return AnalysisResult(
            repository=self.repository,
            date_range=date_range,
            summary=AnalysisSummary(
                total_prs=total,
                total_prs_with_issues=len(prs_with_issues),
                total_issues=total_issues,
                avg_issues_per_pr=avg_issues,
            ),
            pull_requests=prs_with_issues,
        )


async def analyze_pull_requests(
    owner: str,
    repo: str,
    date_range: DateRange,
    token: str | None = None,
    on_progress: ProgressCallback | None = None,
    bot_login: str = CODERABBIT_LOGIN,
) -> AnalysisResult:
    """Analyze the bot's review comments on closed PRs of ``owner/repo``.

    Args:
        owner: Github owner of the repo.
        repo: Github repository name.
        date_range: PRs created within this range are analyzed.
        token: Github token; optional, but without it only 60 requests/hour are allowed.
        on_progress: Called after each batch of PRs; must not block.
        bot_login: Login of the review bot whose comments are analyzed.

    Returns:
        The aggregated analysis.
    """
    analyzer = PRAnalyzer(owner, repo, token=token, bot_login=bot_login)
    return await analyzer.analyze(date_range, on_progress)


def format_acceptance_log(result: AnalysisResult) -> str:
    log = f"Actionable issues in {result.repository}; accepted ones are checked off:\n"
    for pr, issue in result.iter_issues():
        status = colored("[X]", "green") if issue.accepted else colored("[ ]", "red")
        bullet_point = colored("-", "yellow")
        log += f"\n{bullet_point} {status} PR #{pr.number} [{issue.priority.value}]: {issue.title}"
    return log


def validate_date_range(start: date, end: date, today: date | None = None) -> DateRange:
    today = today or date.today()
    if end > today:
        raise ValueError("End date cannot be in the future")
    date_range = DateRange(start=start, end=end)
    if (end - start).days > MAX_RANGE_DAYS:
        raise ValueError(
            f"Date range cannot exceed {MAX_RANGE_DAYS} days. Please select a shorter time period."
        )
    return date_range


def resolve_repository(repo_arg: str | None, store: JsonFileStore) -> tuple[str, str]:
    """Use ``owner/repo`` from the command line, else the last analyzed repository."""
    if repo_arg:
        if repo_arg.count("/") != 1:
            raise ValueError(f"Expected repository in the form owner/repo, got {repo_arg!r}")
        owner, repo = repo_arg.split("/")
    else:
        owner, repo = store.get("organization"), store.get("repository")
    if not owner or not repo:
        raise ValueError("Please provide both organization and repository name (--repo owner/repo).")
    return owner, repo


if __name__ == "__main__":

    parser = argparse.ArgumentParser(description="Analyze CodeRabbit review comments on closed PRs.")
    parser.add_argument(
        "--repo",
        type=str,
        default=None,
        help="Github repository to analyze in form of `owner/repo`. Defaults to the last one analyzed.",
    )
    parser.add_argument(
        "--token",
        type=str,
        default=None,
        help="Github token to access the repository.",
    )
    parser.add_argument(
        "--start-date",
        type=date.fromisoformat,
        default=None,
        help="First PR creation date (YYYY-MM-DD). Defaults to 90 days before the end date.",
    )
    parser.add_argument(
        "--end-date",
        type=date.fromisoformat,
        default=None,
        help="Last PR creation date (YYYY-MM-DD). Defaults to today.",
    )
    parser.add_argument(
        "--bot-login",
        type=str,
        default=CODERABBIT_LOGIN,
        help="Login of the review bot whose comments are analyzed.",
    )
    parser.add_argument(
        "--output-dir",
        type=str,
        default="output",
        help="Output directory to write the analysis to.",
    )
    parser.add_argument(
        "--state-file",
        type=str,
        default=None,
        help="JSON file holding manual acceptance decisions and the last analyzed repository.",
    )
    parser.add_argument(
        "--log-level",
        type=str,
        default="INFO",
        help="Logging level.",
    )
    my_args = parser.parse_args()

    logging.basicConfig(level=my_args.log_level.upper(), format="%(asctime)s %(levelname)s %(name)s: %(message)s")

    token = my_args.token if my_args.token else os.getenv("GITHUB_TOKEN")
    state_file = my_args.state_file or os.getenv("CODERABBIT_ANALYZER_STATE", DEFAULT_STATE_FILE)
    store = JsonFileStore(state_file)

    try:
        owner, repo = resolve_repository(my_args.repo, store)
        end_date = my_args.end_date or date.today()
        start_date = my_args.start_date or end_date - timedelta(days=MAX_RANGE_DAYS)
        date_range = validate_date_range(start_date, end_date)
    except ValueError as e:
        parser.error(str(e))

    store.set("organization", owner)
    store.set("repository", repo)

    pbar = tqdm(total=0, unit="PR")

    def update_progress(progress: AnalysisProgress) -> None:
        if progress.total and pbar.total != progress.total:
            pbar.total = progress.total
        pbar.update(progress.current - pbar.n)
        pbar.set_description(progress.status)
        if progress.rate_limit_remaining is not None:
            pbar.set_postfix_str(f"rate limit: {progress.rate_limit_remaining}")

    try:
        result = asyncio.run(
            analyze_pull_requests(
                owner,
                repo,
                date_range,
                token=token,
                on_progress=update_progress,
                bot_login=my_args.bot_login,
            )
        )
    except (GitHubAPIError, ValueError) as e:
        pbar.close()
        logger.error(str(e))
        raise SystemExit(1)
    pbar.close()

    ManualOverrideStore(store).apply(result.pull_requests)
    output_file = save_analysis(result, my_args.output_dir)
    logger.debug(format_acceptance_log(result))
    summary = result.summary
    logger.info(
        f"{summary.total_prs} PRs, {summary.total_prs_with_issues} with actionable issues, "
        f"{summary.total_issues} issues ({summary.avg_issues_per_pr} per PR)."
    )
    logger.info(f"Wrote analysis to {output_file}")
