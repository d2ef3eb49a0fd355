import asyncio
import logging
from typing import Any

from coderabbit_analyzer.github_api import GITHUB_API_URL, GitHubAPIError, GitHubFetcher
from coderabbit_analyzer.review_issue import (
    AcceptanceMethod,
    ActionableIssue,
    ReviewThread,
    ThreadComment,
)

logger = logging.getLogger(__name__)

CODERABBIT_LOGIN = "coderabbitai[bot]"

# The REST API doesn't expose whether a review thread is resolved, so it has to
# come from GraphQL.
# TODO: only the first 100 threads and 100 comments per thread are read; page
# through reviewThreads with pageInfo/endCursor for very large PRs.
REVIEW_THREADS_QUERY = """
    query($owner: String!, $repo: String!, $pr: Int!) {
        repository(owner: $owner, name: $repo) {
            pullRequest(number: $pr) {
                reviewThreads(first: 100) {
                    nodes {
                        id
                        isResolved
                        comments(first: 100) {
                            nodes {
                                id
                                databaseId
                                url
                            }
                        }
                    }
                }
            }
        }
    }
"""


def _author_login(item: dict[str, Any]) -> str | None:
    # deleted accounts come back with "user": null
    return (item.get("user") or {}).get("login")


class CommentCollector:
    """Gathers a PR's review, inline and conversation comments left by the bot."""

    def __init__(self, fetcher: GitHubFetcher, owner: str, repo: str, bot_login: str = CODERABBIT_LOGIN):
        self.fetcher = fetcher
        self.owner = owner
        self.repo = repo
        self.bot_login = bot_login

    def _is_bot_comment(self, item: dict[str, Any]) -> bool:
        return _author_login(item) == self.bot_login and bool(item.get("body"))

    async def collect(self, pr_number: int) -> list[dict[str, Any]]:
        base_url = f"{GITHUB_API_URL}/repos/{self.owner}/{self.repo}"
        try:
            reviews, review_comments, issue_comments = await asyncio.gather(
                self.fetcher.fetch_all_pages(f"{base_url}/pulls/{pr_number}/reviews"),
                self.fetcher.fetch_all_pages(f"{base_url}/pulls/{pr_number}/comments"),
                self.fetcher.fetch_all_pages(f"{base_url}/issues/{pr_number}/comments"),
            )
        except GitHubAPIError as e:
            logger.error(f"Error fetching comments for PR #{pr_number}: {e}")
            return []

        return [
            item
            for item in [*reviews, *review_comments, *issue_comments]
            if self._is_bot_comment(item)
        ]


class ThreadResolver:
    """Looks up which review threads of a PR have been marked resolved."""

    def __init__(self, fetcher: GitHubFetcher, owner: str, repo: str):
        self.fetcher = fetcher
        self.owner = owner
        self.repo = repo

    async def fetch_threads(self, pr_number: int) -> list[ReviewThread]:
        if not self.fetcher.authenticated:
            # GraphQL always requires a token
            logger.debug(f"Skipping review thread lookup for PR #{pr_number}: no token.")
            return []

        variables = {"owner": self.owner, "repo": self.repo, "pr": pr_number}
        try:
            data = await self.fetcher.graphql(REVIEW_THREADS_QUERY, variables)
            return self._parse_threads(data)
        except GitHubAPIError as e:
            logger.error(f"Error fetching review threads for PR #{pr_number}: {e}")
        except (KeyError, TypeError, AttributeError, ValueError) as e:
            logger.error(f"Unexpected review thread data for PR #{pr_number}: {e!r}")
        return []

    @staticmethod
    def _parse_threads(data: dict[str, Any]) -> list[ReviewThread]:
        pr_data = (data.get("repository") or {}).get("pullRequest") or {}
        raw_threads = (pr_data.get("reviewThreads") or {}).get("nodes") or []
        threads = []
        # connection nodes are nullable
        for node in filter(None, raw_threads):
            comments = [
                ThreadComment(
                    id=comment["id"],
                    database_id=comment.get("databaseId"),
                    url=comment.get("url"),
                )
                for comment in filter(None, (node.get("comments") or {}).get("nodes") or [])
            ]
            threads.append(
                ReviewThread(id=node["id"], is_resolved=bool(node.get("isResolved")), comments=comments)
            )
        return threads

    @staticmethod
    def find_thread(threads: list[ReviewThread], comment: dict[str, Any]) -> ReviewThread | None:
        url = comment.get("html_url")
        comment_id = comment.get("id")
        for thread in threads:
            for thread_comment in thread.comments:
                if (url and thread_comment.url == url) or (
                    comment_id is not None and thread_comment.database_id == comment_id
                ):
                    return thread
        return None

    def resolve(self, issue: ActionableIssue, comment: dict[str, Any], threads: list[ReviewThread]) -> None:
        thread = self.find_thread(threads, comment)
        if thread is not None and thread.is_resolved:
            issue.record_acceptance(AcceptanceMethod.RESOLVED_VIA_QUERY)
