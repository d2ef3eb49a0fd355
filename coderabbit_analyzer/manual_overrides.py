import json
import logging
import os
import pathlib
from datetime import datetime, timezone
from typing import Any, Protocol

from pydantic import BaseModel, ValidationError

from coderabbit_analyzer.review_issue import PullRequest

logger = logging.getLogger(__name__)

MANUAL_OVERRIDES_KEY = "manual_acceptance"
DEFAULT_STATE_FILE = os.path.join("~", ".coderabbit_analyzer", "state.json")


class KeyValueStore(Protocol):
    def get(self, key: str, default: Any = None) -> Any: ...

    def set(self, key: str, value: Any) -> None: ...


class JsonFileStore:
    """Key-value store persisted as a single JSON object on disk."""

    def __init__(self, path: str = DEFAULT_STATE_FILE):
        self.path = pathlib.Path(os.path.expanduser(path))

    def _load(self) -> dict[str, Any]:
        if not self.path.exists():
            return {}
        with open(self.path, "r") as f:
            data = json.load(f)
        if not isinstance(data, dict):
            raise ValueError(f"Expected a JSON object in {self.path}")
        return data

    def get(self, key: str, default: Any = None) -> Any:
        return self._load().get(key, default)

    def set(self, key: str, value: Any) -> None:
        data = self._load()
        data[key] = value
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with open(self.path, "w") as f:
            json.dump(data, f, indent=2)


class ManualOverride(BaseModel):
    accepted: bool = True
    timestamp: datetime


class ManualOverrideStore:
    """Manual acceptance decisions keyed by comment URL.

    A manual decision always wins over automatic detection. Toggling the same
    URL a second time removes the decision again.
    """

    def __init__(self, storage: KeyValueStore):
        self.storage = storage

    def get(self) -> dict[str, ManualOverride]:
        raw = self.storage.get(MANUAL_OVERRIDES_KEY) or {}
        overrides = {}
        for url, entry in raw.items():
            try:
                overrides[url] = ManualOverride.model_validate(entry)
            except ValidationError as e:
                logger.warning(f"Skipping invalid manual override for {url}: {e}")
        return overrides

    def _save(self, overrides: dict[str, ManualOverride]) -> None:
        self.storage.set(
            MANUAL_OVERRIDES_KEY,
            {url: override.model_dump(mode="json") for url, override in overrides.items()},
        )

    def toggle(self, url: str, accepted: bool = True) -> ManualOverride | None:
        """Add a manual decision for ``url``, or remove the existing one.

        Returns the new override, or None when one was removed.
        """
        overrides = self.get()
        override = None
        if url in overrides:
            del overrides[url]
            logger.info(f"Removed manual acceptance for {url}")
        else:
            override = ManualOverride(accepted=accepted, timestamp=datetime.now(timezone.utc))
            overrides[url] = override
            logger.info(f"Marked {url} as {'accepted' if accepted else 'not accepted'} manually")
        self._save(overrides)
        return override

    def apply(self, pull_requests: list[PullRequest]) -> int:
        """Decorate issues with the stored decisions; returns how many matched."""
        overrides = self.get()
        applied = 0
        for pr in pull_requests:
            for issue in pr.actionable_issues:
                override = overrides.get(issue.url)
                if override is not None:
                    issue.override_acceptance(override.accepted)
                    applied += 1
                else:
                    issue.reset_acceptance()
        return applied
