from __future__ import annotations

import re
from typing import Optional


QUOTA_STATUS_RE = re.compile(r"\b429\b")


class BudgetFlowError(Exception):
    """Base class for errors surfaced to callers of the pipeline."""


class ConfigError(BudgetFlowError):
    pass


class UnknownEntityError(BudgetFlowError, KeyError):
    def __init__(self, key: object):
        super().__init__(key)
        self.key = key

    def __str__(self) -> str:
        return f"Unknown ward: {self.key!r}"


class FetchFailure(BudgetFlowError):
    """The data-acquisition collaborator failed; the cache is left untouched."""

    def __init__(self, message: str, key: Optional[str] = None, is_quota: bool = False):
        super().__init__(message)
        self.key = key
        self.is_quota = is_quota


class QuotaExceeded(FetchFailure):
    def __init__(self, message: str = "Quota exceeded: 429", key: Optional[str] = None):
        super().__init__(message, key=key, is_quota=True)


class PersistenceFailure(BudgetFlowError):
    def __init__(self, message: str, path: str = ""):
        super().__init__(message)
        self.path = path


def is_quota_error(exc: BaseException) -> bool:
    if isinstance(exc, FetchFailure) and exc.is_quota:
        return True
    text = str(exc).lower()
    return bool(QUOTA_STATUS_RE.search(text)) or "quota" in text


def fetch_error_message(exc: BaseException, key: str = "") -> str:
    if is_quota_error(exc):
        return "APIの利用制限に達しました。無料枠の上限を超えたため、数分待ってから再度お試しください。"
    return f"{key}のデータ取得中にエラーが発生しました。時間を置いて再度お試しください。"
