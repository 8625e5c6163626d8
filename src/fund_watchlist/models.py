from __future__ import annotations

import datetime as dt
import re
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any

FUND_CODE_PATTERN = re.compile(r"\d{6}")

PLACEHOLDER_TOKEN = "YOUR_GITHUB_TOKEN_HERE"
PLACEHOLDER_REPO = "YOUR_USERNAME/YOUR_REPO"


def utc_timestamp() -> str:
    now = dt.datetime.now(dt.timezone.utc)
    return now.isoformat(timespec="milliseconds").replace("+00:00", "Z")


@dataclass(slots=True, frozen=True)
class FundDirectoryEntry:
    code: str
    name: str
    abbreviation: str
    category: str
    pinyin: str


@dataclass(slots=True, frozen=True)
class FundQuote:
    code: str
    name: str
    net_asset_value: Decimal | None
    estimated_value: Decimal | None
    estimated_change_percent: Decimal | None
    valuation_date: str
    estimation_time: str


@dataclass(slots=True)
class WatchlistDocument:
    funds: list[str] = field(default_factory=list)
    updated_at: str = ""

    def __contains__(self, code: str) -> bool:
        return code in self.funds

    def add(self, code: str) -> bool:
        if code in self.funds:
            return False
        self.funds.append(code)
        self.updated_at = utc_timestamp()
        return True

    def remove(self, code: str) -> bool:
        if code not in self.funds:
            return False
        self.funds.remove(code)
        self.updated_at = utc_timestamp()
        return True

    def to_dict(self) -> dict[str, Any]:
        return {"funds": list(self.funds), "updatedAt": self.updated_at}

    @classmethod
    def from_dict(cls, data: Any) -> WatchlistDocument:
        if not isinstance(data, dict):
            return cls()
        return cls(
            funds=unique_codes(data.get("funds") or []),
            updated_at=str(data.get("updatedAt") or ""),
        )


def unique_codes(raw: Any) -> list[str]:
    if not isinstance(raw, list):
        return []
    seen: set[str] = set()
    codes: list[str] = []
    for item in raw:
        if not isinstance(item, str) or item in seen:
            continue
        seen.add(item)
        codes.append(item)
    return codes


@dataclass(slots=True)
class RemoteDocumentHandle:
    content: WatchlistDocument
    version_token: str | None


@dataclass(slots=True, frozen=True)
class RemoteCredentials:
    token: str = ""
    repo: str = ""
    path: str = "data/funds.json"

    @property
    def is_complete(self) -> bool:
        return bool(
            self.token
            and self.repo
            and self.token != PLACEHOLDER_TOKEN
            and self.repo != PLACEHOLDER_REPO
        )

    def to_dict(self) -> dict[str, str]:
        return {"token": self.token, "repo": self.repo, "path": self.path}

    @classmethod
    def from_dict(cls, data: Any) -> RemoteCredentials:
        if not isinstance(data, dict):
            return cls()
        return cls(
            token=str(data.get("token") or "").strip(),
            repo=str(data.get("repo") or "").strip(),
            path=str(data.get("path") or "data/funds.json").strip(),
        )


@dataclass(slots=True, frozen=True)
class SearchHit:
    entry: FundDirectoryEntry
    added: bool
