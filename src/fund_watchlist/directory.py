from __future__ import annotations

import json
import re
import threading
from concurrent.futures import Future

from .data_sources import RelayChain
from .errors import DataSourceError, ParseError
from .logging_config import get_logger
from .models import FundDirectoryEntry

log = get_logger(__name__)

CATALOG_PATTERN = re.compile(r"var r = (\[.+\]);", flags=re.S)


def parse_directory_payload(text: str) -> list[FundDirectoryEntry]:
    # var r = [["000001","HXCZHH","华夏成长混合","混合型-偏股","HUAXIACHENGZHANGHUNHE"],...];
    m = CATALOG_PATTERN.search(text)
    if not m:
        raise ParseError("无法解析基金列表数据")
    try:
        rows = json.loads(m.group(1))
    except json.JSONDecodeError as exc:
        raise ParseError(f"基金列表不是合法JSON: {exc}") from exc

    entries: list[FundDirectoryEntry] = []
    for row in rows:
        if not isinstance(row, list) or len(row) < 5:
            continue
        code, spell, name, fund_type, pinyin = (str(x) for x in row[:5])
        entries.append(
            FundDirectoryEntry(
                code=code,
                name=name,
                abbreviation=spell,
                category=fund_type,
                pinyin=pinyin,
            )
        )
    return entries


def _matches(entry: FundDirectoryEntry, kw: str) -> bool:
    return (
        kw in entry.code
        or kw in entry.name.lower()
        or kw in entry.abbreviation.lower()
        or kw in entry.pinyin.lower()
    )


class DirectoryClient:
    def __init__(
        self,
        relays: RelayChain,
        directory_host: str = "https://fund.eastmoney.com",
    ) -> None:
        self._relays = relays
        self._url = f"{directory_host.rstrip('/')}/js/fundcode_search.js"
        self._lock = threading.Lock()
        self._pending: Future[list[FundDirectoryEntry]] | None = None

    def load_directory(self) -> list[FundDirectoryEntry]:
        with self._lock:
            pending = self._pending
            owner = pending is None
            if owner:
                pending = self._pending = Future()

        if not owner:
            return pending.result()

        try:
            entries = parse_directory_payload(self._relays.fetch_text(self._url))
        except DataSourceError as exc:
            log.error("directory_load_failed", error=str(exc))
            self._reset()
            pending.set_result([])
            return []
        except Exception as exc:
            self._reset()
            pending.set_exception(exc)
            raise

        log.info("directory_loaded", count=len(entries))
        pending.set_result(entries)
        return entries

    def _reset(self) -> None:
        with self._lock:
            self._pending = None

    def search(self, keyword: str, limit: int = 20) -> list[FundDirectoryEntry]:
        kw = keyword.strip().lower()
        if not kw or limit <= 0:
            return []

        results: list[FundDirectoryEntry] = []
        for entry in self.load_directory():
            if len(results) >= limit:
                break
            if _matches(entry, kw):
                results.append(entry)
        return results
