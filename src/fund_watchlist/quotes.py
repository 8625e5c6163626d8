from __future__ import annotations

import json
import re
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from decimal import Decimal, InvalidOperation
from typing import Any, Iterable

from .data_sources import RelayChain
from .errors import DataSourceError, NotAvailableError, ParseError
from .logging_config import get_logger
from .models import FundQuote

log = get_logger(__name__)

JSONP_PATTERN = re.compile(r"jsonpgz\((\{.*\})\)", flags=re.S)


def _to_decimal(value: Any) -> Decimal | None:
    if value is None or value == "":
        return None
    try:
        d = Decimal(str(value).strip())
    except InvalidOperation:
        return None
    return d if d.is_finite() else None


def parse_quote_payload(text: str, code: str) -> FundQuote:
    m = JSONP_PATTERN.search(text)
    if not m:
        raise ParseError(f"无法解析基金估值数据: {code}")
    try:
        payload = json.loads(m.group(1))
    except json.JSONDecodeError as exc:
        raise ParseError(f"基金估值数据不是合法JSON: {code} -> {exc}") from exc
    if not isinstance(payload, dict):
        raise ParseError(f"无法解析基金估值数据: {code}")

    return FundQuote(
        code=str(payload.get("fundcode") or code),
        name=str(payload.get("name") or ""),
        net_asset_value=_to_decimal(payload.get("dwjz")),
        estimated_value=_to_decimal(payload.get("gsz")),
        estimated_change_percent=_to_decimal(payload.get("gszzl")),
        valuation_date=str(payload.get("jzrq") or ""),
        estimation_time=str(payload.get("gztime") or ""),
    )


def sort_by_change(quotes: Iterable[FundQuote]) -> list[FundQuote]:
    return sorted(
        quotes,
        key=lambda q: q.estimated_change_percent or Decimal(0),
        reverse=True,
    )


class QuoteClient:
    def __init__(
        self,
        relays: RelayChain,
        quote_host: str = "https://fundgz.1234567.com.cn",
        max_workers: int = 8,
    ) -> None:
        self._relays = relays
        self._quote_host = quote_host.rstrip("/")
        self._max_workers = max_workers

    def quote_url(self, code: str) -> str:
        return f"{self._quote_host}/js/{code}.js?rt={int(time.time() * 1000)}"

    def fetch_quote(self, code: str) -> FundQuote:
        text = self._relays.fetch_text(self.quote_url(code))
        try:
            return parse_quote_payload(text, code)
        except ParseError as exc:
            raise NotAvailableError(f"获取基金 {code} 数据失败: {exc}") from exc

    def fetch_multiple(self, codes: list[str]) -> list[FundQuote]:
        if not codes:
            return []

        workers = max(1, min(self._max_workers, len(codes)))
        quotes: list[FundQuote] = []

        with ThreadPoolExecutor(max_workers=workers) as executor:
            future_map = {executor.submit(self.fetch_quote, code): code for code in codes}
            for future in as_completed(future_map):
                code = future_map[future]
                try:
                    quotes.append(future.result())
                except DataSourceError as exc:
                    log.warning("quote_unavailable", code=code, error=str(exc))

        log.info("quotes_fetched", requested=len(codes), succeeded=len(quotes))
        return quotes
