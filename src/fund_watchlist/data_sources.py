from __future__ import annotations

from dataclasses import dataclass
from http.client import HTTPException
from typing import Iterable, Mapping, Protocol
from urllib.error import HTTPError, URLError
from urllib.parse import quote, urlparse
from urllib.request import ProxyHandler, Request, build_opener

from .config import AppConfig
from .errors import ConfigError, DataSourceError, RelayExhaustedError
from .logging_config import get_logger

log = get_logger(__name__)

UA = (
    "Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/124.0.0.0 Safari/537.36"
)


@dataclass(slots=True)
class HttpResponse:
    status: int
    text: str

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300


class Transport(Protocol):
    def request(
        self,
        method: str,
        url: str,
        headers: Mapping[str, str] | None = None,
        body: bytes | None = None,
    ) -> HttpResponse: ...


class HttpClient:
    """urllib-based client; non-2xx statuses are returned, not raised.

    proxy_url example: http://127.0.0.1:7890
    """

    def __init__(self, proxy_url: str | None = None, timeout: float | None = None) -> None:
        handlers = []
        if proxy_url:
            parsed = urlparse(proxy_url)
            if not parsed.scheme or not parsed.netloc:
                raise ConfigError(f"无效代理地址: {proxy_url}")
            handlers.append(ProxyHandler({"http": proxy_url, "https": proxy_url}))
        self._opener = build_opener(*handlers)
        self._timeout = timeout

    def request(
        self,
        method: str,
        url: str,
        headers: Mapping[str, str] | None = None,
        body: bytes | None = None,
    ) -> HttpResponse:
        merged = {"User-Agent": UA, **(headers or {})}
        kwargs = {} if self._timeout is None else {"timeout": self._timeout}
        try:
            req = Request(url, data=body, headers=merged, method=method)
            with self._opener.open(req, **kwargs) as resp:
                return HttpResponse(resp.status, resp.read().decode("utf-8", errors="ignore"))
        except HTTPError as exc:
            text = exc.read().decode("utf-8", errors="ignore") if exc.fp else ""
            return HttpResponse(exc.code, text)
        except (URLError, TimeoutError, OSError, HTTPException, ValueError) as exc:
            raise DataSourceError(f"HTTP请求失败: {url} -> {exc}") from exc


def _encoded(target: str) -> str:
    return quote(target, safe="")


class RelayChain:
    """Fetches a target URL through an ordered list of relay endpoints."""

    def __init__(
        self,
        transport: Transport,
        relay_url: str = "",
        fallback_relays: Iterable[str] = (),
        direct_fetch: bool = False,
    ) -> None:
        self._transport = transport
        self._relay_url = relay_url.strip()
        self._fallback_relays = tuple(fallback_relays)
        self._direct_fetch = direct_fetch

    @classmethod
    def from_config(cls, config: AppConfig, transport: Transport) -> RelayChain:
        return cls(
            transport,
            relay_url=config.relay_url,
            fallback_relays=config.fallback_relays,
            direct_fetch=config.direct_fetch,
        )

    def endpoints(self, target: str) -> list[str]:
        urls: list[str] = []
        if self._direct_fetch:
            urls.append(target)
        if self._relay_url:
            urls.append(f"{self._relay_url}?url={_encoded(target)}")
        urls.extend(f"{prefix}{_encoded(target)}" for prefix in self._fallback_relays)
        return urls

    def fetch_text(self, target: str) -> str:
        for url in self.endpoints(target):
            try:
                resp = self._transport.request("GET", url)
            except DataSourceError as exc:
                log.warning("relay_failed", relay=url, error=str(exc))
                continue
            if resp.ok:
                return resp.text
            log.warning("relay_failed", relay=url, status=resp.status)
        raise RelayExhaustedError(f"所有代理均失败: {target}")
