from __future__ import annotations

from concurrent.futures import Future, ThreadPoolExecutor
from typing import Callable

from .config import AppConfig, with_credentials
from .data_sources import HttpClient, RelayChain
from .debounce import SearchDebouncer
from .directory import DirectoryClient
from .errors import ConfigError, DataSourceError, RemoteError
from .local_store import LocalListStore
from .logging_config import get_logger
from .models import FUND_CODE_PATTERN, FundQuote, SearchHit, WatchlistDocument
from .quotes import QuoteClient, sort_by_change
from .remote_store import RemoteListStore

log = get_logger(__name__)


class WatchlistSession:
    """Owns the watchlist for one session and keeps local and remote stores in step.

    The local store is written synchronously on every change. The remote store
    is updated in the background on a single worker, so writes land in order
    and a failed write never undoes the local change.
    """

    def __init__(
        self,
        quotes: QuoteClient,
        directory: DirectoryClient,
        local: LocalListStore,
        remote: RemoteListStore,
        on_sync_error: Callable[[Exception], None] | None = None,
    ) -> None:
        self._quotes = quotes
        self._directory = directory
        self._local = local
        self._remote = remote
        self._on_sync_error = on_sync_error
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="remote-sync")

        self.document = WatchlistDocument()
        self.version_token: str | None = None
        self.quotes: list[FundQuote] = []
        self.loaded = False
        self.source = "none"

    def __enter__(self) -> WatchlistSession:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    @property
    def funds(self) -> list[str]:
        return list(self.document.funds)

    def _load_document(self) -> None:
        if self._remote.is_configured():
            try:
                handle = self._remote.read()
            except (RemoteError, DataSourceError) as exc:
                log.warning("remote_load_failed_using_local", error=str(exc))
            else:
                if handle.version_token is not None:
                    self.document = handle.content
                    self.version_token = handle.version_token
                    self.source = "remote"
                    self._local.save(self.document.funds)
                    self.loaded = True
                    return
                log.info("remote_document_absent_using_local")

        self.document = WatchlistDocument(funds=self._local.load())
        self.version_token = None
        self.source = "local"
        self.loaded = True

    def _ensure_loaded(self) -> None:
        if not self.loaded:
            self._load_document()

    def load(self) -> list[FundQuote]:
        self._load_document()
        log.info("watchlist_loaded", source=self.source, funds=len(self.document.funds))
        return self.refresh()

    def refresh(self) -> list[FundQuote]:
        self._ensure_loaded()
        self.quotes = sort_by_change(self._quotes.fetch_multiple(self.funds))
        return self.quotes

    def add_fund(self, code: str) -> Future[str] | None:
        code = code.strip()
        if not FUND_CODE_PATTERN.fullmatch(code):
            raise ValueError(f"无效基金代码: {code}")
        self._ensure_loaded()
        if not self.document.add(code):
            return None

        self._local.save(self.document.funds)
        try:
            quote = self._quotes.fetch_quote(code)
        except DataSourceError as exc:
            log.warning("quote_unavailable", code=code, error=str(exc))
        else:
            self.quotes = sort_by_change([*self.quotes, quote])

        log.info("fund_added", code=code, funds=len(self.document.funds))
        return self._propagate()

    def remove_fund(self, code: str) -> Future[str] | None:
        code = code.strip()
        self._ensure_loaded()
        if not self.document.remove(code):
            return None

        self._local.save(self.document.funds)
        self.quotes = [q for q in self.quotes if q.code != code]

        log.info("fund_removed", code=code, funds=len(self.document.funds))
        return self._propagate()

    def _propagate(self) -> Future[str] | None:
        if not self._remote.is_configured():
            return None
        future = self._executor.submit(self._remote.sync_funds, self.funds)
        future.add_done_callback(self._on_propagated)
        return future

    def _on_propagated(self, future: Future[str]) -> None:
        exc = future.exception()
        if exc is None:
            self.version_token = future.result()
            return
        log.error("remote_sync_failed", error=str(exc))
        if self._on_sync_error is not None and isinstance(exc, Exception):
            self._on_sync_error(exc)

    def sync_remote(self) -> str:
        if not self._remote.is_configured():
            raise ConfigError("请先配置 GitHub 设置")
        self._ensure_loaded()
        self.version_token = self._remote.sync_funds(self.funds)
        log.info("remote_synced", funds=len(self.document.funds))
        return self.version_token

    def search(self, keyword: str, limit: int = 20) -> list[SearchHit]:
        self._ensure_loaded()
        return [
            SearchHit(entry=entry, added=entry.code in self.document)
            for entry in self._directory.search(keyword, limit=limit)
        ]

    def debounced_search(
        self,
        on_result: Callable[[str, list[SearchHit]], None],
        on_clear: Callable[[], None] | None = None,
        limit: int = 20,
        delay: float = 0.3,
    ) -> SearchDebouncer[list[SearchHit]]:
        return SearchDebouncer(
            lambda keyword: self.search(keyword, limit=limit),
            on_result,
            on_clear=on_clear,
            delay=delay,
        )

    def close(self) -> None:
        self._executor.shutdown(wait=True)


def build_session(
    config: AppConfig,
    on_sync_error: Callable[[Exception], None] | None = None,
) -> WatchlistSession:
    local = LocalListStore(config.storage_path)
    config = with_credentials(config, local.load_credentials())

    http = HttpClient(proxy_url=config.proxy or None, timeout=config.request_timeout)
    relays = RelayChain.from_config(config, http)
    return WatchlistSession(
        quotes=QuoteClient(relays, quote_host=config.quote_host, max_workers=config.max_workers),
        directory=DirectoryClient(relays, directory_host=config.directory_host),
        local=local,
        remote=RemoteListStore.from_config(config, http),
        on_sync_error=on_sync_error,
    )
