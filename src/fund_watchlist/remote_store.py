from __future__ import annotations

import base64
import binascii
import datetime as dt
import json
from typing import Any
from urllib.parse import quote

from .config import AppConfig
from .data_sources import HttpResponse, Transport
from .errors import ConfigError, DataSourceError, ParseError, RemoteConflictError, RemoteError
from .logging_config import get_logger
from .models import RemoteCredentials, RemoteDocumentHandle, WatchlistDocument, utc_timestamp

log = get_logger(__name__)


def encode_document(document: WatchlistDocument) -> str:
    raw = json.dumps(document.to_dict(), ensure_ascii=False, indent=2)
    return base64.b64encode(raw.encode("utf-8")).decode("ascii")


def decode_document(content: str) -> WatchlistDocument:
    try:
        raw = base64.b64decode(content).decode("utf-8")
        data = json.loads(raw)
    except (binascii.Error, UnicodeDecodeError, ValueError) as exc:
        raise ParseError(f"远程文件内容无法解析: {exc}") from exc
    if not isinstance(data, dict):
        raise ParseError("远程文件内容不是JSON对象")
    return WatchlistDocument.from_dict(data)


def _error_message(resp: HttpResponse) -> str:
    try:
        body = json.loads(resp.text)
    except ValueError:
        body = {}
    message = body.get("message") if isinstance(body, dict) else None
    return message or f"GitHub API 错误: {resp.status}"


class RemoteListStore:
    """Watchlist JSON document kept in a GitHub repository via the contents API."""

    def __init__(
        self,
        transport: Transport,
        credentials: RemoteCredentials,
        api_host: str = "https://api.github.com",
        api_version: str = "2022-11-28",
    ) -> None:
        self._transport = transport
        self._credentials = credentials
        self._api_host = api_host.rstrip("/")
        self._api_version = api_version

    @classmethod
    def from_config(cls, config: AppConfig, transport: Transport) -> RemoteListStore:
        return cls(transport, config.remote, api_host=config.api_host, api_version=config.api_version)

    def is_configured(self) -> bool:
        return self._credentials.is_complete

    @property
    def contents_url(self) -> str:
        path = quote(self._credentials.path.lstrip("/"), safe="/")
        return f"{self._api_host}/repos/{self._credentials.repo}/contents/{path}"

    def _headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self._credentials.token}",
            "Accept": "application/vnd.github+json",
            "X-GitHub-Api-Version": self._api_version,
            "Content-Type": "application/json",
        }

    def _require_configured(self) -> None:
        if not self.is_configured():
            raise ConfigError("请先配置 GitHub Token 和仓库地址")

    def _send(self, method: str, body: dict[str, Any] | None = None) -> HttpResponse:
        data = json.dumps(body).encode("utf-8") if body is not None else None
        try:
            return self._transport.request(method, self.contents_url, headers=self._headers(), body=data)
        except DataSourceError as exc:
            raise RemoteError(str(exc)) from exc

    def read(self) -> RemoteDocumentHandle:
        self._require_configured()
        resp = self._send("GET")
        if resp.status == 404:
            log.info("remote_document_absent", repo=self._credentials.repo, path=self._credentials.path)
            return RemoteDocumentHandle(content=WatchlistDocument(), version_token=None)
        if not resp.ok:
            raise RemoteError(_error_message(resp), status=resp.status)

        try:
            payload = json.loads(resp.text)
        except ValueError as exc:
            raise ParseError(f"GitHub 响应不是合法JSON: {exc}") from exc
        if not isinstance(payload, dict):
            raise ParseError("GitHub 响应不是JSON对象")
        return RemoteDocumentHandle(
            content=decode_document(payload.get("content") or ""),
            version_token=payload.get("sha"),
        )

    def write(self, document: WatchlistDocument, version_token: str | None = None) -> str:
        self._require_configured()
        body: dict[str, Any] = {
            "message": f"Update fund list - {dt.datetime.now().strftime('%Y/%m/%d %H:%M:%S')}",
            "content": encode_document(document),
        }
        if version_token:
            body["sha"] = version_token

        resp = self._send("PUT", body)
        if resp.status == 409:
            raise RemoteConflictError(_error_message(resp), status=resp.status)
        if not resp.ok:
            raise RemoteError(_error_message(resp), status=resp.status)

        try:
            new_token = json.loads(resp.text)["content"]["sha"]
        except (ValueError, KeyError, TypeError) as exc:
            raise ParseError(f"GitHub 响应缺少 content.sha: {exc}") from exc
        log.info("remote_document_written", repo=self._credentials.repo, funds=len(document.funds))
        return new_token

    def sync_funds(self, funds: list[str]) -> str:
        self._require_configured()
        version_token: str | None = None
        try:
            version_token = self.read().version_token
        except (RemoteError, DataSourceError) as exc:
            log.warning("remote_read_before_write_failed", error=str(exc))

        document = WatchlistDocument(funds=list(funds), updated_at=utc_timestamp())
        return self.write(document, version_token)
