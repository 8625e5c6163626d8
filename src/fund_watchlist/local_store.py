from __future__ import annotations

import json
from pathlib import Path
from typing import Any

from .logging_config import get_logger
from .models import RemoteCredentials, unique_codes

log = get_logger(__name__)

FUND_LIST_KEY = "fund_list"
CREDENTIALS_KEY = "github_config"


class LocalListStore:
    """On-device persistence: one JSON object file used as a key/value store.

    Reads fall back to empty values and writes only log on failure.
    """

    def __init__(self, path: Path) -> None:
        self.path = path

    def _read_all(self) -> dict[str, Any]:
        if not self.path.exists():
            return {}
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as exc:
            log.warning("local_store_unreadable", path=str(self.path), error=str(exc))
            return {}
        return data if isinstance(data, dict) else {}

    def _write_key(self, key: str, value: Any) -> None:
        data = self._read_all()
        data[key] = value
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            tmp = self.path.with_name(self.path.name + ".tmp")
            tmp.write_text(json.dumps(data, ensure_ascii=False, indent=2), encoding="utf-8")
            tmp.replace(self.path)
        except OSError as exc:
            log.error("local_store_write_failed", path=str(self.path), key=key, error=str(exc))

    def load(self) -> list[str]:
        return unique_codes(self._read_all().get(FUND_LIST_KEY))

    def save(self, funds: list[str]) -> None:
        self._write_key(FUND_LIST_KEY, list(funds))

    def load_credentials(self) -> RemoteCredentials | None:
        raw = self._read_all().get(CREDENTIALS_KEY)
        if not isinstance(raw, dict):
            return None
        return RemoteCredentials.from_dict(raw)

    def save_credentials(self, credentials: RemoteCredentials) -> None:
        self._write_key(CREDENTIALS_KEY, credentials.to_dict())
