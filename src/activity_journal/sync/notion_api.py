from __future__ import annotations

import json
import time
import urllib.error
import urllib.request
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Iterator, Mapping

from activity_journal.config.app_config import NotionSettings

DEFAULT_VERSION = "2025-09-03"


@dataclass(frozen=True)
class NotionConfig:
    base_url: str
    token: str
    version: str
    timeout_seconds: float
    retry_attempts: int
    retry_backoff_seconds: float
    page_size: int

    @classmethod
    def from_env(cls, env: Mapping[str, str], settings: NotionSettings) -> "NotionConfig":
        token = env.get("NOTION_API_TOKEN", "").strip()
        if not token:
            raise ValueError("Missing required environment values: NOTION_API_TOKEN")
        return cls(
            base_url=settings.base_url.rstrip("/"),
            token=token,
            version=env.get("NOTION_VERSION", "").strip() or settings.version or DEFAULT_VERSION,
            timeout_seconds=settings.timeout_seconds,
            retry_attempts=settings.retry_attempts,
            retry_backoff_seconds=settings.retry_backoff_seconds,
            page_size=settings.page_size,
        )


def load_dotenv(path: Path) -> dict[str, str]:
    env: dict[str, str] = {}
    if not path.exists():
        return env

    for line in path.read_text(encoding="utf-8").splitlines():
        stripped = line.strip()
        if not stripped or stripped.startswith("#"):
            continue
        if "=" not in stripped:
            continue
        key, value = stripped.split("=", 1)
        env[key.strip()] = value.strip().strip("\"").strip("'")
    return env


class NotionClient:
    def __init__(self, config: NotionConfig) -> None:
        self._config = config

    @property
    def page_size(self) -> int:
        return self._config.page_size

    def me(self) -> Mapping[str, Any]:
        return self._request("GET", "/users/me")

    def query_data_source(
        self, data_source_id: str, body: Mapping[str, Any] | None = None
    ) -> Mapping[str, Any]:
        return self._request("POST", f"/data_sources/{data_source_id}/query", body or {})

    def retrieve_page(self, page_id: str) -> Mapping[str, Any]:
        return self._request("GET", f"/pages/{page_id}")

    def create_page(self, payload: Mapping[str, Any]) -> Mapping[str, Any]:
        return self._request("POST", "/pages", payload)

    def update_page(self, page_id: str, properties: Mapping[str, Any]) -> Mapping[str, Any]:
        return self._request("PATCH", f"/pages/{page_id}", {"properties": dict(properties)})

    def _request(
        self, method: str, path: str, body: Mapping[str, Any] | None = None
    ) -> Mapping[str, Any]:
        return _send_with_retry(
            url=f"{self._config.base_url}{path}",
            method=method,
            headers={
                "Authorization": f"Bearer {self._config.token}",
                "Notion-Version": self._config.version,
                "Content-Type": "application/json",
                "Accept": "application/json",
            },
            data=json.dumps(body).encode("utf-8") if body is not None else None,
            timeout_seconds=self._config.timeout_seconds,
            attempts=self._config.retry_attempts,
            backoff_seconds=self._config.retry_backoff_seconds,
        )


def iter_pages(
    client: Any, data_source_id: str, body: Mapping[str, Any] | None = None
) -> Iterator[Mapping[str, Any]]:
    """Yield every page of a data source query, following next_cursor."""
    request = dict(body or {})
    request.setdefault("page_size", getattr(client, "page_size", 100))
    while True:
        payload = client.query_data_source(data_source_id, request)
        results = payload.get("results") if isinstance(payload, Mapping) else None
        if not isinstance(results, list):
            raise RuntimeError(f"Unexpected query response: {payload!r}"[:500])
        for page in results:
            if isinstance(page, Mapping):
                yield page
        cursor = payload.get("next_cursor")
        if not payload.get("has_more") or not cursor:
            return
        request["start_cursor"] = cursor


def _send_request(
    url: str,
    method: str,
    headers: Mapping[str, str],
    data: bytes | None,
    timeout_seconds: float,
) -> Mapping[str, Any]:
    request = urllib.request.Request(url, headers=dict(headers), data=data, method=method)
    try:
        with urllib.request.urlopen(request, timeout=timeout_seconds) as response:
            status = response.status
            payload = response.read()
    except urllib.error.HTTPError as exc:
        body = exc.read().decode("utf-8") if exc.fp else ""
        raise RuntimeError(f"HTTP {exc.code}: {body}") from exc

    if not payload:
        raise RuntimeError(f"Empty response body (status {status}, url {url})")

    try:
        decoded = json.loads(payload.decode("utf-8"))
    except json.JSONDecodeError as exc:
        snippet = payload[:500].decode("utf-8", errors="replace")
        raise RuntimeError(f"Non-JSON response (status {status}, url {url}): {snippet}") from exc
    if not isinstance(decoded, Mapping):
        raise RuntimeError(f"Non-JSON response (status {status}, url {url}): {decoded!r}"[:500])
    return decoded


def _send_with_retry(
    url: str,
    method: str,
    headers: Mapping[str, str],
    data: bytes | None,
    timeout_seconds: float,
    attempts: int,
    backoff_seconds: float,
) -> Mapping[str, Any]:
    last_error: Exception | None = None
    for attempt in range(max(1, attempts)):
        try:
            return _send_request(
                url=url,
                method=method,
                headers=headers,
                data=data,
                timeout_seconds=timeout_seconds,
            )
        except (RuntimeError, OSError) as exc:
            last_error = exc
            if not _should_retry(exc, attempt, attempts):
                raise
            time.sleep(backoff_seconds * (2**attempt))
    if last_error is not None:
        raise last_error
    raise RuntimeError("Request retry loop exited without sending.")


def _should_retry(exc: Exception, attempt: int, attempts: int) -> bool:
    if attempt >= attempts - 1:
        return False
    message = str(exc).lower()
    if "non-json response" in message:
        return False
    if "empty response body" in message:
        return True
    if "timed out" in message:
        return True
    if "temporary failure" in message:
        return True
    if "http 408" in message or "http 409" in message or "http 429" in message:
        return True
    if "http 5" in message:
        return True
    return False
