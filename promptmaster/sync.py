"""
Cloud mirror of the prompt collection.

The remote is a Supabase table holding one row (id ``global_backup``) whose
``data`` column is the whole collection. There is no per-user partitioning:
whoever holds the URL and anon key reads and writes the same row.

Uploads for ordinary edits are fire-and-forget tasks. They are started in
the order edits happen but nothing orders their completion, so a slow
upload can land after a newer one and leave the remote one edit behind
until the next upload. Imports await their upload instead.
"""

from __future__ import annotations

import asyncio
import logging
import os
from dataclasses import dataclass
from urllib.parse import urlparse

import httpx

from .config import CLOUD_KEY_KEY, CLOUD_URL_KEY
from .errors import PromptMasterError
from .models import PromptRecord, now_ms
from .storage import RecordStore

logger = logging.getLogger(__name__)

STORAGE_TABLE = "app_storage"
STORAGE_ID = "global_backup"
DEFAULT_TIMEOUT = 30.0
LOCAL_HOSTS = ("localhost", "127.0.0.1", "::1")


class SyncError(Exception):
    """Error talking to the cloud store."""


@dataclass(frozen=True)
class CloudConfig:
    url: str
    key: str


def resolve_cloud_config(
    store: RecordStore, environ: dict | None = None
) -> CloudConfig | None:
    """Environment first, then the locally saved override. Both parts required."""
    env = os.environ if environ is None else environ
    url = env.get(CLOUD_URL_KEY) or store.get_setting(CLOUD_URL_KEY)
    key = env.get(CLOUD_KEY_KEY) or store.get_setting(CLOUD_KEY_KEY)
    if url and key:
        return CloudConfig(url=url.strip(), key=key.strip())
    return None


def save_cloud_config(store: RecordStore, url: str, key: str) -> None:
    store.set_setting(CLOUD_URL_KEY, url.strip())
    store.set_setting(CLOUD_KEY_KEY, key.strip())


def clear_cloud_config(store: RecordStore) -> None:
    store.delete_setting(CLOUD_URL_KEY)
    store.delete_setting(CLOUD_KEY_KEY)


def check_cloud_url(url: str) -> str:
    """Refuse plain HTTP to anything but localhost; the anon key rides in headers."""
    url = url.strip().rstrip("/")
    if not url.startswith("https://"):
        host = urlparse(url).hostname or ""
        if host not in LOCAL_HOSTS:
            raise PromptMasterError.invalid_cloud_url(url)
    return url


class SyncClient:
    """HTTP handle on the remote row. Create when configured, ``aclose`` when done."""

    def __init__(self, config: CloudConfig, *, timeout: float = DEFAULT_TIMEOUT):
        self._url = check_cloud_url(config.url)
        self._client = httpx.AsyncClient(
            base_url=f"{self._url}/rest/v1",
            headers={
                "apikey": config.key,
                "Authorization": f"Bearer {config.key}",
                "Content-Type": "application/json",
            },
            timeout=timeout,
        )

    async def __aenter__(self) -> SyncClient:
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    async def download(self) -> list | None:
        """Fetch the stored collection. ``None`` when the row does not exist yet."""
        try:
            resp = await self._client.get(
                f"/{STORAGE_TABLE}",
                params={"id": f"eq.{STORAGE_ID}", "select": "data"},
            )
            resp.raise_for_status()
            rows = resp.json()
        except httpx.HTTPError as e:
            raise SyncError(f"Download failed: {e}") from e
        except ValueError as e:
            raise SyncError(f"Download returned invalid JSON: {e}") from e

        if not rows:
            return None
        return rows[0].get("data")

    async def upload(self, records: list[dict]) -> None:
        payload = {"id": STORAGE_ID, "data": records, "updated_at": now_ms()}
        try:
            resp = await self._client.post(
                f"/{STORAGE_TABLE}",
                json=payload,
                headers={"Prefer": "resolution=merge-duplicates,return=minimal"},
            )
            resp.raise_for_status()
        except httpx.HTTPError as e:
            raise SyncError(f"Upload failed: {e}") from e


class SyncCoordinator:
    """Startup download and write-through upload. Inert without a client."""

    def __init__(self, client: SyncClient | None = None):
        self._client = client
        self._tasks: set[asyncio.Task] = set()

    @property
    def enabled(self) -> bool:
        return self._client is not None

    async def reconcile(self) -> list[dict] | None:
        """One download attempt. Returns the remote collection only if non-empty."""
        if self._client is None:
            return None
        try:
            data = await self._client.download()
        except SyncError as e:
            logger.error("Cloud download failed, keeping local data: %s", e)
            return None
        if not isinstance(data, list) or not data:
            return None
        return data

    def push(self, records: list[PromptRecord]) -> asyncio.Task | None:
        """Start an upload of ``records`` without waiting for it."""
        if self._client is None:
            return None
        payload = [r.to_dict() for r in records]
        task = asyncio.get_running_loop().create_task(self._upload_logged(payload))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def push_now(self, records: list[PromptRecord]) -> None:
        """Upload and wait. Raises on failure."""
        if self._client is None:
            raise PromptMasterError.cloud_not_configured()
        try:
            await self._client.upload([r.to_dict() for r in records])
        except SyncError as e:
            raise PromptMasterError.sync(str(e)) from e

    async def drain(self) -> None:
        if self._tasks:
            await asyncio.gather(*list(self._tasks))

    async def aclose(self) -> None:
        await self.drain()
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def _upload_logged(self, payload: list[dict]) -> None:
        try:
            await self._client.upload(payload)
        except SyncError as e:
            logger.error("Cloud upload failed: %s", e)
