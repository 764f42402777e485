# src/trackmate/remote/api.py

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Any, TypeVar

import httpx

from ..core.errors import MalformedEntryError, RemoteApiError, RemoteAuthError
from ..entries.models import DeletedEntry, DoneEntry, Entry
from .dto import (
    deleted_from_doc,
    deleted_to_doc,
    done_document_id,
    done_from_doc,
    done_to_doc,
    entry_from_doc,
    entry_to_doc,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

COLLECTION_USERS = "users"
COLLECTION_ENTRIES = "entries"
COLLECTION_DELETED_ENTRIES = "deleted_entries"
COLLECTION_DONE_ENTRIES = "done_entries"


def build_timeout(connect_seconds: float = 5.0, read_seconds: float = 20.0) -> httpx.Timeout:
    return httpx.Timeout(
        connect=float(connect_seconds),
        read=float(read_seconds),
        write=float(read_seconds),
        pool=float(connect_seconds),
    )


class HttpEntryApi:
    """
    Remote document store over HTTP/JSON.

    Layout (one document per id, per user):
        PUT {base}/users/{user}/entries/{id}
        GET {base}/users/{user}/entries
        ... same for deleted_entries and done_entries ({id}_{date} for completions)

    Failures are raised, never swallowed:
    - no user id               -> RemoteAuthError
    - 401/403                  -> RemoteAuthError
    - any other non-2xx        -> RemoteApiError(status_code)
    - connectivity / timeouts  -> httpx.TransportError (as raised by httpx)
    """

    def __init__(
            self,
            base_url: str,
            *,
            user_id: str | None,
            api_key: str | None = None,
            timeout: httpx.Timeout | float | None = None,
            client: httpx.AsyncClient | None = None,
    ) -> None:
        self.base_url = (base_url or "").rstrip("/")
        self.user_id = (user_id or "").strip() or None
        self._api_key = (api_key or "").strip() or None
        self._timeout = timeout if timeout is not None else build_timeout()
        self._client = client
        self._owns_client = client is None

        if not self.base_url:
            raise ValueError("base_url is required for HttpEntryApi")

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self._timeout)
        return self._client

    async def aclose(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    def _headers(self) -> dict[str, str]:
        headers = {
            "Content-Type": "application/json",
            "Accept": "application/json",
        }
        if self._api_key:
            headers["Authorization"] = f"Bearer {self._api_key}"
        return headers

    def _collection_url(self, collection: str) -> str:
        if not self.user_id:
            raise RemoteAuthError("User not authenticated")
        return f"{self.base_url}/{COLLECTION_USERS}/{self.user_id}/{collection}"

    async def _request(self, method: str, url: str, payload: dict[str, Any] | None = None) -> Any:
        response = await self._get_client().request(method, url, headers=self._headers(), json=payload)

        status = response.status_code
        if status in (401, 403):
            raise RemoteAuthError(f"{method} {url}: access denied", status_code=status)
        if not 200 <= status < 300:
            detail = response.text[:200] if response.content else ""
            raise RemoteApiError(f"{method} {url} failed: {status} {detail}".rstrip(), status_code=status)

        if not response.content:
            return None
        try:
            return response.json()
        except ValueError as e:
            raise RemoteApiError(f"{method} {url}: response is not JSON", status_code=status) from e

    async def _put(self, collection: str, doc_id: str, doc: dict[str, Any]) -> None:
        url = f"{self._collection_url(collection)}/{doc_id}"
        await self._request("PUT", url, doc)
        logger.debug("Pushed %s/%s", collection, doc_id)

    async def _list(self, collection: str, parse: Callable[[dict[str, Any]], T]) -> list[T]:
        body = await self._request("GET", self._collection_url(collection))
        if body is None:
            return []
        if isinstance(body, dict):
            body = body.get("documents", [])
        if not isinstance(body, list):
            raise RemoteApiError(f"GET {collection}: expected a list of documents")

        out: list[T] = []
        for doc in body:
            try:
                out.append(parse(doc))
            except MalformedEntryError as e:
                logger.warning("Skipping malformed %s document: %s", collection, e)
        return out

    async def push(self, entry: Entry) -> None:
        await self._put(COLLECTION_ENTRIES, entry.id, entry_to_doc(entry))

    async def fetch_all(self) -> list[Entry]:
        return await self._list(COLLECTION_ENTRIES, entry_from_doc)

    async def push_deleted(self, deleted: DeletedEntry) -> None:
        await self._put(COLLECTION_DELETED_ENTRIES, deleted.id, deleted_to_doc(deleted))

    async def fetch_deleted(self) -> list[DeletedEntry]:
        return await self._list(COLLECTION_DELETED_ENTRIES, deleted_from_doc)

    async def push_done(self, done: DoneEntry) -> None:
        await self._put(COLLECTION_DONE_ENTRIES, done_document_id(done.id, done.date), done_to_doc(done))

    async def fetch_done(self) -> list[DoneEntry]:
        return await self._list(COLLECTION_DONE_ENTRIES, done_from_doc)
