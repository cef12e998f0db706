from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional
from urllib.parse import quote

import httpx
from httpx import Response
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from .settings import PocketBaseSettings

logger = logging.getLogger(__name__)

Query = Dict[str, Any]


class PocketBaseAPIError(RuntimeError):
    """Raised when PocketBase returns an error response or an unreadable payload."""

    def __init__(self, message: str, *, status_code: Optional[int] = None, payload: Any | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.payload = payload


@dataclass(frozen=True)
class AuthSession:
    """Credentials of the identity the client currently acts as."""

    token: str
    record: Optional[Dict[str, Any]] = None
    collection: Optional[str] = None


def _segment(value: str) -> str:
    return quote(str(value), safe="")


class PocketBaseClient:
    """Thin async wrapper around the PocketBase REST API.

    One instance is shared by every tool call. Authentication swaps in a new
    immutable :class:`AuthSession` under ``_session_lock``; requests read a
    single snapshot of it, so a re-authentication racing with another call
    is last-writer-wins.
    """

    def __init__(
        self,
        settings: PocketBaseSettings,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._settings = settings
        self._base_url = settings.url.rstrip("/")
        self._client = httpx.AsyncClient(
            base_url=self._base_url,
            timeout=settings.timeout_seconds,
            transport=transport,
        )
        self._session: Optional[AuthSession] = (
            AuthSession(token=settings.auth_token) if settings.auth_token else None
        )
        self._session_lock = asyncio.Lock()

        self.collections = CollectionService(self)
        self.files = FileService(self)
        self.logs = LogService(self)
        self.crons = CronService(self)
        self.settings = SettingsService(self)
        self.backups = BackupService(self)

    @property
    def base_url(self) -> str:
        return self._base_url

    @property
    def session(self) -> Optional[AuthSession]:
        return self._session

    async def save_session(self, session: AuthSession) -> None:
        async with self._session_lock:
            self._session = session
        logger.info("Authenticated against collection %s", session.collection or "<token>")

    async def close(self) -> None:
        await self._client.aclose()

    def collection(self, name: str) -> "RecordService":
        return RecordService(self, name)

    def create_batch(self) -> "BatchRequest":
        return BatchRequest(self)

    async def health(self) -> Any:
        return await self.send("GET", "/api/health")

    def build_url(self, path: str, params: Optional[Query] = None) -> str:
        query = {key: value for key, value in (params or {}).items() if value is not None}
        return str(httpx.URL(self._base_url + path, params=query))

    def _retrying(self) -> AsyncRetrying:
        return AsyncRetrying(
            stop=stop_after_attempt(self._settings.retries + 1),
            wait=wait_exponential(multiplier=0.5, min=0.5, max=4),
            retry=retry_if_exception_type(httpx.TransportError),
            reraise=True,
        )

    async def send(
        self,
        method: str,
        path: str,
        *,
        params: Optional[Query] = None,
        json: Any = None,
        files: Any = None,
    ) -> Any:
        """Issue one REST call and return the decoded JSON body (``None`` when empty)."""

        query = {key: value for key, value in (params or {}).items() if value is not None}
        session = self._session
        headers = {"Authorization": session.token} if session is not None else {}

        async for attempt in self._retrying():
            with attempt:
                response = await self._client.request(
                    method,
                    path,
                    params=query,
                    json=json,
                    files=files,
                    headers=headers,
                )
                return self._parse_response(response)

        raise PocketBaseAPIError(f"Failed to call {method} {path}")  # pragma: no cover - defensive

    def _parse_response(self, response: Response) -> Any:
        status_code = response.status_code
        if status_code == 204 or not response.content:
            if response.is_error:
                raise PocketBaseAPIError(f"PocketBase returned HTTP {status_code}", status_code=status_code)
            return None

        try:
            data = response.json()
        except ValueError as exc:
            if response.is_error:
                raise PocketBaseAPIError(
                    f"PocketBase returned HTTP {status_code}", status_code=status_code
                ) from exc
            raise PocketBaseAPIError("PocketBase returned non-JSON response", status_code=status_code) from exc

        if response.is_error:
            logger.debug("PocketBase error %s %s: %s", status_code, response.request.url, data)
            raise PocketBaseAPIError(_error_message(status_code, data), status_code=status_code, payload=data)
        return data


def _error_message(status_code: int, data: Any) -> str:
    """Build a readable message from a PocketBase ``{message, data}`` error body."""

    if not isinstance(data, dict):
        return f"PocketBase returned HTTP {status_code}"
    message = data.get("message") or f"PocketBase returned HTTP {status_code}"
    details = data.get("data")
    if isinstance(details, dict) and details:
        parts = []
        for field, info in details.items():
            text = info.get("message") if isinstance(info, dict) else info
            parts.append(f"{field}: {text}")
        message = f"{message} ({'; '.join(parts)})"
    return message


class CollectionService:
    def __init__(self, client: PocketBaseClient) -> None:
        self._client = client

    async def get_list(self, page: int = 1, per_page: int = 30, query: Optional[Query] = None) -> Any:
        params = {"page": page, "perPage": per_page, **(query or {})}
        return await self._client.send("GET", "/api/collections", params=params)

    async def get_one(self, id_or_name: str) -> Any:
        return await self._client.send("GET", f"/api/collections/{_segment(id_or_name)}")

    async def create(self, data: Dict[str, Any]) -> Any:
        return await self._client.send("POST", "/api/collections", json=data)

    async def update(self, id_or_name: str, data: Dict[str, Any]) -> Any:
        return await self._client.send("PATCH", f"/api/collections/{_segment(id_or_name)}", json=data)

    async def delete(self, id_or_name: str) -> None:
        await self._client.send("DELETE", f"/api/collections/{_segment(id_or_name)}")

    async def import_collections(self, collections: List[Dict[str, Any]], delete_missing: bool = False) -> None:
        await self._client.send(
            "PUT",
            "/api/collections/import",
            json={"collections": collections, "deleteMissing": delete_missing},
        )


class RecordService:
    """Record CRUD and auth flows scoped to a single collection."""

    def __init__(self, client: PocketBaseClient, collection: str) -> None:
        self._client = client
        self._collection = collection
        self._base_path = f"/api/collections/{_segment(collection)}"
        self._records_path = f"{self._base_path}/records"

    async def get_list(self, page: int = 1, per_page: int = 30, query: Optional[Query] = None) -> Any:
        params = {"page": page, "perPage": per_page, **(query or {})}
        return await self._client.send("GET", self._records_path, params=params)

    async def get_full_list(self, batch: int = 500, query: Optional[Query] = None) -> List[Any]:
        """Fetch every matching record, one page of ``batch`` items at a time.

        PocketBase may cap the page size (1000), so a page is only "short"
        relative to the ``perPage`` it reports back.
        """

        items: List[Any] = []
        page = 1
        while True:
            result = await self.get_list(page, batch, {**(query or {}), "skipTotal": True}) or {}
            chunk = result.get("items") or []
            items.extend(chunk)
            per_page = result.get("perPage") or batch
            if not chunk or len(chunk) < per_page:
                return items
            page += 1

    async def get_first_list_item(self, filter_expr: str, query: Optional[Query] = None) -> Any:
        result = await self.get_list(1, 1, {**(query or {}), "filter": filter_expr, "skipTotal": True})
        items = (result or {}).get("items") or []
        if not items:
            raise PocketBaseAPIError("The requested resource wasn't found.", status_code=404)
        return items[0]

    async def get_one(self, record_id: str, query: Optional[Query] = None) -> Any:
        return await self._client.send("GET", f"{self._records_path}/{_segment(record_id)}", params=query)

    async def create(self, data: Dict[str, Any], query: Optional[Query] = None) -> Any:
        return await self._client.send("POST", self._records_path, params=query, json=data)

    async def update(self, record_id: str, data: Dict[str, Any], query: Optional[Query] = None) -> Any:
        return await self._client.send(
            "PATCH", f"{self._records_path}/{_segment(record_id)}", params=query, json=data
        )

    async def delete(self, record_id: str) -> None:
        await self._client.send("DELETE", f"{self._records_path}/{_segment(record_id)}")

    async def list_auth_methods(self) -> Any:
        return await self._client.send("GET", f"{self._base_path}/auth-methods")

    async def _authenticate(self, action: str, body: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        data = await self._client.send("POST", f"{self._base_path}/{action}", json=body)
        if not isinstance(data, dict) or not data.get("token"):
            raise PocketBaseAPIError(f"PocketBase {action} response carries no token", payload=data)
        await self._client.save_session(
            AuthSession(token=data["token"], record=data.get("record"), collection=self._collection)
        )
        return data

    async def auth_with_password(self, identity: str, password: str) -> Dict[str, Any]:
        return await self._authenticate("auth-with-password", {"identity": identity, "password": password})

    async def auth_refresh(self) -> Dict[str, Any]:
        return await self._authenticate("auth-refresh")

    async def auth_with_otp(self, otp_id: str, password: str) -> Dict[str, Any]:
        return await self._authenticate("auth-with-otp", {"otpId": otp_id, "password": password})

    async def request_otp(self, email: str) -> Any:
        return await self._client.send("POST", f"{self._base_path}/request-otp", json={"email": email})

    async def request_password_reset(self, email: str) -> None:
        await self._client.send("POST", f"{self._base_path}/request-password-reset", json={"email": email})

    async def confirm_password_reset(self, token: str, password: str, password_confirm: str) -> None:
        await self._client.send(
            "POST",
            f"{self._base_path}/confirm-password-reset",
            json={"token": token, "password": password, "passwordConfirm": password_confirm},
        )

    async def request_verification(self, email: str) -> None:
        await self._client.send("POST", f"{self._base_path}/request-verification", json={"email": email})

    async def confirm_verification(self, token: str) -> None:
        await self._client.send("POST", f"{self._base_path}/confirm-verification", json={"token": token})

    async def request_email_change(self, new_email: str) -> None:
        await self._client.send(
            "POST", f"{self._base_path}/request-email-change", json={"newEmail": new_email}
        )

    async def confirm_email_change(self, token: str, password: str) -> None:
        await self._client.send(
            "POST",
            f"{self._base_path}/confirm-email-change",
            json={"token": token, "password": password},
        )


class BatchRequest:
    """Collects record sub-requests and submits them as one ``/api/batch`` call."""

    def __init__(self, client: PocketBaseClient) -> None:
        self._client = client
        self.requests: List[Dict[str, Any]] = []

    def collection(self, name: str) -> "BatchCollection":
        return BatchCollection(self, name)

    def add(self, method: str, url: str, body: Optional[Dict[str, Any]] = None) -> None:
        request: Dict[str, Any] = {"method": method, "url": url}
        if body is not None:
            request["body"] = body
        self.requests.append(request)

    async def send(self) -> Any:
        return await self._client.send("POST", "/api/batch", json={"requests": self.requests})


class BatchCollection:
    def __init__(self, batch: BatchRequest, collection: str) -> None:
        self._batch = batch
        self._records_path = f"/api/collections/{_segment(collection)}/records"

    def create(self, data: Dict[str, Any]) -> None:
        self._batch.add("POST", self._records_path, data)

    def upsert(self, data: Dict[str, Any]) -> None:
        self._batch.add("PUT", self._records_path, data)

    def update(self, record_id: str, data: Dict[str, Any]) -> None:
        self._batch.add("PATCH", f"{self._records_path}/{_segment(record_id)}", data)

    def delete(self, record_id: str) -> None:
        self._batch.add("DELETE", f"{self._records_path}/{_segment(record_id)}")


class FileService:
    def __init__(self, client: PocketBaseClient) -> None:
        self._client = client

    def get_url(
        self,
        collection: str,
        record_id: str,
        filename: str,
        *,
        thumb: Optional[str] = None,
        download: bool = False,
    ) -> str:
        path = f"/api/files/{_segment(collection)}/{_segment(record_id)}/{_segment(filename)}"
        return self._client.build_url(path, {"thumb": thumb or None, "download": 1 if download else None})

    async def get_token(self) -> str:
        data = await self._client.send("POST", "/api/files/token")
        return (data or {}).get("token", "")


class LogService:
    def __init__(self, client: PocketBaseClient) -> None:
        self._client = client

    async def get_list(self, page: int = 1, per_page: int = 30, query: Optional[Query] = None) -> Any:
        params = {"page": page, "perPage": per_page, **(query or {})}
        return await self._client.send("GET", "/api/logs", params=params)

    async def get_one(self, log_id: str) -> Any:
        return await self._client.send("GET", f"/api/logs/{_segment(log_id)}")

    async def get_stats(self, query: Optional[Query] = None) -> Any:
        return await self._client.send("GET", "/api/logs/stats", params=query)


class CronService:
    def __init__(self, client: PocketBaseClient) -> None:
        self._client = client

    async def get_full_list(self) -> Any:
        return await self._client.send("GET", "/api/crons")

    async def run(self, job_id: str) -> None:
        await self._client.send("POST", f"/api/crons/{_segment(job_id)}")


class SettingsService:
    def __init__(self, client: PocketBaseClient) -> None:
        self._client = client

    async def get_all(self) -> Any:
        return await self._client.send("GET", "/api/settings")

    async def update(self, data: Dict[str, Any]) -> Any:
        return await self._client.send("PATCH", "/api/settings", json=data)


class BackupService:
    def __init__(self, client: PocketBaseClient) -> None:
        self._client = client

    async def create(self, name: Optional[str] = None) -> Any:
        body = {"name": name} if name else {}
        return await self._client.send("POST", "/api/backups", json=body)

    async def get_full_list(self) -> Any:
        return await self._client.send("GET", "/api/backups")

    async def upload(self, path: Path, name: Optional[str] = None) -> Any:
        content = await asyncio.to_thread(path.read_bytes)
        return await self._client.send(
            "POST",
            "/api/backups/upload",
            files={"file": (name or path.name, content, "application/zip")},
        )

    async def delete(self, key: str) -> None:
        await self._client.send("DELETE", f"/api/backups/{_segment(key)}")

    async def restore(self, key: str) -> None:
        await self._client.send("POST", f"/api/backups/{_segment(key)}/restore")

    def get_download_url(self, token: str, key: str) -> str:
        return self._client.build_url(f"/api/backups/{_segment(key)}", {"token": token})
