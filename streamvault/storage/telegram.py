"""Telegram Bot API used as an object store.

Objects are documents posted to a channel. The document ``file_id`` is the
object id and the message id is kept for deletion.
"""

from typing import Any, AsyncIterator, Dict, List, Optional

import aiohttp
import structlog

from streamvault.core.checks import CheckResult
from streamvault.core.config import TelegramConfig
from streamvault.core.exceptions import ObjectNotFoundError, RateLimitedError, StorageError
from streamvault.models.storage import ObjectRef
from streamvault.storage.base import ObjectRange, ObjectStoreBackend

logger = structlog.get_logger(__name__)

STREAM_CHUNK_SIZE = 256 * 1024


class TelegramBackend(ObjectStoreBackend):
    """Stores objects as channel documents through the Bot API."""

    name = "telegram"

    def __init__(self, config: TelegramConfig) -> None:
        if not config.bot_token or not config.channel_id:
            raise StorageError("Telegram backend requires bot_token and channel_id")

        self.config = config
        self._token = config.bot_token
        self._destinations = [config.channel_id] + [
            c for c in config.backup_channel_ids if c and c != config.channel_id
        ]
        self._session: Optional[aiohttp.ClientSession] = None

    @property
    def destinations(self) -> List[str]:
        return list(self._destinations)

    def _session_or_create(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.config.request_timeout),
                headers={"User-Agent": "StreamVault/1.0"},
            )
        return self._session

    def _method_url(self, method: str) -> str:
        return f"{self.config.api_base.rstrip('/')}/bot{self._token}/{method}"

    def _file_url(self, file_path: str) -> str:
        return f"{self.config.api_base.rstrip('/')}/file/bot{self._token}/{file_path}"

    @staticmethod
    def _check_response(status: int, payload: Dict[str, Any], method: str) -> Dict[str, Any]:
        """Raise the matching domain error for a failed Bot API call."""
        description = str(payload.get("description", ""))
        if status == 429 or payload.get("error_code") == 429 or "Too Many Requests" in description:
            retry_after = (payload.get("parameters") or {}).get("retry_after")
            raise RateLimitedError(
                f"{method} rate limited: {description or status}",
                retry_after=float(retry_after) if retry_after is not None else None,
            )
        if not payload.get("ok"):
            if status == 400 and "not found" in description.lower():
                raise ObjectNotFoundError(f"{method} failed: {description}")
            raise StorageError(f"{method} failed ({status}): {description or 'unknown error'}")
        return payload.get("result") or {}

    async def _call(self, method: str, **kwargs: Any) -> Dict[str, Any]:
        session = self._session_or_create()
        try:
            async with session.post(self._method_url(method), **kwargs) as response:
                try:
                    payload = await response.json(content_type=None)
                except ValueError:
                    payload = {"ok": False, "description": await response.text()}
                return self._check_response(response.status, payload, method)
        except aiohttp.ClientError as e:
            raise StorageError(f"{method} request failed: {e}") from e

    async def put_object(
        self,
        data: bytes,
        name: str,
        metadata: Optional[Dict[str, str]] = None,
        destination: Optional[str] = None,
    ) -> ObjectRef:
        chat_id = destination or self._destinations[0]
        form = aiohttp.FormData()
        form.add_field("chat_id", chat_id)
        if metadata and metadata.get("caption"):
            form.add_field("caption", metadata["caption"][:1024])
        form.add_field(
            "document", data, filename=name, content_type="application/octet-stream"
        )

        result = await self._call("sendDocument", data=form)
        document = result.get("document") or result.get("video") or {}
        if "file_id" not in document:
            raise StorageError(f"sendDocument returned no file for {name}")

        logger.debug(
            "telegram_object_stored",
            destination=chat_id,
            message_id=result.get("message_id"),
            name=name,
            size=len(data),
        )
        return ObjectRef(
            object_id=document["file_id"],
            size=int(document.get("file_size", len(data))),
            destination=chat_id,
            name=name,
            message_id=result.get("message_id"),
        )

    async def get_object_stream(
        self, ref: ObjectRef, byte_range: Optional[ObjectRange] = None
    ) -> AsyncIterator[bytes]:
        result = await self._call("getFile", data={"file_id": ref.object_id})
        file_path = result.get("file_path")
        if not file_path:
            raise ObjectNotFoundError(f"Object {ref.object_id} has no downloadable file")

        headers = {}
        if byte_range:
            headers["Range"] = f"bytes={byte_range[0]}-{byte_range[1]}"

        session = self._session_or_create()
        try:
            async with session.get(self._file_url(file_path), headers=headers) as response:
                if response.status == 404:
                    raise ObjectNotFoundError(f"Object {ref.object_id} not found")
                if response.status not in (200, 206):
                    raise StorageError(f"File download failed with status {response.status}")

                # Servers ignoring Range answer 200 with the full body
                skip = byte_range[0] if byte_range and response.status == 200 else 0
                remaining = byte_range[1] - byte_range[0] + 1 if byte_range else None

                async for chunk in response.content.iter_chunked(STREAM_CHUNK_SIZE):
                    if skip:
                        if len(chunk) <= skip:
                            skip -= len(chunk)
                            continue
                        chunk = chunk[skip:]
                        skip = 0
                    if remaining is not None:
                        chunk = chunk[:remaining]
                        remaining -= len(chunk)
                    if chunk:
                        yield chunk
                    if remaining == 0:
                        break
        except aiohttp.ClientError as e:
            raise StorageError(f"File download failed: {e}") from e

    async def delete_object(self, ref: ObjectRef) -> None:
        if ref.message_id is None:
            raise ObjectNotFoundError(f"Object {ref.object_id} has no message to delete")
        await self._call(
            "deleteMessage", data={"chat_id": ref.destination, "message_id": str(ref.message_id)}
        )

    async def check_health(self) -> List[CheckResult]:
        results = []
        for index, chat_id in enumerate(self._destinations):
            role = "primary" if index == 0 else "backup"
            try:
                chat = await self._call("getChat", data={"chat_id": chat_id})
                results.append(
                    CheckResult(
                        name=chat_id,
                        available=True,
                        details={"role": role, "title": chat.get("title"), "type": chat.get("type")},
                    )
                )
            except StorageError as e:
                results.append(
                    CheckResult(name=chat_id, available=False, error=str(e), details={"role": role})
                )
        return results

    async def close(self) -> None:
        if self._session is not None and not self._session.closed:
            await self._session.close()
        self._session = None
