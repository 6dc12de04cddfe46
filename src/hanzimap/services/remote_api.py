"""Client for the remote progress store."""
import logging
import time
from typing import Any, Dict, List, Optional, Protocol
from urllib.parse import quote

import httpx

from hanzimap import monitoring
from hanzimap.config import settings
from hanzimap.errors import RemoteAPIError, TransientNetworkError

logger = logging.getLogger(__name__)

RETRYABLE_STATUS = {408, 425, 429}


def _endpoint(path: str) -> str:
    """Metric label for a request path: "/api/sentences/x" -> "sentences"."""
    parts = [p for p in path.split("/") if p]
    return parts[1] if len(parts) > 1 else path


class RemoteAPI(Protocol):
    """Operations the sync queue and progress store need from the server."""

    async def save_progress(self, data: Dict[str, Any]) -> Any:
        ...

    async def get_progress(self) -> Dict[str, Any]:
        ...

    async def log_quiz_attempt(self, record: Dict[str, Any]) -> Any:
        ...

    async def get_sentences(self, char: str) -> Any:
        ...


class HttpRemoteAPI:
    """RemoteAPI over HTTP with a fixed request timeout.

    Timeouts, connection failures, 5xx and throttling answers raise
    TransientNetworkError; any other error status raises RemoteAPIError.
    """

    def __init__(
        self,
        base_url: str = settings.api.base_url,
        timeout: float = settings.api.timeout,
        client: Optional[httpx.AsyncClient] = None,
    ):
        """Initialize with the server URL; a client may be injected."""
        self.base_url = base_url
        self.timeout = timeout
        self._client = client

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                timeout=self.timeout,
                headers={"Content-Type": "application/json"},
            )
        return self._client

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def _request(
        self,
        method: str,
        path: str,
        json: Any = None,
        timeout: Optional[float] = None,
    ) -> Any:
        client = self._get_client()
        started = time.perf_counter()
        kwargs: Dict[str, Any] = {}
        if json is not None:
            kwargs["json"] = json
        if timeout is not None:
            kwargs["timeout"] = timeout
        try:
            response = await client.request(method, path, **kwargs)
            response.raise_for_status()
        except httpx.TimeoutException as e:
            logger.warning("%s %s timed out", method, path)
            raise TransientNetworkError(f"{method} {path} timed out") from e
        except httpx.HTTPStatusError as e:
            status = e.response.status_code
            message = f"{method} {path} failed with status {status}"
            if status >= 500 or status in RETRYABLE_STATUS:
                raise TransientNetworkError(message, status_code=status) from e
            raise RemoteAPIError(message, status_code=status) from e
        except httpx.RequestError as e:
            logger.warning("%s %s failed: %s", method, path, str(e))
            raise TransientNetworkError(f"{method} {path} failed: {e}") from e
        finally:
            monitoring.remote_request_duration.labels(endpoint=_endpoint(path)).observe(
                time.perf_counter() - started
            )

        if not response.content:
            return None
        try:
            return response.json()
        except ValueError as e:
            raise RemoteAPIError(f"{method} {path} returned invalid JSON") from e

    async def check_health(self) -> bool:
        """Whether the server answers, falling back to the progress endpoint."""
        try:
            await self._request("GET", "/api/health", timeout=settings.api.health_timeout)
            return True
        except RemoteAPIError:
            pass
        try:
            await self._request("GET", "/api/progress", timeout=settings.api.health_timeout)
            return True
        except RemoteAPIError as e:
            # Unauthenticated still means the server is reachable
            return e.status_code == 401

    async def get_progress(self) -> Dict[str, Any]:
        data = await self._request("GET", "/api/progress")
        if isinstance(data, dict) and "progress" in data:
            if data.get("success") is False:
                raise RemoteAPIError("Server refused to return progress")
            return data["progress"] or {}
        return data or {}

    async def save_progress(self, data: Dict[str, Any]) -> Any:
        return await self._request("POST", "/api/progress", json=data)

    async def log_quiz_attempt(self, record: Dict[str, Any]) -> Any:
        return await self._request("POST", "/api/quiz-attempts", json=record)

    async def get_sentences(self, char: str) -> Any:
        return await self._request("GET", f"/api/sentences/{quote(char)}")

    async def add_custom_word(self, word: str, pinyin: str, meanings: List[str]) -> Any:
        return await self._request(
            "POST", "/api/custom-words", json={"word": word, "pinyin": pinyin, "meanings": meanings}
        )

    async def delete_custom_word(self, word_id: Any) -> Any:
        return await self._request("DELETE", f"/api/custom-words/{word_id}")

    async def add_sentence(self, chinese: str, pinyin: str, english: str) -> Any:
        return await self._request(
            "POST", "/api/sentences", json={"chinese": chinese, "pinyin": pinyin, "english": english}
        )

    async def delete_sentence(self, sentence_id: Any) -> Any:
        return await self._request("DELETE", f"/api/sentences/{sentence_id}")

    async def save_word_edit(self, word: str, word_type: str, meanings: List[str]) -> Any:
        return await self._request(
            "POST", "/api/word-edits", json={"word": word, "wordType": word_type, "meanings": meanings}
        )
