"""
Chat Engine Service
Loads and streams from a local language model served by Ollama.
"""
import json
from typing import Any, AsyncIterator, Callable, Dict, List, Optional
import httpx
import structlog
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from pdfchat.config import get_settings
from pdfchat.models.schemas import ModelLoadProgress

logger = structlog.get_logger()

ProgressCallback = Callable[[ModelLoadProgress], Any]


class ChatEngineError(RuntimeError):
    """The model runtime reported a failure."""


class ChatEngineUnavailableError(ChatEngineError):
    """The model runtime cannot be reached."""


class ChatEngine:
    """Streaming chat completions against a local Ollama runtime."""

    ENDPOINT_VERSION = "/api/version"
    ENDPOINT_PULL = "/api/pull"
    ENDPOINT_GENERATE = "/api/generate"
    ENDPOINT_CHAT = "/api/chat"

    def __init__(
        self,
        base_url: Optional[str] = None,
        api_key: Optional[str] = None,
        timeout: Optional[float] = None,
        keep_alive: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.settings = get_settings()
        self.base_url = (base_url or self.settings.ollama_base_url).rstrip("/")
        self.api_key = self.settings.ollama_api_key if api_key is None else api_key
        self.timeout = timeout or self.settings.request_timeout
        self.keep_alive = keep_alive or self.settings.chat_keep_alive
        self._transport = transport

        self.model_id: Optional[str] = None
        self.is_loaded = False

    def _get_auth_header(self) -> dict:
        if self.api_key:
            return {"Authorization": f"Bearer {self.api_key}"}
        return {}

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.base_url,
            headers=self._get_auth_header(),
            timeout=self.timeout,
            transport=self._transport,
        )

    # ─────────────────────────────────────────────────────────────
    # Availability
    # ─────────────────────────────────────────────────────────────

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        retry=retry_if_exception_type(httpx.TransportError),
        reraise=True,
    )
    async def _fetch_version(self) -> str:
        async with self._client() as client:
            response = await client.get(self.ENDPOINT_VERSION)
            response.raise_for_status()
            return response.json().get("version", "unknown")

    async def check_available(self) -> str:
        """
        Make sure the runtime answers.

        Returns:
            Runtime version string

        Raises:
            ChatEngineUnavailableError: If the runtime cannot be reached
        """
        try:
            version = await self._fetch_version()
        except httpx.HTTPError as e:
            logger.error("Chat engine unreachable", base_url=self.base_url, error=str(e))
            raise ChatEngineUnavailableError(
                f"Chat engine not reachable at {self.base_url}: {e}"
            ) from e

        logger.info("Chat engine available", base_url=self.base_url, version=version)
        return version

    # ─────────────────────────────────────────────────────────────
    # Model loading
    # ─────────────────────────────────────────────────────────────

    async def load(self, model_id: str, progress_callback: Optional[ProgressCallback] = None) -> None:
        """
        Download the model if needed and load it into memory.

        Args:
            model_id: Ollama model identifier (e.g. "llama3.2:1b")
            progress_callback: Called with a ModelLoadProgress for every update

        Raises:
            ChatEngineUnavailableError: If the runtime cannot be reached
            ChatEngineError: If the runtime reports a failure
        """
        def report(progress: float, text: str) -> None:
            if progress_callback is not None:
                progress_callback(ModelLoadProgress(progress=min(max(progress, 0.0), 1.0), text=text))

        # The current model stays usable until the replacement is warm
        logger.info("Loading chat model", model=model_id)
        report(0.0, f"Start to fetch params for {model_id}")

        try:
            async with self._client() as client:
                async with client.stream(
                    "POST", self.ENDPOINT_PULL, json={"model": model_id, "stream": True}
                ) as response:
                    await self._raise_for_status(response)
                    last = 0.0
                    async for event in self._iter_events(response):
                        total = event.get("total")
                        completed = event.get("completed") or 0
                        status = event.get("status", "")
                        if total:
                            last = completed / total
                            status = f"{status} [{completed / 1e6:.0f}MB / {total / 1e6:.0f}MB]"
                        report(last, status)

                report(1.0, f"Loading {model_id} into memory")
                response = await client.post(
                    self.ENDPOINT_GENERATE,
                    json={"model": model_id, "keep_alive": self.keep_alive},
                )
                await self._raise_for_status(response)
                error = response.json().get("error")
                if error:
                    raise ChatEngineError(error)
        except httpx.TransportError as e:
            raise ChatEngineUnavailableError(f"Chat engine not reachable at {self.base_url}: {e}") from e

        self.model_id = model_id
        self.is_loaded = True
        report(1.0, f"Finish loading {model_id}")
        logger.info("Chat model loaded", model=model_id)

    # ─────────────────────────────────────────────────────────────
    # Chat
    # ─────────────────────────────────────────────────────────────

    async def stream_chat(self, messages: List[Dict[str, str]]) -> AsyncIterator[str]:
        """
        Stream a chat completion.

        Args:
            messages: Role-tagged messages, e.g. [{"role": "user", "content": "..."}]

        Yields:
            Incremental text deltas
        """
        if not self.is_loaded or not self.model_id:
            raise ChatEngineError("No chat model loaded")

        payload = {
            "model": self.model_id,
            "messages": messages,
            "stream": True,
            "keep_alive": self.keep_alive,
        }
        logger.info("Starting chat completion", model=self.model_id, messages=len(messages))

        try:
            async with self._client() as client:
                async with client.stream("POST", self.ENDPOINT_CHAT, json=payload) as response:
                    await self._raise_for_status(response)
                    async for event in self._iter_events(response):
                        delta = (event.get("message") or {}).get("content") or ""
                        if delta:
                            yield delta
                        if event.get("done"):
                            break
        except httpx.TransportError as e:
            raise ChatEngineUnavailableError(f"Chat engine not reachable at {self.base_url}: {e}") from e

    # ─────────────────────────────────────────────────────────────
    # Helpers
    # ─────────────────────────────────────────────────────────────

    async def _raise_for_status(self, response: httpx.Response) -> None:
        if response.status_code < 400:
            return
        await response.aread()
        try:
            detail = response.json().get("error") or response.text
        except ValueError:
            detail = response.text
        logger.error("Chat engine request failed", status=response.status_code, detail=detail)
        raise ChatEngineError(f"{response.status_code}: {detail}")

    async def _iter_events(self, response: httpx.Response) -> AsyncIterator[dict]:
        """Parse an NDJSON response body, raising on runtime-reported errors."""
        async for line in response.aiter_lines():
            if not line.strip():
                continue
            event = json.loads(line)
            if event.get("error"):
                raise ChatEngineError(event["error"])
            yield event


# Singleton instance
_chat_engine: Optional[ChatEngine] = None


def get_chat_engine() -> ChatEngine:
    """Get singleton chat engine instance."""
    global _chat_engine
    if _chat_engine is None:
        _chat_engine = ChatEngine()
    return _chat_engine
