"""
AsyncGeminiChat — wires settings, transport, storage and the session engine.
"""

from typing import Any, Optional

from gemini_chat.config import Settings, load_settings
from gemini_chat.engine import SessionEngine
from gemini_chat.persistence import FileStorage, KeyValueStorage, PersistenceAdapter
from gemini_chat.streaming import GeminiStreamingClient, StreamingClient
from gemini_chat.titles import TitleInferenceWorker
from gemini_chat.transport.http import HttpClient


class AsyncGeminiChat:
    """Async chat client (primary)."""

    def __init__(
        self,
        settings: Optional[Settings] = None,
        *,
        storage: Optional[KeyValueStorage] = None,
        streaming_client: Optional[StreamingClient] = None,
        **http_options: Any,
    ):
        self.settings = settings or load_settings()
        self.http: Optional[HttpClient] = None
        if streaming_client is None:
            self.http = HttpClient(
                base_url=self.settings.base_url,
                api_key=self.settings.api_key,
                timeout=self.settings.request_timeout,
                **http_options,
            )
            streaming_client = GeminiStreamingClient(self.http, model=self.settings.model)
        self.streaming = streaming_client
        self.persistence = PersistenceAdapter(storage or FileStorage(self.settings.data_dir))
        self.engine = SessionEngine(
            self.streaming,
            self.persistence,
            title_worker=TitleInferenceWorker(self.streaming, max_length=self.settings.title_max_length),
            save_interval=self.settings.save_interval,
        )
        self._started = False

    async def start(self) -> SessionEngine:
        if not self._started:
            await self.engine.start()
            self._started = True
        return self.engine

    async def close(self) -> None:
        await self.engine.close()
        if self.http is not None:
            await self.http.close()

    async def __aenter__(self) -> "AsyncGeminiChat":
        await self.start()
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self.close()
