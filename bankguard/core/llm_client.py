"""
Async client for an Ollama-compatible reasoning and embedding endpoint
"""
import time
from typing import Dict, List, Optional

import httpx
from pydantic import BaseModel

from bankguard.core.config import Settings
from bankguard.core.errors import MalformedModelOutput, UpstreamModelFailure
from bankguard.core.logging_config import LoggingConfig
from bankguard.core.metrics import llm_request_duration_seconds, llm_requests_total

logger = LoggingConfig.get_logger(__name__)


class LLMResponse(BaseModel):
    """Chat API response model"""
    model: str
    response: str
    done: bool = False


class LLMClient:
    """
    Client for the ``/api/chat`` and ``/api/embeddings`` endpoints.

    A single attempt per call: retries, timeouts and circuit breaking are
    applied by ``ResilientCall`` around it. Transport and HTTP errors are
    raised as ``UpstreamModelFailure``.
    """

    def __init__(self, settings: Settings, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.base_url = settings.llm_base_url.rstrip("/")
        if self.base_url.endswith("/v1"):
            self.base_url = self.base_url[:-3]
        self.model = settings.llm_model
        self.embedding_model = settings.embedding_model
        self.temperature = settings.llm_temperature
        self.timeout = settings.llm_timeout_seconds
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                timeout=self.timeout,
                transport=self._transport,
                limits=httpx.Limits(max_keepalive_connections=5, max_connections=10),
            )
        return self._client

    async def health_check(self) -> bool:
        """Check if the model server answers"""
        try:
            response = await self._get_client().get("/api/tags", timeout=5.0)
            return response.status_code == 200
        except httpx.HTTPError:
            return False

    async def _post(self, path: str, payload: Dict) -> Dict:
        start = time.time()
        status = "error"
        try:
            response = await self._get_client().post(path, json=payload)
            response.raise_for_status()
            data = response.json()
            status = "success"
            return data
        except httpx.TimeoutException as e:
            raise UpstreamModelFailure(f"Request to {self.base_url}{path} timed out") from e
        except httpx.HTTPStatusError as e:
            raise UpstreamModelFailure(
                f"HTTP error from {self.base_url}{path}: {e.response.status_code}",
                {"status_code": e.response.status_code},
            ) from e
        except httpx.HTTPError as e:
            raise UpstreamModelFailure(f"Error calling {self.base_url}{path}: {e}") from e
        except ValueError as e:
            raise MalformedModelOutput(f"Non-JSON body from {self.base_url}{path}") from e
        finally:
            model = payload.get("model", "unknown")
            llm_requests_total.labels(model=model, status=status).inc()
            llm_request_duration_seconds.labels(model=model).observe(time.time() - start)

    async def chat(
        self,
        prompt: str,
        system_prompt: Optional[str] = None,
        json_mode: bool = False,
        temperature: Optional[float] = None,
    ) -> LLMResponse:
        """
        Send one chat request.

        Args:
            prompt: User message
            system_prompt: Optional system message
            json_mode: Ask the server to constrain output to JSON
            temperature: Overrides the configured temperature
        """
        messages = []
        if system_prompt:
            messages.append({"role": "system", "content": system_prompt})
        messages.append({"role": "user", "content": prompt})

        payload = {
            "model": self.model,
            "messages": messages,
            "stream": False,
            "options": {
                "temperature": self.temperature if temperature is None else temperature,
            },
        }
        if json_mode:
            payload["format"] = "json"

        logger.debug(
            "Sending chat request",
            extra={"model": self.model, "prompt_length": len(prompt), "json_mode": json_mode}
        )
        data = await self._post("/api/chat", payload)
        return LLMResponse(
            model=self.model,
            response=(data.get("message") or {}).get("content", ""),
            done=data.get("done", False),
        )

    async def embed(self, text: str) -> List[float]:
        """Embedding vector for ``text`` from the embedding model"""
        data = await self._post("/api/embeddings", {"model": self.embedding_model, "prompt": text})
        embedding = data.get("embedding")
        if not isinstance(embedding, list) or not embedding:
            raise MalformedModelOutput("Embedding response carries no vector", str(data)[:500])
        return [float(x) for x in embedding]

    async def close(self):
        """Close the HTTP client"""
        if self._client is not None:
            await self._client.aclose()
            self._client = None
