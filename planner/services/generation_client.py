"""Client for the external generation service (OpenAI Responses API)."""

import hashlib
import json
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import httpx

from planner.config import Settings

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class GenerationRequest:
    """One generation call: system instructions, user prompt and tool list."""

    instructions: str
    prompt: str
    tools: List[Dict[str, Any]] = field(default_factory=list)
    verbosity: str = "medium"
    reasoning_effort: str = "medium"


@dataclass(frozen=True)
class GenerationResult:
    """Text produced by one successful generation call."""

    output_text: str
    response_id: Optional[str] = None


class GenerationAPIError(Exception):
    """Non-2xx response from the generation service."""

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        code: Optional[str] = None,
        type: Optional[str] = None,
    ):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.code = code
        self.type = type

    def __str__(self) -> str:
        return f"{self.status_code}: {self.message}" if self.status_code else self.message


class GenerationClientNotConfigured(RuntimeError):
    """Raised when the client is used without an API key."""


class GenerationClient:
    """Process-wide client for the generation service.

    Built once during application startup and handed to the retry
    controller; ``aclose`` releases the underlying connection pool.
    """

    def __init__(
        self,
        api_key: str,
        base_url: str,
        model: str,
        timeout: float = 480.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """Initialize the client."""
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.model = model
        # The retry controller enforces the per-attempt deadline; keep the
        # transport timeout slightly looser so the controller wins the race.
        self._http = httpx.AsyncClient(timeout=timeout + 30.0, transport=transport)

    @classmethod
    def from_settings(cls, settings: Settings) -> "GenerationClient":
        """Build the client from application settings."""
        if not settings.OPENAI_API_KEY:
            logger.error("OPENAI_API_KEY is not set; generation jobs will fail")
        return cls(
            api_key=settings.OPENAI_API_KEY,
            base_url=settings.OPENAI_BASE_URL,
            model=settings.GENERATION_MODEL,
            timeout=settings.GENERATION_REQUEST_TIMEOUT,
        )

    def _hash_text(self, text: str) -> str:
        """Hash text using SHA256."""
        return hashlib.sha256(text.encode()).hexdigest()

    def _build_headers(self) -> Dict[str, str]:
        """Build HTTP headers."""
        return {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }

    def _build_payload(self, request: GenerationRequest) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "model": self.model,
            "input": [
                {"role": "system", "content": request.instructions},
                {"role": "user", "content": request.prompt},
            ],
            "text": {"verbosity": request.verbosity},
            "reasoning": {"effort": request.reasoning_effort},
        }
        if request.tools:
            payload["tools"] = list(request.tools)
        return payload

    async def generate(self, request: GenerationRequest) -> GenerationResult:
        """
        Call the Responses API once.

        Raises:
            GenerationClientNotConfigured: If no API key is configured
            GenerationAPIError: On a non-2xx response
            httpx.HTTPError: On transport failures
        """
        if not self.api_key:
            raise GenerationClientNotConfigured("Generation client not initialized: missing API key")

        payload = self._build_payload(request)
        request_hash = self._hash_text(json.dumps(payload, sort_keys=True, ensure_ascii=False))
        logger.info(f"Generation request to {self.model}, hash: {request_hash[:16]}")

        response = await self._http.post(
            f"{self.base_url}/responses",
            headers=self._build_headers(),
            json=payload,
        )

        if response.status_code >= 400:
            raise _api_error(response)

        body = response.json()
        content = extract_output_text(body)

        logger.info(f"Generation response hash: {self._hash_text(content)[:16]}")
        return GenerationResult(output_text=content, response_id=body.get("id"))

    async def aclose(self) -> None:
        await self._http.aclose()


def extract_output_text(body: Dict[str, Any]) -> str:
    """Collect the text output of a Responses API payload."""
    if isinstance(body.get("output_text"), str):
        return body["output_text"]

    parts = []
    for item in body.get("output") or []:
        if item.get("type") != "message":
            continue
        for content in item.get("content") or []:
            if content.get("type") == "output_text":
                parts.append(content.get("text", ""))
    return "".join(parts)


def _api_error(response: httpx.Response) -> GenerationAPIError:
    try:
        body = response.json()
    except ValueError:
        body = {}
    error = (body.get("error") or {}) if isinstance(body, dict) else {}
    if not isinstance(error, dict):
        error = {"message": str(error)}

    message = str(error.get("message") or response.text or f"HTTP {response.status_code}")
    logger.warning(f"Generation service returned {response.status_code}: {message[:200]}")
    return GenerationAPIError(
        message,
        status_code=response.status_code,
        code=error.get("code"),
        type=error.get("type"),
    )
