from typing import Any, Dict, Optional
import httpx
import structlog

logger = structlog.get_logger(__name__)


class GenerationError(Exception):
    """Raised when the generation server fails or returns nothing usable"""


class OpenAICompatGenerator:
    """Generation backend speaking the OpenAI chat-completions protocol.

    Works against any server exposing ``/v1/chat/completions`` (LM Studio,
    llama.cpp, vLLM). Errors are raised as GenerationError; callers decide
    on fallbacks.
    """

    def __init__(
        self,
        base_url: str,
        model: str,
        temperature: float = 0.7,
        max_tokens: int = 1024,
        timeout: float = 30.0,
        system_prompt: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        self.base_url = base_url.rstrip("/")
        self.model = model
        self.temperature = temperature
        self.max_tokens = max_tokens
        self.timeout = timeout
        self.system_prompt = system_prompt
        self._transport = transport

    def build_payload(self, prompt: str) -> Dict[str, Any]:
        messages = []
        if self.system_prompt:
            messages.append({"role": "system", "content": self.system_prompt})
        messages.append({"role": "user", "content": prompt})
        return {
            "model": self.model,
            "messages": messages,
            "temperature": self.temperature,
            "max_tokens": self.max_tokens,
            "stream": False
        }

    async def generate(self, prompt: str) -> str:
        async with httpx.AsyncClient(
            base_url=self.base_url,
            timeout=self.timeout,
            transport=self._transport
        ) as client:
            try:
                response = await client.post("/v1/chat/completions", json=self.build_payload(prompt))
                response.raise_for_status()
            except httpx.TimeoutException as e:
                raise GenerationError(f"Request to {self.base_url} timed out") from e
            except httpx.HTTPStatusError as e:
                raise GenerationError(
                    f"HTTP error from {self.base_url}: {e.response.status_code} - {e.response.text}"
                ) from e
            except httpx.HTTPError as e:
                raise GenerationError(f"Error calling {self.base_url}: {e}") from e

        data = response.json()
        choices = data.get("choices") or []
        if not choices:
            raise GenerationError("Response contained no choices")

        content = (choices[0].get("message") or {}).get("content") or ""
        logger.debug("Generation completed", model=self.model, chars=len(content))
        return content
