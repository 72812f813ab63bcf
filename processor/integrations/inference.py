"""Remote inference endpoints used for content analysis.

Two endpoints are supported:

- the primary Hugging Face text-generation inference API (plain HTTP)
- a secondary OpenAI-compatible chat completions router

Both return raw generated text; parsing happens in the response parser.
Failures are split into availability problems (timeouts, connection errors,
5xx and 429 responses), which allow falling back to another tier, and request
problems, which do not.
"""

from typing import Any, Optional

import httpx
import openai
import structlog
from openai import AsyncOpenAI

from processor.config import ProcessorSettings, settings as default_settings

logger = structlog.get_logger()


class InferenceError(Exception):
    """Raised when a remote model call fails."""

    pass


class ModelUnavailableError(InferenceError):
    """The endpoint timed out, refused the connection, or is overloaded."""

    pass


class ModelRequestError(InferenceError):
    """The endpoint rejected the request (bad credentials, bad payload)."""

    pass


def _is_unavailable_status(status_code: int) -> bool:
    return status_code >= 500 or status_code == 429


class PrimaryModelClient:
    """Client for the Hugging Face text-generation inference API."""

    name = "primary"

    def __init__(
        self,
        config: Optional[ProcessorSettings] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        config = config or default_settings
        self.url = config.PRIMARY_MODEL_URL
        self.token = config.PRIMARY_API_TOKEN
        self.timeout = config.PRIMARY_TIMEOUT
        self.parameters = {
            "max_new_tokens": config.PRIMARY_MAX_NEW_TOKENS,
            "temperature": config.PRIMARY_TEMPERATURE,
            "top_p": config.PRIMARY_TOP_P,
            "top_k": config.PRIMARY_TOP_K,
            "repetition_penalty": config.PRIMARY_REPETITION_PENALTY,
            "return_full_text": False,
            "do_sample": True,
        }
        self._transport = transport

    async def generate(self, prompt: str) -> Any:
        """Send a prompt and return the decoded JSON payload.

        Raises:
            ModelUnavailableError: On timeout, connection failure, 5xx or 429
            ModelRequestError: On any other error response
        """
        headers = {"Content-Type": "application/json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"

        payload = {"inputs": prompt, "parameters": self.parameters}

        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.post(self.url, json=payload, headers=headers)
        except httpx.TimeoutException as e:
            logger.warning("Primary model timed out", timeout=self.timeout)
            raise ModelUnavailableError(f"Primary model timed out after {self.timeout}s") from e
        except httpx.TransportError as e:
            logger.warning("Primary model unreachable", error=str(e))
            raise ModelUnavailableError(f"Primary model unreachable: {e}") from e

        if response.status_code >= 400:
            message = f"Primary model returned HTTP {response.status_code}"
            logger.warning(
                "Primary model error response",
                status_code=response.status_code,
                body=response.text[:500],
            )
            if _is_unavailable_status(response.status_code):
                raise ModelUnavailableError(message)
            raise ModelRequestError(message)

        try:
            return response.json()
        except ValueError:
            # Some deployments answer with bare text
            return response.text


class SecondaryModelClient:
    """Client for an OpenAI-compatible chat completions endpoint."""

    name = "secondary"

    def __init__(
        self,
        config: Optional[ProcessorSettings] = None,
        client: Optional[AsyncOpenAI] = None,
    ):
        config = config or default_settings
        self.model = config.SECONDARY_MODEL
        self.max_tokens = config.SECONDARY_MAX_TOKENS
        self.temperature = config.SECONDARY_TEMPERATURE
        self.top_p = config.SECONDARY_TOP_P
        self.timeout = config.SECONDARY_TIMEOUT
        self.client = client or AsyncOpenAI(
            base_url=config.SECONDARY_BASE_URL,
            api_key=config.SECONDARY_API_KEY or "not-configured",
            max_retries=0,
        )

    async def generate(self, prompt: str) -> str:
        """Send a prompt and return the generated message text.

        Raises:
            ModelUnavailableError: On timeout, connection failure, 5xx or 429
            ModelRequestError: On any other API error
        """
        try:
            completion = await self.client.chat.completions.create(
                model=self.model,
                messages=[{"role": "user", "content": prompt}],
                max_tokens=self.max_tokens,
                temperature=self.temperature,
                top_p=self.top_p,
                timeout=self.timeout,
            )
        except (openai.APITimeoutError, openai.APIConnectionError) as e:
            logger.warning("Secondary model unreachable", error=str(e))
            raise ModelUnavailableError(f"Secondary model unreachable: {e}") from e
        except openai.APIStatusError as e:
            logger.warning("Secondary model error response", status_code=e.status_code, error=str(e))
            if _is_unavailable_status(e.status_code):
                raise ModelUnavailableError(f"Secondary model returned HTTP {e.status_code}") from e
            raise ModelRequestError(f"Secondary model rejected request: {e}") from e
        except openai.APIError as e:
            raise ModelRequestError(f"Secondary model failed: {e}") from e

        if not completion.choices:
            return ""
        return completion.choices[0].message.content or ""
