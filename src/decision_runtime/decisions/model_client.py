"""
Generative model contract.

Request: prompt + system instructions. Response: text expected to contain
one JSON object. Failures come back on the reply with a structured
``ErrorKind`` instead of being raised, so callers classify them without
parsing messages.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol, runtime_checkable

import openai
from openai import AsyncOpenAI

from ..config import ModelConfig
from ..errors import ErrorKind


@dataclass(frozen=True)
class ModelReply:
    text: str | None = None
    status: int = 200
    error: str | None = None
    error_kind: ErrorKind | None = None
    model: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None and self.text is not None


@runtime_checkable
class ModelClient(Protocol):
    async def complete(self, prompt: str, system: str) -> ModelReply:
        ...


class OpenAIModelClient:
    """``ModelClient`` backed by the OpenAI chat completions API."""

    def __init__(self, config: ModelConfig, client: AsyncOpenAI | None = None):
        self._config = config
        client_kwargs = {"api_key": config.api_key, "max_retries": 0}
        if config.base_url:
            client_kwargs["base_url"] = config.base_url
        self.client = client or AsyncOpenAI(**client_kwargs)

    async def complete(self, prompt: str, system: str) -> ModelReply:
        try:
            response = await self.client.chat.completions.create(
                model=self._config.model,
                messages=[
                    {"role": "system", "content": system},
                    {"role": "user", "content": prompt},
                ],
                max_tokens=self._config.max_tokens,
                temperature=self._config.temperature,
            )
        except openai.AuthenticationError as e:
            return ModelReply(status=401, error=str(e), error_kind=ErrorKind.AUTH)
        except openai.PermissionDeniedError as e:
            return ModelReply(status=403, error=str(e), error_kind=ErrorKind.AUTH)
        except openai.RateLimitError as e:
            return ModelReply(status=429, error=f"Rate limit exceeded: {e}", error_kind=ErrorKind.RATE_LIMIT)
        except openai.APITimeoutError as e:
            return ModelReply(status=504, error=str(e), error_kind=ErrorKind.TIMEOUT)
        except openai.APIConnectionError as e:
            return ModelReply(status=500, error=str(e.__cause__ or e), error_kind=ErrorKind.UNAVAILABLE)
        except openai.BadRequestError as e:
            return ModelReply(status=400, error=str(e), error_kind=ErrorKind.VALIDATION)
        except openai.APIStatusError as e:
            # Unstructured status; classified by the caller from the message.
            return ModelReply(status=e.status_code, error=str(e))

        content = response.choices[0].message.content if response.choices else None
        if not content:
            return ModelReply(status=500, error="Empty response from model", error_kind=ErrorKind.UNKNOWN)
        return ModelReply(text=content, model=response.model)

    async def close(self) -> None:
        await self.client.close()


__all__ = [
    "ModelReply",
    "ModelClient",
    "OpenAIModelClient",
]
