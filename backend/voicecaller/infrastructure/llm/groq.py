"""
Groq LLM Provider Implementation
Fast inference for short spoken replies

Following Groq's prompting guidelines:
- Role channels (system, user, assistant)
- Temperature 0.6-0.8 for conversational output
- Stop sequences for cleaner outputs
"""
import os
from typing import AsyncIterator, List, Optional

import groq
from groq import AsyncGroq

from voicecaller.core.errors import ProviderRejectedError, ProviderTimeoutError, ProviderUnavailableError
from voicecaller.domain.interfaces.llm_provider import LLMProvider
from voicecaller.domain.models.conversation import Message


class GroqLLMProvider(LLMProvider):
    """Groq chat completions for the sales agent"""

    # Prevent the model from writing the customer's side
    DEFAULT_STOP_SEQUENCES = ["Customer:", "User:", "\n\n\n"]

    def __init__(self):
        self._client: Optional[AsyncGroq] = None
        self._config: dict = {}
        self._model: str = "llama-3.3-70b-versatile"
        self._temperature: float = 0.8
        self._max_tokens: int = 150

    async def initialize(self, config: dict) -> None:
        """Initialize Groq client with configuration"""
        self._config = config
        api_key = config.get("api_key") or os.getenv("GROQ_API_KEY")

        if not api_key:
            raise ValueError("Groq API key not found in config or environment")

        self._client = AsyncGroq(api_key=api_key)

        self._model = config.get("model", self._model)
        self._temperature = config.get("temperature", self._temperature)
        self._max_tokens = config.get("max_tokens", self._max_tokens)

    async def stream_chat(
        self,
        messages: List[Message],
        system_prompt: Optional[str] = None,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
        **kwargs
    ) -> AsyncIterator[str]:
        """
        Stream chat completion tokens from Groq

        Yields:
            str: Token/chunk of response
        """
        if not self._client:
            raise ProviderUnavailableError("Groq client not initialized. Call initialize() first.", provider=self.name)

        temperature = temperature if temperature is not None else self._temperature
        max_tokens = max_tokens if max_tokens is not None else self._max_tokens

        if not 0.0 <= temperature <= 2.0:
            raise ValueError(f"Temperature must be between 0.0 and 2.0, got {temperature}")

        groq_messages = []
        if system_prompt:
            groq_messages.append({"role": "system", "content": system_prompt})

        for msg in messages:
            groq_messages.append({"role": msg.role.value, "content": msg.content})

        try:
            stream = await self._client.chat.completions.create(
                model=kwargs.get("model", self._model),
                messages=groq_messages,
                temperature=temperature,
                max_tokens=max_tokens,
                stream=True,
                top_p=kwargs.get("top_p", 1.0),
                stop=kwargs.get("stop", self.DEFAULT_STOP_SEQUENCES),
            )

            async for chunk in stream:
                if chunk.choices:
                    delta = chunk.choices[0].delta
                    if delta.content:
                        yield delta.content

        except groq.APITimeoutError as e:
            raise ProviderTimeoutError("Groq request timed out", provider=self.name) from e
        except groq.APIStatusError as e:
            if e.status_code < 500:
                raise ProviderRejectedError(f"Groq rejected request: {e}", provider=self.name, status_code=e.status_code) from e
            raise ProviderUnavailableError(f"Groq LLM streaming failed: {e}", provider=self.name) from e
        except groq.APIError as e:
            raise ProviderUnavailableError(f"Groq LLM streaming failed: {e}", provider=self.name) from e

    async def cleanup(self) -> None:
        """Release resources"""
        if self._client:
            await self._client.close()
            self._client = None

    @property
    def name(self) -> str:
        return "groq"

    def __repr__(self) -> str:
        return f"GroqLLMProvider(model={self._model}, temp={self._temperature})"
