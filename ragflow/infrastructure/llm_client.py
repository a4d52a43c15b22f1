# ragflow/infrastructure/llm_client.py

import asyncio
from typing import AsyncIterator, Optional

from openai import AsyncOpenAI, OpenAI

from ragflow.config import LLMConfig
from ragflow.domain.errors import GenerationError
from ragflow.domain.interfaces import GenerationPort
from ragflow.logger import get_logger

logger = get_logger(__name__)


class OpenAIGenerator(GenerationPort):
    """
    Chat-completions client for OpenAI or any OpenAI-compatible endpoint
    (configured through base_url).
    """

    def __init__(self, config: LLMConfig):
        self._model = config.model
        self._temperature = config.temperature
        self._client = OpenAI(
            api_key=config.api_key,
            base_url=config.base_url,
            timeout=config.timeout_seconds,
        )
        self._async_client = AsyncOpenAI(
            api_key=config.api_key,
            base_url=config.base_url,
            timeout=config.timeout_seconds,
        )
        logger.info(f"[LLM] Using OpenAI model '{self._model}'")

    def generate(self, prompt: str) -> str:
        try:
            response = self._client.chat.completions.create(
                model=self._model,
                temperature=self._temperature,
                messages=[{"role": "user", "content": prompt}],
            )
        except Exception as error:
            raise GenerationError(f"LLM call failed: {error}") from error

        if not response.choices:
            raise GenerationError("No response from LLM")
        return response.choices[0].message.content or ""

    async def generate_stream(self, prompt: str) -> AsyncIterator[str]:
        try:
            stream = await self._async_client.chat.completions.create(
                model=self._model,
                temperature=self._temperature,
                messages=[{"role": "user", "content": prompt}],
                stream=True,
            )
        except Exception as error:
            raise GenerationError(f"LLM stream call failed: {error}") from error

        try:
            async for chunk in stream:
                if not chunk.choices:
                    continue
                choice = chunk.choices[0]
                if choice.delta is not None and choice.delta.content:
                    yield choice.delta.content
                if choice.finish_reason:
                    break
        finally:
            # Releases the HTTP connection, also on consumer cancellation.
            await stream.close()


class MockGenerator(GenerationPort):
    """Canned answer, streamed word by word. Default provider."""

    ANSWER = (
        "This is a MOCK answer. I received your context and question. "
        "The context provided mentioned... (simulated logic)."
    )

    def __init__(self, answer: Optional[str] = None, token_delay: float = 0.0):
        self._answer = answer or self.ANSWER
        self._token_delay = token_delay

    def generate(self, prompt: str) -> str:
        logger.debug(f"[LLM] Mock received prompt:\n{prompt}")
        return self._answer

    async def generate_stream(self, prompt: str) -> AsyncIterator[str]:
        words = self._answer.split(" ")
        for i, word in enumerate(words):
            if self._token_delay:
                await asyncio.sleep(self._token_delay)
            yield word if i == len(words) - 1 else word + " "


def build_generator(config: LLMConfig) -> GenerationPort:
    if config.provider == "openai":
        return OpenAIGenerator(config)
    return MockGenerator()
