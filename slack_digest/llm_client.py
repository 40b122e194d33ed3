"""OpenAI LLM client for Slack Digest.

Makes exactly one chat-completion request per call and classifies failures
as transient or permanent. Retrying is the caller's job (see summarizer.py).
"""

import logging
import os
from dataclasses import dataclass
from typing import Optional

from openai import (
    APIConnectionError,
    APIStatusError,
    APITimeoutError,
    OpenAI,
    OpenAIError,
    RateLimitError,
)

from .errors import ConfigError, PermanentLLMError, TransientLLMError
from .models import TokenUsage

logger = logging.getLogger(__name__)

# Status codes worth retrying besides 5xx
RETRYABLE_STATUS_CODES = {408, 409, 429}


@dataclass(frozen=True)
class LLMCompletion:
    """Text and token usage from one completion."""

    text: str
    usage: TokenUsage

    @property
    def is_empty(self) -> bool:
        return not self.text.strip()


class LLMClient:
    """OpenAI API client that performs single, classified requests."""

    DEFAULT_MODEL = "gpt-4o"
    DEV_MODEL = "gpt-4o-mini"

    def __init__(
        self,
        model: str = DEFAULT_MODEL,
        api_key: Optional[str] = None,
        timeout: float = 60,
    ):
        """
        Initialize LLM client.

        Args:
            model: OpenAI model to use
            api_key: OpenAI API key (defaults to OPENAI_API_KEY env var)
            timeout: Request timeout in seconds

        Raises:
            ConfigError: If no API key is available
        """
        self.model = model
        self.timeout = timeout
        self.usage = TokenUsage()

        api_key = api_key or os.getenv("OPENAI_API_KEY")
        if not api_key:
            raise ConfigError(
                "OpenAI API key required. Set OPENAI_API_KEY environment variable "
                "or pass api_key parameter."
            )

        # Retries are handled by the summarization driver
        self.client = OpenAI(api_key=api_key, max_retries=0)

    def complete(
        self,
        prompt: str,
        system_prompt: Optional[str] = None,
        max_tokens: int = 12000,
        temperature: float = 0.7,
        top_p: float = 0.9,
    ) -> LLMCompletion:
        """
        Request one completion.

        Args:
            prompt: User prompt
            system_prompt: Optional system prompt
            max_tokens: Maximum tokens in the response
            temperature: Sampling temperature
            top_p: Nucleus sampling parameter

        Returns:
            LLMCompletion. Empty text is returned as-is so the caller can
            tell "succeeded with nothing" apart from a failed request.

        Raises:
            TransientLLMError: Timeouts, connection errors, rate limits, 5xx
            PermanentLLMError: Other 4xx responses or a malformed response
        """
        messages = []

        if system_prompt:
            messages.append({"role": "system", "content": system_prompt})

        messages.append({"role": "user", "content": prompt})

        try:
            response = self.client.chat.completions.create(
                model=self.model,
                messages=messages,
                temperature=temperature,
                top_p=top_p,
                max_completion_tokens=max_tokens,
                timeout=self.timeout,
            )
        except (APITimeoutError, APIConnectionError) as e:
            raise TransientLLMError(f"OpenAI request failed: {e}", operation="complete") from e
        except RateLimitError as e:
            raise TransientLLMError(
                f"OpenAI rate limit: {e}", operation="complete", status=e.status_code
            ) from e
        except APIStatusError as e:
            if e.status_code >= 500 or e.status_code in RETRYABLE_STATUS_CODES:
                raise TransientLLMError(
                    f"OpenAI server error: {e}", operation="complete", status=e.status_code
                ) from e
            raise PermanentLLMError(
                f"OpenAI rejected the request: {e}", operation="complete", status=e.status_code
            ) from e
        except OpenAIError as e:
            raise PermanentLLMError(f"OpenAI API error: {e}", operation="complete") from e

        if not response.choices:
            raise PermanentLLMError("OpenAI response has no choices", operation="complete")

        usage = TokenUsage()
        if response.usage:
            usage.add(response.usage.prompt_tokens or 0, response.usage.completion_tokens or 0)
            self.usage.add(usage.prompt_tokens, usage.completion_tokens)

        text = response.choices[0].message.content or ""
        return LLMCompletion(text=text, usage=usage)

    def test_connection(self) -> bool:
        """Send a tiny request to check the key and model are usable."""
        try:
            completion = self.complete(
                prompt='This is a connection test. Respond with "Connection successful."',
                max_tokens=10,
            )
        except (TransientLLMError, PermanentLLMError) as e:
            logger.error(f"OpenAI connection test failed: {e}")
            return False

        logger.info(f"OpenAI connection test response: {completion.text.strip()!r}")
        return not completion.is_empty

    def get_usage(self) -> TokenUsage:
        """Get cumulative token usage, including failed attempts that returned usage."""
        return self.usage

    def get_estimated_cost(self) -> float:
        """
        Get estimated cost based on usage.

        Note: Uses approximate list prices; actual costs may vary.

        Returns:
            Estimated cost in USD (approximate)
        """
        if "mini" in self.model.lower():
            input_rate = 0.15 / 1_000_000
            output_rate = 0.60 / 1_000_000
        else:
            input_rate = 2.50 / 1_000_000
            output_rate = 10.00 / 1_000_000

        return (
            self.usage.prompt_tokens * input_rate +
            self.usage.completion_tokens * output_rate
        )


def create_llm_client(
    model: Optional[str] = None,
    api_key: Optional[str] = None,
    use_dev_model: bool = False,
    timeout: float = 60,
) -> LLMClient:
    """
    Factory function to create LLM client.

    Args:
        model: Optional model override
        api_key: Optional API key override
        use_dev_model: Use cheaper dev model
        timeout: Request timeout in seconds

    Returns:
        Configured LLMClient instance
    """
    if model is None:
        model = LLMClient.DEV_MODEL if use_dev_model else LLMClient.DEFAULT_MODEL

    return LLMClient(model=model, api_key=api_key, timeout=timeout)
