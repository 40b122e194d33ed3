"""Unit tests for the OpenAI LLM client."""

import httpx
import openai
import pytest
from unittest.mock import MagicMock, patch

from slack_digest.errors import ConfigError, PermanentLLMError, TransientLLMError
from slack_digest.llm_client import LLMClient, LLMCompletion, create_llm_client
from slack_digest.models import TokenUsage


REQUEST = httpx.Request("POST", "https://api.openai.com/v1/chat/completions")


def status_error(cls, status: int):
    response = httpx.Response(status_code=status, request=REQUEST)
    return cls(f"HTTP {status}", response=response, body=None)


def make_response(content, prompt_tokens=10, completion_tokens=5):
    response = MagicMock()
    response.choices = [MagicMock(message=MagicMock(content=content))]
    response.usage = MagicMock(prompt_tokens=prompt_tokens, completion_tokens=completion_tokens)
    return response


class TestLLMClient:
    """Tests for LLMClient class."""

    def test_init_without_api_key_raises_error(self):
        """Test that missing API key raises ConfigError."""
        with patch.dict('os.environ', {}, clear=True):
            with pytest.raises(ConfigError) as excinfo:
                LLMClient()

            assert "OpenAI API key required" in str(excinfo.value)

    def test_init_with_api_key(self):
        """Test initialization with API key."""
        client = LLMClient(api_key="test-key")
        assert client.model == LLMClient.DEFAULT_MODEL

    @patch('slack_digest.llm_client.OpenAI')
    def test_sdk_retries_disabled(self, mock_openai_class):
        """Test the SDK does not retry on its own."""
        LLMClient(api_key="test-key")
        assert mock_openai_class.call_args.kwargs["max_retries"] == 0

    @patch('slack_digest.llm_client.OpenAI')
    def test_complete_success(self, mock_openai_class):
        """Test a successful completion."""
        mock_client = MagicMock()
        mock_openai_class.return_value = mock_client
        mock_client.chat.completions.create.return_value = make_response("## Summary\nAll good")

        client = LLMClient(api_key="test-key")
        result = client.complete("Test prompt", system_prompt="Be brief", max_tokens=100, temperature=0.2, top_p=0.5)

        assert result == LLMCompletion(text="## Summary\nAll good", usage=TokenUsage.of(10, 5))
        assert client.usage.total_tokens == 15

        kwargs = mock_client.chat.completions.create.call_args.kwargs
        assert kwargs["messages"] == [
            {"role": "system", "content": "Be brief"},
            {"role": "user", "content": "Test prompt"},
        ]
        assert kwargs["max_completion_tokens"] == 100
        assert kwargs["temperature"] == 0.2
        assert kwargs["top_p"] == 0.5

    @patch('slack_digest.llm_client.OpenAI')
    def test_empty_content_returned_as_is(self, mock_openai_class):
        """Test an empty completion is not an exception."""
        mock_client = MagicMock()
        mock_openai_class.return_value = mock_client
        mock_client.chat.completions.create.return_value = make_response(None)

        result = LLMClient(api_key="test-key").complete("Test prompt")

        assert result.text == ""
        assert result.is_empty

    @patch('slack_digest.llm_client.OpenAI')
    def test_no_choices_is_permanent(self, mock_openai_class):
        """Test a response without choices is malformed."""
        mock_client = MagicMock()
        mock_openai_class.return_value = mock_client
        response = make_response("x")
        response.choices = []
        mock_client.chat.completions.create.return_value = response

        with pytest.raises(PermanentLLMError):
            LLMClient(api_key="test-key").complete("Test prompt")

    @pytest.mark.parametrize("error, expected", [
        (openai.APITimeoutError(request=REQUEST), TransientLLMError),
        (openai.APIConnectionError(request=REQUEST), TransientLLMError),
        (status_error(openai.RateLimitError, 429), TransientLLMError),
        (status_error(openai.InternalServerError, 503), TransientLLMError),
        (status_error(openai.BadRequestError, 400), PermanentLLMError),
        (status_error(openai.AuthenticationError, 401), PermanentLLMError),
        (status_error(openai.NotFoundError, 404), PermanentLLMError),
    ])
    @patch('slack_digest.llm_client.OpenAI')
    def test_error_classification(self, mock_openai_class, error, expected):
        """Test SDK errors map to transient or permanent failures."""
        mock_client = MagicMock()
        mock_openai_class.return_value = mock_client
        mock_client.chat.completions.create.side_effect = error

        with pytest.raises(expected) as excinfo:
            LLMClient(api_key="test-key").complete("Test prompt")
        assert excinfo.value.operation == "complete"

    @patch('slack_digest.llm_client.OpenAI')
    def test_test_connection(self, mock_openai_class):
        """Test the connection check."""
        mock_client = MagicMock()
        mock_openai_class.return_value = mock_client
        mock_client.chat.completions.create.return_value = make_response("Connection successful.")
        assert LLMClient(api_key="test-key").test_connection() is True

        mock_client.chat.completions.create.side_effect = status_error(openai.AuthenticationError, 401)
        assert LLMClient(api_key="test-key").test_connection() is False

    def test_estimated_cost_calculation(self):
        """Test cost estimation."""
        client = LLMClient(api_key="test-key")
        client.usage.prompt_tokens = 1_000_000
        client.usage.completion_tokens = 100_000

        assert client.get_estimated_cost() == pytest.approx(3.5)

        client.model = "gpt-4o-mini"
        assert client.get_estimated_cost() == pytest.approx(0.21)


class TestCreateLLMClient:
    """Tests for create_llm_client factory."""

    def test_default_model(self):
        """Test default model selection."""
        client = create_llm_client(api_key="test-key")
        assert client.model == LLMClient.DEFAULT_MODEL

    def test_dev_model(self):
        """Test dev model selection."""
        client = create_llm_client(api_key="test-key", use_dev_model=True)
        assert client.model == LLMClient.DEV_MODEL

    def test_explicit_model(self):
        """Test an explicit model wins."""
        client = create_llm_client(model="gpt-4.1", api_key="test-key", use_dev_model=True)
        assert client.model == "gpt-4.1"
