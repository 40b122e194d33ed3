"""Unit tests for the summarization driver."""

import pytest
from datetime import datetime, timedelta, timezone
from unittest.mock import Mock, call, patch

from slack_digest.config import Settings
from slack_digest.errors import (
    BatchFailedError,
    PermanentLLMError,
    TemplateError,
    TransientLLMError,
)
from slack_digest.llm_client import LLMClient, LLMCompletion
from slack_digest.models import MessageRecord, TokenUsage
from slack_digest.partitioner import partition_records
from slack_digest.prompts import DEFAULT_SYSTEM_PROMPT
from slack_digest.summarizer import SummarizationDriver


BASE = datetime(2025, 10, 1, tzinfo=timezone.utc)


def make_records(count: int) -> list[MessageRecord]:
    return [
        MessageRecord(channel="general", user="alice", text=f"message {i}", timestamp=BASE + timedelta(minutes=i))
        for i in range(count)
    ]


def completion(text: str = "## Community Overview\nBusy week", prompt: int = 100, done: int = 50) -> LLMCompletion:
    return LLMCompletion(text=text, usage=TokenUsage.of(prompt, done))


@pytest.fixture
def client():
    return Mock(spec=LLMClient)


@pytest.fixture
def settings():
    return Settings(retry_attempts=3, retry_delay=2.0, inter_call_delay=1.0)


class TestSummarizeBatch:
    """Tests for single-batch summarization with retry."""

    @patch('slack_digest.summarizer.time.sleep')
    def test_success_first_try(self, mock_sleep, client, settings):
        """Test a successful call needs no retry."""
        client.complete.return_value = completion()
        driver = SummarizationDriver(client, settings)
        batch = partition_records(make_records(3), 25)[0]

        result = driver.summarize_batch(batch)

        assert result.batch_index == 1
        assert result.summary == "## Community Overview\nBusy week"
        assert result.attempts == 1
        assert result.duration >= 0
        mock_sleep.assert_not_called()

    @patch('slack_digest.summarizer.time.sleep')
    def test_fails_twice_then_succeeds(self, mock_sleep, client, settings):
        """Test two transient failures then success on the third attempt."""
        client.complete.side_effect = [
            TransientLLMError("timeout"),
            TransientLLMError("rate limited"),
            completion(prompt=300, done=120),
        ]
        driver = SummarizationDriver(client, settings)
        batch = partition_records(make_records(3), 25)[0]

        result = driver.summarize_batch(batch)

        assert result.attempts == 3
        assert result.usage == TokenUsage.of(300, 120)
        assert client.complete.call_count == 3
        assert mock_sleep.call_args_list == [call(2.0), call(4.0)]
        assert sum(c.args[0] for c in mock_sleep.call_args_list) >= 2.0 * 1 + 2.0 * 2

    @patch('slack_digest.summarizer.time.sleep')
    def test_empty_output_is_retried(self, mock_sleep, client, settings):
        """Test an empty completion counts as a failed attempt."""
        client.complete.side_effect = [completion(text="   \n"), completion(text="## Real summary")]
        driver = SummarizationDriver(client, settings)

        result = driver.summarize_batch(partition_records(make_records(1), 25)[0])

        assert result.summary == "## Real summary"
        assert result.attempts == 2
        assert mock_sleep.call_args_list == [call(2.0)]

    @patch('slack_digest.summarizer.time.sleep')
    def test_retries_exhausted(self, mock_sleep, client, settings):
        """Test exhaustion raises BatchFailedError after exactly N attempts."""
        client.complete.side_effect = TransientLLMError("server error")
        driver = SummarizationDriver(client, settings)
        batch = partition_records(make_records(60), 25)[1]

        with pytest.raises(BatchFailedError) as excinfo:
            driver.summarize_batch(batch)

        assert client.complete.call_count == 3
        assert excinfo.value.context == {"batch_index": 2, "attempts": 3}
        # no wait after the final attempt
        assert mock_sleep.call_args_list == [call(2.0), call(4.0)]

    @pytest.mark.parametrize("attempts", [1, 2, 5])
    @patch('slack_digest.summarizer.time.sleep')
    def test_attempt_ceiling(self, mock_sleep, client, attempts):
        """Test the collaborator is called exactly retry_attempts times."""
        client.complete.side_effect = TransientLLMError("down")
        driver = SummarizationDriver(client, Settings(retry_attempts=attempts, retry_delay=0.5))

        with pytest.raises(BatchFailedError):
            driver.summarize_batch(partition_records(make_records(1), 25)[0])

        assert client.complete.call_count == attempts
        assert mock_sleep.call_args_list == [call(0.5 * n) for n in range(1, attempts)]

    @patch('slack_digest.summarizer.time.sleep')
    def test_permanent_error_not_retried(self, mock_sleep, client, settings):
        """Test a permanent failure propagates immediately."""
        client.complete.side_effect = PermanentLLMError("invalid api key", status=401)
        driver = SummarizationDriver(client, settings)

        with pytest.raises(PermanentLLMError) as excinfo:
            driver.summarize_batch(partition_records(make_records(1), 25)[0])

        assert client.complete.call_count == 1
        mock_sleep.assert_not_called()
        assert excinfo.value.context["batch_index"] == 1
        assert excinfo.value.context["status"] == 401

    @patch('slack_digest.summarizer.time.sleep')
    def test_prompt_contents(self, mock_sleep, client, settings):
        """Test the rendered prompt and sampling parameters."""
        client.complete.return_value = completion()
        driver = SummarizationDriver(client, settings)
        batch = partition_records(make_records(30), 25)[1]

        driver.summarize_batch(batch, statistics="- **Total Community Messages**: 30")

        kwargs = client.complete.call_args.kwargs
        assert "Chunk 2/2 - 5 messages" in kwargs["prompt"]
        assert "message 29" in kwargs["prompt"]
        assert "- **Total Community Messages**: 30" in kwargs["prompt"]
        assert "{{PASTE_SLACK_DATA_HERE}}" not in kwargs["prompt"]
        assert kwargs["system_prompt"] == DEFAULT_SYSTEM_PROMPT
        assert kwargs["max_tokens"] == 12000
        assert kwargs["temperature"] == 0.7
        assert kwargs["top_p"] == 0.9

    def test_custom_template_from_settings(self, client):
        """Test a settings template override is validated."""
        with pytest.raises(TemplateError):
            SummarizationDriver(client, Settings(user_prompt_template="Summarize it all"))

        driver = SummarizationDriver(
            client, Settings(user_prompt_template="Summarize: {{PASTE_SLACK_DATA_HERE}}", system_prompt="Custom")
        )
        assert driver.template.text.startswith("Summarize:")
        assert driver.system_prompt == "Custom"


class TestSummarizeBatches:
    """Tests for sequential multi-batch summarization."""

    @patch('slack_digest.summarizer.time.sleep')
    def test_sequential_with_pacing(self, mock_sleep, client, settings):
        """Test batches run in order with a delay between (not after) them."""
        client.complete.return_value = completion()
        driver = SummarizationDriver(client, settings)
        batches = partition_records(make_records(104), 25)

        results = driver.summarize_batches(batches)

        assert [r.batch_index for r in results] == [1, 2, 3, 4, 5]
        assert client.complete.call_count == 5
        prompts = [c.kwargs["prompt"] for c in client.complete.call_args_list]
        for i, prompt in enumerate(prompts, start=1):
            assert f"Chunk {i}/5" in prompt
        assert mock_sleep.call_args_list == [call(1.0)] * 4

    @patch('slack_digest.summarizer.time.sleep')
    def test_first_failure_aborts(self, mock_sleep, client, settings):
        """Test later batches are not attempted after a failure."""
        client.complete.side_effect = [completion(), PermanentLLMError("bad request", status=400)]
        driver = SummarizationDriver(client, settings)

        with pytest.raises(PermanentLLMError) as excinfo:
            driver.summarize_batches(partition_records(make_records(75), 25))

        assert client.complete.call_count == 2
        assert excinfo.value.context == {"status": 400, "batch_index": 2}
        assert "batch_index=2" in str(excinfo.value)

    def test_no_batches(self, client, settings):
        """Test no batches means no calls."""
        assert SummarizationDriver(client, settings).summarize_batches([]) == []
        client.complete.assert_not_called()


class TestSummarizeUnified:
    """Tests for unified (single-call) summarization."""

    @patch('slack_digest.summarizer.time.sleep')
    def test_single_call(self, mock_sleep, client, settings):
        """Test every record goes into one prompt with the statistics."""
        client.complete.return_value = completion()
        records = make_records(4) + [
            MessageRecord(channel="general", user="Dana (Gamma)", text="staff reply", timestamp=BASE)
        ]
        driver = SummarizationDriver(client, settings, is_staff=lambda r: "(Gamma" in r.user)

        result = driver.summarize_unified(records, "STATS BLOCK")

        assert result.batch_index == 1
        assert client.complete.call_count == 1
        prompt = client.complete.call_args.kwargs["prompt"]
        assert "STATS BLOCK" in prompt
        assert "message 3" in prompt
        assert prompt.index("## Staff Activity Data") < prompt.index("staff reply")


class TestProgressEvents:
    """Tests for progress notifications."""

    @patch('slack_digest.summarizer.time.sleep')
    def test_events_for_retry(self, mock_sleep, client, settings):
        """Test start, retry and end events for one batch."""
        client.complete.side_effect = [TransientLLMError("timeout"), completion()]
        driver = SummarizationDriver(client, settings)
        events = []
        driver.subscribe(events.append)

        driver.summarize_batch(partition_records(make_records(1), 25)[0])

        assert [e.stage for e in events] == ["batch_start", "batch_retry", "batch_end"]
        assert all(e.current == 1 and e.total == 1 for e in events)

    @patch('slack_digest.summarizer.time.sleep')
    def test_error_event(self, mock_sleep, client, settings):
        """Test a failure publishes an error event."""
        client.complete.side_effect = PermanentLLMError("nope")
        driver = SummarizationDriver(client, settings)
        events = []
        driver.subscribe(events.append)

        with pytest.raises(PermanentLLMError):
            driver.summarize_batch(partition_records(make_records(1), 25)[0])

        assert events[-1].stage == "error"
        assert events[-1].status == "error"
