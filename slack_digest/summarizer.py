"""Summarization driver for Slack Digest.

Sends batches to the LLM one at a time, retrying transient failures with a
linear backoff and pacing calls with a fixed delay between batches.
"""

import logging
import time
from typing import Callable, Optional, Sequence

from .config import Settings
from .errors import (
    BatchFailedError,
    DigestError,
    EmptyCompletionError,
    TransientLLMError,
)
from .llm_client import LLMClient, LLMCompletion
from .models import AnalysisProgress, Batch, MessageRecord, SummarizationResult
from .partitioner import estimate_tokens
from .prompts import (
    DEFAULT_BATCH_TEMPLATE,
    DEFAULT_SYSTEM_PROMPT,
    DEFAULT_UNIFIED_TEMPLATE,
    STATISTICS_PLACEHOLDER,
    DATA_PLACEHOLDER,
    PromptTemplate,
    format_batch,
    format_dataset,
)

logger = logging.getLogger(__name__)

ProgressListener = Callable[[AnalysisProgress], None]


class SummarizationDriver:
    """Runs batches through the LLM with retry and pacing."""

    def __init__(
        self,
        client: LLMClient,
        settings: Optional[Settings] = None,
        template: Optional[PromptTemplate] = None,
        system_prompt: Optional[str] = None,
        unified_template: Optional[PromptTemplate] = None,
        is_staff: Optional[Callable[[MessageRecord], bool]] = None,
    ):
        """
        Initialize driver.

        Args:
            client: LLM client used for every call
            settings: Retry, pacing and sampling settings
            template: Batch prompt template (settings override, then default)
            system_prompt: System prompt (settings override, then default)
            unified_template: Template used by ``summarize_unified``
            is_staff: Staff predicate used to split the unified dataset

        Raises:
            TemplateError: If a custom template lacks the data placeholder
        """
        self.client = client
        self.settings = settings or Settings()

        if template is None:
            template = PromptTemplate(self.settings.user_prompt_template or DEFAULT_BATCH_TEMPLATE)
        self.template = template
        self.unified_template = unified_template or PromptTemplate(
            DEFAULT_UNIFIED_TEMPLATE,
            required=(DATA_PLACEHOLDER, STATISTICS_PLACEHOLDER),
        )
        self.system_prompt = system_prompt or self.settings.system_prompt or DEFAULT_SYSTEM_PROMPT
        self.is_staff = is_staff

        self._listeners: list[ProgressListener] = []

    def subscribe(self, listener: ProgressListener):
        """Register a callable that receives AnalysisProgress events."""
        self._listeners.append(listener)

    def _publish(self, stage: str, current: int, total: int, status: str = "processing", message: str = ""):
        event = AnalysisProgress(stage=stage, current=current, total=total, status=status, message=message)
        for listener in self._listeners:
            listener(event)

    def summarize_batch(self, batch: Batch, statistics: Optional[str] = None) -> SummarizationResult:
        """
        Summarize one batch.

        Args:
            batch: The batch to summarize
            statistics: Pre-rendered statistics block for the prompt

        Returns:
            SummarizationResult for the successful attempt

        Raises:
            BatchFailedError: If every attempt failed with a transient error
            PermanentLLMError: On a non-retryable failure (not retried)
        """
        prompt = self.template.render(format_batch(batch), statistics or "")
        return self._run_with_retry(batch.index, batch.total, prompt)

    def summarize_batches(
        self,
        batches: Sequence[Batch],
        statistics: Optional[str] = None,
    ) -> list[SummarizationResult]:
        """
        Summarize batches sequentially in index order.

        Sleeps ``inter_call_delay`` between batches, but not after the last.
        The first failed batch aborts the whole run.
        """
        results = []

        for position, batch in enumerate(batches):
            results.append(self.summarize_batch(batch, statistics))

            if position < len(batches) - 1 and self.settings.inter_call_delay > 0:
                logger.debug(f"Waiting {self.settings.inter_call_delay}s before next batch")
                time.sleep(self.settings.inter_call_delay)

        return results

    def summarize_unified(self, records: Sequence[MessageRecord], statistics: str) -> SummarizationResult:
        """
        Summarize the whole record set in a single call.

        Community and staff messages are listed separately after the
        statistics block.
        """
        dataset = format_dataset(records, self.is_staff)
        prompt = self.unified_template.render(dataset, statistics)
        logger.info(
            f"Unified analysis of {len(records)} messages "
            f"(~{estimate_tokens(prompt)} prompt tokens)"
        )
        return self._run_with_retry(1, 1, prompt)

    def _run_with_retry(self, index: int, total: int, prompt: str) -> SummarizationResult:
        attempts = self.settings.retry_attempts
        last_error: Optional[TransientLLMError] = None

        self._publish("batch_start", index, total, message=f"Analyzing batch {index}/{total}")
        logger.debug(f"Batch {index} prompt preview: {prompt[:200]!r}")

        for attempt in range(1, attempts + 1):
            started = time.monotonic()
            try:
                completion = self._complete(prompt)
            except TransientLLMError as e:
                last_error = e
                logger.warning(f"Batch {index}/{total} attempt {attempt}/{attempts} failed: {e}")

                if attempt < attempts:
                    delay = self.settings.retry_delay * attempt
                    self._publish(
                        "batch_retry", index, total,
                        message=f"Retrying batch {index} in {delay:g}s ({e.message})",
                    )
                    time.sleep(delay)
                continue
            except Exception as e:
                if isinstance(e, DigestError):
                    e.context.setdefault("batch_index", index)
                    if e.operation is None:
                        e.operation = "summarize_batch"
                self._publish("error", index, total, status="error", message=str(e))
                raise

            duration = time.monotonic() - started
            logger.info(
                f"Batch {index}/{total} done in {duration:.1f}s "
                f"({completion.usage.total_tokens} tokens, attempt {attempt})"
            )
            self._publish("batch_end", index, total, message=f"Batch {index}/{total} complete")
            return SummarizationResult(
                batch_index=index,
                summary=completion.text,
                usage=completion.usage,
                duration=duration,
                attempts=attempt,
            )

        error = BatchFailedError(
            f"Batch {index} failed after {attempts} attempts: {last_error.message if last_error else 'unknown'}",
            operation="summarize_batch",
            batch_index=index,
            attempts=attempts,
        )
        self._publish("error", index, total, status="error", message=str(error))
        raise error from last_error

    def _complete(self, prompt: str) -> LLMCompletion:
        completion = self.client.complete(
            prompt=prompt,
            system_prompt=self.system_prompt,
            max_tokens=self.settings.max_output_tokens,
            temperature=self.settings.temperature,
            top_p=self.settings.top_p,
        )
        if completion.is_empty:
            raise EmptyCompletionError("LLM returned an empty completion", operation="complete")
        return completion
