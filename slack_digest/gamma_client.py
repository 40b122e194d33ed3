"""Gamma presentation client for Slack Digest.

Submits the finished markdown report to Gamma's generation API and polls
until the slide deck is ready.
"""

import logging
import re
import time
from datetime import date
from typing import Any, Optional

import requests

from .config import Settings
from .errors import (
    ConfigError,
    PermanentServiceError,
    PresentationFailedError,
    PresentationTimeoutError,
    TransientServiceError,
)
from .models import PresentationResult

logger = logging.getLogger(__name__)

TRUNCATION_MARKER = "[content truncated]"
TRUNCATION_SUFFIX = f"\n\n{TRUNCATION_MARKER}"

# A line starting a markdown heading; "#general" or "#hashtag" lines are not headings
HEADING_BOUNDARY = re.compile(r"\n#{1,6}[ \t]")

SUBMIT_TIMEOUT = 60
STATUS_TIMEOUT = 10

DEFAULT_TITLE = "Slack Community Analysis"
DEFAULT_DESCRIPTION = "Weekly analysis of Slack community activity and insights"

PRESERVE_INSTRUCTIONS = """CRITICAL - DO NOT MODIFY THE CONTENT:
1. Preserve ALL Slack URLs exactly; do not replace them with placeholders
2. Keep all usernames exactly as written
3. Keep all dates exactly as provided
4. Keep [text](url) links as links, not numbered placeholders
5. Render ALL markdown exactly as provided without rewriting
6. This is FINAL content - do not summarize, rephrase, or regenerate anything"""


def truncate_content(content: str, limit: int) -> str:
    """
    Fit content within ``limit`` characters.

    Content within the limit is returned unchanged. Otherwise the text is
    cut back to the last heading (or, failing that, the last blank line)
    that leaves room for the truncation marker.

    Returns:
        Text of at most ``limit`` characters ending with the marker
    """
    if len(content) <= limit:
        return content

    room = max(limit - len(TRUNCATION_SUFFIX), 0)
    head = content[:room]

    headings = [m.start() for m in HEADING_BOUNDARY.finditer(head)]
    cut = headings[-1] if headings else -1
    if cut <= 0:
        cut = head.rfind("\n\n")
    if cut <= 0:
        cut = room

    return head[:cut] + TRUNCATION_SUFFIX


def format_markdown_for_presentation(markdown: str, generated_on: Optional[date] = None) -> str:
    """Wrap the report with a presentation title slide and closing summary."""
    generated_on = generated_on or date.today()
    return (
        "# Slack Community Analysis Report\n\n"
        f"*Generated on {generated_on.isoformat()}*\n\n"
        "---\n\n"
        f"{markdown}\n\n"
        "---\n\n"
        "## Summary\n\n"
        "This analysis was generated from Slack community data and presented via Gamma.\n\n"
        "*For questions or feedback, contact your community administrators.*"
    )


class GammaClient:
    """Client for Gamma's presentation generation API."""

    def __init__(self, api_key: Optional[str] = None, settings: Optional[Settings] = None):
        """
        Initialize Gamma client.

        Args:
            api_key: Gamma API key (defaults to the one in settings)
            settings: Base URL, card count, polling and size limits

        Raises:
            ConfigError: If no API key is available
        """
        self.settings = settings or Settings()
        self.api_key = api_key or self.settings.gamma_api_key
        if not self.api_key:
            raise ConfigError(
                "Gamma API key required. Set GAMMA_API_KEY environment variable "
                "or pass api_key parameter."
            )
        self.base_url = self.settings.gamma_base_url.rstrip("/")

    @property
    def headers(self) -> dict:
        return {
            "Content-Type": "application/json",
            "X-API-KEY": self.api_key,
        }

    def _request(
        self,
        method: str,
        url: str,
        operation: str,
        timeout: float,
        generation_id: Optional[str] = None,
        **kwargs,
    ) -> dict[str, Any]:
        """Send a request and classify any failure."""
        try:
            response = requests.request(method, url, headers=self.headers, timeout=timeout, **kwargs)
            response.raise_for_status()
        except (requests.Timeout, requests.ConnectionError) as e:
            raise TransientServiceError(
                f"Gamma request failed: {e}", operation=operation, generation_id=generation_id
            ) from e
        except requests.HTTPError as e:
            status = e.response.status_code if e.response is not None else None
            detail = e.response.text[:200] if e.response is not None else str(e)
            if status is None or status >= 500 or status == 429:
                error_cls = TransientServiceError
            else:
                error_cls = PermanentServiceError
            raise error_cls(
                f"Gamma returned HTTP {status}: {detail}",
                operation=operation,
                generation_id=generation_id,
                status=status,
            ) from e
        except requests.RequestException as e:
            raise PermanentServiceError(
                f"Gamma request error: {e}", operation=operation, generation_id=generation_id
            ) from e

        try:
            data = response.json()
        except ValueError as e:
            raise PermanentServiceError(
                "Gamma returned a non-JSON response", operation=operation, generation_id=generation_id
            ) from e

        if not isinstance(data, dict):
            raise PermanentServiceError(
                "Gamma returned an unexpected payload", operation=operation, generation_id=generation_id
            )
        return data

    def build_payload(self, markdown: str, title: str, description: str) -> dict:
        return {
            "inputText": markdown,
            "format": "presentation",
            "textMode": "preserve",
            "numCards": self.settings.gamma_num_cards,
            "cardSplit": "auto",
            "additionalInstructions": f"Title: {title}. Description: {description}.\n{PRESERVE_INSTRUCTIONS}",
            "textOptions": {
                "amount": "detailed",
                "tone": "professional, engaging, data-driven",
                "language": "en",
            },
            "imageOptions": {
                "source": "unsplash",
            },
        }

    def submit(self, markdown: str, title: str = DEFAULT_TITLE, description: str = DEFAULT_DESCRIPTION) -> str:
        """
        Start a generation.

        Returns:
            The generation id

        Raises:
            TransientServiceError: On timeouts, connection errors and 5xx
            PermanentServiceError: On 4xx or a response without generationId
        """
        limit = self.settings.max_content_length
        if len(markdown) > limit:
            truncated = truncate_content(markdown, limit)
            logger.warning(f"Content truncated from {len(markdown)} to {len(truncated)} characters")
            markdown = truncated

        payload = self.build_payload(markdown, title, description)
        logger.info(
            f"Submitting presentation ({len(markdown)} chars, {payload['numCards']} cards)"
        )
        logger.debug(f"Presentation content preview: {markdown[:500]!r}")

        data = self._request(
            "POST",
            f"{self.base_url}/generations",
            operation="submit_presentation",
            timeout=SUBMIT_TIMEOUT,
            json=payload,
        )

        generation_id = data.get("generationId")
        if not generation_id:
            raise PermanentServiceError(
                "Gamma response is missing generationId", operation="submit_presentation"
            )

        logger.info(f"Presentation generation started: {generation_id}")
        return generation_id

    def get_status(self, generation_id: str) -> dict[str, Any]:
        """Fetch the current status payload of a generation."""
        return self._request(
            "GET",
            f"{self.base_url}/generations/{generation_id}",
            operation="get_status",
            timeout=STATUS_TIMEOUT,
            generation_id=generation_id,
        )

    def _poll_for_completion(self, generation_id: str) -> PresentationResult:
        attempts = self.settings.max_poll_attempts

        for attempt in range(1, attempts + 1):
            try:
                data = self.get_status(generation_id)
            except TransientServiceError as e:
                # The job is already running remotely; a failed check counts as one poll
                logger.warning(f"Poll {attempt}/{attempts} for {generation_id} failed: {e}")
                data = {}

            status = data.get("status", "processing")
            logger.debug(f"Poll {attempt}/{attempts} for {generation_id}: {status}")

            if status == "completed":
                url = data.get("gammaUrl")
                if not url:
                    raise PermanentServiceError(
                        "Completed generation has no gammaUrl",
                        operation="poll_presentation",
                        generation_id=generation_id,
                    )
                logger.info(f"Presentation ready: {url}")
                return PresentationResult(generation_id=generation_id, url=url)

            if status == "failed":
                raise PresentationFailedError(
                    f"Generation failed: {data.get('error') or 'Unknown error'}",
                    operation="poll_presentation",
                    generation_id=generation_id,
                )

            if attempt < attempts:
                time.sleep(self.settings.poll_interval)

        raise PresentationTimeoutError(
            f"Generation did not finish after {attempts} status checks; it may still complete",
            operation="poll_presentation",
            generation_id=generation_id,
        )

    def generate_presentation(
        self,
        markdown: str,
        title: str = DEFAULT_TITLE,
        description: str = DEFAULT_DESCRIPTION,
    ) -> PresentationResult:
        """
        Generate a slide deck and wait for it to finish.

        Args:
            markdown: Report markdown (truncated if over the size limit)
            title: Deck title
            description: Deck description

        Returns:
            PresentationResult with the deck URL

        Raises:
            TransientServiceError: On timeouts, connection errors and 5xx while
                submitting (failed status checks are counted as polls)
            PermanentServiceError: On 4xx or malformed responses
            PresentationFailedError: If Gamma reports the generation failed
            PresentationTimeoutError: If polling runs out before completion
        """
        generation_id = self.submit(markdown, title, description)
        return self._poll_for_completion(generation_id)

    def test_connection(self) -> bool:
        """Start a tiny generation to verify the key works."""
        payload = {
            "inputText": "API Connection Test - This is a test generation to verify API connectivity.",
            "format": "presentation",
            "numCards": 3,
            "textOptions": {"amount": "brief", "language": "en"},
        }
        try:
            data = self._request(
                "POST",
                f"{self.base_url}/generations",
                operation="test_connection",
                timeout=STATUS_TIMEOUT,
                json=payload,
            )
        except (TransientServiceError, PermanentServiceError) as e:
            logger.error(f"Gamma connection test failed: {e}")
            return False

        return bool(data.get("generationId"))
