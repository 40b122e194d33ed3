"""Prompt templates for Slack Digest.

Templates are plain text with ``{{PLACEHOLDER}}`` markers. They are checked
when constructed so a template missing its data slot fails immediately
instead of sending the literal marker to the LLM.
"""

from typing import Callable, Optional, Sequence

from .errors import TemplateError
from .models import Batch, MessageRecord

DATA_PLACEHOLDER = "{{PASTE_SLACK_DATA_HERE}}"
STATISTICS_PLACEHOLDER = "{{STATISTICS}}"


class PromptTemplate:
    """A user-prompt template with validated placeholders."""

    def __init__(self, text: str, required: Sequence[str] = (DATA_PLACEHOLDER,)):
        """
        Args:
            text: Template text
            required: Placeholders that must appear in ``text``

        Raises:
            TemplateError: If a required placeholder is missing
        """
        if not text or not text.strip():
            raise TemplateError("Prompt template is empty", operation="build_template")

        missing = [p for p in required if p not in text]
        if missing:
            raise TemplateError(
                f"Prompt template is missing placeholder(s): {', '.join(missing)}",
                operation="build_template",
            )
        self.text = text
        self.required = tuple(required)

    @property
    def uses_statistics(self) -> bool:
        return STATISTICS_PLACEHOLDER in self.text

    def render(self, data: str, statistics: str = "") -> str:
        """Substitute the data (and statistics, if present) into the template."""
        rendered = self.text.replace(
            STATISTICS_PLACEHOLDER,
            statistics or "No pre-calculated statistics available.",
        )
        return rendered.replace(DATA_PLACEHOLDER, data)


DEFAULT_SYSTEM_PROMPT = """You are a Slack community data analyst. Extract actionable insights from community conversations and create presentation-ready content.

CRITICAL INSTRUCTIONS:
1. Follow the exact template structure provided
2. Include interactive Slack thread links: [descriptive text](slack-url)
3. Extract actual quotes and link to source threads
4. Focus on patterns, trends, and actionable insights
5. Output only the markdown template - no preambles or JSON
6. Be concise but comprehensive"""


DEFAULT_BATCH_TEMPLATE = """# Community Analysis

Analyze this Slack community data and create presentation content for a team review. Focus on what's working, what's challenging, and emerging patterns.

**Baseline statistics for the whole period (use these exact numbers):**
{{STATISTICS}}

**Data:** {{PASTE_SLACK_DATA_HERE}}

Extract: feature feedback, success stories, recurring questions, feature requests, community support, emerging trends. Use markdown links `[text](url)` for key examples only.

Output markdown only. No JSON. No preambles. Start with # heading.

---

# Community Insights

## Community Overview
[2-3 sentences: vibe, energy, themes]

**Activity:** [X] messages, [Y] members, top topics: [3-4 themes]

## What's Resonating

**Features People Love**
- Feature: Why it works
- [Example](link): Context
[3-5 items]

**Success Stories**
- [Use case](link): What they built
[2-3 examples]

## What's Challenging

**Recurring Questions**
- Topic: Gap indicated
- [Theme](link): Pattern
[3-5 patterns]

**Feature Wishlist**
- [Request](link): Use case
[3-5 requests]

**Friction Points**
- Issue: Impact
[2-4 issues]

## Emerging Trends
- Trend: Evidence with links
[2-4 trends]

## Notable Feedback

> "Quote" - Member, [link](url)
[4-6 quotes, mix positive/constructive]"""


DEFAULT_UNIFIED_TEMPLATE = """# Community Analysis

Analyze this Slack community data as one dataset. Community messages EXCLUDE staff members, whose messages are listed separately.

CRITICAL REQUIREMENTS:
1. Use ONLY the actual Slack URLs from the data
2. Use real usernames from the User field
3. Use the exact "Time Period" from the PRE-CALCULATED STATISTICS - do not recalculate dates
4. Lead with the pre-calculated numbers, then support them with quotes and examples
5. A trend requires 4+ different users discussing a similar theme

## PRE-CALCULATED STATISTICS - USE THESE EXACT NUMBERS
{{STATISTICS}}

**Data:** {{PASTE_SLACK_DATA_HERE}}

Output markdown only. No JSON. Start with # heading.

---

# Community Insights

## Community Snapshot
[Activity overview and engagement health using the statistics above]

## Channel Activity
[Top channels by volume with key discussions and links]

## Topic Deep Dive
[Baseline topics with exact counts; emerging themes only if verified from raw data]

## Trending Patterns
[3-5 trends, each with 2-3 linked user quotes]

## Notable Highlights
[5-7 one-off stories worth telling]

## Support and Staff Engagement
[Response coverage, average response time, who helped with what]"""


def format_record(record: MessageRecord, number: int) -> str:
    """Format one record for the batch prompt."""
    indicators = ""
    if record.is_thread_reply:
        indicators += "[THREAD REPLY] "
    if record.has_attachments:
        indicators += "[HAS ATTACHMENTS] "
    if record.has_files:
        indicators += "[HAS FILES] "

    lines = [
        f"{number}. {indicators}".rstrip(),
        f"Channel: {record.channel}",
        f"User: {record.user}",
        f"Timestamp: {record.timestamp.isoformat()}",
        f"Message: {record.text}",
    ]
    if record.reaction_count:
        lines.append(f"Reactions: {record.reaction_count}")
    if record.urls:
        lines.append(f"URLs: {'; '.join(record.urls)}")
    if record.permalink:
        lines.append(f"Slack URL: {record.permalink}")
    if record.thread_parent:
        lines.append(f"Thread Parent: {record.thread_parent}")
    lines.append("---")
    return "\n".join(lines)


def format_batch(batch: Batch) -> str:
    """Format a batch as the data block of the prompt."""
    separator = "=" * 50
    header = f"Chunk {batch.index}/{batch.total} - {len(batch)} messages"
    body = "\n\n".join(format_record(r, i) for i, r in enumerate(batch.records, start=1))
    return f"{header}\n{separator}\n{body}\n{separator}\n"


def format_dataset(
    records: Sequence[MessageRecord],
    is_staff: Optional[Callable[[MessageRecord], bool]] = None,
) -> str:
    """Format the whole record set for unified mode, community first."""
    is_staff = is_staff or (lambda record: False)
    community = [r for r in records if not is_staff(r)]
    staff = [r for r in records if is_staff(r)]

    def render(items: list[MessageRecord], label: str) -> str:
        blocks = []
        for number, record in enumerate(items, start=1):
            kind = "Thread Reply" if record.is_thread_reply else "Top-level Message"
            blocks.append(
                f"**{label} {number}**\n"
                f"- **Channel:** {record.channel}\n"
                f"- **User:** {record.user}\n"
                f"- **Time:** {record.timestamp.isoformat()}\n"
                f"- **Content:** {record.text}\n"
                f"- **Link:** {record.permalink or ''}\n"
                f"- **Reactions:** {record.reaction_count}\n"
                f"- **Type:** {kind}"
            )
        return "\n\n".join(blocks) if blocks else "(none)"

    return (
        "## Raw Community Message Data\n\n"
        f"{render(community, 'Message')}\n\n"
        "## Staff Activity Data\n\n"
        f"{render(staff, 'Staff Message')}"
    )
