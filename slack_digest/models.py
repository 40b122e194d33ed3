"""Data models for Slack Digest."""

import math
from dataclasses import dataclass, field, asdict
from datetime import datetime
from typing import Optional

from .errors import RecordValidationError


@dataclass(frozen=True)
class MessageRecord:
    """A single Slack message or thread reply from an export."""

    channel: str
    user: str
    text: str
    timestamp: datetime
    thread_parent: Optional[str] = None
    urls: tuple[str, ...] = ()
    permalink: Optional[str] = None
    is_thread_reply: bool = False
    message_type: str = "message"
    has_attachments: bool = False
    has_files: bool = False
    reaction_count: int = 0

    def __post_init__(self):
        if not isinstance(self.timestamp, datetime):
            raise RecordValidationError(
                f"timestamp must be a datetime, got {type(self.timestamp).__name__}",
                operation="validate_record",
            )
        if not self.channel:
            raise RecordValidationError("channel must not be empty", operation="validate_record")
        if not self.user:
            raise RecordValidationError(
                "user must not be empty", operation="validate_record", channel=self.channel
            )
        if self.is_thread_reply != (self.thread_parent is not None):
            raise RecordValidationError(
                "is_thread_reply must be set iff thread_parent is present",
                operation="validate_record",
                channel=self.channel,
                user=self.user,
            )
        if self.reaction_count < 0:
            raise RecordValidationError(
                f"reaction_count must be non-negative, got {self.reaction_count}",
                operation="validate_record",
            )

    def to_dict(self) -> dict:
        """Convert to JSON-serializable dictionary."""
        return {
            "channel": self.channel,
            "user": self.user,
            "text": self.text,
            "timestamp": self.timestamp.isoformat(),
            "threadParent": self.thread_parent,
            "urls": list(self.urls),
            "permalink": self.permalink,
            "isThreadReply": self.is_thread_reply,
            "messageType": self.message_type,
            "hasAttachments": self.has_attachments,
            "hasFiles": self.has_files,
            "reactionCount": self.reaction_count,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "MessageRecord":
        """Create from dictionary."""
        return cls(
            channel=data["channel"],
            user=data["user"],
            text=data.get("text", ""),
            timestamp=datetime.fromisoformat(data["timestamp"]),
            thread_parent=data.get("threadParent"),
            urls=tuple(data.get("urls", [])),
            permalink=data.get("permalink"),
            is_thread_reply=data.get("isThreadReply", False),
            message_type=data.get("messageType", "message"),
            has_attachments=data.get("hasAttachments", False),
            has_files=data.get("hasFiles", False),
            reaction_count=data.get("reactionCount", 0),
        )


@dataclass(frozen=True)
class Batch:
    """A contiguous slice of records sent to the LLM in one call."""

    index: int  # 1-based
    total: int
    records: tuple[MessageRecord, ...]
    token_estimate: int

    def __len__(self) -> int:
        return len(self.records)


@dataclass
class TokenUsage:
    """Token usage tracking."""

    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0

    def add(self, prompt: int, completion: int):
        """Add usage from a response."""
        self.prompt_tokens += prompt
        self.completion_tokens += completion
        self.total_tokens += prompt + completion

    def __add__(self, other: "TokenUsage") -> "TokenUsage":
        return TokenUsage(
            prompt_tokens=self.prompt_tokens + other.prompt_tokens,
            completion_tokens=self.completion_tokens + other.completion_tokens,
            total_tokens=self.total_tokens + other.total_tokens,
        )

    @classmethod
    def of(cls, prompt: int, completion: int) -> "TokenUsage":
        """Build usage from prompt and completion counts."""
        usage = cls()
        usage.add(prompt, completion)
        return usage

    def to_dict(self) -> dict:
        """Convert to JSON-serializable dictionary."""
        return asdict(self)


@dataclass(frozen=True)
class SummarizationResult:
    """Output of one successful LLM call for one batch."""

    batch_index: int
    summary: str
    usage: TokenUsage
    duration: float  # seconds, final attempt only
    attempts: int = 1


@dataclass(frozen=True)
class InsightSections:
    """The five named sections pulled out of the merged summary."""

    community_activity: str
    feature_feedback: str
    success_stories: str
    support_patterns: str
    emerging_trends: str

    def to_dict(self) -> dict:
        """Convert to JSON-serializable dictionary."""
        return {
            "communityActivity": self.community_activity,
            "featureFeedback": self.feature_feedback,
            "successStories": self.success_stories,
            "supportPatterns": self.support_patterns,
            "emergingTrends": self.emerging_trends,
        }


# ----------------------------------------------------------------------------
# Statistics
# ----------------------------------------------------------------------------

def percent(part: int, whole: int) -> int:
    """Whole-number percentage rounded half up; 0 when there is nothing to divide by."""
    if whole == 0:
        return 0
    return math.floor(100 * part / whole + 0.5)


@dataclass
class ChannelStats:
    """Activity for a single channel."""

    name: str
    message_count: int
    percentage: int
    active_users: int
    thread_replies: int
    reaction_count: int

    def to_dict(self) -> dict:
        """Convert to JSON-serializable dictionary."""
        return asdict(self)


@dataclass
class TopicStats:
    """Keyword-classified topic counts."""

    name: str
    keywords: list[str]
    message_count: int
    percentage: int
    channels: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        """Convert to JSON-serializable dictionary."""
        return asdict(self)


@dataclass
class EngagementMetrics:
    """Reaction and threading metrics."""

    total_reactions: int = 0
    messages_with_reactions: int = 0
    reaction_percentage: int = 0
    top_level_messages: int = 0
    top_level_percentage: int = 0
    thread_replies: int = 0
    thread_percentage: int = 0
    average_reactions: float = 0.0
    most_reacted: Optional[MessageRecord] = None

    def to_dict(self) -> dict:
        """Convert to JSON-serializable dictionary."""
        data = asdict(self)
        data["most_reacted"] = self.most_reacted.to_dict() if self.most_reacted else None
        return data


@dataclass
class UserStats:
    """Participation for a single author."""

    name: str
    message_count: int
    percentage: int
    channels: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        """Convert to JSON-serializable dictionary."""
        return asdict(self)


@dataclass
class UserMetrics:
    """Participation across all authors."""

    total_users: int = 0
    messages_per_user: float = 0.0
    top_users: list[UserStats] = field(default_factory=list)

    def to_dict(self) -> dict:
        """Convert to JSON-serializable dictionary."""
        return asdict(self)


@dataclass
class ResponseMetrics:
    """Estimated staff response coverage of community questions."""

    total_questions: int = 0
    answered_questions: int = 0
    response_rate: int = 0
    average_response_hours: Optional[float] = None

    def to_dict(self) -> dict:
        """Convert to JSON-serializable dictionary."""
        return asdict(self)


@dataclass
class StatisticsSnapshot:
    """Deterministic statistics over the full record set."""

    total_messages: int
    community_messages: int
    staff_messages: int
    date_range: Optional[tuple[datetime, datetime]] = None
    channels: list[ChannelStats] = field(default_factory=list)
    topics: list[TopicStats] = field(default_factory=list)
    engagement: EngagementMetrics = field(default_factory=EngagementMetrics)
    users: UserMetrics = field(default_factory=UserMetrics)
    responses: ResponseMetrics = field(default_factory=ResponseMetrics)
    staff_channels: list[ChannelStats] = field(default_factory=list)

    @property
    def community_percentage(self) -> int:
        if self.total_messages == 0:
            return 0
        return percent(self.community_messages, self.total_messages)

    def to_dict(self) -> dict:
        """Convert to JSON-serializable dictionary."""
        return {
            "totalMessages": self.total_messages,
            "communityMessages": self.community_messages,
            "staffMessages": self.staff_messages,
            "dateRange": (
                [self.date_range[0].isoformat(), self.date_range[1].isoformat()]
                if self.date_range else None
            ),
            "channels": [c.to_dict() for c in self.channels],
            "topics": [t.to_dict() for t in self.topics],
            "engagement": self.engagement.to_dict(),
            "users": self.users.to_dict(),
            "responses": self.responses.to_dict(),
            "staffChannels": [c.to_dict() for c in self.staff_channels],
        }


# ----------------------------------------------------------------------------
# Report and presentation
# ----------------------------------------------------------------------------

@dataclass(frozen=True)
class AggregatedReport:
    """Final merged analysis for one run."""

    batch_count: int
    total_messages: int
    usage: TokenUsage
    total_duration: float
    body: str
    insights: InsightSections
    generated_at: datetime
    unified: bool = False
    statistics: Optional[StatisticsSnapshot] = None

    def to_dict(self) -> dict:
        """Convert to JSON-serializable dictionary."""
        return {
            "totalChunks": self.batch_count,
            "totalMessages": self.total_messages,
            "totalTokens": self.usage.total_tokens,
            "tokenUsage": self.usage.to_dict(),
            "totalProcessingTime": self.total_duration,
            "markdownReport": self.body,
            "insights": self.insights.to_dict(),
            "generatedAt": self.generated_at.isoformat(),
            "unified": self.unified,
        }


@dataclass(frozen=True)
class PresentationResult:
    """A finished slide deck."""

    generation_id: str
    url: str


@dataclass(frozen=True)
class AnalysisProgress:
    """Progress event published while a run is in flight."""

    stage: str  # "batch_start", "batch_retry", "batch_end", ...
    current: int
    total: int
    status: str = "processing"  # processing, completed, error
    message: str = ""
