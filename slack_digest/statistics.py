"""Statistics aggregator for Slack Digest.

Calculates deterministic channel, topic, engagement, participation and
staff-response statistics over the full record set. These numbers are fed
to the LLM as a baseline and included verbatim in the final report.
"""

import bisect
import logging
from collections import Counter, defaultdict
from datetime import datetime
from typing import Optional, Sequence

from .config import ClassificationConfig
from .models import (
    ChannelStats,
    EngagementMetrics,
    MessageRecord,
    ResponseMetrics,
    StatisticsSnapshot,
    TopicStats,
    UserMetrics,
    UserStats,
    percent,
)

logger = logging.getLogger(__name__)

TOP_USERS_COUNT = 5


def format_date(value: datetime) -> str:
    """Format a date like 'Oct 1, 2025'."""
    return f"{value:%b} {value.day}, {value.year}"


def format_date_range(date_range: Optional[tuple[datetime, datetime]]) -> str:
    if not date_range:
        return "No data"
    return f"{format_date(date_range[0])} to {format_date(date_range[1])}"


class StatisticsAggregator:
    """Computes a StatisticsSnapshot from message records."""

    def __init__(self, classification: Optional[ClassificationConfig] = None):
        """
        Initialize aggregator.

        Args:
            classification: Topic table and staff partition (defaults apply
                when omitted)
        """
        self.classification = classification or ClassificationConfig()

    def is_staff(self, record: MessageRecord) -> bool:
        return self.classification.staff(record.user)

    def compute(self, records: Sequence[MessageRecord]) -> StatisticsSnapshot:
        """
        Calculate all statistics.

        Channel, topic, engagement and user figures cover community
        messages; staff messages feed the response metrics and the staff
        channel breakdown.

        Returns:
            StatisticsSnapshot
        """
        community = [r for r in records if not self.is_staff(r)]
        staff = [r for r in records if self.is_staff(r)]

        snapshot = StatisticsSnapshot(
            total_messages=len(records),
            community_messages=len(community),
            staff_messages=len(staff),
            date_range=self.calculate_date_range(records),
            channels=self.calculate_channel_stats(community),
            topics=self.calculate_topic_distribution(community),
            engagement=self.calculate_engagement(community),
            users=self.calculate_user_metrics(community),
            responses=self.calculate_response_metrics(community, staff),
            staff_channels=self.calculate_channel_stats(staff),
        )

        logger.info(
            f"Computed statistics: {snapshot.total_messages} messages "
            f"({snapshot.community_messages} community, {snapshot.staff_messages} staff), "
            f"{len(snapshot.channels)} channels, {len(snapshot.topics)} topics"
        )
        return snapshot

    @staticmethod
    def calculate_date_range(records: Sequence[MessageRecord]) -> Optional[tuple[datetime, datetime]]:
        if not records:
            return None
        timestamps = [r.timestamp for r in records]
        return min(timestamps), max(timestamps)

    @staticmethod
    def calculate_channel_stats(records: Sequence[MessageRecord]) -> list[ChannelStats]:
        """Per-channel counts, sorted by message count (most active first)."""
        counts = Counter()
        users = defaultdict(set)
        threads = Counter()
        reactions = Counter()

        for record in records:
            counts[record.channel] += 1
            users[record.channel].add(record.user)
            reactions[record.channel] += record.reaction_count
            if record.is_thread_reply:
                threads[record.channel] += 1

        total = len(records)
        channels = [
            ChannelStats(
                name=name,
                message_count=count,
                percentage=percent(count, total),
                active_users=len(users[name]),
                thread_replies=threads[name],
                reaction_count=reactions[name],
            )
            for name, count in counts.items()
        ]
        return sorted(channels, key=lambda c: c.message_count, reverse=True)

    def calculate_topic_distribution(self, records: Sequence[MessageRecord]) -> list[TopicStats]:
        """
        Classify each record into exactly one topic.

        The first topic whose keywords appear in the text wins; anything
        unmatched lands in the catch-all topic. Empty topics are dropped.
        """
        counts = Counter()
        channels = defaultdict(list)

        for record in records:
            topic = self.classification.classify(record.text)
            counts[topic] += 1
            if record.channel not in channels[topic]:
                channels[topic].append(record.channel)

        total = len(records)
        topics = [
            TopicStats(
                name=name,
                keywords=self.classification.keywords_for(name),
                message_count=counts[name],
                percentage=percent(counts[name], total),
                channels=channels[name],
            )
            for name in self.classification.topic_names
            if counts[name] > 0
        ]
        return sorted(topics, key=lambda t: t.message_count, reverse=True)

    @staticmethod
    def calculate_engagement(records: Sequence[MessageRecord]) -> EngagementMetrics:
        total = len(records)
        if total == 0:
            return EngagementMetrics()

        total_reactions = sum(r.reaction_count for r in records)
        with_reactions = sum(1 for r in records if r.reaction_count > 0)
        thread_replies = sum(1 for r in records if r.is_thread_reply)
        top_level = total - thread_replies

        most_reacted = None
        for record in records:
            if record.reaction_count > (most_reacted.reaction_count if most_reacted else 0):
                most_reacted = record

        return EngagementMetrics(
            total_reactions=total_reactions,
            messages_with_reactions=with_reactions,
            reaction_percentage=percent(with_reactions, total),
            top_level_messages=top_level,
            top_level_percentage=percent(top_level, total),
            thread_replies=thread_replies,
            thread_percentage=percent(thread_replies, total),
            average_reactions=round(total_reactions / total, 2),
            most_reacted=most_reacted,
        )

    @staticmethod
    def calculate_user_metrics(records: Sequence[MessageRecord]) -> UserMetrics:
        counts = Counter(r.user for r in records)
        channels = defaultdict(list)
        for record in records:
            if record.channel not in channels[record.user]:
                channels[record.user].append(record.channel)

        total = len(records)
        total_users = len(counts)
        ranked = sorted(counts.items(), key=lambda item: item[1], reverse=True)

        return UserMetrics(
            total_users=total_users,
            messages_per_user=round(total / total_users, 1) if total_users else 0.0,
            top_users=[
                UserStats(
                    name=name,
                    message_count=count,
                    percentage=percent(count, total),
                    channels=channels[name],
                )
                for name, count in ranked[:TOP_USERS_COUNT]
            ],
        )

    @staticmethod
    def calculate_response_metrics(
        community: Sequence[MessageRecord],
        staff: Sequence[MessageRecord],
    ) -> ResponseMetrics:
        """
        Estimate how many community questions got a staff reply.

        A question is any community message containing '?'. It counts as
        answered if a staff member posted later in the same channel; the
        response time is the gap to the earliest such post. This is a rough
        heuristic and is kept as-is.
        """
        staff_times = defaultdict(list)
        for record in staff:
            staff_times[record.channel].append(record.timestamp)
        for times in staff_times.values():
            times.sort()

        questions = [r for r in community if "?" in r.text]
        answered = 0
        total_hours = 0.0

        for question in questions:
            times = staff_times.get(question.channel, [])
            position = bisect.bisect_right(times, question.timestamp)
            if position < len(times):
                answered += 1
                total_hours += (times[position] - question.timestamp).total_seconds() / 3600

        return ResponseMetrics(
            total_questions=len(questions),
            answered_questions=answered,
            response_rate=percent(answered, len(questions)),
            average_response_hours=round(total_hours / answered, 1) if answered else None,
        )


def render_statistics_markdown(snapshot: StatisticsSnapshot) -> str:
    """Render the pre-calculated statistics as a markdown block."""
    lines = [
        "### Message Overview",
        f"- **Total Community Messages**: {snapshot.community_messages}",
        f"- **Total Staff Messages**: {snapshot.staff_messages}",
        f"- **Total Workspace Messages**: {snapshot.total_messages}",
        f"- **Community %**: {snapshot.community_percentage}%",
        f"- **Time Period**: {format_date_range(snapshot.date_range)}",
        "",
        "### Channel Breakdown (Community)",
    ]
    for ch in snapshot.channels:
        lines.append(
            f"- **{ch.name}**: {ch.message_count} msgs ({ch.percentage}%), {ch.active_users} users, "
            f"{ch.thread_replies} thread replies, {ch.reaction_count} reactions"
        )

    lines += ["", "### Topic Distribution (Community)"]
    for topic in snapshot.topics:
        lines.append(
            f"- **{topic.name}**: {topic.message_count} msgs ({topic.percentage}%) "
            f"across channels: {', '.join(topic.channels)}"
        )

    eng = snapshot.engagement
    lines += [
        "",
        "### Engagement Metrics (Community)",
        f"- **Total Reactions**: {eng.total_reactions}",
        f"- **Messages with Reactions**: {eng.messages_with_reactions} ({eng.reaction_percentage}%)",
        f"- **Average Reactions/Message**: {eng.average_reactions}",
        f"- **Top-level Messages**: {eng.top_level_messages} ({eng.top_level_percentage}%)",
        f"- **Thread Replies**: {eng.thread_replies} ({eng.thread_percentage}%)",
    ]
    if eng.most_reacted:
        link = eng.most_reacted.permalink or ""
        lines.append(
            f"- **Most Reacted**: [{eng.most_reacted.user}]({link}) "
            f"with {eng.most_reacted.reaction_count} reactions"
        )

    users = snapshot.users
    lines += [
        "",
        "### User Participation (Community)",
        f"- **Total Users**: {users.total_users}",
        f"- **Messages per User (avg)**: {users.messages_per_user}",
        "- **Top Contributors**:",
    ]
    for user in users.top_users:
        lines.append(
            f"  - {user.name}: {user.message_count} msgs ({user.percentage}%) "
            f"in {len(user.channels)} channels"
        )

    resp = snapshot.responses
    lines += [
        "",
        "### Staff Response Metrics",
        f"- **Community Questions**: {resp.total_questions}",
        f"- **Questions Answered by Staff**: {resp.answered_questions} ({resp.response_rate}% response rate)",
    ]
    if resp.average_response_hours is not None:
        lines.append(f"- **Average Response Time**: {resp.average_response_hours} hours")

    if snapshot.staff_channels:
        lines += ["", "### Staff Channel Activity"]
        for ch in snapshot.staff_channels:
            lines.append(f"- **{ch.name}**: {ch.message_count} msgs ({ch.percentage}% of staff activity)")

    return "\n".join(lines)
