"""Configuration schema and validation for Slack Digest.

Two kinds of configuration live here:

- ``Settings``: runtime knobs (API keys, model, batch size, retry policy,
  slide-service limits), read once from the environment / ``.env``.
- ``ClassificationConfig``: the topic keyword table and the staff name
  markers used by the statistics aggregator, optionally loaded from JSON.

Both are immutable once built and are passed into components explicitly.
"""

import json
import os
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Mapping, Optional

from .errors import ConfigError


DEFAULT_MODEL = "gpt-4o"
DEFAULT_GAMMA_BASE_URL = "https://public-api.gamma.app/v0.2"


@dataclass(frozen=True)
class Settings:
    """Runtime settings for one pipeline run."""

    openai_api_key: Optional[str] = None
    gamma_api_key: Optional[str] = None
    model: str = DEFAULT_MODEL

    # Batching and LLM sampling
    batch_size: int = 25
    max_output_tokens: int = 12000
    temperature: float = 0.7
    top_p: float = 0.9

    # Retry policy (seconds)
    retry_attempts: int = 3
    retry_delay: float = 2.0
    inter_call_delay: float = 1.0
    request_timeout: float = 60.0

    # Slide generation
    gamma_base_url: str = DEFAULT_GAMMA_BASE_URL
    gamma_num_cards: int = 10
    poll_interval: float = 5.0
    max_poll_attempts: int = 60
    max_content_length: int = 750_000

    exports_dir: str = "exports"
    system_prompt: Optional[str] = None
    user_prompt_template: Optional[str] = None

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None) -> "Settings":
        """
        Build settings from environment variables.

        Args:
            env: Mapping to read from (defaults to ``os.environ``)

        Returns:
            Settings instance

        Raises:
            ConfigError: If a numeric variable cannot be parsed
        """
        env = os.environ if env is None else env

        return cls(
            openai_api_key=_clean_key(env.get("OPENAI_API_KEY")),
            gamma_api_key=_clean_key(env.get("GAMMA_API_KEY")),
            model=env.get("GPT_MODEL") or DEFAULT_MODEL,
            batch_size=_int(env, "CHUNK_SIZE", 25),
            max_output_tokens=_int(env, "MAX_OUTPUT_TOKENS", 12000),
            retry_attempts=_int(env, "RETRY_ATTEMPTS", 3),
            retry_delay=_int(env, "RETRY_DELAY_MS", 2000) / 1000,
            inter_call_delay=_int(env, "API_DELAY_MS", 1000) / 1000,
            gamma_base_url=env.get("GAMMA_BASE_URL") or DEFAULT_GAMMA_BASE_URL,
            exports_dir=env.get("EXPORTS_DIR") or "exports",
            system_prompt=env.get("GPT_SYSTEM_PROMPT") or None,
            user_prompt_template=env.get("GPT_USER_PROMPT") or None,
        )

    def with_overrides(self, **overrides) -> "Settings":
        """Return a copy with the given non-None fields replaced."""
        return replace(self, **{k: v for k, v in overrides.items() if v is not None})

    def validate(self) -> "Settings":
        """
        Check value ranges.

        Returns:
            self, for chaining

        Raises:
            ConfigError: On the first invalid value
        """
        if self.batch_size < 1:
            raise ConfigError(f"batch_size must be at least 1, got {self.batch_size}")
        if self.retry_attempts < 1:
            raise ConfigError(f"retry_attempts must be at least 1, got {self.retry_attempts}")
        if self.max_output_tokens < 1:
            raise ConfigError(f"max_output_tokens must be positive, got {self.max_output_tokens}")
        if self.retry_delay < 0 or self.inter_call_delay < 0 or self.poll_interval < 0:
            raise ConfigError("delays must not be negative")
        if self.max_poll_attempts < 1:
            raise ConfigError(f"max_poll_attempts must be at least 1, got {self.max_poll_attempts}")
        if self.max_content_length < 1000:
            raise ConfigError(f"max_content_length too small: {self.max_content_length}")
        return self


def _clean_key(value: Optional[str]) -> Optional[str]:
    """Strip whitespace and control characters that would break HTTP headers."""
    if value is None:
        return None
    cleaned = "".join(ch for ch in value.strip() if ch not in "\r\n\t")
    return cleaned or None


def _int(env: Mapping[str, str], name: str, default: int) -> int:
    raw = env.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise ConfigError(f"{name} must be an integer, got {raw!r}", operation="load_settings")


# ============================================================================
# Classification config: topics and staff markers
# ============================================================================

@dataclass(frozen=True)
class TopicRule:
    """A topic name and the keywords that select it."""

    name: str
    keywords: tuple[str, ...]

    def matches(self, text: str) -> bool:
        """Case-insensitive substring match against any keyword."""
        lowered = text.lower()
        return any(keyword in lowered for keyword in self.keywords)


@dataclass(frozen=True)
class StaffMatcher:
    """Decides whether an author belongs to the staff partition."""

    markers: tuple[str, ...] = ()
    names: frozenset[str] = frozenset()

    def __call__(self, user: str) -> bool:
        if user in self.names:
            return True
        return any(marker in user for marker in self.markers)


DEFAULT_TOPICS = (
    TopicRule("API Integration", ("api", "integration", "endpoint", "webhook", "authenticate")),
    TopicRule("Feature Requests", ("feature", "request", "wish", "would like", "should add", "need")),
    TopicRule("Bug Reports", ("bug", "error", "issue", "not working", "broken", "problem")),
    TopicRule("Template/Themes", ("template", "theme", "design", "style", "customize", "branding")),
    TopicRule("Images", ("image", "photo", "picture", "upload", "unsplash", "visual")),
    TopicRule("Pricing/Credits", ("pricing", "credit", "plan", "subscription", "cost", "paid")),
)

DEFAULT_CATCH_ALL_TOPIC = "General Discussion"

DEFAULT_STAFF_MARKERS = ("(Gamma", "( Gamma")


@dataclass(frozen=True)
class ClassificationConfig:
    """Topic table and staff partition used by the statistics aggregator."""

    topics: tuple[TopicRule, ...] = DEFAULT_TOPICS
    catch_all_topic: str = DEFAULT_CATCH_ALL_TOPIC
    staff: StaffMatcher = field(default_factory=lambda: StaffMatcher(markers=DEFAULT_STAFF_MARKERS))

    def classify(self, text: str) -> str:
        """Return the first matching topic name, or the catch-all topic."""
        for rule in self.topics:
            if rule.matches(text):
                return rule.name
        return self.catch_all_topic

    @property
    def topic_names(self) -> list[str]:
        return [rule.name for rule in self.topics] + [self.catch_all_topic]

    def keywords_for(self, topic: str) -> list[str]:
        for rule in self.topics:
            if rule.name == topic:
                return list(rule.keywords)
        return []

    @classmethod
    def from_dict(cls, data: dict) -> "ClassificationConfig":
        """Create ClassificationConfig from dictionary."""
        if not isinstance(data, dict):
            raise ConfigError("Classification config must be a JSON object")

        topics = DEFAULT_TOPICS
        if "topics" in data:
            topics = []
            for topic_data in data["topics"]:
                name = topic_data.get("name", "")
                if not name:
                    raise ConfigError("Topic missing required field: name")
                keywords = tuple(k.lower() for k in topic_data.get("keywords", []) if k)
                if not keywords:
                    raise ConfigError(f"Topic '{name}' needs at least one keyword")
                topics.append(TopicRule(name=name, keywords=keywords))
            topics = tuple(topics)

        staff = StaffMatcher(
            markers=tuple(data.get("staffMarkers", DEFAULT_STAFF_MARKERS)),
            names=frozenset(data.get("staffNames", [])),
        )

        return cls(
            topics=topics,
            catch_all_topic=data.get("catchAllTopic") or DEFAULT_CATCH_ALL_TOPIC,
            staff=staff,
        )

    @classmethod
    def load(cls, filepath: str) -> "ClassificationConfig":
        """Load classification config from a JSON file."""
        path = Path(filepath)
        if not path.exists():
            raise FileNotFoundError(f"Config file not found: {filepath}")

        with open(path, "r") as f:
            data = json.load(f)

        return cls.from_dict(data)


class ClassificationValidator:
    """Validates classification config files."""

    def __init__(self):
        self.errors: list[str] = []
        self.warnings: list[str] = []

    def validate(self, config_path: str) -> tuple[bool, list[str], list[str]]:
        """
        Validate a config file.

        Returns:
            Tuple of (is_valid, errors, warnings)
        """
        self.errors = []
        self.warnings = []

        path = Path(config_path)

        if not path.exists():
            self.errors.append(f"Config file not found: {config_path}")
            return False, self.errors, self.warnings

        try:
            with open(path, "r") as f:
                data = json.load(f)
        except json.JSONDecodeError as e:
            self.errors.append(f"Invalid JSON: {e}")
            return False, self.errors, self.warnings

        if not isinstance(data, dict):
            self.errors.append("Config must be a JSON object")
            return False, self.errors, self.warnings

        if "topics" in data:
            if not isinstance(data["topics"], list):
                self.errors.append("topics must be an array")
            else:
                seen = set()
                for i, topic in enumerate(data["topics"]):
                    if not isinstance(topic, dict):
                        self.errors.append(f"topics[{i}] must be an object")
                        continue
                    name = topic.get("name")
                    if not name:
                        self.errors.append(f"topics[{i}] missing name field")
                    elif name in seen:
                        self.warnings.append(f"topics[{i}] duplicates topic '{name}'")
                    seen.add(name)
                    keywords = topic.get("keywords")
                    if not isinstance(keywords, list) or not keywords:
                        self.errors.append(f"topics[{i}] needs a non-empty keywords array")
                if data.get("catchAllTopic") in seen:
                    self.warnings.append("catchAllTopic also appears in topics and will never match")

        for key in ("staffMarkers", "staffNames"):
            if key in data and not isinstance(data[key], list):
                self.errors.append(f"{key} must be an array")

        if "staffMarkers" not in data and "staffNames" not in data:
            self.warnings.append(
                "No staffMarkers or staffNames given; default markers will be used"
            )
        elif not data.get("staffMarkers") and not data.get("staffNames"):
            self.warnings.append("Staff partition is empty; response metrics will be zero")

        is_valid = len(self.errors) == 0
        return is_valid, self.errors, self.warnings
