import math
from enum import Enum
from typing import Any, Dict, Optional
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

CONTENT_KEY_PREFIX = "content_"

class ContentType(str, Enum):
    MOVIE = "movie"
    EPISODE = "episode"

class DetectorStatus(str, Enum):
    DETECTING = "detecting"
    DETECTED = "detected"
    ATTACHED = "attached"
    NO_VIDEO = "no-video"
    METADATA = "metadata"
    ERROR = "error"
    NAVIGATION = "navigation"


def is_number(value: Any) -> bool:
    if not isinstance(value, (int, float)) or isinstance(value, bool):
        return False
    try:
        return math.isfinite(value)
    except OverflowError:
        # ints beyond float range
        return False

def coerce_seconds(value: Any) -> float:
    """Non-numeric, non-finite and negative inputs all become 0."""
    if not is_number(value) or value < 0:
        return 0.0
    return float(value)

def coerce_marker(value: Any) -> Optional[int]:
    if is_number(value):
        return int(value)
    if isinstance(value, str):
        try:
            return int(value.strip())
        except ValueError:
            return None
    return None

def clean_text(value: Any) -> Optional[str]:
    """Trimmed string, or None when missing or blank."""
    if not isinstance(value, str):
        return None
    value = value.strip()
    return value or None

def clamp_percentage(value: float) -> float:
    if not is_number(value) or value < 0:
        return 0.0
    return min(float(value), 100.0)


class ProgressObservation(BaseModel):
    """Payload delivered by a content script on every progress tick."""
    model_config = ConfigDict(populate_by_name=True)

    url: str
    title: Optional[str] = None
    current_time: float = Field(default=0.0, alias="currentTime")
    duration: float = 0.0
    platform: Optional[str] = None
    type: Optional[str] = None
    episode_number: Optional[int] = Field(default=None, alias="episodeNumber")
    season_number: Optional[int] = Field(default=None, alias="seasonNumber")
    series_title: Optional[str] = Field(default=None, alias="seriesTitle")
    episode_name: Optional[str] = Field(default=None, alias="episodeName")
    original_title: Optional[str] = Field(default=None, alias="originalTitle")

    @field_validator("current_time", "duration", mode="before")
    @classmethod
    def _sanitize_seconds(cls, value: Any) -> float:
        return coerce_seconds(value)

    @field_validator("episode_number", "season_number", mode="before")
    @classmethod
    def _sanitize_markers(cls, value: Any) -> Optional[int]:
        return coerce_marker(value)

    @field_validator("title", "platform", "type", "series_title", "episode_name", "original_title", mode="before")
    @classmethod
    def _drop_non_strings(cls, value: Any) -> Optional[str]:
        return value if isinstance(value, str) else None

    @property
    def is_declared_episode(self) -> bool:
        return self.type == ContentType.EPISODE.value

    @property
    def has_episode_markers(self) -> bool:
        return self.episode_number is not None or self.season_number is not None

    @property
    def percent_complete(self) -> float:
        if self.duration <= 0:
            return 0.0
        return clamp_percentage(self.current_time / self.duration * 100)


class ProgressRecord(BaseModel):
    """Stored progress for one piece of content; persisted with camelCase names."""
    model_config = ConfigDict(populate_by_name=True, use_enum_values=True)

    url: str
    title: str
    current_time: float = Field(alias="currentTime")
    duration: float
    platform: Optional[str] = None
    content_type: ContentType = Field(alias="type")
    last_watched: str = Field(alias="lastWatched")
    percent_complete: float = Field(alias="percentComplete")
    episode_number: Optional[int] = Field(default=None, alias="episodeNumber")
    season_number: Optional[int] = Field(default=None, alias="seasonNumber")
    series_title: Optional[str] = Field(default=None, alias="seriesTitle")
    episode_name: Optional[str] = Field(default=None, alias="episodeName")
    original_title: Optional[str] = Field(default=None, alias="originalTitle")

    @classmethod
    def from_observation(cls, observation: ProgressObservation, last_watched: str) -> "ProgressRecord":
        title = observation.title or observation.series_title or observation.original_title or observation.url
        content_type = ContentType.EPISODE if observation.is_declared_episode else ContentType.MOVIE
        if observation.has_episode_markers:
            # Episode markers always win over the declared type
            content_type = ContentType.EPISODE
        return cls(
            url=observation.url,
            title=title,
            current_time=observation.current_time,
            duration=observation.duration,
            platform=observation.platform,
            content_type=content_type,
            last_watched=last_watched,
            percent_complete=observation.percent_complete,
            episode_number=observation.episode_number,
            season_number=observation.season_number,
            series_title=observation.series_title or None,
            episode_name=observation.episode_name or None,
            original_title=observation.original_title or None,
        )

    def to_store(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)

    @classmethod
    def from_store(cls, value: Any) -> Optional["ProgressRecord"]:
        if not cls.looks_valid(value):
            return None
        try:
            return cls.model_validate(value)
        except ValidationError:
            return None

    @staticmethod
    def looks_valid(value: Any) -> bool:
        """Shape check applied to raw store values before they are trusted."""
        if not isinstance(value, dict):
            return False
        return (
            isinstance(value.get("url"), str)
            and isinstance(value.get("title"), str)
            and is_number(value.get("currentTime"))
            and is_number(value.get("duration"))
            and isinstance(value.get("lastWatched"), str)
            and is_number(value.get("percentComplete"))
            and value.get("type") in (ContentType.MOVIE.value, ContentType.EPISODE.value)
        )


class TelemetryEntry(BaseModel):
    """Latest health report of one detector on one platform."""
    model_config = ConfigDict(use_enum_values=True)

    platform: Optional[str] = None
    detector: Optional[str] = None
    status: DetectorStatus = Field(default=DetectorStatus.DETECTING, validate_default=True)
    url: Optional[str] = None
    details: Dict[str, Any] = Field(default_factory=dict)
    timestamp: Optional[float] = None  # epoch milliseconds

    @field_validator("platform", "detector", "url", mode="before")
    @classmethod
    def _clean_strings(cls, value: Any) -> Optional[str]:
        return clean_text(value)

    @field_validator("status", mode="before")
    @classmethod
    def _default_status(cls, value: Any) -> str:
        if isinstance(value, DetectorStatus):
            return value.value
        valid = {status.value for status in DetectorStatus}
        return value if isinstance(value, str) and value in valid else DetectorStatus.DETECTING.value

    @field_validator("details", mode="before")
    @classmethod
    def _details_mapping(cls, value: Any) -> Dict[str, Any]:
        return dict(value) if isinstance(value, dict) else {}

    @field_validator("timestamp", mode="before")
    @classmethod
    def _drop_bad_timestamp(cls, value: Any) -> Optional[float]:
        return float(value) if is_number(value) else None

    @property
    def identity(self) -> tuple:
        return ((self.platform or "").lower(), (self.detector or "").lower())


DEFAULT_TELEMETRY_RETENTION_HOURS = 24
DEFAULT_HEARTBEAT_SECONDS = 300
MIN_HEARTBEAT_SECONDS = 30

class UserSettings(BaseModel):
    """User-adjustable preferences persisted alongside the progress data."""
    model_config = ConfigDict(populate_by_name=True)

    debug_logging_enabled: bool = Field(default=False, alias="debugLoggingEnabled")
    detector_telemetry_retention_hours: int = Field(
        default=DEFAULT_TELEMETRY_RETENTION_HOURS, alias="detectorTelemetryRetentionHours"
    )
    detector_heartbeat_seconds: int = Field(default=DEFAULT_HEARTBEAT_SECONDS, alias="detectorHeartbeatSeconds")

    @field_validator("debug_logging_enabled", mode="before")
    @classmethod
    def _strict_bool(cls, value: Any) -> bool:
        return value if isinstance(value, bool) else False

    @field_validator("detector_telemetry_retention_hours", mode="before")
    @classmethod
    def _retention_floor(cls, value: Any) -> int:
        if not is_number(value):
            return DEFAULT_TELEMETRY_RETENTION_HOURS
        return max(1, int(value))

    @field_validator("detector_heartbeat_seconds", mode="before")
    @classmethod
    def _heartbeat_floor(cls, value: Any) -> int:
        if not is_number(value):
            return DEFAULT_HEARTBEAT_SECONDS
        return max(MIN_HEARTBEAT_SECONDS, int(value))

    def to_store(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True)
