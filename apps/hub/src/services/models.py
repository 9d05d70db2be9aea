from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Annotated, Optional

from pydantic import AfterValidator, BaseModel, ConfigDict, Field, TypeAdapter, field_validator


def _ensure_utc(timestamp: datetime) -> datetime:
    """Normalize timestamps so everything is compared in UTC."""
    if timestamp.tzinfo is None:
        return timestamp.replace(tzinfo=timezone.utc)
    return timestamp.astimezone(timezone.utc)


def _normalize_degrees(value: object) -> object:
    # A compass reading of exactly 360 is north.
    if isinstance(value, (int, float)) and not isinstance(value, bool) and value == 360:
        return 0
    return value


class _WireModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, frozen=True)


class WindSample(_WireModel):
    """A single wind observation, speeds in knots."""

    timestamp: datetime
    speed: float = Field(alias="windSpeedKnots", ge=0.0)
    gust: Optional[float] = Field(default=None, alias="windGustKnots", ge=0.0)
    max_gust: Optional[float] = Field(default=None, alias="maxGustKnots", ge=0.0)
    direction: int = Field(alias="windDir", ge=0, lt=360)
    direction_avg: Optional[int] = Field(default=None, alias="windDirAvg", ge=0, lt=360)
    temperature: Optional[float] = None
    humidity: Optional[float] = Field(default=None, ge=0.0, le=100.0)
    pressure: Optional[float] = Field(default=None, ge=0.0)

    @field_validator("timestamp")
    @classmethod
    def _utc_timestamp(cls, value: datetime) -> datetime:
        return _ensure_utc(value)

    @field_validator("direction", "direction_avg", mode="before")
    @classmethod
    def _wrap_north(cls, value: object) -> object:
        return _normalize_degrees(value)

    @property
    def temperature_c(self) -> Optional[float]:
        # Stations report Fahrenheit.
        if self.temperature is None:
            return None
        return (self.temperature - 32.0) * 5.0 / 9.0


class ForecastEntry(_WireModel):
    date: datetime
    hour: int = Field(alias="time", ge=0, le=23)
    speed: float = Field(ge=0.0)
    direction: int = Field(ge=0, lt=360)
    gust: float = Field(ge=0.0)
    precipitation_probability: Optional[int] = Field(default=None, alias="precipitationProbability", ge=0, le=100)
    wave_height: Optional[float] = Field(default=None, alias="waveHeight", ge=0.0)
    wave_direction: Optional[int] = Field(default=None, alias="waveDirection", ge=0, lt=360)
    wave_period: Optional[float] = Field(default=None, alias="wavePeriod", ge=0.0)
    corrected: Optional[bool] = None
    correction_factor: Optional[float] = Field(default=None, alias="correctionFactor")

    @field_validator("date")
    @classmethod
    def _utc_date(cls, value: datetime) -> datetime:
        return _ensure_utc(value)

    @field_validator("direction", "wave_direction", mode="before")
    @classmethod
    def _wrap_north(cls, value: object) -> object:
        return _normalize_degrees(value)

    @property
    def wave(self) -> Optional["WaveSample"]:
        if self.wave_height is None or self.wave_direction is None or self.wave_period is None:
            return None
        return WaveSample(height=self.wave_height, direction=self.wave_direction, period=self.wave_period)


def _chronological(entries: list[ForecastEntry]) -> list[ForecastEntry]:
    return sorted(entries, key=lambda entry: entry.date)


Forecast = Annotated[list[ForecastEntry], AfterValidator(_chronological)]


class WaveCondition(str, Enum):
    CALM = "calm"
    SLIGHT = "slight"
    MODERATE = "moderate"
    ROUGH = "rough"
    VERY_ROUGH = "very_rough"


class WaveSample(_WireModel):
    """Marine conditions: height in metres, period in seconds."""

    height: float = Field(ge=0.0)
    direction: int = Field(ge=0, lt=360)
    period: float = Field(ge=0.0)

    @field_validator("direction", mode="before")
    @classmethod
    def _wrap_north(cls, value: object) -> object:
        return _normalize_degrees(value)

    @property
    def condition(self) -> WaveCondition:
        if self.height < 0.3:
            return WaveCondition.CALM
        if self.height < 0.8:
            return WaveCondition.SLIGHT
        if self.height < 1.5:
            return WaveCondition.MODERATE
        if self.height < 2.5:
            return WaveCondition.ROUGH
        return WaveCondition.VERY_ROUGH


class TrendDirection(str, Enum):
    INCREASING_STRONG = "increasing_strong"
    INCREASING = "increasing"
    STABLE = "stable"
    DECREASING = "decreasing"
    DECREASING_STRONG = "decreasing_strong"
    INSUFFICIENT_DATA = "insufficient_data"


class DirectionStability(str, Enum):
    STABLE = "stable"
    VARIABLE = "variable"
    CHANGING = "changing"
    INSUFFICIENT_DATA = "insufficient_data"


class TrendSummary(_WireModel):
    """Last 30 minutes compared with the 30 minutes before."""

    trend: TrendDirection
    text: str = ""
    icon: str = ""
    color: str = ""
    change: float = 0.0
    percent_change: float = Field(default=0.0, alias="percentChange")
    current_speed: Optional[float] = Field(default=None, alias="currentSpeed", ge=0.0)
    previous_speed: Optional[float] = Field(default=None, alias="previousSpeed", ge=0.0)
    direction_trend: Optional[DirectionStability] = Field(default=None, alias="directionTrend")
    direction_spread: Optional[float] = Field(default=None, alias="directionSpread", ge=0.0)

    @property
    def has_data(self) -> bool:
        return self.trend is not TrendDirection.INSUFFICIENT_DATA


class HistoryEntry(_WireModel):
    time: str
    avg_speed: float = Field(ge=0.0)
    max_gust: float = Field(ge=0.0)
    direction: int = Field(ge=0, lt=360)

    @field_validator("direction", mode="before")
    @classmethod
    def _wrap_north(cls, value: object) -> object:
        return _normalize_degrees(value)


class HistoryDay(_WireModel):
    date: str
    entries: list[HistoryEntry] = Field(default_factory=list, alias="data")

    @property
    def average_speed(self) -> Optional[float]:
        if not self.entries:
            return None
        return sum(entry.avg_speed for entry in self.entries) / len(self.entries)

    @property
    def peak_gust(self) -> Optional[float]:
        if not self.entries:
            return None
        return max(entry.max_gust for entry in self.entries)


class WindStatistics(_WireModel):
    count: int = Field(ge=0)
    avg_speed: float = Field(ge=0.0)
    min_speed: float = Field(ge=0.0)
    max_speed: float = Field(ge=0.0)
    max_gust: Optional[float] = Field(default=None, ge=0.0)
    avg_direction: Optional[float] = Field(default=None, ge=0.0, le=360.0)

    @property
    def has_enough_data(self) -> bool:
        return self.count >= 3


class TimelineEntry(_WireModel):
    """Interval-aggregated measurement for today's chart."""

    hour: int = Field(ge=0, le=23)
    minute: Optional[int] = Field(default=None, ge=0, le=59)
    time: Optional[str] = None
    avg_speed: float = Field(ge=0.0)
    max_gust: Optional[float] = Field(default=None, ge=0.0)
    avg_direction: Optional[float] = Field(default=None, ge=0.0, le=360.0)
    measurements: Optional[int] = Field(default=None, ge=0)


class CurrentTime(_WireModel):
    hour: int = Field(ge=0, le=23)
    minute: int = Field(ge=0, le=59)


class TimelineSnapshot(_WireModel):
    history: list[TimelineEntry] = Field(default_factory=list)
    forecast: Forecast = Field(default_factory=list)
    correction_factor: float = Field(default=1.0, alias="correctionFactor")
    current_time: Optional[CurrentTime] = Field(default=None, alias="currentTime")


class StreamUpdate(_WireModel):
    """Payload of one `data:` line on the backend's SSE stream."""

    type: str
    data: WindSample
    trend: Optional[TrendSummary] = None
    timestamp: datetime

    @field_validator("timestamp")
    @classmethod
    def _utc_timestamp(cls, value: datetime) -> datetime:
        return _ensure_utc(value)


wind_sample_adapter: TypeAdapter[WindSample] = TypeAdapter(WindSample)
wind_history_adapter: TypeAdapter[list[WindSample]] = TypeAdapter(list[WindSample])
forecast_adapter: TypeAdapter[list[ForecastEntry]] = TypeAdapter(Forecast)
wave_list_adapter: TypeAdapter[list[WaveSample]] = TypeAdapter(list[WaveSample])
trend_adapter: TypeAdapter[TrendSummary] = TypeAdapter(TrendSummary)
week_history_adapter: TypeAdapter[list[HistoryDay]] = TypeAdapter(list[HistoryDay])
statistics_adapter: TypeAdapter[WindStatistics] = TypeAdapter(WindStatistics)
timeline_adapter: TypeAdapter[TimelineSnapshot] = TypeAdapter(TimelineSnapshot)
stream_update_adapter: TypeAdapter[StreamUpdate] = TypeAdapter(StreamUpdate)


__all__ = [
    "CurrentTime",
    "DirectionStability",
    "Forecast",
    "ForecastEntry",
    "HistoryDay",
    "HistoryEntry",
    "StreamUpdate",
    "TimelineEntry",
    "TimelineSnapshot",
    "TrendDirection",
    "TrendSummary",
    "WaveCondition",
    "WaveSample",
    "WindSample",
    "WindStatistics",
    "forecast_adapter",
    "stream_update_adapter",
    "statistics_adapter",
    "timeline_adapter",
    "trend_adapter",
    "wave_list_adapter",
    "week_history_adapter",
    "wind_history_adapter",
    "wind_sample_adapter",
]
