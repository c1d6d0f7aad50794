"""
Read access to the station's sensor readings.

Readings (gas channels, environment, ML classification) are computed upstream and
written to the store keyed by push id; this module only fetches and validates them.
"""
import logging
from datetime import datetime, timezone
from typing import Optional

from pydantic import ValidationError as SchemaError

from config import Config
from database import RealtimeStore
from errors import NotFoundError, UpstreamError
from schemas import SensorReading, StationLocation

logger = logging.getLogger(__name__)

SENSOR_LOCATION = StationLocation(
    latitude=Config.SENSOR_LATITUDE,
    longitude=Config.SENSOR_LONGITUDE,
    name=Config.SENSOR_NAME,
)


def normalize_reading(raw: dict) -> dict:
    """Older firmware wrote the prediction block as `mL_prediction`."""
    data = dict(raw)
    if "mL_prediction" in data and "ml_prediction" not in data:
        data["ml_prediction"] = data.pop("mL_prediction")
    return data


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class SensorFeed:
    def __init__(
        self,
        store: RealtimeStore,
        collection: str = Config.READINGS_PATH,
        location: StationLocation = SENSOR_LOCATION,
    ):
        self.store = store
        self.collection = collection.strip("/")
        self.location = location

    def _parse(self, key: str, raw) -> Optional[SensorReading]:
        if not isinstance(raw, dict):
            return None
        try:
            reading = SensorReading.model_validate(normalize_reading(raw))
        except SchemaError as e:
            logger.warning("Skipping malformed reading %s: %s", key, e.errors()[:1])
            return None
        return reading.model_copy(update={"location": self.location})

    def latest(self) -> SensorReading:
        """Most recent reading by key order. Throttled reads are retried within the store timeout."""
        data = self.store.tail(self.collection, 1)
        if not isinstance(data, dict) or not data:
            raise NotFoundError("No sensor data available")

        key, raw = next(iter(data.items()))
        reading = self._parse(key, raw)
        if reading is None:
            raise UpstreamError(f"Latest reading {key} is malformed")
        logger.debug("Latest reading %s classified %s", key, reading.ml_prediction.classification.value)
        return reading

    def in_range(self, start: datetime, end: datetime) -> list[SensorReading]:
        """Readings with start <= timestamp <= end, oldest first, one per timestamp."""
        start, end = _as_utc(start), _as_utc(end)
        data = self.store.get(self.collection, retry=True)
        if not isinstance(data, dict):
            if data is None:
                return []
            raise UpstreamError("Sensor collection has an unexpected shape")

        by_time = {}
        for key, raw in data.items():
            reading = self._parse(key, raw)
            if reading is not None and start <= reading.timestamp <= end:
                by_time[reading.timestamp] = reading

        return [by_time[t] for t in sorted(by_time)]
