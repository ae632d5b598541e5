"""Turn raw socket frames into `RideOffer` objects.

The backend's `new_ride_request` payload is not fixed across environments:
coordinates may sit at the top level, inside a `pickup` or `pickup_location`
object (with named keys or a GeoJSON `coordinates` pair), or in a bare
`pickup_coordinates` array. Latitude and longitude are looked up separately,
each through an ordered list of extractor functions; the first extractor that
yields a number wins.
"""

from __future__ import annotations

from typing import Any, Callable, Dict, Optional, Sequence, Tuple

from captain.core.constants import DEFAULT_DROPOFF_ADDRESS, DEFAULT_PICKUP_ADDRESS
from captain.core.logger import get_logger
from captain.core.utils import coerce_float, coerce_optional_text, coerce_text
from captain.network.json_codec import FrameDecodeError, decode_frame
from captain.network.protocol import NEW_RIDE_REQUEST_ALIASES
from captain.rides.models import Coordinate, RideOffer

logger = get_logger("normalizer")

LATITUDE_KEYS: Tuple[str, ...] = ("pickup_lat", "pickup_latitude", "lat", "latitude")
LONGITUDE_KEYS: Tuple[str, ...] = (
    "pickup_lng",
    "pickup_lon",
    "pickup_longitude",
    "lng",
    "lon",
    "longitude",
)

# GeoJSON order: [longitude, latitude]
_LNG_INDEX = 0
_LAT_INDEX = 1

Extractor = Callable[[Dict[str, Any]], Optional[float]]


def _first_number(source: Any, keys: Sequence[str]) -> Optional[float]:
    if not isinstance(source, dict):
        return None
    for key in keys:
        value = coerce_float(source.get(key))
        if value is not None:
            return value
    return None


def _pair_component(pair: Any, index: int) -> Optional[float]:
    if not isinstance(pair, (list, tuple)) or len(pair) != 2:
        return None
    return coerce_float(pair[index])


def _nested(container: str, keys: Sequence[str], index: int) -> Extractor:
    def extract(payload: Dict[str, Any]) -> Optional[float]:
        nested = payload.get(container)
        if not isinstance(nested, dict):
            return None
        value = _first_number(nested, keys)
        if value is not None:
            return value
        return _pair_component(nested.get("coordinates"), index)

    extract.__name__ = f"from_{container}"
    return extract


def _top_level(keys: Sequence[str]) -> Extractor:
    def extract(payload: Dict[str, Any]) -> Optional[float]:
        return _first_number(payload, keys)

    extract.__name__ = "from_payload"
    return extract


def _coordinate_array(index: int) -> Extractor:
    def extract(payload: Dict[str, Any]) -> Optional[float]:
        return _pair_component(payload.get("pickup_coordinates"), index)

    extract.__name__ = "from_pickup_coordinates"
    return extract


def _extractors(keys: Sequence[str], index: int) -> Tuple[Extractor, ...]:
    return (
        _top_level(keys),
        _nested("pickup", keys, index),
        _nested("pickup_location", keys, index),
        _coordinate_array(index),
    )


LATITUDE_EXTRACTORS = _extractors(LATITUDE_KEYS, _LAT_INDEX)
LONGITUDE_EXTRACTORS = _extractors(LONGITUDE_KEYS, _LNG_INDEX)


def resolve(payload: Dict[str, Any], extractors: Sequence[Extractor]) -> Optional[float]:
    for extractor in extractors:
        value = extractor(payload)
        if value is not None:
            return value
    return None


def extract_pickup_location(payload: Dict[str, Any]) -> Optional[Coordinate]:
    lat = resolve(payload, LATITUDE_EXTRACTORS)
    lng = resolve(payload, LONGITUDE_EXTRACTORS)
    if lat is None or lng is None:
        return None
    coordinate = Coordinate(lat=lat, lng=lng)
    if not coordinate.is_valid():
        logger.debug("Discarding out-of-range pickup coordinate %s", coordinate)
        return None
    return coordinate


def _address(value: Any, default: str) -> str:
    return coerce_text(value) or default


def build_offer(payload: Dict[str, Any]) -> Optional[RideOffer]:
    ride_id = coerce_text(payload.get("ride_id"))
    if not ride_id:
        logger.warning("new_ride_request has empty ride_id; dropping")
        return None
    fare = coerce_float(payload.get("estimated_fare"))
    return RideOffer(
        ride_id=ride_id,
        pickup_address=_address(payload.get("pickup_address"), DEFAULT_PICKUP_ADDRESS),
        dropoff_address=_address(payload.get("dropoff_address"), DEFAULT_DROPOFF_ADDRESS),
        fare=fare if fare is not None else 0.0,
        customer_name=coerce_optional_text(payload.get("customer_name")),
        customer_rating=coerce_float(payload.get("customer_rating")),
        distance_km=coerce_float(payload.get("distance_km")),
        pickup_location=extract_pickup_location(payload),
    )


class EventNormalizer:
    """Decode one inbound frame into at most one ride offer."""

    def normalize(self, raw: Any) -> Optional[RideOffer]:
        try:
            frame = decode_frame(raw)
        except FrameDecodeError as exc:
            logger.debug("Dropping inbound frame: %s", exc)
            return None

        if frame.event not in NEW_RIDE_REQUEST_ALIASES:
            logger.debug("Ignoring event %r", frame.event)
            return None

        if frame.data is None:
            logger.warning("new_ride_request missing data payload; dropping")
            return None

        offer = build_offer(frame.data)
        if offer is not None:
            logger.info(
                "New ride offer ride_id=%s fare=%s pickup=%s",
                offer.ride_id,
                offer.fare,
                offer.pickup_location,
            )
        return offer


__all__ = [
    "EventNormalizer",
    "LATITUDE_EXTRACTORS",
    "LONGITUDE_EXTRACTORS",
    "build_offer",
    "extract_pickup_location",
]
