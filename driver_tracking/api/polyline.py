"""Decoder for the encoded polyline format used by Google Directions and OSRM.

Each coordinate is stored as the delta from the previous one, latitude then
longitude. A delta is a signed integer (degrees * 10^precision) written as
little-endian 5-bit groups, each offset by 63 to land in printable ASCII;
bit 0x20 marks "more groups follow". The low bit of the assembled value
carries the sign.
"""

from __future__ import annotations

from typing import List

from driver_tracking.api.models import Coordinate


def _read_value(encoded: str, index: int) -> tuple[int, int]:
    """Read one signed varint starting at ``index``; return (value, next_index)."""
    result = 0
    shift = 0
    while True:
        if index >= len(encoded):
            raise ValueError("Truncated polyline")
        byte = ord(encoded[index]) - 63
        if byte < 0 or byte > 63:
            raise ValueError(f"Invalid polyline character at offset {index}")
        index += 1
        result |= (byte & 0x1F) << shift
        shift += 5
        if byte < 0x20:
            break
    result &= 0xFFFFFFFF
    value = ~(result >> 1) if result & 1 else result >> 1
    return value, index


def decode_polyline(encoded: str, precision: int = 5) -> List[Coordinate]:
    """Decode ``encoded`` into a list of coordinates.

    Args:
        encoded: Polyline string, e.g. ``routes[0].overview_polyline.points``
        precision: Decimal digits of the encoding (5 for Google and OSRM's
            ``geometries=polyline``, 6 for ``polyline6``)

    Raises:
        ValueError: If the string is truncated or contains invalid characters
    """
    factor = 10 ** precision
    coordinates: List[Coordinate] = []
    index = 0
    lat = 0
    lng = 0

    while index < len(encoded):
        dlat, index = _read_value(encoded, index)
        dlng, index = _read_value(encoded, index)
        lat += dlat
        lng += dlng
        coordinates.append(Coordinate(lat / factor, lng / factor))

    return coordinates


__all__ = ["decode_polyline"]
