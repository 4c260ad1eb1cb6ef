"""
Unit helpers (MeshData units -> report units)

Scans arrive in `mesh.unit` (mm by default). Every record the core produces
reports lengths in cm, areas in cm^2 and volumes in cm^3, so the conversion
rules live here instead of being repeated in each module.
"""

from __future__ import annotations

from typing import Optional


_CM_PER_UNIT = {
    "mm": 0.1,
    "cm": 1.0,
    "m": 100.0,
}


def normalize_unit(unit: Optional[str]) -> str:
    u = str(unit or "").strip().lower()
    if u in {"mm", "millimeter", "millimeters", "millimetre", "millimetres"}:
        return "mm"
    if u in {"cm", "centimeter", "centimeters", "centimetre", "centimetres"}:
        return "cm"
    if u in {"m", "meter", "meters", "metre", "metres"}:
        return "m"
    return "mm"


def length_to_cm(unit: Optional[str]) -> float:
    """Multiplier turning a length in `unit` into centimeters."""
    return _CM_PER_UNIT[normalize_unit(unit)]


def area_to_cm2(unit: Optional[str]) -> float:
    s = length_to_cm(unit)
    return s * s


def volume_to_cm3(unit: Optional[str]) -> float:
    s = length_to_cm(unit)
    return s * s * s
