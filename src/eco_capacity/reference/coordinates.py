"""Known coordinates for sites registered without their own lat/lon."""

from __future__ import annotations

import re

from eco_capacity.schemas import Coordinates

# Keyed by normalized name (lowercase, whitespace removed).
KNOWN_COORDINATES: dict[str, tuple[Coordinates, str]] = {
    # Himachal Pradesh
    "manali": (Coordinates(lat=32.2396, lon=77.1887), "Manali"),
    "shimla": (Coordinates(lat=31.1048, lon=77.1734), "Shimla"),
    "dharamshala": (Coordinates(lat=32.2190, lon=76.3234), "Dharamshala"),
    "mcleodganj": (Coordinates(lat=32.2190, lon=76.3234), "McLeod Ganj"),
    "dalhousie": (Coordinates(lat=32.5448, lon=75.9600), "Dalhousie"),
    "kasol": (Coordinates(lat=32.0998, lon=77.3152), "Kasol"),
    "spitivalley": (Coordinates(lat=32.2466, lon=78.0265), "Spiti Valley"),
    "kinnaur": (Coordinates(lat=31.6089, lon=78.4697), "Kinnaur"),
    # Jammu and Kashmir / Ladakh
    "srinagar": (Coordinates(lat=34.0837, lon=74.7973), "Srinagar"),
    "gulmarg": (Coordinates(lat=34.0484, lon=74.3858), "Gulmarg"),
    "pahalgam": (Coordinates(lat=34.0169, lon=75.3312), "Pahalgam"),
    "sonamarg": (Coordinates(lat=34.2996, lon=75.2941), "Sonamarg"),
    "leh": (Coordinates(lat=34.1526, lon=77.5771), "Leh"),
    "katra": (Coordinates(lat=32.9916, lon=74.9455), "Katra"),
}

_WHITESPACE = re.compile(r"\s+")


def normalize(name: str) -> str:
    """``"Spiti Valley"`` → ``"spitivalley"``."""
    return _WHITESPACE.sub("", name.lower())


def lookup(*candidates: str) -> tuple[Coordinates, str] | None:
    """First registry hit among the candidate keys (site id, site name, ...)."""
    for candidate in candidates:
        if not candidate:
            continue
        hit = KNOWN_COORDINATES.get(normalize(candidate))
        if hit is not None:
            return hit
    return None
