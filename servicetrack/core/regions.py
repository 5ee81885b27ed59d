"""
Reference geography for the job map.

The marketplace serves the Dolnośląskie voivodeship. Listings without a
geocoded street address are placed on a centroid: a Wrocław district, a
regional city, or a well-known city elsewhere in Poland. The last group
exists only so those placeholder positions can be recognised and dropped
from the map.
"""

from __future__ import annotations

import unicodedata
from dataclasses import dataclass
from typing import Final


@dataclass(frozen=True)
class LatLng:
    lat: float
    lng: float


@dataclass(frozen=True)
class Bounds:
    south: float
    west: float
    north: float
    east: float

    def contains(self, lat: float, lng: float) -> bool:
        return self.south <= lat <= self.north and self.west <= lng <= self.east


# ---------------------------------------------------------------------------
# Region
# ---------------------------------------------------------------------------

REGION_BOUNDS: Final[Bounds] = Bounds(south=50.15, west=14.80, north=51.80, east=17.85)
REGION_CENTER: Final[LatLng] = LatLng(51.0, 16.35)

DISTRICT_CITY: Final[str] = "Wrocław"
DISTRICT_CITY_CENTER: Final[LatLng] = LatLng(51.1079, 17.0385)

WROCLAW_DISTRICTS: Final[dict[str, LatLng]] = {
    "Stare Miasto": LatLng(51.1100, 17.0320),
    "Śródmieście": LatLng(51.1180, 17.0580),
    "Krzyki": LatLng(51.0750, 17.0160),
    "Fabryczna": LatLng(51.1150, 16.9500),
    "Psie Pole": LatLng(51.1450, 17.0900),
    "Nadodrze": LatLng(51.1230, 17.0290),
    "Ołbin": LatLng(51.1220, 17.0480),
    "Biskupin": LatLng(51.1040, 17.1040),
    "Borek": LatLng(51.0840, 17.0080),
    "Gaj": LatLng(51.0700, 17.0500),
    "Grabiszyn": LatLng(51.0930, 16.9900),
    "Jagodno": LatLng(51.0480, 17.0580),
    "Karłowice": LatLng(51.1400, 17.0380),
    "Kozanów": LatLng(51.1450, 16.9630),
    "Leśnica": LatLng(51.1420, 16.8650),
    "Maślice": LatLng(51.1570, 16.9400),
    "Muchobór": LatLng(51.1050, 16.9550),
    "Nowy Dwór": LatLng(51.1200, 16.9580),
    "Oporów": LatLng(51.0800, 16.9650),
    "Partynice": LatLng(51.0580, 17.0020),
    "Popowice": LatLng(51.1300, 16.9900),
    "Sępolno": LatLng(51.1010, 17.0840),
    "Szczepin": LatLng(51.1180, 17.0030),
    "Tarnogaj": LatLng(51.0800, 17.0550),
    "Wojszyce": LatLng(51.0530, 17.0300),
    "Zacisze": LatLng(51.1250, 17.0850),
}

DOLNOSLASKIE_CITIES: Final[dict[str, LatLng]] = {
    "Wrocław": DISTRICT_CITY_CENTER,
    "Wałbrzych": LatLng(50.7714, 16.2843),
    "Legnica": LatLng(51.2070, 16.1553),
    "Jelenia Góra": LatLng(50.9044, 15.7194),
    "Lubin": LatLng(51.4000, 16.2015),
    "Głogów": LatLng(51.6636, 16.0845),
    "Świdnica": LatLng(50.8430, 16.4895),
    "Bolesławiec": LatLng(51.2614, 15.5697),
    "Oleśnica": LatLng(51.2094, 17.3832),
    "Dzierżoniów": LatLng(50.7282, 16.6514),
    "Oława": LatLng(50.9460, 17.2926),
    "Zgorzelec": LatLng(51.1500, 15.0083),
    "Bielawa": LatLng(50.6908, 16.6227),
    "Kłodzko": LatLng(50.4346, 16.6614),
    "Polkowice": LatLng(51.5036, 16.0731),
    "Jawor": LatLng(51.0526, 16.1935),
    "Kamienna Góra": LatLng(50.7843, 16.0307),
    "Nowa Ruda": LatLng(50.5803, 16.5016),
    "Świebodzice": LatLng(50.8595, 16.3195),
    "Złotoryja": LatLng(51.1263, 15.9198),
    "Lubań": LatLng(51.1180, 15.2890),
    "Trzebnica": LatLng(51.3104, 17.0630),
    "Strzelin": LatLng(50.7807, 17.0651),
    "Środa Śląska": LatLng(51.1644, 16.5947),
    "Milicz": LatLng(51.5272, 17.2715),
    "Ząbkowice Śląskie": LatLng(50.5895, 16.8124),
    "Kąty Wrocławskie": LatLng(51.0322, 16.7696),
    "Siechnice": LatLng(51.0361, 17.1475),
    "Sobótka": LatLng(50.8989, 16.7444),
    "Brzeg Dolny": LatLng(51.2726, 16.7191),
    "Wołów": LatLng(51.3374, 16.6406),
    "Chojnów": LatLng(51.2745, 15.9352),
    "Góra": LatLng(51.6674, 16.5434),
    "Bystrzyca Kłodzka": LatLng(50.2979, 16.6516),
    "Szklarska Poręba": LatLng(50.8275, 15.5229),
    "Karpacz": LatLng(50.7766, 15.7557),
}

# Centroids used as placeholders for listings outside the region.
OUT_OF_REGION_CITIES: Final[dict[str, LatLng]] = {
    "Warszawa": LatLng(52.2297, 21.0122),
    "Kraków": LatLng(50.0647, 19.9450),
    "Łódź": LatLng(51.7592, 19.4560),
    "Poznań": LatLng(52.4064, 16.9252),
    "Gdańsk": LatLng(54.3520, 18.6466),
    "Szczecin": LatLng(53.4285, 14.5528),
    "Katowice": LatLng(50.2649, 19.0238),
    "Opole": LatLng(50.6751, 17.9213),
    "Zielona Góra": LatLng(51.9356, 15.5062),
    "Lublin": LatLng(51.2465, 22.5684),
    "Bydgoszcz": LatLng(53.1235, 18.0084),
    "Białystok": LatLng(53.1325, 23.1688),
}


# ---------------------------------------------------------------------------
# Lookup helpers
# ---------------------------------------------------------------------------

def normalize_name(name: str) -> str:
    """Lowercase and strip diacritics (``Łódź`` -> ``lodz``)."""
    folded = name.strip().lower().replace("ł", "l")
    decomposed = unicodedata.normalize("NFKD", folded)
    return "".join(ch for ch in decomposed if not unicodedata.combining(ch))


def _lookup(table: dict[str, LatLng], name: str | None) -> LatLng | None:
    if not name:
        return None
    direct = table.get(name)
    if direct is not None:
        return direct
    wanted = normalize_name(name)
    for key, coords in table.items():
        if normalize_name(key) == wanted:
            return coords
    return None


def district_centroid(district: str | None) -> LatLng | None:
    return _lookup(WROCLAW_DISTRICTS, district)


def city_centroid(city: str | None) -> LatLng | None:
    return _lookup(DOLNOSLASKIE_CITIES, city)


def is_district_city(city: str | None) -> bool:
    return bool(city) and normalize_name(city) == normalize_name(DISTRICT_CITY)


def is_out_of_region_centroid(lat: float, lng: float) -> bool:
    """True when the point is exactly a placeholder centroid of a city
    outside the region."""
    return any(c.lat == lat and c.lng == lng for c in OUT_OF_REGION_CITIES.values())
