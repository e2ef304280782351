"""
Tbilisi district reference data.

Used to canonicalize district names coming from the AI step or the geocoding
provider, and to infer a district from coordinates when the provider does not
report one.
"""

import math
from typing import Dict, Optional, Tuple

# name -> ((lat, lng), radius in degrees)
DISTRICT_CENTERS: Dict[str, Tuple[Tuple[float, float], float]] = {
    "Vake": ((41.710, 44.750), 0.02),
    "Saburtalo": ((41.725, 44.770), 0.025),
    "Old Tbilisi": ((41.690, 44.805), 0.015),
    "Mtatsminda": ((41.695, 44.790), 0.015),
    "Didube": ((41.740, 44.780), 0.02),
    "Chugureti": ((41.715, 44.800), 0.015),
    "Nadzaladevi": ((41.750, 44.775), 0.02),
    "Gldani": ((41.790, 44.810), 0.03),
    "Isani": ((41.690, 44.840), 0.025),
    "Samgori": ((41.690, 44.870), 0.025),
    "Krtsanisi": ((41.660, 44.815), 0.02),
}

DISTRICT_ALIASES: Dict[str, str] = {
    # Georgian
    "ვაკე": "Vake",
    "საბურთალო": "Saburtalo",
    "ძველი თბილისი": "Old Tbilisi",
    "მთაწმინდა": "Mtatsminda",
    "დიდუბე": "Didube",
    "ჩუღურეთი": "Chugureti",
    "ნაძალადევი": "Nadzaladevi",
    "გლდანი": "Gldani",
    "ისანი": "Isani",
    "სამგორი": "Samgori",
    "კრწანისი": "Krtsanisi",
    # Russian
    "ваке": "Vake",
    "сабуртало": "Saburtalo",
    "старый тбилиси": "Old Tbilisi",
    "мтацминда": "Mtatsminda",
    "дидубе": "Didube",
    "чугурети": "Chugureti",
    "надзаладеви": "Nadzaladevi",
    "глдани": "Gldani",
    "исани": "Isani",
    "самгори": "Samgori",
    "крцаниси": "Krtsanisi",
    # English spellings
    "old town": "Old Tbilisi",
    "old city": "Old Tbilisi",
    "vake district": "Vake",
    "saburtalo district": "Saburtalo",
}

_CANONICAL_BY_KEY = {name.casefold(): name for name in DISTRICT_CENTERS}


def canonical_district(name: Optional[str]) -> Optional[str]:
    """
    Map a district name in any supported language to its English name.

    Unknown names are returned trimmed but otherwise untouched.

    Examples:
        canonical_district("ვაკე") -> "Vake"
        canonical_district(" saburtalo ") -> "Saburtalo"
        canonical_district("Dighomi") -> "Dighomi"
    """
    if not name:
        return None
    cleaned = " ".join(name.split())
    if not cleaned:
        return None
    key = cleaned.casefold()
    return _CANONICAL_BY_KEY.get(key) or DISTRICT_ALIASES.get(key) or cleaned


def district_for_coordinates(latitude: float, longitude: float) -> Optional[str]:
    """Nearest district whose radius covers the point, if any"""
    best_name = None
    best_distance = math.inf
    for name, ((center_lat, center_lng), radius) in DISTRICT_CENTERS.items():
        distance = math.hypot(latitude - center_lat, longitude - center_lng)
        if distance <= radius and distance < best_distance:
            best_name = name
            best_distance = distance
    return best_name


def district_center(name: Optional[str]) -> Optional[Tuple[float, float]]:
    canonical = canonical_district(name)
    if canonical in DISTRICT_CENTERS:
        return DISTRICT_CENTERS[canonical][0]
    return None


def find_district_in_text(text: Optional[str]) -> Optional[str]:
    """First known district mentioned anywhere in free text"""
    if not text:
        return None
    lowered = text.casefold()
    for alias, name in DISTRICT_ALIASES.items():
        if alias in lowered:
            return name
    for key, name in _CANONICAL_BY_KEY.items():
        if key in lowered:
            return name
    return None
