"""
Canonical categories and the mappings into them.

Providers tag places with their own vocabularies (Google place types, OSM
amenity tags, Eventbrite categories). Everything is folded into one small set
of categories so interest matching, time affinity and diversity rules all talk
about the same thing.
"""
from typing import Dict, Iterable, List, Set

OTHER = "other"

CANONICAL_CATEGORIES: Set[str] = {
    "dining",
    "coffee",
    "bars",
    "nightlife",
    "live_music",
    "fitness",
    "outdoor",
    "culture",
    "arts",
    "entertainment",
    "shopping",
    "sports",
    "wellness",
    "family",
    "attractions",
    "events",
    OTHER,
}

# Provider tag -> canonical category. Order in a candidate's tag list decides ties.
TAG_TO_CATEGORY: Dict[str, str] = {
    # Google place types
    "restaurant": "dining",
    "meal_takeaway": "dining",
    "american_restaurant": "dining",
    "italian_restaurant": "dining",
    "mexican_restaurant": "dining",
    "japanese_restaurant": "dining",
    "sushi_restaurant": "dining",
    "pizza_restaurant": "dining",
    "seafood_restaurant": "dining",
    "steak_house": "dining",
    "brunch_restaurant": "coffee",
    "breakfast_restaurant": "coffee",
    "cafe": "coffee",
    "coffee_shop": "coffee",
    "bakery": "coffee",
    "tea_house": "coffee",
    "bar": "bars",
    "pub": "bars",
    "wine_bar": "bars",
    "brewery": "bars",
    "night_club": "nightlife",
    "dance_club": "nightlife",
    "karaoke": "nightlife",
    "live_music_venue": "live_music",
    "concert_hall": "live_music",
    "jazz_club": "live_music",
    "gym": "fitness",
    "fitness_center": "fitness",
    "yoga_studio": "fitness",
    "sports_complex": "sports",
    "stadium": "sports",
    "sports_club": "sports",
    "park": "outdoor",
    "hiking_area": "outdoor",
    "national_park": "outdoor",
    "botanical_garden": "outdoor",
    "beach": "outdoor",
    "museum": "culture",
    "cultural_center": "culture",
    "historical_landmark": "culture",
    "library": "culture",
    "art_gallery": "arts",
    "performing_arts_theater": "arts",
    "movie_theater": "entertainment",
    "bowling_alley": "entertainment",
    "amusement_park": "entertainment",
    "comedy_club": "entertainment",
    "arcade": "entertainment",
    "shopping_mall": "shopping",
    "clothing_store": "shopping",
    "book_store": "shopping",
    "farmers_market": "shopping",
    "spa": "wellness",
    "massage": "wellness",
    "zoo": "family",
    "aquarium": "family",
    "playground": "family",
    "tourist_attraction": "attractions",
    "observation_deck": "attractions",
    "event_venue": "events",
    "convention_center": "events",
    # OSM tags (amenity / tourism / leisure / shop values)
    "fast_food": "dining",
    "food_court": "dining",
    "theatre": "arts",
    "cinema": "entertainment",
    "arts_centre": "arts",
    "gallery": "arts",
    "attraction": "attractions",
    "garden": "outdoor",
    "sports_centre": "sports",
    "fitness_centre": "fitness",
    "fitness_station": "fitness",
    "mall": "shopping",
    "books": "shopping",
    "clothes": "shopping",
    "community_centre": "culture",
    # Eventbrite top-level categories
    "music": "live_music",
    "food & drink": "dining",
    "community & culture": "culture",
    "performing & visual arts": "arts",
    "film, media & entertainment": "entertainment",
    "sports & fitness": "sports",
    "health & wellness": "wellness",
    "family & education": "family",
}

# User-facing interest labels -> canonical category
INTEREST_ALIASES: Dict[str, str] = {
    "coffee & cafes": "coffee",
    "cafe": "coffee",
    "cafes": "coffee",
    "breakfast": "coffee",
    "restaurants": "dining",
    "food": "dining",
    "bars & nightlife": "nightlife",
    "music": "live_music",
    "live music": "live_music",
    "arts & culture": "culture",
    "art": "arts",
    "parks": "outdoor",
    "outdoors": "outdoor",
    "nature": "outdoor",
    "gym": "fitness",
    "movies": "entertainment",
    "museums": "culture",
    "kids": "family",
    "sightseeing": "attractions",
}

# Which categories fit which part of the day
TIME_AFFINITY: Dict[str, Set[str]] = {
    "morning": {"coffee", "fitness", "outdoor"},
    "afternoon": {"dining", "shopping", "culture", "outdoor", "arts"},
    "evening": {"dining", "nightlife", "entertainment", "live_music"},
    "night": {"nightlife", "bars", "live_music", "entertainment"},
}

# Categories that work at most times of day
ALL_DAY_CATEGORIES: Set[str] = {"dining", "entertainment"}


def normalize_interest(label: str) -> str:
    key = label.strip().lower()
    if key in CANONICAL_CATEGORIES:
        return key
    if key in INTEREST_ALIASES:
        return INTEREST_ALIASES[key]
    return TAG_TO_CATEGORY.get(key, key.replace(" ", "_"))


def normalize_interests(labels: Iterable[str]) -> List[str]:
    result: List[str] = []
    for label in labels:
        normalized = normalize_interest(label)
        if normalized not in result:
            result.append(normalized)
    return result


def resolve_category(tags: Iterable[str]) -> str:
    """First tag with a known mapping wins; canonical names pass through."""
    for tag in tags:
        key = tag.strip().lower()
        if key in CANONICAL_CATEGORIES and key != OTHER:
            return key
        if key in TAG_TO_CATEGORY:
            return TAG_TO_CATEGORY[key]
    return OTHER


def time_affinity(category: str, part_of_day: str) -> str:
    """Return 'perfect', 'good' or 'acceptable'."""
    if category in TIME_AFFINITY.get(part_of_day, set()):
        return "perfect"
    if category in ALL_DAY_CATEGORIES:
        return "good"
    return "acceptable"
