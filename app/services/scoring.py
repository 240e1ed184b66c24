from math import atan2, cos, radians, sin, sqrt

from app.models.dto import GuessResult

# Earth's radius in kilometers
EARTH_RADIUS_KM = 6371.0

# Guesses this far off or worse get the minimum score
MAX_SCORING_DISTANCE_KM = 5000.0


def calculate_distance(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """
    Great-circle distance between two points in decimal degrees, using the
    haversine formula.

    Returns:
        Distance in kilometers.
    """
    dlat = radians(lat2 - lat1)
    dlon = radians(lon2 - lon1)

    a = sin(dlat / 2) ** 2 + cos(radians(lat1)) * cos(radians(lat2)) * sin(dlon / 2) ** 2
    c = 2 * atan2(sqrt(a), sqrt(1 - a))

    return EARTH_RADIUS_KM * c


def calculate_score(distance_km: float) -> float:
    """Score from 10 (exact) down to 1 (5000 km or more), one decimal."""
    if distance_km == 0:
        return 10.0
    if distance_km >= MAX_SCORING_DISTANCE_KM:
        return 1.0
    score = max(1.0, 10 - (distance_km / MAX_SCORING_DISTANCE_KM) * 9)
    return round(score, 1)


def calculate_percentage(distance_km: float) -> float:
    """Percentage from 100 (exact) down to 0 (5000 km or more), one decimal."""
    if distance_km == 0:
        return 100.0
    if distance_km >= MAX_SCORING_DISTANCE_KM:
        return 0.0
    percentage = max(0.0, 100 - (distance_km / MAX_SCORING_DISTANCE_KM) * 100)
    return round(percentage, 1)


def score_guess(guess_lat: float, guess_lon: float, actual_lat: float, actual_lon: float) -> GuessResult:
    distance = calculate_distance(guess_lat, guess_lon, actual_lat, actual_lon)
    return GuessResult(
        distance=round(distance, 2),
        score=calculate_score(distance),
        percentage=calculate_percentage(distance),
        correct_location=(actual_lat, actual_lon),
        player_guess=(guess_lat, guess_lon),
    )
