"""Emission Calculations - Pure functions for CO2 math.

All functions are pure: same input always produces same output, no side effects.
"""

from types import MappingProxyType


# kg CO2 per declared unit (km, kg, kWh, litre, ...)
EMISSION_FACTORS = MappingProxyType({
    "Car Travel": 0.21,
    "Public Transport": 0.05,
    "Flight (Domestic)": 0.25,
    "Flight (International)": 0.3,
    "Motorcycle": 0.15,
    "Beef Consumption": 27.0,
    "Pork Consumption": 12.1,
    "Chicken Consumption": 6.9,
    "Fish Consumption": 4.2,
    "Dairy Products": 3.2,
    "Electricity Usage": 0.5,
    "Natural Gas": 2.3,
    "Heating Oil": 2.7,
    "Coal": 2.4,
    "Waste Generation": 0.5,
    "Water Usage": 0.0004,
    "Paper Usage": 3.3,
    "Plastic Usage": 6.0,
})

# Used when the activity name is not in EMISSION_FACTORS
CATEGORY_DEFAULT_FACTORS = MappingProxyType({
    "transport": 0.2,
    "food": 5.0,
    "energy": 0.5,
    "other": 1.0,
})

FALLBACK_FACTOR = 1.0


def emission_factor(activity_name: str, category: str) -> float:
    """Look up the per-unit factor for an activity.

    Args:
        activity_name: Activity name as entered by the user
        category: Activity category, used when the name is unknown

    Returns:
        kg CO2 per unit
    """
    factor = EMISSION_FACTORS.get(activity_name)
    if factor is None:
        return CATEGORY_DEFAULT_FACTORS.get(category, FALLBACK_FACTOR)
    return factor


def calculate_co2_emission(activity_name: str, amount: float, category: str) -> float:
    """Calculate the CO2 produced by an activity.

    The result is not rounded; callers format it for display.

    Args:
        activity_name: Activity name, e.g. "Beef Consumption"
        amount: Positive quantity in the activity's unit
        category: transport, food, energy or other

    Returns:
        Emission in kg CO2
    """
    return amount * emission_factor(activity_name, category)


def list_emission_factors() -> dict[str, float]:
    """Return a mutable copy of the known factors for display."""
    return dict(EMISSION_FACTORS)
