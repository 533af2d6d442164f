from .profiles import DepartureTimeProfile, ProfileSegment, load_profiles, profiles_from_yaml
from .trip_demand import TripDemand, TripDemandEntry, demand_from_yaml

__all__ = [
    "DepartureTimeProfile",
    "ProfileSegment",
    "TripDemand",
    "TripDemandEntry",
    "demand_from_yaml",
    "load_profiles",
    "profiles_from_yaml",
]
