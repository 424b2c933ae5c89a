"""Airport coordinates used to turn airport codes into weather locations."""
from typing import Dict

from .models import Coordinates

AIRPORT_COORDINATES: Dict[str, Coordinates] = {
    "JFK": Coordinates(latitude=40.6413, longitude=-73.7781),
    "LGA": Coordinates(latitude=40.7769, longitude=-73.874),
    "EWR": Coordinates(latitude=40.6925, longitude=-74.1687),
    "LAX": Coordinates(latitude=33.9425, longitude=-118.4081),
    "SFO": Coordinates(latitude=37.6213, longitude=-122.379),
    "ORD": Coordinates(latitude=41.9742, longitude=-87.9073),
    "DFW": Coordinates(latitude=32.8998, longitude=-97.0403),
    "LHR": Coordinates(latitude=51.47, longitude=-0.4543),
    "CDG": Coordinates(latitude=49.0097, longitude=2.5479),
    "FRA": Coordinates(latitude=50.0379, longitude=8.5622),
    "AMS": Coordinates(latitude=52.3105, longitude=4.7683),
    "NRT": Coordinates(latitude=35.772, longitude=140.3929),
    "HND": Coordinates(latitude=35.5494, longitude=139.7798),
    "ICN": Coordinates(latitude=37.4602, longitude=126.4407),
    "RIX": Coordinates(latitude=56.9236, longitude=23.9711),
    "TLL": Coordinates(latitude=59.4133, longitude=24.8328),
    "VNO": Coordinates(latitude=54.6341, longitude=25.2858),
    "ARN": Coordinates(latitude=59.6519, longitude=17.9186),
    "CPH": Coordinates(latitude=55.6175, longitude=12.6531),
    "OSL": Coordinates(latitude=60.1976, longitude=11.1004),
    "HEL": Coordinates(latitude=60.3172, longitude=24.9633),
}
