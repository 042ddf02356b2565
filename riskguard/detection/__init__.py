# Detection Modules
from .card_testing import CardTestingDetector, CardTestingThresholds, is_card_testing_attempt

__all__ = [
    "CardTestingDetector",
    "CardTestingThresholds",
    "is_card_testing_attempt",
]
