import random
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Dict, List

BASELINE_HR = 78
HIGH_HR = 125
LOW_HR = 45


def _clamp(x, lo, hi):
    return max(lo, min(hi, x))


@dataclass
class HealthData:
    heart_rate: int
    fall_detection_active: bool
    last_update: datetime = field(default_factory=datetime.now)

    def to_dict(self) -> Dict:
        return {
            "heartRate": self.heart_rate,
            "fallDetectionActive": self.fall_detection_active,
            "lastUpdate": self.last_update.isoformat(),
        }


class HealthSimulator:
    """
    Synthetic heart-rate and fall-detection feed.

    Each tick() draws a reading around the baseline and pushes it to every
    subscriber. The owner decides how often to tick.
    """

    def __init__(self, baseline: float = BASELINE_HR, noise: float = 5.0):
        self.baseline = baseline
        self.noise = noise
        self.heart_rate = float(baseline)
        self.fall_detection_active = True
        self._subscribers: List[Callable[[HealthData], None]] = []

    def current(self) -> HealthData:
        return HealthData(
            heart_rate=int(round(self.heart_rate)),
            fall_detection_active=self.fall_detection_active,
        )

    def subscribe(self, callback: Callable[[HealthData], None]) -> Callable[[], None]:
        """Register callback, deliver the current reading, return the unsubscribe handle."""
        self._subscribers.append(callback)
        callback(self.current())

        def unsubscribe():
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def tick(self) -> HealthData:
        variation = random.uniform(-self.noise, self.noise)
        self.heart_rate = _clamp(self.baseline + variation, 60, 100)
        return self._notify()

    # test hooks
    def simulate_high_heart_rate(self) -> HealthData:
        self.heart_rate = HIGH_HR
        return self._notify()

    def simulate_low_heart_rate(self) -> HealthData:
        self.heart_rate = LOW_HR
        return self._notify()

    def reset_to_normal(self) -> HealthData:
        self.heart_rate = self.baseline
        return self._notify()

    def toggle_fall_detection(self) -> HealthData:
        self.fall_detection_active = not self.fall_detection_active
        return self._notify()

    def _notify(self) -> HealthData:
        data = self.current()
        # copy: a callback may unsubscribe itself
        for callback in list(self._subscribers):
            callback(data)
        return data
