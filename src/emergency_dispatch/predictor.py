from __future__ import annotations

import math
import threading
from collections import deque
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Deque, Dict, Iterable, Optional

import numpy as np
import pandas as pd
from sklearn.linear_model import SGDRegressor

from emergency_dispatch.models import Incident, Location

FEATURES = ["time_of_day", "day_of_week", "historical_frequency", "recent_trend", "seasonal_pattern"]
MONTHLY_FACTORS = (0.6, 0.7, 0.8, 0.9, 1.0, 1.0, 1.0, 0.9, 0.8, 0.7, 0.6, 0.5)
HISTORY_LIMIT = 1000
DEFAULT_FREQUENCY = 0.5
PRIOR_PROBABILITY = 0.5


@dataclass(frozen=True)
class PredictionRecord:
    timestamp: datetime
    predicted: float
    actual: float

    @property
    def error(self) -> float:
        return abs(self.predicted - self.actual)


class IncrementalIncidentPredictor:
    """Online linear regression of incident occurrence per location and time.

    Runs beside the window-based demand model; repositioning does not consume it.
    """

    def __init__(self, learning_rate: float = 0.01, training_epochs: int = 100) -> None:
        self.learning_rate = self._clamp(learning_rate, 0.001, 0.5)
        self.training_epochs = int(self._clamp(training_epochs, 1, 1000))
        self.model = self._build_model(self.learning_rate)
        self._history: Dict[Location, Deque[PredictionRecord]] = {}
        self._lock = threading.RLock()

    @staticmethod
    def _clamp(value: float, low: float, high: float) -> float:
        return max(low, min(high, value))

    @staticmethod
    def _build_model(learning_rate: float) -> SGDRegressor:
        return SGDRegressor(learning_rate="constant", eta0=learning_rate, penalty=None, random_state=42)

    @property
    def is_fitted(self) -> bool:
        return hasattr(self.model, "coef_")

    def set_learning_rate(self, rate: float) -> None:
        self.learning_rate = self._clamp(rate, 0.001, 0.5)
        self.model.set_params(eta0=self.learning_rate)

    def set_training_epochs(self, epochs: int) -> None:
        self.training_epochs = int(self._clamp(epochs, 1, 1000))

    def _historical_frequency(self, location: Location) -> float:
        history = self._history.get(location)
        if not history:
            return DEFAULT_FREQUENCY
        return sum(record.actual for record in history) / len(history)

    def _recent_trend(self, location: Location, when: datetime) -> float:
        history = self._history.get(location)
        if not history or len(history) < 2:
            return 0.0
        cutoff = when - timedelta(hours=24)
        recent = [record.actual for record in history if record.timestamp > cutoff]
        if len(recent) < 2:
            return 0.0
        slope = np.polyfit(np.arange(len(recent)), np.asarray(recent, dtype=float), 1)[0]
        return float(slope)

    def extract_features(self, location: Location, when: datetime) -> pd.DataFrame:
        with self._lock:
            row = {
                "time_of_day": when.hour / 24.0,
                "day_of_week": when.isoweekday() / 7.0,
                "historical_frequency": min(self._historical_frequency(location) / 10.0, 1.0),
                "recent_trend": math.tanh(self._recent_trend(location, when)),
                "seasonal_pattern": MONTHLY_FACTORS[when.month - 1],
            }
        return pd.DataFrame([row], columns=FEATURES)

    def predict_incident_probability(self, location: Location, when: Optional[datetime] = None) -> float:
        when = when or datetime.now()
        with self._lock:
            if not self.is_fitted:
                return PRIOR_PROBABILITY
            prediction = self.model.predict(self.extract_features(location, when))[0]
        return float(np.clip(prediction, 0.0, 1.0))

    def record_actual(self, location: Location, when: datetime, occurred: float) -> PredictionRecord:
        with self._lock:
            features = self.extract_features(location, when)
            predicted = self.predict_incident_probability(location, when)
            record = PredictionRecord(when, predicted, float(occurred))
            self._history.setdefault(location, deque(maxlen=HISTORY_LIMIT)).append(record)
            self.model.partial_fit(features, [float(occurred)])
        return record

    def train(self, incidents: Iterable[Incident], epochs: Optional[int] = None) -> None:
        incidents = list(incidents)
        if not incidents:
            return
        for _ in range(epochs or self.training_epochs):
            for incident in incidents:
                self.record_actual(incident.location, incident.reported_at, 1.0)

    def record_count(self, location: Location) -> int:
        with self._lock:
            return len(self._history.get(location, ()))

    def prediction_accuracy(self, location: Location) -> float:
        """One minus the mean absolute error of past predictions at ``location``."""
        with self._lock:
            history = self._history.get(location)
            if not history:
                return 0.0
            return 1.0 - sum(record.error for record in history) / len(history)

    def model_performance(self) -> Dict[Location, float]:
        with self._lock:
            return {location: self.prediction_accuracy(location) for location in self._history}

    def weights(self) -> Dict[str, float]:
        if not self.is_fitted:
            return {}
        weights = dict(zip(FEATURES, (float(value) for value in self.model.coef_)))
        weights["bias"] = float(self.model.intercept_[0])
        return weights

    def reset(self) -> None:
        with self._lock:
            self.model = self._build_model(self.learning_rate)
            self._history.clear()
