from datetime import datetime, timedelta

from emergency_dispatch import predictor as predictor_module
from emergency_dispatch.models import Incident, IncidentSeverity, IncidentType, Location
from emergency_dispatch.predictor import FEATURES, IncrementalIncidentPredictor

DOWNTOWN = Location("C1", "Downtown", 2, 2)
START = datetime(2024, 3, 4, 9, 0)


def test_untrained_model_returns_prior() -> None:
    model = IncrementalIncidentPredictor()

    assert not model.is_fitted
    assert model.predict_incident_probability(DOWNTOWN, START) == 0.5
    assert model.prediction_accuracy(DOWNTOWN) == 0.0
    assert model.weights() == {}


def test_feature_row_matches_calendar() -> None:
    features = IncrementalIncidentPredictor().extract_features(DOWNTOWN, datetime(2024, 12, 1, 12, 0))

    assert list(features.columns) == FEATURES
    row = features.iloc[0]
    assert row["time_of_day"] == 0.5
    assert row["day_of_week"] == 1.0
    assert row["historical_frequency"] == 0.05
    assert row["recent_trend"] == 0.0
    assert row["seasonal_pattern"] == 0.5


def test_probabilities_stay_in_unit_interval() -> None:
    model = IncrementalIncidentPredictor(learning_rate=0.1)

    for hour in range(48):
        model.record_actual(DOWNTOWN, START + timedelta(hours=hour), 1.0 if hour % 3 == 0 else 0.0)

    assert model.is_fitted
    for hour in range(24):
        probability = model.predict_incident_probability(DOWNTOWN, START + timedelta(hours=hour))
        assert 0.0 <= probability <= 1.0
    assert set(model.weights()) == set(FEATURES) | {"bias"}


def test_training_records_every_epoch() -> None:
    model = IncrementalIncidentPredictor()
    incidents = [
        Incident(f"INC-{index}", DOWNTOWN, IncidentType.MEDICAL, IncidentSeverity.HIGH, reported_at=START)
        for index in range(3)
    ]

    model.train(incidents, epochs=2)

    assert model.record_count(DOWNTOWN) == 6
    assert 0.0 <= model.prediction_accuracy(DOWNTOWN) <= 1.0
    assert set(model.model_performance()) == {DOWNTOWN}


def test_history_is_capped(monkeypatch) -> None:
    monkeypatch.setattr(predictor_module, "HISTORY_LIMIT", 5)
    model = IncrementalIncidentPredictor()

    for minute in range(8):
        model.record_actual(DOWNTOWN, START + timedelta(minutes=minute), 1.0)

    assert model.record_count(DOWNTOWN) == 5


def test_settings_are_clamped() -> None:
    model = IncrementalIncidentPredictor(learning_rate=5.0, training_epochs=0)

    assert model.learning_rate == 0.5
    assert model.training_epochs == 1

    model.set_learning_rate(0.0)
    model.set_training_epochs(5000)
    assert model.learning_rate == 0.001
    assert model.training_epochs == 1000


def test_reset_forgets_everything() -> None:
    model = IncrementalIncidentPredictor()
    model.record_actual(DOWNTOWN, START, 1.0)

    model.reset()

    assert not model.is_fitted
    assert model.record_count(DOWNTOWN) == 0
    assert model.predict_incident_probability(DOWNTOWN, START) == 0.5
