import pytest

from errors import ClassifierUnavailable
from fakes import FakeModel
from ml_signal import MLThreatSignal, severity_for_confidence


def test_classify_requires_model():
    signal = MLThreatSignal()
    assert not signal.is_ready
    with pytest.raises(ClassifierUnavailable):
        signal.classify('http://example.com')
    assert signal.analyze_url('http://example.com') is None


def test_classify_batch(model):
    signal = MLThreatSignal(model)
    predictions = signal.classify_batch(['http://login-check.tk/', 'https://example.com/'])

    assert [p.category for p in predictions] == ['phishing', 'safe']
    assert predictions[0].confidence == pytest.approx(0.97)
    assert predictions[1].confidence == pytest.approx(0.9)
    assert len(model.last_vectors) == 2 and len(model.last_vectors[0]) == 20


def test_confident_threat_becomes_anomaly(model, clock):
    anomaly = MLThreatSignal(model, clock=clock).analyze_url('http://login-check.tk/verify')
    assert anomaly.type == 'ml-threat'
    assert anomaly.target_id == 'login-check.tk'
    assert anomaly.severity == 'critical'
    assert anomaly.recommendation == 'block'
    assert anomaly.detected_at == clock.now


@pytest.mark.parametrize('score,severity,recommendation', [
    (0.9, 'high', 'block'),
    (0.8, 'medium', 'warn'),
    (0.65, 'low', 'monitor'),
])
def test_recommendation_by_confidence(score, severity, recommendation):
    anomaly = MLThreatSignal(FakeModel(phishing_score=score)).analyze_url('http://login-check.tk/')
    assert anomaly.severity == severity
    assert anomaly.recommendation == recommendation


def test_low_confidence_is_ignored():
    assert MLThreatSignal(FakeModel(phishing_score=0.55)).analyze_url('http://login-check.tk/') is None


def test_safe_prediction_is_ignored(model):
    assert MLThreatSignal(model).analyze_url('https://example.com/') is None


def test_model_error_means_no_signal():
    signal = MLThreatSignal(FakeModel(error=RuntimeError('tensor shape mismatch')))
    assert signal.analyze_url('http://login-check.tk/') is None


def test_severity_thresholds():
    assert [severity_for_confidence(c) for c in (0.95, 0.85, 0.75, 0.6)] == ['critical', 'high', 'medium', 'low']
