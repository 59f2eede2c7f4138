"""
ML threat signal
Runs a pretrained URL classifier over the fixed feature vector and turns
confident phishing predictions into anomalies for the dispatcher.

The model itself is a black box: anything with a ``predict(vectors)`` method
returning one ``[safe_score, phishing_score]`` pair per input vector.
"""

import time

from loguru import logger

from errors import ClassifierUnavailable
from feature_extractor import extract_features
from threat_models import MLAnomaly, MLPrediction
from utils import hostname_of


MIN_CONFIDENCE = 0.6


class MLThreatSignal:
    """Classifier wrapper plus the prediction -> anomaly policy."""

    def __init__(self, model=None, clock=time.time):
        self.model = model
        self._clock = clock

    @property
    def is_ready(self):
        return self.model is not None

    def classify(self, url):
        return self.classify_batch([url])[0]

    def classify_batch(self, urls):
        """
        Raises:
            ClassifierUnavailable: no model is loaded
        """
        if self.model is None:
            raise ClassifierUnavailable('ML model not loaded')

        vectors = [extract_features(url) for url in urls]
        scores = self.model.predict(vectors)
        return [_to_prediction(pair) for pair in scores]

    def analyze_url(self, url):
        """
        Classify a URL and build an anomaly when the model is confident it is
        a threat. Any classifier failure means "no ML signal".
        """
        try:
            prediction = self.classify(url)
        except Exception as e:
            logger.error(f"[ML] Error analyzing URL: {e}")
            return None

        if not prediction.is_threat or prediction.confidence < MIN_CONFIDENCE:
            return None

        severity = severity_for_confidence(prediction.confidence)
        if severity in ('critical', 'high'):
            recommendation = 'block'
        elif severity == 'medium':
            recommendation = 'warn'
        else:
            recommendation = 'monitor'

        domain = hostname_of(url) or url
        logger.warning(f"[ML] Threat detected: {url[:60]} {prediction.category} "
                       f"{prediction.confidence * 100:.1f}% ({severity})")

        return MLAnomaly(
            target_id=domain,
            target_name=domain,
            detected_at=self._clock(),
            severity=severity,
            confidence=prediction.confidence,
            url=url,
            prediction=prediction,
            recommendation=recommendation,
        )


def severity_for_confidence(confidence):
    if confidence >= 0.95:
        return 'critical'
    if confidence >= 0.85:
        return 'high'
    if confidence >= 0.75:
        return 'medium'
    return 'low'


def _to_prediction(pair):
    safe_score, phishing_score = float(pair[0]), float(pair[1])
    is_threat = phishing_score > safe_score
    return MLPrediction(
        is_threat=is_threat,
        confidence=phishing_score if is_threat else safe_score,
        category='phishing' if is_threat else 'safe',
        scores=[safe_score, phishing_score],
    )
