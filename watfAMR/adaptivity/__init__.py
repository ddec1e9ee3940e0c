"""
Error estimation and the adaptation driver.
"""

from .error_estimator import ErrorEstimator, Z2ErrorEstimator, DummyErrorEstimator
from .driver import AdaptationDriver, AdaptationReport, AdaptationState
