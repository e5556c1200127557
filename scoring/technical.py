"""Technical scorer: price-action sub-score from a pluggable feed."""
from common.models import Dimension
from scoring.base import ExternalScorer


class TechnicalScorer(ExternalScorer):
    dimension = Dimension.TECHNICAL
    label = "Technical price action"
