"""Central-bank scorer: policy-trajectory sub-score from a pluggable feed."""
from common.models import Dimension
from scoring.base import ExternalScorer


class CentralBankScorer(ExternalScorer):
    dimension = Dimension.CENTRAL_BANK
    label = "Central bank policy"
