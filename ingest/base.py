"""Base ingestor abstract class.

Ingestors are the external collaborators that talk to third-party APIs. The
engine only sees their outcome: a list of already-normalized records, or an
exception.
"""
from abc import ABC, abstractmethod

from common.logger import get_logger
from common.models import AssetCode, DataSource, Record


class BaseIngestor(ABC):
    source: DataSource = DataSource.MANUAL

    def __init__(self):
        self.logger = get_logger(self.__class__.__name__)

    @abstractmethod
    async def fetch(self, asset: AssetCode) -> list[Record]:
        """Return normalized records for *asset*; raise on failure."""
        pass

    def validate(self, records: list[Record], asset: AssetCode) -> bool:
        return all(r.asset == asset for r in records)
