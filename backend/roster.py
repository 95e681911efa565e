"""
Per-company cache of enrollment face descriptors used as match candidates.
"""
import asyncio
import logging
from typing import Dict, List, Optional, Set, Tuple

import httpx
import numpy as np

from config import ROSTER_BATCH_SIZE
from errors import NotFoundError, TransientNetworkError

logger = logging.getLogger(__name__)


class RosterCache:
    """
    Labeled face descriptors for one company.

    Descriptors are computed from enrollment photos each session and never
    persisted. Labels are loaded in sequential batches; photos inside a batch
    are fetched and processed concurrently.
    """

    def __init__(self, api, recognizer, batch_size: int = ROSTER_BATCH_SIZE):
        self.api = api
        self.recognizer = recognizer
        self.batch_size = batch_size
        self.company_id: Optional[int] = None
        self._descriptors: Dict[str, np.ndarray] = {}
        self._pending: Set[str] = set()

    def __len__(self):
        return len(self._descriptors)

    def __contains__(self, label):
        return label in self._descriptors

    def entries(self) -> List[Tuple[str, np.ndarray]]:
        return list(self._descriptors.items())

    def clear(self):
        self._descriptors.clear()
        self._pending.clear()
        self.company_id = None

    async def load(self, company_id: int) -> List[Tuple[str, np.ndarray]]:
        """
        Load (or top up) the roster of ``company_id``.

        Switching to another company discards the current roster first. Labels
        already cached are skipped, so calling this again never duplicates
        entries and only retries labels that failed before.

        Raises:
            NotFoundError: the company does not exist
            TransientNetworkError: the label list could not be fetched
        """
        if self.company_id != company_id:
            if self.company_id is not None:
                logger.info(f"Switching roster from company {self.company_id} to {company_id}")
            self.clear()
            self.company_id = company_id

        labels, total = await self.api.roster(company_id)
        logger.info(f"Loading roster for company {company_id}: {total} enrolled users")

        for start in range(0, len(labels), self.batch_size):
            batch = labels[start:start + self.batch_size]
            await asyncio.gather(*(self._load_label(company_id, label) for label in batch))

        logger.info(f"Roster for company {company_id} ready with {len(self._descriptors)} descriptors")
        return self.entries()

    async def _load_label(self, company_id: int, label: str):
        if label in self._descriptors or label in self._pending:
            return
        self._pending.add(label)

        try:
            photo = await self.api.enrollment_photo(label, company_id)
            descriptor = await asyncio.to_thread(self.recognizer.extract_descriptor, photo)
        except NotFoundError:
            logger.error(f"No enrollment photo for {label}")
            return
        except TransientNetworkError as e:
            logger.error(f"Could not fetch enrollment photo for {label}: {e}")
            return
        except httpx.HTTPStatusError as e:
            logger.error(f"Enrollment photo request for {label} rejected: {e}")
            return
        finally:
            self._pending.discard(label)

        if descriptor is None:
            logger.error(f"No face detected in enrollment photo for {label}")
            return

        # A company switch while this label was in flight makes it stale
        if self.company_id != company_id:
            return
        self._descriptors[label] = np.asarray(descriptor, dtype=np.float32)
