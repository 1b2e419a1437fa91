"""
Descriptor matching module.

Matches a face descriptor against the enrolled reference set using
nearest-neighbour distance. A match is accepted only below a fixed
threshold; anything farther is unknown rather than the closest identity.
"""

from dataclasses import dataclass
from typing import Dict, Iterable, Optional, Tuple

import numpy as np

from ..logging_config import get_logger
from .types import EnrolledIdentity

logger = get_logger(__name__)

METRICS = ('euclidean', 'cosine')


class ReferenceSet:
    """
    Immutable snapshot of enrolled reference descriptors.

    Descriptors are copied into a read-only matrix, so later writes to the
    source records never reach a snapshot that a tick is already using.
    """

    def __init__(self, identities: Iterable[EnrolledIdentity] = ()):
        ids = []
        rows = []
        names: Dict[str, str] = {}
        width: Optional[int] = None

        for identity in identities:
            descriptor = np.asarray(identity.descriptor, dtype=np.float64).ravel()
            if descriptor.size == 0:
                logger.warning(f'Identity {identity.identity_id} has an empty descriptor, skipping')
                continue
            if width is None:
                width = descriptor.size
            elif descriptor.size != width:
                logger.warning(
                    f'Identity {identity.identity_id} descriptor length {descriptor.size} '
                    f'!= {width}, skipping'
                )
                continue
            if identity.identity_id in names:
                # Later record wins, same as a keyed overwrite
                index = ids.index(identity.identity_id)
                rows[index] = descriptor.copy()
            else:
                ids.append(identity.identity_id)
                rows.append(descriptor.copy())
            names[identity.identity_id] = identity.display_name

        if rows:
            matrix = np.vstack(rows)
        else:
            matrix = np.zeros((0, width or 0))
        matrix.setflags(write=False)

        self._ids: Tuple[str, ...] = tuple(ids)
        self._matrix = matrix
        self._names = names

    @property
    def identity_ids(self) -> Tuple[str, ...]:
        return self._ids

    @property
    def matrix(self) -> np.ndarray:
        return self._matrix

    def is_empty(self) -> bool:
        return len(self._ids) == 0

    def display_name(self, identity_id: str) -> str:
        return self._names.get(identity_id, identity_id)

    def __len__(self) -> int:
        return len(self._ids)

    def __contains__(self, identity_id: str) -> bool:
        return identity_id in self._names


@dataclass(frozen=True)
class MatchResult:
    """Best match; identity_id is None when nothing is close enough."""

    identity_id: Optional[str]
    distance: float

    @property
    def matched(self) -> bool:
        return self.identity_id is not None


def descriptor_distances(
    descriptor: np.ndarray,
    matrix: np.ndarray,
    metric: str = 'euclidean'
) -> np.ndarray:
    """
    Distances from one descriptor to every row of a reference matrix.

    Args:
        descriptor: Query descriptor
        matrix: Reference descriptors, one per row
        metric: 'euclidean' or 'cosine' (1 - cosine similarity)

    Returns:
        Array of distances, one per row

    Raises:
        ValueError: On unknown metric or mismatched descriptor length
    """
    if metric not in METRICS:
        raise ValueError(f'Unknown distance metric: {metric}')

    query = np.asarray(descriptor, dtype=np.float64).ravel()
    if matrix.shape[0] and query.size != matrix.shape[1]:
        raise ValueError(
            f'Descriptor length {query.size} does not match references ({matrix.shape[1]})'
        )

    if metric == 'euclidean':
        return np.linalg.norm(matrix - query, axis=1)

    norms = np.linalg.norm(matrix, axis=1) * np.linalg.norm(query)
    # Zero vectors are as far as possible
    similarities = np.divide(
        matrix @ query, norms,
        out=np.full(matrix.shape[0], -1.0),
        where=norms > 0,
    )
    return 1.0 - similarities


def match_descriptor(
    descriptor: np.ndarray,
    references: ReferenceSet,
    threshold: float,
    metric: str = 'euclidean'
) -> MatchResult:
    """
    Find the nearest enrolled identity for a descriptor.

    Args:
        descriptor: Live face descriptor
        references: Reference snapshot
        threshold: Accept only if distance is strictly below this
        metric: Distance metric

    Returns:
        MatchResult with the identity, or identity None if unknown
    """
    if references.is_empty():
        return MatchResult(None, float('inf'))

    distances = descriptor_distances(descriptor, references.matrix, metric)
    best_idx = int(np.argmin(distances))
    best_distance = float(distances[best_idx])

    if best_distance < threshold:
        return MatchResult(references.identity_ids[best_idx], best_distance)

    return MatchResult(None, best_distance)
