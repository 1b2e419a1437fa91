"""
Enrolled identity loading module.

Builds the reference set snapshot used for recognition, falling back to
the on-disk cache when the document store is unreachable.
"""

from typing import Any, List, Optional

from .config import Config
from .logging_config import get_logger
from .recognition.matching import ReferenceSet
from .recognition.types import EnrolledIdentity
from .store import StoreError, identity_from_record, identity_to_record
from .utils.cache import get_identities_hash, load_cache, save_cache

logger = get_logger(__name__)


def load_reference_set(store: Any, config: Config) -> ReferenceSet:
    """
    Load enrolled identities into an immutable reference set.

    Args:
        store: Object with list_enrolled_identities()
        config: Service configuration

    Returns:
        ReferenceSet (possibly empty)
    """
    logger.info('Loading enrolled identities...')

    try:
        identities = store.list_enrolled_identities()
    except StoreError as e:
        logger.error(f'Failed to load identities from store: {e}')
        cached = _load_cached_identities(config.cache_file)
        if cached is None:
            logger.warning('No cached identities available, recognition has no references')
            return ReferenceSet()
        logger.info(f'Using cached descriptors for {len(cached)} identities')
        return ReferenceSet(cached)

    _update_cache(identities, config.cache_file)

    references = ReferenceSet(identities)
    logger.info(f'Loaded {len(references)} enrolled identities')
    return references


def _update_cache(identities: List[EnrolledIdentity], cache_file: str) -> None:
    records = [identity_to_record(i) for i in identities]
    current_hash = get_identities_hash(records)

    _, cached_hash = load_cache(cache_file)
    if cached_hash == current_hash:
        logger.debug('Descriptor cache is up to date')
        return

    save_cache(records, current_hash, cache_file)


def _load_cached_identities(cache_file: str) -> Optional[List[EnrolledIdentity]]:
    records, _ = load_cache(cache_file)
    if records is None:
        return None

    identities = []
    for record in records:
        try:
            identities.append(identity_from_record(record))
        except (KeyError, TypeError, ValueError) as e:
            logger.warning(f'Skipping malformed cached record: {e}')
    return identities
