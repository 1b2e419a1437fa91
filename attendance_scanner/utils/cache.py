"""
Reference descriptor cache module.

Keeps the last enrolled-identity list on disk so recognition can start
while the document store is unreachable.
"""

import hashlib
import os
import pickle
import time
from typing import Any, Dict, List, Optional, Tuple

from ..logging_config import get_logger

logger = get_logger(__name__)


def get_identities_hash(identities: List[Dict[str, Any]]) -> str:
    """
    Compute hash of an identity list for cache validation.

    Args:
        identities: List of {'id', 'descriptor', 'name'} dicts

    Returns:
        MD5 hash string
    """
    digest = hashlib.md5()
    for item in identities:
        digest.update(str(item.get('id', '')).encode())
        digest.update(str(item.get('name', '')).encode())
        digest.update(repr([float(v) for v in item.get('descriptor', [])]).encode())
    return digest.hexdigest()


def save_cache(identities: List[Dict[str, Any]], identities_hash: str, cache_file: str) -> None:
    """
    Save identity list to the cache file.

    Args:
        identities: List of identity dicts
        identities_hash: Hash of the list
        cache_file: Path to cache file
    """
    try:
        cache_data = {
            'identities': identities,
            'hash': identities_hash,
            'timestamp': time.time(),
        }

        with open(cache_file, 'wb') as f:
            pickle.dump(cache_data, f)

        logger.info(f'Cache saved for {len(identities)} identities')

    except OSError as e:
        logger.error(f'Failed to save cache: {e}')


def load_cache(cache_file: str) -> Tuple[Optional[List[Dict[str, Any]]], Optional[str]]:
    """
    Load identity list from the cache file.

    Args:
        cache_file: Path to cache file

    Returns:
        Tuple of (identities, hash) or (None, None) if cache is missing or invalid
    """
    if not os.path.exists(cache_file):
        logger.debug('Cache file not found')
        return None, None

    try:
        with open(cache_file, 'rb') as f:
            cache_data = pickle.load(f)

        age = time.time() - cache_data.get('timestamp', 0)
        logger.info(f'Cache found (age: {age:.0f} seconds)')

        return cache_data.get('identities'), cache_data.get('hash')

    except (OSError, pickle.UnpicklingError, EOFError, AttributeError) as e:
        logger.error(f'Failed to load cache: {e}')
        return None, None
