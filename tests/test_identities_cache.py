import numpy as np

from attendance_scanner.identities import load_reference_set
from attendance_scanner.store import MemoryStore, StoreError
from attendance_scanner.utils.cache import get_identities_hash, load_cache


class UnreachableStore:
    def list_enrolled_identities(self):
        raise StoreError('backend down')


def test_loads_and_caches(config):
    store = MemoryStore()
    store.add_identity('S1', [1.0, 0.0], name='Sara')

    references = load_reference_set(store, config)

    assert references.identity_ids == ('S1',)
    records, cached_hash = load_cache(config.cache_file)
    assert records == [{'id': 'S1', 'descriptor': [1.0, 0.0], 'name': 'Sara'}]
    assert cached_hash == get_identities_hash(records)


def test_falls_back_to_cache_when_store_unreachable(config):
    store = MemoryStore()
    store.add_identity('S1', [1.0, 0.0], name='Sara')
    load_reference_set(store, config)

    references = load_reference_set(UnreachableStore(), config)

    assert references.identity_ids == ('S1',)
    assert references.display_name('S1') == 'Sara'
    assert np.array_equal(references.matrix[0], [1.0, 0.0])


def test_empty_when_no_store_and_no_cache(config):
    references = load_reference_set(UnreachableStore(), config)

    assert references.is_empty()


def test_hash_changes_with_descriptor():
    first = get_identities_hash([{'id': 'S1', 'descriptor': [1.0, 0.0]}])
    second = get_identities_hash([{'id': 'S1', 'descriptor': [1.0, 0.5]}])

    assert first != second
