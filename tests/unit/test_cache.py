"""Handler cache tests: entries keyed by primitive id and handler fingerprint."""
import pytest

from primitive_runtime.kernel.cache import HandlerCache


@pytest.fixture
def cache():
    return HandlerCache()


class TestHandlerCache:
    def test_second_lookup_reuses_the_compiled_handler(self, cache):
        first = cache.get_or_compile("prim-1", "return 1")
        second = cache.get_or_compile("prim-1", "return 1")
        assert first is second
        assert len(cache) == 1

    def test_changed_text_compiles_a_new_entry(self, cache):
        old = cache.get_or_compile("prim-1", "return 1")
        new = cache.get_or_compile("prim-1", "return 2")
        assert old is not new
        assert new({}, None) == 2
        assert ("prim-1", "return 2") in cache

    def test_invalidate_drops_every_fingerprint_for_the_id(self, cache):
        cache.get_or_compile("prim-1", "return 1")
        cache.get_or_compile("prim-1", "return 2")
        cache.get_or_compile("prim-2", "return 3")

        assert cache.invalidate("prim-1") == 2
        assert ("prim-1", "return 1") not in cache
        assert ("prim-2", "return 3") in cache

    def test_invalidate_unknown_id_is_a_noop(self, cache):
        assert cache.invalidate("prim-missing") == 0

    def test_clear(self, cache):
        cache.get_or_compile("prim-1", "return 1")
        cache.clear()
        assert len(cache) == 0
