"""
Tests for the key-value stores.
"""
import pytest

from secure_credentials.exceptions import StoreError
from secure_credentials.vault.backends import FileStore, MemoryStore


class TestMemoryStore:

    async def test_get_returns_present_keys(self):
        """Test get only returns keys that exist."""
        store = MemoryStore({"a": 1})
        assert await store.get(["a", "b"]) == {"a": 1}

    async def test_set_merges(self):
        """Test set updates keys without dropping others."""
        store = MemoryStore({"a": 1})
        await store.set({"b": 2})
        assert store.snapshot() == {"a": 1, "b": 2}
        assert store.writes == 1

    async def test_values_are_copied(self):
        """Test callers cannot mutate stored values in place."""
        store = MemoryStore()
        value = {"nested": [1]}
        await store.set({"a": value})
        value["nested"].append(2)
        fetched = await store.get(["a"])
        fetched["a"]["nested"].append(3)
        assert store.snapshot() == {"a": {"nested": [1]}}

    async def test_fail_next_set(self):
        """Test a simulated failure changes nothing and fires once."""
        store = MemoryStore({"a": 1})
        store.fail_next_set = True
        with pytest.raises(StoreError):
            await store.set({"a": 2, "b": 3})
        assert store.snapshot() == {"a": 1}
        assert store.writes == 0
        await store.set({"a": 2})
        assert store.snapshot() == {"a": 2}


class TestFileStore:

    async def test_missing_file_is_empty(self, tmp_path):
        """Test a store with no file reads as empty."""
        store = FileStore(tmp_path / "vault.json")
        assert await store.get(["a"]) == {}

    async def test_persists_across_instances(self, tmp_path):
        """Test the last write is read back by a new instance."""
        path = tmp_path / "nested" / "vault.json"
        await FileStore(path).set({"a": {"b": "c"}, "d": None})
        await FileStore(path).set({"e": 1})
        assert await FileStore(path).get(["a", "d", "e"]) == {
            "a": {"b": "c"}, "d": None, "e": 1,
        }

    async def test_no_temp_file_left(self, tmp_path):
        """Test atomic writes clean up after themselves."""
        path = tmp_path / "vault.json"
        await FileStore(path).set({"a": 1})
        assert [p.name for p in tmp_path.iterdir()] == ["vault.json"]

    async def test_invalid_json(self, tmp_path):
        """Test a damaged file is a StoreError."""
        path = tmp_path / "vault.json"
        path.write_text("{not json")
        with pytest.raises(StoreError):
            await FileStore(path).get(["a"])

    async def test_non_object(self, tmp_path):
        """Test the file must hold a JSON object."""
        path = tmp_path / "vault.json"
        path.write_text("[1, 2, 3]")
        with pytest.raises(StoreError):
            await FileStore(path).get(["a"])
