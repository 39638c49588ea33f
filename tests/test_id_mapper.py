"""Tests for id mapper module."""

import pytest

from mailbridge.errors import MappingError, NotFoundError, UnknownAliasError
from mailbridge.id_mapper import DummyIdMapper, IdMapper


@pytest.fixture
def mapper(temp_dir):
    return IdMapper(temp_dir / "ids.sqlite", "test", "INBOX")


class TestIdMapper:
    def test_first_alias_is_one(self, mapper):
        assert mapper.get_or_create_alias("key-a") == "1"

    def test_idempotent(self, mapper):
        first = mapper.get_or_create_alias("key-a")
        mapper.get_or_create_alias("key-b")
        assert mapper.get_or_create_alias("key-a") == first

    def test_resolves_back(self, mapper):
        alias = mapper.get_or_create_alias("key-a")
        assert mapper.get_id(alias) == "key-a"

    def test_batch_preserves_order(self, mapper):
        mapper.get_or_create_alias("key-c")
        aliases = mapper.get_or_create_aliases(["key-a", "key-c", "key-b"])
        assert aliases == ["2", "1", "3"]
        assert mapper.get_ids(aliases) == ["key-a", "key-c", "key-b"]

    def test_repeated_lookups_keep_aliases_dense(self, mapper):
        ids = [f"key-{n}" for n in range(10)]
        for _ in range(5):
            assert mapper.get_or_create_aliases(ids) == [str(n) for n in range(1, 11)]
        for _ in range(5):
            assert mapper.get_or_create_alias("key-0") == "1"
        assert mapper.get_or_create_alias("fresh") == "11"

    def test_unknown_alias(self, mapper):
        with pytest.raises(UnknownAliasError):
            mapper.get_id("42")

    def test_unknown_alias_is_not_found_and_mapping_error(self, mapper):
        with pytest.raises(NotFoundError):
            mapper.get_id("42")
        with pytest.raises(MappingError):
            mapper.get_id("42")

    def test_scoped_per_folder(self, temp_dir):
        inbox = IdMapper(temp_dir / "ids.sqlite", "test", "INBOX")
        sent = IdMapper(temp_dir / "ids.sqlite", "test", "Sent")
        inbox.get_or_create_alias("key-a")
        assert sent.get_or_create_alias("key-b") == "1"
        assert inbox.get_id("1") == "key-a"
        assert sent.get_id("1") == "key-b"

    def test_scoped_per_account(self, temp_dir):
        work = IdMapper(temp_dir / "ids.sqlite", "work", "INBOX")
        home = IdMapper(temp_dir / "ids.sqlite", "home", "INBOX")
        work.get_or_create_alias("key-a")
        with pytest.raises(UnknownAliasError):
            home.get_id("1")

    def test_persists_across_instances(self, temp_dir):
        IdMapper(temp_dir / "ids.sqlite", "test", "INBOX").get_or_create_alias("key-a")
        assert IdMapper(temp_dir / "ids.sqlite", "test", "INBOX").get_id("1") == "key-a"

    def test_creates_parent_directory(self, temp_dir):
        mapper = IdMapper(temp_dir / "nested" / "dir" / "ids.sqlite", "test", "INBOX")
        assert mapper.get_or_create_alias("key-a") == "1"

    def test_unreachable_store(self, temp_dir):
        blocker = temp_dir / "file"
        blocker.write_text("not a directory")
        mapper = IdMapper(blocker / "ids.sqlite", "test", "INBOX")
        with pytest.raises(MappingError):
            mapper.get_or_create_alias("key-a")


class TestDummyIdMapper:
    def test_identity(self):
        mapper = DummyIdMapper()
        assert mapper.get_or_create_alias("key-a") == "key-a"
        assert mapper.get_id("key-a") == "key-a"
        assert mapper.get_or_create_aliases(["a", "b"]) == ["a", "b"]
