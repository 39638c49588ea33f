"""Tests for the Maildir backend against real temporary Maildir trees."""

import pytest

from mailbridge.backends.maildir import MaildirBackend
from mailbridge.config import MaildirConfig
from mailbridge.errors import NotFoundError, OutOfBoundsError
from mailbridge.flags import CustomFlag, Flag, Flags


@pytest.fixture
def backend(account, maildir_root, temp_dir):
    return MaildirBackend(account, MaildirConfig(root_dir=maildir_root), temp_dir / "ids.sqlite")


def subjects(envelopes):
    return [e.subject for e in envelopes]


class TestFolders:
    def test_list(self, backend, maildir_root):
        folders = backend.list_folders()
        assert [f.name for f in folders] == ["INBOX", "Sent", "sent"]
        assert folders[0].description == str(maildir_root)
        assert folders[2].description == "Sent"

    def test_list_without_aliases(self, account, maildir_root):
        backend = MaildirBackend(account, MaildirConfig(root_dir=maildir_root), list_aliases=False)
        assert [f.name for f in backend.list_folders()] == ["INBOX", "Sent"]

    def test_missing_root(self, account, temp_dir):
        backend = MaildirBackend(account, MaildirConfig(root_dir=temp_dir / "nowhere"))
        with pytest.raises(NotFoundError):
            backend.list_folders()

    def test_add_nested_folder(self, backend, maildir_root):
        backend.add_folder("Archive/2024")
        assert (maildir_root / ".Archive.2024" / "cur").is_dir()
        assert "Archive/2024" in [f.name for f in backend.list_folders()]

    def test_add_folder_custom_delimiter(self, account, maildir_root):
        backend = MaildirBackend(account, MaildirConfig(root_dir=maildir_root), delimiter=".")
        backend.add_folder("INBOX.Lists")
        assert (maildir_root / ".INBOX.Lists").is_dir()
        assert "INBOX.Lists" in [f.name for f in backend.list_folders()]

    def test_delete_folder(self, backend, maildir_root):
        backend.delete_folder("Sent")
        assert not (maildir_root / ".Sent").exists()

    def test_delete_missing_folder(self, backend):
        with pytest.raises(NotFoundError):
            backend.delete_folder("Nope")

    def test_create_root(self, account, temp_dir):
        backend = MaildirBackend(account, MaildirConfig(root_dir=temp_dir / "new"), create=True)
        assert (temp_dir / "new" / "new").is_dir()
        assert [f.name for f in backend.list_folders()][0] == "INBOX"


class TestFolderResolution:
    def test_inbox_is_root(self, backend, maildir_root):
        assert backend.folder_path("inbox") == maildir_root
        assert backend.folder_path("INBOX") == maildir_root

    def test_alias(self, backend, maildir_root):
        assert backend.folder_path("sent") == maildir_root / ".Sent"

    def test_absolute_path(self, backend, maildir_root):
        assert backend.folder_path(str(maildir_root / ".Sent")) == maildir_root / ".Sent"

    def test_missing(self, backend):
        with pytest.raises(NotFoundError):
            backend.folder_path("Drafts")


class TestListEnvelopes:
    def test_newest_first(self, backend):
        envelopes = backend.list_envelopes("INBOX", 10, 0)
        assert subjects(envelopes) == ["Subject 3", "Subject 2", "Subject 1"]
        assert envelopes[0].message_id == "msg3@example.com"
        assert envelopes[0].sender == "Alice"

    def test_aliases_are_stable(self, backend):
        first = backend.list_envelopes("INBOX", 10, 0)
        second = backend.list_envelopes("inbox", 10, 0)
        assert [e.id for e in first] == ["1", "2", "3"]
        assert [e.id for e in second] == ["1", "2", "3"]

    def test_flags(self, backend):
        envelopes = backend.list_envelopes("INBOX", 10, 0)
        assert envelopes[2].flags == Flags([Flag.SEEN])
        assert envelopes[0].flags == Flags()

    def test_pages(self, backend):
        assert subjects(backend.list_envelopes("INBOX", 2, 0)) == ["Subject 3", "Subject 2"]
        assert subjects(backend.list_envelopes("INBOX", 2, 1)) == ["Subject 1"]

    def test_page_at_end_is_empty(self, backend):
        assert backend.list_envelopes("INBOX", 3, 1) == []

    def test_page_out_of_bounds(self, backend):
        with pytest.raises(OutOfBoundsError) as exc_info:
            backend.list_envelopes("INBOX", 2, 2)
        assert (exc_info.value.page_begin, exc_info.value.total) == (4, 3)

    def test_page_size_zero_lists_all(self, backend):
        assert len(backend.list_envelopes("INBOX", 0, 5)) == 3

    def test_empty_folder(self, backend):
        assert backend.list_envelopes("Sent", 10, 0) == []

    def test_keys_as_ids_without_mapper(self, account, maildir_root):
        backend = MaildirBackend(account, MaildirConfig(root_dir=maildir_root))
        envelope = backend.list_envelopes("INBOX", 1, 0)[0]
        assert envelope.id != "1"
        assert backend.get_message("INBOX", envelope.id).message_id == "msg3@example.com"


class TestSearchEnvelopes:
    def test_subject(self, backend):
        assert subjects(backend.search_envelopes("INBOX", "subject:2", None, 10, 0)) == ["Subject 2"]

    def test_flag(self, backend):
        assert subjects(backend.search_envelopes("INBOX", "flag:seen", None, 10, 0)) == ["Subject 1"]

    def test_negated(self, backend):
        result = backend.search_envelopes("INBOX", "-flag:seen", None, 10, 0)
        assert subjects(result) == ["Subject 3", "Subject 2"]

    def test_all_with_sort(self, backend):
        result = backend.search_envelopes("INBOX", "all", "date:asc", 10, 0)
        assert subjects(result) == ["Subject 1", "Subject 2", "Subject 3"]

    def test_bare_word_matches_sender(self, backend):
        assert len(backend.search_envelopes("INBOX", "alice", None, 0, 0)) == 3

    def test_unknown_term(self, backend):
        with pytest.raises(ValueError):
            backend.search_envelopes("INBOX", "size:big", None, 10, 0)


class TestMessages:
    def test_add_and_get(self, backend, make_raw, maildir_root):
        raw = make_raw("new@example.com", "Fresh")
        new_id = backend.add_message("Sent", raw, Flags([Flag.SEEN, Flag.FLAGGED]))
        assert new_id == "1"
        assert backend.get_message("Sent", new_id).raw == raw
        files = list((maildir_root / ".Sent" / "cur").iterdir())
        assert len(files) == 1
        assert files[0].name.endswith(":2,FS")

    def test_get_unknown_alias(self, backend):
        with pytest.raises(NotFoundError):
            backend.get_message("INBOX", "99")

    def test_copy_round_trip(self, backend):
        source = backend.list_envelopes("INBOX", 10, 0)[0]
        new_id = backend.copy_message("INBOX", "Sent", source.id)

        copied = backend.get_message("Sent", new_id)
        assert copied.raw == backend.get_message("INBOX", source.id).raw
        assert backend.list_envelopes("Sent", 10, 0)[0].flags == Flags([Flag.SEEN])
        assert len(backend.list_envelopes("INBOX", 10, 0)) == 3

    def test_move(self, backend):
        source = backend.list_envelopes("INBOX", 10, 0)[0]
        backend.move_message("INBOX", "Sent", source.id)

        moved = [e for e in backend.list_envelopes("INBOX", 10, 0) if e.id == source.id][0]
        assert Flag.DELETED in moved.flags
        backend.expunge("INBOX")
        assert len(backend.list_envelopes("INBOX", 10, 0)) == 2
        assert subjects(backend.list_envelopes("Sent", 10, 0)) == [source.subject]

    def test_delete_then_expunge(self, backend):
        source = backend.list_envelopes("INBOX", 10, 0)[1]
        backend.delete_message("INBOX", source.id)
        assert len(backend.list_envelopes("INBOX", 10, 0)) == 3
        backend.expunge("INBOX")
        assert subjects(backend.list_envelopes("INBOX", 10, 0)) == ["Subject 3", "Subject 1"]


class TestFlags:
    def flags_of(self, backend, id):
        return [e for e in backend.list_envelopes("INBOX", 0, 0) if e.id == id][0].flags

    def test_add(self, backend):
        id = backend.list_envelopes("INBOX", 10, 0)[2].id
        backend.add_flags("INBOX", id, Flags([Flag.FLAGGED]))
        assert self.flags_of(backend, id) == Flags([Flag.SEEN, Flag.FLAGGED])

    def test_set(self, backend):
        id = backend.list_envelopes("INBOX", 10, 0)[2].id
        backend.set_flags("INBOX", id, Flags([Flag.ANSWERED]))
        assert self.flags_of(backend, id) == Flags([Flag.ANSWERED])

    def test_remove(self, backend):
        id = backend.list_envelopes("INBOX", 10, 0)[2].id
        backend.remove_flags("INBOX", id, Flags([Flag.SEEN]))
        assert self.flags_of(backend, id) == Flags()

    def test_supported_flags(self, backend):
        assert backend.supports_flag(Flag.DRAFT)
        assert backend.supports_flag(CustomFlag("Passed"))
        assert not backend.supports_flag(CustomFlag("$Forwarded"))

    def test_message_bytes_untouched(self, backend):
        id = backend.list_envelopes("INBOX", 10, 0)[0].id
        before = backend.get_message("INBOX", id).raw
        backend.add_flags("INBOX", id, Flags([Flag.SEEN, Flag.DRAFT]))
        assert backend.get_message("INBOX", id).raw == before
