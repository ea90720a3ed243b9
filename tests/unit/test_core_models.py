from datetime import datetime, timezone

from cryptkeep.core.models import (
    Aborted,
    BatchResult,
    CryptEntry,
    FileOutcome,
    IgnoreList,
    KeeperListing,
    OutcomeStatus,
)


def make_entry(**kw):
    values = dict(
        crypt_path="/crypt/docs/report.crypt",
        display_name="report.txt",
        nonce=b"\x01" * 12,
        original_path="/home/user/docs/report.txt",
        content_digest="ab" * 32,
        size_plain=10,
        size_container=60,
    )
    values.update(kw)
    return CryptEntry(**values)


def test_entry_defaults_and_name():
    entry = make_entry()
    assert entry.name == "report.crypt"
    assert entry.compressed is True
    assert entry.created_at.tzinfo is not None
    assert entry.modified_at == entry.created_at
    assert entry.remote_id is None


def test_entry_dict_roundtrip_keeps_nonce_and_times():
    created = datetime(2024, 1, 2, 3, 4, 5, tzinfo=timezone.utc)
    entry = make_entry(created_at=created, remote_id="remote/report.crypt")

    data = entry.to_dict()
    assert data["nonce"] == "01" * 12
    assert data["created_at"] == created.isoformat()

    back = CryptEntry.from_dict(data)
    assert back.nonce == entry.nonce
    assert back.created_at == created
    assert back.remote_id == "remote/report.crypt"
    assert back == entry


def test_naive_timestamps_are_read_as_utc():
    entry = make_entry(created_at="2024-05-01T10:00:00")
    assert entry.created_at.tzinfo == timezone.utc


def test_entry_identity_is_crypt_path():
    a = make_entry(display_name="one")
    b = make_entry(display_name="two")
    c = make_entry(crypt_path="/crypt/other.crypt")
    assert a == b
    assert a != c
    assert len({a, b, c}) == 2


def test_ignore_list_matches_directories_and_extensions():
    ignore = IgnoreList(directories=frozenset({"target"}), extensions=frozenset({".log", "tmp"}))

    assert ignore.ignores_directory("target")
    assert not ignore.ignores_directory("src")
    assert ignore.ignores_file("build.log")
    assert ignore.ignores_file("scratch.tmp")
    assert not ignore.ignores_file("log")
    assert not ignore.ignores_file("notes.txt")


def test_batch_result_summary_names_failures():
    result = BatchResult(
        outcomes=[
            FileOutcome(path="/a", status=OutcomeStatus.OK),
            FileOutcome(path="/b", status=OutcomeStatus.FAILED, error="boom", error_kind="io"),
        ],
        cancelled=True,
    )
    assert [o.path for o in result.succeeded] == ["/a"]
    assert [o.path for o in result.failed] == ["/b"]

    summary = result.summary()
    assert summary.splitlines()[0] == "1 succeeded, 1 failed (cancelled)"
    assert "/b: [io] boom" in summary


def test_aborted_compares_equal():
    assert Aborted() == Aborted()
    assert Aborted() != "Aborted"


def test_listing_to_dict():
    entry = make_entry()
    listing = KeeperListing(files=[entry], folders=["/crypt/docs"], missing=[entry])
    data = listing.to_dict()
    assert data["folders"] == ["/crypt/docs"]
    assert data["missing"] == ["/crypt/docs/report.crypt"]
    assert data["files"][0]["display_name"] == "report.txt"
