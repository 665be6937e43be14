from datetime import datetime, timedelta, timezone

import pytest

from tokensmith.storage.models import AccessRecord, CredentialPair, RefreshRecord


@pytest.fixture
def pair():
    issued = datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)
    return CredentialPair(
        username="alice",
        access_token="acc",
        refresh_token="ref",
        issued_at=issued,
        access_expiry=issued + timedelta(minutes=30),
        refresh_expiry=issued + timedelta(hours=8),
    )


def test_index_records_point_at_their_partner(pair):
    assert pair.access_record() == AccessRecord("alice", "ref", pair.access_expiry)
    assert pair.refresh_record() == RefreshRecord("alice", "acc", pair.refresh_expiry)


def test_serialized_form_is_stable(pair):
    # compare_and_delete relies on byte-identical values
    assert pair.to_json() == CredentialPair.from_json(pair.to_json()).to_json()
    assert '"access_expiry": "2024-01-01T12:30:00+00:00"' in pair.to_json()


def test_non_utc_timestamps_normalized(pair):
    shifted = timezone(timedelta(hours=2))
    local = CredentialPair(
        username=pair.username,
        access_token=pair.access_token,
        refresh_token=pair.refresh_token,
        issued_at=pair.issued_at.astimezone(shifted),
        access_expiry=pair.access_expiry.astimezone(shifted),
        refresh_expiry=pair.refresh_expiry.astimezone(shifted),
    )
    assert local.to_json() == pair.to_json()


@pytest.mark.parametrize("raw", ["[]", '"text"', '{"username": "alice"}', "{bad"])
def test_malformed_records_raise(raw):
    with pytest.raises((ValueError, KeyError)):
        AccessRecord.from_json(raw)
