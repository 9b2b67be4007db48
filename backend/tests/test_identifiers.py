import pytest

from finboost.services.identifiers import (
    LEGACY_WINNER_ID,
    encode_sender_item_id,
    parse_sender_item_id,
    sender_batch_id,
)

CHECKSUM = "0123456789abcdef" + "f" * 48


def test_sender_batch_id_first_attempt():
    assert sender_batch_id(18, CHECKSUM) == "cycle-18-0123456789abcdef"


def test_sender_batch_id_later_attempt_appends_counter():
    assert sender_batch_id(18, CHECKSUM, attempt=3) == "cycle-18-0123456789abcdef-attempt-3"


def test_sender_batch_id_is_stable():
    assert sender_batch_id(7, CHECKSUM, 2) == sender_batch_id(7, CHECKSUM, 2)


def test_sender_batch_id_rejects_bad_input():
    with pytest.raises(ValueError):
        sender_batch_id(1, CHECKSUM, attempt=0)
    with pytest.raises(ValueError):
        sender_batch_id(1, "abc")


@pytest.mark.parametrize("winner_id,user_id", [(1, 1), (123, 456), (987654, 3)])
def test_item_id_recovers_both_ids(winner_id, user_id):
    ref = parse_sender_item_id(encode_sender_item_id(winner_id, user_id))
    assert (ref.cycle_winner_selection_id, ref.user_id) == (winner_id, user_id)
    assert not ref.is_legacy


def test_legacy_item_id_keeps_user_and_cycle():
    ref = parse_sender_item_id("user_456_cycle_18_1234567890")
    assert ref.cycle_winner_selection_id == LEGACY_WINNER_ID
    assert ref.user_id == 456
    assert ref.legacy_cycle_id == 18
    assert ref.is_legacy


@pytest.mark.parametrize("value", [
    "invalid_format_123",
    "winner-abc-1",
    "winner-1",
    "",
    None,
    42,
    "user_1_cycle_2",
])
def test_unrecognized_item_ids(value):
    assert parse_sender_item_id(value) is None
