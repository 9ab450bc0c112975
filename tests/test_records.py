import pytest

from notifications.errors import NotFoundError, ValidationError

USER_ID = "c589e948-fb91-475c-9043-1b4c05bec680"


def _create(records, content="Hello", user_id=USER_ID):
    return records.create(
        {
            "event_emitted": "Profile_updated",
            "notification_type": "Instant",
            "user_id": user_id,
            "content": content,
        }
    )


def test_create_and_find_by_id(records):
    created = _create(records)
    found = records.find_by_id(created["id"])
    assert found["system_metadata"] == {"user_id": USER_ID, "content": "Hello"}
    assert found["delivery_channel"] == "System"
    assert found["read"] is False


def test_find_missing_record_raises_not_found(records):
    with pytest.raises(NotFoundError):
        records.find_by_id("does-not-exist")


def test_find_by_user_without_records_raises(records):
    _create(records)
    with pytest.raises(NotFoundError):
        records.find_by_user_id("00000000-0000-0000-0000-000000000000")


def test_find_all_paginates(records):
    for idx in range(5):
        _create(records, content=f"Item{idx}")

    page = records.find_all(limit=2, offset=2)

    assert len(page["items"]) == 2
    assert page["total"] == 5
    assert page["current_page"] == 2
    assert page["total_pages"] == 3


def test_find_all_rejects_bad_limit(records):
    with pytest.raises(ValidationError):
        records.find_all(limit=0)


def test_update_capitalises_event_name(records):
    created = _create(records)
    updated = records.update_by_id(created["id"], {"event_emitted": "password_reset", "content": "Changed"})
    assert updated["event_emitted"] == "Password_reset"
    assert updated["system_metadata"]["content"] == "Changed"


def test_update_rejects_unknown_fields(records):
    created = _create(records)
    with pytest.raises(ValidationError):
        records.update_by_id(created["id"], {"owner": "someone"})


def test_read_status_toggles(records):
    created = _create(records)
    assert records.set_read_status(created["id"], True)["read"] is True
    assert records.set_read_status(created["id"], False)["read"] is False


def test_delete_removes_record(records):
    created = _create(records)
    assert records.delete_by_id(created["id"]) == "Deleted successfully"
    with pytest.raises(NotFoundError):
        records.delete_by_id(created["id"])


@pytest.mark.parametrize(
    "fields",
    [
        {"content": None},
        {"content": "   "},
        {"content": 42},
        {"user_id": None},
        {"user_id": "not-a-uuid"},
    ],
)
def test_update_rejects_bad_content_or_user_id(records, fields):
    created = _create(records)
    with pytest.raises(ValidationError):
        records.update_by_id(created["id"], fields)
    assert records.find_by_id(created["id"])["system_metadata"]["content"] == "Hello"


def test_update_accepts_new_user_id(records):
    created = _create(records)
    other = "00000000-0000-0000-0000-000000000001"
    updated = records.update_by_id(created["id"], {"user_id": other})
    assert updated["system_metadata"]["user_id"] == other
