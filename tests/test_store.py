"""Tests for SQLite snipe persistence."""

from datetime import datetime, timedelta, timezone

from tablesnipe.models import Platform, SnipeRequest, SnipeStatus
from tablesnipe.store import SNIPE_ID_RE, SnipeStore


class TestSnipeStore:
    def test_create_and_get(self, store, new_request):
        snipe = store.create(new_request(preferred_times=["7:00 PM", "8:00 PM"]))

        assert SNIPE_ID_RE.match(snipe.id)
        assert snipe.status == SnipeStatus.PENDING
        assert snipe.result is None

        loaded = store.get(snipe.id)
        assert loaded == snipe
        assert loaded.preferred_times == ["7:00 PM", "8:00 PM"]
        assert loaded.release_time.tzinfo is not None

    def test_get_missing(self, store):
        assert store.get("snipe-000000000000") is None

    def test_ids_unique(self, store, new_request):
        ids = {store.create(new_request()).id for _ in range(20)}
        assert len(ids) == 20

    def test_platform_round_trip(self, store, new_request):
        snipe = store.create(new_request(platform=Platform.OPENTABLE, restaurant_id="987"))
        loaded = store.get(snipe.id)
        assert loaded.platform == Platform.OPENTABLE
        assert loaded.restaurant.restaurant_id == "987"

    def test_list_ordered_by_release(self, store, new_request):
        late = store.create(new_request(release_in=timedelta(hours=5)))
        early = store.create(new_request(release_in=timedelta(minutes=5)))
        middle = store.create(new_request(release_in=timedelta(hours=1)))

        assert [s.id for s in store.list_snipes()] == [early.id, middle.id, late.id]

    def test_list_by_status(self, store, new_request):
        a = store.create(new_request())
        b = store.create(new_request())
        store.update_status(b.id, SnipeStatus.FAILED, "nope")

        assert [s.id for s in store.pending()] == [a.id]
        assert [s.id for s in store.list_snipes(SnipeStatus.FAILED)] == [b.id]
        assert store.list_snipes(SnipeStatus.SUCCESS) == []

    def test_update_status_overwrites_result(self, store, new_request):
        snipe = store.create(new_request())
        assert store.update_status(snipe.id, SnipeStatus.RUNNING)
        assert store.update_status(snipe.id, SnipeStatus.SUCCESS, "Booked")

        loaded = store.get(snipe.id)
        assert loaded.status == SnipeStatus.SUCCESS
        assert loaded.result == "Booked"

    def test_update_status_expected_guard(self, store, new_request):
        snipe = store.create(new_request())
        store.update_status(snipe.id, SnipeStatus.FAILED, "missed")

        assert store.update_status(
            snipe.id, SnipeStatus.RUNNING, expected=SnipeStatus.PENDING
        ) is False
        assert store.update_status(
            snipe.id, SnipeStatus.SUCCESS, "Booked", expected=SnipeStatus.RUNNING
        ) is False

        loaded = store.get(snipe.id)
        assert loaded.status == SnipeStatus.FAILED
        assert loaded.result == "missed"

    def test_update_status_expected_matches(self, store, new_request):
        snipe = store.create(new_request())
        assert store.update_status(snipe.id, SnipeStatus.RUNNING, expected=SnipeStatus.PENDING)
        assert store.get(snipe.id).status == SnipeStatus.RUNNING

    def test_update_unknown(self, store):
        assert store.update_status("snipe-000000000000", SnipeStatus.FAILED) is False

    def test_delete(self, store, new_request):
        snipe = store.create(new_request())
        assert store.delete(snipe.id)
        assert store.get(snipe.id) is None
        assert store.delete(snipe.id) is False

    def test_survives_reopen(self, tmp_path, new_request):
        path = tmp_path / "nested" / "snipes.db"
        first = SnipeStore(path)
        snipe = first.create(new_request())
        first.update_status(snipe.id, SnipeStatus.RUNNING)
        first.close()

        second = SnipeStore(path)
        try:
            loaded = second.get(snipe.id)
            assert loaded.status == SnipeStatus.RUNNING
            assert loaded.release_time == snipe.release_time
        finally:
            second.close()

    def test_naive_release_time_stored_as_utc(self, store, new_request):
        naive = datetime.now() + timedelta(hours=2)
        request = SnipeRequest.model_validate(
            {**new_request().model_dump(), "release_time": naive}
        )
        snipe = store.create(request)

        loaded = store.get(snipe.id)
        assert loaded.release_time.utcoffset() == timedelta(0)
        assert loaded.release_time == naive.astimezone(timezone.utc)
