"""
Orienteer Backend — Map Service Unit Tests
============================================

What:  Tests for attaching uploaded maps to runner entries.
How:   File storage and the QuickRoute decoder are patched so each test
       chooses the decoder result; the database session is mocked.
"""

from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from sqlalchemy.exc import OperationalError

from app.exceptions import DatabaseError, ForbiddenError, NotFoundError, ValidationError
from app.schemas.event import MapType
from app.schemas.map_metadata import Corners, GeoPoint, MapMetadata
from app.schemas.visibility import Role
from app.services.map_service import MapService, merge_map_record, seed_event_location

ABSOLUTE_PATH = "/storage/maps/2024/05/18/abc.jpg"
RELATIVE_PATH = "maps/2024/05/18/abc.jpg"
UPLOADED_AT = datetime(2024, 5, 18, 12, 0, tzinfo=timezone.utc)


def geocoded(distance_run=5.234):
    return MapMetadata(
        is_geocoded=True,
        version="2.4.0.1",
        map_corners=Corners(
            sw=GeoPoint(lat=59.0, long=18.0),
            nw=GeoPoint(lat=59.01, long=18.0),
            ne=GeoPoint(lat=59.01, long=18.02),
            se=GeoPoint(lat=59.0, long=18.02),
        ),
        map_centre=GeoPoint(lat=59.005, long=18.01),
        distance_run=distance_run,
    )


@pytest.fixture
def storage():
    mock = MagicMock()
    mock.validate_and_store = AsyncMock(return_value=(ABSOLUTE_PATH, RELATIVE_PATH))
    mock.cleanup_file = AsyncMock()
    with patch("app.services.map_service.file_service", mock):
        yield mock


@pytest.fixture
def decoder():
    with patch("app.services.map_service.decode_map_metadata") as mock:
        mock.return_value = MapMetadata.not_geocoded()
        yield mock


@pytest.fixture
def setup(mock_db_session, db_result, make_user, make_runner, make_event):
    user = make_user("ola")
    runner = make_runner(user)
    event = make_event(runners=[runner])
    mock_db_session.execute.return_value = db_result(scalar=event)
    return user, runner, event


async def upload(db, requestor, event, user, title="Long", map_type=MapType.ROUTE):
    return await MapService().upload_map(
        db,
        requestor,
        event.id,
        user.id,
        map_type=map_type,
        filename="map.jpg",
        content=b"\xff\xd8jpeg",
        content_length=9,
        title=title,
    )


class TestUploadMap:

    @pytest.mark.asyncio
    async def test_plain_image_attached_without_geo(
        self, mock_db_session, setup, storage, decoder, as_requestor
    ):
        user, runner, event = setup

        result = await upload(mock_db_session, as_requestor(user), event, user)

        assert result.map.is_geocoded is False
        assert result.map.geo is None
        assert result.map.route_url == f"/api/files/{RELATIVE_PATH}"
        assert result.map.course_url is None
        assert result.map.route_updated is not None
        assert len(runner.maps) == 1
        assert runner.maps[0]["route"] == RELATIVE_PATH
        assert runner.maps[0]["course"] is None
        assert event.location_lat is None
        assert event.corner_sw is None
        assert runner.distance_run is None
        decoder.assert_called_once_with(b"\xff\xd8jpeg")

    @pytest.mark.asyncio
    async def test_geocoded_map_seeds_event_location_and_distance(
        self, mock_db_session, setup, storage, decoder, as_requestor
    ):
        user, runner, event = setup
        decoder.return_value = geocoded()

        result = await upload(mock_db_session, as_requestor(user), event, user)

        assert result.geo.is_geocoded is True
        assert result.map.geo["mapCentre"] == {"lat": 59.005, "long": 18.01}
        assert (event.location_lat, event.location_long) == (59.005, 18.01)
        assert event.corner_sw == [59.0, 18.0]
        assert event.corner_nw == [59.01, 18.0]
        assert event.corner_ne == [59.01, 18.02]
        assert event.corner_se == [59.0, 18.02]
        assert runner.distance_run == 5.234

    @pytest.mark.asyncio
    async def test_existing_values_are_kept(
        self, mock_db_session, db_result, make_user, make_runner, make_event, storage, decoder, as_requestor
    ):
        user = make_user("ola")
        runner = make_runner(user, distance_run=6.1)
        event = make_event(runners=[runner], location=(60.0, 15.0))
        event.corner_sw = [60.0, 15.0]
        mock_db_session.execute.return_value = db_result(scalar=event)
        decoder.return_value = geocoded()

        await upload(mock_db_session, as_requestor(user), event, user)

        assert runner.distance_run == 6.1
        assert (event.location_lat, event.location_long) == (60.0, 15.0)
        assert event.corner_sw == [60.0, 15.0]
        assert event.corner_se == [59.0, 18.02]

    @pytest.mark.asyncio
    async def test_course_and_route_fill_the_same_map(
        self, mock_db_session, setup, storage, decoder, as_requestor
    ):
        user, runner, event = setup
        first_maps = runner.maps

        await upload(mock_db_session, as_requestor(user), event, user, map_type=MapType.COURSE)
        storage.validate_and_store.return_value = ("/storage/maps/route.jpg", "maps/route.jpg")
        result = await upload(mock_db_session, as_requestor(user), event, user, map_type=MapType.ROUTE)

        assert len(runner.maps) == 1
        assert runner.maps[0]["course"] == RELATIVE_PATH
        assert runner.maps[0]["route"] == "maps/route.jpg"
        assert result.map.course_url == f"/api/files/{RELATIVE_PATH}"
        assert result.map.route_url == "/api/files/maps/route.jpg"
        assert runner.maps is not first_maps

    @pytest.mark.asyncio
    async def test_different_titles_are_separate_maps(
        self, mock_db_session, setup, storage, decoder, as_requestor
    ):
        user, runner, event = setup

        await upload(mock_db_session, as_requestor(user), event, user, title="Leg 1")
        await upload(mock_db_session, as_requestor(user), event, user, title="Leg 2")

        assert [m["title"] for m in runner.maps] == ["Leg 1", "Leg 2"]

    @pytest.mark.asyncio
    async def test_activity_recorded(self, mock_db_session, setup, storage, decoder, admin):
        user, _, event = setup

        await upload(mock_db_session, admin, event, user)

        recorded = mock_db_session.add.call_args.args[0]
        assert recorded.action_type == "EVENT_MAP_UPLOADED"
        assert recorded.event_id == event.id
        assert recorded.event_runner_id == user.id

    @pytest.mark.asyncio
    async def test_other_runner_forbidden(self, mock_db_session, setup, storage, decoder, standard):
        user, _, event = setup

        with pytest.raises(ForbiddenError):
            await upload(mock_db_session, standard, event, user)
        storage.validate_and_store.assert_not_called()

    @pytest.mark.asyncio
    async def test_guest_forbidden_for_own_entry(self, mock_db_session, setup, storage, decoder, as_requestor):
        user, _, event = setup

        with pytest.raises(ForbiddenError):
            await upload(mock_db_session, as_requestor(user, Role.GUEST), event, user)

    @pytest.mark.asyncio
    async def test_unknown_runner(self, mock_db_session, setup, make_user, storage, decoder, admin):
        _, _, event = setup

        with pytest.raises(NotFoundError):
            await upload(mock_db_session, admin, event, make_user("stranger"))

    @pytest.mark.asyncio
    async def test_invalid_file_not_stored(self, mock_db_session, setup, storage, decoder, as_requestor):
        user, runner, event = setup
        storage.validate_and_store.side_effect = ValidationError("File type '.gif' is not supported", field="file")

        with pytest.raises(ValidationError):
            await upload(mock_db_session, as_requestor(user), event, user)
        storage.cleanup_file.assert_not_called()
        assert runner.maps == []

    @pytest.mark.asyncio
    async def test_database_failure_removes_file(self, mock_db_session, setup, storage, decoder, as_requestor):
        user, _, event = setup
        mock_db_session.flush.side_effect = OperationalError("UPDATE", {}, Exception("down"))

        with pytest.raises(DatabaseError):
            await upload(mock_db_session, as_requestor(user), event, user)
        storage.cleanup_file.assert_awaited_once_with(ABSOLUTE_PATH)

    @pytest.mark.asyncio
    async def test_unexpected_failure_removes_file(self, mock_db_session, setup, storage, decoder, as_requestor):
        user, _, event = setup
        decoder.side_effect = RuntimeError("boom")

        with pytest.raises(RuntimeError):
            await upload(mock_db_session, as_requestor(user), event, user)
        storage.cleanup_file.assert_awaited_once_with(ABSOLUTE_PATH)


class TestMergeMapRecord:

    def test_new_map(self):
        maps, record = merge_map_record([], "Long", MapType.COURSE, RELATIVE_PATH, geocoded(), UPLOADED_AT)

        assert maps == [record]
        assert record["title"] == "Long"
        assert record["course"] == RELATIVE_PATH
        assert record["course_updated"] == "2024-05-18T12:00:00+00:00"
        assert record["route"] is None
        assert record["is_geocoded"] is True
        assert record["geo"]["isGeocoded"] is True
        assert record["geo"]["distanceRun"] == 5.234
        assert "mapCorners" in record["geo"]

    def test_not_geocoded_has_no_geo(self):
        _, record = merge_map_record(None, "", MapType.ROUTE, RELATIVE_PATH, MapMetadata.not_geocoded(), UPLOADED_AT)
        assert record == {
            "title": "",
            "course": None,
            "course_updated": None,
            "route": RELATIVE_PATH,
            "route_updated": "2024-05-18T12:00:00+00:00",
            "is_geocoded": False,
            "geo": None,
        }

    def test_same_title_replaces_slot(self):
        existing = [
            {"title": "Leg 1", "course": "maps/old.jpg", "route": None, "is_geocoded": False, "geo": None},
            {"title": "Leg 2", "course": "maps/other.jpg", "route": None, "is_geocoded": False, "geo": None},
        ]

        maps, record = merge_map_record(
            existing, "Leg 1", MapType.COURSE, RELATIVE_PATH, MapMetadata.not_geocoded(), UPLOADED_AT
        )

        assert len(maps) == 2
        assert maps[0] is record
        assert record["course"] == RELATIVE_PATH
        assert maps[1]["course"] == "maps/other.jpg"
        assert existing[0]["course"] == "maps/old.jpg"

    def test_plain_upload_keeps_earlier_geo(self):
        maps, _ = merge_map_record([], "Long", MapType.ROUTE, "maps/route.jpg", geocoded(), UPLOADED_AT)

        maps, record = merge_map_record(
            maps, "Long", MapType.COURSE, "maps/course.jpg", MapMetadata.not_geocoded(), UPLOADED_AT
        )

        assert record["is_geocoded"] is True
        assert record["geo"]["mapCentre"] == {"lat": 59.005, "long": 18.01}
        assert (record["course"], record["route"]) == ("maps/course.jpg", "maps/route.jpg")


class TestSeedEventLocation:

    def test_fills_empty_fields(self, make_event):
        event = make_event()
        seeded = seed_event_location(event, geocoded())
        assert seeded == ["location", "corner_sw", "corner_nw", "corner_ne", "corner_se"]

    def test_not_geocoded_changes_nothing(self, make_event):
        event = make_event()
        assert seed_event_location(event, MapMetadata.not_geocoded()) == []
        assert event.corner_nw is None
        assert event.location_lat is None
