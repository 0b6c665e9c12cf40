"""
Orienteer Backend — Activity Service Unit Tests
=================================================
"""

from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, MagicMock
from uuid import uuid4

import pytest
from sqlalchemy.exc import OperationalError

from app.exceptions import DatabaseError
from app.models.activity import Activity
from app.schemas.activity import (
    ActionType,
    ActivityFilter,
    ActivityView,
    ClubRef,
    EventLinkRef,
    EventRef,
    UserRef,
)
from app.schemas.visibility import Requestor
from app.services.activity_service import (
    ActivityService,
    can_see_activity,
    filter_activities,
    filter_clauses,
    record_activity,
    to_view,
)

T0 = datetime(2024, 5, 18, 12, 0, tzinfo=timezone.utc)


def view(action, minutes=0, action_by="author", **refs):
    return ActivityView(
        id=str(uuid4()),
        action_type=action.value,
        action_by=action_by,
        timestamp=T0 + timedelta(minutes=minutes),
        **refs,
    )


def viewer(role="standard", id="viewer", clubs=()):
    return Requestor(role=role, id=id, clubs=clubs)


def runner_view(action, visibility, runner_clubs=(), event_active=True):
    return view(
        action,
        event=EventRef(id="e1", active=event_active, runner_visibility={"runner": visibility}),
        event_runner=UserRef(id="runner", clubs=frozenset(runner_clubs)),
    )


class TestFeedRules:

    def test_admin_sees_everything(self):
        deleted = view(ActionType.EVENT_DELETED, event=EventRef(id="e1", active=False))
        assert can_see_activity(viewer(role="admin"), deleted)

    def test_author_sees_own_actions(self):
        """Even deletions show up for whoever did them."""
        own = view(ActionType.USER_DELETED, action_by="viewer",
                   user=UserRef(id="viewer", active=False))
        assert can_see_activity(viewer(), own)

    def test_anonymous_sees_nothing(self):
        club = view(ActionType.CLUB_CREATED, club=ClubRef(id="c1"))
        assert not can_see_activity(Requestor.anonymous(), club)

    def test_club_created_and_updated(self):
        for action in (ActionType.CLUB_CREATED, ActionType.CLUB_UPDATED):
            assert can_see_activity(viewer(), view(action, club=ClubRef(id="c1")))

    def test_inactive_club_hidden(self):
        assert not can_see_activity(
            viewer(), view(ActionType.CLUB_UPDATED, club=ClubRef(id="c1", active=False))
        )

    def test_club_deleted_hidden(self):
        assert not can_see_activity(viewer(), view(ActionType.CLUB_DELETED, club=ClubRef(id="c1")))

    def test_event_created_and_updated(self):
        for action in (ActionType.EVENT_CREATED, ActionType.EVENT_UPDATED):
            assert can_see_activity(viewer(), view(action, event=EventRef(id="e1")))

    def test_inactive_event_hidden(self):
        assert not can_see_activity(
            viewer(), view(ActionType.EVENT_UPDATED, event=EventRef(id="e1", active=False))
        )

    @pytest.mark.parametrize("action", [
        ActionType.EVENT_RUNNER_ADDED,
        ActionType.EVENT_RUNNER_UPDATED,
        ActionType.EVENT_MAP_UPLOADED,
        ActionType.COMMENT_POSTED,
        ActionType.COMMENT_UPDATED,
    ])
    def test_runner_actions_follow_runner_visibility(self, action):
        assert can_see_activity(viewer(), runner_view(action, "all"))
        assert not can_see_activity(viewer(), runner_view(action, "private"))

    def test_runner_action_club_visibility(self):
        activity = runner_view(ActionType.EVENT_MAP_UPLOADED, "club", runner_clubs=["c1"])
        assert can_see_activity(viewer(clubs=["c1"]), activity)
        assert not can_see_activity(viewer(clubs=["c2"]), activity)

    def test_runner_sees_activity_about_own_private_entry(self):
        activity = runner_view(ActionType.EVENT_RUNNER_UPDATED, "private")
        assert can_see_activity(viewer(id="runner"), activity)

    def test_removed_runner_counts_as_private(self):
        activity = view(
            ActionType.EVENT_RUNNER_ADDED,
            event=EventRef(id="e1", runner_visibility={}),
            event_runner=UserRef(id="runner", visibility="public"),
        )
        assert not can_see_activity(viewer(), activity)

    def test_runner_action_in_inactive_event_hidden(self):
        activity = runner_view(ActionType.EVENT_RUNNER_ADDED, "public", event_active=False)
        assert not can_see_activity(viewer(), activity)

    def test_runner_deleted_hidden(self):
        assert not can_see_activity(viewer(), runner_view(ActionType.EVENT_RUNNER_DELETED, "public"))

    def test_event_link_actions(self):
        link = EventLinkRef(id="l1")
        assert can_see_activity(viewer(), view(ActionType.EVENT_LINK_CREATED, event_link=link))
        assert can_see_activity(viewer(), view(ActionType.EVENT_LINK_UPDATED, event_link=link))
        assert not can_see_activity(viewer(), view(ActionType.EVENT_LINK_DELETED, event_link=link))

    def test_user_actions_follow_profile_visibility(self):
        public = view(ActionType.USER_UPDATED, user=UserRef(id="u1", visibility="public"))
        private = view(ActionType.USER_UPDATED, user=UserRef(id="u1", visibility="private"))
        club = view(ActionType.USER_CREATED, user=UserRef(id="u1", visibility="club", clubs={"c1"}))
        assert can_see_activity(viewer(), public)
        assert not can_see_activity(viewer(), private)
        assert can_see_activity(viewer(clubs=["c1"]), club)

    def test_inactive_user_hidden(self):
        activity = view(ActionType.USER_UPDATED, user=UserRef(id="u1", active=False, visibility="public"))
        assert not can_see_activity(viewer(), activity)

    def test_guest_follows_same_rules(self):
        assert can_see_activity(viewer(role="guest"), view(ActionType.CLUB_CREATED, club=ClubRef(id="c1")))

    def test_unreferenced_action_hidden(self):
        assert not can_see_activity(viewer(), view(ActionType.CLUB_CREATED))


class TestFilterActivities:

    def test_newest_first(self):
        items = [
            view(ActionType.CLUB_CREATED, minutes=1, club=ClubRef(id="c1")),
            view(ActionType.CLUB_CREATED, minutes=3, club=ClubRef(id="c1")),
            view(ActionType.CLUB_CREATED, minutes=2, club=ClubRef(id="c1")),
        ]
        result = filter_activities(viewer(), items)
        assert [a.timestamp for a in result] == sorted((a.timestamp for a in items), reverse=True)

    def test_hidden_entries_dropped_before_limit(self):
        items = [
            view(ActionType.CLUB_DELETED, minutes=5, club=ClubRef(id="c1")),
            view(ActionType.CLUB_CREATED, minutes=4, club=ClubRef(id="c1")),
            view(ActionType.CLUB_CREATED, minutes=3, club=ClubRef(id="c1")),
            view(ActionType.CLUB_CREATED, minutes=2, club=ClubRef(id="c1")),
        ]
        result = filter_activities(viewer(), items, limit=2)
        assert [a.timestamp for a in result] == [items[1].timestamp, items[2].timestamp]

    def test_empty(self):
        assert filter_activities(viewer(), []) == []


class TestToView:

    def test_flattens_orm_references(self, make_user, make_club, make_event, make_runner):
        club = make_club()
        runner_user = make_user(display_name="ola", clubs=[club])
        author = make_user(display_name="kari")
        event = make_event(runners=[make_runner(runner_user, visibility="club")])
        activity = Activity(
            id=uuid4(),
            action_type=ActionType.EVENT_MAP_UPLOADED.value,
            action_by_id=author.id,
            action_by=author,
            event_id=event.id,
            event=event,
            event_runner_id=runner_user.id,
            event_runner=runner_user,
            timestamp=T0,
        )

        result = to_view(activity)

        assert result.action_by == str(author.id)
        assert result.event.runner_visibility == {str(runner_user.id): "club"}
        assert result.event_runner.clubs == frozenset({str(club.id)})
        assert result.club is None
        assert can_see_activity(Requestor(role="standard", id="x", clubs=[str(club.id)]), result)
        assert not can_see_activity(Requestor(role="standard", id="x"), result)

    def test_unknown_runner_visibility_treated_as_private(self, make_user, make_event, make_runner):
        runner_user = make_user(display_name="ola")
        event = make_event(runners=[make_runner(runner_user, visibility="friends")])
        activity = Activity(
            id=uuid4(),
            action_type=ActionType.EVENT_RUNNER_UPDATED.value,
            action_by_id=uuid4(),
            event_id=event.id,
            event=event,
            event_runner_id=runner_user.id,
            event_runner=runner_user,
            timestamp=T0,
        )

        result = to_view(activity)

        assert result.event.runner_visibility == {str(runner_user.id): "private"}
        assert not can_see_activity(Requestor(role="standard", id="x"), result)
        assert can_see_activity(Requestor(role="standard", id=str(runner_user.id)), result)

    def test_unknown_profile_visibility_treated_as_private(self, make_user):
        profile = make_user(display_name="ola", visibility="friends")
        activity = Activity(
            id=uuid4(),
            action_type=ActionType.USER_UPDATED.value,
            action_by_id=uuid4(),
            user_id=profile.id,
            user=profile,
            timestamp=T0,
        )

        result = to_view(activity)

        assert result.user.visibility == "private"
        assert not can_see_activity(Requestor(role="standard", id="x"), result)


class TestFilterClauses:

    def test_no_filters(self):
        assert filter_clauses(None) == []
        assert filter_clauses(ActivityFilter()) == []

    def test_one_clause_per_filter(self):
        clauses = filter_clauses(
            ActivityFilter(action_type="EVENT_UPDATED", event=str(uuid4()), linked_event=str(uuid4()))
        )
        rendered = [str(c) for c in clauses]
        assert len(rendered) == 3
        assert any("activities.action_type" in c for c in rendered)
        assert any("activities.event_id" in c for c in rendered)
        assert any("activities.event_link_id" in c for c in rendered)

    def test_malformed_id_matches_nothing(self):
        assert filter_clauses(ActivityFilter(user="not-a-uuid")) is None


class TestRecordActivity:

    @pytest.mark.asyncio
    async def test_adds_inside_savepoint(self, mock_db_session):
        by, event_id = uuid4(), uuid4()
        activity = await record_activity(
            mock_db_session, ActionType.EVENT_UPDATED, by, event_id=event_id
        )
        assert activity is not None
        assert activity.action_type == "EVENT_UPDATED"
        assert activity.event_id == event_id
        mock_db_session.begin_nested.assert_called_once()
        mock_db_session.add.assert_called_once_with(activity)

    @pytest.mark.asyncio
    async def test_none_refs_are_left_unset(self, mock_db_session):
        activity = await record_activity(
            mock_db_session, ActionType.USER_UPDATED, uuid4(), user_id=None
        )
        assert activity.user_id is None

    @pytest.mark.asyncio
    async def test_failure_is_swallowed(self, mock_db_session):
        mock_db_session.begin_nested = MagicMock(side_effect=RuntimeError("savepoint failed"))
        result = await record_activity(mock_db_session, ActionType.USER_UPDATED, uuid4())
        assert result is None

    @pytest.mark.asyncio
    async def test_unknown_reference_rejected(self, mock_db_session):
        result = await record_activity(
            mock_db_session, ActionType.USER_UPDATED, uuid4(), photo_id=uuid4()
        )
        assert result is None
        mock_db_session.add.assert_not_called()


class TestListFeed:

    @pytest.mark.asyncio
    async def test_anonymous_gets_empty_feed(self, mock_db_session):
        result = await ActivityService().list_feed(mock_db_session, Requestor.anonymous())
        assert result.activities == []
        mock_db_session.execute.assert_not_called()

    @pytest.mark.asyncio
    async def test_filters_and_limits_rows(self, mock_db_session, db_result, make_user, make_club):
        author = make_user(display_name="kari")
        club = make_club()

        def row(action, minutes):
            return Activity(
                id=uuid4(),
                action_type=action.value,
                action_by_id=author.id,
                action_by=author,
                club_id=club.id,
                club=club,
                timestamp=T0 + timedelta(minutes=minutes),
            )

        rows = [
            row(ActionType.CLUB_UPDATED, 3),
            row(ActionType.CLUB_DELETED, 2),
            row(ActionType.CLUB_CREATED, 1),
        ]
        mock_db_session.execute.return_value = db_result(scalars=rows)

        result = await ActivityService(batch_size=10).list_feed(
            mock_db_session, Requestor(role="standard", id=str(uuid4())), limit=5
        )

        assert [a.action_type for a in result.activities] == ["CLUB_UPDATED", "CLUB_CREATED"]
        assert result.activities[0].action_by.display_name == "kari"
        mock_db_session.execute.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_database_failure(self, mock_db_session):
        mock_db_session.execute = AsyncMock(
            side_effect=OperationalError("SELECT", {}, Exception("connection lost"))
        )
        with pytest.raises(DatabaseError):
            await ActivityService().list_feed(mock_db_session, Requestor(role="admin", id="a"))

    @pytest.mark.asyncio
    async def test_filters_narrow_the_query(self, mock_db_session, db_result):
        event_id = uuid4()
        mock_db_session.execute.return_value = db_result(scalars=[])

        await ActivityService().list_feed(
            mock_db_session,
            Requestor(role="admin", id="a"),
            filters=ActivityFilter(event=str(event_id), action_type="EVENT_UPDATED"),
        )

        statement = mock_db_session.execute.call_args.args[0]
        where = str(statement.whereclause)
        assert "activities.event_id" in where
        assert "activities.action_type" in where

    @pytest.mark.asyncio
    async def test_malformed_filter_id_returns_empty_feed(self, mock_db_session):
        result = await ActivityService().list_feed(
            mock_db_session,
            Requestor(role="admin", id="a"),
            filters=ActivityFilter(club="abc"),
        )
        assert result.activities == []
        mock_db_session.execute.assert_not_called()

    @pytest.mark.asyncio
    async def test_unknown_runner_visibility_does_not_break_feed(
        self, mock_db_session, db_result, make_user, make_event, make_runner
    ):
        runner_user = make_user(display_name="ola")
        event = make_event(runners=[make_runner(runner_user, visibility="friends")])
        author = make_user(display_name="kari")
        rows = [
            Activity(
                id=uuid4(),
                action_type=ActionType.EVENT_RUNNER_UPDATED.value,
                action_by_id=author.id,
                action_by=author,
                event_id=event.id,
                event=event,
                event_runner_id=runner_user.id,
                event_runner=runner_user,
                timestamp=T0 + timedelta(minutes=1),
            ),
            Activity(
                id=uuid4(),
                action_type=ActionType.EVENT_UPDATED.value,
                action_by_id=author.id,
                action_by=author,
                event_id=event.id,
                event=event,
                timestamp=T0,
            ),
        ]
        mock_db_session.execute.return_value = db_result(scalars=rows)

        result = await ActivityService(batch_size=10).list_feed(
            mock_db_session, Requestor(role="standard", id=str(uuid4()))
        )

        assert [a.action_type for a in result.activities] == ["EVENT_UPDATED"]
