"""
Tests for session lifecycle rules (validation, membership, capacity, chat).
"""

from datetime import timedelta

import pytest

from badly.database.models import SessionState
from badly.models.schemas import SessionPayload
from badly.services import session_lifecycle
from badly.services.exceptions import (
    PermissionDeniedError,
    SessionConflictError,
    SessionNotFoundError,
    SessionValidationError,
)
from badly.services.session_lifecycle import EventKind
from badly.tests.conftest import CLUBS, make_session
from badly.utils.datetime_utils import to_iso_string


def _payload(now, **overrides):
    fields = {
        "datetime": to_iso_string(now + timedelta(days=2)),
        "durationMinutes": 90,
        "club": CLUBS[0],
        "level": "moyen",
        "capacity": 4,
        "pricePerParticipant": 6.5,
    }
    fields.update(overrides)
    return SessionPayload(**fields)


def _kinds(result):
    return [event.kind for event in result.events]


# ---------------------------------------------------------------------------
# Field validation
# ---------------------------------------------------------------------------


class TestValidateSessionFields:
    def test_valid_payload_is_normalized(self, now):
        fields = session_lifecycle.validate_session_fields(
            _payload(now, club="  Gymnase Nord ", capacity="4", pricePerParticipant="1.125"),
            CLUBS,
            now,
        )
        assert fields.club == "Gymnase Nord"
        assert fields.capacity == 4
        assert fields.price_per_participant == 1.13
        assert fields.datetime.endswith(".000Z")

    @pytest.mark.parametrize(
        "overrides,message",
        [
            ({"datetime": "not a date"}, "Invalid date/time"),
            ({"datetime": None}, "Invalid date/time"),
            ({"durationMinutes": 0}, "Invalid duration"),
            ({"durationMinutes": 301}, "Invalid duration"),
            ({"durationMinutes": True}, "Invalid duration"),
            ({"club": "   "}, "Invalid club"),
            ({"club": "Elsewhere"}, "Unknown club"),
            ({"level": "expert"}, "Invalid level"),
            ({"capacity": 0}, "Invalid capacity"),
            ({"capacity": 13}, "Invalid capacity"),
            ({"capacity": 2.5}, "Invalid capacity"),
            ({"pricePerParticipant": -1}, "Invalid price"),
        ],
    )
    def test_invalid_field(self, now, overrides, message):
        with pytest.raises(SessionValidationError) as exc_info:
            session_lifecycle.validate_session_fields(_payload(now, **overrides), CLUBS, now)
        assert str(exc_info.value) == message

    def test_past_datetime_is_rejected(self, now):
        payload = _payload(now, datetime=to_iso_string(now - timedelta(minutes=10)))
        with pytest.raises(SessionValidationError, match="must be in the future"):
            session_lifecycle.validate_session_fields(payload, CLUBS, now)

    def test_small_past_tolerance_is_accepted(self, now):
        payload = _payload(now, datetime=to_iso_string(now - timedelta(minutes=3)))
        session_lifecycle.validate_session_fields(payload, CLUBS, now)

    def test_rules_are_checked_in_order(self, now):
        payload = _payload(now, durationMinutes=0, club="", level="bad", capacity=0)
        with pytest.raises(SessionValidationError, match="Invalid duration"):
            session_lifecycle.validate_session_fields(payload, CLUBS, now)

    def test_empty_club_list_accepts_any_club(self, now):
        fields = session_lifecycle.validate_session_fields(
            _payload(now, club="Anywhere"), [], now
        )
        assert fields.club == "Anywhere"

    def test_price_zero_is_allowed(self, now):
        fields = session_lifecycle.validate_session_fields(
            _payload(now, pricePerParticipant=0), CLUBS, now
        )
        assert fields.price_per_participant == 0


# ---------------------------------------------------------------------------
# Session state
# ---------------------------------------------------------------------------


class TestSessionState:
    def test_future_started_expired(self, now):
        session = make_session(now, starts_in=timedelta(minutes=30), duration=60)

        assert session.state(now) == SessionState.FUTURE
        assert session.state(now + timedelta(minutes=30)) == SessionState.STARTED
        assert session.state(now + timedelta(minutes=89)) == SessionState.STARTED
        assert session.state(now + timedelta(minutes=90)) == SessionState.EXPIRED

    def test_unparsable_datetime_is_expired(self, now):
        session = make_session(now)
        session.datetime = "garbage"
        assert session.state(now) == SessionState.EXPIRED


# ---------------------------------------------------------------------------
# Create / edit / delete
# ---------------------------------------------------------------------------


class TestCreateSession:
    def test_create_appends_and_emits_new_session(self, now):
        result = session_lifecycle.create_session([], _payload(now), "alice", CLUBS, now)

        assert len(result.sessions) == 1
        session = result.session
        assert session.organizer == "alice"
        assert session.participants == []
        assert session.reminder_sent is False
        assert _kinds(result) == [EventKind.NEW_SESSION]

    def test_same_club_and_datetime_is_rejected(self, now):
        first = session_lifecycle.create_session([], _payload(now), "alice", CLUBS, now)

        with pytest.raises(SessionConflictError, match="already exists"):
            session_lifecycle.create_session(first.sessions, _payload(now), "bob", CLUBS, now)

    def test_same_datetime_other_club_is_allowed(self, now):
        first = session_lifecycle.create_session([], _payload(now), "alice", CLUBS, now)
        second = session_lifecycle.create_session(
            first.sessions, _payload(now, club=CLUBS[1]), "bob", CLUBS, now
        )
        assert len(second.sessions) == 2

    def test_session_limit(self, now):
        sessions = [
            make_session(now, session_id=f"s{i}", starts_in=timedelta(days=1, hours=i))
            for i in range(16)
        ]
        with pytest.raises(SessionConflictError, match="Session limit reached"):
            session_lifecycle.create_session(sessions, _payload(now), "alice", CLUBS, now)

    def test_input_list_is_not_mutated(self, now):
        sessions = [make_session(now)]
        session_lifecycle.create_session(sessions, _payload(now), "bob", CLUBS, now)
        assert len(sessions) == 1


class TestEditSession:
    def test_only_organizer_can_edit(self, now):
        sessions = [make_session(now)]
        with pytest.raises(PermissionDeniedError):
            session_lifecycle.edit_session(sessions, "s1", _payload(now), "bob", CLUBS, now)

    def test_started_session_cannot_be_edited(self, now):
        sessions = [make_session(now, starts_in=timedelta(minutes=-10))]
        with pytest.raises(SessionConflictError, match="already started"):
            session_lifecycle.edit_session(sessions, "s1", _payload(now), "alice", CLUBS, now)

    def test_capacity_below_occupancy_is_rejected(self, now):
        sessions = [make_session(now, participants=["bob", "carol"])]
        with pytest.raises(SessionConflictError, match="Capacity cannot be lower"):
            session_lifecycle.edit_session(
                sessions, "s1", _payload(now, capacity=2), "alice", CLUBS, now
            )

    def test_edit_keeping_own_slot_is_allowed(self, now):
        sessions = [make_session(now)]
        payload = _payload(now, datetime=sessions[0].datetime, level="confirmé")

        result = session_lifecycle.edit_session(sessions, "s1", payload, "alice", CLUBS, now)
        assert result.session.level == "confirmé"

    def test_edit_into_another_sessions_slot_is_rejected(self, now):
        sessions = [
            make_session(now, session_id="s1"),
            make_session(now, session_id="s2", starts_in=timedelta(days=3)),
        ]
        payload = _payload(now, datetime=sessions[1].datetime)
        with pytest.raises(SessionConflictError, match="already exists"):
            session_lifecycle.edit_session(sessions, "s1", payload, "alice", CLUBS, now)

    def test_datetime_change_rearms_reminder(self, now):
        sessions = [make_session(now, reminder_sent=True)]
        result = session_lifecycle.edit_session(
            sessions, "s1", _payload(now), "alice", CLUBS, now
        )
        assert result.session.reminder_sent is False

    def test_same_datetime_keeps_reminder_flag(self, now):
        sessions = [make_session(now, reminder_sent=True)]
        payload = _payload(now, datetime=sessions[0].datetime)
        result = session_lifecycle.edit_session(sessions, "s1", payload, "alice", CLUBS, now)
        assert result.session.reminder_sent is True


class TestDeleteSession:
    def test_organizer_can_delete(self, now):
        result = session_lifecycle.delete_session([make_session(now)], "s1", "alice")
        assert result.sessions == []

    def test_other_user_cannot_delete(self, now):
        with pytest.raises(PermissionDeniedError):
            session_lifecycle.delete_session([make_session(now)], "s1", "bob")

    def test_super_user_can_delete_case_insensitive(self, now):
        result = session_lifecycle.delete_session(
            [make_session(now)], "s1", "Admin", super_user="admin"
        )
        assert result.sessions == []

    def test_unknown_session(self, now):
        with pytest.raises(SessionNotFoundError):
            session_lifecycle.delete_session([make_session(now)], "nope", "alice")


# ---------------------------------------------------------------------------
# Membership and capacity
# ---------------------------------------------------------------------------


class TestMembership:
    def test_capacity_two_scenario(self, now):
        """One spot besides the organizer: join, full, leave, spot available."""
        sessions = [make_session(now, capacity=2)]

        joined = session_lifecycle.join_session(sessions, "s1", "bob", now)
        assert joined.session.participants == ["bob"]
        assert joined.session.is_full
        assert _kinds(joined) == [EventKind.PARTICIPANT_JOINED]

        with pytest.raises(SessionConflictError, match="Session complete"):
            session_lifecycle.join_session(joined.sessions, "s1", "carol", now)

        left = session_lifecycle.leave_session(joined.sessions, "s1", "bob", now)
        assert left.session.participants == []
        assert _kinds(left) == [EventKind.PARTICIPANT_LEFT, EventKind.SPOT_AVAILABLE]

    def test_capacity_one_is_always_complete(self, now):
        sessions = [make_session(now, capacity=1)]
        with pytest.raises(SessionConflictError, match="Session complete"):
            session_lifecycle.join_session(sessions, "s1", "bob", now)

    def test_leave_from_non_full_session_has_no_spot_event(self, now):
        sessions = [make_session(now, capacity=4, participants=["bob"])]
        result = session_lifecycle.leave_session(sessions, "s1", "bob", now)
        assert _kinds(result) == [EventKind.PARTICIPANT_LEFT]

    def test_capacity_never_exceeded_over_join_leave_sequence(self, now):
        sessions = [make_session(now, capacity=3)]
        for actor in ["bob", "carol", "dave", "erin"]:
            try:
                sessions = session_lifecycle.join_session(sessions, "s1", actor, now).sessions
            except SessionConflictError:
                pass
            assert sessions[0].occupied_count <= sessions[0].capacity
        sessions = session_lifecycle.leave_session(sessions, "s1", "bob", now).sessions
        sessions = session_lifecycle.join_session(sessions, "s1", "erin", now).sessions

        assert sessions[0].participants == ["carol", "erin"]
        assert sessions[0].occupied_count <= sessions[0].capacity

    def test_organizer_cannot_join_or_leave(self, now):
        sessions = [make_session(now)]
        with pytest.raises(SessionConflictError, match="organizer is already registered"):
            session_lifecycle.join_session(sessions, "s1", "alice", now)
        with pytest.raises(SessionConflictError, match="organizer cannot leave"):
            session_lifecycle.leave_session(sessions, "s1", "alice", now)

    def test_double_join_and_leave_when_not_registered(self, now):
        sessions = [make_session(now, participants=["bob"])]
        with pytest.raises(SessionConflictError, match="Already registered"):
            session_lifecycle.join_session(sessions, "s1", "bob", now)
        with pytest.raises(SessionConflictError, match="Not registered"):
            session_lifecycle.leave_session(sessions, "s1", "carol", now)

    def test_cannot_join_started_session(self, now):
        sessions = [make_session(now, starts_in=timedelta(minutes=-5))]
        with pytest.raises(SessionConflictError, match="already started"):
            session_lifecycle.join_session(sessions, "s1", "bob", now)

    def test_participant_cannot_leave_started_session(self, now):
        sessions = [make_session(now, starts_in=timedelta(minutes=-5), participants=["bob"])]
        with pytest.raises(SessionConflictError, match="already started"):
            session_lifecycle.leave_session(sessions, "s1", "bob", now)
        assert sessions[0].participants == ["bob"]


class TestUpdateParticipants:
    def test_organizer_replaces_list(self, now):
        sessions = [make_session(now, participants=["bob"])]
        result = session_lifecycle.update_participants(
            sessions, "s1", "alice", [" carol ", "dave"], now
        )
        assert result.session.participants == ["carol", "dave"]
        assert result.events == []

    def test_only_organizer(self, now):
        with pytest.raises(PermissionDeniedError):
            session_lifecycle.update_participants([make_session(now)], "s1", "bob", [], now)

    @pytest.mark.parametrize(
        "names,message",
        [
            ([3], "Invalid participant name"),
            (["  "], "1-20 characters"),
            (["x" * 21], "1-20 characters"),
            (["ALICE"], "organizer cannot be added"),
        ],
    )
    def test_invalid_names(self, now, names, message):
        with pytest.raises(SessionValidationError, match=message):
            session_lifecycle.update_participants([make_session(now)], "s1", "alice", names, now)

    def test_too_many_participants(self, now):
        with pytest.raises(SessionConflictError, match="Too many participants"):
            session_lifecycle.update_participants(
                [make_session(now, capacity=2)], "s1", "alice", ["bob", "carol"], now
            )

    def test_started_session_cannot_be_changed(self, now):
        sessions = [make_session(now, starts_in=timedelta(minutes=-5), participants=["bob"])]
        with pytest.raises(SessionConflictError, match="already started"):
            session_lifecycle.update_participants(sessions, "s1", "alice", ["carol"], now)

    def test_full_to_not_full_emits_spot_available(self, now):
        sessions = [make_session(now, capacity=3, participants=["bob", "carol"])]
        result = session_lifecycle.update_participants(sessions, "s1", "alice", ["bob"], now)
        assert _kinds(result) == [EventKind.SPOT_AVAILABLE]


class TestFollow:
    def test_follow_and_unfollow(self, now):
        sessions = [make_session(now)]
        followed = session_lifecycle.follow_session(sessions, "s1", "bob")
        assert followed.session.followers == ["bob"]

        unfollowed = session_lifecycle.unfollow_session(followed.sessions, "s1", "bob")
        assert unfollowed.session.followers == []

    def test_follow_conflicts(self, now):
        sessions = [make_session(now, followers=["bob"])]
        with pytest.raises(SessionConflictError):
            session_lifecycle.follow_session(sessions, "s1", "alice")
        with pytest.raises(SessionConflictError):
            session_lifecycle.follow_session(sessions, "s1", "bob")
        with pytest.raises(SessionConflictError):
            session_lifecycle.unfollow_session(sessions, "s1", "carol")


# ---------------------------------------------------------------------------
# Chat
# ---------------------------------------------------------------------------


class TestSendMessage:
    def test_participant_posts_trimmed_message(self, now):
        sessions = [make_session(now, participants=["bob"])]
        result = session_lifecycle.send_message(sessions, "s1", "bob", "  hello  ", now)

        assert result.message.text == "hello"
        assert result.message.sender == "bob"
        assert result.session.messages[-1].id == result.message.id
        assert _kinds(result) == [EventKind.CHAT_MESSAGE]

    def test_outsider_cannot_post(self, now):
        with pytest.raises(PermissionDeniedError):
            session_lifecycle.send_message([make_session(now)], "s1", "bob", "hi", now)

    def test_cannot_post_once_started(self, now):
        sessions = [make_session(now, starts_in=timedelta(minutes=-5), participants=["bob"])]
        with pytest.raises(SessionConflictError, match="already started"):
            session_lifecycle.send_message(sessions, "s1", "bob", "hi", now)
        assert sessions[0].messages == []

    @pytest.mark.parametrize(
        "text,message",
        [
            (None, "Missing message"),
            ("", "Missing message"),
            ("   ", "cannot be empty"),
            ("x" * 501, "cannot exceed 500"),
        ],
    )
    def test_invalid_text(self, now, text, message):
        with pytest.raises(SessionValidationError, match=message):
            session_lifecycle.send_message([make_session(now)], "s1", "alice", text, now)

    def test_only_last_fifty_messages_are_kept(self, now):
        sessions = [make_session(now)]
        for i in range(55):
            sessions = session_lifecycle.send_message(
                sessions, "s1", "alice", f"message {i}", now
            ).sessions

        messages = sessions[0].messages
        assert len(messages) == 50
        assert messages[0].text == "message 5"
        assert messages[-1].text == "message 54"


# ---------------------------------------------------------------------------
# Purge and reminders
# ---------------------------------------------------------------------------


def test_purge_expired(now):
    sessions = [
        make_session(now, session_id="past", starts_in=timedelta(hours=-3), duration=60),
        make_session(now, session_id="ongoing", starts_in=timedelta(minutes=-30), duration=60),
        make_session(now, session_id="future"),
    ]
    remaining, removed = session_lifecycle.purge_expired(sessions, now)

    assert removed == 1
    assert [session.id for session in remaining] == ["ongoing", "future"]


def test_purge_removes_session_ending_exactly_now(now):
    sessions = [
        make_session(now, session_id="ended", starts_in=timedelta(minutes=-90), duration=90),
        make_session(now, session_id="last-minute", starts_in=timedelta(minutes=-89), duration=90),
    ]
    remaining, removed = session_lifecycle.purge_expired(sessions, now)

    assert removed == 1
    assert [session.id for session in remaining] == ["last-minute"]


@pytest.mark.parametrize(
    "starts_in,reminder_sent,expected",
    [
        (timedelta(minutes=30), False, True),
        (timedelta(minutes=45), False, True),
        (timedelta(minutes=46), False, False),
        (timedelta(minutes=30), True, False),
        (timedelta(minutes=-1), False, False),
    ],
)
def test_due_for_reminder(now, starts_in, reminder_sent, expected):
    session = make_session(now, starts_in=starts_in, reminder_sent=reminder_sent)
    assert session_lifecycle.due_for_reminder(session, now, timedelta(minutes=45)) is expected
