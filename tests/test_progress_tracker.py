"""Tests for assignment, loading and the persisted side of the state machine."""

import pytest
from sqlalchemy import update

import catalog
import progress_tracker
from exceptions import (
    AlreadyCompleted, ConcurrencyConflict, InvalidTransition, NotFound, RequestValidationError,
)
from extensions import db
from mission_state import UserMissionStatus
from models import MissionStatus, UserMission


class TestAssign:

    def test_creates_assigned_row_with_mission_target(self, make_mission) -> None:
        mission = make_mission(required_submissions=3)
        um = progress_tracker.assign("u1", mission.id)
        db.session.commit()

        assert um.status == UserMissionStatus.ASSIGNED
        assert um.current_progress == 0
        assert um.target_progress == 3
        assert um.version == 1

    def test_is_idempotent(self, make_mission) -> None:
        mission = make_mission()
        first = progress_tracker.assign("u1", mission.id)
        db.session.commit()
        second = progress_tracker.assign("u1", mission.id)
        assert first.id == second.id
        assert db.session.query(UserMission).count() == 1

    def test_unknown_mission(self, app) -> None:
        with pytest.raises(NotFound):
            progress_tracker.assign("u1", "no-such-mission")

    def test_inactive_mission(self, make_mission) -> None:
        mission = make_mission()
        catalog.set_mission_status(mission.id, MissionStatus.INACTIVE)
        db.session.commit()
        with pytest.raises(NotFound):
            progress_tracker.assign("u1", mission.id)

    def test_completed_pair_cannot_be_reassigned(self, make_mission) -> None:
        mission = make_mission()
        um = progress_tracker.assign("u1", mission.id)
        progress_tracker.start_progress(um)
        progress_tracker.submit_evidence(um, ["https://img/1.jpg"])
        progress_tracker.record_verification(um, True)
        progress_tracker.advance_after_approval(um, mission.required_submissions)
        db.session.commit()
        assert um.status == UserMissionStatus.COMPLETED

        with pytest.raises(AlreadyCompleted):
            progress_tracker.assign("u1", mission.id)

    def test_lost_race_keeps_earlier_assignments(self, make_mission, monkeypatch) -> None:
        first_id, contested_id = make_mission(title="A").id, make_mission(title="B").id
        theirs_id = progress_tracker.assign("u1", contested_id).id
        db.session.commit()

        # The pair lookup misses the row another request committed just before.
        real_find_pair = progress_tracker._find_pair
        stale_reads = {contested_id}

        def find_pair(user_id, mission_id):
            if mission_id in stale_reads:
                stale_reads.discard(mission_id)
                return None
            return real_find_pair(user_id, mission_id)
        monkeypatch.setattr(progress_tracker, "_find_pair", find_pair)

        mine = progress_tracker.assign("u1", first_id)
        raced = progress_tracker.assign("u1", contested_id)
        db.session.commit()

        assert raced.id == theirs_id
        persisted = {um.mission_id: um.id for um in db.session.query(UserMission).filter_by(user_id="u1")}
        assert persisted == {first_id: mine.id, contested_id: theirs_id}


class TestLoadAndSave:

    def test_foreign_mission_is_not_found(self, make_mission) -> None:
        um = progress_tracker.assign("owner", make_mission().id)
        db.session.commit()
        with pytest.raises(NotFound):
            progress_tracker.load(um.id, user_id="someone-else")
        assert progress_tracker.load(um.id, user_id="owner").id == um.id

    def test_stale_write_is_a_conflict(self, make_mission) -> None:
        um = progress_tracker.assign("u1", make_mission().id)
        db.session.commit()

        loaded = progress_tracker.load(um.id)
        # another writer bumps the row behind this session's back
        db.session.execute(
            update(UserMission)
            .where(UserMission.id == um.id)
            .values(version=UserMission.version + 1)
            .execution_options(synchronize_session=False)
        )
        progress_tracker.start_progress(loaded)
        with pytest.raises(ConcurrencyConflict):
            progress_tracker.save(loaded)


class TestEvidenceAndVerification:

    def test_submit_requires_images(self, make_mission) -> None:
        um = progress_tracker.assign("u1", make_mission().id)
        progress_tracker.start_progress(um)
        with pytest.raises(RequestValidationError):
            progress_tracker.submit_evidence(um, [])
        with pytest.raises(RequestValidationError):
            progress_tracker.submit_evidence(um, ["   "])

    def test_submit_replaces_previous_evidence(self, make_mission) -> None:
        um = progress_tracker.assign("u1", make_mission(required_submissions=2).id)
        progress_tracker.start_progress(um)
        progress_tracker.submit_evidence(um, ["https://img/1.jpg"], note="first")
        progress_tracker.record_verification(um, True)
        progress_tracker.advance_after_approval(um, 2)
        progress_tracker.submit_evidence(um, ["https://img/2.jpg"])

        assert um.submission_image_urls == ["https://img/2.jpg"]
        assert um.submission_note is None
        assert um.current_progress == 1

    def test_rejection_gets_default_note(self, make_mission) -> None:
        um = progress_tracker.assign("u1", make_mission().id)
        progress_tracker.start_progress(um)
        progress_tracker.submit_evidence(um, ["https://img/1.jpg"])
        progress_tracker.record_verification(um, False)
        assert um.status == UserMissionStatus.REJECTED
        assert um.verification_note == progress_tracker.DEFAULT_REJECTION_NOTE
        assert um.current_progress == 0

    def test_cannot_verify_twice(self, make_mission) -> None:
        um = progress_tracker.assign("u1", make_mission().id)
        progress_tracker.start_progress(um)
        progress_tracker.submit_evidence(um, ["https://img/1.jpg"])
        progress_tracker.record_verification(um, True)
        with pytest.raises(InvalidTransition):
            progress_tracker.record_verification(um, True)

    def test_target_fixed_at_assignment(self, make_mission) -> None:
        mission = make_mission(required_submissions=2)
        um = progress_tracker.assign("u1", mission.id)
        progress_tracker.start_progress(um)
        progress_tracker.submit_evidence(um, ["https://img/1.jpg"])
        progress_tracker.record_verification(um, True)
        # catalog says 1 now; the assignment-time target of 2 still applies
        progress_tracker.advance_after_approval(um, 1)
        assert um.status == UserMissionStatus.IN_PROGRESS
        assert progress_tracker.progress_percentage(um) == 50


class TestListings:

    def test_pending_verifications(self, make_mission) -> None:
        pending = progress_tracker.assign("u1", make_mission(title="A").id)
        progress_tracker.start_progress(pending)
        progress_tracker.submit_evidence(pending, ["https://img/1.jpg"])
        progress_tracker.assign("u2", make_mission(title="B").id)
        db.session.commit()

        assert [um.id for um in progress_tracker.list_pending_verifications()] == [pending.id]
        assert progress_tracker.list_pending_verifications(submitted_before=pending.submitted_at) == []

    def test_user_missions_filtered_by_status(self, make_mission) -> None:
        progress_tracker.assign("u1", make_mission(title="A").id)
        started = progress_tracker.assign("u1", make_mission(title="B").id)
        progress_tracker.start_progress(started)
        progress_tracker.assign("u2", make_mission(title="C").id)
        db.session.commit()

        assert len(progress_tracker.list_user_missions("u1")) == 2
        in_progress = progress_tracker.list_user_missions("u1", status="IN_PROGRESS")
        assert [um.id for um in in_progress] == [started.id]
