"""
Tests for GDPR retention dates, processing, legal holds and deletion requests.
"""
from datetime import date

import pytest

from sitework.errors import AuthorizationError, ConflictError, ValidationError
from sitework.models.models import ArchiveLogEntry, User
from sitework.services import retention


TODAY = date(2026, 10, 19)


class TestDates:
    def test_delete_and_archive_dates(self, db):
        record = retention.create_record(db, "Timesheets", "timesheet", date(2020, 3, 31))
        assert record.delete_date == date(2026, 3, 31)
        assert record.archive_date == date(2025, 3, 31)

    def test_archive_never_before_creation(self, db):
        rule = retention.get_rule(db, "Training Records")
        rule.retention_period = 6
        rule.unit = "months"
        db.commit()
        record = retention.create_record(db, "Training Records", "qualification", date(2026, 1, 31))
        assert record.delete_date == date(2026, 7, 31)
        assert record.archive_date == date(2026, 1, 31)

    def test_unknown_data_type(self, db):
        from sitework.errors import NotFoundError

        with pytest.raises(NotFoundError):
            retention.create_record(db, "Chat Logs", "user", TODAY)

    def test_policy_labels(self, db):
        labels = {r.data_type: retention.policy_label(r) for r in retention.list_rules(db)}
        assert labels["RAMS Signatures"] == "Manual Only"
        assert labels["Timesheets"] == "Auto-Delete"

    def test_upcoming_window(self, db):
        soon = retention.create_record(db, "Timesheets", "timesheet", date(2020, 11, 10))
        retention.create_record(db, "Timesheets", "timesheet", date(2020, 12, 25))
        db.commit()
        assert [r.id for r in retention.upcoming(db, TODAY)] == [soon.id]


class TestProcessing:
    def test_auto_delete_and_manual_queue(self, db):
        auto = retention.create_record(db, "Timesheets", "timesheet", date(2019, 1, 1))
        manual = retention.create_record(db, "RAMS Signatures", "signature", date(2010, 1, 1))
        archive = retention.create_record(db, "Timesheets", "timesheet", date(2021, 1, 1))
        held = retention.create_record(db, "Timesheets", "timesheet", date(2019, 1, 1))
        held.legal_hold = True
        db.commit()

        summary = retention.run_processing(db, TODAY)
        assert summary == {"archived": 1, "deleted": 1, "queued": 1, "skipped": 1}
        assert auto.status == "deleted"
        assert manual.status == "pending_deletion"
        assert archive.status == "archived"
        assert held.status == "live"

        actions = {e.action for e in db.query(ArchiveLogEntry).all()}
        assert actions == {"deleted", "archived"}

        # a second run does not queue again
        assert retention.run_processing(db, TODAY)["queued"] == 0

    def test_auto_run_respects_switch(self, db, monkeypatch):
        from sitework.config import settings

        monkeypatch.setattr(settings, "retention_auto_processing", False)
        retention.create_record(db, "Timesheets", "timesheet", date(2019, 1, 1))
        db.commit()
        assert retention.run_processing(db, TODAY)["deleted"] == 0

    def test_approve_pending_deletion(self, db, make_user):
        dpo = make_user("dpo")
        record = retention.create_record(db, "RAMS Signatures", "signature", date(2010, 1, 1))
        db.commit()
        retention.run_processing(db, TODAY)
        record = retention.approve_deletion(db, dpo, record)
        assert record.status == "deleted"
        entry = db.query(ArchiveLogEntry).filter(ArchiveLogEntry.action == "deleted").one()
        assert entry.approved_by == dpo.full_name

    def test_deleting_personal_data_anonymises_user(self, db, make_user):
        op = make_user("operative", phone="07700 900123")
        retention.create_record(db, "Personal Data", "user", date(2020, 1, 1), subject_user_id=op.id, entity_id=str(op.id))
        db.commit()
        retention.run_processing(db, TODAY)
        user = db.get(User, op.id)
        assert user.first_name == "Deleted"
        assert user.phone is None
        assert not user.is_active


class TestLegalHold:
    def test_override_and_release(self, db, make_user):
        dpo = make_user("dpo")
        record = retention.create_record(db, "RAMS Signatures", "signature", date(2010, 1, 1))
        db.commit()
        retention.run_processing(db, TODAY)
        with pytest.raises(ValidationError):
            retention.override_record(db, dpo, record, "")

        record = retention.override_record(db, dpo, record, "Insurance claim open")
        assert record.legal_hold
        assert record.status == "live"
        with pytest.raises(ConflictError):
            retention.approve_record(db, dpo, record)

        record = retention.release_hold(db, dpo, record)
        assert not record.legal_hold
        assert record.review_status == "pending"


class TestDeletionRequests:
    def test_request_and_approve(self, db, make_user):
        op = make_user("operative")
        dpo = make_user("dpo")
        record = retention.create_record(db, "Training Records", "qualification", date(2026, 1, 1), subject_user_id=op.id)
        db.commit()
        assert [r.id for r in retention.my_data(db, op)] == [record.id]

        req = retention.request_deletion(db, op, record, "I have left the company", TODAY)
        assert req.due_by == date(2026, 11, 18)
        with pytest.raises(ConflictError):
            retention.request_deletion(db, op, record, "Again", TODAY)

        req = retention.decide_deletion_request(db, dpo, req, approve=True)
        assert req.status == "approved"
        db.refresh(record)
        assert record.status == "deleted"
        assert retention.my_data(db, op) == []

    def test_only_own_data(self, db, make_user):
        op = make_user("operative")
        other = make_user("operative")
        record = retention.create_record(db, "Training Records", "qualification", TODAY, subject_user_id=op.id)
        db.commit()
        with pytest.raises(AuthorizationError):
            retention.request_deletion(db, other, record, "Please", TODAY)

    def test_rejection_needs_note(self, db, make_user):
        op = make_user("operative")
        dpo = make_user("dpo")
        record = retention.create_record(db, "Training Records", "qualification", TODAY, subject_user_id=op.id)
        db.commit()
        req = retention.request_deletion(db, op, record, "Please", TODAY)
        with pytest.raises(ValidationError):
            retention.decide_deletion_request(db, dpo, req, approve=False)
        req = retention.decide_deletion_request(db, dpo, req, approve=False, note="Needed for HMRC")
        assert req.status == "rejected"


class TestPendingActions:
    def test_actions_inside_warning_windows(self, db):
        # deletes on 10 Nov 2026, 22 days out
        delete_soon = retention.create_record(db, "Timesheets", "timesheet", date(2020, 11, 10))
        # archives on 1 Dec 2026, 43 days out
        archive_soon = retention.create_record(db, "Timesheets", "timesheet", date(2021, 12, 1))
        retention.create_record(db, "Timesheets", "timesheet", date(2022, 6, 1))
        held = retention.create_record(db, "Timesheets", "timesheet", date(2020, 11, 10))
        held.legal_hold = True
        db.commit()

        actions = retention.pending_actions(db, TODAY)
        assert [(a["record_id"], a["action"], a["days"]) for a in actions] == [
            (str(delete_soon.id), "delete", 22),
            (str(archive_soon.id), "archive", 43),
        ]
        assert actions[0]["due_date"] == "2026-11-10"

    def test_queued_deletion_is_listed(self, db):
        record = retention.create_record(db, "RAMS Signatures", "signature", date(2010, 1, 1))
        db.commit()
        retention.run_processing(db, TODAY)
        actions = retention.pending_actions(db, TODAY)
        assert [(a["record_id"], a["action"]) for a in actions] == [(str(record.id), "delete")]


class TestArchiveLog:
    @pytest.fixture()
    def logged(self, db, make_user):
        alice = make_user("operative", first_name="Alice")
        bob = make_user("operative", first_name="Bob")
        retention.create_record(db, "Timesheets", "timesheet", date(2019, 1, 1), subject_user_id=alice.id)
        retention.create_record(db, "Timesheets", "timesheet", date(2021, 1, 1), subject_user_id=bob.id)
        retention.create_record(db, "Training Records", "qualification", date(2023, 1, 1), subject_user_id=bob.id)
        db.commit()
        assert retention.run_processing(db, TODAY) == {"archived": 1, "deleted": 2, "queued": 0, "skipped": 0}
        return alice, bob

    def test_filter_by_data_type_and_action(self, db, logged):
        assert len(retention.archive_log(db)) == 3
        assert len(retention.archive_log(db, data_type="Timesheets")) == 2
        archived = retention.archive_log(db, action="archived")
        assert [(e.data_type, e.action) for e in archived] == [("Timesheets", "archived")]
        deleted = retention.archive_log(db, data_type="Timesheets", action="deleted")
        assert len(deleted) == 1

    def test_search_matches_subject_name_and_type(self, db, logged):
        alice, bob = logged
        found = retention.archive_log(db, search="alice")
        assert [e.subject_user_id for e in found] == [alice.id]
        assert {e.subject_user_id for e in retention.archive_log(db, search="Bob")} == {bob.id}
        assert [e.data_type for e in retention.archive_log(db, search="training")] == ["Training Records"]
        assert retention.archive_log(db, search="nobody") == []

    def test_limit(self, db, logged):
        assert len(retention.archive_log(db, limit=1)) == 1
