"""
Tests for qualification status derivation and the compliance matrix.
"""
from datetime import date, timedelta

import pytest

from sitework.errors import InvalidTransition, ValidationError
from sitework.models.models import Notification, UserQualification
from sitework.services import compliance
from sitework.services.compliance import get_type


TODAY = date(2026, 10, 19)


def _qualification(db, user, code, expires_on, status="approved"):
    rec = UserQualification(
        user_id=user.id,
        qualification_type_id=get_type(db, code).id,
        card_number=f"{code.upper()}-001",
        issued_on=date(2024, 1, 1),
        expires_on=expires_on,
        approval_status=status,
    )
    db.add(rec)
    db.commit()
    return rec


class TestExpiryStatus:
    def test_no_expiry_is_valid(self):
        assert compliance.expiry_status(None, TODAY) == "valid"

    def test_warning_window_is_inclusive(self):
        assert compliance.expiry_status(TODAY + timedelta(days=30), TODAY, warning_days=30) == "expiring"
        assert compliance.expiry_status(TODAY + timedelta(days=31), TODAY, warning_days=30) == "valid"

    def test_expires_today_is_still_in_date(self):
        assert compliance.expiry_status(TODAY, TODAY, warning_days=30) == "valid"
        assert compliance.expiry_status(TODAY + timedelta(days=1), TODAY, warning_days=30) == "expiring"

    def test_past_date_is_expired(self):
        assert compliance.expiry_status(TODAY - timedelta(days=1), TODAY) == "expired"


class TestCompliancePercentage:
    def test_nothing_applicable_is_fully_compliant(self):
        assert compliance.compliance_percentage(["not_required", "not_required"]) == 100

    def test_expiring_counts_as_in_date(self):
        assert compliance.compliance_percentage(["valid", "expiring", "expired", "missing"]) == 50

    def test_not_required_is_ignored(self):
        assert compliance.compliance_percentage(["valid", "not_required", "pending"]) == 50


class TestMatrix:
    def test_row_statuses(self, db, make_user):
        op = make_user("operative", first_name="Olga")
        _qualification(db, op, "cscs", TODAY + timedelta(days=365))
        _qualification(db, op, "asbestos", TODAY + timedelta(days=10))
        _qualification(db, op, "first_aid", TODAY - timedelta(days=1))
        _qualification(db, op, "gas_safe", None, status="pending")

        types, rows = compliance.build_matrix(db, TODAY)
        assert [t.code for t in types][:2] == ["cscs", "sssts"]
        row = next(r for r in rows if r["user_id"] == str(op.id))
        cells = row["qualifications"]
        assert cells["cscs"]["status"] == "valid"
        assert cells["asbestos"]["status"] == "expiring"
        assert cells["asbestos"]["days_until_expiry"] == 10
        assert cells["first_aid"]["status"] == "expired"
        assert cells["gas_safe"]["status"] == "pending"
        assert cells["confined_space"]["status"] == "missing"
        # supervisor-only card
        assert cells["sssts"]["status"] == "not_required"
        # 2 in date out of 6 applicable
        assert row["overall_compliance"] == 33
        assert row["has_expiring"] and row["has_expired"]
        assert not row["is_compliant"]

    def test_only_tracked_roles_are_listed(self, db, make_user):
        op = make_user("operative")
        sup = make_user("supervisor")
        pm = make_user("pm")
        _, rows = compliance.build_matrix(db, TODAY)
        ids = {r["user_id"] for r in rows}
        assert str(op.id) in ids and str(sup.id) in ids
        assert str(pm.id) not in ids

    def test_newest_approved_record_wins(self, db, make_user):
        op = make_user("operative")
        _qualification(db, op, "cscs", TODAY - timedelta(days=100))
        _qualification(db, op, "cscs", TODAY + timedelta(days=400))
        _, rows = compliance.build_matrix(db, TODAY)
        assert rows[0]["qualifications"]["cscs"]["status"] == "valid"

    def test_filters_and_stats(self, db, make_user):
        good = make_user("operative", first_name="Grace")
        make_user("operative", first_name="Bill")
        for code in ("cscs", "gas_safe", "asbestos", "confined_space", "induction", "first_aid"):
            _qualification(db, good, code, TODAY + timedelta(days=500))

        _, rows = compliance.build_matrix(db, TODAY)
        assert [r["name"] for r in compliance.filter_matrix(rows, compliance="compliant")] == ["Grace Tester"]
        assert [r["name"] for r in compliance.filter_matrix(rows, search="bill")] == ["Bill Tester"]
        stats = compliance.matrix_stats(rows)
        assert stats == {"total": 2, "compliant": 1, "non_compliant": 1, "expiring_soon": 0}

    def test_card_expiring_today_is_not_expiring_soon(self, db, make_user):
        op = make_user("operative")
        _qualification(db, op, "cscs", TODAY)
        _, rows = compliance.build_matrix(db, TODAY)
        assert rows[0]["qualifications"]["cscs"]["status"] == "valid"
        assert compliance.filter_matrix(rows, expiry="expiring-soon") == []
        assert compliance.matrix_stats(rows)["expiring_soon"] == 0

        _qualification(db, op, "gas_safe", TODAY + timedelta(days=1))
        _, rows = compliance.build_matrix(db, TODAY)
        assert len(compliance.filter_matrix(rows, expiry="expiring-soon")) == 1
        assert compliance.matrix_stats(rows)["expiring_soon"] == 1

    def test_csv_export_has_header_per_type(self, db, make_user):
        make_user("operative")
        types, rows = compliance.build_matrix(db, TODAY)
        header = compliance.matrix_csv(types, rows).splitlines()[0]
        assert header.startswith("Name,Email,Role,Project,CSCS Card")
        assert header.endswith("Overall Compliance %")


class TestTrainingMatrix:
    def test_labels_and_completion(self, db, make_user):
        op = make_user("operative")
        _qualification(db, op, "manual_handling", TODAY + timedelta(days=5))
        result = compliance.training_matrix(db, TODAY, training_type="manual_handling")
        assert result["rows"][0]["training"]["manual_handling"]["status"] == "due-soon"
        summary = result["summary"]["manual_handling"]
        assert summary["required"] == 1
        assert summary["completed"] == 1
        assert summary["completion_rate"] == 100


class TestReview:
    def test_upload_then_approve(self, db, make_user):
        op = make_user("operative")
        pm = make_user("pm")
        rec = compliance.add_qualification(db, op, "cscs", "123", date(2025, 1, 1), date(2030, 1, 1))
        assert rec.approval_status == "pending"
        rec = compliance.review_qualification(db, pm, rec.id, approve=True)
        assert rec.approval_status == "approved"
        assert rec.reviewed_by == pm.id

    def test_reject_needs_reason(self, db, make_user):
        op = make_user("operative")
        pm = make_user("pm")
        rec = compliance.add_qualification(db, op, "cscs", None, None, None)
        with pytest.raises(ValidationError):
            compliance.review_qualification(db, pm, rec.id, approve=False, reason=" ")

    def test_cannot_review_twice(self, db, make_user):
        op = make_user("operative")
        pm = make_user("pm")
        rec = compliance.add_qualification(db, op, "cscs", None, None, None)
        compliance.review_qualification(db, pm, rec.id, approve=False, reason="Blurry photo")
        with pytest.raises(InvalidTransition):
            compliance.review_qualification(db, pm, rec.id, approve=True)

    def test_expiry_must_follow_issue(self, db, make_user):
        op = make_user("operative")
        with pytest.raises(ValidationError):
            compliance.add_qualification(db, op, "cscs", None, date(2026, 1, 1), date(2025, 1, 1))


class TestPersonalView:
    def test_badges_and_missing(self, db, make_user):
        op = make_user("operative")
        _qualification(db, op, "cscs", TODAY + timedelta(days=7))
        mine = compliance.my_qualifications(db, op, TODAY)
        assert mine["items"][0]["badge"] == "expiring"
        assert [i["type"] for i in mine["expiring_soon"]] == ["cscs"]
        missing = {m["type"] for m in mine["missing"]}
        assert "cscs" not in missing
        assert "gas_safe" in missing
        assert "sssts" not in missing

    def test_badge_on_expiry_day_is_approved(self, db, make_user):
        op = make_user("operative")
        rec = _qualification(db, op, "cscs", TODAY)
        assert compliance.personal_badge(rec, TODAY) == "approved"
        assert compliance.personal_badge(rec, TODAY + timedelta(days=1)) == "expired"


class TestReminders:
    def test_one_notification_pair_per_problem(self, db, make_user):
        op = make_user("operative")
        _qualification(db, op, "cscs", TODAY + timedelta(days=3))
        _qualification(db, op, "asbestos", TODAY - timedelta(days=3))
        sent = compliance.send_expiry_reminders(db, TODAY, None)
        assert sent == 2
        notes = db.query(Notification).filter(Notification.user_id == op.id).all()
        assert {n.channel for n in notes} == {"app", "email"}
        assert {n.template_key for n in notes} == {"qualification_expiring", "qualification_expired"}
        # email is disabled under test
        assert all(n.status == "failed" for n in notes if n.channel == "email")
