"""
Tests for weekly timesheets, approval and the payroll export that follows.
"""
from datetime import date

import pytest

from sitework.errors import AuthorizationError, ConflictError, InvalidTransition, ValidationError
from sitework.models.models import Payslip
from sitework.services import payroll
from sitework.services import timesheets as ts_service


WEEK_ENDING = date(2026, 10, 18)  # Sunday
MONDAY = date(2026, 10, 12)


def _week(db, user, project):
    ts = ts_service.create_timesheet(db, user, project.id, WEEK_ENDING)
    ts_service.add_entry(db, user, ts, {"work_date": MONDAY, "is_full_day": True, "rams_completed": True, "cscs_valid": True})
    ts_service.add_entry(db, user, ts, {"work_date": date(2026, 10, 13), "is_full_day": True, "rams_completed": True, "cscs_valid": True})
    ts_service.add_entry(db, user, ts, {
        "work_date": date(2026, 10, 14),
        "is_full_day": False,
        "hours": 4,
        "rams_completed": True,
        "cscs_valid": True,
        "piecework": [{"work_item": "Skirting (lm)", "units": 10, "rate": 2.5}],
    })
    return ts


class TestWeeklyTotals:
    def test_day_hours_and_piecework(self, db, make_user, project):
        op = make_user("operative")
        ts = _week(db, op, project)
        totals = ts_service.weekly_totals(ts.entries, 190.0, 25.0)
        assert totals["days_worked"] == 2
        assert totals["partial_hours"] == 4
        assert totals["piecework_units"] == 10
        assert totals["subtotal_day_hours"] == 480.0
        assert totals["piecework_total"] == 25.0
        assert totals["gross_total"] == 505.0

    def test_compliance_summary_text(self, db, make_user, project):
        op = make_user("operative")
        ts = ts_service.create_timesheet(db, op, project.id, WEEK_ENDING)
        ts_service.add_entry(db, op, ts, {"work_date": MONDAY, "rams_completed": False, "cscs_valid": True})
        assert ts_service.compliance_summary(ts.entries)["text"] == "RAMS Missing"


class TestEntryRules:
    def test_week_ending_must_be_sunday(self, db, make_user, project):
        op = make_user("operative")
        with pytest.raises(ValidationError):
            ts_service.create_timesheet(db, op, project.id, date(2026, 10, 17))

    def test_one_sheet_per_week_and_project(self, db, make_user, project):
        op = make_user("operative")
        ts_service.create_timesheet(db, op, project.id, WEEK_ENDING)
        with pytest.raises(ConflictError):
            ts_service.create_timesheet(db, op, project.id, WEEK_ENDING)

    def test_work_date_inside_week(self, db, make_user, project):
        op = make_user("operative")
        ts = ts_service.create_timesheet(db, op, project.id, WEEK_ENDING)
        with pytest.raises(ValidationError):
            ts_service.add_entry(db, op, ts, {"work_date": date(2026, 10, 19)})

    def test_single_full_day_per_date(self, db, make_user, project):
        op = make_user("operative")
        ts = ts_service.create_timesheet(db, op, project.id, WEEK_ENDING)
        ts_service.add_entry(db, op, ts, {"work_date": MONDAY})
        with pytest.raises(ConflictError):
            ts_service.add_entry(db, op, ts, {"work_date": MONDAY})
        # a partial day alongside is fine
        ts_service.add_entry(db, op, ts, {"work_date": MONDAY, "is_full_day": False, "hours": 2})

    def test_plot_must_belong_to_project(self, db, make_user, project):
        from sitework.models.models import Plot, Project

        other = Project(name="Elsewhere")
        db.add(other)
        db.flush()
        stray = Plot(project_id=other.id, plot_number="1")
        db.add(stray)
        db.commit()
        op = make_user("operative")
        ts = ts_service.create_timesheet(db, op, project.id, WEEK_ENDING)
        with pytest.raises(ValidationError):
            ts_service.add_entry(db, op, ts, {"work_date": MONDAY, "plot_id": stray.id})

    def test_only_owner_edits(self, db, make_user, project):
        op = make_user("operative")
        other = make_user("operative")
        ts = ts_service.create_timesheet(db, op, project.id, WEEK_ENDING)
        with pytest.raises(AuthorizationError):
            ts_service.add_entry(db, other, ts, {"work_date": MONDAY})

    def test_update_to_partial_day(self, db, make_user, project):
        op = make_user("operative")
        ts = ts_service.create_timesheet(db, op, project.id, WEEK_ENDING)
        entry = ts_service.add_entry(db, op, ts, {"work_date": MONDAY})
        entry = ts_service.update_entry(db, op, ts, entry.id, {"is_full_day": False, "hours": 6.5})
        assert not entry.is_full_day
        assert entry.hours == 6.5


class TestApproval:
    def test_submit_needs_entries(self, db, make_user, project):
        op = make_user("operative")
        ts = ts_service.create_timesheet(db, op, project.id, WEEK_ENDING)
        with pytest.raises(ValidationError):
            ts_service.submit_timesheet(db, op, ts)

    def test_approve_raises_payslip(self, db, make_user, project):
        op = make_user("operative")
        sup = make_user("supervisor")
        ts = _week(db, op, project)
        ts_service.submit_timesheet(db, op, ts)
        with pytest.raises(InvalidTransition):
            ts_service.add_entry(db, op, ts, {"work_date": date(2026, 10, 15)})

        ts_service.approve_timesheet(db, sup, ts)
        assert ts.status == "approved"
        payslip = db.query(Payslip).filter(Payslip.timesheet_id == ts.id).one()
        assert payslip.status == "pending"
        assert payslip.gross_total == 505.0
        assert payslip.day_rate == 190.0

    def test_cannot_approve_own_sheet(self, db, make_user, project):
        sup = make_user("supervisor")
        ts = _week(db, sup, project)
        ts_service.submit_timesheet(db, sup, ts)
        with pytest.raises(AuthorizationError):
            ts_service.approve_timesheet(db, sup, ts)

    def test_rejected_sheet_reopens_on_edit(self, db, make_user, project):
        op = make_user("operative")
        sup = make_user("supervisor")
        ts = _week(db, op, project)
        ts_service.submit_timesheet(db, op, ts)
        with pytest.raises(ValidationError):
            ts_service.reject_timesheet(db, sup, ts, "")
        ts_service.reject_timesheet(db, sup, ts, "Wednesday hours missing")
        assert ts.status == "rejected"
        ts_service.add_entry(db, op, ts, {"work_date": date(2026, 10, 15)})
        assert ts.status == "draft"
        assert ts.rejection_reason is None


class TestPayroll:
    def test_rate_history(self, db, make_user):
        director = make_user("director")
        op = make_user("operative")
        payroll.add_rate(db, director, op, 200.0, 30.0, 0.0, date(2026, 1, 1))
        payroll.add_rate(db, director, op, 210.0, 31.0, 0.0, date(2026, 10, 1))
        assert payroll.resolve_rates(db, op.id, date(2026, 6, 1)) == (200.0, 30.0)
        assert payroll.resolve_rates(db, op.id, WEEK_ENDING) == (210.0, 31.0)
        with pytest.raises(ValidationError):
            payroll.add_rate(db, director, op, 220.0, 32.0, 0.0, date(2026, 9, 1))

    def test_defaults_without_rate(self, db, make_user):
        op = make_user("operative")
        assert payroll.resolve_rates(db, op.id, WEEK_ENDING) == (190.0, 25.0)

    def test_export_and_pay(self, db, make_user, project):
        op = make_user("operative", first_name="Piotr")
        sup = make_user("supervisor")
        director = make_user("director")
        ts = _week(db, op, project)
        ts_service.submit_timesheet(db, op, ts)
        ts_service.approve_timesheet(db, sup, ts)
        payslip = db.query(Payslip).filter(Payslip.timesheet_id == ts.id).one()

        with pytest.raises(ValidationError):
            payroll.export_payroll(db, director)

        payroll.review_payslip(db, director, payslip, approve=True)
        batch, content = payroll.export_payroll(db, director)
        assert batch.batch_id == "PAYEXPORT-0001"
        assert batch.record_count == 1
        lines = content.splitlines()
        assert lines[0].startswith("Operative Name,User ID,Project")
        assert "Piotr Tester" in lines[1]
        assert lines[1].endswith("PAYEXPORT-0001")
        assert payslip.status == "exported"

        assert payroll.mark_batch_paid(db, director, "PAYEXPORT-0001") == 1
        db.refresh(payslip)
        assert payslip.status == "paid"

        ytd = payroll.year_to_date(db, op.id, 2026)
        assert ytd["payslips"] == 1
        assert ytd["gross_total"] == 505.0
        assert payroll.year_to_date(db, op.id, 2025)["payslips"] == 0
