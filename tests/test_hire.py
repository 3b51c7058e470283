"""
Tests for the on-hire tracker and supplier request drafting.
"""
from datetime import date

import pytest

from sitework.errors import InvalidTransition, ValidationError
from sitework.services import hire


TODAY = date(2026, 10, 19)


def _item(db, user, project, **overrides):
    data = {
        "project_id": project.id,
        "item_name": "Telehandler",
        "supplier": "Speedy Hire",
        "supplier_email": "hire@speedy.test",
        "order_ref": "SP-1001",
        "on_hire_date": date(2026, 10, 1),
        "expected_off_hire": date(2026, 10, 30),
        "weekly_cost": 450.0,
    }
    data.update(overrides)
    return hire.create_item(db, user, data)


class TestItems:
    def test_accrued_cost_charges_started_weeks(self, db, make_user, project):
        item = _item(db, make_user("supervisor"), project)
        # 1st to 19th October is 18 days on hire, so three weeks started
        assert hire.accrued_cost(item, TODAY) == 1350.0

    def test_accrued_cost_on_week_boundary(self, db, make_user, project):
        item = _item(db, make_user("supervisor"), project, on_hire_date=date(2026, 10, 5), weekly_cost=100.0)
        assert hire.accrued_cost(item, TODAY) == 200.0
        assert hire.accrued_cost(item, date(2026, 10, 12)) == 100.0
        assert hire.accrued_cost(item, date(2026, 10, 13)) == 200.0
        assert hire.accrued_cost(item, date(2026, 10, 5)) == 0.0

    def test_overdue_is_derived(self, db, make_user, project):
        item = _item(db, make_user("supervisor"), project, expected_off_hire=date(2026, 10, 15))
        assert item.status == "live"
        assert hire.effective_status(item, TODAY) == "overdue"
        stats = hire.hire_stats([item], TODAY)
        assert stats["overdue"] == 1
        assert stats["total_weekly_cost"] == 450.0

    def test_creation_logs_new_hire(self, db, make_user, project):
        item = _item(db, make_user("supervisor"), project)
        assert [r.request_type for r in item.requests] == ["new-hire"]

    def test_off_hire_before_on_hire_rejected(self, db, make_user, project):
        with pytest.raises(ValidationError):
            _item(db, make_user("supervisor"), project, expected_off_hire=date(2026, 9, 1))


class TestRequests:
    def test_off_hire_flow(self, db, make_user, project):
        sup = make_user("supervisor")
        item = _item(db, sup, project)
        req = hire.create_request(db, sup, item, "off-hire")
        assert req.generated
        assert "Please arrange collection of Telehandler (Order Ref: SP-1001)" in req.details
        assert item.status == "off-hire-requested"

        with pytest.raises(ValidationError):
            hire.create_request(db, sup, item, "off-hire")

        hire.decide_request(db, sup, req, confirm=True, today=TODAY)
        assert item.status == "off-hired"
        assert item.off_hired_on == TODAY
        with pytest.raises(InvalidTransition):
            hire.create_request(db, sup, item, "extension", new_end_date=date(2026, 11, 30))

    def test_rejected_off_hire_returns_to_live(self, db, make_user, project):
        sup = make_user("supervisor")
        item = _item(db, sup, project)
        req = hire.create_request(db, sup, item, "off-hire")
        hire.decide_request(db, sup, req, confirm=False, today=TODAY)
        assert item.status == "live"

    def test_extension_moves_end_date(self, db, make_user, project):
        sup = make_user("supervisor")
        item = _item(db, sup, project)
        with pytest.raises(ValidationError):
            hire.create_request(db, sup, item, "extension", new_end_date=date(2026, 10, 20))
        req = hire.create_request(db, sup, item, "extension", new_end_date=date(2026, 11, 27))
        assert "Current end date: 30/10/2026" in req.details
        assert "Requested new end date: 27/11/2026" in req.details
        hire.decide_request(db, sup, req, confirm=True, today=TODAY)
        assert item.expected_off_hire == date(2026, 11, 27)

    def test_custom_details_are_kept(self, db, make_user, project):
        sup = make_user("supervisor")
        item = _item(db, sup, project)
        req = hire.create_request(db, sup, item, "off-hire", details="Collect Friday please")
        assert not req.generated
        assert req.details == "Collect Friday please"

    def test_send_without_mail_server_leaves_unsent(self, db, make_user, project):
        sup = make_user("supervisor")
        item = _item(db, sup, project)
        req = hire.create_request(db, sup, item, "off-hire", send=True)
        assert req.email_sent_at is None
