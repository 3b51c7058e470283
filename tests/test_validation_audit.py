"""
Tests for input sanitising, field validators and the audit log.
"""
import pytest

from sitework.errors import ValidationError
from sitework.models.models import AuditLog
from sitework.services import audit, projects
from sitework.services.validation import (
    is_valid_phone,
    is_valid_rams_version,
    sanitize_input,
    sanitize_payload,
    validate_upload,
)


class TestSanitize:
    def test_strips_sql(self):
        assert sanitize_input("Plot 4; DROP TABLE users --") == "Plot 4  TABLE users"

    def test_strips_script_and_handlers(self):
        assert sanitize_input("<script>alert(1)</script>Hello") == "Hello"
        assert "javascript:" not in sanitize_input("javascript:alert(1)")
        assert "onclick" not in sanitize_input('<a onclick="x()">')

    def test_caps_length_and_handles_empty(self):
        assert sanitize_input(None) == ""
        assert len(sanitize_input("a" * 20000)) == 10000

    def test_nested_payload(self):
        data = {"notes": ["ok", "SELECT 1"], "n": 3}
        assert sanitize_payload(data) == {"notes": ["ok", "1"], "n": 3}


class TestValidators:
    @pytest.mark.parametrize("version,ok", [("1.0", True), ("12.34", True), ("1", False), ("v1.0", False), ("1.0.1", False)])
    def test_rams_version(self, version, ok):
        assert is_valid_rams_version(version) is ok

    def test_phone(self):
        assert is_valid_phone("+44 (0) 7700-900123")
        assert not is_valid_phone("call me")

    def test_upload_type_and_size(self):
        validate_upload("application/pdf", 1024)
        with pytest.raises(ValidationError) as exc:
            validate_upload("text/html", 10)
        assert exc.value.code == "FILE_TYPE"
        with pytest.raises(ValidationError) as exc:
            validate_upload("image/png", 500 * 1024 * 1024)
        assert exc.value.code == "FILE_TOO_LARGE"


class TestAuditLog:
    def test_entries_are_hashed(self, db, make_user):
        pm = make_user("pm")
        project = projects.create_project(db, pm, {"name": "Canal Wharf"})
        entry = db.query(AuditLog).filter(AuditLog.entity_id == project.id).one()
        assert entry.actor_role == "pm"
        assert entry.source == "app"
        assert audit.verify_audit_log(entry)

    def test_tampering_is_detected(self, db, make_user):
        pm = make_user("pm")
        project = projects.create_project(db, pm, {"name": "Canal Wharf"})
        entry = db.query(AuditLog).filter(AuditLog.entity_id == project.id).one()
        entry.action = "DELETE"
        assert not audit.verify_audit_log(entry)
        entry.action = "CREATE"
        assert not audit.verify_audit_log(entry, integrity_secret="other-secret")

    def test_update_records_diff(self, db, make_user):
        pm = make_user("pm")
        project = projects.create_project(db, pm, {"name": "Canal Wharf", "code": "CW"})
        projects.update_project(db, pm, project, {"status": "on_hold"})
        logs, total = audit.get_audit_logs(db, entity_id=project.id, action="UPDATE")
        assert total == 1
        assert logs[0].changes_json == {"status": {"before": "active", "after": "on_hold"}}

    def test_compute_diff(self):
        assert audit.compute_diff({"a": 1, "b": 2}, {"a": 1, "b": 3, "c": 4}) == {
            "b": {"before": 2, "after": 3},
            "c": {"before": None, "after": 4},
        }
