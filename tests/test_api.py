"""
HTTP-level tests: authentication, permission checks, error shape and a few
end-to-end flows through the routers.
"""
from datetime import date, timedelta

from sitework.models.models import Payslip, utcnow
from sitework.services import projects, retention
from sitework.services.notifications import notify
from sitework.services.users import delete_user


class TestHealth:
    def test_health(self, client):
        r = client.get("/health")
        assert r.status_code == 200
        assert r.json()["status"] == "ok"

    def test_request_id_header(self, client):
        r = client.get("/health", headers={"X-Request-ID": "abc-123"})
        assert r.headers.get("X-Request-ID") == "abc-123"


class TestAuth:
    def test_login_and_me(self, client, make_user):
        user = make_user("supervisor", email="sam@example.com")
        r = client.post("/auth/login", json={"email": "SAM@example.com", "password": "password123"})
        assert r.status_code == 200
        token = r.json()["access_token"]

        me = client.get("/auth/me", headers={"Authorization": f"Bearer {token}"})
        assert me.status_code == 200
        body = me.json()
        assert body["id"] == str(user.id)
        assert body["role"] == "supervisor"
        assert "timesheets:approve" in body["permissions"]
        assert "payroll:export" not in body["permissions"]

    def test_wrong_password(self, client, make_user):
        make_user("operative", email="op@example.com")
        r = client.post("/auth/login", json={"email": "op@example.com", "password": "nope-nope"})
        assert r.status_code == 401

    def test_inactive_account(self, client, db, make_user):
        user = make_user("operative", email="gone@example.com")
        user.is_active = False
        db.commit()
        r = client.post("/auth/login", json={"email": "gone@example.com", "password": "password123"})
        assert r.status_code == 403

    def test_provisional_window(self, client, db, make_user):
        user = make_user("operative", email="new@example.com", activation_status="provisional")
        r = client.post("/auth/login", json={"email": "new@example.com", "password": "password123"})
        assert r.status_code == 200

        user.created_at = utcnow() - timedelta(days=3)
        db.commit()
        r = client.post("/auth/login", json={"email": "new@example.com", "password": "password123"})
        assert r.status_code == 403

    def test_expired_provisional_window_blocks_existing_tokens(self, client, db, make_user):
        user = make_user("operative", email="late@example.com", activation_status="provisional")
        tokens = client.post("/auth/login", json={"email": "late@example.com", "password": "password123"}).json()

        user.created_at = utcnow() - timedelta(days=3)
        db.commit()
        r = client.post("/auth/refresh", json={"refresh_token": tokens["refresh_token"]})
        assert r.status_code == 403
        r = client.get("/auth/me", headers={"Authorization": f"Bearer {tokens['access_token']}"})
        assert r.status_code == 403

    def test_pending_account_cannot_refresh(self, client, db, make_user):
        user = make_user("operative", email="waiting@example.com")
        tokens = client.post("/auth/login", json={"email": "waiting@example.com", "password": "password123"}).json()

        user.activation_status = "pending"
        db.commit()
        r = client.post("/auth/refresh", json={"refresh_token": tokens["refresh_token"]})
        assert r.status_code == 403
        r = client.get("/auth/me", headers={"Authorization": f"Bearer {tokens['access_token']}"})
        assert r.status_code == 403

    def test_refresh(self, client, make_user):
        make_user("operative", email="fresh@example.com")
        tokens = client.post("/auth/login", json={"email": "fresh@example.com", "password": "password123"}).json()
        r = client.post("/auth/refresh", json={"refresh_token": tokens["refresh_token"]})
        assert r.status_code == 200
        r = client.post("/auth/refresh", json={"refresh_token": tokens["access_token"]})
        assert r.status_code == 401

    def test_missing_token(self, client):
        assert client.get("/auth/me").status_code == 401


class TestUsersApi:
    def test_operative_cannot_list_users(self, client, make_user, headers_for):
        op = make_user("operative")
        assert client.get("/users", headers=headers_for(op)).status_code == 403

    def test_admin_creates_user(self, client, make_user, headers_for):
        admin = make_user("admin")
        r = client.post("/users", headers=headers_for(admin), json={
            "email": "jo@example.com", "first_name": "Jo", "last_name": "Bloggs",
            "password": "password123", "role": "operative", "phone": "07700 900123",
        })
        assert r.status_code == 201
        assert r.json()["name"] == "Jo Bloggs"

        r = client.post("/users", headers=headers_for(admin), json={
            "email": "jo@example.com", "first_name": "Jo", "last_name": "Again", "password": "password123",
        })
        assert r.status_code == 409
        assert "detail" in r.json()

    def test_pm_cannot_create_users(self, client, make_user, headers_for):
        pm = make_user("pm")
        r = client.post("/users", headers=headers_for(pm), json={
            "email": "x@example.com", "first_name": "X", "last_name": "Y", "password": "password123",
        })
        assert r.status_code == 403

    def test_bad_phone_rejected(self, client, make_user, headers_for):
        admin = make_user("admin")
        r = client.post("/users", headers=headers_for(admin), json={
            "email": "ph@example.com", "first_name": "P", "last_name": "H",
            "password": "password123", "phone": "call me",
        })
        assert r.status_code == 422


class TestTimesheetApi:
    def test_submit_and_approve(self, client, db, make_user, headers_for, project):
        op = make_user("operative")
        sup = make_user("supervisor")

        r = client.post("/timesheets", headers=headers_for(op), json={"project_id": str(project.id), "week_ending": "2026-10-18"})
        assert r.status_code == 201
        ts_id = r.json()["id"]

        r = client.post(f"/timesheets/{ts_id}/entries", headers=headers_for(op), json={
            "work_date": "2026-10-12", "is_full_day": True, "rams_completed": True, "cscs_valid": True,
        })
        assert r.status_code == 201

        r = client.post(f"/timesheets/{ts_id}/entries", headers=headers_for(op), json={
            "work_date": "2026-10-12", "is_full_day": True,
        })
        assert r.status_code == 409
        assert r.json()["code"] == "CONFLICT"

        r = client.get(f"/timesheets/{ts_id}/summary", headers=headers_for(op))
        assert r.json()["totals"]["gross_total"] == 190.0

        assert client.post(f"/timesheets/{ts_id}/submit", headers=headers_for(op)).json()["status"] == "submitted"
        assert client.post(f"/timesheets/{ts_id}/approve", headers=headers_for(op)).status_code == 403

        r = client.post(f"/timesheets/{ts_id}/approve", headers=headers_for(sup))
        assert r.status_code == 200
        assert r.json()["status"] == "approved"
        assert db.query(Payslip).filter(Payslip.user_id == op.id).count() == 1

    def test_illegal_transition_is_bad_request(self, client, make_user, headers_for, project):
        op = make_user("operative")
        r = client.post("/timesheets", headers=headers_for(op), json={"project_id": str(project.id), "week_ending": "2026-10-18"})
        ts_id = r.json()["id"]
        client.post(f"/timesheets/{ts_id}/entries", headers=headers_for(op), json={
            "work_date": "2026-10-13", "is_full_day": True, "rams_completed": True, "cscs_valid": True,
        })
        assert client.post(f"/timesheets/{ts_id}/submit", headers=headers_for(op)).status_code == 200

        r = client.post(f"/timesheets/{ts_id}/submit", headers=headers_for(op))
        assert r.status_code == 400
        assert r.json()["code"] == "INVALID_TRANSITION"
        assert r.json()["detail"] == "Cannot move timesheet from 'submitted' to 'submitted'"

    def test_week_must_end_on_sunday(self, client, make_user, headers_for, project):
        op = make_user("operative")
        r = client.post("/timesheets", headers=headers_for(op), json={"project_id": str(project.id), "week_ending": "2026-10-19"})
        assert r.status_code == 400
        assert r.json()["detail"] == "Week ending must be a Sunday"

    def test_other_operatives_sheet_hidden(self, client, make_user, headers_for, project):
        op = make_user("operative")
        other = make_user("operative")
        ts_id = client.post("/timesheets", headers=headers_for(op), json={
            "project_id": str(project.id), "week_ending": "2026-10-18",
        }).json()["id"]
        assert client.get(f"/timesheets/{ts_id}", headers=headers_for(other)).status_code == 403


class TestDocumentsApi:
    def test_multipart_upload(self, client, make_user, headers_for, project):
        pm = make_user("pm")
        r = client.post(
            "/documents",
            headers=headers_for(pm),
            data={"project_id": str(project.id), "document_type": "RAMS", "title": "Groundworks RAMS", "version": "1.0"},
            files={"file": ("rams.pdf", b"%PDF-1.4 test", "application/pdf")},
        )
        assert r.status_code == 201
        body = r.json()
        assert body["is_current"] is True
        assert body["content_type"] == "application/pdf"

        r = client.get(f"/documents/{body['id']}/file", headers=headers_for(pm))
        assert r.status_code == 200
        assert r.content == b"%PDF-1.4 test"

    def test_operative_cannot_upload(self, client, make_user, headers_for, project):
        op = make_user("operative")
        r = client.post(
            "/documents",
            headers=headers_for(op),
            data={"project_id": str(project.id), "document_type": "RAMS", "title": "x", "version": "1.0"},
        )
        assert r.status_code == 403


class TestNotificationsApi:
    def test_read_all(self, client, db, make_user, headers_for):
        op = make_user("operative")
        notify(db, op, "test", {"subject": "a"})
        notify(db, op, "test", {"subject": "b"})
        db.commit()

        r = client.get("/notifications?unread_only=true", headers=headers_for(op))
        assert len(r.json()) == 2
        assert client.post("/notifications/read-all", headers=headers_for(op)).json() == {"updated": 2}
        assert client.get("/notifications?unread_only=true", headers=headers_for(op)).json() == []


class TestRoleScopedViews:
    def test_operative_sees_only_own_projects(self, client, db, make_user, headers_for, project):
        pm = make_user("pm")
        op = make_user("operative")
        other = projects.create_project(db, pm, {"name": "Canal Wharf"})
        projects.add_member(db, pm, project, op)

        names = [p["name"] for p in client.get("/projects", headers=headers_for(op)).json()]
        assert names == ["Riverside Block A"]
        names = [p["name"] for p in client.get("/projects", headers=headers_for(pm)).json()]
        assert set(names) == {"Riverside Block A", other.name}

    def test_deleted_users_listed_for_admins_only(self, client, db, make_user, headers_for):
        admin = make_user("admin")
        pm = make_user("pm")
        leaver = make_user("operative", email="leaver@example.com")
        delete_user(db, admin, leaver, "Left site")

        def emails(user):
            r = client.get("/users?include_deleted=true&limit=100", headers=headers_for(user))
            return {u["email"] for u in r.json()["items"]}

        assert "leaver@example.com" in emails(admin)
        assert "leaver@example.com" not in emails(pm)

    def test_deletion_decision_needs_dpo_or_admin(self, client, db, make_user, headers_for):
        op = make_user("operative")
        director = make_user("director")
        dpo = make_user("dpo")
        record = retention.create_record(db, "Training Records", "qualification", date(2026, 1, 1), subject_user_id=op.id)
        db.commit()
        req = retention.request_deletion(db, op, record, "Left the company", date(2026, 10, 19))

        url = f"/retention/deletion-requests/{req.id}/decision"
        assert client.post(url, headers=headers_for(director), json={"approve": True}).status_code == 403
        r = client.post(url, headers=headers_for(dpo), json={"approve": False})
        assert r.status_code == 400
        r = client.post(url, headers=headers_for(dpo), json={"approve": False, "note": "Needed for HMRC"})
        assert r.status_code == 200
        assert r.json()["status"] == "rejected"
