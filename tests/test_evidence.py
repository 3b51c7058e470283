"""
Tests for the evidence chain, document supersession, QR validation and exports.
"""
import json
import uuid
from datetime import date, datetime

import pytest
from sqlalchemy.dialects import postgresql

from sitework.errors import ConflictError, NotFoundError, ValidationError
from sitework.models.models import EvidenceRecord, Notification, Project
from sitework.services import documents, evidence, signatures


def _upload(db, storage, user, project, version="1.0", title="Groundworks RAMS", **extra):
    data = {"project_id": project.id, "document_type": "RAMS", "title": title, "version": version}
    data.update(extra)
    return documents.upload_document(db, storage, user, data, file=("rams.pdf", "application/pdf", b"%PDF-1.4 test"))


class TestChain:
    def test_records_are_linked(self, db, make_user, project):
        op = make_user("operative")
        first = evidence.log_event(db, project.id, "view", "Drawing", operative_id=op.id)
        second = evidence.log_event(db, project.id, "print", "Drawing", operative_id=op.id)
        db.commit()
        assert (first.sequence, second.sequence) == (1, 2)
        assert first.previous_hash is None
        assert second.previous_hash == first.evidence_hash
        assert len(second.evidence_hash) == 64
        assert evidence.verify_chain(db, project.id) == {"valid": True, "checked": 2, "broken_at": None}

    def test_chains_are_per_project(self, db, make_user, project):
        other = Project(name="Other site")
        db.add(other)
        db.commit()
        evidence.log_event(db, project.id, "view", "RAMS")
        record = evidence.log_event(db, other.id, "view", "RAMS")
        assert record.sequence == 1
        assert record.previous_hash is None

    def test_tampering_is_detected(self, db, make_user, project):
        op = make_user("operative")
        for _ in range(3):
            evidence.log_event(db, project.id, "view", "RAMS", operative_id=op.id)
        db.commit()
        middle = db.query(EvidenceRecord).filter(EvidenceRecord.sequence == 2).one()
        middle.action_type = "sign"
        db.commit()
        result = evidence.verify_chain(db, project.id)
        assert result["valid"] is False
        assert result["broken_at"] == 2

    def test_hash_depends_on_secret(self, db, project):
        record = evidence.log_event(db, project.id, "view", "RAMS")
        assert evidence.compute_evidence_hash(record) == record.evidence_hash
        assert evidence.compute_evidence_hash(record, secret="other") != record.evidence_hash

    def test_unknown_action(self, db, project):
        with pytest.raises(ValidationError):
            evidence.log_event(db, project.id, "delete", "RAMS")

    def test_unknown_project(self, db):
        with pytest.raises(NotFoundError):
            evidence.log_event(db, uuid.uuid4(), "view", "RAMS")

    def test_append_locks_the_project_row(self, db, project):
        sql = str(evidence.chain_lock_query(db, project.id).statement.compile(dialect=postgresql.dialect()))
        assert sql.rstrip().endswith("FOR UPDATE")


class TestDocuments:
    def test_new_version_supersedes(self, db, storage, make_user, project):
        pm = make_user("pm")
        op = make_user("operative", current_project_id=project.id)
        v1 = _upload(db, storage, pm, project, "1.0")
        sig = signatures.sign_document(db, op, {"signature_type": "RAMS", "method": "Checkbox Confirm", "document_id": v1.id})
        v2 = _upload(db, storage, pm, project, "1.1")

        db.refresh(v1)
        db.refresh(sig)
        assert not v1.is_current
        assert v1.superseded_by_id == v2.id
        assert v2.is_current
        assert sig.status == "Superseded"
        assert storage.exists(v2.file_key)
        assert [d.version for d in documents.version_history(db, v2)] == ["1.1", "1.0"]

        actions = [r.action_type for r in db.query(EvidenceRecord).order_by(EvidenceRecord.sequence)]
        assert actions == ["upload", "sign", "supersede", "upload"]
        assert evidence.verify_chain(db, project.id)["valid"]

    def test_rams_version_format(self, db, storage, make_user, project):
        with pytest.raises(ValidationError):
            _upload(db, storage, make_user("pm"), project, "v2")

    def test_same_version_twice(self, db, storage, make_user, project):
        pm = make_user("pm")
        _upload(db, storage, pm, project, "1.0")
        with pytest.raises(ConflictError):
            _upload(db, storage, pm, project, "1.0")

    def test_disallowed_file_type(self, db, storage, make_user, project):
        data = {"project_id": project.id, "document_type": "Drawing", "title": "GA", "version": "A"}
        with pytest.raises(ValidationError):
            documents.upload_document(db, storage, make_user("pm"), data, file=("x.exe", "application/x-msdownload", b"MZ"))


class TestQrValidation:
    def test_current_and_superseded(self, db, storage, make_user, project):
        pm = make_user("pm")
        op = make_user("operative", current_project_id=project.id)
        v1 = _upload(db, storage, pm, project, "1.0")
        assert evidence.validate_document_qr(db, op, v1.id)["status"] == "current"

        _upload(db, storage, pm, project, "1.1")
        v3 = _upload(db, storage, pm, project, "1.2")
        result = evidence.validate_document_qr(db, op, v1.id, location="Gate 2")
        assert result["status"] == "superseded"
        # follows the chain to the newest version
        assert result["latest_version"] == "1.2"
        assert result["latest_document_id"] == str(v3.id)
        assert db.query(Notification).filter(Notification.template_key == "document_superseded").count() == 1

        scans = (
            db.query(EvidenceRecord)
            .filter(EvidenceRecord.action_type == "qr_scan")
            .order_by(EvidenceRecord.sequence)
            .all()
        )
        assert [s.event_metadata["scan_result"] for s in scans] == ["current", "superseded"]

    def test_unknown_document(self, db, make_user):
        import uuid

        result = evidence.validate_document_qr(db, make_user("operative"), uuid.uuid4())
        assert result["status"] == "error"

    def test_not_on_project(self, db, storage, make_user, project):
        doc = _upload(db, storage, make_user("pm"), project)
        outsider = make_user("operative")
        assert evidence.validate_document_qr(db, outsider, doc.id)["status"] == "unauthorized"

    def test_poster_scan_counts(self, db, storage, make_user, project):
        pm = make_user("pm")
        op = make_user("operative", current_project_id=project.id)
        doc = _upload(db, storage, pm, project)
        poster = evidence.create_poster(db, pm, {
            "project_id": project.id, "poster_type": "welfare", "location_name": "Canteen", "document_ids": [doc.id],
        })
        evidence.validate_document_qr(db, op, doc.id, poster_token=poster.token)
        db.refresh(poster)
        assert poster.scan_count == 1
        assert evidence.poster_url(poster).endswith(f"/evidence/qr/{poster.token}")

    def test_plot_poster_needs_plot(self, db, make_user, project):
        with pytest.raises(ValidationError):
            evidence.create_poster(db, make_user("pm"), {
                "project_id": project.id, "poster_type": "plot-specific", "location_name": "Plot 4",
            })


class TestExports:
    def test_json_export_is_stored(self, db, storage, make_user, project):
        pm = make_user("pm")
        evidence.log_event(db, project.id, "view", "RAMS", operative_id=pm.id)
        db.commit()
        export = evidence.create_export(db, storage, pm, "project", "json", {"project_ids": [str(project.id)]})
        assert export.status == "completed"
        assert export.record_count == 1
        body = json.loads(storage.open(export.file_key))
        assert body["records"][0]["project_name"] == "Riverside Block A"

    def test_csv_export(self, db, storage, make_user, project):
        pm = make_user("pm")
        evidence.log_event(db, project.id, "view", "RAMS", operative_id=pm.id)
        db.commit()
        export = evidence.create_export(db, storage, pm, "company", "csv", {})
        content = storage.open(export.file_key).decode()
        assert content.startswith("Sequence,Timestamp,Project")

    def test_scoped_export_needs_ids(self, db, storage, make_user):
        with pytest.raises(ValidationError):
            evidence.create_export(db, storage, make_user("pm"), "operative", "csv", {})


class TestChainReport:
    @pytest.fixture()
    def events(self, db, make_user, project, plot):
        olga = make_user("operative", first_name="Olga")
        peter = make_user("operative", first_name="Peter")
        harbour = Project(name="Harbour View")
        db.add(harbour)
        db.commit()
        viewed = evidence.log_event(db, project.id, "view", "RAMS", operative_id=olga.id, plot_id=plot.id, document_version="1.0")
        signed = evidence.log_event(db, project.id, "sign", "RAMS", operative_id=peter.id, document_version="2.1")
        printed = evidence.log_event(db, harbour.id, "print", "Drawing", operative_id=olga.id)
        viewed.created_at = datetime(2026, 10, 1, 9, 0)
        signed.created_at = datetime(2026, 10, 19, 10, 0)
        printed.created_at = datetime(2026, 10, 19, 11, 0)
        db.commit()
        return olga, peter, harbour

    def test_newest_first_with_names(self, db, events):
        rows = evidence.get_evidence_chain_report(db)
        assert [r["action_type"] for r in rows] == ["print", "sign", "view"]
        assert rows[0]["project_name"] == "Harbour View"
        assert rows[2]["operative_name"] == "Olga Tester"
        assert rows[2]["plot_number"] == "204"
        assert len(evidence.get_evidence_chain_report(db, limit=1)) == 1

    def test_filters(self, db, events, project, plot):
        olga, peter, harbour = events
        report = evidence.get_evidence_chain_report
        assert len(report(db, project_id=project.id)) == 2
        assert {r["project_name"] for r in report(db, operative_id=olga.id)} == {"Riverside Block A", "Harbour View"}
        assert [r["action_type"] for r in report(db, plot_id=plot.id)] == ["view"]
        assert [r["action_type"] for r in report(db, document_type="Drawing")] == ["print"]
        assert [r["action_type"] for r in report(db, action_type="sign")] == ["sign"]

    def test_date_range_includes_end_day(self, db, events):
        report = evidence.get_evidence_chain_report
        assert [r["action_type"] for r in report(db, date_from=date(2026, 10, 10))] == ["print", "sign"]
        assert [r["action_type"] for r in report(db, date_to=date(2026, 10, 1))] == ["view"]
        assert len(report(db, date_from=date(2026, 10, 19), date_to=date(2026, 10, 19))) == 2

    def test_search(self, db, events):
        report = evidence.get_evidence_chain_report
        assert len(report(db, search="olga")) == 2
        assert [r["project_name"] for r in report(db, search="HARBOUR")] == ["Harbour View"]
        assert [r["plot_number"] for r in report(db, search="204")] == ["204"]
        assert [r["document_version"] for r in report(db, search="2.1")] == ["2.1"]
        assert report(db, search="nothing like this") == []
