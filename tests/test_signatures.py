"""
Tests for the signature vault.
"""
import uuid

import pytest

from sitework.errors import ConflictError, NotFoundError, ValidationError
from sitework.models.models import Project, Signature
from sitework.services import documents, signatures


PAD = "data:image/png;base64,iVBORw0KGgoAAAANSUhEUgAAAAEAAAABCAYAAAAfFcSJAAAADUlEQVR42mP8z8BQDwAEhQGAhKmMIQAAAABJRU5ErkJggg=="


def _doc(db, storage, user, project, version="1.0"):
    return documents.upload_document(db, storage, user, {
        "project_id": project.id, "document_type": "RAMS", "title": "Scaffold RAMS", "version": version,
    })


class TestSigning:
    def test_pad_signature_needs_drawing(self, db, make_user, project):
        op = make_user("operative", current_project_id=project.id)
        with pytest.raises(ValidationError):
            signatures.sign_document(db, op, {"signature_type": "Induction", "method": "Digital Pad", "document_title": "Site induction"})

    def test_free_standing_sign_off(self, db, make_user, project):
        op = make_user("operative", current_project_id=project.id)
        sig = signatures.sign_document(db, op, {
            "signature_type": "Toolbox Talk", "method": "Digital Pad", "signature_data": PAD,
            "document_title": "Working at height",
        })
        assert sig.project_id == project.id
        assert sig.signature_data == PAD
        assert sig.status == "Valid"

    def test_checkbox_drops_signature_data(self, db, make_user, project):
        op = make_user("operative", current_project_id=project.id)
        sig = signatures.sign_document(db, op, {
            "signature_type": "Onboarding", "method": "Checkbox Confirm", "signature_data": PAD,
            "document_title": "Handbook",
        })
        assert sig.signature_data is None

    def test_duplicate_signature(self, db, storage, make_user, project):
        pm = make_user("pm")
        op = make_user("operative", current_project_id=project.id)
        doc = _doc(db, storage, pm, project)
        signatures.sign_document(db, op, {"signature_type": "RAMS", "method": "Checkbox Confirm", "document_id": doc.id})
        with pytest.raises(ConflictError):
            signatures.sign_document(db, op, {"signature_type": "RAMS", "method": "Checkbox Confirm", "document_id": doc.id})

    def test_superseded_document_cannot_be_signed(self, db, storage, make_user, project):
        pm = make_user("pm")
        op = make_user("operative", current_project_id=project.id)
        old = _doc(db, storage, pm, project, "1.0")
        _doc(db, storage, pm, project, "2.0")
        with pytest.raises(ValidationError):
            signatures.sign_document(db, op, {"signature_type": "RAMS", "method": "Checkbox Confirm", "document_id": old.id})

    def test_cannot_verify_own(self, db, make_user, project):
        sup = make_user("supervisor", current_project_id=project.id)
        sig = signatures.sign_document(db, sup, {"signature_type": "Site Notice", "method": "Checkbox Confirm", "document_title": "Noise"})
        with pytest.raises(ValidationError):
            signatures.verify_signature(db, sup, sig)

    def test_free_standing_unknown_project_or_plot(self, db, make_user, project):
        op = make_user("operative")
        base = {"signature_type": "Induction", "method": "Checkbox Confirm", "document_title": "Site induction"}
        with pytest.raises(NotFoundError):
            signatures.sign_document(db, op, dict(base, project_id=uuid.uuid4()))
        with pytest.raises(NotFoundError):
            signatures.sign_document(db, op, dict(base, project_id=project.id, plot_id=uuid.uuid4()))
        assert db.query(Signature).count() == 0

    def test_free_standing_plot_must_be_on_project(self, db, make_user, project, plot):
        other = Project(name="Other site")
        db.add(other)
        db.commit()
        op = make_user("operative")
        with pytest.raises(ValidationError):
            signatures.sign_document(db, op, {
                "signature_type": "Induction", "method": "Checkbox Confirm", "document_title": "Site induction",
                "project_id": other.id, "plot_id": plot.id,
            })
        sig = signatures.sign_document(db, op, {
            "signature_type": "Induction", "method": "Checkbox Confirm", "document_title": "Site induction",
            "plot_id": plot.id,
        })
        assert sig.project_id == project.id
        assert sig.plot_id == plot.id


class TestVault:
    def test_stats_and_filters(self, db, storage, make_user, project):
        pm = make_user("pm")
        op = make_user("operative", first_name="Ana", current_project_id=project.id)
        doc = _doc(db, storage, pm, project, "1.0")
        signatures.sign_document(db, op, {"signature_type": "RAMS", "method": "Checkbox Confirm", "document_id": doc.id})
        signatures.sign_document(db, op, {"signature_type": "Induction", "method": "Checkbox Confirm", "document_title": "Induction"})
        _doc(db, storage, pm, project, "1.1")

        rows = signatures.list_signatures(db)
        stats = signatures.signature_stats(rows)
        assert stats["total"] == 2
        assert stats["valid"] == 1
        assert stats["superseded"] == 1
        assert stats["completion_rate"] == 50
        assert stats["by_type"]["RAMS"] == 1

        assert len(signatures.list_signatures(db, search="ana tester")) == 2
        assert len(signatures.list_signatures(db, include_superseded=False)) == 1
        assert signatures.signature_stats([])["completion_rate"] == 0

    def test_csv_and_pdf(self, db, make_user, project):
        op = make_user("operative", current_project_id=project.id)
        signatures.sign_document(db, op, {
            "signature_type": "Toolbox Talk", "method": "Digital Pad", "signature_data": PAD, "document_title": "Dust",
        })
        rows = signatures.list_signatures(db)
        assert signatures.signatures_csv(rows).splitlines()[0].startswith("Operative Name,Document Title")
        assert signatures.signatures_pdf(rows).startswith(b"%PDF")
