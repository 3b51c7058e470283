"""
Tests for project and plot soft delete / restore.
"""
import pytest

from sitework.errors import ConflictError, NotFoundError
from sitework.services import audit, projects


class TestProjectSoftDelete:
    def test_delete_hides_and_restore_returns(self, db, make_user, project):
        pm = make_user("pm")
        projects.delete_project(db, pm, project, reason="Contract cancelled")
        assert project.deleted_by == pm.id
        with pytest.raises(NotFoundError):
            projects.get_project(db, project.id)
        assert projects.get_project(db, project.id, include_deleted=True) is project
        assert projects.list_projects(db) == []
        assert [p.id for p in projects.list_projects(db, include_deleted=True)] == [project.id]

        projects.restore_project(db, pm, project)
        assert project.deleted_at is None
        assert [p.id for p in projects.list_projects(db)] == [project.id]

    def test_audit_entries(self, db, make_user, project):
        pm = make_user("pm")
        projects.delete_project(db, pm, project, reason="Contract cancelled")
        projects.restore_project(db, pm, project)

        deleted, _ = audit.get_audit_logs(db, entity_type="project", entity_id=project.id, action="SOFT_DELETE")
        assert deleted[0].actor_id == pm.id
        assert deleted[0].context == {"reason": "Contract cancelled"}
        assert audit.verify_audit_log(deleted[0])
        restored, total = audit.get_audit_logs(db, entity_type="project", entity_id=project.id, action="RESTORE")
        assert total == 1
        assert restored[0].context["deletion_reason"] == "Contract cancelled"

    def test_restore_live_project(self, db, make_user, project):
        with pytest.raises(ConflictError):
            projects.restore_project(db, make_user("pm"), project)


class TestPlotSoftDelete:
    def test_delete_and_restore(self, db, make_user, project, plot):
        pm = make_user("pm")
        projects.delete_plot(db, pm, plot, reason="Merged with 205")
        assert projects.list_plots(db, project.id) == []
        assert len(projects.list_plots(db, project.id, include_deleted=True)) == 1
        with pytest.raises(NotFoundError):
            projects.get_plot(db, plot.id)
        with pytest.raises(ConflictError):
            projects.delete_plot(db, pm, plot)

        projects.restore_plot(db, pm, plot)
        assert projects.get_plot(db, plot.id).plot_number == "204"

        actions = sorted(a.action for a in audit.get_audit_logs(db, entity_type="plot", entity_id=plot.id)[0])
        assert actions == ["RESTORE", "SOFT_DELETE"]
