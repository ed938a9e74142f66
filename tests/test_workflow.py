import pytest

from backend.pipeline_tracker.errors import NotFoundError, ValidationError
from backend.pipeline_tracker.models import ApplicationStatus
from backend.pipeline_tracker.workflow import parse_status

NEW_APPLICATION = {
    "candidateName": "  Katherine Johnson ",
    "role": "Data Analyst",
    "yearsOfExperience": 6,
    "resumeLink": "https://example.com/kj.pdf",
}


@pytest.fixture
def created(workflow):
    return workflow.create_application("owner-a", NEW_APPLICATION)


def test_create_defaults_to_applied(workflow, created):
    assert created.status is ApplicationStatus.APPLIED
    assert created.candidate_name == "Katherine Johnson"
    assert created.notes == ""
    assert created.created_at == created.last_updated == created.updated_at
    assert workflow.get_application("owner-a", created.id) == created


@pytest.mark.parametrize(
    "payload, field",
    [
        ({**NEW_APPLICATION, "candidateName": "   "}, "candidateName"),
        ({key: value for key, value in NEW_APPLICATION.items() if key != "role"}, "role"),
        ({**NEW_APPLICATION, "yearsOfExperience": -1}, "yearsOfExperience"),
        ({**NEW_APPLICATION, "resumeLink": "ftp://example.com/cv"}, "resumeLink"),
        ({**NEW_APPLICATION, "status": "hired"}, "status"),
    ],
)
def test_create_rejects_invalid_payloads(workflow, payload, field):
    with pytest.raises(ValidationError) as excinfo:
        workflow.create_application("owner-a", payload)
    assert field in [error["field"] for error in excinfo.value.errors]


def test_set_status_advances_last_updated(workflow, created):
    moved = workflow.set_status("owner-a", created.id, "interview")

    assert moved.status is ApplicationStatus.INTERVIEW
    assert moved.last_updated > created.last_updated
    assert moved.candidate_name == created.candidate_name


def test_repeated_status_still_touches_last_updated(workflow, created):
    first = workflow.set_status("owner-a", created.id, ApplicationStatus.OFFER)
    second = workflow.set_status("owner-a", created.id, ApplicationStatus.OFFER)

    assert second.status is ApplicationStatus.OFFER
    assert second.last_updated > first.last_updated


def test_any_stage_can_move_to_any_other(workflow, created):
    for status in ("rejected", "applied", "offer", "interview"):
        assert workflow.set_status("owner-a", created.id, status).status.value == status


def test_set_status_on_missing_record(workflow, created):
    with pytest.raises(NotFoundError):
        workflow.set_status("owner-a", "does-not-exist", "offer")


def test_set_status_on_other_owners_record_is_not_found(workflow, created):
    with pytest.raises(NotFoundError):
        workflow.set_status("owner-b", created.id, "offer")
    assert workflow.get_application("owner-a", created.id).status is ApplicationStatus.APPLIED


@pytest.mark.parametrize("value", ["hired", "", None])
def test_invalid_status_is_a_validation_error(workflow, created, value):
    with pytest.raises(ValidationError) as excinfo:
        workflow.set_status("owner-a", created.id, value)
    assert excinfo.value.errors[0]["field"] == "status"


def test_parse_status_normalises_case():
    assert parse_status(" Offer ") is ApplicationStatus.OFFER


def test_sparse_update_only_touches_given_fields(workflow, created):
    updated = workflow.update_application("owner-a", created.id, {"notes": "Strong SQL"})

    assert updated.notes == "Strong SQL"
    assert updated.role == created.role
    assert updated.resume_link == created.resume_link
    assert updated.last_updated == created.last_updated
    assert updated.updated_at > created.updated_at


def test_update_with_status_change_moves_last_updated(workflow, created):
    same = workflow.update_application("owner-a", created.id, {"status": "applied", "role": "Data Lead"})
    assert same.role == "Data Lead"
    assert same.last_updated == created.last_updated

    changed = workflow.update_application("owner-a", created.id, {"status": "interview"})
    assert changed.status is ApplicationStatus.INTERVIEW
    assert changed.last_updated > created.last_updated


def test_update_rejects_null_required_fields(workflow, created):
    with pytest.raises(ValidationError) as excinfo:
        workflow.update_application("owner-a", created.id, {"candidateName": None})
    assert excinfo.value.errors[0]["field"] == "candidateName"


def test_update_and_delete_are_owner_scoped(workflow, created):
    with pytest.raises(NotFoundError):
        workflow.update_application("owner-b", created.id, {"notes": "x"})
    with pytest.raises(NotFoundError):
        workflow.delete_application("owner-b", created.id)

    workflow.delete_application("owner-a", created.id)
    with pytest.raises(NotFoundError):
        workflow.get_application("owner-a", created.id)


def test_list_applications_params(workflow, created):
    workflow.create_application("owner-a", {**NEW_APPLICATION, "candidateName": "Dorothy Vaughan", "role": "Manager"})

    result = workflow.list_applications("owner-a", {"role": "analyst"})
    assert [item.candidate_name for item in result.items] == ["Katherine Johnson"]

    result = workflow.list_applications("owner-a", {"sortBy": "candidateName", "sortOrder": "asc", "limit": 1})
    assert [item.candidate_name for item in result.items] == ["Dorothy Vaughan"]
    assert result.total_pages == 2


@pytest.mark.parametrize(
    "params, field",
    [
        ({"limit": 101}, "limit"),
        ({"page": 0}, "page"),
        ({"sortBy": "ownerId"}, "sortBy"),
        ({"sortOrder": "sideways"}, "sortOrder"),
        ({"status": "hired"}, "status"),
    ],
)
def test_list_applications_rejects_bad_params(workflow, params, field):
    with pytest.raises(ValidationError) as excinfo:
        workflow.list_applications("owner-a", params)
    assert excinfo.value.errors[0]["field"] == field
