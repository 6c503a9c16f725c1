"""Tests for grade sheet exports."""

import pytest

from academics import evaluations, reports
from academics.errors import ValidationError
from academics.models import EvaluationRecord, User

pytestmark = pytest.mark.django_db


@pytest.fixture
def scored(group, faculty, coordinator, students):
    first = evaluations.update_internal_component(students[0].pk, group.pk, "cla1", 20, faculty.pk, "faculty")
    evaluations.update_internal_component(students[1].pk, group.pk, "cla1", 10, faculty.pk, "faculty")
    evaluations.publish([first.pk], coordinator.pk)
    return group


def test_grade_frame_columns_and_values(scored):
    df = reports.build_grade_frame(track="IDP")
    assert list(df.columns) == reports.GRADE_COLUMNS
    assert len(df) == 2
    assert sorted(df["cla1"].tolist()) == [5, 10]
    assert set(df["group"]) == {scored.code}


def test_published_only(scored):
    df = reports.build_grade_frame(published_only=True)
    assert df["student"].tolist() == ["student1"]


def test_solo_records_are_labelled(project, faculty):
    solo = User.objects.create_user(username="solo", password="pw")
    EvaluationRecord.objects.create(student=solo, project=project, internal_evaluator=faculty)
    df = reports.build_grade_frame()
    assert df["group"].tolist() == ["solo"]


def test_summary_rows(scored):
    rows = dict((label, value) for label, value in reports.summary_rows(reports.build_grade_frame()))
    assert rows["records"] == 2
    assert rows["published"] == 1
    assert rows["total.max"] == 10.0
    assert rows["total.min"] == 5.0


def test_invalid_track():
    with pytest.raises(ValidationError):
        reports.build_grade_frame(track="MSC")


def test_pdf_export(scored):
    pdf = reports.grade_sheet_pdf("Grade sheet: IDP", reports.build_grade_frame())
    assert pdf.startswith(b"%PDF")
