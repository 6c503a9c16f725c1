"""Shared fixtures: users in every role, a supervised project and an approved group."""

from datetime import timedelta

import pytest
from django.utils import timezone
from rest_framework.test import APIClient

from academics.metrics import reset_metrics
from academics.models import Group, Project, User


@pytest.fixture(autouse=True)
def _clean_metrics():
    reset_metrics()
    yield
    reset_metrics()


@pytest.fixture
def coordinator(db):
    return User.objects.create_user(username="coord", password="pw", role="coordinator")


@pytest.fixture
def faculty(db):
    return User.objects.create_user(username="prof", password="pw", role="faculty")


@pytest.fixture
def other_faculty(db):
    return User.objects.create_user(username="prof2", password="pw", role="faculty")


@pytest.fixture
def examiner(db):
    return User.objects.create_user(username="ext1", password="pw", role="faculty", is_external_evaluator=True)


@pytest.fixture
def second_examiner(db):
    return User.objects.create_user(username="ext2", password="pw", role="faculty", is_external_evaluator=True)


@pytest.fixture
def students(db):
    return [
        User.objects.create_user(username=f"student{i}", password="pw", role="student")
        for i in range(1, 3)
    ]


@pytest.fixture
def project(faculty):
    return Project.objects.create(title="Soil sensing", track="IDP", faculty=faculty)


@pytest.fixture
def make_group(faculty):
    counter = {"n": 0}

    def _make(track="IDP", members=(), internal=None, status="approved", with_project=True):
        counter["n"] += 1
        internal = internal or faculty
        project = None
        if with_project:
            project = Project.objects.create(title=f"Project {counter['n']}", track=track, faculty=internal)
        group = Group.objects.create(
            code=f"G{counter['n']:05d}",
            track=track,
            status=status,
            project=project,
            faculty=internal if with_project else None,
        )
        if members:
            group.members.set(members)
        return group

    return _make


@pytest.fixture
def group(make_group, students):
    return make_group(members=students)


@pytest.fixture
def api_client():
    return APIClient()


@pytest.fixture
def as_user(api_client):
    def _login(user):
        api_client.force_authenticate(user=user)
        return api_client

    return _login


@pytest.fixture
def now():
    return timezone.now()


@pytest.fixture
def hours():
    return lambda n: timedelta(hours=n)
