"""
Shared fixtures: an isolated SQLite database per test, rate limiting off,
and known-good structured records.
"""
from __future__ import annotations

import os
import tempfile

# Must be set before app modules read settings: no broker (Celery runs
# eagerly, work goes to the local executor) and uploads kept out of the repo.
os.environ["REDIS_URL"] = "redis://127.0.0.1:1/0"
os.environ.setdefault("UPLOAD_DIR", tempfile.mkdtemp(prefix="cv-uploads-"))

import asyncio

import pytest

from app.core.config import settings
from app.core.limiter import limiter
from app.db import init_db
from app.services.adapters import AdapterResult
from app.services.job_store import JobStore


@pytest.fixture
def db(tmp_path, monkeypatch):
    monkeypatch.setattr(settings, "DATABASE_URL", "")
    monkeypatch.setattr(settings, "SQLITE_PATH", str(tmp_path / "cvs.db"))
    init_db()
    yield str(tmp_path / "cvs.db")


@pytest.fixture
def store(db) -> JobStore:
    return JobStore()


@pytest.fixture(autouse=True)
def no_rate_limit(monkeypatch):
    monkeypatch.setattr(limiter, "enabled", False)


@pytest.fixture
def owner_id() -> str:
    return "user-1"


@pytest.fixture
def pending_job(store, owner_id) -> str:
    """A freshly uploaded record with usable text."""
    return asyncio.run(store.create_job_async(
        owner_id,
        "Jane Doe\nSenior Nanny\njane@example.com\n+44 7700 900123\nExperience: ...",
        filename="jane.docx",
        file_type="docx",
        file_size=1234,
    ))


@pytest.fixture
def sample_cv() -> dict:
    return {
        "fullName": "Jane Doe",
        "jobTitle": "senior nanny",
        "personalDetails": {
            "nationality": "British",
            "languages": ["English", "French"],
            "dob": "1990-04-02",
            "maritalStatus": "Single",
            "email": "jane@example.com",
            "phone": "+44 7700 900123",
            "location": "London",
        },
        "profile": "I am responsible for a discrete household.",
        "experience": [
            {
                "role": "nanny",
                "company": "Private Family",
                "location": "Chelsea",
                "startDate": "2021-03",
                "endDate": "Present",
                "bullets": ["Sole charge of two children", "I am responsible for school runs"],
            }
        ],
        "education": [
            {"program": "Early Years Diploma", "institution": "City College", "startYear": "2008", "endYear": "2010"}
        ],
        "skills": ["First Aid", "Cooking"],
        "interests": ["Swimming"],
    }


@pytest.fixture
def sample_registration() -> dict:
    return {
        "fullName": "Jane Doe",
        "email": "jane@example.com",
        "phone": "+44 7700 900123",
        "dob": "1990-04-02",
        "nationality": "British",
        "languages": ["English"],
        "workInUk": "Yes",
        "drivingLicence": "Yes",
        "licenceClean": "Yes",
        "emergencyContactDetails": {"name": "John Doe", "phone": "+44 7700 900456", "relationship": "Brother"},
    }


@pytest.fixture
def adapter_result(sample_cv, sample_registration) -> AdapterResult:
    return AdapterResult(
        structured_cv=sample_cv,
        structured_registration=sample_registration,
        preview_markup="<div style=\"font-family: 'Palatino Linotype'\"><h1>Jane Doe</h1></div>",
        model_used="claude",
    )
