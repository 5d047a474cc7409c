"""
Shared fixtures for the pair survey tests.
"""

import os
import random
import tempfile
from pathlib import Path

import pytest

# app.py reads its config and creates storage dirs at import time;
# point all of that at a throwaway directory before any test imports it.
_SESSION_ROOT = Path(tempfile.mkdtemp(prefix="pair-survey-"))
os.environ.setdefault("SURVEY_STORAGE", str(_SESSION_ROOT / "storage"))
os.environ.setdefault("SURVEY_IMAGES_DIR", str(_SESSION_ROOT / "images"))
os.environ.setdefault("SURVEY_CONFIG", str(_SESSION_ROOT / "config.yaml"))

from exposure_ledger import ExposureLedger
from pair_scheduler import PairScheduler


@pytest.fixture
def counts_path(tmp_path):
    return tmp_path / "data" / "image_counts.json"


@pytest.fixture
def ledger(counts_path):
    """Fresh ledger backed by a file under tmp_path."""
    return ExposureLedger(counts_path)


@pytest.fixture
def rng():
    """Seeded RNG so tie-breaking is reproducible within a test."""
    return random.Random(1234)


@pytest.fixture
def scheduler(ledger, rng):
    return PairScheduler(ledger, rng)


@pytest.fixture
def images_dir(tmp_path):
    """Six images plus a file that is not an image."""
    d = tmp_path / "images"
    d.mkdir()
    for name in ("a.jpg", "b.jpg", "c.png", "d.jpeg", "e.webp", "f.JPG"):
        (d / name).write_bytes(b"\x89fake")
    (d / "notes.txt").write_text("not an image", encoding="utf-8")
    return d


@pytest.fixture
def survey_app(monkeypatch, tmp_path, images_dir, rng):
    """The app module rewired to tmp storage, two dimensions and two pairs each."""
    import app as survey_app
    import survey_storage

    storage = tmp_path / "storage"
    ledger = ExposureLedger(storage / "data" / "image_counts.json")
    monkeypatch.setattr(survey_app, "IMAGES_DIR", images_dir)
    monkeypatch.setattr(survey_app, "RESULTS_DIR", storage / "results")
    monkeypatch.setattr(survey_app, "DB_PATH", storage / "db" / "survey.sqlite")
    monkeypatch.setattr(survey_app, "EXPORT_DIR", storage / "exports")
    monkeypatch.setattr(survey_app, "LEDGER", ledger)
    monkeypatch.setattr(survey_app, "SCHEDULER", PairScheduler(
        ledger, rng, max_pairs_per_dimension=survey_app.MAX_PAIRS_PER_DIMENSION))
    monkeypatch.setattr(survey_app, "DIMENSIONS", {"safer": "Which place looks safer?",
                                                   "lively": "Which place looks more lively?"})
    monkeypatch.setattr(survey_app, "PAIRS_PER_DIMENSION", 2)
    monkeypatch.setattr(survey_app, "BACKGROUND", {"gender": {"label": "Gender", "options": ["Male", "Female"]}})
    monkeypatch.setattr(survey_app, "_initialized", True)
    survey_storage.init_db(storage / "db" / "survey.sqlite")
    survey_app.app.config["TESTING"] = True
    return survey_app


@pytest.fixture
def client(survey_app):
    """Flask test client."""
    return survey_app.app.test_client()
