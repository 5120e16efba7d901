"""Shared fixtures: an app on in-memory SQLite with scripted judges in place of Gemini and Claude."""

import datetime
import json

import jwt
import pytest

import catalog
from extensions import db
from main import create_app
from verification import VerificationOrchestrator

TEST_JWT_SECRET = "test-secret-key"
FAKE_JPEG = b"\xff\xd8\xff\xe0fake-jpeg"


def verdict_json(is_valid=True, confidence=90, reasoning="Evidence matches the mission"):
    return json.dumps({
        "isValid": is_valid,
        "confidence": confidence,
        "reasoning": reasoning,
        "detectedElements": ["reusable bag"],
    })


class FakeJudge:
    """
    Judge provider driven by a script. Each call consumes the next entry;
    an exception entry is raised, a string is returned. The last entry repeats.
    """

    def __init__(self, name, *script):
        self.name = name
        self.script = list(script) or [verdict_json()]
        self.calls = 0
        self.on_call = None

    def judge(self, image_bytes, prompt):
        self.calls += 1
        if self.on_call is not None:
            self.on_call()
        entry = self.script.pop(0) if len(self.script) > 1 else self.script[0]
        if isinstance(entry, Exception):
            raise entry
        return entry


def fake_image_fetcher(image_url, timeout=10):
    return FAKE_JPEG


@pytest.fixture
def gemini():
    return FakeJudge("gemini", verdict_json())


@pytest.fixture
def claude():
    return FakeJudge("claude", verdict_json())


@pytest.fixture
def orchestrator(gemini, claude):
    return VerificationOrchestrator([gemini, claude], image_fetcher=fake_image_fetcher)


@pytest.fixture
def app(orchestrator):
    app = create_app({
        "TESTING": True,
        "SQLALCHEMY_DATABASE_URI": "sqlite://",
        "RATELIMIT_ENABLED": False,
        "RATELIMIT_STORAGE_URI": "memory://",
        "JWT_SECRET_KEYS": [TEST_JWT_SECRET],
        "VERIFICATION_ORCHESTRATOR": orchestrator,
    })
    with app.app_context():
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def make_mission(app):
    def _make(title="Bring a reusable bag", required_submissions=1, credit_reward=100, **kwargs):
        mission = catalog.create_mission(
            title=title,
            description=kwargs.pop("description", "Shop with a reusable bag instead of plastic"),
            mission_type=kwargs.pop("mission_type", "WASTE_REDUCTION"),
            difficulty=kwargs.pop("difficulty", "EASY"),
            co2_reduction_amount=kwargs.pop("co2_reduction_amount", 0.5),
            credit_reward=credit_reward,
            required_submissions=required_submissions,
            verification_criteria=kwargs.pop("verification_criteria", ["A reusable bag is visible"]),
            **kwargs,
        )
        db.session.commit()
        return mission
    return _make


def make_token(user_id, role=None, secret=TEST_JWT_SECRET, expires_in=datetime.timedelta(hours=1)):
    claims = {"sub": user_id, "exp": datetime.datetime.now(datetime.timezone.utc) + expires_in}
    if role:
        claims["role"] = role
    return jwt.encode(claims, secret, algorithm="HS256")


def auth_headers(user_id, role=None):
    return {"Authorization": f"Bearer {make_token(user_id, role)}"}
