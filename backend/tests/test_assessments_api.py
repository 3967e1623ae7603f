"""
API tests for the assessment lifecycle:
- start → responses → completion stores an immutable scorecard
- tiered report views over the stored scorecard
- rejected responses, unknown sessions and results requested too early
- sessions survive losing the in-memory engine (replayed from the trial log)
- a failed write never leaves the cached engine ahead of the stored log
"""
import json
import logging
import uuid

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from database import Base, get_db
from main import JSONFormatter, app
from models.assessment_result import AssessmentResult
from routers.assessments import _live_engines
from schemas.trial import StimulusCard
from services.assessment_engine import AssessmentEngine
from services.engine_config import EngineConfig
from services.rule_scheduler import RuleBlockScheduler
from services.stimulus_deck import matching_key_card

engine = create_engine(
    "sqlite://",
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def override_get_db():
    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()


app.dependency_overrides[get_db] = override_get_db
client = TestClient(app)


@pytest.fixture(autouse=True)
def fresh_database():
    Base.metadata.create_all(bind=engine)
    _live_engines.clear()
    yield
    _live_engines.clear()
    Base.metadata.drop_all(bind=engine)


# ── Helpers ──────────────────────────────────────────────────────


def _start(seed=7):
    resp = client.post("/api/assessments/start", json={"subject_id": "subj-001", "seed": seed})
    assert resp.status_code == 201
    return resp.json()


def _correct_choice(state, seed):
    rule = RuleBlockScheduler(EngineConfig(), seed=seed).rule_for_block(state["rule_block_number"])
    return matching_key_card(StimulusCard(**state["stimulus"]), rule)


def _answer(assessment_id, state, seed, response_time=1.0):
    return client.post(
        f"/api/assessments/{assessment_id}/responses",
        json={
            "choice": _correct_choice(state, seed),
            "response_time": response_time,
            "trial_number": state["next_trial_number"],
        },
    )


def _play(assessment_id, seed, count=None):
    """Answer correctly until complete (or `count` responses)."""
    answered = 0
    while count is None or answered < count:
        state = client.get(f"/api/assessments/{assessment_id}/state").json()
        if state["next_trial_number"] is None:
            break
        resp = _answer(assessment_id, state, seed)
        assert resp.status_code == 200, resp.text
        answered += 1
    return answered


# ── Lifecycle ───────────────────────────────────────────────────


class TestAssessmentLifecycle:
    def test_start_returns_first_trial(self):
        state = _start()
        assert state["status"] == "in_progress"
        assert state["next_trial_number"] == 1
        assert state["total_trials"] == 36
        assert state["rule_block_number"] == 1
        assert state["trial_in_block"] == 1
        assert state["intervention_level"] == "normal"
        assert state["trials_completed"] == 0
        assert [c["id"] for c in state["key_cards"]] == ["A", "B", "C", "D"]
        # Active rule is hidden from the client
        assert "rule" not in state

    def test_full_session_produces_scorecard(self):
        state = _start(seed=7)
        assert _play(state["id"], seed=7) == 36

        header = client.get(f"/api/assessments/{state['id']}").json()
        assert header["status"] == "completed"
        assert header["completed_at"] is not None

        result = client.get(f"/api/assessments/{state['id']}/result")
        assert result.status_code == 200
        data = result.json()
        assert data["cognitive_flexibility_score"] == 100
        assert data["shifts_achieved"] == 5
        assert data["perseverative_errors"] == 0
        assert len(data["trials"]) == 36

        final = client.get(f"/api/assessments/{state['id']}/state").json()
        assert final["next_trial_number"] is None
        assert final["stimulus"] is None
        assert final["trials_completed"] == 36

    def test_response_returns_classified_trial(self):
        state = _start(seed=8)
        resp = _answer(state["id"], state, seed=8)
        trial = resp.json()
        assert trial["trial_number"] == 1
        assert trial["correct"] is True
        assert trial["trial_type"] == "core"
        assert trial["rule_switch"] is False

    def test_result_is_stable_across_reads(self):
        state = _start(seed=9)
        _play(state["id"], seed=9)
        first = client.get(f"/api/assessments/{state['id']}/result").json()
        _live_engines.clear()
        second = client.get(f"/api/assessments/{state['id']}/result").json()
        assert first == second

    def test_stored_result_rejects_updates(self):
        state = _start(seed=10)
        _play(state["id"], seed=10)
        db = TestingSessionLocal()
        try:
            stored = db.query(AssessmentResult).one()
            stored.cognitive_flexibility_score = 1
            with pytest.raises(ValueError):
                db.commit()
            db.rollback()
        finally:
            db.close()


# ── Reports ─────────────────────────────────────────────────────


class TestReports:
    def test_tiers(self):
        state = _start(seed=11)
        _play(state["id"], seed=11)
        url = f"/api/assessments/{state['id']}/report"

        basic = client.get(url).json()
        assert basic["tier"] == "basic"
        assert basic["headline"]["score_label"] == "Excellent"
        assert basic["performance"] is None
        assert basic["trials"] is None

        standard = client.get(url, params={"tier": "standard"}).json()
        assert standard["performance"]["rule_adaptation_percent"] == 100
        assert standard["adaptive_features"]["guided_mode_triggered"] is False
        assert standard["block_performance"] is None

        premium = client.get(url, params={"tier": "premium"}).json()
        assert len(premium["block_performance"]) == 6
        assert len(premium["response_times"]) == 36
        assert len(premium["trials"]) == 36

    def test_unknown_tier(self):
        state = _start(seed=12)
        _play(state["id"], seed=12)
        resp = client.get(f"/api/assessments/{state['id']}/report", params={"tier": "gold"})
        assert resp.status_code == 400


# ── Rejections ──────────────────────────────────────────────────


class TestRejections:
    def test_unknown_assessment(self):
        missing = uuid.uuid4()
        assert client.get(f"/api/assessments/{missing}").status_code == 404
        assert client.get(f"/api/assessments/{missing}/state").status_code == 404
        resp = client.post(f"/api/assessments/{missing}/responses", json={"choice": "A", "response_time": 1.0})
        assert resp.status_code == 404

    def test_result_before_completion(self):
        state = _start(seed=13)
        _play(state["id"], seed=13, count=3)
        assert client.get(f"/api/assessments/{state['id']}/result").status_code == 409
        assert client.get(f"/api/assessments/{state['id']}/report").status_code == 409

    def test_rejected_responses_leave_log_unchanged(self):
        state = _start(seed=14)
        url = f"/api/assessments/{state['id']}/responses"

        assert client.post(url, json={"choice": "Z", "response_time": 1.0}).status_code == 400
        assert client.post(url, json={"choice": "A", "response_time": 1.0, "trial_number": 5}).status_code == 400
        assert client.post(url, json={"choice": "A", "response_time": -1.0}).status_code == 422

        after = client.get(f"/api/assessments/{state['id']}/state").json()
        assert after["trials_completed"] == 0
        assert after["next_trial_number"] == 1

    @pytest.mark.parametrize("raw_time", ["1e309", "NaN", "Infinity"])
    def test_non_finite_response_time(self, raw_time):
        state = _start(seed=18)
        resp = client.post(
            f"/api/assessments/{state['id']}/responses",
            content=f'{{"choice": "A", "response_time": {raw_time}}}',
            headers={"Content-Type": "application/json"},
        )
        assert resp.status_code == 422
        after = client.get(f"/api/assessments/{state['id']}/state").json()
        assert after["trials_completed"] == 0

    def test_no_responses_after_completion(self):
        state = _start(seed=15)
        _play(state["id"], seed=15)
        resp = client.post(f"/api/assessments/{state['id']}/responses", json={"choice": "A", "response_time": 1.0})
        assert resp.status_code == 400


# ── Abandon & recovery ──────────────────────────────────────────


class TestAbandonAndRecovery:
    def test_abandon(self):
        state = _start(seed=16)
        _play(state["id"], seed=16, count=4)

        resp = client.post(f"/api/assessments/{state['id']}/abandon")
        assert resp.status_code == 200
        assert resp.json()["status"] == "abandoned"

        url = f"/api/assessments/{state['id']}"
        assert client.post(f"{url}/responses", json={"choice": "A", "response_time": 1.0}).status_code == 400
        assert client.get(f"{url}/result").status_code == 409
        assert client.post(f"{url}/abandon").status_code == 400

    def test_session_replayed_after_engine_lost(self):
        state = _start(seed=17)
        _play(state["id"], seed=17, count=10)

        _live_engines.clear()
        resumed = client.get(f"/api/assessments/{state['id']}/state").json()
        assert resumed["next_trial_number"] == 11
        assert resumed["trials_completed"] == 10
        assert resumed["rule_block_number"] == 2
        assert resumed["trial_in_block"] == 5

        _play(state["id"], seed=17)
        data = client.get(f"/api/assessments/{state['id']}/result").json()
        assert data["cognitive_flexibility_score"] == 100
        assert [t["trial_number"] for t in data["trials"]] == list(range(1, 37))


# ── Write failures ──────────────────────────────────────────────


class _ConflictingSession(Session):
    """Session whose commit loses a race for the (assessment, trial_number) slot."""
    def commit(self):
        raise IntegrityError(
            "INSERT INTO assessment_trials", {}, Exception("UNIQUE constraint failed")
        )


class TestWriteFailures:
    def test_failed_commit_drops_cached_engine(self):
        state = _start(seed=19)
        key = uuid.UUID(state["id"])
        conflicting = sessionmaker(autocommit=False, autoflush=False, bind=engine, class_=_ConflictingSession)

        def conflicting_db():
            db = conflicting()
            try:
                yield db
            finally:
                db.close()

        app.dependency_overrides[get_db] = conflicting_db
        try:
            resp = _answer(state["id"], state, seed=19)
        finally:
            app.dependency_overrides[get_db] = override_get_db

        assert resp.status_code == 409
        assert key not in _live_engines

        after = client.get(f"/api/assessments/{state['id']}/state").json()
        assert after["trials_completed"] == 0
        assert after["next_trial_number"] == 1
        assert _answer(state["id"], after, seed=19).json()["trial_number"] == 1

    def test_cached_engine_with_different_history_is_replayed(self):
        state = _start(seed=20)
        key = uuid.UUID(state["id"])
        stored_choice = _answer(state["id"], state, seed=20).json()["user_choice"]

        # Same number of trials as the stored log, different response
        stale = AssessmentEngine(seed=20)
        wrong = sorted({"A", "B", "C", "D"} - {stored_choice})[0]
        stale.submit_response(wrong, 1.0)
        _live_engines[key] = stale

        resumed = client.get(f"/api/assessments/{state['id']}/state").json()
        assert resumed["trials_completed"] == 1
        assert _live_engines[key] is not stale
        assert _live_engines[key].trials[0].user_choice == stored_choice


# ── Ops ─────────────────────────────────────────────────────────


class TestOps:
    def test_root(self):
        resp = client.get("/")
        assert resp.status_code == 200
        assert resp.json()["name"] == "FlexSort API"

    def test_json_formatter_merges_extra_fields(self):
        record = logging.makeLogRecord({
            "name": "flexsort", "levelname": "INFO", "msg": "started %s",
            "args": ("ok",), "block_size": 6,
        })
        entry = json.loads(JSONFormatter().format(record))
        assert entry["message"] == "started ok"
        assert entry["level"] == "INFO"
        assert entry["block_size"] == 6
        assert "args" not in entry
