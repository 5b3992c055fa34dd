import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from api.main import app
from db.session import get_db

USER_ID = 555
HEADERS = {"X-User-Id": str(USER_ID)}


@pytest_asyncio.fixture
async def client(session_factory):
    async def override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()


@pytest.mark.asyncio
async def test_full_attempt_flow(client, quiz_factory, sample_answers):
    quiz, questions = await quiz_factory()

    resp = await client.post("/api/attempts", json={"quiz_id": quiz.id}, headers=HEADERS)
    assert resp.status_code == 201
    attempt = resp.json()
    assert attempt["total_questions"] == 5
    assert attempt["status"] == "created"

    for question, answer in zip(questions, sample_answers):
        resp = await client.post(
            f"/api/attempts/{attempt['id']}/answers",
            json={"question_id": question.id, "user_answer": answer, "time_spent_seconds": 20},
            headers=HEADERS,
        )
        assert resp.status_code == 201

    resp = await client.post(
        f"/api/attempts/{attempt['id']}/finalize",
        json={"total_time_spent_seconds": 300},
        headers=HEADERS,
    )
    assert resp.status_code == 200
    body = resp.json()
    assert body["score"] == 80
    assert body["total_points"] == 5
    assert body["already_completed"] is False

    retry = await client.post(
        f"/api/attempts/{attempt['id']}/finalize",
        json={"total_time_spent_seconds": 301},
        headers=HEADERS,
    )
    assert retry.status_code == 200
    assert retry.json()["already_completed"] is True
    assert retry.json()["score"] == 80

    profile = (await client.get("/api/profile", headers=HEADERS)).json()
    assert profile["points"] == 5
    assert profile["streak_count"] == 1

    engagement = (await client.get("/api/engagement", headers=HEADERS)).json()
    assert len(engagement) == 1
    assert engagement[0]["quizzes_completed"] == 1
    assert engagement[0]["total_time_spent_seconds"] == 300
    assert engagement[0]["total_score"] == 80

    detail = (await client.get(f"/api/attempts/{attempt['id']}", headers=HEADERS)).json()
    assert detail["status"] == "completed"
    assert len(detail["answers"]) == 5

    history = (await client.get("/api/attempts", headers=HEADERS)).json()
    assert [h["attempt_id"] for h in history] == [attempt["id"]]

    leaderboard = (await client.get("/api/leaderboard")).json()
    assert leaderboard[0]["user_id"] == USER_ID


@pytest.mark.asyncio
async def test_duplicate_answer_returns_error_envelope(client, quiz_factory):
    quiz, questions = await quiz_factory()
    attempt = (await client.post("/api/attempts", json={"quiz_id": quiz.id}, headers=HEADERS)).json()
    payload = {"question_id": questions[0].id, "user_answer": "A variable", "time_spent_seconds": 3}

    first = await client.post(f"/api/attempts/{attempt['id']}/answers", json=payload, headers=HEADERS)
    second = await client.post(
        f"/api/attempts/{attempt['id']}/answers",
        json={**payload, "user_answer": "A constant"},
        headers={**HEADERS, "X-Request-ID": "req-42"},
    )

    assert first.status_code == 201
    assert second.status_code == 409
    assert second.json()["error"]["code"] == "duplicate_answer"
    assert second.json()["request_id"] == "req-42"
    assert second.headers["X-Request-ID"] == "req-42"


@pytest.mark.asyncio
async def test_unknown_quiz_and_attempt(client):
    resp = await client.post("/api/attempts", json={"quiz_id": 4040}, headers=HEADERS)
    assert resp.status_code == 404
    assert resp.json()["error"]["code"] == "quiz_not_found"

    resp = await client.get("/api/attempts/9999", headers=HEADERS)
    assert resp.status_code == 404


@pytest.mark.asyncio
async def test_requests_without_user_are_rejected(client):
    resp = await client.get("/api/profile")
    assert resp.status_code == 401
    resp = await client.get("/api/profile", headers={"X-User-Id": "not-a-number"})
    assert resp.status_code == 401


@pytest.mark.asyncio
async def test_negative_time_is_a_validation_error(client, quiz_factory):
    quiz, _ = await quiz_factory()
    attempt = (await client.post("/api/attempts", json={"quiz_id": quiz.id}, headers=HEADERS)).json()

    resp = await client.post(
        f"/api/attempts/{attempt['id']}/finalize",
        json={"total_time_spent_seconds": -1},
        headers=HEADERS,
    )
    assert resp.status_code == 422


@pytest.mark.asyncio
async def test_profile_defaults_before_first_completion(client):
    profile = (await client.get("/api/profile", headers=HEADERS)).json()
    assert profile == {"user_id": USER_ID, "points": 0, "streak_count": 0, "max_streak": 0, "quizzes_completed": 0}


@pytest.mark.asyncio
async def test_review_endpoint_hides_key_until_finalized(client, quiz_factory):
    quiz, questions = await quiz_factory()
    attempt = (await client.post("/api/attempts", json={"quiz_id": quiz.id}, headers=HEADERS)).json()
    await client.post(
        f"/api/attempts/{attempt['id']}/answers",
        json={"question_id": questions[0].id, "user_answer": "A constant", "time_spent_seconds": 9},
        headers=HEADERS,
    )

    during = (await client.get(f"/api/attempts/{attempt['id']}/review", headers=HEADERS)).json()
    assert during[0]["question_text"] == questions[0].question_text
    assert during[0]["correct_answer"] is None

    await client.post(
        f"/api/attempts/{attempt['id']}/finalize",
        json={"total_time_spent_seconds": 30},
        headers=HEADERS,
    )
    after = (await client.get(f"/api/attempts/{attempt['id']}/review", headers=HEADERS)).json()
    assert after[0]["correct_answer"] == "A variable"
    assert after[0]["is_correct"] is False

    missing = await client.get("/api/attempts/9999/review", headers=HEADERS)
    assert missing.status_code == 404
