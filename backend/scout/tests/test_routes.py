from datetime import date, timedelta

import pytest
from fastapi.testclient import TestClient

from scout.chat_service import APOLOGY, GREETING
from scout.main import create_app
from scout.models import CachedInsight, DailyMetric
from scout.tests.fakes import VALID_INSIGHT_JSON, FakeProvider


def _insight_providers(primary=(VALID_INSIGHT_JSON,), secondary=(VALID_INSIGHT_JSON,)):
    return (
        FakeProvider("openai", list(primary), label="OpenAI GPT-4"),
        FakeProvider("anthropic", list(secondary), label="Claude 3 Opus"),
    )


def _chat_providers(primary=("NCR is ahead.",), secondary=("fallback answer",)):
    return (
        FakeProvider("anthropic", list(primary), label="Claude"),
        FakeProvider("openai", list(secondary), label="OpenAI"),
    )


@pytest.fixture
def make_client(settings, session_factory, fake_repo):
    def _make(insight_providers=None, chat_providers=None, repository=fake_repo):
        app = create_app(
            settings=settings,
            session_factory=session_factory,
            insight_providers=insight_providers or _insight_providers(),
            chat_providers=chat_providers or _chat_providers(),
            repository=repository,
            create_tables=False,
        )
        return TestClient(app)

    return _make


def test_root_and_health(make_client):
    client = make_client()
    assert client.get("/").json()["status"] == "ok"
    health = client.get("/health").json()
    assert health == {"status": "ok", "database": "connected"}


def test_filter_defaults(make_client):
    body = make_client().get("/filters/defaults").json()
    assert body == {
        "dateRange": "last30days",
        "geography": "all",
        "brand": "all",
        "category": "all",
        "compareMode": False,
        "vibeContext": "intent",
    }


def test_trends_from_datastore(make_client, session_factory):
    today = date.today()
    with session_factory() as db:
        for i in range(1, 4):
            db.add(DailyMetric(date=today - timedelta(days=i), brand_id="alaska", revenue=100.0,
                               transaction_count=10, avg_basket_size=3.0, avg_duration=60.0))
        db.commit()
    client = make_client(repository=None)

    resp = client.post("/analytics/trends", json={"dateRange": "last30days", "brand": "alaska"})

    assert resp.status_code == 200
    body = resp.json()
    assert len(body["trends"]) == 3
    assert body["trends"][0]["revenue"] == 100.0
    assert body["summary"]["hasBaseline"] is False
    assert body["summary"]["forecast"] is None
    assert body["comparison"] is None


def test_geographic_from_datastore_is_empty_without_rows(make_client):
    resp = make_client(repository=None).post("/analytics/geographic", json={})
    assert resp.status_code == 200
    assert resp.json() == []


def test_product_mix_unavailable_is_503(make_client):
    # The product mix is a stored function that SQLite does not have.
    resp = make_client(repository=None).post("/analytics/product-mix", json={})
    assert resp.status_code == 503


def test_invalid_filters_are_rejected(make_client):
    resp = make_client().post("/analytics/trends", json={"geography": "cebu"})
    assert resp.status_code == 422


def test_insight_endpoint(make_client, session_factory):
    client = make_client()

    resp = client.post(
        "/insights",
        json={"filters": {"brand": "oishi"}, "activeModule": "products", "vibeContext": "equity"},
    )

    assert resp.status_code == 200
    body = resp.json()
    assert body["mainInsight"].startswith("Beverage revenue")
    assert body["llmProvider"] == "OpenAI GPT-4"
    assert len(body["keyPoints"]) == 2
    with session_factory() as db:
        row = db.query(CachedInsight).one()
    assert row.insight_type == "products"
    assert row.vibe_context == "equity"


def test_insight_endpoint_total_failure_is_502(make_client, session_factory):
    client = make_client(insight_providers=_insight_providers(
        primary=[RuntimeError("quota")], secondary=[RuntimeError("down")],
    ))

    resp = client.post("/insights", json={"activeModule": "trends"})

    assert resp.status_code == 502
    with session_factory() as db:
        assert db.query(CachedInsight).count() == 0


def test_insight_rejects_unknown_module(make_client):
    resp = make_client().post("/insights", json={"activeModule": "weather"})
    assert resp.status_code == 422


def test_chat_endpoint(make_client):
    client = make_client()

    resp = client.post(
        "/chat",
        json={
            "message": "Which region leads?",
            "filters": {"geography": "ncr"},
            "history": [{"role": "assistant", "content": GREETING}],
        },
    )

    assert resp.status_code == 200
    assert resp.json() == {"content": "NCR is ahead.", "provider": "Claude"}


def test_chat_endpoint_fallback_and_failure(make_client):
    fallback = make_client(chat_providers=_chat_providers(primary=[RuntimeError("overloaded")]))
    assert fallback.post("/chat", json={"message": "hi"}).json()["provider"] == "OpenAI"

    failing = make_client(chat_providers=_chat_providers(
        primary=[RuntimeError("overloaded")], secondary=[RuntimeError("invalid key")],
    ))
    assert failing.post("/chat", json={"message": "hi"}).status_code == 502


def test_chat_rejects_empty_message(make_client):
    assert make_client().post("/chat", json={"message": ""}).status_code == 422


def test_chat_session_lifecycle(make_client):
    client = make_client()

    created = client.post("/chat/sessions").json()
    session_id = created["sessionId"]
    assert [m["content"] for m in created["messages"]] == [GREETING]

    resp = client.post(f"/chat/sessions/{session_id}/messages", json={"message": "Top brand?"})
    assert resp.status_code == 200
    messages = resp.json()["messages"]
    assert [m["role"] for m in messages] == ["assistant", "user", "assistant"]
    assert messages[-1]["content"] == "NCR is ahead."
    assert messages[-1]["provider"] == "Claude"

    assert client.get(f"/chat/sessions/{session_id}").json()["state"] == "idle"
    assert client.delete(f"/chat/sessions/{session_id}").status_code == 200
    assert client.get(f"/chat/sessions/{session_id}").status_code == 404


def test_chat_session_failure_appends_apology(make_client):
    client = make_client(chat_providers=_chat_providers(
        primary=[RuntimeError("overloaded")], secondary=[RuntimeError("invalid key")],
    ))
    session_id = client.post("/chat/sessions").json()["sessionId"]

    resp = client.post(f"/chat/sessions/{session_id}/messages", json={"message": "hi"})

    assert resp.status_code == 200
    assert resp.json()["messages"][-1]["content"] == APOLOGY


def test_unknown_chat_session_is_404(make_client):
    client = make_client()
    assert client.get("/chat/sessions/missing").status_code == 404
    assert client.post("/chat/sessions/missing/messages", json={"message": "hi"}).status_code == 404
    assert client.delete("/chat/sessions/missing").status_code == 404
