from fastapi.testclient import TestClient
from liveanswers.main import create_app, warn_on_split_change_feed

def test_health(client):
    r = client.get("/health"); assert r.status_code==200
def test_login_and_answer(client):
    r = client.post("/auth/mock-login", json={"userIdentifier":"tester"})
    assert r.status_code==200; token=r.json()["access_token"]; hdr={"Authorization":f"Bearer {token}"}
    payload={"content":{"type":"text","value":"Because"}}
    r = client.post("/session/S1/question-collection/QC1/question/Q1/answer", headers=hdr|{"Content-Type":"application/json"}, json=payload); assert r.status_code==201
    assert r.json()["ownerId"]=="tester"
def test_mock_login_can_be_disabled(client):
    client.app.state.settings.ENABLE_MOCK_LOGIN = False
    r = client.post("/auth/mock-login", json={"userIdentifier":"tester"}); assert r.status_code==404
def test_mock_login_refused_in_production(client):
    client.app.state.settings.ENVIRONMENT = "production"
    r = client.post("/auth/mock-login", json={"userIdentifier":"owner-1"}); assert r.status_code==404
    assert "access_token" not in r.text
def test_broker_setup_failure_triggers_fatal_hook(settings):
    fatal=[]
    async def refuse(url): raise ConnectionRefusedError("no broker")
    with TestClient(create_app(settings, connector=refuse, on_fatal=fatal.append)) as client:
        client.portal.call(lambda: client.app.state.transport.start())
        assert len(fatal)==1 and client.get("/health").json()["queue"]=="failed"
def test_multi_worker_memory_feed_warns(settings, caplog):
    settings.WORKERS = 4
    assert warn_on_split_change_feed(settings) and "CHANGE_FEED_BACKEND=redis" in caplog.text
    settings.CHANGE_FEED_BACKEND = "redis"
    assert not warn_on_split_change_feed(settings)
    settings.CHANGE_FEED_BACKEND = "memory"; settings.WORKERS = 1
    assert not warn_on_split_change_feed(settings)
