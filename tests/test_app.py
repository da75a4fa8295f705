def test_health_and_request_id(client):
    r = client.get("/health", headers={"X-Request-ID": "abc-123"})
    assert r.status_code == 200
    assert r.json()["status"] == "ok"
    assert r.headers["X-Request-ID"] == "abc-123"


def test_request_id_is_generated(client):
    assert client.get("/health").headers.get("X-Request-ID")


def test_metrics_exposed(client):
    client.get("/health")
    r = client.get("/metrics")
    assert r.status_code == 200
    assert "http_request" in r.text


def test_unknown_route_uses_message_shape(client):
    r = client.get("/nowhere")
    assert r.status_code == 404
    assert r.json() == {"message": "Not Found"}
