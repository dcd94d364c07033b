from books_api.otel import build_resource, otlp_endpoint


def test_otlp_endpoint_default(monkeypatch):
    monkeypatch.delenv("OTEL_EXPORTER_OTLP_ENDPOINT", raising=False)
    assert otlp_endpoint() == "http://otel-collector:4318"


def test_otlp_endpoint_strips_trailing_slash(monkeypatch):
    monkeypatch.setenv("OTEL_EXPORTER_OTLP_ENDPOINT", "http://collector:4318/")
    assert otlp_endpoint() == "http://collector:4318"


def test_resource_carries_service_identity(monkeypatch):
    monkeypatch.setenv("OTEL_SERVICE_NAME", "books-api-test")
    resource = build_resource("1.2.3")
    assert resource.attributes["service.name"] == "books-api-test"
    assert resource.attributes["service.version"] == "1.2.3"
