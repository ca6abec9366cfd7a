import structlog

from storefront_core.logging import EmailRedactionProcessor, add_request_context, bind_request_context, clear_request_context, set_correlation_id


def test_email_redaction_is_recursive():
    redact = EmailRedactionProcessor()
    event = redact(None, "info", {"event": "signup alice@acme.ch", "extra": {"to": ["bob@shop.ch"]}})
    assert event["event"] == "signup ***@acme.ch"
    assert event["extra"]["to"] == ["***@shop.ch"]


def test_request_context_is_copied_into_events():
    clear_request_context()
    cid = set_correlation_id()
    bind_request_context(tenant_id="t-1", host="acme.swisscommerce.ch")
    try:
        event = add_request_context(None, "info", {"event": "x"})
        assert event["correlation_id"] == cid
        assert event["tenant_id"] == "t-1"
        assert event["host"] == "acme.swisscommerce.ch"
        assert "path" not in event
    finally:
        clear_request_context()
    assert structlog.contextvars.get_contextvars() == {}
