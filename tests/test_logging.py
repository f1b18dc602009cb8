from scim_provisioning.config import ScimConfig
from scim_provisioning.logging import configure_logging, redact_sensitive


def test_redact_sensitive_keys():
    event = redact_sensitive(None, "info", {
        "event": "scim_token_issued",
        "client_id": "idp",
        "access_token": "abc",
        "headers": {"Authorization": "Bearer abc", "Accept": "application/scim+json"},
        "clients": [{"client_secret": "s"}],
    })
    assert event["event"] == "scim_token_issued"
    assert event["client_id"] == "idp"
    assert event["access_token"] == "[REDACTED]"
    assert event["headers"]["Authorization"] == "[REDACTED]"
    assert event["headers"]["Accept"] == "application/scim+json"
    assert event["clients"] == [{"client_secret": "[REDACTED]"}]


def test_configure_logging_accepts_unknown_level():
    configure_logging(ScimConfig(log_level="chatty", log_json=True))
    configure_logging(ScimConfig())
