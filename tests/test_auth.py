import base64
import time
from urllib.parse import parse_qs

import httpx
import pytest

from scim_provisioning.auth import (
    LocalTokenAuthority,
    RemoteTokenAuthority,
    TokenAuthorityError,
    build_authority,
    extract_bearer_token,
    generate_client_secret,
    parse_basic_credentials,
)
from scim_provisioning.config import ScimConfig, TokenClient

from .conftest import CLIENT_ID, CLIENT_SECRET


# ============ 请求头 ============

@pytest.mark.parametrize("name", [
    "Authorization",
    "authorization",
    "AUTHORIZATION",
    "X-Forwarded-Authorization",
    "x-original-authorization",
    "HTTP_AUTHORIZATION",
])
def test_extract_bearer_token_from_any_header(name):
    assert extract_bearer_token({name: "Bearer abc123"}) == "abc123"


@pytest.mark.parametrize("headers", [
    {},
    {"Authorization": ""},
    {"Authorization": "Basic Zm9vOmJhcg=="},
    {"Authorization": "Bearer"},
])
def test_extract_bearer_token_missing(headers):
    assert extract_bearer_token(headers) is None


def test_parse_basic_credentials():
    header = "Basic " + base64.b64encode(b"client:secret").decode()
    assert parse_basic_credentials(header) == ("client", "secret")
    assert parse_basic_credentials("Basic !!!") is None
    assert parse_basic_credentials("Bearer abc") is None
    assert parse_basic_credentials(None) is None


def test_generate_client_secret():
    secret = generate_client_secret()
    assert len(secret) == 48
    int(secret, 16)
    assert secret != generate_client_secret()


# ============ 本地授权 ============

def test_local_issue_and_verify(authority):
    response = authority.issue_token({
        "grant_type": "client_credentials",
        "client_id": CLIENT_ID,
        "client_secret": CLIENT_SECRET,
    })
    assert response["token_type"] == "Bearer"
    assert response["expires_in"] == 3155760000
    assert response["scope"] is None

    info = authority.verify_token(response["access_token"])
    assert info.client_id == CLIENT_ID
    assert info.organization is None


def test_local_token_carries_organization(authority):
    response = authority.issue_token({
        "grant_type": "client_credentials",
        "client_id": "org-client",
        "client_secret": "org-secret",
    })
    assert authority.verify_token(response["access_token"]).organization == "acme"


@pytest.mark.parametrize("form,error,status", [
    ({}, "invalid_request", 400),
    ({"grant_type": "password"}, "unsupported_grant_type", 400),
    ({"grant_type": "client_credentials"}, "invalid_client", 400),
    ({"grant_type": "client_credentials", "client_id": CLIENT_ID, "client_secret": "wrong"}, "invalid_client", 401),
    ({"grant_type": "client_credentials", "client_id": "nobody", "client_secret": "x"}, "invalid_client", 401),
])
def test_local_issue_errors(authority, form, error, status):
    with pytest.raises(TokenAuthorityError) as exc:
        authority.issue_token(form)
    assert exc.value.error == error
    assert exc.value.status == status


def test_local_verify_unknown_token(authority):
    with pytest.raises(TokenAuthorityError) as exc:
        authority.verify_token("nope")
    assert exc.value.status == 401


def test_local_token_expires():
    authority = LocalTokenAuthority([TokenClient(client_id="c", client_secret="s")], lifetime=1)
    token = authority.issue_token({
        "grant_type": "client_credentials", "client_id": "c", "client_secret": "s",
    })["access_token"]
    authority._tokens[token].expires_at = time.time() - 1
    with pytest.raises(TokenAuthorityError):
        authority.verify_token(token)


def test_issue_purges_expired_tokens():
    authority = LocalTokenAuthority([TokenClient(client_id="c", client_secret="s")], lifetime=60)
    form = {"grant_type": "client_credentials", "client_id": "c", "client_secret": "s"}
    old = authority.issue_token(form)["access_token"]
    authority._tokens[old].expires_at = time.time() - 1

    new = authority.issue_token(form)["access_token"]
    assert list(authority._tokens) == [new]


@pytest.mark.parametrize("secret", [12345, "sécret", {"a": 1}])
def test_local_issue_rejects_odd_secrets(authority, secret):
    with pytest.raises(TokenAuthorityError) as exc:
        authority.issue_token({"grant_type": "client_credentials", "client_id": CLIENT_ID, "client_secret": secret})
    assert exc.value.status == 401


# ============ 远程授权 ============

def _remote(handler) -> RemoteTokenAuthority:
    return RemoteTokenAuthority(
        "https://auth.example.com/oauth",
        client_id="scim",
        client_secret="pw",
        transport=httpx.MockTransport(handler),
    )


def test_remote_verify_active_token():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["url"] = str(request.url)
        seen["form"] = parse_qs(request.content.decode())
        seen["auth"] = request.headers.get("authorization")
        return httpx.Response(200, json={"active": True, "client_id": "idp", "organization": "acme"})

    with _remote(handler) as authority:
        info = authority.verify_token("tok")

    assert seen["url"] == "https://auth.example.com/oauth/introspect"
    assert seen["form"] == {"token": ["tok"]}
    assert seen["auth"].startswith("Basic ")
    assert info.client_id == "idp"
    assert info.organization == "acme"


def test_remote_verify_inactive_token():
    authority = _remote(lambda request: httpx.Response(200, json={"active": False}))
    with pytest.raises(TokenAuthorityError) as exc:
        authority.verify_token("tok")
    assert exc.value.status == 401


def test_remote_verify_transport_error():
    def handler(request):
        raise httpx.ConnectError("down", request=request)

    with pytest.raises(TokenAuthorityError) as exc:
        _remote(handler).verify_token("tok")
    assert exc.value.status == 401


def test_remote_issue_token_forwards_form():
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == "/oauth/token"
        assert parse_qs(request.content.decode())["grant_type"] == ["client_credentials"]
        return httpx.Response(200, json={"access_token": "abc", "token_type": "Bearer"})

    response = _remote(handler).issue_token({"grant_type": "client_credentials"})
    assert response["access_token"] == "abc"


def test_remote_issue_token_error():
    authority = _remote(lambda request: httpx.Response(401, json={"error": "invalid_client"}))
    with pytest.raises(TokenAuthorityError) as exc:
        authority.issue_token({"grant_type": "client_credentials"})
    assert exc.value.error == "invalid_client"
    assert exc.value.status == 401


def test_build_authority():
    assert isinstance(build_authority(ScimConfig()), LocalTokenAuthority)
    remote = build_authority(ScimConfig(authority_url="https://auth.example.com"))
    assert isinstance(remote, RemoteTokenAuthority)
    remote.close()
