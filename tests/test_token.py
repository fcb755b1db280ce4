import time
from collections.abc import Callable

import pytest
from jwt.utils import base64url_encode

import oidc_grants as m


def _unsigned(payload: bytes, header: bytes = b'{"alg":"RS256"}') -> str:
    return ".".join(
        [base64url_encode(header).decode(), base64url_encode(payload).decode(), ""]
    )


def test_parse_token_exposes_header_content_and_signing_input(make_token: Callable[..., str]):
    raw = make_token(kid="k1")
    token = m.parse_token(raw, client_id="shop")

    assert token.token == raw
    assert token.kid == "k1"
    assert token.header["alg"] == "RS256"
    assert token.content["iss"].endswith("/realms/acme")
    assert token.signed == raw.rsplit(".", 1)[0]
    assert token.signature
    assert token.client_id == "shop"


@pytest.mark.parametrize("raw", ["", "abc", "a.b", "a.b.c.d", "!!!.###.$$$"])
def test_parse_token_rejects_malformed(raw: str):
    with pytest.raises(m.TokenParseError) as exc:
        m.parse_token(raw)
    assert "malformed" in str(exc.value)


def test_parse_token_rejects_non_object_payload():
    with pytest.raises(m.TokenParseError):
        m.parse_token(_unsigned(b"[1, 2, 3]"))


def test_parse_token_without_signature_is_not_signed_material():
    token = m.parse_token(_unsigned(b'{"sub": "x"}'))
    assert token.signature == b""
    assert token.kid is None


def test_is_expired_uses_exp_claim():
    now = int(time.time())
    assert m.parse_token(_unsigned(f'{{"exp": {now - 5}}}'.encode())).is_expired() is True
    assert m.parse_token(_unsigned(f'{{"exp": {now + 60}}}'.encode())).is_expired() is False


def test_token_without_exp_never_expires():
    assert m.parse_token(_unsigned(b'{"sub": "x"}')).is_expired() is False


def test_audience_is_normalized_to_list():
    assert m.parse_token(_unsigned(b'{"aud": "a"}')).audience == ["a"]
    assert m.parse_token(_unsigned(b'{"aud": ["a", "b"]}')).audience == ["a", "b"]
    assert m.parse_token(_unsigned(b"{}")).audience == []


@pytest.mark.parametrize(
    "payload",
    [
        b'{"exp": "soon"}',
        b'{"iat": "yesterday"}',
        b'{"nbf": true}',
        b'{"aud": 42}',
        b'{"aud": ["a", 1]}',
    ],
)
def test_parse_token_rejects_mistyped_claims(payload: bytes):
    with pytest.raises(m.TokenParseError, match="malformed"):
        m.parse_token(_unsigned(payload))


class TestRoles:
    """Role specification syntax of Token.has_role."""

    CLAIMS = (
        b'{"realm_access": {"roles": ["admin"]},'
        b' "resource_access": {"shop": {"roles": ["viewer"]}, "billing": {"roles": ["read"]}}}'
    )

    def test_realm_role(self):
        token = m.parse_token(_unsigned(self.CLAIMS))
        assert token.has_role("realm:admin") is True
        assert token.has_role("realm:viewer") is False

    def test_application_role(self):
        token = m.parse_token(_unsigned(self.CLAIMS))
        assert token.has_role("billing:read") is True
        assert token.has_role("billing:write") is False

    def test_bare_role_uses_client_id(self):
        token = m.parse_token(_unsigned(self.CLAIMS), client_id="shop")
        assert token.has_role("viewer") is True
        assert token.has_role("read") is False

    def test_extra_segments_are_ignored(self):
        token = m.parse_token(_unsigned(self.CLAIMS))
        assert token.has_role("billing:read:extra") is True
        assert token.has_role("realm:admin:x") is True

    def test_bare_role_without_client_id_never_matches(self):
        token = m.parse_token(_unsigned(self.CLAIMS))
        assert token.has_role("viewer") is False


class TestPermissions:
    CLAIMS = (
        b'{"authorization": {"permissions": ['
        b'{"rsid": "r-1", "rsname": "orders", "scopes": ["read"]},'
        b'{"rsname": "reports"}]}}'
    )

    def test_resource_by_name_or_id(self):
        token = m.parse_token(_unsigned(self.CLAIMS))
        assert token.has_permission("orders") is True
        assert token.has_permission("r-1") is True
        assert token.has_permission("invoices") is False

    def test_scope_must_be_granted(self):
        token = m.parse_token(_unsigned(self.CLAIMS))
        assert token.has_permission("orders", "read") is True
        assert token.has_permission("orders", "write") is False

    def test_permission_without_scopes_grants_any_scope(self):
        token = m.parse_token(_unsigned(self.CLAIMS))
        assert token.has_permission("reports", "export") is True

    def test_no_authorization_claim(self):
        token = m.parse_token(_unsigned(b"{}"))
        assert token.has_permission("orders") is False
