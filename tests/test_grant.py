import json

import oidc_grants as m


def test_grant_without_access_token_is_expired():
    assert m.Grant().is_expired() is True


def test_grant_expiry_follows_access_token(make_token):
    fresh = m.Grant(access_token=m.parse_token(make_token()))
    stale = m.Grant(access_token=m.parse_token(make_token(exp_in=-1)))

    assert fresh.is_expired() is False
    assert stale.is_expired() is True


def test_update_copies_fields_in_place(make_token):
    grant = m.Grant(access_token=m.parse_token(make_token(exp_in=-1)), token_type="Bearer")
    other = m.Grant(access_token=m.parse_token(make_token()), expires_in=300, raw={"a": 1})

    grant.update(other)

    assert grant.access_token is other.access_token
    assert grant.expires_in == 300
    assert grant.token_type is None
    assert grant.is_expired() is False


def test_to_json_and_str():
    assert m.Grant().to_json() is None
    assert str(m.Grant()) == ""
    assert m.Grant(raw='{"x": 1}').to_json() == '{"x": 1}'
    assert json.loads(m.Grant(raw={"x": 1}).to_json()) == {"x": 1}


def test_repr_hides_token_values(make_token):
    raw = make_token()
    text = repr(m.Grant(access_token=m.parse_token(raw), token_type="Bearer"))

    assert raw not in text
    assert "access_token" in text
