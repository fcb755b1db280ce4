"""
Tests for the OIDCExtension Flask integration.

Tests the decorator-based token validation, authorization and the admin
callback endpoints.
"""

import pytest
from flask import Flask, g

import oidc_grants as m


@pytest.fixture
def oidc(manager: m.GrantManager):
    ext = m.OIDCExtension(manager, store=m.InMemoryGrantStore())
    yield ext
    ext.close()


class TestOIDCExtensionBasics:
    """Test basic OIDCExtension functionality."""

    def test_missing_token_returns_401(self, app: Flask, oidc: m.OIDCExtension):
        @app.get("/x")
        @oidc.require()
        def x():  # type: ignore
            return {"ok": True}

        r = app.test_client().get("/x")
        assert r.status_code == 401

    def test_malformed_token_returns_401(self, app: Flask, oidc: m.OIDCExtension):
        @app.get("/x")
        @oidc.require()
        def x():  # type: ignore
            return {"ok": True}

        r = app.test_client().get("/x", headers={"Authorization": "Bearer BAD"})
        assert r.status_code == 401

    def test_expired_token_returns_401(self, app: Flask, oidc: m.OIDCExtension, make_token):
        @app.get("/x")
        @oidc.require()
        def x():  # type: ignore
            return {"ok": True}

        r = app.test_client().get("/x", headers={"Authorization": f"Bearer {make_token(exp_in=-5)}"})
        assert r.status_code == 401
        assert b"invalid token (expired)" in r.data

    def test_valid_token_sets_g_access_token(self, app: Flask, oidc: m.OIDCExtension, make_token):
        @app.get("/x")
        @oidc.require()
        def x():  # type: ignore
            return {"sub": g.access_token.content["sub"]}

        r = app.test_client().get("/x", headers={"Authorization": f"Bearer {make_token()}"})
        assert r.status_code == 200
        assert r.get_json() == {"sub": "user-1"}

    def test_init_app_registers_extension(self, app: Flask, oidc: m.OIDCExtension):
        oidc.init_app(app)
        assert app.extensions["oidc_grants"] is oidc


class TestOIDCExtensionAuthorization:
    def test_role_check_passes(self, app: Flask, oidc: m.OIDCExtension, make_token):
        @app.get("/admin")
        @oidc.require(roles=["realm:admin"])
        def admin():  # type: ignore
            return {"ok": True}

        token = make_token(realm_access={"roles": ["admin"]})
        r = app.test_client().get("/admin", headers={"Authorization": f"Bearer {token}"})
        assert r.status_code == 200

    def test_missing_role_returns_403(self, app: Flask, oidc: m.OIDCExtension, make_token):
        @app.get("/admin")
        @oidc.require(roles=["realm:admin"])
        def admin():  # type: ignore
            return {"ok": True}

        r = app.test_client().get("/admin", headers={"Authorization": f"Bearer {make_token()}"})
        assert r.status_code == 403

    def test_permission_check(self, app: Flask, oidc: m.OIDCExtension, make_token):
        @app.get("/orders")
        @oidc.require(permissions=["orders#read"])
        def orders():  # type: ignore
            return {"ok": True}

        granted = make_token(authorization={"permissions": [{"rsname": "orders", "scopes": ["read"]}]})
        c = app.test_client()
        assert c.get("/orders", headers={"Authorization": f"Bearer {granted}"}).status_code == 200
        assert c.get("/orders", headers={"Authorization": f"Bearer {make_token()}"}).status_code == 403


class TestAdminEndpoints:
    def test_push_not_before(self, app: Flask, oidc: m.OIDCExtension, make_token):
        oidc.init_app(app)

        body = make_token(action="PUSH_NOT_BEFORE", notBefore=1700000000)
        r = app.test_client().post("/k_push_not_before", data=body)

        assert r.status_code == 200
        assert oidc.grant_manager.not_before == 1700000000

    def test_revoked_token_is_stale_after_push(self, app: Flask, oidc: m.OIDCExtension, make_token):
        oidc.init_app(app, admin_url="/oidc/")

        @app.get("/x")
        @oidc.require()
        def x():  # type: ignore
            return {"ok": True}

        c = app.test_client()
        old = make_token(iat=1000)
        assert c.get("/x", headers={"Authorization": f"Bearer {old}"}).status_code == 200

        c.post("/oidc/k_push_not_before", data=make_token(action="PUSH_NOT_BEFORE", notBefore=2000))

        r = c.get("/x", headers={"Authorization": f"Bearer {old}"})
        assert r.status_code == 401
        assert b"stale token" in r.data

    def test_tampered_callback_returns_401(self, app: Flask, oidc: m.OIDCExtension, make_token):
        oidc.init_app(app)

        raw = make_token(action="LOGOUT", notBefore=5)
        head, payload, sig = raw.split(".")
        tampered = ".".join([head, payload, ("A" if sig[0] != "A" else "B") + sig[1:]])

        r = app.test_client().post("/k_logout", data=tampered)
        assert r.status_code == 401
        assert oidc.grant_manager.not_before == 0

    def test_run_executes_manager_coroutines(self, oidc: m.OIDCExtension, make_token):
        raw = make_token()
        assert oidc.run(oidc.grant_manager.validate_token(raw)).token == raw
