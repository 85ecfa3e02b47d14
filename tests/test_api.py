"""
HTTP API tests
==============

End-to-end flows through the FastAPI app: setup and login, the invite
funnel from code to claimed reward, credit spending and the admin surface.

Every request that can create a user carries its own X-Forwarded-For so the
per-IP risk checks stay quiet.
"""

from datetime import datetime, timedelta

from services.fraud_service import FraudService
from services.invitation_service import InvitationService

from conftest import auth_headers


PASSWORD = "password123"


async def _register(client, email, username, ip, invite_code=None):
    payload = {"email": email, "username": username, "password": PASSWORD}
    if invite_code:
        payload["invite_code"] = invite_code
    return await client.post("/api/register", json=payload, headers={"X-Forwarded-For": ip})


async def _new_code(client, user) -> dict:
    response = await client.post("/api/invitations", headers=auth_headers(user))
    assert response.status_code == 201
    return response.json()


# =============================================================================
# HEALTH AND AUTH
# =============================================================================

class TestHealth:
    async def test_health(self, client, inviter):
        response = await client.get("/health")

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "healthy"
        assert body["users_count"] == 1
        assert body["smtp_configured"] is False


class TestAuthRoutes:
    async def test_first_run_setup(self, client):
        assert (await client.get("/api/auth/status")).json() == {"setup_required": True}

        response = await client.post(
            "/api/auth/setup",
            json={"email": "admin@inspi.app", "username": "admin", "password": PASSWORD},
        )

        assert response.status_code == 200
        assert (await client.get("/api/auth/status")).json() == {"setup_required": False}

        me = await client.get(
            "/api/auth/me", headers={"Authorization": f"Bearer {response.json()['access_token']}"}
        )
        assert me.json()["role"] == "admin"

    async def test_profile_shows_restriction(self, client, db, inviter):
        await FraudService(db).freeze_account(inviter.id, "review")

        me = (await client.get("/api/auth/me", headers=auth_headers(inviter))).json()

        assert me["username"] == "alice"
        assert me["referral_restricted"] is True
        assert me["active_title"] is None
        assert me["displayed_badges"] == []

    async def test_login_and_refresh(self, client, inviter):
        response = await client.post(
            "/api/auth/login", json={"email_or_username": "alice", "password": PASSWORD}
        )
        assert response.status_code == 200

        refreshed = await client.post(
            "/api/auth/refresh", json={"refresh_token": response.json()["refresh_token"]}
        )
        assert refreshed.status_code == 200
        assert refreshed.json()["refresh_token"] != response.json()["refresh_token"]

    async def test_bad_login(self, client, inviter):
        response = await client.post(
            "/api/auth/login", json={"email_or_username": "alice", "password": "wrong-password"}
        )

        assert response.status_code == 401

    async def test_protected_route_needs_token(self, client):
        assert (await client.get("/api/invitations")).status_code == 401


# =============================================================================
# INVITE FUNNEL
# =============================================================================

class TestRegistrationRoutes:
    async def test_validate_code(self, client, inviter):
        code = await _new_code(client, inviter)

        response = await client.post("/api/register/validate", json={"code": code["code"].lower()})

        assert response.json()["valid"] is True
        assert response.json()["inviter_username"] == "alice"

    async def test_validate_unknown_code(self, client):
        response = await client.post("/api/register/validate", json={"code": "ZZZZ9999"})

        assert response.json() == {
            "valid": False,
            "inviter_username": None,
            "expires_at": None,
            "code": "invalid_invite_code",
            "message": "Invite code not found",
        }

    async def test_unknown_code_is_404(self, client):
        response = await _register(client, "bob@elsewhere.net", "bob", "198.51.100.30", invite_code="ZZZZ9999")

        assert response.status_code == 404
        assert response.json()["detail"]["code"] == "invalid_invite_code"

    async def test_expired_code_is_410(self, client, db, inviter):
        code = await InvitationService(db).generate_invite_code(inviter)
        code.expires_at = datetime.utcnow() - timedelta(minutes=1)
        await db.commit()

        response = await _register(client, "bob@elsewhere.net", "bob", "198.51.100.31", invite_code=code.code)

        assert response.status_code == 410
        assert response.json()["detail"]["code"] == "expired_invite_code"

    async def test_self_invite_is_403(self, client, inviter):
        code = await _new_code(client, inviter)

        response = await _register(
            client, "sock@puppet.org", "sock", inviter.registration_ip, invite_code=code["code"]
        )

        assert response.status_code == 403
        assert response.json()["detail"]["code"] == "registration_blocked"

    async def test_duplicate_email_is_409(self, client, inviter):
        response = await _register(client, "ALICE@example.com", "alice2", "198.51.100.32")

        assert response.status_code == 409


class TestInviteFunnel:
    async def test_code_to_claimed_reward(self, client, inviter):
        code = await _new_code(client, inviter)
        alice = auth_headers(inviter)

        registered = await _register(
            client, "bob@elsewhere.net", "bob", "198.51.100.40", invite_code=code["code"]
        )
        assert registered.status_code == 200
        bob = {"Authorization": f"Bearer {registered.json()['access_token']}"}

        activated = await client.post("/api/register/activate", headers=bob)
        assert activated.json()["is_activated"] is True

        stats = (await client.get("/api/invitations/stats", headers=alice)).json()
        assert stats["successful_registrations"] == 1
        assert stats["active_invitees"] == 1

        claimable = (await client.get("/api/invitations/claimable", headers=alice)).json()
        assert len(claimable) == 1

        claim = await client.post(
            f"/api/invitations/registrations/{claimable[0]['id']}/claim", headers=alice
        )
        assert claim.status_code == 200
        assert sorted(r["amount"] for r in claim.json()["granted"]) == [5, 10]

        balance = (await client.get("/api/credits/balance", headers=alice)).json()
        assert balance["available_credits"] == 15

        again = await client.post(
            f"/api/invitations/registrations/{claimable[0]['id']}/claim", headers=alice
        )
        assert again.status_code == 409

    async def test_inviter_is_notified(self, client, inviter):
        code = await _new_code(client, inviter)
        await _register(client, "bob@elsewhere.net", "bob", "198.51.100.41", invite_code=code["code"])
        alice = auth_headers(inviter)

        notifications = (await client.get("/api/notifications", headers=alice)).json()
        assert [n["type"] for n in notifications] == ["invite_success"]
        assert (await client.get("/api/notifications/unread-count", headers=alice)).json()["unread"] == 1

        await client.post("/api/notifications/read-all", headers=alice)
        assert (await client.get("/api/notifications/unread-count", headers=alice)).json()["unread"] == 0

    async def test_deactivate_code(self, client, inviter):
        code = await _new_code(client, inviter)

        response = await client.delete(f"/api/invitations/{code['id']}", headers=auth_headers(inviter))

        assert response.status_code == 200
        listed = (await client.get("/api/invitations", headers=auth_headers(inviter))).json()
        assert listed["codes"][0]["is_active"] is False


# =============================================================================
# CREDITS AND BADGES
# =============================================================================

class TestCreditRoutes:
    async def test_overspend_is_402(self, client, inviter):
        response = await client.post(
            "/api/credits/consume", json={"amount": 5, "purpose": "cards"}, headers=auth_headers(inviter)
        )

        assert response.status_code == 402
        assert response.json()["detail"]["code"] == "insufficient_credits"

    async def test_grant_then_spend(self, client, inviter, admin):
        granted = await client.post(
            f"/api/admin/users/{inviter.id}/credits", json={"amount": 20}, headers=auth_headers(admin)
        )
        assert granted.status_code == 201

        response = await client.post(
            "/api/credits/consume", json={"amount": 5, "purpose": "cards"}, headers=auth_headers(inviter)
        )

        assert response.status_code == 200
        assert response.json()["available_credits"] == 15
        usage = (await client.get("/api/credits/usage", headers=auth_headers(inviter))).json()
        assert [u["purpose"] for u in usage] == ["cards"]


class TestBadgeRoutes:
    async def test_public_catalogue(self, client, seeded_badges):
        response = await client.get("/api/badges")

        assert response.status_code == 200
        assert len(response.json()) == 5

    async def test_cannot_display_unowned_badge(self, client, inviter, seeded_badges):
        response = await client.put(
            "/api/badges/me/display", json={"badge_ids": ["active_inviter_3"]}, headers=auth_headers(inviter)
        )

        assert response.status_code == 403


# =============================================================================
# ADMIN
# =============================================================================

class TestAdminRoutes:
    async def test_admin_only(self, client, inviter):
        response = await client.get("/api/admin/users", headers=auth_headers(inviter))

        assert response.status_code == 403

    async def test_closing_registration(self, client, admin):
        response = await client.put(
            "/api/admin/settings/registration",
            json={"registration_enabled": False},
            headers=auth_headers(admin),
        )
        assert response.json()["registration_enabled"] is False

        blocked = await _register(client, "late@elsewhere.net", "late", "198.51.100.50")

        assert blocked.status_code == 403
        assert blocked.json()["detail"]["code"] == "registration_disabled"

    async def test_unknown_reward_event(self, client, admin):
        response = await client.put(
            "/api/admin/rewards/configs/user_banned",
            json={"rewards": [{"reward_type": "ai_credits", "description": "x", "amount": 1}]},
            headers=auth_headers(admin),
        )

        assert response.status_code == 404

    async def test_update_reward_bundle(self, client, admin):
        response = await client.put(
            "/api/admin/rewards/configs/user_registered",
            json={"rewards": [{"reward_type": "ai_credits", "description": "Launch week", "amount": 30}]},
            headers=auth_headers(admin),
        )

        assert response.status_code == 200
        assert [r["amount"] for r in response.json()["rewards"]] == [30]

    async def test_frozen_user_cannot_create_codes(self, client, inviter, admin):
        frozen = await client.post(
            f"/api/admin/fraud/users/{inviter.id}/freeze",
            json={"reason": "burst of sign-ups"},
            headers=auth_headers(admin),
        )
        assert frozen.status_code == 200

        response = await client.post("/api/invitations", headers=auth_headers(inviter))

        assert response.status_code == 403
        assert response.json()["detail"]["code"] == "user_restricted"

        status_response = await client.get(
            f"/api/admin/fraud/users/{inviter.id}/status", headers=auth_headers(admin)
        )
        assert status_response.json()["is_frozen"] is True
