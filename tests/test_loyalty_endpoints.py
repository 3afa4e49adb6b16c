from datetime import datetime, timezone
from uuid import UUID, uuid4

import pytest
from httpx import ASGITransport, AsyncClient

from hotel_loyalty.core.settings import settings
from hotel_loyalty.services.loyalty import LoyaltyService

PROGRAM = {
    "tiers": [
        {"name": "BRONZE", "minPoints": 0, "discountPercentage": 5, "benefits": ["Welcome drink"]},
        {"name": "SILVER", "minPoints": 1000, "discountPercentage": 10, "benefits": ["Late checkout"]},
        {"name": "GOLD", "minPoints": 3000, "discountPercentage": 15, "benefits": ["Suite upgrade"]},
        {"name": "PLATINUM", "minPoints": 6000, "discountPercentage": 20, "benefits": ["Airport transfer"]},
    ],
    "pointsPerDollar": 1,
    "pointsPerNight": 50,
    "pointsToMoneyRatio": 100,
    "minimumRedemption": 500,
    "expirationMonths": 12,
}


def _client(app) -> AsyncClient:
    return AsyncClient(transport=ASGITransport(app=app), base_url="http://test")


async def _setup_program(client: AsyncClient, hotel_id: str) -> dict:
    response = await client.put("/api/v1/loyalty/admin/program", json=PROGRAM, headers={"X-Hotel-Id": hotel_id})
    assert response.status_code == 200, response.text
    return response.json()


@pytest.mark.asyncio
async def test_guest_journey(app_with_db) -> None:
    app, _ = app_with_db
    hotel_id, guest_id = str(uuid4()), str(uuid4())
    admin = {"X-Hotel-Id": hotel_id}
    guest = {"X-Guest-Id": guest_id}
    params = {"hotelId": hotel_id}

    backend = app.state.notifications.use_in_memory_backend()

    async with _client(app) as client:
        created = await _setup_program(client, hotel_id)
        assert created["created"] is True
        assert [tier["name"] for tier in created["program"]["tiers"]] == ["BRONZE", "SILVER", "GOLD", "PLATINUM"]

        booking = await client.post(
            "/api/v1/loyalty/events/booking-completed",
            json={
                "hotelId": hotel_id,
                "guestId": guest_id,
                "amount": "1200",
                "category": "dining",
                "nights": 1,
                "bookingReference": "BK-77",
                "guest": {"firstName": "Leila", "lastName": "Haddad", "email": "leila@example.com"},
            },
        )
        assert booking.status_code == 200, booking.text
        credit = booking.json()
        assert credit["credited"] is True
        assert credit["pointsEarned"] == 1200
        assert credit["nightsPoints"] == 50
        assert credit["newTier"] == "SILVER"
        member_id = credit["memberId"]

        me = await client.get("/api/v1/loyalty/me", params=params, headers=guest)
        assert me.status_code == 200
        body = me.json()
        assert body["guestName"] == "Leila Haddad"
        assert body["currentTier"] == "SILVER"
        assert body["availablePoints"] == 1250
        assert body["nextTier"] == "GOLD"
        assert body["pointsToNextTier"] == 1750
        assert body["benefits"] == ["Late checkout"]

        gated = await client.post(
            "/api/v1/loyalty/admin/rewards",
            json={"name": "Suite night", "pointsCost": 1000, "value": "250", "requiredTier": "GOLD"},
            headers=admin,
        )
        assert gated.status_code == 201, gated.text
        pricey = await client.post(
            "/api/v1/loyalty/admin/rewards",
            json={"name": "Weekend package", "pointsCost": 2000, "value": "400"},
            headers=admin,
        )
        cheap = await client.post(
            "/api/v1/loyalty/admin/rewards",
            json={"name": "Breakfast", "pointsCost": 250, "value": "20", "category": "SERVICE", "validityDays": 14},
            headers=admin,
        )
        assert cheap.json()["category"] == "SERVICE"

        catalog = await client.get("/api/v1/loyalty/me/rewards", params=params, headers=guest)
        verdicts = {item["name"]: item for item in catalog.json()}
        assert verdicts["Breakfast"]["canRedeem"] is True
        assert verdicts["Suite night"]["blockedReason"] == "ineligible tier"
        assert verdicts["Weekend package"]["pointsNeeded"] == 750

        denied = await client.post(
            f"/api/v1/loyalty/me/rewards/{gated.json()['id']}/redeem", params=params, headers=guest
        )
        assert denied.status_code == 403
        assert denied.json()["requiredTier"] == "GOLD"
        assert denied.json()["code"] == "ineligible_tier"

        short = await client.post(
            f"/api/v1/loyalty/me/rewards/{pricey.json()['id']}/redeem", params=params, headers=guest
        )
        assert short.status_code == 409
        assert short.json()["pointsNeeded"] == 750
        assert short.json()["availablePoints"] == 1250

        redeemed = await client.post(
            f"/api/v1/loyalty/me/rewards/{cheap.json()['id']}/redeem", params=params, headers=guest
        )
        assert redeemed.status_code == 200, redeemed.text
        assert redeemed.json()["remainingPoints"] == 1000
        assert redeemed.json()["rewardName"] == "Breakfast"
        await app.state.loyalty_events.drain()
        assert [message["Subject"] for message in backend.sent_messages] == [
            "Welcome to SILVER status",
            "Your Breakfast is confirmed",
        ]
        assert all(message["To"] == "leila@example.com" for message in backend.sent_messages)

        history = await client.get(
            "/api/v1/loyalty/me/history", params={**params, "type": "redeemed"}, headers=guest
        )
        entries = history.json()["entries"]
        assert [(entry["entryType"], entry["amount"]) for entry in entries] == [("REDEEMED", -250)]

        quote = await client.get(
            "/api/v1/loyalty/me/discount-quote", params={**params, "amount": "200"}, headers=guest
        )
        assert quote.json()["discountAmount"] == 20.0
        assert quote.json()["discountedAmount"] == 180.0

        overdraw = await client.post(
            f"/api/v1/loyalty/admin/members/{member_id}/adjust-points",
            json={"points": -5000, "reason": "Chargeback"},
            headers=admin,
        )
        assert overdraw.status_code == 409

        adjusted = await client.post(
            f"/api/v1/loyalty/admin/members/{member_id}/adjust-points",
            json={"points": 500, "reason": "Noise complaint", "note": "Room 412"},
            headers=admin,
        )
        assert adjusted.status_code == 200, adjusted.text
        assert adjusted.json()["totalPointsAfter"] == 1750
        assert adjusted.json()["guestName"] == "Leila Haddad"

        detail = await client.get(f"/api/v1/loyalty/admin/members/{member_id}", headers=admin)
        assert detail.status_code == 200
        detail_body = detail.json()
        assert detail_body["member"]["availablePoints"] == 1500
        assert len(detail_body["recentRedemptions"]) == 1
        assert {change["newTier"] for change in detail_body["tierHistory"]} == {"BRONZE", "SILVER"}

        listing = await client.get(
            "/api/v1/loyalty/admin/members", params={"tier": "SILVER", "search": "leila"}, headers=admin
        )
        assert listing.json()["total"] == 1
        assert listing.json()["members"][0]["email"] == "leila@example.com"

        analytics = await client.get("/api/v1/loyalty/admin/analytics", headers=admin)
        assert analytics.status_code == 200
        assert analytics.json()["overview"]["totalMembers"] == 1
        assert analytics.json()["rewardValueRedeemed"] == 20.0


@pytest.mark.asyncio
async def test_admin_tier_override_and_reclassification(app_with_db) -> None:
    app, _ = app_with_db
    hotel_id = str(uuid4())
    admin = {"X-Hotel-Id": hotel_id}

    async with _client(app) as client:
        await _setup_program(client, hotel_id)
        for amount in ("1500", "400"):
            await client.post(
                "/api/v1/loyalty/events/booking-completed",
                json={"hotelId": hotel_id, "guestId": str(uuid4()), "amount": amount},
            )

        members = (await client.get("/api/v1/loyalty/admin/members", headers=admin)).json()["members"]
        top = members[0]
        assert top["totalPoints"] == 1500

        override = await client.post(
            f"/api/v1/loyalty/admin/members/{top['id']}/tier", json={"tier": "PLATINUM"}, headers=admin
        )
        assert override.json() == {
            "memberId": top["id"],
            "changed": True,
            "oldTier": "SILVER",
            "currentTier": "PLATINUM",
            "reason": "Manual admin change",
        }

        unchanged = await client.post(
            f"/api/v1/loyalty/admin/members/{top['id']}/tier", json={"tier": "PLATINUM"}, headers=admin
        )
        assert unchanged.json()["changed"] is False

        lowered = {**PROGRAM, "tiers": [dict(tier) for tier in PROGRAM["tiers"]]}
        lowered["tiers"][1]["minPoints"] = 300
        saved = await client.put("/api/v1/loyalty/admin/program", json=lowered, headers=admin)
        assert saved.status_code == 200
        # PLATINUM drops back to SILVER by points and BRONZE rises to SILVER.
        assert saved.json()["tierUpdates"] == 2

        invalid = {**PROGRAM, "tiers": [{"name": "SILVER", "minPoints": 100}]}
        rejected = await client.put("/api/v1/loyalty/admin/program", json=invalid, headers=admin)
        assert rejected.status_code == 400
        assert "Lowest tier SILVER must start at 0 points" in rejected.json()["errors"]


@pytest.mark.asyncio
async def test_reward_catalog_management(app_with_db) -> None:
    app, _ = app_with_db
    hotel_id = str(uuid4())
    admin = {"X-Hotel-Id": hotel_id}

    async with _client(app) as client:
        await _setup_program(client, hotel_id)
        created = await client.post(
            "/api/v1/loyalty/admin/rewards", json={"name": "Spa credit", "pointsCost": 800}, headers=admin
        )
        reward_id = created.json()["id"]

        patched = await client.patch(
            f"/api/v1/loyalty/admin/rewards/{reward_id}", json={"pointsCost": 900, "usageLimit": 5}, headers=admin
        )
        assert patched.json()["pointsCost"] == 900
        assert patched.json()["usageLimit"] == 5

        unknown_tier = await client.patch(
            f"/api/v1/loyalty/admin/rewards/{reward_id}", json={"requiredTier": "DIAMOND"}, headers=admin
        )
        assert unknown_tier.status_code == 400

        deleted = await client.delete(f"/api/v1/loyalty/admin/rewards/{reward_id}", headers=admin)
        assert deleted.status_code == 204

        active = await client.get("/api/v1/loyalty/admin/rewards", headers=admin)
        assert active.json() == []
        everything = await client.get("/api/v1/loyalty/admin/rewards", params={"includeInactive": "true"}, headers=admin)
        assert [item["isActive"] for item in everything.json()] == [False]

        missing = await client.patch(f"/api/v1/loyalty/admin/rewards/{uuid4()}", json={"name": "Ghost"}, headers=admin)
        assert missing.status_code == 404


@pytest.mark.asyncio
async def test_public_program_and_quotes(app_with_db) -> None:
    app, _ = app_with_db
    hotel_id = str(uuid4())

    async with _client(app) as client:
        assert (await client.get(f"/api/v1/loyalty/programs/{hotel_id}")).status_code == 404

        await _setup_program(client, hotel_id)
        public = await client.get(f"/api/v1/loyalty/programs/{hotel_id}")
        assert public.status_code == 200
        assert public.json()["pointsPerNight"] == 50
        assert "totalPointsIssued" not in public.json()

        quote = await client.get(f"/api/v1/loyalty/programs/{hotel_id}/redemption-quote", params={"points": 650})
        assert quote.json() == {
            "points": 650,
            "value": 6.5,
            "eligible": True,
            "minimumRedemption": 500,
            "maximumRedemption": None,
            "pointsToMoneyRatio": 100.0,
        }


@pytest.mark.asyncio
async def test_request_context_is_enforced(app_with_db, monkeypatch) -> None:
    app, _ = app_with_db
    hotel_id = str(uuid4())

    async with _client(app) as client:
        missing = await client.get("/api/v1/loyalty/admin/program")
        assert missing.status_code == 401

        malformed = await client.get("/api/v1/loyalty/admin/program", headers={"X-Hotel-Id": "hotel-1"})
        assert malformed.status_code == 400

        await _setup_program(client, hotel_id)
        stranger = await client.get(
            "/api/v1/loyalty/me/rewards", params={"hotelId": hotel_id}, headers={"X-Guest-Id": str(uuid4())}
        )
        assert stranger.status_code == 404

        monkeypatch.setattr(settings, "loyalty_admin_api_key", "s3cret")
        locked = await client.get("/api/v1/loyalty/admin/program", headers={"X-Hotel-Id": hotel_id})
        assert locked.status_code == 401
        unlocked = await client.get(
            "/api/v1/loyalty/admin/program", headers={"X-Hotel-Id": hotel_id, "X-API-Key": "s3cret"}
        )
        assert unlocked.status_code == 200


@pytest.mark.asyncio
async def test_booking_for_hotel_without_program_is_not_credited(app_with_db) -> None:
    app, _ = app_with_db

    async with _client(app) as client:
        response = await client.post(
            "/api/v1/loyalty/events/booking-completed",
            json={"hotelId": str(uuid4()), "guestId": str(uuid4()), "amount": "99.90"},
        )
        assert response.status_code == 200
        assert response.json()["credited"] is False

        negative = await client.post(
            "/api/v1/loyalty/events/booking-completed",
            json={"hotelId": str(uuid4()), "guestId": str(uuid4()), "amount": "-1"},
        )
        assert negative.status_code == 400


@pytest.mark.asyncio
async def test_admin_sweep_expires_due_points(app_with_db) -> None:
    app, session_factory = app_with_db
    hotel_id = str(uuid4())

    async with _client(app) as client:
        await _setup_program(client, hotel_id)

        async with session_factory() as session:
            service = LoyaltyService(session)
            member = await service.ensure_member(UUID(hotel_id), uuid4())
            await service.earn_points(member.id, amount=300, issued_at=datetime(2020, 5, 1, tzinfo=timezone.utc))

        response = await client.post(
            "/api/v1/loyalty/admin/sweeps", json={"triggeredBy": "ops"}, headers={"X-Hotel-Id": hotel_id}
        )
        assert response.status_code == 200, response.text
        body = response.json()
        assert body["triggeredBy"] == "ops"
        assert body["pointsExpired"] == 300
        assert body["succeeded"] == 1

        health = await client.get("/api/v1/health/loyalty")
        assert health.json()["telemetry"]["sweeps"]["points_expired"] == 300
