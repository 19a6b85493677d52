"""
HTTP surface: authorization rejections, error bodies and activity logging.
"""
import datetime as dt

from sqlalchemy import select

from app.features.activity.models import ActivityLog
from app.features.duty import scheduling


def _as(user) -> dict:
    return {"X-User-Id": user.id}


def _schedule_payload(date: dt.date, **fields) -> dict:
    payload = {
        "title": "Front desk",
        "date": date.isoformat(),
        "start_time": "09:00:00",
        "end_time": "17:00:00",
    }
    payload.update(fields)
    return payload


async def test_health(client):
    response = await client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "healthy"}


async def test_create_organization_makes_caller_admin(client, make):
    founder = await make.user("Founder")
    response = await client.post("/organizations/", json={"name": "Harbor Watch"}, headers=_as(founder))
    assert response.status_code == 201
    org_id = response.json()["id"]

    me = await client.get(f"/organizations/{org_id}/permissions/me", headers=_as(founder))
    assert me.status_code == 200
    assert me.json()["is_admin"] is True
    assert "create_duty_schedules" in me.json()["effective"]


async def test_profile_lists_memberships(client, make):
    admin = await make.user("Admin")
    org = await make.organization(admin, name="Harbor Watch")
    member = await make.member(org, await make.user("Member"))

    response = await client.get("/users/me", headers=_as(member))
    assert response.status_code == 200
    [membership] = response.json()["memberships"]
    assert membership["organization_id"] == org.id
    assert membership["role"] == "member"
    assert membership["is_admin"] is False


async def test_missing_user_is_unauthenticated(client):
    response = await client.get("/organizations/my")
    assert response.status_code == 401


async def test_non_member_is_rejected(client, make, future_date):
    admin = await make.user("Admin")
    org = await make.organization(admin)
    outsider = await make.user("Outsider")

    response = await client.get(f"/organizations/{org.id}/duty-schedules", headers=_as(outsider))
    assert response.status_code == 403
    assert response.json()["error"] == "authorization_error"


async def test_member_needs_grant_to_create_schedule(client, make, future_date):
    admin = await make.user("Admin")
    org = await make.organization(admin)
    member = await make.member(org, await make.user("Member"))
    url = f"/organizations/{org.id}/duty-schedules"

    denied = await client.post(url, json=_schedule_payload(future_date), headers=_as(member))
    assert denied.status_code == 403
    assert denied.json()["error"] == "authorization_error"
    assert denied.json()["required_permission"] == "create_duty_schedules"

    granted = await client.post(
        f"/organizations/{org.id}/permissions/users/{member.id}/grant",
        json={"permission": "create_duty_schedules"},
        headers=_as(admin),
    )
    assert granted.status_code == 201
    assert "create_duty_schedules" in granted.json()["granted"]

    created = await client.post(url, json=_schedule_payload(future_date), headers=_as(member))
    assert created.status_code == 201
    body = created.json()
    assert body["status"] == "draft"
    assert body["occurrences"] == []


async def test_recurring_schedule_over_http(client, make, future_date):
    admin = await make.user("Admin")
    org = await make.organization(admin)
    payload = _schedule_payload(
        future_date,
        recurrence_type="daily",
        recurrence_end_date=(future_date + dt.timedelta(days=3)).isoformat(),
    )

    response = await client.post(f"/organizations/{org.id}/duty-schedules", json=payload, headers=_as(admin))
    assert response.status_code == 201
    assert len(response.json()["occurrences"]) == 3

    payload["recurrence_end_date"] = None
    missing_end = await client.post(f"/organizations/{org.id}/duty-schedules", json=payload, headers=_as(admin))
    assert missing_end.status_code == 422
    assert missing_end.json()["error"] == "validation_error"
    assert missing_end.json()["field"] == "recurrence_end_date"


async def test_request_validation_errors_use_field_map(client, make, future_date):
    admin = await make.user("Admin")
    org = await make.organization(admin)
    payload = _schedule_payload(future_date)
    del payload["title"]

    response = await client.post(f"/organizations/{org.id}/duty-schedules", json=payload, headers=_as(admin))
    assert response.status_code == 400
    assert "title" in response.json()


async def test_open_swap_second_accept_conflicts(client, db, make, future_date):
    admin = await make.user("Admin")
    org = await make.organization(admin)
    alice = await make.member(org, await make.user("Alice"))
    bob = await make.member(org, await make.user("Bob"))
    carol = await make.member(org, await make.user("Carol"))

    schedule, _ = await scheduling.create_schedule(
        db, org.id, admin.id, title="Harbor patrol",
        date=future_date, start_time=dt.time(6, 0), end_time=dt.time(10, 0),
        officer_ids=[alice.id],
    )
    [assignment] = await scheduling.list_assignments(db, [schedule.id])
    await scheduling.respond_to_assignment(db, assignment, alice.id, "confirm")
    await db.commit()

    requested = await client.post(
        f"/organizations/{org.id}/duty-assignments/{assignment.id}/swaps",
        json={"reason": "Doctor appointment"},
        headers=_as(alice),
    )
    assert requested.status_code == 201
    swap_id = requested.json()["id"]

    accept_url = f"/organizations/{org.id}/duty-swaps/{swap_id}/accept"
    won = await client.post(accept_url, json={}, headers=_as(bob))
    assert won.status_code == 200
    assert won.json()["swap"]["status"] == "accepted"
    assert won.json()["assignment"]["officer_id"] == bob.id

    lost = await client.post(accept_url, json={}, headers=_as(carol))
    assert lost.status_code == 409
    assert lost.json()["error"] == "invalid_state_transition"

    result = await db.execute(
        select(ActivityLog.action).where(ActivityLog.organization_id == org.id).order_by(ActivityLog.created_at)
    )
    actions = list(result.scalars().all())
    assert "duty.swap.requested" in actions
    assert "duty.swap.accepted" in actions


async def test_check_in_before_confirm_is_rejected(client, db, make, future_date):
    admin = await make.user("Admin")
    org = await make.organization(admin)
    officer = await make.member(org, await make.user("Officer"))
    schedule, _ = await scheduling.create_schedule(
        db, org.id, admin.id, title="Watch",
        date=future_date, start_time=dt.time(6, 0), end_time=dt.time(10, 0),
        officer_ids=[officer.id],
    )
    [assignment] = await scheduling.list_assignments(db, [schedule.id])
    await db.commit()
    base = f"/organizations/{org.id}/duty-assignments/{assignment.id}"

    early = await client.post(f"{base}/check-in", headers=_as(officer))
    assert early.status_code == 409

    confirmed = await client.post(f"{base}/respond", json={"response": "confirm"}, headers=_as(officer))
    assert confirmed.status_code == 200
    assert confirmed.json()["status"] == "confirmed"

    checked_in = await client.post(f"{base}/check-in", headers=_as(officer))
    assert checked_in.status_code == 200
    checked_out = await client.post(f"{base}/check-out", headers=_as(officer))
    assert checked_out.json()["status"] == "completed"

    mine = await client.get(f"/organizations/{org.id}/duty-assignments/my", headers=_as(officer))
    assert [a["id"] for a in mine.json()] == [assignment.id]


async def test_review_round_trip_over_http(client, make):
    publisher = await make.user("Publisher")
    org = await make.organization(publisher)
    document, _ = await make.document(org, publisher)
    reviewer = await make.user("Reviewer")

    created = await client.post(
        "/reviews/",
        json={
            "organization_id": org.id,
            "document_id": document.id,
            "subject": "Annual policy",
            "recipients": [{"user_id": reviewer.id}],
        },
        headers=_as(publisher),
    )
    assert created.status_code == 201
    review = created.json()
    assert review["status"] == "sent"
    recipient_id = review["recipients"][0]["id"]

    inbox = await client.get("/reviews/inbox", headers=_as(reviewer))
    assert [item["review"]["id"] for item in inbox.json()] == [review["id"]]

    forbidden = await client.post(f"/reviews/{review['id']}/close", headers=_as(reviewer))
    assert forbidden.status_code == 403

    approved = await client.post(
        f"/reviews/{review['id']}/recipients/{recipient_id}/approve", headers=_as(reviewer)
    )
    assert approved.status_code == 200
    assert approved.json()["status"] == "approved"

    detail = await client.get(f"/reviews/{review['id']}", headers=_as(reviewer))
    assert detail.json()["status"] == "approved"
    assert [a["action"] for a in detail.json()["actions"]] == ["sent", "reviewer_approved"]

    again = await client.post(
        f"/reviews/{review['id']}/recipients/{recipient_id}/decline", json={}, headers=_as(reviewer)
    )
    assert again.status_code == 409


async def test_availability_is_private_by_default(client, make, future_date):
    admin = await make.user("Admin")
    org = await make.organization(admin)
    member = await make.member(org, await make.user("Member"))
    url = f"/organizations/{org.id}/duty-availability"

    created = await client.post(
        url,
        json={"date": future_date.isoformat(), "availability_type": "unavailable", "reason": "Leave"},
        headers=_as(member),
    )
    assert created.status_code == 201

    assert [a["id"] for a in (await client.get(url, headers=_as(member))).json()] == [created.json()["id"]]
    assert (await client.get(url, headers=_as(admin))).json() == []
    everyone = await client.get(url, params={"everyone": "true"}, headers=_as(admin))
    assert len(everyone.json()) == 1

    denied = await client.get(url, params={"everyone": "true"}, headers=_as(member))
    assert denied.status_code == 403
    assert denied.json()["required_permission"] == "view_duty_schedules"

    edited = await client.patch(
        f"{url}/{created.json()['id']}", json={"start_time": "10:00:00", "end_time": "09:00:00"}, headers=_as(member)
    )
    assert edited.status_code == 422


async def test_templates_and_statistics_permissions(client, make):
    admin = await make.user("Admin")
    org = await make.organization(admin)
    member = await make.member(org, await make.user("Member"))

    template = await client.post(
        f"/organizations/{org.id}/duty-templates",
        json={"name": "Night shift", "start_time": "22:00:00", "end_time": "23:59:00", "default_days": [5, 6]},
        headers=_as(admin),
    )
    assert template.status_code == 201
    assert template.json()["default_days"] == [5, 6]

    bad_days = await client.post(
        f"/organizations/{org.id}/duty-templates",
        json={"name": "Broken", "start_time": "08:00:00", "end_time": "09:00:00", "default_days": [9]},
        headers=_as(admin),
    )
    assert bad_days.status_code == 422

    org_stats = await client.get(f"/organizations/{org.id}/duty-statistics", headers=_as(member))
    assert org_stats.status_code == 403
    own_stats = await client.get(f"/organizations/{org.id}/duty-statistics/me", headers=_as(member))
    assert own_stats.status_code == 200
    assert own_stats.json()["total_assignments"] == 0
    assert (await client.get(f"/organizations/{org.id}/duty-statistics", headers=_as(admin))).status_code == 200


async def test_decline_is_logged_as_declined(client, db, make, future_date):
    admin = await make.user("Admin")
    org = await make.organization(admin)
    officer = await make.member(org, await make.user("Officer"))
    schedule, _ = await scheduling.create_schedule(
        db, org.id, admin.id, title="Watch",
        date=future_date, start_time=dt.time(6, 0), end_time=dt.time(10, 0),
        officer_ids=[officer.id],
    )
    [assignment] = await scheduling.list_assignments(db, [schedule.id])
    await db.commit()

    declined = await client.post(
        f"/organizations/{org.id}/duty-assignments/{assignment.id}/respond",
        json={"response": "decline"},
        headers=_as(officer),
    )
    assert declined.status_code == 200
    assert declined.json()["status"] == "declined"

    result = await db.execute(select(ActivityLog.action).where(ActivityLog.organization_id == org.id))
    actions = list(result.scalars().all())
    assert "duty.assignment.declined" in actions
