"""
Router-level tests through FastAPI's TestClient.

Covers auth, role gates, camelCase payloads, error translation and the
report -> review -> appeal -> debt flow over HTTP.
"""
from datetime import datetime

from app.models.db_models import CitizenReportDB, OutstandingDebtDB, UserRole
from app.routers.scheduler import INTERNAL_API_KEY


REPORT = {
    "vehiclePlate": "dha-1234",
    "violationType": "overspeeding",
    "description": "Doing 90 in a 40 zone near Bijoy Sarani",
    "evidenceUrls": ["https://cdn.example.com/evidence/clip.mp4"],
    "locationData": {"latitude": 23.7644, "longitude": 90.3894, "address": "Bijoy Sarani", "city": "Dhaka"},
}


def _create(client, headers, user, **overrides):
    response = client.post("/citizen-reports", json={**REPORT, **overrides}, headers=headers(user))
    assert response.status_code == 201, response.text
    return response.json()


# =============================================================================
# AUTH
# =============================================================================

class TestAuth:

    def test_register_login_me(self, client):
        response = client.post("/auth/register", json={
            "email": "nadia@trafficwatch.gov.bd",
            "username": "nadia",
            "password": "correct-horse",
        })
        assert response.status_code == 201

        response = client.post("/auth/login", json={
            "email": "nadia@trafficwatch.gov.bd",
            "password": "correct-horse",
        })
        assert response.status_code == 200
        token = response.json()["access_token"]

        me = client.get("/auth/me", headers={"Authorization": f"Bearer {token}"}).json()
        assert me["username"] == "nadia"
        assert me["role"] == "CITIZEN"

    def test_duplicate_email(self, client, citizen):
        response = client.post("/auth/register", json={
            "email": citizen.email,
            "username": "someone-else",
            "password": "correct-horse",
        })
        assert response.status_code == 400

    def test_bad_password(self, client):
        client.post("/auth/register", json={
            "email": "nadia@trafficwatch.gov.bd", "username": "nadia", "password": "correct-horse",
        })
        response = client.post("/auth/login", json={
            "email": "nadia@trafficwatch.gov.bd", "password": "wrong-horse",
        })
        assert response.status_code == 401

    def test_missing_token(self, client):
        assert client.get("/citizen-reports/my-reports").status_code == 401

    def test_invalid_token(self, client):
        response = client.get("/citizen-reports/my-reports", headers={"Authorization": "Bearer nonsense"})
        assert response.status_code == 401


# =============================================================================
# CITIZEN REPORTS
# =============================================================================

class TestCitizenReports:

    def test_create_uses_camel_case(self, client, headers, citizen):
        body = _create(client, headers, citizen)

        assert body["vehiclePlate"] == "DHA-1234"
        assert body["violationType"] == "OVERSPEEDING"
        assert body["status"] == "PENDING"
        assert body["effectiveStatus"] == "PENDING"
        assert body["evidenceUrls"] == REPORT["evidenceUrls"]
        assert body["location"]["address"] == "Bijoy Sarani"
        assert body["rewardAmount"] is None

    def test_create_alias_route(self, client, headers, citizen):
        response = client.post("/citizen-reports/create", json=REPORT, headers=headers(citizen))
        assert response.status_code == 201

    def test_create_without_evidence(self, client, headers, citizen):
        response = client.post(
            "/citizen-reports", json={**REPORT, "evidenceUrls": []}, headers=headers(citizen)
        )
        assert response.status_code == 422
        assert response.json()["error"] == "validation_error"

    def test_my_reports_pagination(self, client, headers, citizen, other_citizen):
        for plate in ("DHA-1", "DHA-2", "DHA-3"):
            _create(client, headers, citizen, vehiclePlate=plate)
        _create(client, headers, other_citizen, vehiclePlate="CTG-1")

        body = client.get("/citizen-reports/my-reports?page=1&limit=2", headers=headers(citizen)).json()
        assert len(body["reports"]) == 2
        assert body["pagination"] == {"page": 1, "limit": 2, "total": 3, "totalPages": 2}

    def test_my_reports_filters(self, client, headers, citizen):
        _create(client, headers, citizen, vehiclePlate="DHA-1", violationType="NO_HELMET")
        _create(client, headers, citizen, vehiclePlate="DHA-2")

        body = client.get(
            "/citizen-reports/my-reports?violationType=NO_HELMET&dateFrom=2020-01-01",
            headers=headers(citizen),
        ).json()
        assert [r["vehiclePlate"] for r in body["reports"]] == ["DHA-1"]

        response = client.get("/citizen-reports/my-reports?dateFrom=yesterday", headers=headers(citizen))
        assert response.status_code == 422

    def test_same_day_range_includes_that_day(self, client, headers, citizen, officer):
        report = _create(client, headers, citizen)
        client.post(
            f"/police/review-report/{report['id']}", json={"status": "APPROVED", "amount": 300}, headers=headers(officer)
        )
        today = datetime.utcnow().date().isoformat()

        body = client.get(
            f"/citizen-reports/my-reports?dateFrom={today}&dateTo={today}", headers=headers(citizen)
        ).json()
        assert [r["id"] for r in body["reports"]] == [report["id"]]

        body = client.get(f"/rewards/transactions?dateFrom={today}&dateTo={today}", headers=headers(citizen)).json()
        assert body["pagination"]["total"] == 1

    def test_report_visibility(self, client, headers, citizen, other_citizen, officer):
        report = _create(client, headers, citizen)

        assert client.get(f"/citizen-reports/{report['id']}", headers=headers(citizen)).status_code == 200
        assert client.get(f"/citizen-reports/{report['id']}", headers=headers(officer)).status_code == 200
        assert client.get(f"/citizen-reports/{report['id']}", headers=headers(other_citizen)).status_code == 403
        assert client.get("/citizen-reports/missing", headers=headers(citizen)).status_code == 404

    def test_delete_pending_only(self, client, headers, db, citizen, officer):
        pending = _create(client, headers, citizen)
        reviewed = _create(client, headers, citizen, vehiclePlate="DHA-9")
        client.post(f"/police/review-report/{reviewed['id']}", json={"status": "APPROVED"}, headers=headers(officer))

        assert client.delete(f"/citizen-reports/{pending['id']}", headers=headers(citizen)).status_code == 200
        assert db.get(CitizenReportDB, pending["id"]) is None

        response = client.delete(f"/citizen-reports/{reviewed['id']}", headers=headers(citizen))
        assert response.status_code == 409
        assert response.json()["error"] == "invalid_state"

    def test_my_stats(self, client, headers, citizen):
        _create(client, headers, citizen)
        stats = client.get("/citizen-reports/my-stats", headers=headers(citizen)).json()
        assert stats["totalReports"] == 1
        assert stats["pendingReports"] == 1


# =============================================================================
# POLICE
# =============================================================================

class TestPolice:

    def test_citizens_are_kept_out(self, client, headers, citizen):
        response = client.get("/police/pending-reports", headers=headers(citizen))
        assert response.status_code == 403
        assert response.json()["detail"] == "Requires role: POLICE, ADMIN"

    def test_admin_may_act_as_police(self, client, headers, admin):
        assert client.get("/police/pending-reports", headers=headers(admin)).status_code == 200

    def test_review_once(self, client, headers, citizen, officer):
        report = _create(client, headers, citizen)

        queue = client.get("/police/pending-reports", headers=headers(officer)).json()
        assert [r["id"] for r in queue["reports"]] == [report["id"]]

        response = client.post(
            f"/police/review-report/{report['id']}",
            json={"action": "APPROVE", "reviewNotes": "Speed camera confirms"},
            headers=headers(officer),
        )
        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "APPROVED"
        assert body["rewardAmount"] == 250.0
        assert body["reviewNotes"] == "Speed camera confirms"

        again = client.post(
            f"/police/review/{report['id']}", json={"status": "REJECTED"}, headers=headers(officer)
        )
        assert again.status_code == 409
        assert again.json()["error"] == "invalid_state"

    def test_review_requires_decision(self, client, headers, citizen, officer):
        report = _create(client, headers, citizen)
        response = client.post(
            f"/police/review-report/{report['id']}", json={"reviewNotes": "?"}, headers=headers(officer)
        )
        assert response.status_code == 422

    def test_review_stats(self, client, headers, citizen, officer):
        _create(client, headers, citizen)
        stats = client.get("/police/review-stats", headers=headers(officer)).json()
        assert stats["pendingCount"] == 1
        assert "avgReviewTime" in stats


# =============================================================================
# FULL FLOW
# =============================================================================

def test_rejection_appeal_and_debt_flow(client, headers, db, citizen, officer):
    report = _create(client, headers, citizen)

    client.post(
        f"/police/review-report/{report['id']}",
        json={"status": "REJECTED", "reviewNotes": "Wrong vehicle", "amount": 1000},
        headers=headers(officer),
    )
    assert client.get("/rewards/balance", headers=headers(citizen)).json()["currentBalance"] == -1000

    response = client.post(
        f"/citizen-reports/{report['id']}/appeal",
        json={"appealReason": "The plate reads DHA-1284", "evidenceUrls": ["https://cdn.example.com/zoom.jpg"]},
        headers=headers(citizen),
    )
    assert response.status_code == 200
    assert response.json()["appealStatus"] == "PENDING"

    duplicate = client.post(
        f"/citizen-reports/{report['id']}/appeal",
        json={"appealReason": "Again"},
        headers=headers(citizen),
    )
    assert duplicate.status_code == 409
    assert duplicate.json()["error"] == "conflict"

    pending = client.get("/police/pending-appeals", headers=headers(officer)).json()
    assert [r["id"] for r in pending["reports"]] == [report["id"]]

    resolved = client.post(
        f"/police/review-appeal/{report['id']}",
        json={"status": "REJECTED", "reviewNotes": "Plate is legible"},
        headers=headers(officer),
    ).json()
    assert resolved["additionalPenaltyAmount"] == 15.0

    balance = client.get("/rewards/balance", headers=headers(citizen)).json()
    assert balance["currentBalance"] == -1015
    assert balance["totalOutstandingDebt"] == 1015
    assert balance["withdrawableAmount"] == 0

    debts = client.get("/rewards/debts", headers=headers(citizen)).json()
    assert debts["debtCount"] == 2
    assert client.get("/rewards/debts/total", headers=headers(citizen)).json()["totalDebt"] == 1015

    penalty_debt = next(d for d in debts["debts"] if d["originalAmount"] == 1000)
    paid = client.post(
        "/rewards/pay-debt",
        json={"debtId": penalty_debt["id"], "amount": 1000, "paymentMethod": "MOBILE_MONEY"},
        headers=headers(citizen),
    ).json()
    assert paid["status"] == "PAID"

    detail = client.get(f"/rewards/debts/{penalty_debt['id']}", headers=headers(citizen)).json()
    assert len(detail["payments"]) == 1
    assert client.get("/rewards/balance", headers=headers(citizen)).json()["currentBalance"] == -15

    transactions = client.get("/rewards/transactions?limit=10", headers=headers(citizen)).json()
    assert transactions["pagination"]["total"] == 3
    assert {t["type"] for t in transactions["transactions"]} == {"PENALTY", "DEDUCTION", "DEBT_PAYMENT"}


def test_overpaying_a_debt_is_rejected(client, headers, citizen, officer):
    report = _create(client, headers, citizen)
    client.post(
        f"/police/review-report/{report['id']}", json={"status": "REJECTED", "amount": 100}, headers=headers(officer)
    )
    debt_id = client.get("/rewards/debts", headers=headers(citizen)).json()["debts"][0]["id"]

    response = client.post(
        "/rewards/pay-debt",
        json={"debtId": debt_id, "amount": 150, "paymentMethod": "CARD"},
        headers=headers(citizen),
    )
    assert response.status_code == 422


# =============================================================================
# REWARDS AND ADMIN
# =============================================================================

def test_withdrawal_flow(client, headers, citizen, officer, admin):
    report = _create(client, headers, citizen)
    client.post(
        f"/police/review-report/{report['id']}", json={"status": "APPROVED", "amount": 600}, headers=headers(officer)
    )

    response = client.post(
        "/rewards/withdraw",
        json={"amount": 400, "method": "BANK_TRANSFER", "accountDetails": {"accountNumber": "0011223344"}},
        headers=headers(citizen),
    )
    assert response.status_code == 201
    withdrawal_id = response.json()["id"]

    listed = client.get("/admin/rewards/withdrawals?status=PENDING", headers=headers(admin)).json()
    assert [w["id"] for w in listed["withdrawals"]] == [withdrawal_id]

    for status in ("APPROVED", "COMPLETED"):
        response = client.put(
            f"/admin/rewards/withdrawals/{withdrawal_id}", json={"status": status}, headers=headers(admin)
        )
        assert response.status_code == 200

    assert client.get("/rewards/balance", headers=headers(citizen)).json()["currentBalance"] == 200
    assert client.get("/rewards/stats", headers=headers(citizen)).json()["totalTransactions"] == 2


def test_admin_surfaces(client, headers, db, citizen, officer, admin):
    report = _create(client, headers, citizen)
    client.post(
        f"/police/review-report/{report['id']}", json={"status": "REJECTED", "amount": 100}, headers=headers(officer)
    )

    assert client.get("/admin/citizen-reports", headers=headers(officer)).status_code == 403

    reports = client.get("/admin/citizen-reports?status=REJECTED", headers=headers(admin)).json()
    assert reports["pagination"]["total"] == 1
    stats = client.get("/admin/citizen-reports/stats", headers=headers(admin)).json()
    assert stats["rejectedReports"] == 1

    manual = client.post(
        "/admin/rewards/manual",
        json={"userId": citizen.id, "amount": 40, "type": "BONUS", "description": "Goodwill credit"},
        headers=headers(admin),
    )
    assert manual.status_code == 201
    assert manual.json()["source"] == "SYSTEM"

    ledger = client.get(f"/admin/rewards/transactions?userId={citizen.id}", headers=headers(admin)).json()
    assert ledger["pagination"]["total"] == 2

    debt = db.query(OutstandingDebtDB).one()
    waived = client.post(f"/admin/debts/{debt.id}/waive", json={"notes": "Hardship"}, headers=headers(admin))
    assert waived.json()["status"] == "WAIVED"

    promoted = client.put(
        f"/admin/users/{citizen.id}/role", json={"role": "POLICE", "badgeNumber": "DMP-7"}, headers=headers(admin)
    ).json()
    assert promoted["role"] == "POLICE"
    assert promoted["badgeNumber"] == "DMP-7"
    db.refresh(citizen)
    assert citizen.role == UserRole.POLICE


# =============================================================================
# INTERNAL
# =============================================================================

def test_internal_endpoints_require_key(client):
    assert client.post("/internal/accrue-late-fees", headers={"X-Internal-Key": "wrong"}).status_code == 403


def test_accrue_late_fees(client, headers, citizen, officer):
    report = _create(client, headers, citizen)
    client.post(
        f"/police/review-report/{report['id']}", json={"status": "REJECTED", "amount": 1000}, headers=headers(officer)
    )
    key = {"X-Internal-Key": INTERNAL_API_KEY}

    # Two full weeks past the seven-day grace period
    from datetime import datetime, timedelta
    as_of = (datetime.utcnow() + timedelta(days=22)).isoformat()

    result = client.post(f"/internal/accrue-late-fees?as_of={as_of}", headers=key).json()
    assert result["debts_charged"] == 1
    assert result["details"]["charged"][0]["fee_charged"] == 50.0

    overdue = client.get("/internal/overdue-debts", headers=key).json()
    assert overdue["count"] == 0  # not overdue yet in real time
