from promo_engine.dependencies import get_promo_engine
from promo_engine.errors import RedemptionContention, StorageError

ADMIN = "admin@example.com"


def _as(current_user, email):
    current_user["email"] = email


def _create(client, current_user, **body):
    _as(current_user, ADMIN)
    payload = {"code": "SAVE20", "discount_type": "percentage", "discount_amount": 20, "valid_from": "2020-01-01T00:00:00Z"}
    payload.update(body)
    resp = client.post("/api/admin/promo-codes", json=payload)
    _as(current_user, "user@example.com")
    return resp


def test_health(client):
    assert client.get("/health").json() == {"status": "ok"}


def test_validate_and_redeem_flow(client, current_user):
    assert _create(client, current_user, max_uses=1).status_code == 201

    resp = client.post("/api/promo-codes/validate", json={"code": "save20", "purchase_amount": 5000})
    assert resp.status_code == 200
    body = resp.json()
    assert body["valid"] is True
    assert body["discount_applied"] == 1000
    assert body["final_amount"] == 4000

    resp = client.post("/api/promo-codes/redeem", json={"code": "SAVE20", "purchase_amount": 5000, "purchase_reference": "ord-1"})
    assert resp.status_code == 201
    body = resp.json()
    assert body["redeemed"] is True
    assert body["discount_applied"] == 1000
    assert body["redemption"]["user_id"] == "user@example.com"
    assert body["redemption"]["purchase_reference"] == "ord-1"

    _as(current_user, "other@example.com")
    resp = client.post("/api/promo-codes/redeem", json={"code": "SAVE20", "purchase_amount": 5000})
    assert resp.status_code == 200
    assert resp.json()["reason"] == "max_uses_reached"


def test_validate_rejection_is_data(client, current_user):
    _create(client, current_user, code="MIN50", minimum_purchase="50.00")
    resp = client.post("/api/promo-codes/validate", json={"code": "MIN50", "purchase_amount": 4999})
    assert resp.status_code == 200
    assert resp.json()["valid"] is False
    assert resp.json()["reason"] == "minimum_purchase_not_met"

    resp = client.post("/api/promo-codes/validate", json={"code": "NOPE", "purchase_amount": 100})
    assert resp.json()["reason"] == "not_found"


def test_purchase_amount_must_be_integer_cents(client):
    assert client.post("/api/promo-codes/validate", json={"code": "X", "purchase_amount": 10.5}).status_code == 422
    assert client.post("/api/promo-codes/validate", json={"code": "X", "purchase_amount": "100"}).status_code == 422
    assert client.post("/api/promo-codes/validate", json={"code": "X", "purchase_amount": -1}).status_code == 422


def test_admin_routes_require_admin(client):
    assert client.get("/api/admin/promo-codes").status_code == 403
    assert client.post("/api/admin/promo-codes", json={}).status_code in (403, 422)


def test_admin_create_parses_amounts(client, current_user):
    resp = _create(client, current_user, code="FIX", discount_type="fixed", discount_amount="12.50", minimum_purchase=20)
    assert resp.status_code == 201
    body = resp.json()
    assert body["discount_amount"] == 1250
    assert body["minimum_purchase"] == 2000
    assert body["discount_label"] == "12.50"
    assert body["created_by"] == ADMIN


def test_admin_create_rejects_bad_amounts(client, current_user):
    assert _create(client, current_user, discount_amount=150).status_code == 422
    assert _create(client, current_user, discount_amount="abc").status_code == 422
    assert _create(client, current_user, discount_type="fixed", discount_amount="1.005").status_code == 422


def test_admin_duplicate_code(client, current_user):
    assert _create(client, current_user).status_code == 201
    assert _create(client, current_user, code="save20").status_code == 400


def test_admin_update_rejects_frozen_fields(client, current_user):
    _create(client, current_user)
    _as(current_user, ADMIN)
    assert client.patch("/api/admin/promo-codes/SAVE20", json={"discount_amount": 50}).status_code == 422
    assert client.patch("/api/admin/promo-codes/SAVE20", json={"code": "NEW"}).status_code == 422

    resp = client.patch("/api/admin/promo-codes/save20", json={"description": "updated", "max_uses": 10})
    assert resp.status_code == 200
    assert resp.json()["description"] == "updated"
    assert resp.json()["max_uses"] == 10


def test_admin_delete_guard(client, current_user):
    _create(client, current_user)
    client.post("/api/promo-codes/redeem", json={"code": "SAVE20", "purchase_amount": 1000})

    _as(current_user, ADMIN)
    assert client.delete("/api/admin/promo-codes/SAVE20").status_code == 409
    assert client.post("/api/admin/promo-codes/SAVE20/deactivate").json()["is_active"] is False
    assert client.delete("/api/admin/promo-codes/MISSING").status_code == 404

    redemptions = client.get("/api/admin/promo-codes/SAVE20/redemptions").json()
    assert len(redemptions) == 1
    assert redemptions[0]["discount_applied"] == 200


def test_admin_stats(client, current_user):
    _create(client, current_user)
    client.post("/api/promo-codes/redeem", json={"code": "SAVE20", "purchase_amount": 5000})

    _as(current_user, ADMIN)
    stats = client.get("/api/admin/promo-codes/stats").json()
    assert stats["total_codes"] == 1
    assert stats["total_uses"] == 1
    assert stats["total_discount_given"] == 1000
    assert stats["top_performing_codes"][0]["code"] == "SAVE20"

    code_stats = client.get("/api/admin/promo-codes/SAVE20/stats").json()
    assert code_stats["used_count"] == 1
    assert code_stats["remaining_uses"] == "Unlimited"


class _FailingEngine:
    def __init__(self, exc):
        self.exc = exc

    def validate_promo_code(self, code, context):
        raise self.exc

    def redeem_promo_code(self, code, context, purchase_reference=None):
        raise self.exc


def test_contention_maps_to_503(client):
    client.app.dependency_overrides[get_promo_engine] = lambda: _FailingEngine(RedemptionContention(attempts=5))
    resp = client.post("/api/promo-codes/redeem", json={"code": "SAVE20", "purchase_amount": 100})
    assert resp.status_code == 503
    assert resp.headers["Retry-After"] == "1"
    assert resp.json()["retryable"] is True


def test_storage_error_maps_to_500(client):
    client.app.dependency_overrides[get_promo_engine] = lambda: _FailingEngine(StorageError("db down"))
    resp = client.post("/api/promo-codes/validate", json={"code": "SAVE20", "purchase_amount": 100})
    assert resp.status_code == 500
    assert resp.json()["detail"] == "Storage unavailable"
