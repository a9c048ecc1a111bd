from app.core.security import create_access_token_for_subject
from app.models.domain import RoleName


def _create_approved_offer(client, as_role, catalog):
    as_role(RoleName.procurement)
    r = client.post(
        "/api/request-orders",
        json={
            "title": "Plant maintenance",
            "items": [
                {"item_type_id": catalog["steel"].id, "quantity": 10},
                {"item_type_id": catalog["cable"].id, "quantity": 5, "comment": "armoured"},
            ],
        },
    )
    assert r.status_code == 201, r.text
    request_order = r.json()
    assert request_order["status"] == "draft"
    assert request_order["items"][1]["item_type_name"] == "Copper cable"

    as_role(RoleName.manager)
    r = client.post(f"/api/request-orders/{request_order['id']}/approve")
    assert r.status_code == 200, r.text
    body = r.json()
    assert body["request_order"]["status"] == "approved"
    assert body["offer"]["status"] == "UNSTARTED"
    return body["offer"]


def _submit_full_offer(client, as_role, catalog, offer_id):
    as_role(RoleName.procurement)
    assert client.post(f"/api/offers/{offer_id}/start").status_code == 200
    for key, merchant, qty, price in (
        ("steel", "acme", 10, 100.0),
        ("cable", "nile", 5, 20.0),
    ):
        r = client.post(
            f"/api/offers/{offer_id}/items",
            json={
                "item_type_id": catalog[key].id,
                "merchant_id": catalog[merchant].id,
                "quantity": qty,
                "unit_price": price,
                "currency": "usd",
            },
        )
        assert r.status_code == 201, r.text
        assert r.json()["currency"] == "USD"
    r = client.post(f"/api/offers/{offer_id}/submit")
    assert r.status_code == 200, r.text
    assert r.json()["status"] == "SUBMITTED"


def test_offer_happy_path(client, as_role, catalog):
    offer = _create_approved_offer(client, as_role, catalog)
    offer_id = offer["id"]
    _submit_full_offer(client, as_role, catalog, offer_id)

    as_role(RoleName.manager)
    r = client.post(f"/api/offers/{offer_id}/manager-decision", json={"accept": True})
    assert r.status_code == 200, r.text
    assert r.json()["finance_status"] == "PENDING_FINANCE_REVIEW"

    as_role(RoleName.finance)
    items = client.get(f"/api/offers/{offer_id}").json()["offer_items"]
    r = client.post(
        f"/api/offers/{offer_id}/finance-decision",
        json={"decisions": [{"offer_item_id": i["id"], "status": "ACCEPTED"} for i in items]},
    )
    assert r.status_code == 200, r.text
    assert r.json()["offer"]["finance_status"] == "FINANCE_ACCEPTED"
    assert r.json()["fulfillment"]["outcome"] == "full"

    r = client.get(f"/api/offers/{offer_id}/actions")
    assert r.json()["actions"] == ["FINALIZE"]

    as_role(RoleName.procurement)
    r = client.post(f"/api/offers/{offer_id}/send-to-finalizing")
    assert r.status_code == 200, r.text
    assert r.json()["status"] == "FINALIZING"

    r = client.post(
        f"/api/offers/{offer_id}/finalize",
        json={"selected_offer_item_ids": [items[0]["id"]]},
    )
    assert r.status_code == 409
    detail = r.json()["detail"]
    assert detail["code"] == "finalization_decision_required"
    assert detail["unfinalized_offer_item_ids"] == [items[1]["id"]]

    r = client.post(
        f"/api/offers/{offer_id}/finalize",
        json={"selected_offer_item_ids": [items[0]["id"]], "create_offer_for_remaining": False},
    )
    assert r.status_code == 200, r.text
    body = r.json()
    assert body["outcome"] == "completed"
    assert body["offer"]["status"] == "COMPLETED"
    assert body["remainder_offer"] is None
    assert body["po_number"].startswith("PO_")

    r = client.get("/api/purchase-orders", params={"offer_id": offer_id})
    assert r.status_code == 200
    [po] = r.json()
    assert po["id"] == body["purchase_order_id"]
    assert po["total_amount"] == 1000.0
    assert po["currency"] == "USD"

    r = client.get(f"/api/offers/{offer_id}/timeline")
    assert r.status_code == 200, r.text
    timeline = r.json()
    types = [s["type"] for s in timeline["steps"]]
    assert types == [
        "REQUEST_APPROVED",
        "OFFER_SUBMITTED",
        "MANAGER_ACCEPTED",
        "FINANCE_ACCEPTED",
        "OFFER_FINALIZING",
        "OFFER_FINALIZED",
        "OFFER_COMPLETED",
    ]
    assert timeline["description"] == (
        "This offer has been completed and a purchase order has been created."
    )

    assert client.delete(f"/api/offers/{offer_id}").status_code == 409


def test_rejection_and_retry_over_http(client, as_role, catalog):
    offer = _create_approved_offer(client, as_role, catalog)
    _submit_full_offer(client, as_role, catalog, offer["id"])

    as_role(RoleName.manager)
    r = client.post(f"/api/offers/{offer['id']}/manager-decision", json={"accept": False})
    assert r.status_code == 422
    assert r.json()["code"] == "missing_rejection_reason"

    r = client.post(
        f"/api/offers/{offer['id']}/manager-decision",
        json={"accept": False, "reason": "Prices above budget"},
    )
    assert r.status_code == 200, r.text

    as_role(RoleName.procurement)
    r = client.post(f"/api/offers/{offer['id']}/retry")
    assert r.status_code == 201, r.text
    retried = r.json()
    assert retried["current_attempt_number"] == 2
    assert retried["parent_offer_id"] == offer["id"]

    r = client.post(f"/api/offers/{offer['id']}/retry")
    assert r.status_code == 409
    assert r.json()["code"] == "retry_already_in_progress"

    r = client.get(f"/api/offers/{retried['id']}/timeline")
    timeline = r.json()
    assert [s["notes"] for s in timeline["rejection_reasons"]] == ["Prices above budget"]
    assert timeline["steps"][-1]["id"] == "pending-procurement-solutions"
    assert timeline["description"].endswith("This is attempt #2 after 1 previous rejection.")

    r = client.get(f"/api/offers/{retried['id']}/timeline", params={"attempt": 2})
    assert [s["id"] for s in r.json()["steps"]] == [
        "request-approved",
        "pending-procurement-solutions",
    ]


def test_split_over_http(client, as_role, catalog):
    offer = _create_approved_offer(client, as_role, catalog)
    _submit_full_offer(client, as_role, catalog, offer["id"])
    as_role(RoleName.manager)
    client.post(f"/api/offers/{offer['id']}/manager-decision", json={"accept": True})

    as_role(RoleName.finance)
    steel_item, cable_item = client.get(f"/api/offers/{offer['id']}").json()["offer_items"]
    r = client.post(
        f"/api/offers/{offer['id']}/finance-decision",
        json={
            "decisions": [
                {"offer_item_id": steel_item["id"], "status": "ACCEPTED"},
                {"offer_item_id": cable_item["id"], "status": "REJECTED", "rejection_reason": "late"},
            ]
        },
    )
    assert r.json()["fulfillment"]["outcome"] == "partial"

    as_role(RoleName.procurement)
    r = client.post(f"/api/offers/{offer['id']}/continue-and-return")
    assert r.status_code == 200, r.text
    body = r.json()
    assert body["accepted_offer"]["status"] == "FINALIZING"
    remainder_id = body["remainder_offer"]["id"]

    r = client.get(f"/api/offers/{remainder_id}/request-items")
    assert [(i["item_type_id"], i["quantity"], i["source"]) for i in r.json()] == [
        (catalog["cable"].id, 5.0, "offer")
    ]


def test_request_item_endpoints(client, as_role, catalog):
    offer = _create_approved_offer(client, as_role, catalog)
    as_role(RoleName.procurement)

    r = client.get(f"/api/offers/{offer['id']}/request-items")
    lines = r.json()
    assert [i["source"] for i in lines] == ["request_order", "request_order"]

    r = client.put(
        f"/api/offers/{offer['id']}/request-items/{lines[0]['id']}",
        json={"quantity": 8, "comment": "reduced"},
    )
    assert r.status_code == 200, r.text
    assert r.json()["original_request_order_item_id"] == lines[0]["id"]

    r = client.get(f"/api/offers/{offer['id']}/request-items/history")
    assert [h["action"] for h in r.json()] == ["EDIT", "ADD"]

    r = client.post(
        f"/api/offers/{offer['id']}/request-items",
        json={"item_type_id": catalog["cable"].id, "quantity": 1},
    )
    assert r.status_code == 409
    assert r.json()["code"] == "duplicate_request_item"


def test_role_checks(client, as_role, catalog):
    offer = _create_approved_offer(client, as_role, catalog)

    as_role(RoleName.finance)
    assert client.post(f"/api/offers/{offer['id']}/start").status_code == 403
    assert client.get(f"/api/offers/{offer['id']}").status_code == 200

    as_role(RoleName.manager)
    r = client.post(
        f"/api/offers/{offer['id']}/items",
        json={
            "item_type_id": catalog["steel"].id,
            "merchant_id": catalog["acme"].id,
            "quantity": 1,
            "unit_price": 1,
        },
    )
    assert r.status_code == 403

    as_role(RoleName.admin)
    assert client.post(f"/api/offers/{offer['id']}/start").status_code == 200


def test_state_errors_are_typed(client, as_role, catalog):
    offer = _create_approved_offer(client, as_role, catalog)
    as_role(RoleName.procurement)

    r = client.post(f"/api/offers/{offer['id']}/submit")
    assert r.status_code == 409
    body = r.json()
    assert body["code"] == "invalid_state_transition"
    assert body["current_status"] == "UNSTARTED"

    r = client.get("/api/offers/9999")
    assert r.status_code == 404
    assert r.json()["code"] == "offer_not_found"

    r = client.post("/api/offers", json={"request_order_id": 9999})
    assert r.status_code == 404


def test_bearer_token_authentication(client, catalog):
    assert client.get("/api/offers").status_code == 401

    token = create_access_token_for_subject("dana", RoleName.finance.value)
    r = client.get("/api/offers", headers={"Authorization": f"Bearer {token}"})
    assert r.status_code == 200
    assert r.json() == []

    token = create_access_token_for_subject("eve", "intern")
    r = client.get("/api/offers", headers={"Authorization": f"Bearer {token}"})
    assert r.status_code == 403

    r = client.get("/api/offers", headers={"Authorization": "Bearer not-a-jwt"})
    assert r.status_code == 401


def test_health_endpoints(client):
    assert client.get("/api/health").json()["status"] == "ok"
    assert client.get("/api/health/ready").json()["database"] == "ok"
    assert client.get("/healthz").status_code == 200
