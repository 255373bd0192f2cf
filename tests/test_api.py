"""HTTP smoke tests for the fee ledger API."""

from decimal import Decimal

from httpx import AsyncClient

ACTOR_ID = 7


async def _issue_invoice(client: AsyncClient, student_id: int, term: str = "TERM_1") -> dict:
    response = await client.post(
        "/api/v1/fee-structures",
        json={
            "class_name": "grade4",
            "academic_year": "2025-2026",
            "term": term,
            "created_by_id": ACTOR_ID,
            "items": [
                {"item_name": "Tuition", "category": "tuition", "amount": "300.00"},
                {"item_name": "Lunch", "category": "meals", "amount": "300.00", "display_order": 1},
            ],
        },
    )
    assert response.status_code == 201
    fee_structure = response.json()["data"]

    response = await client.post(
        "/api/v1/invoices",
        json={
            "student_id": student_id,
            "fee_structure_id": fee_structure["id"],
            "generated_by_id": ACTOR_ID,
        },
    )
    assert response.status_code == 201
    return response.json()["data"]


class TestLedgerApi:
    async def test_health(self, client: AsyncClient):
        response = await client.get("/health")
        assert response.status_code == 200
        assert response.json() == {"status": "healthy"}

    async def test_allocate_and_cancel_allocation(self, client: AsyncClient, student):
        invoice = await _issue_invoice(client, student.id)
        item1, item2 = invoice["items"]
        assert Decimal(invoice["total_amount"]) == Decimal("600.00")

        response = await client.post(
            "/api/v1/payments",
            json={
                "student_id": student.id,
                "amount": "500.00",
                "payment_mode": "CASH",
                "payment_date": "2026-02-02",
                "collected_by_id": ACTOR_ID,
            },
        )
        assert response.status_code == 201
        payment = response.json()["data"]
        assert payment["status"] == "PENDING"

        response = await client.post(
            f"/api/v1/payments/{payment['id']}/allocate",
            json={
                "targets": [
                    {"invoice_item_id": item1["id"], "amount": "300.00"},
                    {"invoice_item_id": item2["id"], "amount": "200.00"},
                ],
                "allocated_by_id": ACTOR_ID,
            },
        )
        assert response.status_code == 200
        payment = response.json()["data"]
        assert payment["status"] == "COMPLETED"
        assert payment["receipt_number"]
        allocation = payment["items"][0]

        response = await client.post(
            f"/api/v1/payment-items/{allocation['id']}/cancel",
            json={"cancelled_by_id": ACTOR_ID, "reason": "wrong item"},
        )
        assert response.status_code == 200
        assert response.json()["data"]["status"] == "CANCELLED"

        response = await client.get(f"/api/v1/invoices/{invoice['id']}")
        data = response.json()["data"]
        assert Decimal(data["balance_amount"]) == Decimal("400.00")
        assert data["status"] == "PARTIALLY_PAID"

        response = await client.get(f"/api/v1/payments/{payment['id']}")
        assert response.json()["data"]["status"] == "COMPLETED"

    async def test_ledger_error_envelope(self, client: AsyncClient, student):
        invoice = await _issue_invoice(client, student.id)
        response = await client.post(
            "/api/v1/payments",
            json={
                "student_id": student.id,
                "amount": "100.00",
                "payment_mode": "CASH",
                "payment_date": "2026-02-02",
                "collected_by_id": ACTOR_ID,
            },
        )
        payment_id = response.json()["data"]["id"]

        response = await client.post(
            f"/api/v1/payments/{payment_id}/allocate",
            json={
                "targets": [{"invoice_item_id": invoice["items"][0]["id"], "amount": "90.00"}],
                "allocated_by_id": ACTOR_ID,
            },
        )

        assert response.status_code == 422
        body = response.json()
        assert body["success"] is False
        assert body["errors"][0]["field"] == "targets"
        assert body["details"]["allocated"] == "90.00"

    async def test_not_found_and_request_validation(self, client: AsyncClient):
        response = await client.get("/api/v1/invoices/424242")
        assert response.status_code == 404
        assert response.json()["success"] is False

        response = await client.post(
            "/api/v1/payments",
            json={
                "student_id": 1,
                "amount": "100.00",
                "payment_mode": "CHEQUE",
                "payment_date": "2026-02-02",
                "collected_by_id": ACTOR_ID,
            },
        )
        assert response.status_code == 422
        assert response.json()["message"] == "Validation error"

    async def test_waiver_and_carry_forward(self, client: AsyncClient, student):
        invoice = await _issue_invoice(client, student.id, term="TERM_1")
        item1 = invoice["items"][0]

        response = await client.post(
            f"/api/v1/invoices/items/{item1['id']}/waiver",
            json={"amount": "300.00", "reason": "bursary", "approved_by_id": ACTOR_ID},
        )
        assert response.status_code == 200
        assert response.json()["data"]["payment_status"] == "PAID"

        response = await client.post(
            "/api/v1/balance-transfers",
            json={
                "student_id": student.id,
                "from_scope": {"class_name": "grade4", "term": "TERM_1", "academic_year": "2025-2026"},
                "to_scope": {"class_name": "grade5", "term": "TERM_1", "academic_year": "2026-2027"},
                "transferred_by_id": ACTOR_ID,
            },
        )
        assert response.status_code == 201
        transfer = response.json()["data"]
        assert transfer["status"] == "TRANSFERRED"
        assert Decimal(transfer["total_balance_transferred"]) == Decimal("300.00")
        assert len(transfer["details"]) == 1

        response = await client.get(f"/api/v1/invoices/{transfer['destination_invoice_id']}")
        destination = response.json()["data"]
        assert destination["class_name"] == "grade5"
        assert destination["items"][0]["carried_forward_from_id"] == invoice["items"][1]["id"]

        response = await client.get("/api/v1/balance-transfers", params={"student_id": student.id})
        assert len(response.json()["data"]) == 1

    async def test_verify_mobile_money_then_allocate(self, client: AsyncClient, student):
        invoice = await _issue_invoice(client, student.id)
        response = await client.post(
            "/api/v1/payments",
            json={
                "student_id": student.id,
                "amount": "300.00",
                "payment_mode": "MOBILE_MONEY",
                "payment_date": "2026-02-02",
                "transaction_reference": "QX12AB34",
                "collected_by_id": ACTOR_ID,
            },
        )
        payment_id = response.json()["data"]["id"]
        allocation = {
            "targets": [{"invoice_item_id": invoice["items"][0]["id"], "amount": "300.00"}],
            "allocated_by_id": ACTOR_ID,
        }

        response = await client.post(f"/api/v1/payments/{payment_id}/allocate", json=allocation)
        assert response.status_code == 422
        assert response.json()["errors"][0]["field"] == "payment_id"

        response = await client.post(
            f"/api/v1/payments/{payment_id}/verify", json={"verified_by_id": ACTOR_ID}
        )
        assert response.status_code == 200
        assert response.json()["data"]["verified_by_id"] == ACTOR_ID
        assert response.json()["data"]["verified_at"]

        response = await client.post(f"/api/v1/payments/{payment_id}/allocate", json=allocation)
        assert response.status_code == 200
        assert response.json()["data"]["status"] == "COMPLETED"

    async def test_fee_structure_copy_lookup_and_delete(self, client: AsyncClient, student):
        invoice = await _issue_invoice(client, student.id)

        response = await client.post(
            f"/api/v1/fee-structures/{invoice['fee_structure_id']}/copy",
            json={"academic_year": "2025-2026", "term": "TERM_2", "created_by_id": ACTOR_ID},
        )
        assert response.status_code == 201
        copy = response.json()["data"]
        assert Decimal(copy["total_amount"]) == Decimal("600.00")

        response = await client.get(
            "/api/v1/fee-structures/by-class",
            params={"class_name": "grade4", "academic_year": "2025-2026", "term": "TERM_2"},
        )
        assert response.status_code == 200
        assert response.json()["data"]["id"] == copy["id"]

        response = await client.delete(
            f"/api/v1/fee-structures/{invoice['fee_structure_id']}",
            params={"deleted_by_id": ACTOR_ID},
        )
        assert response.status_code == 422

        response = await client.delete(
            f"/api/v1/fee-structures/{copy['id']}", params={"deleted_by_id": ACTOR_ID}
        )
        assert response.status_code == 200
        response = await client.get(f"/api/v1/fee-structures/{copy['id']}")
        assert response.status_code == 404

    async def test_promote_student(self, client: AsyncClient, student):
        await _issue_invoice(client, student.id)

        response = await client.post(
            "/api/v1/promotions",
            json={
                "student_id": student.id,
                "to_class": "Grade5",
                "to_academic_year": "2026-2027",
                "promoted_by_id": ACTOR_ID,
            },
        )
        assert response.status_code == 201
        promotion = response.json()["data"]
        assert promotion["to_class"] == "grade5"
        assert Decimal(promotion["total_balance_transferred"]) == Decimal("600.00")
        assert promotion["transfers"][0]["promotion_id"] == promotion["id"]
        assert len(promotion["transfers"][0]["details"]) == 2

        response = await client.get(f"/api/v1/promotions/students/{student.id}")
        assert [p["id"] for p in response.json()["data"]] == [promotion["id"]]

        response = await client.post(
            "/api/v1/promotions",
            json={
                "student_id": student.id,
                "to_class": "grade4",
                "to_academic_year": "2026-2027",
                "promoted_by_id": ACTOR_ID,
            },
        )
        assert response.status_code == 422
