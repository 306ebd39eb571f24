"""
Tests for the /api/v1/mrp endpoints.
"""
from datetime import date, timedelta
from decimal import Decimal

from tests.factories import (
    create_test_mrp_run,
    create_test_product,
    create_test_recommendation,
    create_test_supplier,
    create_test_warehouse,
)
from tests.scenarios import seed_scenario

BASE = "/api/v1/mrp"


def parse_decimal(value) -> Decimal:
    """Parse a JSON value (string or number) as Decimal for comparison."""
    return Decimal(str(value))


class TestRunEndpoints:
    """Creating, listing and cancelling MRP runs."""

    def test_create_run_executes_inline(self, client, db_session, company_headers):
        seed_scenario(db_session, "purchase-only")

        response = client.post(f"{BASE}/runs", json={"name": "Nightly"}, headers=company_headers)

        assert response.status_code == 201
        body = response.json()
        assert body["status"] == "completed"
        assert body["name"] == "Nightly"
        assert body["products_processed"] == 2
        assert body["recommendations_generated"] == 1
        assert body["planning_horizon_days"] == 30
        assert body["created_by"] == 7
        assert body["run_number"].startswith(f"MRP-{date.today():%Y%m%d}-001-")

    def test_create_run_with_explicit_horizon(self, client, db_session, company_headers):
        seed_scenario(db_session, "purchase-only")
        start = date.today()

        response = client.post(f"{BASE}/runs", json={
            "planning_horizon_start": start.isoformat(),
            "planning_horizon_end": (start + timedelta(days=60)).isoformat(),
            "include_safety_stock": False,
        }, headers=company_headers)

        assert response.status_code == 201
        assert response.json()["planning_horizon_days"] == 60
        assert response.json()["include_safety_stock"] is False

    def test_inverted_horizon_is_rejected(self, client, db_session, company_headers):
        seed_scenario(db_session, "purchase-only")
        start = date.today()

        response = client.post(f"{BASE}/runs", json={
            "planning_horizon_start": start.isoformat(),
            "planning_horizon_end": (start - timedelta(days=1)).isoformat(),
        }, headers=company_headers)

        assert response.status_code == 400
        assert response.json()["error"] == "VALIDATION_ERROR"

    def test_run_blocked_by_lock(self, client, db_session, cache, company_headers):
        seed_scenario(db_session, "purchase-only")
        cache.acquire_lock(1, run_id=99)

        response = client.post(f"{BASE}/runs", json={}, headers=company_headers)

        assert response.status_code == 409
        assert response.json()["error"] == "MRP_RUN_IN_PROGRESS"
        assert "timestamp" in response.json()

    def test_company_header_required(self, client):
        response = client.get(f"{BASE}/runs")

        assert response.status_code == 422
        assert response.json()["error"] == "VALIDATION_ERROR"

    def test_list_runs(self, client, db_session, company_headers):
        create_test_mrp_run(db_session, status="completed")
        create_test_mrp_run(db_session, status="failed")
        create_test_mrp_run(db_session, company_id=2)
        db_session.commit()

        response = client.get(f"{BASE}/runs", headers=company_headers)
        filtered = client.get(f"{BASE}/runs", params={"status": "failed"}, headers=company_headers)

        assert response.status_code == 200
        assert response.json()["pagination"]["total"] == 2
        assert [r["status"] for r in filtered.json()["items"]] == ["failed"]

    def test_list_runs_paginates(self, client, db_session, company_headers):
        for _ in range(3):
            create_test_mrp_run(db_session)
        db_session.commit()

        body = client.get(f"{BASE}/runs", params={"limit": 2}, headers=company_headers).json()

        assert body["pagination"] == {"total": 3, "offset": 0, "limit": 2, "returned": 2}

    def test_get_run_scoped_to_company(self, client, db_session, company_headers):
        mine = create_test_mrp_run(db_session)
        theirs = create_test_mrp_run(db_session, company_id=2)
        db_session.commit()

        assert client.get(f"{BASE}/runs/{mine.id}", headers=company_headers).status_code == 200
        response = client.get(f"{BASE}/runs/{theirs.id}", headers=company_headers)
        assert response.status_code == 404
        assert response.json()["error"] == "NOT_FOUND"

    def test_progress_of_running_run(self, client, db_session, cache, company_headers):
        run = create_test_mrp_run(db_session, status="running")
        finished = create_test_mrp_run(db_session, status="failed")
        db_session.commit()
        cache.update_progress(run.id, 30, 120, "RAW-0003")

        response = client.get(f"{BASE}/runs/{run.id}/progress", headers=company_headers)

        assert response.status_code == 200
        assert response.json()["percentage"] == 25.0
        assert client.get(f"{BASE}/runs/{run.id}", headers=company_headers).json()["progress"]["processed"] == 30
        assert client.get(f"{BASE}/runs/{finished.id}/progress", headers=company_headers).json() is None

    def test_cancel_pending_run(self, client, db_session, company_headers):
        pending = create_test_mrp_run(db_session, status="pending")
        completed = create_test_mrp_run(db_session, status="completed")
        db_session.commit()

        response = client.post(f"{BASE}/runs/{pending.id}/cancel", headers=company_headers)
        rejected = client.post(f"{BASE}/runs/{completed.id}/cancel", headers=company_headers)

        assert response.status_code == 200
        assert response.json()["status"] == "cancelled"
        assert rejected.status_code == 400
        assert rejected.json()["error"] == "INVALID_STATE"


class TestRecommendationEndpoints:
    """Reviewing and actioning recommendations."""

    def test_recommendations_most_urgent_first(self, client, db_session, company_headers):
        run = create_test_mrp_run(db_session)
        product = create_test_product(db_session, sku="RAW-LIST")
        create_test_recommendation(db_session, run, product, priority="low")
        create_test_recommendation(db_session, run, product, priority="critical")
        create_test_recommendation(db_session, run, product, priority="medium")
        db_session.commit()

        response = client.get(f"{BASE}/runs/{run.id}/recommendations", headers=company_headers)

        assert response.status_code == 200
        items = response.json()["items"]
        assert [i["priority"] for i in items] == ["critical", "medium", "low"]
        assert items[0]["product_sku"] == "RAW-LIST"

    def test_recommendation_filters(self, client, db_session, company_headers):
        run = create_test_mrp_run(db_session)
        buy = create_test_product(db_session)
        make = create_test_product(db_session, make_or_buy="make")
        create_test_recommendation(db_session, run, buy)
        create_test_recommendation(db_session, run, make, is_urgent=True)
        db_session.commit()

        by_type = client.get(
            f"{BASE}/runs/{run.id}/recommendations", params={"type": "work_order"}, headers=company_headers
        ).json()
        urgent = client.get(
            f"{BASE}/runs/{run.id}/recommendations", params={"urgent_only": True}, headers=company_headers
        ).json()

        assert [i["product_id"] for i in by_type["items"]] == [make.id]
        assert [i["product_id"] for i in urgent["items"]] == [make.id]

    def test_approve_creates_purchase_order(self, client, db_session, company_headers):
        create_test_warehouse(db_session)
        run = create_test_mrp_run(db_session)
        product = create_test_product(db_session)
        create_test_supplier(db_session, [(product, "2.50")])
        rec = create_test_recommendation(db_session, run, product, quantity=40)
        db_session.commit()

        response = client.post(f"{BASE}/recommendations/{rec.id}/approve", headers=company_headers)

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "actioned"
        assert body["action_reference_type"] == "purchase_order"
        assert body["actioned_by"] == 7
        assert parse_decimal(body["suggested_quantity"]) == Decimal("40")

    def test_approve_without_warehouse(self, client, db_session, company_headers):
        run = create_test_mrp_run(db_session)
        product = create_test_product(db_session)
        rec = create_test_recommendation(db_session, run, product)
        db_session.commit()

        response = client.post(f"{BASE}/recommendations/{rec.id}/approve", headers=company_headers)

        assert response.status_code == 422
        assert response.json()["error"] == "MISSING_WAREHOUSE"
        db_session.refresh(rec)
        assert rec.status == "pending"

    def test_reject(self, client, db_session, company_headers):
        run = create_test_mrp_run(db_session)
        rec = create_test_recommendation(db_session, run, create_test_product(db_session))
        db_session.commit()

        response = client.post(
            f"{BASE}/recommendations/{rec.id}/reject",
            json={"reason": "Covered by a blanket order"},
            headers=company_headers,
        )
        again = client.post(f"{BASE}/recommendations/{rec.id}/reject", json={}, headers=company_headers)

        assert response.status_code == 200
        assert response.json()["status"] == "rejected"
        assert response.json()["action_notes"] == "Covered by a blanket order"
        assert again.status_code == 400

    def test_other_company_recommendation_not_found(self, client, db_session, company_headers):
        run = create_test_mrp_run(db_session, company_id=2)
        rec = create_test_recommendation(db_session, run, create_test_product(db_session, company_id=2))
        db_session.commit()

        response = client.post(f"{BASE}/recommendations/{rec.id}/approve", headers=company_headers)

        assert response.status_code == 404

    def test_bulk_approve_skips_failures(self, client, db_session, company_headers):
        create_test_warehouse(db_session)
        run = create_test_mrp_run(db_session)
        buy = create_test_product(db_session)
        make_without_bom = create_test_product(db_session, make_or_buy="make")
        ok = create_test_recommendation(db_session, run, buy)
        failing = create_test_recommendation(db_session, run, make_without_bom)
        db_session.commit()

        response = client.post(
            f"{BASE}/recommendations/bulk-approve",
            json={"recommendation_ids": [ok.id, failing.id]},
            headers=company_headers,
        )

        assert response.status_code == 200
        assert response.json()["requested"] == 2
        assert response.json()["processed"] == 1

    def test_bulk_reject(self, client, db_session, company_headers):
        run = create_test_mrp_run(db_session)
        product = create_test_product(db_session)
        recs = [create_test_recommendation(db_session, run, product) for _ in range(2)]
        db_session.commit()

        response = client.post(
            f"{BASE}/recommendations/bulk-reject",
            json={"recommendation_ids": [r.id for r in recs], "reason": "Plan superseded"},
            headers=company_headers,
        )

        assert response.json()["processed"] == 2

    def test_bulk_requires_ids(self, client, company_headers):
        response = client.post(
            f"{BASE}/recommendations/bulk-approve", json={"recommendation_ids": []}, headers=company_headers
        )

        assert response.status_code == 422


class TestCacheAndStatistics:
    def test_invalidate_cache(self, client, cache, company_headers):
        cache.cache_low_level_codes(1, {1: 0})

        response = client.post(f"{BASE}/cache/invalidate", headers=company_headers)

        assert response.status_code == 200
        assert response.json()["keys_deleted"] >= 1
        assert cache.get_cached_low_level_codes(1) is None

    def test_mark_products_dirty(self, client, db_session, cache, company_headers):
        product = create_test_product(db_session)
        db_session.commit()

        response = client.post(
            f"{BASE}/dirty-products", json={"product_ids": [product.id, 9999]}, headers=company_headers
        )

        assert response.json() == {"marked": 1}
        assert cache.get_dirty_products(1) == {product.id}

    def test_statistics(self, client, db_session, company_headers):
        run = create_test_mrp_run(db_session, recommendations_generated=2)
        buy = create_test_product(db_session)
        make = create_test_product(db_session, make_or_buy="make")
        create_test_recommendation(db_session, run, buy, is_urgent=True)
        create_test_recommendation(db_session, run, make)
        create_test_recommendation(db_session, run, buy, status="rejected")
        db_session.commit()

        response = client.get(f"{BASE}/statistics", headers=company_headers)

        assert response.status_code == 200
        body = response.json()
        assert body["pending_recommendations"] == 2
        assert body["urgent_recommendations"] == 1
        assert body["by_type"] == {"purchase_order": 1, "work_order": 1}
        assert body["latest_run"]["id"] == run.id

    def test_health(self, client):
        assert client.get("/health").json()["status"] == "healthy"
