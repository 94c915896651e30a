import pytest


@pytest.mark.anyio
async def test_health_reports_dependencies(client):
    response = await client.get("/health")

    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "ok"
    assert body["db_ok"] is True
    assert body["db_status"] == "ok"
    assert body["gateways"] == {"paystack_configured": True, "tradesafe_configured": True}
    assert body["cron_configured"] is True
    assert body["migrations_status"] in {"up_to_date", "unknown"}
