"""Tests for the AI Sage insight endpoint"""
import pybreaker
import pytest


@pytest.mark.asyncio
async def test_get_insight(client, auth_headers, signup, add_habit, sage_client):
    await signup("alice")
    await add_habit("alice", name="Journal", category="mindfulness")

    response = await client.post("/api/v1/insights", headers=auth_headers("alice"))

    assert response.status_code == 200
    assert response.json() == {
        "insight": "You never miss a Monday run.",
        "suggested_habit": "Five minutes of stretching",
        "warnings": [],
    }
    prompt = sage_client.complete.await_args.args[0]
    assert "Journal (mindfulness)" in prompt


@pytest.mark.asyncio
async def test_unreadable_reply(client, auth_headers, signup, sage_client):
    await signup("alice")
    sage_client.complete.return_value = "I am not sure what to say."

    response = await client.post("/api/v1/insights", headers=auth_headers("alice"))

    assert response.status_code == 502
    assert response.json()["error"] == "InsightParseError"


@pytest.mark.asyncio
async def test_circuit_open(client, auth_headers, signup, sage_client):
    await signup("alice")
    sage_client.complete.side_effect = pybreaker.CircuitBreakerError("open")

    response = await client.post("/api/v1/insights", headers=auth_headers("alice"))

    assert response.status_code == 502
    assert response.json()["error"] == "InsightServiceError"


@pytest.mark.asyncio
async def test_insight_requires_account(client, auth_headers, sage_client):
    response = await client.post("/api/v1/insights", headers=auth_headers("ghost"))

    assert response.status_code == 404
    sage_client.complete.assert_not_awaited()
