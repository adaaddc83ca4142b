import asyncio

from blacksheep.contents import JSONContent
from blacksheep.testing import TestClient

from server import app


def run(scenario):
    async def runner():
        await app.start()
        return await scenario(TestClient(app))

    return asyncio.run(runner())


async def settle():
    # lets the detached submission task run
    for _ in range(5):
        await asyncio.sleep(0)


async def create_video(client, **payload):
    response = await client.post("/api/v1/videos", content=JSONContent({"prompt": "a quiet harbour", **payload}))
    assert response.status == 201
    data = await response.json()
    await settle()
    return data


def test_video_lifecycle_against_mock_provider():
    async def scenario(client):
        created = await create_video(client, duration=6, aspectRatio="16:9", priority="high")
        job_id = created["job_id"]

        status = await (await client.get(f"/api/v1/videos/{job_id}")).json()
        early_result = await client.get(f"/api/v1/videos/{job_id}/result")

        await client.post(f"/api/v1/videos/{job_id}/sync")
        synced = await (await client.post(f"/api/v1/videos/{job_id}/sync")).json()

        result = await (await client.get(f"/api/v1/videos/{job_id}/result")).json()
        content = await client.get(f"/api/v1/videos/{job_id}/content")
        return created, status, early_result.status, synced, result, content.status, await content.read()

    created, status, early_status, synced, result, content_status, body = run(scenario)

    assert created["status"] == "pending"
    assert created["job_id"].startswith("job_")
    assert status["status"] == "processing"
    assert status["priority"] == "high"
    assert status["metadata"]["aspect_ratio"] == "16:9"
    assert early_status == 409
    assert synced["status"] == "completed"
    assert result["result"]["resolution"] == "1920x1080"
    assert content_status == 200
    assert body.endswith(status["external_job_id"].encode())


def test_validation_errors_use_the_error_envelope():
    async def scenario(client):
        response = await client.post("/api/v1/videos", content=JSONContent({"prompt": "x", "duration": 25}))
        return response.status, await response.json()

    status, body = run(scenario)
    assert status == 400
    assert body["error"]["code"] == "VALIDATION_ERROR"
    assert body["error"]["details"]["field"] == "duration"


def test_unknown_job_is_404():
    async def scenario(client):
        response = await client.get("/api/v1/videos/job_missing")
        return response.status, await response.json()

    status, body = run(scenario)
    assert status == 404
    assert body["error"] == {"code": "NOT_FOUND", "message": "Video job with id 'job_missing' not found"}


def test_cancel_then_cancel_again_conflicts():
    async def scenario(client):
        job_id = (await create_video(client))["job_id"]
        first = await client.delete(f"/api/v1/videos/{job_id}")
        second = await client.delete(f"/api/v1/videos/{job_id}")
        return (await first.json())["status"], second.status, await second.json()

    first_status, second_status, body = run(scenario)
    assert first_status == "cancelled"
    assert second_status == 409
    assert body["error"]["code"] == "CONFLICT"


def test_list_videos_filters_and_pages():
    async def scenario(client):
        for _ in range(3):
            await create_video(client, priority="low")
        filtered = await client.get("/api/v1/videos", query={"priority": "low", "size": "2", "sort_order": "asc"})
        bad = await client.get("/api/v1/videos", query={"status": "exploded"})
        return await filtered.json(), bad.status

    page, bad_status = run(scenario)
    assert page["size"] == 2
    assert len(page["items"]) == 2
    assert page["total"] >= 3
    assert page["has_next"] is True
    assert {item["priority"] for item in page["items"]} == {"low"}
    assert bad_status == 400


def test_batch_endpoints():
    async def scenario(client):
        response = await client.post(
            "/api/v1/batches",
            content=JSONContent({"name": "teasers", "videos": [{"prompt": f"teaser {i}"} for i in range(3)]}),
        )
        created = await response.json()
        await settle()
        batch_id = created["batch_id"]
        processed = await (await client.post(f"/api/v1/batches/{batch_id}/process", query={"concurrency": "2"})).json()
        fetched = await (await client.get(f"/api/v1/batches/{batch_id}")).json()
        listed = await (await client.get("/api/v1/batches")).json()
        cancelled = await (await client.delete(f"/api/v1/batches/{batch_id}")).json()
        missing = await client.get("/api/v1/batches/batch_missing")
        return response.status, created, processed, fetched, listed, cancelled, missing.status

    status, created, processed, fetched, listed, cancelled, missing_status = run(scenario)

    assert status == 201
    assert created["total"] == 3
    assert len(created["job_ids"]) == 3
    assert processed["status"] == "processing"
    assert fetched["id"] == created["batch_id"]
    assert created["batch_id"] in [batch["id"] for batch in listed["items"]]
    assert cancelled["status"] == "cancelled"
    assert cancelled["progress"]["cancelled"] == 3
    assert missing_status == 404


def test_invalid_batch_names_the_bad_index():
    async def scenario(client):
        response = await client.post(
            "/api/v1/batches",
            content=JSONContent({"videos": [{"prompt": "fine"}, {"prompt": ""}]}),
        )
        return response.status, await response.json()

    status, body = run(scenario)
    assert status == 400
    assert body["error"]["details"]["index"] == 1


def test_health_endpoints():
    async def scenario(client):
        health = await (await client.get("/health")).json()
        ready = await client.get("/health/ready")
        metrics = await (await client.get("/health/metrics")).json()
        return health, ready.status, await ready.json(), metrics

    health, ready_status, ready, metrics = run(scenario)

    assert health["status"] == "healthy"
    assert health["checks"] == {"api": "healthy"}
    assert ready_status == 200
    assert ready["ready"] is True
    assert set(metrics["jobs"]) == {"pending", "processing", "completed", "failed", "cancelled", "total"}
    assert metrics["system"]["uptime_seconds"] >= 0
