import httpx
import pytest

from aether.integrations.device_api import DeviceAPIClient, DeviceAPIError, time_of_day


def make_api(routes: dict[str, httpx.Response | Exception]) -> DeviceAPIClient:
    def handler(request: httpx.Request) -> httpx.Response:
        response = routes.get(request.url.path)
        if response is None:
            return httpx.Response(404, json={"error": "no such route"})
        if isinstance(response, Exception):
            raise response
        return response

    return DeviceAPIClient(base_url="http://core.test", transport=httpx.MockTransport(handler))


NODES = {"nodes": [
    {"node_id": "n1", "name": "Stage Left", "status": "online", "is_paired": True},
    {"node_id": "n2", "name": "Rear Truss", "status": "offline", "is_paired": True},
    {"node_id": "n3", "name": "Unpaired", "status": "online"},
    {"node_id": "n4", "name": "Built-in", "status": "online", "is_builtin": True},
]}


@pytest.mark.parametrize("hour,label", [
    (5, "early_morning"), (9, "morning"), (13, "afternoon"),
    (18, "evening"), (21, "night"), (2, "late_night"),
])
def test_time_of_day(hour, label):
    assert time_of_day(hour) == label


@pytest.mark.asyncio
async def test_live_context_while_playing():
    api = make_api({
        "/api/playback/status": httpx.Response(200, json={"scene": {"name": "Sunset", "id": "s1"}}),
        "/api/nodes": httpx.Response(200, json=NODES),
        "/api/health": httpx.Response(200, json={"status": "healthy"}),
    })

    ctx = await api.fetch_live_context("online")

    assert ctx.is_playing is True
    assert ctx.playback.description == "Sunset"
    assert (ctx.nodes.online, ctx.nodes.offline, ctx.nodes.total) == (2, 1, 3)
    assert ctx.nodes.warnings == ["Rear Truss offline"]
    assert ctx.system.healthy is True
    assert ctx.ai_mode == "online"
    assert ctx.time.day_of_week
    await api.close()


@pytest.mark.asyncio
async def test_live_context_idle():
    api = make_api({
        "/api/playback/status": httpx.Response(200, json={}),
        "/api/nodes": httpx.Response(200, json=[]),
        "/api/health": httpx.Response(200, json={"status": "degraded"}),
    })

    ctx = await api.fetch_live_context()

    assert ctx.playback.state == "idle"
    assert ctx.is_playing is False
    assert ctx.nodes.total == 0
    assert ctx.system.healthy is False
    await api.close()


@pytest.mark.asyncio
async def test_live_context_degrades_per_endpoint():
    api = make_api({
        "/api/playback/status": httpx.ConnectError("refused"),
        "/api/nodes": httpx.Response(500, text="boom"),
        "/api/health": httpx.Response(200, json={"status": "healthy"}),
    })

    ctx = await api.fetch_live_context()

    assert ctx.playback.state == "unknown"
    assert ctx.nodes.total == 0
    assert ctx.system.healthy is True
    await api.close()


@pytest.mark.asyncio
async def test_error_status_raises_with_detail():
    api = make_api({"/api/scenes/zzz": httpx.Response(404, json={"error": "Scene not found"})})

    with pytest.raises(DeviceAPIError) as exc:
        await api.delete("/api/scenes/zzz")

    assert exc.value.status_code == 404
    assert str(exc.value) == "HTTP 404: Scene not found"
    await api.close()


@pytest.mark.asyncio
async def test_empty_and_non_json_bodies():
    api = make_api({
        "/api/playback/stop": httpx.Response(204),
        "/api/nodes/scan": httpx.Response(200, text="scanning"),
    })

    assert await api.post("/api/playback/stop") == {}
    assert await api.post("/api/nodes/scan") == {"raw": "scanning"}
    await api.close()
