import httpx
import pytest

from app.services.graph import GraphAPIError, GraphClient
from app.services.n8n import N8nClient, N8nError, build_envelope


def _envelope():
    return build_envelope("tok", "act_1", "last_7d", ["cr_1"], "batch-creative-analysis", "req-1")


@pytest.mark.asyncio
async def test_graph_timeout_maps_to_504(caplog):
    def handler(request):
        raise httpx.ReadTimeout("slow", request=request)

    graph = GraphClient("https://graph.test", "v23.0", transport=httpx.MockTransport(handler))
    with caplog.at_level("ERROR"), pytest.raises(GraphAPIError) as err:
        await graph.get("me", "tok")

    assert err.value.status_code == 504
    assert "Graph API timeout" in caplog.text


@pytest.mark.asyncio
async def test_graph_sends_token_and_drops_none_params():
    seen = []

    def handler(request):
        seen.append(request)
        return httpx.Response(200, json={"id": "1"})

    graph = GraphClient("https://graph.test/", "v19.0", transport=httpx.MockTransport(handler))
    assert await graph.get("/me", "tok", {"fields": "id", "limit": None}) == {"id": "1"}
    assert seen[0].url.path == "/v19.0/me"
    assert seen[0].url.params["access_token"] == "tok"
    assert "limit" not in seen[0].url.params


@pytest.mark.asyncio
async def test_graph_error_body_with_200_status():
    graph = GraphClient(
        "https://graph.test",
        "v23.0",
        transport=httpx.MockTransport(
            lambda request: httpx.Response(200, json={"error": {"code": 4, "message": "slow down"}})
        ),
    )
    with pytest.raises(GraphAPIError) as err:
        await graph.get("me", "tok")
    assert err.value.status_code == 429


@pytest.mark.asyncio
async def test_n8n_empty_body_is_raw_response():
    client = N8nClient(
        "https://n8n.test/hook",
        transport=httpx.MockTransport(lambda request: httpx.Response(200, text="")),
    )
    result = await client.forward(_envelope())
    assert result.result == {"rawResponse": ""}
    assert result.request_id == "req-1"


@pytest.mark.asyncio
async def test_n8n_network_error(caplog):
    def handler(request):
        raise httpx.ConnectError("refused", request=request)

    client = N8nClient("https://n8n.test/hook", transport=httpx.MockTransport(handler))
    with caplog.at_level("ERROR"), pytest.raises(N8nError) as err:
        await client.forward(_envelope())
    assert err.value.status_code == 502
    assert "req-1" in caplog.text
