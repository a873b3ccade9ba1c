import httpx
import pytest

from honua_api.app.services.link_preview_service import parse_metadata
from tests.conftest import API

PAGE = """
<html>
  <head>
    <title>  Fallback title </title>
    <meta name="description" content="Plain description">
    <meta property="og:title" content="Zero waste kitchen">
    <meta name="twitter:description" content="Card description">
    <meta property="og:image" content="/img/jars.png">
  </head>
  <body>Jars everywhere</body>
</html>
"""


class FakePage:
    def __init__(self, text, url, status_code=200):
        self.text = text
        self.url = url
        self.status_code = status_code

    def raise_for_status(self):
        if self.status_code >= 400:
            request = httpx.Request("GET", self.url)
            raise httpx.HTTPStatusError("error", request=request, response=httpx.Response(self.status_code))


class TestParseMetadata:
    def test_open_graph_wins(self):
        metadata = parse_metadata(PAGE, "https://blog.example.org/posts/1")
        assert metadata == {
            "title": "Zero waste kitchen",
            "description": "Card description",
            "image": "https://blog.example.org/img/jars.png",
        }

    def test_falls_back_to_title_tag(self):
        metadata = parse_metadata("<title>Only a title</title>", "https://example.org")
        assert metadata == {"title": "Only a title", "description": "", "image": None}

    def test_truncates_long_values(self):
        html = f'<meta property="og:title" content="{"a" * 150}"><meta name="description" content="{"b" * 300}">'
        metadata = parse_metadata(html, "https://example.org")
        assert len(metadata["title"]) == 100
        assert len(metadata["description"]) == 200


@pytest.mark.asyncio
class TestLinkPreview:
    async def test_preview(self, client, monkeypatch):
        requested = {}

        def fake_get(url, headers=None, timeout=None, follow_redirects=False):
            requested["url"] = url
            requested["agent"] = headers["User-Agent"]
            return FakePage(PAGE, "https://blog.example.org/posts/1")

        monkeypatch.setattr("honua_api.app.services.link_preview_service.httpx.get", fake_get)
        response = await client.get(f"{API}/link-preview", params={"url": "https://blog.example.org/posts/1"})
        assert response.status_code == 200
        body = response.json()
        assert body["domain"] == "blog.example.org"
        assert body["title"] == "Zero waste kitchen"
        assert requested["agent"].startswith("Mozilla/5.0")

    async def test_invalid_urls(self, client):
        assert (await client.get(f"{API}/link-preview")).status_code == 400
        response = await client.get(f"{API}/link-preview", params={"url": "ftp://example.org/file"})
        assert response.json()["detail"] == "Invalid URL format"

    async def test_fetch_failure(self, client, monkeypatch):
        monkeypatch.setattr(
            "honua_api.app.services.link_preview_service.httpx.get",
            lambda url, **kwargs: FakePage("", url, status_code=404),
        )
        response = await client.get(f"{API}/link-preview", params={"url": "https://example.org/missing"})
        assert response.status_code == 400
        assert response.json()["detail"] == "Failed to fetch URL"


@pytest.mark.asyncio
class TestSearch:
    async def test_grouped_results(self, client, alice, bob):
        await client.post(f"{API}/posts", json={"content": "Our #compost heap is thriving"}, headers=bob["headers"])
        response = await client.get(f"{API}/search", params={"q": "compost"}, headers=alice["headers"])
        body = response.json()
        assert set(body) == {"users", "posts", "hashtags", "categories"}
        assert [p["content"] for p in body["posts"]] == ["Our #compost heap is thriving"]
        assert [h["name"] for h in body["hashtags"]] == ["compost"]
        assert body["users"] == []

    async def test_single_group(self, client, alice):
        response = await client.get(f"{API}/search", params={"q": "ali", "type": "users"})
        assert list(response.json()) == ["users"]
        assert [u["username"] for u in response.json()["users"]] == ["alice"]

    async def test_empty_query_and_bad_type(self, client):
        empty = await client.get(f"{API}/search", params={"q": "  "})
        assert empty.json() == {"users": [], "posts": [], "hashtags": [], "categories": []}
        bad = await client.get(f"{API}/search", params={"q": "x", "type": "planets"})
        assert bad.status_code == 400

    async def test_category_search(self, client):
        response = await client.get(f"{API}/categories/search", params={"q": "repairs"})
        categories = response.json()["categories"]
        assert [c["slug"] for c in categories] == ["green-services"]
        assert categories[0]["applicable_types"] == ["service"]
        assert categories[0]["product_count"] == 0

        assert (await client.get(f"{API}/categories/search")).json() == {"categories": []}
