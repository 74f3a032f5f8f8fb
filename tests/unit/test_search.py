"""Unit tests for the web search provider chain."""

import requests

from droidpatch.services import search


class FakeResponse:
    def __init__(self, payload, status=200):
        self.payload = payload
        self.status_code = status

    def json(self):
        return self.payload

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f"status {self.status_code}")


class TestProviderChain:
    """Tests for search() fallback order."""

    def test_first_answer_wins(self):
        def broken(q, n):
            raise requests.ConnectionError("down")

        def unconfigured(q, n):
            return None

        def works(q, n):
            return [{"title": q, "url": "https://a", "content": "c"}]

        results, source = search.search("droid", providers=[
            ("broken", broken), ("off", unconfigured), ("works", works), ("later", works),
        ])
        assert source == "works"
        assert results[0]["title"] == "droid"

    def test_results_trimmed(self):
        many = [{"title": str(i), "url": "u", "content": ""} for i in range(20)]
        results, _ = search.search("q", num_results=3, providers=[("many", lambda q, n: many)])
        assert len(results) == 3

    def test_nothing_answers(self):
        assert search.search("q", providers=[("off", lambda q, n: None)]) == ([], "none")

    def test_bad_json_falls_through(self):
        def garbled(q, n):
            raise ValueError("not json")

        results, source = search.search("q", providers=[
            ("garbled", garbled), ("ok", lambda q, n: [{"title": "t", "url": "u", "content": ""}]),
        ])
        assert source == "ok"


class TestProviders:
    """Tests for individual provider adapters."""

    def test_keyed_providers_skip_without_keys(self, monkeypatch):
        for var in ("SMITHERY_API_KEY", "GOOGLE_PSE_API_KEY", "TAVILY_API_KEY",
                    "SERPER_API_KEY", "BRAVE_API_KEY", "SEARXNG_URL"):
            monkeypatch.delenv(var, raising=False)
        assert search.search_smithery_exa("q", 5) is None
        assert search.search_google_pse("q", 5) is None
        assert search.search_tavily("q", 5) is None
        assert search.search_serper("q", 5) is None
        assert search.search_brave("q", 5) is None
        assert search.search_searxng("q", 5) is None

    def test_serper(self, monkeypatch):
        monkeypatch.setenv("SERPER_API_KEY", "k")
        seen = {}

        def fake_post(url, **kw):
            seen["url"], seen["headers"] = url, kw["headers"]
            return FakeResponse({"organic": [{"title": "T", "link": "https://x", "snippet": "S"}]})

        monkeypatch.setattr(search.requests, "post", fake_post)
        assert search.search_serper("q", 5) == [{"title": "T", "url": "https://x", "content": "S"}]
        assert seen["headers"]["X-API-KEY"] == "k"

    def test_duckduckgo_flattens_topics(self, monkeypatch):
        payload = {
            "Heading": "Droid",
            "Abstract": "A droid.",
            "AbstractURL": "https://ddg/droid",
            "RelatedTopics": [
                {"Text": "one", "FirstURL": "https://1"},
                {"Name": "group", "Topics": [{"Text": "two", "FirstURL": "https://2"}]},
            ],
        }
        monkeypatch.setattr(search.requests, "get", lambda url, **kw: FakeResponse(payload))
        results = search.search_duckduckgo("droid", 10)
        assert [r["url"] for r in results] == ["https://ddg/droid", "https://1", "https://2"]

    def test_duckduckgo_empty(self, monkeypatch):
        monkeypatch.setattr(search.requests, "get", lambda url, **kw: FakeResponse({}))
        assert search.search_duckduckgo("q", 10) is None

    def test_http_error_falls_through(self, monkeypatch):
        monkeypatch.setenv("TAVILY_API_KEY", "k")
        monkeypatch.setattr(search.requests, "post", lambda url, **kw: FakeResponse({}, status=500))
        results, source = search.search("q", providers=[
            ("tavily", search.search_tavily), ("ok", lambda q, n: [{"title": "", "url": "u", "content": ""}]),
        ])
        assert source == "ok"
