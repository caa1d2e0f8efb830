"""
GitHub Repository Checker Tests

URL parsing and API response handling over httpx.MockTransport.
"""
import httpx
import pytest

from ai_jury.services.repository_checker import (
    GitHubRepositoryChecker, InvalidRepositoryUrlError, parse_repository_url
)


def make_checker(handler, token=None):
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return GitHubRepositoryChecker(client=client, api_base="https://api.github.test", token=token, timeout=5)


class TestParseRepositoryUrl:

    @pytest.mark.parametrize("url", [
        "https://github.com/acme/widget",
        "https://github.com/acme/widget.git",
        "http://www.github.com/acme/widget/tree/main/src",
        "git@github.com:acme/widget.git",
        "  https://GitHub.com/acme/widget?tab=readme  ",
    ])
    def test_accepted_forms(self, url):
        assert parse_repository_url(url) == ("acme", "widget")

    @pytest.mark.parametrize("url", ["", "   ", "https://gitlab.com/acme/widget", "github.com/acme"])
    def test_rejected_forms(self, url):
        with pytest.raises(InvalidRepositoryUrlError):
            parse_repository_url(url)


class TestGitHubRepositoryChecker:

    @pytest.mark.asyncio
    async def test_public_repository(self):
        def handler(request: httpx.Request):
            assert request.url.path == "/repos/acme/widget"
            return httpx.Response(200, json={
                "name": "widget",
                "full_name": "acme/widget",
                "private": False,
                "stargazers_count": 12,
                "forks_count": 3,
                "language": "Python",
            })

        result = await make_checker(handler).check("acme", "widget")

        assert result.accessible is True
        assert result.is_public is True
        assert result.error is None
        assert result.metadata["full_name"] == "acme/widget"
        assert result.metadata["stars"] == 12

    @pytest.mark.asyncio
    async def test_private_repository(self):
        def handler(request):
            return httpx.Response(200, json={"name": "widget", "private": True})

        result = await make_checker(handler).check("acme", "widget")

        assert result.accessible is True
        assert result.is_public is False

    @pytest.mark.asyncio
    async def test_not_found(self):
        def handler(request):
            return httpx.Response(404, json={"message": "Not Found"})

        result = await make_checker(handler).check("acme", "gone")

        assert result.accessible is False
        assert result.is_public is False
        assert result.error == "Repository not found or is private"

    @pytest.mark.asyncio
    async def test_rate_limited(self):
        def handler(request):
            return httpx.Response(403, json={"message": "API rate limit exceeded"})

        result = await make_checker(handler).check("acme", "widget")

        assert result.accessible is False
        assert result.error == "GitHub API returned 403: API rate limit exceeded"

    @pytest.mark.asyncio
    async def test_timeout(self):
        def handler(request):
            raise httpx.ReadTimeout("timed out", request=request)

        result = await make_checker(handler).check("acme", "widget")

        assert result.accessible is False
        assert result.error == "Repository check timed out"

    @pytest.mark.asyncio
    async def test_connection_error(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        result = await make_checker(handler).check("acme", "widget")

        assert result.accessible is False
        assert "connection refused" in result.error

    @pytest.mark.asyncio
    async def test_malformed_body(self):
        def handler(request):
            return httpx.Response(200, content=b"<html>")

        result = await make_checker(handler).check("acme", "widget")

        assert result.accessible is False
        assert result.error == "Malformed GitHub API response"

    @pytest.mark.asyncio
    async def test_token_sent_as_bearer(self):
        seen = {}

        def handler(request):
            seen["authorization"] = request.headers.get("authorization")
            return httpx.Response(200, json={"private": False})

        await make_checker(handler, token="secret").check("acme", "widget")

        assert seen["authorization"] == "Bearer secret"
