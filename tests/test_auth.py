"""Tests for bearer token authentication."""

import pytest

from gallerystore.auth import authenticate, parse_bearer_token
from gallerystore.errors import Unauthorized


class TestParseBearerToken:
    def test_valid(self):
        assert parse_bearer_token("Bearer abc.def-123") == "abc.def-123"

    def test_scheme_case_insensitive(self):
        assert parse_bearer_token("bearer tok") == "tok"

    @pytest.mark.parametrize("header", [None, "", "   "])
    def test_missing(self, header):
        with pytest.raises(Unauthorized) as exc_info:
            parse_bearer_token(header)
        assert exc_info.value.message == "No authorization header"
        assert exc_info.value.http_status == 401

    @pytest.mark.parametrize("header", ["Basic dXNlcjpwYXNz", "Bearer", "Bearer a b", "tok"])
    def test_malformed(self, header):
        with pytest.raises(Unauthorized) as exc_info:
            parse_bearer_token(header)
        assert exc_info.value.message == "Unauthorized"


class TestAuthenticate:
    async def test_known_token(self, metadata):
        assert await authenticate(metadata, "Bearer token-alice") == "alice"

    async def test_unknown_token(self, metadata):
        with pytest.raises(Unauthorized) as exc_info:
            await authenticate(metadata, "Bearer nope")
        assert exc_info.value.message == "Unauthorized"

    async def test_missing_header(self, metadata):
        with pytest.raises(Unauthorized, match="No authorization header"):
            await authenticate(metadata, None)
