"""Shared test fixtures for the Aparatus test suite."""

from __future__ import annotations

import os
from unittest.mock import MagicMock

import pytest


def pytest_configure(config):
    """Set test environment variables BEFORE collection starts.

    This runs before any imports, so config.py won't fail on module load.
    """
    os.environ.setdefault("ANTHROPIC_API_KEY", "test-anthropic-key-123")
    os.environ.setdefault("MARKETPLACE_API_TOKEN", "test-marketplace-token-456")


class ScriptedLLM:
    """Stand-in for the tool-bound chat model.

    Each ``astream`` call replays the next scripted response, one chunk at
    a time.  A response is a list of message chunks (or a single message).
    """

    def __init__(self, responses):
        self._responses = list(responses)
        self.calls: list[list] = []

    async def astream(self, messages):
        self.calls.append(list(messages))
        if not self._responses:
            raise AssertionError("ScriptedLLM ran out of responses")
        response = self._responses.pop(0)
        chunks = response if isinstance(response, list) else [response]
        for chunk in chunks:
            if isinstance(chunk, Exception):
                raise chunk
            yield chunk


@pytest.fixture
def scripted_llm():
    """Factory fixture: ``scripted_llm([response, ...])``."""
    return ScriptedLLM


@pytest.fixture
def mock_http_response():
    """Factory fixture for mock marketplace HTTP responses."""

    def _make(data, status_code: int = 200):
        mock = MagicMock()
        mock.status_code = status_code
        mock.json.return_value = data
        mock.text = str(data)
        return mock

    return _make


@pytest.fixture
def barbershops():
    """Two barbershops in the shape the marketplace API returns them."""
    return [
        {
            "id": "shop-1",
            "name": "Vintage Barber",
            "address": "Rua das Flores, 100",
            "imageUrl": "https://img.example/vintage.png",
            "description": "Barbearia clássica",
            "phones": ["(11) 99999-0001"],
            "services": [
                {
                    "id": "svc-1",
                    "name": "Corte de Cabelo",
                    "description": "Corte na tesoura",
                    "priceInCents": 4500,
                    "imageUrl": "https://img.example/corte.png",
                },
                {
                    "id": "svc-2",
                    "name": "Barba",
                    "description": "Barba com toalha quente",
                    "priceInCents": 3550,
                    "imageUrl": None,
                },
            ],
        },
        {
            "id": "shop-2",
            "name": "Barbearia do Zé",
            "address": "Av. Brasil, 42",
            "imageUrl": None,
            "services": [
                {"id": "svc-3", "name": "Corte de Cabelo", "priceInCents": 3000},
            ],
        },
    ]
