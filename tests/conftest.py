"""Shared test fixtures."""

import httpx
import pytest
import pytest_asyncio

from studymate_client.api.client import BackendClient
from studymate_client.auth import Credentials, TOKEN_KEY, USERNAME_KEY
from studymate_client.config import Settings
from studymate_client.repositories.memory import InMemoryStore
from studymate_client.services.chat import ChatController
from studymate_client.services.diagrams import DiagramBackend, DiagramRenderer

from fake_backend import TOKEN, FakeBackend


class StaticDiagramBackend(DiagramBackend):
    """Renders every diagram to the same markup without any network."""

    def __init__(self):
        self.sources = []

    async def render(self, source):
        self.sources.append(source)
        return "<svg/>"


@pytest.fixture
def settings():
    return Settings(api_url="http://test")


@pytest.fixture
def backend():
    return FakeBackend()


@pytest.fixture
def credentials():
    return Credentials(token=TOKEN, username="ada")


@pytest_asyncio.fixture
async def client(backend, settings):
    http = httpx.AsyncClient(
        transport=httpx.ASGITransport(app=backend.app),
        base_url=settings.api_url,
    )
    yield BackendClient(settings, http_client=http)
    await http.aclose()


@pytest.fixture
def signed_in_store():
    return InMemoryStore({TOKEN_KEY: TOKEN, USERNAME_KEY: "ada"})


@pytest.fixture
def renderer():
    return DiagramRenderer(StaticDiagramBackend())


@pytest_asyncio.fixture
async def controller(client, settings, signed_in_store, renderer):
    chat = ChatController(
        settings=settings, state_store=signed_in_store, client=client, renderer=renderer
    )
    yield chat
    await chat.cleanup()


@pytest_asyncio.fixture
async def guest_controller(client, settings, renderer):
    chat = ChatController(
        settings=settings, state_store=InMemoryStore(), client=client, renderer=renderer
    )
    yield chat
    await chat.cleanup()
