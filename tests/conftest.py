from __future__ import annotations

import os
import sys
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

REPO_ROOT = Path(__file__).resolve().parents[1]
SRC_PATH = REPO_ROOT / "src"
if str(SRC_PATH) not in sys.path:
    sys.path.insert(0, str(SRC_PATH))

# Keep the test run independent from a developer's .env.
os.environ["WEB_APP_URL"] = ""
os.environ["KNOWLEDGE_LOOKUP_URL"] = ""

from fakes import FakeExecutor, FakeKnowledge, FakeLLM, FakeSynthesizer, FakeTranscriber  # noqa: E402


@pytest.fixture(scope="session")
def app():
    import importlib

    main = importlib.import_module("main")
    return main.app


@pytest.fixture()
def transcribers() -> list[FakeTranscriber]:
    return []


@pytest.fixture()
def services(transcribers):
    from conversation.generator import ResponseGenerator
    from conversation.policy import TurnPolicy
    from conversation.services import ConversationServices

    def _transcriber() -> FakeTranscriber:
        transcriber = FakeTranscriber()
        transcribers.append(transcriber)
        return transcriber

    return ConversationServices(
        generator=ResponseGenerator(FakeLLM([])),
        executor=FakeExecutor(),
        synthesizer=FakeSynthesizer(),
        knowledge=FakeKnowledge(),
        transcriber_factory=_transcriber,
        policy=TurnPolicy(),
        pace_outbound_audio=False,
    )


@pytest.fixture()
def client(app, services):
    # Override provider wiring so tests never open sockets to real vendors.
    import api.dependencies as deps
    from config.settings import Settings
    from conversation.registry import SessionRegistry
    from integrations.web_app import BusinessDirectory

    registry = SessionRegistry(services)
    directory = BusinessDirectory(Settings(web_app_url=None, default_business_name="Clínica Sol"))
    app.dependency_overrides[deps.get_registry] = lambda: registry
    app.dependency_overrides[deps.get_directory] = lambda: directory

    with TestClient(app) as test_client:
        yield test_client

    app.dependency_overrides.clear()
