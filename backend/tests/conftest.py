
import pytest
from fastapi.testclient import TestClient
from dotenv import load_dotenv

# Load environment variables FIRST, before any flowbot imports, so the
# settings singleton is built from the test configuration.
load_dotenv(dotenv_path="backend/.env.test")

from flowbot.main import app  # noqa: E402
from flowbot.services.flow_store import flow_store  # noqa: E402
from flowbot.workflows.engine import bot_engine  # noqa: E402


def make_message(text=None, *, msg_type="text", context=None, **overrides):
    """Inbound message in the caller's camelCase wire shape."""
    payload = {
        "id": "msg-1",
        "wamid": "wamid.TEST1",
        "conversationId": "conv-1",
        "contactId": "contact-1",
        "tenantId": "tenant-1",
        "type": msg_type,
        "text": text,
        "contact": {"id": "contact-1", "phone": "919876543210", "name": "Amit"},
        "context": context or {},
    }
    payload.update(overrides)
    return payload


def make_flow(flow_id, nodes, edges=(), *, start="n1", trigger_type="KEYWORD", keywords=("start",), priority=0, **overrides):
    flow = {
        "id": flow_id,
        "tenantId": "tenant-1",
        "name": flow_id,
        "triggerType": trigger_type,
        "triggerKeywords": list(keywords),
        "isActive": True,
        "priority": priority,
        "flowDefinition": {
            "startNodeId": start,
            "nodes": list(nodes),
            "edges": list(edges),
            "variables": [],
        },
    }
    flow.update(overrides)
    return flow


@pytest.fixture(autouse=True)
def reset_flow_state():
    """The flow store and the engine's cache are process-wide; isolate each test."""
    flow_store.clear()
    bot_engine.clear_flow_cache()
    yield
    flow_store.clear()
    bot_engine.clear_flow_cache()


@pytest.fixture(scope="function")
def test_client():
    """
    Provides a TestClient for API integration tests.
    The app's lifespan (startup/shutdown events) is managed by the TestClient.
    """
    with TestClient(app) as client:
        yield client


@pytest.fixture
def message_factory():
    return make_message


@pytest.fixture
def flow_factory():
    return make_flow
