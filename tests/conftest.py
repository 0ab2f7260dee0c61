"""
Pytest configuration for printshop-erp tests.

Adds the repository root to ``sys.path`` and provides shared fixtures: an
in-memory SQLite data service, a dummy S3 client and a dummy OpenAI client.
Nothing here touches the network.
"""

import os
import sys
from types import SimpleNamespace

import pytest

# Compute the repository root relative to this file (tests directory is one level deep)
ROOT_DIR = os.path.abspath(os.path.join(os.path.dirname(__file__), os.pardir))

# Prepend the root directory to sys.path if it's not already present
if ROOT_DIR not in sys.path:
    sys.path.insert(0, ROOT_DIR)

from printshop_erp.ai_client import AIClient  # noqa: E402
from printshop_erp.ai_service import AIService  # noqa: E402
from printshop_erp.config import Settings  # noqa: E402
from printshop_erp.data_service import DataService, create_session_factory  # noqa: E402
from printshop_erp.storage import FileStorage  # noqa: E402


class DummyS3:
    """Records put/delete calls in place of a boto3 S3 client."""

    def __init__(self):
        self.objects = {}
        self.deleted = []

    def put_object(self, Bucket, Key, Body, ContentType):  # noqa: N803
        self.objects[(Bucket, Key)] = Body

    def delete_objects(self, Bucket, Delete):  # noqa: N803
        for obj in Delete["Objects"]:
            self.objects.pop((Bucket, obj["Key"]), None)
            self.deleted.append((Bucket, obj["Key"]))


class DummyCompletions:
    def __init__(self):
        self.responses = []
        self.calls = []

    def create(self, **kwargs):
        self.calls.append(kwargs)
        if not self.responses:
            raise AssertionError("unexpected chat completion call")
        item = self.responses.pop(0)
        if callable(item):
            item = item()
        if isinstance(item, Exception):
            raise item
        return item


class DummyOpenAI:
    """Stands in for ``openai.OpenAI``; queue replies with :meth:`reply` / :meth:`fail`."""

    def __init__(self):
        self.completions = DummyCompletions()
        self.chat = SimpleNamespace(completions=self.completions)

    @property
    def calls(self):
        return self.completions.calls

    def reply(self, text, sources=()):
        annotations = [
            SimpleNamespace(type="url_citation", url_citation=SimpleNamespace(url=url, title=title))
            for url, title in sources
        ]
        message = SimpleNamespace(content=text, annotations=annotations)
        self.completions.responses.append(SimpleNamespace(choices=[SimpleNamespace(message=message)]))
        return self

    def fail(self, exc):
        self.completions.responses.append(exc)
        return self


@pytest.fixture
def settings():
    return Settings(
        database_url="sqlite://",
        openai_api_key="test-key",
        ai_retry_delay=0,
        storage_public_url="https://files.example.com",
    )


@pytest.fixture
def s3():
    return DummyS3()


@pytest.fixture
def storage(settings, s3):
    return FileStorage(settings, client=s3)


@pytest.fixture
def data(storage):
    return DataService(create_session_factory("sqlite://"), storage)


@pytest.fixture
def openai_client():
    return DummyOpenAI()


@pytest.fixture
def sleeps():
    return []


@pytest.fixture
def ai_client(settings, openai_client, sleeps):
    return AIClient(settings, client=openai_client, sleep=sleeps.append, online_check=lambda s: True)


@pytest.fixture
def ai(ai_client):
    return AIService(ai_client)
