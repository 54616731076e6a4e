import os
from collections.abc import Generator

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

os.environ["ENVIRONMENT"] = "development"
os.environ.setdefault("SECRET_KEY", "test-secret-key-for-the-session-guard-suite")

from sessionguard.main import create_app
from sessionguard.middleware.token_blocklist import TokenBlocklist


@pytest.fixture()
def blocklist() -> TokenBlocklist:
    return TokenBlocklist()


@pytest.fixture()
def app(blocklist: TokenBlocklist) -> FastAPI:
    return create_app(blocklist=blocklist)


@pytest.fixture()
def client(app: FastAPI) -> Generator[TestClient, None, None]:
    app.state.limiter.reset()
    with TestClient(app) as test_client:
        yield test_client
