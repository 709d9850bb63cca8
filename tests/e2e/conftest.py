"""
Fixtures for tests against a deployed publisher/subscriber pair.

All tests in this directory are skipped unless PUBLISHER_URL is set and the
publisher answers, so the suite never fails on a machine without a
deployment. When it is reachable the tests run the real scenarios with the
real timings from the environment.
"""

import os

import httpx
import pytest
from dotenv import load_dotenv

from harness.config import HarnessConfig, normalize_base_url
from harness.environment import PubSubEnvironment

load_dotenv()


# ------------------------------------------------------------------
# Deployment availability — checked once at module import
# ------------------------------------------------------------------


def _deployment_available() -> bool:
    url = os.environ.get("PUBLISHER_URL")
    if not url:
        return False
    try:
        httpx.get(normalize_base_url(url), timeout=2)
        return True
    except httpx.HTTPError:
        return False


_DEPLOYMENT_UP = _deployment_available()


@pytest.fixture(autouse=True)
def require_deployment():
    if not _DEPLOYMENT_UP:
        pytest.skip("No deployment reachable. Set PUBLISHER_URL (and SUBSCRIBER_URL) to run.")


@pytest.fixture
async def real_env():
    """Environment over the deployment, health-probed before the test runs."""
    async with PubSubEnvironment(HarnessConfig.from_env()) as env:
        await env.wait_until_ready()
        yield env
