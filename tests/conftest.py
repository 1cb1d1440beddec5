"""Shared pytest fixtures for ZapCRM tests."""
import sys
sys.dont_write_bytecode = True

import pytest  # noqa: E402


@pytest.fixture(autouse=True)
def _reset_webhook_storage():
    """Reset the lazily built storage client between tests.

    The webhook module caches its ObjectStorage in a module-level global;
    a client built by one test must not leak into the next.
    """
    import zapcrm.api.routes.webhooks_waha as webhook_module

    webhook_module._storage = None
    yield
    webhook_module._storage = None
