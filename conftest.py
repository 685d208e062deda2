import pytest

from desk_core.workflows.hooks import HookRegistry, get_hook_invoker, install_registry


@pytest.fixture(autouse=True)
def _disable_security_redirects(settings):
    # Keep SecurityMiddleware and secure cookies from interfering with the test client
    settings.SECURE_SSL_REDIRECT = False
    settings.SESSION_COOKIE_SECURE = False
    settings.CSRF_COOKIE_SECURE = False
    settings.SECURE_HSTS_SECONDS = 0


@pytest.fixture(autouse=True)
def hook_registry():
    """
    Fresh, empty hook registry per test; the process-wide one is restored
    afterwards.
    """
    previous = get_hook_invoker()
    registry = HookRegistry()
    install_registry(registry)
    yield registry
    install_registry(previous)
