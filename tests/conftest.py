import pytest

from tests.fakes import RecordingObserver
from tokenguard.auth.services.logout import LogoutHandler
from tokenguard.auth.storage import InMemoryCredentialStore
from tokenguard.config import ClientSettings


@pytest.fixture
def settings() -> ClientSettings:
    return ClientSettings(base_url="http://api.test")


@pytest.fixture
def store(settings: ClientSettings) -> InMemoryCredentialStore:
    return InMemoryCredentialStore(
        {settings.access_token_key: "A1", settings.refresh_token_key: "R1"}
    )


@pytest.fixture
def observer() -> RecordingObserver:
    return RecordingObserver()


@pytest.fixture
def logout_handler(store, settings, observer) -> LogoutHandler:
    return LogoutHandler(store, settings, observer)
