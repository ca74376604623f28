import pytest

from fakes import SettingsStub


@pytest.fixture
def settings_stub():
    return SettingsStub()
