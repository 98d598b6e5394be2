import logging

import pytest

from errors import PermissionDenied, RemoteFailure, ValidationError
from notifications import LoggingNotifier
from schemas import User
from session import SessionManager


class RecordingNotifier:
    def __init__(self):
        self.successes = []
        self.errors = []

    def notify_success(self, message):
        self.successes.append(message)

    def notify_error(self, message):
        self.errors.append(message)


class FakeProvider:
    def __init__(self, user=None, error=None):
        self.user = user
        self.error = error
        self.listeners = []
        self.signed_out = False

    def _result(self):
        if self.error:
            raise self.error
        return self.user

    def sign_in_with_google(self, id_token):
        return self._result()

    def sign_in_with_password(self, email, password):
        return self._result()

    def sign_up(self, email, password, name, role):
        return self._result()

    def sign_out(self):
        if self.error:
            raise self.error
        self.signed_out = True

    def on_session_change(self, callback):
        self.listeners.append(callback)
        callback(None)
        return lambda: self.listeners.remove(callback)


def user(status="approved"):
    return User(id="u1", name="Jane", email="jane@warehouse.io", role="warehouse_staff", status=status)


@pytest.fixture
def notifier():
    return RecordingNotifier()


def test_initial_session_state_comes_from_provider(notifier):
    provider = FakeProvider()
    manager = SessionManager(provider, notifier)
    assert manager.user is None
    assert manager.loading is False

    provider.listeners[0](user())
    assert manager.user.name == "Jane"


def test_successful_login(notifier):
    manager = SessionManager(FakeProvider(user=user()), notifier)

    assert manager.login("jane@warehouse.io", "pw") is True
    assert manager.user.id == "u1"
    assert manager.loading is False
    assert notifier.successes == ["Welcome, Jane!"]


def test_unapproved_google_login_is_explained(notifier):
    manager = SessionManager(FakeProvider(error=PermissionDenied("UNAUTHORIZED_ACCESS")), notifier)

    assert manager.login_with_google("token") is False
    assert manager.user is None
    assert manager.loading is False
    assert notifier.errors == ["Access not approved. Please request access first."]


def test_failed_login_passes_message_through(notifier):
    manager = SessionManager(FakeProvider(error=ValidationError("Incorrect email or password")), notifier)

    assert manager.login("jane@warehouse.io", "bad") is False
    assert notifier.errors == ["Incorrect email or password"]


def test_signup_pending_account(notifier):
    manager = SessionManager(FakeProvider(user=user(status="pending")), notifier)

    assert manager.signup("jane@warehouse.io", "pw", "Jane", "supplier") is True
    assert manager.user is None
    assert "administrator" in notifier.successes[0]


def test_logout_never_raises(notifier):
    provider = FakeProvider(user=user())
    manager = SessionManager(provider, notifier)
    manager.login("jane@warehouse.io", "pw")

    manager.logout()
    assert provider.signed_out
    assert manager.user is None
    assert notifier.successes[-1] == "Signed out successfully"

    provider.error = RemoteFailure("network down")
    manager.logout()
    assert notifier.errors == ["Failed to sign out"]


def test_dispose_unsubscribes(notifier):
    provider = FakeProvider()
    manager = SessionManager(provider, notifier)
    manager.dispose()
    manager.dispose()
    assert provider.listeners == []


def test_unexpected_failures_are_notified(notifier):
    provider = FakeProvider(error=ValueError("hash could not be identified"))
    manager = SessionManager(provider, notifier)

    assert manager.login("jane@warehouse.io", "pw") is False
    assert manager.signup("jane@warehouse.io", "pw", "Jane", "supplier") is False
    manager.logout()

    assert manager.loading is False
    assert notifier.errors == ["Failed to sign in", "Failed to create account", "Failed to sign out"]


def test_login_without_stored_password(auth, store, notifier):
    store.add("users", {"email": "g@warehouse.io", "name": "G", "role": "internal_user", "status": "approved"})
    manager = SessionManager(auth, notifier)

    assert manager.login("g@warehouse.io", "whatever") is False
    assert manager.user is None
    assert notifier.errors == ["Incorrect email or password"]


def test_logging_notifier_reports_through_the_log(caplog):
    caplog.set_level(logging.INFO, logger="notifications")
    provider = FakeProvider(user=user())
    manager = SessionManager(provider, LoggingNotifier())

    manager.login("jane@warehouse.io", "pw")
    provider.error = ValidationError("Incorrect email or password")
    manager.login("jane@warehouse.io", "bad")

    messages = [(r.levelname, r.getMessage()) for r in caplog.records if r.name == "notifications"]
    assert messages == [("INFO", "Welcome, Jane!"), ("ERROR", "Incorrect email or password")]
