import logging
from typing import Callable, Optional, Protocol

from database import Unsubscribe
from errors import WarehouseError
from notifications import Notifier
from schemas import Role, User

logger = logging.getLogger(__name__)


class AuthProvider(Protocol):
    def sign_in_with_google(self, id_token: str) -> User: ...

    def sign_in_with_password(self, email: str, password: str) -> User: ...

    def sign_up(self, email: str, password: str, name: str, role: Role) -> User: ...

    def sign_out(self) -> None: ...

    def on_session_change(self, callback: Callable[[Optional[User]], None]) -> Unsubscribe: ...


def _user_message(error: WarehouseError, fallback: str) -> str:
    if error.message == "UNAUTHORIZED_ACCESS":
        return "Access not approved. Please request access first."
    return error.message or fallback


class SessionManager:
    """
    Holds the signed-in user of a client and turns auth failures into
    notifications instead of exceptions.
    """

    def __init__(self, provider: AuthProvider, notifier: Notifier):
        self.provider = provider
        self.notifier = notifier
        self.user: Optional[User] = None
        self.loading = True
        self._unsubscribe: Optional[Unsubscribe] = provider.on_session_change(self._on_session_change)

    def _on_session_change(self, user: Optional[User]):
        self.user = user
        self.loading = False

    def _login(self, action: Callable[[], User], fallback: str) -> bool:
        self.loading = True
        try:
            self.user = action()
            self.notifier.notify_success(f"Welcome, {self.user.name}!")
            return True
        except WarehouseError as e:
            logger.warning("Sign-in failed: %s", e.message)
            self.notifier.notify_error(_user_message(e, fallback))
            return False
        except Exception:
            logger.exception("Sign-in failed")
            self.notifier.notify_error(fallback)
            return False
        finally:
            self.loading = False

    def login_with_google(self, id_token: str) -> bool:
        return self._login(lambda: self.provider.sign_in_with_google(id_token), "Failed to sign in with Google")

    def login(self, email: str, password: str) -> bool:
        return self._login(lambda: self.provider.sign_in_with_password(email, password), "Failed to sign in")

    def signup(self, email: str, password: str, name: str, role: Role) -> bool:
        self.loading = True
        try:
            user = self.provider.sign_up(email, password, name, role)
            if user.status == "approved":
                self.user = user
                self.notifier.notify_success(f"Welcome, {user.name}!")
            else:
                self.notifier.notify_success("Account created. An administrator will review your access.")
            return True
        except WarehouseError as e:
            logger.warning("Sign-up failed: %s", e.message)
            self.notifier.notify_error(_user_message(e, "Failed to create account"))
            return False
        except Exception:
            logger.exception("Sign-up failed")
            self.notifier.notify_error("Failed to create account")
            return False
        finally:
            self.loading = False

    def logout(self) -> None:
        try:
            self.provider.sign_out()
            self.user = None
            self.notifier.notify_success("Signed out successfully")
        except WarehouseError as e:
            logger.error("Sign-out failed: %s", e.message)
            self.notifier.notify_error("Failed to sign out")
        except Exception:
            logger.exception("Sign-out failed")
            self.notifier.notify_error("Failed to sign out")

    def dispose(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
