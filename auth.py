"""
Identity and session tokens.

AuthService verifies who a caller is (Google ID token or e-mail/password),
creates the user document on first sign-in when the address has been
approved, and issues the application's own bearer tokens. It also keeps the
signed-in user of one client session and tells subscribers when it changes.
"""
import logging
import threading
from datetime import datetime, timedelta, timezone
from typing import Callable, List, Optional, Sequence, Tuple

import requests
from jose import JWTError, jwt
from passlib.context import CryptContext

from config import Settings
from database import DocumentStore, Unsubscribe
from errors import PermissionDenied, RemoteFailure, ValidationError
from schemas import Role, User
from users import COLLECTION as USERS, AccessRequestRepository, UserRepository

logger = logging.getLogger(__name__)

GOOGLE_CERTS_URL = "https://www.googleapis.com/oauth2/v3/certs"
GOOGLE_ISSUERS = ("accounts.google.com", "https://accounts.google.com")
UNAUTHORIZED_ACCESS = "UNAUTHORIZED_ACCESS"

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")


def verify_password(plain_password, hashed_password):
    return pwd_context.verify(plain_password, hashed_password)


def get_password_hash(password):
    return pwd_context.hash(password)


class AuthService:
    def __init__(self, store: DocumentStore, settings: Settings, jwks: Optional[dict] = None,
                 algorithms: Sequence[str] = ("RS256",)):
        self.store = store
        self.settings = settings
        self.users = UserRepository(store)
        self.access_requests = AccessRequestRepository(store)
        self.algorithms = list(algorithms)
        self._jwks = jwks
        self._lock = threading.RLock()
        self._listeners: List[Callable[[Optional[User]], None]] = []
        self.current_user: Optional[User] = None

    # ---------- Application tokens ----------

    def create_access_token(self, data: dict, expires_delta: Optional[timedelta] = None) -> str:
        to_encode = data.copy()
        expire = datetime.now(timezone.utc) + (
            expires_delta or timedelta(minutes=self.settings.access_token_expire_minutes)
        )
        to_encode.update({"exp": expire})
        return jwt.encode(to_encode, self.settings.secret_key, algorithm=self.settings.algorithm)

    def decode_access_token(self, token: str) -> str:
        """Return the user id carried by an application token."""
        try:
            payload = jwt.decode(token, self.settings.secret_key, algorithms=[self.settings.algorithm])
        except JWTError as e:
            raise PermissionDenied("Could not validate credentials") from e
        user_id = payload.get("sub")
        if not user_id:
            raise PermissionDenied("Could not validate credentials")
        return user_id

    # ---------- Google ----------

    def _google_keys(self) -> dict:
        if self._jwks is None:
            try:
                resp = requests.get(GOOGLE_CERTS_URL, timeout=10)
                resp.raise_for_status()
            except requests.exceptions.RequestException as e:
                raise RemoteFailure(f"Could not fetch Google signing keys: {e}") from e
            self._jwks = resp.json()
        return self._jwks

    def verify_google_token(self, id_token: str) -> dict:
        options = {}
        if not self.settings.google_client_id:
            options["verify_aud"] = False
        try:
            return jwt.decode(
                id_token,
                self._google_keys(),
                algorithms=self.algorithms,
                audience=self.settings.google_client_id,
                issuer=GOOGLE_ISSUERS,
                options=options,
            )
        except JWTError as e:
            raise PermissionDenied("Invalid Google credential") from e

    def _approved_identity(self, email: str) -> Tuple[Role, Optional[str]]:
        admin = self.settings.admin_email
        if admin and email.lower() == admin.lower():
            return "admin", "Admin"
        request = self.access_requests.find_approved(email)
        if request is None:
            raise PermissionDenied(UNAUTHORIZED_ACCESS)
        return request.requestedRole, request.name

    def authenticate_google(self, id_token: str) -> User:
        claims = self.verify_google_token(id_token)
        email = claims.get("email")
        if not email:
            raise PermissionDenied("Google credential carries no e-mail address")

        now = self.store.server_timestamp()
        user = self.users.get_by_email(email)
        if user is not None:
            if user.status == "rejected":
                raise PermissionDenied(UNAUTHORIZED_ACCESS)
            self.store.update(USERS, user.id, {"lastLoginAt": now})
            return self.users.get_by_id(user.id)

        role, name = self._approved_identity(email)
        user_id = self.store.add(USERS, {
            "email": email,
            "name": name or claims.get("name") or email.split("@")[0],
            "role": role,
            "status": "approved",
            "avatar": claims.get("picture"),
            "isEmailVerified": bool(claims.get("email_verified")),
            "createdAt": now,
            "lastLoginAt": now,
        })
        logger.info("Created %s account for %s", role, email)
        return self.users.get_by_id(user_id)

    # ---------- E-mail / password ----------

    def authenticate_password(self, email: str, password: str) -> User:
        doc = self.store.find_one(USERS, {"email": email})
        # accounts created through Google sign-in carry no password hash
        if not doc or not doc.get("password") or not verify_password(password, doc["password"]):
            raise ValidationError("Incorrect email or password")
        if doc.get("status") != "approved":
            raise PermissionDenied("Account is awaiting approval")
        self.store.update(USERS, doc["id"], {"lastLoginAt": self.store.server_timestamp()})
        return self.users.get_by_id(doc["id"])

    def register(self, email: str, password: str, name: str, role: Role) -> User:
        if self.users.get_by_email(email):
            raise ValidationError("Email already registered")
        admin = self.settings.admin_email
        bootstrap = bool(admin and email.lower() == admin.lower())
        now = self.store.server_timestamp()
        user_id = self.store.add(USERS, {
            "email": email,
            "name": name,
            "password": get_password_hash(password),
            "role": "admin" if bootstrap else role,
            "status": "approved" if bootstrap else "pending",
            "createdAt": now,
            "updatedAt": now,
        })
        return self.users.get_by_id(user_id)

    # ---------- Client session ----------

    def sign_in_with_google(self, id_token: str) -> User:
        user = self.authenticate_google(id_token)
        self._set_session(user)
        return user

    def sign_in_with_password(self, email: str, password: str) -> User:
        user = self.authenticate_password(email, password)
        self._set_session(user)
        return user

    def sign_up(self, email: str, password: str, name: str, role: Role) -> User:
        user = self.register(email, password, name, role)
        if user.status == "approved":
            self._set_session(user)
        return user

    def sign_out(self) -> None:
        self._set_session(None)

    def on_session_change(self, callback: Callable[[Optional[User]], None]) -> Unsubscribe:
        """Call back with the current user now and on every later sign-in or sign-out."""
        with self._lock:
            self._listeners.append(callback)
            current = self.current_user
        callback(current)

        def unsubscribe():
            with self._lock:
                if callback in self._listeners:
                    self._listeners.remove(callback)

        return unsubscribe

    def _set_session(self, user: Optional[User]):
        with self._lock:
            self.current_user = user
            listeners = list(self._listeners)
        for listener in listeners:
            listener(user)
