"""Concrete implementations for the data access backend.

The backend is the only boundary between the application and the hosted
service that provides authentication, profile documents and real-time chat.
"""

import copy
import hashlib
import logging
import secrets
import threading
import uuid
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Tuple, Union
from urllib.parse import urlencode

from pydantic import BaseModel, ValidationError

from .exceptions import (
    AuthError,
    BackendError,
    InvalidInputError,
    PermissionDeniedError,
)
from .models import (
    IDENTITY_FIELDS,
    STUDENT_ROLE,
    TEACHER_ROLE,
    Conversation,
    Identity,
    Message,
    Role,
    Student,
    Teacher,
    User,
    canonical_pair,
    parse_user,
)

logger = logging.getLogger(__name__)

AuthCallback = Callable[[Optional[User]], None]
MessagesCallback = Callable[[List[Message]], None]
ProfileUpdate = Union[Mapping[str, Any], BaseModel]

_AUTH_MESSAGES = {
    "EMAIL_EXISTS": "The email address is already in use by another account.",
    "EMAIL_NOT_FOUND": "Invalid email or password.",
    "INVALID_PASSWORD": "Invalid email or password.",
    "INVALID_LOGIN_CREDENTIALS": "Invalid email or password.",
    "INVALID_EMAIL": "The email address is badly formatted.",
    "WEAK_PASSWORD": "Password should be at least 6 characters.",
    "USER_DISABLED": "This account has been disabled.",
    "INVALID_IDP_RESPONSE": "The identity provider credential is invalid.",
}

_EPOCH = datetime.min.replace(tzinfo=timezone.utc)


class Subscription:
    """Handle returned by every live listener registration.

    ``unsubscribe`` runs the cancel function exactly once; later calls do
    nothing.
    """

    def __init__(self, cancel: Callable[[], None]):
        self._cancel: Optional[Callable[[], None]] = cancel
        self._lock = threading.Lock()

    @property
    def active(self) -> bool:
        return self._cancel is not None

    def unsubscribe(self) -> None:
        with self._lock:
            cancel, self._cancel = self._cancel, None
        if cancel is not None:
            cancel()

    __call__ = unsubscribe


# --- Helpers shared by all implementations ---
def _profile_field_names() -> Dict[str, str]:
    names = {}
    for model in (Student, Teacher):
        for name, info in model.model_fields.items():
            names[name] = name
            if info.alias:
                names[info.alias] = name
    return names


_PROFILE_FIELDS = _profile_field_names()


def clean_profile_update(fields: ProfileUpdate) -> Dict[str, Any]:
    """Normalizes a partial profile update before it is persisted.

    Keys may be Python field names or stored camelCase names; they come back
    as field names. Identity fields (id, email, role) are always stripped and
    ``None`` values are dropped, since the store rejects absent values.
    """
    if isinstance(fields, BaseModel):
        fields = {name: getattr(fields, name) for name in type(fields).model_fields}
    cleaned = {}
    for key, value in fields.items():
        name = _PROFILE_FIELDS.get(key)
        if name is None:
            logger.warning("Dropping unknown profile field %r", key)
            continue
        if name in IDENTITY_FIELDS or value is None:
            continue
        cleaned[name] = value
    return cleaned


def describe_validation_error(exc: ValidationError) -> str:
    return "; ".join(
        f"{'.'.join(str(part) for part in error['loc'])}: {error['msg']}"
        for error in exc.errors()
    )


def merge_profile(current: User, changes: Dict[str, Any]) -> User:
    """Applies cleaned changes to a profile and re-validates the result."""
    allowed = type(current).model_fields
    data = current.model_dump()
    for name, value in changes.items():
        if name not in allowed:
            logger.warning(
                "Ignoring %r: not a %s profile field", name, current.role.lower()
            )
            continue
        data[name] = value
    try:
        return parse_user(data)
    except ValidationError as exc:
        raise InvalidInputError(describe_validation_error(exc)) from exc


def build_default_profile(identity: Identity, name: str, role: Role) -> User:
    """Builds the record a brand-new account starts with."""
    common = dict(
        id=identity.uid,
        name=name,
        email=identity.email,
        avatar_url=identity.photo_url,
    )
    if role == TEACHER_ROLE:
        return Teacher(**common)
    if role == STUDENT_ROLE:
        return Student(**common)
    raise ValueError(f"Unknown role: {role!r}")


def conversation_key(pair: Tuple[str, str]) -> str:
    """Derives the document id of the conversation between a canonical pair."""
    return hashlib.sha256("\x1f".join(pair).encode("utf-8")).hexdigest()[:28]


def sort_by_activity(conversations: Iterable[Conversation]) -> List[Conversation]:
    return sorted(
        conversations,
        key=lambda c: c.activity_timestamp or _EPOCH,
        reverse=True,
    )


def _auth_error(code: str) -> AuthError:
    return AuthError(_AUTH_MESSAGES.get(code, code), code=code)


# --- Interface ---
class Backend(ABC):
    """Interface to the hosted authentication, document and push service.

    Every instance carries one auth session. ``session()`` returns another
    instance over the same storage with its own auth session, so that each
    browser gets its own signed-in user.
    """

    def __init__(self) -> None:
        self._reset_auth_session()

    def _reset_auth_session(self) -> None:
        self._current_uid: Optional[str] = None
        self._auth_listeners: Dict[object, AuthCallback] = {}
        self._auth_lock = threading.Lock()

    @abstractmethod
    def session(self) -> "Backend":
        """Returns a backend sharing this one's storage with a fresh auth session."""
        pass

    # --- Profiles ---
    @abstractmethod
    def get_user_profile(self, user_id: str) -> Optional[User]:
        """Returns the profile, or None if there is no such record."""
        pass

    @abstractmethod
    def create_user_profile(self, identity: Identity, name: str, role: Role) -> User:
        """Stores the default profile of a new identity and returns it."""
        pass

    @abstractmethod
    def list_all_users(self) -> List[User]:
        """Returns a snapshot of every profile."""
        pass

    @abstractmethod
    def update_user_profile(self, user_id: str, fields: ProfileUpdate) -> None:
        """Merges the non-identity fields of ``fields`` into the stored profile."""
        pass

    # --- Auth ---
    @abstractmethod
    def sign_in_with_password(self, email: str, password: str) -> Optional[User]:
        pass

    @abstractmethod
    def sign_up_with_password(
        self, name: str, email: str, password: str, role: Role
    ) -> Optional[User]:
        """Creates the identity, then its profile.

        The two steps are not atomic: if provisioning the profile fails, the
        identity exists without a profile and resolves to no user.
        """
        pass

    @abstractmethod
    def sign_in_with_federated_provider(
        self, provider: str, token: str
    ) -> Optional[User]:
        pass

    def sign_out(self) -> None:
        logger.info("Signing out user %s", self._current_uid)
        self._set_current_uid(None)

    def current_user(self) -> Optional[User]:
        if self._current_uid is None:
            return None
        return self.get_user_profile(self._current_uid)

    def subscribe_auth_state(self, callback: AuthCallback) -> Subscription:
        """Calls ``callback`` with the current user now and after every sign-in or sign-out."""
        token = object()
        with self._auth_lock:
            self._auth_listeners[token] = callback
        callback(self.current_user())

        def cancel():
            with self._auth_lock:
                self._auth_listeners.pop(token, None)

        return Subscription(cancel)

    def _set_current_uid(self, uid: Optional[str]) -> Optional[User]:
        self._current_uid = uid
        user = self.current_user()
        if uid is not None and user is None:
            logger.warning("Identity %s has no profile", uid)
        with self._auth_lock:
            listeners = list(self._auth_listeners.values())
        for listener in listeners:
            listener(user)
        return user

    def _provision_federated(self, identity: Identity) -> None:
        if self.get_user_profile(identity.uid) is None:
            logger.info("First federated sign-in for %s", identity.uid)
            self.create_user_profile(
                identity, name=identity.display_name or "New User", role=STUDENT_ROLE
            )

    # --- Chat ---
    @abstractmethod
    def find_or_create_conversation(self, user_a: str, user_b: str) -> Conversation:
        """Returns the one conversation between two users, creating it if needed."""
        pass

    @abstractmethod
    def list_conversations_for_user(self, user_id: str) -> List[Conversation]:
        """Returns the user's conversations, most recent activity first."""
        pass

    @abstractmethod
    def subscribe_messages(
        self, conversation_id: str, callback: MessagesCallback
    ) -> Subscription:
        """Delivers the full ordered message list now and after every change."""
        pass

    @abstractmethod
    def send_message(self, conversation_id: str, text: str, sender_id: str) -> None:
        pass


# --- Implementations ---
class _MemoryData:
    """Storage shared by every session of an InMemory backend."""

    def __init__(self, clock: Callable[[], datetime]):
        self.lock = threading.RLock()
        self.clock = clock
        self.accounts: Dict[str, Dict[str, str]] = {}
        self.federated: Dict[Tuple[str, str], Identity] = {}
        self.users: Dict[str, User] = {}
        self.conversations: Dict[str, Conversation] = {}
        self.messages: Dict[str, List[Message]] = {}
        self.message_listeners: Dict[str, Dict[object, MessagesCallback]] = {}
        self._last_time: Optional[datetime] = None

    def now(self) -> datetime:
        # Server time never runs backwards.
        current = self.clock()
        if self._last_time is not None and current < self._last_time:
            current = self._last_time
        self._last_time = current
        return current


def _hash_password(password: str, salt: str) -> str:
    return hashlib.pbkdf2_hmac(
        "sha256", password.encode("utf-8"), salt.encode("utf-8"), 100_000
    ).hex()


class InMemory(Backend):
    """Keeps accounts, profiles and chats in process memory.

    Intended for development and tests. Listeners are notified synchronously,
    while the storage lock is held, so every listener sees snapshots in commit
    order.
    """

    def __init__(self, clock: Optional[Callable[[], datetime]] = None):
        super().__init__()
        self._data = _MemoryData(clock or (lambda: datetime.now(timezone.utc)))

    def session(self) -> "InMemory":
        clone = copy.copy(self)
        clone._reset_auth_session()
        return clone

    def get_user_profile(self, user_id: str) -> Optional[User]:
        with self._data.lock:
            user = self._data.users.get(user_id)
            return user.model_copy(deep=True) if user else None

    def create_user_profile(self, identity: Identity, name: str, role: Role) -> User:
        profile = build_default_profile(identity, name, role)
        with self._data.lock:
            self._data.users[identity.uid] = profile
        logger.info("Created %s profile %s", role, identity.uid)
        return profile.model_copy(deep=True)

    def list_all_users(self) -> List[User]:
        with self._data.lock:
            return [user.model_copy(deep=True) for user in self._data.users.values()]

    def update_user_profile(self, user_id: str, fields: ProfileUpdate) -> None:
        changes = clean_profile_update(fields)
        with self._data.lock:
            current = self._data.users.get(user_id)
            if current is None:
                raise BackendError(f"No profile for user {user_id}", code="NOT_FOUND")
            self._data.users[user_id] = merge_profile(current, changes)
        logger.info("Updated profile %s: %s", user_id, sorted(changes))

    def sign_in_with_password(self, email: str, password: str) -> Optional[User]:
        email = email.strip().lower()
        with self._data.lock:
            account = self._data.accounts.get(email)
        if account is None or not secrets.compare_digest(
            account["hash"], _hash_password(password, account["salt"])
        ):
            raise _auth_error("INVALID_LOGIN_CREDENTIALS")
        logger.info("Password sign-in for %s", account["uid"])
        return self._set_current_uid(account["uid"])

    def sign_up_with_password(
        self, name: str, email: str, password: str, role: Role
    ) -> Optional[User]:
        email = email.strip().lower()
        if "@" not in email:
            raise _auth_error("INVALID_EMAIL")
        if len(password) < 6:
            raise _auth_error("WEAK_PASSWORD")
        salt = secrets.token_hex(16)
        with self._data.lock:
            if email in self._data.accounts:
                raise _auth_error("EMAIL_EXISTS")
            uid = uuid.uuid4().hex
            self._data.accounts[email] = {
                "uid": uid,
                "salt": salt,
                "hash": _hash_password(password, salt),
            }
        self.create_user_profile(Identity(uid=uid, email=email), name=name, role=role)
        return self._set_current_uid(uid)

    def register_federated_identity(
        self, provider: str, token: str, identity: Identity
    ) -> None:
        """Makes ``token`` a valid credential of ``provider`` for ``identity``."""
        with self._data.lock:
            self._data.federated[(provider, token)] = identity

    def sign_in_with_federated_provider(
        self, provider: str, token: str
    ) -> Optional[User]:
        with self._data.lock:
            identity = self._data.federated.get((provider, token))
        if identity is None:
            raise _auth_error("INVALID_IDP_RESPONSE")
        self._provision_federated(identity)
        return self._set_current_uid(identity.uid)

    def find_or_create_conversation(self, user_a: str, user_b: str) -> Conversation:
        pair = canonical_pair(user_a, user_b)
        key = conversation_key(pair)
        with self._data.lock:
            conversation = self._data.conversations.get(key)
            if conversation is None:
                conversation = Conversation(
                    id=key, participant_ids=list(pair), created_at=self._data.now()
                )
                self._data.conversations[key] = conversation
                self._data.messages[key] = []
                logger.info("Created conversation %s for %s", key, pair)
            return conversation.model_copy(deep=True)

    def list_conversations_for_user(self, user_id: str) -> List[Conversation]:
        with self._data.lock:
            mine = [
                c.model_copy(deep=True)
                for c in self._data.conversations.values()
                if user_id in c.participant_ids
            ]
        return sort_by_activity(mine)

    def _snapshot(self, conversation_id: str) -> List[Message]:
        # sorted() is stable, so equal timestamps keep insertion order.
        return sorted(
            self._data.messages.get(conversation_id, []),
            key=lambda m: m.timestamp or _EPOCH,
        )

    def subscribe_messages(
        self, conversation_id: str, callback: MessagesCallback
    ) -> Subscription:
        token = object()
        with self._data.lock:
            listeners = self._data.message_listeners.setdefault(conversation_id, {})
            listeners[token] = callback
            callback(self._snapshot(conversation_id))
        logger.debug("Subscribed to messages of %s", conversation_id)

        def cancel():
            with self._data.lock:
                self._data.message_listeners.get(conversation_id, {}).pop(token, None)
            logger.debug("Unsubscribed from messages of %s", conversation_id)

        return Subscription(cancel)

    def send_message(self, conversation_id: str, text: str, sender_id: str) -> None:
        if not text or not text.strip():
            raise InvalidInputError("Message text cannot be empty.")
        with self._data.lock:
            conversation = self._data.conversations.get(conversation_id)
            if conversation is None:
                raise BackendError(
                    f"Conversation {conversation_id} does not exist", code="NOT_FOUND"
                )
            if sender_id not in conversation.participant_ids:
                raise PermissionDeniedError(
                    f"{sender_id} is not a participant of {conversation_id}"
                )
            now = self._data.now()
            self._data.messages[conversation_id].append(
                Message(
                    conversation_id=conversation_id,
                    sender_id=sender_id,
                    text=text,
                    timestamp=now,
                )
            )
            conversation.last_message_timestamp = now
            snapshot = self._snapshot(conversation_id)
            for listener in list(
                self._data.message_listeners.get(conversation_id, {}).values()
            ):
                try:
                    listener(list(snapshot))
                except Exception:
                    logger.exception(
                        "Message listener of %s failed", conversation_id
                    )


class Firebase(Backend):
    """Backend on Firebase: Firestore documents and push, Identity Toolkit auth.

    Install the optional dependencies with ``pip install "tutorconnect[firebase]"``.

    Parameters
    ----------
    api_key : str
        Web API key of the Firebase project, used for password and
        identity-provider sign-in.
    credentials : str, optional
        Path to a service-account JSON file. Application default credentials
        are used when omitted.
    project_id : str, optional
        Overrides the project id found in the credentials.
    http_client : httpx.Client, optional
        Client used for the Identity Toolkit calls.

    Notes
    -----
    Messages of a conversation are ordered by server timestamp; Firestore
    breaks ties by document id rather than by insertion order.
    """

    IDENTITY_TOOLKIT_URL = "https://identitytoolkit.googleapis.com/v1"

    def __init__(
        self,
        api_key: str,
        credentials: Optional[str] = None,
        project_id: Optional[str] = None,
        http_client: Any = None,
    ):
        super().__init__()
        import firebase_admin
        import httpx
        from firebase_admin import credentials as fb_credentials
        from firebase_admin import firestore

        try:
            app = firebase_admin.get_app()
        except ValueError:
            cert = (
                fb_credentials.Certificate(credentials)
                if credentials
                else fb_credentials.ApplicationDefault()
            )
            options = {"projectId": project_id} if project_id else None
            app = firebase_admin.initialize_app(cert, options)

        self._api_key = api_key
        self._firestore = firestore
        self._db = firestore.client(app)
        self._http = http_client or httpx.Client(
            base_url=self.IDENTITY_TOOLKIT_URL, timeout=None
        )

    def session(self) -> "Firebase":
        clone = copy.copy(self)
        clone._reset_auth_session()
        return clone

    @property
    def _users(self):
        return self._db.collection("users")

    @property
    def _conversations(self):
        return self._db.collection("conversations")

    # --- Profiles ---
    def get_user_profile(self, user_id: str) -> Optional[User]:
        snapshot = self._users.document(user_id).get()
        if not snapshot.exists:
            return None
        try:
            return parse_user({**snapshot.to_dict(), "id": snapshot.id})
        except ValidationError as exc:
            logger.warning("Malformed profile %s: %s", user_id, exc)
            return None

    def create_user_profile(self, identity: Identity, name: str, role: Role) -> User:
        profile = build_default_profile(identity, name, role)
        self._users.document(identity.uid).set(profile.to_document())
        logger.info("Created %s profile %s", role, identity.uid)
        return profile

    def list_all_users(self) -> List[User]:
        users = []
        for snapshot in self._users.stream():
            try:
                users.append(parse_user({**snapshot.to_dict(), "id": snapshot.id}))
            except ValidationError as exc:
                logger.warning("Skipping malformed profile %s: %s", snapshot.id, exc)
        return users

    def update_user_profile(self, user_id: str, fields: ProfileUpdate) -> None:
        changes = clean_profile_update(fields)
        current = self.get_user_profile(user_id)
        if current is None:
            raise BackendError(f"No profile for user {user_id}", code="NOT_FOUND")
        merged = merge_profile(current, changes)
        payload = merged.model_dump(
            by_alias=True, include=set(changes) & set(type(merged).model_fields)
        )
        if payload:
            self._users.document(user_id).update(payload)
        logger.info("Updated profile %s: %s", user_id, sorted(payload))

    # --- Auth ---
    def _identity_toolkit(self, endpoint: str, payload: dict) -> dict:
        response = self._http.post(
            f"/accounts:{endpoint}", params={"key": self._api_key}, json=payload
        )
        body = response.json()
        if response.is_error:
            # Messages look like "WEAK_PASSWORD : Password should be ..."
            message = body.get("error", {}).get("message", "UNKNOWN")
            code = message.split(" ")[0]
            logger.warning("Identity Toolkit %s rejected: %s", endpoint, code)
            raise _auth_error(code)
        return body

    def sign_in_with_password(self, email: str, password: str) -> Optional[User]:
        body = self._identity_toolkit(
            "signInWithPassword",
            {"email": email, "password": password, "returnSecureToken": True},
        )
        return self._set_current_uid(body["localId"])

    def sign_up_with_password(
        self, name: str, email: str, password: str, role: Role
    ) -> Optional[User]:
        body = self._identity_toolkit(
            "signUp", {"email": email, "password": password, "returnSecureToken": True}
        )
        identity = Identity(uid=body["localId"], email=body.get("email", email))
        self.create_user_profile(identity, name=name, role=role)
        return self._set_current_uid(identity.uid)

    def sign_in_with_federated_provider(
        self, provider: str, token: str
    ) -> Optional[User]:
        body = self._identity_toolkit(
            "signInWithIdp",
            {
                "postBody": urlencode({"id_token": token, "providerId": provider}),
                "requestUri": "http://localhost",
                "returnSecureToken": True,
                "returnIdpCredential": True,
            },
        )
        identity = Identity(
            uid=body["localId"],
            email=body.get("email", ""),
            display_name=body.get("displayName"),
            photo_url=body.get("photoUrl"),
        )
        self._provision_federated(identity)
        return self._set_current_uid(identity.uid)

    # --- Chat ---
    @staticmethod
    def _conversation(snapshot) -> Conversation:
        return Conversation.model_validate({**snapshot.to_dict(), "id": snapshot.id})

    def find_or_create_conversation(self, user_a: str, user_b: str) -> Conversation:
        from google.api_core.exceptions import AlreadyExists

        pair = canonical_pair(user_a, user_b)
        ref = self._conversations.document(conversation_key(pair))
        snapshot = ref.get()
        if not snapshot.exists:
            try:
                ref.create(
                    {
                        "participantIds": list(pair),
                        "createdAt": self._firestore.SERVER_TIMESTAMP,
                    }
                )
                logger.info("Created conversation %s for %s", ref.id, pair)
            except AlreadyExists:
                logger.info("Conversation %s was created concurrently", ref.id)
            snapshot = ref.get()
        return self._conversation(snapshot)

    def list_conversations_for_user(self, user_id: str) -> List[Conversation]:
        from google.cloud.firestore_v1 import FieldFilter

        query = self._conversations.where(
            filter=FieldFilter("participantIds", "array_contains", user_id)
        )
        return sort_by_activity(self._conversation(s) for s in query.stream())

    def subscribe_messages(
        self, conversation_id: str, callback: MessagesCallback
    ) -> Subscription:
        query = (
            self._conversations.document(conversation_id)
            .collection("messages")
            .order_by("timestamp")
        )

        def on_snapshot(documents, changes, read_time):
            # Runs on the Firestore watch thread
            messages = []
            for doc in documents:
                try:
                    messages.append(
                        Message(
                            id=doc.id,
                            conversation_id=conversation_id,
                            sender_id=doc.get("senderId"),
                            text=doc.get("text"),
                            timestamp=doc.get("timestamp"),
                        )
                    )
                except ValidationError as exc:
                    logger.warning("Skipping malformed message %s: %s", doc.id, exc)
            callback(messages)

        watch = query.on_snapshot(on_snapshot)
        logger.debug("Subscribed to messages of %s", conversation_id)
        return Subscription(watch.unsubscribe)

    def send_message(self, conversation_id: str, text: str, sender_id: str) -> None:
        if not text or not text.strip():
            raise InvalidInputError("Message text cannot be empty.")
        conversation_ref = self._conversations.document(conversation_id)
        snapshot = conversation_ref.get()
        if not snapshot.exists:
            raise BackendError(
                f"Conversation {conversation_id} does not exist", code="NOT_FOUND"
            )
        if sender_id not in snapshot.get("participantIds"):
            raise PermissionDeniedError(
                f"{sender_id} is not a participant of {conversation_id}"
            )
        batch = self._db.batch()
        batch.set(
            conversation_ref.collection("messages").document(),
            {
                "text": text,
                "senderId": sender_id,
                "timestamp": self._firestore.SERVER_TIMESTAMP,
            },
        )
        batch.update(
            conversation_ref,
            {"lastMessageTimestamp": self._firestore.SERVER_TIMESTAMP},
        )
        batch.commit()
