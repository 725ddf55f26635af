"""Application state of a browser session and the registry that owns it."""

import logging
import threading
import time
from typing import Callable, Dict, List, MutableMapping, Optional, Tuple

from .backend import Backend, Subscription
from .exceptions import InvalidInputError
from .models import (
    AUTH_PAGE,
    CHAT_LIST_PAGE,
    CHAT_PAGE,
    DARK_THEME,
    HOME_PAGE,
    LIGHT_THEME,
    PAGES,
    ROLES,
    SEARCH_PAGE,
    STUDENT_PROFILE_PAGE,
    STUDENT_ROLE,
    TEACHER_ONBOARDING_PAGE,
    TEACHER_PROFILE_PAGE,
    TEACHER_ROLE,
    Conversation,
    Message,
    Teacher,
    User,
)

logger = logging.getLogger(__name__)

THEME_KEY = "theme"
PROFILE_SAVED = "Profile saved successfully!"

# Tabs of the Auth page
SIGN_IN = "signin"
SIGN_UP = "signup"
AUTH_MODES = (SIGN_IN, SIGN_UP)


def filter_teachers(
    teachers: List[Teacher], term: Optional[str] = "", subject: Optional[str] = ""
) -> List[Teacher]:
    """Keyword match on name, headline or subjects, narrowed by an exact subject."""
    term = (term or "").strip().lower()
    found = []
    for teacher in teachers:
        keyword_match = (
            term in teacher.name.lower()
            or term in teacher.headline.lower()
            or any(term in s.lower() for s in teacher.subjects)
        )
        if keyword_match and (not subject or teacher.teaches(subject)):
            found.append(teacher)
    return found


class Controller:
    """Single source of truth for one browser session.

    Holds the signed-in user, the page being shown, the theme, the active
    conversation and the user directory. Views read this state and change it
    only by calling the methods below; the directory is written here and
    nowhere else.

    Parameters
    ----------
    backend : Backend
        Backend bound to this session's auth state.
    storage : MutableMapping, optional
        Durable client-local storage. Only the ``"theme"`` key is used.
    prefers_dark : bool, default=False
        Colour-scheme hint used when storage holds no theme.
    """

    def __init__(
        self,
        backend: Backend,
        storage: Optional[MutableMapping[str, str]] = None,
        prefers_dark: bool = False,
    ) -> None:
        self.backend = backend
        self.storage = storage if storage is not None else {}
        self.page = HOME_PAGE
        self.current_user: Optional[User] = None
        self.directory: List[User] = []
        self.selected_teacher_id: Optional[str] = None
        self.active_conversation: Optional[Conversation] = None
        self.messages: List[Message] = []
        self.conversations: List[Conversation] = []
        self.toast: Optional[str] = None
        self.auth_loading = True
        self.auth_mode = SIGN_IN

        stored = self.storage.get(THEME_KEY)
        if stored in (LIGHT_THEME, DARK_THEME):
            self.theme = stored
        else:
            self.theme = DARK_THEME if prefers_dark else LIGHT_THEME
        self.storage[THEME_KEY] = self.theme

        self._messages_subscription: Optional[Subscription] = None
        self._auth_subscription = backend.subscribe_auth_state(self._on_auth_state)

    # --- Navigation ---
    def navigate_to(self, page: str) -> None:
        if page not in PAGES:
            raise ValueError(f"Unknown page: {page!r}")
        if page != CHAT_PAGE:
            self._stop_listening()
        elif self.active_conversation and self._messages_subscription is None:
            self._listen(self.active_conversation)
        self.page = page

    def open_auth(self, mode: str = SIGN_IN) -> None:
        """Shows the Auth page with the sign-in or sign-up tab active."""
        if mode not in AUTH_MODES:
            raise ValueError(f"Unknown auth mode: {mode!r}")
        self.auth_mode = mode
        self.navigate_to(AUTH_PAGE)

    @property
    def visible_page(self) -> str:
        """The page actually rendered for the current state."""
        user = self.current_user
        if user is None:
            return AUTH_PAGE if self.page == AUTH_PAGE else HOME_PAGE
        if self.page == TEACHER_PROFILE_PAGE and self.selected_teacher is None:
            return SEARCH_PAGE
        if self.page == TEACHER_ONBOARDING_PAGE and user.role != TEACHER_ROLE:
            return SEARCH_PAGE
        if self.page == STUDENT_PROFILE_PAGE and user.role != STUDENT_ROLE:
            return SEARCH_PAGE
        if self.page == CHAT_PAGE and self.active_conversation is None:
            return CHAT_LIST_PAGE
        if self.page in (HOME_PAGE, AUTH_PAGE):
            return self.home_page
        return self.page

    @property
    def home_page(self) -> str:
        """Where the brand link leads for the current user."""
        if self.current_user is None:
            return HOME_PAGE
        if self.current_user.role == STUDENT_ROLE:
            return SEARCH_PAGE
        return TEACHER_ONBOARDING_PAGE

    @property
    def profile_page(self) -> Optional[str]:
        if self.current_user is None:
            return None
        if self.current_user.role == TEACHER_ROLE:
            return TEACHER_ONBOARDING_PAGE
        return STUDENT_PROFILE_PAGE

    # --- Theme ---
    def toggle_theme(self) -> str:
        self.theme = DARK_THEME if self.theme == LIGHT_THEME else LIGHT_THEME
        self.storage[THEME_KEY] = self.theme
        return self.theme

    # --- Directory ---
    def refresh_directory(self) -> List[User]:
        self.directory = list(self.backend.list_all_users())
        logger.debug("Directory refreshed: %d users", len(self.directory))
        return self.directory

    @property
    def teachers(self) -> List[Teacher]:
        return [u for u in self.directory if u.role == TEACHER_ROLE]

    def find_user(self, user_id: Optional[str]) -> Optional[User]:
        return next((u for u in self.directory if u.id == user_id), None)

    def select_teacher(self, teacher_id: str) -> None:
        self.selected_teacher_id = teacher_id
        self.navigate_to(TEACHER_PROFILE_PAGE)

    @property
    def selected_teacher(self) -> Optional[Teacher]:
        return next((t for t in self.teachers if t.id == self.selected_teacher_id), None)

    # --- Auth ---
    def _on_auth_state(self, user: Optional[User]) -> None:
        self.current_user = user
        self.refresh_directory()
        if user is None:
            self._close_chat()
            self.navigate_to(HOME_PAGE)
        elif user.role == STUDENT_ROLE:
            self.navigate_to(SEARCH_PAGE)
        elif user.role == TEACHER_ROLE:
            self.navigate_to(TEACHER_ONBOARDING_PAGE)
        self.auth_loading = False

    def sign_in(self, email: str, password: str) -> Optional[User]:
        if not email or not password:
            raise InvalidInputError("Please fill all fields.")
        return self.backend.sign_in_with_password(email, password)

    def sign_up(self, name: str, email: str, password: str, role: str) -> Optional[User]:
        if not name or not email or not password:
            raise InvalidInputError("Please fill all fields.")
        if role not in ROLES:
            raise InvalidInputError(f"Unknown role: {role}")
        return self.backend.sign_up_with_password(name, email, password, role)

    def sign_in_with_provider(self, provider: str, token: str) -> Optional[User]:
        return self.backend.sign_in_with_federated_provider(provider, token)

    def logout(self) -> None:
        self.backend.sign_out()
        self.current_user = None
        self._close_chat()
        self.navigate_to(HOME_PAGE)

    # --- Profile ---
    def save_profile(self, profile: User) -> None:
        """Saves the signed-in user's profile.

        Local state is updated before the backend write; a failed write
        propagates to the caller and the local copy is not rolled back.
        """
        user = self.current_user
        if user is None:
            raise InvalidInputError("You must be signed in to save a profile.")
        if profile.role != user.role:
            raise InvalidInputError("Role cannot be changed.")
        if not profile.name.strip():
            raise InvalidInputError("Name is required.")
        if profile.role == TEACHER_ROLE:
            if not profile.headline.strip():
                raise InvalidInputError("Headline is required.")
            if not profile.bio.strip():
                raise InvalidInputError("Tell students about yourself.")

        profile = profile.model_copy(update={"id": user.id, "email": user.email})
        self.current_user = profile
        self.backend.update_user_profile(user.id, profile)
        self.toast = PROFILE_SAVED
        self.refresh_directory()
        self.navigate_to(self.profile_page)

    def pop_toast(self) -> Optional[str]:
        toast, self.toast = self.toast, None
        return toast

    # --- Chat ---
    def start_chat(self, teacher_id: str) -> Optional[Conversation]:
        user = self.current_user
        if user is None or user.role != STUDENT_ROLE:
            return None
        conversation = self.backend.find_or_create_conversation(user.id, teacher_id)
        self.open_conversation(conversation)
        return conversation

    def open_conversation(self, conversation: Conversation) -> None:
        self.active_conversation = conversation
        self._listen(conversation)
        self.navigate_to(CHAT_PAGE)

    def open_conversation_by_id(self, conversation_id: str) -> Optional[Conversation]:
        conversation = next(
            (c for c in self.conversations if c.id == conversation_id), None
        )
        if conversation is None:
            logger.warning("Conversation %s is not in the chat list", conversation_id)
            return None
        self.open_conversation(conversation)
        return conversation

    @property
    def chat_partner(self) -> Optional[User]:
        if self.active_conversation is None or self.current_user is None:
            return None
        return self.find_user(
            self.active_conversation.counterpart_id(self.current_user.id)
        )

    def load_conversations(self) -> List[Tuple[Conversation, User]]:
        """Conversations of the signed-in user paired with their counterpart."""
        if self.current_user is None:
            self.conversations = []
            return []
        uid = self.current_user.id
        self.conversations = self.backend.list_conversations_for_user(uid)
        if any(self.find_user(c.counterpart_id(uid)) is None for c in self.conversations):
            # Someone who signed up after the last fetch
            self.refresh_directory()
        entries = []
        for conversation in self.conversations:
            partner = self.find_user(conversation.counterpart_id(uid))
            if partner is not None:
                entries.append((conversation, partner))
        return entries

    def send_message(self, text: Optional[str]) -> None:
        text = (text or "").strip()
        if not text:
            raise InvalidInputError("Message cannot be empty.")
        if self.active_conversation is None or self.current_user is None:
            raise InvalidInputError("No conversation is open.")
        self.backend.send_message(
            self.active_conversation.id, text, self.current_user.id
        )

    def _on_messages(self, messages: List[Message]) -> None:
        self.messages = list(messages)

    def _listen(self, conversation: Conversation) -> None:
        self._stop_listening()
        self.messages = []
        self._messages_subscription = self.backend.subscribe_messages(
            conversation.id, self._on_messages
        )

    def _stop_listening(self) -> None:
        if self._messages_subscription is not None:
            self._messages_subscription.unsubscribe()
            self._messages_subscription = None

    def _close_chat(self) -> None:
        self._stop_listening()
        self.active_conversation = None
        self.messages = []

    @property
    def listening(self) -> bool:
        return self._messages_subscription is not None

    def close(self) -> None:
        """Releases every subscription held by this session."""
        self._stop_listening()
        self._auth_subscription.unsubscribe()


class Sessions:
    """Registry of one Controller per browser session.

    A browser never says goodbye, so sessions not seen for ``ttl_s`` seconds
    are closed on the next lookup. ``ttl_s=None`` keeps them forever.
    """

    def __init__(
        self,
        backend: Backend,
        ttl_s: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.backend = backend
        self.ttl_s = ttl_s
        self._clock = clock
        self._controllers: Dict[str, Controller] = {}
        self._last_seen: Dict[str, float] = {}
        self._lock = threading.Lock()

    def get(
        self,
        session_id: str,
        theme: Optional[str] = None,
        prefers_dark: bool = False,
    ) -> Controller:
        """Returns the session's controller, creating it on first use.

        ``theme`` and ``prefers_dark`` only matter when the controller is
        created: the stored theme, then the browser's colour-scheme hint.
        """
        self.evict_idle()
        with self._lock:
            controller = self._controllers.get(session_id)
            if controller is None:
                storage = {THEME_KEY: theme} if theme else {}
                controller = Controller(
                    self.backend.session(),
                    storage=storage,
                    prefers_dark=bool(prefers_dark),
                )
                self._controllers[session_id] = controller
                logger.info("Opened session %s", session_id)
            self._last_seen[session_id] = self._clock()
            return controller

    def evict_idle(self) -> List[str]:
        """Closes sessions idle for longer than ``ttl_s``. Returns their ids."""
        if self.ttl_s is None:
            return []
        cutoff = self._clock() - self.ttl_s
        with self._lock:
            expired = [sid for sid, seen in self._last_seen.items() if seen < cutoff]
            evicted = [(sid, self._controllers.pop(sid)) for sid in expired]
            for sid in expired:
                del self._last_seen[sid]
        for sid, controller in evicted:
            controller.close()
            logger.info("Evicted idle session %s", sid)
        return expired

    def close(self, session_id: str) -> None:
        with self._lock:
            controller = self._controllers.pop(session_id, None)
            self._last_seen.pop(session_id, None)
        if controller is not None:
            controller.close()
            logger.info("Closed session %s", session_id)

    def __contains__(self, session_id: str) -> bool:
        return session_id in self._controllers

    def __len__(self) -> int:
        return len(self._controllers)
