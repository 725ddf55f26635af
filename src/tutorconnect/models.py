"""
Defines the core Pydantic data models for the application.

These models are the data contract between the backend, the controller and the
views. Stored documents use camelCase keys, so every model accepts both the
camelCase alias and the Python field name.
"""

import uuid
from datetime import datetime
from typing import Annotated, List, Literal, Optional, Tuple, Union

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    TypeAdapter,
    field_validator,
)
from pydantic.alias_generators import to_camel

# --- Constants ---
STUDENT_ROLE = "Student"
TEACHER_ROLE = "Teacher"
Role = Literal["Student", "Teacher"]
ROLES = (STUDENT_ROLE, TEACHER_ROLE)

HOME_PAGE = "Home"
AUTH_PAGE = "Auth"
SEARCH_PAGE = "Search"
TEACHER_PROFILE_PAGE = "TeacherProfile"
TEACHER_ONBOARDING_PAGE = "TeacherOnboarding"
STUDENT_PROFILE_PAGE = "StudentProfile"
CHAT_LIST_PAGE = "ChatList"
CHAT_PAGE = "Chat"
Page = Literal[
    "Home",
    "Auth",
    "Search",
    "TeacherProfile",
    "TeacherOnboarding",
    "StudentProfile",
    "ChatList",
    "Chat",
]
PAGES = (
    HOME_PAGE,
    AUTH_PAGE,
    SEARCH_PAGE,
    TEACHER_PROFILE_PAGE,
    TEACHER_ONBOARDING_PAGE,
    STUDENT_PROFILE_PAGE,
    CHAT_LIST_PAGE,
    CHAT_PAGE,
)

LIGHT_THEME = "light"
DARK_THEME = "dark"
Theme = Literal["light", "dark"]

GRADE_LEVELS = [
    "Elementary School",
    "Middle School",
    "High School",
    "Undergraduate",
    "Graduate",
    "Adult Learner",
]

ALL_SUBJECTS = [
    "Mathematics",
    "Physics",
    "Chemistry",
    "Biology",
    "Computer Science",
    "English Literature",
    "History",
    "Geography",
    "Economics",
    "Spanish",
    "French",
    "Music",
    "Art",
]

DEFAULT_TEACHER_HEADLINE = "New Teacher! Ready to inspire students."
DEFAULT_HOURLY_RATE = 20

# Write-once fields that profile updates never touch.
IDENTITY_FIELDS = ("id", "email", "role")


# --- Models ---
class Document(BaseModel):
    """Base for every stored record."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_document(self) -> dict:
        """Dumps the record with camelCase keys, without its id."""
        return self.model_dump(by_alias=True, exclude={"id"}, exclude_none=True)


class Identity(BaseModel):
    """An account as the auth provider knows it, before any profile exists."""

    uid: str
    email: str
    display_name: Optional[str] = None
    photo_url: Optional[str] = None


class Review(Document):
    id: int
    student_name: str
    rating: int = Field(ge=1, le=5)
    comment: str = ""


class Profile(Document):
    """Fields shared by both user variants."""

    id: str
    name: str
    email: str
    avatar_url: Optional[str] = None


class Student(Profile):
    role: Literal["Student"] = STUDENT_ROLE
    grade_level: str = GRADE_LEVELS[2]
    learning_goals: Optional[str] = ""


class Teacher(Profile):
    role: Literal["Teacher"] = TEACHER_ROLE
    headline: str = DEFAULT_TEACHER_HEADLINE
    subjects: List[str] = Field(default_factory=list)
    bio: str = ""
    rating: float = 0.0
    reviews: List[Review] = Field(default_factory=list)
    hourly_rate: float = Field(default=DEFAULT_HOURLY_RATE, gt=0)
    resume_url: Optional[str] = None
    profile_views: Optional[int] = 0

    def teaches(self, subject: str) -> bool:
        return subject in self.subjects


User = Annotated[Union[Student, Teacher], Field(discriminator="role")]

_USER_ADAPTER = TypeAdapter(User)


def parse_user(data: dict) -> Union[Student, Teacher]:
    """Validates a stored profile into the variant named by its ``role``."""
    return _USER_ADAPTER.validate_python(data)


def canonical_pair(user_a: str, user_b: str) -> Tuple[str, str]:
    """Sorts two distinct user ids into the order a conversation stores them."""
    if user_a == user_b:
        raise ValueError("A conversation needs two distinct participants")
    return tuple(sorted((user_a, user_b)))


class Conversation(Document):
    """A two-party chat thread."""

    id: str
    participant_ids: List[str]
    created_at: Optional[datetime] = None
    last_message_timestamp: Optional[datetime] = None

    @field_validator("participant_ids")
    @classmethod
    def _canonical(cls, value: List[str]) -> List[str]:
        if len(value) != 2:
            raise ValueError("A conversation has exactly two participants")
        return list(canonical_pair(*value))

    @property
    def activity_timestamp(self) -> Optional[datetime]:
        """Last message time, or the creation marker before the first message."""
        return self.last_message_timestamp or self.created_at

    def counterpart_id(self, user_id: str) -> Optional[str]:
        return next((p for p in self.participant_ids if p != user_id), None)


class Message(Document):
    """Represents a single message within a conversation. Immutable once sent."""

    model_config = ConfigDict(frozen=True)

    conversation_id: str
    sender_id: str
    text: str = Field(min_length=1)
    id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    timestamp: Optional[datetime] = None
