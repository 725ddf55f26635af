"""Concrete implementations for the layout builder."""

from abc import ABC, abstractmethod
from typing import Any, Dict, List, Set

import dash_bootstrap_components as dbc
from dash import dcc, html
from dash.development.base_component import Component as DashComponent

from .controller import SIGN_UP, Controller
from .models import (
    ALL_SUBJECTS,
    AUTH_PAGE,
    CHAT_LIST_PAGE,
    CHAT_PAGE,
    DARK_THEME,
    GRADE_LEVELS,
    HOME_PAGE,
    ROLES,
    SEARCH_PAGE,
    STUDENT_PROFILE_PAGE,
    STUDENT_ROLE,
    TEACHER_ONBOARDING_PAGE,
    TEACHER_PROFILE_PAGE,
    Message,
    Teacher,
    User,
)

# Component ids the callbacks rely on at all times.
REQUIRED_IDS = {
    "url_location",
    "session_id",
    "theme",
    "theme_applied",
    "prefers_dark",
    "view_version",
    "header",
    "page_container",
    "toast",
}


def default_avatar(user_id: str) -> str:
    return f"https://i.pravatar.cc/150?u={user_id}"


def avatar_of(user: User) -> str:
    return user.avatar_url or default_avatar(user.id)


def collect_ids(component: Any) -> Set[str]:
    """Returns every string id found in a Dash component tree."""
    ids = set()
    stack = [component]
    while stack:
        node = stack.pop()
        if isinstance(node, (list, tuple)):
            stack.extend(node)
            continue
        if not isinstance(node, DashComponent):
            continue
        node_id = getattr(node, "id", None)
        if isinstance(node_id, str):
            ids.add(node_id)
        stack.append(getattr(node, "children", None))
    return ids


def nav_id(page: str, key: str) -> Dict[str, str]:
    return {"type": "nav", "page": page, "key": key}


class Layout(ABC):
    """Interface for building the Dash component trees of the UI."""

    @abstractmethod
    def build_layout(self) -> DashComponent:
        """Constructs the application shell. Must contain every id in REQUIRED_IDS."""
        pass

    @abstractmethod
    def build_header(self, controller: Controller) -> DashComponent:
        pass

    @abstractmethod
    def build_page(self, controller: Controller) -> DashComponent:
        """Renders ``controller.visible_page``."""
        pass

    @abstractmethod
    def build_messages(
        self, messages: List[Message], current_user: User, partner: User
    ) -> List[DashComponent]:
        pass

    @abstractmethod
    def build_teacher_cards(self, teachers: List[Teacher]) -> List[DashComponent]:
        pass

    @staticmethod
    def build_search_summary(count: int) -> str:
        noun = "teacher" if count == 1 else "teachers"
        return f"{count} {noun} found. Ready to start learning?"

    def get_external_stylesheets(self) -> List:
        return []

    def get_external_scripts(self) -> List:
        return []


class Bootstrap(Layout):
    """The default layout, built with dash-bootstrap-components."""

    def __init__(self, toast_duration_ms: int = 3000, poll_interval_ms: int = 1500):
        self.toast_duration_ms = toast_duration_ms
        self.poll_interval_ms = poll_interval_ms

    def get_external_stylesheets(self) -> List:
        return [dbc.themes.BOOTSTRAP, dbc.icons.BOOTSTRAP]

    def build_layout(self) -> DashComponent:
        return html.Div(
            id="app_root",
            className="d-flex flex-column min-vh-100 bg-body-tertiary",
            children=[
                dcc.Location(id="url_location", refresh=False),
                dcc.Store(id="session_id", storage_type="session"),
                dcc.Store(id="theme", storage_type="local"),
                dcc.Store(id="theme_applied"),
                dcc.Store(id="prefers_dark"),
                dcc.Store(id="view_version", data=0),
                html.Header(
                    id="header", className="bg-body shadow-sm sticky-top"
                ),
                html.Main(id="page_container", className="flex-grow-1 py-4"),
                self.build_footer(),
                dbc.Toast(
                    id="toast",
                    header="TutorConnect",
                    icon="success",
                    is_open=False,
                    dismissable=True,
                    duration=self.toast_duration_ms,
                    style={
                        "position": "fixed",
                        "bottom": 20,
                        "right": 20,
                        "zIndex": 1050,
                    },
                ),
            ],
        )

    def build_footer(self) -> DashComponent:
        return html.Footer(
            "© TutorConnect. Connect, Learn, Grow.",
            className="text-center text-body-secondary small py-3 border-top",
        )

    def build_header(self, controller: Controller) -> DashComponent:
        user = controller.current_user
        theme_icon = "bi bi-sun" if controller.theme == DARK_THEME else "bi bi-moon"
        actions = [
            dbc.Button(
                html.I(className=theme_icon),
                id="theme_toggle",
                color="link",
                title="Toggle theme",
            )
        ]
        if user:
            actions += [
                dbc.Button(
                    html.I(className="bi bi-chat-dots"),
                    id=nav_id(CHAT_LIST_PAGE, "header"),
                    color="link",
                    title="Messages",
                ),
                dbc.Button(
                    [
                        html.Img(
                            src=avatar_of(user),
                            className="rounded-circle me-2",
                            style={"width": 32, "height": 32, "objectFit": "cover"},
                        ),
                        user.name,
                    ],
                    id=nav_id(controller.profile_page, "header"),
                    color="link",
                    className="text-decoration-none",
                ),
                dbc.Button("Logout", id="logout_button", color="secondary", outline=True),
            ]
        else:
            actions += [
                dbc.Button("Log In", id=nav_id(AUTH_PAGE, "login"), color="link"),
                dbc.Button("Sign Up", id=nav_id(AUTH_PAGE, SIGN_UP), color="primary"),
            ]
        return dbc.Container(
            className="d-flex align-items-center justify-content-between py-3",
            children=[
                dbc.Button(
                    [html.I(className="bi bi-mortarboard me-2"), "TutorConnect"],
                    id=nav_id(controller.home_page, "brand"),
                    color="link",
                    className="fs-4 fw-bold text-decoration-none",
                ),
                html.Div(actions, className="d-flex align-items-center gap-2"),
            ],
        )

    def build_page(self, controller: Controller) -> DashComponent:
        if controller.auth_loading:
            return html.Div(dbc.Spinner(color="primary"), className="text-center py-5")
        builders = {
            HOME_PAGE: self.build_home,
            AUTH_PAGE: self.build_auth,
            SEARCH_PAGE: self.build_search,
            TEACHER_PROFILE_PAGE: self.build_teacher_profile,
            TEACHER_ONBOARDING_PAGE: self.build_teacher_onboarding,
            STUDENT_PROFILE_PAGE: self.build_student_profile,
            CHAT_LIST_PAGE: self.build_chat_list,
            CHAT_PAGE: self.build_chat,
        }
        return builders[controller.visible_page](controller)

    # --- Pages ---
    def build_home(self, controller: Controller) -> DashComponent:
        features = [
            (
                "bi-search",
                "Expert Search",
                "Find the right teacher by subject, price and rating in seconds.",
            ),
            (
                "bi-chat-dots",
                "Seamless Communication",
                "Message teachers, ask questions and schedule sessions with ease.",
            ),
            (
                "bi-patch-check",
                "Verified Tutors",
                "Every profile shows real reviews from real students.",
            ),
        ]
        return dbc.Container(
            [
                html.Section(
                    className="text-center py-5",
                    children=[
                        html.H1("Unlock Your Potential.", className="display-4 fw-bold"),
                        html.H2(
                            "Connect, Learn, Grow.", className="display-6 text-primary"
                        ),
                        html.P(
                            "TutorConnect is the place to find expert teachers for any "
                            "subject, or to share your knowledge with students around "
                            "the world.",
                            className="lead mt-4",
                        ),
                        html.Div(
                            className="d-flex justify-content-center gap-3 mt-4",
                            children=[
                                dbc.Button(
                                    "Find Your Teacher",
                                    id=nav_id(AUTH_PAGE, "hero-student"),
                                    color="primary",
                                    size="lg",
                                ),
                                dbc.Button(
                                    "Become a Teacher",
                                    id=nav_id(AUTH_PAGE, "hero-teacher"),
                                    color="primary",
                                    outline=True,
                                    size="lg",
                                ),
                            ],
                        ),
                    ],
                ),
                dbc.Row(
                    [
                        dbc.Col(
                            dbc.Card(
                                dbc.CardBody(
                                    [
                                        html.I(className=f"bi {icon} fs-2 text-primary"),
                                        html.H5(title, className="mt-3"),
                                        html.P(text, className="text-body-secondary"),
                                    ]
                                ),
                                className="h-100 shadow-sm",
                            ),
                            md=4,
                        )
                        for icon, title, text in features
                    ],
                    className="g-4",
                ),
            ]
        )

    def build_auth(self, controller: Controller) -> DashComponent:
        signing_up = controller.auth_mode == SIGN_UP
        return dbc.Container(
            dbc.Card(
                dbc.CardBody(
                    [
                        html.H3("Welcome to TutorConnect", className="text-center mb-4"),
                        dbc.Tabs(
                            id="auth_tabs",
                            active_tab=controller.auth_mode,
                            children=[
                                dbc.Tab(label="Sign In", tab_id="signin"),
                                dbc.Tab(label="Sign Up", tab_id="signup"),
                            ],
                            className="mb-4",
                        ),
                        html.Div(
                            id="signup_fields",
                            hidden=not signing_up,
                            children=[
                                dbc.Input(
                                    id="auth_name",
                                    placeholder="Full Name",
                                    className="mb-3",
                                ),
                                html.Span("I am a...", className="small"),
                                dbc.RadioItems(
                                    id="auth_role",
                                    options=[{"label": r, "value": r} for r in ROLES],
                                    value=STUDENT_ROLE,
                                    inline=True,
                                    className="mb-3",
                                ),
                            ],
                        ),
                        dbc.Input(
                            id="auth_email",
                            type="email",
                            placeholder="Email address",
                            className="mb-3",
                        ),
                        dbc.Input(
                            id="auth_password",
                            type="password",
                            placeholder="Password",
                            className="mb-3",
                        ),
                        html.Div(id="auth_error", className="text-danger small mb-3"),
                        dbc.Button(
                            "Create Account" if signing_up else "Sign In",
                            id="auth_submit",
                            color="primary",
                            className="w-100",
                        ),
                    ]
                ),
                className="shadow mx-auto",
                style={"maxWidth": 440},
            )
        )

    def build_search(self, controller: Controller) -> DashComponent:
        teachers = controller.teachers
        return dbc.Container(
            dbc.Row(
                [
                    dbc.Col(
                        dbc.Card(
                            dbc.CardBody(
                                [
                                    html.H5("Filters", className="mb-3"),
                                    dbc.Label("Keyword Search", html_for="search_term"),
                                    dbc.Input(
                                        id="search_term",
                                        placeholder="e.g. Physics, Evelyn",
                                        debounce=True,
                                        className="mb-3",
                                    ),
                                    dbc.Label("Subject", html_for="subject_filter"),
                                    dbc.Select(
                                        id="subject_filter",
                                        value="",
                                        options=[{"label": "All Subjects", "value": ""}]
                                        + [{"label": s, "value": s} for s in ALL_SUBJECTS],
                                    ),
                                ]
                            ),
                            className="shadow-sm",
                        ),
                        lg=3,
                    ),
                    dbc.Col(
                        [
                            dbc.Card(
                                dbc.CardBody(
                                    [
                                        html.H4(
                                            f"Welcome back, {controller.current_user.name}!"
                                        ),
                                        html.P(
                                            self.build_search_summary(len(teachers)),
                                            id="search_summary",
                                            className="mb-0 text-body-secondary",
                                        ),
                                    ]
                                ),
                                className="mb-4 shadow-sm",
                            ),
                            html.Div(
                                self.build_teacher_cards(teachers), id="search_results"
                            ),
                        ],
                        lg=9,
                    ),
                ],
                className="g-4",
            )
        )

    def build_teacher_cards(self, teachers: List[Teacher]) -> List[DashComponent]:
        if not teachers:
            return [
                html.Div(
                    [
                        html.H4("No Teachers Found"),
                        html.P("Try adjusting your search filters."),
                    ],
                    className="text-center py-5",
                )
            ]
        cards = []
        for teacher in teachers:
            badges = [
                dbc.Badge(s, color="secondary", pill=True, className="me-1")
                for s in teacher.subjects[:2]
            ]
            if len(teacher.subjects) > 2:
                badges.append(
                    dbc.Badge(
                        f"+{len(teacher.subjects) - 2} more",
                        color="light",
                        text_color="dark",
                        pill=True,
                    )
                )
            cards.append(
                dbc.Col(
                    dbc.Card(
                        [
                            dbc.CardImg(
                                src=avatar_of(teacher),
                                top=True,
                                style={"height": 180, "objectFit": "cover"},
                            ),
                            dbc.CardBody(
                                [
                                    html.Div(
                                        f"${teacher.hourly_rate:g}/hr",
                                        className="fw-bold float-end",
                                    ),
                                    html.H5(teacher.name),
                                    html.P(teacher.headline, className="text-primary small"),
                                    self.build_rating(teacher),
                                    html.Div(badges, className="my-3"),
                                    dbc.Button(
                                        "View Profile",
                                        id={"type": "teacher-card", "id": teacher.id},
                                        color="primary",
                                        className="w-100",
                                    ),
                                ]
                            ),
                        ],
                        className="h-100 shadow-sm",
                    ),
                    md=6,
                    xl=4,
                )
            )
        return [dbc.Row(cards, className="g-4")]

    @staticmethod
    def build_stars(rating: float) -> str:
        filled = max(0, min(5, round(rating)))
        return "★" * filled + "☆" * (5 - filled)

    def build_rating(self, teacher: Teacher) -> DashComponent:
        return html.Div(
            [
                html.Span(self.build_stars(teacher.rating), className="text-warning"),
                html.Span(
                    f" {teacher.rating:.1f} ({len(teacher.reviews)} reviews)",
                    className="small text-body-secondary",
                ),
            ]
        )

    def build_teacher_profile(self, controller: Controller) -> DashComponent:
        teacher = controller.selected_teacher
        user = controller.current_user
        actions = []
        if user and user.role == STUDENT_ROLE:
            actions.append(
                dbc.Button(
                    [html.I(className="bi bi-chat-dots me-2"), "Start Chat"],
                    id="start_chat_button",
                    color="primary",
                    size="lg",
                    className="w-100 mt-4",
                )
            )
        actions.append(
            dbc.Button(
                "← Back to search",
                id=nav_id(SEARCH_PAGE, "profile-back"),
                color="link",
                className="mt-2",
            )
        )
        reviews = [
            html.Blockquote(
                [
                    html.Div(
                        [
                            html.Span(self.build_stars(r.rating), className="text-warning"),
                            html.Strong(r.student_name, className="ms-2"),
                        ]
                    ),
                    html.P(f'"{r.comment}"', className="fst-italic mt-1"),
                ],
                className="border-start border-4 ps-3",
            )
            for r in teacher.reviews
        ] or [html.P("No reviews yet.", className="text-body-secondary")]
        return dbc.Container(
            dbc.Card(
                dbc.Row(
                    [
                        dbc.Col(
                            [
                                html.Img(
                                    src=avatar_of(teacher),
                                    className="rounded-circle shadow",
                                    style={"width": 160, "height": 160, "objectFit": "cover"},
                                ),
                                html.H2(teacher.name, className="mt-3"),
                                html.P(teacher.headline, className="text-primary fw-semibold"),
                                self.build_rating(teacher),
                                html.Div(
                                    f"${teacher.hourly_rate:g}/hr",
                                    className="display-6 fw-bold mt-3",
                                ),
                                *actions,
                            ],
                            md=4,
                            className="text-center p-4 border-end",
                        ),
                        dbc.Col(
                            [
                                html.H3("About Me"),
                                html.P(
                                    teacher.bio or "No biography provided.",
                                    style={"whiteSpace": "pre-wrap"},
                                ),
                                html.H4("Subjects", className="mt-4"),
                                html.Div(
                                    [
                                        dbc.Badge(s, color="primary", pill=True, className="me-2")
                                        for s in teacher.subjects
                                    ]
                                ),
                                html.H3("Student Reviews", className="mt-4"),
                                *reviews,
                            ],
                            md=8,
                            className="p-4",
                        ),
                    ],
                    className="g-0",
                ),
                className="shadow",
            )
        )

    def build_avatar_upload(self, user: User) -> DashComponent:
        return html.Div(
            [
                html.Img(
                    id="avatar_preview",
                    src=avatar_of(user),
                    className="rounded-circle shadow",
                    style={"width": 140, "height": 140, "objectFit": "cover"},
                ),
                dcc.Upload(
                    id="avatar_upload",
                    accept="image/*",
                    children=dbc.Button("Upload Photo", color="link"),
                ),
                dcc.Store(id="avatar_data"),
            ],
            className="text-center mb-4",
        )

    def build_teacher_onboarding(self, controller: Controller) -> DashComponent:
        teacher = controller.current_user
        views = teacher.profile_views or 0
        return dbc.Container(
            dbc.Card(
                dbc.CardBody(
                    [
                        html.H2("Teacher Dashboard"),
                        html.P(
                            "Keep your profile updated to attract more students.",
                            className="text-body-secondary",
                        ),
                        dbc.Row(
                            [
                                dbc.Col(
                                    [
                                        dbc.Card(
                                            dbc.CardBody(
                                                [
                                                    html.H5("Profile Statistics"),
                                                    html.Div(f"Profile Views: {views}"),
                                                    html.Div(
                                                        f"Search Appearances: {views * 3}"
                                                    ),
                                                ]
                                            ),
                                            className="mb-4",
                                        ),
                                        self.build_avatar_upload(teacher),
                                    ],
                                    lg=4,
                                ),
                                dbc.Col(
                                    [
                                        dbc.Label("Full Name", html_for="teacher_name"),
                                        dbc.Input(id="teacher_name", value=teacher.name),
                                        dbc.Label(
                                            "Profile Headline",
                                            html_for="teacher_headline",
                                            className="mt-3",
                                        ),
                                        dbc.Input(
                                            id="teacher_headline",
                                            value=teacher.headline,
                                            placeholder="e.g. PhD in Physics",
                                        ),
                                        dbc.Label(
                                            "Hourly Rate ($)",
                                            html_for="teacher_hourly_rate",
                                            className="mt-3",
                                        ),
                                        dbc.Input(
                                            id="teacher_hourly_rate",
                                            type="number",
                                            min=10,
                                            value=teacher.hourly_rate,
                                        ),
                                        dbc.Label("Resume/CV", className="mt-3 d-block"),
                                        dcc.Upload(
                                            id="resume_upload",
                                            accept=".pdf,.doc,.docx",
                                            children=dbc.Button(
                                                "Change file"
                                                if teacher.resume_url
                                                else "Upload file",
                                                color="secondary",
                                                outline=True,
                                                size="sm",
                                            ),
                                        ),
                                        html.Span(
                                            teacher.resume_url,
                                            id="resume_name",
                                            className="small text-success",
                                        ),
                                        dcc.Store(id="resume_data"),
                                        dbc.Label(
                                            "Select your subjects", className="mt-3 d-block"
                                        ),
                                        dbc.Checklist(
                                            id="teacher_subjects",
                                            options=[
                                                {"label": s, "value": s}
                                                for s in ALL_SUBJECTS
                                            ],
                                            value=list(teacher.subjects),
                                            inline=True,
                                        ),
                                        dbc.Label(
                                            "About Me", html_for="teacher_bio", className="mt-3"
                                        ),
                                        dbc.Textarea(
                                            id="teacher_bio",
                                            value=teacher.bio,
                                            rows=6,
                                            placeholder="Write a warm, engaging and "
                                            "professional 'About Me' section...",
                                        ),
                                        html.Div(
                                            id="profile_error",
                                            className="text-danger small mt-3",
                                        ),
                                        dbc.Button(
                                            "Save Profile",
                                            id="save_teacher_button",
                                            color="success",
                                            size="lg",
                                            className="mt-3 float-end",
                                        ),
                                    ],
                                    lg=8,
                                ),
                            ]
                        ),
                    ]
                ),
                className="shadow",
            )
        )

    def build_student_profile(self, controller: Controller) -> DashComponent:
        student = controller.current_user
        return dbc.Container(
            dbc.Card(
                dbc.CardBody(
                    [
                        html.H2("Your Student Profile", className="text-center"),
                        html.P(
                            "Keep your information up to date.",
                            className="text-center text-body-secondary",
                        ),
                        self.build_avatar_upload(student),
                        dbc.Label("Full Name", html_for="student_name"),
                        dbc.Input(id="student_name", value=student.name),
                        dbc.Label(
                            "Current Grade Level", html_for="student_grade", className="mt-3"
                        ),
                        dbc.Select(
                            id="student_grade",
                            value=student.grade_level,
                            options=[{"label": g, "value": g} for g in GRADE_LEVELS],
                        ),
                        dbc.Label(
                            "My Learning Goals", html_for="student_goals", className="mt-3"
                        ),
                        dbc.Textarea(
                            id="student_goals",
                            value=student.learning_goals or "",
                            rows=4,
                            placeholder="e.g., Prepare for AP exams, improve my essay "
                            "writing...",
                        ),
                        dbc.Label("Email Address", className="mt-3"),
                        dbc.Input(value=student.email, disabled=True),
                        dbc.FormText("Email cannot be changed."),
                        html.Div(id="profile_error", className="text-danger small mt-3"),
                        dbc.Button(
                            "Save Changes",
                            id="save_student_button",
                            color="success",
                            size="lg",
                            className="mt-3 float-end",
                        ),
                    ]
                ),
                className="shadow mx-auto",
                style={"maxWidth": 720},
            )
        )

    def build_chat_list(self, controller: Controller) -> DashComponent:
        entries = controller.load_conversations()
        if entries:
            items = [
                dbc.ListGroupItem(
                    html.Div(
                        [
                            html.Img(
                                src=avatar_of(partner),
                                className="rounded-circle me-3",
                                style={"width": 56, "height": 56, "objectFit": "cover"},
                            ),
                            html.Div(
                                [
                                    html.H5(partner.name, className="mb-0"),
                                    html.Small(
                                        "Click to view messages...",
                                        className="text-body-secondary",
                                    ),
                                ],
                                className="flex-grow-1",
                            ),
                            html.Small(
                                self.format_time(conversation.activity_timestamp, "%b %d"),
                                className="text-body-secondary",
                            ),
                        ],
                        className="d-flex align-items-center",
                    ),
                    id={"type": "convo-item", "id": conversation.id},
                    action=True,
                    n_clicks=0,
                )
                for conversation, partner in entries
            ]
            body = dbc.ListGroup(items, flush=True)
        else:
            body = html.P(
                "You have no messages yet. Start a conversation from a teacher's profile.",
                className="text-center text-body-secondary py-5",
            )
        return dbc.Container(
            dbc.Card(
                dbc.CardBody([html.H2("Your Messages", className="mb-4"), body]),
                className="shadow mx-auto",
                style={"maxWidth": 760},
            )
        )

    def build_chat(self, controller: Controller) -> DashComponent:
        partner = controller.chat_partner
        if partner is None:
            return dbc.Container(
                dbc.Alert("Error: Chat partner not found.", color="danger")
            )
        return dbc.Container(
            dbc.Card(
                [
                    dbc.CardHeader(
                        html.Div(
                            [
                                html.Img(
                                    src=avatar_of(partner),
                                    className="rounded-circle me-3",
                                    style={"width": 48, "height": 48, "objectFit": "cover"},
                                ),
                                html.H4(partner.name, className="mb-0 flex-grow-1"),
                                dbc.Button(
                                    html.I(className="bi bi-x-lg"),
                                    id=nav_id(CHAT_LIST_PAGE, "chat-close"),
                                    color="link",
                                    title="Close",
                                ),
                            ],
                            className="d-flex align-items-center",
                        )
                    ),
                    dbc.CardBody(
                        html.Div(
                            self.build_messages(
                                controller.messages, controller.current_user, partner
                            ),
                            id="chat_messages",
                        ),
                        style={"height": "60vh", "overflowY": "auto"},
                    ),
                    dbc.CardFooter(
                        [
                            dbc.InputGroup(
                                [
                                    dbc.Input(
                                        id="chat_input",
                                        placeholder="Type your message...",
                                        autocomplete="off",
                                    ),
                                    dbc.Button(
                                        html.I(className="bi bi-send"),
                                        id="chat_send",
                                        color="primary",
                                    ),
                                ]
                            ),
                            html.Div(id="chat_error", className="text-danger small mt-2"),
                        ]
                    ),
                    dcc.Interval(id="chat_poll", interval=self.poll_interval_ms),
                ],
                className="shadow mx-auto",
                style={"maxWidth": 900},
            )
        )

    # --- Messages ---
    @staticmethod
    def format_time(value, fmt: str = "%H:%M") -> str:
        return value.strftime(fmt) if value else "sending..."

    def build_messages(
        self, messages: List[Message], current_user: User, partner: User
    ) -> List[DashComponent]:
        if not messages:
            return []
        return [self.build_message(m, current_user, partner) for m in messages]

    def build_message(
        self, message: Message, current_user: User, partner: User
    ) -> DashComponent:
        mine = message.sender_id == current_user.id
        sender = current_user if mine else partner
        style = {
            "padding": "10px",
            "borderRadius": "15px",
            "maxWidth": "70%",
            "width": "fit-content",
        }
        bubble_class = "shadow-sm"
        if mine:
            bubble_class += " bg-primary text-white"
        else:
            bubble_class += " bg-body border"
        avatar = html.Img(
            src=avatar_of(sender),
            className="rounded-circle",
            style={"width": 32, "height": 32, "objectFit": "cover"},
        )
        bubble = html.Div(
            [
                html.Div(message.text),
                html.Small(
                    self.format_time(message.timestamp),
                    className="d-block text-end opacity-75",
                ),
            ],
            className=bubble_class,
            style=style,
        )
        children = [bubble, avatar] if mine else [avatar, bubble]
        justify = "justify-content-end" if mine else "justify-content-start"
        return html.Div(
            children, className=f"d-flex align-items-end gap-2 mb-3 {justify}"
        )
