"""Callbacks wiring the views to each session's Controller."""

import logging
import uuid
from typing import Any, Dict, Optional

from dash import ALL, Input, Output, State, callback_context, no_update
from pydantic import ValidationError

from .backend import describe_validation_error
from .controller import SIGN_IN, SIGN_UP, filter_teachers
from .exceptions import InvalidInputError, TutorConnectError
from .models import AUTH_PAGE, User, parse_user

logger = logging.getLogger(__name__)

GENERIC_ERROR = "Something went wrong. Please try again."


def new_version() -> str:
    """A fresh value for the ``view_version`` store, forcing a re-render."""
    return uuid.uuid4().hex


def edited_profile(current: User, changes: Dict[str, Any]) -> User:
    """Applies form values to the signed-in user's profile.

    ``None`` values leave the field unchanged.
    """
    data = current.model_dump()
    data.update({k: v for k, v in changes.items() if v is not None})
    try:
        return parse_user(data)
    except ValidationError as exc:
        raise InvalidInputError(describe_validation_error(exc)) from exc


def error_text(exc: Exception, action: str) -> str:
    if isinstance(exc, TutorConnectError):
        logger.info("%s rejected [%s]: %s", action, exc.code, exc.message)
        return exc.message
    logger.error("%s failed", action, exc_info=exc)
    return GENERIC_ERROR


def open_session(
    sessions, session_id: Optional[str], theme=None, prefers_dark=None
) -> str:
    """Makes sure the browser has a session id and a controller behind it."""
    session_id = session_id or uuid.uuid4().hex
    sessions.get(session_id, theme=theme, prefers_dark=bool(prefers_dark))
    return session_id


def go_to(controller, target: Dict[str, str]) -> None:
    """Follows a nav button. The header sign-up button opens the sign-up tab."""
    if target["page"] == AUTH_PAGE:
        controller.open_auth(SIGN_UP if target.get("key") == SIGN_UP else SIGN_IN)
    else:
        controller.navigate_to(target["page"])


def _clicked() -> bool:
    """Whether the callback was fired by a real click, not by a re-render."""
    triggered = callback_context.triggered
    return bool(triggered) and bool(triggered[0].get("value"))


def register_callbacks(app):
    def controller_for(session_id: Optional[str]):
        if not session_id:
            return None
        return app.sessions.get(session_id)

    # --- Session and rendering ---
    @app.callback(
        [
            Output("session_id", "data"),
            Output("view_version", "data", allow_duplicate=True),
        ],
        [Input("url_location", "pathname"), Input("prefers_dark", "data")],
        [State("session_id", "data"), State("theme", "data")],
        prevent_initial_call="initial_duplicate",
    )
    def start_session(pathname, prefers_dark, session_id, theme):
        session_id = open_session(app.sessions, session_id, theme, prefers_dark)
        return session_id, new_version()

    @app.callback(
        [
            Output("header", "children"),
            Output("page_container", "children"),
            Output("toast", "is_open"),
            Output("toast", "children"),
            Output("theme", "data"),
        ],
        [Input("view_version", "data")],
        [State("session_id", "data")],
        prevent_initial_call=True,
    )
    def render(version, session_id):
        controller = controller_for(session_id)
        if controller is None:
            return no_update, no_update, no_update, no_update, no_update
        toast = controller.pop_toast()
        return (
            app.layout_builder.build_header(controller),
            app.layout_builder.build_page(controller),
            bool(toast),
            toast or no_update,
            controller.theme,
        )

    # --- Navigation ---
    @app.callback(
        Output("view_version", "data", allow_duplicate=True),
        [Input({"type": "nav", "page": ALL, "key": ALL}, "n_clicks")],
        [State("session_id", "data")],
        prevent_initial_call=True,
    )
    def navigate(n_clicks, session_id):
        controller = controller_for(session_id)
        if controller is None or not _clicked():
            return no_update
        go_to(controller, callback_context.triggered_id)
        return new_version()

    @app.callback(
        Output("view_version", "data", allow_duplicate=True),
        [Input("theme_toggle", "n_clicks")],
        [State("session_id", "data")],
        prevent_initial_call=True,
    )
    def toggle_theme(n_clicks, session_id):
        controller = controller_for(session_id)
        if controller is None or not n_clicks:
            return no_update
        controller.toggle_theme()
        return new_version()

    @app.callback(
        Output("view_version", "data", allow_duplicate=True),
        [Input("logout_button", "n_clicks")],
        [State("session_id", "data")],
        prevent_initial_call=True,
    )
    def logout(n_clicks, session_id):
        controller = controller_for(session_id)
        if controller is None or not n_clicks:
            return no_update
        controller.logout()
        return new_version()

    # --- Auth ---
    @app.callback(
        [Output("signup_fields", "hidden"), Output("auth_submit", "children")],
        [Input("auth_tabs", "active_tab")],
    )
    def switch_auth_mode(active_tab):
        signing_up = active_tab == "signup"
        return not signing_up, "Create Account" if signing_up else "Sign In"

    @app.callback(
        [
            Output("auth_error", "children"),
            Output("view_version", "data", allow_duplicate=True),
        ],
        [Input("auth_submit", "n_clicks")],
        [
            State("auth_tabs", "active_tab"),
            State("auth_name", "value"),
            State("auth_email", "value"),
            State("auth_password", "value"),
            State("auth_role", "value"),
            State("session_id", "data"),
        ],
        prevent_initial_call=True,
        running=[(Output("auth_submit", "disabled"), True, False)],
    )
    def submit_auth(n_clicks, active_tab, name, email, password, role, session_id):
        controller = controller_for(session_id)
        if controller is None or not n_clicks:
            return no_update, no_update
        try:
            if active_tab == "signup":
                controller.sign_up(name, email, password, role)
            else:
                controller.sign_in(email, password)
        except Exception as e:
            return error_text(e, "Authentication"), no_update
        return "", new_version()

    # --- Search ---
    @app.callback(
        [Output("search_results", "children"), Output("search_summary", "children")],
        [Input("search_term", "value"), Input("subject_filter", "value")],
        [State("session_id", "data")],
        prevent_initial_call=True,
    )
    def search(term, subject, session_id):
        controller = controller_for(session_id)
        if controller is None:
            return no_update, no_update
        found = filter_teachers(controller.teachers, term, subject)
        return (
            app.layout_builder.build_teacher_cards(found),
            app.layout_builder.build_search_summary(len(found)),
        )

    @app.callback(
        Output("view_version", "data", allow_duplicate=True),
        [Input({"type": "teacher-card", "id": ALL}, "n_clicks")],
        [State("session_id", "data")],
        prevent_initial_call=True,
    )
    def select_teacher(n_clicks, session_id):
        controller = controller_for(session_id)
        if controller is None or not _clicked():
            return no_update
        controller.select_teacher(callback_context.triggered_id["id"])
        return new_version()

    # --- Chat ---
    @app.callback(
        Output("view_version", "data", allow_duplicate=True),
        [Input("start_chat_button", "n_clicks")],
        [State("session_id", "data")],
        prevent_initial_call=True,
    )
    def start_chat(n_clicks, session_id):
        controller = controller_for(session_id)
        if controller is None or not n_clicks:
            return no_update
        try:
            controller.start_chat(controller.selected_teacher_id)
        except Exception as e:
            controller.toast = error_text(e, "Starting chat")
        return new_version()

    @app.callback(
        Output("view_version", "data", allow_duplicate=True),
        [Input({"type": "convo-item", "id": ALL}, "n_clicks")],
        [State("session_id", "data")],
        prevent_initial_call=True,
    )
    def open_conversation(n_clicks, session_id):
        controller = controller_for(session_id)
        if controller is None or not _clicked():
            return no_update
        controller.open_conversation_by_id(callback_context.triggered_id["id"])
        return new_version()

    @app.callback(
        [
            Output("chat_input", "value"),
            Output("chat_error", "children"),
            Output("chat_messages", "children"),
        ],
        [Input("chat_send", "n_clicks"), Input("chat_input", "n_submit")],
        [State("chat_input", "value"), State("session_id", "data")],
        prevent_initial_call=True,
    )
    def send_message(n_clicks, n_submit, text, session_id):
        controller = controller_for(session_id)
        if controller is None or not (n_clicks or n_submit):
            return no_update, no_update, no_update
        if not text or not text.strip():
            return no_update, no_update, no_update
        try:
            controller.send_message(text)
        except Exception as e:
            return no_update, error_text(e, "Sending message"), no_update
        return "", "", _chat_messages(controller)

    @app.callback(
        Output("chat_messages", "children", allow_duplicate=True),
        [Input("chat_poll", "n_intervals")],
        [State("session_id", "data")],
        prevent_initial_call=True,
    )
    def refresh_messages(n_intervals, session_id):
        controller = controller_for(session_id)
        if controller is None or controller.chat_partner is None:
            return no_update
        return _chat_messages(controller)

    def _chat_messages(controller):
        partner = controller.chat_partner
        if partner is None:
            return no_update
        return app.layout_builder.build_messages(
            controller.messages, controller.current_user, partner
        )

    # --- Profile ---
    @app.callback(
        [Output("avatar_preview", "src"), Output("avatar_data", "data")],
        [Input("avatar_upload", "contents")],
        prevent_initial_call=True,
    )
    def preview_avatar(contents):
        if not contents:
            return no_update, no_update
        return contents, contents

    @app.callback(
        [Output("resume_name", "children"), Output("resume_data", "data")],
        [Input("resume_upload", "filename")],
        prevent_initial_call=True,
    )
    def attach_resume(filename):
        if not filename:
            return no_update, no_update
        return filename, filename

    @app.callback(
        [
            Output("profile_error", "children"),
            Output("view_version", "data", allow_duplicate=True),
        ],
        [Input("save_teacher_button", "n_clicks")],
        [
            State("teacher_name", "value"),
            State("teacher_headline", "value"),
            State("teacher_hourly_rate", "value"),
            State("teacher_subjects", "value"),
            State("teacher_bio", "value"),
            State("avatar_data", "data"),
            State("resume_data", "data"),
            State("session_id", "data"),
        ],
        prevent_initial_call=True,
        running=[(Output("save_teacher_button", "disabled"), True, False)],
    )
    def save_teacher(
        n_clicks, name, headline, hourly_rate, subjects, bio, avatar, resume, session_id
    ):
        controller = controller_for(session_id)
        if controller is None or not n_clicks or controller.current_user is None:
            return no_update, no_update
        changes = {
            "name": name or "",
            "headline": headline or "",
            "hourly_rate": hourly_rate,
            "subjects": subjects or [],
            "bio": bio or "",
            "avatar_url": avatar,
            "resume_url": resume,
        }
        return _save(controller, changes)

    @app.callback(
        [
            Output("profile_error", "children", allow_duplicate=True),
            Output("view_version", "data", allow_duplicate=True),
        ],
        [Input("save_student_button", "n_clicks")],
        [
            State("student_name", "value"),
            State("student_grade", "value"),
            State("student_goals", "value"),
            State("avatar_data", "data"),
            State("session_id", "data"),
        ],
        prevent_initial_call=True,
        running=[(Output("save_student_button", "disabled"), True, False)],
    )
    def save_student(n_clicks, name, grade_level, goals, avatar, session_id):
        controller = controller_for(session_id)
        if controller is None or not n_clicks or controller.current_user is None:
            return no_update, no_update
        changes = {
            "name": name or "",
            "grade_level": grade_level,
            "learning_goals": goals or "",
            "avatar_url": avatar,
        }
        return _save(controller, changes)

    def _save(controller, changes):
        try:
            profile = edited_profile(controller.current_user, changes)
            controller.save_profile(profile)
        except Exception as e:
            return error_text(e, "Saving profile"), no_update
        return "", new_version()

    _register_clientside_callbacks(app)


def _register_clientside_callbacks(app):
    # Colour-scheme hint, read once per page load
    app.clientside_callback(
        """
        function(pathname) {
            return Boolean(window.matchMedia &&
                window.matchMedia('(prefers-color-scheme: dark)').matches);
        }
        """,
        Output("prefers_dark", "data"),
        [Input("url_location", "pathname")],
    )

    # Apply the theme to the document root
    app.clientside_callback(
        """
        function(theme) {
            document.documentElement.setAttribute('data-bs-theme', theme || 'light');
            return theme;
        }
        """,
        Output("theme_applied", "data"),
        [Input("theme", "data")],
    )

    # Auto-scroll to bottom
    app.clientside_callback(
        """
        function(messages_content) {
            if (messages_content && messages_content.length > 0) {
                setTimeout(function() {
                    const container = document.getElementById('chat_messages');
                    if (container && container.parentElement) {
                        container.parentElement.scrollTop = container.parentElement.scrollHeight;
                    }
                }, 100);
            }
            return window.dash_clientside.no_update;
        }
        """,
        Output("chat_messages", "data-scroll-trigger", allow_duplicate=True),
        [Input("chat_messages", "children")],
        prevent_initial_call=True,
    )
