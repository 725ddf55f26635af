"""Tests for the helpers shared by the Dash callbacks."""

import logging

import pytest
from tutorconnect.callbacks import (
    GENERIC_ERROR,
    edited_profile,
    error_text,
    go_to,
    new_version,
    open_session,
)
from tutorconnect.controller import SIGN_IN, SIGN_UP, Sessions
from tutorconnect.exceptions import AuthError, InvalidInputError
from tutorconnect.layout import nav_id
from tutorconnect.models import AUTH_PAGE, SEARCH_PAGE, Teacher


class TestEditedProfile:
    def test_applies_form_values(self, sample_teacher):
        profile = edited_profile(
            sample_teacher, {"hourly_rate": "45", "subjects": ["Physics"], "bio": "Hi"}
        )
        assert isinstance(profile, Teacher)
        assert profile.hourly_rate == 45
        assert profile.subjects == ["Physics"]
        assert profile.id == sample_teacher.id

    def test_none_leaves_field_unchanged(self, sample_teacher):
        profile = edited_profile(sample_teacher, {"avatar_url": None, "hourly_rate": None})
        assert profile.avatar_url is None
        assert profile.hourly_rate == sample_teacher.hourly_rate

    def test_invalid_values(self, sample_teacher):
        with pytest.raises(InvalidInputError) as exc_info:
            edited_profile(sample_teacher, {"hourly_rate": -1})
        assert "hourly_rate" in exc_info.value.message


class TestErrorText:
    def test_application_errors_are_shown(self):
        error = AuthError("Invalid email or password.", code="INVALID_LOGIN_CREDENTIALS")
        assert error_text(error, "Authentication") == "Invalid email or password."

    def test_unexpected_errors_are_logged(self, caplog):
        with caplog.at_level(logging.ERROR):
            text = error_text(RuntimeError("database exploded"), "Saving profile")

        assert text == GENERIC_ERROR
        assert "Saving profile failed" in caplog.text


def test_new_version_changes():
    assert new_version() != new_version()


class TestOpenSession:
    def test_new_browser_gets_an_id(self, backend):
        sessions = Sessions(backend)
        session_id = open_session(sessions, None)

        assert session_id
        assert session_id in sessions

    def test_colour_scheme_hint_reaches_the_controller(self, backend):
        sessions = Sessions(backend)
        session_id = open_session(sessions, "browser", theme=None, prefers_dark=True)

        assert session_id == "browser"
        assert sessions.get("browser").theme == "dark"

    def test_start_session_listens_to_the_hint(self, test_app):
        callback = next(
            v for k, v in test_app.callback_map.items() if "session_id.data" in k
        )
        inputs = {(i["id"], i["property"]) for i in callback["inputs"]}
        assert ("prefers_dark", "data") in inputs

    def test_hint_is_written_by_a_callback(self, test_app):
        assert any("prefers_dark.data" in k for k in test_app.callback_map)


class TestGoTo:
    def test_header_sign_up_opens_sign_up_tab(self, guest):
        go_to(guest, nav_id(AUTH_PAGE, SIGN_UP))
        assert guest.visible_page == AUTH_PAGE
        assert guest.auth_mode == SIGN_UP

    def test_other_auth_buttons_open_sign_in_tab(self, guest):
        guest.open_auth(SIGN_UP)
        go_to(guest, nav_id(AUTH_PAGE, "login"))
        assert guest.auth_mode == SIGN_IN

    def test_plain_navigation(self, student):
        go_to(student, nav_id(SEARCH_PAGE, "profile-back"))
        assert student.visible_page == SEARCH_PAGE
