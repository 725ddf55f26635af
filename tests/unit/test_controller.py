"""
Tests for the per-session Controller and the Sessions registry.

Most tests drive a Controller over real InMemory sessions, since the
controller's job is to keep page, user, directory and chat state consistent
with what the backend reports.
"""

import pytest
from tutorconnect.backend import InMemory
from tutorconnect.controller import (
    PROFILE_SAVED,
    SIGN_IN,
    SIGN_UP,
    Controller,
    Sessions,
    filter_teachers,
)
from tutorconnect.exceptions import BackendError, InvalidInputError
from tutorconnect.models import (
    AUTH_PAGE,
    CHAT_LIST_PAGE,
    CHAT_PAGE,
    HOME_PAGE,
    SEARCH_PAGE,
    STUDENT_PROFILE_PAGE,
    STUDENT_ROLE,
    TEACHER_ONBOARDING_PAGE,
    TEACHER_PROFILE_PAGE,
    TEACHER_ROLE,
    Identity,
    Teacher,
)


class TestFilterTeachers:
    @pytest.fixture
    def teachers(self, sample_teacher):
        other = Teacher(
            id="t2",
            name="Marcus Chen",
            email="marcus@example.com",
            headline="Software engineer and CS tutor",
            subjects=["Computer Science"],
        )
        return [sample_teacher, other]

    def test_empty_term_matches_everyone(self, teachers):
        assert filter_teachers(teachers) == teachers
        assert filter_teachers(teachers, None, None) == teachers

    @pytest.mark.parametrize(
        "term, expected",
        [
            ("evelyn", ["t1"]),
            ("  PHYSICS ", ["t1"]),
            ("tutor", ["t2"]),
            ("science", ["t2"]),
            ("history", []),
        ],
    )
    def test_keyword_matches_name_headline_or_subject(self, teachers, term, expected):
        assert [t.id for t in filter_teachers(teachers, term)] == expected

    def test_subject_filter_is_exact(self, teachers):
        assert [t.id for t in filter_teachers(teachers, "", "Chemistry")] == ["t1"]
        assert filter_teachers(teachers, "", "Chem") == []
        assert filter_teachers(teachers, "marcus", "Physics") == []


class TestTheme:
    def test_defaults_to_light(self, backend):
        storage = {}
        controller = Controller(backend.session(), storage=storage)
        assert controller.theme == "light"
        assert storage["theme"] == "light"

    def test_uses_colour_scheme_hint(self, backend):
        assert Controller(backend.session(), prefers_dark=True).theme == "dark"

    def test_stored_theme_wins(self, backend):
        controller = Controller(
            backend.session(), storage={"theme": "light"}, prefers_dark=True
        )
        assert controller.theme == "light"

    def test_invalid_stored_theme_is_ignored(self, backend):
        assert Controller(backend.session(), storage={"theme": "sepia"}).theme == "light"

    def test_toggle_persists(self, backend):
        storage = {}
        controller = Controller(backend.session(), storage=storage)

        assert controller.toggle_theme() == "dark"
        assert storage["theme"] == "dark"
        assert controller.toggle_theme() == "light"
        assert storage["theme"] == "light"


class TestNavigation:
    def test_signed_out_start(self, guest):
        assert guest.current_user is None
        assert not guest.auth_loading
        assert guest.page == HOME_PAGE
        assert guest.visible_page == HOME_PAGE
        assert guest.home_page == HOME_PAGE
        assert guest.profile_page is None

    def test_signed_out_can_only_reach_home_and_auth(self, guest):
        guest.navigate_to(AUTH_PAGE)
        assert guest.visible_page == AUTH_PAGE

        guest.navigate_to(SEARCH_PAGE)
        assert guest.visible_page == HOME_PAGE

    def test_unknown_page(self, guest):
        with pytest.raises(ValueError):
            guest.navigate_to("Admin")

    def test_open_auth_picks_the_tab(self, guest):
        assert guest.auth_mode == SIGN_IN

        guest.open_auth(SIGN_UP)
        assert guest.visible_page == AUTH_PAGE
        assert guest.auth_mode == SIGN_UP

        guest.open_auth()
        assert guest.auth_mode == SIGN_IN

        with pytest.raises(ValueError):
            guest.open_auth("register")

    def test_pages_fall_back_when_state_is_missing(self, student, teacher):
        student.navigate_to(TEACHER_PROFILE_PAGE)
        assert student.visible_page == SEARCH_PAGE

        student.navigate_to(TEACHER_ONBOARDING_PAGE)
        assert student.visible_page == SEARCH_PAGE

        teacher.navigate_to(STUDENT_PROFILE_PAGE)
        assert teacher.visible_page == SEARCH_PAGE

        student.navigate_to(CHAT_PAGE)
        assert student.visible_page == CHAT_LIST_PAGE

    def test_home_and_profile_pages_follow_role(self, student, teacher):
        assert student.home_page == SEARCH_PAGE
        assert student.profile_page == STUDENT_PROFILE_PAGE
        assert teacher.home_page == TEACHER_ONBOARDING_PAGE
        assert teacher.profile_page == TEACHER_ONBOARDING_PAGE

        student.navigate_to(HOME_PAGE)
        assert student.visible_page == SEARCH_PAGE

    def test_select_teacher(self, student, teacher):
        teacher_id = teacher.current_user.id
        student.select_teacher(teacher_id)

        assert student.visible_page == TEACHER_PROFILE_PAGE
        assert student.selected_teacher.id == teacher_id

    def test_selecting_a_student_shows_search(self, student):
        student.select_teacher(student.current_user.id)
        assert student.selected_teacher is None
        assert student.visible_page == SEARCH_PAGE


class TestAuth:
    def test_sign_in_routes_by_role(self, backend, student_session, teacher_session):
        for email, password, page in [
            ("alice@example.com", "secret1", SEARCH_PAGE),
            ("evelyn@example.com", "secret2", TEACHER_ONBOARDING_PAGE),
        ]:
            controller = Controller(backend.session())
            controller.navigate_to(AUTH_PAGE)
            controller.sign_in(email, password)
            assert controller.page == page
            assert controller.visible_page == page

    def test_sign_in_loads_directory(self, student):
        assert sorted(u.role for u in student.directory) == [STUDENT_ROLE, TEACHER_ROLE]
        assert [t.name for t in student.teachers] == ["Evelyn Reed"]

    @pytest.mark.parametrize("email, password", [("", "secret1"), ("a@b.c", ""), (None, None)])
    def test_sign_in_requires_all_fields(self, guest, email, password):
        with pytest.raises(InvalidInputError) as exc_info:
            guest.sign_in(email, password)
        assert exc_info.value.message == "Please fill all fields."

    def test_sign_up_requires_all_fields(self, guest):
        with pytest.raises(InvalidInputError):
            guest.sign_up("", "new@example.com", "secret1", STUDENT_ROLE)

    def test_sign_up_rejects_unknown_role(self, guest):
        with pytest.raises(InvalidInputError):
            guest.sign_up("Name", "new@example.com", "secret1", "Admin")

    def test_sign_up_as_teacher_opens_onboarding(self, guest):
        guest.sign_up("Marcus", "marcus@example.com", "secret1", TEACHER_ROLE)
        assert guest.current_user.headline == "New Teacher! Ready to inspire students."
        assert guest.visible_page == TEACHER_ONBOARDING_PAGE

    def test_sign_in_with_provider(self, backend, guest):
        backend.register_federated_identity(
            "google.com", "tok", Identity(uid="g1", email="g@example.com", display_name="Gina")
        )
        guest.sign_in_with_provider("google.com", "tok")
        assert guest.current_user.role == STUDENT_ROLE
        assert guest.visible_page == SEARCH_PAGE

    def test_logout(self, student, teacher):
        student.start_chat(teacher.current_user.id)
        student.logout()

        assert student.current_user is None
        assert student.active_conversation is None
        assert not student.listening
        assert student.visible_page == HOME_PAGE


class TestProfile:
    def test_save_teacher_profile(self, teacher, student):
        profile = teacher.current_user.model_copy(
            update={"hourly_rate": 45, "bio": "I love physics.", "subjects": ["Physics"]}
        )
        teacher.save_profile(profile)

        assert teacher.current_user.hourly_rate == 45
        assert teacher.pop_toast() == PROFILE_SAVED
        assert teacher.pop_toast() is None
        assert teacher.visible_page == TEACHER_ONBOARDING_PAGE
        stored = teacher.backend.get_user_profile(teacher.current_user.id)
        assert stored.hourly_rate == 45

        # Other sessions see the change after refetching the directory
        assert student.teachers[0].hourly_rate == 20
        student.refresh_directory()
        assert student.teachers[0].hourly_rate == 45

    def test_save_keeps_identity(self, student):
        profile = student.current_user.model_copy(
            update={"id": "someone-else", "email": "x@example.com", "name": "Alicia"}
        )
        student.save_profile(profile)

        assert student.current_user.email == "alice@example.com"
        assert student.backend.get_user_profile(student.current_user.id).name == "Alicia"
        assert student.visible_page == STUDENT_PROFILE_PAGE

    @pytest.mark.parametrize(
        "update, message",
        [
            ({"name": "  "}, "Name is required."),
            ({"headline": ""}, "Headline is required."),
            ({"bio": ""}, "Tell students about yourself."),
        ],
    )
    def test_teacher_profile_validation(self, teacher, update, message):
        profile = teacher.current_user.model_copy(update={"bio": "Bio", **update})
        with pytest.raises(InvalidInputError) as exc_info:
            teacher.save_profile(profile)
        assert exc_info.value.message == message

    def test_role_cannot_change(self, student, sample_teacher):
        with pytest.raises(InvalidInputError):
            student.save_profile(sample_teacher)

    def test_signed_out_save(self, guest, sample_student):
        with pytest.raises(InvalidInputError):
            guest.save_profile(sample_student)

    def test_failed_write_keeps_local_copy(self, mock_backend, sample_teacher):
        controller = Controller(mock_backend)
        controller.current_user = sample_teacher
        mock_backend.update_user_profile.side_effect = BackendError("offline")

        with pytest.raises(BackendError):
            controller.save_profile(sample_teacher.model_copy(update={"hourly_rate": 99}))

        assert controller.current_user.hourly_rate == 99
        assert controller.toast is None


class TestChat:
    def test_start_chat_opens_conversation(self, student, teacher):
        conversation = student.start_chat(teacher.current_user.id)

        assert conversation.participant_ids == sorted(
            [student.current_user.id, teacher.current_user.id]
        )
        assert student.visible_page == CHAT_PAGE
        assert student.listening
        assert student.messages == []
        assert student.chat_partner.name == "Evelyn Reed"

    def test_teacher_cannot_start_chat(self, teacher, student):
        assert teacher.start_chat(student.current_user.id) is None
        assert teacher.active_conversation is None

    def test_send_message_updates_both_sessions(self, student, teacher):
        student.start_chat(teacher.current_user.id)
        teacher.load_conversations()
        teacher.open_conversation_by_id(student.active_conversation.id)

        student.send_message("  Hi, can you help with AP Physics?  ")

        assert [m.text for m in student.messages] == ["Hi, can you help with AP Physics?"]
        assert teacher.messages == student.messages
        assert teacher.chat_partner.name == "Alice Carter"

    @pytest.mark.parametrize("text", ["", "   ", None])
    def test_blank_message(self, student, teacher, text):
        student.start_chat(teacher.current_user.id)
        with pytest.raises(InvalidInputError):
            student.send_message(text)

    def test_send_without_conversation(self, student):
        with pytest.raises(InvalidInputError):
            student.send_message("Hello?")

    def test_leaving_chat_stops_listening(self, student, teacher):
        conversation = student.start_chat(teacher.current_user.id)
        student.navigate_to(CHAT_LIST_PAGE)
        assert not student.listening

        teacher.backend.send_message(conversation.id, "Welcome!", teacher.current_user.id)
        assert student.messages == []

        student.navigate_to(CHAT_PAGE)
        assert student.listening
        assert [m.text for m in student.messages] == ["Welcome!"]

    def test_load_conversations(self, student, teacher, backend):
        student.start_chat(teacher.current_user.id)
        backend.find_or_create_conversation(student.current_user.id, "deleted-user")

        entries = student.load_conversations()

        assert len(student.conversations) == 2
        assert [(c.id, p.name) for c, p in entries] == [
            (student.active_conversation.id, "Evelyn Reed")
        ]

    def test_open_unknown_conversation(self, student):
        student.load_conversations()
        assert student.open_conversation_by_id("missing") is None
        assert student.active_conversation is None

    def test_missing_partner(self, student, backend):
        conversation = backend.find_or_create_conversation(
            student.current_user.id, "deleted-user"
        )
        student.open_conversation(conversation)
        assert student.visible_page == CHAT_PAGE
        assert student.chat_partner is None

    def test_close_releases_subscriptions(self, student, teacher):
        student.start_chat(teacher.current_user.id)
        student.close()

        assert not student.listening
        student.backend.sign_out()
        assert student.current_user is not None


class TestSessions:
    def test_one_controller_per_session(self, backend):
        sessions = Sessions(backend)

        first = sessions.get("a", theme="dark")
        assert sessions.get("a") is first
        assert sessions.get("b") is not first
        assert first.theme == "dark"
        assert len(sessions) == 2
        assert "a" in sessions

    def test_sessions_have_separate_users(self, backend, student_session):
        sessions = Sessions(backend)
        alice = sessions.get("alice")
        alice.sign_in("alice@example.com", "secret1")

        assert sessions.get("bob").current_user is None

    def test_close(self, backend):
        sessions = Sessions(backend)
        sessions.get("a")
        sessions.close("a")
        sessions.close("a")

        assert "a" not in sessions
        assert len(sessions) == 0

    def test_uses_backend_sessions(self):
        backend = InMemory()
        sessions = Sessions(backend)
        assert sessions.get("a").backend is not backend

    def test_colour_scheme_hint(self, backend):
        sessions = Sessions(backend)

        assert sessions.get("a", prefers_dark=True).theme == "dark"
        assert sessions.get("b", theme="light", prefers_dark=True).theme == "light"
        assert sessions.get("c").theme == "light"


class TestSessionExpiry:
    @pytest.fixture
    def now(self):
        return [0.0]

    @pytest.fixture
    def sessions(self, backend, now):
        return Sessions(backend, ttl_s=60, clock=lambda: now[0])

    def test_idle_session_releases_subscriptions(
        self, backend, sessions, now, student_session, teacher_session
    ):
        alice = sessions.get("alice")
        alice.sign_in("alice@example.com", "secret1")
        conversation = alice.start_chat(teacher_session.current_user().id)
        assert alice.listening

        now[0] = 61
        sessions.get("bob")

        assert "alice" not in sessions
        assert not alice.listening
        assert not backend._data.message_listeners[conversation.id]
        alice.backend.sign_out()
        assert alice.current_user is not None

    def test_recently_seen_sessions_are_kept(self, sessions, now):
        first = sessions.get("a")
        now[0] = 50
        sessions.get("a")
        now[0] = 100

        assert sessions.evict_idle() == []
        assert sessions.get("a") is first

    def test_expired_session_starts_over(self, sessions, now):
        first = sessions.get("a")
        now[0] = 61

        assert sessions.evict_idle() == ["a"]
        assert sessions.get("a") is not first
        assert len(sessions) == 1

    def test_no_ttl_keeps_sessions(self, backend):
        sessions = Sessions(backend)
        sessions.get("a")
        assert sessions.evict_idle() == []
        assert "a" in sessions
