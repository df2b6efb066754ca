import pytest

from app.schemas.errors import (
    Conflict,
    Internal,
    InvalidCredential,
    InvalidInput,
    InvalidOrExpired,
    NoOp,
    NotFound,
)
from app.schemas.otp import EMAIL_CHANGE, PROFILE_UPDATE, SIGNUP, ProfileUpdates
from app.services.otp import otp_store
from app.services.otp_workflow import otp_workflow
from app.services.passwords import verify_password
from app.services.users import user_store

from conftest import latest_code, otp_rows


def _send_signup(username="alice", email="a@x.com", password="secret1"):
    return otp_workflow.send_signup_otp(username, email, password)


class TestSignup:
    def test_send_stores_one_record_with_hashed_payload(self, notifier):
        message = _send_signup()

        rows = otp_rows("a@x.com", SIGNUP)
        assert len(rows) == 1
        code = rows[0].code
        assert len(code) == 6 and code.isdigit()
        assert code not in message
        assert rows[0].pending_payload["username"] == "alice"
        assert rows[0].pending_payload["hashed_password"] != "secret1"
        assert verify_password("secret1", rows[0].pending_payload["hashed_password"])
        assert notifier.sent[-1].to == "a@x.com"
        assert code in notifier.sent[-1].html

    def test_second_send_replaces_the_first(self):
        _send_signup()
        first = otp_rows("a@x.com", SIGNUP)[0]

        _send_signup()
        rows = otp_rows("a@x.com", SIGNUP)
        assert len(rows) == 1
        assert rows[0].id != first.id

    def test_stale_code_from_replaced_send_cannot_be_redeemed(self, monkeypatch):
        codes = iter(["111111", "222222"])
        monkeypatch.setattr(otp_store, "generate_code", lambda: next(codes))
        _send_signup(username="alice")
        _send_signup(username="alice2")
        fresh = latest_code("a@x.com", SIGNUP)
        assert fresh == "222222"

        with pytest.raises(InvalidOrExpired):
            otp_workflow.verify_signup_otp("a@x.com", "111111")
        otp_workflow.verify_signup_otp("a@x.com", fresh)
        with pytest.raises(InvalidOrExpired):
            otp_workflow.verify_signup_otp("a@x.com", fresh)

        assert user_store.count_users() == 1
        assert user_store.get_by_email("a@x.com").username == "alice2"

    @pytest.mark.parametrize(
        "username, email, password",
        [("", "a@x.com", "secret1"), ("alice", None, "secret1"), ("alice", "a@x.com", "")],
    )
    def test_send_requires_all_fields(self, username, email, password):
        with pytest.raises(InvalidInput):
            otp_workflow.send_signup_otp(username, email, password)
        assert otp_rows() == []

    def test_send_rejects_short_password(self):
        with pytest.raises(InvalidInput, match="at least 6"):
            _send_signup(password="12345")

    def test_send_conflicts_with_existing_accounts(self, make_account):
        make_account(username="alice", email="taken@x.com")

        with pytest.raises(Conflict, match="Username"):
            _send_signup(username="alice", email="fresh@x.com")
        with pytest.raises(Conflict, match="Email"):
            _send_signup(username="bob", email="TAKEN@x.com")
        assert otp_rows() == []

    def test_send_succeeds_when_email_delivery_fails(self, notifier):
        notifier.fail = True

        message = _send_signup()

        assert "OTP sent" in message
        assert len(otp_rows("a@x.com", SIGNUP)) == 1

    def test_verify_creates_account_and_consumes_code(self, notifier):
        _send_signup()
        code = latest_code("a@x.com", SIGNUP)

        otp_workflow.verify_signup_otp("a@x.com", code)

        entry = user_store.get_by_email("a@x.com")
        assert entry.username == "alice"
        assert verify_password("secret1", entry.password)
        assert otp_rows("a@x.com", SIGNUP) == []
        assert notifier.sent[-1].subject.startswith("Welcome")

    def test_verify_after_ttl_fails_without_creating_account(self, clock):
        _send_signup()
        code = latest_code("a@x.com", SIGNUP)
        clock.advance(301)

        with pytest.raises(InvalidOrExpired):
            otp_workflow.verify_signup_otp("a@x.com", code)
        assert user_store.count_users() == 0

    def test_wrong_code_leaves_record_intact(self):
        _send_signup()
        code = latest_code("a@x.com", SIGNUP)
        wrong = "000000" if code != "000000" else "111111"

        with pytest.raises(InvalidOrExpired):
            otp_workflow.verify_signup_otp("a@x.com", wrong)
        assert latest_code("a@x.com", SIGNUP) == code
        assert user_store.count_users() == 0

    def test_welcome_email_failure_does_not_fail_verification(self, notifier):
        _send_signup()
        code = latest_code("a@x.com", SIGNUP)
        notifier.fail = True

        otp_workflow.verify_signup_otp("a@x.com", code)

        assert user_store.get_by_email("a@x.com") is not None

    def test_verify_requires_email_and_code(self):
        with pytest.raises(InvalidInput):
            otp_workflow.verify_signup_otp("a@x.com", "")

    def test_best_effort_sends_can_be_deferred(self, notifier):
        deferred = []

        otp_workflow.send_signup_otp(
            "alice",
            "a@x.com",
            "secret1",
            defer=lambda func, *args, **kwargs: deferred.append((func, args, kwargs)),
        )

        assert notifier.sent == []
        func, args, kwargs = deferred[0]
        assert kwargs == {"critical": False}
        func(*args, **kwargs)
        assert notifier.sent[-1].to == "a@x.com"

    def test_concurrent_duplicate_is_rejected_by_unique_index(self, make_account):
        _send_signup()
        code = latest_code("a@x.com", SIGNUP)
        # Someone else claimed the username after the pre-check ran.
        make_account(username="alice", email="other@x.com")

        with pytest.raises(Conflict):
            otp_workflow.verify_signup_otp("a@x.com", code)
        assert user_store.count_users() == 1


class TestResend:
    def test_resend_without_pending_record(self):
        with pytest.raises(NotFound) as excinfo:
            otp_workflow.resend_signup_otp("nobody@x.com")
        assert excinfo.value.status_code == 400

    def test_resend_restarts_the_window(self, clock):
        _send_signup()
        clock.advance(250)

        otp_workflow.resend_signup_otp("a@x.com")
        resent = latest_code("a@x.com", SIGNUP)
        clock.advance(250)

        otp_workflow.verify_signup_otp("a@x.com", resent)
        assert user_store.get_by_email("a@x.com") is not None

    def test_resend_keeps_a_single_record(self):
        _send_signup()
        record_id = otp_rows("a@x.com", SIGNUP)[0].id

        otp_workflow.resend_signup_otp("a@x.com")

        rows = otp_rows("a@x.com", SIGNUP)
        assert [row.id for row in rows] == [record_id]

    def test_resend_surfaces_email_failure(self, notifier):
        _send_signup()
        notifier.fail = True

        with pytest.raises(Internal) as excinfo:
            otp_workflow.resend_signup_otp("a@x.com")
        assert excinfo.value.status_code == 500

    def test_resend_after_expiry_is_not_found(self, clock):
        _send_signup()
        clock.advance(301)

        with pytest.raises(NotFound):
            otp_workflow.resend_signup_otp("a@x.com")


class TestEmailChange:
    def test_send_goes_to_the_new_address(self, make_account, notifier):
        account = make_account()

        otp_workflow.send_email_change_otp(account.id, "New@x.com")

        assert len(otp_rows("new@x.com", EMAIL_CHANGE)) == 1
        assert notifier.sent[-1].to == "new@x.com"

    def test_same_email_is_a_noop(self, make_account):
        account = make_account(email="alice@example.com")

        with pytest.raises(NoOp):
            otp_workflow.send_email_change_otp(account.id, "ALICE@example.com")
        assert otp_rows() == []

    def test_taken_email_conflicts_and_stores_nothing(self, make_account):
        account = make_account()
        make_account(username="bob", email="bob@x.com")

        with pytest.raises(Conflict):
            otp_workflow.send_email_change_otp(account.id, "bob@x.com")
        assert otp_rows() == []

    def test_send_tolerates_email_failure(self, make_account, notifier):
        account = make_account()
        notifier.fail = True

        otp_workflow.send_email_change_otp(account.id, "new@x.com")

        assert len(otp_rows("new@x.com", EMAIL_CHANGE)) == 1

    def test_unknown_account(self):
        with pytest.raises(NotFound):
            otp_workflow.send_email_change_otp(404, "new@x.com")

    def test_verify_updates_email_and_consumes_code(self, make_account):
        account = make_account()
        otp_workflow.send_email_change_otp(account.id, "new@x.com")
        code = latest_code("new@x.com", EMAIL_CHANGE)

        updated = otp_workflow.verify_email_change_otp(account.id, "new@x.com", code)

        assert updated.email == "new@x.com"
        assert "password" not in updated.to_json()
        assert otp_rows("new@x.com", EMAIL_CHANGE) == []

    def test_verify_after_ttl_leaves_email_unchanged(self, make_account, clock):
        account = make_account()
        otp_workflow.send_email_change_otp(account.id, "new@x.com")
        code = latest_code("new@x.com", EMAIL_CHANGE)
        clock.advance(301)

        with pytest.raises(InvalidOrExpired):
            otp_workflow.verify_email_change_otp(account.id, "new@x.com", code)
        assert user_store.get_user(account.id).email == "alice@example.com"

    def test_verify_with_wrong_code(self, make_account):
        account = make_account()
        otp_workflow.send_email_change_otp(account.id, "new@x.com")
        code = latest_code("new@x.com", EMAIL_CHANGE)
        wrong = "000000" if code != "000000" else "111111"

        with pytest.raises(InvalidOrExpired):
            otp_workflow.verify_email_change_otp(account.id, "new@x.com", wrong)
        assert user_store.get_user(account.id).email == "alice@example.com"


class TestPasswordGate:
    def test_correct_password(self, make_account):
        account = make_account(password="secret1")
        assert otp_workflow.verify_password(account.id, "secret1") == "Password verified"

    def test_wrong_password(self, make_account):
        account = make_account(password="secret1")
        with pytest.raises(InvalidCredential):
            otp_workflow.verify_password(account.id, "nope")

    def test_missing_password(self, make_account):
        account = make_account()
        with pytest.raises(InvalidInput):
            otp_workflow.verify_password(account.id, None)


class TestProfileUpdate:
    def test_current_email_must_match(self, make_account):
        account = make_account()
        with pytest.raises(InvalidInput, match="does not match"):
            otp_workflow.send_profile_update_otp(
                account.id, "someone@else.com", ProfileUpdates(username="bobby")
            )

    def test_taken_username_conflicts_before_issuing(self, make_account):
        account = make_account()
        make_account(username="taken", email="t@x.com")

        with pytest.raises(Conflict):
            otp_workflow.send_profile_update_otp(
                account.id, account.email, ProfileUpdates(username="taken")
            )
        assert otp_rows() == []

    def test_taken_email_conflicts_before_issuing(self, make_account):
        account = make_account()
        make_account(username="bob", email="bob@x.com")

        with pytest.raises(Conflict):
            otp_workflow.send_profile_update_otp(
                account.id, account.email, ProfileUpdates(email="bob@x.com")
            )
        assert otp_rows() == []

    def test_staged_updates_apply_on_verification(self, make_account, notifier):
        account = make_account()
        otp_workflow.send_profile_update_otp(
            account.id,
            account.email,
            ProfileUpdates(username="alicia", profile_picture="https://img/x.png"),
        )
        assert notifier.sent[-1].to == account.email
        code = latest_code(account.email, PROFILE_UPDATE)

        updated = otp_workflow.verify_profile_update_otp(
            account.id, account.email, code, ProfileUpdates(username="ignored")
        )

        assert updated.username == "alicia"
        assert updated.profile_picture == "https://img/x.png"
        assert otp_rows(account.email, PROFILE_UPDATE) == []

    def test_send_tolerates_email_failure(self, make_account, notifier):
        account = make_account()
        notifier.fail = True

        message = otp_workflow.send_profile_update_otp(
            account.id, account.email, ProfileUpdates(username="alicia")
        )

        assert message == "Verification code sent to your email."
        rows = otp_rows(account.email, PROFILE_UPDATE)
        assert len(rows) == 1
        assert rows[0].pending_payload == {"username": "alicia"}

    def test_verify_after_ttl_leaves_profile_unchanged(self, make_account, clock):
        account = make_account()
        otp_workflow.send_profile_update_otp(
            account.id, account.email, ProfileUpdates(username="alicia")
        )
        code = latest_code(account.email, PROFILE_UPDATE)
        clock.advance(301)

        with pytest.raises(InvalidOrExpired):
            otp_workflow.verify_profile_update_otp(account.id, account.email, code)
        assert user_store.get_user(account.id).username == "alice"

    def test_request_updates_used_when_nothing_was_staged(self, make_account):
        account = make_account()
        otp_workflow.send_profile_update_otp(account.id, account.email, ProfileUpdates())
        code = latest_code(account.email, PROFILE_UPDATE)

        updated = otp_workflow.verify_profile_update_otp(
            account.id, account.email, code, ProfileUpdates(username="alicia")
        )

        assert updated.username == "alicia"

    def test_apply_now_ignores_fields_outside_whitelist(self, make_account):
        account = make_account()

        updated = otp_workflow.apply_profile_updates(
            account.id, {"username": "alicia", "isAdmin": True, "password": "x"}
        )

        assert updated.username == "alicia"
        assert updated.is_admin is False
        assert verify_password("secret1", user_store.get_entry(account.id).password)
