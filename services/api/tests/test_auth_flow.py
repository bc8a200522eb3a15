import threading
from datetime import timedelta
from types import SimpleNamespace
from uuid import uuid4

import pytest
from sqlalchemy.exc import OperationalError

from cwa_api.core.security import TokenService
from cwa_api.db.base import create_schema
from cwa_api.db.session import build_session_factory, create_db_engine
from cwa_api.exceptions import AuthError, ErrorCode
from cwa_api.models.base import utc_now
from cwa_api.models.enums import ActivityAction, SessionStatus, UserRole, UserStatus
from cwa_api.services import activity as activity_module
from cwa_api.services.auth_flow import AuthService, ClientInfo, RefreshResult
from cwa_api.services.authorization import can_access
from cwa_api.services.session_registry import SessionRegistry

PASSWORD = "Secret123!"
CLIENT = ClientInfo(ip_address="203.0.113.7", user_agent="pytest-agent")


def _register(service: AuthService, email: str = "alice@example.com", name: str = "Alice"):
    return service.register(email, PASSWORD, name, client=CLIENT)


def _ctx(service: AuthService, result):
    return service.authenticate(f"Bearer {result.token}")


def _session_status(service: AuthService, session_id) -> str:
    service.db.expire_all()
    return service.sessions.get(session_id).status


def _make_admin(service: AuthService, email: str = "admin@example.com"):
    service.credentials.create_user(email=email, password=PASSWORD, name="Admin", role=UserRole.ADMIN)
    return service.login(email, PASSWORD, client=CLIENT)


def _expect(code: ErrorCode, func, *args, **kwargs) -> AuthError:
    with pytest.raises(AuthError) as exc_info:
        func(*args, **kwargs)
    assert exc_info.value.code == code
    return exc_info.value


def test_register_creates_user_and_session(auth_service: AuthService):
    result = _register(auth_service)

    assert result.user["email"] == "alice@example.com"
    assert result.user["name"] == "Alice"
    assert result.user["role"] == UserRole.USER
    assert "password_hash" not in result.user
    assert result.token and result.refresh_token and result.token != result.refresh_token
    assert result.expires_at > utc_now()
    assert _session_status(auth_service, result.session_id) == SessionStatus.ACTIVE

    stored = auth_service.credentials.find_by_email("alice@example.com")
    assert stored.password_hash != PASSWORD


def test_register_requires_all_fields(auth_service: AuthService):
    _expect(ErrorCode.MISSING_FIELDS, auth_service.register, "alice@example.com", PASSWORD, None)
    _expect(ErrorCode.MISSING_FIELDS, auth_service.register, "alice@example.com", PASSWORD, "   ")
    _expect(ErrorCode.MISSING_FIELDS, auth_service.register, None, PASSWORD, "Alice")
    _expect(ErrorCode.MISSING_FIELDS, auth_service.register, "alice@example.com", "", "Alice")


def test_register_duplicate_email_is_case_insensitive(auth_service: AuthService):
    _register(auth_service)
    err = _expect(ErrorCode.USER_EXISTS, _register, auth_service, "  ALICE@Example.com ")
    assert err.status_code == 409


def test_register_uniqueness_race_maps_to_user_exists(auth_service: AuthService, monkeypatch):
    _register(auth_service)
    # 模拟并发：存在性检查时对方尚未提交。
    monkeypatch.setattr(auth_service.credentials, "find_by_email", lambda email: None)

    _expect(ErrorCode.USER_EXISTS, _register, auth_service)


def test_login_success_records_activity(auth_service: AuthService):
    registered = _register(auth_service)

    result = auth_service.login("Alice@Example.com", PASSWORD, client=CLIENT)

    assert result.session_id != registered.session_id
    assert result.user["last_login_at"] is not None
    session = auth_service.sessions.get(result.session_id)
    assert session.ip_address == "203.0.113.7"
    assert session.user_agent == "pytest-agent"

    items, total = auth_service.activity.list_for_user(result.user["id"], action=ActivityAction.LOGIN)
    assert total == 1
    assert items[0].details == {"session_id": str(result.session_id)}


def test_login_failures_are_indistinguishable(auth_service: AuthService):
    _register(auth_service)

    unknown = _expect(ErrorCode.INVALID_CREDENTIALS, auth_service.login, "nobody@example.com", PASSWORD)
    wrong = _expect(ErrorCode.INVALID_CREDENTIALS, auth_service.login, "alice@example.com", "secret123!")

    assert (unknown.status_code, unknown.message, unknown.details) == (wrong.status_code, wrong.message, wrong.details)


def test_login_requires_credentials(auth_service: AuthService):
    err = _expect(ErrorCode.MISSING_CREDENTIALS, auth_service.login, "alice@example.com", None)
    assert err.status_code == 400
    _expect(ErrorCode.MISSING_CREDENTIALS, auth_service.login, "", PASSWORD)


def test_login_rejects_inactive_account(auth_service: AuthService):
    registered = _register(auth_service)
    auth_service.credentials.set_status(registered.user["id"], UserStatus.SUSPENDED)

    err = _expect(ErrorCode.ACCOUNT_INACTIVE, auth_service.login, "alice@example.com", PASSWORD)
    assert err.status_code == 403


def test_login_survives_activity_write_failure(auth_service: AuthService, monkeypatch):
    _register(auth_service)

    def _broken_activity(**kwargs):
        raise OperationalError("insert", {}, Exception("disk full"))

    monkeypatch.setattr(activity_module, "UserActivity", _broken_activity)

    result = auth_service.login("alice@example.com", PASSWORD, client=CLIENT)

    assert _session_status(auth_service, result.session_id) == SessionStatus.ACTIVE


def test_login_survives_last_login_update_failure(auth_service: AuthService, monkeypatch):
    _register(auth_service)

    def _broken_update(user_id):
        raise OperationalError("update", {}, Exception("lock timeout"))

    monkeypatch.setattr(auth_service.credentials, "update_last_login", _broken_update)

    result = auth_service.login("alice@example.com", PASSWORD)
    assert auth_service.authenticate(f"Bearer {result.token}").session_id == result.session_id


def test_unexpected_collaborator_error_maps_to_server_error(auth_service: AuthService, monkeypatch):
    _register(auth_service)

    def _boom(**kwargs):
        raise RuntimeError("registry unavailable")

    monkeypatch.setattr(auth_service.sessions, "create", _boom)

    err = _expect(ErrorCode.SERVER, auth_service.login, "alice@example.com", PASSWORD)
    assert err.status_code == 500


def test_refresh_rotates_and_old_token_is_rejected(auth_service: AuthService):
    first = _register(auth_service)

    rotated = auth_service.refresh(first.refresh_token, client=CLIENT)

    assert rotated.refresh_token != first.refresh_token
    assert rotated.token != first.token
    assert auth_service.authenticate(f"Bearer {rotated.token}").session_id == first.session_id
    # 旧访问令牌随轮换一并失效。
    _expect(ErrorCode.INVALID_TOKEN, auth_service.authenticate, f"Bearer {first.token}")

    _expect(ErrorCode.INVALID_TOKEN, auth_service.refresh, first.refresh_token)


def test_reusing_rotated_refresh_token_terminates_session(auth_service: AuthService):
    first = _register(auth_service)
    rotated = auth_service.refresh(first.refresh_token)

    _expect(ErrorCode.INVALID_TOKEN, auth_service.refresh, first.refresh_token)

    assert _session_status(auth_service, first.session_id) == SessionStatus.TERMINATED
    _expect(ErrorCode.INVALID_TOKEN, auth_service.refresh, rotated.refresh_token)
    items, _ = auth_service.activity.list_for_user(first.user["id"], action=ActivityAction.TOKEN_REUSE)
    assert len(items) == 1


def test_refresh_rejects_access_token(auth_service: AuthService):
    result = _register(auth_service)

    _expect(ErrorCode.INVALID_TOKEN, auth_service.refresh, result.token)
    assert _session_status(auth_service, result.session_id) == SessionStatus.ACTIVE


def test_refresh_requires_token(auth_service: AuthService):
    _expect(ErrorCode.MISSING_TOKEN, auth_service.refresh, None)
    _expect(ErrorCode.MISSING_TOKEN, auth_service.refresh, "")


def test_refresh_enforces_session_expiry(auth_service: AuthService):
    result = _register(auth_service)
    auth_service.sessions.update(result.session_id, {"expires_at": utc_now() - timedelta(seconds=1)})

    _expect(ErrorCode.INVALID_TOKEN, auth_service.refresh, result.refresh_token)
    assert _session_status(auth_service, result.session_id) == SessionStatus.EXPIRED


def test_refresh_rejects_inactive_user(auth_service: AuthService):
    result = _register(auth_service)
    auth_service.credentials.set_status(result.user["id"], UserStatus.INACTIVE)

    _expect(ErrorCode.USER_INACTIVE, auth_service.refresh, result.refresh_token)
    assert _session_status(auth_service, result.session_id) == SessionStatus.TERMINATED


def test_concurrent_refresh_has_single_winner(auth_env, tokens: TokenService, tmp_path, monkeypatch):
    # 文件库配合默认连接池，每个线程拿到独立连接与事务。
    engine = create_db_engine(f"sqlite+pysqlite:///{tmp_path / 'auth.db'}")
    create_schema(engine)
    factory = build_session_factory(engine)

    with factory() as setup_db:
        result = _register(AuthService(setup_db, tokens=tokens))

    # 两个线程都读到同一会话后才允许继续写入。
    barrier = threading.Barrier(2, timeout=5)
    racing = threading.Event()
    racing.set()
    original_lookup = SessionRegistry.find_by_refresh_token

    def lookup_then_wait(self, refresh_token):
        found = original_lookup(self, refresh_token)
        if racing.is_set():
            barrier.wait()
        return found

    monkeypatch.setattr(SessionRegistry, "find_by_refresh_token", lookup_then_wait)

    outcomes: list = []
    lock = threading.Lock()

    def attempt() -> None:
        with factory() as db:
            service = AuthService(db, tokens=tokens)
            try:
                outcome = service.refresh(result.refresh_token)
            except AuthError as exc:
                outcome = exc
        with lock:
            outcomes.append(outcome)

    workers = [threading.Thread(target=attempt) for _ in range(2)]
    for worker in workers:
        worker.start()
    for worker in workers:
        worker.join(timeout=15)
    racing.clear()

    assert len(outcomes) == 2
    winners = [item for item in outcomes if isinstance(item, RefreshResult)]
    losers = [item for item in outcomes if isinstance(item, AuthError)]
    assert len(winners) == 1
    assert len(losers) == 1
    assert losers[0].code == ErrorCode.INVALID_TOKEN

    with factory() as check_db:
        service = AuthService(check_db, tokens=tokens)
        stored = service.sessions.get(result.session_id)
        assert stored.status == SessionStatus.ACTIVE
        assert stored.refresh_token == winners[0].refresh_token
        again = service.refresh(winners[0].refresh_token)
        assert again.refresh_token != winners[0].refresh_token
    engine.dispose()


def test_logout_terminates_only_current_session(auth_service: AuthService):
    first = _register(auth_service)
    second = auth_service.login("alice@example.com", PASSWORD)

    assert auth_service.logout(first.token, client=CLIENT) is True

    assert _session_status(auth_service, first.session_id) == SessionStatus.TERMINATED
    assert _session_status(auth_service, second.session_id) == SessionStatus.ACTIVE
    _expect(ErrorCode.INVALID_TOKEN, auth_service.authenticate, f"Bearer {first.token}")
    _expect(ErrorCode.INVALID_TOKEN, auth_service.refresh, first.refresh_token)
    assert auth_service.authenticate(f"Bearer {second.token}").session_id == second.session_id


def test_logout_is_idempotent(auth_service: AuthService):
    result = _register(auth_service)

    assert auth_service.logout(result.token) is True
    assert auth_service.logout(result.token) is False
    assert auth_service.logout("unknown-token") is False
    _expect(ErrorCode.MISSING_TOKEN, auth_service.logout, None)


def test_authenticate_failures(auth_service: AuthService):
    _expect(ErrorCode.UNAUTHORIZED, auth_service.authenticate, None)
    _expect(ErrorCode.UNAUTHORIZED, auth_service.authenticate, "Basic abc")
    _expect(ErrorCode.INVALID_TOKEN, auth_service.authenticate, "Bearer not-a-token")


def test_authenticate_reports_expired_access_token(auth_service: AuthService, db_session):
    expired_tokens = TokenService(
        secret="unit-test-secret-key-at-least-32-bytes",
        access_ttl=timedelta(seconds=-5),
    )
    service = AuthService(db_session, tokens=expired_tokens, settings=auth_service.settings)
    result = _register(service)

    err = _expect(ErrorCode.TOKEN_EXPIRED, service.authenticate, f"Bearer {result.token}")
    assert err.status_code == 401


def test_authenticate_enforces_session_expiry(auth_service: AuthService):
    result = _register(auth_service)
    auth_service.sessions.update(result.session_id, {"expires_at": utc_now() - timedelta(seconds=1)})

    _expect(ErrorCode.INVALID_TOKEN, auth_service.authenticate, f"Bearer {result.token}")
    assert _session_status(auth_service, result.session_id) == SessionStatus.EXPIRED


def test_change_password_terminates_other_sessions(auth_service: AuthService):
    current = _register(auth_service)
    other_a = auth_service.login("alice@example.com", PASSWORD)
    other_b = auth_service.login("alice@example.com", PASSWORD)
    ctx = _ctx(auth_service, current)

    terminated = auth_service.change_password(ctx, PASSWORD, "N3w-Secret!", client=CLIENT)

    assert terminated == 2
    assert _session_status(auth_service, current.session_id) == SessionStatus.ACTIVE
    assert _session_status(auth_service, other_a.session_id) == SessionStatus.TERMINATED
    assert _session_status(auth_service, other_b.session_id) == SessionStatus.TERMINATED
    _expect(ErrorCode.INVALID_CREDENTIALS, auth_service.login, "alice@example.com", PASSWORD)
    assert auth_service.login("alice@example.com", "N3w-Secret!").token


def test_change_password_can_keep_other_sessions(auth_service: AuthService, monkeypatch):
    current = _register(auth_service)
    other = auth_service.login("alice@example.com", PASSWORD)
    monkeypatch.setattr(auth_service.settings, "auth_terminate_other_sessions_on_password_change", False)

    assert auth_service.change_password(_ctx(auth_service, current), PASSWORD, "N3w-Secret!") == 0
    assert _session_status(auth_service, other.session_id) == SessionStatus.ACTIVE


def test_change_password_failures(auth_service: AuthService):
    current = _register(auth_service)
    ctx = _ctx(auth_service, current)

    _expect(ErrorCode.INVALID_PASSWORD, auth_service.change_password, ctx, "wrong", "N3w-Secret!")
    _expect(ErrorCode.MISSING_FIELDS, auth_service.change_password, ctx, PASSWORD, "")
    _expect(ErrorCode.UNAUTHORIZED, auth_service.change_password, None, PASSWORD, "N3w-Secret!")


def test_list_sessions_marks_current_and_checks_owner(auth_service: AuthService):
    alice = _register(auth_service)
    alice_second = auth_service.login("alice@example.com", PASSWORD)
    bob = _register(auth_service, "bob@example.com", "Bob")
    alice_ctx = _ctx(auth_service, alice)

    sessions = auth_service.list_sessions(alice_ctx, alice.user["id"])

    assert [item["id"] for item in sessions] == [alice_second.session_id, alice.session_id]
    assert [item["current"] for item in sessions] == [False, True]
    assert all("refresh_token" not in item and "access_token" not in item for item in sessions)
    _expect(ErrorCode.FORBIDDEN, auth_service.list_sessions, alice_ctx, bob.user["id"])

    admin_ctx = _ctx(auth_service, _make_admin(auth_service))
    assert len(auth_service.list_sessions(admin_ctx, bob.user["id"])) == 1


def test_revoke_other_sessions_keeps_current(auth_service: AuthService):
    current = _register(auth_service)
    others = [auth_service.login("alice@example.com", PASSWORD) for _ in range(2)]
    ctx = _ctx(auth_service, current)

    assert auth_service.revoke_other_sessions(ctx, current.user["id"]) == 2
    assert _session_status(auth_service, current.session_id) == SessionStatus.ACTIVE
    assert all(_session_status(auth_service, item.session_id) == SessionStatus.TERMINATED for item in others)


def test_revoke_all_sessions_includes_current(auth_service: AuthService):
    current = _register(auth_service)
    auth_service.login("alice@example.com", PASSWORD)

    assert auth_service.revoke_all_sessions(_ctx(auth_service, current), current.user["id"]) == 2
    _expect(ErrorCode.INVALID_TOKEN, auth_service.authenticate, f"Bearer {current.token}")


def test_revoke_session_checks_ownership(auth_service: AuthService):
    alice = _register(auth_service)
    bob = _register(auth_service, "bob@example.com", "Bob")
    alice_ctx = _ctx(auth_service, alice)

    _expect(ErrorCode.FORBIDDEN, auth_service.revoke_session, alice_ctx, bob.session_id)
    _expect(ErrorCode.SESSION_NOT_FOUND, auth_service.revoke_session, alice_ctx, uuid4())

    admin_ctx = _ctx(auth_service, _make_admin(auth_service))
    assert auth_service.revoke_session(admin_ctx, bob.session_id) is True
    assert auth_service.revoke_session(admin_ctx, bob.session_id) is False


def test_set_user_status_suspends_and_terminates_sessions(auth_service: AuthService):
    bob = _register(auth_service, "bob@example.com", "Bob")
    admin_ctx = _ctx(auth_service, _make_admin(auth_service))

    user, terminated = auth_service.set_user_status(admin_ctx, bob.user["id"], "suspended")

    assert user["status"] == UserStatus.SUSPENDED
    assert terminated == 1
    _expect(ErrorCode.INVALID_TOKEN, auth_service.authenticate, f"Bearer {bob.token}")
    _expect(ErrorCode.ACCOUNT_INACTIVE, auth_service.login, "bob@example.com", PASSWORD)

    user, terminated = auth_service.set_user_status(admin_ctx, bob.user["id"], "active")
    assert (user["status"], terminated) == (UserStatus.ACTIVE, 0)
    assert auth_service.login("bob@example.com", PASSWORD).token


def test_set_user_status_requires_admin_and_valid_status(auth_service: AuthService):
    alice = _register(auth_service)
    bob = _register(auth_service, "bob@example.com", "Bob")
    alice_ctx = _ctx(auth_service, alice)
    admin_ctx = _ctx(auth_service, _make_admin(auth_service))

    _expect(ErrorCode.FORBIDDEN, auth_service.set_user_status, alice_ctx, bob.user["id"], "suspended")
    _expect(ErrorCode.VALIDATION, auth_service.set_user_status, admin_ctx, bob.user["id"], "deleted")
    _expect(ErrorCode.USER_NOT_FOUND, auth_service.set_user_status, admin_ctx, uuid4(), "inactive")


def test_list_activities_newest_first_with_filter(auth_service: AuthService):
    registered = _register(auth_service)
    login = auth_service.login("alice@example.com", PASSWORD)
    auth_service.logout(login.token)
    ctx = _ctx(auth_service, registered)

    items, total = auth_service.list_activities(ctx, registered.user["id"])
    assert total == 3
    assert [item["action"] for item in items] == ["logout", "login", "register"]

    items, total = auth_service.list_activities(ctx, registered.user["id"], action="login", page=1, page_size=1)
    assert total == 1
    assert items[0]["details"] == {"session_id": str(login.session_id)}


def test_cleanup_expired_sessions_requires_admin(auth_service: AuthService):
    alice = _register(auth_service)
    auth_service.sessions.update(alice.session_id, {"expires_at": utc_now() - timedelta(seconds=1)})
    admin_ctx = _ctx(auth_service, _make_admin(auth_service))

    alice_ctx = _ctx(auth_service, auth_service.login("alice@example.com", PASSWORD))

    _expect(ErrorCode.FORBIDDEN, auth_service.cleanup_expired_sessions, alice_ctx)
    assert auth_service.cleanup_expired_sessions(admin_ctx) == 1
    assert _session_status(auth_service, alice.session_id) == SessionStatus.EXPIRED


@pytest.mark.parametrize(
    ("actor", "owner", "role", "expected"),
    [
        (SimpleNamespace(id="u1", role="admin"), "u2", None, True),
        (SimpleNamespace(id="u1", role="admin"), None, "admin", True),
        (SimpleNamespace(id="u1", role="user"), "u1", None, True),
        (SimpleNamespace(id="u1", role="user"), "u2", None, False),
        (SimpleNamespace(id="u1", role="user"), None, "admin", False),
        (SimpleNamespace(id="u1", role="user"), None, None, True),
        (None, "u1", None, False),
    ],
)
def test_can_access(actor, owner, role, expected):
    assert can_access(actor, owner, role) is expected
