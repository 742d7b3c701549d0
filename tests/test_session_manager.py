from __future__ import annotations

import asyncio
import json
import sqlite3

import pytest

from eprometna.auth import SessionContext
from eprometna.credential_store import CredentialStore
from eprometna.errors import (
    AuthError,
    CredentialStoreError,
    DeviceNotRegisteredError,
    SessionBusyError,
)
from eprometna.models.enums import AuthErrorCode, CredentialKey, SessionPhase, UserRole
from eprometna.services.session_manager import SessionManager


@pytest.fixture()
def officer_token(make_token):
    return make_token(
        id="officer-7", firstName="Ivana", lastName="Horvat", role="POLICE", email="ivana@mup.hr",
    )


@pytest.fixture()
def registered(backend, session_manager, officer_token):
    """Queue a successful registration response and return a runner."""
    backend.add(
        "POST", "/auth/police/register",
        json={"accessToken": "access-1", "refreshToken": "refresh-1", "deviceToken": officer_token},
    )

    async def _run():
        return await session_manager.register_device("ONE-TIME-42")

    return _run


# ---------------------------------------------------------------------------
# Registration
# ---------------------------------------------------------------------------

async def test_register_populates_session_and_store(registered, session_manager, store, officer_token):
    session = await registered()

    assert session.device_token == officer_token
    assert session.access_token == "access-1"
    assert session.refresh_token == "refresh-1"
    assert session.user_data.full_name == "Ivana Horvat"
    assert session.status.phase is SessionPhase.IDLE
    assert store.get(CredentialKey.DEVICE_TOKEN) == officer_token
    assert store.get(CredentialKey.REFRESH_TOKEN) == "refresh-1"
    assert json.loads(store.get(CredentialKey.USER_DATA))["firstName"] == "Ivana"


async def test_register_makes_device_authenticated(registered, session_manager):
    assert session_manager.is_authenticated() is False

    await registered()

    assert session_manager.is_authenticated() is True
    assert session_manager.is_device_registered() is session_manager.is_authenticated()


async def test_register_with_credentials_persists_tokens(backend, session_manager, store, officer_token):
    backend.add(
        "POST", "/auth/user/register",
        json={"accessToken": "a", "refreshToken": "r", "deviceToken": officer_token},
    )

    session = await session_manager.register_with_credentials("ivana@mup.hr", "Lozinka1!")

    assert session.user_data.id == "officer-7"
    assert store.get(CredentialKey.ACCESS_TOKEN) == "a"


async def test_failed_register_keeps_prior_session(registered, backend, session_manager, officer_token):
    await registered()
    backend.routes.clear()
    backend.add("POST", "/auth/police/register", status=400, json={"message": "Kod je iskorišten"})

    with pytest.raises(AuthError, match="Kod je iskorišten"):
        await session_manager.register_device("OTHER")

    session = session_manager.session
    assert session.device_token == officer_token
    assert session.access_token == "access-1"
    assert session.status.phase is SessionPhase.ERROR
    assert session.status.message == "Kod je iskorišten"


async def test_failed_register_persists_nothing(backend, session_manager, store):
    backend.add("POST", "/auth/police/register", json={"accessToken": "a", "refreshToken": "r"})

    with pytest.raises(AuthError):
        await session_manager.register_device("code")

    assert all(store.get(key) is None for key in CredentialKey)
    assert session_manager.session.device_token is None


async def test_register_storage_failure_is_reported(registered, session_manager, store, monkeypatch):
    def broken(entries):
        raise sqlite3.OperationalError("database is locked")

    monkeypatch.setattr(store, "write_many", broken)

    with pytest.raises(AuthError) as excinfo:
        await registered()

    assert excinfo.value.code is AuthErrorCode.STORAGE_ERROR
    assert session_manager.session.device_token is None
    assert session_manager.session.status.message == "Could not save credentials on this device."


async def test_register_with_opaque_device_token(backend, session_manager, store):
    store.put(CredentialKey.USER_DATA, '{"id": "stale"}')
    backend.add(
        "POST", "/auth/police/register",
        json={"accessToken": "a", "refreshToken": "r", "deviceToken": "opaque-device-token"},
    )

    session = await session_manager.register_device("code")

    assert session.device_token == "opaque-device-token"
    assert session.user_data is None
    assert store.get(CredentialKey.USER_DATA) is None
    assert session_manager.get_user_role() is None


# ---------------------------------------------------------------------------
# Login
# ---------------------------------------------------------------------------

async def test_login_without_registration_sends_nothing(backend, session_manager):
    backend.add("POST", "/auth/login", json={"accessToken": "a", "refreshToken": "r"})

    with pytest.raises(DeviceNotRegisteredError) as excinfo:
        await session_manager.login("ivana@mup.hr", "pw")

    assert excinfo.value.code is AuthErrorCode.DEVICE_NOT_REGISTERED
    assert backend.calls("POST", "/auth/login") == []
    status = session_manager.session.status
    assert status.phase is SessionPhase.ERROR
    assert status.message == "Device not registered. Please register first."


async def test_login_after_registration_reuses_device_token(
    registered, backend, session_manager, store, officer_token,
):
    await registered()
    backend.add("POST", "/auth/login", json={"accessToken": "access-2", "refreshToken": "refresh-2"})

    session = await session_manager.login("ivana@mup.hr", "Lozinka1!")

    assert session.device_token == officer_token
    assert session.access_token == "access-2"
    assert store.get(CredentialKey.ACCESS_TOKEN) == "access-2"
    assert store.get(CredentialKey.DEVICE_TOKEN) == officer_token
    assert session.user_data.email == "ivana@mup.hr"
    assert session.status.phase is SessionPhase.IDLE


async def test_rejected_login_keeps_stored_tokens(registered, backend, session_manager, store):
    await registered()
    backend.add("POST", "/auth/login", status=401, json={"message": "Pogrešna lozinka"})

    with pytest.raises(AuthError) as excinfo:
        await session_manager.login("ivana@mup.hr", "wrong")

    assert excinfo.value.code is AuthErrorCode.SERVER_REJECTED
    assert store.get(CredentialKey.ACCESS_TOKEN) == "access-1"
    assert session_manager.session.status.message == "Pogrešna lozinka"


async def test_login_storage_read_failure(session_manager, store, monkeypatch):
    def broken(key):
        raise CredentialStoreError("tampered")

    monkeypatch.setattr(store, "get", broken)

    with pytest.raises(AuthError) as excinfo:
        await session_manager.login("ivana@mup.hr", "pw")

    assert excinfo.value.code is AuthErrorCode.STORAGE_ERROR
    assert excinfo.value.message == "Could not read credentials on this device."


# ---------------------------------------------------------------------------
# Concurrency
# ---------------------------------------------------------------------------

async def test_second_sign_in_while_loading_is_rejected(backend, context, session_manager):
    context.mark_loading()

    with pytest.raises(SessionBusyError):
        await session_manager.register_device("code")
    with pytest.raises(SessionBusyError):
        await session_manager.login("ivana@mup.hr", "pw")

    assert context.status.phase is SessionPhase.LOADING
    assert backend.requests == []


# ---------------------------------------------------------------------------
# Logout
# ---------------------------------------------------------------------------

async def test_logout_clears_everything_even_when_server_fails(registered, backend, session_manager, store):
    await registered()
    backend.add("POST", "/auth/logout-device", status=500)

    await session_manager.logout()

    session = session_manager.session
    assert (session.device_token, session.access_token, session.user_data) == (None, None, None)
    assert all(store.get(key) is None for key in CredentialKey)
    assert session_manager.is_authenticated() is False


async def test_logout_sends_stored_access_token(registered, backend, session_manager):
    await registered()
    backend.add("POST", "/auth/logout-device", status=204)

    await session_manager.logout()

    [request] = backend.calls("POST", "/auth/logout-device")
    assert request.headers["authorization"] == "Bearer access-1"


async def test_logout_twice_is_safe(session_manager):
    await session_manager.logout()
    await session_manager.logout()

    assert session_manager.session.device_token is None


async def test_logout_clears_memory_when_store_fails(registered, session_manager, store, monkeypatch):
    await registered()

    def broken():
        raise sqlite3.OperationalError("disk I/O error")

    monkeypatch.setattr(store, "clear", broken)

    with pytest.raises(sqlite3.OperationalError):
        await session_manager.logout()

    assert session_manager.session.device_token is None


# ---------------------------------------------------------------------------
# Restore and queries
# ---------------------------------------------------------------------------

async def test_restore_session_loads_persisted_credentials(
    registered, session_manager, store, auth_gateway, logger, officer_token,
):
    await registered()

    fresh = SessionManager(context=SessionContext(), store=store, gateway=auth_gateway, logger=logger)

    assert fresh.restore_session() is True
    session = fresh.session
    assert session.device_token == officer_token
    assert session.refresh_token == "refresh-1"
    assert session.user_data.last_name == "Horvat"


def test_restore_session_without_device_token(session_manager):
    assert session_manager.restore_session() is False
    assert session_manager.session.device_token is None


def test_restore_session_falls_back_to_token_claims(session_manager, store, officer_token):
    store.write_many({
        CredentialKey.DEVICE_TOKEN: officer_token,
        CredentialKey.USER_DATA: "{not json",
    })

    assert session_manager.restore_session() is True
    assert session_manager.session.user_data.id == "officer-7"


async def test_get_user_role_is_case_insensitive(registered, session_manager):
    assert session_manager.get_user_role() is None

    await registered()

    assert session_manager.get_user_role() is UserRole.POLICE


def test_is_authenticated_reports_false_on_storage_error(session_manager, store, monkeypatch):
    def broken(key):
        raise sqlite3.DatabaseError("file is not a database")

    monkeypatch.setattr(store, "get", broken)

    assert session_manager.is_authenticated() is False
    assert session_manager.is_device_registered() is False


# ---------------------------------------------------------------------------
# Cancellation and unreadable stores
# ---------------------------------------------------------------------------

async def test_cancelled_register_releases_the_session(backend, session_manager, officer_token, store):
    entered = asyncio.Event()

    async def hang(request):
        entered.set()
        await asyncio.Event().wait()

    backend.add_handler("POST", "/auth/police/register", hang)

    task = asyncio.create_task(session_manager.register_device("ONE-TIME-42"))
    await entered.wait()
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task

    assert session_manager.session.status.phase is SessionPhase.IDLE
    assert store.get(CredentialKey.DEVICE_TOKEN) is None

    backend.routes.clear()
    backend.add(
        "POST", "/auth/police/register",
        json={"accessToken": "a", "refreshToken": "r", "deviceToken": officer_token},
    )
    session = await session_manager.register_device("ONE-TIME-43")
    assert session.device_token == officer_token


async def test_cancelled_login_releases_the_session(registered, backend, session_manager):
    await registered()
    entered = asyncio.Event()

    async def hang(request):
        entered.set()
        await asyncio.Event().wait()

    backend.add_handler("POST", "/auth/login", hang)

    task = asyncio.create_task(session_manager.login("ivana@mup.hr", "pw"))
    await entered.wait()
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task

    assert session_manager.session.status.phase is SessionPhase.IDLE
    assert session_manager.session.access_token == "access-1"


async def test_unverifiable_store_restores_nothing_and_logout_wipes_it(
    registered, db, logger, tmp_path, auth_gateway, backend,
):
    await registered()
    moved = CredentialStore(db=db, logger=logger, salt_path=tmp_path / "other_salt", kdf_iterations=1_000)
    manager = SessionManager(context=SessionContext(), store=moved, gateway=auth_gateway, logger=logger)

    assert manager.restore_session() is False
    assert manager.is_device_registered() is False
    assert manager.session.device_token is None

    backend.add("POST", "/auth/logout-device", status=204)
    await manager.logout()

    count = db.sqlite.execute("SELECT COUNT(*) FROM secure_store").fetchone()[0]
    assert count == 0
