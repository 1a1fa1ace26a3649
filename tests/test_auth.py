from types import SimpleNamespace

from conftest import FakeBackend
from shop_analytics.auth import AuthSession


def test_sign_in_success():
    backend = FakeBackend()
    auth = AuthSession(backend)
    auth.start()
    assert not auth.signed_in
    assert auth.sign_in(" mario@example.com ", "secret") is None
    assert auth.signed_in
    assert auth.user_id == "user-1"
    assert ("sign_in", "mario@example.com") in backend.calls


def test_sign_in_error_message_is_returned():
    auth = AuthSession(FakeBackend())
    assert auth.sign_in("mario@example.com", "wrong") == "Invalid login credentials"
    assert not auth.signed_in


def test_sign_in_requires_both_fields():
    backend = FakeBackend()
    auth = AuthSession(backend)
    assert auth.sign_in("", "secret") == "Inserisci email e password."
    assert auth.sign_in("mario@example.com", "") == "Inserisci email e password."
    assert backend.calls == []


def test_start_restores_existing_session():
    backend = FakeBackend()
    backend.session = SimpleNamespace(user=SimpleNamespace(id="user-9"))
    auth = AuthSession(backend)
    auth.start()
    assert auth.user_id == "user-9"


def test_start_survives_session_error():
    backend = FakeBackend()
    backend.fail["get_session"] = "network down"
    auth = AuthSession(backend)
    auth.start()
    assert not auth.signed_in
    assert len(backend.auth_callbacks) == 1


def test_auth_state_changes_reach_listeners():
    backend = FakeBackend()
    auth = AuthSession(backend)
    auth.start()
    auth.start()
    assert len(backend.auth_callbacks) == 1

    seen = []
    unsubscribe = auth.subscribe(lambda event, session: seen.append(event))
    backend.emit("SIGNED_IN", SimpleNamespace(user=SimpleNamespace(id="user-2")))
    assert auth.user_id == "user-2"
    backend.emit("SIGNED_OUT", None)
    assert not auth.signed_in
    unsubscribe()
    backend.emit("SIGNED_IN", SimpleNamespace(user=SimpleNamespace(id="user-3")))
    assert seen == ["SIGNED_IN", "SIGNED_OUT"]


def test_sign_out_clears_session_even_on_error():
    backend = FakeBackend()
    auth = AuthSession(backend)
    auth.sign_in("mario@example.com", "secret")
    backend.fail["sign_out"] = "already signed out"
    auth.sign_out()
    assert not auth.signed_in


def test_close_unsubscribes():
    backend = FakeBackend()
    auth = AuthSession(backend)
    auth.start()
    auth.close()
    assert backend.auth_callbacks == []
