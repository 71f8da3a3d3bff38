import json
import os
import threading
from datetime import timedelta

import pytest

from conftest import make_bundle
from scrolldigest.errors import CorruptError, NotFoundError
from scrolldigest.models import Credential, CredentialBundle, utcnow
from scrolldigest.session import SessionStore


@pytest.fixture
def store(tmp_path):
    return SessionStore(str(tmp_path / "data" / "cookies.json"))


def test_save_load(store, bundle):
    store.save(bundle)
    loaded = store.load()
    assert [c.name for c in loaded.credentials] == [c.name for c in bundle.credentials]
    assert loaded.get("auth_token").value == "tok"
    assert loaded.get("ct0").http_only is False
    assert store.is_valid()


def test_saved_file_is_private(store, bundle):
    store.save(bundle)
    assert (os.stat(store.path).st_mode & 0o777) == 0o600
    # no temp files left behind
    assert [p.name for p in store.path.parent.iterdir()] == ["cookies.json"]


def test_validity_boundary():
    now = utcnow()
    b = make_bundle(expires_in=3600)
    exp = b.expires_at()
    assert b.is_valid(now=exp - timedelta(seconds=1))
    assert not b.is_valid(now=exp)
    assert not b.is_valid(now=exp + timedelta(seconds=1))
    assert exp > now


def test_expiry_is_earliest_of_auth_cookies():
    b = make_bundle(expires_in=3600)
    assert b.expires_at() == b.get("auth_token").expires_at()


def test_missing_ct0_is_invalid(store):
    b = make_bundle(ct0=None)
    store.save(b)
    assert not store.is_valid()


def test_empty_auth_token_is_invalid():
    assert not make_bundle(auth="").is_valid()


def test_expired_is_invalid(store):
    store.save(make_bundle(expires_in=-10))
    assert not store.is_valid()


def test_session_cookies_without_expiry_are_invalid():
    b = CredentialBundle(
        credentials=[Credential(name="auth_token", value="a"), Credential(name="ct0", value="b")]
    )
    assert b.expires_at() is None
    assert not b.is_valid()


def test_session_only_ct0_makes_bundle_invalid():
    b = make_bundle(expires_in=3600)
    b.get("ct0").expires = -1
    assert b.expires_at() is not None
    assert not b.is_valid()


def test_load_missing(store):
    with pytest.raises(NotFoundError):
        store.load()
    assert not store.is_valid()


def test_load_corrupt(store):
    store.path.parent.mkdir(parents=True)
    store.path.write_text("{not json")
    with pytest.raises(CorruptError):
        store.load()
    assert not store.is_valid()


def test_load_wrong_shape(store):
    store.path.parent.mkdir(parents=True)
    store.path.write_text(json.dumps({"hello": "world"}))
    with pytest.raises(CorruptError):
        store.load()


@pytest.mark.parametrize("payload", [[], "x", 42, None, {"cookies": ["x"]}])
def test_load_json_that_is_not_a_bundle(store, payload):
    store.path.parent.mkdir(parents=True)
    store.path.write_text(json.dumps(payload))
    with pytest.raises(CorruptError):
        store.load()
    assert not store.is_valid()


def test_readers_never_see_a_partial_write(store, bundle):
    store.save(bundle)
    # separate instances so the in-process lock does not serialise them
    writer = SessionStore(str(store.path))
    reader = SessionStore(str(store.path))
    stop = threading.Event()
    problems = []

    def write():
        while not stop.is_set():
            writer.save(make_bundle(expires_in=3600))

    def read():
        for _ in range(300):
            try:
                reader.load()
            except CorruptError as e:
                problems.append(e)
            if not reader.is_valid():
                problems.append("invalid")

    t = threading.Thread(target=write)
    t.start()
    try:
        read()
    finally:
        stop.set()
        t.join()
    assert problems == []


def test_clear(store, bundle):
    store.save(bundle)
    store.clear()
    assert not store.path.exists()
    with pytest.raises(NotFoundError):
        store.clear()


def test_scoped_credentials(store, bundle):
    store.save(bundle)
    names = sorted(c.name for c in store.scoped_credentials("x.com"))
    assert names == ["auth_token", "ct0"]
    assert [c.name for c in store.scoped_credentials("twitter.com")] == ["guest_id"]


def test_domain_suffix_does_not_match_lookalikes():
    c = Credential(name="a", value="b", domain="notx.com")
    assert not c.matches_domain("x.com")
    assert Credential(name="a", value="b", domain=".api.x.com").matches_domain("x.com")


def test_accepts_browser_cookie_keys():
    c = Credential.from_dict(
        {"name": "ct0", "value": "v", "domain": ".x.com", "httpOnly": True, "sameSite": "None", "expires": 10}
    )
    assert c.http_only is True
    assert c.same_site == "None"
    assert c.expires == 10.0
