import math

import pytest

from appop.hashing import FingerprintError, canonicalize, fingerprint
from appop.models import OwnerLink, Resource


def _deployment(env=None, **spec):
    container = {
        "name": "podinfo",
        "image": "repo:tag",
        "env": env
        if env is not None
        else [
            {"name": "PODINFO_UI_COLOR", "value": "#321903"},
            {"name": "PODINFO_UI_MESSAGE", "value": "hello"},
        ],
    }
    body = {"replicas": 2, "template": {"spec": {"containers": [container]}}}
    body.update(spec)
    return Resource(kind="Deployment", namespace="default", name="test-app-podinfo", spec=body)


def test_fingerprint_is_deterministic():
    assert fingerprint(_deployment()) == fingerprint(_deployment())


def test_fingerprint_is_64_bit_decimal_token():
    token = fingerprint(_deployment())
    assert token.isdigit()
    assert 0 <= int(token) < 2**64


def test_list_order_does_not_matter():
    a = _deployment(env=[{"name": "A", "value": "1"}, {"name": "B", "value": "2"}])
    b = _deployment(env=[{"name": "B", "value": "2"}, {"name": "A", "value": "1"}])
    assert fingerprint(a) == fingerprint(b)


def test_mapping_key_order_does_not_matter():
    assert fingerprint({"a": 1, "b": {"c": 2, "d": 3}}) == fingerprint({"b": {"d": 3, "c": 2}, "a": 1})


@pytest.mark.parametrize(
    "explicit",
    [
        {"a": 1, "b": ""},
        {"a": 1, "b": 0},
        {"a": 1, "b": None},
        {"a": 1, "b": False},
        {"a": 1, "b": []},
        {"a": 1, "b": {}},
        {"a": 1, "b": {"c": "", "d": {"e": None}}},
    ],
)
def test_zero_values_hash_like_absent_fields(explicit):
    assert fingerprint(explicit) == fingerprint({"a": 1})


def test_real_changes_change_the_fingerprint():
    assert fingerprint(_deployment(replicas=2)) != fingerprint(_deployment(replicas=3))
    changed_env = _deployment(env=[{"name": "PODINFO_UI_COLOR", "value": "#000000"}])
    assert fingerprint(_deployment()) != fingerprint(changed_env)


def test_duplicates_in_lists_are_kept():
    assert fingerprint({"ports": [1, 1]}) != fingerprint({"ports": [1]})


def test_store_managed_fields_are_not_hashed():
    plain = _deployment()
    stored = _deployment()
    stored.annotations = {"app.appop.io/hash": "123", "team": "web"}
    stored.uid = "5f1c"
    stored.resource_version = 7
    assert fingerprint(plain) == fingerprint(stored)


def test_owner_links_are_hashed():
    owned = _deployment()
    owned.owner_links = [OwnerLink(kind="Application", namespace="default", name="test-app", uid="u-1")]
    assert fingerprint(owned) != fingerprint(_deployment())


def test_canonicalize_dataclasses():
    link = OwnerLink(kind="Application", namespace="default", name="a", uid="u")
    assert canonicalize(link) == {"kind": "Application", "namespace": "default", "name": "a", "uid": "u", "controller": True}


@pytest.mark.parametrize(
    "value",
    [
        {1: "non-string key"},
        {"when": object()},
        {"ratio": math.nan},
        {"ratio": math.inf},
    ],
)
def test_unhashable_values_raise(value):
    with pytest.raises(FingerprintError):
        fingerprint(value)
