import json
import types

import pytest

from appop import cli


class _Resp:
    def __init__(self, payload, ok=True):
        self._payload = payload
        self.ok = ok

    def json(self):
        return self._payload


@pytest.fixture
def calls(monkeypatch):
    recorded = []

    def _verb(name):
        def call(url, **kwargs):
            recorded.append((name, url, kwargs))
            return _Resp({"url": url})

        return call

    fake = types.SimpleNamespace(get=_verb("get"), put=_verb("put"), post=_verb("post"), delete=_verb("delete"))
    monkeypatch.setattr(cli, "requests", fake)
    return recorded


def test_apply_builds_the_payload(calls, capsys):
    rc = cli.main(
        [
            "--api",
            "http://api:8000/",
            "apply",
            "web/shop",
            "--replicas",
            "3",
            "--memory-limit",
            "500M",
            "--image",
            "registry:5000/podinfo:6.5.0",
            "--redis",
        ]
    )
    assert rc == 0
    verb, url, kwargs = calls[0]
    assert (verb, url) == ("put", "http://api:8000/applications/web/shop")
    assert kwargs["json"]["replica_count"] == 3
    assert kwargs["json"]["image_repository"] == "registry:5000/podinfo"
    assert kwargs["json"]["image_tag"] == "6.5.0"
    assert kwargs["json"]["redis_enabled"] is True
    assert json.loads(capsys.readouterr().out) == {"url": "http://api:8000/applications/web/shop"}


def test_image_without_tag_defaults_to_latest(calls):
    cli.main(["apply", "shop", "--image", "registry:5000/podinfo"])
    payload = calls[0][2]["json"]
    assert calls[0][1] == "http://localhost:8000/applications/default/shop"
    assert (payload["image_repository"], payload["image_tag"]) == ("registry:5000/podinfo", "latest")
    assert payload["redis_enabled"] is False


@pytest.mark.parametrize(
    "argv,verb,path",
    [
        (["applications"], "get", "/applications"),
        (["get", "web/shop"], "get", "/applications/web/shop"),
        (["delete", "shop"], "delete", "/applications/default/shop"),
        (["reconcile", "web/shop"], "post", "/applications/web/shop/reconcile"),
        (["objects", "--kind", "Service"], "get", "/objects"),
        (["events", "--limit", "5"], "get", "/events"),
    ],
)
def test_commands_hit_the_api(calls, argv, verb, path):
    assert cli.main(argv) == 0
    assert calls[0][0] == verb
    assert calls[0][1] == f"http://localhost:8000{path}"


def test_failed_request_sets_exit_code(monkeypatch):
    fake = types.SimpleNamespace(post=lambda url, **kw: _Resp({"detail": "boom"}, ok=False))
    monkeypatch.setattr(cli, "requests", fake)
    assert cli.main(["reconcile", "shop"]) == 1
