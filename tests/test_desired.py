from dataclasses import replace

from appop.desired import build_desired, optional_resources
from appop.hashing import fingerprint
from appop.models import ObjectKey
from appop.settings import settings


def _container(obj):
    return obj.spec["template"]["spec"]["containers"][0]


def test_primary_group_only_when_redis_disabled(application):
    objs = build_desired(application)
    assert [o.key for o in objs] == [
        ObjectKey("Service", "default", "test-app-podinfo"),
        ObjectKey("Deployment", "default", "test-app-podinfo"),
    ]


def test_redis_group_appended_when_enabled(application):
    objs = build_desired(replace(application, redis_enabled=True))
    assert [o.key for o in objs] == [
        ObjectKey("Service", "default", "test-app-podinfo"),
        ObjectKey("Deployment", "default", "test-app-podinfo"),
        ObjectKey("Service", "default", "test-app-redis"),
        ObjectKey("Deployment", "default", "test-app-redis"),
    ]
    assert [o.key for o in objs[2:]] == [o.key for o in optional_resources(application)]


def test_podinfo_deployment_follows_the_application(make_app):
    app = make_app(uid="u-1")
    _, deployment = build_desired(app)
    container = _container(deployment)

    assert deployment.spec["replicas"] == 2
    assert container["image"] == "repo:tag"
    assert container["resources"]["limits"]["memory"] == "500M"
    assert container["resources"]["requests"]["cpu"] == "250M"
    assert [(e["name"], e["value"]) for e in container["env"]] == [
        ("PODINFO_UI_COLOR", "#321903"),
        ("PODINFO_UI_MESSAGE", "hello world"),
        ("PODINFO_CACHE_SERVER", "tcp://test-app-redis:6379"),
    ]
    assert container["ports"] == [{"name": "podinfo", "containerPort": 9898, "protocol": "TCP"}]


def test_cache_server_is_referenced_even_without_redis(make_app):
    _, deployment = build_desired(make_app(redis_enabled=False))
    env = {e["name"]: e["value"] for e in _container(deployment)["env"]}
    assert env["PODINFO_CACHE_SERVER"] == "tcp://test-app-redis:6379"


def test_services_select_their_deployments(make_app):
    app = make_app(uid="u-1", redis_enabled=True)
    podinfo_svc, podinfo_dep, redis_svc, redis_dep = build_desired(app)

    assert podinfo_svc.spec["selector"] == podinfo_dep.spec["selector"]["matchLabels"]
    assert podinfo_svc.spec["type"] == "NodePort"
    assert podinfo_svc.spec["ports"][0]["port"] == 9898

    assert redis_svc.spec["selector"] == redis_dep.spec["selector"]["matchLabels"]
    assert redis_svc.spec["type"] == "ClusterIP"
    assert redis_svc.spec["ports"][0]["port"] == 6379
    assert redis_svc.spec["ports"][0]["targetPort"] == "redis"

    domain = settings.annotation_domain
    assert podinfo_dep.spec["selector"]["matchLabels"] == {
        f"{domain}/application-uid": "u-1",
        f"{domain}/component": "podinfo",
    }
    assert redis_dep.spec["selector"]["matchLabels"][f"{domain}/component"] == "redis"


def test_redis_deployment(make_app):
    redis_dep = optional_resources(make_app())[1]
    container = _container(redis_dep)
    assert container["image"] == settings.redis_image
    assert container["command"] == ["redis-server"]
    assert container["ports"] == [{"name": "redis", "containerPort": 6379, "protocol": "TCP"}]
    assert container["livenessProbe"]["tcpSocket"] == {"port": "redis"}
    assert container["readinessProbe"]["exec"] == {"command": ["redis-cli", "ping"]}


def test_build_is_pure_and_deterministic(application):
    snapshot = application.to_dict()
    first = [fingerprint(o) for o in build_desired(application)]
    second = [fingerprint(o) for o in build_desired(application)]
    assert first == second
    assert application.to_dict() == snapshot


def test_descriptors_carry_no_store_state(application):
    for obj in build_desired(replace(application, redis_enabled=True)):
        assert obj.uid == ""
        assert obj.resource_version == 0
        assert obj.annotations == {}
        assert obj.owner_links == []
