from __future__ import annotations

from typing import Any

from .models import DEPLOYMENT_KIND, SERVICE_KIND, Application, Resource
from .settings import settings

PODINFO = "podinfo"
REDIS = "redis"

PODINFO_PORT = 9898
REDIS_PORT = 6379


def _name(app: Application, component: str) -> str:
    return f"{app.name}-{component}"


def labels(app: Application, component: str) -> dict[str, str]:
    domain = settings.annotation_domain
    return {
        f"{domain}/application-uid": app.uid,
        f"{domain}/component": component,
    }


def cache_server(app: Application) -> str:
    """Address of the Redis service, whether or not Redis is enabled right now."""
    return f"tcp://{_name(app, REDIS)}:{REDIS_PORT}"


def podinfo_deployment(app: Application) -> Resource:
    container: dict[str, Any] = {
        "name": PODINFO,
        "image": app.image,
        "command": ["./podinfo", f"--port={PODINFO_PORT}"],
        "resources": {
            "limits": {"memory": app.memory_limit},
            "requests": {"cpu": app.cpu_request},
        },
        "env": [
            {"name": "PODINFO_UI_COLOR", "value": app.ui_color},
            {"name": "PODINFO_UI_MESSAGE", "value": app.ui_message},
            {"name": "PODINFO_CACHE_SERVER", "value": cache_server(app)},
        ],
        "ports": [{"name": PODINFO, "containerPort": PODINFO_PORT, "protocol": "TCP"}],
    }
    return Resource(
        kind=DEPLOYMENT_KIND,
        namespace=app.namespace,
        name=_name(app, PODINFO),
        spec={
            "replicas": app.replica_count,
            "selector": {"matchLabels": labels(app, PODINFO)},
            "template": {
                "metadata": {"labels": labels(app, PODINFO)},
                "spec": {"containers": [container]},
            },
        },
    )


def podinfo_service(app: Application) -> Resource:
    return Resource(
        kind=SERVICE_KIND,
        namespace=app.namespace,
        name=_name(app, PODINFO),
        spec={
            "type": "NodePort",
            "selector": labels(app, PODINFO),
            "ports": [{"name": PODINFO, "port": PODINFO_PORT, "protocol": "TCP"}],
        },
    )


def redis_deployment(app: Application) -> Resource:
    probe_timing = {"initialDelaySeconds": 5, "timeoutSeconds": 5}
    container: dict[str, Any] = {
        "name": REDIS,
        "image": settings.redis_image,
        "command": ["redis-server"],
        "ports": [{"name": REDIS, "containerPort": REDIS_PORT, "protocol": "TCP"}],
        "livenessProbe": {"tcpSocket": {"port": REDIS}, **probe_timing},
        "readinessProbe": {"exec": {"command": ["redis-cli", "ping"]}, **probe_timing},
    }
    return Resource(
        kind=DEPLOYMENT_KIND,
        namespace=app.namespace,
        name=_name(app, REDIS),
        spec={
            "selector": {"matchLabels": labels(app, REDIS)},
            "template": {
                "metadata": {"labels": labels(app, REDIS)},
                "spec": {"containers": [container]},
            },
        },
    )


def redis_service(app: Application) -> Resource:
    return Resource(
        kind=SERVICE_KIND,
        namespace=app.namespace,
        name=_name(app, REDIS),
        spec={
            "type": "ClusterIP",
            "selector": labels(app, REDIS),
            "ports": [{"name": REDIS, "port": REDIS_PORT, "protocol": "TCP", "targetPort": REDIS}],
        },
    )


def primary_resources(app: Application) -> list[Resource]:
    return [podinfo_service(app), podinfo_deployment(app)]


def optional_resources(app: Application) -> list[Resource]:
    """The Redis group. Built regardless of the toggle so it can also be deleted."""
    return [redis_service(app), redis_deployment(app)]


def build_desired(app: Application) -> list[Resource]:
    objs = primary_resources(app)
    if app.redis_enabled:
        objs.extend(optional_resources(app))
    return objs
