"""Application operator (appop).

Converges the dependent resources of an ``Application`` intent object:
 - a PodInfo Deployment and its Service
 - an optional Redis Deployment and Service, toggled by ``redis_enabled``

Writes are driven by a content hash stored on every dependent object, so a
pass that finds nothing to change issues no writes at all.
"""
