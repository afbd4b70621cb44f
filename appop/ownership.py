from __future__ import annotations

from .models import APPLICATION_KIND, Application, OwnerLink, Resource


class BindingError(Exception):
    pass


def set_controller_reference(parent: Application, child: Resource) -> None:
    """Make ``parent`` the single controller owner of ``child``.

    Must be called before the child is persisted. Raises BindingError if the
    parent has no identity yet or the child is controlled by someone else.
    """
    if not parent.uid or not parent.name:
        raise BindingError(f"{APPLICATION_KIND}/{parent.namespace}/{parent.name} has no uid; cannot own {child.key}")
    if child.namespace != parent.namespace:
        raise BindingError(f"cross-namespace owner for {child.key} is not allowed")

    link = OwnerLink(kind=APPLICATION_KIND, namespace=parent.namespace, name=parent.name, uid=parent.uid)
    current = child.controller_link()
    if current is not None and current.uid != parent.uid:
        raise BindingError(f"{child.key} is already controlled by {current.kind}/{current.name} ({current.uid})")

    others = [x for x in child.owner_links if x.uid != parent.uid and not x.controller]
    child.owner_links = others + [link]
