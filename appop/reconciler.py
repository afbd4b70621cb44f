from __future__ import annotations

import time

from . import db
from .applier import apply
from .desired import build_desired, optional_resources
from .models import ReconcileOutcome
from .ownership import set_controller_reference
from .store import NotFound, ObjectStore


class ReconcileCancelled(Exception):
    pass


class Reconciler:
    """Runs one convergence pass for one Application.

    A pass builds the desired set, applies each object, deletes the Redis
    group when it is disabled, then re-reads the Application. Errors abort
    the pass and are raised to the caller, who retries the whole pass later.
    Passes for the same Application must not overlap; the Controller
    guarantees that.
    """

    def __init__(self, store: ObjectStore, hash_annotation: str | None = None):
        self.store = store
        self.hash_annotation = hash_annotation

    def reconcile_once(self, namespace: str, name: str, deadline: float | None = None) -> ReconcileOutcome:
        """``deadline`` is a time.monotonic() value checked between steps."""
        ref = f"{namespace}/{name}"
        outcome = ReconcileOutcome(namespace=namespace, name=name)
        try:
            app = self.store.get_application(namespace, name)
        except NotFound:
            # Deleted upstream; dependents go with it through cascade delete.
            outcome.state = "gone"
            return outcome

        try:
            for obj in build_desired(app):
                self._checkpoint(deadline, ref)
                set_controller_reference(app, obj)
                outcome.record(apply(self.store, obj, self.hash_annotation), obj.key)

            if not app.redis_enabled:
                for obj in optional_resources(app):
                    self._checkpoint(deadline, ref)
                    try:
                        self.store.delete(*obj.key)
                    except NotFound:
                        continue
                    outcome.deleted.append(obj.key)
                    db.log_event("INFO", f"Deleted {obj.key}", application=ref, kind=obj.kind)

            self._checkpoint(deadline, ref)
            try:
                self.store.get_application(namespace, name)
            except NotFound:
                outcome.state = "gone"
        except Exception as e:
            db.log_event("ERROR", f"Reconcile failed: {type(e).__name__}: {e}", application=ref)
            raise

        if outcome.writes:
            db.log_event(
                "INFO",
                f"Converged generation {app.generation}: {len(outcome.created)} created, "
                f"{len(outcome.updated)} updated, {len(outcome.deleted)} deleted",
                application=ref,
            )
        return outcome

    @staticmethod
    def _checkpoint(deadline: float | None, ref: str) -> None:
        if deadline is not None and time.monotonic() >= deadline:
            raise ReconcileCancelled(f"deadline passed while reconciling {ref}")
