from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Any

from fastapi import FastAPI, HTTPException, Query

from . import db
from .api_models import ApplicationRequest
from .controller import Controller
from .models import Application, validate_name
from .settings import settings
from .store import NotFound, ObjectStore, StoreError, open_store


def create_app(
    store: ObjectStore | None = None,
    controller: Controller | None = None,
    start_controller: bool | None = None,
) -> FastAPI:
    store = store or open_store(settings.store)
    controller = controller or Controller(store)
    if start_controller is None:
        start_controller = settings.start_controller

    @asynccontextmanager
    async def lifespan(_: FastAPI):
        db.init_db()
        db.log_event("INFO", f"API started (store={type(store).__name__})")
        if start_controller:
            controller.start()
        else:
            controller.watch()
        try:
            yield
        finally:
            if start_controller:
                controller.stop()

    app = FastAPI(title="Application Operator", lifespan=lifespan)
    app.state.store = store
    app.state.controller = controller

    def _validate(namespace: str, name: str) -> None:
        try:
            validate_name(namespace, "namespace")
            validate_name(name, "name")
        except ValueError as e:
            raise HTTPException(status_code=422, detail=str(e))

    def _get(namespace: str, name: str) -> Application:
        try:
            return store.get_application(namespace, name)
        except NotFound:
            raise HTTPException(status_code=404, detail=f"Application {namespace}/{name} not found")
        except StoreError as e:
            raise HTTPException(status_code=503, detail=str(e))

    def _view(a: Application) -> dict[str, Any]:
        st = controller.runtime.status(a.key)
        return {**a.to_dict(), "status": st.to_dict() if st else None}

    @app.get("/health")
    def health() -> dict[str, str]:
        return {"status": "healthy"}

    @app.get("/applications")
    def list_applications() -> list[dict[str, Any]]:
        return [_view(a) for a in store.list_applications()]

    @app.put("/applications/{namespace}/{name}")
    def put_application(namespace: str, name: str, req: ApplicationRequest) -> dict[str, Any]:
        _validate(namespace, name)
        try:
            stored = store.put_application(Application(namespace=namespace, name=name, **req.model_dump()))
        except StoreError as e:
            raise HTTPException(status_code=503, detail=str(e))
        db.log_event("INFO", f"Applied generation {stored.generation}", application=f"{namespace}/{name}")
        return _view(stored)

    @app.get("/applications/{namespace}/{name}")
    def get_application(namespace: str, name: str) -> dict[str, Any]:
        return _view(_get(namespace, name))

    @app.delete("/applications/{namespace}/{name}")
    def delete_application(namespace: str, name: str) -> dict[str, Any]:
        try:
            store.delete_application(namespace, name)
        except NotFound:
            raise HTTPException(status_code=404, detail=f"Application {namespace}/{name} not found")
        db.log_event("INFO", "Deleted application and its dependents", application=f"{namespace}/{name}")
        return {"deleted": f"{namespace}/{name}"}

    @app.post("/applications/{namespace}/{name}/reconcile")
    def reconcile(namespace: str, name: str) -> dict[str, Any]:
        _get(namespace, name)
        try:
            outcome = controller.reconcile_now(namespace, name)
        except StoreError as e:
            raise HTTPException(status_code=503, detail=f"{type(e).__name__}: {e}")
        except Exception as e:
            raise HTTPException(status_code=500, detail=f"{type(e).__name__}: {e}")
        return outcome.to_dict()

    @app.get("/objects")
    def list_objects(
        kind: str | None = None,
        namespace: str | None = None,
        owner_uid: str | None = None,
    ) -> list[dict[str, Any]]:
        return [o.to_dict() for o in store.list(kind=kind, namespace=namespace, owner_uid=owner_uid)]

    @app.get("/events")
    def events(limit: int = Query(100, ge=1, le=1000), application: str | None = None) -> list[dict[str, Any]]:
        return db.latest_events(limit=limit, application=application)

    return app
