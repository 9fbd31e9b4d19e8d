import logging
from datetime import date
from typing import Optional

from fastapi import Depends, FastAPI, HTTPException, Request, Response

from categories import CATEGORY_DESCRIPTORS
from models import TemplateKind
from periods import Period, resolve_period
from recurrence import local_today
from scheduler import SchedulerManager
from schemas import TemplateIn
from services import (
    AnalyticsService,
    RecurringTemplateService,
    TransactionFilters,
    TransactionService,
)
from store import DocumentStore, NotFound, SQLDocumentStore, StoreError


logger = logging.getLogger(__name__)

app = FastAPI(title="Recurring Ledger")

document_store = SQLDocumentStore()
scheduler_manager = SchedulerManager(document_store)


def get_store() -> DocumentStore:
    return document_store


@app.on_event("startup")
def startup_event():
    scheduler_manager.start()


@app.on_event("shutdown")
def shutdown_event():
    scheduler_manager.stop()


def period_from_request(request: Request) -> Period:
    period_slug = request.query_params.get("period")
    start = request.query_params.get("start")
    end = request.query_params.get("end")
    try:
        return resolve_period(period_slug, start, end, today=local_today())
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


def filters_from_request(request: Request) -> TransactionFilters:
    return TransactionFilters(
        query=request.query_params.get("q") or None,
        category=request.query_params.get("category") or None,
        bank=request.query_params.get("bank") or None,
    )


def _flag(request: Request, name: str, default: bool) -> bool:
    raw = request.query_params.get(name)
    if raw is None:
        return default
    return raw.lower() in {"1", "true", "yes", "on"}


def _store_failure(exc: StoreError) -> HTTPException:
    if isinstance(exc, NotFound):
        return HTTPException(status_code=404, detail=str(exc))
    logger.exception("document store request failed")
    return HTTPException(status_code=502, detail="Document store unavailable")


@app.get("/api/categories")
def api_categories():
    return [
        {
            "id": descriptor.category.value,
            "label": descriptor.label,
            "icon": descriptor.icon,
            "color": descriptor.color,
        }
        for descriptor in CATEGORY_DESCRIPTORS.values()
    ]


@app.get("/api/templates/statistics")
def api_template_statistics(store: DocumentStore = Depends(get_store)):
    try:
        return RecurringTemplateService(store).get_statistics()
    except StoreError as exc:
        raise _store_failure(exc) from exc


@app.get("/api/templates/{kind}")
def api_list_templates(kind: TemplateKind, store: DocumentStore = Depends(get_store)):
    try:
        templates = RecurringTemplateService(store).list(kind)
    except StoreError as exc:
        raise _store_failure(exc) from exc
    return [template.model_dump(mode="json") for template in templates]


@app.post("/api/templates/{kind}", status_code=201)
def api_create_template(
    kind: TemplateKind, data: TemplateIn, store: DocumentStore = Depends(get_store)
):
    try:
        template = RecurringTemplateService(store).create(kind, data)
    except StoreError as exc:
        raise _store_failure(exc) from exc
    return template.model_dump(mode="json")


@app.post("/api/templates/{kind}/{template_id}/toggle")
def api_toggle_template(
    kind: TemplateKind,
    template_id: str,
    request: Request,
    store: DocumentStore = Depends(get_store),
):
    is_active = _flag(request, "active", True)
    try:
        template = RecurringTemplateService(store).toggle(kind, template_id, is_active)
    except ValueError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except StoreError as exc:
        raise _store_failure(exc) from exc
    return template.model_dump(mode="json")


@app.delete("/api/templates/{kind}/{template_id}")
def api_delete_template(
    kind: TemplateKind, template_id: str, store: DocumentStore = Depends(get_store)
):
    try:
        RecurringTemplateService(store).delete(kind, template_id)
    except ValueError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except StoreError as exc:
        raise _store_failure(exc) from exc
    return Response(status_code=204)


@app.get("/api/templates/{kind}/{template_id}/projection")
def api_template_projection(
    kind: TemplateKind,
    template_id: str,
    request: Request,
    store: DocumentStore = Depends(get_store),
):
    period = period_from_request(request)
    try:
        items = RecurringTemplateService(store).projection(kind, template_id, period)
    except ValueError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except StoreError as exc:
        raise _store_failure(exc) from exc
    return [item.model_dump(mode="json") for item in items]


@app.post("/api/catch-up")
def api_catch_up(store: DocumentStore = Depends(get_store)):
    try:
        changed = RecurringTemplateService(store).catch_up()
    except StoreError as exc:
        raise _store_failure(exc) from exc
    return {"changed": changed}


@app.post("/api/recurring-expenses/{template_id}/mark-paid")
def api_mark_paid(
    template_id: str,
    request: Request,
    store: DocumentStore = Depends(get_store),
):
    due_param = request.query_params.get("due_date")
    due_date: Optional[date] = None
    if due_param:
        try:
            due_date = date.fromisoformat(due_param)
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
    try:
        result = RecurringTemplateService(store).mark_paid(template_id, due_date)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except StoreError as exc:
        raise _store_failure(exc) from exc
    return result.model_dump(mode="json")


@app.get("/api/transactions")
def api_transactions(request: Request, store: DocumentStore = Depends(get_store)):
    period = period_from_request(request)
    filters = filters_from_request(request)
    include_projected = _flag(request, "projected", True)
    try:
        # Every load first materializes anything that fell due since the last one.
        changed = RecurringTemplateService(store).catch_up()
        items = TransactionService(store).feed(
            period, filters, include_projected=include_projected
        )
    except StoreError as exc:
        raise _store_failure(exc) from exc
    return {
        "period": {
            "slug": period.slug,
            "start": period.start.isoformat(),
            "end": period.end.isoformat(),
        },
        "refreshed": changed,
        "items": [item.model_dump(mode="json") for item in items],
    }


@app.get("/api/analytics")
def api_analytics(request: Request, store: DocumentStore = Depends(get_store)):
    period = period_from_request(request)
    filters = filters_from_request(request)
    include_projected = _flag(request, "projected", False)
    try:
        result = AnalyticsService(store).analytics(
            period, filters, include_projected=include_projected
        )
    except StoreError as exc:
        raise _store_failure(exc) from exc
    return result.model_dump(mode="json")


def main():
    import uvicorn

    uvicorn.run("main:app", host="0.0.0.0", port=8000, reload=False)


if __name__ == "__main__":
    main()
