import logging
from typing import Any, Callable

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from ..exceptions import DriverUnavailable, InvalidTarget, classify_driver_error
from ..outcome import (
    Outcome,
    classify_delete,
    classify_found,
    classify_insert,
    classify_update,
    internal_failure,
    validation_failure,
)
from ..schemas import (
    RESPONSES,
    AggregateRequest,
    DeleteRequest,
    FindOneRequest,
    FindRequest,
    InsertManyRequest,
    InsertOneRequest,
    TargetRequest,
    UpdateManyRequest,
    UpdateRequest,
)
from ..services.mongo import CollectionBinder, CollectionHandle
from ..utils import normalize

logger = logging.getLogger("docgate.dispatch")

router = APIRouter(tags=["db"], responses=RESPONSES)


def get_binder(request: Request) -> CollectionBinder:
    return request.app.state.binder


def _dispatch(
    binder: CollectionBinder,
    payload: TargetRequest,
    operation: str,
    run: Callable[[CollectionHandle], Outcome],
) -> JSONResponse:
    """Bind the target, run the operation and render its outcome.

    Nothing raised by the driver gets past this point.
    """
    try:
        handle = binder.bind(payload.database, payload.collection)
        outcome = run(handle)
    except InvalidTarget as e:
        logger.info("%s rejected: %s", operation, e)
        return validation_failure(str(e)).to_response()
    except Exception as e:
        err = classify_driver_error(e)
        level = logging.ERROR if isinstance(err, DriverUnavailable) else logging.WARNING
        logger.log(level, "%s on %s.%s failed (%s): %s",
                   operation, payload.database, payload.collection, type(err).__name__, err)
        return internal_failure(str(e)).to_response()
    logger.debug("%s on %s -> %s", operation, handle.namespace, outcome.category.value)
    return outcome.to_response()


def _as_update(update: Any) -> Any:
    """Replacement-style bodies (no $-operators) are applied as a $set."""
    if isinstance(update, dict) and update and not any(str(k).startswith("$") for k in update):
        return {"$set": update}
    return update


@router.post("/insertOne")
def insert_one(payload: InsertOneRequest, binder: CollectionBinder = Depends(get_binder)):
    def run(handle: CollectionHandle) -> Outcome:
        return classify_insert(handle.insert_one(normalize(payload.document)))
    return _dispatch(binder, payload, "insertOne", run)


@router.post("/insertMany")
def insert_many(payload: InsertManyRequest, binder: CollectionBinder = Depends(get_binder)):
    def run(handle: CollectionHandle) -> Outcome:
        return classify_insert(handle.insert_many(normalize(payload.documents)))
    return _dispatch(binder, payload, "insertMany", run)


@router.post("/findOne")
def find_one(payload: FindOneRequest, binder: CollectionBinder = Depends(get_binder)):
    def run(handle: CollectionHandle) -> Outcome:
        return classify_found(handle.find_one(payload.filter, payload.projection), "No record found")
    return _dispatch(binder, payload, "findOne", run)


@router.post("/find")
def find(payload: FindRequest, binder: CollectionBinder = Depends(get_binder)):
    def run(handle: CollectionHandle) -> Outcome:
        items = handle.find(payload.filter, payload.projection, payload.sort, payload.limit)
        return classify_found(items, "No records found")
    return _dispatch(binder, payload, "find", run)


@router.post("/updateOne")
def update_one(payload: UpdateRequest, binder: CollectionBinder = Depends(get_binder)):
    def run(handle: CollectionHandle) -> Outcome:
        res = handle.update_one(
            normalize(payload.filter),
            _as_update(normalize(payload.update)),
            upsert=bool(payload.upsert),
        )
        return classify_update(res)
    return _dispatch(binder, payload, "updateOne", run)


@router.post("/updateMany")
def update_many(payload: UpdateManyRequest, binder: CollectionBinder = Depends(get_binder)):
    def run(handle: CollectionHandle) -> Outcome:
        res = handle.update_many(
            normalize(payload.filter),
            _as_update(normalize(payload.update)),
        )
        return classify_update(res, many=True)
    return _dispatch(binder, payload, "updateMany", run)


@router.post("/deleteOne")
def delete_one(payload: DeleteRequest, binder: CollectionBinder = Depends(get_binder)):
    def run(handle: CollectionHandle) -> Outcome:
        return classify_delete(handle.delete_one(payload.filter))
    return _dispatch(binder, payload, "deleteOne", run)


@router.post("/deleteMany")
def delete_many(payload: DeleteRequest, binder: CollectionBinder = Depends(get_binder)):
    def run(handle: CollectionHandle) -> Outcome:
        return classify_delete(handle.delete_many(payload.filter))
    return _dispatch(binder, payload, "deleteMany", run)


@router.post("/aggregate")
def aggregate(payload: AggregateRequest, binder: CollectionBinder = Depends(get_binder)):
    def run(handle: CollectionHandle) -> Outcome:
        return classify_found(handle.aggregate(payload.pipeline), "No aggregation results found")
    return _dispatch(binder, payload, "aggregate", run)
