from typing import Any, Dict, Optional
from pydantic import BaseModel, Field


class TargetRequest(BaseModel):
    # names are checked by the binder, not here
    database: Any = None
    collection: Any = None


class InsertOneRequest(TargetRequest):
    document: Any = None


class InsertManyRequest(TargetRequest):
    documents: Any = None


class FindOneRequest(TargetRequest):
    filter: Any = Field(default_factory=dict)
    projection: Optional[Any] = None


class FindRequest(FindOneRequest):
    sort: Optional[Any] = None  # {"field": 1} or [["field", 1], ["age", -1]]
    limit: Optional[int] = None


class UpdateManyRequest(TargetRequest):
    filter: Any = Field(default_factory=dict)
    update: Any = None


class UpdateRequest(UpdateManyRequest):
    upsert: Optional[bool] = False


class DeleteRequest(TargetRequest):
    filter: Any = Field(default_factory=dict)


class AggregateRequest(TargetRequest):
    pipeline: Any = Field(default_factory=list)


class HealthResponse(BaseModel):
    status: str
    timestamp: str


class FailureResponse(BaseModel):
    success: bool = False
    message: Optional[str] = None
    error: Optional[str] = None


class SuccessResponse(BaseModel):
    success: bool = True
    result: Any = None
    message: Optional[str] = None


RESPONSES: Dict[int, Dict[str, Any]] = {
    200: {"model": SuccessResponse, "description": "Found, updated or deleted"},
    201: {"model": SuccessResponse, "description": "Created"},
    400: {"model": FailureResponse, "description": "Validation failure"},
    404: {"model": FailureResponse, "description": "Nothing matched"},
    500: {"model": FailureResponse, "description": "Driver failure"},
}
