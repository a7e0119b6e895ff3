"""Classified operation outcomes and their HTTP rendering.

Every operation ends in exactly one :class:`Category`; the category alone
decides the status code and which keys the response body carries.
"""

import enum
from dataclasses import dataclass
from typing import Any, Dict, Optional

from fastapi.responses import JSONResponse
from pymongo.results import DeleteResult, UpdateResult

from .utils import to_jsonable


class Category(str, enum.Enum):
    CREATED = "created"
    UPDATED_MODIFIED = "updated_modified"
    UPDATED_UNCHANGED = "updated_unchanged"
    DELETED = "deleted"
    FOUND = "found"
    NOT_FOUND = "not_found"
    VALIDATION_FAILURE = "validation_failure"
    INTERNAL_FAILURE = "internal_failure"


STATUS_CODES: Dict[Category, int] = {
    Category.CREATED: 201,
    Category.UPDATED_MODIFIED: 200,
    Category.UPDATED_UNCHANGED: 200,
    Category.DELETED: 200,
    Category.FOUND: 200,
    Category.NOT_FOUND: 404,
    Category.VALIDATION_FAILURE: 400,
    Category.INTERNAL_FAILURE: 500,
}

SUCCESS = frozenset({
    Category.CREATED,
    Category.UPDATED_MODIFIED,
    Category.UPDATED_UNCHANGED,
    Category.DELETED,
    Category.FOUND,
})


@dataclass
class Outcome:
    category: Category
    result: Any = None
    message: Optional[str] = None
    error: Optional[str] = None

    @property
    def status_code(self) -> int:
        return STATUS_CODES[self.category]

    @property
    def success(self) -> bool:
        return self.category in SUCCESS

    def body(self) -> Dict[str, Any]:
        if self.success:
            out: Dict[str, Any] = {"success": True, "result": to_jsonable(self.result)}
            if self.message:
                out["message"] = self.message
            return out
        if self.category is Category.INTERNAL_FAILURE:
            return {"success": False, "error": self.error or ""}
        return {"success": False, "message": self.message or ""}

    def to_response(self) -> JSONResponse:
        return JSONResponse(status_code=self.status_code, content=self.body())


def classify_insert(result: Any) -> Outcome:
    if not result:
        return Outcome(Category.VALIDATION_FAILURE, message="Insertion failed")
    return Outcome(Category.CREATED, result)


def classify_found(result: Any, empty_message: str) -> Outcome:
    if not result:
        return Outcome(Category.NOT_FOUND, message=empty_message)
    return Outcome(Category.FOUND, result)


def update_result_dict(res: UpdateResult) -> Dict[str, Any]:
    upserted_id = res.upserted_id
    return {
        "acknowledged": res.acknowledged,
        "matchedCount": res.matched_count,
        "modifiedCount": res.modified_count,
        "upsertedCount": 1 if upserted_id is not None else 0,
        "upsertedId": upserted_id,
    }


def delete_result_dict(res: DeleteResult) -> Dict[str, Any]:
    return {"acknowledged": res.acknowledged, "deletedCount": res.deleted_count}


def classify_update(res: UpdateResult, many: bool = False) -> Outcome:
    result = update_result_dict(res)
    # updateMany never upserts, so zero matches is always Not-Found there
    upserted = result["upsertedCount"] > 0 and not many
    if result["matchedCount"] == 0 and not upserted:
        return Outcome(Category.NOT_FOUND, message="No records found to update")
    if result["modifiedCount"] == 0 and not upserted:
        noun = "Documents" if many else "Document"
        return Outcome(
            Category.UPDATED_UNCHANGED,
            result,
            message=f"{noun} found but no changes were needed (values already match)",
        )
    return Outcome(Category.UPDATED_MODIFIED, result)


def classify_delete(res: DeleteResult) -> Outcome:
    result = delete_result_dict(res)
    if result["deletedCount"] == 0:
        return Outcome(Category.NOT_FOUND, message="No records deleted")
    return Outcome(Category.DELETED, result)


def validation_failure(message: str) -> Outcome:
    return Outcome(Category.VALIDATION_FAILURE, message=message)


def internal_failure(error: str) -> Outcome:
    return Outcome(Category.INTERNAL_FAILURE, error=error)
