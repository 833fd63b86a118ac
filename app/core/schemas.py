from typing import Generic, List, TypeVar

from pydantic import BaseModel

T = TypeVar("T")


class ApiResponse(BaseModel, Generic[T]):
    """Standard success envelope: { status, message, data }."""

    status: str = "success"
    message: str
    data: T


class ApiListResponse(BaseModel, Generic[T]):
    """List envelope with item count: { status, message, count, data }."""

    status: str = "success"
    message: str
    count: int
    data: List[T]


class MessageResponse(BaseModel):
    status: str = "success"
    message: str
