from typing import Generic, TypeVar, Optional
from pydantic import BaseModel

T = TypeVar('T')

class StandardResponse(BaseModel, Generic[T]):
    """Standard API response format"""
    status: str = "success"
    data: Optional[T] = None
    message: Optional[str] = None
    errors: Optional[dict] = None
