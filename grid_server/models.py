# grid_server/models.py - Pydantic models for API

from pydantic import BaseModel, Field
from typing import List, Optional, Dict, Any, Union
from enum import Enum

from grid_server.config import settings

class ColumnType(str, Enum):
    TEXT = "text"
    NUMBER = "number"
    SINGLE_SELECT = "singleSelect"
    ATTACHMENT = "attachment"

class FilterOperator(str, Enum):
    CONTAINS = "contains"
    DOES_NOT_CONTAIN = "doesNotContain"
    IS = "is"
    IS_NOT = "isNot"
    IS_EMPTY = "isEmpty"
    IS_NOT_EMPTY = "isNotEmpty"
    GT = "gt"
    LT = "lt"

class SortDirection(str, Enum):
    ASC = "asc"
    DESC = "desc"

# Scalar cell values; attachments may also hold JSON arrays/objects
CellValue = Optional[Union[str, int, float, bool, List[Any], Dict[str, Any]]]

class Table(BaseModel):
    id: str
    name: str
    createdAt: Optional[str] = None

class CreateTableRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=120)

class Column(BaseModel):
    id: str
    tableId: str
    name: str
    type: ColumnType
    orderIndex: int
    hidden: bool = False
    config: Optional[Dict[str, Any]] = None

class CreateColumnRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=120)
    type: ColumnType = ColumnType.TEXT

class Row(BaseModel):
    id: str
    tableId: str
    index: int
    values: Dict[str, Any] = {}
    createdAt: Optional[str] = None

class CreatedRow(BaseModel):
    id: str
    index: int

class Filter(BaseModel):
    columnId: str
    operator: FilterOperator
    value: Optional[Union[int, float, str]] = None

class SortKey(BaseModel):
    columnId: str
    direction: SortDirection = SortDirection.ASC

class WindowRequest(BaseModel):
    startIndex: int = Field(0, ge=0)
    windowSize: int = Field(settings.DEFAULT_WINDOW_SIZE, ge=1, le=settings.MAX_WINDOW_SIZE)
    filters: List[Filter] = []
    sort: List[SortKey] = []

class WindowResponse(BaseModel):
    rows: List[Row]
    totalCount: int
    windowStart: int

class UpdateCellRequest(BaseModel):
    value: CellValue = None

class UpdateCellResponse(BaseModel):
    ok: bool = True
