# grid_server/app.py - FastAPI backend application

from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import StreamingResponse
from typing import List
from datetime import datetime, timezone
import csv
import io
import logging

from grid_server.cell_values import coerce_cell_value, string_form
from grid_server.column_indexes import ColumnIndexManager
from grid_server.config import settings
from grid_server.database import Database
from grid_server.errors import GridError, InvalidColumn, MutationFailed, NotFound
from grid_server.models import (
    Column, ColumnType, CreateColumnRequest, CreateTableRequest, CreatedRow, Table,
    UpdateCellRequest, UpdateCellResponse, WindowRequest, WindowResponse,
)
from grid_server.query_engine import WindowQueryEngine

VERSION = "1.0.0"

# Setup logging
logging.basicConfig(level=settings.LOG_LEVEL)
logger = logging.getLogger(__name__)

# Initialize FastAPI app
app = FastAPI(
    title="TableHub Grid API",
    description="Windowed row access and cell editing over a schemaless row store",
    version=VERSION
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Initialize database, index manager and query engine
db = Database(settings.DATABASE_URL)
index_manager = ColumnIndexManager(db, enable_trigram=settings.ENABLE_TRIGRAM_INDEXES)
query_engine = WindowQueryEngine(db, max_window_size=settings.MAX_WINDOW_SIZE)


def _rejected(e: GridError) -> HTTPException:
    logger.warning(f"Rejected request ({e.code}): {e.message}")
    return HTTPException(status_code=e.status_code, detail=e.to_detail())


async def _require_table(table_id: str) -> dict:
    table = await db.get_table(table_id)
    if not table:
        raise NotFound(f"Table not found: {table_id}")
    return table


@app.on_event("startup")
async def startup_event():
    """Initialize database on startup"""
    await db.init()
    logger.info("Database initialized")

@app.on_event("shutdown")
async def shutdown_event():
    """Cleanup on shutdown"""
    await db.close()
    logger.info("Database connection closed")

# Root endpoint
@app.get("/")
async def root():
    return {"message": "TableHub grid backend is running", "docs": "/docs"}

# Health check endpoint
@app.get("/healthz")
async def health_check():
    """Health check endpoint"""
    return {
        "status": "healthy",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "version": VERSION
    }

# Table endpoints (minimal host for rows and columns)
@app.post("/api/tables", response_model=Table)
async def create_table(request: CreateTableRequest):
    """Create a new table"""
    try:
        return await db.create_table(request.name.strip())
    except Exception as e:
        logger.error(f"Create table failed: {e}")
        raise HTTPException(status_code=500, detail="Failed to create table")

@app.get("/api/tables/{table_id}", response_model=Table)
async def get_table(table_id: str):
    """Get a specific table"""
    try:
        return await _require_table(table_id)
    except GridError as e:
        raise _rejected(e)
    except Exception as e:
        logger.error(f"Get table failed: {e}")
        raise HTTPException(status_code=500, detail="Failed to retrieve table")

# Column endpoints
@app.get("/api/tables/{table_id}/columns", response_model=List[Column])
async def get_columns(table_id: str):
    """Get a table's columns ordered by orderIndex"""
    try:
        await _require_table(table_id)
        return await db.get_columns(table_id)
    except GridError as e:
        raise _rejected(e)
    except Exception as e:
        logger.error(f"Get columns failed: {e}")
        raise HTTPException(status_code=500, detail="Failed to retrieve columns")

@app.post("/api/tables/{table_id}/columns", response_model=Column)
async def create_column(table_id: str, request: CreateColumnRequest):
    """Append a column and create its indexes before returning"""
    try:
        await _require_table(table_id)
        column = await db.create_column(table_id, request.name.strip(), request.type.value)
        await index_manager.ensure_indexes(table_id, column["id"], request.type)
        return column
    except GridError as e:
        raise _rejected(e)
    except Exception as e:
        logger.error(f"Create column failed: {e}")
        raise HTTPException(status_code=500, detail="Failed to create column")

# Row endpoints
@app.post("/api/tables/{table_id}/rows", response_model=CreatedRow)
async def create_row(table_id: str):
    """Append an empty row at the next placement key"""
    try:
        await _require_table(table_id)
        return await db.create_row(table_id)
    except GridError as e:
        raise _rejected(e)
    except Exception as e:
        logger.error(f"Create row failed: {e}")
        raise HTTPException(status_code=500, detail="Failed to create row")

@app.post("/api/tables/{table_id}/rows/window", response_model=WindowResponse)
async def get_rows(table_id: str, request: WindowRequest):
    """Get one window of filtered, sorted rows"""
    try:
        return await query_engine.query(
            table_id,
            start_index=request.startIndex,
            window_size=request.windowSize,
            filters=request.filters,
            sort=request.sort,
        )
    except GridError as e:
        raise _rejected(e)
    except ValueError as e:
        raise HTTPException(status_code=400, detail={"code": "BAD_REQUEST", "message": str(e)})
    except Exception as e:
        logger.error(f"Get rows failed: {e}")
        raise HTTPException(status_code=500, detail="Failed to retrieve rows")

# Cell endpoint
@app.patch("/api/rows/{row_id}/cells/{column_id}", response_model=UpdateCellResponse)
async def update_cell(row_id: str, column_id: str, request: UpdateCellRequest):
    """Overwrite a single cell, coercing the value for the column type"""
    try:
        row = await db.get_row(row_id)
        if not row:
            raise NotFound(f"Row not found: {row_id}")

        column = await db.get_column(column_id)
        if not column:
            raise NotFound(f"Column not found: {column_id}")

        if column["tableId"] != row["tableId"]:
            raise InvalidColumn(f"Column {column_id} does not belong to this row's table")

        value = coerce_cell_value(ColumnType(column["type"]), request.value)
        if not await db.set_cell_value(row_id, column_id, value):
            raise MutationFailed(f"Update of row {row_id} did not apply")

        return UpdateCellResponse(ok=True)
    except GridError as e:
        raise _rejected(e)
    except Exception as e:
        logger.error(f"Update cell failed: {e}")
        raise _rejected(MutationFailed("Failed to update cell"))

# Export endpoint
@app.get("/api/tables/{table_id}/export.csv")
async def export_csv(table_id: str):
    """Export a table as CSV, streamed one window at a time"""
    try:
        table = await _require_table(table_id)
        columns = await db.get_columns(table_id)
    except GridError as e:
        raise _rejected(e)

    async def generate():
        output = io.StringIO()
        writer = csv.writer(output)

        writer.writerow([c["name"] for c in columns])
        yield output.getvalue()

        async for page in query_engine.iter_pages(table_id, settings.EXPORT_PAGE_SIZE):
            output.seek(0)
            output.truncate(0)
            for row in page:
                writer.writerow([string_form(row.values.get(c["id"])) for c in columns])
            yield output.getvalue()

    filename = f"tablehub-{table['id']}-{datetime.now().strftime('%Y%m%d-%H%M%S')}.csv"
    return StreamingResponse(
        generate(),
        media_type="text/csv",
        headers={"Content-Disposition": f"attachment; filename={filename}"}
    )

if __name__ == "__main__":
    import uvicorn
    uvicorn.run("grid_server.app:app", host=settings.HOST, port=settings.PORT, reload=settings.DEBUG)
