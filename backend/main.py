"""Family Tree - relationship graph backend.

FastAPI server that owns the record store and serves the ordered family forest.
"""

import json
import logging
import os
from contextlib import asynccontextmanager
from typing import Any, Literal

from dotenv import load_dotenv

# Load environment variables
load_dotenv()

# Configure logging
logging.basicConfig(
    level=os.getenv("FAMILY_TREE_LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("familytree")

from fastapi import Body, FastAPI, HTTPException, UploadFile, File
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import PlainTextResponse
from pydantic import BaseModel, ConfigDict

from family_records import InvalidTreeData, RecordStore, export_records, load_records
from family_tree import FamilyTree, build_forest
from family_edits import (
    add_child,
    add_parent,
    add_sibling,
    add_spouse,
    create_family,
    edit_person,
    link_people,
    reset_tree,
)
from family_deletion import delete_spouse_family, delete_subtree, delete_whole_family
from gedcom_utils import export_gedcom_content

DEFAULT_CORS_ORIGINS = "http://localhost:5173,http://localhost:3000,http://127.0.0.1:5173"

# Global state
current_store: RecordStore | None = None


def _load_initial_store() -> RecordStore:
    """Load the startup tree from FAMILY_TREE_SEED_PATH, or seed a new one."""
    seed_path = os.getenv("FAMILY_TREE_SEED_PATH")
    if seed_path and os.path.exists(seed_path):
        logger.info(f"Loading initial tree from {seed_path}")
        with open(seed_path, encoding="utf-8") as f:
            store, _ = load_records(json.load(f))
        return store
    if seed_path:
        logger.warning(f"Seed file not found: {seed_path}; starting a new tree")
    store, _ = load_records([])
    return store


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan - load the tree on startup."""
    global current_store

    current_store = _load_initial_store()
    logger.info(f"✓ Tree ready with {len(current_store)} records")

    yield

    logger.info("Shutting down")
    current_store = None


# Create FastAPI app
app = FastAPI(
    title="Family Tree",
    description="Personal relationship graph with family forest rendering",
    version="1.0.0",
    lifespan=lifespan,
)

# Configure CORS for frontend
app.add_middleware(
    CORSMiddleware,
    allow_origins=os.getenv("FAMILY_TREE_CORS_ORIGINS", DEFAULT_CORS_ORIGINS).split(","),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Request/Response models
class MemberFields(BaseModel):
    """Descriptive fields of a person, as entered in the member form."""
    model_config = ConfigDict(extra="forbid")

    name: str | None = None
    relation: str | None = None
    gender: str | None = None
    dob: str | None = None
    location: str | None = None
    address: str | None = None
    notes: str | None = None
    photo: str | None = None


class LinkRequest(BaseModel):
    """Link two existing people."""
    source_id: str
    target_id: str
    relation: Literal["Spouse", "Child", "Parent"]


class ForestResponse(BaseModel):
    """The ordered family forest."""
    families: list[FamilyTree]
    record_count: int


class ImportResponse(BaseModel):
    """Response after importing a tree."""
    message: str
    record_count: int
    warnings: list[str]


class OperationResponse(BaseModel):
    """Outcome of a mutation."""
    message: str
    id: str | None = None
    deleted_ids: list[str] = []
    records: list[dict] = []


def _get_store() -> RecordStore:
    if current_store is None:
        logger.error("Record store not initialized")
        raise HTTPException(status_code=503, detail="Record store not initialized")
    return current_store


def _respond(result: dict[str, Any], store: RecordStore) -> OperationResponse:
    """Turn an engine result dict into a response, or raise the matching HTTP error."""
    if not result["success"]:
        error = result["error"]
        logger.warning(f"Operation rejected: {error}")
        raise HTTPException(status_code=result.get("status", 400), detail=error)

    return OperationResponse(
        message=result["message"],
        id=result.get("id"),
        deleted_ids=result.get("deleted_ids", []),
        records=export_records(store),
    )


def _replace_store(payload: Any, source: str) -> ImportResponse:
    global current_store

    try:
        store, warnings = load_records(payload)
    except InvalidTreeData as e:
        logger.warning(f"Rejected tree import from {source}: {e}")
        raise HTTPException(status_code=400, detail=f"Invalid tree data format: {e}")

    current_store = store
    logger.info(f"Imported {len(store)} records from {source}")
    return ImportResponse(
        message="Tree imported successfully!",
        record_count=len(store),
        warnings=warnings,
    )


# Endpoints

@app.get("/health")
async def health_check():
    """Health check endpoint."""
    logger.debug("Health check requested")
    return {
        "status": "healthy",
        "record_count": len(current_store) if current_store is not None else 0,
    }


@app.get("/records")
async def get_records():
    """Export the flat record list."""
    return export_records(_get_store())


@app.put("/records", response_model=ImportResponse)
async def put_records(payload: Any = Body(None)):
    """Replace the whole tree with an imported record list."""
    return _replace_store(payload, "request body")


@app.post("/upload-tree", response_model=ImportResponse)
async def upload_tree(file: UploadFile = File(...)):
    """Upload and import a JSON tree file."""
    logger.info(f"Received tree file upload: {file.filename}")

    if not (file.filename or "").endswith(".json"):
        logger.warning(f"Invalid file type: {file.filename}")
        raise HTTPException(status_code=400, detail="File must be a JSON tree export (.json)")

    content = await file.read()
    try:
        content_str = content.decode("utf-8")
    except UnicodeDecodeError:
        logger.info("UTF-8 decode failed, trying latin-1 encoding")
        content_str = content.decode("latin-1")

    try:
        payload = json.loads(content_str)
    except json.JSONDecodeError as e:
        logger.warning(f"Failed to parse JSON upload: {e}")
        raise HTTPException(status_code=400, detail="Error parsing JSON file.")

    return _replace_store(payload, file.filename)


@app.get("/forest", response_model=ForestResponse)
async def get_forest():
    """Get the ordered family forest for rendering."""
    store = _get_store()
    forest = build_forest(store)
    logger.info(f"Returning forest of {len(forest)} families")
    return ForestResponse(families=forest, record_count=len(store))


@app.get("/export/gedcom", response_class=PlainTextResponse)
async def export_gedcom():
    """Export the tree as a GEDCOM file."""
    return PlainTextResponse(
        export_gedcom_content(_get_store()),
        headers={"Content-Disposition": 'attachment; filename="family_tree.ged"'},
    )


@app.post("/members/{member_id}/children", response_model=OperationResponse)
async def post_child(member_id: str, fields: MemberFields):
    """Add a child to a person."""
    store = _get_store()
    return _respond(add_child(store, member_id, fields.model_dump(exclude_unset=True)), store)


@app.post("/members/{member_id}/parents", response_model=OperationResponse)
async def post_parent(member_id: str, fields: MemberFields):
    """Add a parent to a person."""
    store = _get_store()
    return _respond(add_parent(store, member_id, fields.model_dump(exclude_unset=True)), store)


@app.post("/members/{member_id}/spouse", response_model=OperationResponse)
async def post_spouse(member_id: str, fields: MemberFields):
    """Add a spouse to a person."""
    store = _get_store()
    return _respond(add_spouse(store, member_id, fields.model_dump(exclude_unset=True)), store)


@app.post("/members/{member_id}/siblings", response_model=OperationResponse)
async def post_sibling(member_id: str, fields: MemberFields):
    """Add a sibling, creating a placeholder parent if needed."""
    store = _get_store()
    return _respond(add_sibling(store, member_id, fields.model_dump(exclude_unset=True)), store)


@app.patch("/members/{member_id}", response_model=OperationResponse)
async def patch_member(member_id: str, fields: MemberFields):
    """Edit a person's details."""
    store = _get_store()
    return _respond(edit_person(store, member_id, fields.model_dump(exclude_unset=True)), store)


@app.post("/links", response_model=OperationResponse)
async def post_link(request: LinkRequest):
    """Link two existing people as spouses or parent/child."""
    store = _get_store()
    return _respond(link_people(store, request.source_id, request.target_id, request.relation), store)


@app.post("/families", response_model=OperationResponse)
async def post_family():
    """Create a new independent family tree."""
    store = _get_store()
    return _respond(create_family(store), store)


@app.post("/reset", response_model=OperationResponse)
async def post_reset():
    """Reset the tree to a single "Me" record."""
    store = _get_store()
    return _respond(reset_tree(store), store)


@app.delete("/members/{member_id}", response_model=OperationResponse)
async def delete_member(member_id: str):
    """Delete a person and all their descendants."""
    store = _get_store()
    return _respond(delete_subtree(store, member_id), store)


@app.delete("/families/{root_id}", response_model=OperationResponse)
async def delete_family(root_id: str):
    """Delete an entire family section."""
    store = _get_store()
    return _respond(delete_whole_family(store, root_id), store)


@app.delete("/members/{member_id}/spouse-family", response_model=OperationResponse)
async def delete_member_spouse_family(member_id: str):
    """Sever a spouse from their birth family and delete that family."""
    store = _get_store()
    return _respond(delete_spouse_family(store, member_id), store)


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
