"""
Identity graph API endpoints for LifeGraph.

Read views over people and interactions, sync run health, and upload
endpoints for the file-based importers. Services come from the
GraphContainer on app.state.graph.
"""
import logging
from typing import Optional

from fastapi import APIRouter, File, HTTPException, Query, Request, UploadFile
from pydantic import BaseModel

from api.services.container import GraphContainer
from api.services.graph_models import Platform
from api.services.timeline import (
    get_person_timeline,
    list_people,
    load_raw_content,
    relationship_narrative,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/graph", tags=["graph"])


class PersonListItem(BaseModel):
    """One row of the people index."""
    id: str
    full_name: str
    created_at: Optional[str] = None
    merged_into: Optional[str] = None
    confidence_score: float
    interaction_count: int = 0
    last_interaction: Optional[str] = None


class PeopleResponse(BaseModel):
    people: list[PersonListItem]
    count: int


class NarrativeResponse(BaseModel):
    person_id: str
    summary: str


class RawContentResponse(BaseModel):
    interaction_id: str
    raw_content: str


class SyncRunResponse(BaseModel):
    """A sync run as shown in the run history."""
    run_id: str
    platform: str
    status: str
    started_at: Optional[str] = None
    completed_at: Optional[str] = None
    error_log: Optional[str] = None
    records_processed: int = 0
    records_created: int = 0
    duration_seconds: Optional[float] = None


def _graph(request: Request) -> GraphContainer:
    return request.app.state.graph


def _import_failure(graph: GraphContainer, platform: Platform, error: Exception) -> HTTPException:
    """422 carrying the failed run's error_log."""
    run = graph.tracker.latest_run(platform)
    detail = run.error_log if run and run.error_log else str(error)
    return HTTPException(status_code=422, detail=detail)


@router.get("/people", response_model=PeopleResponse)
def get_people(request: Request, search: Optional[str] = Query(default=None)):
    """List people, most recently contacted first."""
    graph = _graph(request)
    rows = list_people(graph.store, search=search, self_person_id=graph.self_person_id())
    people = [PersonListItem(**row.to_dict()) for row in rows]
    return PeopleResponse(people=people, count=len(people))


@router.get("/people/{person_id}")
def get_person(request: Request, person_id: str):
    """Person with evidence and interactions."""
    timeline = get_person_timeline(_graph(request).store, person_id)
    if timeline is None:
        raise HTTPException(status_code=404, detail=f"Person {person_id} not found")
    return timeline.to_dict()


@router.get("/people/{person_id}/summary", response_model=NarrativeResponse)
def get_person_summary(request: Request, person_id: str):
    """Relationship narrative synthesized from the person's interactions."""
    graph = _graph(request)
    if get_person_timeline(graph.store, person_id) is None:
        raise HTTPException(status_code=404, detail=f"Person {person_id} not found")
    return NarrativeResponse(
        person_id=person_id,
        summary=relationship_narrative(graph.store, graph.enrichment, person_id),
    )


@router.get("/interactions/{interaction_id}/raw", response_model=RawContentResponse)
def get_raw_content(request: Request, interaction_id: str):
    graph = _graph(request)
    interaction = graph.store.get_interaction(interaction_id)
    if interaction is None:
        raise HTTPException(status_code=404, detail=f"Interaction {interaction_id} not found")
    return RawContentResponse(interaction_id=interaction_id, raw_content=load_raw_content(graph.blobs, interaction))


@router.get("/sync/runs", response_model=list[SyncRunResponse])
def get_sync_runs(
    request: Request,
    platform: Optional[Platform] = Query(default=None),
    limit: int = Query(default=20, ge=1, le=200),
):
    """Sync run history, most recent first."""
    runs = _graph(request).store.list_sync_runs(platform, limit=limit)
    return [SyncRunResponse(**run.to_dict(), duration_seconds=run.duration_seconds) for run in runs]


@router.get("/sync/summary")
def get_sync_summary(request: Request):
    """Last run of every ingesting platform."""
    return _graph(request).tracker.get_sync_summary()


@router.post("/import/whatsapp")
def import_whatsapp(request: Request, file: UploadFile = File(...)):
    """Import a WhatsApp "Export chat" .zip archive."""
    graph = _graph(request)
    data = file.file.read()
    try:
        return graph.whatsapp.import_archive(data, file.filename or "")
    except Exception as e:
        logger.error(f"WhatsApp import of {file.filename} failed: {e}")
        raise _import_failure(graph, Platform.WHATSAPP, e)


@router.post("/import/linkedin")
def import_linkedin(request: Request, file: UploadFile = File(...)):
    """Import a LinkedIn Connections.csv export."""
    graph = _graph(request)
    content = file.file.read().decode("utf-8", errors="replace")
    try:
        return graph.linkedin.import_csv(content)
    except Exception as e:
        logger.error(f"LinkedIn import of {file.filename} failed: {e}")
        raise _import_failure(graph, Platform.LINKEDIN, e)
