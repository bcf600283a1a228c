"""FastAPI application for ObjectCamp."""

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Annotated
from uuid import UUID

from fastapi import Depends, FastAPI, Request
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from object_camp import __version__
from object_camp.clustering.engine import ClusteringEngine
from object_camp.db import get_session, init_db
from object_camp.errors import (
    EntityNotFoundError,
    InputError,
    PersistenceError,
    SubjectNotFoundError,
    TargetSpecNotFoundError,
)
from object_camp.models.entity import Entity
from object_camp.schemas import (
    ClusterResponse,
    CoverRequest,
    DeleteSubjectResponse,
    EntityDetail,
    EntityRead,
    EntitySelection,
    MergeRequest,
    MoveRequest,
    MoveResponse,
    RenameRequest,
    SplitResponse,
    SubjectCreate,
    SubjectRead,
    SubjectSelection,
    TargetSpecCreate,
)
from object_camp.services.entity_mutation import EntityMutationService
from object_camp.services.graph_store import GraphStore
from object_camp.services.locks import SpecLockRegistry
from object_camp.services.subject_ingest import SubjectIngestService


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Application lifespan handler."""
    await init_db()
    yield


app = FastAPI(
    title="ObjectCamp",
    description="Groups extracted photo subjects into persistent entities",
    version=__version__,
    lifespan=lifespan,
)
app.state.spec_locks = SpecLockRegistry()

SessionDep = Annotated[AsyncSession, Depends(get_session)]


@app.exception_handler(InputError)
async def input_error_handler(request: Request, exc: InputError) -> JSONResponse:
    not_found = (EntityNotFoundError, SubjectNotFoundError, TargetSpecNotFoundError)
    status = 404 if isinstance(exc, not_found) else 400
    return JSONResponse(status_code=status, content={"detail": str(exc)})


@app.exception_handler(PersistenceError)
async def persistence_error_handler(request: Request, exc: PersistenceError) -> JSONResponse:
    return JSONResponse(status_code=503, content={"detail": "Could not save changes, try again"})


def _locks(request: Request) -> SpecLockRegistry:
    return request.app.state.spec_locks


async def _entity_read(store: GraphStore, entities: list[Entity]) -> list[EntityRead]:
    counts = await store.member_counts(e.entity_id for e in entities)
    reads: list[EntityRead] = []
    for entity in entities:
        read = EntityRead.model_validate(entity)
        read.member_count = counts.get(entity.entity_id, 0)
        reads.append(read)
    return reads


async def _spec_of(store: GraphStore, entity_id: UUID) -> str:
    entity = await store.get_entity(entity_id)
    if entity is None:
        raise EntityNotFoundError(entity_id)
    return entity.target_spec_id


async def _entity_specs(store: GraphStore, entity_ids: list[UUID]) -> list[str]:
    """Specs of the named entities. Unknown ids are left for the service to reject."""
    return [e.target_spec_id for e in await store.get_entities(entity_ids)]


async def _subject_specs(store: GraphStore, subject_ids: list[UUID]) -> list[str]:
    return [s.target_spec_id for s in await store.get_subjects(subject_ids)]


@app.get("/health")
async def health() -> dict[str, str]:
    """Health check endpoint."""
    return {"status": "ok", "version": __version__}


@app.post("/specs", status_code=201)
async def create_spec(body: TargetSpecCreate, session: SessionDep) -> dict[str, str | bool]:
    service = SubjectIngestService(GraphStore(session))
    spec, created = await service.ensure_target_spec(
        body.spec_id, body.display_name, body.target_description
    )
    return {"spec_id": spec.spec_id, "created": created}


@app.post("/specs/{spec_id}/subjects", status_code=201)
async def create_subject(spec_id: str, body: SubjectCreate, session: SessionDep) -> SubjectRead:
    service = SubjectIngestService(GraphStore(session))
    subject = await service.record_subject(
        spec_id,
        body.source_image_id,
        body.sticker_path,
        body.confidence,
        thumbnail_path=body.thumbnail_path,
        bounding_box=body.bounding_box,
        feature_vector=body.feature_vector,
    )
    return SubjectRead.from_subject(subject)


@app.post("/specs/{spec_id}/cluster")
async def cluster_spec(
    spec_id: str,
    request: Request,
    session: SessionDep,
    threshold: float | None = None,
) -> ClusterResponse:
    store = GraphStore(session)
    await store.require_target_spec(spec_id)
    engine = ClusteringEngine(store, threshold=threshold)
    async with _locks(request).hold(spec_id):
        result = await engine.cluster_subjects(spec_id)
    return ClusterResponse(
        target_spec_id=spec_id,
        outcome=result.outcome,
        threshold=result.threshold,
        eligible_count=result.eligible_count,
        awaiting_vector_count=result.awaiting_vector_count,
        entities=await _entity_read(store, result.entities),
    )


@app.get("/specs/{spec_id}/entities")
async def list_entities(spec_id: str, session: SessionDep) -> list[EntityRead]:
    store = GraphStore(session)
    await store.require_target_spec(spec_id)
    return await _entity_read(store, await store.list_entities(spec_id))


@app.get("/entities/{entity_id}")
async def get_entity(entity_id: UUID, session: SessionDep) -> EntityDetail:
    store = GraphStore(session)
    entity = await store.get_entity(entity_id)
    if entity is None:
        raise EntityNotFoundError(entity_id)
    members = await store.members(entity_id)
    detail = EntityDetail.model_validate(entity)
    detail.member_count = len(members)
    detail.subjects = [SubjectRead.from_subject(s) for s in members]
    return detail


@app.post("/entities/merge")
async def merge_entities(body: MergeRequest, request: Request, session: SessionDep) -> EntityRead:
    store = GraphStore(session)
    service = EntityMutationService(store)
    async with _locks(request).hold_many(await _entity_specs(store, body.entity_ids)):
        result = await service.merge(body.entity_ids)
    return (await _entity_read(store, [result.entity]))[0]


@app.post("/entities/{entity_id}/split")
async def split_entity(
    entity_id: UUID, body: SubjectSelection, request: Request, session: SessionDep
) -> SplitResponse:
    store = GraphStore(session)
    service = EntityMutationService(store)
    async with _locks(request).hold(await _spec_of(store, entity_id)):
        result = await service.split(entity_id, body.subject_ids)
    return SplitResponse(
        new_entity=(await _entity_read(store, [result.new_entity]))[0],
        source_deleted=result.source_deleted,
    )


@app.post("/entities/{entity_id}/move")
async def move_subjects(
    entity_id: UUID, body: MoveRequest, request: Request, session: SessionDep
) -> MoveResponse:
    store = GraphStore(session)
    service = EntityMutationService(store)
    async with _locks(request).hold(await _spec_of(store, entity_id)):
        result = await service.move_subjects(body.subject_ids, entity_id, body.target_entity_id)
    return MoveResponse(
        target_entity=(await _entity_read(store, [result.target_entity]))[0],
        created_target=result.created_target,
        source_deleted=result.source_deleted,
    )


@app.post("/entities/delete")
async def delete_entities(
    body: EntitySelection, request: Request, session: SessionDep
) -> dict[str, list[UUID]]:
    store = GraphStore(session)
    async with _locks(request).hold_many(await _entity_specs(store, body.entity_ids)):
        result = await EntityMutationService(store).delete_entities(body.entity_ids)
    return {
        "deleted_entity_ids": result.deleted_entity_ids,
        "excluded_subject_ids": result.excluded_subject_ids,
    }


@app.put("/entities/{entity_id}/cover")
async def set_cover(
    entity_id: UUID, body: CoverRequest, request: Request, session: SessionDep
) -> EntityRead:
    store = GraphStore(session)
    async with _locks(request).hold(await _spec_of(store, entity_id)):
        entity = await EntityMutationService(store).set_cover_subject(entity_id, body.subject_id)
    return (await _entity_read(store, [entity]))[0]


@app.put("/entities/{entity_id}/name")
async def rename(
    entity_id: UUID, body: RenameRequest, request: Request, session: SessionDep
) -> EntityRead:
    store = GraphStore(session)
    async with _locks(request).hold(await _spec_of(store, entity_id)):
        entity = await EntityMutationService(store).rename_entity(entity_id, body.name)
    return (await _entity_read(store, [entity]))[0]


@app.post("/subjects/exclude")
async def exclude_subjects(
    body: SubjectSelection, request: Request, session: SessionDep
) -> dict[str, list[UUID]]:
    store = GraphStore(session)
    async with _locks(request).hold_many(await _subject_specs(store, body.subject_ids)):
        result = await EntityMutationService(store).exclude_subjects(body.subject_ids)
    return {
        "excluded_subject_ids": result.excluded_subject_ids,
        "deleted_entity_ids": result.deleted_entity_ids,
    }


@app.delete("/subjects/{subject_id}")
async def delete_subject(
    subject_id: UUID, request: Request, session: SessionDep
) -> DeleteSubjectResponse:
    store = GraphStore(session)
    async with _locks(request).hold_many(await _subject_specs(store, [subject_id])):
        result = await EntityMutationService(store).delete_subject(subject_id)
    return DeleteSubjectResponse(
        subject_id=result.subject_id,
        entity_deleted=result.entity_deleted,
        released_paths=result.released_paths,
    )
