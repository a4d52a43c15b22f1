import json
import shutil
import time
from contextlib import aclosing, asynccontextmanager
from dataclasses import asdict
from pathlib import Path
from typing import Callable, List, Optional

import uvicorn
from fastapi import FastAPI, File, HTTPException, Request, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, StreamingResponse
from pydantic import BaseModel, Field

from ragflow.config import Settings
from ragflow.container import Services, build_services
from ragflow.domain.errors import ConfigError, DocumentNotFoundError
from ragflow.domain.models import DOCUMENT_ID_KEY, Citation, DocumentRecord, StreamEvent, StreamEventType
from ragflow.logger import configure_logging, get_logger

logger = get_logger(__name__)

# ── Configuration ────────────────────────────────────────────────────────────
UPLOAD_DIRECTORY = Path("data/uploads")


# ── API Models ───────────────────────────────────────────────────────────────
class QueryRequest(BaseModel):
    question: str
    collection: Optional[str] = None
    collection_ids: Optional[List[str]] = None
    top_k: Optional[int] = Field(default=None, gt=0)
    score_threshold: float = 0.0

    def target_collections(self) -> Optional[List[str]]:
        if self.collection_ids:
            return self.collection_ids
        if self.collection:
            return [self.collection]
        return None


class CitationSchema(BaseModel):
    document_id: Optional[int]
    document_name: str
    fragment_id: Optional[int]
    score: float
    snippet: str


class QueryResponse(BaseModel):
    answer: str
    citations: List[CitationSchema]
    source_type: str
    error: Optional[str] = None


class SearchHitSchema(BaseModel):
    fragment_id: int
    document_id: Optional[int]
    document_name: str
    score: float
    content: str


class DocumentSchema(BaseModel):
    document_id: int
    collection: str
    name: str
    status: str
    fragment_count: int


class IndexResponse(BaseModel):
    document_id: int
    fragment_count: int
    status: str
    error: Optional[str] = None


def _citation(citation: Citation) -> CitationSchema:
    return CitationSchema(**asdict(citation))


def _document(record: DocumentRecord) -> DocumentSchema:
    return DocumentSchema(
        document_id=record.document_id,
        collection=record.collection,
        name=record.name,
        status=record.status.value,
        fragment_count=record.fragment_count,
    )


def _sse(event: StreamEvent) -> str:
    if event.event is StreamEventType.SOURCE:
        payload = {
            "source_type": event.data["provenance"].value,
            "citations": [asdict(c) for c in event.data["citations"]],
        }
    else:
        payload = event.data
    return f"event: {event.event.value}\ndata: {json.dumps(payload, ensure_ascii=False)}\n\n"


def _default_services() -> Services:
    return build_services(Settings.from_env())


# ── App Factory ──────────────────────────────────────────────────────────────
def create_app(services_factory: Callable[[], Services] = _default_services) -> FastAPI:

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        app.state.services = services_factory()
        logger.info(
            f"[API] Index ready: {app.state.services.vector_index.count()} fragments in "
            f"{len(app.state.services.vector_index.collections())} collections"
        )
        yield
        app.state.services.ingestion.save()

    app = FastAPI(
        title="RagFlow API",
        description="Retrieval-augmented question answering with web and model fallback.",
        version="1.0.0",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["http://localhost:5173", "http://localhost:8080", "http://127.0.0.1:8080"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(DocumentNotFoundError)
    async def _not_found(request: Request, error: DocumentNotFoundError):
        return JSONResponse(status_code=404, content={"detail": str(error)})

    @app.exception_handler(ConfigError)
    async def _bad_config(request: Request, error: ConfigError):
        return JSONResponse(status_code=400, content={"detail": str(error)})

    @app.exception_handler(ValueError)
    async def _bad_request(request: Request, error: ValueError):
        return JSONResponse(status_code=400, content={"detail": str(error)})

    def services(request: Request) -> Services:
        return request.app.state.services

    # ── Endpoints ────────────────────────────────────────────────────────────
    @app.get("/status")
    def get_status(request: Request):
        svc = services(request)
        return {
            "is_ready": svc.vector_index.is_ready(),
            "fragments_indexed": svc.vector_index.count(),
            "collections": svc.vector_index.collections(),
            "embedding_dimension": svc.vector_index.dimension,
        }

    @app.post("/api/v1/chat/query", response_model=QueryResponse)
    def query(body: QueryRequest, request: Request):
        result = services(request).orchestrator.answer(
            body.question,
            collections=body.target_collections(),
            top_k=body.top_k,
            score_threshold=body.score_threshold,
        )
        return QueryResponse(
            answer=result.answer,
            citations=[_citation(c) for c in result.citations],
            source_type=result.provenance.value,
            error=result.error,
        )

    @app.post("/api/v1/chat/stream")
    async def query_stream(body: QueryRequest, request: Request):
        if not body.question.strip():
            raise HTTPException(status_code=400, detail="Question cannot be empty.")
        orchestrator = services(request).orchestrator

        async def event_source():
            events = orchestrator.stream(
                body.question,
                collections=body.target_collections(),
                top_k=body.top_k,
                score_threshold=body.score_threshold,
            )
            async with aclosing(events):
                async for event in events:
                    if await request.is_disconnected():
                        logger.info("[API] Client disconnected, stopping stream")
                        break
                    yield _sse(event)

        return StreamingResponse(
            event_source(),
            media_type="text/event-stream",
            headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
        )

    @app.post("/api/v1/search", response_model=List[SearchHitSchema])
    def search(body: QueryRequest, request: Request):
        hits = services(request).orchestrator.search_only(
            body.question,
            collections=body.target_collections(),
            top_k=body.top_k,
        )
        return [
            SearchHitSchema(
                fragment_id=result.fragment_id,
                document_id=result.metadata.get(DOCUMENT_ID_KEY),
                document_name=result.document_name,
                score=round(result.score, 4),
                content=content,
            )
            for result, content in hits
        ]

    @app.get("/api/v1/collections")
    def list_collections(request: Request):
        return {"collections": services(request).ingestion.list_collections()}

    @app.get("/api/v1/collections/{collection}/documents", response_model=List[DocumentSchema])
    def list_documents(collection: str, request: Request):
        return [_document(d) for d in services(request).ingestion.list_documents(collection)]

    @app.post("/api/v1/collections/{collection}/documents", response_model=List[IndexResponse])
    def upload_documents(collection: str, request: Request, files: List[UploadFile] = File(...)):
        """Store uploaded .txt/.md files and index them into `collection`."""
        UPLOAD_DIRECTORY.mkdir(parents=True, exist_ok=True)
        ingestion = services(request).ingestion

        reports = []
        for upload in files:
            name = Path(upload.filename or "upload.txt").name
            target = UPLOAD_DIRECTORY / f"{int(time.time() * 1000)}_{name}"
            with open(target, "wb") as buffer:
                shutil.copyfileobj(upload.file, buffer)

            report = ingestion.ingest_file(collection, target, name=name, discard_previous=True)
            reports.append(IndexResponse(
                document_id=report.document_id,
                fragment_count=report.fragment_count,
                status=report.status.value,
                error=report.error,
            ))
        return reports

    @app.post("/api/v1/documents/{document_id}/index", response_model=IndexResponse)
    def reindex_document(document_id: int, request: Request):
        report = services(request).ingestion.index_document(document_id)
        return IndexResponse(
            document_id=report.document_id,
            fragment_count=report.fragment_count,
            status=report.status.value,
            error=report.error,
        )

    @app.delete("/api/v1/documents/{document_id}")
    def delete_document(document_id: int, request: Request):
        record = services(request).ingestion.delete_document(document_id)
        return {"message": f"Successfully deleted document '{record.name}'"}

    @app.delete("/api/v1/collections/{collection}")
    def delete_collection(collection: str, request: Request):
        removed = services(request).ingestion.delete_collection(collection)
        return {"message": f"Deleted collection '{collection}'", "documents_removed": removed}

    return app


app = create_app()


if __name__ == "__main__":
    configure_logging()
    uvicorn.run(app, host="0.0.0.0", port=8000)
