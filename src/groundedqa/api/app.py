"""FastAPI application exposing groundedqa services."""

from __future__ import annotations

from dataclasses import dataclass
from uuid import uuid4

import chromadb
from fastapi import Depends, FastAPI, File, Form, Request, UploadFile, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from groundedqa.api.schemas import (
    BreakerListResponse,
    BreakerResponse,
    ChatRequest,
    ChatResponse,
    CreateProjectRequest,
    DocumentResponse,
    ErrorDetail,
    ErrorResponse,
    ProjectResponse,
)
from groundedqa.config import Settings, get_settings
from groundedqa.embeddings import (
    ChromaVectorStore,
    EmbeddingConfig,
    EmbeddingProvider,
    HashEmbeddingProvider,
    HuggingFaceEmbeddingProvider,
)
from groundedqa.errors import AppError, UnauthorizedError, ValidationError
from groundedqa.ingestion import (
    ChunkingConfig,
    DocumentPipeline,
    ExtractionConfig,
    IngestionConfig,
    LangChainTextChunker,
    LangChainTextExtractor,
)
from groundedqa.metrics.observability import bind_correlation_id, clear_correlation_id, configure_logging, get_logger
from groundedqa.resilience import Deadline, DependencyGuards
from groundedqa.services.documents import DocumentService
from groundedqa.services.generation import (
    GenerationConfig,
    LanguageModelProvider,
    OpenAICompatibleGenerator,
    TemplateGenerator,
    TransformersGenerator,
)
from groundedqa.services.projects import ProjectService
from groundedqa.services.query import QueryConfig, QueryPipeline
from groundedqa.storage import LocalFileStore, MetadataStore


@dataclass(frozen=True)
class AppDependencies:
    projects: ProjectService
    documents: DocumentService
    query: QueryPipeline
    guards: DependencyGuards
    vector_store: ChromaVectorStore


def _build_embedder(settings: Settings) -> EmbeddingProvider:
    config = EmbeddingConfig(
        model=settings.embedding_model,
        dim=settings.embedding_dim,
        device=settings.embedding_device,
        normalize=True,
    )
    if settings.embedding_provider == "huggingface":
        return HuggingFaceEmbeddingProvider(config)
    return HashEmbeddingProvider(config)


def _build_generator(settings: Settings) -> LanguageModelProvider:
    config = GenerationConfig(
        model=settings.generator_model,
        max_new_tokens=settings.generator_max_new_tokens,
        temperature=settings.generator_temperature,
        endpoint=settings.generator_endpoint,
        api_key=settings.generator_api_key,
        timeout=settings.http_timeout_seconds,
    )
    if settings.generator_provider == "openai_compatible":
        return OpenAICompatibleGenerator(config)
    if settings.generator_provider == "transformers":
        return TransformersGenerator(config)
    return TemplateGenerator()


def _build_dependencies(settings: Settings) -> AppDependencies:
    metadata = MetadataStore.from_url(settings.database_url)
    files = LocalFileStore(settings.upload_dir)
    chroma_client = None
    if settings.chroma_host:
        chroma_client = chromadb.HttpClient(
            host=settings.chroma_host,
            port=settings.chroma_port,
            ssl=settings.chroma_ssl,
        )
    vector_store = ChromaVectorStore(
        client=chroma_client,
        persist_directory=None if chroma_client else settings.chroma_persist_dir,
    )
    embedder = _build_embedder(settings)
    guards = DependencyGuards.build(settings.circuit_config(), settings.retry_config())
    pipeline = DocumentPipeline(
        metadata=metadata,
        files=files,
        extractor=LangChainTextExtractor(ExtractionConfig(http_timeout=settings.http_timeout_seconds)),
        chunker=LangChainTextChunker(
            ChunkingConfig(chunk_size=settings.chunk_size, chunk_overlap=settings.chunk_overlap),
        ),
        embedder=embedder,
        vector_store=vector_store,
        guards=guards,
        config=IngestionConfig(request_timeout=settings.request_timeout_seconds),
    )
    query = QueryPipeline(
        metadata=metadata,
        embedder=embedder,
        vector_store=vector_store,
        generator=_build_generator(settings),
        guards=guards,
        config=QueryConfig(
            relevance_threshold=settings.relevance_threshold,
            top_k=settings.retrieval_top_k,
            context_token_budget=settings.context_token_budget,
            temperature=settings.generator_temperature,
            request_timeout=settings.request_timeout_seconds,
        ),
    )
    return AppDependencies(
        projects=ProjectService(metadata=metadata, files=files, vector_store=vector_store, guards=guards),
        documents=DocumentService(
            metadata=metadata,
            files=files,
            pipeline=pipeline,
            size_limits=settings.upload_size_limits,
        ),
        query=query,
        guards=guards,
        vector_store=vector_store,
    )


def _error_response(status_code: int, code: str, message: str, correlation_id: str) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=ErrorResponse(error=ErrorDetail(code=code, message=message)).model_dump(),
        headers={"X-Correlation-ID": correlation_id},
    )


def create_app(*, settings: Settings | None = None, dependencies: AppDependencies | None = None) -> FastAPI:
    settings = settings or get_settings()
    configure_logging(settings.log_level)
    deps = dependencies or _build_dependencies(settings)

    logger = get_logger("api")
    app = FastAPI(title="groundedqa API", version="0.1.0")
    app.state.dependencies = deps

    @app.middleware("http")
    async def add_correlation_id(request: Request, call_next):  # type: ignore[override]
        correlation_id = request.headers.get("X-Request-ID", uuid4().hex)
        request.state.correlation_id = correlation_id
        bind_correlation_id(correlation_id)
        try:
            response = await call_next(request)
        finally:
            clear_correlation_id()
        response.headers["X-Correlation-ID"] = correlation_id
        return response

    def require_api_key(request: Request) -> None:
        expected = settings.api_key
        if not expected:
            return
        if request.headers.get("X-API-Key") != expected:
            raise UnauthorizedError("Invalid API key")

    def request_deadline() -> Deadline:
        return Deadline(settings.request_timeout_seconds)

    @app.exception_handler(AppError)
    async def handle_app_error(request: Request, exc: AppError) -> JSONResponse:
        correlation_id = getattr(request.state, "correlation_id", uuid4().hex)
        log = logger.error if exc.status_code >= 500 else logger.info
        log("request.failed", code=exc.code, status_code=exc.status_code, detail=exc.message)
        return _error_response(exc.status_code, exc.code, exc.message, correlation_id)

    @app.exception_handler(RequestValidationError)
    async def handle_validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
        correlation_id = getattr(request.state, "correlation_id", uuid4().hex)
        problems = "; ".join(
            f"{'.'.join(str(part) for part in error.get('loc', ()) if part != 'body')}: {error.get('msg')}"
            for error in exc.errors()
        )
        return _error_response(
            status.HTTP_400_BAD_REQUEST,
            ValidationError.code,
            problems or "Invalid request",
            correlation_id,
        )

    @app.exception_handler(Exception)
    async def handle_unexpected_error(request: Request, exc: Exception) -> JSONResponse:
        correlation_id = getattr(request.state, "correlation_id", uuid4().hex)
        logger.error("unhandled.error", correlation_id=correlation_id, detail=str(exc), exc_info=exc)
        return _error_response(
            status.HTTP_500_INTERNAL_SERVER_ERROR,
            AppError.code,
            "Internal Server Error",
            correlation_id,
        )

    def get_dependencies(request: Request) -> AppDependencies:
        return request.app.state.dependencies

    @app.post("/projects", response_model=ProjectResponse, status_code=status.HTTP_201_CREATED)
    def create_project(
        payload: CreateProjectRequest,
        deps: AppDependencies = Depends(get_dependencies),
        _auth: None = Depends(require_api_key),
    ) -> ProjectResponse:
        return ProjectResponse.from_record(deps.projects.create_project(payload.name))

    @app.get("/projects/{project_id}", response_model=ProjectResponse)
    def get_project(
        project_id: str,
        deps: AppDependencies = Depends(get_dependencies),
        _auth: None = Depends(require_api_key),
    ) -> ProjectResponse:
        return ProjectResponse.from_record(deps.projects.get_project(project_id))

    @app.delete("/projects/{project_id}", status_code=status.HTTP_204_NO_CONTENT)
    def delete_project(
        project_id: str,
        deps: AppDependencies = Depends(get_dependencies),
        _auth: None = Depends(require_api_key),
    ) -> Response:
        deps.projects.delete_project(project_id)
        return Response(status_code=status.HTTP_204_NO_CONTENT)

    @app.post("/documents/upload", response_model=DocumentResponse, status_code=status.HTTP_201_CREATED)
    def upload_document(
        project_id: str = Form(..., alias="projectId"),
        file: UploadFile | None = File(default=None),
        url: str | None = Form(default=None),
        deps: AppDependencies = Depends(get_dependencies),
        deadline: Deadline = Depends(request_deadline),
        _auth: None = Depends(require_api_key),
    ) -> DocumentResponse:
        if file is not None and url:
            raise ValidationError("Provide either a file or a url, not both")
        if file is not None:
            try:
                data = file.file.read()
            finally:
                file.file.close()
            record = deps.documents.upload_file(project_id, file.filename or "", file.content_type, data)
        elif url:
            record = deps.documents.upload_url(project_id, url)
        else:
            raise ValidationError("Either a file or a url is required")
        final = deps.documents.process(record.document_id, deadline=deadline)
        return DocumentResponse.from_record(final)

    @app.get("/documents/{document_id}", response_model=DocumentResponse)
    def get_document(
        document_id: str,
        deps: AppDependencies = Depends(get_dependencies),
        _auth: None = Depends(require_api_key),
    ) -> DocumentResponse:
        return DocumentResponse.from_record(deps.documents.get_document(document_id))

    @app.post("/chat", response_model=ChatResponse)
    def chat(
        payload: ChatRequest,
        deps: AppDependencies = Depends(get_dependencies),
        deadline: Deadline = Depends(request_deadline),
        _auth: None = Depends(require_api_key),
    ) -> ChatResponse:
        result = deps.query.answer(payload.project_id, payload.message, deadline=deadline)
        return ChatResponse.from_result(result)

    @app.get("/breakers", response_model=BreakerListResponse)
    def list_breakers(deps: AppDependencies = Depends(get_dependencies)) -> BreakerListResponse:
        return BreakerListResponse(
            breakers=[BreakerResponse.from_snapshot(breaker.snapshot()) for breaker in deps.guards],
        )

    @app.post("/breakers/{name}/reset", response_model=BreakerResponse)
    def reset_breaker(
        name: str,
        deps: AppDependencies = Depends(get_dependencies),
        _auth: None = Depends(require_api_key),
    ) -> BreakerResponse:
        breaker = deps.guards.get(name)
        breaker.reset()
        logger.info("breaker.manual_reset", dependency=name)
        return BreakerResponse.from_snapshot(breaker.snapshot())

    @app.get("/metrics")
    async def metrics() -> Response:
        payload = generate_latest()
        return Response(content=payload, media_type=CONTENT_TYPE_LATEST)

    @app.get("/healthz")
    async def healthcheck() -> dict[str, str]:
        from groundedqa import __version__

        return {"status": "ok", "version": __version__, "environment": settings.environment}

    @app.head("/healthz")
    async def healthcheck_head() -> Response:
        return Response(status_code=status.HTTP_200_OK)

    @app.get("/livez")
    async def liveness() -> dict[str, str]:
        return {"status": "alive"}

    @app.get("/healthz/ready")
    def readiness(deps: AppDependencies = Depends(get_dependencies)) -> dict[str, str]:
        try:
            deps.vector_store.heartbeat()
        except Exception as exc:
            logger.warning("readiness.failed", detail=str(exc))
            return {"status": "error", "detail": str(exc)}
        return {"status": "ready"}

    return app
