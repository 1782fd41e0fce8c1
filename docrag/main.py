"""Quart application exposing document indexing and retrieval over HTTP."""
import asyncio
import json
import os
import tempfile
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

import structlog
from hypercorn.asyncio import serve
from hypercorn.config import Config
from pydantic import ValidationError
from quart import Quart, jsonify, request

from docrag.config import Settings
from docrag.exceptions import NotFoundError, RagError, RequestError
from docrag.llm_client import model_is_installed
from docrag.logs import configure_logging
from docrag.rag.service import RAGService
from docrag.schemas import (
    DEFAULT_COLLECTION,
    BatchIndexResponse,
    CollectionCreated,
    CollectionDeleted,
    CollectionInfoResponse,
    CollectionList,
    CreateCollectionRequest,
    FileOutcome,
    IndexResponse,
    QueryRequest,
    QueryResponse,
    Source,
    UploadPathRequest,
)

logger = structlog.get_logger()


def _timestamp() -> str:
    return datetime.now(timezone.utc).isoformat()


def success(data: Any, status_code: int = 200):
    """Wrap a payload in the standard response envelope."""
    return jsonify({"success": True, "data": data, "timestamp": _timestamp()}), status_code


def failure(message: str, status_code: int, code: Optional[str] = None):
    body = {"success": False, "error": message, "timestamp": _timestamp()}
    if code:
        body["code"] = code
    return jsonify(body), status_code


def create_app(
    settings: Optional[Settings] = None,
    service: Optional[RAGService] = None,
) -> Quart:
    """Build the application.

    Args:
        settings: Runtime settings (defaults to the environment)
        service: Pre-built service, mainly for tests

    Returns:
        Configured Quart app
    """
    settings = settings or Settings.from_env().validate()
    service = service or RAGService(settings)

    app = Quart(__name__)
    # Multipart framing needs a little headroom over the file itself
    app.config["MAX_CONTENT_LENGTH"] = settings.max_file_size_bytes + 1024 * 1024
    app.config["RAG_SERVICE"] = service

    @app.before_serving
    async def startup():
        logger.info("server_starting", host=settings.host, port=settings.port)
        try:
            await service.initialize()
        except RagError as e:
            # Stay up so /health/ready can report the problem
            logger.error("service_initialization_failed", error=str(e))

    @app.route("/health")
    async def health():
        """Liveness probe."""
        return jsonify(
            {"status": "healthy", "timestamp": _timestamp(), "version": settings.version}
        )

    @app.route("/health/ready")
    async def health_ready():
        """Readiness probe - Ollama reachable and embedding model installed."""
        checks = {
            "status": "healthy",
            "ollama": False,
            "model": False,
        }

        try:
            models = await service.embedder.client.list_models()
            checks["ollama"] = True

            if model_is_installed(settings.embedding_model, models):
                checks["model"] = True
            else:
                checks["status"] = "unhealthy"
                checks["error"] = f"Missing embedding model: {settings.embedding_model}"

        except Exception as e:
            logger.error("health_check_failed", error=str(e))
            checks["status"] = "unhealthy"
            checks["error"] = str(e)

        status_code = 200 if checks["status"] == "healthy" else 503
        return jsonify(checks), status_code

    @app.route("/api/status")
    async def status():
        return success(await service.get_status())

    @app.route("/api/documents/upload", methods=["POST"])
    async def upload_document():
        """Index a multipart-uploaded file.

        Form fields: ``file`` (required), ``collection``, ``metadata`` (JSON object).
        """
        files = await request.files
        form = await request.form

        upload = files.get("file")
        if upload is None or not upload.filename:
            raise RequestError("No file uploaded", operation="upload")

        collection = form.get("collection") or DEFAULT_COLLECTION
        metadata = _parse_metadata(form.get("metadata"))
        filename = Path(upload.filename).name

        logger.info("upload_request", file=filename, collection=collection)

        fd, tmp_path = tempfile.mkstemp(prefix="docrag-upload-", suffix=Path(filename).suffix)
        os.close(fd)
        try:
            await upload.save(tmp_path)
            result = await service.index_document(
                Path(tmp_path), collection, metadata, original_filename=filename
            )
        finally:
            os.unlink(tmp_path)

        response = IndexResponse(
            document_id=result.document_id,
            chunks_count=result.chunks_count,
            processing_time_ms=result.processing_time_ms,
            collection=collection,
            file_name=filename,
        )
        return success(response.to_wire())

    @app.route("/api/upload", methods=["POST"])
    async def upload_path():
        """Index a server-side file, or every supported file under a directory."""
        body = UploadPathRequest.model_validate(await request.get_json(silent=True) or {})

        logger.info("upload_path_request", path=body.file_path, collection=body.collection)

        batch = await service.index_path(Path(body.file_path), body.collection, body.metadata)

        response = BatchIndexResponse(
            message=(
                f"Processed {len(batch.results)} files: "
                f"{batch.success_count} successful, {batch.error_count} failed"
            ),
            collection=batch.collection,
            total_chunks=batch.total_chunks,
            total_processing_time_ms=batch.total_processing_time_ms,
            results=[
                FileOutcome(
                    file=r.file,
                    document_id=r.document_id,
                    chunks_count=r.chunks_count,
                    processing_time_ms=r.processing_time_ms,
                    error=r.error,
                )
                for r in batch.results
            ],
        )
        return jsonify(
            {
                "success": batch.success_count > 0,
                "data": response.to_wire(),
                "timestamp": _timestamp(),
            }
        )

    @app.route("/api/query", methods=["POST"])
    async def query():
        body = QueryRequest.model_validate(await request.get_json(silent=True) or {})
        question = body.question.strip()
        if not question:
            raise RequestError("Question is required", operation="query")

        result = await service.query(
            question, body.collection, limit=body.limit, threshold=body.threshold
        )

        response = QueryResponse(
            answer=result.answer,
            sources=[
                Source(content=s.content, score=s.score, metadata=s.metadata)
                for s in result.sources
            ],
            processing_time_ms=result.processing_time_ms,
        )
        return success(response.to_wire())

    @app.route("/api/collections", methods=["GET"])
    async def list_collections():
        collections = await service.list_collections()
        return success(CollectionList(collections=collections).to_wire())

    @app.route("/api/collections", methods=["POST"])
    async def create_collection():
        """Acknowledge a collection; it materialises on first upload."""
        body = CreateCollectionRequest.model_validate(await request.get_json(silent=True) or {})
        created = await service.create_collection(body.name)

        message = (
            f"Collection '{body.name}' already exists"
            if created["exists"]
            else f"Collection '{body.name}' will be created on first upload"
        )
        response = CollectionCreated(name=body.name, exists=created["exists"], message=message)
        return success(response.to_wire(), 201)

    @app.route("/api/collections/<name>", methods=["GET"])
    async def get_collection(name: str):
        info = await service.get_collection_info(name)
        if info is None:
            raise NotFoundError(f"Collection '{name}'", collection=name)

        response = CollectionInfoResponse(
            name=info.name,
            document_count=info.document_count,
            chunk_count=info.chunk_count,
            dimension=info.dimension,
            last_modified=info.last_modified,
        )
        return success(response.to_wire())

    @app.route("/api/collections/<name>", methods=["DELETE"])
    async def delete_collection(name: str):
        await service.delete_collection(name)
        response = CollectionDeleted(name=name, message=f"Collection '{name}' deleted")
        return success(response.to_wire())

    @app.errorhandler(RagError)
    async def handle_rag_error(error: RagError):
        log = logger.warning if error.status_code < 500 else logger.error
        log("request_failed", error=str(error), code=error.code, path=request.path)
        body = {"success": False, **error.to_dict(), "timestamp": _timestamp()}
        return jsonify(body), error.status_code

    @app.errorhandler(ValidationError)
    async def handle_validation_error(error: ValidationError):
        details = "; ".join(
            f"{'.'.join(str(p) for p in e['loc']) or 'body'}: {e['msg']}"
            for e in error.errors()
        )
        logger.warning("request_validation_failed", path=request.path, details=details)
        return failure(f"Invalid request: {details}", 400, "VALIDATION_ERROR")

    @app.errorhandler(404)
    async def not_found(error):
        return failure("Not found", 404, "NOT_FOUND")

    @app.errorhandler(405)
    async def method_not_allowed(error):
        return failure("Method not allowed", 405)

    @app.errorhandler(413)
    async def too_large(error):
        return failure(
            f"File too large (max {settings.max_file_size_mb} MB)", 413, "FILE_TOO_LARGE"
        )

    @app.errorhandler(500)
    async def internal_error(error):
        logger.error("internal_server_error", error=str(error))
        return failure("Internal server error", 500)

    return app


def _parse_metadata(raw: Optional[str]) -> dict:
    if not raw:
        return {}
    try:
        metadata = json.loads(raw)
    except ValueError as e:
        raise RequestError(f"metadata must be valid JSON: {e}", operation="upload") from e
    if not isinstance(metadata, dict):
        raise RequestError("metadata must be a JSON object", operation="upload")
    return metadata


def run() -> None:
    """Serve the API with Hypercorn using environment settings."""
    settings = Settings.from_env().validate()
    configure_logging(settings.log_level)

    config = Config()
    config.bind = [f"{settings.host}:{settings.port}"]
    config.accesslog = "-"

    asyncio.run(serve(create_app(settings), config))


if __name__ == "__main__":
    run()
