"""Main Quart application for the KORTEX study assistant."""
from dataclasses import asdict
from typing import Optional

from pydantic import BaseModel, Field, ValidationError
from quart import Quart, request, jsonify
import structlog

from kortex import config
from kortex.activity import (
    ACTION_CREATE_SUBJECT,
    ACTION_DELETE_DOCUMENT,
    ACTION_DELETE_SUBJECT,
    ACTION_UPDATE_SUBJECT,
    ActivityLogger,
)
from kortex.exceptions import (
    ConfigurationError,
    EmbeddingDimensionMismatchError,
    EmbeddingFailureError,
    EmptyDocumentError,
    GenerationFailureError,
    KortexError,
    NoChunksGeneratedError,
    NotFoundError,
    SearchFailureError,
    UnreadableDocumentError,
)
from kortex.library import LibraryManager
from kortex.llm_client import CloudflareEmbedder, GroqClient
from kortex.log_config import configure_logging
from kortex.rag.ingest import IngestPipeline
from kortex.rag.orchestrator import RAGOrchestrator
from kortex.rag.pdf_parser import PdfTextExtractor
from kortex.rag.retriever import Retriever

configure_logging()

logger = structlog.get_logger()

# Initialize Quart app
app = Quart(__name__)
app.config["MAX_CONTENT_LENGTH"] = config.MAX_UPLOAD_BYTES + 64 * 1024  # file + form fields

# Wire the pipeline
library = LibraryManager()
activity_logger = ActivityLogger()
embedder = CloudflareEmbedder()
generator = GroqClient()
pipeline = IngestPipeline(
    extractor=PdfTextExtractor(),
    embedder=embedder,
    repository=library,
    activity_log=activity_logger,
)
orchestrator = RAGOrchestrator(
    retriever=Retriever(embedder, library),
    generator=generator,
    activity_log=activity_logger,
)

_ERROR_STATUS = [
    (NotFoundError, 404),
    (UnreadableDocumentError, 422),
    (EmptyDocumentError, 422),
    (NoChunksGeneratedError, 422),
    (ConfigurationError, 503),
    (EmbeddingDimensionMismatchError, 502),
    (EmbeddingFailureError, 502),
    (SearchFailureError, 502),
    (GenerationFailureError, 502),
]


class ChatRequest(BaseModel):
    message: str = Field(min_length=1, max_length=2000)
    subject_id: str = Field(min_length=1)
    user_id: Optional[str] = None


class SubjectCreateRequest(BaseModel):
    user_id: str = Field(min_length=1)
    name: str = Field(min_length=1, max_length=100)


class SubjectRenameRequest(BaseModel):
    name: str = Field(min_length=1, max_length=100)


async def _parse_body(model: type[BaseModel]) -> BaseModel:
    data = await request.get_json(silent=True)
    if isinstance(data, dict):
        for key, value in data.items():
            if isinstance(value, str):
                data[key] = value.strip()
    return model.model_validate(data or {})


@app.route("/api/chat", methods=["POST"])
async def chat():
    """Answer a question from one subject's documents.

    Expects JSON body:
    {
        "message": "question text",
        "subject_id": "subject uuid",
        "user_id": "optional owner id"
    }

    Returns JSON:
    {
        "success": true,
        "answer": "...",
        "outcome": "generated" | "gated_empty" | "gated_low_confidence",
        "xray_context": {"retrieved_chunks": [...], "chunk_count": 2, ...},
        "tokens_used": {"prompt": 1, "completion": 2, "total": 3} | null
    }
    """
    body = await _parse_body(ChatRequest)

    subject = library.get_subject(body.subject_id)
    if body.user_id and subject.user_id != body.user_id:
        raise NotFoundError("Subject", body.subject_id)

    logger.info(
        "chat_request_received",
        subject_id=body.subject_id,
        message_length=len(body.message),
    )

    result = await orchestrator.query(body.message, body.subject_id, user_id=body.user_id)

    return jsonify({"success": True, **result.to_dict()})


@app.route("/api/upload", methods=["POST"])
async def upload():
    """Upload a PDF into a subject and index it.

    Expects multipart form data with 'file', 'subject_id' and 'user_id'.
    """
    files = await request.files
    form = await request.form

    upload_file = files.get("file")
    if upload_file is None or not upload_file.filename:
        return jsonify({"success": False, "error": "No file uploaded"}), 400

    subject_id = (form.get("subject_id") or "").strip()
    user_id = (form.get("user_id") or "").strip()
    if not subject_id or not user_id:
        return jsonify({
            "success": False,
            "error": "Missing required fields: subject_id and user_id",
        }), 400

    is_pdf = (
        upload_file.mimetype in config.ALLOWED_CONTENT_TYPES
        or upload_file.filename.lower().endswith(".pdf")
    )
    if not is_pdf:
        return jsonify({"success": False, "error": "Only PDF files are allowed"}), 415

    file_bytes = upload_file.read()
    if len(file_bytes) > config.MAX_UPLOAD_BYTES:
        return jsonify({"success": False, "error": "File too large"}), 413

    subject = library.get_subject(subject_id)
    if subject.user_id != user_id:
        raise NotFoundError("Subject", subject_id)

    logger.info("upload_request_received", file_name=upload_file.filename, size=len(file_bytes))

    result = await pipeline.ingest(file_bytes, upload_file.filename, subject_id, user_id)

    return jsonify({
        "success": True,
        "document_id": result.document_id,
        "chunks_generated": result.chunk_count,
        "title": result.title,
        "message": f"Successfully processed {result.title} into {result.chunk_count} chunks",
    })


@app.route("/api/subjects", methods=["GET"])
async def list_subjects():
    user_id = request.args.get("user_id")
    if not user_id:
        return jsonify({"error": "Missing user_id"}), 400
    return jsonify({"success": True, "subjects": library.list_subjects(user_id)})


@app.route("/api/subjects", methods=["POST"])
async def create_subject():
    body = await _parse_body(SubjectCreateRequest)
    subject = library.create_subject(body.user_id, body.name)
    activity_logger.log(body.user_id, ACTION_CREATE_SUBJECT, subject.id, {"name": subject.name})
    return jsonify({"success": True, "subject": asdict(subject)}), 201


@app.route("/api/subjects/<subject_id>", methods=["PATCH"])
async def rename_subject(subject_id: str):
    body = await _parse_body(SubjectRenameRequest)
    subject = library.rename_subject(subject_id, body.name)
    activity_logger.log(subject.user_id, ACTION_UPDATE_SUBJECT, subject.id, {"name": subject.name})
    return jsonify({"success": True, "subject": asdict(subject)})


@app.route("/api/subjects/<subject_id>", methods=["DELETE"])
async def delete_subject(subject_id: str):
    """Delete a subject with all of its documents and chunks."""
    subject = library.get_subject(subject_id)
    library.delete_subject(subject_id)
    activity_logger.log(subject.user_id, ACTION_DELETE_SUBJECT, subject_id, {"name": subject.name})
    return jsonify({"success": True, "message": "Subject deleted successfully"})


@app.route("/api/documents", methods=["GET"])
async def list_documents():
    subject_id = request.args.get("subject_id")
    if not subject_id:
        return jsonify({"error": "Missing subject_id"}), 400
    return jsonify({"success": True, "documents": library.list_documents(subject_id)})


@app.route("/api/documents/<document_id>", methods=["DELETE"])
async def delete_document(document_id: str):
    document = library.get_document(document_id)
    library.delete_document(document_id)
    activity_logger.log(
        document.user_id, ACTION_DELETE_DOCUMENT, document_id, {"title": document.title}
    )
    return jsonify({"success": True, "message": "Document deleted successfully"})


@app.route("/api/dashboard/stats", methods=["GET"])
async def dashboard_stats():
    """Subject, document and chat query counts for one user."""
    user_id = request.args.get("user_id")
    if not user_id:
        return jsonify({"error": "Missing user_id"}), 400
    return jsonify({"success": True, "stats": library.get_user_stats(user_id)})


@app.route("/api/dashboard/activity", methods=["GET"])
async def dashboard_activity():
    """The user's ten most recent actions, newest first."""
    user_id = request.args.get("user_id")
    if not user_id:
        return jsonify({"error": "Missing user_id"}), 400
    return jsonify({"success": True, "activities": library.get_recent_activity(user_id)})


@app.route("/health/ready")
async def health_ready():
    """Readiness probe - check that the model APIs are configured."""
    checks = {
        "status": "healthy",
        "embeddings": bool(config.CLOUDFLARE_ACCOUNT_ID and config.CLOUDFLARE_API_TOKEN),
        "llm": bool(config.GROQ_API_KEY),
    }
    if not (checks["embeddings"] and checks["llm"]):
        checks["status"] = "unhealthy"

    status_code = 200 if checks["status"] == "healthy" else 503
    return jsonify(checks), status_code


@app.route("/health/live")
async def health_live():
    """Liveness probe - check if app is running."""
    return jsonify({"status": "alive"}), 200


@app.after_serving
async def flush_activity_log():
    await activity_logger.drain()


@app.errorhandler(ValidationError)
async def invalid_request(error: ValidationError):
    return jsonify({
        "success": False,
        "error": "Invalid request",
        "details": error.errors(include_url=False, include_context=False),
    }), 400


@app.errorhandler(KortexError)
async def kortex_error(error: KortexError):
    """Map domain errors to JSON responses."""
    status = next((code for cls, code in _ERROR_STATUS if isinstance(error, cls)), 500)
    if status >= 500:
        logger.error(
            "request_failed",
            error=error.message,
            detail=error.detail,
            error_type=type(error).__name__,
        )

    body = {"success": False, "error": error.message}
    if error.detail:
        body["detail"] = error.detail
    document_id = getattr(error, "document_id", None)
    if document_id:
        body["document_id"] = document_id
    return jsonify(body), status


@app.errorhandler(404)
async def not_found(error):
    """Handle 404 errors."""
    return jsonify({"error": "Not found"}), 404


@app.errorhandler(500)
async def internal_error(error):
    """Handle 500 errors."""
    logger.error("internal_server_error", error=str(error))
    return jsonify({"error": "Internal server error"}), 500


if __name__ == "__main__":
    # For development - use hypercorn in production
    app.run(host="0.0.0.0", port=5000, debug=True)
