"""Quart application: document upload, chat over documents, sessions."""
import json
from typing import Any, Dict, Optional

import structlog
from quart import Blueprint, Quart, current_app, jsonify, request

from docqa import config
from docqa.errors import BackendError, DocQAError, MessageStreamActive, UnsupportedMediaType
from docqa.log_config import configure_logging
from docqa.memory import SessionNotFound
from docqa.rag.models import Conversation, Document, DocumentStatus
from docqa.rag.synthesizer import OllamaChatBackend
from docqa.services import Services, build_services

logger = structlog.get_logger()

api = Blueprint("api", __name__)


def _services() -> Services:
    return current_app.config["SERVICES"]


def _error_body(error: DocQAError) -> Dict[str, Any]:
    body = {"error": str(error), "error_type": type(error).__name__}
    if isinstance(error, BackendError) and error.status_code is not None:
        body["upstream_status"] = error.status_code
    return body


def _status_for(error: DocQAError) -> int:
    if isinstance(error, UnsupportedMediaType):
        return 415
    if isinstance(error, MessageStreamActive):
        return 409
    if isinstance(error, BackendError):
        return 502
    return 500


def _with_live_status(document: Document) -> Dict[str, Any]:
    """Document as JSON, with the fine-grained status of an attempt in flight."""
    data = document.to_dict()
    live = _services().tracker.status(document.id)
    if live is not None and not live.is_terminal:
        data["status"] = live.value
    return data


# Documents


@api.route("/api/documents", methods=["POST"])
async def upload_document():
    """Upload and index a document.

    Accepts either multipart form data with a `file` field, or JSON:
    {
        "name": "manual.txt",
        "content": "document text",
        "media_type": "text/plain",   // optional
        "document_id": "...",         // optional, re-indexes an existing document
        "owner_id": "..."             // optional
    }

    Returns 201 with {"document_id", "status", "chunks_created", "error"}.
    """
    services = _services()
    files = await request.files

    if "file" in files:
        upload = files["file"]
        form = await request.form
        name = upload.filename or "upload.txt"
        media_type = upload.mimetype
        data = upload.read()
        owner_id = form.get("owner_id")
        document_id = form.get("document_id")
    else:
        body = await request.get_json(silent=True)
        if not body or "content" not in body or not body.get("name"):
            return jsonify({"error": "Expected a 'file' upload or JSON with 'name' and 'content'"}), 400
        name = body["name"]
        media_type = body.get("media_type")
        data = str(body["content"]).encode("utf-8")
        owner_id = body.get("owner_id")
        document_id = body.get("document_id")

    document_id = document_id or Document.new_id()
    logger.info("document_upload_received", document_id=document_id, name=name, size=len(data))

    try:
        result = await services.pipeline.ingest_upload(
            name, media_type, data, owner_id=owner_id, document_id=document_id
        )
    except DocQAError as e:
        body = _error_body(e)
        body.update(document_id=document_id, status=DocumentStatus.ERROR.value)
        return jsonify(body), _status_for(e)

    return jsonify(result.to_dict()), 201


@api.route("/api/documents", methods=["GET"])
async def list_documents():
    owner_id = request.args.get("owner_id")
    documents = await _services().document_store.list(owner_id)
    return jsonify({"documents": [_with_live_status(d) for d in documents]})


@api.route("/api/documents/<document_id>", methods=["GET"])
async def get_document(document_id: str):
    document = await _services().document_store.get(document_id)
    if document is None:
        return jsonify({"error": "Document not found"}), 404

    data = _with_live_status(document)
    if request.args.get("include_content") in ("1", "true"):
        data["content"] = document.content
    return jsonify(data)


@api.route("/api/documents/<document_id>", methods=["DELETE"])
async def delete_document(document_id: str):
    """Delete a document and every chunk indexed for it."""
    services = _services()

    removed_chunks = await services.vector_store.remove_document(document_id)
    deleted = await services.document_store.delete(document_id)
    services.tracker.forget(document_id)

    if not deleted and not removed_chunks:
        return jsonify({"error": "Document not found"}), 404

    logger.info("document_deleted", document_id=document_id, chunks_removed=removed_chunks)
    return "", 204


@api.route("/api/documents", methods=["DELETE"])
async def clear_documents():
    """Delete every document and the whole vector index."""
    services = _services()

    documents = await services.document_store.list()
    await services.vector_store.clear()
    for document in documents:
        await services.document_store.delete(document.id)
        services.tracker.forget(document.id)

    logger.info("documents_cleared", count=len(documents))
    return jsonify({"deleted": len(documents)})


@api.route("/api/stats", methods=["GET"])
async def stats():
    services = _services()
    documents = await services.document_store.list()

    by_status: Dict[str, int] = {}
    for document in documents:
        status = _with_live_status(document)["status"]
        by_status[status] = by_status.get(status, 0) + 1

    return jsonify({
        "documents": len(documents),
        "documents_by_status": by_status,
        "indexed_documents": await services.vector_store.document_count(),
        "chunks": await services.vector_store.chunk_count(),
        "embedding_model": services.embedder.model,
        "chat_model": services.backend.model,
    })


# Chat


def _persist_exchange(
    services: Services,
    session_id: str,
    conversation: Conversation,
    first_exchange: bool,
    question: str,
) -> None:
    user_message, assistant_message = conversation.messages[-2:]
    services.conversations.save_message(session_id, user_message)
    services.conversations.save_message(session_id, assistant_message)
    if first_exchange:
        services.conversations.update_session_title(session_id, question)


@api.route("/api/chat", methods=["POST"])
async def chat():
    """Answer a question from the uploaded documents.

    Expects JSON body:
    {
        "message": "user question",
        "session_id": "optional-session-id",  // creates new if not provided
        "owner_id": "optional owner scope",
        "stream": false                       // optional
    }

    Returns JSON {"response", "model", "session_id", "sources"}, or with
    stream=true an NDJSON body of {"fragment": ...} lines followed by
    {"done": true, "sources": [...], "session_id": ...}.
    """
    services = _services()
    data = await request.get_json(silent=True)

    if not data or "message" not in data:
        logger.error("missing_message_field", data=data)
        return jsonify({"error": "Missing 'message' in request body"}), 400

    question = str(data["message"]).strip()
    session_id = data.get("session_id")
    owner_id = data.get("owner_id")

    if not question:
        return jsonify({"error": "Message cannot be empty"}), 400

    if len(question) > config.MAX_MESSAGE_LENGTH:
        return jsonify({
            "error": f"Message too long (max {config.MAX_MESSAGE_LENGTH} characters)"
        }), 400

    if not session_id:
        session_id = services.conversations.create_session()

    try:
        conversation = services.conversations.load_conversation(session_id)
    except SessionNotFound:
        return jsonify({"error": "Session not found"}), 404

    first_exchange = not conversation.messages

    logger.info(
        "chat_request_received",
        session_id=session_id,
        message_length=len(question),
        stream=bool(data.get("stream")),
        user_message_preview=question[:100],
    )

    if not data.get("stream"):
        message = await services.synthesizer.answer(question, conversation, owner_id=owner_id)
        _persist_exchange(services, session_id, conversation, first_exchange, question)

        logger.info(
            "chat_response_sent",
            session_id=session_id,
            response_length=len(message.content),
            sources=len(message.sources),
        )
        return jsonify({
            "response": message.content,
            "model": services.backend.model,
            "session_id": session_id,
            "sources": [s.to_source() for s in message.sources],
        })

    stream = await services.synthesizer.stream_answer(question, conversation, owner_id=owner_id)

    async def generate():
        try:
            async for fragment in stream:
                yield json.dumps({"fragment": fragment}) + "\n"
            yield json.dumps({
                "done": True,
                "sources": [s.to_source() for s in stream.sources],
                "session_id": session_id,
                "model": services.backend.model,
            }) + "\n"
        except BackendError as e:
            logger.error("chat_stream_failed", session_id=session_id, error=str(e))
            yield json.dumps({"done": True, "session_id": session_id, **_error_body(e)}) + "\n"
        finally:
            await stream.cancel()
            _persist_exchange(services, session_id, conversation, first_exchange, question)
            logger.info(
                "chat_stream_closed",
                session_id=session_id,
                response_length=len(stream.message.content),
                cancelled=stream.cancelled,
            )

    return generate(), 200, {"Content-Type": "application/x-ndjson"}


# Sessions


@api.route("/api/sessions", methods=["POST"])
async def create_session():
    """Create a new chat session from an optional {"title": ...} body."""
    data = await request.get_json(silent=True) or {}
    conversations = _services().conversations

    session_id = conversations.create_session(data.get("title"))
    return jsonify(conversations.get_session(session_id)), 201


@api.route("/api/sessions", methods=["GET"])
async def list_sessions():
    return jsonify({"sessions": _services().conversations.list_sessions()})


@api.route("/api/sessions/<session_id>", methods=["DELETE"])
async def delete_session(session_id: str):
    if _services().conversations.delete_session(session_id):
        return "", 204
    return jsonify({"error": "Session not found"}), 404


@api.route("/api/sessions/<session_id>/messages", methods=["GET"])
async def get_session_messages(session_id: str):
    conversations = _services().conversations
    if not conversations.get_session(session_id):
        return jsonify({"error": "Session not found"}), 404
    return jsonify({"messages": conversations.get_all_messages(session_id)})


# Health


@api.route("/health/live")
async def health_live():
    """Liveness probe - check if app is running."""
    return jsonify({"status": "alive"}), 200


@api.route("/health/ready")
async def health_ready():
    """Readiness probe - check the vector store and the chat backend."""
    services = _services()
    checks = {
        "status": "healthy",
        "vector_store": False,
        "chat_backend": False,
    }

    try:
        checks["chunks"] = await services.vector_store.chunk_count()
        checks["vector_store"] = True
    except DocQAError as e:
        checks["status"] = "unhealthy"
        checks["error"] = str(e)

    backend = services.backend
    if isinstance(backend, OllamaChatBackend):
        try:
            models = await backend.client.list_models()
            checks["chat_backend"] = backend.model in models
            if not checks["chat_backend"]:
                checks["status"] = "unhealthy"
                checks["error"] = f"Missing chat model: {backend.model}"
        except Exception as e:
            logger.error("health_check_failed", error=str(e))
            checks["status"] = "unhealthy"
            checks["error"] = str(e)
    else:
        client = getattr(backend, "client", None)
        checks["chat_backend"] = bool(getattr(client, "api_key", True))
        if not checks["chat_backend"]:
            checks["status"] = "unhealthy"
            checks["error"] = "Chat backend is not configured"

    status_code = 200 if checks["status"] == "healthy" else 503
    return jsonify(checks), status_code


def create_app(services: Optional[Services] = None) -> Quart:
    """Build the Quart app.

    Args:
        services: Pre-built components; built from config at startup if omitted
    """
    app = Quart(__name__)
    app.config["SERVICES"] = services
    app.register_blueprint(api)

    @app.before_serving
    async def startup():
        if app.config["SERVICES"] is None:
            configure_logging()
            app.config["SERVICES"] = await build_services()

    @app.errorhandler(SessionNotFound)
    async def session_not_found(error):
        return jsonify({"error": "Session not found"}), 404

    @app.errorhandler(DocQAError)
    async def docqa_error(error):
        logger.error(
            "request_failed",
            error=str(error),
            error_type=type(error).__name__,
        )
        return jsonify(_error_body(error)), _status_for(error)

    @app.errorhandler(404)
    async def not_found(error):
        return jsonify({"error": "Not found"}), 404

    @app.errorhandler(500)
    async def internal_error(error):
        logger.error("internal_server_error", error=str(error))
        return jsonify({"error": "Internal server error"}), 500

    return app


if __name__ == "__main__":
    # For development - use hypercorn "docqa.main:create_app()" in production
    create_app().run(host="0.0.0.0", port=5000, debug=True)
