"""
Flask web server for IdeaSurge.

Routes
──────
GET  /api/stream?query=...             SSE: run an idea search
GET  /api/ideas                        Current session batch (JSON)
GET  /api/ideas/<id>                   One idea + its deep dives (JSON)
POST /api/ideas/<id>/pick              Pick an idea
POST /api/ideas/recycle                Explicitly recycle ideas
GET  /api/ideas/<id>/deepen?focus=...  SSE: run a deep dive
POST /api/ideas/<id>/chat              Brainstorm chat turn (JSON)
GET  /api/library?q=...                Recycled ideas grouped by category
GET  /api/library/<record_id>          One library record (JSON)

Run with: flask --app web.app run   (or python web/app.py)
"""

from __future__ import annotations

import json
import logging
import os
import sys
from typing import Optional

from dotenv import load_dotenv
from flask import Flask, Response, jsonify, request, stream_with_context
from pydantic import ValidationError

# Allow running as `python web/app.py` from the project root
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

load_dotenv()

from config.settings import Settings
from ideasurge import library as lib
from ideasurge.lifecycle import IdeaLifecycle
from ideasurge.models import (
    ChatRequest,
    DeepDiveRequest,
    IdeaStatus,
    RecycleRequest,
    utc_now_iso,
)
from ideasurge.pipeline import DeepDiveError, run_deep_dive, run_idea_search
from ideasurge.researcher import (
    brainstorm_reply,
    stream_deep_dive_frames,
    stream_idea_frames,
)
from ideasurge.session_store import SessionStore
from ideasurge.stream import StreamError, ToolCall, ToolResult

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

_SSE_HEADERS = {"Cache-Control": "no-cache", "X-Accel-Buffering": "no"}


def _sse(payload: dict) -> str:
    return f"data: {json.dumps(payload, ensure_ascii=False)}\n\n"


def _event_payload(event_type: str, payload: object) -> dict:
    """Translate a pipeline event into its SSE JSON body."""
    if event_type == "text":
        return {"type": "text", "text": payload}
    if isinstance(payload, ToolCall):
        return {"type": "tool_call", "id": payload.id, "name": payload.name, "args": payload.args}
    if isinstance(payload, ToolResult):
        return {"type": "tool_result", "id": payload.id, "result": payload.result}
    if event_type in ("ideas", "done"):
        return {"type": event_type, "ideas": [i.model_dump(by_alias=True) for i in payload]}
    return {"type": event_type, "data": payload.model_dump(by_alias=True)}


def _bad_request(exc: ValidationError):
    details = exc.errors(include_url=False, include_context=False, include_input=False)
    return jsonify({"error": "Invalid payload.", "details": details}), 400


def create_app(
    settings: Optional[Settings] = None,
    store: Optional[SessionStore] = None,
    lifecycle: Optional[IdeaLifecycle] = None,
) -> Flask:
    """Build the Flask app around one session store and lifecycle."""
    settings = settings or Settings()
    logging.getLogger().setLevel(settings.log_level)

    lib.init_db()
    store = store or SessionStore(settings.session_path or None)
    lifecycle = lifecycle or IdeaLifecycle(store, recycle_on_pick=settings.recycle_on_pick)

    app = Flask(__name__)
    app.extensions["ideasurge"] = {"settings": settings, "store": store, "lifecycle": lifecycle}

    # ── Idea search ────────────────────────────────────────────────────────

    @app.route("/api/stream")
    def stream_endpoint():
        """SSE endpoint that streams a full idea search.

        Query params:
          query  (required) — the market interest to research

        SSE events emitted:
          {"type": "text",        "text": "..."}    visible text so far (replaces the last one)
          {"type": "tool_call",   "id": ..., "name": ..., "args": {...}}
          {"type": "tool_result", "id": ..., "result": ...}
          {"type": "ideas",       "ideas": [...]}    whenever the parse changes
          {"type": "done",        "ideas": [...]}    final batch
          {"type": "error",       "message": "..."}  on failure
        """
        query = request.args.get("query", "").strip()
        if not query:
            return jsonify({"error": "query param is required"}), 400

        # Recycle the previous batch before the new stream starts.
        cancel = lifecycle.begin_search()
        created_at = utc_now_iso()

        def generate():
            try:
                frames = stream_idea_frames(query, settings)
                for event_type, payload in run_idea_search(frames, lifecycle, created_at, cancel):
                    yield _sse(_event_payload(event_type, payload))
            except Exception as exc:
                logger.exception("Idea search error for query=%r", query)
                yield _sse({"type": "error", "message": str(exc)})

            yield "data: [DONE]\n\n"

        return Response(
            stream_with_context(generate()),
            mimetype="text/event-stream",
            headers=_SSE_HEADERS,
        )

    # ── Session ideas ──────────────────────────────────────────────────────

    @app.route("/api/ideas")
    def list_ideas():
        """Return the active batch, flagging picked ideas."""
        picked = store.picked_ids()
        return jsonify(
            [
                {**idea.model_dump(by_alias=True), "picked": idea.id in picked}
                for idea in store.get_ideas()
            ]
        )

    @app.route("/api/ideas/<idea_id>")
    def get_idea(idea_id: str):
        """Return one idea with its deep dives, newest first."""
        idea = store.get_idea_by_id(idea_id)
        if idea is None:
            return jsonify({"error": "Idea not found."}), 404
        return jsonify(
            {
                "idea": idea.model_dump(by_alias=True),
                "deepDives": [d.model_dump(by_alias=True) for d in store.get_deep_dives(idea_id)],
            }
        )

    @app.route("/api/ideas/<idea_id>/pick", methods=["POST"])
    def pick_idea(idea_id: str):
        idea = lifecycle.pick(idea_id)
        if idea is None:
            return jsonify({"error": "Idea not found."}), 404
        return jsonify({"ok": True, "idea": idea.model_dump(by_alias=True)})

    @app.route("/api/ideas/recycle", methods=["POST"])
    def recycle_ideas():
        try:
            body = RecycleRequest.model_validate(request.get_json(silent=True) or {})
        except ValidationError as exc:
            return _bad_request(exc)
        lifecycle.recycle(body.ideas)
        return jsonify({"ok": True, "submitted": len(body.ideas)})

    # ── Deep dive ──────────────────────────────────────────────────────────

    @app.route("/api/ideas/<idea_id>/deepen")
    def deepen_idea(idea_id: str):
        """SSE endpoint that streams a deep dive about one idea.

        Query params:
          mode    preset | custom        (default preset)
          focus   market | mvp | risks | pricing | custom
          prompt  free-text request      (custom mode)

        Ends with {"type": "deep_dive", "data": {...}} or
        {"type": "error", "message": "...", "retry": bool}.
        """
        idea = store.get_idea_by_id(idea_id)
        if idea is None:
            return jsonify({"error": "Idea not found."}), 404
        try:
            dive_request = DeepDiveRequest.model_validate(
                {"ideaId": idea_id, **request.args.to_dict()}
            )
        except ValidationError as exc:
            return _bad_request(exc)

        def generate():
            try:
                frames = stream_deep_dive_frames(idea, dive_request, settings)
                for event_type, payload in run_deep_dive(frames, idea, store):
                    yield _sse(_event_payload(event_type, payload))
            except (DeepDiveError, StreamError) as exc:
                logger.warning("Deep dive failed for idea=%s: %s", idea_id, exc)
                yield _sse({"type": "error", "message": str(exc), "retry": True})
            except Exception as exc:
                logger.exception("Deep dive error for idea=%s", idea_id)
                yield _sse({"type": "error", "message": str(exc), "retry": False})

            yield "data: [DONE]\n\n"

        return Response(
            stream_with_context(generate()),
            mimetype="text/event-stream",
            headers=_SSE_HEADERS,
        )

    # ── Brainstorm ─────────────────────────────────────────────────────────

    @app.route("/api/ideas/<idea_id>/chat", methods=["POST"])
    def chat(idea_id: str):
        idea = store.get_idea_by_id(idea_id)
        if idea is None:
            return jsonify({"error": "Idea not found."}), 404
        try:
            body = ChatRequest.model_validate(request.get_json(silent=True) or {})
        except ValidationError as exc:
            return _bad_request(exc)

        dives = store.get_deep_dives(idea_id)
        try:
            reply = brainstorm_reply(idea, dives[0] if dives else None, body.messages, settings)
        except Exception as exc:
            logger.exception("Brainstorm error for idea=%s", idea_id)
            return jsonify({"error": str(exc)}), 500
        return jsonify({"reply": reply})

    # ── Library ────────────────────────────────────────────────────────────

    @app.route("/api/library")
    def list_library():
        """Recycled ideas grouped by category, largest group first."""
        records = lib.filter_records(
            lib.list_by_status(IdeaStatus.RECYCLED), request.args.get("q", "")
        )
        return jsonify(
            [
                {
                    "category": category,
                    "ideas": [r.to_idea().model_dump(by_alias=True) for r in group],
                }
                for category, group in lib.group_by_category(records)
            ]
        )

    @app.route("/api/library/<record_id>")
    def get_library_record(record_id: str):
        record = lib.get_by_id(record_id)
        if record is None:
            return jsonify({"error": "Idea not found."}), 404
        return jsonify({"idea": record.to_idea().model_dump(by_alias=True)})

    return app


# ── Entry point ────────────────────────────────────────────────────────────

if __name__ == "__main__":
    settings = Settings()
    settings.validate()
    create_app(settings).run(debug=settings.debug, host="0.0.0.0", port=settings.port)
