"""HTTP API for the station supervisor."""

from __future__ import annotations

import asyncio
import json
import logging
import os
from typing import Optional

from quart import Quart, jsonify, make_response, request, send_file

from .events import LogBook, LogEvent, Severity
from .launch import PipelineError, PreconditionError, StationNotFoundError
from .models import PipelineState
from .settings import Settings
from .storage import StationPaths
from .store import JsonStationStore, StationStore
from .supervisor import StationSupervisor

logger = logging.getLogger(__name__)

# per-client buffer for the event stream; a client that falls this far behind loses events
EVENT_QUEUE_SIZE = 256


def configure_logging(level: Optional[str] = None) -> None:
    logging.basicConfig(
        level=(level or os.environ.get("LOG_LEVEL", "INFO")).upper(),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )


def _error(exc: PipelineError):
    if isinstance(exc, StationNotFoundError):
        status = 404
    elif isinstance(exc, PreconditionError):
        status = 409
    else:
        status = 500
    return jsonify({"error": str(exc), "type": exc.__class__.__name__}), status


def _sse(kind: str, payload: dict) -> bytes:
    return f"event: {kind}\ndata: {json.dumps(payload)}\n\n".encode("utf-8")


def create_app(
    settings: Optional[Settings] = None,
    store: Optional[StationStore] = None,
    supervisor: Optional[StationSupervisor] = None,
) -> Quart:
    """
    Build the API application.

    Args:
        settings: Service settings; loaded from the environment when omitted
        store: Station configuration store; JSON files under the config dir by default
        supervisor: Pre-built supervisor, mainly for tests

    Returns:
        Quart application with the supervisor attached as ``app.supervisor``
    """
    settings = settings or Settings.load()
    if supervisor is None:
        store = store or JsonStationStore(settings.config_dir)
        supervisor = StationSupervisor(store, settings)

    app = Quart(__name__)
    logbook = LogBook(limit=settings.log_history)
    logbook.attach(supervisor.events)
    app.supervisor = supervisor
    app.logbook = logbook

    def _known(station_id: str) -> bool:
        return supervisor.store.get_slug(station_id) is not None or station_id in supervisor.get_all_statuses()

    @app.after_serving
    async def shutdown():
        await supervisor.shutdown()

    @app.route("/api")
    async def api_info():
        """API endpoint with API info."""
        return jsonify({
            "service": "loopcast",
            "version": "0.1.0",
            "pipeline_mode": settings.pipeline_mode,
            "endpoints": {
                "stations": "/stations",
                "events": "/events",
            },
        })

    @app.route("/stations", methods=["GET"])
    async def list_stations():
        """Status of every configured or supervised station."""
        statuses = supervisor.get_all_statuses()
        ids = set(statuses)
        list_ids = getattr(supervisor.store, "ids", None)
        if list_ids is not None:
            ids.update(list_ids())
        return jsonify({
            "stations": [supervisor.get_status(station_id).to_dict() for station_id in sorted(ids)]
        })

    @app.route("/stations/<station_id>", methods=["GET"])
    async def get_station(station_id: str):
        if not _known(station_id):
            return jsonify({"error": "Station not found"}), 404
        return jsonify(supervisor.get_status(station_id).to_dict())

    @app.route("/stations/<station_id>", methods=["DELETE"])
    async def remove_station(station_id: str):
        """Forget a deleted station and stop its processes."""
        removed = await supervisor.remove_station(station_id)
        if not removed:
            return jsonify({"error": "Station not found"}), 404
        logbook.forget(station_id)
        return jsonify({"message": "Station removed"}), 200

    @app.route("/stations/<station_id>/start", methods=["POST"])
    async def start_station(station_id: str):
        try:
            await supervisor.start(station_id)
        except PipelineError as exc:
            return _error(exc)
        return jsonify(supervisor.get_status(station_id).to_dict())

    @app.route("/stations/<station_id>/stop", methods=["POST"])
    async def stop_station(station_id: str):
        await supervisor.stop(station_id)
        return jsonify(supervisor.get_status(station_id).to_dict())

    @app.route("/stations/<station_id>/restart", methods=["POST"])
    async def restart_station(station_id: str):
        try:
            await supervisor.restart(station_id)
        except PipelineError as exc:
            return _error(exc)
        return jsonify(supervisor.get_status(station_id).to_dict())

    @app.route("/stations/<station_id>/playlist", methods=["POST"])
    async def update_playlist(station_id: str):
        """Rewrite the manifest; live stations pick it up through a restart."""
        data = await request.get_json(silent=True) or {}
        try:
            if data.get("apply", True):
                playlist = await supervisor.apply_playlist(station_id)
            else:
                playlist = supervisor.materialize_playlist(station_id)
        except PipelineError as exc:
            return _error(exc)
        except OSError as exc:
            logger.exception("Failed to write playlist for %s", station_id)
            return jsonify({"error": str(exc)}), 500
        return jsonify({
            "items": playlist.item_count,
            "repeats": playlist.repeats,
            "total_seconds": playlist.total_seconds,
            "summary": playlist.summary,
            "state": supervisor.get_status(station_id).state.value,
        })

    @app.route("/stations/<station_id>/snapshot", methods=["POST"])
    async def create_snapshot(station_id: str):
        try:
            await supervisor.generate_snapshot(station_id)
        except PipelineError as exc:
            return _error(exc)
        return jsonify({"snapshot": f"/stations/{station_id}/snapshot"}), 201

    @app.route("/stations/<station_id>/snapshot", methods=["GET"])
    async def get_snapshot(station_id: str):
        slug = supervisor.store.get_slug(station_id)
        if slug is None:
            return jsonify({"error": "Station not found"}), 404
        path = StationPaths.for_slug(settings.data_dir, slug).snapshot
        if not path.is_file():
            return jsonify({"error": "No snapshot yet"}), 404
        return await send_file(path, mimetype="image/jpeg")

    @app.route("/stations/<station_id>/logs", methods=["GET"])
    async def get_logs(station_id: str):
        limit = request.args.get("limit", default=100, type=int)
        level = request.args.get("level")
        try:
            severity = Severity(level) if level else None
        except ValueError:
            levels = ", ".join(item.value for item in Severity)
            return jsonify({"error": f"Unknown level {level!r}; expected one of {levels}"}), 400
        return jsonify({"logs": [event.to_dict() for event in logbook.recent(station_id, limit, severity)]})

    @app.route("/stations/<station_id>/test/nowplaying", methods=["POST"])
    async def test_now_playing(station_id: str):
        try:
            probe = await supervisor.probe_now_playing(station_id)
        except PipelineError as exc:
            return _error(exc)
        return jsonify(probe.to_dict())

    @app.route("/stations/<station_id>/test/audio", methods=["POST"])
    async def test_audio(station_id: str):
        try:
            results = await supervisor.check_audio_sources(station_id)
        except PipelineError as exc:
            return _error(exc)
        return jsonify({
            "sources": [
                {"name": source.name, "url": source.url, "priority": source.priority, **check.to_dict()}
                for source, check in results
            ]
        })

    @app.route("/stations/<station_id>/test/destination", methods=["POST"])
    async def test_destination(station_id: str):
        """Push a short test pattern to one destination (``{"index": n}``, default 0)."""
        data = await request.get_json(silent=True) or {}
        try:
            index = int(data.get("index", 0))
        except (TypeError, ValueError):
            return jsonify({"error": "index must be an integer"}), 400
        try:
            destination, check = await supervisor.check_destination(station_id, index)
        except PipelineError as exc:
            return _error(exc)
        # the stream key stays server-side
        return jsonify({"index": index, "name": destination.name, "url": destination.url, **check.to_dict()})

    @app.route("/events")
    async def event_stream():
        """Server-sent events for logs, state changes and now-playing updates."""
        queue: asyncio.Queue = asyncio.Queue(maxsize=EVENT_QUEUE_SIZE)

        def push(kind: str, payload: dict) -> None:
            if queue.full():
                return
            queue.put_nowait((kind, payload))

        def on_log(event: LogEvent) -> None:
            push("log", event.to_dict())

        def on_status(station_id: str, state: PipelineState) -> None:
            push("status", {"station_id": station_id, "state": state.value})

        def on_now_playing(station_id: str, track: str) -> None:
            push("nowplaying", {"station_id": station_id, "track": track})

        unsubscribes = [
            supervisor.events.on_log(on_log),
            supervisor.events.on_status_change(on_status),
            supervisor.events.on_now_playing(on_now_playing),
        ]

        async def generate():
            try:
                while True:
                    kind, payload = await queue.get()
                    yield _sse(kind, payload)
            finally:
                for unsubscribe in unsubscribes:
                    unsubscribe()

        response = await make_response(
            generate(),
            {
                "Content-Type": "text/event-stream",
                "Cache-Control": "no-cache",
                "X-Accel-Buffering": "no",
            },
        )
        response.timeout = None
        return response

    return app


if __name__ == "__main__":
    import sys

    configure_logging()
    settings = Settings.load()
    port = int(sys.argv[1]) if len(sys.argv) > 1 else settings.port
    create_app(settings).run(host=settings.host, port=port)
