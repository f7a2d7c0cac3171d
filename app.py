import io
import logging
import time
from datetime import datetime, timezone
from typing import Optional

from flask import Flask, Response, jsonify, request

from errors import AranetError
from export import write_csv
from logging_config import configure_logging
from sample_store import SampleStore, build_default_store
from service import RefreshService, build_default_service
from settings import get_settings

logger = logging.getLogger(__name__)


def _parse_time(value: Optional[str]) -> Optional[datetime]:
    """Accept UNIX seconds or ISO-8601; naive timestamps are UTC"""
    if not value:
        return None
    try:
        return datetime.fromtimestamp(int(value), tz=timezone.utc)
    except ValueError:
        pass
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def create_app(store: SampleStore, service: Optional[RefreshService] = None) -> Flask:
    app = Flask(__name__)

    @app.route('/')
    def home():
        last = store.last
        interval = service.interval if service and service.interval else None
        return jsonify({
            "status": "Aranet4 monitor is running",
            "samples": len(store),
            "refresh_seconds": int(interval.total_seconds()) if interval else None,
            "last": last.to_dict() if last else None,
            "endpoints": ["/samples", "/samples.csv", "/refresh"],
        })

    @app.route('/samples', methods=['GET'])
    def samples():
        """Stored samples in time order, optionally between start and end"""
        try:
            start = _parse_time(request.args.get('start'))
            end = _parse_time(request.args.get('end'))
        except ValueError as e:
            return jsonify({"error": f"invalid time range: {e}"}), 400

        rows = store.rows(start, end)
        return jsonify({
            "count": len(rows),
            "samples": [row.to_dict() for row in rows],
        })

    @app.route('/samples.csv', methods=['GET'])
    def samples_csv():
        out = io.StringIO()
        write_csv(store.rows(), out)
        return Response(
            out.getvalue(),
            mimetype="text/csv",
            headers={"Content-Disposition": "attachment; filename=aranet4.csv"},
        )

    @app.route('/refresh', methods=['POST'])
    def refresh():
        """Run one refresh cycle against the device"""
        if service is None:
            return jsonify({"error": "no device configured"}), 400
        try:
            written = service.refresh()
        except AranetError as e:
            logger.error("manual refresh failed: %s", e)
            return jsonify({"error": str(e)}), 502

        return jsonify({
            "status": "success",
            "written": written,
            "timestamp": time.time(),
        })

    return app


if __name__ == '__main__':
    configure_logging()
    settings = get_settings()
    store = build_default_store()
    service = build_default_service(store)
    service.start()
    try:
        create_app(store, service).run(host=settings.host, port=settings.port)
    finally:
        service.shutdown()
