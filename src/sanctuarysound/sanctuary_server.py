#!/usr/bin/env python3
from flask import Flask, jsonify, request, abort
from flask_cors import CORS
from typing import Any, Callable, Dict, Optional
import logging
import os
import signal
import sys

from . import __version__
from .delta_analysis import analyze
from .errors import AudioCaptureError, CalibrationError, PayloadError, StoreError
from .models import to_dict
from .payloads import parse_channel_mapping, parse_service, parse_snapshot, parse_spl_preference
from .presets import (
    SPL_REFERENCE_OFFSET_DB, list_delta_tolerances, list_flagging_modes, list_room_classes,
)
from .recommendation import generate_recommendation
from .rt60_pipeline import CAPTURE_FAILED, PERMISSION_DENIED, Failed, RT60Pipeline
from .spl_monitor import SPLMonitor
from .store import HistoryStore
from .vocabulary import (
    BandComposition, DrumConfiguration, ExperienceLevel, InputSource, MicType, MixerModel,
    MusicalKey, RoomSize, RoomSurface, SongIntensity, SPLFlaggingMode, VocalRange, VocalStyle,
)

logger = logging.getLogger(__name__)

DEFAULT_PORT = 10320
DEFAULT_DATA_DIR = os.path.expanduser("~/.local/share/sanctuarysound")

VOCABULARY = {
    "input_sources": InputSource,
    "mixers": MixerModel,
    "experience_levels": ExperienceLevel,
    "band_compositions": BandComposition,
    "drum_configurations": DrumConfiguration,
    "room_sizes": RoomSize,
    "room_surfaces": RoomSurface,
    "song_intensities": SongIntensity,
    "musical_keys": MusicalKey,
    "vocal_ranges": VocalRange,
    "vocal_styles": VocalStyle,
    "mic_types": MicType,
    "flagging_modes": SPLFlaggingMode,
}


def _json_body(required: bool = True) -> Dict[str, Any]:
    data = request.get_json(silent=True)
    if data is None:
        if required:
            abort(400, "Request body must be a JSON object")
        return {}
    if not isinstance(data, dict):
        abort(400, "Request body must be a JSON object")
    return data


def create_app(store: Optional[HistoryStore] = None,
               source_factory: Optional[Callable[[], Any]] = None,
               permission_check: Optional[Callable[[], bool]] = None,
               sample_rate: int = 48000,
               reference_offset_db: float = SPL_REFERENCE_OFFSET_DB) -> Flask:
    """
    Build the SanctuarySound API.

    Args:
        store: History store; a temporary one is created when omitted.
        source_factory: Returns a new sample source for each engine. Without
            one the engines only receive levels posted to the API.
        permission_check: Capture permission callable for the RT60 pipeline.
        sample_rate: Sample rate of the blocks the sources deliver.
        reference_offset_db: dB SPL at 0 dBFS when the microphone is unknown.
    """
    store = store if store is not None else HistoryStore()
    spl_source = source_factory() if source_factory is not None else None
    rt60_source = source_factory() if source_factory is not None else None

    monitor = SPLMonitor(source=spl_source, reference_offset_db=reference_offset_db)
    pipeline = RT60Pipeline(source=rt60_source, permission_check=permission_check,
                            store=store, sample_rate=sample_rate)

    app = Flask(__name__)
    CORS(app)  # Enable CORS for all routes
    app.extensions["sanctuarysound"] = {
        "store": store,
        "spl_monitor": monitor,
        "rt60_pipeline": pipeline,
    }

    @app.after_request
    def after_request(response):
        response.headers["server"] = f"sanctuarysound-api/{__version__}"
        return response

    @app.before_request
    def log_request_info():
        logger.info(f"Request: {request.method} {request.url}")
        if request.args:
            logger.debug(f"Query parameters: {dict(request.args)}")

    @app.errorhandler(404)
    def not_found_error(error):
        logger.warning(f"404 Not Found: {request.method} {request.url} - {error.description}")
        return jsonify({
            "error": "Not Found",
            "message": error.description or "The requested resource was not found",
            "endpoint": request.endpoint,
            "url": request.url,
            "method": request.method
        }), 404

    @app.errorhandler(400)
    def bad_request_error(error):
        logger.warning(f"400 Bad Request: {request.method} {request.url} - {error.description}")
        return jsonify({
            "error": "Bad Request",
            "message": error.description or "The request was invalid",
            "endpoint": request.endpoint,
            "url": request.url,
            "method": request.method
        }), 400

    @app.errorhandler(500)
    def internal_error(error):
        logger.error(f"500 Internal Server Error: {request.method} {request.url} - {error}")
        return jsonify({
            "error": "Internal Server Error",
            "message": getattr(error, "description", None) or "An internal server error occurred",
            "endpoint": request.endpoint,
            "url": request.url,
            "method": request.method
        }), 500

    # ------------------------------------------------------------------
    # Info and presets
    # ------------------------------------------------------------------

    @app.route("/version", methods=["GET"])
    def get_version():
        """Get API version information."""
        return jsonify({
            "version": __version__,
            "api_name": "SanctuarySound Mixing Assistant API",
            "features": [
                "Per-channel console recommendations for a worship service",
                "Snapshot delta analysis with scores and suggestions",
                "Real-time SPL monitoring with breach reports",
                "RT60 clap-test measurement with room classification",
            ],
            "server_info": {
                "python_version": f"{sys.version_info.major}.{sys.version_info.minor}.{sys.version_info.micro}",
                "data_directory": store.directory,
                "sample_rate": sample_rate,
                "audio_source": "ALSA capture" if source_factory is not None else "posted levels only",
            }
        })

    @app.route("/presets/flagging-modes", methods=["GET"])
    def presets_flagging_modes():
        modes = list_flagging_modes()
        return jsonify({"success": True, "flagging_modes": modes, "count": len(modes)})

    @app.route("/presets/room-classes", methods=["GET"])
    def presets_room_classes():
        classes = list_room_classes()
        return jsonify({"success": True, "room_classes": classes, "count": len(classes)})

    @app.route("/presets/tolerances", methods=["GET"])
    def presets_tolerances():
        tolerances = list_delta_tolerances()
        return jsonify({"success": True, "tolerances": tolerances, "count": len(tolerances)})

    @app.route("/presets/vocabulary", methods=["GET"])
    def presets_vocabulary():
        """Accepted values for every enumerated payload field."""
        return jsonify({
            key: [{"key": member.name.lower(), "name": member.value} for member in enum_cls]
            for key, enum_cls in VOCABULARY.items()
        })

    # ------------------------------------------------------------------
    # Recommendation and analysis
    # ------------------------------------------------------------------

    @app.route("/recommendation", methods=["POST"])
    def recommendation():
        """Generate console recommendations for a service."""
        data = _json_body()
        try:
            service = parse_service(data)
        except PayloadError as e:
            abort(400, str(e))

        result = generate_recommendation(service)
        logger.info(f"Recommendation for '{service.name}': {len(result.channels)} channels")
        return jsonify({"success": True, "recommendation": to_dict(result)})

    @app.route("/analysis", methods=["POST"])
    def analysis():
        """
        Compare a console snapshot with the recommendation for a service.

        Body: {"service": {...}, "snapshot": {...}, "channel_mapping": {...},
        "spl_preference": {...}}. Without spl_preference the SPL monitor's
        current preference, including its calibration, is used.
        """
        data = _json_body()
        for key in ("service", "snapshot", "channel_mapping"):
            if key not in data:
                abort(400, f"'{key}' is required")
        try:
            service = parse_service(data["service"])
            snapshot = parse_snapshot(data["snapshot"])
            mapping = parse_channel_mapping(data["channel_mapping"])
            preference = parse_spl_preference(data.get("spl_preference")) or monitor.preference
        except PayloadError as e:
            abort(400, str(e))

        result = analyze(snapshot, generate_recommendation(service), mapping, preference)
        logger.info(f"Analysis of '{snapshot.name}': {result.overall_score.value}")
        return jsonify({"success": True, "analysis": to_dict(result)})

    # ------------------------------------------------------------------
    # SPL monitor
    # ------------------------------------------------------------------

    def _spl_already_running():
        return jsonify({"success": False, "message": "SPL monitoring already running",
                        "status": monitor.status()}), 409

    @app.route("/spl/start", methods=["POST"])
    def spl_start():
        """Start monitoring; an optional body sets target and flagging mode."""
        data = _json_body(required=False)
        preference = None
        if data:
            try:
                preference = parse_spl_preference(data)
            except PayloadError as e:
                abort(400, str(e))

        if monitor.is_running:
            return _spl_already_running()
        if preference is not None:
            monitor.update_alert_thresholds(preference)
        try:
            started = monitor.start()
        except AudioCaptureError as e:
            abort(500, f"Failed to start SPL monitoring: {e}")
        if not started:
            return _spl_already_running()
        return jsonify({"success": True, "status": monitor.status()})

    @app.route("/spl/stop", methods=["POST"])
    def spl_stop():
        """Stop monitoring and store the session report."""
        report = monitor.stop()
        if report is None:
            return jsonify({"success": False, "message": "SPL monitoring is not running"}), 409
        saved = True
        try:
            store.save_spl_report(report)
        except StoreError as e:
            logger.error(f"Failed to save SPL report {report.id}: {e}")
            saved = False
        return jsonify({"success": True, "saved": saved, "report": to_dict(report)})

    @app.route("/spl/status", methods=["GET"])
    def spl_status():
        return jsonify(monitor.status())

    @app.route("/spl/level", methods=["POST"])
    def spl_level():
        """Feed one raw level from an external meter: {"level_db": 92.0}."""
        data = _json_body()
        level = data.get("level_db")
        if isinstance(level, bool) or not isinstance(level, (int, float)):
            abort(400, "level_db must be a number")
        timestamp = data.get("timestamp")
        if timestamp is not None and (isinstance(timestamp, bool) or not isinstance(timestamp, (int, float))):
            abort(400, "timestamp must be a number")
        state = monitor.process_level(float(level), timestamp)
        return jsonify({"alert": to_dict(state), "current_db": monitor.current_db})

    @app.route("/spl/reset-peak", methods=["POST"])
    def spl_reset_peak():
        monitor.reset_peak()
        return jsonify({"success": True, "peak_db": monitor.peak_db})

    @app.route("/spl/calibrate", methods=["POST"])
    def spl_calibrate():
        """Calibrate against a reference meter: {"known_spl": 94.0}."""
        data = _json_body()
        known_spl = data.get("known_spl")
        if isinstance(known_spl, bool) or not isinstance(known_spl, (int, float)):
            abort(400, "known_spl must be a number")
        try:
            offset = monitor.calculate_calibration_offset(float(known_spl))
        except CalibrationError as e:
            abort(400, str(e))
        if offset is None:
            return jsonify({"success": False,
                            "message": "No level measured yet; start monitoring first"}), 409
        return jsonify({"success": True, "calibration_offset": offset})

    @app.route("/spl/thresholds", methods=["POST"])
    def spl_thresholds():
        data = _json_body()
        try:
            monitor.update_alert_thresholds(parse_spl_preference(data))
        except PayloadError as e:
            abort(400, str(e))
        return jsonify({"success": True, "preference": to_dict(monitor.preference)})

    @app.route("/spl/pause", methods=["POST"])
    def spl_pause():
        """Host moved to the background."""
        paused = monitor.pause()
        return jsonify({"success": paused, "status": monitor.status()}), (200 if paused else 409)

    @app.route("/spl/resume", methods=["POST"])
    def spl_resume():
        try:
            resumed = monitor.resume()
        except AudioCaptureError as e:
            abort(500, f"Failed to resume SPL monitoring: {e}")
        return jsonify({"success": resumed, "status": monitor.status()}), (200 if resumed else 409)

    @app.route("/spl/reports", methods=["GET"])
    def spl_reports():
        try:
            reports = store.list_spl_reports()
        except StoreError as e:
            abort(500, str(e))
        return jsonify({"reports": [to_dict(r) for r in reports], "count": len(reports)})

    @app.route("/spl/reports/<report_id>", methods=["GET"])
    def spl_report(report_id: str):
        report = store.get_spl_report(report_id)
        if report is None:
            abort(404, f"SPL report {report_id} not found")
        return jsonify(to_dict(report))

    @app.route("/spl/reports/<report_id>", methods=["DELETE"])
    def delete_spl_report(report_id: str):
        if not store.delete_spl_report(report_id):
            abort(404, f"SPL report {report_id} not found")
        return jsonify({"success": True, "deleted": report_id})

    # ------------------------------------------------------------------
    # RT60 pipeline
    # ------------------------------------------------------------------

    @app.route("/rt60/permission", methods=["GET", "POST"])
    def rt60_permission():
        return jsonify({"permission_granted": pipeline.request_permission()})

    @app.route("/rt60/start", methods=["POST"])
    def rt60_start():
        """Start a clap-test measurement; clap once the status says listening."""
        if pipeline.start_measurement():
            return jsonify({"success": True, "status": pipeline.status()})

        phase = pipeline.phase
        code = 409
        if isinstance(phase, Failed) and phase.reason == PERMISSION_DENIED:
            code = 403
        elif isinstance(phase, Failed) and phase.reason == CAPTURE_FAILED:
            code = 500
        return jsonify({"success": False, "status": pipeline.status()}), code

    @app.route("/rt60/cancel", methods=["POST"])
    def rt60_cancel():
        cancelled = pipeline.cancel_measurement()
        return jsonify({"success": cancelled, "status": pipeline.status()})

    @app.route("/rt60/reset", methods=["POST"])
    def rt60_reset():
        reset = pipeline.reset()
        return jsonify({"success": reset, "status": pipeline.status()})

    @app.route("/rt60/status", methods=["GET"])
    def rt60_status():
        pipeline.check_timeout()
        return jsonify(pipeline.status())

    @app.route("/rt60/measurements", methods=["GET"])
    def rt60_measurements():
        measurements = pipeline.measurements
        return jsonify({"measurements": [to_dict(m) for m in measurements],
                        "count": len(measurements)})

    @app.route("/rt60/measurements/<measurement_id>", methods=["DELETE"])
    def delete_rt60_measurement(measurement_id: str):
        try:
            deleted = pipeline.delete_measurement(measurement_id)
        except StoreError as e:
            abort(500, str(e))
        if not deleted:
            abort(404, f"RT60 measurement {measurement_id} not found")
        return jsonify({"success": True, "deleted": measurement_id})

    return app


def main():
    """Main entry point for the sanctuarysound-server console script."""
    logging.basicConfig(level=logging.INFO)

    # ALSA is only needed when serving real hardware
    from .capture import AlsaCaptureSource
    from .microphone import has_capture_permission

    data_dir = os.environ.get("SANCTUARYSOUND_DATA_DIR", DEFAULT_DATA_DIR)
    device = os.environ.get("SANCTUARYSOUND_DEVICE")
    try:
        port = int(os.environ.get("SANCTUARYSOUND_PORT", DEFAULT_PORT))
    except ValueError:
        logger.error("SANCTUARYSOUND_PORT must be an integer")
        return 1

    app = create_app(
        store=HistoryStore(data_dir),
        source_factory=lambda: AlsaCaptureSource(device=device),
        permission_check=has_capture_permission,
    )
    engines = app.extensions["sanctuarysound"]

    def shutdown(signum, frame):
        logger.info(f"Received signal {signum}, shutting down")
        report = engines["spl_monitor"].stop()
        if report is not None:
            try:
                engines["store"].save_spl_report(report)
            except StoreError as e:
                logger.error(f"Failed to save SPL report on shutdown: {e}")
        engines["rt60_pipeline"].cancel_measurement()
        sys.exit(0)

    signal.signal(signal.SIGINT, shutdown)
    signal.signal(signal.SIGTERM, shutdown)

    app.run(
        host="0.0.0.0",
        port=port,
        debug=False,
        threaded=True
    )
    return 0


if __name__ == "__main__":
    sys.exit(main())
