"""
Flask application for HTTP API.

Provides:
- GET /video_feed: MJPEG preview stream
- GET /health: Service health check
- /api/recognition/*: attendance scanner control
- /api/enrollment/*: face registration control
- POST /api/identities/reload: refresh enrolled references
"""

from flask import Flask, Response, jsonify, request
from flask_cors import CORS

from .config import Config
from . import streaming
from .logging_config import get_logger
from .recognition.enrollment import EnrollmentError
from .scanner import ScannerError, ScannerService

logger = get_logger(__name__)


def create_app(service: ScannerService, config: Config) -> Flask:
    """
    Create and configure Flask application.

    Args:
        service: Scanner service driving camera and controllers
        config: Service configuration

    Returns:
        Configured Flask app
    """
    app = Flask(__name__)
    CORS(app)
    stream_id = service.stream_id

    @app.errorhandler(ScannerError)
    @app.errorhandler(EnrollmentError)
    def conflict(error):
        logger.warning(f'Request rejected: {error}')
        return jsonify({'error': str(error)}), 409

    @app.route('/video_feed')
    def video_feed():
        """Stream MJPEG preview feed."""
        return Response(
            streaming.generate_mjpeg_frames(stream_id=stream_id),
            mimetype='multipart/x-mixed-replace; boundary=frame'
        )

    @app.route('/health')
    def health():
        """Health check endpoint."""
        return jsonify(service.health())

    @app.route('/api/recognition/start', methods=['POST'])
    def start_recognition():
        update = service.start_recognition()
        return jsonify({**update.to_dict(), 'running': True})

    @app.route('/api/recognition/stop', methods=['POST'])
    def stop_recognition():
        was_running = service.stop_recognition()
        return jsonify({'stopped': was_running})

    @app.route('/api/recognition/status')
    def recognition_status():
        return jsonify(service.recognition_status())

    @app.route('/api/enrollment/start', methods=['POST'])
    def start_enrollment():
        payload = request.get_json(silent=True) or {}
        subject_id = str(payload.get('subjectId') or '').strip()
        if not subject_id:
            return jsonify({'error': 'subjectId is required'}), 400

        update = service.start_enrollment(subject_id, payload.get('name'))
        return jsonify(update.to_dict())

    @app.route('/api/enrollment/save', methods=['POST'])
    def save_enrollment():
        update = service.save_enrollment()
        return jsonify(update.to_dict())

    @app.route('/api/enrollment/cancel', methods=['POST'])
    def cancel_enrollment():
        cancelled = service.cancel_enrollment()
        return jsonify({'cancelled': cancelled})

    @app.route('/api/enrollment/status')
    def enrollment_status():
        return jsonify(service.enrollment_status())

    @app.route('/api/identities/reload', methods=['POST'])
    def reload_identities():
        count = service.reload_identities()
        return jsonify({'identities': count})

    return app
