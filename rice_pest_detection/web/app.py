"""Flask JSON API for the rice pest detection system."""

import logging
from typing import Optional

from flask import Flask, jsonify, request

from ..event_loop import BackgroundEventLoop
from ..scan_controller import ScanController
from ..services.error_handler import PestDetectionError
from ..services.storage_service import StorageService

logger = logging.getLogger(__name__)

REQUEST_TIMEOUT_SECONDS = 60


class PestDetectionWebApp:
    """Flask application wrapping a ScanController."""

    def __init__(self, controller: ScanController, runner: Optional[BackgroundEventLoop] = None):
        self.app = Flask(__name__)
        self.controller = controller
        self.runner = runner or BackgroundEventLoop()
        if not self.runner.is_running:
            self.runner.start()

        self.app.config['MAX_CONTENT_LENGTH'] = 16 * 1024 * 1024  # 16MB max upload

        self._setup_routes()
        logger.info("Pest detection web application initialized")

    @property
    def storage(self) -> Optional[StorageService]:
        for sink in self.controller.sinks:
            if isinstance(sink, StorageService):
                return sink
        return None

    def _setup_routes(self):
        """Setup Flask routes."""

        @self.app.route('/api/status')
        def api_status():
            """Get system status."""
            try:
                status = self.runner.call(self.controller.get_status, timeout=REQUEST_TIMEOUT_SECONDS)
                return jsonify({'success': True, 'data': status})
            except Exception as e:
                logger.error(f"Error getting status: {e}")
                return jsonify({'success': False, 'error': str(e)}), 500

        @self.app.route('/api/scan/start', methods=['POST'])
        def api_scan_start():
            """Start continuous scanning."""
            try:
                started = self.runner.call(self.controller.start_continuous_scanning,
                                           timeout=REQUEST_TIMEOUT_SECONDS)
                return jsonify({
                    'success': True,
                    'started': started,
                    'message': 'Scanning started' if started else 'Scanning already running'
                })
            except Exception as e:
                logger.error(f"Error starting scan: {e}")
                return jsonify({'success': False, 'error': str(e)}), 500

        @self.app.route('/api/scan/stop', methods=['POST'])
        def api_scan_stop():
            """Stop continuous scanning."""
            try:
                stopped = self.runner.call(self.controller.stop_continuous_scanning,
                                           timeout=REQUEST_TIMEOUT_SECONDS)
                return jsonify({
                    'success': True,
                    'stopped': stopped,
                    'message': 'Scanning stopped' if stopped else 'Scanning was not running'
                })
            except Exception as e:
                logger.error(f"Error stopping scan: {e}")
                return jsonify({'success': False, 'error': str(e)}), 500

        @self.app.route('/api/analyze', methods=['POST'])
        def api_analyze():
            """Analyze an uploaded image once."""
            upload = request.files.get('image')
            image_bytes = upload.read() if upload is not None else request.get_data()
            if not image_bytes:
                return jsonify({'success': False, 'error': 'No image provided'}), 400

            try:
                event = self.runner.run(self.controller.analyze_single_image(image_bytes),
                                        timeout=REQUEST_TIMEOUT_SECONDS)
                return jsonify({'success': True, 'data': event.to_dict()})
            except PestDetectionError as e:
                logger.warning(f"Analysis failed: {e}")
                return jsonify({'success': False, 'error': str(e), 'type': type(e).__name__}), 422
            except Exception as e:
                logger.error(f"Error analyzing image: {e}")
                return jsonify({'success': False, 'error': str(e)}), 500

        @self.app.route('/api/detections')
        def api_detections():
            """Recent detection history."""
            storage = self.storage
            if storage is None:
                return jsonify({'success': False, 'error': 'Detection log is disabled'}), 404
            try:
                limit = int(request.args.get('limit', 10))
                pest_type = request.args.get('pest_type')
                records = (storage.get_detections_by_type(pest_type) if pest_type
                           else storage.get_recent_detections(limit))
                data = [{
                    'id': r.record_id,
                    'pest_type': r.pest_type,
                    'confidence': r.confidence,
                    'timestamp': r.timestamp.isoformat(),
                    'location': r.location,
                    'image_uri': r.image_uri,
                    'notes': r.notes
                } for r in records]
                return jsonify({'success': True, 'data': data})
            except ValueError:
                return jsonify({'success': False, 'error': 'limit must be an integer'}), 400
            except Exception as e:
                logger.error(f"Error getting detections: {e}")
                return jsonify({'success': False, 'error': str(e)}), 500

        @self.app.route('/api/detections/<int:detection_id>', methods=['DELETE'])
        def api_delete_detection(detection_id):
            """Delete one detection."""
            storage = self.storage
            if storage is None:
                return jsonify({'success': False, 'error': 'Detection log is disabled'}), 404
            if storage.delete_detection(detection_id):
                return jsonify({'success': True})
            return jsonify({'success': False, 'error': 'Detection not found'}), 404

        @self.app.route('/api/detections/stats')
        def api_detection_stats():
            """Aggregate detection statistics."""
            storage = self.storage
            if storage is None:
                return jsonify({'success': False, 'error': 'Detection log is disabled'}), 404
            try:
                return jsonify({'success': True, 'data': storage.get_detection_stats()})
            except Exception as e:
                logger.error(f"Error getting detection stats: {e}")
                return jsonify({'success': False, 'error': str(e)}), 500

        @self.app.route('/api/species')
        def api_species():
            """Known pest species."""
            species = [s.to_dict() for s in self.controller.catalog.all_species()]
            return jsonify({'success': True, 'data': species})

    def run(self, host='0.0.0.0', port=5000, debug=False):
        """Run the Flask application."""
        logger.info(f"Starting pest detection web interface on {host}:{port}")
        self.app.run(host=host, port=port, debug=debug, threaded=True)

    def shutdown(self) -> None:
        """Stop scanning and the background loop."""
        if self.runner.is_running:
            self.runner.run(self.controller.shutdown(), timeout=REQUEST_TIMEOUT_SECONDS)
            self.runner.stop()

    def get_app(self):
        """Get the Flask app instance for external WSGI servers."""
        return self.app


def create_app(controller: ScanController, runner: Optional[BackgroundEventLoop] = None) -> Flask:
    """Factory function to create Flask app."""
    return PestDetectionWebApp(controller, runner).get_app()
