"""
HTTP service for document detection and rectification.

Run with: python -m document_scanner.server
"""

import json
import logging
import os
from typing import Optional

import cv2
import numpy as np
from dotenv import load_dotenv
from flask import Flask, Response, jsonify, request
from flask_cors import CORS
from flasgger import Swagger

from .backends import LazyBackend, enhance_document, warp_perspective
from .config import ScannerConfig, setup_logging
from .rectifier import InvalidQuad, build_rectification_plan
from .session import ScanSession

logger = logging.getLogger(__name__)

MEGABYTE = (2 ** 10) ** 2

swagger_config = {
    "specs_route": "/docs/",
    "specs": [
        {
            "endpoint": 'apispec_1',
            "route": '/docs-json',
            "rule_filter": lambda rule: True,  # all in
            "model_filter": lambda tag: True,  # all in
        }
    ],
}


class BadUpload(ValueError):
    """Raised when the request carries no decodable image."""


def _read_image(field: str = 'file') -> np.ndarray:
    upload = request.files.get(field)
    if upload is None:
        raise BadUpload(f"Missing '{field}' upload")
    data = np.frombuffer(upload.read(), dtype=np.uint8)
    image = cv2.imdecode(data, cv2.IMREAD_COLOR) if data.size else None
    if image is None:
        raise BadUpload("Upload is not a readable image")
    return image


def _quad_to_json(quad):
    if quad is None:
        return None
    return [[p.x, p.y] for p in quad.points]


def create_app(config: Optional[ScannerConfig] = None) -> Flask:
    """
    Build the Flask app.

    The scanning pipeline is created on the first request that needs it.
    """
    config = config or ScannerConfig()

    app = Flask(__name__)
    CORS(app)

    app.config['MAX_CONTENT_LENGTH'] = 50 * MEGABYTE
    app.config['MAX_FORM_MEMORY_SIZE'] = 50 * MEGABYTE

    Swagger(app, swagger_config, merge=True)

    scanner = LazyBackend(lambda: ScanSession(config), name='scanner')
    app.extensions['document_scanner'] = scanner

    @app.errorhandler(InvalidQuad)
    @app.errorhandler(BadUpload)
    def bad_request(error):
        return jsonify(message=str(error)), 400

    @app.route('/is-available', methods=['GET'])
    def is_available():
        """
        Service health check
        ---
        responses:
          200:
            description: Service is up
        """
        return jsonify(isAvailable=True, ready=scanner.is_ready()), 200

    @app.route('/detect', methods=['POST'])
    def detect():
        """
        Detect the document quad in an image
        ---
        consumes:
          - multipart/form-data
        parameters:
          - name: file
            in: formData
            type: file
            required: true
        responses:
          200:
            description: Quad (or null), score and detection statistics
          400:
            description: Missing or unreadable image
        """
        image = _read_image()
        result = scanner.initialize().detect(image)
        stats = result.stats
        return jsonify(
            found=result.found,
            quad=_quad_to_json(result.quad),
            score=result.score,
            stats={
                "candidatesConsidered": stats.candidates_considered,
                "linesHorizontal": stats.lines_horizontal,
                "linesVertical": stats.lines_vertical,
                "method": stats.method,
                "bestScore": stats.best_score,
            },
            width=image.shape[1],
            height=image.shape[0],
        ), 200

    @app.route('/rectify', methods=['POST'])
    def rectify():
        """
        Rectify the document inside a quad
        ---
        consumes:
          - multipart/form-data
        produces:
          - image/png
        parameters:
          - name: file
            in: formData
            type: file
            required: true
          - name: quad
            in: formData
            type: string
            required: true
            description: JSON list of 4 [x, y] points or 8 numbers
          - name: width
            in: formData
            type: integer
            required: false
          - name: padding
            in: formData
            type: number
            required: false
          - name: enhance
            in: formData
            type: boolean
            required: false
        responses:
          200:
            description: Rectified PNG
          400:
            description: Invalid image or quad
        """
        image = _read_image()

        raw_quad = request.form.get('quad')
        if not raw_quad:
            raise InvalidQuad("Missing 'quad' field")
        try:
            quad = json.loads(raw_quad)
            width = int(request.form.get('width', config.output_width))
            padding = float(request.form.get('padding', config.padding_percent))
        except ValueError as e:
            raise BadUpload(f"Malformed form field: {e}") from e
        enhance = request.form.get('enhance', str(config.enhance)).lower() == "true"

        plan = build_rectification_plan(quad, width, padding)
        page = warp_perspective(image, plan)
        if enhance:
            page = enhance_document(page)

        ok, encoded = cv2.imencode('.png', page)
        if not ok:
            return jsonify(message="Failed to encode result"), 500
        return Response(encoded.tobytes(), mimetype='image/png')

    return app


def main():
    load_dotenv()

    port = int(os.getenv("PORT", 5000))
    host = os.getenv("HOST", None)

    config = ScannerConfig.from_env()
    setup_logging(config)

    app = create_app(config)
    logger.info("Starting document scanner service on %s:%s", host or "127.0.0.1", port)
    app.run(debug=os.getenv("FLASK_DEBUG", "false").lower() == "true", port=port, host=host)


if __name__ == '__main__':
    main()
