import base64
import binascii
import logging
from datetime import datetime

from flask import Flask, Response, jsonify, request
from flask_cors import CORS

from config import configure_logging, load_settings
from engine import load_plant_image, validate_user_input
from errors import PredictionError, SolutionError, SpeechError, ValidationError, VisualizationError
from gateway import AIGateway
from speech import ElevenLabsSynthesizer

logger = logging.getLogger(__name__)

MAX_TTS_CHARS = 5000


def _fail(message, status):
    return jsonify({'success': False, 'error': message}), status


def _json_body():
    data = request.get_json(silent=True)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object")
    return data


def _require_text(data, key, label):
    value = data.get(key)
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(f"{label} is required")
    return value.strip()


def _source_image(data):
    source = data.get('sourceImage')
    if not source:
        return None
    try:
        raw = base64.b64decode(source.get('data', ''), validate=True)
    except (binascii.Error, AttributeError, TypeError):
        raise ValidationError("sourceImage.data must be base64 encoded")
    return load_plant_image(raw, source.get('mimeType'))


def create_app(gateway=None, synthesizer=None, settings=None):
    """
    Build the proxy API.

    The browser only ever talks to these endpoints; the Gemini and ElevenLabs
    credentials never leave the server.
    """
    if gateway is None or synthesizer is None:
        settings = settings or load_settings()
        configure_logging(settings.log_level)
    if gateway is None:
        gateway = AIGateway(settings)
    if synthesizer is None:
        synthesizer = ElevenLabsSynthesizer(
            api_key=settings.elevenlabs_api_key,
            voice_id=settings.elevenlabs_voice_id,
            model_id=settings.elevenlabs_model_id,
            timeout=settings.elevenlabs_timeout,
        )

    app = Flask(__name__)
    app.config['MAX_CONTENT_LENGTH'] = 16 * 1024 * 1024  # 16MB max upload
    CORS(app)

    @app.errorhandler(ValidationError)
    def handle_validation_error(e):
        return _fail(str(e), 400)

    @app.route('/api/diseases', methods=['POST'])
    def predict_diseases():
        """Predict candidate diseases for a crop"""
        data = _json_body()
        user_data = validate_user_input(data.get('crop'), data.get('daysPlanted'))
        try:
            diseases = gateway.predict_diseases(user_data.crop, user_data.days_planted)
        except PredictionError as e:
            logger.error(f"❌ Error in prediction endpoint: {e}")
            return _fail(f"Failed to predict diseases: {e}", 502)
        return jsonify({
            'success': True,
            'diseases': [{'name': d.name, 'description': d.description} for d in diseases],
        })

    @app.route('/api/visualize', methods=['POST'])
    def visualize():
        """Draw one disease, editing the farmer's photo when one is sent"""
        data = _json_body()
        crop = _require_text(data, 'crop', 'crop')
        disease_name = _require_text(data, 'diseaseName', 'diseaseName')
        plant_image = _source_image(data)
        try:
            image_url = gateway.visualize_disease(crop, disease_name, plant_image)
        except VisualizationError as e:
            logger.warning(f"⚠️ Failed to generate image for {disease_name}: {e}")
            return _fail(str(e), 502)
        return jsonify({'success': True, 'imageUrl': image_url})

    @app.route('/api/solution', methods=['POST'])
    def solution():
        """Treatment plan for the selected disease"""
        data = _json_body()
        crop = _require_text(data, 'crop', 'crop')
        disease_name = _require_text(data, 'diseaseName', 'diseaseName')
        try:
            plan = gateway.get_solution(crop, disease_name)
        except SolutionError as e:
            logger.error(f"❌ Error in solution endpoint: {e}")
            return _fail(f"Failed to get a solution: {e}", 502)
        return jsonify({'success': True, 'solution': plan.model_dump(by_alias=True)})

    @app.route('/api/tts', methods=['POST'])
    def text_to_speech():
        """Render text with the remote voice; clients fall back to local speech on error"""
        data = _json_body()
        text = _require_text(data, 'text', 'text')
        if len(text) > MAX_TTS_CHARS:
            raise ValidationError(f"text must be at most {MAX_TTS_CHARS} characters")
        try:
            audio = synthesizer.synthesize(text)
        except SpeechError as e:
            logger.warning(f"⚠️ TTS proxy failed: {e}")
            return _fail(str(e), 502)
        return Response(
            audio,
            mimetype='audio/mpeg',
            headers={'Content-Disposition': 'inline; filename="speech.mp3"'},
        )

    @app.route('/health')
    def health_check():
        """Health check endpoint"""
        return jsonify({
            'status': 'healthy',
            'remote_voice_configured': synthesizer.configured,
            'timestamp': datetime.now().isoformat(),
        })

    return app


if __name__ == '__main__':
    print("Starting Flask app...")
    app = create_app()
    app.run(debug=False, host='0.0.0.0', port=5000)
