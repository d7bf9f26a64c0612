import logging
import random
from typing import Optional

from flask import Flask, current_app, jsonify, request
from flask_cors import CORS
from werkzeug.exceptions import HTTPException

from inference import InferenceClient, InferenceError, MediaUploadError, ModelLoadingError, RateLimitError
from prompt_scorer import PromptScorer, RandomSource, get_policy
from settings import Settings, load_settings

logger = logging.getLogger(__name__)

REQUIRED_FIELDS = ("prompt", "labItem", "teamName")
SERVICE_NAME = "Catalyst Backend"


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )


def create_app(
    settings: Optional[Settings] = None,
    client: Optional[InferenceClient] = None,
    rng: Optional[RandomSource] = None,
) -> Flask:
    settings = settings if settings is not None else load_settings()
    configure_logging(settings.log_level)

    app = Flask(__name__)
    app.config["MAX_CONTENT_LENGTH"] = 50 * 1024 * 1024
    CORS(app)

    app.extensions["settings"] = settings
    app.extensions["inference"] = client if client is not None else InferenceClient(settings)
    app.extensions["scorer"] = PromptScorer(get_policy(settings.scoring_policy), rng or random.Random())

    register_routes(app)
    return app


def register_routes(app: Flask) -> None:
    @app.get("/")
    def home():
        return f"{SERVICE_NAME} is running! Visit /health for status."

    @app.get("/health")
    def health():
        settings: Settings = current_app.extensions["settings"]
        return jsonify({
            "status": "ok",
            "message": f"{SERVICE_NAME} is running!",
            "hfConfigured": settings.hf_configured,
            "cloudinaryConfigured": settings.cloudinary_configured,
            "evaluator": settings.evaluator,
            "scoringPolicy": settings.scoring_policy,
        })

    @app.post("/api/test")
    def api_test():
        settings: Settings = current_app.extensions["settings"]
        logger.info("Test request: %s", request.get_json(silent=True))
        return jsonify({
            "success": True,
            "message": "Backend is working!",
            "hfConfigured": settings.hf_configured,
        })

    @app.post("/api/generate-and-evaluate")
    def generate_and_evaluate():
        settings: Settings = current_app.extensions["settings"]
        client: InferenceClient = current_app.extensions["inference"]
        scorer: PromptScorer = current_app.extensions["scorer"]

        data = request.get_json(silent=True)
        if not isinstance(data, dict):
            data = {}
        fields = {name: str(data.get(name) or "").strip() for name in REQUIRED_FIELDS}
        if not all(fields.values()):
            return jsonify({
                "success": False,
                "error": "Missing required fields: prompt, labItem, or teamName",
            }), 400

        prompt, lab_item, team_name = fields["prompt"], fields["labItem"], fields["teamName"]
        logger.info("Processing request for %s", team_name)
        logger.info("Prompt: %s", prompt)
        logger.info("Lab Item: %s", lab_item)

        logger.info("Step 1/3: Generating image...")
        image_b64 = client.generate_image(prompt)
        image_url = f"data:image/png;base64,{image_b64}"

        if settings.upload_enabled:
            logger.info("Step 2/3: Uploading to Cloudinary...")
            try:
                image_url = client.upload_image(image_b64)
                logger.info("Uploaded to: %s", image_url)
            except MediaUploadError as e:
                logger.warning("%s; using base64", e)
        else:
            logger.info("Step 2/3: Upload disabled, returning base64 image")

        logger.info("Step 3/3: Evaluating lab item accuracy...")
        if settings.evaluator == "heuristic":
            evaluation = scorer.score(prompt, lab_item)
            model = "Stable Diffusion XL + heuristic"
        else:
            evaluation = client.evaluate_with_clip(image_b64, lab_item)
            model = "Stable Diffusion XL + CLIP"

        logger.info("SUCCESS for %s! Score: %d%%", team_name, evaluation.score)
        return jsonify({
            "success": True,
            "imageUrl": image_url,
            "score": evaluation.score,
            "explanation": evaluation.explanation,
            "teamName": team_name,
            "labItem": lab_item,
            "model": model,
        })

    @app.errorhandler(ModelLoadingError)
    def model_loading(e: ModelLoadingError):
        logger.error("Upstream model loading: %s", e.message)
        return jsonify({"success": False, "error": e.message, "estimatedTime": e.estimated_time}), 503

    @app.errorhandler(RateLimitError)
    def rate_limited(e: RateLimitError):
        logger.error("Upstream rate limit: %s", e.message)
        return jsonify({"success": False, "error": e.message}), 429

    @app.errorhandler(InferenceError)
    def upstream_failed(e: InferenceError):
        logger.error("Upstream error: %s", e.message)
        return jsonify({"success": False, "error": e.message, "upstreamStatus": e.status}), 502

    @app.errorhandler(HTTPException)
    def http_error(e: HTTPException):
        return jsonify({"success": False, "error": e.description}), e.code

    @app.errorhandler(Exception)
    def unexpected(e: Exception):
        logger.exception("Unhandled error")
        return jsonify({"success": False, "error": str(e) or "An error occurred"}), 500


if __name__ == "__main__":
    settings = load_settings()
    app = create_app(settings)
    logger.info("%s starting on %s:%d", SERVICE_NAME, settings.host, settings.port)
    settings.log_summary(logger)
    app.run(host=settings.host, port=settings.port)
