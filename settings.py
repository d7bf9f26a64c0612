"""
Service configuration.

Everything is read from the environment (and an optional .env file) once,
at startup, by load_settings(). Components receive the Settings object;
nothing else touches os.environ.
"""
from __future__ import annotations
import logging
import os
from dataclasses import dataclass
from typing import List, Mapping, Optional

from dotenv import load_dotenv

from prompt_scorer import POLICIES

EVALUATORS = ("clip", "heuristic")
CLIP_WEIGHTINGS = ("top", "average")
LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


@dataclass
class Settings:
    hf_api_key: str = ""
    hf_api_base: str = "https://api-inference.huggingface.co/models"
    image_model: str = "stabilityai/stable-diffusion-xl-base-1.0"
    clip_model: str = "openai/clip-vit-large-patch14"
    num_inference_steps: int = 25
    guidance_scale: float = 7.5

    evaluator: str = "clip"
    clip_weighting: str = "top"
    scoring_policy: str = "mention_rewarded"

    cloudinary_cloud_name: str = ""
    cloudinary_upload_preset: str = "ml_default"
    cloudinary_api_key: str = ""
    cloudinary_api_secret: str = ""

    request_timeout: float = 120.0
    host: str = "0.0.0.0"
    port: int = 3000
    log_level: str = "INFO"

    @property
    def hf_configured(self) -> bool:
        return bool(self.hf_api_key)

    @property
    def upload_enabled(self) -> bool:
        return bool(self.cloudinary_cloud_name and self.cloudinary_upload_preset)

    @property
    def cloudinary_configured(self) -> bool:
        return bool(self.cloudinary_api_key and self.cloudinary_api_secret)

    def validate(self) -> None:
        errors: List[str] = []
        if self.evaluator not in EVALUATORS:
            errors.append(f"EVALUATOR must be one of {EVALUATORS}, got {self.evaluator!r}")
        if self.clip_weighting not in CLIP_WEIGHTINGS:
            errors.append(f"CLIP_WEIGHTING must be one of {CLIP_WEIGHTINGS}, got {self.clip_weighting!r}")
        if self.scoring_policy not in POLICIES:
            errors.append(f"SCORING_POLICY must be one of {tuple(sorted(POLICIES))}, got {self.scoring_policy!r}")
        if self.log_level not in LOG_LEVELS:
            errors.append(f"LOG_LEVEL must be one of {LOG_LEVELS}, got {self.log_level!r}")
        if errors:
            raise ValueError("Invalid configuration:\n" + "\n".join(f"  - {e}" for e in errors))

    def log_summary(self, logger: logging.Logger) -> None:
        logger.info("Hugging Face API: %s", "configured" if self.hf_configured else "missing")
        logger.info(
            "Cloudinary upload: %s",
            f"enabled ({self.cloudinary_cloud_name})" if self.upload_enabled else "disabled (will use base64)",
        )
        logger.info("Image generation: %s", self.image_model)
        if self.evaluator == "clip":
            logger.info("Evaluation: CLIP %s (%s weighting)", self.clip_model, self.clip_weighting)
        else:
            logger.info("Evaluation: heuristic prompt scorer (%s)", self.scoring_policy)


def load_settings(environ: Optional[Mapping[str, str]] = None, dotenv: bool = True) -> Settings:
    """Build Settings from the environment. Pass `environ` to bypass os.environ."""
    if environ is None:
        if dotenv:
            load_dotenv()
        environ = os.environ

    defaults = Settings()

    def get(name: str, default: str) -> str:
        value = environ.get(name)
        return default if value is None or value == "" else value

    settings = Settings(
        hf_api_key=get("HUGGINGFACE_API_KEY", defaults.hf_api_key),
        hf_api_base=get("HF_API_BASE", defaults.hf_api_base).rstrip("/"),
        image_model=get("IMAGE_MODEL", defaults.image_model),
        clip_model=get("CLIP_MODEL", defaults.clip_model),
        num_inference_steps=int(get("INFERENCE_STEPS", str(defaults.num_inference_steps))),
        guidance_scale=float(get("GUIDANCE_SCALE", str(defaults.guidance_scale))),
        evaluator=get("EVALUATOR", defaults.evaluator).lower(),
        clip_weighting=get("CLIP_WEIGHTING", defaults.clip_weighting).lower(),
        scoring_policy=get("SCORING_POLICY", defaults.scoring_policy).lower(),
        cloudinary_cloud_name=get("CLOUDINARY_CLOUD_NAME", defaults.cloudinary_cloud_name),
        cloudinary_upload_preset=get("CLOUDINARY_UPLOAD_PRESET", defaults.cloudinary_upload_preset),
        cloudinary_api_key=get("CLOUDINARY_API_KEY", defaults.cloudinary_api_key),
        cloudinary_api_secret=get("CLOUDINARY_API_SECRET", defaults.cloudinary_api_secret),
        request_timeout=float(get("REQUEST_TIMEOUT", str(defaults.request_timeout))),
        host=get("HOST", defaults.host),
        port=int(get("PORT", str(defaults.port))),
        log_level=get("LOG_LEVEL", defaults.log_level).upper(),
    )
    settings.validate()
    return settings
