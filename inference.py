"""
Clients for the hosted services the backend glues together:

- image generation (Hugging Face inference API, Stable Diffusion XL)
- zero-shot image classification (Hugging Face inference API, CLIP)
- media hosting (Cloudinary unsigned upload)

Every call is made once. Failures are raised as InferenceError subclasses and
reported by the HTTP layer; nothing here retries.
"""
from __future__ import annotations
import base64
import logging
import math
from typing import Dict, List, Optional, Tuple

import requests

from prompt_scorer import ScoreResult, clamp
from settings import Settings

logger = logging.getLogger(__name__)


# -----------------------------
# Errors
# -----------------------------

class InferenceError(Exception):
    """An upstream service call failed."""

    def __init__(self, message: str, status: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.status = status


class UpstreamError(InferenceError):
    pass


class ModelLoadingError(InferenceError):
    """The model is still loading; the caller may retry after `estimated_time` seconds."""

    def __init__(self, message: str, estimated_time: Optional[float] = None):
        super().__init__(message, status=503)
        self.estimated_time = estimated_time


class RateLimitError(InferenceError):
    def __init__(self, message: str):
        super().__init__(message, status=429)


class MediaUploadError(InferenceError):
    pass


def _error_body(response: requests.Response) -> Tuple[str, Dict]:
    text = response.text
    try:
        payload = response.json()
    except ValueError:
        payload = None
    if not isinstance(payload, dict):
        payload = {}
    return text, payload


def raise_for_upstream(response: requests.Response, what: str) -> None:
    if response.ok:
        return
    text, payload = _error_body(response)
    status = response.status_code
    if status == 503 and "estimated_time" in payload:
        raise ModelLoadingError(
            f"{what} model is loading: {payload.get('error', text)}",
            estimated_time=payload.get("estimated_time"),
        )
    if status == 429:
        raise RateLimitError(f"{what} rate limited: {payload.get('error', text)}")
    raise UpstreamError(f"{what} failed: {status} - {text}", status=status)


# -----------------------------
# CLIP labels + scoring
# -----------------------------

def candidate_labels(lab_item: str, weighting: str = "top") -> List[str]:
    if weighting == "average":
        return [
            f"a laboratory {lab_item}",
            f"a realistic {lab_item} used in scientific research",
            f"a scientific instrument {lab_item}",
            "laboratory equipment",
            f"something unrelated to {lab_item}",
        ]
    return [
        f"a laboratory {lab_item}",
        f"a realistic {lab_item} used in scientific research",
        f"scientific equipment {lab_item}",
        "something unrelated to laboratory equipment",
    ]


def clip_signal(ranked: List[Dict], labels: List[str], weighting: str = "top") -> Tuple[float, float]:
    """Return (signal confidence, unrelated confidence) looked up by label.

    The service ranks its answer by score, so positions do not follow `labels`.
    """
    by_label = {}
    for entry in ranked:
        if isinstance(entry, dict) and "label" in entry:
            by_label[entry["label"]] = float(entry.get("score") or 0.0)

    unrelated = by_label.get(labels[-1], 0.0)
    if weighting == "average":
        signal = sum(by_label.get(label, 0.0) for label in labels[:3]) / 3
    else:
        signal = by_label.get(labels[0], 0.0)
    return signal, unrelated


def half_up(value: float) -> int:
    # halves round up, not to even
    return math.floor(value + 0.5)


def clip_score(signal: float, unrelated: float, weighting: str = "top") -> int:
    penalty = 0.5 if weighting == "average" else 0.3
    return clamp(half_up((signal - unrelated * penalty) * 100), 0, 100)


def explain_clip(score: int, lab_item: str, signal: float) -> str:
    confidence = half_up(signal * 100)
    if score >= 70:
        return (
            f"The {lab_item} appears to be prominently featured in the image with high confidence "
            f"({confidence}%). The AI model recognizes clear laboratory equipment characteristics."
        )
    if score >= 40:
        return (
            f"The {lab_item} may be present in the image with moderate confidence ({confidence}%). "
            "Some laboratory equipment features are detected but not prominently featured."
        )
    return (
        f"The {lab_item} is not clearly visible or present in the image (confidence: {confidence}%). "
        "The image may be more artistic or abstract rather than showing realistic laboratory equipment."
    )


def inconclusive(lab_item: str) -> ScoreResult:
    return ScoreResult(
        score=50,
        explanation=(
            f"AI evaluation completed with moderate confidence. The {lab_item} may be present "
            "but results are inconclusive."
        ),
    )


# -----------------------------
# Client
# -----------------------------

class InferenceClient:
    def __init__(self, settings: Settings, session: Optional[requests.Session] = None):
        self.settings = settings
        self.session = session if session is not None else requests.Session()

    def _headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self.settings.hf_api_key}",
            "Content-Type": "application/json",
        }

    def _model_url(self, model: str) -> str:
        return f"{self.settings.hf_api_base}/{model}"

    def _post(self, url: str, what: str, **kwargs) -> requests.Response:
        try:
            response = self.session.post(url, timeout=self.settings.request_timeout, **kwargs)
        except requests.RequestException as e:
            raise UpstreamError(f"{what} request failed: {e}") from e
        raise_for_upstream(response, what)
        return response

    def generate_image(self, prompt: str) -> str:
        """Generate an image for `prompt`; returns the image bytes as base64 text."""
        logger.info("Calling %s...", self.settings.image_model)
        response = self._post(
            self._model_url(self.settings.image_model),
            "Image generation",
            headers=self._headers(),
            json={
                "inputs": prompt,
                "parameters": {
                    "num_inference_steps": self.settings.num_inference_steps,
                    "guidance_scale": self.settings.guidance_scale,
                },
            },
        )
        image_b64 = base64.b64encode(response.content).decode("ascii")
        logger.info("Image generated: %d characters", len(image_b64))
        return image_b64

    def evaluate_with_clip(self, image_b64: str, lab_item: str) -> ScoreResult:
        weighting = self.settings.clip_weighting
        labels = candidate_labels(lab_item, weighting)
        logger.info("Evaluating with CLIP (%s weighting)...", weighting)

        response = self._post(
            self._model_url(self.settings.clip_model),
            "CLIP evaluation",
            headers=self._headers(),
            json={
                "inputs": f"data:image/jpeg;base64,{image_b64}",
                "parameters": {"candidate_labels": labels},
            },
        )
        try:
            result = response.json()
        except ValueError:
            result = None
        logger.debug("CLIP result: %.100s", result)

        if not isinstance(result, list) or not result:
            logger.warning("CLIP returned no ranking; using inconclusive score")
            return inconclusive(lab_item)

        signal, unrelated = clip_signal(result, labels, weighting)
        score = clip_score(signal, unrelated, weighting)
        logger.info("Evaluation complete: %d%%", score)
        return ScoreResult(score=score, explanation=explain_clip(score, lab_item, signal))

    def upload_image(self, image_b64: str) -> str:
        """Upload a PNG to Cloudinary; returns its durable https URL."""
        url = f"https://api.cloudinary.com/v1_1/{self.settings.cloudinary_cloud_name}/image/upload"
        try:
            response = self._post(
                url,
                "Cloudinary upload",
                files={
                    "file": (None, f"data:image/png;base64,{image_b64}"),
                    "upload_preset": (None, self.settings.cloudinary_upload_preset),
                },
            )
            payload = response.json()
        except (InferenceError, ValueError) as e:
            raise MediaUploadError(f"Cloudinary upload failed: {e}") from e

        secure_url = payload.get("secure_url") if isinstance(payload, dict) else None
        if not secure_url:
            raise MediaUploadError("Cloudinary upload failed: no secure_url in response")
        return secure_url
