import base64

import pytest
import requests

from conftest import CLIP_LABELS_TOP, make_response
from inference import (
    InferenceError,
    MediaUploadError,
    ModelLoadingError,
    RateLimitError,
    UpstreamError,
    candidate_labels,
    clip_score,
    clip_signal,
    explain_clip,
    half_up,
)


def ranked(*scores):
    return [{"label": label, "score": score} for label, score in scores]


def test_generate_image_returns_base64(make_client, settings):
    client, session = make_client(make_response(200, body=b"\x89PNG fake"))
    image_b64 = client.generate_image("a beaker")

    assert base64.b64decode(image_b64) == b"\x89PNG fake"
    call = session.calls[0]
    assert call["url"] == f"{settings.hf_api_base}/{settings.image_model}"
    assert call["headers"]["Authorization"] == "Bearer hf_test"
    assert call["json"] == {
        "inputs": "a beaker",
        "parameters": {"num_inference_steps": 25, "guidance_scale": 7.5},
    }
    assert call["timeout"] == settings.request_timeout


def test_generate_image_model_loading(make_client):
    client, _ = make_client(make_response(503, json_body={
        "error": "Model stabilityai/stable-diffusion-xl-base-1.0 is currently loading",
        "estimated_time": 20.5,
    }))
    with pytest.raises(ModelLoadingError) as excinfo:
        client.generate_image("a beaker")
    assert excinfo.value.estimated_time == 20.5
    assert excinfo.value.status == 503


def test_generate_image_rate_limited(make_client):
    client, _ = make_client(make_response(429, json_body={"error": "Rate limit reached"}))
    with pytest.raises(RateLimitError):
        client.generate_image("a beaker")


def test_generate_image_upstream_failure(make_client):
    client, _ = make_client(make_response(500, body=b"boom"))
    with pytest.raises(UpstreamError) as excinfo:
        client.generate_image("a beaker")
    assert excinfo.value.status == 500
    assert excinfo.value.message == "Image generation failed: 500 - boom"


def test_plain_503_is_not_loading(make_client):
    client, _ = make_client(make_response(503, body=b"Service Unavailable"))
    with pytest.raises(UpstreamError):
        client.generate_image("a beaker")


def test_transport_error_is_wrapped(make_client):
    client, _ = make_client(requests.ConnectionError("no route"))
    with pytest.raises(UpstreamError) as excinfo:
        client.generate_image("a beaker")
    assert excinfo.value.status is None
    assert "no route" in excinfo.value.message


def test_clip_payload_and_top_weighting(make_client, settings):
    # ranked by score, so the unrelated label comes first
    client, session = make_client(make_response(200, json_body=ranked(
        (CLIP_LABELS_TOP[3], 0.1),
        (CLIP_LABELS_TOP[0], 0.8),
        (CLIP_LABELS_TOP[1], 0.05),
        (CLIP_LABELS_TOP[2], 0.05),
    )))
    result = client.evaluate_with_clip("aGVsbG8=", "beaker")

    call = session.calls[0]
    assert call["url"] == f"{settings.hf_api_base}/{settings.clip_model}"
    assert call["json"]["inputs"] == "data:image/jpeg;base64,aGVsbG8="
    assert call["json"]["parameters"]["candidate_labels"] == CLIP_LABELS_TOP
    assert result.score == 77
    assert "high confidence (80%)" in result.explanation


def test_clip_average_weighting(make_client, settings):
    settings.clip_weighting = "average"
    labels = candidate_labels("beaker", "average")
    client, session = make_client(make_response(200, json_body=ranked(
        (labels[0], 0.3), (labels[1], 0.3), (labels[2], 0.3), (labels[3], 0.0), (labels[4], 0.1),
    )))
    result = client.evaluate_with_clip("aGVsbG8=", "beaker")

    assert session.calls[0]["json"]["parameters"]["candidate_labels"] == labels
    assert len(labels) == 5
    assert result.score == 25
    assert "not clearly visible" in result.explanation
    assert "(confidence: 30%)" in result.explanation


@pytest.mark.parametrize("body", [[], {"error": "odd"}])
def test_clip_inconclusive_response(make_client, body):
    client, _ = make_client(make_response(200, json_body=body))
    result = client.evaluate_with_clip("aGVsbG8=", "beaker")
    assert result.score == 50
    assert "inconclusive" in result.explanation


def test_clip_failure(make_client):
    client, _ = make_client(make_response(400, body=b"bad image"))
    with pytest.raises(InferenceError) as excinfo:
        client.evaluate_with_clip("aGVsbG8=", "beaker")
    assert excinfo.value.message.startswith("CLIP evaluation failed: 400")


def test_clip_signal_missing_labels_count_as_zero():
    assert clip_signal([], CLIP_LABELS_TOP) == (0.0, 0.0)


@pytest.mark.parametrize("signal,unrelated,weighting,expected", [
    (1.0, 0.0, "top", 100),
    (0.1, 0.9, "top", 0),
    (0.5, 0.5, "top", 35),
    (0.5, 0.5, "average", 25),
    (0.625, 0.0, "top", 63),
])
def test_clip_score(signal, unrelated, weighting, expected):
    assert clip_score(signal, unrelated, weighting) == expected


def test_upload_image(make_client, settings):
    settings.cloudinary_cloud_name = "demo"
    client, session = make_client(make_response(200, json_body={
        "secure_url": "https://res.cloudinary.com/demo/image/upload/x.png",
    }))
    assert client.upload_image("aGVsbG8=") == "https://res.cloudinary.com/demo/image/upload/x.png"

    call = session.calls[0]
    assert call["url"] == "https://api.cloudinary.com/v1_1/demo/image/upload"
    assert call["files"]["file"] == (None, "data:image/png;base64,aGVsbG8=")
    assert call["files"]["upload_preset"] == (None, "ml_default")


@pytest.mark.parametrize("response", [
    make_response(401, json_body={"error": {"message": "Unknown API key"}}),
    make_response(200, json_body={"public_id": "x"}),
    make_response(200, body=b"not json"),
    requests.Timeout("slow"),
])
def test_upload_failures(make_client, response):
    client, _ = make_client(response)
    with pytest.raises(MediaUploadError):
        client.upload_image("aGVsbG8=")


@pytest.mark.parametrize("value,expected", [(62.5, 63), (0.5, 1), (1.5, 2), (2.5, 3), (62.4, 62)])
def test_half_up_rounds_halves_up(value, expected):
    assert half_up(value) == expected


def test_clip_confidence_rounds_halves_up():
    assert "(confidence: 13%)" in explain_clip(0, "beaker", 0.125)
