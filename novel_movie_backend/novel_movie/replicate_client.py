import os, time, httpx, asyncio, logging
from typing import Optional, Tuple
from .errors import GenerationError
from .settings import (
    REPLICATE_POLL_INTERVAL_MS, REPLICATE_POLL_TIMEOUT_S, REPLICATE_IMAGE_MODEL, REPLICATE_VIDEO_MODEL,
)

logger = logging.getLogger(__name__)

API_BASE = "https://api.replicate.com/v1"

def _headers():
    token = os.getenv("REPLICATE_API_TOKEN", "")
    if not token:
        raise RuntimeError("REPLICATE_API_TOKEN is not set; please configure your .env")
    return {"Authorization": f"Token {token}"}

def _parse_selector(selector: str):
    # Returns a tuple (mode, data)
    # mode == "version": data={"version": <hash>}
    # mode == "model": data={"owner": <owner>, "name": <name>}
    if "/" in selector:
        # Could be owner/name or owner/name:versionAlias
        owner_name, _, _version_alias = selector.partition(":")
        if "/" in owner_name:
            owner, name = owner_name.split("/", 1)
            return "model", {"owner": owner, "name": name}
    # Fallback assume it's a version hash
    return "version", {"version": selector}

async def _asleep(sec: float):
    await asyncio.sleep(sec)

def _first_output(body: dict) -> Optional[str]:
    output = body.get("output")
    if isinstance(output, list) and output:
        return output[0]
    if isinstance(output, str) and output:
        return output
    return None

async def _create_prediction(client: httpx.AsyncClient, selector: str, model_input: dict) -> str:
    json_body = {"input": model_input}
    mode, data = _parse_selector(selector)
    if mode == "version":
        json_body["version"] = data["version"]
        url = f"{API_BASE}/predictions"
    else:
        url = f"{API_BASE}/models/{data['owner']}/{data['name']}/predictions"

    logger.info(f"Sending request to Replicate: {url}")
    async def _create(url_to_use: str, body: dict):
        return await client.post(
            url_to_use,
            headers={**_headers(), "Content-Type": "application/json"},
            json=body,
        )

    r = await _create(url, json_body)
    if r.status_code >= 400:
        # If using model endpoint failed (e.g., 404 due to aliasing/visibility),
        # fall back to fetching latest version and using the generic predictions endpoint.
        logger.error(f"Replicate create failed {r.status_code}: {r.text}")
        if mode == "model" and r.status_code == 404:
            try:
                logger.info("Falling back to latest version resolution for model")
                model_resp = await client.get(
                    f"{API_BASE}/models/{data['owner']}/{data['name']}",
                    headers=_headers()
                )
                model_resp.raise_for_status()
                version_id = (model_resp.json().get("latest_version") or {}).get("id")
                if not version_id:
                    raise GenerationError("Could not resolve latest version for model")
                logger.info(f"Resolved latest version: {version_id}")
                r = await _create(f"{API_BASE}/predictions", {**json_body, "version": version_id})
                r.raise_for_status()
            except Exception as e:
                logger.error(f"Fallback to version create failed: {str(e)}")
                raise GenerationError(f"Replicate create failed {r.status_code}: {r.text}") from e
        else:
            raise GenerationError(f"Replicate create failed {r.status_code}: {r.text}")
    pred_id = r.json()["id"]
    logger.info(f"Replicate prediction created with ID: {pred_id}")
    return pred_id

async def _get_prediction(client: httpx.AsyncClient, pred_id: str) -> dict:
    s = await client.get(f"{API_BASE}/predictions/{pred_id}", headers=_headers())
    if s.status_code >= 400:
        logger.error(f"Replicate status failed {s.status_code}: {s.text}")
        raise GenerationError(f"Replicate status failed {s.status_code}: {s.text}")
    return s.json()

def _raise_if_failed(pred_id: str, body: dict):
    status = body.get("status")
    if status in ("failed", "canceled"):
        logs = body.get("logs")
        error_detail = body.get("error")
        logger.error(f"Replicate prediction {pred_id} {status}. logs={logs} error={error_detail}")
        raise GenerationError(f"Replicate failed: {status}. error={error_detail}")

async def create_and_wait_image(prompt: str, aspect_ratio: str = "16:9") -> str:
    logger.info(f"Starting Replicate image generation for prompt: {prompt[:100]}...")

    async with httpx.AsyncClient(timeout=30) as client:
        logger.info(f"Using Replicate model: {REPLICATE_IMAGE_MODEL}")
        pred_id = await _create_prediction(client, REPLICATE_IMAGE_MODEL, {
            "prompt": prompt,
            "aspect_ratio": aspect_ratio,
            "num_outputs": 1,
        })

        start = time.time()
        while True:
            body = await _get_prediction(client, pred_id)
            status = body.get("status")
            logger.info(f"Replicate prediction {pred_id} status: {status}")
            _raise_if_failed(pred_id, body)
            if status == "succeeded":
                url = _first_output(body)
                if url:
                    logger.info(f"Replicate prediction succeeded, got output URL: {url}")
                    return url
                logger.error("Replicate succeeded but no output URL")
                raise GenerationError("Replicate succeeded but no output URL")
            if time.time() - start > REPLICATE_POLL_TIMEOUT_S:
                logger.error("Replicate polling timeout")
                raise GenerationError("Replicate polling timeout")
            await _asleep(REPLICATE_POLL_INTERVAL_MS / 1000.0)

async def submit_video(prompt: str, image_url: Optional[str], aspect_ratio: str = "16:9") -> str:
    """Start an image-to-video prediction and return its id without waiting."""
    logger.info(f"Submitting Replicate video job with model {REPLICATE_VIDEO_MODEL}")
    model_input = {"prompt": prompt, "aspect_ratio": aspect_ratio}
    if image_url:
        model_input["image"] = image_url
    async with httpx.AsyncClient(timeout=30) as client:
        return await _create_prediction(client, REPLICATE_VIDEO_MODEL, model_input)

async def check_video(pred_id: str) -> Tuple[bool, Optional[str]]:
    """One status check: (False, None) while pending, (True, url) when finished."""
    async with httpx.AsyncClient(timeout=30) as client:
        body = await _get_prediction(client, pred_id)
    status = body.get("status")
    logger.info(f"Replicate video {pred_id} status: {status}")
    _raise_if_failed(pred_id, body)
    if status != "succeeded":
        return False, None
    url = _first_output(body)
    if not url:
        raise GenerationError("Replicate video succeeded but no output URL")
    return True, url
