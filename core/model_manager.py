import psutil
import logging
from typing import Dict, Any

from config import MODEL_BASE_URL, MODEL_SIZES
from core.errors import NotFoundError

logger = logging.getLogger(__name__)

# Approximate resident memory of whisper.cpp per model (bytes), plus ffmpeg/app overhead
MODEL_RAM_BYTES = {
    "tiny":     400_000_000,
    "base":     500_000_000,
    "small":    1_000_000_000,
    "medium":   2_600_000_000,
    "large-v3": 4_700_000_000,
}

def model_filename(model_size: str) -> str:
    if model_size not in MODEL_SIZES:
        raise NotFoundError(
            f"Unknown model size: {model_size}. Expected {'/'.join(MODEL_SIZES)}."
        )
    return f"ggml-{model_size}.bin"

def model_url(model_size: str) -> str:
    return f"{MODEL_BASE_URL}/{model_filename(model_size)}?download=true"

def check_ram_availability(model_size: str) -> Dict[str, Any]:
    """
    Checks if there is sufficient RAM available before starting transcription.
    Returns dict with 'sufficient', 'available_gb', 'required_gb'.
    """
    available = psutil.virtual_memory().available
    required  = MODEL_RAM_BYTES.get(model_size, MODEL_RAM_BYTES["small"])
    return {
        "sufficient":    available >= required,
        "available_gb":  round(available / 1e9, 1),
        "required_gb":   round(required / 1e9, 1)
    }
