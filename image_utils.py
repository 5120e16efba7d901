import logging
from io import BytesIO

import requests
from PIL import Image, UnidentifiedImageError

from exceptions import EvidenceFetchError

# Judges accept images up to this size on the long edge without rescaling server-side.
MAX_EVIDENCE_EDGE = 1568
MAX_EVIDENCE_BYTES = 20 * 1024 * 1024


def fetch_evidence_image(image_url, timeout=10):
    """
    Downloads one evidence image and returns it as JPEG bytes ready to embed
    in a judge request. Any network or decoding problem becomes EvidenceFetchError.
    """
    try:
        response = requests.get(image_url, timeout=timeout)
        response.raise_for_status()
    except requests.RequestException as e:
        logging.warning(f"Failed to fetch evidence image {image_url}: {e}")
        raise EvidenceFetchError(f"Failed to fetch image for verification: {e}") from e

    if len(response.content) > MAX_EVIDENCE_BYTES:
        raise EvidenceFetchError("Evidence image is too large")
    return normalize_image(response.content)


def normalize_image(image_bytes):
    try:
        with Image.open(BytesIO(image_bytes)) as img:
            # Flatten transparency onto white, the same way avatars are processed.
            if img.mode in ('RGBA', 'LA'):
                background = Image.new(img.mode[:-1], img.size, (255, 255, 255) if img.mode == 'RGBA' else 255)
                background.paste(img, mask=img.getchannel('A'))
                img = background

            img.thumbnail((MAX_EVIDENCE_EDGE, MAX_EVIDENCE_EDGE))
            output_buffer = BytesIO()
            img.convert('RGB').save(output_buffer, "JPEG", quality=90)
    except (UnidentifiedImageError, OSError) as e:
        raise EvidenceFetchError(f"Evidence is not a readable image: {e}") from e
    return output_buffer.getvalue()
