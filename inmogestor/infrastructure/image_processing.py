from __future__ import annotations

import base64
import io
import logging

from PIL import Image, UnidentifiedImageError

logger = logging.getLogger(__name__)

MAX_EDGE_PX = 1200
JPEG_QUALITY = 70
DATA_URL_PREFIX = "data:image/jpeg;base64,"


class PillowImageProcessor:
    """Reduce fotos de carteles e inmuebles antes de guardarlas en el registro.

    Lado mayor como máximo `max_edge` px (sin ampliar), JPEG calidad `quality`.
    Devuelve un data URL o None si los bytes no son una imagen.
    """

    def __init__(self, *, max_edge: int = MAX_EDGE_PX, quality: int = JPEG_QUALITY) -> None:
        self._max_edge = max_edge
        self._quality = quality

    def process(self, raw: bytes) -> str | None:
        if not raw:
            return None
        try:
            with Image.open(io.BytesIO(raw)) as source:
                image = self._to_rgb(source)
                image.thumbnail((self._max_edge, self._max_edge), Image.Resampling.LANCZOS)
                output = io.BytesIO()
                image.save(output, format="JPEG", quality=self._quality, optimize=True)
        except (UnidentifiedImageError, OSError, ValueError) as exc:
            logger.warning("No se pudo procesar la imagen: %s", exc)
            return None
        encoded = base64.b64encode(output.getvalue()).decode("ascii")
        return DATA_URL_PREFIX + encoded

    @staticmethod
    def _to_rgb(image: Image.Image) -> Image.Image:
        if image.mode in ("RGBA", "LA", "P"):
            rgba = image.convert("RGBA")
            background = Image.new("RGB", rgba.size, (255, 255, 255))
            background.paste(rgba, mask=rgba.split()[-1])
            return background
        if image.mode != "RGB":
            return image.convert("RGB")
        return image.copy()
