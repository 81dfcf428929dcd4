"""World texture: download map tiles and stitch them into an equirectangular globe image."""

import io
import logging
from concurrent.futures import ThreadPoolExecutor, as_completed
from pathlib import Path
from typing import Callable, Optional

import numpy as np
import requests
from PIL import Image

logger = logging.getLogger(__name__)

TILE_SIZE = 256
USER_AGENT = "journey-flyover/0.1.0 (https://github.com/journey-flyover)"
DEFAULT_CACHE_DIR = Path.home() / ".cache" / "journey-flyover" / "tiles"
MAX_ZOOM = 5  # 1024 tiles

# Web Mercator stops here; rows nearer the poles reuse the edge rows
MERCATOR_MAX_LAT = 85.05112878

TILE_SOURCES = {
    "esri-satellite": "https://server.arcgisonline.com/ArcGIS/rest/services/World_Imagery/MapServer/tile/{z}/{y}/{x}",
}


def _download_tile(
    z: int, x: int, y: int, cache_dir: Path, session: requests.Session,
    tile_source: str = "esri-satellite",
) -> tuple[int, int, Image.Image]:
    """Download a single tile, using cache if available."""
    cache_path = cache_dir / tile_source / str(z) / str(x) / f"{y}.png"

    if cache_path.exists():
        try:
            return x, y, Image.open(cache_path).convert("RGB")
        except Exception as e:
            logger.debug("Corrupt tile cache %s: %s", cache_path, e)

    url = TILE_SOURCES[tile_source].format(z=z, x=x, y=y)
    try:
        resp = session.get(url, timeout=10)
        if resp.status_code == 200:
            img = Image.open(io.BytesIO(resp.content)).convert("RGB")
            cache_path.parent.mkdir(parents=True, exist_ok=True)
            with open(cache_path, "wb") as f:
                f.write(resp.content)
            return x, y, img
        logger.warning("Tile %d/%d/%d: HTTP %d", z, x, y, resp.status_code)
    except Exception as e:
        logger.warning("Failed to download tile %d/%d/%d: %s", z, x, y, e)

    # Ocean-blue placeholder on failure
    return x, y, Image.new("RGB", (TILE_SIZE, TILE_SIZE), (18, 46, 92))


def mercator_source_rows(out_height: int, src_height: int) -> np.ndarray:
    """Source row in a full-world Mercator image for each equirectangular output row.

    Output row 0 is latitude +90, the last row -90. Latitudes beyond the
    Mercator limit clamp to the first/last source row.
    """
    out_lats = np.linspace(90.0, -90.0, out_height)
    lats = np.clip(out_lats, -MERCATOR_MAX_LAT, MERCATOR_MAX_LAT)
    merc = np.log(np.tan(np.pi / 4 + np.radians(lats) / 2))
    # Full-world Mercator spans [-pi, pi] in Y, north at the top
    rows = (np.pi - merc) / (2 * np.pi) * (src_height - 1)
    return np.clip(np.round(rows).astype(int), 0, src_height - 1)


def reproject_to_equirectangular(mercator: Image.Image) -> Image.Image:
    """Re-project a full-world Mercator image to linear latitude (2:1 aspect)."""
    src = np.asarray(mercator)
    src_h, src_w = src.shape[:2]
    out_h = src_w // 2
    rows = mercator_source_rows(out_h, src_h)
    return Image.fromarray(src[rows])


def fetch_world_texture(
    zoom: int = 3,
    cache_dir: Optional[Path] = None,
    progress_callback: Optional[Callable[[int, int], None]] = None,
    tile_source: str = "esri-satellite",
    session: Optional[requests.Session] = None,
) -> Image.Image:
    """Fetch every tile at ``zoom`` and stitch an equirectangular world texture."""
    if not 0 <= zoom <= MAX_ZOOM:
        raise ValueError(f"Texture zoom must be between 0 and {MAX_ZOOM} (got {zoom})")
    if cache_dir is None:
        cache_dir = DEFAULT_CACHE_DIR

    n = 2 ** zoom
    total_tiles = n * n
    combined = Image.new("RGB", (n * TILE_SIZE, n * TILE_SIZE))

    if session is None:
        session = requests.Session()
        session.headers["User-Agent"] = USER_AGENT

    done = 0
    with ThreadPoolExecutor(max_workers=4) as pool:
        futures = {}
        for tx in range(n):
            for ty in range(n):
                fut = pool.submit(
                    _download_tile, zoom, tx, ty, cache_dir, session, tile_source,
                )
                futures[fut] = (tx, ty)

        for fut in as_completed(futures):
            tx, ty, img = fut.result()
            combined.paste(img, (tx * TILE_SIZE, ty * TILE_SIZE))
            done += 1
            if progress_callback:
                progress_callback(done, total_tiles)

    logger.info("Stitched %d tiles at zoom %d", total_tiles, zoom)
    return reproject_to_equirectangular(combined)
