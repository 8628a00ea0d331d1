import base64
import io
import threading
import time
from typing import Dict, Tuple

import qrcode

CACHE_TTL_SEC = 10 * 60


def build_qr_data_url(data: str) -> str:
    qr = qrcode.QRCode(border=1, box_size=4)
    qr.add_data(data)
    qr.make(fit=True)
    img = qr.make_image(fill_color="black", back_color="white")
    buffer = io.BytesIO()
    img.save(buffer, format="PNG")
    encoded = base64.b64encode(buffer.getvalue()).decode("ascii")
    return f"data:image/png;base64,{encoded}"


class QRCodeCache:
    """Data-URL QR codes keyed by the encoded URL, kept for ``ttl`` seconds."""

    def __init__(self, ttl: float = CACHE_TTL_SEC, clock=time.monotonic):
        self.ttl = ttl
        self.clock = clock
        self._entries: Dict[str, Tuple[float, str]] = {}
        self._lock = threading.Lock()

    def get(self, url: str) -> str:
        now = self.clock()
        with self._lock:
            hit = self._entries.get(url)
            if hit and now - hit[0] < self.ttl:
                return hit[1]
        image = build_qr_data_url(url)
        with self._lock:
            self._entries[url] = (now, image)
            for key in [k for k, (at, _) in self._entries.items() if now - at >= self.ttl]:
                del self._entries[key]
        return image
