"""Rendering of WhatsApp linking QR challenges."""

from __future__ import annotations

import base64
import io

import qrcode


def _build(payload: str) -> qrcode.QRCode:
    qr = qrcode.QRCode(border=1)
    qr.add_data(payload)
    qr.make(fit=True)
    return qr


def render_terminal(payload: str) -> str:
    """Return the challenge as a block of text scannable from a terminal."""
    out = io.StringIO()
    _build(payload).print_ascii(out=out, invert=True)
    return out.getvalue()


def render_data_url(payload: str) -> str:
    """Return the challenge as a ``data:image/png;base64`` URL."""
    image = _build(payload).make_image()
    buf = io.BytesIO()
    image.save(buf)
    return "data:image/png;base64," + base64.b64encode(buf.getvalue()).decode("ascii")
