from __future__ import annotations
from io import BytesIO
import qrcode
import qrcode.image.svg
from qrcode.constants import ERROR_CORRECT_Q

def _qr(data: str) -> qrcode.QRCode:
    # Q-level correction and a quiet zone so printed/phone-screen passes still scan
    qr = qrcode.QRCode(error_correction=ERROR_CORRECT_Q, box_size=8, border=2)
    qr.add_data(data)
    qr.make(fit=True)
    return qr

def render_png(data: str) -> bytes:
    img = _qr(data).make_image()
    b = BytesIO(); img.save(b, format="PNG")
    return b.getvalue()

def render_svg(data: str) -> bytes:
    img = _qr(data).make_image(image_factory=qrcode.image.svg.SvgPathImage)
    b = BytesIO(); img.save(b)
    return b.getvalue()
