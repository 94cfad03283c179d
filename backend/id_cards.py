import io
import logging
import math
from dataclasses import dataclass, field
from typing import Callable, Dict, Iterable, List, Optional, Sequence, Tuple

import qrcode
from qrcode.constants import ERROR_CORRECT_H
from reportlab.lib.units import mm
from reportlab.lib.utils import ImageReader, simpleSplit
from reportlab.pdfgen import canvas as pdf_canvas

from utils import record_field

logger = logging.getLogger(__name__)

RGB = Tuple[int, int, int]

# ISO/IEC 7810 ID-1, millimetres
ID_CARD_WIDTH = 85.6
ID_CARD_HEIGHT = 53.98
A4_WIDTH = 210.0
A4_HEIGHT = 297.0

GRADIENT_START: RGB = (13, 27, 76)
GRADIENT_END: RGB = (26, 58, 154)
GRADIENT_STEPS = 100
CARD_COLUMNS = 2


@dataclass(frozen=True)
class PageConfig:
    page_width: float = A4_WIDTH
    page_height: float = A4_HEIGHT
    margin: float = 10.0
    card_width: float = ID_CARD_WIDTH
    card_height: float = ID_CARD_HEIGHT


@dataclass(frozen=True)
class CardPlacement:
    index: int
    page: int
    row: int
    col: int
    x: float
    y: float


@dataclass
class RenderedBatch:
    content: bytes
    pages: int
    qr_failures: List[str] = field(default_factory=list)


def cards_per_page(config: PageConfig) -> int:
    usable_height = config.page_height - config.margin
    rows = int(math.floor(usable_height / (config.card_height + config.margin)))
    return max(rows, 1) * CARD_COLUMNS


def place_card(index: int, config: PageConfig, per_page: int) -> CardPlacement:
    page = index // per_page
    position = index % per_page
    col = position % CARD_COLUMNS
    row = position // CARD_COLUMNS
    return CardPlacement(
        index=index,
        page=page,
        row=row,
        col=col,
        x=config.margin + col * (config.card_width + config.margin),
        y=config.margin + row * (config.card_height + config.margin),
    )


def layout(participants: Sequence, config: Optional[PageConfig] = None, per_page: Optional[int] = None) -> List[CardPlacement]:
    """Row-major placement of one card per participant, two columns per page.

    ``x`` and ``y`` are measured in millimetres from the top-left corner of the page.
    """
    config = config or PageConfig()
    if per_page is None:
        per_page = cards_per_page(config)
    if per_page < 1:
        raise ValueError("cards per page must be at least 1")
    return [place_card(i, config, per_page) for i in range(len(participants))]


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def interpolate_color(start: RGB, end: RGB, step: int, steps: int = GRADIENT_STEPS) -> RGB:
    if steps <= 0:
        raise ValueError("steps must be positive")
    ratio = step / steps
    return tuple(_round_half_up(a + (b - a) * ratio) for a, b in zip(start, end))


def gradient_strips(
    x: float,
    y: float,
    width: float,
    height: float,
    start: RGB = GRADIENT_START,
    end: RGB = GRADIENT_END,
    steps: int = GRADIENT_STEPS,
) -> List[Tuple[float, float, float, float, RGB]]:
    strip_width = width / steps
    return [
        (x + i * strip_width, y, strip_width, height, interpolate_color(start, end, i, steps))
        for i in range(steps)
    ]


def qr_payload(participant) -> str:
    return str(record_field(participant, "chest_number"))


def qr_png(payload: str, fill_color: str = "black", back_color: str = "white", border: int = 4) -> bytes:
    qr = qrcode.QRCode(error_correction=ERROR_CORRECT_H, box_size=10, border=border)
    qr.add_data(payload)
    qr.make(fit=True)
    buf = io.BytesIO()
    qr.make_image(fill_color=fill_color, back_color=back_color).save(buf, format="PNG")
    return buf.getvalue()


def card_qr_png(payload: str) -> bytes:
    return qr_png(payload, fill_color="white", back_color="transparent", border=1)


def _rgb(pdf, color: RGB, stroke: bool = False) -> None:
    r, g, b = (c / 255.0 for c in color)
    if stroke:
        pdf.setStrokeColorRGB(r, g, b)
    else:
        pdf.setFillColorRGB(r, g, b)


class CardRenderer:
    """Draws ID cards on a reportlab canvas using top-left millimetre coordinates."""

    def __init__(self, pdf, config: PageConfig, qr_encoder: Callable[[str], bytes] = card_qr_png):
        self.pdf = pdf
        self.config = config
        self.qr_encoder = qr_encoder

    def _y(self, top: float) -> float:
        return (self.config.page_height - top) * mm

    def _rect(self, x: float, y: float, w: float, h: float, **kwargs) -> None:
        self.pdf.rect(x * mm, self._y(y + h), w * mm, h * mm, **kwargs)

    def _text(self, x: float, y: float, value: str) -> None:
        self.pdf.drawString(x * mm, self._y(y), value)

    def render(self, placement: CardPlacement, participant, fest_name: str, team_name: str, category_name: str) -> bool:
        """Draw one card. Returns False when the QR image had to be skipped."""
        cfg = self.config
        x, y = placement.x, placement.y
        for sx, sy, sw, sh, color in gradient_strips(x, y, cfg.card_width, cfg.card_height):
            _rgb(self.pdf, color)
            self._rect(sx, sy, sw, sh, stroke=0, fill=1)

        _rgb(self.pdf, (255, 255, 255), stroke=True)
        self.pdf.setLineWidth(0.2 * mm)
        self.pdf.roundRect(x * mm, self._y(y + cfg.card_height), cfg.card_width * mm, cfg.card_height * mm, 3 * mm, stroke=1, fill=0)

        payload = qr_payload(participant)
        qr_drawn = True
        try:
            image = ImageReader(io.BytesIO(self.qr_encoder(payload)))
            self.pdf.drawImage(image, (x + cfg.card_width - 30) * mm, self._y(y + 5 + 25), 25 * mm, 25 * mm, mask="auto")
        except Exception as exc:
            logger.warning("QR generation failed for chest number %s: %s", payload, exc)
            qr_drawn = False

        _rgb(self.pdf, (255, 255, 255))
        self.pdf.setFont("Helvetica-Bold", 12)
        self._text(x + 8, y + 12, fest_name)
        self.pdf.line((x + 8) * mm, self._y(y + 14), (x + 35) * mm, self._y(y + 14))

        self.pdf.setFont("Helvetica-Bold", 16)
        lines = simpleSplit(str(record_field(participant, "name") or ""), "Helvetica-Bold", 16, (cfg.card_width - 45) * mm)
        for offset, line in enumerate(lines[:2]):
            self._text(x + 8, y + 25 + offset * 6, line)

        _rgb(self.pdf, (220, 220, 220))
        self.pdf.setFont("Helvetica", 8)
        self._text(x + 8, y + 38, f"Chest No: {payload}")
        self._text(x + 8, y + 43, f"Team: {team_name or 'N/A'}")
        self._text(x + 8, y + 48, f"Category: {category_name or 'N/A'}")
        return qr_drawn


def render_id_cards_pdf(
    participants: Sequence,
    fest_name: str,
    team_names: Optional[Dict] = None,
    category_names: Optional[Dict] = None,
    config: Optional[PageConfig] = None,
    qr_encoder: Callable[[str], bytes] = card_qr_png,
) -> RenderedBatch:
    config = config or PageConfig()
    team_names = team_names or {}
    category_names = category_names or {}
    placements = layout(participants, config)

    buf = io.BytesIO()
    pdf = pdf_canvas.Canvas(buf, pagesize=(config.page_width * mm, config.page_height * mm))
    pdf.setTitle(f"{fest_name} ID cards")
    renderer = CardRenderer(pdf, config, qr_encoder=qr_encoder)

    failures: List[str] = []
    current_page = 0
    for placement, participant in zip(placements, participants):
        if placement.page != current_page:
            pdf.showPage()
            current_page = placement.page
        if not renderer.render(
            placement,
            participant,
            fest_name,
            team_names.get(record_field(participant, "team_id")),
            category_names.get(record_field(participant, "category_id")),
        ):
            failures.append(qr_payload(participant))
    pdf.showPage()
    pdf.save()

    pages = placements[-1].page + 1 if placements else 1
    return RenderedBatch(content=buf.getvalue(), pages=pages, qr_failures=failures)


def iter_qr_images(participants: Iterable, qr_encoder: Callable[[str], bytes] = qr_png):
    """Yield ``(filename, png_bytes)`` per participant, skipping those whose QR cannot be encoded."""
    for participant in participants:
        payload = qr_payload(participant)
        try:
            content = qr_encoder(payload)
        except Exception as exc:
            logger.warning("QR generation failed for chest number %s: %s", payload, exc)
            continue
        yield f"{payload}.png", content
