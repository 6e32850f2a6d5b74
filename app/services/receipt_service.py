"""
🧾 RECEIPT SERVICE - RECIBO PDF DEL PEDIDO
==========================================

Genera el recibo de un pedido confirmado con ReportLab, lo guarda en
RECEIPTS_DIR y construye la URL pública que se envía por WhatsApp
(main.py sirve ese directorio en /receipts).

📄 CONTENIDO:
- Datos del negocio (nombre, email, teléfono)
- Número de pedido, fecha, cliente y método de pago
- Tabla de productos: nombre, cantidad, precio unitario, subtotal
- Total y términos de pago
"""

from __future__ import annotations

import io
import logging
import os
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, Optional
from xml.sax.saxutils import escape

from reportlab.lib import colors
from reportlab.lib.pagesizes import A4
from reportlab.lib.styles import ParagraphStyle, getSampleStyleSheet
from reportlab.lib.units import mm
from reportlab.platypus import Paragraph, SimpleDocTemplate, Spacer, Table, TableStyle

from config.settings import settings

logger = logging.getLogger(__name__)

PAYMENT_DESCRIPTIONS = {
    "instant": "Immediate Payment",
    "30_days": "Payment in 30 days",
}


def _fmt_amount(value: Any) -> str:
    return f"${Decimal(str(value)):,.2f}"


def _fmt_date(value: Optional[str]) -> str:
    if not value:
        return datetime.now().strftime("%d-%b-%Y %H:%M")
    try:
        return datetime.fromisoformat(value).strftime("%d-%b-%Y %H:%M")
    except ValueError:
        return value


class ReceiptService:
    def __init__(self, directory: Optional[str] = None, base_url: Optional[str] = None):
        self.directory = directory or settings.RECEIPTS_DIR
        self.base_url = (base_url or settings.PUBLIC_BASE_URL).rstrip("/")

    @staticmethod
    def filename(order_number: str) -> str:
        return f"receipt_{order_number}.pdf"

    def receipt_url(self, order_number: str) -> str:
        return f"{self.base_url}/receipts/{self.filename(order_number)}"

    def save_receipt(self, order: Dict[str, Any]) -> str:
        """Escribe el PDF en disco y devuelve su URL pública."""
        os.makedirs(self.directory, exist_ok=True)
        path = os.path.join(self.directory, self.filename(order["order_number"]))
        with open(path, "wb") as fh:
            fh.write(self.render_pdf(order))
        logger.info("🧾 Recibo generado: %s", path)
        return self.receipt_url(order["order_number"])

    def render_pdf(self, order: Dict[str, Any]) -> bytes:
        """
        Args:
            order: pedido serializado por OrderService (montos como string)

        Returns:
            PDF en bytes
        """
        buf = io.BytesIO()
        doc = SimpleDocTemplate(
            buf,
            pagesize=A4,
            leftMargin=15 * mm,
            rightMargin=15 * mm,
            topMargin=15 * mm,
            bottomMargin=15 * mm,
            title=f"Receipt {order['order_number']}",
        )

        styles = getSampleStyleSheet()
        title_style = ParagraphStyle("ReceiptTitle", parent=styles["Heading1"], fontSize=18, alignment=1, spaceAfter=6)
        subtitle_style = ParagraphStyle("ReceiptSubtitle", parent=styles["Normal"], fontSize=9, alignment=1,
                                        textColor=colors.grey, spaceAfter=16)
        small_style = ParagraphStyle("Small", parent=styles["Normal"], fontSize=9, textColor=colors.grey)

        elements = [
            Paragraph(escape(settings.BUSINESS_NAME), title_style),
            Paragraph(f"{escape(settings.BUSINESS_EMAIL)} | {escape(settings.BUSINESS_PHONE)}", subtitle_style),
            Paragraph("ORDER RECEIPT", styles["Heading2"]),
        ]

        payment = order.get("payment_method") or ""
        header_data = [
            ["Order Number", order["order_number"], "Date", _fmt_date(order.get("created_at"))],
            ["Customer", order.get("customer_name") or "", "Phone", order.get("customer_phone") or ""],
            ["Payment", PAYMENT_DESCRIPTIONS.get(payment, payment), "Status", order.get("status") or ""],
        ]
        header_table = Table(header_data, colWidths=[80, 170, 60, 150])
        header_table.setStyle(TableStyle([
            ("BACKGROUND", (0, 0), (0, -1), colors.Color(0.95, 0.95, 0.95)),
            ("BACKGROUND", (2, 0), (2, -1), colors.Color(0.95, 0.95, 0.95)),
            ("TEXTCOLOR", (0, 0), (0, -1), colors.grey),
            ("TEXTCOLOR", (2, 0), (2, -1), colors.grey),
            ("FONTSIZE", (0, 0), (-1, -1), 9),
            ("GRID", (0, 0), (-1, -1), 0.5, colors.Color(0.8, 0.8, 0.8)),
            ("VALIGN", (0, 0), (-1, -1), "MIDDLE"),
            ("TOPPADDING", (0, 0), (-1, -1), 6),
            ("BOTTOMPADDING", (0, 0), (-1, -1), 6),
        ]))
        elements += [header_table, Spacer(1, 15)]

        rows = [["Product", "Qty", "Unit Price", "Subtotal"]]
        for item in order.get("items", []):
            rows.append([
                Paragraph(escape(item["product_name"]), styles["Normal"]),
                str(item["quantity"]),
                _fmt_amount(item["unit_price"]),
                _fmt_amount(item["line_total"]),
            ])
        rows.append(["", "", "TOTAL", _fmt_amount(order["total_amount"])])

        items_table = Table(rows, colWidths=[230, 50, 90, 90])
        items_table.setStyle(TableStyle([
            ("BACKGROUND", (0, 0), (-1, 0), colors.Color(0.2, 0.3, 0.5)),
            ("TEXTCOLOR", (0, 0), (-1, 0), colors.white),
            ("FONTNAME", (0, 0), (-1, 0), "Helvetica-Bold"),
            ("FONTNAME", (2, -1), (-1, -1), "Helvetica-Bold"),
            ("ALIGN", (1, 0), (-1, -1), "RIGHT"),
            ("FONTSIZE", (0, 0), (-1, -1), 9),
            ("LINEABOVE", (2, -1), (-1, -1), 1, colors.black),
            ("GRID", (0, 0), (-1, -2), 0.5, colors.Color(0.8, 0.8, 0.8)),
            ("TOPPADDING", (0, 0), (-1, -1), 5),
            ("BOTTOMPADDING", (0, 0), (-1, -1), 5),
        ]))
        elements += [items_table, Spacer(1, 20)]

        if payment == "30_days":
            terms = "Payment is due within 30 days of delivery."
        else:
            terms = "Payment is due immediately."
        elements.append(Paragraph(f"Payment terms: {terms}", styles["Normal"]))
        elements.append(Spacer(1, 10))
        elements.append(Paragraph("Thank you for your order!", small_style))

        doc.build(elements)
        return buf.getvalue()
