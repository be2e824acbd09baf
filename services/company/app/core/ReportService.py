import csv
import io
from dataclasses import dataclass
from typing import Any, List

from libs.common import ServiceError, now_utc

from services.company.app.core.CompanyService import CompanyService

ROSTER_COLUMNS = (
    ("name", "Name"),
    ("email", "Email"),
    ("department", "Department"),
    ("jobTitle", "Job Title"),
    ("status", "Status"),
    ("joinedAt", "Joined"),
)


class ReportError(ServiceError):
    pass


@dataclass
class ExportFile:
    content: bytes
    media_type: str
    filename: str


class ReportService:
    """Roster exports for company admins with viewReports."""

    def __init__(self, company_service: CompanyService):
        self.company_service = company_service

    async def export_roster(self, user_id: int, fmt: str = "csv") -> ExportFile:
        fmt = (fmt or "csv").lower()
        generators = {
            "csv": self._generate_csv,
            "xlsx": self._generate_excel,
            "pdf": self._generate_pdf,
        }
        if fmt not in generators:
            raise ReportError("ERR-IVD-VALUE", "format must be csv, xlsx or pdf")

        rows = await self.company_service.roster(user_id)
        headers = [label for _, label in ROSTER_COLUMNS]
        values = [[row[key] for key, _ in ROSTER_COLUMNS] for row in rows]

        content, media_type = generators[fmt](headers, values)
        filename = f"employees-{now_utc().strftime('%Y-%m-%d')}.{fmt}"
        return ExportFile(content=content, media_type=media_type, filename=filename)

    @staticmethod
    def _generate_csv(headers: List[str], rows: List[List[Any]]) -> tuple[bytes, str]:
        buffer = io.StringIO()
        writer = csv.writer(buffer)
        writer.writerow(headers)
        for row in rows:
            writer.writerow(row)
        # BOM so Excel detects utf-8
        return buffer.getvalue().encode("utf-8-sig"), "text/csv"

    @staticmethod
    def _generate_excel(headers: List[str], rows: List[List[Any]]) -> tuple[bytes, str]:
        from openpyxl import Workbook

        wb = Workbook()
        ws = wb.active
        ws.title = "Employees"
        ws.append(headers)
        for row in rows:
            ws.append(row)

        buffer = io.BytesIO()
        wb.save(buffer)
        buffer.seek(0)
        return buffer.read(), "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"

    @staticmethod
    def _generate_pdf(headers: List[str], rows: List[List[Any]]) -> tuple[bytes, str]:
        from reportlab.lib.pagesizes import landscape, letter
        from reportlab.pdfgen import canvas

        buffer = io.BytesIO()
        p = canvas.Canvas(buffer, pagesize=landscape(letter))
        _, height = landscape(letter)
        x_positions = (40, 180, 360, 470, 590, 680)

        def _header(y: float) -> float:
            p.setFont("Helvetica-Bold", 10)
            for x, label in zip(x_positions, headers):
                p.drawString(x, y, label)
            p.setFont("Helvetica", 9)
            return y - 18

        p.setFont("Helvetica-Bold", 16)
        p.drawString(40, height - 40, "Employee Roster")
        y = _header(height - 70)
        for row in rows:
            if y < 40:
                p.showPage()
                y = _header(height - 40)
            for x, value in zip(x_positions, row):
                p.drawString(x, y, str(value)[:32])
            y -= 14

        p.save()
        buffer.seek(0)
        return buffer.read(), "application/pdf"
