from __future__ import annotations

import logging
from pathlib import Path

from openpyxl import Workbook
from openpyxl.styles import Font
from openpyxl.utils import get_column_letter
from openpyxl.worksheet.table import Table, TableStyleInfo

log = logging.getLogger("disbursements.reporting")


class ReportingService:
    def __init__(self, repo, fda_service):
        self.repo = repo
        self.fda = fda_service

    def export_fda_excel(self, tenant_id: str, fda_id: int, path: str | Path) -> None:
        summary = self.fda.summary(tenant_id, fda_id)
        header = summary.header
        lines = self.repo.list_ledger_lines(tenant_id, header.id)

        wb = Workbook()

        def money(cell):
            cell.number_format = "#,##0.00"

        def bold_row(ws, r):
            for c in ws[r]:
                c.font = Font(bold=True)

        def set_widths(ws, widths: dict[str, int]):
            for col, w in widths.items():
                ws.column_dimensions[col].width = w

        def add_table(ws, name: str, start_row: int, start_col: int, end_row: int, end_col: int):
            ref = f"{get_column_letter(start_col)}{start_row}:{get_column_letter(end_col)}{end_row}"
            tab = Table(displayName=name, ref=ref)
            tab.tableStyleInfo = TableStyleInfo(
                name="TableStyleMedium9",
                showRowStripes=True,
                showColumnStripes=False,
            )
            ws.add_table(tab)

        # -------- 1) Summary --------
        ws = wb.active
        ws.title = "Summary"
        ws["A1"] = f"Final Disbursement Account #{header.id}"
        ws["A1"].font = Font(bold=True, size=14)

        info = [
            ("PDA", str(header.meta.get("pda_number", ""))),
            ("Status", header.status.value),
            ("Client", header.client_name or ""),
            ("Vessel", header.vessel_name or ""),
            ("IMO", header.imo or ""),
            ("Port", header.port or ""),
            ("Terminal", header.terminal or ""),
            ("ETA / ETB / ETS", " / ".join(v or "-" for v in (header.eta, header.etb, header.ets))),
            (f"Exchange rate {header.currency_base}/{header.currency_local}", float(header.exchange_rate.rate)),
            ("Rate source", header.exchange_rate.source.value),
        ]
        r = 3
        for label, val in info:
            ws[f"A{r}"] = label
            ws[f"B{r}"] = val
            r += 1
        ws[f"B{r - 2}"].number_format = "0.0000"

        totals = summary.totals
        rows = [
            ("AP USD", totals.ap_usd, "money"),
            (f"AP {header.currency_local}", totals.ap_local, "money"),
            ("AR USD", totals.ar_usd, "money"),
            (f"AR {header.currency_local}", totals.ar_local, "money"),
            ("Net USD (AR - AP)", totals.net_usd, "money"),
            (f"Net {header.currency_local}", totals.net_local, "money"),
            ("Client share %", header.client_share_pct, "num"),
            ("Due from client USD", summary.due_from_client_usd, "money"),
            ("Received from client USD", header.received_from_client_usd, "money"),
            ("Outstanding from client USD", summary.outstanding_from_client_usd, "money"),
            ("Lines open", summary.tally.open, "int"),
            ("Lines partially settled", summary.tally.partially_settled, "int"),
            ("Lines settled", summary.tally.settled, "int"),
        ]
        r += 1
        for label, val, kind in rows:
            ws[f"A{r}"] = label
            ws[f"B{r}"] = int(val) if kind == "int" else float(val)
            if kind == "money":
                money(ws[f"B{r}"])
            r += 1

        set_widths(ws, {"A": 30, "B": 34})

        # -------- 2) Ledger --------
        ws2 = wb.create_sheet("Ledger")
        ws2.append([
            "Line", "Side", "Category", "Description", "Counterparty",
            "Amount USD", f"Amount {header.currency_local}", "Custom FX",
            "Invoice", "Due date", "Status", "Settled at", "Origin", "Comment",
        ])
        bold_row(ws2, 1)

        out_row = 2
        for ln in lines:
            ws2.append([
                int(ln.line_no), ln.side.value, ln.category, ln.description, ln.counterparty,
                float(ln.amount_usd), float(ln.amount_local),
                float(ln.custom_fx_rate) if ln.custom_fx_rate is not None else None,
                ln.invoice_no or "", ln.due_date or "", ln.status.value, ln.settled_at or "",
                ln.origin.value, ln.comment or "",
            ])
            money(ws2[f"F{out_row}"])
            money(ws2[f"G{out_row}"])
            out_row += 1

        ws2.freeze_panes = "A2"
        set_widths(ws2, {
            "A": 6, "B": 6, "C": 30, "D": 34, "E": 24,
            "F": 16, "G": 16, "H": 10,
            "I": 14, "J": 12, "K": 18, "L": 22, "M": 9, "N": 40,
        })
        if ws2.max_row >= 2:
            add_table(ws2, "LedgerLines", 1, 1, ws2.max_row, 14)

        # -------- 3) Payments --------
        ws3 = wb.create_sheet("Payments")
        ws3.append([
            "Line", "Category", "Paid at", "Amount USD", "FX at payment",
            f"Amount {header.currency_local}", "Method", "Reference",
        ])
        bold_row(ws3, 1)

        out_row = 2
        for ln in lines:
            for p in self.repo.list_payments(tenant_id, ln.id):
                ws3.append([
                    int(ln.line_no), ln.category, p.paid_at, float(p.amount_usd),
                    float(p.fx_at_payment), float(p.amount_local), p.method, p.reference or "",
                ])
                money(ws3[f"D{out_row}"])
                money(ws3[f"F{out_row}"])
                out_row += 1

        ws3.freeze_panes = "A2"
        set_widths(ws3, {"A": 6, "B": 30, "C": 12, "D": 16, "E": 14, "F": 16, "G": 18, "H": 24})
        if ws3.max_row >= 2:
            add_table(ws3, "PaymentsDetail", 1, 1, ws3.max_row, 8)

        wb.save(str(path))
        log.info("fda_exported tenant=%s fda_id=%s lines=%s path=%s", tenant_id, header.id, len(lines), path)
