from __future__ import annotations

import json
import shutil
import sqlite3
from datetime import datetime
from decimal import Decimal
from pathlib import Path
from typing import Iterable, Mapping, Optional

from disbursements.domain.errors import InvalidStateError, NotFoundError
from disbursements.domain.models import (
    CostCategory,
    CostRecord,
    CustomLine,
    ExchangeRate,
    FdaHeader,
    FdaStatus,
    LedgerLine,
    LineOrigin,
    LineStatus,
    Payment,
    Pda,
    PdaStatus,
    RateSource,
    ShipParticulars,
    Side,
)
from disbursements.domain.money import to_local

_COST_COLUMNS = tuple(f"cost_{c.value}" for c in CostCategory)

_PDA_COLUMNS = (
    "id", "tenant_id", "pda_number", "status",
    "vessel_name", "imo", "dwt", "loa", "port", "terminal", "berths", "cargo", "arrival_date",
    "client_name", "client_id",
    "exchange_rate", "exchange_rate_source", "exchange_rate_timestamp",
) + _COST_COLUMNS + ("custom_lines", "comments", "remarks", "created_at", "updated_at")

_FDA_COLUMNS = (
    "id", "tenant_id", "pda_id", "status", "client_name", "client_id",
    "vessel_name", "imo", "port", "terminal", "currency_base", "currency_local",
    "exchange_rate", "exchange_rate_source", "exchange_rate_timestamp",
    "client_share_pct", "received_from_client_usd", "eta", "etb", "ets",
    "remarks", "meta", "created_at", "updated_at",
)

# Header columns callers may change through update_fda_header_if_unchanged.
_FDA_EDITABLE = frozenset({
    "client_name", "client_id", "vessel_name", "imo", "port", "terminal",
    "client_share_pct", "received_from_client_usd", "eta", "etb", "ets", "remarks", "meta",
})

_LINE_COLUMNS = (
    "id", "fda_id", "line_no", "side", "category", "description", "counterparty",
    "amount_usd", "amount_local", "custom_fx_rate", "invoice_no", "due_date",
    "status", "settled_at", "pda_field", "origin", "comment",
)

_PAYMENT_COLUMNS = (
    "id", "ledger_id", "paid_at", "amount_usd", "fx_at_payment", "amount_local", "method", "reference",
)


def _dec(value) -> Optional[Decimal]:
    return Decimal(str(value)) if value is not None else None


def _txt(value) -> Optional[str]:
    return str(value) if value is not None else None


class SqliteRepository:
    def __init__(self, db_path: Path | str):
        self.db_path = str(db_path)

    def _conn(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.db_path)
        conn.execute("PRAGMA foreign_keys = ON;")
        return conn

    def init_db(self) -> None:
        self.run_migrations()

    def run_migrations(self) -> None:
        conn = self._conn()
        backup_path = self._create_pre_migration_backup()
        try:
            cur = conn.cursor()
            cur.execute("BEGIN")
            cur.execute("CREATE TABLE IF NOT EXISTS schema_migrations (version INTEGER PRIMARY KEY, applied_at TEXT NOT NULL)")
            cur.execute("SELECT COALESCE(MAX(version), 0) FROM schema_migrations")
            current_version = int(cur.fetchone()[0])

            migrations = [
                (1, self._migration_v1_base),
                (2, self._migration_v2_indexes),
            ]

            for version, migration in migrations:
                if version <= current_version:
                    continue
                migration(cur)
                cur.execute(
                    "INSERT INTO schema_migrations (version, applied_at) VALUES (?, datetime('now'))",
                    (version,),
                )
            conn.commit()
        except Exception as exc:
            conn.rollback()
            self._restore_pre_migration_backup(backup_path)
            raise RuntimeError(
                "Database migration failed. Original database restored from automatic backup."
            ) from exc
        finally:
            conn.close()

    def _create_pre_migration_backup(self) -> Path | None:
        db_file = Path(self.db_path)
        if not db_file.exists() or db_file.stat().st_size == 0:
            return None
        backup_file = db_file.with_name(f"{db_file.stem}.pre_migration_{datetime.now().strftime('%Y%m%d%H%M%S')}.bak")
        shutil.copy2(db_file, backup_file)
        return backup_file

    def _restore_pre_migration_backup(self, backup_path: Path | None) -> None:
        if backup_path is None or not backup_path.exists():
            return
        shutil.copy2(backup_path, self.db_path)

    def _migration_v1_base(self, cur: sqlite3.Cursor) -> None:
        cost_defs = ",\n".join(f"            {col} TEXT NOT NULL DEFAULT '0'" for col in _COST_COLUMNS)
        cur.execute(
            f"""
        CREATE TABLE IF NOT EXISTS pdas (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            tenant_id TEXT NOT NULL,
            pda_number TEXT NOT NULL,
            status TEXT NOT NULL CHECK(status IN ('CREATED','IN_PROGRESS','SENT','APPROVED')),
            vessel_name TEXT NOT NULL,
            imo TEXT,
            dwt TEXT NOT NULL,
            loa TEXT NOT NULL,
            port TEXT NOT NULL,
            terminal TEXT,
            berths TEXT NOT NULL DEFAULT '',
            cargo TEXT,
            arrival_date TEXT,
            client_name TEXT,
            client_id TEXT,
            exchange_rate TEXT NOT NULL,
            exchange_rate_source TEXT NOT NULL CHECK(exchange_rate_source IN ('MANUAL','EXTERNAL_FEED')),
            exchange_rate_timestamp TEXT,
{cost_defs},
            custom_lines TEXT NOT NULL DEFAULT '[]',
            comments TEXT NOT NULL DEFAULT '{{}}',
            remarks TEXT,
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL,
            UNIQUE(tenant_id, pda_number)
        )
        """
        )

        cur.execute(
            """
        CREATE TABLE IF NOT EXISTS fda (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            tenant_id TEXT NOT NULL,
            pda_id INTEGER,
            status TEXT NOT NULL CHECK(status IN ('Draft','Posted','Closed')),
            client_name TEXT,
            client_id TEXT,
            vessel_name TEXT,
            imo TEXT,
            port TEXT,
            terminal TEXT,
            currency_base TEXT NOT NULL DEFAULT 'USD',
            currency_local TEXT NOT NULL DEFAULT 'BRL',
            exchange_rate TEXT NOT NULL,
            exchange_rate_source TEXT NOT NULL CHECK(exchange_rate_source IN ('MANUAL','EXTERNAL_FEED')),
            exchange_rate_timestamp TEXT,
            client_share_pct TEXT NOT NULL DEFAULT '100',
            received_from_client_usd TEXT NOT NULL DEFAULT '0',
            eta TEXT,
            etb TEXT,
            ets TEXT,
            remarks TEXT,
            meta TEXT NOT NULL DEFAULT '{}',
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL,
            UNIQUE(tenant_id, pda_id),
            FOREIGN KEY(pda_id) REFERENCES pdas(id)
        )
        """
        )

        cur.execute(
            """
        CREATE TABLE IF NOT EXISTS fda_ledger (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            tenant_id TEXT NOT NULL,
            fda_id INTEGER NOT NULL,
            line_no INTEGER NOT NULL CHECK(line_no > 0),
            side TEXT NOT NULL CHECK(side IN ('AP','AR')),
            category TEXT NOT NULL,
            description TEXT NOT NULL,
            counterparty TEXT NOT NULL,
            amount_usd TEXT NOT NULL,
            amount_local TEXT NOT NULL,
            custom_fx_rate TEXT,
            invoice_no TEXT,
            due_date TEXT,
            status TEXT NOT NULL CHECK(status IN ('Open','Partially Settled','Settled')),
            settled_at TEXT,
            pda_field TEXT,
            origin TEXT NOT NULL CHECK(origin IN ('PDA','MANUAL')),
            comment TEXT,
            FOREIGN KEY(fda_id) REFERENCES fda(id) ON DELETE CASCADE
        )
        """
        )

        cur.execute(
            """
        CREATE TABLE IF NOT EXISTS fda_ledger_payments (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            tenant_id TEXT NOT NULL,
            ledger_id INTEGER NOT NULL,
            paid_at TEXT NOT NULL,
            amount_usd TEXT NOT NULL,
            fx_at_payment TEXT NOT NULL,
            amount_local TEXT NOT NULL,
            method TEXT NOT NULL,
            reference TEXT,
            FOREIGN KEY(ledger_id) REFERENCES fda_ledger(id) ON DELETE CASCADE
        )
        """
        )

        cur.execute(
            """
        CREATE TABLE IF NOT EXISTS fx_rates (
            date TEXT PRIMARY KEY,
            usd_brl TEXT NOT NULL,
            source TEXT NOT NULL DEFAULT 'EXTERNAL_FEED',
            fetched_at TEXT NOT NULL DEFAULT (datetime('now'))
        )
        """
        )

    def _migration_v2_indexes(self, cur: sqlite3.Cursor) -> None:
        cur.execute("CREATE INDEX IF NOT EXISTS idx_pdas_tenant_status ON pdas(tenant_id, status)")
        cur.execute("CREATE INDEX IF NOT EXISTS idx_fda_tenant_status ON fda(tenant_id, status)")
        cur.execute("CREATE INDEX IF NOT EXISTS idx_fda_ledger_fda ON fda_ledger(fda_id, line_no)")
        cur.execute("CREATE INDEX IF NOT EXISTS idx_fda_ledger_due ON fda_ledger(tenant_id, due_date)")
        cur.execute("CREATE INDEX IF NOT EXISTS idx_payments_ledger ON fda_ledger_payments(ledger_id)")

    def integrity_check(self) -> str:
        conn = self._conn()
        cur = conn.cursor()
        cur.execute("PRAGMA integrity_check")
        row = cur.fetchone()
        conn.close()
        return str(row[0]) if row else "unknown"

    # ---------- PDAs ----------
    @staticmethod
    def _pda_values(
        ship: ShipParticulars,
        client_name: Optional[str],
        client_id: Optional[str],
        rate: ExchangeRate,
        cost: CostRecord,
        comments: Mapping[str, str],
        remarks: Optional[str],
    ) -> dict:
        values = {
            "vessel_name": ship.vessel_name.strip(),
            "imo": ship.imo,
            "dwt": str(ship.dwt),
            "loa": str(ship.loa),
            "port": ship.port.strip(),
            "terminal": ship.terminal,
            "berths": ",".join(ship.berths),
            "cargo": ship.cargo,
            "arrival_date": ship.arrival_date,
            "client_name": client_name,
            "client_id": client_id,
            "exchange_rate": str(rate.rate),
            "exchange_rate_source": rate.source.value,
            "exchange_rate_timestamp": rate.timestamp,
            "custom_lines": json.dumps(
                [{"label": c.label, "amount_usd": str(c.amount_usd), "comment": c.comment} for c in cost.custom_lines]
            ),
            "comments": json.dumps(dict(comments)),
            "remarks": remarks,
        }
        for category, col in zip(CostCategory, _COST_COLUMNS):
            values[col] = str(cost.amount(category))
        return values

    @staticmethod
    def _row_to_pda(row: tuple) -> Pda:
        r = dict(zip(_PDA_COLUMNS, row))
        amounts = {category: Decimal(r[col]) for category, col in zip(CostCategory, _COST_COLUMNS)}
        custom = tuple(
            CustomLine(c["label"], Decimal(c["amount_usd"]), c.get("comment", ""))
            for c in json.loads(r["custom_lines"] or "[]")
        )
        return Pda(
            id=int(r["id"]),
            tenant_id=str(r["tenant_id"]),
            pda_number=str(r["pda_number"]),
            status=PdaStatus(r["status"]),
            ship=ShipParticulars(
                vessel_name=str(r["vessel_name"]),
                dwt=Decimal(r["dwt"]),
                loa=Decimal(r["loa"]),
                port=str(r["port"]),
                imo=r["imo"],
                terminal=r["terminal"],
                berths=tuple(b for b in str(r["berths"] or "").split(",") if b),
                cargo=r["cargo"],
                arrival_date=r["arrival_date"],
            ),
            client_name=r["client_name"],
            client_id=r["client_id"],
            exchange_rate=ExchangeRate(
                Decimal(r["exchange_rate"]), RateSource(r["exchange_rate_source"]), r["exchange_rate_timestamp"]
            ),
            cost=CostRecord(amounts, custom),
            comments=json.loads(r["comments"] or "{}"),
            remarks=r["remarks"],
            created_at=str(r["created_at"]),
            updated_at=str(r["updated_at"]),
        )

    def create_pda(
        self,
        tenant_id: str,
        ship: ShipParticulars,
        client_name: Optional[str],
        client_id: Optional[str],
        rate: ExchangeRate,
        cost: CostRecord,
        comments: Mapping[str, str],
        remarks: Optional[str],
        now_iso: str,
    ) -> int:
        conn = self._conn()
        cur = conn.cursor()
        try:
            prefix = f"PDA-{now_iso[:4]}-"
            cur.execute(
                """
                SELECT COALESCE(MAX(CAST(substr(pda_number, ?) AS INTEGER)), 0)
                FROM pdas
                WHERE tenant_id = ? AND pda_number LIKE ?
                """,
                (len(prefix) + 1, tenant_id, prefix + "%"),
            )
            seq = int(cur.fetchone()[0]) + 1

            values = self._pda_values(ship, client_name, client_id, rate, cost, comments, remarks)
            values.update(
                tenant_id=tenant_id,
                pda_number=f"{prefix}{seq:04d}",
                status=PdaStatus.CREATED.value,
                created_at=now_iso,
                updated_at=now_iso,
            )
            cols = list(values)
            cur.execute(
                f"INSERT INTO pdas ({', '.join(cols)}) VALUES ({', '.join('?' for _ in cols)})",
                [values[c] for c in cols],
            )
            pda_id = int(cur.lastrowid)
            conn.commit()
            return pda_id
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def get_pda(self, tenant_id: str, pda_id: int) -> Optional[Pda]:
        conn = self._conn()
        cur = conn.cursor()
        cur.execute(
            f"SELECT {', '.join(_PDA_COLUMNS)} FROM pdas WHERE tenant_id=? AND id=?",
            (tenant_id, int(pda_id)),
        )
        r = cur.fetchone()
        conn.close()
        return self._row_to_pda(r) if r else None

    def list_pdas(self, tenant_id: str, status: Optional[PdaStatus] = None) -> list[Pda]:
        conn = self._conn()
        cur = conn.cursor()
        sql = f"SELECT {', '.join(_PDA_COLUMNS)} FROM pdas WHERE tenant_id=?"
        params: list = [tenant_id]
        if status is not None:
            sql += " AND status=?"
            params.append(status.value)
        cur.execute(sql + " ORDER BY created_at DESC, id DESC", params)
        rows = cur.fetchall()
        conn.close()
        return [self._row_to_pda(r) for r in rows]

    def update_pda(
        self,
        tenant_id: str,
        pda_id: int,
        ship: ShipParticulars,
        client_name: Optional[str],
        client_id: Optional[str],
        rate: ExchangeRate,
        cost: CostRecord,
        comments: Mapping[str, str],
        remarks: Optional[str],
        now_iso: str,
    ) -> bool:
        values = self._pda_values(ship, client_name, client_id, rate, cost, comments, remarks)
        values["updated_at"] = now_iso
        cols = list(values)
        conn = self._conn()
        cur = conn.cursor()
        cur.execute(
            f"UPDATE pdas SET {', '.join(f'{c}=?' for c in cols)} WHERE tenant_id=? AND id=?",
            [values[c] for c in cols] + [tenant_id, int(pda_id)],
        )
        changed = cur.rowcount > 0
        conn.commit()
        conn.close()
        return bool(changed)

    def set_pda_status(self, tenant_id: str, pda_id: int, status: PdaStatus, now_iso: str) -> bool:
        conn = self._conn()
        cur = conn.cursor()
        cur.execute(
            "UPDATE pdas SET status=?, updated_at=? WHERE tenant_id=? AND id=?",
            (status.value, now_iso, tenant_id, int(pda_id)),
        )
        changed = cur.rowcount > 0
        conn.commit()
        conn.close()
        return bool(changed)

    # ---------- FDA headers ----------
    @staticmethod
    def _row_to_fda(row: tuple) -> FdaHeader:
        r = dict(zip(_FDA_COLUMNS, row))
        return FdaHeader(
            id=int(r["id"]),
            tenant_id=str(r["tenant_id"]),
            pda_id=(int(r["pda_id"]) if r["pda_id"] is not None else None),
            status=FdaStatus(r["status"]),
            client_name=r["client_name"],
            client_id=r["client_id"],
            vessel_name=r["vessel_name"],
            imo=r["imo"],
            port=r["port"],
            terminal=r["terminal"],
            currency_base=str(r["currency_base"]),
            currency_local=str(r["currency_local"]),
            exchange_rate=ExchangeRate(
                Decimal(r["exchange_rate"]), RateSource(r["exchange_rate_source"]), r["exchange_rate_timestamp"]
            ),
            client_share_pct=Decimal(r["client_share_pct"]),
            received_from_client_usd=Decimal(r["received_from_client_usd"]),
            eta=r["eta"],
            etb=r["etb"],
            ets=r["ets"],
            remarks=r["remarks"],
            meta=json.loads(r["meta"] or "{}"),
            created_at=str(r["created_at"]),
            updated_at=str(r["updated_at"]),
        )

    @staticmethod
    def _header_values(header: Mapping[str, object]) -> dict:
        values: dict = {}
        for key, value in header.items():
            if isinstance(value, ExchangeRate):
                values["exchange_rate"] = str(value.rate)
                values["exchange_rate_source"] = value.source.value
                values["exchange_rate_timestamp"] = value.timestamp
            elif key == "meta":
                values["meta"] = json.dumps(dict(value or {}), default=str)
            elif isinstance(value, Decimal):
                values[key] = str(value)
            else:
                values[key] = value
        return values

    def get_fda(self, tenant_id: str, fda_id: int) -> Optional[FdaHeader]:
        conn = self._conn()
        cur = conn.cursor()
        cur.execute(
            f"SELECT {', '.join(_FDA_COLUMNS)} FROM fda WHERE tenant_id=? AND id=?",
            (tenant_id, int(fda_id)),
        )
        r = cur.fetchone()
        conn.close()
        return self._row_to_fda(r) if r else None

    def get_fda_by_pda(self, tenant_id: str, pda_id: int) -> Optional[FdaHeader]:
        conn = self._conn()
        cur = conn.cursor()
        cur.execute(
            f"SELECT {', '.join(_FDA_COLUMNS)} FROM fda WHERE tenant_id=? AND pda_id=?",
            (tenant_id, int(pda_id)),
        )
        r = cur.fetchone()
        conn.close()
        return self._row_to_fda(r) if r else None

    def list_fdas(self, tenant_id: str) -> list[FdaHeader]:
        conn = self._conn()
        cur = conn.cursor()
        cur.execute(
            f"SELECT {', '.join(_FDA_COLUMNS)} FROM fda WHERE tenant_id=? ORDER BY created_at DESC, id DESC",
            (tenant_id,),
        )
        rows = cur.fetchall()
        conn.close()
        return [self._row_to_fda(r) for r in rows]

    def create_fda_with_ledger(
        self,
        tenant_id: str,
        pda_id: Optional[int],
        header: Mapping[str, object],
        lines: Iterable[LedgerLine],
        now_iso: str,
    ) -> int:
        values = self._header_values(header)
        values.update(
            tenant_id=tenant_id,
            pda_id=pda_id,
            status=FdaStatus.DRAFT.value,
            created_at=now_iso,
            updated_at=now_iso,
        )
        cols = list(values)
        conn = self._conn()
        cur = conn.cursor()
        try:
            cur.execute(
                f"INSERT INTO fda ({', '.join(cols)}) VALUES ({', '.join('?' for _ in cols)})",
                [values[c] for c in cols],
            )
            fda_id = int(cur.lastrowid)
            for line in lines:
                self._insert_ledger_line(cur, tenant_id, fda_id, line)
            conn.commit()
            return fda_id
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def update_fda_header_if_unchanged(
        self,
        tenant_id: str,
        fda_id: int,
        expected_updated_at: str,
        changes: Mapping[str, object],
        now_iso: str,
    ) -> bool:
        """Compare-and-set header update.

        Returns False when the row's updated_at no longer matches. A new
        exchange_rate in `changes` also reprices every line without a custom
        rate, in the same transaction.
        """
        unknown = set(changes) - _FDA_EDITABLE - {"exchange_rate"}
        if unknown:
            raise ValueError(f"Unknown FDA header fields: {sorted(unknown)}")

        values = self._header_values(changes)
        values["updated_at"] = now_iso
        cols = list(values)
        conn = self._conn()
        cur = conn.cursor()
        try:
            cur.execute(
                f"UPDATE fda SET {', '.join(f'{c}=?' for c in cols)} WHERE tenant_id=? AND id=? AND updated_at=?",
                [values[c] for c in cols] + [tenant_id, int(fda_id), expected_updated_at],
            )
            if cur.rowcount == 0:
                conn.rollback()
                return False

            rate = changes.get("exchange_rate")
            if isinstance(rate, ExchangeRate):
                cur.execute(
                    "SELECT id, amount_usd FROM fda_ledger WHERE tenant_id=? AND fda_id=? AND custom_fx_rate IS NULL",
                    (tenant_id, int(fda_id)),
                )
                for line_id, amount_usd in cur.fetchall():
                    cur.execute(
                        "UPDATE fda_ledger SET amount_local=? WHERE id=?",
                        (str(to_local(Decimal(amount_usd), rate.rate)), int(line_id)),
                    )
            conn.commit()
            return True
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def set_fda_status(self, tenant_id: str, fda_id: int, status: FdaStatus, now_iso: str) -> bool:
        conn = self._conn()
        cur = conn.cursor()
        cur.execute(
            "UPDATE fda SET status=?, updated_at=? WHERE tenant_id=? AND id=?",
            (status.value, now_iso, tenant_id, int(fda_id)),
        )
        changed = cur.rowcount > 0
        conn.commit()
        conn.close()
        return bool(changed)

    # ---------- Ledger ----------
    @staticmethod
    def _row_to_line(row: tuple) -> LedgerLine:
        r = dict(zip(_LINE_COLUMNS, row))
        return LedgerLine(
            id=int(r["id"]),
            fda_id=int(r["fda_id"]),
            line_no=int(r["line_no"]),
            side=Side(r["side"]),
            category=str(r["category"]),
            description=str(r["description"]),
            counterparty=str(r["counterparty"]),
            amount_usd=Decimal(r["amount_usd"]),
            amount_local=Decimal(r["amount_local"]),
            custom_fx_rate=_dec(r["custom_fx_rate"]),
            invoice_no=r["invoice_no"],
            due_date=r["due_date"],
            status=LineStatus(r["status"]),
            settled_at=r["settled_at"],
            pda_field=(CostCategory(r["pda_field"]) if r["pda_field"] else None),
            origin=LineOrigin(r["origin"]),
            comment=r["comment"],
        )

    @staticmethod
    def _line_values(line: LedgerLine) -> list:
        return [
            int(line.line_no),
            line.side.value,
            line.category,
            line.description,
            line.counterparty,
            str(line.amount_usd),
            str(line.amount_local),
            _txt(line.custom_fx_rate),
            line.invoice_no,
            line.due_date,
            line.status.value,
            line.settled_at,
            (line.pda_field.value if line.pda_field else None),
            line.origin.value,
            line.comment,
        ]

    def _insert_ledger_line(self, cur: sqlite3.Cursor, tenant_id: str, fda_id: int, line: LedgerLine) -> int:
        cur.execute(
            f"""
            INSERT INTO fda_ledger (tenant_id, fda_id, {', '.join(_LINE_COLUMNS[2:])})
            VALUES (?, ?, {', '.join('?' for _ in _LINE_COLUMNS[2:])})
            """,
            [tenant_id, int(fda_id)] + self._line_values(line),
        )
        return int(cur.lastrowid)

    def list_ledger_lines(self, tenant_id: str, fda_id: int) -> list[LedgerLine]:
        conn = self._conn()
        cur = conn.cursor()
        cur.execute(
            f"SELECT {', '.join(_LINE_COLUMNS)} FROM fda_ledger WHERE tenant_id=? AND fda_id=? ORDER BY line_no, id",
            (tenant_id, int(fda_id)),
        )
        rows = cur.fetchall()
        conn.close()
        return [self._row_to_line(r) for r in rows]

    def get_ledger_line(self, tenant_id: str, line_id: int) -> Optional[LedgerLine]:
        conn = self._conn()
        cur = conn.cursor()
        cur.execute(
            f"SELECT {', '.join(_LINE_COLUMNS)} FROM fda_ledger WHERE tenant_id=? AND id=?",
            (tenant_id, int(line_id)),
        )
        r = cur.fetchone()
        conn.close()
        return self._row_to_line(r) if r else None

    def add_ledger_line(self, tenant_id: str, fda_id: int, line: LedgerLine) -> int:
        conn = self._conn()
        cur = conn.cursor()
        try:
            line_id = self._insert_ledger_line(cur, tenant_id, fda_id, line)
            conn.commit()
            return line_id
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def update_ledger_line(self, tenant_id: str, line: LedgerLine) -> bool:
        conn = self._conn()
        cur = conn.cursor()
        cur.execute(
            f"""
            UPDATE fda_ledger
            SET {', '.join(f'{c}=?' for c in _LINE_COLUMNS[2:])}
            WHERE tenant_id=? AND id=?
            """,
            self._line_values(line) + [tenant_id, int(line.id or 0)],
        )
        changed = cur.rowcount > 0
        conn.commit()
        conn.close()
        return bool(changed)

    def delete_ledger_line(self, tenant_id: str, line_id: int) -> bool:
        conn = self._conn()
        cur = conn.cursor()
        cur.execute("DELETE FROM fda_ledger WHERE tenant_id=? AND id=?", (tenant_id, int(line_id)))
        changed = cur.rowcount > 0
        conn.commit()
        conn.close()
        return bool(changed)

    def replace_ledger_lines(
        self,
        tenant_id: str,
        fda_id: int,
        lines: Iterable[LedgerLine],
        required_status: FdaStatus = FdaStatus.DRAFT,
    ) -> int:
        """Delete every line of the FDA (payments cascade) and insert `lines`.

        The FDA status is read under the write lock; anything other than
        `required_status` aborts before a row is touched.
        """
        conn = self._conn()
        cur = conn.cursor()
        try:
            cur.execute("BEGIN IMMEDIATE")
            cur.execute("SELECT status FROM fda WHERE tenant_id=? AND id=?", (tenant_id, int(fda_id)))
            row = cur.fetchone()
            if row is None:
                raise NotFoundError("FDA not found.")
            if row[0] != required_status.value:
                raise InvalidStateError(
                    f"Ledger can only be rebuilt while the FDA is {required_status.value} (status {row[0]})."
                )
            cur.execute("DELETE FROM fda_ledger WHERE tenant_id=? AND fda_id=?", (tenant_id, int(fda_id)))
            count = 0
            for line in lines:
                self._insert_ledger_line(cur, tenant_id, fda_id, line)
                count += 1
            conn.commit()
            return count
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def lines_due_between(self, tenant_id: str, start_iso: str, end_iso: str) -> list[LedgerLine]:
        conn = self._conn()
        cur = conn.cursor()
        cur.execute(
            f"""
            SELECT {', '.join(_LINE_COLUMNS)}
            FROM fda_ledger
            WHERE tenant_id=? AND due_date IS NOT NULL AND due_date >= ? AND due_date <= ?
            ORDER BY due_date, fda_id, line_no
            """,
            (tenant_id, start_iso, end_iso),
        )
        rows = cur.fetchall()
        conn.close()
        return [self._row_to_line(r) for r in rows]

    def fda_dates_between(self, tenant_id: str, start_iso: str, end_iso: str) -> list[tuple]:
        """(id, vessel_name, port, eta, etb, ets) of FDAs with any milestone date in range."""
        conn = self._conn()
        cur = conn.cursor()
        cur.execute(
            """
            SELECT id, vessel_name, port, eta, etb, ets
            FROM fda
            WHERE tenant_id=?
              AND (substr(eta,1,10) BETWEEN ? AND ?
                   OR substr(etb,1,10) BETWEEN ? AND ?
                   OR substr(ets,1,10) BETWEEN ? AND ?)
            ORDER BY id
            """,
            (tenant_id, start_iso, end_iso, start_iso, end_iso, start_iso, end_iso),
        )
        rows = cur.fetchall()
        conn.close()
        return rows

    # ---------- Payments ----------
    @staticmethod
    def _row_to_payment(row: tuple) -> Payment:
        r = dict(zip(_PAYMENT_COLUMNS, row))
        return Payment(
            id=int(r["id"]),
            ledger_id=int(r["ledger_id"]),
            paid_at=str(r["paid_at"]),
            amount_usd=Decimal(r["amount_usd"]),
            fx_at_payment=Decimal(r["fx_at_payment"]),
            amount_local=Decimal(r["amount_local"]),
            method=str(r["method"]),
            reference=r["reference"],
        )

    def list_payments(self, tenant_id: str, ledger_id: int) -> list[Payment]:
        conn = self._conn()
        cur = conn.cursor()
        cur.execute(
            f"""
            SELECT {', '.join(_PAYMENT_COLUMNS)}
            FROM fda_ledger_payments
            WHERE tenant_id=? AND ledger_id=?
            ORDER BY paid_at, id
            """,
            (tenant_id, int(ledger_id)),
        )
        rows = cur.fetchall()
        conn.close()
        return [self._row_to_payment(r) for r in rows]

    def get_payment(self, tenant_id: str, payment_id: int) -> Optional[Payment]:
        conn = self._conn()
        cur = conn.cursor()
        cur.execute(
            f"SELECT {', '.join(_PAYMENT_COLUMNS)} FROM fda_ledger_payments WHERE tenant_id=? AND id=?",
            (tenant_id, int(payment_id)),
        )
        r = cur.fetchone()
        conn.close()
        return self._row_to_payment(r) if r else None

    def add_payment_with_status(
        self,
        tenant_id: str,
        payment: Payment,
        status: LineStatus,
        settled_at: Optional[str],
    ) -> int:
        conn = self._conn()
        cur = conn.cursor()
        try:
            cur.execute(
                """
                INSERT INTO fda_ledger_payments (
                    tenant_id, ledger_id, paid_at, amount_usd, fx_at_payment, amount_local, method, reference
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    tenant_id,
                    int(payment.ledger_id),
                    payment.paid_at,
                    str(payment.amount_usd),
                    str(payment.fx_at_payment),
                    str(payment.amount_local),
                    payment.method,
                    payment.reference,
                ),
            )
            payment_id = int(cur.lastrowid)
            cur.execute(
                "UPDATE fda_ledger SET status=?, settled_at=? WHERE tenant_id=? AND id=?",
                (status.value, settled_at, tenant_id, int(payment.ledger_id)),
            )
            conn.commit()
            return payment_id
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def delete_payments_with_status(
        self,
        tenant_id: str,
        ledger_id: int,
        payment_ids: Optional[Iterable[int]],
        status: LineStatus,
        settled_at: Optional[str],
    ) -> int:
        """Delete the given payments (all of the line's when None) and set the line status."""
        conn = self._conn()
        cur = conn.cursor()
        try:
            if payment_ids is None:
                cur.execute(
                    "DELETE FROM fda_ledger_payments WHERE tenant_id=? AND ledger_id=?",
                    (tenant_id, int(ledger_id)),
                )
                removed = cur.rowcount
            else:
                removed = 0
                for pid in payment_ids:
                    cur.execute(
                        "DELETE FROM fda_ledger_payments WHERE tenant_id=? AND ledger_id=? AND id=?",
                        (tenant_id, int(ledger_id), int(pid)),
                    )
                    removed += cur.rowcount
            cur.execute(
                "UPDATE fda_ledger SET status=?, settled_at=? WHERE tenant_id=? AND id=?",
                (status.value, settled_at, tenant_id, int(ledger_id)),
            )
            conn.commit()
            return int(removed)
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    # ---------- FX ----------
    def get_fx_rate(self, date_iso: str) -> Optional[Decimal]:
        conn = self._conn()
        cur = conn.cursor()
        cur.execute("SELECT usd_brl FROM fx_rates WHERE date = ?", (date_iso,))
        row = cur.fetchone()
        conn.close()
        return Decimal(row[0]) if row else None

    def set_fx_rate(self, date_iso: str, usd_brl: Decimal, source: RateSource = RateSource.EXTERNAL_FEED) -> None:
        conn = self._conn()
        cur = conn.cursor()
        cur.execute(
            """
            INSERT INTO fx_rates (date, usd_brl, source, fetched_at) VALUES (?, ?, ?, datetime('now'))
            ON CONFLICT(date) DO UPDATE SET usd_brl=excluded.usd_brl, source=excluded.source, fetched_at=excluded.fetched_at
        """,
            (date_iso, str(usd_brl), source.value),
        )
        conn.commit()
        conn.close()

    def get_latest_fx_rate(self) -> Optional[tuple[str, Decimal]]:
        conn = self._conn()
        cur = conn.cursor()
        cur.execute("SELECT date, usd_brl FROM fx_rates ORDER BY date DESC LIMIT 1")
        row = cur.fetchone()
        conn.close()
        return (str(row[0]), Decimal(row[1])) if row else None

    # ---------- Dashboard ----------
    def count_pdas_created_between(self, tenant_id: str, start_iso: str, end_iso: str) -> int:
        conn = self._conn()
        cur = conn.cursor()
        cur.execute(
            "SELECT COUNT(*) FROM pdas WHERE tenant_id=? AND created_at >= ? AND created_at < ?",
            (tenant_id, start_iso, end_iso),
        )
        (count,) = cur.fetchone()
        conn.close()
        return int(count)

    def count_fdas_in_status(self, tenant_id: str, statuses: Iterable[FdaStatus]) -> int:
        values = [FdaStatus(s).value for s in statuses]
        if not values:
            return 0
        conn = self._conn()
        cur = conn.cursor()
        cur.execute(
            f"SELECT COUNT(*) FROM fda WHERE tenant_id=? AND status IN ({', '.join('?' for _ in values)})",
            [tenant_id, *values],
        )
        (count,) = cur.fetchone()
        conn.close()
        return int(count)

    def fee_revenue_between(self, tenant_id: str, categories: Iterable[str], start_iso: str, end_iso: str) -> Decimal:
        """AR amounts in `categories` on FDAs created in [start_iso, end_iso)."""
        labels = list(categories)
        if not labels:
            return Decimal("0")
        conn = self._conn()
        cur = conn.cursor()
        cur.execute(
            f"""
            SELECT l.amount_usd
            FROM fda_ledger l
            JOIN fda f ON f.id = l.fda_id
            WHERE l.tenant_id=? AND f.tenant_id=? AND l.side='AR'
              AND l.category IN ({', '.join('?' for _ in labels)})
              AND f.created_at >= ? AND f.created_at < ?
            """,
            [tenant_id, tenant_id, *labels, start_iso, end_iso],
        )
        rows = cur.fetchall()
        conn.close()
        # Summed as Decimal, not SQL REAL.
        return sum((Decimal(r[0]) for r in rows), Decimal("0"))

    def open_balances_by_side(self, tenant_id: str) -> dict[Side, Decimal]:
        """Outstanding USD (amount minus payments) of lines not yet settled."""
        conn = self._conn()
        cur = conn.cursor()
        cur.execute(
            "SELECT side, amount_usd FROM fda_ledger WHERE tenant_id=? AND status != ?",
            (tenant_id, LineStatus.SETTLED.value),
        )
        lines = cur.fetchall()
        cur.execute(
            """
            SELECT l.side, p.amount_usd
            FROM fda_ledger_payments p
            JOIN fda_ledger l ON l.id = p.ledger_id
            WHERE l.tenant_id=? AND l.status != ?
            """,
            (tenant_id, LineStatus.SETTLED.value),
        )
        paid = cur.fetchall()
        conn.close()

        balances = {Side.AP: Decimal("0"), Side.AR: Decimal("0")}
        for side, amount in lines:
            balances[Side(side)] += Decimal(amount)
        for side, amount in paid:
            balances[Side(side)] -= Decimal(amount)
        return balances
