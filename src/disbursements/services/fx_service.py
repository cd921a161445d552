from __future__ import annotations

import logging
from datetime import date, timedelta
from decimal import Decimal

import requests

from disbursements.config import FxSettings
from disbursements.domain.errors import FxUnavailableError, InvalidRate
from disbursements.domain.models import ExchangeRate, RateSource
from disbursements.domain.money import validate_rate

log = logging.getLogger("disbursements.fx")


class FxService:
    """USD/BRL rates from the Central Bank of Brazil PTAX feed, cached per date."""

    def __init__(self, repo, settings: FxSettings | None = None):
        self.repo = repo
        self.settings = settings or FxSettings()

    def _fetch_json(self, url: str) -> dict:
        r = requests.get(url, timeout=self.settings.timeout_seconds)
        r.raise_for_status()
        return r.json()

    def _day_url(self, d: date) -> str:
        return (
            f"{self.settings.ptax_base_url}/CotacaoDolarDia(dataCotacao='{d.strftime('%m-%d-%Y')}')"
            "?$top=1&$format=json"
        )

    def _period_url(self, d: date) -> str:
        start = d - timedelta(days=self.settings.lookback_days)
        return (
            f"{self.settings.ptax_base_url}/CotacaoDolarPeriodo("
            f"dataInicial='{start.strftime('%m-%d-%Y')}',dataFinalCotacao='{d.strftime('%m-%d-%Y')}')"
            "?$top=1&$orderby=dataHoraCotacao%20desc&$format=json"
        )

    def _extract_rate(self, data: dict) -> tuple[Decimal, str | None]:
        # {"value": [{"cotacaoCompra": 5.1234, "cotacaoVenda": 5.124, "dataHoraCotacao": "..."}]}
        rows = data.get("value") if isinstance(data, dict) else None
        if not rows:
            raise FxUnavailableError("PTAX response has no quotes for the requested date.")
        row = rows[0]
        value = row.get("cotacaoCompra")
        if value is None:
            raise FxUnavailableError(f"PTAX response missing cotacaoCompra. Raw: {row}")
        try:
            rate = validate_rate(str(value))
        except InvalidRate as e:
            raise FxUnavailableError(str(e)) from e
        return rate, row.get("dataHoraCotacao")

    def get_rate_for_date(self, d: date) -> ExchangeRate:
        d_iso = d.isoformat()
        cached = self.repo.get_fx_rate(d_iso)
        if cached is not None:
            return ExchangeRate(rate=cached, source=RateSource.EXTERNAL_FEED, timestamp=d_iso)

        last_err = None
        # Weekends and holidays have no day quote; the period query returns the last business day.
        for url in (self._day_url(d), self._period_url(d)):
            try:
                data = self._fetch_json(url)
                rate, quoted_at = self._extract_rate(data)
                self.repo.set_fx_rate(d_iso, rate)
                log.info("fx_fetched date=%s rate=%s quoted_at=%s", d_iso, rate, quoted_at)
                return ExchangeRate(rate=rate, source=RateSource.EXTERNAL_FEED, timestamp=quoted_at or d_iso)
            except (requests.RequestException, ValueError, FxUnavailableError) as e:
                last_err = e
                log.warning("fx_source_failed url=%s error=%s", url, e)

        latest = self.repo.get_latest_fx_rate()
        if latest is not None:
            latest_date, latest_rate = latest
            # Not cached under d_iso: the date is retried once the feed recovers.
            log.warning("fx_fallback_cached requested=%s date=%s rate=%s", d_iso, latest_date, latest_rate)
            return ExchangeRate(rate=latest_rate, source=RateSource.EXTERNAL_FEED, timestamp=latest_date)

        raise FxUnavailableError(f"FX fetch failed and no cached rate available. Last error: {last_err}")

    def get_today_rate(self) -> ExchangeRate:
        return self.get_rate_for_date(date.today())

    def manual_rate(self, value: object) -> ExchangeRate:
        return ExchangeRate(rate=validate_rate(value), source=RateSource.MANUAL, timestamp=None)
