import json
import logging
from pathlib import Path

import pytest

from disbursements.logging_config import DOMAIN_LOG_FILES, JsonFormatter, attach_domain_logs, split_event


@pytest.fixture
def domain_logs(tmp_path: Path):
    yield tmp_path
    seen = set()
    for name in DOMAIN_LOG_FILES:
        logger = logging.getLogger(name)
        for h in list(logger.handlers):
            if str(tmp_path) in getattr(h, "baseFilename", ""):
                logger.removeHandler(h)
                if id(h) not in seen:
                    seen.add(id(h))
                    h.close()


def test_split_event_reads_key_value_messages():
    assert split_event("fda_created tenant=agency-a fda_id=3 lines=2") == (
        "fda_created",
        {"tenant": "agency-a", "fda_id": "3", "lines": "2"},
    )
    assert split_event("database ready") == (None, {})
    assert split_event("Something Happened x=1") == (None, {})


def test_json_formatter_adds_event_fields():
    record = logging.LogRecord("disbursements.fda", logging.INFO, __file__, 1, "fda_status tenant=%s to=%s", ("agency-a", "Posted"), None)
    payload = json.loads(JsonFormatter().format(record))

    assert payload["event"] == "fda_status"
    assert payload["tenant"] == "agency-a"
    assert payload["fields"]["to"] == "Posted"
    assert payload["message"] == "fda_status tenant=agency-a to=Posted"


def test_domain_loggers_write_their_own_files(domain_logs: Path):
    attach_domain_logs(domain_logs)
    attach_domain_logs(domain_logs)

    pda_logger = logging.getLogger("disbursements.pda")
    assert sum(1 for h in pda_logger.handlers if str(domain_logs) in getattr(h, "baseFilename", "")) == 1

    pda_logger.info("pda_created tenant=%s pda_id=%s", "agency-a", 7)
    logging.getLogger("disbursements.pricing").warning("pricing_mixed_groups berths=%s", "101,106")
    for h in pda_logger.handlers:
        h.flush()

    rows = [json.loads(line) for line in (domain_logs / "pda.log").read_text(encoding="utf-8").splitlines()]
    assert [r["event"] for r in rows] == ["pda_created", "pricing_mixed_groups"]
    assert rows[0]["tenant"] == "agency-a"
    assert not (domain_logs / "fx.log").read_text(encoding="utf-8")
