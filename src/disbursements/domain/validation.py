from __future__ import annotations

import re
from typing import Mapping, Optional

from disbursements.domain.errors import ValidationError
from disbursements.domain.models import ShipParticulars

MAX_COMMENT_LENGTH = 500
MAX_REMARKS_LENGTH = 10_000
MAX_NAME_LENGTH = 200

_IMO_RE = re.compile(r"^\d{7}$")


def validate_ship(ship: ShipParticulars) -> None:
    name = (ship.vessel_name or "").strip()
    if not name:
        raise ValidationError("Vessel name is required.")
    if len(name) > MAX_NAME_LENGTH:
        raise ValidationError(f"Vessel name must be less than {MAX_NAME_LENGTH} characters.")
    if ship.imo and not _IMO_RE.match(ship.imo.strip()):
        raise ValidationError("IMO number must be 7 digits.")
    if ship.dwt <= 0:
        raise ValidationError("DWT must be greater than 0.")
    if ship.loa <= 0:
        raise ValidationError("LOA must be greater than 0.")
    if not (ship.port or "").strip():
        raise ValidationError("Port is required.")


def validate_comments(comments: Optional[Mapping[str, str]]) -> None:
    for key, text in (comments or {}).items():
        if len(text or "") > MAX_COMMENT_LENGTH:
            raise ValidationError(f"Comment for {key} must be less than {MAX_COMMENT_LENGTH} characters.")


def validate_remarks(remarks: Optional[str]) -> None:
    if remarks and len(remarks) > MAX_REMARKS_LENGTH:
        raise ValidationError(f"Remarks must be less than {MAX_REMARKS_LENGTH:,} characters.")
