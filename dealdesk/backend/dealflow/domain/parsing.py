# dealflow/domain/parsing.py
"""
Raw GHL payload -> typed Buyer / Property / Deal, done once at the edge.

GHL custom fields show up in several shapes depending on the endpoint:
  [{"id": ..., "value": ...}], [{"key": ..., "field_value": ...}],
  [{"fieldKey": "contact.no_of_bedrooms", "fieldValue": ...}] or a plain dict.
They are flattened to {key: value} with "contact." / "opportunity." prefixes
stripped before lookup.
"""
from __future__ import annotations

import re
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Iterable, Mapping, TypeVar

from .geo import normalize_zip
from .stages import Stage, parse_stage
from .types import Buyer, BuyerRef, Coordinates, Deal, Property, PropertyRef

T = TypeVar("T")

DEFAULT_FIELD_KEYS: dict[str, str] = {
    "preferred_zip_codes": "preferred_zip_codes",
    "preferred_location": "preferred_location",
    "down_payment": "downpayment",
    "desired_beds": "no_of_bedrooms",
    "desired_baths": "no_of_bath",
    "price_min": "price_min",
    "price_max": "price_max",
    "property_record_id": "property_record_id",
    "property_code": "property_code",
    "address": "property_address",
    "city": "city",
    "state": "state",
    "zip_code": "property_zip",
    "price": "price",
    "beds": "beds",
    "baths": "baths",
    "sqft": "sqft",
    "hero_image": "hero_image",
    "lat": "lat",
    "lng": "lng",
    "deal_stage": "match_stage",
    "relation_id": "ghl_relation_id",
    "match_score": "match_score",
    "last_activity_at": "last_activity_at",
}

_PREFIXES = ("contact.", "opportunity.", "custom_object.")
_MONEY_JUNK = re.compile(r"[$,\s]")


class ParseError(ValueError):
    """Record can't be turned into a domain object. `reason` is a short tally key."""

    def __init__(self, reason: str, detail: str = ""):
        super().__init__(detail or reason)
        self.reason = reason


def to_int(x: Any) -> int | None:
    if x is None or x == "":
        return None
    try:
        return int(float(x))
    except Exception:
        return None


def to_float(x: Any) -> float | None:
    if x is None or x == "":
        return None
    try:
        return float(x)
    except Exception:
        return None


def to_money(x: Any) -> float | None:
    """'$250,000' -> 250000.0"""
    if isinstance(x, str):
        x = _MONEY_JUNK.sub("", x)
    return to_float(x)


def to_datetime(x: Any) -> datetime | None:
    """ISO-8601 (with or without 'Z') or epoch millis. Always tz-aware UTC."""
    if x is None or x == "":
        return None
    if isinstance(x, datetime):
        return x if x.tzinfo else x.replace(tzinfo=timezone.utc)
    if isinstance(x, (int, float)):
        return datetime.fromtimestamp(x / 1000.0, tz=timezone.utc)
    s = str(x).strip()
    if s.endswith("Z"):
        s = s[:-1] + "+00:00"
    try:
        dt = datetime.fromisoformat(s)
    except ValueError:
        return None
    return dt if dt.tzinfo else dt.replace(tzinfo=timezone.utc)


def get_first(payload: dict[str, Any], *keys: str) -> Any:
    """Return first non-empty key from payload."""
    for k in keys:
        v = payload.get(k)
        if v is None:
            continue
        if isinstance(v, str) and not v.strip():
            continue
        return v
    return None


def _strip_prefix(key: str) -> str:
    for p in _PREFIXES:
        if key.startswith(p):
            return key[len(p):]
    return key


def custom_fields(raw: Any) -> dict[str, Any]:
    if not raw:
        return {}
    if isinstance(raw, Mapping):
        return {_strip_prefix(str(k)): v for k, v in raw.items()}

    out: dict[str, Any] = {}
    for item in raw:
        if not isinstance(item, Mapping):
            continue
        key = get_first(dict(item), "fieldKey", "key", "id")
        if key is None:
            continue
        out[_strip_prefix(str(key))] = get_first(dict(item), "fieldValue", "field_value", "value")
    return out


def _zip_set(raw: Any) -> frozenset[str]:
    if raw is None:
        return frozenset()
    if isinstance(raw, str):
        parts: Iterable[Any] = re.split(r"[,;\s]+", raw)
    elif isinstance(raw, (list, tuple, set, frozenset)):
        parts = raw
    else:
        parts = [raw]
    return frozenset(z for z in (normalize_zip(p) for p in parts) if z)


def _coords(lat: Any, lng: Any) -> Coordinates | None:
    la, ln = to_float(lat), to_float(lng)
    if la is None or ln is None:
        return None
    if not (-90.0 <= la <= 90.0 and -180.0 <= ln <= 180.0):
        return None
    return Coordinates(lat=la, lng=ln)


def field_key(name: str, overrides: Mapping[str, str] | None = None) -> str:
    """GHL custom-field key for a logical field name."""
    return {**DEFAULT_FIELD_KEYS, **(overrides or {})}.get(name, name)


class _Fields:
    """Custom-field lookup by logical name, through the configured key map."""

    def __init__(self, raw: Any, keys: Mapping[str, str] | None):
        self.values = custom_fields(raw)
        self.keys = {**DEFAULT_FIELD_KEYS, **(keys or {})}

    def get(self, name: str) -> Any:
        v = self.values.get(self.keys.get(name, name))
        if isinstance(v, str) and not v.strip():
            return None
        return v


def _contact(opp: dict[str, Any]) -> dict[str, Any]:
    c = opp.get("contact")
    return c if isinstance(c, dict) else {}


def parse_buyer(opp: dict[str, Any], field_keys: Mapping[str, str] | None = None) -> Buyer:
    """Buyer opportunity (with embedded contact) -> Buyer."""
    contact = _contact(opp)
    contact_id = get_first(opp, "contactId") or contact.get("id")
    if not contact_id:
        raise ParseError("missing_contact_id")

    # buyer criteria live on the contact; opportunity-level fields override
    f = _Fields(contact.get("customFields") or contact.get("customField"), field_keys)
    f.values.update(custom_fields(opp.get("customFields")))

    return Buyer(
        contact_id=str(contact_id),
        first_name=str(get_first(contact, "firstName", "first_name") or ""),
        last_name=str(get_first(contact, "lastName", "last_name") or ""),
        email=str(contact.get("email") or ""),
        record_id=str(opp["id"]) if opp.get("id") else None,
        desired_beds=to_int(f.get("desired_beds")),
        desired_baths=to_float(f.get("desired_baths")),
        down_payment=to_money(f.get("down_payment")),
        price_min=to_money(f.get("price_min")),
        price_max=to_money(f.get("price_max")),
        preferred_zip_codes=_zip_set(f.get("preferred_zip_codes")),
        preferred_location=f.get("preferred_location"),
        location=_coords(f.get("lat"), f.get("lng")),
    )


def parse_property(opp: dict[str, Any], field_keys: Mapping[str, str] | None = None) -> Property:
    """Property opportunity -> Property. Address falls back to the opportunity name."""
    f = _Fields(opp.get("customFields"), field_keys)
    record_id = f.get("property_record_id") or opp.get("id")
    if not record_id:
        raise ParseError("missing_record_id")

    address = f.get("address") or opp.get("name")
    if not address or not str(address).strip():
        raise ParseError("missing_address")

    return Property(
        record_id=str(record_id),
        address=str(address).strip(),
        property_code=str(f.get("property_code") or ""),
        opportunity_id=str(opp["id"]) if opp.get("id") else None,
        city=str(f.get("city") or ""),
        state=f.get("state"),
        zip_code=normalize_zip(f.get("zip_code")),
        price=to_money(f.get("price") or opp.get("monetaryValue")),
        beds=to_int(f.get("beds")),
        baths=to_float(f.get("baths")),
        sqft=to_int(f.get("sqft")),
        hero_image=f.get("hero_image"),
        location=_coords(f.get("lat"), f.get("lng")),
    )


def parse_deal(opp: dict[str, Any], field_keys: Mapping[str, str] | None = None) -> Deal:
    """Deal (buyer-property match) opportunity -> Deal."""
    contact = _contact(opp)
    f = _Fields(opp.get("customFields"), field_keys)

    contact_id = get_first(opp, "contactId") or contact.get("id")
    if not contact_id:
        raise ParseError("missing_contact_id")
    record_id = f.get("property_record_id")
    if not record_id:
        raise ParseError("missing_record_id")

    try:
        stage: Stage = parse_stage(f.get("deal_stage"))
    except ValueError as e:
        raise ParseError("invalid_stage", str(e)) from e

    name = f"{get_first(contact, 'firstName') or ''} {get_first(contact, 'lastName') or ''}".strip()
    created_at = to_datetime(get_first(opp, "createdAt", "dateAdded"))

    return Deal(
        id=str(opp.get("id") or f"{contact_id}:{record_id}"),
        buyer=BuyerRef(
            contact_id=str(contact_id),
            name=name or str(contact.get("name") or ""),
            email=str(contact.get("email") or ""),
        ),
        property=PropertyRef(
            record_id=str(record_id),
            address=str(f.get("address") or opp.get("name") or ""),
            price=to_money(f.get("price") or opp.get("monetaryValue")),
            opportunity_id=str(opp["id"]) if opp.get("id") else None,
        ),
        stage=stage,
        relation_id=str(f.get("relation_id")) if f.get("relation_id") else None,
        score=max(0, min(100, to_int(f.get("match_score")) or 0)),
        created_at=created_at,
        last_activity_at=to_datetime(f.get("last_activity_at") or get_first(opp, "lastStageChangeAt", "updatedAt")),
    )


@dataclass
class ParseReport:
    parsed: int = 0
    drop_reasons: Counter[str] = field(default_factory=Counter)

    @property
    def dropped(self) -> int:
        return sum(self.drop_reasons.values())


def parse_many(
    raws: Iterable[dict[str, Any]],
    parser: Callable[[dict[str, Any], Mapping[str, str] | None], T],
    field_keys: Mapping[str, str] | None = None,
) -> tuple[list[T], ParseReport]:
    """Parse what we can; every dropped record is tallied by reason."""
    out: list[T] = []
    report = ParseReport()
    for raw in raws:
        if not isinstance(raw, dict):
            report.drop_reasons["not_an_object"] += 1
            continue
        try:
            out.append(parser(raw, field_keys))
        except ParseError as e:
            report.drop_reasons[e.reason] += 1
            continue
        report.parsed += 1
    return out, report
