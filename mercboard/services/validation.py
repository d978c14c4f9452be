"""
Input validators.

Each validator takes raw request data (plus whatever live collections it
needs to resolve references) and returns the sanitized value, or raises
``ValidationError`` naming the offending field. Nothing here touches the
store, so a rejected request never mutates state.
"""
import json
import os
import re
from datetime import datetime
from typing import Any, Iterable, List, Optional

from ..errors import ValidationError


STANDING_LABELS = ["DISTRUSTED", "WARY", "NEUTRAL", "RESPECTED", "TRUSTED"]
VALID_COLOR_SCHEMES = ["grey", "orange", "green", "blue"]
JOB_STATES = ["Pending", "Active", "Complete", "Failed", "Ignored"]
DEFAULT_JOB_STATE = "Pending"
DEPLOYMENT_STATUSES = ["In Reserve", "Deployed", "Expended"]
DEFAULT_DEPLOYMENT_STATUS = "In Reserve"
RESUPPLY_ITEMS_COUNT = 3

DATE_PATTERN = re.compile(r"^\d{2}/\d{2}/\d{4}$")
SAFE_EMBLEM_PATTERN = re.compile(r"^[A-Za-z0-9_-]+\.svg$")
PASSWORD_PATTERN = re.compile(r"^[A-Za-z0-9]*$")
_INT_PATTERN = re.compile(r"^[+-]?\d+$")


# ---------- primitives ----------

def parse_int(value: Any) -> Optional[int]:
    """Integer from int, integral float or numeric string; ``None`` when not parseable."""
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value) if value.is_integer() else None
    if isinstance(value, str) and _INT_PATTERN.match(value.strip()):
        return int(value.strip())
    return None


def parse_number(value: Any) -> Optional[float]:
    if isinstance(value, bool) or value is None:
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    if number != number or number in (float("inf"), float("-inf")):
        return None
    return number


def parse_bool(value: Any) -> bool:
    return value is True or (isinstance(value, str) and value.strip().lower() == "true")


def required_string(value: Any, field: str, max_length: Optional[int] = None) -> str:
    trimmed = value.strip() if isinstance(value, str) else ""
    if not trimmed:
        raise ValidationError(f"{field} cannot be empty")
    if max_length and len(trimmed) > max_length:
        raise ValidationError(f"{field} must be {max_length} characters or less")
    return trimmed


def optional_string(value: Any, field: str) -> str:
    if value is None:
        return ""
    if not isinstance(value, (str, int, float)) or isinstance(value, bool):
        raise ValidationError(f"{field} must be a string")
    return str(value).strip()


def bounded_int(value: Any, field: str, min_value: Optional[int] = None, max_value: Optional[int] = None) -> int:
    parsed = parse_int(value)
    if parsed is None:
        raise ValidationError(f"{field} must be a valid number")
    if min_value is not None and parsed < min_value:
        raise ValidationError(f"{field} must be at least {min_value}")
    if max_value is not None and parsed > max_value:
        raise ValidationError(f"{field} must be at most {max_value}")
    return parsed


def coerce_list(value: Any, field: str) -> list:
    """Accept a list, or a JSON-encoded list as sent by form posts. Absent means empty."""
    if value is None or value == "":
        return []
    if isinstance(value, str):
        try:
            value = json.loads(value)
        except ValueError:
            raise ValidationError(f"Invalid {field} format")
    if not isinstance(value, list):
        raise ValidationError(f"{field} must be an array")
    return value


def job_state(value: Any) -> str:
    # Omitted is fine (defaults); present but unknown is not
    if value is None or value == "":
        return DEFAULT_JOB_STATE
    if value not in JOB_STATES:
        raise ValidationError(f"Invalid job state. Must be one of: {', '.join(JOB_STATES)}")
    return value


def deployment_status(value: Any) -> str:
    if value not in DEPLOYMENT_STATUSES:
        raise ValidationError(f"Invalid deployment status. Must be one of: {', '.join(DEPLOYMENT_STATUSES)}")
    return value


def color_scheme(value: Any) -> str:
    scheme = value or "grey"
    if scheme not in VALID_COLOR_SCHEMES:
        raise ValidationError(f"Invalid color scheme. Must be one of: {', '.join(VALID_COLOR_SCHEMES)}")
    return scheme


def portal_date(value: Any) -> str:
    """``DD/MM/YYYY`` with a real day-of-month check; empty is allowed."""
    if value is None or value == "":
        return ""
    if not isinstance(value, str) or not DATE_PATTERN.match(value.strip()):
        raise ValidationError("Invalid date format. Use DD/MM/YYYY")
    date_str = value.strip()
    day, month, year = (int(x) for x in date_str.split("/"))
    if month < 1 or month > 12 or day < 1:
        raise ValidationError("Invalid date values. Day must be at least 1, month must be 1-12")
    days_in_month = [31, 28, 31, 30, 31, 30, 31, 31, 30, 31, 30, 31]
    if month == 2 and ((year % 4 == 0 and year % 100 != 0) or year % 400 == 0):
        days_in_month[1] = 29
    if day > days_in_month[month - 1]:
        raise ValidationError(f"Invalid day for month {month}. Maximum is {days_in_month[month - 1]} days.")
    return date_str


def password(value: Any, field: str) -> str:
    pw = value.strip() if isinstance(value, str) else ""
    if not PASSWORD_PATTERN.match(pw):
        raise ValidationError(f"{field} must contain only letters and numbers")
    return pw


def is_safe_emblem_filename(filename: Any) -> bool:
    if not isinstance(filename, str):
        return False
    if filename != os.path.basename(filename) or "\\" in filename:
        return False
    return bool(SAFE_EMBLEM_PATTERN.match(filename))


def emblem(value: Any, emblem_dir: str) -> str:
    """Emblem filename: empty, or a safe ``*.svg`` name that exists in the emblem directory."""
    if value is None or value == "":
        return ""
    if not is_safe_emblem_filename(value):
        raise ValidationError("Invalid emblem filename")
    if not os.path.isfile(os.path.join(emblem_dir, value)):
        raise ValidationError("Invalid emblem selection")
    return value


# ---------- references ----------

def _unknown(ids: Iterable[str], known: Iterable[dict]) -> List[str]:
    known_ids = {item.get("id") for item in known}
    return [i for i in ids if i not in known_ids]


def faction_id(value: Any, factions: List[dict]) -> str:
    if value is None or value == "":
        return ""
    if not isinstance(value, str):
        raise ValidationError("Invalid faction ID. Faction does not exist.")
    if _unknown([value], factions):
        raise ValidationError("Invalid faction ID. Faction does not exist.")
    return value


def _string_ids(values: list, field: str) -> List[str]:
    if any(not isinstance(v, str) for v in values):
        raise ValidationError(f"{field} must be an array of IDs")
    return values


def _unique_ids(values: list, field: str) -> List[str]:
    return list(dict.fromkeys(_string_ids(values, field)))


def transaction_ids(value: Any, transactions: List[dict]) -> List[str]:
    ids = _unique_ids(coerce_list(value, "personal transactions"), "Personal transactions")
    missing = _unknown(ids, transactions)
    if missing:
        raise ValidationError(f"Invalid transaction IDs: {', '.join(str(m) for m in missing)}")
    return ids


def reserve_ids(value: Any, reserves: List[dict]) -> List[str]:
    ids = _string_ids(coerce_list(value, "reserve IDs"), "Reserve IDs")
    missing = _unknown(ids, reserves)
    if missing:
        raise ValidationError(f"Invalid reserve IDs: {', '.join(str(m) for m in missing)}")
    return ids


def pilot_ids(value: Any, pilots: List[dict]) -> List[str]:
    ids = _unique_ids(coerce_list(value, "pilot IDs"), "Pilot IDs")
    missing = _unknown(ids, pilots)
    if missing:
        raise ValidationError(f"Invalid pilot IDs: {', '.join(str(m) for m in missing)}")
    return ids


def expense_pilots(value: Any, pilots: List[dict]) -> List[str]:
    """Payers for a purchase: a non-empty list of existing pilot IDs."""
    if not isinstance(value, list) or not value:
        raise ValidationError("Invalid purchase request: expensePilots must be a non-empty array")
    ids = _unique_ids(value, "expensePilots")
    missing = _unknown(ids, pilots)
    if missing:
        raise ValidationError(f"Invalid pilot IDs in expense list: {', '.join(str(m) for m in missing)}")
    return ids


# ---------- entities ----------

def validate_job(data: dict, factions: List[dict], emblem_dir: str) -> dict:
    return {
        "name": required_string(data.get("name"), "Job name", 200),
        "rank": bounded_int(data.get("rank"), "Rank", 1, 3),
        "jobType": optional_string(data.get("jobType"), "Job type"),
        "description": optional_string(data.get("description"), "Description"),
        "clientBrief": optional_string(data.get("clientBrief"), "Client brief"),
        "currencyPay": optional_string(data.get("currencyPay"), "Currency pay"),
        "additionalPay": optional_string(data.get("additionalPay"), "Additional pay"),
        "emblem": emblem(data.get("emblem"), emblem_dir),
        "state": job_state(data.get("state")),
        "factionId": faction_id(data.get("factionId"), factions),
    }


def validate_faction(data: dict, emblem_dir: str) -> dict:
    return {
        "title": required_string(data.get("title"), "Faction title"),
        "emblem": emblem(data.get("emblem"), emblem_dir),
        "brief": required_string(data.get("brief"), "Faction brief"),
        "standing": bounded_int(data.get("standing"), "Standing", 0, len(STANDING_LABELS) - 1),
        "jobsCompletedOffset": parse_int(data.get("jobsCompletedOffset")) or 0,
        "jobsFailedOffset": parse_int(data.get("jobsFailedOffset")) or 0,
    }


def validate_pilot_reserves(value: Any, reserves: List[dict]) -> List[dict]:
    """Pilot reserve holdings; bare reserve IDs (legacy shape) become ``In Reserve`` entries."""
    items = coerce_list(value, "reserves")
    out = []
    for item in items:
        if isinstance(item, str):
            out.append({"reserveId": item, "deploymentStatus": DEFAULT_DEPLOYMENT_STATUS})
        elif isinstance(item, dict) and isinstance(item.get("reserveId"), str) and item["reserveId"]:
            status = item.get("deploymentStatus") or DEFAULT_DEPLOYMENT_STATUS
            out.append({"reserveId": item["reserveId"], "deploymentStatus": deployment_status(status)})
        else:
            raise ValidationError("Each reserve must be a reserve ID or an object with reserveId")
    missing = _unknown([r["reserveId"] for r in out], reserves)
    if missing:
        raise ValidationError(f"Invalid reserve IDs: {', '.join(str(m) for m in missing)}")
    return out


def validate_pilot(data: dict, transactions: List[dict], reserves: List[dict]) -> dict:
    license_level = data.get("ll", data.get("licenseLevel"))
    progress = data.get("personalOperationProgress")
    related = coerce_list(data.get("relatedJobs"), "related jobs")
    if not all(isinstance(j, str) for j in related):
        raise ValidationError("Related jobs must be job IDs")
    return {
        "name": required_string(data.get("name"), "Pilot name"),
        "callsign": required_string(data.get("callsign"), "Callsign"),
        "ll": bounded_int(license_level, "License Level", 0, 12),
        "notes": optional_string(data.get("notes"), "Notes"),
        "active": parse_bool(data.get("active")),
        "relatedJobs": list(dict.fromkeys(related)),
        "personalOperationProgress": bounded_int(0 if progress is None else progress, "Personal Operation Progress", 0, 3),
        "personalTransactions": transaction_ids(data.get("personalTransactions"), transactions),
        "reserves": validate_pilot_reserves(data.get("reserves"), reserves),
    }


def validate_reserve(data: dict) -> dict:
    price = parse_int(data.get("price"))
    if price is None or price < 0:
        raise ValidationError("Price must be a non-negative integer")
    return {
        "rank": bounded_int(data.get("rank"), "Rank", 1, 3),
        "name": required_string(data.get("name"), "Reserve name", 200),
        "price": price,
        "description": optional_string(data.get("description"), "Description"),
    }


def validate_settings(data: dict) -> dict:
    modifier = parse_number(0 if data.get("facilityCostModifier") is None else data.get("facilityCostModifier"))
    if modifier is None or modifier < -100 or modifier > 300:
        raise ValidationError("Facility Cost Modifier must be between -100 and 300")

    progress = parse_int(0 if data.get("operationProgress") is None else data.get("operationProgress"))
    if progress is None or progress < 0 or progress > 3:
        raise ValidationError("Operation Progress must be between 0 and 3")

    client_pw = password(data.get("clientPassword"), "Pilot Password")
    admin_pw = password(data.get("adminPassword"), "Admin Password")
    if client_pw and admin_pw and client_pw == admin_pw:
        raise ValidationError("Pilot Password and Admin Password must be different")

    return {
        "portalHeading": required_string(data.get("portalHeading"), "Portal Heading", 100),
        "unt": portal_date(data.get("unt")),
        "currentGalacticPos": optional_string(data.get("currentGalacticPos"), "Galactic position"),
        "colorScheme": color_scheme(data.get("colorScheme")),
        "userGroup": required_string(data.get("userGroup"), "User Group", 100),
        "operationProgress": progress,
        "openTable": parse_bool(data.get("openTable")),
        "clientPassword": client_pw,
        "adminPassword": admin_pw,
        "facilityCostModifier": int(modifier) if modifier.is_integer() else modifier,
    }


def _non_negative_int(value: Any, field: str) -> int:
    return bounded_int(value, field, 0)


def validate_core_major_facility(data: Any) -> dict:
    if not isinstance(data, dict):
        raise ValidationError("Facility must be an object")
    upgrades_in = coerce_list(data.get("upgrades"), "upgrades")
    upgrades = []
    for i, upgrade in enumerate(upgrades_in):
        if not isinstance(upgrade, dict):
            raise ValidationError(f"Upgrade {i} must be an object")
        max_purchases = bounded_int(upgrade.get("maxPurchases"), f"Upgrade {i} max purchases", 1)
        upgrades.append(
            {
                **upgrade,
                "upgradeName": required_string(upgrade.get("upgradeName"), f"Upgrade {i} name"),
                "upgradePrice": _non_negative_int(upgrade.get("upgradePrice"), f"Upgrade {i} price"),
                "upgradeDescription": optional_string(upgrade.get("upgradeDescription"), f"Upgrade {i} description"),
                "maxPurchases": max_purchases,
                "upgradeCount": bounded_int(upgrade.get("upgradeCount") or 0, f"Upgrade {i} count", 0, max_purchases),
            }
        )
    if not isinstance(data.get("isPurchased", False), bool):
        raise ValidationError("isPurchased must be a boolean")
    return {
        **data,
        "facilityName": required_string(data.get("facilityName"), "Facility name"),
        "facilityPrice": _non_negative_int(data.get("facilityPrice"), "Facility price"),
        "facilityDescription": optional_string(data.get("facilityDescription"), "Facility description"),
        "isPurchased": bool(data.get("isPurchased", False)),
        "upgrades": upgrades,
    }


def validate_minor_slot(data: Any, expected_number: int) -> dict:
    if not isinstance(data, dict):
        raise ValidationError("Slot must be an object")
    if parse_int(data.get("slotNumber")) != expected_number:
        raise ValidationError(f"slotNumber must be {expected_number}")
    if not isinstance(data.get("enabled"), bool):
        raise ValidationError("enabled must be a boolean")
    name = optional_string(data.get("facilityName"), "Facility name")
    if name and not data["enabled"]:
        raise ValidationError("A disabled slot cannot hold a facility")
    if expected_number <= 4 and not data["enabled"]:
        raise ValidationError("Only slots 5 and 6 can be disabled")
    return {
        "slotNumber": expected_number,
        "facilityName": name,
        "facilityDescription": optional_string(data.get("facilityDescription"), "Facility description"),
        "enabled": data["enabled"],
    }


def validate_resupply_items(value: Any) -> List[dict]:
    if not isinstance(value, list) or len(value) != RESUPPLY_ITEMS_COUNT:
        raise ValidationError(f"Resupply items must be an array of exactly {RESUPPLY_ITEMS_COUNT} items")
    out = []
    for item in value:
        if (
            not isinstance(item, dict)
            or not item.get("id")
            or not item.get("name")
            or parse_number(item.get("price")) is None
            or isinstance(item.get("price"), str)
            or not isinstance(item.get("enabled"), bool)
        ):
            raise ValidationError("Each resupply item must have id, name, price, and enabled fields")
        if item["price"] < 0:
            raise ValidationError("Resupply item prices must be non-negative")
        out.append({"id": item["id"], "name": item["name"], "price": item["price"], "enabled": item["enabled"]})
    return out


def standing_label(standing: Any) -> str:
    idx = parse_int(standing)
    if idx is None or idx < 0 or idx >= len(STANDING_LABELS):
        return "UNKNOWN"
    return STANDING_LABELS[idx]


def transaction_amount(value: Any) -> int:
    amount = parse_int(value)
    if amount is None:
        raise ValidationError("Transaction amount must be a valid integer")
    if amount == 0:
        raise ValidationError("Transaction amount must be non-zero")
    return amount


def transaction_date(value: Any) -> str:
    """ISO-8601 timestamp, stored as given."""
    if not isinstance(value, str) or not value.strip():
        raise ValidationError("Transaction date is required")
    try:
        datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
    except ValueError:
        raise ValidationError("Transaction date must be an ISO timestamp")
    return value.strip()
