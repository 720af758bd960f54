"""
Renders pass.json content from the rendering configuration and loyalty state.

Configured fields carry `{{table.column}}` placeholders resolved against a
fixed set of sources: the customer record and the loyalty card snapshot.
"""

import logging
import math
import re
from enum import Enum

from app.domain.models import PassContext

logger = logging.getLogger(__name__)


class FieldPosition(str, Enum):
    HEADER = "header"
    PRIMARY = "primary"
    SECONDARY = "secondary"
    AUXILIARY = "auxiliary"
    BACK = "back"

    @property
    def slot(self) -> str:
        return f"{self.value}Fields"


PLACEHOLDER = re.compile(r"\{\{\s*([A-Za-z_]+)\.([A-Za-z0-9_]+)\s*\}\}")

CUSTOMER_SOURCE = "customers"
LOYALTY_SOURCE = "loyalty_cards"

# Lone placeholders of these columns are emitted as numbers
NUMERIC_COLUMNS = {
    (LOYALTY_SOURCE, "current_points"),
    (LOYALTY_SOURCE, "current_stamps"),
}

BARCODE_FORMATS = {
    "qr": "PKBarcodeFormatQR",
    "pdf417": "PKBarcodeFormatPDF417",
    "aztec": "PKBarcodeFormatAztec",
    "code128": "PKBarcodeFormatCode128",
}
DEFAULT_BARCODE_FORMAT = "PKBarcodeFormatQR"
DEFAULT_BARCODE_ENCODING = "iso-8859-1"

MAX_LOCATIONS = 10
DEFAULT_MAX_DISTANCE = 100  # meters

DEFAULT_BACKGROUND = (33, 150, 243)
DEFAULT_FOREGROUND = (255, 255, 255)
DEFAULT_LABEL = (255, 255, 255)

DEFAULT_MEMBER_FIELDS = [
    {"key": "points", "label": "POINTS", "value": "{{loyalty_cards.current_points}}", "position": "header"},
    {"key": "name", "label": "MEMBER", "value": "{{customers.full_name}}", "position": "secondary"},
    {"key": "card_number", "label": "CARD NUMBER", "value": "{{loyalty_cards.card_number}}", "position": "auxiliary"},
]


def template_sources(context: PassContext) -> dict[str, dict]:
    card = context.card
    return {
        CUSTOMER_SOURCE: dict(context.customer),
        LOYALTY_SOURCE: {
            **card.row,
            "card_number": card.card_number,
            "current_points": card.current_points,
            "current_stamps": card.current_stamps,
        },
    }


def render_template(template: str, sources: dict[str, dict]) -> str:
    """Substitute every {{table.column}} placeholder; unknown ones become empty."""

    def replace(match: re.Match) -> str:
        table, column = match.group(1), match.group(2)
        value = sources.get(table, {}).get(column)
        return "" if value is None else str(value)

    return PLACEHOLDER.sub(replace, template)


def render_value(template, sources: dict[str, dict]) -> str | int:
    if template is None:
        return ""
    if isinstance(template, (int, float)) and not isinstance(template, bool):
        return template
    template = str(template)

    match = PLACEHOLDER.fullmatch(template.strip())
    if match and (match.group(1), match.group(2)) in NUMERIC_COLUMNS:
        raw = sources.get(match.group(1), {}).get(match.group(2))
        try:
            return int(raw or 0)
        except (TypeError, ValueError):
            return 0

    return render_template(template, sources)


def parse_position(value) -> FieldPosition | None:
    try:
        return FieldPosition(str(value or FieldPosition.SECONDARY.value).lower())
    except ValueError:
        return None


def build_fields(context: PassContext) -> dict[str, list[dict]]:
    """Map configured member, link and custom fields into their pass slots."""
    sources = template_sources(context)
    config = context.config
    slots: dict[str, list[dict]] = {position.slot: [] for position in FieldPosition}
    used_keys: set[str] = set()

    def add(position: FieldPosition, field: dict) -> None:
        key = field["key"]
        if key in used_keys:
            # pass.json keys must be unique across every slot
            field["key"] = key = f"{key}_{len(used_keys)}"
        used_keys.add(key)
        slots[position.slot].append(field)

    member_fields = config.get("member_fields") or DEFAULT_MEMBER_FIELDS
    for index, item in enumerate(member_fields):
        position = parse_position(item.get("position"))
        if position is None:
            logger.warning(f"Skipping field {item.get('key')!r} with unknown position {item.get('position')!r}")
            continue
        field = {
            "key": str(item.get("key") or f"field_{index}"),
            "label": render_template(str(item.get("label") or ""), sources),
            "value": render_value(item.get("value"), sources),
        }
        add(position, field)

    for index, item in enumerate(config.get("custom_fields") or []):
        position = parse_position(item.get("position") or FieldPosition.BACK.value) or FieldPosition.BACK
        add(position, {
            "key": str(item.get("key") or f"custom_{index}"),
            "label": render_template(str(item.get("label") or ""), sources),
            "value": render_value(item.get("value"), sources),
        })

    for index, item in enumerate(config.get("links_fields") or []):
        url = item.get("url")
        if not url:
            continue
        label = str(item.get("label") or url)
        add(FieldPosition.BACK, {
            "key": str(item.get("key") or f"link_{index}"),
            "label": label,
            "value": url,
            "attributedValue": f'<a href="{url}">{label}</a>',
        })

    return {slot: fields for slot, fields in slots.items() if fields}


def build_barcode(context: PassContext) -> dict:
    """Barcode from the templated message, defaulting to the customer id."""
    barcode_config = context.config.get("barcode_config") or {}
    sources = template_sources(context)

    message = ""
    if barcode_config.get("message"):
        message = render_template(str(barcode_config["message"]), sources).strip()
    if not message:
        message = str(context.customer.get("id") or context.card.customer_id)

    fmt = str(barcode_config.get("format") or DEFAULT_BARCODE_FORMAT)
    fmt = BARCODE_FORMATS.get(fmt.lower(), fmt)
    if fmt not in BARCODE_FORMATS.values():
        logger.warning(f"Unknown barcode format {fmt!r}, using QR")
        fmt = DEFAULT_BARCODE_FORMAT

    barcode = {
        "message": message,
        "format": fmt,
        "messageEncoding": barcode_config.get("message_encoding") or DEFAULT_BARCODE_ENCODING,
    }
    if barcode_config.get("alt_text"):
        barcode["altText"] = render_template(str(barcode_config["alt_text"]), sources)
    return barcode


def _finite(value) -> float | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return number if math.isfinite(number) else None


def build_locations(locations: list[dict] | None, organization_name: str) -> list[dict]:
    """Keep locations with finite coordinates, capped at MAX_LOCATIONS."""
    result = []
    for location in locations or []:
        latitude = _finite(location.get("latitude"))
        longitude = _finite(location.get("longitude"))
        if latitude is None or longitude is None:
            continue
        name = location.get("name")
        relevant_text = location.get("relevant_text") or (
            f"{name} is nearby" if name else f"{organization_name} is nearby"
        )
        result.append({
            "latitude": latitude,
            "longitude": longitude,
            "relevantText": relevant_text,
        })
        if len(result) == MAX_LOCATIONS:
            break
    return result


def parse_max_distance(value) -> float | int:
    distance = _finite(value)
    if distance is None or distance <= 0:
        return DEFAULT_MAX_DISTANCE
    return int(distance) if distance.is_integer() else distance


def _parse_rgb(color_str: str | None) -> tuple[int, int, int] | None:
    """Parse 'rgb(r,g,b)' or '#RRGGBB' to RGB tuple."""
    if not color_str:
        return None

    color_str = color_str.strip()

    try:
        if color_str.startswith("rgb(") and color_str.endswith(")"):
            values = tuple(int(v.strip()) for v in color_str[4:-1].split(","))
        elif color_str.startswith("#") and len(color_str) == 7:
            hex_color = color_str[1:]
            values = tuple(int(hex_color[i : i + 2], 16) for i in (0, 2, 4))
        else:
            return None
    except ValueError:
        return None

    if len(values) != 3 or any(v < 0 or v > 255 for v in values):
        return None
    return values  # type: ignore


def parse_color(color_str: str | None, default: tuple[int, int, int]) -> tuple[int, int, int]:
    return _parse_rgb(color_str) or default


def format_color(rgb: tuple[int, int, int]) -> str:
    return f"rgb({rgb[0]}, {rgb[1]}, {rgb[2]})"


def build_pass_json(
    context: PassContext,
    team_id: str,
    web_service_url: str,
    default_organization_name: str,
) -> dict:
    """Create the pass.json content."""
    apple_config = context.config.get("apple_config") or {}
    identity = context.identity

    org_name = apple_config.get("organization_name") or default_organization_name

    pass_json = {
        "formatVersion": 1,
        "passTypeIdentifier": identity.pass_type_identifier,
        "teamIdentifier": apple_config.get("team_id") or team_id,
        "serialNumber": identity.serial_number,
        "authenticationToken": identity.authentication_token,
        "webServiceURL": web_service_url,
        "organizationName": org_name,
        "description": apple_config.get("description") or f"{org_name} Loyalty Card",
        "logoText": apple_config.get("logo_text") or org_name,
        "foregroundColor": format_color(parse_color(apple_config.get("foreground_color"), DEFAULT_FOREGROUND)),
        "backgroundColor": format_color(parse_color(apple_config.get("background_color"), DEFAULT_BACKGROUND)),
        "labelColor": format_color(parse_color(apple_config.get("label_color"), DEFAULT_LABEL)),
        "storeCard": build_fields(context),
        "barcodes": [build_barcode(context)],
    }

    locations = build_locations(
        context.config.get("locations") or apple_config.get("locations"),
        org_name,
    )
    if locations:
        pass_json["locations"] = locations
        pass_json["maxDistance"] = parse_max_distance(apple_config.get("max_distance"))

    return pass_json
