"""vCard encoding and decoding.

Supports the subset of vCard 3.0 (RFC 2426) and vCard 4.0 (RFC 6350) that
address-book clients exchange with the server: names, organisation,
emails, phone numbers, postal addresses, URLs, birthday, notes, photo,
category and UID, plus Apple and RFC 6350 style contact groups.

Tokenizing, unfolding, escaping and folding are done by vobject; this
module maps its components to and from the contact fields the server
stores.
"""

from __future__ import annotations

import io
import re
from dataclasses import dataclass, field
from datetime import UTC, datetime
from hashlib import md5

import vobject
from vobject.base import Component, VObjectError

VCARD_VERSIONS = ("3.0", "4.0")
PRODID = "-//Life System//CardDAV Server//EN"

EMAIL_TYPES = ("work", "home", "other")
PHONE_TYPES = ("mobile", "work", "home", "fax", "other")
ADDRESS_TYPES = ("work", "home", "other")

PHONE_TYPE_TO_VCARD = {
    "mobile": "CELL",
    "work": "WORK,VOICE",
    "home": "HOME,VOICE",
    "fax": "FAX",
    "other": "VOICE",
}

GROUP_KIND_PROPERTIES = ("kind", "x-addressbookserver-kind")
GROUP_MEMBER_PROPERTIES = ("member", "x-addressbookserver-member")

_UID_RE = re.compile(r"^urn:uuid:(.+)$", re.IGNORECASE)
_DATA_URI_RE = re.compile(r"^data:([^;,]+);base64,(.+)$", re.DOTALL)


class VCardError(ValueError):
    """Raised when a vCard cannot be produced or read."""


@dataclass
class ContactEmail:
    """An email address with its type (work, home, other)."""

    value: str
    type: str = "other"


@dataclass
class ContactPhone:
    """A phone number with its type (mobile, work, home, fax, other)."""

    value: str
    type: str = "other"


@dataclass
class ContactAddress:
    """A postal address."""

    type: str = "other"
    street: str | None = None
    city: str | None = None
    region: str | None = None
    postal_code: str | None = None
    country: str | None = None


@dataclass
class ContactUrl:
    """A web address with its type (work, home, other)."""

    value: str
    type: str = "other"


@dataclass
class VCardContact:
    """Structured contact fields that can be written to and read from a vCard."""

    id: str | None = None
    display_name: str | None = None
    given_name: str | None = None
    family_name: str | None = None
    nickname: str | None = None
    organization: str | None = None
    job_title: str | None = None
    emails: list[ContactEmail] = field(default_factory=list)
    phone_numbers: list[ContactPhone] = field(default_factory=list)
    addresses: list[ContactAddress] = field(default_factory=list)
    urls: list[ContactUrl] = field(default_factory=list)
    birthday: str | None = None
    notes: str | None = None
    photo_data: str | None = None
    photo_media_type: str | None = None
    category: str | None = None


@dataclass
class VCardGroup:
    """A KIND:group vCard."""

    display_name: str
    description: str | None = None
    member_ids: list[str] = field(default_factory=list)
    uid: str | None = None


@dataclass
class InvalidVCard:
    """Text that is not a vCard at all."""

    reason: str


# Result of decoding an uploaded resource once, at the parse boundary
ParsedResource = VCardContact | VCardGroup | InvalidVCard


# Reading


def read_vcard(vcard: str) -> Component:
    """Parse text into a vobject VCARD component.

    Raises:
        VCardError: If the text is not a single well-formed VCARD
    """
    try:
        card = vobject.readOne(vcard)
    except StopIteration as e:
        raise VCardError("empty vCard") from e
    except (VObjectError, ValueError) as e:
        raise VCardError(f"unreadable vCard: {e}") from e

    if card.name != "VCARD":
        raise VCardError(f"expected VCARD, got {card.name}")
    return card


def _text(value) -> str:
    """Collapse a decoded vobject value (string or list of strings) to text."""
    if isinstance(value, (list, tuple)):
        return ",".join(_text(item) for item in value)
    return value or ""


def _first(value) -> str:
    """First entry of a list-valued property such as ORG or CATEGORIES."""
    if isinstance(value, (list, tuple)):
        return _text(value[0]) if value else ""
    return _text(value)


def _types(line) -> set[str]:
    """Upper-cased TYPE values, including vCard 2.1 style bare parameters."""
    found = {param.upper() for param in line.singletonparams}
    for value in line.params.get("TYPE", []):
        found.update(item.strip().upper() for item in value.split(",") if item.strip())
    return found


def unwrap_uid(value: str) -> str:
    """Strip a urn:uuid: wrapper; bare identifiers pass through unchanged."""
    match = _UID_RE.match(value.strip())
    return match.group(1) if match else value.strip()


# Type vocabularies


def _email_type(types: set[str]) -> str:
    if "WORK" in types:
        return "work"
    if "HOME" in types:
        return "home"
    return "other"


def _phone_type(types: set[str]) -> str:
    if "CELL" in types or "MOBILE" in types:
        return "mobile"
    if "WORK" in types:
        return "work"
    if "HOME" in types:
        return "home"
    if "FAX" in types:
        return "fax"
    return "other"


def _address_type(types: set[str]) -> str:
    if "WORK" in types:
        return "work"
    if "HOME" in types:
        return "home"
    return "other"


def _type_param(kind: str | None, allowed: tuple[str, ...]) -> str:
    kind = (kind or "other").lower()
    return (kind if kind in allowed else "other").upper()


# Field helpers


def parse_birthday(value: str) -> str:
    """Normalise BDAY values to YYYY-MM-DD where the form is recognised."""
    value = value.strip()
    if len(value) == 8 and value.isdigit():
        return f"{value[0:4]}-{value[4:6]}-{value[6:8]}"
    if re.fullmatch(r"\d{4}-\d{2}-\d{2}", value):
        return value
    if value.startswith("--") and len(value) == 6:
        return f"0000-{value[2:4]}-{value[4:6]}"
    return value


def parse_photo(line) -> tuple[str, str] | None:
    """Extract (base64 data, media type) from an undecoded PHOTO content line.

    Remote URIs are not fetched and yield None.
    """
    value = line.value.strip()
    if value.startswith("data:"):
        match = _DATA_URI_RE.match(value)
        if match:
            return match.group(2), match.group(1)

    media_type = "image/jpeg"
    type_values = line.params.get("TYPE", [])
    if type_values and type_values[0]:
        media_type = f"image/{type_values[0].split(',')[0].lower()}"
    media_types = line.params.get("MEDIATYPE", [])
    if media_types and media_types[0]:
        media_type = media_types[0]

    encodings = line.params.get("ENCODING", []) + line.singletonparams
    is_base64 = any(enc.upper() in ("B", "BASE64") for enc in encodings)

    if value and (is_base64 or not value.startswith(("http", "data:"))):
        return value, media_type
    return None


def _photo_lines(vcard: str) -> list:
    """PHOTO content lines with their values exactly as written.

    vobject's own PHOTO decoding base64-decodes ENCODING=b values and reads
    data: URIs as comma-separated text, so photos are taken from the raw
    logical lines instead.
    """
    lines = []
    for text, number in vobject.base.getLogicalLines(io.StringIO(vcard), False):
        line = vobject.base.textLineToContentLine(text, number)
        if line.name == "PHOTO":
            lines.append(line)
    return lines


def _rev(rev: datetime | None) -> str:
    moment = (rev or datetime.now(UTC)).astimezone(UTC)
    return moment.strftime("%Y%m%dT%H%M%SZ")


# Encoding


def _add(card: Component, name: str, value, **params: list[str]):
    line = card.add(name)
    line.value = value
    for key, values in params.items():
        setattr(line, f"{key}_paramlist", values)
    return line


def _add_verbatim(card: Component, name: str, value: str, **params: list[str]):
    """Add a property whose value is written as given, without escaping.

    Photo payloads go through here so they are folded like every other line.
    """
    line = _add(card, name, value, **params)
    line.behavior = vobject.vcard.VCardTextBehavior
    line.encoded = True
    return line


def _new_card(version: str) -> Component:
    card = vobject.vCard()
    _add(card, "version", version)
    _add(card, "prodid", PRODID)
    return card


def generate(
    contact: VCardContact, version: str = "3.0", rev: datetime | None = None
) -> str:
    """Generate a vCard from structured contact fields.

    Args:
        contact: Contact fields
        version: "3.0" or "4.0"
        rev: Revision timestamp (defaults to now)

    Returns:
        Folded vCard text with CRLF line endings

    Raises:
        VCardError: If the version is not supported
    """
    if version not in VCARD_VERSIONS:
        raise VCardError(f"unsupported vCard version: {version}")

    card = _new_card(version)

    fn = (
        contact.display_name
        or " ".join(part for part in (contact.given_name, contact.family_name) if part)
        or "Unknown"
    )
    _add(card, "fn", fn)
    # N always carries five components
    _add(
        card,
        "n",
        vobject.vcard.Name(family=contact.family_name or "", given=contact.given_name or ""),
    )

    if contact.nickname:
        _add(card, "nickname", contact.nickname)
    if contact.organization:
        _add(card, "org", [contact.organization])
    if contact.job_title:
        _add(card, "title", contact.job_title)

    for email in contact.emails:
        _add(card, "email", email.value, type=["INTERNET", _type_param(email.type, EMAIL_TYPES)])

    for phone in contact.phone_numbers:
        kind = PHONE_TYPE_TO_VCARD.get((phone.type or "other").lower(), "VOICE")
        _add(card, "tel", phone.value, type=kind.split(","))

    for address in contact.addresses:
        adr = vobject.vcard.Address(
            street=address.street or "",
            city=address.city or "",
            region=address.region or "",
            code=address.postal_code or "",
            country=address.country or "",
        )
        _add(card, "adr", adr, type=[_type_param(address.type, ADDRESS_TYPES)])

    for url in contact.urls:
        _add(card, "url", url.value, type=[_type_param(url.type, ADDRESS_TYPES)])

    if contact.birthday:
        _add(card, "bday", contact.birthday.replace("-", ""))

    if contact.notes:
        _add(card, "note", contact.notes)

    if contact.photo_data and contact.photo_media_type:
        if version == "4.0":
            _add_verbatim(
                card, "photo", f"data:{contact.photo_media_type};base64,{contact.photo_data}"
            )
        else:
            _, _, subtype = contact.photo_media_type.partition("/")
            _add_verbatim(
                card,
                "photo",
                contact.photo_data,
                encoding=["b"],
                type=[(subtype or "jpeg").upper()],
            )

    if contact.category:
        _add(card, "categories", [contact.category])

    if contact.id:
        _add(card, "uid", contact.id)

    _add(card, "rev", _rev(rev))

    return card.serialize()


def generate_group(
    group_id: str,
    display_name: str,
    member_ids: list[str],
    description: str | None = None,
    rev: datetime | None = None,
) -> str:
    """Generate an Apple style (vCard 3.0) group vCard."""
    card = _new_card("3.0")
    _add(card, "x-addressbookserver-kind", "group")
    _add(card, "fn", display_name)
    _add(card, "uid", f"urn:uuid:{group_id}")
    _add(card, "n", vobject.vcard.Name(family=display_name))
    if description:
        _add(card, "note", description)
    for member_id in member_ids:
        _add(card, "x-addressbookserver-member", f"urn:uuid:{member_id}")
    _add(card, "rev", _rev(rev))

    return card.serialize()


# Decoding


def _contact_from_card(card: Component, vcard: str) -> VCardContact:
    contact = VCardContact()

    for line in card.lines():
        name = line.name
        value = line.value

        if name == "FN":
            contact.display_name = _text(value)
        elif name == "N":
            contact.family_name = _text(value.family) or None
            contact.given_name = _text(value.given) or None
        elif name == "NICKNAME":
            contact.nickname = _text(value)
        elif name == "ORG":
            contact.organization = _first(value)
        elif name == "TITLE":
            contact.job_title = _text(value)
        elif name == "EMAIL":
            contact.emails.append(ContactEmail(value=_text(value), type=_email_type(_types(line))))
        elif name == "TEL":
            contact.phone_numbers.append(
                ContactPhone(value=_text(value), type=_phone_type(_types(line)))
            )
        elif name == "ADR":
            contact.addresses.append(
                ContactAddress(
                    type=_address_type(_types(line)),
                    street=_text(value.street) or None,
                    city=_text(value.city) or None,
                    region=_text(value.region) or None,
                    postal_code=_text(value.code) or None,
                    country=_text(value.country) or None,
                )
            )
        elif name == "URL":
            contact.urls.append(ContactUrl(value=_text(value), type=_address_type(_types(line))))
        elif name == "BDAY":
            contact.birthday = parse_birthday(_text(value))
        elif name == "NOTE":
            contact.notes = _text(value)
        elif name == "CATEGORIES":
            contact.category = _first(value)
        elif name == "UID":
            contact.id = unwrap_uid(_text(value))

    if "photo" in card.contents:
        for line in _photo_lines(vcard):
            photo = parse_photo(line)
            if photo:
                contact.photo_data, contact.photo_media_type = photo

    return contact


def parse(vcard: str) -> VCardContact:
    """Parse a vCard into structured contact fields.

    Unknown properties are ignored.

    Raises:
        VCardError: If the text is not a readable vCard
    """
    return _contact_from_card(read_vcard(vcard), vcard)


def _is_group(card: Component) -> bool:
    for name in GROUP_KIND_PROPERTIES:
        for line in card.contents.get(name, []):
            if "GROUP" in _text(line.value).upper():
                return True
    return False


def _group_from_card(card: Component) -> VCardGroup | None:
    group = VCardGroup(display_name="")
    for line in card.lines():
        if line.name == "FN":
            group.display_name = _text(line.value)
        elif line.name == "NOTE":
            group.description = _text(line.value)
        elif line.name == "UID":
            group.uid = unwrap_uid(_text(line.value))

    for name in GROUP_MEMBER_PROPERTIES:
        for line in card.contents.get(name, []):
            if _text(line.value).strip():
                group.member_ids.append(unwrap_uid(_text(line.value)))

    return group if group.display_name else None


def is_group_vcard(vcard: str) -> bool:
    """Check for a KIND or X-ADDRESSBOOKSERVER-KIND line whose value is a group."""
    try:
        return _is_group(read_vcard(vcard))
    except VCardError:
        return False


def parse_group(vcard: str) -> VCardGroup | None:
    """Parse a group vCard.

    Returns:
        The group, or None when the text is not a group or has no FN
    """
    try:
        card = read_vcard(vcard)
    except VCardError:
        return None
    if not _is_group(card):
        return None
    return _group_from_card(card)


def parse_resource(vcard: str) -> ParsedResource:
    """Decode an uploaded resource into a contact, a group, or an invalid marker.

    A group vCard without FN is not a usable group and falls through to
    contact parsing.
    """
    try:
        card = read_vcard(vcard)
    except VCardError as e:
        return InvalidVCard(str(e))

    if _is_group(card):
        group = _group_from_card(card)
        if group is not None:
            return group
    return _contact_from_card(card, vcard)


def generate_etag(vcard_data: str) -> str:
    """Quoted hex digest of the exact vCard bytes."""
    digest = md5(vcard_data.encode("utf-8"), usedforsecurity=False).hexdigest()
    return f'"{digest}"'
