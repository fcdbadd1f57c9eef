"""Location string parsing.

Sources are written ``[HOST[:PORT]:]ATTRIBUTE`` and destinations
``HOST[:PORT][(ALTHOST)][:ATTRIBUTE]``. The attribute is a domain name,
dataset name or file path depending on the call site. A purely numeric
segment directly after the host is always read as the port, so a numeric
attribute cannot follow a host.
"""

import re

from pydantic import BaseModel, ConfigDict

from .exceptions import AddressError

# HOST[:PORT][(ALTHOST)|[ALTHOST]][:ATTRIBUTE]
_DESTINATION_PATTERN = re.compile(
    r"""^
    (?P<host>[^:()\[\]]+)
    (?::(?P<port>\d+)(?=$|[:(\[]))?
    (?:[(\[](?P<alternate>[^()\[\]]+)[)\]])?
    (?::(?P<attribute>.*))?
    $""",
    re.VERBOSE,
)


class Address(BaseModel):
    """Decoded location: where (host, port) and what (attribute)."""

    model_config = ConfigDict(frozen=True)

    host: str | None = None
    port: int | None = None
    alternate_host: str | None = None
    attribute: str | None = None

    @property
    def is_remote(self) -> bool:
        return self.host is not None

    @property
    def host_port(self) -> str | None:
        """``HOST[:PORT]`` for control commands, None for local."""
        if self.host is None:
            return None
        return f"{self.host}:{self.port}" if self.port else self.host

    @property
    def data_host(self) -> str | None:
        """Endpoint used for the bulk data stream."""
        return self.alternate_host or self.host

    def with_attribute(self, attribute: str) -> "Address":
        return self.model_copy(update={"attribute": attribute})

    def __str__(self) -> str:
        location = self.host_port or ""
        if self.alternate_host:
            location += f"({self.alternate_host})"
        if location and self.attribute:
            return f"{location}:{self.attribute}"
        return location or (self.attribute or "")


def parse_source(raw: str) -> Address:
    """Parse ``[HOST[:PORT]:]ATTRIBUTE``.

    Raises:
        AddressError: If the string is empty or carries no attribute
    """
    if not raw or not raw.strip():
        raise AddressError("empty location")

    parts = raw.split(":")
    host = None
    port = None
    attribute = None

    if len(parts) == 1:
        attribute = parts[0]
    else:
        host = parts.pop(0)
        segment = parts.pop(0)
        if segment.isdigit():
            port = int(segment)
        else:
            attribute = segment
        if parts:
            # Anything beyond belongs to the attribute
            tail = ":".join(parts)
            attribute = f"{attribute}:{tail}" if attribute else tail

    if not host and host is not None:
        raise AddressError(f"missing host in '{raw}'")
    if not attribute:
        raise AddressError(f"missing attribute in '{raw}'")

    return Address(host=host, port=port, attribute=attribute)


def parse_destination(raw: str) -> Address:
    """Parse ``HOST[:PORT][(ALTHOST)][:ATTRIBUTE]``.

    The attribute may be omitted, meaning "same name as the source".
    Square brackets are accepted around ALTHOST as well as parentheses.

    Raises:
        AddressError: If the host segment is missing or the string is malformed
    """
    if not raw or not raw.strip():
        raise AddressError("empty destination")

    match = _DESTINATION_PATTERN.match(raw.strip())
    if not match:
        raise AddressError(f"malformed destination '{raw}'")

    port = match.group("port")
    return Address(
        host=match.group("host"),
        port=int(port) if port else None,
        alternate_host=match.group("alternate"),
        attribute=match.group("attribute") or None,
    )


def parse_host(raw: str | None) -> Address:
    """Parse a bare ``HOST[:PORT]`` target; empty means local."""
    if not raw:
        return Address()
    host, _, port = raw.partition(":")
    if port and not port.isdigit():
        raise AddressError(f"invalid port in '{raw}'")
    return Address(host=host, port=int(port) if port else None)
