"""Base classes: schema-driven cached entities and parsed wire values."""

from __future__ import annotations

from collections.abc import Callable, Mapping
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Annotated, Any, ClassVar, Self

from pydantic import BaseModel, BeforeValidator, ConfigDict

from pyturntable.exceptions import TurntableArgumentError

if TYPE_CHECKING:
    from pyturntable.client import TurntableClient

Cast = Callable[[Any, Any], Any]


# ---------------------------------------------------------------------------
# Wire value types
# ---------------------------------------------------------------------------


def parse_timestamp(value: Any) -> datetime | None:
    """Convert epoch seconds (int, float or numeric string) to a UTC datetime."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value
    return datetime.fromtimestamp(float(value), tz=UTC)


def parse_id(value: Any) -> str | None:
    if value is None or value == "":
        return None
    return str(value)


TurntableTimestamp = Annotated[datetime | None, BeforeValidator(parse_timestamp)]
"""Annotated type that coerces epoch seconds to UTC datetimes."""

WireId = Annotated[str | None, BeforeValidator(parse_id)]
"""Annotated type for ids, which the service sends as strings or numbers."""


class WireModel(BaseModel):
    """Immutable value parsed from a pushed message.

    Entity references (users, songs) are resolved through the client after
    parsing, so models may hold :class:`Resource` instances.
    """

    model_config = ConfigDict(
        frozen=True,
        extra="ignore",
        populate_by_name=True,
        arbitrary_types_allowed=True,
    )

    RESOLVED_FIELDS: ClassVar[frozenset[str]] = frozenset()
    """Fields filled from the client after parsing, never from wire keys."""

    @classmethod
    def parse_wire(cls, data: Mapping[str, Any]) -> Self:
        return cls.model_validate({key: value for key, value in data.items() if key not in cls.RESOLVED_FIELDS})


@dataclass(frozen=True, slots=True)
class Attribute:
    """One field of an entity schema.

    Parameters
    ----------
    name : str
        Python attribute name.
    aliases : tuple of str
        Wire keys that set this attribute. Defaults to ``(name,)``.
    load : bool
        Whether reading the attribute while unknown triggers a remote load.
        Fields only ever populated by push events set this to ``False``.
    cast : callable or None
        ``cast(entity, value)`` converting the wire value. Not called for
        ``None``.
    """

    name: str
    aliases: tuple[str, ...] = ()
    load: bool = True
    cast: Cast | None = None

    @property
    def wire_names(self) -> tuple[str, ...]:
        return self.aliases or (self.name,)


class Resource:
    """Entity with an id, a fixed attribute schema and lazy remote loading.

    Subclasses declare ``ATTRIBUTES``; the schemas of all classes in the MRO
    are combined, later declarations replacing earlier ones of the same name
    while keeping their wire aliases. Two entities are equal when their ids
    are, regardless of class or attribute values.
    """

    ATTRIBUTES: ClassVar[tuple[Attribute, ...]] = (Attribute("id", ("_id",), load=False),)

    _schema: ClassVar[dict[str, Attribute]] = {}
    _wire: ClassVar[dict[str, str]] = {}

    def __init_subclass__(cls, **kwargs: Any) -> None:
        super().__init_subclass__(**kwargs)
        schema: dict[str, Attribute] = {}
        wire: dict[str, str] = {}
        for klass in reversed(cls.__mro__):
            for attribute in klass.__dict__.get("ATTRIBUTES", ()):
                schema[attribute.name] = attribute
                for key in attribute.wire_names:
                    wire[key] = attribute.name
        cls._schema = schema
        cls._wire = wire

    def __init__(self, client: TurntableClient, attrs: Mapping[str, Any] | None = None) -> None:
        self._client = client
        self._loaded = False
        self._values: dict[str, Any] = self._initial_values()
        if attrs:
            self.apply_update(attrs)

    def _initial_values(self) -> dict[str, Any]:
        return {}

    @classmethod
    def wire_id(cls, attrs: Mapping[str, Any]) -> str | None:
        """Extract the id from raw wire attributes."""
        for key in cls._schema["id"].wire_names:
            value = attrs.get(key)
            if value:
                return str(value)
        return None

    # ------------------------------------------------------------------
    # Attribute access
    # ------------------------------------------------------------------

    def __getattr__(self, name: str) -> Any:
        if not name.startswith("_") and name in type(self)._schema:
            return self._values.get(name)
        raise AttributeError(f"{type(self).__name__!r} object has no attribute {name!r}")

    def apply_update(self, fields: Mapping[str, Any]) -> None:
        """Merge a partial update; absent fields keep their current values."""
        for key, value in fields.items():
            if key == "metadata" and isinstance(value, Mapping):
                self.apply_update(value)
                continue
            name = self._wire.get(key)
            if name is None:
                continue
            self._set(name, value)

    def _set(self, name: str, value: Any) -> None:
        attribute = self._schema[name]
        if value is not None and attribute.cast is not None:
            value = attribute.cast(self, value)
        self._values[name] = value

    async def get(self, name: str) -> Any:
        """Return an attribute, loading the entity first if it is unknown.

        Raises
        ------
        TurntableArgumentError
            If *name* is not part of this entity's schema.
        """
        attribute = self._schema.get(name)
        if attribute is None:
            raise TurntableArgumentError(f"{type(self).__name__} has no attribute {name!r}")
        if self._values.get(name) is None and attribute.load and not self._loaded:
            await self.load()
        return self._values.get(name)

    @property
    def loaded(self) -> bool:
        return self._loaded

    async def load(self) -> None:
        """Fetch the remote attributes. Subclasses call this last."""
        self._loaded = True

    async def api(self, command: str, **params: Any) -> dict[str, Any]:
        return await self._client.api(command, **params)

    # ------------------------------------------------------------------
    # Identity
    # ------------------------------------------------------------------

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Resource):
            return NotImplemented
        return self.id is not None and other.id == self.id

    def __hash__(self) -> int:
        return hash(self.id)

    def __repr__(self) -> str:
        return f"<{type(self).__name__} id={self.id!r} loaded={self._loaded}>"
