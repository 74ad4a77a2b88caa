"""User entities: any account on the service, and the one the client acts as."""

from __future__ import annotations

from typing import Any

from pyturntable._constants import USER_STATUSES
from pyturntable.exceptions import TurntableArgumentError
from pyturntable.models._base import Attribute, Resource


class User(Resource):
    """A user known to the client, loaded from ``user.get_profile``."""

    ATTRIBUTES = (
        Attribute("id", ("_id", "userid"), load=False),
        Attribute("name", ("name", "username")),
        Attribute("laptop_name", ("laptop",)),
        Attribute("laptop_version"),
        Attribute("points"),
        Attribute("acl"),
        Attribute("fans_count", ("fans",)),
        Attribute("facebook_url", ("facebook",)),
        Attribute("twitter_id", ("twitter", "twitterid_lower")),
        Attribute("website"),
        Attribute("about"),
        Attribute("top_artists", ("topartists",)),
        Attribute("hangout"),
        Attribute("avatar", ("avatarid",)),
        Attribute("sticker_placements", ("placements",), load=False),
    )

    async def load(self) -> None:
        data = await self.api("user.get_profile", userid=self.id)
        self.apply_update(data)
        await super().load()

    async def presence(self) -> str | None:
        """Current presence status as reported by the service."""
        data = await self.api("presence.get", uid=self.id)
        presence = data.get("presence")
        return presence.get("status") if isinstance(presence, dict) else None


class AuthorizedUser(User):
    """The account the client is authenticated as."""

    ATTRIBUTES = (
        Attribute("status"),
        Attribute("auth"),
        Attribute("facebook_id", ("fbid",)),
        Attribute("twitter_id", ("twitterid",)),
        Attribute("email"),
        Attribute("has_password", ("has_tt_password",)),
    )

    def _initial_values(self) -> dict[str, Any]:
        return {"status": USER_STATUSES[0]}

    async def authenticate(self) -> None:
        await self.api("user.authenticate")

    async def load(self) -> None:
        data = await self.api("user.info")
        self.apply_update(data)
        self._loaded = True

    async def update_status(self, status: str | None = None) -> None:
        """Refresh presence, optionally switching to a new *status*.

        Raises
        ------
        TurntableArgumentError
            If *status* is not one of ``available``, ``unavailable`` or ``away``.
        """
        status = status or self.status or USER_STATUSES[0]
        if status not in USER_STATUSES:
            raise TurntableArgumentError(f"Invalid status {status!r}; expected one of {USER_STATUSES}")
        await self.api("presence.update", status=status)
        self.apply_update({"status": status})

    async def fan_of(self) -> list[User]:
        """Users this account is a fan of; they become client-wide acquaintances."""
        data = await self.api("user.get_fan_of")
        return [self._client.acquaintance(str(user_id)) for user_id in data.get("fanof") or ()]
