from dataclasses import dataclass

from utils.errors import NotFound
from utils.validators import require_guest_info


@dataclass(frozen=True)
class Registered:
    user_id: str
    email: str | None
    full_name: str | None
    points_balance: int

    authenticated = True


@dataclass(frozen=True)
class Guest:
    user_id: str
    email: str
    full_name: str

    authenticated = False


Identity = Registered | Guest


async def resolve_identity(store, *, user_id, guest_info) -> Identity:
    """
    Resolve who is checking out, once, before anything is priced.

    Guests are looked up by email and provisioned on first sight. A guest
    whose email belongs to an existing account orders against that account
    but never spends or earns its points.
    """
    if user_id:
        user = await store.get_user(user_id)
        if not user:
            raise NotFound("User not found")
        return Registered(
            user_id=user["id"],
            email=user.get("email"),
            full_name=user.get("full_name"),
            points_balance=user.get("points_balance", 0),
        )

    email = require_guest_info(guest_info)

    user = await store.find_user_by_email(email)
    if not user:
        user = await store.create_guest_user(
            email=email,
            full_name=guest_info.full_name.strip(),
            phone_number=guest_info.phone_number,
        )

    return Guest(user_id=user["id"], email=email, full_name=guest_info.full_name.strip())
