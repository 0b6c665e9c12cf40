"""
Orienteer Backend — Visibility & Permission Engine
====================================================

What:  Decides whether a requestor may see, or change, a record.
How:   Read access is an ordered list of named rules evaluated left to
       right; the first rule with an opinion decides. Write access is a
       separate function keyed on role and ownership only.
Who:   User service (profiles), event service (runner entries), activity
       service (feed inclusion), map service (upload authorisation).

Read rules (in order):
    1. inactive_record   inactive → only an admin doing a direct lookup
    2. admin             admin → visible
    3. public            visibility=public → visible to everyone
    4. anonymous         anonymous → not visible
    5. all_members       visibility=all → visible to any authenticated user
    6. owner             requestor is the owner → visible
    7. shared_club       visibility=club → visible iff clubs intersect
    (no match)           → not visible

Write rule:
    admin, or standard AND requestor.id == owner_id. Guests never write.
    Visibility plays no part: "all"/"club" never grant write access.

Both functions are pure and never raise; they are safe to call from any
number of concurrent requests.
"""

import logging
from typing import Callable, Iterable, List, Optional, Tuple, TypeVar

from app.exceptions import ForbiddenError, NotFoundError
from app.schemas.visibility import Requestor, Role, Visibility, VisibilitySubject

logger = logging.getLogger(__name__)

T = TypeVar("T")

# A rule returns True (allow), False (deny) or None (no opinion, keep going)
RuleCheck = Callable[[Requestor, VisibilitySubject, bool], Optional[bool]]


def _inactive_record(
    requestor: Requestor, subject: VisibilitySubject, direct_lookup: bool
) -> Optional[bool]:
    if subject.active:
        return None
    return requestor.is_admin and direct_lookup


def _admin(
    requestor: Requestor, subject: VisibilitySubject, direct_lookup: bool
) -> Optional[bool]:
    return True if requestor.is_admin else None


def _public(
    requestor: Requestor, subject: VisibilitySubject, direct_lookup: bool
) -> Optional[bool]:
    return True if subject.visibility is Visibility.PUBLIC else None


def _anonymous(
    requestor: Requestor, subject: VisibilitySubject, direct_lookup: bool
) -> Optional[bool]:
    return False if requestor.is_anonymous else None


def _all_members(
    requestor: Requestor, subject: VisibilitySubject, direct_lookup: bool
) -> Optional[bool]:
    return True if subject.visibility is Visibility.ALL else None


def _owner(
    requestor: Requestor, subject: VisibilitySubject, direct_lookup: bool
) -> Optional[bool]:
    if requestor.id is not None and requestor.id == subject.owner_id:
        return True
    return None


def _shared_club(
    requestor: Requestor, subject: VisibilitySubject, direct_lookup: bool
) -> Optional[bool]:
    if subject.visibility is not Visibility.CLUB:
        return None
    return not requestor.clubs.isdisjoint(subject.clubs)


VISIBILITY_RULES: Tuple[Tuple[str, RuleCheck], ...] = (
    ("inactive_record", _inactive_record),
    ("admin", _admin),
    ("public", _public),
    ("anonymous", _anonymous),
    ("all_members", _all_members),
    ("owner", _owner),
    ("shared_club", _shared_club),
)


def deciding_rule(
    requestor: Requestor,
    subject: VisibilitySubject,
    direct_lookup: bool = False,
) -> Tuple[Optional[str], bool]:
    """
    Evaluate the rule list and report which rule decided.

    Returns:
        (rule_name, allowed); rule_name is None when no rule matched and
        the default deny applied.
    """
    for name, check in VISIBILITY_RULES:
        outcome = check(requestor, subject, direct_lookup)
        if outcome is not None:
            return name, outcome
    return None, False


def can_see(
    requestor: Requestor,
    subject: VisibilitySubject,
    direct_lookup: bool = False,
) -> bool:
    """
    Whether `requestor` may view `subject`.

    Args:
        requestor: Who is asking.
        subject: Visibility attributes of the record.
        direct_lookup: True for GET-by-id style access. Only matters for
            inactive records, which admins can still open by id.
    """
    _, allowed = deciding_rule(requestor, subject, direct_lookup)
    return allowed


def filter_visible(
    requestor: Requestor,
    items: Iterable[Tuple[VisibilitySubject, T]],
) -> List[T]:
    """
    List-context filtering: inactive records are dropped for every role,
    admins included; the remainder go through can_see(). Order is kept.
    """
    return [
        payload
        for subject, payload in items
        if subject.active and can_see(requestor, subject)
    ]


def can_edit(requestor: Requestor, owner_id: Optional[str]) -> bool:
    """
    Whether `requestor` may create/update/delete a resource owned by `owner_id`.

    Independent of the resource's visibility level.
    """
    if requestor.role is Role.ADMIN:
        return True
    if requestor.role is not Role.STANDARD:
        return False
    return requestor.id is not None and owner_id is not None and requestor.id == str(owner_id)


def ensure_can_see(
    requestor: Requestor,
    subject: VisibilitySubject,
    resource: str,
    resource_id: Optional[str] = None,
) -> None:
    """
    Direct-lookup guard for route handlers.

    Raises:
        NotFoundError: requestor is anonymous, or the record is inactive,
            so existence is not revealed.
        ForbiddenError: authenticated requestor, record exists but is hidden.
    """
    if can_see(requestor, subject, direct_lookup=True):
        return
    if requestor.is_anonymous or not subject.active:
        raise NotFoundError(resource=resource, resource_id=resource_id)
    logger.info(
        "Visibility denied: role=%s requestor=%s %s=%s visibility=%s",
        requestor.role.value,
        requestor.id,
        resource,
        resource_id,
        subject.visibility.value,
    )
    raise ForbiddenError(
        message=f"You are not allowed to view this {resource}.",
        action="view",
        context={"resource": resource, "resource_id": resource_id},
    )


def ensure_can_edit(
    requestor: Requestor,
    owner_id: Optional[str],
    resource: str,
) -> None:
    """
    Write guard for route handlers.

    Raises:
        ForbiddenError: guests get a dedicated message, as do anonymous
            requestors; everyone else is told the resource is not theirs.
    """
    if can_edit(requestor, owner_id):
        return
    if requestor.role is Role.GUEST:
        message = f"Guest accounts are not allowed to edit {resource}s."
    elif requestor.is_anonymous:
        message = f"You must be logged in to edit {resource}s."
    else:
        message = f"You can only edit your own {resource}."
    raise ForbiddenError(
        message=message,
        action="edit",
        context={
            "resource": resource,
            "owner_id": None if owner_id is None else str(owner_id),
            "role": requestor.role.value,
        },
    )
