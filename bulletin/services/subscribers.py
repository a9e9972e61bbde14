"""
Subscriber resolution: turn a subscriber spec into concrete recipient ids.

``resolve`` is pure. It works on a directory snapshot and never touches the
database; ``load_directory`` takes that snapshot.
"""
import logging
from typing import Any, Iterable, List

from pydantic import TypeAdapter, ValidationError

from bulletin.models.announcement import (
    AllSubscribers,
    CustomSubscribers,
    DepartmentSubscribers,
    ManagerSubscribers,
    SubscriberSpec,
    UserSubscribers,
)
from bulletin.models.employee import DirectoryEntry, Employee, Role

logger = logging.getLogger(__name__)

_spec_adapter = TypeAdapter(SubscriberSpec)


def _reachable(entry: DirectoryEntry) -> bool:
    return entry.is_active and entry.is_verified


def _unique(ids: Iterable[str]) -> List[str]:
    seen = set()
    result = []
    for user_id in ids:
        if user_id not in seen:
            seen.add(user_id)
            result.append(user_id)
    return result


def coerce_spec(spec: Any):
    """Validate a raw mapping into a subscriber spec; None if malformed."""
    if isinstance(
        spec,
        (AllSubscribers, DepartmentSubscribers, UserSubscribers, ManagerSubscribers, CustomSubscribers),
    ):
        return spec
    if spec is None:
        return None
    try:
        return _spec_adapter.validate_python(spec)
    except ValidationError:
        logger.debug("Ignoring malformed subscriber spec: %r", spec)
        return None


def resolve(spec: Any, directory: Iterable[DirectoryEntry]) -> List[str]:
    """
    Resolve a subscriber spec against a directory snapshot.

    Explicit id lists (users/custom) are returned verbatim without checking
    active/verified status. Result order is stable and ids are unique.
    """
    spec = coerce_spec(spec)
    if spec is None:
        return []

    if isinstance(spec, AllSubscribers):
        return _unique(e.employee_id for e in directory if _reachable(e))

    if isinstance(spec, DepartmentSubscribers):
        wanted = set(spec.departments)
        return _unique(
            e.employee_id
            for e in directory
            if _reachable(e) and e.department in wanted
        )

    if isinstance(spec, ManagerSubscribers):
        return _unique(
            e.employee_id
            for e in directory
            if _reachable(e) and e.role == Role.MANAGER
        )

    if isinstance(spec, (UserSubscribers, CustomSubscribers)):
        return _unique(spec.users)

    return []


async def load_directory() -> List[DirectoryEntry]:
    """Snapshot of the employee directory"""
    return await Employee.find_all().project(DirectoryEntry).to_list()
