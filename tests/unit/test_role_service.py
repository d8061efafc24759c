from __future__ import annotations

import pytest

from bookadmin.services import role_service
from bookadmin.services.role_service import KnownRole, LegacyRole, OtherRole


@pytest.mark.unit
@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        ("super_admin", "super_admin"),
        ("admin", "admin"),
        ("content_admin", "admin"),
        ("community_admin", "admin"),
        ("analyst", "admin"),
        (" admin ", "admin"),
        ("author", None),
        ("reader", None),
        ("reader(user)", None),
        ("SUPER_ADMIN", None),
        ("", None),
        ("   ", None),
        (None, None),
    ],
)
def test_normalize_admin_role(raw: str | None, expected: str | None) -> None:
    assert role_service.normalize_admin_role(raw) == expected


@pytest.mark.unit
def test_classify_role_variants() -> None:
    assert role_service.classify_role("super_admin") == KnownRole(role="super_admin")
    assert role_service.classify_role("analyst") == LegacyRole(raw="analyst")
    assert role_service.classify_role("author") == OtherRole(raw="author")
    assert role_service.classify_role(" ") is None


@pytest.mark.unit
def test_build_actor_requires_admin_role_and_uid() -> None:
    actor = role_service.build_actor(" u-1 ", " a@example.com ", "community_admin")

    assert actor is not None
    assert actor.uid == "u-1"
    assert actor.email == "a@example.com"
    assert actor.role == "admin"
    assert role_service.build_actor("u-1", "a@example.com", "reader") is None
    assert role_service.build_actor("", "a@example.com", "super_admin") is None
    assert role_service.build_actor(None, None, None) is None
