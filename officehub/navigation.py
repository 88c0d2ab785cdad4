"""Dashboard navigation tree with the roles allowed to see each entry."""

from __future__ import annotations

from typing import Iterable, Optional, Tuple

from .models import MenuItem, Role

_ALL = frozenset({Role.USER, Role.ADMIN})
_ADMIN = frozenset({Role.ADMIN})

USER_MANAGEMENT_TITLE = "사용자 관리"

DEFAULT_MENU: Tuple[MenuItem, ...] = (
    MenuItem("대시보드", "/", _ALL),
    MenuItem(
        "근태관리",
        "/attendance",
        _ALL,
        (
            MenuItem("출퇴근 체크", "/attendance/check", _ALL),
            MenuItem("근태 현황", "/attendance/status", _ALL),
            MenuItem("휴가 신청", "/attendance/leave", _ALL),
            MenuItem("근태 리포트", "/attendance/report", _ADMIN),
        ),
    ),
    MenuItem(
        "재고관리",
        "/inventory",
        _ADMIN,
        (
            MenuItem("재고 현황", "/inventory/status", _ADMIN),
            MenuItem("입출고 관리", "/inventory/inout", _ADMIN),
            MenuItem("발주 관리", "/inventory/order", _ADMIN),
            MenuItem("재고 리포트", "/inventory/report", _ADMIN),
        ),
    ),
    MenuItem("리포트", "/reports", _ADMIN),
    MenuItem(
        "설정",
        "/settings",
        _ADMIN,
        (
            MenuItem("회사 정보", "/settings/company", _ADMIN),
            MenuItem(USER_MANAGEMENT_TITLE, "/settings/users", _ADMIN),
            MenuItem("시스템 설정", "/settings/system", _ADMIN),
        ),
    ),
)


def iter_titles(items: Iterable[MenuItem]) -> Iterable[str]:
    """Yield every title in the tree, depth first."""

    for item in items:
        yield item.title
        yield from iter_titles(item.sub_items)


def find_parent(items: Iterable[MenuItem], path: str) -> Optional[MenuItem]:
    """Return the entry whose sub-items contain ``path`` (used to auto-expand)."""

    for item in items:
        if any(child.path == path for child in item.sub_items):
            return item
    return None


__all__ = ["DEFAULT_MENU", "USER_MANAGEMENT_TITLE", "find_parent", "iter_titles"]
