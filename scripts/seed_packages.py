#!/usr/bin/env python3
"""Emit idempotent SQL upserts for the listing package catalog."""

from __future__ import annotations

import argparse
from dataclasses import dataclass


@dataclass(frozen=True, slots=True)
class PackageSeed:
    id: str
    name: str
    price: int
    duration_days: int
    priority: str
    display_order: int
    is_active: bool = True


DEFAULT_PACKAGES: tuple[PackageSeed, ...] = (
    PackageSeed("free", "Gói Miễn Phí", 0, 7, "normal", 1),
    PackageSeed("basic", "Gói Cơ Bản", 50000, 30, "normal", 2),
    PackageSeed("premium", "Gói Cao Cấp", 150000, 30, "premium", 3),
    PackageSeed("vip", "Gói VIP", 300000, 30, "vip", 4),
)


def _quote_sql(value: str) -> str:
    escaped = value.replace("'", "''")
    return f"'{escaped}'"


def render_sql(packages: tuple[PackageSeed, ...] = DEFAULT_PACKAGES, *, only: set[str] | None = None) -> str:
    selected = [package for package in packages if only is None or package.id in only]
    if not selected:
        raise ValueError("no packages selected")

    values = ",\n".join(
        "  ({id}, {name}, {price}, {duration}, {active}, {priority}, {order})".format(
            id=_quote_sql(package.id),
            name=_quote_sql(package.name),
            price=package.price,
            duration=package.duration_days,
            active="true" if package.is_active else "false",
            priority=_quote_sql(package.priority),
            order=package.display_order,
        )
        for package in selected
    )
    return f"""-- Listing package catalog seed
insert into packages (id, name, price, duration_days, is_active, priority, display_order)
values
{values}
on conflict (id) do update
set
  name = excluded.name,
  price = excluded.price,
  duration_days = excluded.duration_days,
  is_active = excluded.is_active,
  priority = excluded.priority,
  display_order = excluded.display_order,
  updated_at = now();
"""


def main() -> None:
    parser = argparse.ArgumentParser(description="Emit SQL that seeds the listing package catalog.")
    parser.add_argument(
        "--only",
        action="append",
        choices=[package.id for package in DEFAULT_PACKAGES],
        help="Restrict the seed to the given package id (repeatable)",
    )
    args = parser.parse_args()
    print(render_sql(only=set(args.only) if args.only else None))


if __name__ == "__main__":
    main()
