from __future__ import annotations

import subprocess
import sys
from pathlib import Path

SCRIPT_PATH = Path(__file__).resolve().parents[2] / "scripts" / "seed_packages.py"


def _run_script(*args: str) -> str:
    completed = subprocess.run(
        [sys.executable, str(SCRIPT_PATH), *args],
        check=True,
        capture_output=True,
        text=True,
    )
    return completed.stdout


def test_seed_script_upserts_default_catalog() -> None:
    output = _run_script()

    assert "insert into packages (id, name, price, duration_days, is_active, priority, display_order)" in output
    assert "('basic', 'Gói Cơ Bản', 50000, 30, true, 'normal', 2)" in output
    assert "('vip', 'Gói VIP', 300000, 30, true, 'vip', 4)" in output
    assert "on conflict (id) do update" in output


def test_seed_script_can_restrict_packages() -> None:
    output = _run_script("--only", "free")

    assert "('free', 'Gói Miễn Phí', 0, 7, true, 'normal', 1)" in output
    assert "'premium'" not in output
