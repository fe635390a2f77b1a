"""
Shared fixtures: a small usage-log tree and a fixed clock.
"""

import json
import os
import tempfile
from datetime import date, datetime, timezone
from pathlib import Path

import pytest

# Fixed "now" for every time-dependent test; a Wednesday
NOW = datetime(2024, 3, 13, 12, 0, tzinfo=timezone.utc)
TODAY = date(2024, 3, 13)


def record(ts, inp=None, out=None, cost=None, kind="assistant", **extra):
    data = {"timestamp": ts, "type": kind}
    if inp is not None or out is not None:
        data["message"] = {"usage": {"input_tokens": inp, "output_tokens": out}}
    if cost is not None:
        data["costUSD"] = cost
    data.update(extra)
    return json.dumps(data)


LOG_TREE = {
    "alpha/session-1.jsonl": [
        record("2024-03-13T01:00:00Z", 100, 200, cost=0.01),
        record("2024-03-13T01:30:00Z", kind="user"),
        record("2024-03-12T23:30:00Z", 50, 50, cost=0.002),
        "not-json",
        json.dumps({"type": "summary", "summary": "no timestamp"}),
        record("2024-03-05T10:00:00Z", 10, 10),
    ],
    "alpha/session-2.jsonl": [
        record("2023-03-20T08:00:00Z", 1, 1, cost=0.0001),
        record("2024-02-29T12:00:00Z", 7, 3),
    ],
    "beta/session.jsonl": [
        record("2024-03-11T05:00:00Z", 5, 5, cost=0.0003),
        record("2024-03-12T05:00:00Z", 6, 6),
        record("2024-01-15T00:00:00Z", 20, 0, cost=-1),
        record("bad", 9, 9),
        record("2024-03-10T18:00:00Z", 2.5, True, cost=True),
        "[1, 2, 3]",
        '{"timestamp": "2024-03-13T02:00:00Z", "message": {"usage": {"input_tokens": 10, "output_tokens": 20}}, "costUSD": NaN}',
    ],
}


def write_tree(root: Path, tree=None) -> Path:
    """Write a {relative path: lines} mapping below root."""
    for relative, lines in (tree or LOG_TREE).items():
        path = root / relative
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text("\n".join(lines) + "\n", encoding="utf-8")
    return root


@pytest.fixture
def usage_root():
    """A scan root holding the standard log tree."""
    with tempfile.TemporaryDirectory() as temp_dir:
        yield write_tree(Path(temp_dir) / "projects")


@pytest.fixture
def fixed_clock():
    return lambda: NOW
