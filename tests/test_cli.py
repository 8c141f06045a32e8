import json

import pytest

from budgetflow.__main__ import main


@pytest.fixture
def cache_file(tmp_path):
    path = tmp_path / "budget_cache.json"
    blob = {
        "港区": {
            "nodes": [{"id": "rev_a", "name": "一般財源"}, {"id": "exp_b", "name": "観光振興費"}],
            "links": [{"source": "rev_a", "target": "exp_b", "value": 250000}],
            "explanation": "港区の観光予算",
            "citations": [],
            "fetchedAt": "2024-05-01T00:00:00Z",
        }
    }
    path.write_text(json.dumps(blob, ensure_ascii=False), encoding="utf-8")
    return str(path)


def test_wards_marks_cached(cache_file, capsys):
    assert main(["--cache", cache_file, "wards"]) == 0
    out = capsys.readouterr().out
    assert "* 港区" in out
    assert "  千代田区" in out


def test_show_prints_flow(cache_file, capsys):
    assert main(["--cache", cache_file, "show", "港区"]) == 0
    out = capsys.readouterr().out
    assert "一般財源 -> 観光振興費: 2.50 億円" in out
    assert "港区の観光予算" in out


def test_show_missing_ward_fails(cache_file, capsys):
    assert main(["--cache", cache_file, "show", "北区"]) == 1


def test_compare_lists_every_ward(cache_file, capsys):
    assert main(["--cache", cache_file, "compare"]) == 0
    out = capsys.readouterr().out
    assert out.startswith("読込済み: 1 / 23")
    assert "港区\t2.50 億円" in out


def test_unknown_ward_is_an_argument_error(cache_file):
    with pytest.raises(SystemExit):
        main(["--cache", cache_file, "show", "横浜市"])
