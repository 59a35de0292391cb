"""
Tests for the command-line interface
"""
import json

from schemamap.cli import main, print_summary
from schemamap.pipeline import ScanStore


def test_list_and_results(tmp_path, capsys):
    store = ScanStore(tmp_path)
    store.save("scan1", {"scan_id": "scan1", "status": "completed"}, "https://example.com/")

    assert main(["--scans-dir", str(tmp_path), "list"]) == 0
    out = capsys.readouterr().out
    assert "scan1" in out and "https://example.com/" in out

    assert main(["--scans-dir", str(tmp_path), "results", "scan1"]) == 0
    assert json.loads(capsys.readouterr().out)["scan_id"] == "scan1"


def test_results_written_to_file(tmp_path):
    ScanStore(tmp_path).save("scan1", {"scan_id": "scan1"}, "https://example.com/")
    out_file = tmp_path / "out" / "report.json"

    assert main(["--scans-dir", str(tmp_path), "results", "scan1", "--out", str(out_file), "--pretty"]) == 0
    assert json.loads(out_file.read_text(encoding="utf-8")) == {"scan_id": "scan1"}


def test_unknown_scan(tmp_path, capsys):
    assert main(["--scans-dir", str(tmp_path), "results", "missing"]) == 1
    assert "Scan not found: missing" in capsys.readouterr().err


def test_invalid_url(tmp_path, capsys):
    assert main(["--scans-dir", str(tmp_path), "analyze", "not-a-url"]) == 2
    assert "url:" in capsys.readouterr().err


def test_print_summary(capsys):
    print_summary({
        "summary": {"pages_scanned": 2, "pages_failed": 1, "total_schemas": 3, "consistency_score": 75},
        "session": {"pages": [{"url": "https://example.com/x", "error": "HTTP 500"}]},
        "recommendations": [{"level": "high", "type": "Missing @id", "message": "Add ids."}],
    })
    err = capsys.readouterr().err
    assert "SCAN SUMMARY" in err
    assert "Consistency score:      75/100" in err
    assert "https://example.com/x: HTTP 500" in err
    assert "[high] Missing @id: Add ids." in err
