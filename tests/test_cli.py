import base64
import json

import pytest

from appsweep.cli import build_parser, main
from appsweep.transport import encode

from conftest import BUNDLE_ID


@pytest.fixture
def run_cli(tmp_path, capsys):
    def _run(*argv):
        code = main(["--log-file", str(tmp_path / "logs" / "actions.log"), *argv])
        captured = capsys.readouterr()
        raw = captured.out if captured.out.strip() else captured.err[captured.err.index("{\n"):]
        payload = json.loads(raw)
        return code, payload, captured.err

    return _run


def test_encode_then_decode_through_the_cli(run_cli):
    code, payload, _ = run_cli("encode", "/a/one", "/b/two words")
    token = payload["result"]["token"]

    code2, decoded, _ = run_cli("decode", "--token", token, "--label", "cli")

    assert code == code2 == 0
    assert decoded["result"]["paths"] == ["/a/one", "/b/two words"]


def test_invalid_token_is_an_error_exit(run_cli):
    code, payload, _ = run_cli("decode", "--token", "%%%", "--label", "bad")

    assert code == 1
    assert payload["status"] == "error"
    assert payload["error_type"] == "DecodeError"


def test_relative_path_in_token_names_the_label(run_cli):
    token = base64.b64encode(b"/ok\nrelative").decode()

    code, payload, _ = run_cli("decode", "--token", token, "--label", "step-2")

    assert code == 1
    assert payload["error_type"] == "ValidationError"
    assert "step-2" in payload["error"]


def test_preview_lists_leftovers_and_emits_token(run_cli, home, leftovers):
    code, payload, err = run_cli(
        "preview", "--home", str(home), "--bundle-id", BUNDLE_ID, "--name", "TestApp", "--emit-token"
    )

    assert code == 0
    item = payload["result"]["applications"][0]
    assert sorted(a["absolute_path"] for a in item["artifacts"]) == sorted(str(p) for p in leftovers)
    assert item["token"]
    assert "5 related files" in err
    assert all(p.exists() for p in leftovers)


def test_uninstall_defaults_to_dry_run(run_cli, home, leftovers, make_bundle):
    bundle = make_bundle()

    code, payload, err = run_cli("uninstall", "--home", str(home), "--app", str(bundle))

    assert code == 0
    assert payload["result"]["mode"] == "dry_run"
    assert payload["result"]["files_removed"] == len(leftovers) + 1
    assert bundle.exists() and all(p.exists() for p in leftovers)
    assert "Would remove" in err


def test_uninstall_without_selection_fails(run_cli, home):
    code, payload, _ = run_cli("uninstall", "--home", str(home))

    assert code == 1
    assert payload["error_type"] == "NoApplicationsSelected"


def test_execute_removes_exactly_the_token_paths(run_cli, home, leftovers, tmp_path):
    token = encode([str(p) for p in leftovers[:3]])
    out_file = tmp_path / "result.json"

    code, payload, _ = run_cli(
        "--output", str(out_file),
        "execute", "--home", str(home), "--token", token, "--execute", "--yes", "--no-kill", "--no-elevate",
    )

    assert code == 0
    assert payload["status"] == "ok"
    assert all(not p.exists() for p in leftovers[:3])
    assert all(p.exists() for p in leftovers[3:])
    assert json.loads(out_file.read_text(encoding="utf-8"))["files_removed"] == 3


def test_orphans_command(run_cli, home, make_bundle, tmp_path):
    make_bundle()
    (home / "Library" / "Caches" / "com.vendor.Gone").mkdir(parents=True)
    (home / "Library" / "Caches" / BUNDLE_ID).mkdir(parents=True)

    code, payload, _ = run_cli("orphans", "--home", str(home), "--apps-dir", str(tmp_path / "Applications"))

    assert code == 0
    assert payload["result"]["installed"] == 1
    assert [o["probable_id"] for o in payload["result"]["orphans"]] == ["com.vendor.Gone"]


def test_parser_requires_a_command():
    with pytest.raises(SystemExit):
        build_parser().parse_args([])
