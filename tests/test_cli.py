from __future__ import annotations

import json
from pathlib import Path
from types import SimpleNamespace

import pytest

from repoflow import __version__, cli, service
from repoflow.cmdutil import resolve_actor, sort_entities, with_iso_timestamps
from repoflow.service import Workflow
from repoflow.ui import resolve_output_mode

from conftest import FakeWorkingTree


@pytest.fixture
def state_dir(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    state = tmp_path / "state"
    monkeypatch.setenv("REPOFLOW_STATE_DIR", str(state))
    monkeypatch.setenv("REPOFLOW_USER", "alice")
    monkeypatch.setenv("REPOFLOW_OUTPUT", "plain")
    return state


@pytest.fixture
def fake_git(monkeypatch: pytest.MonkeyPatch) -> FakeWorkingTree:
    tree = FakeWorkingTree()
    monkeypatch.setattr(service, "GitWorkingTree", lambda path, **_: tree)
    return tree


@pytest.fixture
def demo(state_dir: Path, tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> str:
    cli.main(["repo", "add", "demo", str(tmp_path / "demo")])
    capsys.readouterr()
    return "demo"


def _run(argv: list[str], capsys: pytest.CaptureFixture[str]) -> tuple[int, str, str]:
    code = 0
    try:
        cli.main(argv)
    except SystemExit as exc:
        code = int(exc.code or 0)
    captured = capsys.readouterr()
    return code, captured.out, captured.err


def test_main_without_group_prints_usage(capsys: pytest.CaptureFixture[str]) -> None:
    code, out, _ = _run([], capsys)
    assert code == 2
    assert "usage: repoflow <group> <command>" in out


def test_main_version(capsys: pytest.CaptureFixture[str]) -> None:
    code, out, _ = _run(["--version"], capsys)
    assert code == 0
    assert out.strip() == f"repoflow {__version__}"


def test_unknown_group_exits_2(capsys: pytest.CaptureFixture[str]) -> None:
    code, _, err = _run(["wiki", "list"], capsys)
    assert code == 2
    assert "unknown group 'wiki'" in err


def test_repo_add_and_list(
    state_dir: Path, tmp_path: Path, capsys: pytest.CaptureFixture[str]
) -> None:
    code, out, _ = _run(["repo", "list"], capsys)
    assert (code, out.strip()) == (0, "No repositories found")

    path = (tmp_path / "Tools").resolve()
    _, out, _ = _run(["repo", "add", "Tools.git", str(path)], capsys)
    assert out.strip() == f"Registered repository tools at {path}"

    _, out, _ = _run(["repo", "list"], capsys)
    assert out.strip() == f"tools\t{path}"

    code, _, err = _run(["repo", "add", "tools", str(path)], capsys)
    assert code == 1
    assert "error: repository already exists" in err


def test_repo_list_rich_output(
    state_dir: Path, tmp_path: Path, capsys: pytest.CaptureFixture[str]
) -> None:
    _, out, _ = _run(["repo", "list", "--output", "rich"], capsys)
    assert "Repositories" in out
    assert "(no repositories)" in out

    _run(["repo", "add", "tools", str(tmp_path / "tools")], capsys)
    code, out, _ = _run(["repo", "list", "--output", "rich"], capsys)

    assert code == 0
    assert "NAME" in out and "CREATED" in out and "PATH" in out
    assert "tools" in out
    assert out.index("NAME") < out.index("CREATED") < out.index("PATH")


def test_issue_workflow_plain_output(
    demo: str, capsys: pytest.CaptureFixture[str]
) -> None:
    _, out, _ = _run(["issue", "create", demo, "Fix bug", "-d", "It breaks"], capsys)
    assert out.strip() == "Created issue #1"

    _, out, _ = _run(["issue", "list", demo], capsys)
    assert out.strip() == "#1: Fix bug [open]"

    _, out, _ = _run(["issue", "close", demo, "1", "--as", "bob"], capsys)
    assert out.strip() == "Closed issue #1"

    code, _, err = _run(["issue", "close", demo, "1"], capsys)
    assert code == 1
    assert "error: cannot close issue #1: state is closed, expected open" in err

    _, out, _ = _run(["issue", "list", demo, "--state", "open"], capsys)
    assert out.strip() == "No issues found"

    _, out, _ = _run(["issue", "show", demo, "1"], capsys)
    assert "Title: Fix bug" in out
    assert "closed: " in out and "by bob" in out

    _, out, _ = _run(["issue", "reopen", demo, "1"], capsys)
    assert out.strip() == "Reopened issue #1"


def test_issue_dependencies_from_cli(
    demo: str, capsys: pytest.CaptureFixture[str]
) -> None:
    for title in ("Parent", "Child"):
        _run(["issue", "create", demo, title], capsys)

    _, out, _ = _run(["issue", "add-dependency", demo, "1", "2"], capsys)
    assert out.strip() == "Added dependency: issue #1 now depends on issue #2"

    _, out, _ = _run(["issue", "has-dependency", demo, "1", "2"], capsys)
    assert out.strip() == "yes"
    _, out, _ = _run(["issue", "has-dependency", demo, "2", "1"], capsys)
    assert out.strip() == "no"

    code, _, err = _run(["issue", "add-dependency", demo, "1", "2"], capsys)
    assert code == 1
    assert "dependency already exists" in err

    _, out, _ = _run(["issue", "show", demo, "1", "--json"], capsys)
    payload = json.loads(out)
    assert [row["id"] for row in payload["depends_on"]] == [2]
    assert payload["blocked_by"] == []
    assert payload["state"] == "open"
    assert payload["author_id"] == "alice"
    assert payload["created_at_iso"].endswith("Z")

    _, out, _ = _run(["issue", "dependents", demo, "2"], capsys)
    assert out.strip() == "#1: Parent [open]"


def test_remove_dependency_reports_missing_edge(
    demo: str, capsys: pytest.CaptureFixture[str]
) -> None:
    for title in ("Parent", "Child"):
        _run(["issue", "create", demo, title], capsys)
    _run(["issue", "add-dependency", demo, "1", "2"], capsys)

    code, out, _ = _run(["issue", "remove-dependency", demo, "1", "2"], capsys)
    assert code == 0
    assert out.strip() == "Removed dependency: issue #1 no longer depends on issue #2"

    code, out, _ = _run(["issue", "remove-dependency", demo, "1", "2"], capsys)
    assert code == 0
    assert out.strip() == (
        "No dependency to remove: issue #1 does not depend on issue #2"
    )

    _, out, _ = _run(["issue", "remove-dependency", demo, "1", "2", "--json"], capsys)
    assert json.loads(out)["removed"] is False


def test_delete_requires_confirmation(
    demo: str, capsys: pytest.CaptureFixture[str]
) -> None:
    _run(["issue", "create", demo, "Temp"], capsys)

    code, _, err = _run(["issue", "delete", demo, "1"], capsys)
    assert code == 1
    assert "refusing to delete without --yes" in err

    _, out, _ = _run(["issue", "delete", demo, "1", "--yes"], capsys)
    assert out.strip() == "Deleted issue #1"
    code, _, err = _run(["issue", "show", demo, "1"], capsys)
    assert code == 1
    assert "issue not found: #1" in err


def test_merge_request_workflow(
    demo: str, fake_git: FakeWorkingTree, capsys: pytest.CaptureFixture[str]
) -> None:
    _, out, _ = _run(["mr", "create", demo, "feature", "main", "Ship it"], capsys)
    assert out.strip() == "Created merge request !1"

    _, out, _ = _run(["mr", "list", demo], capsys)
    assert out.strip() == "!1: Ship it (feature -> main) [open]"

    _, out, _ = _run(["mr", "merge", demo, "1", "--as", "bob", "--json"], capsys)
    payload = json.loads(out)
    assert payload["state"] == "merged"
    assert payload["merged_by"] == "bob"
    assert "merged_at_iso" in payload
    assert fake_git.merges()[0][1:] == (
        "feature",
        "Merge branch 'feature' into 'main'\n\nMerge request !1 merged by bob",
        "bob",
    )

    code, _, err = _run(["merge-request", "reopen", demo, "1"], capsys)
    assert code == 1
    assert "state is merged" in err


def test_merge_request_create_rejects_missing_branch(
    demo: str, fake_git: FakeWorkingTree, capsys: pytest.CaptureFixture[str]
) -> None:
    code, _, err = _run(["mr", "create", demo, "ghost", "main", "Nope"], capsys)
    assert code == 1
    assert "source branch 'ghost' does not exist" in err


def test_unrecorded_merge_exits_3_with_hint(
    demo: str, fake_git: FakeWorkingTree, capsys: pytest.CaptureFixture[str]
) -> None:
    _run(["mr", "create", demo, "feature", "main", "Ship it"], capsys)
    fake_git.on_merge = lambda: Workflow.from_workdir().close_merge_request(
        demo, 1, "carol"
    )

    code, _, err = _run(["mr", "merge", demo, "1"], capsys)

    assert code == 3
    assert "was merged into 'main' but the state was not recorded" in err
    assert "hint: the merge commit exists" in err


def test_failed_merge_exits_1(
    demo: str, fake_git: FakeWorkingTree, capsys: pytest.CaptureFixture[str]
) -> None:
    _run(["mr", "create", demo, "feature", "main", "Ship it"], capsys)
    fake_git.merge_error = "failed to merge branch 'feature': CONFLICT"

    code, _, err = _run(["mr", "merge", demo, "1"], capsys)

    assert code == 1
    assert "CONFLICT" in err
    _, out, _ = _run(["mr", "list", demo, "--state", "open"], capsys)
    assert "[open]" in out


def test_resolve_actor_precedence(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("REPOFLOW_USER", "env-user")
    assert resolve_actor(" explicit ") == "explicit"
    assert resolve_actor(None) == "env-user"


def test_resolve_output_mode(monkeypatch: pytest.MonkeyPatch) -> None:
    assert resolve_output_mode(is_tty=False) == "plain"
    assert resolve_output_mode(is_tty=True) == "rich"
    monkeypatch.setenv("REPOFLOW_OUTPUT", "rich")
    assert resolve_output_mode(is_tty=False) == "rich"
    assert resolve_output_mode("plain", is_tty=True) == "plain"
    monkeypatch.setenv("REPOFLOW_OUTPUT", "fancy")
    with pytest.raises(ValueError):
        resolve_output_mode(is_tty=True)


def test_sort_entities_by_update_time() -> None:
    rows = [
        SimpleNamespace(id=3, updated_at=10),
        SimpleNamespace(id=2, updated_at=30),
        SimpleNamespace(id=1, updated_at=20),
    ]

    assert [r.id for r in sort_entities(rows, "updated")] == [2, 1, 3]
    assert [r.id for r in sort_entities(rows, "created")] == [3, 2, 1]


def test_with_iso_timestamps_adds_companions() -> None:
    payload = with_iso_timestamps(
        {"id": 1, "created_at": 0, "closed_at": None, "items": [{"merged_at": 1000}]}
    )

    assert payload["created_at_iso"] == "1970-01-01T00:00:00Z"
    assert "closed_at_iso" not in payload
    assert payload["items"][0]["merged_at_iso"] == "1970-01-01T00:00:01Z"
