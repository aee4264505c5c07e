"""End-to-end run of main.run against the in-memory platform."""

from __future__ import annotations

from pathlib import Path
from unittest.mock import patch

import pytest

import main
from bench_runner import BenchmarkRunner
from errors import ParseError, PlatformError
from models import Operation, Paper, Review, SourceData


def _source() -> SourceData:
    return SourceData(
        papers=[
            Paper(paper_id=1, title="First", accepted=True, authors=(0, 1)),
            Paper(paper_id=2, title="Second", accepted=False, authors=(2, 3)),
        ],
        authors=["a@x", "b@x", "c@x", "d@x"],
        reviews=[Review(paper_id=1 + i % 2, rating=i + 1, confidence=2) for i in range(6)],
    )


@pytest.fixture
def recipe_files(tmp_path: Path) -> dict[str, str]:
    files = {}
    for name, text in [
        ("schema", "CREATE TABLE Paper (id int);"),
        ("queries", "ReviewList: SELECT * FROM Paper;"),
        ("policies", "[]"),
        ("late_queries", "GroupContext: SELECT 1;"),
    ]:
        path = tmp_path / f"{name}.sql"
        path.write_text(text, encoding="utf-8")
        files[name] = str(path)
    files["memory_csv"] = str(tmp_path / "memory.csv")
    files["graph"] = str(tmp_path / "graph.dot")
    return files


def _args(files: dict[str, str], *extra: str):
    return main.parse_args([
        "-s", files["schema"],
        "-q", files["queries"],
        "-p", files["policies"],
        "--memory-csv", files["memory_csv"],
        "--settle-seconds", "0",
        "--seed", "7",
        *extra,
    ])


def test_parse_args_defaults() -> None:
    args = main.parse_args([])
    assert args.reuse == "no"
    assert args.materialization == "full"
    assert args.source == "https://openreview.net/group?id=ICLR.cc/2018/Conference"
    assert args.npapers == 10000
    assert args.logged_in == 1.0
    assert args.iter == 1
    assert args.graph is None
    assert args.verbose == 0


def test_parse_args_rejects_bad_fraction() -> None:
    with pytest.raises(SystemExit):
        main.parse_args(["-l", "1.5"])


def test_parse_args_counts_verbosity() -> None:
    assert main.parse_args(["-vv"]).verbose == 2


def test_run_drives_the_platform_in_order(recipe_files, fake_platform, capsys) -> None:
    args = _args(recipe_files, "-l", "0.5", "--reuse", "full", "-m", "partial", "-g", recipe_files["graph"])

    with patch("main.fetch_source", return_value=_source()):
        stats = main.run(args, platform=fake_platform)

    kinds = [kind for kind, _ in fake_platform.calls]
    assert kinds[:4] == ["configure", "install_recipe", "set_security_config", "extend_recipe"]
    assert fake_platform.calls[0] == ("configure", ("full", "partial"))
    assert kinds.index("graphviz") < kinds.index("create_universe")
    assert kinds.count("statistics") == 2

    assert fake_platform.universes == [{"id": 1}, {"id": 2}]
    assert set(fake_platform.views) == {"ReviewList_u1", "ReviewList_u2"}
    assert stats.cold[Operation.READ_PAPER_LIST].count() == 2
    assert stats.warm[Operation.READ_PAPER_LIST].count() == 2
    assert len(fake_platform.rows["Review"]) == 6

    assert Path(recipe_files["graph"]).read_text(encoding="utf-8") == "digraph {}"
    out = capsys.readouterr().out
    assert "# nauthors: 4" in out
    assert "# nreviewers: 2" in out
    assert "# logged-in users: 2" in out
    assert "# op\tphase\tpct\ttime" in out


def test_run_installs_late_queries_after_population(recipe_files, fake_platform) -> None:
    args = _args(recipe_files, "--late-queries", recipe_files["late_queries"])

    with patch("main.fetch_source", return_value=_source()), \
         patch("main.wait_for_convergence") as mock_wait:
        main.run(args, platform=fake_platform)

    extends = [payload for kind, payload in fake_platform.calls if kind == "extend_recipe"]
    assert extends == ["ReviewList: SELECT * FROM Paper;", "GroupContext: SELECT 1;"]
    assert mock_wait.call_count == 2


def test_iterations_repeat_only_the_warm_replay(recipe_files, fake_platform) -> None:
    args = _args(recipe_files, "--iter", "3")
    lookups_before_warm: list[dict[str, int]] = []
    real_run_warm = BenchmarkRunner.run_warm

    def run_warm(self, passes=1):
        lookups_before_warm.append({name: len(v.lookups) for name, v in fake_platform.views.items()})
        return real_run_warm(self, passes)

    with patch("main.fetch_source", return_value=_source()), \
         patch.object(BenchmarkRunner, "run_warm", run_warm):
        stats = main.run(args, platform=fake_platform)

    # Every cold sample was the first lookup on its view.
    views = {f"ReviewList_u{i}" for i in range(1, 5)}
    assert lookups_before_warm == [{name: 1 for name in views}]
    assert stats.cold[Operation.READ_PAPER_LIST].count() == 4
    assert stats.warm[Operation.READ_PAPER_LIST].count() == 12
    assert all(len(fake_platform.views[name].lookups) == 4 for name in views)


def test_run_missing_schema_file_aborts(recipe_files, fake_platform) -> None:
    args = _args(recipe_files)
    args.schema = recipe_files["schema"] + ".missing"

    with patch("main.fetch_source", return_value=_source()):
        with pytest.raises(main.HarnessError, match="schema"):
            main.run(args, platform=fake_platform)


def test_main_exits_nonzero_on_harness_error(recipe_files) -> None:
    with patch("main.load_dotenv"), \
         patch("main.run", side_effect=ParseError("rating did not start with a number")):
        with pytest.raises(SystemExit) as excinfo:
            main.main(["--settle-seconds", "0"])

    assert excinfo.value.code == 1


def test_platform_failure_during_provisioning_aborts(recipe_files, fake_platform) -> None:
    fake_platform.fail_universe_at = 0
    args = _args(recipe_files)

    with patch("main.fetch_source", return_value=_source()):
        with pytest.raises(PlatformError):
            main.run(args, platform=fake_platform)
