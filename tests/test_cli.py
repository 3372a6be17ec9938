import asyncio
import json

import pytest

from engram import cli
from engram.cli import build_parser
from engram.memory import build_service


def test_parser_search_options():
    args = build_parser().parse_args(
        ["-p", "demo", "search", "token refresh", "--type", "bugfix", "-n", "5", "--since", "10"]
    )
    assert (args.project, args.command, args.query) == ("demo", "search", "token refresh")
    assert (args.type, args.limit, args.since, args.until) == ("bugfix", 5, 10, None)


@pytest.mark.parametrize("argv", [
    ["search", "q", "--limit", "0"],
    ["search", "q", "--type", "musing"],
    ["timeline"],
    ["timeline", "--id", "1", "--query", "x"],
    ["timeline", "--id", "1", "--before", "-1"],
])
def test_parser_rejects_bad_arguments(argv):
    with pytest.raises(SystemExit):
        build_parser().parse_args(argv)


def _seed(db_path, make_observation):
    async def _run():
        memory = build_service(db_path=db_path, project="demo")
        ids = []
        for i, title in enumerate(["parser rewrite", "parser bugfix", "docs"]):
            ids.append(await memory.add_observation(
                make_observation(project="demo", title=title, created_at_epoch=1_700_000_000_000 + i)
            ))
        await memory.close()
        return ids

    return asyncio.run(_run())


def _main_json(argv, capsys):
    cli.main(argv)
    return json.loads(capsys.readouterr().out)


def test_cli_end_to_end(tmp_path, make_observation, capsys):
    db_path = str(tmp_path / "engram.db")
    ids = _seed(db_path, make_observation)
    base = ["--db", db_path, "-p", "demo"]

    status = _main_json(base + ["status"], capsys)
    assert status["mode"] == "keyword-only"

    found = _main_json(base + ["search", "parser"], capsys)
    assert found["mode"] == "keyword-only"
    assert sorted(r["observation_id"] for r in found["results"]) == ids[:2]

    window = _main_json(base + ["timeline", "--id", str(ids[1]), "--before", "1", "--after", "1"], capsys)
    assert window["anchor"]["title"] == "parser bugfix"
    assert [i["title"] for i in window["before"]] == ["parser rewrite"]
    assert [i["title"] for i in window["after"]] == ["docs"]

    missing = _main_json(base + ["timeline", "--query", "nothingmatches"], capsys)
    assert missing["found"] is False

    assert _main_json(base + ["sync"], capsys) == {"indexed": 0, "deleted": 0}
    assert _main_json(base + ["reindex"], capsys) == {"project": "demo", "observations": 3, "indexed": 0}
