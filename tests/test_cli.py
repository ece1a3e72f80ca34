from typer.testing import CliRunner

from vault_agents.cli import app


def test_cli_ingest_inbox_and_review(tmp_path, monkeypatch):
    monkeypatch.setenv("VAULT_AGENTS_DATABASE__URL", f"sqlite:///{tmp_path / 'cli.db'}")
    note = tmp_path / "note.md"
    note.write_text("# Note\r\n\r\n\r\nSome body text\r\n", encoding="utf-8")
    runner = CliRunner()

    first = runner.invoke(app, ["ingest", str(note)])
    second = runner.invoke(app, ["ingest", str(note), "--title", "Again"])
    assert first.exit_code == 0 and "created" in first.output
    assert second.exit_code == 0 and "duplicate" in second.output

    inbox = runner.invoke(app, ["inbox", "--day", "2026-10-18"])
    assert inbox.exit_code == 0
    assert "proposed=0" in inbox.output

    assert runner.invoke(app, ["approve", "99"]).exit_code == 1
    assert runner.invoke(app, ["trace", "nope"]).exit_code == 1


def test_cli_watchlist_and_topics(tmp_path, monkeypatch):
    monkeypatch.setenv("VAULT_AGENTS_DATABASE__URL", f"sqlite:///{tmp_path / 'cli.db'}")
    runner = CliRunner()

    added = runner.invoke(app, ["watch-add", "https://www.example.com/blog/", "--kind", "blog", "--interval", "6"])
    assert added.exit_code == 0
    assert "https://www.example.com/blog every 6h" in added.output

    listed = runner.invoke(app, ["watch-list"])
    assert "last checked never" in listed.output

    topic = runner.invoke(app, ["topic-add", "Rust", "Learn async rust", "--focus-tag", "rust"])
    assert topic.exit_code == 0 and "Rust" in topic.output
