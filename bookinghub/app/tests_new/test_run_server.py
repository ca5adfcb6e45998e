from bookinghub import config
from bookinghub.app import run_server


def test_cli_dispatches_subcommands(monkeypatch):
    calls = []

    async def fake_reap():
        calls.append("reap")
        return 0

    async def fake_init(force):
        calls.append(("init-db", force))
        return 0

    monkeypatch.setattr(run_server, "_reap_once", fake_reap)
    monkeypatch.setattr(run_server, "_init_db", fake_init)
    monkeypatch.setattr(run_server, "configure_logging", lambda level=None: calls.append(("log", level)))

    assert run_server.cli(["--log-level", "debug", "reap"]) == 0
    assert run_server.cli(["init-db", "--force"]) == 0
    assert calls == [("log", "debug"), "reap", ("log", None), ("init-db", True)]


def test_cli_serves_by_default(monkeypatch):
    seen = {}

    async def fake_main(host=None, port=None):
        seen.update(host=host, port=port)

    monkeypatch.setattr(run_server, "main", fake_main)
    monkeypatch.setattr(run_server, "configure_logging", lambda level=None: None)

    assert run_server.cli(["serve", "--port", "9001"]) == 0
    assert seen == {"host": None, "port": 9001}


async def test_bootstrap_skipped_without_flag(monkeypatch):
    async def boom(**kwargs):
        raise AssertionError("init_db must not run")

    monkeypatch.delenv("RUN_BOOTSTRAP", raising=False)
    monkeypatch.setattr(run_server, "init_db", boom)
    await run_server.maybe_create_schema()


def test_settings_accessors(monkeypatch):
    monkeypatch.setitem(config.SETTINGS, "hold_ttl_minutes", "20")
    assert config.get_hold_minutes() == 20
    monkeypatch.setitem(config.SETTINGS, "hold_ttl_minutes", "soon")
    assert config.get_hold_minutes() == config.HOLD_TTL_MINUTES
    monkeypatch.setitem(config.SETTINGS, "hold_ttl_minutes", 0)
    assert config.get_hold_minutes() == 1

    monkeypatch.setitem(config.SETTINGS, "cors_origins", "https://a.example, https://b.example ,")
    assert config.get_cors_origins() == ["https://a.example", "https://b.example"]

    monkeypatch.setitem(config.SETTINGS, "cron_secret", None)
    assert config.get_cron_secret() == ""
    assert config.get_setting("missing", "fallback") == "fallback"
