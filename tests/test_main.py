import pytest
import yaml

import main
from conftest import SEARCH_URL, FakeRenderer, ScriptedFetcher, detail_page, detail_url, list_page
from errors import BootstrapFailure
from harvester import Harvester


@pytest.fixture
def config_file(tmp_path):
    def _write(data):
        path = tmp_path / "settings.yaml"
        path.write_text(yaml.safe_dump(data), encoding="utf-8")
        return str(path)

    return _write


def _settings(tmp_path, **search):
    return {
        "search": {"start_urls": [SEARCH_URL], "results_wanted": 5, "max_pages": 1, **search},
        "bootstrap": {"max_attempts": 1, "retry_backoff_seconds": 0},
        "fetch": {"concurrency": 1, "min_concurrency": 1, "delay_min": 0, "delay_max": 0,
                  "backoff_base_seconds": 0},
        "output": {
            "jsonl_file": str(tmp_path / "out" / "jobs.jsonl"),
            "md_file": str(tmp_path / "out" / "jobs.md"),
            "metrics_file": str(tmp_path / "out" / "metrics.json"),
        },
        "logging": {"log_file": str(tmp_path / "logs" / "run.log")},
    }


def test_parse_args_builds_overrides():
    args = main.parse_args(["--keyword", "rust", "--max-pages", "3", "--no-details",
                            "--start-url", "https://a/x", "--start-url", "https://b/y"])
    overrides = main.build_overrides(args)
    assert overrides["search.keyword"] == "rust"
    assert overrides["search.max_pages"] == 3
    assert overrides["search.collect_details"] is False
    assert overrides["search.start_urls"] == ["https://a/x", "https://b/y"]
    assert overrides["search.location"] is None


def test_missing_config_exits_with_error(tmp_path):
    assert main.main(["--config", str(tmp_path / "missing.yaml")]) == 1


def test_invalid_config_exits_with_error(config_file, tmp_path):
    settings = _settings(tmp_path)
    settings["fetch"]["delay_min"] = 5
    assert main.main(["--config", config_file(settings)]) == 1


def test_unusable_seed_exits_with_error(config_file, tmp_path):
    path = config_file(_settings(tmp_path))
    assert main.main(["--config", path, "--start-url", "not-a-url"]) == 1


def test_successful_run(config_file, tmp_path, monkeypatch, capsys):
    job = detail_url("cli")
    fetcher = ScriptedFetcher({
        SEARCH_URL: [(200, list_page([job]))],
        job: [(200, detail_page("CLI Job"))],
    })

    def fake_harvester(config):
        return Harvester(config, renderer=FakeRenderer(), fetcher=fetcher)

    monkeypatch.setattr(main, "Harvester", fake_harvester)

    assert main.main(["--config", config_file(_settings(tmp_path))]) == 0
    assert "1 jobs saved" in capsys.readouterr().out
    assert (tmp_path / "out" / "jobs.jsonl").exists()


def test_bootstrap_failure_exits_with_error(config_file, tmp_path, monkeypatch):
    class FailingHarvester:
        def __init__(self, config):
            pass

        def run(self):
            raise BootstrapFailure("no cookies after navigation", url=SEARCH_URL)

    monkeypatch.setattr(main, "Harvester", FailingHarvester)
    assert main.main(["--config", config_file(_settings(tmp_path))]) == 1
