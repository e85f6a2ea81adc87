"""
Tests for run_config.py and the CLI entry point.
"""

import json

import pytest

import sitetour.__main__ as cli
from sitetour.browser import BrowserConfig
from sitetour.demo_plan import PlanOptions
from sitetour.errors import StartUrlUnreachable
from sitetour.oracle import OpenAIRankingOracle
from sitetour.run_config import TourRunConfig
from sitetour.site_explorer import ExplorerConfig, SiteExplorer


class TestTourRunConfig:

    def test_defaults(self):
        cfg = TourRunConfig()
        assert cfg.max_pages == 8
        assert cfg.max_depth == 2
        assert cfg.mode == "graph"
        assert cfg.duration_s == 60

    def test_from_cli_args(self, monkeypatch):
        monkeypatch.delenv("SITETOUR_AI_MODEL", raising=False)
        args = cli.build_parser().parse_args([
            "https://example.com", "--pages", "4", "--depth", "1", "--timeout", "5",
            "--strategy", "breadth-first", "--headed", "--duration", "45",
            "--plan-pages", "3", "--style", "casual", "--no-narrative",
        ])
        cfg = TourRunConfig.from_cli_args(args)
        assert cfg.max_pages == 4
        assert cfg.max_depth == 1
        assert cfg.timeout_seconds == 5
        assert cfg.strategy == "breadth-first"
        assert not cfg.headless
        assert cfg.duration_s == 45
        assert cfg.plan_pages == 3
        assert cfg.style == "casual"
        assert not cfg.include_narrative
        assert not cfg.use_ai

    def test_ai_guided_turns_on_ai(self, monkeypatch):
        monkeypatch.setenv("SITETOUR_AI_MODEL", "gpt-test")
        args = cli.build_parser().parse_args(["example.com", "--strategy", "ai-guided"])
        cfg = TourRunConfig.from_cli_args(args)
        assert cfg.use_ai
        assert cfg.ai_model == "gpt-test"

    def test_to_explorer_config(self):
        ec = TourRunConfig(max_pages=5, timeout_seconds=7, mode="legacy").to_explorer_config()
        assert isinstance(ec, ExplorerConfig)
        assert ec.max_pages == 5
        assert ec.timeout_ms == 7000
        assert ec.mode == "legacy"
        assert ec.safety_limit == 10

    def test_to_browser_config(self):
        bc = TourRunConfig(headless=False).to_browser_config()
        assert isinstance(bc, BrowserConfig)
        assert not bc.headless

    def test_to_plan_options(self):
        opts = TourRunConfig(duration_s=30, plan_pages=2, style="energetic").to_plan_options()
        assert isinstance(opts, PlanOptions)
        assert opts.total_ms == 30000
        assert opts.max_pages == 2

    def test_build_oracle(self, monkeypatch):
        assert TourRunConfig().build_oracle() is None
        monkeypatch.delenv("OPENAI_API_KEY", raising=False)
        assert TourRunConfig(use_ai=True).build_oracle() is None
        monkeypatch.setenv("OPENAI_API_KEY", "sk-test")
        assert isinstance(TourRunConfig(use_ai=True).build_oracle(), OpenAIRankingOracle)


class TestCli:

    def test_unreachable_start_exits_non_zero(self, monkeypatch, tmp_path):
        async def failing(url, **kwargs):
            raise StartUrlUnreachable(url, "net::ERR_NAME_NOT_RESOLVED")

        monkeypatch.setattr(cli, "explore_site", failing)
        code = cli.run_cli_with_args(["nowhere.test", "--output-json", str(tmp_path / "out.json")])
        assert code != 0
        assert not (tmp_path / "out.json").exists()

    def test_full_run_writes_outputs(self, monkeypatch, tmp_path, make_browser, marketing_site, capsys):
        async def fake_explore(url, config=None, browser_config=None, oracle=None, progress_callback=None):
            config.settle_timeout_ms = 20
            config.poll_interval_ms = 5
            explorer = SiteExplorer(make_browser(marketing_site), config, oracle)
            explorer.set_progress_callback(progress_callback)
            return await explorer.explore(url)

        monkeypatch.setattr(cli, "explore_site", fake_explore)
        out_json = tmp_path / "tour.json"
        out_mmd = tmp_path / "graph.mmd"
        code = cli.run_cli_with_args([
            "site.test", "--pages", "3", "--depth", "1", "--duration", "40",
            "--output-json", str(out_json), "--output-mermaid", str(out_mmd),
        ])

        assert code == 0
        data = json.loads(out_json.read_text(encoding="utf-8"))
        assert data["exploration"]["start_url"] == "https://site.test"
        assert len(data["exploration"]["graph"]["nodes"]) == 3
        assert data["plan"]["total_duration"] == 40000
        assert data["plan"]["pages"][0]["title"] == "Acme"
        assert out_mmd.read_text(encoding="utf-8").startswith("graph TD")
        assert "EXPLORATION COMPLETE" in capsys.readouterr().out

    def test_rejects_unknown_mode(self):
        with pytest.raises(SystemExit):
            cli.build_parser().parse_args(["example.com", "--mode", "turbo"])
