#!/usr/bin/env python3
"""
sitetour CLI
============
Explore a website and write a time-boxed demo plan.

All configuration flows through ``TourRunConfig``.

Run with: python -m sitetour https://example.com [options]
"""

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path
from urllib.parse import urlparse

from dotenv import load_dotenv

from .demo_plan import DemoPlan
from .errors import StartUrlUnreachable
from .run_config import TourRunConfig, _DEFAULTS
from .site_explorer import explore_site

# .env next to the project first, then CWD
_env_path = Path(__file__).resolve().parent.parent / '.env'
if _env_path.exists():
    load_dotenv(_env_path)
else:
    load_dotenv()

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s | %(levelname)s | %(message)s',
    datefmt='%H:%M:%S'
)
logger = logging.getLogger(__name__)


def _base_name_from_url(url: str) -> str:
    host = urlparse(url).netloc.lower().removeprefix('www.')
    return host.replace('.', '_').replace(':', '_') or 'site'


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog='sitetour',
        description='Explore a website and plan a time-boxed demo walkthrough.',
    )
    parser.add_argument('url', help='Start URL')

    explore = parser.add_argument_group('Exploration')
    explore.add_argument('--pages', type=int, default=_DEFAULTS['max_pages'],
                         help=f"Maximum states to discover (default: {_DEFAULTS['max_pages']})")
    explore.add_argument('--depth', type=int, default=_DEFAULTS['max_depth'],
                         help=f"Maximum click depth (default: {_DEFAULTS['max_depth']})")
    explore.add_argument('--timeout', type=int, default=_DEFAULTS['timeout_seconds'],
                         help=f"Navigation timeout in seconds (default: {_DEFAULTS['timeout_seconds']})")
    explore.add_argument('--mode', choices=['graph', 'legacy'], default=_DEFAULTS['mode'],
                         help='graph: state graph with backtracking; legacy: home + top links')
    explore.add_argument('--strategy', default=_DEFAULTS['strategy'],
                         choices=['breadth-first', 'depth-first', 'priority', 'ai-guided'],
                         help=f"Link ranking (default: {_DEFAULTS['strategy']})")
    explore.add_argument('--focus', default=_DEFAULTS['focus'],
                         choices=['features', 'pricing', 'technical', 'overview'],
                         help=f"Ranking focus (default: {_DEFAULTS['focus']})")
    explore.add_argument('--headed', action='store_true', help='Show the browser window')
    explore.add_argument('--ai', action='store_true',
                         help='Rank links with the OpenAI oracle (needs OPENAI_API_KEY)')

    plan = parser.add_argument_group('Demo plan')
    plan.add_argument('--duration', type=float, default=_DEFAULTS['duration_s'],
                      help=f"Demo length in seconds (default: {_DEFAULTS['duration_s']})")
    plan.add_argument('--plan-pages', type=int, default=_DEFAULTS['plan_pages'],
                      help=f"Pages in the demo (default: {_DEFAULTS['plan_pages']})")
    plan.add_argument('--style', choices=['professional', 'casual', 'energetic'],
                      default=_DEFAULTS['style'], help='Narrative style')
    plan.add_argument('--no-narrative', action='store_true', help='Skip narrative text')

    output = parser.add_argument_group('Output')
    output.add_argument('--output-json', type=str, help='Exploration + plan JSON path')
    output.add_argument('--output-mermaid', type=str, help='Navigation graph Mermaid path')
    output.add_argument('--verbose', '-v', action='store_true', help='Debug logging')
    return parser


def print_summary(result, plan: DemoPlan) -> None:
    """Print exploration and plan summary."""
    summary = result.graph.get_summary()
    monitor = result.stats.get('monitor', {})
    print("\n" + "=" * 65)
    print("EXPLORATION COMPLETE")
    print("=" * 65)
    print(f"  States discovered:   {summary['total_nodes']}")
    print(f"  Edges:               {summary['total_edges']}")
    print(f"  Max depth:           {summary['max_depth']}")
    print(f"  SPA:                 {result.is_spa} ({result.framework.name})")
    if monitor:
        print(f"  Links followed:      {monitor.get('steps', 0)}")
        print(f"  Failed:              {monitor.get('failed', 0)}")
    if result.errors:
        print(f"  Errors:              {len(result.errors)}")
    print(f"  Total time:          {result.stats.get('elapsed_time', 0):.1f}s")
    print("-" * 65)
    print(f"  DEMO PLAN ({plan.total_duration / 1000:.1f}s, drift {plan.drift}ms)")
    for page in plan.pages:
        print(
            f"  {page.start_time / 1000:6.1f}s  {page.duration / 1000:5.1f}s  "
            f"[{page.transition_method:<8}] {page.title[:40]}"
        )
    print("=" * 65)


def _export(result, plan: DemoPlan, cfg: TourRunConfig) -> None:
    exported = []
    if cfg.output_json:
        payload = {"exploration": result.to_dict(), "plan": plan.to_dict()}
        Path(cfg.output_json).write_text(json.dumps(payload, indent=2, ensure_ascii=False, default=str), encoding='utf-8')
        exported.append(cfg.output_json)
    if cfg.output_mermaid:
        Path(cfg.output_mermaid).write_text(result.graph.to_mermaid(show_depth=True), encoding='utf-8')
        exported.append(cfg.output_mermaid)
    if exported:
        print("\n" + "-" * 40)
        for path in exported:
            print(f"  Exported: {path}")
        print("-" * 40)


async def _run(url: str, cfg: TourRunConfig):
    def progress_cb(node, graph):
        print(f"[State {graph.size}/{cfg.max_pages}] d{node.depth} {(node.title or node.url)[:70]}")

    result = await explore_site(
        url,
        config=cfg.to_explorer_config(),
        browser_config=cfg.to_browser_config(),
        oracle=cfg.build_oracle(),
        progress_callback=progress_cb,
    )
    plan = DemoPlan.create(result.graph, None, cfg.to_plan_options())
    return result, plan


def run_cli_with_args(argv=None) -> int:
    args = build_parser().parse_args(argv)
    if args.verbose:
        logging.getLogger().setLevel(logging.DEBUG)

    url = args.url
    if not url.startswith(('http://', 'https://')):
        url = 'https://' + url

    cfg = TourRunConfig.from_cli_args(args)
    if not (cfg.output_json or cfg.output_mermaid):
        cfg.output_json = f"{_base_name_from_url(url)}_tour.json"
    cfg.log_summary(url)

    try:
        result, plan = asyncio.run(_run(url, cfg))
    except StartUrlUnreachable as e:
        logger.error(f"{e}")
        return 2
    except KeyboardInterrupt:
        logger.warning("Interrupted")
        return 130

    try:
        _export(result, plan, cfg)
    except OSError as exc:
        logger.error(f"Export failed: {exc}", exc_info=True)
    print_summary(result, plan)
    return 0


def main() -> None:
    sys.exit(run_cli_with_args())


if __name__ == '__main__':
    main()
