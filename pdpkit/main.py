"""
Main entry point for pdpkit.

    python -m pdpkit.main classify --url URL --html page.html
    python -m pdpkit.main rewrite --url URL --html page.html [--strategy ID] [--out out.html]
"""

import asyncio
import json
from pathlib import Path

from pdpkit.extractor.signals import get_signal_classifier
from pdpkit.generator_client import GeneratorClient, close_generator_client, get_generator_client
from pdpkit.page.context import DocumentPageContext
from pdpkit.pipeline import TabPipeline, build_router
from pdpkit.strategy.base import StrategyId
from pdpkit.utils.config import ensure_directories, get_settings
from pdpkit.utils.logging import configure_logging, get_logger
from pdpkit.utils.schemas import StrategySettings
from pdpkit.utils.strategy_settings import get_strategy_settings_store

CLI_TAB_ID = 1


def initialize(log_level: str | None = None) -> None:
    """Initialize the application."""
    ensure_directories()

    settings = get_settings()
    configure_logging(
        log_level=log_level or settings.general.log_level,
        json_format=True,
    )

    logger = get_logger(__name__)
    logger.info(
        "pdpkit initializing",
        version=settings.general.version,
        log_level=settings.general.log_level,
    )


def run_classify(url: str, html: str) -> dict:
    """Score a page and return the SignalResult as a dict."""
    result = get_signal_classifier().evaluate(url, html)
    threshold = get_settings().signals.min_score_to_continue
    return {**result.to_dict(), "passes_gate": result.passes_gate(threshold)}


async def run_rewrite(
    url: str,
    html: str,
    strategy: str | None = None,
    offline: bool = False,
) -> tuple[dict, str]:
    """Resolve and apply a plan for a page.

    Args:
        url: Page URL.
        html: Page HTML.
        strategy: Strategy id overriding the configured settings.
        offline: Run without the generator backend.

    Returns:
        (pipeline result dict, patched HTML).
    """
    if strategy is not None:
        pinned = StrategySettings(global_id=StrategyId.parse(strategy).value)

        def settings_accessor() -> StrategySettings:
            return pinned

    else:
        settings_accessor = get_strategy_settings_store()

    generator: GeneratorClient | None = None if offline else get_generator_client()
    context = DocumentPageContext()
    router = build_router(settings_accessor, context, generator=generator)
    pipeline = TabPipeline(router=router, context=context)

    result = await pipeline.process(CLI_TAB_ID, html, url)
    return result.to_dict(), context.html(CLI_TAB_ID)


def main() -> None:
    """Main entry point."""
    import argparse

    parser = argparse.ArgumentParser(description="pdpkit - PDP detection and content patching")
    parser.add_argument(
        "command",
        choices=["classify", "rewrite"],
        help="Command to run",
    )
    parser.add_argument("--url", "-u", type=str, required=True, help="Page URL")
    parser.add_argument("--html", type=Path, required=True, help="HTML file of the page")
    parser.add_argument(
        "--strategy",
        "-s",
        type=str,
        help="Strategy id (heuristics, generator, structured_data, vision)",
    )
    parser.add_argument("--out", "-o", type=Path, help="Write patched HTML here (rewrite)")
    parser.add_argument(
        "--offline",
        action="store_true",
        help="Do not call the generator backend (rewrite)",
    )
    parser.add_argument("--log-level", type=str, help="Override the configured log level")

    args = parser.parse_args()
    initialize(args.log_level)
    html = args.html.read_text(encoding="utf-8")

    if args.command == "classify":
        print(json.dumps(run_classify(args.url, html), ensure_ascii=False, indent=2))
        return

    async def async_main() -> None:
        try:
            result, patched = await run_rewrite(args.url, html, args.strategy, args.offline)
        finally:
            await close_generator_client()

        if args.out is not None:
            args.out.write_text(patched, encoding="utf-8")
            result["out"] = str(args.out)
            print(json.dumps(result, ensure_ascii=False, indent=2))
        else:
            print(patched)

    asyncio.run(async_main())


if __name__ == "__main__":
    main()
