#!/usr/bin/env python3
"""
CLI entry points for the Lookbook generation pipeline.

- lookbook-extract   Step 1: palette from a product photo
- lookbook-prompt    Step 2: prompt from a palette JSON
- lookbook-generate  Full run: rate check, credits, prompt, provider job, color QA
"""

import argparse
import asyncio
import json
import time
from datetime import datetime
from pathlib import Path

from .config import load_config
from .pipeline import GenerationPipeline, GenerationRequest
from .steps.step1_color_extract import main as step1_main
from .steps.step2_prompt_builder import BACKDROPS, CATEGORIES, PERSONAS
from .steps.step2_prompt_builder import main as step2_main
from .steps.step3_generation_client import JobKind
from .utils.credits import HttpCreditsService, InMemoryCredits
from .utils.logging_utils import setup_logging


def lookbook_extract():
    """CLI entry point for Step 1: Color Extraction."""
    step1_main()


def lookbook_prompt():
    """CLI entry point for Step 2: Prompt Building."""
    step2_main()


def lookbook_generate():
    """Run the complete generation for one product photo."""
    parser = argparse.ArgumentParser(
        description="Lookbook generation pipeline",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
    # Studio shot of a dress on a persona
    lookbook-generate --input dress.jpg --user 42 --persona asma --backdrop studio_white

    # Force the garment color
    lookbook-generate --input shoes.jpg --user 42 --category shoes --color "#1E2A5A"

    # Animate a finished image
    lookbook-generate --video --reference-url https://cdn.example/result.png --user 42
        """
    )

    parser.add_argument("--input", help="Product image path (required for images)")
    parser.add_argument("--user", required=True, help="User id for rate limits and credits")
    parser.add_argument("--category", default="clothes", choices=CATEGORIES)
    parser.add_argument("--persona", choices=sorted(PERSONAS), help="Model persona id")
    parser.add_argument("--backdrop", default="studio_white", choices=sorted(BACKDROPS))
    parser.add_argument("--color", help="Manual color override (hex)")
    parser.add_argument("--lang", default=None, choices=["en", "tn"])

    parser.add_argument("--video", action="store_true", help="Animate --reference-url instead of rendering a still")
    parser.add_argument("--reference-url", help="Finished image URL to animate")
    parser.add_argument("--motion", help="Motion preset id for video")

    parser.add_argument("--config", type=Path, help="Pipeline configuration YAML file")
    parser.add_argument("--credits", type=int, default=None,
                        help="Local credit balance to use instead of the credits service")
    parser.add_argument("--out", default="./lookbook_output", help="Output directory for the run summary")
    parser.add_argument("--debug", action="store_true", help="Enable debug logging")

    args = parser.parse_args()
    if not args.video and not args.input:
        parser.error("--input is required unless --video is given")

    config = load_config(args.config)
    logger = setup_logging("DEBUG" if args.debug else config.log_level, config.log_dir)

    if args.credits is not None or not config.credits.base_url:
        credits = InMemoryCredits({args.user: args.credits if args.credits is not None else 1})
    else:
        credits = HttpCreditsService(config.credits)

    request = GenerationRequest(
        user_id=args.user,
        image_bytes=Path(args.input).read_bytes() if args.input else b"",
        category=args.category,
        persona=args.persona,
        backdrop=args.backdrop,
        color_override=args.color,
        lang=args.lang or config.default_lang,
        kind=JobKind.VIDEO if args.video else JobKind.IMAGE,
        filename=Path(args.input).name if args.input else "product.png",
        reference_url=args.reference_url,
        motion_style=args.motion,
    )

    async def _run():
        pipeline = GenerationPipeline.from_config(config, credits=credits)
        try:
            if request.kind is JobKind.VIDEO:
                return await pipeline.run_video(request)
            return await pipeline.run(request)
        finally:
            await pipeline.aclose()
            if isinstance(credits, HttpCreditsService):
                await credits.aclose()

    start = time.time()
    logger.info(f"🚀 Starting {request.kind.value} generation for user {args.user}")
    outcome = asyncio.run(_run())
    total_time = time.time() - start

    out_dir = Path(args.out)
    out_dir.mkdir(parents=True, exist_ok=True)
    summary = {
        "request_id": outcome.request_id,
        "status": outcome.status,
        "message": outcome.message,
        "result_url": outcome.result_url,
        "download_url": outcome.job.download_url if outcome.job else None,
        "palette": [s.to_dict() for s in outcome.palette],
        "prompt": outcome.prompt,
        "warnings": outcome.warnings,
        "delta_e": outcome.delta_e,
        "error_kind": outcome.error_kind.value if outcome.error_kind else None,
        "processing_time_seconds": round(total_time, 2),
        "timestamp": datetime.now().isoformat(),
    }
    summary_path = out_dir / f"{outcome.request_id}.json"
    with open(summary_path, "w") as f:
        json.dump(summary, f, indent=2)

    print("\n" + "=" * 60)
    if outcome.succeeded:
        print("🎉 GENERATION COMPLETE!")
        print(f"🔗 Result: {outcome.result_url}")
        for warning in outcome.warnings:
            print(f"⚠️  {warning}")
    else:
        print(f"❌ {outcome.status.upper()}: {outcome.message}")
    print(f"⏱️  Total Time: {total_time:.1f}s")
    print(f"📋 Summary: {summary_path}")
    print("=" * 60)

    if not outcome.succeeded:
        raise SystemExit(1)


if __name__ == "__main__":
    lookbook_generate()
