#!/usr/bin/env python3
"""
Command line entry point for vinyl_catalog.

Modes (pick one):
  --analyze-pending        AI analysis of every pending/failed record
  --enhance-incomplete     re-analyze records missing a price estimate
  --rectify SRC --corners  perspective-correct a cover (file or record ID)
  --discogs-enrich ID      fill label/catalog no./year/genre/tracks from Discogs
  --export PATH            CSV (semicolon, Excel friendly) or .json export
  --import-csv PATH        upsert records from a CSV export
  --test-connection        check the configured AI provider and key
"""

import argparse

from config import load_settings, require_envs
from models import parse_corners
from workflows import (
    analyze_pending_workflow, enhance_incomplete_workflow, rectify_workflow,
    discogs_enrich_workflow, export_workflow, import_csv_workflow, check_connection_workflow
)

MODE_FLAGS = ("analyze_pending", "enhance_incomplete", "rectify", "discogs_enrich",
              "export", "import_csv", "test_connection")


def parse_display_scale(text):
    """One ratio, or "sx,sy" for separate horizontal and vertical ratios."""
    parts = [p for p in text.replace(" ", "").split(",") if p]
    if len(parts) == 1:
        return float(parts[0])
    if len(parts) == 2:
        return (float(parts[0]), float(parts[1]))
    raise argparse.ArgumentTypeError("display scale must be one number or two separated by a comma")


def build_parser():
    parser = argparse.ArgumentParser(description='Catalog vinyl records: AI cover analysis, perspective correction, Discogs enrichment')
    parser.add_argument('--analyze-pending', action='store_true',
                        help='Analyze every record that is pending or failed, with rate limit backoff.')
    parser.add_argument('--enhance-incomplete', action='store_true',
                        help='Re-analyze analyzed records that have no price estimate.')
    parser.add_argument('--rectify', type=str, default=None, metavar='IMAGE_OR_ITEM_ID',
                        help='Perspective-correct a local image file, or the cover attached to a record ID.')
    parser.add_argument('--corners', type=str, default=None,
                        help='Cover corners for --rectify as "x1,y1,x2,y2,x3,y3,x4,y4" (TL, TR, BR, BL).')
    parser.add_argument('--display-scale', type=parse_display_scale, default=1.0,
                        help='Natural/display size ratio of the corner coordinates, e.g. "2" or "2.1,2.0".')
    parser.add_argument('--output', type=str, default=None,
                        help='Where to write the rectified JPEG.')
    parser.add_argument('--discogs-enrich', type=str, default=None, metavar='ITEM_ID',
                        help='Fill label, catalog number, year, genre and tracks of a record from Discogs.')
    parser.add_argument('--barcode', type=str, default=None,
                        help='Barcode to search first with --discogs-enrich.')
    parser.add_argument('--export', type=str, default=None, metavar='PATH',
                        help='Export the catalog to CSV, or to JSON when PATH ends with .json.')
    parser.add_argument('--import-csv', type=str, default=None, metavar='PATH',
                        help='Import records from a CSV file (update by ID or artist+title, else create).')
    parser.add_argument('--test-connection', action='store_true',
                        help='Check the configured AI provider and API key.')
    return parser


def main(argv=None):
    parser = build_parser()
    args = parser.parse_args(argv)

    # Validate flag combinations
    flags_set = sum(1 for name in MODE_FLAGS if getattr(args, name))
    if flags_set > 1:
        raise SystemExit("Cannot use multiple mode flags together. Choose one: --analyze-pending, --enhance-incomplete, "
                         "--rectify, --discogs-enrich, --export, --import-csv, or --test-connection")
    if flags_set == 0:
        parser.print_help()
        return 0

    settings = load_settings()
    ai_key_env = "OPENAI_API_KEY" if settings.ai.provider == "openai" else "GEMINI_API_KEY"

    if args.test_connection:
        require_envs([ai_key_env])
        return 0 if check_connection_workflow(settings) else 1

    if args.rectify:
        if not args.corners:
            raise SystemExit("--rectify needs --corners x1,y1,x2,y2,x3,y3,x4,y4")
        try:
            corners = parse_corners(args.corners)
        except ValueError as e:
            raise SystemExit(f"Invalid --corners: {e}")
        print("Running in rectify mode...")
        rectify_workflow(args.rectify, corners, settings, display_scale=args.display_scale, output=args.output)
        return 0

    if args.analyze_pending:
        require_envs([ai_key_env])
        print("Running in analyze-pending mode...")
        analyze_pending_workflow(settings)
    elif args.enhance_incomplete:
        require_envs([ai_key_env])
        print("Running in enhance-incomplete mode...")
        enhance_incomplete_workflow(settings)
    elif args.discogs_enrich:
        print("Running in discogs-enrich mode...")
        discogs_enrich_workflow(args.discogs_enrich, settings, barcode=args.barcode)
    elif args.export:
        export_workflow(args.export, settings)
    elif args.import_csv:
        import_csv_workflow(args.import_csv, settings)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
