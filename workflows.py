"""
Main processing workflows for vinyl_catalog.
Handles batch AI analysis, cover rectification, Discogs enrichment, and
CSV/JSON export and import.
"""

import os
import time
from pathlib import Path

import pandas as pd

from batch_scheduler import BatchScheduler, SchedulerState, Watchdog
from catalog_store import PocketBaseStore
from config import Settings, load_settings
from discogs_api import lookup_release, release_to_fields
from errors import AnalysisError
from field_protection import protect_for_item
from models import COST_FIELD, parse_locked_fields, select_incomplete
from rectifier import rectify
from vision_api import VisionAnalyzer

# Column order of the spreadsheet export
CSV_COLUMNS = [
    "ID", "Title", "Artist", "Year", "Genre", "Group Members", "Condition", "Label",
    "Catalog No.", "Edition / Variant", "Average Cost", "Price Locked", "Tracks Validated",
    "Locked Fields", "Notes", "Tracks",
]


def open_store(settings: Settings) -> PocketBaseStore:
    store = PocketBaseStore(settings.pocketbase)
    store.authenticate()
    return store


# ---- batch analysis ----

def print_summary(job):
    if job is None:
        return
    print(f"Batch summary → analyzed: {job.count('success')}, failed: {job.count('failed')}, "
          f"skipped: {job.count('skipped')}")
    for o in job.outcomes:
        if o.result != "success":
            print(f"  {o.item_id} {o.title}: {o.result} ({o.message})")


def run_batch(scheduler: BatchScheduler, items=None, poll_interval=1.0):
    """
    Run a batch on the scheduler's worker thread, with the watchdog beside it,
    and wait for it here. Ctrl+C stops the run cooperatively. Returns the last
    finished job.
    """
    finished = []

    def on_complete(job):
        finished.append(job)
        print_summary(job)

    scheduler.on_complete = on_complete
    watchdog = Watchdog(scheduler)
    watchdog.start()
    try:
        worker = scheduler.start(items)
        try:
            # A watchdog restart continues in a thread of its own
            while worker.is_alive() or scheduler.state is SchedulerState.RUNNING:
                time.sleep(poll_interval)
        except KeyboardInterrupt:
            print("Stopping batch run...")
            scheduler.stop()
            while scheduler.state is SchedulerState.RUNNING:
                time.sleep(poll_interval)
    finally:
        watchdog.stop()
    return finished[-1] if finished else None


def analyze_pending_workflow(settings: Settings = None, store=None, analyzer=None):
    """Analyze every item that is pending or failed."""
    settings = settings or load_settings()
    store = store or open_store(settings)
    analyzer = analyzer or VisionAnalyzer(settings.ai)
    scheduler = BatchScheduler(store, analyzer, settings.scheduler)

    items = scheduler.pending_items()
    if not items:
        print("No pending items to analyze.")
        return None
    mode = "turbo" if scheduler.turbo else "safe"
    print(f"Found {len(items)} pending items ({settings.ai.provider}, {mode} pacing)")
    return run_batch(scheduler, items)


def enhance_incomplete_workflow(settings: Settings = None, store=None, analyzer=None):
    """Re-analyze analyzed items that are still missing a price estimate."""
    settings = settings or load_settings()
    store = store or open_store(settings)
    analyzer = analyzer or VisionAnalyzer(settings.ai)
    scheduler = BatchScheduler(store, analyzer, settings.scheduler)

    items = select_incomplete(store.list())
    if not items:
        print("No incomplete items found.")
        return None
    print(f"Enhancing {len(items)} items missing a price estimate...")
    return run_batch(scheduler, items)


# ---- rectification ----

def rectify_workflow(source, corners, settings: Settings = None, store=None, display_scale=1.0, output=None):
    """
    Rectify a local image file, or the cover attached to a catalog item.

    A local file is written next to the source (or to output). For an item
    the corrected cover replaces its attachment.
    """
    settings = settings or load_settings()

    if os.path.exists(str(source)):
        data = rectify(str(source), corners, display_scale, settings.rectifier)
        src = Path(source)
        out = Path(output) if output else src.with_name(f"{src.stem}_rectified.jpg")
        out.write_bytes(data)
        print(f"Wrote rectified cover to {out} ({len(data)} bytes)")
        return out

    store = store or open_store(settings)
    item = store.get(str(source))
    image = store.download_image(item)
    data = rectify(image, corners, display_scale, settings.rectifier)
    if output:
        Path(output).write_bytes(data)
    updated = store.upload_image(item.id, data, filename=f"{item.id}_rectified.jpg")
    print(f"Uploaded rectified cover for {item.display_name} ({len(data)} bytes)")
    return updated


# ---- Discogs ----

def discogs_enrich_workflow(item_id, settings: Settings = None, store=None, barcode=None):
    """Fill label, catalog number, year, genre and tracks from Discogs, respecting locks."""
    settings = settings or load_settings()
    store = store or open_store(settings)
    item = store.get(item_id)

    catno = item.catalog_number if item.catalog_number not in ("", "Unknown") else None
    release, reason = lookup_release(artist=item.artist or None, title=item.title or None,
                                     catno=catno, barcode=barcode, settings=settings.discogs,
                                     context=item.display_name)
    if not release:
        print(f"No Discogs match for {item.display_name}: {reason}")
        return None

    fields = release_to_fields(release)
    update = protect_for_item(fields, item)
    skipped = sorted(set(fields) - set(update))
    if skipped:
        print(f"Locked fields left untouched: {', '.join(skipped)}")
    if not update:
        print(f"Nothing to update for {item.display_name}")
        return item

    print(f"Matched Discogs release {release.get('id')} ({reason}); updating {', '.join(sorted(update))}")
    return store.update(item.id, update)


# ---- export / import ----

def _yes_no(flag) -> str:
    return "yes" if flag else "no"

def items_to_frame(items) -> pd.DataFrame:
    rows = []
    for i in items:
        rows.append({
            "ID": i.id,
            "Title": i.title,
            "Artist": i.artist,
            "Year": i.year,
            "Genre": i.genre,
            "Group Members": i.group_members,
            "Condition": i.condition,
            "Label": i.label,
            "Catalog No.": i.catalog_number,
            "Edition / Variant": i.edition,
            "Average Cost": i.average_cost,
            "Price Locked": _yes_no(i.is_price_locked),
            "Tracks Validated": _yes_no(i.is_tracks_validated),
            "Locked Fields": ", ".join(sorted(i.locked_fields)),
            "Notes": i.notes,
            "Tracks": (i.tracks or "").replace("\n", ", "),
        })
    return pd.DataFrame(rows, columns=CSV_COLUMNS)

def export_csv(items, path):
    """Semicolon separated UTF-8 with BOM, so spreadsheet apps open it directly."""
    df = items_to_frame(items)
    df.to_csv(path, sep=";", index=False, encoding="utf-8-sig")
    print(f"Wrote {len(df)} rows to {path}")
    return len(df)

def export_json(records, path):
    """Full record list as JSON."""
    df = pd.DataFrame(records)
    df.to_json(path, orient="records", force_ascii=False, indent=2)
    print(f"Wrote {len(df)} records to {path}")
    return len(df)

def export_workflow(path, settings: Settings = None, store=None):
    settings = settings or load_settings()
    store = store or open_store(settings)
    if str(path).lower().endswith(".json"):
        return export_json([i.to_record() for i in store.list()], path)
    return export_csv(store.list(), path)


def _first(row, *names) -> str:
    for name in names:
        value = row.get(name)
        if value is not None and str(value).strip() != "":
            return str(value).strip()
    return ""

def row_to_fields(row) -> dict:
    """Map one spreadsheet row (exported headers or raw field names) to catalog fields."""
    return {
        "title": _first(row, "Title", "title"),
        "artist": _first(row, "Artist", "artist"),
        "year": _first(row, "Year", "year"),
        "genre": _first(row, "Genre", "genre"),
        "group_members": _first(row, "Group Members", "group_members"),
        "condition": _first(row, "Condition", "condition"),
        "label": _first(row, "Label", "label"),
        "catalog_number": _first(row, "Catalog No.", "catalog_number"),
        "edition": _first(row, "Edition / Variant", "edition"),
        COST_FIELD: _first(row, "Average Cost", "average_cost", "avarege_cost"),
        "is_price_locked": _first(row, "Price Locked").lower() == "yes",
        "is_tracks_validated": _first(row, "Tracks Validated").lower() == "yes",
        "locked_fields": sorted(parse_locked_fields(_first(row, "Locked Fields"))),
        "notes": _first(row, "Notes", "notes"),
        "tracks": _first(row, "Tracks", "tracks").replace(", ", "\n"),
    }

def _detect_separator(path) -> str:
    with open(path, encoding="utf-8-sig") as f:
        header = f.readline()
    return ";" if ";" in header else ","

def read_import_rows(path):
    df = pd.read_csv(path, sep=_detect_separator(path), dtype=str, keep_default_na=False,
                     encoding="utf-8-sig", skip_blank_lines=True)
    df.columns = [c.strip() for c in df.columns]
    return df.to_dict(orient="records")

def import_rows(rows, existing, store):
    """
    Upsert rows into the store. A row with an ID updates that record; one
    without is matched by artist + title (case-insensitive). Unmatched rows
    with both artist and title are created, the rest skipped.
    """
    by_id = {i.id: i for i in existing}
    stats = {"added": 0, "updated": 0, "skipped": 0}

    for row in rows:
        fields = row_to_fields(row)
        row_id = _first(row, "ID", "id")
        if row_id:
            match = by_id.get(row_id)
        else:
            artist, title = fields["artist"].lower(), fields["title"].lower()
            match = next((i for i in existing
                          if i.artist.lower() == artist and i.title.lower() == title), None)

        if match:
            store.update(match.id, fields)
            stats["updated"] += 1
        elif fields["artist"] and fields["title"]:
            store.create(fields)
            stats["added"] += 1
        else:
            stats["skipped"] += 1
    return stats

def import_csv_workflow(path, settings: Settings = None, store=None):
    settings = settings or load_settings()
    store = store or open_store(settings)
    rows = read_import_rows(path)
    print(f"Loaded {len(rows)} rows from {path}")
    stats = import_rows(rows, store.list(), store)
    print(f"Import summary → added: {stats['added']}, updated: {stats['updated']}, skipped: {stats['skipped']}")
    return stats


# ---- connection test ----

def check_connection_workflow(settings: Settings = None, analyzer=None):
    settings = settings or load_settings()
    analyzer = analyzer or VisionAnalyzer(settings.ai)
    try:
        analyzer.test_connection()
    except AnalysisError as e:
        print(f"Connection to {settings.ai.provider} failed: {e}")
        return False
    print(f"Connection to {settings.ai.provider} OK")
    return True
