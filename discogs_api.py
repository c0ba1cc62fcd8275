"""
Discogs API client module.
Looks up releases by barcode, catalog number or artist/title and turns a
release into catalog fields (label, catalog number, year, genre, tracks).
"""

import time
from http_client import http_get_with_retry, discogs_headers
from config import DiscogsSettings

DISCOGS_API = "https://api.discogs.com"


def discogs_get_release(release_id: int, settings: DiscogsSettings = None, context=None):
    """Fetch a release and return its data. Returns None on errors."""
    try:
        r = http_get_with_retry(f"{DISCOGS_API}/releases/{release_id}",
                                headers=discogs_headers(settings), timeout=20, tries=6, context=context)
        time.sleep(0.6)  # Rate limiting
        return r.json()
    except Exception as e:
        context_str = f" [{context}]" if context else ""
        print(f"Failed to fetch release {release_id}{context_str}: {e}")
        return None

def validate_release(release_data: dict, format_filter: str = "Vinyl", country_pref: str = ""):
    """
    Check a release against the wanted format and (optional) country.
    Returns tuple (format_ok: bool, country_ok: bool, reason: str).
    With no country preference any country counts as a match.
    """
    if not release_data:
        return (False, False, "No release data")

    wanted = (format_filter or "").strip().lower()
    format_names = [(fmt.get("name") or "").strip() for fmt in release_data.get("formats", [])]
    format_ok = not wanted or any(name.lower() == wanted for name in format_names)
    if not format_ok:
        return (False, False, f"Not {format_filter} (formats: {', '.join(format_names)})")

    label = format_filter or "Any format"
    country = (release_data.get("country") or "").strip()
    if not country_pref:
        return (True, True, f"{label}, {country or 'country not specified'}")
    if country.upper() == country_pref.strip().upper():
        return (True, True, f"{label}, {country}")
    if country:
        return (True, False, f"{label}, {country} (not {country_pref})")
    return (True, False, f"{label}, country not specified")

def discogs_search(artist=None, title=None, catno=None, barcode=None, year=None,
                   settings: DiscogsSettings = None, context=None):
    """
    Discogs release search with the configured format filter and country preference.
    Returns list of results (up to search_page_size) or empty list on errors.
    """
    settings = settings or DiscogsSettings()
    params = {
        "type": "release",
        "per_page": settings.search_page_size,
    }
    if settings.format_filter: params["format"] = settings.format_filter
    if settings.country_pref:  params["country"] = settings.country_pref
    if artist:  params["artist"] = artist
    if title:   params["release_title"] = title
    if catno:   params["catno"] = catno
    if barcode: params["barcode"] = barcode
    if year:    params["year"] = str(year)

    try:
        r = http_get_with_retry(f"{DISCOGS_API}/database/search",
                                params=params, headers=discogs_headers(settings), timeout=20, tries=6, context=context)
        res = r.json().get("results", [])
        time.sleep(0.6)  # Small delay to avoid rate limiting
        return res
    except Exception as e:
        # Log but don't crash; the caller treats it as "no match"
        context_str = f" [{context}]" if context else ""
        print(f"Discogs search failed{context_str}: {e}")
        return []

def release_tracklist(release_data: dict):
    """Tracklist lines like "A1 Title (3:45)". Headings and index tracks are skipped."""
    lines = []
    for track in release_data.get("tracklist", []):
        if track.get("type_") not in (None, "", "track"):
            continue
        title = (track.get("title") or "").strip()
        if not title:
            continue
        pos = (track.get("position") or "").strip()
        dur = (track.get("duration") or "").strip()
        line = f"{pos} {title}" if pos else title
        lines.append(f"{line} ({dur})" if dur else line)
    return lines

def release_to_fields(release_data: dict):
    """Catalog fields filled from a Discogs release. Missing values are left out."""
    fields = {}
    labels = release_data.get("labels") or []
    if labels:
        if labels[0].get("name"):
            fields["label"] = labels[0]["name"].strip()
        if labels[0].get("catno") and labels[0]["catno"].lower() != "none":
            fields["catalog_number"] = labels[0]["catno"].strip()
    if release_data.get("year"):
        fields["year"] = str(release_data["year"])
    genres = (release_data.get("genres") or []) + (release_data.get("styles") or [])
    if genres:
        fields["genre"] = ", ".join(dict.fromkeys(genres))
    tracks = release_tracklist(release_data)
    if tracks:
        fields["tracks"] = "\n".join(tracks)
    return fields

def lookup_release(artist=None, title=None, catno=None, barcode=None,
                   settings: DiscogsSettings = None, context=None):
    """
    Find the best matching release: barcode first, then catalog number,
    then artist/title. Candidates are validated; a full match (format and
    country) wins, otherwise the first format match is kept as fallback.
    Returns (release_data, reason) or (None, reason).
    """
    settings = settings or DiscogsSettings()
    queries = []
    if barcode:
        queries.append({"barcode": barcode})
    if catno:
        queries.append({"catno": catno, "artist": artist})
    if artist or title:
        queries.append({"artist": artist, "title": title})

    fallback = None
    seen = set()
    for q in queries:
        for hit in discogs_search(settings=settings, context=context, **q):
            rid = hit.get("id")
            if not rid or rid in seen:
                continue
            seen.add(rid)
            release_data = discogs_get_release(rid, settings=settings, context=context)
            if not release_data:
                continue
            format_ok, country_ok, reason = validate_release(
                release_data, settings.format_filter, settings.country_pref)
            if format_ok and country_ok:
                return (release_data, reason)
            if format_ok and fallback is None:
                fallback = (release_data, reason)
    if fallback:
        return fallback
    return (None, "No matching release found")
