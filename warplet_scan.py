#!/usr/bin/env python3
"""
warplet_scan.py

Batch Warplet generator, rarity ranker and mint-signature collector.

Overview
--------
For every FID in an input file this tool calls the Warplet API to generate
the metadata (and, when the service embeds one, the image), scores each
result by trait rarity, ranks the FIDs, and optionally requests a mint
signature for all of them or only the rarest ones.

Pipeline
--------
  1) Generate: POST {base}/api/warplet/<fid> for every FID, at most
     --concurrency requests in flight. Failures are retried with capped,
     jittered exponential backoff (forever unless --max-attempts is set).
  2) Rank: score each payload and sort descending (ties keep input order).
  3) Write index.csv with empty signature columns and print the top 10.
  4) Sign: POST {base}/api/warplet/generateSignature/<fid> with
     {"walletAddress": ...} for the selected targets:
       - no wallet          -> nothing is signed, rows marked NO_WALLET
       - --rare-only        -> first --top-k FIDs with score >= --min-score
       - otherwise          -> every FID
  5) Rewrite index.csv with the signature results.

Rarity score
------------
  - payload.rarityScore when it is a number, used verbatim
  - else sum over traits of:
        -ln(percent / 100)   when a percent > 0 is known
        trait rarity         when a numeric rarity/score is known
        0.5                  otherwise
    rounded to 6 decimals.

Traits are read from payload.attributes (or payload.traits). Percent may be
given as percent / percentage / frequency / rarityPercent, either as a
number or as a string such as "12.5%".

Inputs
------
A text file with one FID per line (blank lines ignored). Every option can
also be given through the environment or a .env file:

  FIDS_FILE, OUT_DIR, CONCURRENCY, BASE, WALLET_ADDRESS (or ADDR),
  RARE_ONLY, TOP_K, MIN_SCORE, MAX_ATTEMPTS, HTTP_TIMEOUT, BACKOFF_CAP,
  BACKOFF_MULTIPLIER, USER_AGENT, DRY_RUN

Outputs (in --out-dir)
----------------------
- warplet-<fid>.json : generate response
- warplet-<fid>.png  : decoded generatedImage / imageBase64, if any
- sign-<fid>.json    : signature response
- index.csv          : fid,rarityScore,traits,json,png,signature,sig_error
- job_summary.txt    : human-readable run summary

Requirements
------------
- Python 3.9+
- pip install requests python-dotenv

Example
-------
  RARE_ONLY=1 TOP_K=5 WALLET_ADDRESS=0x... warplet-scan
"""

from __future__ import annotations

import argparse
import asyncio
import base64
import binascii
import csv
import json
import math
import os
import random
import sys
from dataclasses import dataclass, field
from functools import partial
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence, Tuple

import requests
from dotenv import load_dotenv


__version__ = "0.1.0"

DEFAULT_API_URL = "https://www.harmonybot.xyz"
DEFAULT_UA = f"warplet-scan/{__version__}"

INDEX_FILENAME = "index.csv"
JOB_SUMMARY_FILENAME = "job_summary.txt"
INDEX_HEADER = ["fid", "rarityScore", "traits", "json", "png", "signature", "sig_error"]

NO_WALLET = "NO_WALLET"
DRY_RUN = "DRY_RUN"

SUMMARY_DELIMITER = " | "
DEFAULT_TRAIT_WEIGHT = 0.5
LEADERBOARD_SIZE = 10

# Field-name candidates, resolved first-present
TRAIT_LIST_KEYS = ("attributes", "traits")
TRAIT_TYPE_KEYS = ("trait_type", "traitType", "type")
TRAIT_VALUE_KEYS = ("value", "name", "val")
PERCENT_KEYS = ("percent", "percentage", "frequency", "rarityPercent")
RARITY_KEYS = ("rarity", "score")
IMAGE_KEYS = ("generatedImage", "imageBase64")

INITIAL_BACKOFF = 0.010   # seconds
JITTER_LOW = 0.8
JITTER_HIGH = 1.2


# ------------------------ data types ------------------------

@dataclass(frozen=True)
class BackoffPolicy:
    floor: float        # seconds
    cap: float          # seconds
    multiplier: float = 1.5

    def next_delay(self, previous: float) -> float:
        """Un-jittered delay following ``previous``."""
        return min(self.cap, max(self.floor, previous * self.multiplier))


GENERATE_BACKOFF = BackoffPolicy(floor=0.5, cap=30.0)
SIGN_BACKOFF = BackoffPolicy(floor=0.8, cap=30.0)


@dataclass(frozen=True)
class ScanConfig:
    fids_file: Path
    out_dir: Path
    concurrency: int = 3
    api_url: str = DEFAULT_API_URL
    wallet: str = ""
    rare_only: bool = False
    top_k: int = 10
    min_score: float = 0.0
    max_attempts: int = 0          # 0 = retry forever
    timeout: float = 15.0          # seconds, per HTTP call
    user_agent: str = DEFAULT_UA
    dry_run: bool = False
    generate_backoff: BackoffPolicy = GENERATE_BACKOFF
    sign_backoff: BackoffPolicy = SIGN_BACKOFF


@dataclass(frozen=True)
class TraitRecord:
    trait_type: str
    value: Any
    percent: Optional[float]
    rarity: Optional[float]


@dataclass(frozen=True)
class FetchOutcome:
    ok: bool
    payload: Any
    attempts: int
    error: str = ""


@dataclass(frozen=True)
class GenerationResult:
    ok: bool
    payload: Any
    json_path: str
    png_path: str = ""
    error: str = ""


@dataclass(frozen=True)
class ScoredEntry:
    fid: str
    score: float
    summary: str
    json_path: str
    png_path: str
    payload: Any = field(repr=False, compare=False)
    ok: bool = True


@dataclass(frozen=True)
class SignatureResult:
    fid: str
    ok: bool
    path: str = ""
    error: str = ""


@dataclass
class PipelineOutcome:
    entries: List[ScoredEntry]
    targets: List[ScoredEntry]
    signatures: Dict[str, SignatureResult]
    rows: List[Dict[str, str]]
    index_path: Path


# ------------------------ helpers ------------------------

def is_number(value: Any) -> bool:
    """True for int/float, False for bool (JSON true/false are not numbers)."""
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def first_present(record: Dict[str, Any], keys: Sequence[str]) -> Any:
    """Value of the first key that exists with a non-null value, else None."""
    for key in keys:
        value = record.get(key)
        if value is not None:
            return value
    return None


def format_number(value: Any) -> str:
    """Render a number the way the service writes it (12.0 -> '12')."""
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def render_value(value: Any) -> str:
    if isinstance(value, str):
        return value
    if isinstance(value, bool) or value is None:
        return json.dumps(value)
    if is_number(value):
        return format_number(value)
    return json.dumps(value, ensure_ascii=False, sort_keys=True)


def classify_status(http_code: int, *, is_network_error: bool = False) -> str:
    """Map HTTP status codes (and network failures) to status classes."""
    if is_network_error:
        return "network_error"
    if http_code == 200:
        return "success"
    if http_code == 429:
        return "rate_limited"
    if 400 <= http_code < 500:
        return "client_error"
    if 500 <= http_code < 600:
        return "server_error"
    return "other"


def load_fids(path: Path) -> List[str]:
    """One FID per line; surrounding whitespace stripped, blank lines dropped."""
    with path.open("r", encoding="utf-8") as f:
        return [line.strip() for line in f if line.strip()]


def jittered(delay: float, rng: random.Random) -> float:
    return delay * rng.uniform(JITTER_LOW, JITTER_HIGH)


# ------------------------ traits & scoring ------------------------

def parse_percent(raw: Any) -> Optional[float]:
    if isinstance(raw, str):
        text = raw.strip()
        if not text.endswith("%"):
            return None
        try:
            value = float(text[:-1])
        except ValueError:
            return None
        return None if math.isnan(value) else value
    if is_number(raw):
        return float(raw)
    return None


def normalize_traits(payload: Any) -> List[TraitRecord]:
    """
    Normalize the trait list of a generate payload to TraitRecord.

    Accepts payload.attributes or payload.traits. Missing names fall back to
    "trait" / "" and unknown percent/rarity to None. Never raises: anything
    that is not a payload with a trait list yields [].
    """
    if not isinstance(payload, dict):
        return []
    raw: List[Any] = []
    for key in TRAIT_LIST_KEYS:
        if isinstance(payload.get(key), list):
            raw = payload[key]
            break

    traits: List[TraitRecord] = []
    for item in raw:
        t = item if isinstance(item, dict) else {}
        trait_type = first_present(t, TRAIT_TYPE_KEYS)
        value = first_present(t, TRAIT_VALUE_KEYS)
        rarity = first_present(t, RARITY_KEYS)
        traits.append(TraitRecord(
            trait_type=render_value(trait_type) if trait_type is not None else "trait",
            value=value if value is not None else "",
            percent=parse_percent(first_present(t, PERCENT_KEYS)),
            rarity=float(rarity) if is_number(rarity) else None,
        ))
    return traits


def rarity_score(payload: Any) -> float:
    if isinstance(payload, dict) and is_number(payload.get("rarityScore")):
        return payload["rarityScore"]

    score = 0.0
    for t in normalize_traits(payload):
        if t.percent is not None and t.percent > 0:
            score += -math.log(t.percent / 100)   # natural log, larger = rarer
        elif t.rarity is not None:
            score += t.rarity
        else:
            score += DEFAULT_TRAIT_WEIGHT
    return round(score, 6)


def traits_summary(payload: Any) -> str:
    parts: List[str] = []
    for t in normalize_traits(payload):
        text = f"{t.trait_type}:{render_value(t.value)}"
        if t.percent is not None:
            text += f"({format_number(t.percent)}%)"
        parts.append(text)
    return SUMMARY_DELIMITER.join(parts)


def rank_entries(entries: Sequence[ScoredEntry]) -> List[ScoredEntry]:
    """Score-descending; sorted() is stable, so equal scores keep input order."""
    return sorted(entries, key=lambda e: e.score, reverse=True)


# ------------------------ warplet API ------------------------

def post_generate(api_url: str, fid: str, session: requests.Session, timeout: float = 15.0) -> requests.Response:
    url = f"{api_url.rstrip('/')}/api/warplet/{fid}"
    return session.post(url, json={}, timeout=timeout)


def post_signature(api_url: str, fid: str, wallet: str, session: requests.Session, timeout: float = 15.0) -> requests.Response:
    url = f"{api_url.rstrip('/')}/api/warplet/generateSignature/{fid}"
    return session.post(url, json={"walletAddress": wallet}, timeout=timeout)


def parse_body(resp: requests.Response) -> Any:
    """JSON body if it parses, else the raw text."""
    try:
        return resp.json()
    except ValueError:
        return resp.text


def has_body(payload: Any) -> bool:
    return not (payload is None or payload is False or payload == "" or payload == 0)


async def fetch_until_ok(
    call: Callable[[], requests.Response],
    *,
    label: str,
    policy: BackoffPolicy,
    max_attempts: int = 0,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    rng: Optional[random.Random] = None,
) -> FetchOutcome:
    """
    Run ``call`` until it answers HTTP 200 with a non-empty body.

    Non-200 answers and transport errors are logged and retried after a
    jittered backoff. With max_attempts > 0 the loop gives up after that many
    tries and returns ok=False with the last error; nothing is raised.
    """
    rng = rng or random.Random()
    backoff = INITIAL_BACKOFF
    attempts = 0
    while True:
        attempts += 1
        try:
            resp = await asyncio.to_thread(call)
        except requests.RequestException as e:
            error = str(e) or type(e).__name__
            print(f"  WARN {label} -> {error} (network_error)", file=sys.stderr)
        else:
            if resp.status_code == 200:
                payload = parse_body(resp)
                if has_body(payload):
                    return FetchOutcome(ok=True, payload=payload, attempts=attempts)
                error = "HTTP 200 (empty body)"
            else:
                error = f"HTTP {resp.status_code}"
            print(f"  WARN {label} -> {error} ({classify_status(resp.status_code)})", file=sys.stderr)

        if max_attempts > 0 and attempts >= max_attempts:
            print(f"  ERROR {label}: giving up after {attempts} attempts", file=sys.stderr)
            return FetchOutcome(ok=False, payload=None, attempts=attempts, error=error)

        backoff = policy.next_delay(backoff)
        await sleep(jittered(backoff, rng))


# ------------------------ artifacts ------------------------

def artifact_stem(fid: str) -> str:
    """FID as a single file-name component (path separators become '_')."""
    return fid.replace("/", "_").replace("\\", "_")


def write_json_artifact(path: Path, payload: Any) -> None:
    with path.open("w", encoding="utf-8") as f:
        f.write(json.dumps(payload, indent=2, ensure_ascii=False))


def maybe_save_png(payload: Any, fid: str, out_dir: Path) -> str:
    """Decode the embedded base64 image to warplet-<fid>.png; '' when none or malformed."""
    if not isinstance(payload, dict):
        return ""
    b64 = next((payload[k] for k in IMAGE_KEYS if isinstance(payload.get(k), str) and payload[k]), "")
    if not b64:
        return ""
    if b64.startswith("data:") and "," in b64:
        b64 = b64.split(",", 1)[1]
    try:
        data = base64.b64decode(b64)
    except (binascii.Error, ValueError):
        return ""
    if not data:
        return ""
    out = out_dir / f"warplet-{artifact_stem(fid)}.png"
    out.write_bytes(data)
    return str(out)


def save_generation(payload: Any, fid: str, out_dir: Path) -> Tuple[str, str]:
    json_path = out_dir / f"warplet-{artifact_stem(fid)}.json"
    write_json_artifact(json_path, payload)
    return str(json_path), maybe_save_png(payload, fid, out_dir)


def save_signature(payload: Any, fid: str, out_dir: Path) -> str:
    path = out_dir / f"sign-{artifact_stem(fid)}.json"
    write_json_artifact(path, payload)
    return str(path)


# ------------------------ fetch stages ------------------------

async def generate_meta(
    fid: str,
    config: ScanConfig,
    session: requests.Session,
    *,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    rng: Optional[random.Random] = None,
) -> GenerationResult:
    outcome = await fetch_until_ok(
        partial(post_generate, config.api_url, fid, session, config.timeout),
        label=f"generate {fid}",
        policy=config.generate_backoff,
        max_attempts=config.max_attempts,
        sleep=sleep,
        rng=rng,
    )
    if not outcome.ok:
        return GenerationResult(ok=False, payload=None, json_path="", error=outcome.error)
    try:
        json_path, png_path = await asyncio.to_thread(save_generation, outcome.payload, fid, config.out_dir)
    except OSError as e:
        print(f"  ERROR generate {fid}: cannot write artifacts: {e}", file=sys.stderr)
        return GenerationResult(ok=False, payload=outcome.payload, json_path="", error=f"write failed: {e}")
    return GenerationResult(ok=True, payload=outcome.payload, json_path=json_path, png_path=png_path)


async def request_signature(
    fid: str,
    config: ScanConfig,
    session: requests.Session,
    *,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    rng: Optional[random.Random] = None,
) -> SignatureResult:
    outcome = await fetch_until_ok(
        partial(post_signature, config.api_url, fid, config.wallet, session, config.timeout),
        label=f"sign {fid}",
        policy=config.sign_backoff,
        max_attempts=config.max_attempts,
        sleep=sleep,
        rng=rng,
    )
    if not outcome.ok:
        return SignatureResult(fid=fid, ok=False, error=outcome.error or "unknown")
    try:
        path = await asyncio.to_thread(save_signature, outcome.payload, fid, config.out_dir)
    except OSError as e:
        print(f"  ERROR sign {fid}: cannot write artifact: {e}", file=sys.stderr)
        return SignatureResult(fid=fid, ok=False, error=f"write failed: {e}")
    return SignatureResult(fid=fid, ok=True, path=path)


def score_generation(fid: str, result: GenerationResult) -> ScoredEntry:
    return ScoredEntry(
        fid=fid,
        score=rarity_score(result.payload),
        summary=traits_summary(result.payload),
        json_path=result.json_path,
        png_path=result.png_path,
        payload=result.payload,
        ok=result.ok,
    )


# ------------------------ index ------------------------

def select_signature_targets(
    entries: Sequence[ScoredEntry],
    *,
    wallet: str,
    rare_only: bool,
    top_k: int,
    min_score: float,
) -> List[ScoredEntry]:
    """Signature targets from already-ranked entries."""
    if not wallet:
        return []
    if rare_only:
        return [e for e in entries if e.score >= min_score][:max(top_k, 0)]
    return list(entries)


def build_index_rows(
    entries: Sequence[ScoredEntry],
    signatures: Optional[Dict[str, SignatureResult]] = None,
    *,
    wallet: str = "",
) -> List[Dict[str, str]]:
    """
    Project ranked entries (plus signature results, once known) to index rows.

    signatures=None is the pre-signature index: both signature columns blank.
    """
    rows: List[Dict[str, str]] = []
    for e in entries:
        signature = ""
        sig_error = ""
        if signatures is not None:
            sig = signatures.get(e.fid)
            if sig is not None:
                signature = os.path.basename(sig.path) if sig.ok and sig.path else ""
                sig_error = sig.error
            elif not wallet:
                sig_error = NO_WALLET
        rows.append({
            "fid": e.fid,
            "rarityScore": format_number(e.score),
            "traits": e.summary,
            "json": os.path.basename(e.json_path) if e.json_path else "",
            "png": os.path.basename(e.png_path) if e.png_path else "",
            "signature": signature,
            "sig_error": sig_error,
        })
    return rows


def write_index(path: Path, rows: Sequence[Dict[str, str]]) -> None:
    """Truncate and rewrite the index; the file is closed on return."""
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("w", newline="", encoding="utf-8") as f:
        w = csv.DictWriter(f, fieldnames=INDEX_HEADER, lineterminator="\n")
        w.writeheader()
        for row in rows:
            w.writerow(row)


# ------------------------ pipeline ------------------------

def print_leaderboard(entries: Sequence[ScoredEntry], n: int = LEADERBOARD_SIZE) -> None:
    print(f"Top {n} by score:")
    for i, e in enumerate(entries[:n], start=1):
        print(f"#{i} FID={e.fid} score={format_number(e.score)} :: {e.summary}")


async def run_pipeline(
    config: ScanConfig,
    fids: Sequence[str],
    session: requests.Session,
    *,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    rng: Optional[random.Random] = None,
) -> PipelineOutcome:
    config.out_dir.mkdir(parents=True, exist_ok=True)
    gate = asyncio.Semaphore(config.concurrency)
    index_path = config.out_dir / INDEX_FILENAME

    async def generate_and_score(fid: str) -> ScoredEntry:
        async with gate:
            result = await generate_meta(fid, config, session, sleep=sleep, rng=rng)
        entry = score_generation(fid, result)
        if result.ok:
            print(f"  ok   FID={fid} score={format_number(entry.score)} png={'yes' if entry.png_path else 'no'}")
        else:
            print(f"  fail FID={fid} ({result.error})")
        return entry

    async def sign(entry: ScoredEntry) -> SignatureResult:
        async with gate:
            return await request_signature(entry.fid, config, session, sleep=sleep, rng=rng)

    # 1) generate everything first so the ranking is complete
    print(f"== Generate {len(fids)} FIDs (concurrency={config.concurrency}) ==")
    scored = await asyncio.gather(*(generate_and_score(fid) for fid in fids))
    entries = rank_entries(scored)

    # 2) first index, signature columns empty
    write_index(index_path, build_index_rows(entries))
    print(f"Wrote {index_path}")
    print_leaderboard(entries)

    # 3) signatures
    targets = select_signature_targets(
        entries,
        wallet=config.wallet,
        rare_only=config.rare_only,
        top_k=config.top_k,
        min_score=config.min_score,
    )
    if not config.wallet:
        print("WARNING: WALLET_ADDRESS is empty -> skipping signature step (set WALLET_ADDRESS=0x...)", file=sys.stderr)
    elif config.rare_only:
        print(f"RARE_ONLY -> requesting signatures for {len(targets)} candidates "
              f"(TOP_K={config.top_k}, MIN_SCORE={format_number(config.min_score)})")
    else:
        print(f"Requesting signatures for all {len(targets)} FIDs")

    if config.dry_run:
        if targets:
            print("  dry-run: not calling the signature endpoint.")
        results = [SignatureResult(fid=e.fid, ok=False, error=DRY_RUN) for e in targets]
    else:
        results = await asyncio.gather(*(sign(e) for e in targets))
    signatures = {r.fid: r for r in results}

    # 4) full rewrite with signature results
    rows = build_index_rows(entries, signatures, wallet=config.wallet)
    write_index(index_path, rows)
    print(f"Updated {index_path} with signature results.")

    return PipelineOutcome(
        entries=entries,
        targets=targets,
        signatures=signatures,
        rows=rows,
        index_path=index_path,
    )


def write_job_summary(path: Path, config: ScanConfig, outcome: PipelineOutcome) -> None:
    generated = sum(1 for e in outcome.entries if e.ok)
    images = sum(1 for e in outcome.entries if e.png_path)
    signed = sum(1 for s in outcome.signatures.values() if s.ok)

    if not config.wallet:
        sign_mode = "skipped (no wallet)"
    elif config.rare_only:
        sign_mode = f"rare-only (top_k={config.top_k}, min_score={format_number(config.min_score)})"
    else:
        sign_mode = "all"

    lines: List[str] = []
    lines.append("=== Warplet Scan Job Summary ===")
    lines.append(f"api_url        : {config.api_url}")
    lines.append(f"wallet         : {config.wallet or '-'}")
    lines.append(f"signing        : {sign_mode}{' [DRY-RUN]' if config.dry_run else ''}")
    lines.append(f"total_fids     : {len(outcome.entries)}")
    lines.append(f"generated      : {generated}")
    lines.append(f"gen_failed     : {len(outcome.entries) - generated}")
    lines.append(f"images         : {images}")
    lines.append(f"sign_targets   : {len(outcome.targets)}")
    lines.append(f"signed         : {signed}")
    lines.append(f"sign_failed    : {len(outcome.signatures) - signed}")
    lines.append("")
    lines.append("Artifacts:")
    lines.append(f"- {INDEX_FILENAME}")
    lines.append("- warplet-<fid>.json / warplet-<fid>.png")
    lines.append("- sign-<fid>.json")

    with path.open("w", encoding="utf-8") as f:
        f.write("\n".join(lines) + "\n")


# ------------------------ main ------------------------

def env_flag(name: str, default: bool = False) -> bool:
    raw = os.environ.get(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


def load_environment(argv: Optional[Sequence[str]] = None) -> None:
    """Load .env into os.environ (existing variables win) unless --no-dotenv."""
    pre = argparse.ArgumentParser(add_help=False)
    pre.add_argument("--env-file")
    pre.add_argument("--no-dotenv", action="store_true")
    known, _ = pre.parse_known_args(argv)
    if known.no_dotenv:
        return
    if known.env_file:
        env_file = Path(known.env_file)
        if not env_file.exists():
            print(f"ERROR: .env file not found: {env_file}", file=sys.stderr)
            sys.exit(2)
        load_dotenv(env_file, override=False)
        return
    load_dotenv(override=False)


def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    env = os.environ
    ap = argparse.ArgumentParser(
        prog="warplet-scan",
        description="Warplet Scan: FIDs -> generate -> rarity rank -> mint signatures -> index.csv",
    )
    ap.add_argument("--env-file", help="Load settings from this .env file (default: search for .env)")
    ap.add_argument("--no-dotenv", action="store_true", help="Do not load any .env file")

    ap.add_argument("--fids-file", default=env.get("FIDS_FILE", "fids.txt"),
                    help="Input file, one FID per line (env FIDS_FILE, default: fids.txt)")
    ap.add_argument("--out-dir", default=env.get("OUT_DIR", "out"),
                    help="Output directory (env OUT_DIR, default: out)")
    ap.add_argument("--concurrency", type=int, default=env.get("CONCURRENCY", "3"),
                    help="Max requests in flight (env CONCURRENCY, default: 3)")
    ap.add_argument("--base-url", default=env.get("BASE", DEFAULT_API_URL),
                    help="Warplet API base URL (env BASE)")
    ap.add_argument("--wallet", default=env.get("WALLET_ADDRESS") or env.get("ADDR") or "",
                    help="Wallet for mint signatures; empty skips signing (env WALLET_ADDRESS or ADDR)")
    ap.add_argument("--rare-only", action="store_true", default=env_flag("RARE_ONLY"),
                    help="Only sign the top --top-k FIDs scoring >= --min-score (env RARE_ONLY=1)")
    ap.add_argument("--top-k", type=int, default=env.get("TOP_K", "10"),
                    help="Rare-only: number of FIDs to sign (env TOP_K, default: 10)")
    ap.add_argument("--min-score", type=float, default=env.get("MIN_SCORE", "0"),
                    help="Rare-only: minimum rarity score (env MIN_SCORE, default: 0)")
    ap.add_argument("--max-attempts", type=int, default=env.get("MAX_ATTEMPTS", "0"),
                    help="Attempts per request before giving up; 0 retries forever (env MAX_ATTEMPTS)")
    ap.add_argument("--timeout", type=float, default=env.get("HTTP_TIMEOUT", "15"),
                    help="Per-request timeout in seconds (env HTTP_TIMEOUT, default: 15)")
    ap.add_argument("--backoff-cap", type=float, default=env.get("BACKOFF_CAP", "30"),
                    help="Upper bound on the retry delay in seconds (env BACKOFF_CAP, default: 30)")
    ap.add_argument("--backoff-multiplier", type=float, default=env.get("BACKOFF_MULTIPLIER", "1.5"),
                    help="Growth factor of the retry delay (env BACKOFF_MULTIPLIER, default: 1.5)")
    ap.add_argument("--user-agent", default=env.get("USER_AGENT", DEFAULT_UA),
                    help="User-Agent header for HTTP requests")
    ap.add_argument("--dry-run", action="store_true", default=env_flag("DRY_RUN"),
                    help="Generate and rank, but DO NOT request signatures")
    ap.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    return ap.parse_args(argv)


def build_config(args: argparse.Namespace) -> ScanConfig:
    if args.concurrency < 1:
        print("ERROR: --concurrency must be >= 1", file=sys.stderr)
        sys.exit(2)
    if args.top_k < 0:
        print("ERROR: --top-k must be >= 0", file=sys.stderr)
        sys.exit(2)
    if args.max_attempts < 0:
        print("ERROR: --max-attempts must be >= 0", file=sys.stderr)
        sys.exit(2)
    if args.timeout <= 0 or args.backoff_cap <= 0 or args.backoff_multiplier < 1:
        print("ERROR: --timeout and --backoff-cap must be > 0, --backoff-multiplier >= 1", file=sys.stderr)
        sys.exit(2)

    return ScanConfig(
        fids_file=Path(args.fids_file),
        out_dir=Path(args.out_dir),
        concurrency=args.concurrency,
        api_url=args.base_url,
        wallet=args.wallet.strip(),
        rare_only=args.rare_only,
        top_k=args.top_k,
        min_score=args.min_score,
        max_attempts=args.max_attempts,
        timeout=args.timeout,
        user_agent=args.user_agent,
        dry_run=args.dry_run,
        generate_backoff=BackoffPolicy(GENERATE_BACKOFF.floor, args.backoff_cap, args.backoff_multiplier),
        sign_backoff=BackoffPolicy(SIGN_BACKOFF.floor, args.backoff_cap, args.backoff_multiplier),
    )


def main(argv: Optional[Sequence[str]] = None) -> None:
    load_environment(argv)
    config = build_config(parse_args(argv))

    if not config.fids_file.exists():
        print(f"ERROR: missing {config.fids_file} (one FID per line)", file=sys.stderr)
        sys.exit(1)
    fids = load_fids(config.fids_file)
    config.out_dir.mkdir(parents=True, exist_ok=True)

    print("Warplet Scan")
    print(f"API URL       : {config.api_url}")
    print(f"FIDs total    : {len(fids)}")
    print(f"Concurrency   : {config.concurrency}")
    print(f"Out directory : {config.out_dir}")
    print(f"Wallet        : {config.wallet or '(none)'}")
    print(f"Mode          : {'DRY-RUN' if config.dry_run else 'LIVE'}")
    print()

    session = requests.Session()
    session.headers.update({"User-Agent": config.user_agent})
    with session:
        outcome = asyncio.run(run_pipeline(config, fids, session))

    job_summary_path = config.out_dir / JOB_SUMMARY_FILENAME
    write_job_summary(job_summary_path, config, outcome)

    print("\nWrote:")
    print(f"  {outcome.index_path}")
    print(f"  {job_summary_path}")


if __name__ == "__main__":
    try:
        main()
    except KeyboardInterrupt:
        print("\nInterrupted by user.", file=sys.stderr)
        sys.exit(130)
