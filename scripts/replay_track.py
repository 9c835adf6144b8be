import argparse
import json
from datetime import UTC, timedelta
from pathlib import Path

import pandas as pd
from dateutil import parser as dtp

from locintel.core.config import load_config
from locintel.core.models import RawPosition
from locintel.core.places import cluster_places
from locintel.core.sampler import PositionSampler, ReplaySource, TrackingSession, WatchOptions
from locintel.core.store import InMemoryStore
from locintel.utils.geo import haversine_m_np


def to_utc(ts):
    """Naive timestamps are taken as UTC; aware ones are converted to UTC."""
    dt = dtp.parse(str(ts))
    if dt.tzinfo is None:
        return dt.replace(tzinfo=UTC)
    return dt.astimezone(UTC)


def read_track(src: Path) -> pd.DataFrame:
    suffix = src.suffix.lower()
    if suffix == ".parquet":
        return pd.read_parquet(src)
    if suffix in {".jsonl", ".ndjson"}:
        return pd.read_json(src, lines=True)
    return pd.read_csv(src)


def main():
    ap = argparse.ArgumentParser(description="Replay a recorded track through the sampler and cluster places")
    ap.add_argument("--track", required=True, help="CSV / Parquet / JSONL with timestamp, lat, lon")
    ap.add_argument("--config", default="configs/config.json")
    ap.add_argument("--ts-col", default="timestamp")
    ap.add_argument("--lat-col", default="lat")
    ap.add_argument("--lon-col", default="lon")
    ap.add_argument("--user-col", default="user_id")
    ap.add_argument("--accuracy-col", default="accuracy")
    ap.add_argument("--out", default="data/processed/places.jsonl")
    args = ap.parse_args()

    cfg = load_config(args.config)
    df = read_track(Path(args.track))

    rename = {
        args.ts_col: "timestamp",
        args.lat_col: "lat",
        args.lon_col: "lon",
        args.user_col: "user_id",
        args.accuracy_col: "accuracy",
    }
    df = df.rename(columns={k: v for k, v in rename.items() if k in df.columns})
    for c in ["timestamp", "lat", "lon"]:
        if c not in df.columns:
            raise ValueError(f"Missing required column: {c}")
    if "user_id" not in df.columns:
        df["user_id"] = "replay"
    if "accuracy" not in df.columns:
        df["accuracy"] = None

    df = df.dropna(subset=["timestamp", "lat", "lon"])
    df = df[df["lat"].between(-90, 90) & df["lon"].between(-180, 180)]
    df["timestamp"] = df["timestamp"].map(to_utc)
    df = df.sort_values(by=["user_id", "timestamp"], kind="stable")

    # step distance between consecutive raw fixes, per user
    prev_lat = df.groupby("user_id")["lat"].shift(1).fillna(df["lat"])
    prev_lon = df.groupby("user_id")["lon"].shift(1).fillna(df["lon"])
    df["step_m"] = haversine_m_np(prev_lat, prev_lon, df["lat"], df["lon"])

    store = InMemoryStore()
    sampler = PositionSampler(
        store,
        min_distance_m=cfg.sampler_min_distance_m,
        min_interval=timedelta(seconds=cfg.sampler_min_interval_sec),
    )
    options = WatchOptions(cfg.sampler_high_accuracy, cfg.sampler_timeout_sec, cfg.sampler_max_age_sec)

    out = Path(args.out)
    out.parent.mkdir(parents=True, exist_ok=True)
    n_places = 0
    with out.open("w", encoding="utf-8") as f:
        for user_id, g in df.groupby("user_id", sort=True):
            fixes = [
                RawPosition(
                    lat=float(r.lat),
                    lon=float(r.lon),
                    captured_at=r.timestamp,
                    accuracy=None if pd.isna(r.accuracy) else float(r.accuracy),
                )
                for r in g.itertuples(index=False)
            ]
            session = TrackingSession(user_id=str(user_id), session_id="replay")
            sampler.start(session, ReplaySource(fixes), options)
            sampler.stop(session)

            history = [p for p in store.history if p.user_id == str(user_id)]
            for place in cluster_places(history, cfg.places_cluster_distance_m, cfg.places_min_points):
                rec = {
                    "user_id": str(user_id),
                    "address": place.address,
                    "lat": place.lat,
                    "lon": place.lon,
                    "arrived_at": place.arrived_at.isoformat(),
                    "left_at": place.left_at.isoformat(),
                    "duration": place.duration,
                    "points": place.points,
                }
                f.write(json.dumps(rec, ensure_ascii=False) + "\n")
                n_places += 1

    steps = df["step_m"]
    print(
        f"[OK] -> {out} | fixes: {len(df)} | history: {len(store.history)} | places: {n_places} "
        f"| step_m median={steps.median():.1f} p95={steps.quantile(0.95):.1f}"
    )


if __name__ == "__main__":
    main()
