from __future__ import annotations

import json
from pathlib import Path
from typing import Any


class Config:
    def __init__(self, d: dict[str, Any]):
        self.raw = d
        self.api_verbose = bool(d.get("api", {}).get("verbose", True))

        s = d.get("sampler", {})
        self.sampler_min_distance_m = float(s.get("min_distance_m", 50.0))
        self.sampler_min_interval_sec = float(s.get("min_interval_sec", 60.0))
        self.sampler_high_accuracy = bool(s.get("high_accuracy", True))
        self.sampler_timeout_sec = float(s.get("timeout_sec", 10.0))
        self.sampler_max_age_sec = float(s.get("max_age_sec", 5.0))

        g = d.get("geofence", {})
        self.gf_cooldown_sec = int(g.get("cooldown_sec", 600))
        self.gf_default_radius_m = float(g.get("default_radius_m", 100.0))
        self.gf_min_radius_m = float(g.get("min_radius_m", 50.0))
        self.gf_max_radius_m = float(g.get("max_radius_m", 1000.0))

        p = d.get("places", {})
        self.places_cluster_distance_m = float(p.get("cluster_distance_m", 100.0))
        self.places_min_points = int(p.get("min_points", 2))
        self.places_window_hours = int(p.get("window_hours", 168))

        h = d.get("history", {})
        self.history_window_hours = int(h.get("window_hours", 24))
        self.history_retention_days = int(h.get("retention_days", 7))

        gc = d.get("geocode", {})
        self.geocode_enabled = bool(gc.get("enabled", False))
        self.geocode_base_url = str(gc.get("base_url", "https://nominatim.openstreetmap.org/reverse"))
        self.geocode_accept_language = str(gc.get("accept_language", "id"))
        self.geocode_timeout_sec = float(gc.get("timeout_sec", 10.0))
        self.geocode_min_interval_sec = float(gc.get("min_interval_sec", 1.0))
        self.geocode_user_agent = str(gc.get("user_agent", "locintel/0.1.0 (reverse-geocode)"))

        self.log_level = str(d.get("logging", {}).get("level", "INFO")).upper()


def load_config(path: str | Path) -> Config:
    p = Path(path)
    with p.open("r", encoding="utf-8") as f:
        d = json.load(f)
    return Config(d)
