import logging
import time
from contextlib import contextmanager
from datetime import datetime
from enum import Enum, auto
from pathlib import Path
from typing import Dict, List, Optional, Set, Union

import numpy as np
import pandas as pd


class BenchmarkProfile(Enum):
    """Available benchmark profiles for different measurement focuses"""
    INSTANCE_SETUP = auto()   # engine load, key fetch, instance resolution
    ENCRYPTION = auto()       # input encryption time and proof sizes
    SIGNING = auto()          # wallet prompts and signature cache behaviour
    DECRYPTION = auto()       # user and public decryption round trips
    ALL = auto()              # enable all metrics


class BenchmarkManager:
    """Collects benchmark events and provides export + summary helpers.

    The manager stores timestamped metric events and supports filtering
    by profile. Session components accept an optional manager and log
    their timings to it.
    """

    def __init__(self, profiles: Optional[List[BenchmarkProfile]] = None):
        self.logs: List[Dict] = []
        self.active_profiles: Set[BenchmarkProfile] = (
            {BenchmarkProfile.ALL} if profiles is None else set(profiles)
        )
        self.logger = logging.getLogger(__name__)

        # metrics grouped by profile
        self.profile_metrics: Dict[BenchmarkProfile, Set[str]] = {
            BenchmarkProfile.INSTANCE_SETUP: {
                'Resolve Time', 'Engine Load Time', 'Key Fetch Time'
            },
            BenchmarkProfile.ENCRYPTION: {
                'Encryption Time', 'Input Proof Size', 'Handle Count'
            },
            BenchmarkProfile.SIGNING: {
                'Signing Time', 'Signature Cache Hit'
            },
            BenchmarkProfile.DECRYPTION: {
                'User Decrypt Time', 'Public Decrypt Time'
            }
        }

        self.logger.info(
            f"BenchmarkManager initialized with profiles: {[p.name for p in self.active_profiles]}"
        )

    # ---- basic operations -------------------------------------------------
    def should_log_metric(self, metric_name: str) -> bool:
        """Decide whether to log a metric based on active profiles."""
        if BenchmarkProfile.ALL in self.active_profiles:
            return True
        for profile in self.active_profiles:
            if metric_name in self.profile_metrics.get(profile, set()):
                return True
        return False

    def log_event(self, component_id: str, metric_name: str, value: float, unit: str = '', tags: Dict[str, str] = None):
        """Record a timestamped metric event (if enabled by profile).

        tags (optional) are merged into the event dict to allow grouping.
        """
        if not self.should_log_metric(metric_name):
            return

        entry = {
            'timestamp': datetime.now(),
            'component_id': component_id,
            'metric': metric_name,
            'value': float(value),
            'unit': unit or ''
        }
        if tags:
            entry.update(tags)

        self.logs.append(entry)

    @contextmanager
    def measure(self, component_id: str, metric_name: str, tags: Dict[str, str] = None):
        """Log the wall-clock duration of the enclosed block in seconds."""
        start = time.perf_counter()
        try:
            yield
        finally:
            self.log_event(component_id, metric_name, time.perf_counter() - start, unit='s', tags=tags)

    # ---- introspection & export -------------------------------------------
    def get_available_metrics(self) -> Dict[BenchmarkProfile, Set[str]]:
        return {k: set(v) for k, v in self.profile_metrics.items()}

    def get_active_profiles(self) -> Set[BenchmarkProfile]:
        return set(self.active_profiles)

    def add_profile(self, profile: BenchmarkProfile):
        self.active_profiles.add(profile)
        self.logger.info(f"Added benchmark profile: {profile.name}")

    def remove_profile(self, profile: BenchmarkProfile):
        if profile in self.active_profiles and profile != BenchmarkProfile.ALL:
            self.active_profiles.remove(profile)
            self.logger.info(f"Removed benchmark profile: {profile.name}")

    def get_benchmark_data(self, filter_profile: Optional[BenchmarkProfile] = None) -> pd.DataFrame:
        if not self.logs:
            return pd.DataFrame()
        df = pd.DataFrame(self.logs)
        if filter_profile and filter_profile != BenchmarkProfile.ALL:
            metrics = self.profile_metrics.get(filter_profile, set())
            df = df[df['metric'].isin(metrics)]
        return df

    def summarize(self, filter_profile: Optional[BenchmarkProfile] = None) -> pd.DataFrame:
        """Per-metric count, mean, median and 95th percentile."""
        df = self.get_benchmark_data(filter_profile)
        if df.empty:
            return pd.DataFrame(columns=['metric', 'count', 'mean', 'median', 'p95'])
        rows = []
        for metric, group in df.groupby('metric'):
            values = group['value'].to_numpy(dtype=np.float64)
            rows.append({
                'metric': metric,
                'count': int(values.size),
                'mean': float(np.mean(values)),
                'median': float(np.median(values)),
                'p95': float(np.percentile(values, 95)),
            })
        return pd.DataFrame(rows)

    def export_to_csv(self, filepath: Union[str, Path], filter_profile: Optional[BenchmarkProfile] = None):
        path = Path(filepath)
        df = self.get_benchmark_data(filter_profile)
        if df.empty:
            self.logger.warning("No benchmark data to export")
            return
        df.to_csv(path, index=False)
        self.logger.info(f"Exported benchmark data to {path}")
