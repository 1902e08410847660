"""
Operation Metrics
=================
Per-cycle performance metrics for the wrap bot:
- Duration, outcome and fee tier for every wrap/unwrap
- Aggregated success rates per operation kind
- Rich summary table and JSON export
"""

import json
import time
import threading
from typing import Dict, Any, List, Optional
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path

from rich.console import Console
from rich.table import Table
from rich.panel import Panel


@dataclass
class PerformanceMetrics:
    """Container for the metrics of one operation cycle."""
    operation: str
    start_time: float
    amount: Optional[str] = None
    end_time: Optional[float] = None
    duration_ms: Optional[float] = None
    success: bool = False
    error: Optional[str] = None
    tx_hash: Optional[str] = None
    block_number: Optional[int] = None
    gas_used: Optional[int] = None
    fee_source: Optional[str] = None
    max_fee_wei: Optional[int] = None

    def finalize(self, success: bool = True, error: Optional[str] = None):
        """Finalize the metrics with result."""
        self.end_time = time.time()
        self.duration_ms = (self.end_time - self.start_time) * 1000
        self.success = success
        self.error = error

    def to_dict(self) -> Dict[str, Any]:
        return {
            'operation': self.operation,
            'amount': self.amount,
            'start_time': datetime.fromtimestamp(self.start_time).isoformat(),
            'end_time': datetime.fromtimestamp(self.end_time).isoformat() if self.end_time else None,
            'duration_ms': round(self.duration_ms, 2) if self.duration_ms is not None else None,
            'success': self.success,
            'error': self.error,
            'tx_hash': self.tx_hash,
            'block_number': self.block_number,
            'gas_used': self.gas_used,
            'fee_source': self.fee_source,
            'max_fee_wei': self.max_fee_wei,
        }


class MetricsCollector:
    """Collects and aggregates operation metrics."""

    def __init__(self, max_history: int = 1000):
        self.metrics: List[PerformanceMetrics] = []
        self.max_history = max_history
        self._lock = threading.Lock()
        self._operation_counts: Dict[str, Dict[str, int]] = {}
        self._operation_times: Dict[str, List[float]] = {}

    def add_metric(self, metric: PerformanceMetrics):
        with self._lock:
            self.metrics.append(metric)
            if len(self.metrics) > self.max_history:
                self.metrics = self.metrics[-self.max_history:]

            op = metric.operation
            counts = self._operation_counts.setdefault(op, {'total': 0, 'success': 0, 'failure': 0})
            counts['total'] += 1
            if metric.success:
                counts['success'] += 1
            else:
                counts['failure'] += 1

            if metric.duration_ms is not None:
                self._operation_times.setdefault(op, []).append(metric.duration_ms)

    def get_summary(self) -> Dict[str, Any]:
        """Get summary statistics."""
        with self._lock:
            summary = {
                'total_operations': 0,
                'operations': {},
                'overall_success_rate': 0,
                'avg_duration_ms': 0
            }

            total = 0
            total_success = 0
            all_times: List[float] = []

            for op, counts in self._operation_counts.items():
                times = self._operation_times.get(op, [])
                summary['operations'][op] = {
                    'total': counts['total'],
                    'success': counts['success'],
                    'failure': counts['failure'],
                    'success_rate': round(counts['success'] / counts['total'] * 100, 2),
                    'avg_duration_ms': round(sum(times) / len(times), 2) if times else 0,
                    'min_duration_ms': round(min(times), 2) if times else 0,
                    'max_duration_ms': round(max(times), 2) if times else 0,
                }
                total += counts['total']
                total_success += counts['success']
                all_times.extend(times)

            summary['total_operations'] = total
            if total:
                summary['overall_success_rate'] = round(total_success / total * 100, 2)
            if all_times:
                summary['avg_duration_ms'] = round(sum(all_times) / len(all_times), 2)

            return summary

    def clear(self):
        with self._lock:
            self.metrics.clear()
            self._operation_counts.clear()
            self._operation_times.clear()

    def save_to_file(self, filepath: str):
        """Save summary and recent metrics to a JSON file."""
        summary = self.get_summary()
        with self._lock:
            data = {
                'summary': summary,
                'metrics': [m.to_dict() for m in self.metrics]
            }
        Path(filepath).parent.mkdir(parents=True, exist_ok=True)
        with open(filepath, 'w') as f:
            json.dump(data, f, indent=2)


def print_metrics_summary(collector: MetricsCollector, console: Optional[Console] = None):
    """Print a formatted metrics summary to console."""
    console = console or Console()
    summary = collector.get_summary()

    table = Table(title="Operation Metrics")
    table.add_column("Operation", style="cyan")
    table.add_column("Total", justify="right")
    table.add_column("Success", justify="right", style="green")
    table.add_column("Failure", justify="right", style="red")
    table.add_column("Success %", justify="right")
    table.add_column("Avg ms", justify="right")
    table.add_column("Max ms", justify="right")

    for op, stats in summary['operations'].items():
        table.add_row(
            op,
            str(stats['total']),
            str(stats['success']),
            str(stats['failure']),
            f"{stats['success_rate']:.1f}%",
            f"{stats['avg_duration_ms']:.0f}",
            f"{stats['max_duration_ms']:.0f}"
        )

    console.print(Panel(
        f"Total Operations: {summary['total_operations']}\n"
        f"Overall Success Rate: {summary['overall_success_rate']:.1f}%\n"
        f"Average Duration: {summary['avg_duration_ms']:.0f}ms",
        title="Summary",
        border_style="blue"
    ))
    console.print(table)
