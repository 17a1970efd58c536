"""
Report generation for stacking runs.

Produces:
- run_manifest.json: Machine-readable complete record
- report.json: Summary statistics
- report.md: Human-readable Markdown report

Author: Olivier Vitrac, PhD, HDR
        Generative Simulation Initiative
        olivier.vitrac@gmail.com
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any

import numpy as np

from .config import StackConfig, StackResult
from .utils import get_platform_info, get_timestamp_iso, get_version

logger = logging.getLogger(__name__)


def _to_native(obj: Any) -> Any:
    """Convert numpy types to native Python types for JSON serialization."""
    if isinstance(obj, np.floating):
        return float(obj)
    elif isinstance(obj, np.integer):
        return int(obj)
    elif isinstance(obj, np.ndarray):
        return obj.tolist()
    elif isinstance(obj, dict):
        return {k: _to_native(v) for k, v in obj.items()}
    elif isinstance(obj, (list, tuple)):
        return [_to_native(v) for v in obj]
    return obj


def _serialize_config(config: StackConfig) -> dict[str, Any]:
    """Serialize StackConfig to JSON-compatible dict."""
    return {
        "method": config.rejection.method.value,
        "low": config.rejection.low,
        "high": config.rejection.high,
        "chunk_rows": config.chunk_rows,
        "workers": config.workers,
    }


def _rejection_summary(result: StackResult) -> list[dict[str, Any]]:
    """Per-channel rejected counts and percentages."""
    n_pixels = int(np.prod(result.shape[:2])) if result.shape else 0
    n_samples = n_pixels * result.n_frames
    summary = []
    for channel, (low, high) in enumerate(zip(result.rejected_low, result.rejected_high)):
        summary.append({
            "channel": channel,
            "low": low,
            "high": high,
            "low_pct": 100.0 * low / n_samples if n_samples else 0.0,
            "high_pct": 100.0 * high / n_samples if n_samples else 0.0,
        })
    return summary


def write_manifest(result: StackResult, output_dir: Path) -> Path:
    """
    Write complete run manifest as JSON.

    Parameters
    ----------
    result : StackResult
        Complete stacking result.
    output_dir : Path
        Output directory.

    Returns
    -------
    Path
        Path to written manifest file.
    """
    manifest = {
        "stackreject_version": result.version or get_version(),
        "timestamp": result.timestamp or get_timestamp_iso(),
        "platform": result.platform or get_platform_info(),
        "config": _serialize_config(result.config) if result.config else {},
        "frames": {
            "count": result.n_frames,
            "shape": list(result.shape),
        },
        "inputs": result.inputs,
        "rejection": _rejection_summary(result),
        "outputs": result.outputs,
        "statistics": result.stats,
    }

    manifest_path = output_dir / "run_manifest.json"
    with open(manifest_path, "w") as f:
        json.dump(_to_native(manifest), f, indent=2)

    logger.info("Wrote manifest: %s", manifest_path)
    return manifest_path


def write_report_json(result: StackResult, output_dir: Path) -> Path:
    """
    Write summary report as JSON.

    Parameters
    ----------
    result : StackResult
        Stacking result.
    output_dir : Path
        Output directory.

    Returns
    -------
    Path
        Path to written report file.
    """
    report = {
        "timestamp": result.timestamp or get_timestamp_iso(),
        "summary": {
            "frames": result.n_frames,
            "method": result.config.rejection.method.value if result.config else "",
            "rejected_low": sum(result.rejected_low),
            "rejected_high": sum(result.rejected_high),
        },
        "rejection": _rejection_summary(result),
        "statistics": result.stats,
        "outputs": {k: str(v) for k, v in result.outputs.items()},
    }

    report_path = output_dir / "report.json"
    with open(report_path, "w") as f:
        json.dump(_to_native(report), f, indent=2)

    logger.info("Wrote report: %s", report_path)
    return report_path


def write_report_markdown(result: StackResult, output_dir: Path) -> Path:
    """
    Write human-readable Markdown report.

    Parameters
    ----------
    result : StackResult
        Stacking result.
    output_dir : Path
        Output directory.

    Returns
    -------
    Path
        Path to written report file.
    """
    lines = [
        "# Stacking Report",
        "",
        f"**Generated:** {result.timestamp or get_timestamp_iso()}",
        f"**stackreject version:** {result.version or get_version()}",
        f"**Platform:** {result.platform or get_platform_info()}",
        "",
        "## Summary",
        "",
        "| Metric | Value |",
        "|--------|-------|",
        f"| Frames stacked | {result.n_frames} |",
        f"| Image shape | {' x '.join(str(s) for s in result.shape)} |",
        f"| Rejected low | {sum(result.rejected_low)} |",
        f"| Rejected high | {sum(result.rejected_high)} |",
        "",
    ]

    # Configuration
    if result.config:
        lines.extend([
            "## Configuration",
            "",
            "| Parameter | Value |",
            "|-----------|-------|",
        ])
        for key, value in _serialize_config(result.config).items():
            lines.append(f"| {key} | {value} |")
        lines.append("")

    # Per-channel rejection
    summary = _rejection_summary(result)
    if summary:
        lines.extend([
            "## Pixel Rejection",
            "",
            "| Channel | Low | High | Low % | High % |",
            "|---------|-----|------|-------|--------|",
        ])
        for row in summary:
            lines.append(
                f"| {row['channel']} | {row['low']} | {row['high']} "
                f"| {row['low_pct']:.3f} | {row['high_pct']:.3f} |"
            )
        lines.append("")

    # Statistics
    if result.stats:
        lines.extend([
            "## Statistics",
            "",
            "| Metric | Value |",
            "|--------|-------|",
        ])
        for key, value in result.stats.items():
            if isinstance(value, float):
                lines.append(f"| {key} | {value:.4f} |")
            else:
                lines.append(f"| {key} | {value} |")
        lines.append("")

    # Outputs
    if result.outputs:
        lines.extend([
            "## Outputs",
            "",
        ])
        for name, path in result.outputs.items():
            lines.append(f"- **{name}:** `{path}`")
        lines.append("")

    report_path = output_dir / "report.md"
    with open(report_path, "w") as f:
        f.write("\n".join(lines))

    logger.info("Wrote Markdown report: %s", report_path)
    return report_path


def write_all_reports(result: StackResult, output_dir: Path) -> dict[str, Path]:
    """
    Write all report files.

    Parameters
    ----------
    result : StackResult
        Stacking result.
    output_dir : Path
        Output directory.

    Returns
    -------
    dict[str, Path]
        Map of report type to path.
    """
    output_dir.mkdir(parents=True, exist_ok=True)

    return {
        "manifest": write_manifest(result, output_dir),
        "json": write_report_json(result, output_dir),
        "markdown": write_report_markdown(result, output_dir),
    }
