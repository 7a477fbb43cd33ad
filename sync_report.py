"""
Optional outputs of a frame alignment search: score CSV, score plot and a
side-by-side QC image of the reference and the winning candidate.
"""

import csv
import logging
import os

import cv2
import matplotlib
matplotlib.use('Agg')
import matplotlib.pyplot as plt
import numpy as np

from ffmpeg_decoder import candidate_timestamp
from frame_utils import normalize_frame_size, yuv420_to_bgr

logger = logging.getLogger('sync_report')

QC_IMAGE_HEIGHT = 720


def write_scores_csv(result, csv_path):
    """Write one row per candidate (scored or failed), in candidate order."""
    logger.info(f"--- Writing candidate scores to CSV: {csv_path} ---")
    candidates = sorted(set(result.score_table) | set(result.failures))
    with open(csv_path, 'w', newline='', encoding='utf-8') as csvfile:
        writer = csv.writer(csvfile)
        writer.writerow(["Candidate", "Timestamp (s)", "Score", "Status", "Error"])
        for candidate_index in candidates:
            timestamp = f"{candidate_timestamp(candidate_index, result.frame_rate):.6f}"
            if candidate_index in result.score_table:
                writer.writerow([candidate_index, timestamp, f"{result.score_table[candidate_index]:.0f}", "ok", ""])
            else:
                # Keep the CSV one line per candidate
                error = " | ".join(result.failures[candidate_index].splitlines())
                writer.writerow([candidate_index, timestamp, "", "failed", error])
    logger.info(f"  ✓ Wrote {len(candidates)} rows")
    return len(candidates)


def plot_scores(result, save_path):
    """Save a line plot of score against candidate index with the winner marked."""
    candidates = sorted(result.score_table)
    scores = [result.score_table[c] for c in candidates]

    plt.figure(figsize=(12, 6))
    plt.plot(candidates, scores, 'b-', linewidth=1)
    plt.plot([result.candidate_index], [result.score], 'ro', markersize=8)
    plt.annotate(f"Offset {result.candidate_index}",
                 xy=(result.candidate_index, result.score),
                 xytext=(10, 20), textcoords='offset points', color='r',
                 arrowprops=dict(arrowstyle='->', color='r'))
    if result.failures:
        failed = sorted(result.failures)
        plt.plot(failed, [0] * len(failed), 'kx', alpha=0.5, label='Decode failed')
        plt.legend()
    plt.title(f"Frame Difference per Candidate (best: {result.candidate_index}, {result.offset_seconds:.3f}s)")
    plt.xlabel("Candidate frame index")
    plt.ylabel("Sum of absolute differences")
    plt.grid(True, alpha=0.3)
    plt.tight_layout()
    plt.savefig(save_path)
    plt.close()
    logger.info(f"  ✓ Saved score plot to {save_path}")


def create_qc_image(reference_frame, candidate_frame, geometry, qc_output_path):
    """
    Save reference frame, candidate frame and their luma difference side by side as PNG

    Returns:
    bool: True when the image was written
    """
    candidate_frame = normalize_frame_size(candidate_frame, geometry.frame_size)
    panels = [
        yuv420_to_bgr(reference_frame, geometry),
        yuv420_to_bgr(candidate_frame, geometry),
        cv2.applyColorMap(difference_heatmap(reference_frame, candidate_frame, geometry), cv2.COLORMAP_JET),
    ]

    target_h = min(QC_IMAGE_HEIGHT, geometry.height)
    new_w = max(1, int(geometry.width * target_h / geometry.height))
    if target_h != geometry.height:
        panels = [cv2.resize(img, (new_w, target_h), interpolation=cv2.INTER_AREA) for img in panels]

    qc_image = cv2.hconcat(panels)
    os.makedirs(os.path.dirname(os.path.abspath(qc_output_path)), exist_ok=True)
    ok = cv2.imwrite(qc_output_path, qc_image, [cv2.IMWRITE_PNG_COMPRESSION, 3])
    if ok:
        logger.info(f"  ✓ Saved QC image to {qc_output_path}")
    else:
        logger.warning(f"QC Skip: Could not write {qc_output_path}")
    return bool(ok)


def difference_heatmap(reference_frame, candidate_frame, geometry):
    """Per-pixel absolute luma difference as a uint8 image, for QC inspection."""
    luma = geometry.luma_size
    ref = np.frombuffer(reference_frame, dtype=np.uint8)[:luma].astype(np.int16)
    cand = np.frombuffer(candidate_frame, dtype=np.uint8)[:luma].astype(np.int16)
    diff = np.abs(ref - cand).astype(np.uint8)
    return diff.reshape((geometry.height, geometry.width))
