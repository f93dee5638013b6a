"""
Historical comparison of NetworkPolicy test runs

Archives aggregate result files, compares two runs to flag regressions and
improvements, and renders a pass-rate/duration trend page across the archive.
"""

# Standard library imports
import logging
import os
import re
import shutil

# Third-party imports
import requests
from jinja2 import Template

# Local imports
from .report_generator import load_json

# Set up module logger
log = logging.getLogger("netpol-planner.history")

ARCHIVE_PATTERN = re.compile(r"^result-\d*\.json$")
ALERT_TIMEOUT = 10

TREND_TEMPLATE = """<!DOCTYPE html>
<html lang="en">
<head>
    <meta charset="UTF-8">
    <title>Test Trend Report</title>
    <script src="https://cdn.jsdelivr.net/npm/chart.js@3.9.1/dist/chart.min.js"></script>
    <style>
        body { font-family: -apple-system, BlinkMacSystemFont, 'Segoe UI', Roboto, sans-serif; background: #f5f7fa; margin: 0; padding: 20px; }
        .container { max-width: 1200px; margin: 0 auto; }
        .chart-container { background: white; padding: 25px; border-radius: 8px; margin-bottom: 20px; box-shadow: 0 2px 4px rgba(0,0,0,0.1); }
        h1 { color: #2d3748; }
    </style>
</head>
<body>
<div class="container">
    <h1>Historical Test Trend Report</h1>
    <p>{{ runs }} archived runs, {{ first }} to {{ last }}</p>
    <div class="chart-container">
        <h2>Pass Rate Trend</h2>
        <canvas id="passRateChart"></canvas>
    </div>
    <div class="chart-container">
        <h2>Duration Trend</h2>
        <canvas id="durationChart"></canvas>
    </div>
</div>
<script>
    const trend = {{ trend | tojson }};
    new Chart(document.getElementById('passRateChart'), {
        type: 'line',
        data: { labels: trend.timestamps, datasets: [{ label: 'Pass Rate (%)', data: trend.pass_rates, borderColor: 'rgb(72, 187, 120)', tension: 0.1 }] },
        options: { scales: { y: { beginAtZero: true, max: 100 } } }
    });
    new Chart(document.getElementById('durationChart'), {
        type: 'line',
        data: { labels: trend.timestamps, datasets: [{ label: 'Duration (s)', data: trend.durations, borderColor: 'rgb(66, 153, 225)', tension: 0.1 }] },
        options: { scales: { y: { beginAtZero: true } } }
    });
</script>
</body>
</html>
"""


def archive_result(aggregate_file, history_dir):
    """
    Archive an aggregate result file for later comparison.

    Args:
        aggregate_file (str): Aggregate JSON document to archive
        history_dir (str): Directory holding archived results

    Returns:
        str: Path of the archived copy
    """
    data = load_json(aggregate_file)
    timestamp = data.get('test_run', {}).get('timestamp', "")
    digits = re.sub(r"[^0-9]", "", str(timestamp))

    os.makedirs(history_dir, exist_ok=True)
    archive_file = os.path.join(history_dir, f"result-{digits}.json")
    shutil.copyfile(aggregate_file, archive_file)
    log.info(f"Archived result: {archive_file}")
    return archive_file


def _run_summary(path, data):
    summary = data['summary']
    return {
        'file': path,
        'passed': summary['passed'],
        'failed': summary['failed'],
        'timeout': summary['timeout'],
        'duration': summary['total_duration_seconds'],
    }


def compare_results(baseline_file, current_file):
    """
    Compare two aggregate result files.

    A regression is any increase in failed or timed-out tests. An improvement
    is more passing tests without more failures.

    Returns:
        dict: baseline, current, delta, regression and improvement entries
    """
    baseline = _run_summary(baseline_file, load_json(baseline_file))
    current = _run_summary(current_file, load_json(current_file))
    delta = {key: current[key] - baseline[key] for key in ('passed', 'failed', 'timeout', 'duration')}

    return {
        'baseline': baseline,
        'current': current,
        'delta': delta,
        'regression': delta['failed'] > 0 or delta['timeout'] > 0,
        'improvement': delta['passed'] > 0 and delta['failed'] <= 0,
    }


def detect_regression(baseline_file, current_file):
    """
    Compare two runs and log whether the current one regressed.

    Returns:
        tuple: (regressed, comparison)
    """
    comparison = compare_results(baseline_file, current_file)
    if comparison['regression']:
        log.error(
            f"Regression detected: failed {comparison['delta']['failed']:+d}, "
            f"timeout {comparison['delta']['timeout']:+d}"
        )
    else:
        log.info("No regressions detected")
    return comparison['regression'], comparison


def list_archives(history_dir):
    if not os.path.isdir(history_dir):
        return []
    return sorted(
        os.path.join(history_dir, name)
        for name in os.listdir(history_dir)
        if ARCHIVE_PATTERN.match(name)
    )


def generate_trend_report(history_dir, output_file):
    """
    Render a trend page from every archived result.

    Raises:
        ValueError: When fewer than two archived results exist
    """
    archives = list_archives(history_dir)
    if len(archives) < 2:
        raise ValueError(
            f"Not enough historical data (found {len(archives)} results, need at least 2)"
        )

    trend = {'timestamps': [], 'pass_rates': [], 'durations': []}
    for path in archives:
        data = load_json(path)
        trend['timestamps'].append(data.get('test_run', {}).get('timestamp', ""))
        trend['pass_rates'].append(data['summary']['pass_rate'])
        trend['durations'].append(data['summary']['total_duration_seconds'])

    html = Template(TREND_TEMPLATE, autoescape=True).render(
        trend=trend,
        runs=len(archives),
        first=trend['timestamps'][0],
        last=trend['timestamps'][-1],
    )
    parent = os.path.dirname(output_file)
    if parent:
        os.makedirs(parent, exist_ok=True)
    with open(output_file, 'w') as f:
        f.write(html)
    log.info(f"Trend report generated: {output_file}")
    return output_file


def format_alert(comparison):
    delta = comparison['delta']
    return (
        "NetworkPolicy test regression detected: "
        f"failed {delta['failed']:+d}, timeout {delta['timeout']:+d}, passed {delta['passed']:+d} "
        f"({comparison['baseline']['file']} -> {comparison['current']['file']})"
    )


def send_regression_alert(comparison, webhook_url):
    """
    Post a regression summary to a chat webhook.

    Args:
        comparison (dict): Output of compare_results
        webhook_url (str): Slack-compatible incoming webhook URL

    Returns:
        bool: True when the webhook accepted the alert
    """
    if not webhook_url:
        return False
    try:
        response = requests.post(webhook_url, json={'text': format_alert(comparison)}, timeout=ALERT_TIMEOUT)
        response.raise_for_status()
    except requests.RequestException as e:
        log.warning(f"Failed to send regression alert: {e}")
        return False
    log.info("Regression alert sent")
    return True
