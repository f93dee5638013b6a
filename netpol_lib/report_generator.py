"""
Report generator for NetworkPolicy recipe test results

Aggregates per-recipe test results into a JSON summary and renders it as an
HTML report (summary cards, charts, result table) or a Markdown summary.
"""

# Standard library imports
import json
import logging
import os
from dataclasses import asdict, dataclass
from datetime import datetime
from enum import Enum

# Third-party imports
from jinja2 import Template

# Set up module logger
log = logging.getLogger("netpol-planner.report_generator")


class TestStatus(str, Enum):
    PASS = "PASS"
    FAIL = "FAIL"
    TIMEOUT = "TIMEOUT"

    __test__ = False

    def __str__(self):
        return self.value


@dataclass
class TestResult:
    __test__ = False

    recipe_id: str
    status: str
    duration_seconds: float = 0
    error_message: str = ""
    output: str = ""
    namespace: str = ""
    timestamp: str = ""

    @classmethod
    def from_dict(cls, data):
        return cls(
            recipe_id=str(data['recipe_id']),
            status=str(data.get('status', TestStatus.FAIL.value)).upper(),
            duration_seconds=data.get('duration_seconds') or 0,
            error_message=data.get('error_message') or "",
            output=data.get('output') or "",
            namespace=data.get('namespace') or "",
            timestamp=data.get('timestamp') or "",
        )

    def to_dict(self):
        return asdict(self)


def load_json(path):
    """
    Load a JSON document from disk.

    Raises:
        FileNotFoundError: When the file does not exist
        ValueError: When the file is not valid JSON
    """
    if not os.path.isfile(path):
        raise FileNotFoundError(f"JSON file not found: {path}")
    with open(path, 'r') as f:
        try:
            return json.load(f)
        except json.JSONDecodeError as e:
            raise ValueError(f"Invalid JSON file {path}: {e}") from e


def write_json(data, path):
    """Write a JSON document, creating parent directories as needed."""
    parent = os.path.dirname(path)
    if parent:
        os.makedirs(parent, exist_ok=True)
    with open(path, 'w') as f:
        json.dump(data, f, indent=2)
    log.debug(f"Wrote {path}")
    return path


def load_results(path):
    """
    Load test results from an aggregate document or a plain list of result records.

    Returns:
        list: TestResult objects

    Raises:
        ValueError: When the document holds no list of result records
    """
    data = load_json(path)
    # An aggregate document must carry its records; anything else is not a results file
    records = data.get('results') if isinstance(data, dict) else data
    if not isinstance(records, list):
        raise ValueError(f"No result records found in {path}")
    return [TestResult.from_dict(record) for record in records]


def _pass_rate(passed, total):
    if total == 0:
        return 0
    # Truncated to two decimals
    return (passed * 10000 // total) / 100


def aggregate_results(results, workers, timeout, environment=None):
    """
    Aggregate per-recipe results into a test run summary.

    Args:
        results (list): TestResult objects or result dictionaries
        workers (int): Parallel workers used for the run
        timeout (int): Per-test timeout used for the run
        environment (dict): Provider/CNI/Kubernetes version of the run

    Returns:
        dict: Document with test_run, environment, results and summary sections
    """
    results = [r if isinstance(r, TestResult) else TestResult.from_dict(r) for r in results]

    passed = sum(1 for r in results if r.status == TestStatus.PASS.value)
    timed_out = sum(1 for r in results if r.status == TestStatus.TIMEOUT.value)
    failed = len(results) - passed - timed_out
    total_duration = sum(r.duration_seconds for r in results)

    return {
        'test_run': {
            'timestamp': datetime.now().astimezone().isoformat(timespec="seconds"),
            'workers': workers,
            'timeout': timeout,
        },
        'environment': environment or {
            'provider': "unknown",
            'cni': "unknown",
            'kubernetes_version': "unknown",
        },
        'results': [r.to_dict() for r in results],
        'summary': {
            'total': len(results),
            'passed': passed,
            'failed': failed,
            'timeout': timed_out,
            'total_duration_seconds': total_duration,
            'pass_rate': _pass_rate(passed, len(results)),
        },
    }


HTML_TEMPLATE = """<!DOCTYPE html>
<html lang="en">
<head>
    <meta charset="UTF-8">
    <meta name="viewport" content="width=device-width, initial-scale=1.0">
    <title>Network Policy Test Report</title>
    <script src="https://cdn.jsdelivr.net/npm/chart.js@3.9.1/dist/chart.min.js"></script>
    <style>
        body { font-family: -apple-system, BlinkMacSystemFont, 'Segoe UI', Roboto, sans-serif; background: #f5f7fa; color: #333; margin: 0; }
        .container { max-width: 1400px; margin: 0 auto; padding: 20px; }
        header { background: linear-gradient(135deg, #667eea 0%, #764ba2 100%); color: white; padding: 30px; border-radius: 8px; margin-bottom: 30px; }
        .summary-cards { display: grid; grid-template-columns: repeat(auto-fit, minmax(220px, 1fr)); gap: 20px; margin-bottom: 30px; }
        .card { background: white; padding: 25px; border-radius: 8px; box-shadow: 0 2px 4px rgba(0,0,0,0.1); }
        .card-title { font-size: 0.9em; color: #666; text-transform: uppercase; }
        .card-value { font-size: 2.2em; font-weight: bold; }
        .card.success .card-value { color: #48bb78; }
        .card.danger .card-value { color: #f56565; }
        .card.warning .card-value { color: #ed8936; }
        .card.info .card-value { color: #4299e1; }
        .chart-container { background: white; padding: 25px; border-radius: 8px; box-shadow: 0 2px 4px rgba(0,0,0,0.1); margin-bottom: 30px; }
        table { width: 100%; border-collapse: collapse; background: white; }
        th { background: #667eea; color: white; padding: 12px; text-align: left; }
        td { padding: 12px; border-bottom: 1px solid #e2e8f0; }
        tr.PASS { background: #f0fff4; }
        tr.FAIL { background: #fff5f5; }
        tr.TIMEOUT { background: #fffaf0; }
        .badge { padding: 4px 10px; border-radius: 12px; color: white; font-weight: 600; font-size: 0.85em; }
        .badge-PASS { background: #48bb78; }
        .badge-FAIL { background: #f56565; }
        .badge-TIMEOUT { background: #ed8936; }
        pre { background: #2d3748; color: #e2e8f0; padding: 15px; border-radius: 4px; overflow-x: auto; }
        pre.error-output { background: #742a2a; color: #fed7d7; }
        footer { text-align: center; padding: 20px; color: #718096; font-size: 0.9em; }
    </style>
</head>
<body>
<div class="container">
    <header>
        <h1>Network Policy Test Report</h1>
        <p>Provider: {{ environment.provider }} | CNI: {{ environment.cni }} | Kubernetes: {{ environment.kubernetes_version }}</p>
    </header>

    <div class="summary-cards">
        <div class="card info"><div class="card-title">Total Tests</div><div class="card-value">{{ summary.total }}</div><div>{{ test_run.workers }} parallel workers</div></div>
        <div class="card success"><div class="card-title">Passed</div><div class="card-value">{{ summary.passed }}</div><div>{{ summary.pass_rate }}%</div></div>
        <div class="card danger"><div class="card-title">Failed</div><div class="card-value">{{ summary.failed }}</div><div>Test failures</div></div>
        <div class="card warning"><div class="card-title">Timeout</div><div class="card-value">{{ summary.timeout }}</div><div>{{ test_run.timeout }}s limit</div></div>
        <div class="card info"><div class="card-title">Duration</div><div class="card-value">{{ summary.total_duration_seconds }}s</div><div>Total execution time</div></div>
        <div class="card"><div class="card-title">Timestamp</div><div class="card-value" style="font-size: 1.1em;">{{ test_run.timestamp }}</div><div>Test run time</div></div>
    </div>

    <div class="chart-container">
        <h2>Test Duration by Recipe</h2>
        <canvas id="durationChart"></canvas>
    </div>

    <div class="chart-container">
        <h2>Detailed Test Results</h2>
        <table>
            <thead><tr><th>Recipe</th><th>Status</th><th>Duration</th><th>Error</th></tr></thead>
            <tbody>
            {% for result in results %}
                <tr class="{{ result.status }}">
                    <td><a href="#recipe-{{ result.recipe_id }}"><strong>NP-{{ result.recipe_id }}</strong></a></td>
                    <td><span class="badge badge-{{ result.status }}">{{ result.status }}</span></td>
                    <td>{{ result.duration_seconds }}s</td>
                    <td>{{ result.error_message or "N/A" }}</td>
                </tr>
            {% endfor %}
            </tbody>
        </table>
    </div>

    {% for result in results %}
    <div class="chart-container" id="recipe-{{ result.recipe_id }}">
        <h2>Recipe NP-{{ result.recipe_id }} Details</h2>
        <p><strong>Status:</strong> {{ result.status }} | <strong>Duration:</strong> {{ result.duration_seconds }}s
           | <strong>Namespace:</strong> {{ result.namespace or "N/A" }} | <strong>Timestamp:</strong> {{ result.timestamp or "N/A" }}</p>
        <h3>Error Message</h3>
        <pre class="error-output">{{ result.error_message or "No errors" }}</pre>
        <h3>Test Output</h3>
        <pre>{{ result.output }}</pre>
    </div>
    {% endfor %}

    <footer>Generated by netpol-planner | {{ test_run.timestamp }}</footer>
</div>
<script>
    const chartData = {{ chart_data | tojson }};
    const colors = { PASS: 'rgba(72, 187, 120, 0.6)', FAIL: 'rgba(245, 101, 101, 0.6)', TIMEOUT: 'rgba(237, 137, 54, 0.6)' };
    new Chart(document.getElementById('durationChart'), {
        type: 'bar',
        data: {
            labels: chartData.labels.map(id => `NP-${id}`),
            datasets: [{
                label: 'Duration (seconds)',
                data: chartData.durations,
                backgroundColor: chartData.statuses.map(status => colors[status] || colors.FAIL)
            }]
        },
        options: { responsive: true, plugins: { legend: { display: false } }, scales: { y: { beginAtZero: true } } }
    });
</script>
</body>
</html>
"""

MARKDOWN_TEMPLATE = """# Network Policy Test Results

- Provider: {{ environment.provider }}
- CNI: {{ environment.cni }}
- Kubernetes: {{ environment.kubernetes_version }}
- Run: {{ test_run.timestamp }} ({{ test_run.workers }} workers, {{ test_run.timeout }}s timeout)

## Summary

| Total | Passed | Failed | Timeout | Pass rate | Duration |
|-------|--------|--------|---------|-----------|----------|
| {{ summary.total }} | {{ summary.passed }} | {{ summary.failed }} | {{ summary.timeout }} | {{ summary.pass_rate }}% | {{ summary.total_duration_seconds }}s |

## Results

| Recipe | Status | Duration | Error |
|--------|--------|----------|-------|
{% for result in results -%}
| NP-{{ result.recipe_id }} | {{ result.status }} | {{ result.duration_seconds }}s | {{ result.error_cell }} |
{% endfor %}"""


def _chart_data(aggregate):
    results = aggregate.get('results', [])
    return {
        'labels': [r['recipe_id'] for r in results],
        'durations': [r['duration_seconds'] for r in results],
        'statuses': [r['status'] for r in results],
    }


def _template_context(aggregate):
    return {
        'test_run': aggregate.get('test_run', {}),
        'environment': aggregate.get('environment', {}),
        'results': aggregate.get('results', []),
        'summary': aggregate['summary'],
    }


def render_html_report(aggregate):
    """Render an aggregate document as an HTML page."""
    template = Template(HTML_TEMPLATE, autoescape=True)
    return template.render(chart_data=_chart_data(aggregate), **_template_context(aggregate))


def generate_html_report(aggregate, output_file):
    """
    Write an HTML report for an aggregate document.

    Args:
        aggregate (dict): Output of aggregate_results (or a loaded aggregate file)
        output_file (str): Path of the HTML file to write

    Returns:
        str: The path written
    """
    html = render_html_report(aggregate)
    parent = os.path.dirname(output_file)
    if parent:
        os.makedirs(parent, exist_ok=True)
    with open(output_file, 'w') as f:
        f.write(html)
    log.info(f"HTML report generated: {output_file}")
    return output_file


def generate_markdown_report(aggregate):
    """Render an aggregate document as a Markdown summary (e.g. for CI job summaries)."""
    context = _template_context(aggregate)
    # Table cells cannot hold pipes or line breaks
    context['results'] = [
        dict(result, error_cell=(result.get('error_message') or "").replace("|", r"\|").replace("\n", " "))
        for result in context['results']
    ]
    template = Template(MARKDOWN_TEMPLATE)
    return template.render(**context)
