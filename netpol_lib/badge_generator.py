"""
shields.io endpoint badges for NetworkPolicy test results
"""

# Standard library imports
import logging
import os

# Third-party imports
from jinja2 import Template

# Local imports
from .report_generator import write_json

# Set up module logger
log = logging.getLogger("netpol-planner.badge_generator")

# (minimum percentage, color), checked top-down
COLOR_THRESHOLDS = (
    (95, "brightgreen"),
    (90, "green"),
    (75, "yellow"),
    (50, "orange"),
)

README_BADGES_TEMPLATE = """<!-- NetworkPolicy test badges -->
{% for label, name in badges -%}
![{{ label }}](https://img.shields.io/endpoint?url={{ repo_url }}/{{ name }}.json)
{% endfor %}"""

README_BADGES = (
    ("Pass Rate", "pass-rate"),
    ("Test Count", "tests"),
    ("CI Status", "ci-status"),
)


def badge_color(percentage):
    for minimum, color in COLOR_THRESHOLDS:
        if percentage >= minimum:
            return color
    return "red"


def make_badge(label, message, color):
    """Build a shields.io endpoint document."""
    return {
        'schemaVersion': 1,
        'label': label,
        'message': message,
        'color': color,
    }


def generate_pass_rate_badge(pass_rate, output_file):
    badge = make_badge("pass rate", f"{pass_rate}%", badge_color(pass_rate))
    write_json(badge, output_file)
    log.info(f"Pass rate badge generated: {output_file} ({pass_rate}%, {badge['color']})")
    return badge


def generate_test_count_badge(passed, total, output_file):
    color = "brightgreen" if passed == total else badge_color(passed * 100 / total if total else 0)
    badge = make_badge("tests", f"{passed}/{total} passing", color)
    write_json(badge, output_file)
    log.info(f"Test count badge generated: {output_file} ({passed}/{total})")
    return badge


def generate_ci_status_badge(status, output_file):
    """Status "passing"/"PASS" is green, "pending" is yellow, anything else is failing."""
    if status in ("passing", "PASS"):
        message, color = "passing", "brightgreen"
    elif status == "pending":
        message, color = "pending", "yellow"
    else:
        message, color = "failing", "red"
    badge = make_badge("build", message, color)
    write_json(badge, output_file)
    log.info(f"CI status badge generated: {output_file} ({message})")
    return badge


def generate_badges_from_aggregate(aggregate, badges_dir):
    """
    Generate every badge for an aggregate test run document.

    Args:
        aggregate (dict): Output of report_generator.aggregate_results
        badges_dir (str): Directory to write the badge files to

    Returns:
        dict: Badge file name -> badge document
    """
    summary = aggregate['summary']
    failures = summary['failed'] + summary['timeout']
    status = "passing" if summary['total'] and not failures else "failing"

    return {
        'pass-rate.json': generate_pass_rate_badge(
            summary['pass_rate'], os.path.join(badges_dir, 'pass-rate.json')),
        'tests.json': generate_test_count_badge(
            summary['passed'], summary['total'], os.path.join(badges_dir, 'tests.json')),
        'ci-status.json': generate_ci_status_badge(
            status, os.path.join(badges_dir, 'ci-status.json')),
    }


def generate_readme_badges(repo_url):
    """Render README markdown pointing shields.io at published badge files."""
    template = Template(README_BADGES_TEMPLATE)
    return template.render(repo_url=repo_url.rstrip("/"), badges=README_BADGES)
