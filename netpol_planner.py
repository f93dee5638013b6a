#!/usr/bin/env python3
"""
NetworkPolicy Test Planner - Main entry point

Detects the cloud provider and CNI plugin of a Kubernetes cluster, decides which
NetworkPolicy recipe tests can meaningfully run there, and turns the runner's
results into reports, badges and historical comparisons.
"""

# Standard library imports
import json
import os
import sys

# Third-party library imports
import click  # CLI framework for the sub-commands
import logging
import yaml
from rich.console import Console  # Rich text and tables in the terminal
from rich.logging import RichHandler  # Rich handler for logging

# Local module imports - core functionality lives in the netpol_lib package
from netpol_lib.badge_generator import generate_badges_from_aggregate, generate_readme_badges
from netpol_lib.cloud_detection import (
    CNIPlugin,
    Provider,
    detect_cni,
    detect_provider,
    generate_environment_report,
    get_cni_version,
    get_k8s_version,
)
from netpol_lib.config import load_settings
from netpol_lib.execution_planner import (
    check_test_requirements,
    generate_plan,
    print_test_summary,
    should_run,
)
from netpol_lib.feature_matrix import (
    generate_compatibility_report,
    get_supported_recipes,
    get_unsupported_recipes,
    is_recipe_supported,
)
from netpol_lib.history import (
    archive_result,
    compare_results,
    detect_regression,
    generate_trend_report,
    send_regression_alert,
)
from netpol_lib.k8s_utils import ClusterClient
from netpol_lib.provider_config import generate_test_config, get_provider_settings, validate_environment
from netpol_lib.report_generator import (
    aggregate_results,
    generate_html_report,
    generate_markdown_report,
    load_json,
    load_results,
    write_json,
)

# Set up logging with Rich formatting; logs go to stderr so JSON on stdout stays machine-readable
logging.basicConfig(
    level=logging.INFO,  # Default log level
    format="%(message)s",
    datefmt="[%X]",
    handlers=[RichHandler(rich_tracebacks=True, console=Console(stderr=True))]
)
log = logging.getLogger("netpol-planner")
console = Console()  # Console for command output on stdout

# Runner defaults recorded in aggregates when neither option nor environment sets them
DEFAULT_RUN_TIMEOUT = 60
DEFAULT_RUN_WORKERS = 4


class PlannerContext:
    """
    Settings plus a lazily connected cluster, shared by all sub-commands.

    Commands whose provider and CNI are given explicitly never touch the cluster.
    """

    def __init__(self, settings, request_timeout):
        self.settings = settings
        self.request_timeout = request_timeout
        self._cluster = None

    @property
    def connected(self):
        return self._cluster is not None

    @property
    def cluster(self):
        if self._cluster is None:
            self._cluster = ClusterClient(request_timeout=self.request_timeout)
        return self._cluster

    def provider(self, override=None):
        """Explicit provider name, else CLOUD_PROVIDER, else detection."""
        name = override or self.settings.cloud_provider
        if name:
            provider = Provider.parse(name)
            log.debug(f"Using provider override: {provider}")
            return provider
        return detect_provider(self.cluster)

    def cni(self, override=None, provider=None):
        """Explicit CNI name, else CNI_PLUGIN, else detection."""
        name = override or self.settings.cni_plugin
        if name:
            cni = CNIPlugin.parse(name)
            log.debug(f"Using CNI override: {cni}")
            return cni
        # The provider-default heuristic must see CLOUD_PROVIDER as well
        if provider is None:
            provider = self.provider()
        return detect_cni(self.cluster, provider)


def fail(message, error):
    console.print(f"[bold red]{message}: {str(error)}[/bold red]")
    sys.exit(1)


def echo_json(data):
    click.echo(json.dumps(data, indent=2))


@click.group()
@click.option('--debug', is_flag=True, help='Enable debug logging')
@click.option('--request-timeout', type=click.IntRange(min=1),
              help='Timeout in seconds for each Kubernetes API request (default: KUBE_REQUEST_TIMEOUT or 10)')
@click.pass_context
def cli(ctx, debug, request_timeout):
    """NetworkPolicy Test Planner - Plan recipe tests for the cluster's provider and CNI"""
    # Enable debug logging if the debug flag is set
    if debug:
        logging.getLogger().setLevel(logging.DEBUG)
        log.debug("Debug logging enabled")
    # Environment variables are validated once, before any sub-command runs
    try:
        settings = load_settings()
    except ValueError as e:
        fail("Invalid configuration", e)
    ctx.obj = PlannerContext(settings, request_timeout or settings.request_timeout)


# Detection

@cli.command()
@click.pass_obj
def provider(obj):
    """Print the detected cloud provider"""
    try:
        click.echo(obj.provider())
    except Exception as e:
        fail("Error detecting provider", e)


@cli.command()
@click.pass_obj
def cni(obj):
    """Print the detected CNI plugin"""
    try:
        click.echo(obj.cni())
    except Exception as e:
        fail("Error detecting CNI", e)


@cli.command()
@click.option('--output-file', help='Also write the report to this file')
@click.pass_obj
def report(obj, output_file):
    """Print the environment report as JSON"""
    try:
        detected_provider = obj.provider()
        detected_cni = obj.cni(provider=detected_provider)
        data = generate_environment_report(obj.cluster, detected_provider, detected_cni)
        if output_file:
            write_json(data, output_file)
        echo_json(data)
    except Exception as e:
        fail("Error generating environment report", e)


# Feature matrix

@cli.command()
@click.option('--provider', 'provider_name', help='Cloud provider (default: CLOUD_PROVIDER or detected)')
@click.option('--cni', 'cni_name', help='CNI plugin (default: CNI_PLUGIN or detected)')
@click.pass_obj
def compat(obj, provider_name, cni_name):
    """Print the feature compatibility report as JSON"""
    try:
        detected_provider = obj.provider(provider_name)
        detected_cni = obj.cni(cni_name, detected_provider)
        # Versions are only looked up when detection already needed the cluster
        cni_version = get_cni_version(obj.cluster, detected_cni) if obj.connected else "unknown"
        k8s_version = get_k8s_version(obj.cluster) if obj.connected else "unknown"
        echo_json(generate_compatibility_report(detected_provider, detected_cni, cni_version, k8s_version))
    except Exception as e:
        fail("Error generating compatibility report", e)


@cli.command()
@click.argument('recipe')
@click.argument('cni_name', required=False)
@click.pass_obj
def check(obj, recipe, cni_name):
    """Check if RECIPE is supported by a CNI (exit 1 when it is not)"""
    try:
        target = obj.cni(cni_name)
        supported = is_recipe_supported(recipe, target)
    except Exception as e:
        fail("Error checking recipe", e)
    # Exit status mirrors support so shell scripts can branch on it
    if supported:
        click.echo(f"Recipe {recipe} is supported by {target}")
        sys.exit(0)
    click.echo(f"Recipe {recipe} is not fully supported by {target}")
    sys.exit(1)


@cli.command()
@click.argument('cni_name', required=False)
@click.pass_obj
def supported(obj, cni_name):
    """List recipes a CNI supports"""
    try:
        click.echo(" ".join(get_supported_recipes(obj.cni(cni_name))))
    except Exception as e:
        fail("Error listing supported recipes", e)


@cli.command()
@click.argument('cni_name', required=False)
@click.pass_obj
def unsupported(obj, cni_name):
    """List recipes a CNI cannot enforce"""
    try:
        click.echo(" ".join(get_unsupported_recipes(obj.cni(cni_name))))
    except Exception as e:
        fail("Error listing unsupported recipes", e)


# Execution planning

@cli.command('should-run')
@click.argument('test_id')
@click.argument('provider_name', required=False)
@click.argument('cni_name', required=False)
@click.pass_obj
def should_run_command(obj, test_id, provider_name, cni_name):
    """Decide if TEST_ID should run (exit 1 when it should be skipped)"""
    try:
        target_provider = obj.provider(provider_name)
        run, reason = should_run(test_id, target_provider, obj.cni(cni_name, target_provider))
    except Exception as e:
        fail("Error planning test", e)
    # Exit 1 means skip, matching the test runner's contract
    if run:
        click.echo(f"Test {test_id} should run")
        sys.exit(0)
    click.echo(f"SKIP: {reason}")
    sys.exit(1)


def _build_plan(obj, provider_name, cni_name, timeout, workers):
    target_provider = obj.provider(provider_name)
    target_cni = obj.cni(cni_name, target_provider)
    # Explicit options win over TEST_TIMEOUT/MAX_WORKERS, which win over provider tuning
    return generate_plan(target_provider, target_cni,
                         timeout=timeout or obj.settings.test_timeout,
                         workers=workers or obj.settings.max_workers)


@cli.command()
@click.option('--provider', 'provider_name', help='Cloud provider (default: CLOUD_PROVIDER or detected)')
@click.option('--cni', 'cni_name', help='CNI plugin (default: CNI_PLUGIN or detected)')
@click.option('--timeout', type=click.IntRange(min=1), help='Per-test timeout in seconds (default: TEST_TIMEOUT or tuned)')
@click.option('--workers', type=click.IntRange(min=1), help='Parallel worker count (default: MAX_WORKERS or tuned)')
@click.option('--format', 'output_format', type=click.Choice(['json', 'yaml']), default='json',
              help='Output format')
@click.option('--output-file', help='Also write the plan to this file')
@click.pass_obj
def plan(obj, provider_name, cni_name, timeout, workers, output_format, output_file):
    """Print the test execution plan"""
    try:
        data = _build_plan(obj, provider_name, cni_name, timeout, workers).to_dict()
        if output_format == 'yaml':
            text = yaml.safe_dump(data, sort_keys=False)
        else:
            text = json.dumps(data, indent=2)
        if output_file:
            with open(output_file, 'w') as f:
                f.write(text)
        click.echo(text)
    except Exception as e:
        fail("Error generating execution plan", e)


@cli.command()
@click.option('--provider', 'provider_name', help='Cloud provider (default: CLOUD_PROVIDER or detected)')
@click.option('--cni', 'cni_name', help='CNI plugin (default: CNI_PLUGIN or detected)')
@click.option('--timeout', type=click.IntRange(min=1), help='Per-test timeout in seconds (default: TEST_TIMEOUT or tuned)')
@click.option('--workers', type=click.IntRange(min=1), help='Parallel worker count (default: MAX_WORKERS or tuned)')
@click.pass_obj
def summary(obj, provider_name, cni_name, timeout, workers):
    """Show which tests will run and which will be skipped"""
    try:
        print_test_summary(_build_plan(obj, provider_name, cni_name, timeout, workers), console)
    except Exception as e:
        fail("Error generating test summary", e)


@cli.command()
@click.argument('recipe')
@click.option('--provider', 'provider_name', help='Cloud provider (default: CLOUD_PROVIDER or detected)')
@click.option('--probe/--no-probe', default=False, help='Probe the cluster for external connectivity')
@click.pass_obj
def requirements(obj, recipe, provider_name, probe):
    """List environment requirements RECIPE needs but the cluster lacks"""
    try:
        # The cluster is only contacted when a connectivity probe is requested
        missing = check_test_requirements(recipe, obj.provider(provider_name), obj.cluster if probe else None)
    except Exception as e:
        fail("Error checking requirements", e)
    if not missing:
        console.print(f"[bold green]All requirements for recipe {recipe} are met[/bold green]")
        return
    console.print(f"[bold yellow]Recipe {recipe} is missing:[/bold yellow]")
    for requirement in missing:
        console.print(f"- {requirement}")
    sys.exit(1)


# Provider configuration

@cli.command()
@click.argument('provider_name', required=False)
@click.argument('cni_name', required=False)
@click.pass_obj
def validate(obj, provider_name, cni_name):
    """Validate that the cluster can run NetworkPolicy tests"""
    console.print("[bold blue]Validating test environment...[/bold blue]")
    try:
        target_provider = obj.provider(provider_name)
        target_cni = obj.cni(cni_name, target_provider)
        valid, issues = validate_environment(obj.cluster, target_provider, target_cni)
    except Exception as e:
        fail("Error validating environment", e)
    if valid:
        console.print(f"[bold green]Environment {target_provider}/{target_cni} can run NetworkPolicy tests[/bold green]")
        return
    console.print(f"[bold red]Environment validation failed with {len(issues)} issue(s):[/bold red]")
    for issue in issues:
        console.print(f"- {issue}")
    sys.exit(1)


@cli.command()
@click.option('--provider', 'provider_name', help='Cloud provider (default: CLOUD_PROVIDER or detected)')
@click.option('--cni', 'cni_name', help='CNI plugin (default: CNI_PLUGIN or detected)')
@click.option('--timeout', type=click.IntRange(min=1), help='Per-test timeout in seconds (default: TEST_TIMEOUT or tuned)')
@click.option('--workers', type=click.IntRange(min=1), help='Parallel worker count (default: MAX_WORKERS or tuned)')
@click.option('--collect/--no-collect', default=False, help='Include provider-specific settings read from the cluster')
@click.pass_obj
def config(obj, provider_name, cni_name, timeout, workers, collect):
    """Print the provider-specific test configuration as JSON"""
    try:
        target_provider = obj.provider(provider_name)
        target_cni = obj.cni(cni_name, target_provider)
        data = generate_test_config(target_provider, target_cni,
                                    timeout=timeout or obj.settings.test_timeout,
                                    workers=workers or obj.settings.max_workers)
        if collect:
            data['provider_settings'] = get_provider_settings(obj.cluster, target_provider)
        echo_json(data)
    except Exception as e:
        fail("Error generating test configuration", e)


# Reporting

@cli.command()
@click.argument('results_file')
@click.option('--output-file', help='Aggregate JSON file (default: RESULTS_DIR/aggregate.json)')
@click.option('--provider', 'provider_name', default='unknown', help='Provider of the test run')
@click.option('--cni', 'cni_name', default='unknown', help='CNI of the test run')
@click.option('--k8s-version', default='unknown', help='Kubernetes version of the test run')
@click.option('--timeout', type=click.IntRange(min=1), help='Per-test timeout used (default: TEST_TIMEOUT or 60)')
@click.option('--workers', type=click.IntRange(min=1), help='Parallel workers used (default: MAX_WORKERS or 4)')
@click.pass_obj
def aggregate(obj, results_file, output_file, provider_name, cni_name, k8s_version, timeout, workers):
    """Aggregate per-recipe results into a summary document"""
    output_file = output_file or os.path.join(obj.settings.results_dir, 'aggregate.json')
    try:
        environment = {
            'provider': Provider.parse(provider_name).value,
            'cni': CNIPlugin.parse(cni_name).value,
            'kubernetes_version': k8s_version,
        }
        data = aggregate_results(
            load_results(results_file),
            workers or obj.settings.max_workers or DEFAULT_RUN_WORKERS,
            timeout or obj.settings.test_timeout or DEFAULT_RUN_TIMEOUT,
            environment,
        )
        write_json(data, output_file)
    except Exception as e:
        fail("Error aggregating results", e)
    result = data['summary']
    console.print(f"[bold green]Aggregated results saved to {output_file}[/bold green]")
    console.print(f"Passed: [bold]{result['passed']}/{result['total']}[/bold] ({result['pass_rate']}%)")


def _load_aggregate(path):
    # Accept either an aggregate document or the raw records it is built from
    data = load_json(path)
    if isinstance(data, dict) and 'summary' in data:
        return data
    # A bare list of result records
    return aggregate_results(load_results(path), workers=0, timeout=0)


@cli.command('html-report')
@click.argument('json_file')
@click.argument('output_file', required=False)
@click.pass_obj
def html_report(obj, json_file, output_file):
    """Render an HTML report from an aggregate results file"""
    output_file = output_file or os.path.join(obj.settings.results_dir, 'report.html')
    try:
        generate_html_report(_load_aggregate(json_file), output_file)
    except Exception as e:
        fail("Error generating HTML report", e)
    console.print(f"[bold green]HTML report generated: {output_file}[/bold green]")


@cli.command('markdown-report')
@click.argument('json_file')
def markdown_report(json_file):
    """Print a Markdown summary of an aggregate results file"""
    try:
        click.echo(generate_markdown_report(_load_aggregate(json_file)))
    except Exception as e:
        fail("Error generating Markdown report", e)


@cli.command()
@click.argument('aggregate_file')
@click.option('--output-dir', help='Badge directory (default: RESULTS_DIR/badges)')
@click.option('--repo-url', help='Print README markdown for badges published under this URL')
@click.pass_obj
def badges(obj, aggregate_file, output_dir, repo_url):
    """Generate shields.io badges from an aggregate results file"""
    # Badge JSON defaults to RESULTS_DIR/badges
    output_dir = output_dir or os.path.join(obj.settings.results_dir, 'badges')
    try:
        generated = generate_badges_from_aggregate(_load_aggregate(aggregate_file), output_dir)
    except Exception as e:
        fail("Error generating badges", e)
    console.print(f"[bold green]Generated {len(generated)} badges in {output_dir}[/bold green]")
    if repo_url:
        click.echo(generate_readme_badges(repo_url))


# Historical comparison

@cli.group()
def history():
    """Archive results and compare test runs over time"""


def _history_dir(obj):
    return os.path.join(obj.settings.results_dir, 'history')


@history.command('archive')
@click.argument('json_file')
@click.pass_obj
def history_archive(obj, json_file):
    """Archive an aggregate results file"""
    try:
        archived = archive_result(json_file, _history_dir(obj))
    except Exception as e:
        fail("Error archiving result", e)
    console.print(f"[bold green]Archived result: {archived}[/bold green]")


@history.command('compare')
@click.argument('baseline')
@click.argument('current')
def history_compare(baseline, current):
    """Compare two aggregate results files"""
    try:
        echo_json(compare_results(baseline, current))
    except Exception as e:
        fail("Error comparing results", e)


@history.command('regression')
@click.argument('baseline')
@click.argument('current')
@click.option('--webhook', help='Webhook to alert when a regression is found (default: REGRESSION_ALERT_WEBHOOK)')
@click.pass_obj
def history_regression(obj, baseline, current, webhook):
    """Detect regressions between two runs (exit 1 when found)"""
    try:
        regressed, comparison = detect_regression(baseline, current)
    except Exception as e:
        fail("Error detecting regressions", e)
    echo_json(comparison)
    if regressed:
        # Without a webhook the alert is skipped and only the exit status signals the regression
        send_regression_alert(comparison, webhook or obj.settings.alert_webhook)
        sys.exit(1)


@history.command('trend')
@click.argument('output_file', required=False)
@click.pass_obj
def history_trend(obj, output_file):
    """Render a trend report from archived results"""
    output_file = output_file or os.path.join(obj.settings.results_dir, 'trend-report.html')
    try:
        generate_trend_report(_history_dir(obj), output_file)
    except Exception as e:
        fail("Error generating trend report", e)
    console.print(f"[bold green]Trend report generated: {output_file}[/bold green]")


if __name__ == '__main__':
    cli()
