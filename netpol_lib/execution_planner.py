"""
Conditional test execution planner

Decides which NetworkPolicy recipe tests should run in a given environment and
with which timeout, retry and polling parameters. Every call re-derives its
answer from the provider/CNI it is given and the static feature matrix.
"""

# Standard library imports
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List

# Third-party imports
from rich.console import Console
from rich.table import Table

# Local imports
from .cloud_detection import MANAGED_PROVIDERS, CNIPlugin, Provider
from .feature_matrix import RECIPE_IDS, get_recommended_workers, is_recipe_supported

# Set up module logger
log = logging.getLogger("netpol-planner.execution_planner")

BOOTSTRAP_TEST_ID = "00"
PLANNED_TEST_IDS = (BOOTSTRAP_TEST_ID,) + RECIPE_IDS

# Reason templates for recipes the CNI cannot enforce
SKIP_REASONS = {
    "01": "CNI {cni} does not support basic ingress policies",
    "02": "CNI {cni} does not support basic ingress policies",
    "02a": "CNI {cni} does not support basic ingress policies",
    "03": "CNI {cni} does not support namespace selectors",
    "04": "CNI {cni} does not support namespace selectors",
    "05": "CNI {cni} does not support namespace selectors",
    "06": "CNI {cni} does not support namespace selectors",
    "07": "CNI {cni} does not support pod selectors",
    "08": "CNI {cni} does not support ipBlock rules",
    "09": "CNI {cni} does not support port-based policies",
    "10": "CNI {cni} does not support port-based policies",
    "11": "CNI {cni} does not support egress policies",
    "12": "CNI {cni} does not support egress policies",
    "13": "CNI {cni} does not support egress pod selectors",
    "14": "CNI {cni} does not support external egress policies",
}

LOCAL_PROVIDERS = frozenset({Provider.KIND, Provider.K3S, Provider.MICROK8S})


def should_run(recipe_id, provider, cni):
    """
    Determine if a recipe test should run in an environment.

    Args:
        recipe_id (str): "00" or one of the fixed recipe IDs
        provider (Provider or str): Cluster provider
        cni (CNIPlugin or str): CNI plugin

    Returns:
        tuple: (should_run, reason). reason is "" when the test should run.

    Raises:
        ValueError: For recipe IDs outside the fixed recipe set
    """
    provider = Provider.parse(provider)
    cni = CNIPlugin.parse(cni)

    # Cluster bootstrap always runs
    if recipe_id == BOOTSTRAP_TEST_ID:
        return True, ""

    # Recipe 08 exposes a LoadBalancer Service
    if recipe_id == "08" and provider not in MANAGED_PROVIDERS:
        return False, f"Recipe 08 requires cloud provider with LoadBalancer support (provider: {provider})"

    # Recipe 14 needs a known CNI on top of the feature matrix
    if recipe_id == "14" and cni == CNIPlugin.UNKNOWN:
        return False, "Cannot determine CNI plugin for recipe 14"

    if is_recipe_supported(recipe_id, cni):
        return True, ""
    return False, SKIP_REASONS[recipe_id].format(cni=cni)


def get_timeout(provider):
    """Per-test timeout in seconds; cloud clusters provision resources more slowly."""
    provider = Provider.parse(provider)
    if provider in MANAGED_PROVIDERS:
        return 120
    if provider in LOCAL_PROVIDERS:
        return 60
    # minikube pays for VM overhead; unknown gets the same middle ground
    return 90


def get_retry_count(provider):
    return 5 if Provider.parse(provider) in MANAGED_PROVIDERS else 3


def get_poll_interval(provider):
    return 10 if Provider.parse(provider) in MANAGED_PROVIDERS else 5


def get_worker_count(provider):
    return get_recommended_workers(provider)


@dataclass
class ExecutionPlan:
    provider: Provider
    cni: CNIPlugin
    runnable: List[str]
    skipped: List[str]
    timeout_seconds: int
    worker_count: int
    retry_count: int
    poll_interval_seconds: int
    skip_reasons: Dict[str, str] = field(default_factory=dict)

    def to_dict(self):
        return {
            'environment': {
                'provider': self.provider.value,
                'cni': self.cni.value,
            },
            'execution_config': {
                'timeout_seconds': self.timeout_seconds,
                'retry_count': self.retry_count,
                'poll_interval_seconds': self.poll_interval_seconds,
                'parallel_workers': self.worker_count,
            },
            'test_plan': {
                'runnable_tests': list(self.runnable),
                'skipped_tests': list(self.skipped),
                'skip_reasons': dict(self.skip_reasons),
                'total_runnable': len(self.runnable),
                'total_skipped': len(self.skipped),
            },
            'generated_at': datetime.now().astimezone().isoformat(timespec="seconds"),
        }


def generate_plan(provider, cni, timeout=None, workers=None):
    """
    Generate the test execution plan for an environment.

    Args:
        provider (Provider or str): Cluster provider
        cni (CNIPlugin or str): CNI plugin
        timeout (int): Explicit per-test timeout (e.g. TEST_TIMEOUT), overrides the tuned value
        workers (int): Explicit worker count (e.g. MAX_WORKERS), overrides the tuned value

    Returns:
        ExecutionPlan: Runnable/skipped partition of all planned tests with tuned parameters
    """
    provider = Provider.parse(provider)
    cni = CNIPlugin.parse(cni)

    runnable = []
    skipped = []
    skip_reasons = {}
    for test_id in PLANNED_TEST_IDS:
        run, reason = should_run(test_id, provider, cni)
        if run:
            runnable.append(test_id)
        else:
            skipped.append(test_id)
            skip_reasons[test_id] = reason
            log.debug(f"Skipping recipe {test_id}: {reason}")

    plan = ExecutionPlan(
        provider=provider,
        cni=cni,
        runnable=runnable,
        skipped=skipped,
        skip_reasons=skip_reasons,
        timeout_seconds=timeout or get_timeout(provider),
        worker_count=workers or get_worker_count(provider),
        retry_count=get_retry_count(provider),
        poll_interval_seconds=get_poll_interval(provider),
    )
    log.info(f"Plan for {provider}/{cni}: {len(runnable)} runnable, {len(skipped)} skipped")
    return plan


def check_test_requirements(recipe_id, provider, cluster=None):
    """
    List environment requirements a recipe needs but the environment lacks.

    Args:
        recipe_id (str): Recipe to check
        provider (Provider or str): Cluster provider
        cluster (ClusterClient): When given, recipe 14 probes external connectivity

    Returns:
        list: Human-readable missing requirements, empty when all are met
    """
    missing = []
    if recipe_id == "08" and Provider.parse(provider) not in MANAGED_PROVIDERS:
        missing.append("LoadBalancer service type support")
    if recipe_id == "14" and cluster is not None and not cluster.check_external_connectivity():
        missing.append("External network connectivity")
    return missing


def print_test_summary(plan, console=None):
    """Print the runnable and skipped tests of a plan as a table."""
    console = console or Console()

    table = Table(title=f"Test Execution Summary ({plan.provider} / {plan.cni})")
    table.add_column("Recipe", style="bold")
    table.add_column("Decision")
    table.add_column("Reason")

    for test_id in plan.runnable:
        table.add_row(test_id, "[green]run[/green]", "")
    for test_id in plan.skipped:
        table.add_row(test_id, "[yellow]skip[/yellow]", plan.skip_reasons.get(test_id, ""))

    console.print(table)
    console.print(
        f"Runnable: [bold]{len(plan.runnable)}[/bold]  "
        f"Skipped: [bold]{len(plan.skipped)}[/bold]  "
        f"Timeout: {plan.timeout_seconds}s  Workers: {plan.worker_count}  "
        f"Retries: {plan.retry_count}  Poll: {plan.poll_interval_seconds}s"
    )
