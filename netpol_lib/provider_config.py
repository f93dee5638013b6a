"""
Provider-specific configuration for the NetworkPolicy test planner

Collects the provider-specific facts that affect NetworkPolicy testing
(e.g. whether EKS has a policy engine installed next to the VPC CNI), checks
that an environment can run the recipes at all, and renders the test
configuration handed to the test runner.
"""

# Standard library imports
import json
import logging
from datetime import datetime

# Third-party imports
from kubernetes.client.rest import ApiException

# Local imports
from .cloud_detection import CNIPlugin, Provider, get_cni_version
from .feature_matrix import get_recommended_timeout, get_recommended_workers, get_supported_recipes
from .k8s_utils import ClusterUnreachableError, run_host_command

# Set up module logger
log = logging.getLogger("netpol-planner.provider_config")

EKS_CALICO_DOCS = "https://docs.aws.amazon.com/eks/latest/userguide/calico.html"


def _gke_settings(cluster):
    node = cluster.first_node() or {'labels': {}}
    dataplane_v2 = node['labels'].get("cloud.google.com/gke-netd") == "true"
    if dataplane_v2:
        log.info("GKE Dataplane V2 (Cilium) detected")
    return {'gke_dataplane_v2': dataplane_v2}


def _eks_settings(cluster):
    vpc_cni_version = get_cni_version(cluster, CNIPlugin.VPC_CNI)
    log.info(f"AWS VPC CNI version: {vpc_cni_version}")

    # The VPC CNI alone does not enforce NetworkPolicy; Calico is the usual add-on
    policy_enabled = cluster.daemonset_exists("calico-node")
    if policy_enabled:
        log.info("EKS Network Policy (Calico) is enabled")
    else:
        log.warning("EKS Network Policy not detected. Install Calico for full NetworkPolicy support.")
    return {
        'aws_vpc_cni_version': vpc_cni_version,
        'eks_network_policy_enabled': policy_enabled,
    }


def _aks_settings(cluster):
    node = cluster.first_node() or {'labels': {}}
    network_plugin = node['labels'].get("kubernetes.azure.com/network-plugin", "unknown")
    npm_enabled = cluster.daemonset_exists("azure-npm")
    log.info(f"AKS Network Plugin: {network_plugin}")
    return {
        'aks_network_plugin': network_plugin,
        'aks_npm_enabled': npm_enabled,
    }


def _kind_settings(cluster):
    return {'kind_cluster_name': cluster.current_context().replace("kind-", "", 1)}


def _minikube_settings(cluster):
    driver = "unknown"
    listed, output = run_host_command(["minikube", "profile", "list", "-o", "json"])
    if listed:
        try:
            profiles = json.loads(output).get("valid") or []
            if profiles:
                driver = profiles[0].get("Config", {}).get("Driver") or "unknown"
        except ValueError:
            log.debug("Could not parse minikube profile list output")
    return {'minikube_driver': driver}


def _k3s_settings(cluster):
    engine = "unknown"
    if cluster.daemonset_exists("kube-router"):
        engine = "kube-router"
    elif cluster.daemonset_exists("calico-node"):
        engine = "calico"
    log.info(f"k3s Network Policy engine: {engine}")
    return {'k3s_network_policy_engine': engine}


def _microk8s_settings(cluster):
    ok, output = run_host_command(["microk8s", "status"])
    return {'microk8s_cilium_enabled': ok and "cilium: enabled" in output}


PROVIDER_SETTINGS = {
    Provider.GKE: _gke_settings,
    Provider.EKS: _eks_settings,
    Provider.AKS: _aks_settings,
    Provider.KIND: _kind_settings,
    Provider.MINIKUBE: _minikube_settings,
    Provider.K3S: _k3s_settings,
    Provider.MICROK8S: _microk8s_settings,
}


def get_provider_settings(cluster, provider):
    """
    Collect provider-specific settings relevant to NetworkPolicy testing.

    Args:
        cluster (ClusterClient): Cluster to inspect
        provider (Provider): Cluster provider

    Returns:
        dict: Provider-specific facts; empty for unknown providers
    """
    provider = Provider.parse(provider)
    collector = PROVIDER_SETTINGS.get(provider)
    if collector is None:
        log.warning(f"Unknown provider: {provider}, using defaults")
        return {}
    log.info(f"Collecting {provider}-specific configuration...")
    return collector(cluster)


def validate_environment(cluster, provider, cni):
    """
    Validate that an environment can run NetworkPolicy recipe tests.

    Args:
        cluster (ClusterClient): Cluster to check
        provider (Provider): Cluster provider
        cni (CNIPlugin): CNI plugin

    Returns:
        tuple: (valid, issues) where issues is a list of human-readable problems
    """
    provider = Provider.parse(provider)
    cni = CNIPlugin.parse(cni)
    issues = []

    try:
        cluster.node_count()
    except (ClusterUnreachableError, ApiException) as e:
        log.error(f"Cannot access Kubernetes cluster: {e}")
        return False, ["Cannot access Kubernetes cluster. Check kubectl configuration."]

    if not cluster.network_policy_api_available():
        issues.append("NetworkPolicy API not available in this cluster")

    if cni == CNIPlugin.FLANNEL:
        issues.append("Flannel does not support NetworkPolicy natively; consider installing Calico")
    elif cni == CNIPlugin.VPC_CNI and provider == Provider.EKS:
        if not cluster.daemonset_exists("calico-node"):
            issues.append(f"EKS detected with VPC CNI but no NetworkPolicy support; install Calico: {EKS_CALICO_DOCS}")

    for issue in issues:
        log.warning(issue)
    if not issues:
        log.info("Environment validation passed")
    return not issues, issues


def generate_test_config(provider, cni, timeout=None, workers=None):
    """
    Generate the provider-specific test configuration for the test runner.

    Args:
        provider (Provider): Cluster provider
        cni (CNIPlugin): CNI plugin
        timeout (int): Explicit timeout overriding the provider recommendation
        workers (int): Explicit worker count overriding the provider recommendation

    Returns:
        dict: Test configuration plus the environment variables the runner reads
    """
    provider = Provider.parse(provider)
    cni = CNIPlugin.parse(cni)
    timeout = timeout or get_recommended_timeout(provider)
    workers = workers or get_recommended_workers(provider)

    return {
        'provider': provider.value,
        'cni': cni.value,
        'test_config': {
            'timeout_seconds': timeout,
            'parallel_workers': workers,
            'supported_recipes': get_supported_recipes(cni),
        },
        'environment_variables': {
            'CLOUD_PROVIDER': provider.value,
            'CNI_PLUGIN': cni.value,
            'TEST_TIMEOUT': str(timeout),
            'MAX_WORKERS': str(workers),
        },
        'generated_at': datetime.now().astimezone().isoformat(timespec="seconds"),
    }
