"""
Cloud provider and CNI plugin detection

This module fingerprints the Kubernetes environment the NetworkPolicy recipes
are about to be tested on. Both detectors are cascades of small heuristics:
each heuristic inspects one signal through the ClusterClient and either returns
a value or None. The first heuristic that returns a value wins, so ordering
decides ties. When no heuristic fires the result is "unknown"; detection never
raises for ambiguity. Only an unreachable API server propagates as an error.
"""

# Standard library imports
import logging
import re
from datetime import datetime
from enum import Enum

# Third-party imports
from kubernetes.client.rest import ApiException

# Local imports
from .k8s_utils import run_host_command

# Set up module logger
log = logging.getLogger("netpol-planner.cloud_detection")


class Provider(str, Enum):
    GKE = "gke"
    EKS = "eks"
    AKS = "aks"
    KIND = "kind"
    MINIKUBE = "minikube"
    K3S = "k3s"
    MICROK8S = "microk8s"
    UNKNOWN = "unknown"

    def __str__(self):
        return self.value

    @classmethod
    def parse(cls, name):
        """Map a provider name to the enum; anything unrecognised is UNKNOWN."""
        try:
            return cls((name or "").strip().lower())
        except ValueError:
            return cls.UNKNOWN


class CNIPlugin(str, Enum):
    CALICO = "calico"
    CILIUM = "cilium"
    WEAVE = "weave"
    FLANNEL = "flannel"
    VPC_CNI = "vpc-cni"
    AZURE_CNI = "azure-cni"
    GCP_CNI = "gcp-cni"
    KUBE_ROUTER = "kube-router"
    UNKNOWN = "unknown"

    def __str__(self):
        return self.value

    @classmethod
    def parse(cls, name):
        """Map a CNI name to the enum; anything unrecognised is UNKNOWN."""
        try:
            return cls((name or "").strip().lower())
        except ValueError:
            return cls.UNKNOWN


MANAGED_PROVIDERS = frozenset({Provider.GKE, Provider.EKS, Provider.AKS})

CONTROL_PLANE_LABELS = ("node-role.kubernetes.io/control-plane", "node-role.kubernetes.io/master")
REGION_LABELS = ("topology.kubernetes.io/region", "failure-domain.beta.kubernetes.io/region")


def _first_node_labels(cluster):
    node = cluster.first_node()
    return node['labels'] if node else {}


# Provider heuristics, in priority order

def check_api_server_url(cluster):
    # Managed control planes are served from provider-owned domains
    url = cluster.api_server_url().lower()
    if "gke" in url or "googleapis.com" in url:
        return Provider.GKE
    if "eks.amazonaws.com" in url:
        return Provider.EKS
    if "azmk8s.io" in url:
        return Provider.AKS
    return None


def check_context_name(cluster):
    # Local tools name their kubeconfig contexts after themselves
    context = cluster.current_context()
    if "kind-" in context:
        return Provider.KIND
    if "minikube" in context.lower():
        return Provider.MINIKUBE
    if "k3s" in context.lower():
        return Provider.K3S
    return None


def check_minikube_status(cluster):
    # Only meaningful when the minikube binary is on this host
    running, _ = run_host_command(["minikube", "status"])
    return Provider.MINIKUBE if running else None


def check_node_labels(cluster):
    # Cloud node pools stamp their nodes with provider-specific labels
    labels = _first_node_labels(cluster)
    if "cloud.google.com/gke-nodepool" in labels or "cloud.google.com/gke-os-distribution" in labels:
        return Provider.GKE
    if "eks.amazonaws.com/nodegroup" in labels or "alpha.eksctl.io/cluster-name" in labels:
        return Provider.EKS
    if "kubernetes.azure.com/cluster" in labels or "kubernetes.azure.com/role" in labels:
        return Provider.AKS
    if labels.get("node.kubernetes.io/instance-type") == "k3s":
        return Provider.K3S
    if labels.get("kubernetes.io/hostname", "").startswith("kind-"):
        return Provider.KIND
    return None


PROVIDER_ID_PREFIXES = (
    ("gce://", Provider.GKE),
    ("aws://", Provider.EKS),
    ("azure://", Provider.AKS),
    ("k3s://", Provider.K3S),
)


def check_provider_id(cluster):
    # spec.providerID is set by the cloud controller manager, e.g. gce://project/zone/name
    node = cluster.first_node()
    provider_id = node['provider_id'] if node else ""
    for prefix, provider in PROVIDER_ID_PREFIXES:
        if provider_id.startswith(prefix):
            return provider
    return None


def check_microk8s(cluster):
    # microk8s shows up in the node OS image or as an installed snap
    node = cluster.first_node()
    if node and "microk8s" in node['os_image'].lower():
        return Provider.MICROK8S
    listed, output = run_host_command(["snap", "list"])
    if listed and "microk8s" in output:
        return Provider.MICROK8S
    return None


def check_control_plane_fallback(cluster):
    # A bare control-plane label with no cloud signal is most often kind
    labels = _first_node_labels(cluster)
    if any(label in labels for label in CONTROL_PLANE_LABELS):
        return Provider.KIND
    return None


PROVIDER_CHECKS = (
    check_api_server_url,
    check_context_name,
    check_minikube_status,
    check_node_labels,
    check_provider_id,
    check_microk8s,
    check_control_plane_fallback,
)


def detect_provider(cluster):
    """
    Detect the Kubernetes provider of the cluster.

    Args:
        cluster (ClusterClient): Cluster to inspect

    Returns:
        Provider: The first provider any heuristic reports, or Provider.UNKNOWN
    """
    # Walk the heuristics in priority order; the first one with an answer wins
    for check in PROVIDER_CHECKS:
        try:
            provider = check(cluster)
        except ApiException as e:
            # Missing RBAC or resources only rules out this signal
            log.debug(f"Provider heuristic {check.__name__} failed: {e.status} {e.reason}")
            continue
        if provider is not None:
            log.info(f"Detected provider {provider} ({check.__name__})")
            return provider

    log.warning("Could not detect cloud provider")
    return Provider.UNKNOWN


# CNI heuristics, in priority order

DAEMONSET_SIGNATURES = (
    (CNIPlugin.CALICO, ("calico-node",)),
    (CNIPlugin.CILIUM, ("cilium", "cilium-agent")),
    (CNIPlugin.WEAVE, ("weave-net",)),
    (CNIPlugin.FLANNEL, ("kube-flannel", "kube-flannel-ds")),
    (CNIPlugin.VPC_CNI, ("aws-node",)),
    (CNIPlugin.AZURE_CNI, ("azure-cni-networkmonitor", "azure-npm")),
    (CNIPlugin.KUBE_ROUTER, ("kube-router",)),
)

DEPLOYMENT_SIGNATURES = (
    (CNIPlugin.CALICO, ("calico-kube-controllers",)),
    (CNIPlugin.CILIUM, ("cilium-operator",)),
)

INTERFACE_PATTERNS = (
    (CNIPlugin.CALICO, re.compile(r"cali[0-9]")),
    (CNIPlugin.CILIUM, re.compile(r"lxc[0-9]|cilium")),
    (CNIPlugin.WEAVE, re.compile(r"weave")),
    (CNIPlugin.FLANNEL, re.compile(r"veth.*flannel")),
)

CNI_CONF_KEYWORDS = (CNIPlugin.CALICO, CNIPlugin.CILIUM, CNIPlugin.WEAVE, CNIPlugin.FLANNEL)


def check_daemonsets(cluster, provider=None):
    # CNI agents run as a DaemonSet in kube-system under well-known names
    for cni, names in DAEMONSET_SIGNATURES:
        if any(cluster.daemonset_exists(name) for name in names):
            return cni
    return None


def check_deployments(cluster, provider=None):
    # Controllers are Deployments, so they are found even when the agent is renamed
    for cni, names in DEPLOYMENT_SIGNATURES:
        if any(cluster.deployment_exists(name) for name in names):
            return cni
    return None


def check_pod_interfaces(cluster, provider=None):
    # Interface names inside a running pod reveal the veth naming scheme of the CNI
    pods = cluster.list_running_pods()
    if not pods:
        return None
    namespace, pod_name = pods[0]
    output = cluster.exec_in_pod(namespace, pod_name, ["ip", "link", "show"])
    for cni, pattern in INTERFACE_PATTERNS:
        if pattern.search(output):
            return cni
    return None


def check_cni_conf_env(cluster, provider=None):
    # Some CNI installers export the name of the conflist they write
    values = cluster.kube_system_env_values("CNI_CONF_NAME")
    if not values:
        return None
    conf_name = values[0].lower()
    for cni in CNI_CONF_KEYWORDS:
        if cni.value in conf_name:
            return cni
    return None


def check_provider_defaults(cluster, provider=None):
    if provider is None:
        provider = detect_provider(cluster)

    if provider == Provider.GKE:
        node = cluster.first_node()
        if node is None:
            return None
        # GKE Dataplane V2 is Cilium underneath
        if node['labels'].get("cloud.google.com/gke-netd") == "true":
            return CNIPlugin.CILIUM
        # Routes-based GKE clusters hand out pod ranges from 10.0.0.0/8
        if (cluster.get_pod_cidr() or "").startswith("10."):
            return CNIPlugin.GCP_CNI
    elif provider == Provider.EKS:
        if cluster.daemonset_exists("aws-node"):
            return CNIPlugin.VPC_CNI
    elif provider == Provider.AKS:
        if _first_node_labels(cluster).get("kubernetes.azure.com/network-plugin"):
            return CNIPlugin.AZURE_CNI
    return None


def check_node_cni_binaries(cluster, provider=None):
    # Last resort: look at the plugin binaries installed on the node
    binaries = " ".join(cluster.list_node_cni_binaries())
    if "calico" in binaries:
        return CNIPlugin.CALICO
    if "cilium" in binaries:
        return CNIPlugin.CILIUM
    return None


CNI_CHECKS = (
    check_daemonsets,
    check_deployments,
    check_pod_interfaces,
    check_cni_conf_env,
    check_provider_defaults,
    check_node_cni_binaries,
)


def detect_cni(cluster, provider=None):
    """
    Detect the CNI plugin of the cluster.

    Args:
        cluster (ClusterClient): Cluster to inspect
        provider (Provider): Already-detected provider; detected on demand when
            the provider-default heuristic needs it

    Returns:
        CNIPlugin: The first CNI any heuristic reports, or CNIPlugin.UNKNOWN
    """
    # Same cascade rules as provider detection
    for check in CNI_CHECKS:
        try:
            cni = check(cluster, provider)
        except ApiException as e:
            log.debug(f"CNI heuristic {check.__name__} failed: {e.status} {e.reason}")
            continue
        if cni is not None:
            log.info(f"Detected CNI {cni} ({check.__name__})")
            return cni

    log.warning("Could not detect CNI plugin")
    return CNIPlugin.UNKNOWN


# Environment details

SEMVER_PATTERN = re.compile(r"v\d+\.\d+\.\d+")
BARE_SEMVER_PATTERN = re.compile(r"\d+\.\d+\.\d+")

# Workloads whose image tag carries the CNI version, tried in order
VERSION_SOURCES = {
    CNIPlugin.CALICO: (("deployment", "calico-kube-controllers"), ("daemonset", "calico-node")),
    CNIPlugin.CILIUM: (("daemonset", "cilium"), ("daemonset", "cilium-agent")),
    CNIPlugin.WEAVE: (("daemonset", "weave-net"),),
    CNIPlugin.FLANNEL: (("daemonset", "kube-flannel"), ("daemonset", "kube-flannel-ds")),
    CNIPlugin.VPC_CNI: (("daemonset", "aws-node"),),
    CNIPlugin.AZURE_CNI: (("daemonset", "azure-npm"), ("daemonset", "azure-cni-networkmonitor")),
    CNIPlugin.KUBE_ROUTER: (("daemonset", "kube-router"),),
}


def get_cni_version(cluster, cni):
    """
    Get the version of the CNI plugin from its workload image tag.

    Returns:
        str: Version such as v3.26.1, or "unknown"
    """
    cni = CNIPlugin.parse(cni)
    if cni == CNIPlugin.GCP_CNI:
        # GCP CNI is versioned with GKE itself
        return get_k8s_version(cluster)

    # Weave tags its images without the leading "v"
    pattern = BARE_SEMVER_PATTERN if cni == CNIPlugin.WEAVE else SEMVER_PATTERN
    for kind, name in VERSION_SOURCES.get(cni, ()):
        image = cluster.workload_image(kind, name)
        if not image:
            continue
        match = pattern.search(image)
        if match:
            return match.group(0)
    return "unknown"


def get_k8s_version(cluster):
    try:
        return cluster.server_version() or "unknown"
    except ApiException as e:
        log.warning(f"Error getting Kubernetes version: {e.status} {e.reason}")
        return "unknown"


def get_cluster_region(cluster, provider):
    if Provider.parse(provider) not in MANAGED_PROVIDERS:
        return "local"
    labels = _first_node_labels(cluster)
    for label in REGION_LABELS:
        if labels.get(label):
            return labels[label]
    return "unknown"


def get_cluster_name(cluster, provider):
    """
    Derive the cluster name from the kubeconfig context.

    GKE contexts look like gke_<project>_<location>_<name>, eksctl contexts like
    <user>@<name> and aws-cli contexts like arn:aws:eks:<region>:<account>:cluster/<name>.
    """
    context = cluster.current_context()
    provider = Provider.parse(provider)

    if provider == Provider.GKE:
        match = re.match(r"gke_[^_]+_[^_]+_(.+)", context)
        return match.group(1) if match else "unknown"
    if provider == Provider.EKS:
        match = re.search(r"@(.+)$", context) or re.search(r"cluster/(.+)$", context)
        return match.group(1) if match else "unknown"
    if provider == Provider.KIND:
        return context.replace("kind-", "", 1) or "unknown"
    return context or "unknown"


def check_network_policy_support(cluster):
    return cluster.network_policy_api_available()


def generate_environment_report(cluster, provider=None, cni=None):
    """
    Generate a comprehensive environment report.

    Args:
        cluster (ClusterClient): Cluster to inspect
        provider (Provider): Provider to report, detected when omitted
        cni (CNIPlugin): CNI to report, detected when omitted

    Returns:
        dict: Provider, CNI (name and version), Kubernetes version and cluster facts
    """
    if provider is None:
        provider = detect_provider(cluster)
    if cni is None:
        cni = detect_cni(cluster, provider)

    return {
        'provider': Provider.parse(provider).value,
        'cni': {
            'name': CNIPlugin.parse(cni).value,
            'version': get_cni_version(cluster, cni),
        },
        'kubernetes': {
            'version': get_k8s_version(cluster),
        },
        'cluster': {
            'name': get_cluster_name(cluster, provider),
            'region': get_cluster_region(cluster, provider),
            'node_count': cluster.node_count(),
        },
        'detection_timestamp': datetime.now().astimezone().isoformat(timespec="seconds"),
    }
